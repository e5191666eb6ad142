"""JSON-RPC service exposing token state, with a matching client."""

from __future__ import annotations

import base64
import dataclasses
import itertools
import json
import logging
import time
import urllib.request
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from .storage import AssetRecord, TransactionRecord
from .utils import ID_LEN, AddressError, address, decode_id, encode_id, parse_address

JSONRPC_ENDPOINT = "/tokenapi"
NAME = "tokenvm"
ORDERS_TO_SEND = 128

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000

_TX_NOT_FOUND = "tx not found"
_ASSET_NOT_FOUND = "asset not found"
_EMPTY_ID = bytes(ID_LEN)

logger = logging.getLogger(__name__)


class JSONRPCError(Exception):
    """An error carried in a JSON-RPC response."""

    def __init__(self, message: str, code: int = SERVER_ERROR, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data


class TxNotFoundError(LookupError):
    """Raised when a transaction is not known."""

    def __init__(self, message: str = _TX_NOT_FOUND) -> None:
        super().__init__(message)


class AssetNotFoundError(LookupError):
    """Raised when an asset does not exist."""

    def __init__(self, message: str = _ASSET_NOT_FOUND) -> None:
        super().__init__(message)


class Controller(Protocol):
    """What the server needs from the virtual machine."""

    def genesis(self) -> Any: ...

    def get_transaction(self, tx_id: bytes) -> TransactionRecord | None: ...

    def get_asset_from_state(self, asset: bytes) -> AssetRecord | None: ...

    def get_balance_from_state(self, public_key: bytes, asset: bytes) -> int: ...

    def orders(self, pair: str, limit: int) -> list[Any]: ...

    def get_loan_from_state(self, asset: bytes, destination: bytes) -> int: ...


@dataclass(frozen=True)
class TxInfo:
    timestamp: int
    success: bool
    units: int


@dataclass(frozen=True)
class AssetInfo:
    metadata: bytes
    supply: int
    owner: str
    warp: bool


def _id_arg(args: Mapping[str, Any], key: str) -> bytes:
    value = args.get(key)
    if value is None or value == "null":
        return _EMPTY_ID
    if not isinstance(value, str):
        raise JSONRPCError(f"{key} must be a string", INVALID_PARAMS)
    try:
        return decode_id(value)
    except AddressError as exc:
        raise JSONRPCError(f"invalid {key}: {exc}", INVALID_PARAMS) from exc


def _str_arg(args: Mapping[str, Any], key: str) -> str:
    value = args.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise JSONRPCError(f"{key} must be a string", INVALID_PARAMS)
    return value


def _error(request_id: Any, exc: JSONRPCError) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "error": {"code": exc.code, "message": exc.message, "data": exc.data},
        "id": request_id,
    }


def _jsonable(item: Any) -> Any:
    if dataclasses.is_dataclass(item) and not isinstance(item, type):
        return dataclasses.asdict(item)
    return item


class JSONRPCServer:
    """Serves token state queries; usable directly or as a WSGI application."""

    def __init__(self, controller: Controller, name: str = NAME) -> None:
        self.controller = controller
        self.name = name
        self._methods: dict[str, Callable[[Mapping[str, Any]], dict[str, Any]]] = {
            "genesis": self._rpc_genesis,
            "tx": self._rpc_tx,
            "asset": self._rpc_asset,
            "balance": self._rpc_balance,
            "orders": self._rpc_orders,
            "loan": self._rpc_loan,
        }

    def genesis(self) -> Any:
        return self.controller.genesis()

    def tx(self, tx_id: bytes) -> TxInfo:
        record = self.controller.get_transaction(tx_id)
        if record is None:
            raise TxNotFoundError()
        return TxInfo(record.timestamp, record.success, record.units)

    def asset(self, asset: bytes) -> AssetInfo:
        record = self.controller.get_asset_from_state(asset)
        if record is None:
            raise AssetNotFoundError()
        return AssetInfo(record.metadata, record.supply, address(record.owner), record.warp)

    def balance(self, address: str, asset: bytes) -> int:
        return self.controller.get_balance_from_state(parse_address(address), asset)

    def orders(self, pair: str) -> list[Any]:
        return [_jsonable(order) for order in self.controller.orders(pair, ORDERS_TO_SEND)]

    def loan(self, asset: bytes, destination: bytes) -> int:
        return self.controller.get_loan_from_state(asset, destination)

    # JSON bindings

    def _rpc_genesis(self, _args: Mapping[str, Any]) -> dict[str, Any]:
        return {"genesis": self.genesis()}

    def _rpc_tx(self, args: Mapping[str, Any]) -> dict[str, Any]:
        info = self.tx(_id_arg(args, "txId"))
        return {"timestamp": info.timestamp, "success": info.success, "units": info.units}

    def _rpc_asset(self, args: Mapping[str, Any]) -> dict[str, Any]:
        info = self.asset(_id_arg(args, "asset"))
        return {
            "metadata": base64.b64encode(info.metadata).decode("ascii"),
            "supply": info.supply,
            "owner": info.owner,
            "warp": info.warp,
        }

    def _rpc_balance(self, args: Mapping[str, Any]) -> dict[str, Any]:
        return {"amount": self.balance(_str_arg(args, "address"), _id_arg(args, "asset"))}

    def _rpc_orders(self, args: Mapping[str, Any]) -> dict[str, Any]:
        return {"orders": self.orders(_str_arg(args, "pair"))}

    def _rpc_loan(self, args: Mapping[str, Any]) -> dict[str, Any]:
        amount = self.loan(_id_arg(args, "asset"), _id_arg(args, "destination"))
        return {"amount": amount}

    @staticmethod
    def _params(params: Any) -> Mapping[str, Any]:
        if params is None:
            return {}
        if isinstance(params, list):
            if not params:
                return {}
            params = params[0]
        if params is None:
            return {}
        if not isinstance(params, Mapping):
            raise JSONRPCError("params must be an object", INVALID_PARAMS)
        return params

    def handle(self, request: Any) -> dict[str, Any]:
        """Answer one decoded JSON-RPC request with a response object."""
        request_id = request.get("id") if isinstance(request, Mapping) else None
        try:
            if not isinstance(request, Mapping) or request.get("jsonrpc") != "2.0":
                raise JSONRPCError("invalid request", INVALID_REQUEST)
            method = request.get("method")
            if not isinstance(method, str):
                raise JSONRPCError("invalid request", INVALID_REQUEST)
            service, _, method_name = method.partition(".")
            handler = self._methods.get(method_name.lower()) if service == self.name else None
            if handler is None:
                raise JSONRPCError(f"method {method!r} not found", METHOD_NOT_FOUND)
            result = handler(self._params(request.get("params")))
        except JSONRPCError as exc:
            return _error(request_id, exc)
        except Exception as exc:  # errors from the controller are reported to the caller
            return _error(request_id, JSONRPCError(str(exc)))
        return {"jsonrpc": "2.0", "result": result, "id": request_id}

    def __call__(
        self, environ: dict[str, Any], start_response: Callable[..., Any]
    ) -> Iterable[bytes]:
        if environ.get("REQUEST_METHOD") != "POST":
            body = f"rpc: POST method required, received {environ.get('REQUEST_METHOD')}"
            start_response(
                "405 Method Not Allowed", [("Content-Type", "text/plain; charset=utf-8")]
            )
            return [body.encode()]
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        raw = environ["wsgi.input"].read(length) if length > 0 else b""
        try:
            request = json.loads(raw)
        except ValueError as exc:
            response = _error(None, JSONRPCError(f"parse error: {exc}", PARSE_ERROR))
        else:
            response = self.handle(request)
        payload = json.dumps(response).encode()
        start_response(
            "200 OK",
            [("Content-Type", "application/json"), ("Content-Length", str(len(payload)))],
        )
        return [payload]


class JSONRPCClient:
    """Client for the token JSON-RPC service."""

    poll_interval = 0.5
    timeout: float | None = None
    request_timeout: float = 30.0

    def __init__(self, uri: str, chain_id: bytes, name: str = NAME) -> None:
        self.uri = uri.removesuffix("/") + JSONRPC_ENDPOINT
        self.chain_id = chain_id
        self.name = name
        self._ids = itertools.count(1)
        self._genesis: Any = None

    def _call(self, method: str, params: Mapping[str, Any] | None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": f"{self.name}.{method}",
            "params": [dict(params) if params is not None else None],
            "id": next(self._ids),
        }
        request = urllib.request.Request(
            self.uri,
            data=json.dumps(payload).encode(),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(request, timeout=self.request_timeout) as response:
            body = json.load(response)
        error = body.get("error")
        if error:
            raise JSONRPCError(
                str(error.get("message", "")),
                int(error.get("code", SERVER_ERROR)),
                error.get("data"),
            )
        return body.get("result") or {}

    def genesis(self) -> Any:
        """Fetch the genesis once and reuse it afterwards."""
        if self._genesis is None:
            self._genesis = self._call("genesis", None).get("genesis")
        return self._genesis

    def tx(self, tx_id: bytes) -> TxInfo | None:
        """Return the transaction's outcome, or None if it is not known yet."""
        try:
            reply = self._call("tx", {"txId": encode_id(tx_id)})
        except JSONRPCError as exc:
            if _TX_NOT_FOUND in str(exc):
                return None
            raise
        return TxInfo(
            int(reply.get("timestamp", 0)),
            bool(reply.get("success", False)),
            int(reply.get("units", 0)),
        )

    def asset(self, asset: bytes) -> AssetInfo | None:
        """Return the asset, or None if it does not exist."""
        try:
            reply = self._call("asset", {"asset": encode_id(asset)})
        except JSONRPCError as exc:
            if _ASSET_NOT_FOUND in str(exc):
                return None
            raise
        metadata = reply.get("metadata")
        return AssetInfo(
            base64.b64decode(metadata) if metadata else b"",
            int(reply.get("supply", 0)),
            str(reply.get("owner", "")),
            bool(reply.get("warp", False)),
        )

    def balance(self, address: str, asset: bytes) -> int:
        reply = self._call("balance", {"address": address, "asset": encode_id(asset)})
        return int(reply.get("amount", 0))

    def orders(self, pair: str) -> list[Any]:
        return list(self._call("orders", {"pair": pair}).get("orders") or [])

    def loan(self, asset: bytes, destination: bytes) -> int:
        reply = self._call(
            "loan", {"asset": encode_id(asset), "destination": encode_id(destination)}
        )
        return int(reply.get("amount", 0))

    def _wait(self, check: Callable[[], bool]) -> None:
        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        while True:
            if check():
                return
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError("condition not met before the deadline")
            time.sleep(self.poll_interval)

    def wait_for_balance(self, address: str, asset: bytes, minimum: int) -> None:
        """Block until the balance of ``address`` reaches ``minimum``."""

        def check() -> bool:
            done = self.balance(address, asset) >= minimum
            if not done:
                logger.info("waiting for %d balance: %s", minimum, address)
            return done

        self._wait(check)

    def wait_for_transaction(self, tx_id: bytes) -> bool:
        """Block until the transaction is known and return whether it succeeded."""
        found: list[TxInfo] = []

        def check() -> bool:
            info = self.tx(tx_id)
            if info is None:
                return False
            found.append(info)
            return True

        self._wait(check)
        return found[-1].success