"""Key layout and record encoding for chain state."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from .utils import ID_LEN, PUBLIC_KEY_LEN, address, encode_id

# Metadata
# 0x0/ (tx)
#   -> [txID] => timestamp|success|units
#
# State
# 0x0/ (balance)  -> [owner|asset] => balance
# 0x1/ (assets)   -> [asset] => metadataLen|metadata|supply|owner|warp
# 0x2/ (orders)   -> [txID] => in|inTick|out|outTick|remaining|owner
# 0x3/ (loans)    -> [asset|destination] => amount
# 0x4/ (height)
# 0x5/ (incoming warp)
# 0x6/ (outgoing warp)

TX_PREFIX = 0x0
BALANCE_PREFIX = 0x0
ASSET_PREFIX = 0x1
ORDER_PREFIX = 0x2
LOAN_PREFIX = 0x3
HEIGHT_PREFIX = 0x4
INCOMING_WARP_PREFIX = 0x5
OUTGOING_WARP_PREFIX = 0x6

UINT64_MAX = 2**64 - 1
UINT16_MAX = 2**16 - 1
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_U64 = 8
_U16 = 2

_FAILURE_BYTE = 0x0
_SUCCESS_BYTE = 0x1
_HEIGHT_KEY = bytes([HEIGHT_PREFIX])

ReadState = Callable[[Sequence[bytes]], "list[bytes | None]"]


class InvalidBalanceError(ValueError):
    """Raised when a balance or loan would overflow or go negative."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"invalid balance: {detail}")


class NotFoundError(LookupError):
    """Raised when a key is not present in the database."""


class _Database(Protocol):
    def get_value(self, key: bytes) -> bytes: ...

    def insert(self, key: bytes, value: bytes) -> None: ...

    def remove(self, key: bytes) -> None: ...


class MemoryDatabase:
    """A key-value store held in memory."""

    def __init__(self) -> None:
        self._data: dict[bytes, bytes] = {}

    def get_value(self, key: bytes) -> bytes:
        try:
            return self._data[bytes(key)]
        except KeyError:
            raise NotFoundError(key.hex()) from None

    def insert(self, key: bytes, value: bytes) -> None:
        self._data[bytes(key)] = bytes(value)

    def remove(self, key: bytes) -> None:
        self._data.pop(bytes(key), None)

    def read_state(self, keys: Sequence[bytes]) -> list[bytes | None]:
        """Read several keys at once; missing keys give None."""
        return [self._data.get(bytes(key)) for key in keys]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


@dataclass(frozen=True)
class TransactionRecord:
    timestamp: int
    success: bool
    units: int


@dataclass(frozen=True)
class AssetRecord:
    metadata: bytes
    supply: int
    owner: bytes
    warp: bool


@dataclass(frozen=True)
class OrderRecord:
    in_asset: bytes
    in_tick: int
    out_asset: bytes
    out_tick: int
    remaining: int
    owner: bytes


def _id(value: bytes) -> bytes:
    if len(value) != ID_LEN:
        raise ValueError(f"identifier must be {ID_LEN} bytes, got {len(value)}")
    return bytes(value)


def _pk(value: bytes) -> bytes:
    if len(value) != PUBLIC_KEY_LEN:
        raise ValueError(f"public key must be {PUBLIC_KEY_LEN} bytes, got {len(value)}")
    return bytes(value)


def _u64(value: int) -> bytes:
    if not 0 <= value <= UINT64_MAX:
        raise ValueError(f"{value} does not fit in an unsigned 64-bit integer")
    return value.to_bytes(_U64, "big")


def _read_u64(data: bytes, offset: int = 0) -> int:
    return int.from_bytes(data[offset:offset + _U64], "big")


def _get_or_none(db: _Database, key: bytes) -> bytes | None:
    try:
        return db.get_value(key)
    except NotFoundError:
        return None


# Transactions


def prefix_tx_key(tx_id: bytes) -> bytes:
    return bytes([TX_PREFIX]) + _id(tx_id)


def store_transaction(
    db: _Database, tx_id: bytes, timestamp: int, success: bool, units: int
) -> None:
    if not _INT64_MIN <= timestamp <= _INT64_MAX:
        raise ValueError(f"timestamp {timestamp} does not fit in a signed 64-bit integer")
    value = (
        (timestamp & UINT64_MAX).to_bytes(_U64, "big")
        + bytes([_SUCCESS_BYTE if success else _FAILURE_BYTE])
        + _u64(units)
    )
    db.insert(prefix_tx_key(tx_id), value)


def get_transaction(db: _Database, tx_id: bytes) -> TransactionRecord | None:
    """Return the stored transaction, or None if it is unknown."""
    value = _get_or_none(db, prefix_tx_key(tx_id))
    if value is None:
        return None
    timestamp = int.from_bytes(value[:_U64], "big", signed=True)
    success = value[_U64] != _FAILURE_BYTE
    units = _read_u64(value, _U64 + 1)
    return TransactionRecord(timestamp, success, units)


# Balances


def prefix_balance_key(public_key: bytes, asset: bytes) -> bytes:
    return bytes([BALANCE_PREFIX]) + _pk(public_key) + _id(asset)


def _decode_balance(value: bytes | None) -> int:
    return 0 if value is None else _read_u64(value)


def get_balance(db: _Database, public_key: bytes, asset: bytes) -> int:
    """Return the balance; a missing account holds zero."""
    return _decode_balance(_get_or_none(db, prefix_balance_key(public_key, asset)))


def get_balance_from_state(read_state: ReadState, public_key: bytes, asset: bytes) -> int:
    return _decode_balance(read_state([prefix_balance_key(public_key, asset)])[0])


def set_balance(db: _Database, public_key: bytes, asset: bytes, balance: int) -> None:
    db.insert(prefix_balance_key(public_key, asset), _u64(balance))


def delete_balance(db: _Database, public_key: bytes, asset: bytes) -> None:
    db.remove(prefix_balance_key(public_key, asset))


def add_balance(db: _Database, public_key: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(public_key, asset)
    balance = _decode_balance(_get_or_none(db, key))
    new_balance = balance + amount
    if amount < 0 or new_balance > UINT64_MAX:
        raise InvalidBalanceError(
            f"could not add balance (asset={encode_id(asset)}, bal={balance}, "
            f"addr={address(public_key)}, amount={amount})"
        )
    db.insert(key, _u64(new_balance))


def sub_balance(db: _Database, public_key: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(public_key, asset)
    balance = _decode_balance(_get_or_none(db, key))
    new_balance = balance - amount
    if amount < 0 or new_balance < 0:
        raise InvalidBalanceError(
            f"could not subtract balance (asset={encode_id(asset)}, bal={balance}, "
            f"addr={address(public_key)}, amount={amount})"
        )
    if new_balance == 0:
        # An empty balance is deleted rather than stored as zero.
        db.remove(key)
    else:
        db.insert(key, _u64(new_balance))


# Assets


def prefix_asset_key(asset: bytes) -> bytes:
    return bytes([ASSET_PREFIX]) + _id(asset)


def _decode_asset(value: bytes | None) -> AssetRecord | None:
    if value is None:
        return None
    metadata_len = int.from_bytes(value[:_U16], "big")
    offset = _U16 + metadata_len
    metadata = value[_U16:offset]
    supply = _read_u64(value, offset)
    offset += _U64
    owner = value[offset:offset + PUBLIC_KEY_LEN]
    warp = value[offset + PUBLIC_KEY_LEN] == 0x1
    return AssetRecord(bytes(metadata), supply, bytes(owner), warp)


def get_asset_from_state(read_state: ReadState, asset: bytes) -> AssetRecord | None:
    return _decode_asset(read_state([prefix_asset_key(asset)])[0])


def get_asset(db: _Database, asset: bytes) -> AssetRecord | None:
    """Return the asset, or None if it does not exist."""
    return _decode_asset(_get_or_none(db, prefix_asset_key(asset)))


def set_asset(
    db: _Database,
    asset: bytes,
    metadata: bytes,
    supply: int,
    owner: bytes,
    warp: bool,
) -> None:
    if len(metadata) > UINT16_MAX:
        raise ValueError(f"metadata of {len(metadata)} bytes is too long")
    value = (
        len(metadata).to_bytes(_U16, "big")
        + bytes(metadata)
        + _u64(supply)
        + _pk(owner)
        + bytes([0x1 if warp else 0x0])
    )
    db.insert(prefix_asset_key(asset), value)


def delete_asset(db: _Database, asset: bytes) -> None:
    db.remove(prefix_asset_key(asset))


# Orders


def prefix_order_key(tx_id: bytes) -> bytes:
    return bytes([ORDER_PREFIX]) + _id(tx_id)


def set_order(
    db: _Database,
    tx_id: bytes,
    in_asset: bytes,
    in_tick: int,
    out_asset: bytes,
    out_tick: int,
    supply: int,
    owner: bytes,
) -> None:
    value = (
        _id(in_asset)
        + _u64(in_tick)
        + _id(out_asset)
        + _u64(out_tick)
        + _u64(supply)
        + _pk(owner)
    )
    db.insert(prefix_order_key(tx_id), value)


def get_order(db: _Database, order: bytes) -> OrderRecord | None:
    """Return the order, or None if it does not exist."""
    value = _get_or_none(db, prefix_order_key(order))
    if value is None:
        return None
    in_asset = value[:ID_LEN]
    in_tick = _read_u64(value, ID_LEN)
    out_start = ID_LEN + _U64
    out_asset = value[out_start:out_start + ID_LEN]
    out_tick = _read_u64(value, ID_LEN * 2 + _U64)
    remaining = _read_u64(value, ID_LEN * 2 + _U64 * 2)
    owner_start = ID_LEN * 2 + _U64 * 3
    owner = value[owner_start:owner_start + PUBLIC_KEY_LEN]
    return OrderRecord(
        bytes(in_asset), in_tick, bytes(out_asset), out_tick, remaining, bytes(owner)
    )


def delete_order(db: _Database, order: bytes) -> None:
    db.remove(prefix_order_key(order))


# Loans


def prefix_loan_key(asset: bytes, destination: bytes) -> bytes:
    return bytes([LOAN_PREFIX]) + _id(asset) + _id(destination)


def get_loan_from_state(read_state: ReadState, asset: bytes, destination: bytes) -> int:
    return _decode_balance(read_state([prefix_loan_key(asset, destination)])[0])


def get_loan(db: _Database, asset: bytes, destination: bytes) -> int:
    return _decode_balance(_get_or_none(db, prefix_loan_key(asset, destination)))


def set_loan(db: _Database, asset: bytes, destination: bytes, amount: int) -> None:
    db.insert(prefix_loan_key(asset, destination), _u64(amount))


def add_loan(db: _Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    new_loan = loan + amount
    if amount < 0 or new_loan > UINT64_MAX:
        raise InvalidBalanceError(
            f"could not add loan (asset={encode_id(asset)}, "
            f"destination={encode_id(destination)}, amount={amount})"
        )
    set_loan(db, asset, destination, new_loan)


def sub_loan(db: _Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    new_loan = loan - amount
    if amount < 0 or new_loan < 0:
        raise InvalidBalanceError(
            f"could not subtract loan (asset={encode_id(asset)}, "
            f"destination={encode_id(destination)}, amount={amount})"
        )
    if new_loan == 0:
        # An empty loan is deleted rather than stored as zero.
        db.remove(prefix_loan_key(asset, destination))
    else:
        set_loan(db, asset, destination, new_loan)


# Chain bookkeeping


def height_key() -> bytes:
    return _HEIGHT_KEY


def incoming_warp_key_prefix(source_chain_id: bytes, msg_id: bytes) -> bytes:
    return bytes([INCOMING_WARP_PREFIX]) + _id(source_chain_id) + _id(msg_id)


def outgoing_warp_key_prefix(tx_id: bytes) -> bytes:
    return bytes([OUTGOING_WARP_PREFIX]) + _id(tx_id)