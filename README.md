# tokenvm

Storage layout and JSON-RPC service for a token virtual machine. The package
is a library. It has no dependencies outside the standard library and
provides no command-line program.

| Module | What it holds |
| --- | --- |
| `tokenvm.storage` | Binary key and value layout for transactions, balances, assets, orders, loans and warp messages, plus `MemoryDatabase`, an in-memory key-value store |
| `tokenvm.utils` | Bech32 addresses for 32-byte public keys, and checksummed base58 encoding for 32-byte identifiers |
| `tokenvm.jsonrpc` | `JSONRPCServer`, which also works as a WSGI application, and `JSONRPCClient` |
| `tokenvm.version` | `Semantic` and `VERSION`; `str(VERSION)` is `"v0.0.1"` |

## Installation

```
pip install .
```

To install the test dependencies as well:

```
pip install ".[test]"
```

## Addresses and identifiers

```python
from tokenvm.utils import address, parse_address, encode_id, decode_id

public_key = bytes(32)
addr = address(public_key)           # "token1..." (default hrp is "token")
assert parse_address(addr) == public_key

asset = bytes(32)
assert decode_id(encode_id(asset)) == asset
```

`parse_address` and `decode_id` raise `AddressError`, a subclass of
`ValueError`, in these cases:

- a bad checksum;
- a wrong hrp;
- a character outside the alphabet;
- a wrong length.

## Storage

Every function takes a database with `get_value`, `insert` and `remove` as its
first argument. `get_value` raises `NotFoundError` for a missing key.
`MemoryDatabase` is one such database.

Public keys and identifiers are 32-byte `bytes`. A value of any other length
raises `ValueError`.

```python
from tokenvm.storage import (
    MemoryDatabase, add_balance, sub_balance, get_balance,
    set_asset, get_asset, store_transaction, get_transaction,
)

db = MemoryDatabase()
owner = bytes(32)
asset = bytes(32)

add_balance(db, owner, asset, 100)
sub_balance(db, owner, asset, 40)
assert get_balance(db, owner, asset) == 60

set_asset(db, asset, b"COIN", 60, owner, False)
record = get_asset(db, asset)        # AssetRecord, or None if missing
store_transaction(db, bytes(32), 1_700_000_000, True, 472)
tx = get_transaction(db, bytes(32))  # TransactionRecord, or None
```

How the storage functions behave:

- Balances and loans are unsigned 64-bit amounts.
- A missing balance or loan reads as zero.
- `add_balance`, `sub_balance`, `add_loan` and `sub_loan` raise
  `InvalidBalanceError` when a result would overflow or fall below zero.
- A record that reaches zero is removed rather than stored.
- `get_transaction`, `get_asset` and `get_order` return `None` for a missing
  record.
- The `*_from_state` variants take a callable that reads several keys at once
  and returns `None` for each missing key, such as `MemoryDatabase.read_state`.

## Serving queries

`JSONRPCServer` wraps a controller. A controller is any object with these
methods:

- `genesis()`
- `get_transaction(tx_id)`
- `get_asset_from_state(asset)`
- `get_balance_from_state(public_key, asset)`
- `orders(pair, limit)`
- `get_loan_from_state(asset, destination)`

The server answers these methods under the service name given to it, by
default `tokenvm`:

- `tokenvm.genesis`
- `tokenvm.tx`
- `tokenvm.asset`
- `tokenvm.balance`
- `tokenvm.orders`
- `tokenvm.loan`

Parameters are passed as a list holding one object. At most 128 orders are
returned.

The server handles errors as follows:

- An unknown transaction gives the error `"tx not found"`.
- An unknown asset gives the error `"asset not found"`.
- Any other exception raised by the controller is reported as a JSON-RPC
  error.

`handle(request)` answers one decoded request. The server object is also a
WSGI application, and it only accepts POST. It does not route paths itself.
Mount it at `/tokenapi` beneath the chain's base URI, because the client
appends that path.

```python
from wsgiref.simple_server import make_server
from tokenvm.jsonrpc import JSONRPCServer
from tokenvm import storage

class Controller:
    def __init__(self, db):
        self.db = db
    def genesis(self):
        return {}
    def get_transaction(self, tx_id):
        return storage.get_transaction(self.db, tx_id)
    def get_asset_from_state(self, asset):
        return storage.get_asset_from_state(self.db.read_state, asset)
    def get_balance_from_state(self, public_key, asset):
        return storage.get_balance_from_state(self.db.read_state, public_key, asset)
    def orders(self, pair, limit):
        return []
    def get_loan_from_state(self, asset, destination):
        return storage.get_loan_from_state(self.db.read_state, asset, destination)

app = JSONRPCServer(Controller(storage.MemoryDatabase()))
make_server("localhost", 8000, app).serve_forever()
```

## Client

```python
from tokenvm.jsonrpc import JSONRPCClient

client = JSONRPCClient("http://localhost:8000", chain_id)
print(client.balance(address, asset))
success = client.wait_for_transaction(tx_id)
```

The client methods behave as follows:

- `tx` returns a `TxInfo`, or `None` while the transaction is unknown.
- `asset` returns an `AssetInfo`, or `None` if the asset does not exist.
- `genesis` is fetched once and then cached.
- Other server errors raise `JSONRPCError`.

`wait_for_balance` and `wait_for_transaction` poll every `poll_interval`
seconds, 0.5 by default. The `timeout` attribute is `None` by default, which
means waiting indefinitely. When it is set, a wait that runs past it raises
`TimeoutError`. Each HTTP request uses `request_timeout`, 30 seconds by
default.

## What this package does not do

It stores and serves state, but does not run a chain. The package does not
provide any of the following:

- transaction execution;
- block building;
- signing;
- a genesis definition;
- an order book;
- a command-line program.

A controller holding such logic must be supplied to `JSONRPCServer`.

## Tests

```
pytest
```