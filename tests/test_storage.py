import pytest

from tokenvm.storage import (
    UINT64_MAX,
    AssetRecord,
    InvalidBalanceError,
    MemoryDatabase,
    NotFoundError,
    OrderRecord,
    TransactionRecord,
    add_balance,
    add_loan,
    delete_asset,
    delete_balance,
    delete_order,
    get_asset,
    get_asset_from_state,
    get_balance,
    get_balance_from_state,
    get_loan,
    get_loan_from_state,
    get_order,
    get_transaction,
    height_key,
    incoming_warp_key_prefix,
    outgoing_warp_key_prefix,
    prefix_asset_key,
    prefix_balance_key,
    prefix_loan_key,
    prefix_order_key,
    prefix_tx_key,
    set_asset,
    set_balance,
    set_loan,
    set_order,
    store_transaction,
    sub_balance,
    sub_loan,
)

TX_ID = bytes(range(32))
ASSET = b"\x11" * 32
OTHER_ASSET = b"\x22" * 32
DESTINATION = b"\x33" * 32
OWNER = b"\x44" * 32
EMPTY = bytes(32)


@pytest.fixture
def db():
    return MemoryDatabase()


def test_memory_database_missing_key(db):
    with pytest.raises(NotFoundError):
        db.get_value(b"missing")


def test_memory_database_read_state(db):
    db.insert(b"a", b"1")
    assert db.read_state([b"a", b"b"]) == [b"1", None]
    db.remove(b"a")
    assert db.read_state([b"a"]) == [None]


def test_key_layouts():
    assert prefix_tx_key(TX_ID) == b"\x00" + TX_ID
    assert prefix_balance_key(OWNER, ASSET) == b"\x00" + OWNER + ASSET
    assert prefix_asset_key(ASSET) == b"\x01" + ASSET
    assert prefix_order_key(TX_ID) == b"\x02" + TX_ID
    assert prefix_loan_key(ASSET, DESTINATION) == b"\x03" + ASSET + DESTINATION
    assert height_key() == b"\x04"
    assert incoming_warp_key_prefix(ASSET, TX_ID) == b"\x05" + ASSET + TX_ID
    assert outgoing_warp_key_prefix(TX_ID) == b"\x06" + TX_ID


def test_key_rejects_wrong_length():
    with pytest.raises(ValueError):
        prefix_tx_key(b"\x00" * 31)


def test_transaction_round_trip(db):
    store_transaction(db, TX_ID, 1_700_000_000, True, 472)
    assert get_transaction(db, TX_ID) == TransactionRecord(1_700_000_000, True, 472)


def test_transaction_negative_timestamp_and_failure(db):
    store_transaction(db, TX_ID, -5, False, 0)
    assert get_transaction(db, TX_ID) == TransactionRecord(-5, False, 0)


def test_transaction_wire_bytes(db):
    store_transaction(db, TX_ID, 1, True, 2)
    raw = db.get_value(prefix_tx_key(TX_ID))
    assert raw == (1).to_bytes(8, "big") + b"\x01" + (2).to_bytes(8, "big")


def test_missing_transaction(db):
    assert get_transaction(db, TX_ID) is None


def test_balance_defaults_to_zero(db):
    assert get_balance(db, OWNER, ASSET) == 0
    assert get_balance_from_state(db.read_state, OWNER, ASSET) == 0


def test_balance_set_and_get(db):
    set_balance(db, OWNER, ASSET, 5000)
    assert get_balance(db, OWNER, ASSET) == 5000
    assert get_balance_from_state(db.read_state, OWNER, ASSET) == 5000
    assert db.get_value(prefix_balance_key(OWNER, ASSET)) == (5000).to_bytes(8, "big")
    assert get_balance(db, OWNER, OTHER_ASSET) == 0


def test_delete_balance(db):
    set_balance(db, OWNER, ASSET, 7)
    delete_balance(db, OWNER, ASSET)
    assert prefix_balance_key(OWNER, ASSET) not in db


def test_add_and_sub_balance(db):
    add_balance(db, OWNER, ASSET, 100)
    add_balance(db, OWNER, ASSET, 50)
    sub_balance(db, OWNER, ASSET, 30)
    assert get_balance(db, OWNER, ASSET) == 120


def test_sub_balance_to_zero_removes_record(db):
    set_balance(db, OWNER, ASSET, 10)
    sub_balance(db, OWNER, ASSET, 10)
    assert prefix_balance_key(OWNER, ASSET) not in db
    assert get_balance(db, OWNER, ASSET) == 0


def test_add_balance_overflow(db):
    set_balance(db, OWNER, ASSET, UINT64_MAX)
    with pytest.raises(InvalidBalanceError, match="invalid balance"):
        add_balance(db, OWNER, ASSET, 1)
    assert get_balance(db, OWNER, ASSET) == UINT64_MAX


def test_sub_balance_underflow(db):
    set_balance(db, OWNER, ASSET, 5)
    with pytest.raises(InvalidBalanceError, match="could not subtract balance"):
        sub_balance(db, OWNER, ASSET, 6)
    assert get_balance(db, OWNER, ASSET) == 5


def test_asset_round_trip(db):
    set_asset(db, ASSET, b"TKN", 1000, OWNER, True)
    expected = AssetRecord(b"TKN", 1000, OWNER, True)
    assert get_asset(db, ASSET) == expected
    assert get_asset_from_state(db.read_state, ASSET) == expected


def test_asset_wire_bytes(db):
    set_asset(db, ASSET, b"ab", 3, OWNER, False)
    raw = db.get_value(prefix_asset_key(ASSET))
    assert raw == b"\x00\x02ab" + (3).to_bytes(8, "big") + OWNER + b"\x00"


def test_asset_empty_metadata(db):
    set_asset(db, ASSET, b"", 0, EMPTY, False)
    assert get_asset(db, ASSET) == AssetRecord(b"", 0, EMPTY, False)


def test_asset_missing_and_delete(db):
    assert get_asset(db, ASSET) is None
    set_asset(db, ASSET, b"x", 1, OWNER, False)
    delete_asset(db, ASSET)
    assert get_asset_from_state(db.read_state, ASSET) is None


def test_asset_metadata_too_long(db):
    with pytest.raises(ValueError):
        set_asset(db, ASSET, b"x" * 70000, 1, OWNER, False)


def test_order_round_trip(db):
    set_order(db, TX_ID, ASSET, 1, OTHER_ASSET, 2, 4, OWNER)
    assert get_order(db, TX_ID) == OrderRecord(ASSET, 1, OTHER_ASSET, 2, 4, OWNER)


def test_order_missing_and_delete(db):
    assert get_order(db, TX_ID) is None
    set_order(db, TX_ID, ASSET, 4, OTHER_ASSET, 1, 5, OWNER)
    delete_order(db, TX_ID)
    assert get_order(db, TX_ID) is None


def test_loan_set_and_get(db):
    assert get_loan(db, ASSET, DESTINATION) == 0
    set_loan(db, ASSET, DESTINATION, 110)
    assert get_loan(db, ASSET, DESTINATION) == 110
    assert get_loan_from_state(db.read_state, ASSET, DESTINATION) == 110


def test_add_and_sub_loan(db):
    add_loan(db, EMPTY, DESTINATION, 2000)
    add_loan(db, EMPTY, DESTINATION, 900)
    sub_loan(db, EMPTY, DESTINATION, 2000)
    assert get_loan(db, EMPTY, DESTINATION) == 900
    sub_loan(db, EMPTY, DESTINATION, 900)
    assert prefix_loan_key(EMPTY, DESTINATION) not in db


def test_loan_errors(db):
    set_loan(db, ASSET, DESTINATION, UINT64_MAX)
    with pytest.raises(InvalidBalanceError, match="could not add loan"):
        add_loan(db, ASSET, DESTINATION, 1)
    with pytest.raises(InvalidBalanceError, match="could not subtract loan"):
        sub_loan(db, OTHER_ASSET, DESTINATION, 1)