import os
from decimal import Decimal

from prometheus_client import REGISTRY

from src.marketsim.errors import ErrorKind, Failure
from src.marketsim.ledger.bank import Bank
from src.marketsim.persistence import load_state, save_state
from src.marketsim.persistence import codec
from src.marketsim.store.market import Marketplace
from src.marketsim.store.model import OrderStatus

TODAY = "2024-05-10"


def _clock():
    return TODAY


def _populated():
    m = Marketplace(Bank(clock=_clock))
    m.register_seller("S1", "sue|the,seller", "p%w")
    m.register_buyer("B1", "bob", "line\nbreak")
    m.add_item("S1", "I1", "Sword, sharp", "49.99", 10)
    m.add_item("S1", "I2", "Shield", 30, 5)
    m.bank.deposit("B1", 500, "2024-05-01", "topup, first")
    m.purchase("B1", "I1", 2, "2024-05-09")
    oid = m.purchase("B1", "I2", 1).value
    m.complete_order("S1", oid)
    return m


def _observed(m):
    return (
        {a.account_id: (a.owner_name, a.balance, list(a.entries)) for a in m.bank.accounts.values()},
        {i.item_id: (i.name, i.price, i.stock, i.sold_count) for i in m.items.values()},
        dict(m.orders),
        {b.user_id: (b.username, b.credential, b.order_ids) for b in m.buyers.values()},
        {s.user_id: (s.username, s.credential, s.item_ids, s.sale_ids) for s in m.sellers.values()},
    )


def test_save_then_load_reproduces_state(tmp_path):
    m = _populated()
    assert save_state(m, m.bank, str(tmp_path))
    res = load_state(str(tmp_path), clock=_clock)
    assert res
    loaded, bank = res.value
    assert loaded.bank is bank
    assert _observed(loaded) == _observed(m)
    assert loaded.owner_of("I1") == "S1"
    assert loaded.orders["TX000002"].status == OrderStatus.COMPLETED


def test_loaded_marketplace_keeps_trading(tmp_path):
    m = _populated()
    save_state(m, m.bank, str(tmp_path))
    loaded, _ = load_state(str(tmp_path), clock=_clock).value
    assert loaded.purchase("B1", "I2", 1).value == "TX000003"
    assert loaded.bank.get_account("S1").balance == Decimal("159.98")


def test_delimiters_in_fields_are_escaped(tmp_path):
    m = _populated()
    save_state(m, m.bank, str(tmp_path))
    sellers = (tmp_path / codec.SELLERS_FILE).read_text()
    assert sellers.splitlines()[0] == "S1|sue%7Cthe%2Cseller|p%25w"
    assert "S1,item,I1" in sellers.splitlines()
    assert "S1,sale,TX000001" in sellers.splitlines()
    buyers = (tmp_path / codec.BUYERS_FILE).read_text()
    assert buyers.splitlines()[0] == "B1|bob|line%0Abreak"


def test_untagged_seller_line_is_an_item(tmp_path):
    (tmp_path / codec.ACCOUNTS_FILE).write_text("S1|sue|0\n")
    (tmp_path / codec.ITEMS_FILE).write_text("I1|Sword|50|10|0\n")
    (tmp_path / codec.SELLERS_FILE).write_text("S1|sue|pw\nS1,I1\n")
    res = load_state(str(tmp_path), clock=_clock)
    assert res
    market, _ = res.value
    assert market.sellers["S1"].item_ids == ["I1"]
    assert market.sellers["S1"].sale_ids == []
    assert market.owner_of("I1") == "S1"


def test_missing_principal_account_is_opened(tmp_path):
    (tmp_path / codec.BUYERS_FILE).write_text("B1|bob|pw\r\n\r\n")
    market, bank = load_state(str(tmp_path), clock=_clock).value
    assert bank.get_account("B1").balance == Decimal("0")
    assert market.buyers["B1"].username == "bob"


def test_balance_mismatch_is_corrupt(tmp_path):
    (tmp_path / codec.ACCOUNTS_FILE).write_text("A1|amy|100\nA1,2024-05-01,90,topup\n")
    res = load_state(str(tmp_path), clock=_clock)
    assert res.failure == Failure.CORRUPT_RECORD
    assert res.kind == ErrorKind.DATA_INTEGRITY
    assert "accounts.txt" in res.detail


def test_unknown_status_code_is_corrupt(tmp_path):
    (tmp_path / codec.TRANSACTIONS_FILE).write_text("TX000001|2024-05-10|B1|S1|I1|Sword|1|50|7\n")
    assert load_state(str(tmp_path)).failure == Failure.CORRUPT_RECORD


def test_short_record_is_corrupt(tmp_path):
    (tmp_path / codec.ITEMS_FILE).write_text("I1|Sword|50\n")
    res = load_state(str(tmp_path))
    assert res.failure == Failure.CORRUPT_RECORD
    assert "items.txt:1" in res.detail


def test_missing_directory_is_io_error(tmp_path):
    res = load_state(str(tmp_path / "nope"))
    assert res.failure == Failure.IO_ERROR
    assert res.kind == ErrorKind.IO_FAILURE


def test_failed_load_does_not_touch_live_state(tmp_path):
    m = _populated()
    before = _observed(m)
    (tmp_path / codec.ACCOUNTS_FILE).write_text("garbage line without fields\n")
    assert not load_state(str(tmp_path))
    assert _observed(m) == before


def test_save_leaves_no_staging_dirs_and_counts(tmp_path):
    m = _populated()
    before = REGISTRY.get_sample_value("persistence_ops_total", {"op": "save", "status": "ok"}) or 0.0
    save_state(m, m.bank, str(tmp_path))
    save_state(m, m.bank, str(tmp_path))
    assert sorted(os.listdir(tmp_path)) == sorted(codec.ALL_FILES)
    after = REGISTRY.get_sample_value("persistence_ops_total", {"op": "save", "status": "ok"})
    assert after == before + 2


def test_save_into_a_file_path_fails(tmp_path):
    target = tmp_path / "occupied"
    target.write_text("x")
    m = _populated()
    res = save_state(m, m.bank, str(target))
    assert res.failure == Failure.IO_ERROR


def test_negative_item_fields_are_corrupt(tmp_path):
    for row in ("I1|Sword|-1|10|0", "I1|Sword|50|-3|0", "I1|Sword|50|10|-1"):
        (tmp_path / codec.ITEMS_FILE).write_text(row + "\n")
        res = load_state(str(tmp_path))
        assert res.failure == Failure.CORRUPT_RECORD
        assert "items.txt:1" in res.detail


def test_non_finite_amounts_are_corrupt(tmp_path):
    (tmp_path / codec.ACCOUNTS_FILE).write_text("A1|amy|NaN\nA1,2024-05-01,NaN,topup\n")
    assert load_state(str(tmp_path)).failure == Failure.CORRUPT_RECORD
    (tmp_path / codec.ACCOUNTS_FILE).write_text("")
    (tmp_path / codec.ITEMS_FILE).write_text("I1|Sword|Infinity|1|0\n")
    assert load_state(str(tmp_path)).failure == Failure.CORRUPT_RECORD
