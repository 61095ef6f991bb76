import json
from decimal import Decimal

from prometheus_client import REGISTRY

from src.marketsim.errors import ErrorKind, Failure
from src.marketsim.ledger.bank import Bank
from src.marketsim.store import market as market_mod
from src.marketsim.store.market import Marketplace
from src.marketsim.store.model import OrderStatus


def _setup(buyer_funds=200, journal_path=None):
    m = Marketplace(Bank(clock=lambda: "2024-05-10"), journal_path=journal_path)
    m.register_seller("S1", "sue", "pw")
    m.register_buyer("B1", "bob", "pw")
    m.add_item("S1", "I1", "Sword", 50, 10)
    m.bank.deposit("B1", buyer_funds, "2024-05-10", "topup")
    return m


def _snapshot(m):
    return (
        {aid: (a.balance, list(a.entries)) for aid, a in m.bank.accounts.items()},
        {iid: (i.stock, i.sold_count, i.price) for iid, i in m.items.items()},
        dict(m.orders),
        list(m.buyers["B1"].order_ids),
        list(m.sellers["S1"].sale_ids),
    )


def test_purchase_settles_everything_together():
    m = _setup()
    seller_before = m.bank.get_account("S1").balance
    res = m.purchase("B1", "I1", 3, "2024-05-10")
    assert res
    oid = res.value
    assert oid == "TX000001"
    assert m.bank.get_account("B1").balance == Decimal("50")
    assert m.bank.get_account("S1").balance == seller_before + Decimal("150")
    assert m.items["I1"].stock == 7
    assert m.items["I1"].sold_count == 3
    order = m.orders[oid]
    assert order.status == OrderStatus.PAID
    assert order.total_price == Decimal("150")
    assert order.item_name == "Sword"
    assert len(m.orders) == 1
    assert m.buyers["B1"].order_ids == [oid]
    assert m.sellers["S1"].sale_ids == [oid]
    assert m.bank.get_account("B1").entries[-1].note == "purchase I1"
    assert m.bank.get_account("S1").entries[-1].note == "sale I1"


def test_insufficient_funds_changes_nothing():
    m = _setup(buyer_funds=40)
    before = _snapshot(m)
    res = m.purchase("B1", "I1", 5, "2024-05-10")
    assert res.failure == Failure.INSUFFICIENT_FUNDS
    assert res.kind == ErrorKind.INSUFFICIENT_FUNDS
    assert _snapshot(m) == before


def test_insufficient_stock_changes_nothing():
    m = _setup(buyer_funds=10_000)
    before = _snapshot(m)
    assert m.purchase("B1", "I1", 11).failure == Failure.INSUFFICIENT_STOCK
    assert _snapshot(m) == before


def test_purchase_without_owning_seller_fails():
    m = _setup()
    m.sellers["S1"].item_ids.remove("I1")
    before = _snapshot(m)
    res = m.purchase("B1", "I1", 1)
    assert res.failure == Failure.NO_OWNING_SELLER
    assert res.kind == ErrorKind.DATA_INTEGRITY
    assert _snapshot(m) == before


def test_purchase_argument_and_lookup_failures():
    m = _setup()
    assert m.purchase("B1", "I1", 0).failure == Failure.INVALID_QUANTITY
    assert m.purchase("B1", "I1", -2).failure == Failure.INVALID_QUANTITY
    assert m.purchase("B9", "I1", 1).failure == Failure.BUYER_NOT_FOUND
    assert m.purchase("B1", "I9", 1).failure == Failure.ITEM_NOT_FOUND
    assert m.orders == {}


def test_missing_ledger_accounts_are_reported():
    m = _setup()
    del m.bank.accounts["S1"]
    assert m.purchase("B1", "I1", 1).failure == Failure.SELLER_ACCOUNT_MISSING
    del m.bank.accounts["B1"]
    assert m.purchase("B1", "I1", 1).failure == Failure.BUYER_ACCOUNT_MISSING
    assert m.items["I1"].stock == 10


def test_order_ids_are_sequential_and_skip_taken_ids():
    m = _setup(buyer_funds=1000)
    first = m.purchase("B1", "I1", 1).value
    m.ids.observe("TX000005")
    second = m.purchase("B1", "I1", 1).value
    assert (first, second) == ("TX000001", "TX000006")


def test_complete_order():
    m = _setup()
    oid = m.purchase("B1", "I1", 1).value
    m.register_seller("S2", "sam", "pw")
    assert m.complete_order("S2", oid).failure == Failure.ORDER_NOT_FOUND
    assert m.complete_order("S1", "TX999999").failure == Failure.ORDER_NOT_FOUND
    done = m.complete_order("S1", oid)
    assert done and done.value.status == OrderStatus.COMPLETED
    assert m.orders[oid].status == OrderStatus.COMPLETED
    assert m.complete_order("S1", oid).failure == Failure.INVALID_STATUS
    assert m.list_paid_orders() == []


def test_purchase_emits_event_metrics_and_journal(tmp_path, monkeypatch):
    published = []
    monkeypatch.setattr(market_mod, "publish_event", lambda env: published.append(env))
    journal = tmp_path / "journal.jsonl"
    m = _setup(journal_path=str(journal))

    settled_before = REGISTRY.get_sample_value("purchases_total", {"outcome": "settled"}) or 0.0
    rejected_before = REGISTRY.get_sample_value("purchases_total", {"outcome": "insufficient_stock"}) or 0.0
    oid = m.purchase("B1", "I1", 2).value
    m.purchase("B1", "I1", 50)

    assert REGISTRY.get_sample_value("purchases_total", {"outcome": "settled"}) == settled_before + 1
    assert REGISTRY.get_sample_value("purchases_total", {"outcome": "insufficient_stock"}) == rejected_before + 1

    types = [env.event.event_type for env in published]
    assert types == ["purchase_settled", "purchase_rejected"]
    assert published[0].correlation_id == oid
    assert published[0].event.total == Decimal("100")

    records = [json.loads(line) for line in journal.read_text().splitlines()]
    assert [r["outcome"] for r in records] == ["settled", "insufficient_stock"]
    assert records[0]["subject"] == oid


def test_publish_failure_does_not_undo_purchase(monkeypatch):
    def boom(env):
        raise RuntimeError("bus down")

    monkeypatch.setattr(market_mod, "publish_event", boom)
    m = _setup()
    assert m.purchase("B1", "I1", 1)
    assert m.items["I1"].stock == 9
