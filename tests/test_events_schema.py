import json
from decimal import Decimal

from src.marketsim.events import bus
from src.marketsim.events.schema import (
    EventEnvelope, OrderCompleted, PurchaseRejected, PurchaseSettled, StateSaved,
)


def test_event_envelope_roundtrip():
    evt = PurchaseSettled(ts=1, actor="B1", subject="I1", order_id="TX000001", seller_id="S1",
                          item_id="I1", quantity=3, total=Decimal("150"), date="2024-05-10")
    env = EventEnvelope(correlation_id="TX000001", event=evt)
    js = env.model_dump_json()
    assert "purchase_settled" in js
    back = EventEnvelope.model_validate_json(js)
    assert isinstance(back.event, PurchaseSettled)
    assert back.event.total == Decimal("150")


def test_market_events_models():
    rej = PurchaseRejected(ts=2, actor="B1", item_id="I1", quantity=5, reason="insufficient_funds")
    done = OrderCompleted(ts=3, actor="S1", order_id="TX000001")
    saved = StateSaved(ts=4, actor="system", directory="data_store", accounts=2, orders=1)
    assert rej.event_type == "purchase_rejected"
    assert done.order_id == "TX000001"
    assert saved.tags == []


def test_encode_is_compact_and_keeps_event_fields():
    env = EventEnvelope(correlation_id="c1", event=OrderCompleted(ts=5, actor="S1", order_id="TX000009"))
    line = bus.encode(env)
    assert " " not in line
    data = json.loads(line)
    assert data["event"]["order_id"] == "TX000009"
    assert data["schema_version"] == "v1"


def test_publish_without_redis_only_logs(monkeypatch, caplog):
    monkeypatch.delenv("MARKETSIM_REDIS_URL", raising=False)

    def _no_redis():
        raise AssertionError("redis must not be contacted")

    monkeypatch.setattr(bus, "_get_redis", _no_redis)
    caplog.set_level("INFO", logger="marketsim.events")
    bus.publish(EventEnvelope(correlation_id="c2", event=OrderCompleted(ts=6, actor="S1", order_id="TX000010")))
    assert any("TX000010" in r.getMessage() for r in caplog.records)
