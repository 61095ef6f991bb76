import socket

import pytest

from src.marketsim.events import bus
from src.marketsim.events.schema import EventEnvelope, OrderCompleted


def _redis_up(host='localhost', port=6379):
    try:
        with socket.create_connection((host, port), timeout=0.5):
            return True
    except Exception:
        return False


@pytest.mark.skipif(not _redis_up(), reason="redis not running on localhost:6379")
def test_bus_publish_consume_roundtrip(monkeypatch):
    monkeypatch.setenv('MARKETSIM_REDIS_URL', 'redis://localhost:6379/0')
    env = EventEnvelope(correlation_id='cX', event=OrderCompleted(ts=1, actor='S1', order_id='TX000001'))
    bus.publish(env)
    bus.ensure_group('g1')
    it = bus.consume('g1', 'c1', block_ms=1000)
    msg = next(it)
    assert msg is None or isinstance(msg, tuple)


def test_unreachable_redis_falls_back_to_log(monkeypatch, caplog):
    monkeypatch.setenv('MARKETSIM_REDIS_URL', 'redis://127.0.0.1:1/0')
    caplog.set_level('INFO', logger='marketsim.events')
    bus.publish(EventEnvelope(correlation_id='cY', event=OrderCompleted(ts=2, actor='S1', order_id='TX000002')))
    messages = [r.getMessage() for r in caplog.records]
    assert any('TX000002' in m for m in messages)
    assert any('unavailable' in m for m in messages)
