from __future__ import annotations

import json
import logging
import os

import redis

from .schema import EventEnvelope
from ..metrics.market import get_events_total


STREAM_EVENTS = os.getenv("MARKETSIM_EVENTS_STREAM", "marketsim.events")
STREAM_DLQ = os.getenv("MARKETSIM_EVENTS_DLQ", "marketsim.dlq")

log = logging.getLogger("marketsim.events")


def _redis_url() -> str:
    return os.getenv("MARKETSIM_REDIS_URL", "")


def _get_redis():
    return redis.Redis.from_url(_redis_url(), decode_responses=True)


def encode(env: EventEnvelope) -> str:
    return json.dumps(env.model_dump(mode="json"), separators=(",", ":"))


def publish(env: EventEnvelope) -> None:
    """Publish an event to the Redis stream (when configured) and log it as one JSON line.

    Stream errors are logged and dropped so a missing broker never blocks a purchase.
    """
    try:
        get_events_total().labels(env.event.event_type).inc()
    except Exception:
        pass

    line = encode(env)
    if _redis_url():
        try:
            _get_redis().xadd(STREAM_EVENTS, {"json": line})
        except redis.RedisError as e:
            log.warning(f"event stream unavailable ({e}); routing to {STREAM_DLQ}")
            try:
                _get_redis().xadd(STREAM_DLQ, {"json": line})
            except redis.RedisError:
                log.warning("dead-letter stream unavailable; event kept in log only")
    log.info(line)


def ensure_group(group: str) -> None:
    r = _get_redis()
    try:
        r.xgroup_create(name=STREAM_EVENTS, groupname=group, id="$", mkstream=True)
    except redis.ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise


def consume(group: str, consumer: str, block_ms: int = 15000):
    """Generator yielding (id, json_str) from the events stream consumer group.

    Yields None when a block window passes without messages. Caller is
    responsible for XACK.
    """
    r = _get_redis()
    ensure_group(group)
    while True:
        resp = r.xreadgroup(group, consumer, {STREAM_EVENTS: ">"}, count=100, block=block_ms)
        if not resp:
            yield None
            continue
        for _stream, entries in resp:
            for msg_id, fields in entries:
                yield (msg_id, fields.get("json", ""))
