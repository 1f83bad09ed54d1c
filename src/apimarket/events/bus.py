from __future__ import annotations

import json
import os
import logging

try:
    import redis
except Exception:  # pragma: no cover
    redis = None  # type: ignore

from .schema import EventEnvelope
from .metrics import get_events_total


STREAM_EVENTS = os.getenv("EVENTS_STREAM", "apimarket.events")
STREAM_DLQ = os.getenv("EVENTS_DLQ", "apimarket.dlq")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

log = logging.getLogger("apimarket.events")


def configure(stream: str, dlq: str, redis_url: str) -> None:
    """Point the publisher at the streams named in Settings.events."""
    global STREAM_EVENTS, STREAM_DLQ, REDIS_URL
    STREAM_EVENTS, STREAM_DLQ, REDIS_URL = stream, dlq, redis_url


def _get_redis():
    if redis is None:
        raise RuntimeError("redis client not available")
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def encode(env: EventEnvelope) -> str:
    return json.dumps({
        "schema_version": env.schema_version,
        "correlation_id": env.correlation_id,
        "sequence": env.sequence,
        "event": env.event.model_dump(),
    }, separators=(",", ":"))


def publish(env: EventEnvelope) -> None:
    """Publish a ledger event to Redis Streams and log a single-line JSON for Loki.

    Safe: swallow errors if Redis is not reachable; the ledger has already
    committed the state change this event describes.
    """
    try:
        get_events_total().labels(env.event.event_type).inc()
    except Exception:
        pass

    line = encode(env)
    try:
        r = _get_redis()
    except Exception as e:
        log.debug(f"event stream unavailable: {e}")
        r = None
    if r is not None:
        # main stream first, DLQ when the append is refused
        for stream in (STREAM_EVENTS, STREAM_DLQ):
            try:
                r.xadd(stream, {"json": line})
                break
            except Exception:
                continue
    # Always log for Loki ingestion
    log.info(line)
