from __future__ import annotations

import os
import json
from typing import AsyncGenerator, Optional, List

try:
    import redis.asyncio as aioredis
except Exception:  # pragma: no cover
    aioredis = None  # type: ignore

from ..events import bus

GROUP = os.getenv("SSE_GROUP", "sse_gateway")


async def ensure_group(r, stream: str):
    try:
        await r.xgroup_create(name=stream, groupname=GROUP, id="$", mkstream=True)
    except Exception as e:  # BUSYGROUP
        if "BUSYGROUP" in str(e):
            return


def match_filters(js: str, types: Optional[List[str]], service_ids: Optional[List[int]]) -> bool:
    try:
        data = json.loads(js)
        ev = data.get("event", {})
        ok_t = True if not types else ev.get("event_type") in types
        # platform events carry no service id and only pass an unfiltered view
        ok_s = True if not service_ids else ev.get("service_id") in service_ids
        return ok_t and ok_s
    except Exception:
        return False


async def event_stream(types: Optional[List[str]], service_ids: Optional[List[int]]) -> AsyncGenerator[bytes, None]:
    if aioredis is None:  # pragma: no cover
        yield b": redis async client missing\n\n"
        return
    stream = bus.STREAM_EVENTS
    r = aioredis.from_url(bus.REDIS_URL, decode_responses=True)
    await ensure_group(r, stream)
    consumer = os.getenv("SSE_CONSUMER", os.uname().nodename)
    try:
        while True:
            resp = await r.xreadgroup(GROUP, consumer, {stream: ">"}, count=100, block=15000)
            if resp:
                for _stream, entries in resp:
                    for msg_id, fields in entries:
                        js = fields.get("json", "")
                        if match_filters(js, types, service_ids):
                            yield f"event: event\ndata: {js}\n\n".encode()
                        await r.xack(stream, GROUP, msg_id)
            else:
                yield b": keep-alive\n\n"
    finally:
        await r.aclose()
