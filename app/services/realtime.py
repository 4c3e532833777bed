import asyncio
import json
import logging
import threading
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Protocol

logger = logging.getLogger("uvicorn.error")

CHAT_DELTA_EVENT = "chat:delta"
CHAT_FINAL_EVENT = "chat:final"
KEEPALIVE_SECONDS = 15.0


class UserEventSink(Protocol):
    def send_to_user(self, user_id: int, event_name: str, payload: dict[str, Any]) -> None:
        ...


class UserEventHub:
    """In-process fan-out of events to every open subscription of a user.

    Subscriptions live on the event loop as asyncio queues. Producers may call
    ``send_to_user`` from any thread and never block; events for users with no
    subscriber are dropped.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[int, list[tuple[asyncio.AbstractEventLoop, asyncio.Queue]]] = {}

    def send_to_user(self, user_id: int, event_name: str, payload: dict[str, Any]) -> None:
        with self._lock:
            targets = list(self._subscribers.get(user_id, []))
        if not targets:
            logger.debug("realtime_event_dropped user_id=%s event=%s", user_id, event_name)
            return
        for loop, channel in targets:
            try:
                loop.call_soon_threadsafe(channel.put_nowait, (event_name, payload))
            except RuntimeError:
                logger.debug("realtime_loop_closed user_id=%s event=%s", user_id, event_name)

    @asynccontextmanager
    async def subscribe(self, user_id: int) -> AsyncIterator[asyncio.Queue]:
        entry = (asyncio.get_running_loop(), asyncio.Queue())
        with self._lock:
            self._subscribers.setdefault(user_id, []).append(entry)
        try:
            yield entry[1]
        finally:
            with self._lock:
                remaining = [item for item in self._subscribers.get(user_id, []) if item is not entry]
                if remaining:
                    self._subscribers[user_id] = remaining
                else:
                    self._subscribers.pop(user_id, None)

    def subscriber_count(self, user_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, []))


def format_sse(event_name: str, payload: dict[str, Any]) -> str:
    return f"event: {event_name}\ndata: {json.dumps(payload, ensure_ascii=False, separators=(',', ':'))}\n\n"


async def sse_event_stream(
    hub: UserEventHub, user_id: int, keepalive_seconds: float = KEEPALIVE_SECONDS
) -> AsyncIterator[str]:
    async with hub.subscribe(user_id) as channel:
        yield ": connected\n\n"
        while True:
            try:
                event_name, payload = await asyncio.wait_for(channel.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield format_sse(event_name, payload)


event_hub = UserEventHub()


def get_event_hub() -> UserEventHub:
    return event_hub
