"""
WebSocket event hub for real-time conversation events.

Connections subscribe to conversation rooms (``conversation-{id}``) and
receive ``new-message`` events for those rooms only. Delivery is best
effort: nothing is persisted and room membership ends with the connection.

With ``REDIS_URL`` set, every hub also publishes its events on a shared
channel so connections held by other replicas see them; each replica skips
the events it published itself.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
from typing import Any
from uuid import UUID, uuid4

from fastapi import WebSocket

from app.core.redis_client import get_async_redis_client

logger = logging.getLogger(__name__)

WS_EVENT_CHANNEL = "ws:conversation-events"
NEW_MESSAGE_EVENT = "new-message"
STATE_UPDATED_EVENT = "conversation-state-updated"


def room_name(conversation_id: UUID | str) -> str:
    return f"conversation-{conversation_id}"


def should_deliver_ws_event(event: dict[str, Any], instance_id: str) -> bool:
    """Backplane events are delivered only by replicas that did not publish them."""
    if not event.get("room") or not event.get("type"):
        return False
    return event.get("source_id") != instance_id


class ConversationEventHub:
    """Tracks live connections and their room subscriptions for one process."""

    def __init__(self, instance_id: str | None = None):
        self.instance_id = instance_id or uuid4().hex
        # room -> subscribed connections
        self._rooms: dict[str, set[WebSocket]] = {}
        # connection -> joined rooms
        self._connections: dict[WebSocket, set[str]] = {}
        self._lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._listener_task: asyncio.Task | None = None
        self._pending: set[asyncio.Future | concurrent.futures.Future] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Bind to the running loop and start the backplane listener (if any)."""
        self._loop = asyncio.get_running_loop()
        self._listener_task = await start_websocket_event_listener(self)

    async def stop(self) -> None:
        await stop_websocket_event_listener(self._listener_task)
        self._listener_task = None
        await self.drain()
        async with self._lock:
            self._rooms.clear()
            self._connections.clear()
        self._loop = None

    @property
    def started(self) -> bool:
        return self._loop is not None

    # ------------------------------------------------------------------
    # Connections and rooms
    # ------------------------------------------------------------------

    async def connect(self, websocket: WebSocket) -> None:
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        async with self._lock:
            self._connections.setdefault(websocket, set())

    async def disconnect(self, websocket: WebSocket) -> None:
        """Drop a connection and every room it had joined."""
        async with self._lock:
            self._drop(websocket)

    async def join(self, websocket: WebSocket, conversation_id: UUID | str) -> str:
        room = room_name(conversation_id)
        async with self._lock:
            self._connections.setdefault(websocket, set()).add(room)
            self._rooms.setdefault(room, set()).add(websocket)
        return room

    async def leave(self, websocket: WebSocket, conversation_id: UUID | str) -> str:
        room = room_name(conversation_id)
        async with self._lock:
            self._connections.get(websocket, set()).discard(room)
            members = self._rooms.get(room)
            if members is not None:
                members.discard(websocket)
                if not members:
                    del self._rooms[room]
        return room

    def rooms_for(self, websocket: WebSocket) -> set[str]:
        return set(self._connections.get(websocket, set()))

    def room_size(self, conversation_id: UUID | str) -> int:
        return len(self._rooms.get(room_name(conversation_id), set()))

    def get_total_connections(self) -> int:
        return len(self._connections)

    def _drop(self, websocket: WebSocket) -> None:
        for room in self._connections.pop(websocket, set()):
            members = self._rooms.get(room)
            if members is None:
                continue
            members.discard(websocket)
            if not members:
                del self._rooms[room]

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def deliver_local(self, room: str, message: dict[str, Any]) -> int:
        """Send to every local subscriber of ``room``. Returns the delivered count."""
        async with self._lock:
            connections = self._rooms.get(room, set()).copy()

        if not connections:
            return 0

        data = json.dumps(message, default=str)
        delivered = 0
        closed = []

        for ws in connections:
            try:
                await ws.send_text(data)
                delivered += 1
            except Exception:
                # Connection closed or errored
                closed.append(ws)

        if closed:
            async with self._lock:
                for ws in closed:
                    self._drop(ws)
        return delivered

    async def publish(
        self, conversation_id: UUID | str, event_type: str, data: dict[str, Any]
    ) -> int:
        """Deliver locally, then fan out to other replicas through the backplane."""
        room = room_name(conversation_id)
        delivered = await self.deliver_local(room, {"type": event_type, "data": data})
        await _publish_ws_event(
            {
                "source_id": self.instance_id,
                "room": room,
                "type": event_type,
                "data": data,
            }
        )
        return delivered

    def emit(self, conversation_id: UUID | str, event_type: str, data: dict[str, Any]) -> None:
        """
        Schedule ``publish`` from any thread. Never raises.

        Synchronous services call this after their commit; they do not wait
        for delivery.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Event hub not running; dropping %s event", event_type)
            return

        coro = self.publish(conversation_id, event_type, data)
        try:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                future = loop.create_task(coro)
            else:
                future = asyncio.run_coroutine_threadsafe(coro, loop)
        except RuntimeError:
            coro.close()
            logger.warning("Failed to schedule %s event", event_type, exc_info=True)
            return

        self._pending.add(future)
        future.add_done_callback(self._on_emit_done)

    def _on_emit_done(self, future: asyncio.Future | concurrent.futures.Future) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning("Event delivery failed: %s", error)

    async def drain(self) -> None:
        """Wait for every emitted event scheduled so far."""
        pending = [
            asyncio.wrap_future(f) if isinstance(f, concurrent.futures.Future) else f
            for f in list(self._pending)
        ]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


# ----------------------------------------------------------------------
# Redis backplane
# ----------------------------------------------------------------------

async def _publish_ws_event(event: dict[str, Any]) -> None:
    client = get_async_redis_client()
    if client is None:
        return
    try:
        await client.publish(WS_EVENT_CHANNEL, json.dumps(event, default=str))
    except Exception:
        logger.warning("Failed to publish websocket event", exc_info=True)


async def _listen_for_ws_events(client, hub: ConversationEventHub) -> None:
    pubsub = client.pubsub()
    await pubsub.subscribe(WS_EVENT_CHANNEL)
    try:
        async for raw in pubsub.listen():
            if raw.get("type") != "message":
                continue
            try:
                event = json.loads(raw["data"])
            except (TypeError, ValueError):
                logger.warning("Dropping malformed websocket event")
                continue
            if not should_deliver_ws_event(event, hub.instance_id):
                continue
            await hub.deliver_local(
                event["room"], {"type": event["type"], "data": event.get("data")}
            )
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("WebSocket event listener stopped")
    finally:
        try:
            await pubsub.unsubscribe(WS_EVENT_CHANNEL)
            await pubsub.aclose()
        except Exception:
            logger.debug("WebSocket pubsub cleanup failed", exc_info=True)


async def start_websocket_event_listener(hub: ConversationEventHub) -> asyncio.Task | None:
    """Start the backplane listener. Returns None when Redis is not configured."""
    client = get_async_redis_client()
    if client is None:
        logger.info("REDIS_URL not set; event hub running single-replica")
        return None
    return asyncio.create_task(_listen_for_ws_events(client, hub))


async def stop_websocket_event_listener(task: asyncio.Task | None) -> None:
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
