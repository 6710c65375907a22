"""Per-conversation table of live server-push connections.

One ``ConnectionRegistry`` is created per process (in the app lifespan) and
handed to everything that needs to push events. A connection belongs to a
single conversation and leaves the table when it closes.
"""

import asyncio
import json
import logging
import threading
from typing import AsyncIterator, Callable

from sourcechat.errors import ConnectionClosed
from sourcechat.models.schemas import ProtocolEvent

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 512

_CLOSED = object()


def encode_event(event: ProtocolEvent | dict) -> str:
    """Serialize an event as one ``data:`` frame terminated by a blank line."""
    payload = event.to_wire() if isinstance(event, ProtocolEvent) else event
    return f"data: {json.dumps(payload, ensure_ascii=False, separators=(',', ':'))}\n\n"


class SSEConnection:
    """A single outbound event stream.

    Frames are buffered in a bounded queue so the producer never waits on the
    network. A full queue means the consumer stopped reading; the write fails
    and the registry drops the connection.
    """

    def __init__(self, conversation_id: str, max_queue: int = DEFAULT_QUEUE_SIZE, label: str = ""):
        self.conversation_id = conversation_id
        self.label = label
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._closed = False
        self._close_callbacks: list[Callable[["SSEConnection"], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def on_close(self, callback: Callable[["SSEConnection"], None]) -> None:
        self._close_callbacks.append(callback)

    def write(self, frame: str) -> None:
        if self._closed:
            raise ConnectionClosed(f"Connection {self.label or id(self)} is closed")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            raise ConnectionClosed(f"Connection {self.label or id(self)} is not keeping up")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass  # the reader sees the closed flag once it drains
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("Connection close callback failed")

    async def frames(self) -> AsyncIterator[str]:
        """Yield raw frames until the connection closes."""
        try:
            while True:
                if self._closed and self._queue.empty():
                    break
                item = await self._queue.get()
                if item is _CLOSED:
                    break
                yield item
        finally:
            # the reader going away (client disconnect) closes the connection
            self.close()

    async def encoded_frames(self) -> AsyncIterator[bytes]:
        # EventSourceResponse passes bytes through untouched
        async for frame in self.frames():
            yield frame.encode("utf-8")


class ConnectionRegistry:
    def __init__(self):
        self._connections: dict[str, set[SSEConnection]] = {}
        self._lock = threading.Lock()

    def attach(self, conversation_id: str, conn: SSEConnection) -> None:
        with self._lock:
            self._connections.setdefault(conversation_id, set()).add(conn)
        conn.on_close(lambda c: self.detach(conversation_id, c))
        logger.debug("Attached connection to conversation %s", conversation_id)

    def detach(self, conversation_id: str, conn: SSEConnection) -> None:
        with self._lock:
            conns = self._connections.get(conversation_id)
            if not conns:
                return
            conns.discard(conn)
            if not conns:
                del self._connections[conversation_id]
        logger.debug("Detached connection from conversation %s", conversation_id)

    def broadcast(self, conversation_id: str, event: ProtocolEvent | dict) -> int:
        """Write an event to every connection of a conversation.

        Returns the number of connections that accepted the frame. A failing
        connection is closed and detached; the others still receive the event.
        """
        frame = encode_event(event)
        with self._lock:
            targets = list(self._connections.get(conversation_id, ()))

        delivered = 0
        failed = []
        for conn in targets:
            try:
                conn.write(frame)
                delivered += 1
            except Exception as e:
                logger.warning("Dropping connection for conversation %s: %s", conversation_id, e)
                failed.append(conn)

        for conn in failed:
            self.detach(conversation_id, conn)
            conn.close()
        return delivered

    def connection_count(self, conversation_id: str | None = None) -> int:
        with self._lock:
            if conversation_id is not None:
                return len(self._connections.get(conversation_id, ()))
            return sum(len(conns) for conns in self._connections.values())

    def conversation_ids(self) -> list[str]:
        with self._lock:
            return list(self._connections)

    def close_all(self) -> None:
        with self._lock:
            conns = [c for group in self._connections.values() for c in group]
        for conn in conns:
            conn.close()
