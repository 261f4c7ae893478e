"""QueueBroadcaster — fans state out to every connected WebSocket client."""
import asyncio
import logging
from typing import Any

from ..models import QueueState

logger = logging.getLogger(__name__)

QUEUE_UPDATE = "queue:update"


class QueueBroadcaster:
    def __init__(self, maxsize: int = 50):
        self._maxsize = maxsize
        self._subscribers: dict[str, asyncio.Queue] = {}

    def subscribe(self, client_id: str) -> asyncio.Queue:
        """Register a new client. Returns a queue that receives (event, data) tuples."""
        q: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers[client_id] = q
        return q

    def unsubscribe(self, client_id: str):
        self._subscribers.pop(client_id, None)

    @property
    def client_count(self) -> int:
        return len(self._subscribers)

    async def broadcast(self, event: str, data: Any):
        """Push an event to all connected clients."""
        dead = []
        for cid, q in self._subscribers.items():
            try:
                q.put_nowait((event, data))
            except asyncio.QueueFull:
                # Client too slow — drop oldest
                try:
                    q.get_nowait()
                    q.put_nowait((event, data))
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    dead.append(cid)
        for cid in dead:
            logger.warning("Dropping stalled client %s", cid)
            self._subscribers.pop(cid, None)

    async def publish(self, state: QueueState):
        await self.broadcast(QUEUE_UPDATE, state.to_dict())
