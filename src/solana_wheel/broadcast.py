from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

log = logging.getLogger(__name__)


class Broadcaster:
    """
    Fan-out of wheel events to live clients. A client is anything with an
    async `send_json` (FastAPI WebSocket in production). Clients whose send
    fails are dropped.
    """

    def __init__(self) -> None:
        self._clients: Set[Any] = set()
        self._lock = asyncio.Lock()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect(self, client: Any, snapshot: Dict[str, Any]) -> None:
        await client.send_json({"type": "init", "data": snapshot})
        async with self._lock:
            self._clients.add(client)
        log.info("Client connected (%d total)", len(self._clients))

    async def disconnect(self, client: Any) -> None:
        async with self._lock:
            self._clients.discard(client)
        log.info("Client disconnected (%d remaining)", len(self._clients))

    async def publish(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        message: Dict[str, Any] = {"type": event_type}
        if data is not None:
            message["data"] = data

        async with self._lock:
            clients = list(self._clients)
        if not clients:
            return

        dead: List[Any] = []
        for client in clients:
            try:
                await client.send_json(message)
            except Exception as e:
                log.debug("Send to client failed (%s); dropping it", e)
                dead.append(client)

        if dead:
            async with self._lock:
                self._clients.difference_update(dead)
