from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from originx.telemetry.logging import get_logger

MessageHandler = Callable[[str, dict[str, Any]], Awaitable[None]]
DisconnectHandler = Callable[[str], Awaitable[None]]


class FloatingUIBridge:
    """Per-user state socket: state events and commands out, recognition and playback events in."""

    def __init__(
        self,
        on_message: MessageHandler | None = None,
        on_disconnect: DisconnectHandler | None = None,
    ) -> None:
        self._clients: defaultdict[str, set[WebSocket]] = defaultdict(set)
        self._router = APIRouter()
        self._router.add_api_websocket_route("/ws/state/{user_id}", self._websocket_handler)
        self._lock = asyncio.Lock()
        self._on_message = on_message
        self._on_disconnect = on_disconnect
        self._logger = get_logger(__name__)

    @property
    def router(self) -> APIRouter:
        return self._router

    def set_message_handler(self, handler: MessageHandler | None) -> None:
        self._on_message = handler

    def set_disconnect_handler(self, handler: DisconnectHandler | None) -> None:
        """Called once a user's last socket has closed."""
        self._on_disconnect = handler

    def client_count(self, user_id: str) -> int:
        return len(self._clients.get(user_id, ()))

    async def _websocket_handler(self, websocket: WebSocket, user_id: str) -> None:
        await websocket.accept()
        async with self._lock:
            self._clients[user_id].add(websocket)
        self._logger.info("ui.client.connected", user_id=user_id, count=self.client_count(user_id))
        try:
            while True:
                message = await websocket.receive_json()
                if not isinstance(message, dict):
                    continue
                if self._on_message is not None:
                    try:
                        await self._on_message(user_id, message)
                    except Exception:
                        self._logger.exception("ui.message.failed", user_id=user_id, type=message.get("type"))
        except WebSocketDisconnect:
            pass
        finally:
            async with self._lock:
                self._clients[user_id].discard(websocket)
                last = not self._clients[user_id]
                if last:
                    del self._clients[user_id]
            self._logger.info("ui.client.disconnected", user_id=user_id, count=self.client_count(user_id))
            if last and self._on_disconnect is not None:
                try:
                    await self._on_disconnect(user_id)
                except Exception:
                    self._logger.exception("ui.disconnect.failed", user_id=user_id)

    async def publish_state(self, user_id: str, state: str, payload: dict[str, Any] | None = None) -> None:
        await self._broadcast(user_id, {"state": state, "payload": payload or {}})

    async def send_command(self, user_id: str, command: str, payload: dict[str, Any] | None = None) -> int:
        """Send a command to every socket of ``user_id``; return how many received it."""
        return await self._broadcast(user_id, {"command": command, "payload": payload or {}})

    async def _broadcast(self, user_id: str, message: dict[str, Any]) -> int:
        async with self._lock:
            clients = list(self._clients.get(user_id, ()))
        if not clients:
            return 0
        results = await asyncio.gather(*(client.send_json(message) for client in clients), return_exceptions=True)
        return sum(1 for result in results if not isinstance(result, BaseException))


__all__ = ["DisconnectHandler", "FloatingUIBridge", "MessageHandler"]
