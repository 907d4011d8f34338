from __future__ import annotations

from typing import Protocol

from originx.telemetry.logging import get_logger


class RecognitionSource(Protocol):
    """Microphone-side speech recognition that can be hard-started and hard-stopped."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class CommandChannel(Protocol):
    async def send_command(self, user_id: str, command: str, payload: dict | None = None) -> int: ...


class RemoteRecognitionSource:
    """Recognition running in the user's browser, driven by commands over the state socket.

    Results flow back through the socket as ``recognition.result``,
    ``recognition.error`` and ``recognition.end`` messages.
    """

    def __init__(self, channel: CommandChannel, user_id: str, language: str = "en-US") -> None:
        self._channel = channel
        self._user_id = user_id
        self._language = language
        self._logger = get_logger(__name__)

    async def start(self) -> None:
        delivered = await self._channel.send_command(
            self._user_id,
            "recognition.start",
            {"language": self._language, "continuous": True, "interim_results": True},
        )
        if not delivered:
            self._logger.warning("recognition.remote.no_client", user_id=self._user_id, command="start")

    async def stop(self) -> None:
        await self._channel.send_command(self._user_id, "recognition.stop")


__all__ = ["CommandChannel", "RecognitionSource", "RemoteRecognitionSource"]
