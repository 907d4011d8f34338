from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional

import numpy as np
import sounddevice as sd

from originx.telemetry.logging import get_logger

StartCallback = Callable[[], Awaitable[None] | None]


class AudioOutputController:
    """Speaker playback with cooperative interruption support.

    The device plays one clip at a time; later clips wait for the speaker
    instead of cutting the current one off. ``is_playing`` and ``stop`` are
    scoped to a tag so callers only observe and interrupt their own clip.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._speaker = asyncio.Lock()
        self._current_tag: Optional[str] = None
        self._current_done: Optional[asyncio.Event] = None
        self._logger = get_logger(__name__)

    def is_playing(self, tag: str | None = None) -> bool:
        if self._current_tag is None:
            return False
        return tag is None or tag == self._current_tag

    def current_tag(self) -> Optional[str]:
        return self._current_tag

    async def play_pcm16(
        self,
        audio: bytes,
        samplerate: int,
        tag: str,
        on_start: StartCallback | None = None,
    ) -> float:
        """Play little-endian signed 16-bit mono PCM; returns the clip duration in seconds."""
        if not audio:
            self._logger.warning("audio.output.empty_bytes", tag=tag)
            return 0.0
        usable = len(audio) - (len(audio) % 2)
        samples = np.frombuffer(audio[:usable], dtype="<i2").astype(np.float32) / 32768.0
        return await self.play_array(samples, samplerate, tag, on_start=on_start)

    async def play_array(
        self,
        data: np.ndarray,
        samplerate: int,
        tag: str,
        on_start: StartCallback | None = None,
    ) -> float:
        if samplerate <= 0 or data.size == 0:
            self._logger.warning("audio.output.invalid_payload", tag=tag, samplerate=samplerate, frames=int(data.size))
            return 0.0

        duration = data.shape[0] / float(samplerate)
        loop = asyncio.get_running_loop()
        done_event = asyncio.Event()

        def _play() -> None:
            try:
                sd.play(data, samplerate=samplerate, blocking=False)
                sd.wait()
            except Exception as exc:  # pragma: no cover - device errors
                self._logger.error("audio.output.play_error", tag=tag, error=str(exc))
            finally:
                try:
                    sd.stop()
                finally:
                    loop.call_soon_threadsafe(done_event.set)

        async with self._speaker:
            async with self._lock:
                self._current_tag = tag
                self._current_done = done_event
            task: asyncio.Task[None] | None = None
            try:
                if on_start is not None:
                    await _maybe_await(on_start())
                task = asyncio.create_task(asyncio.to_thread(_play))
                await done_event.wait()
            except asyncio.CancelledError:
                if task is not None:
                    sd.stop()
                raise
            finally:
                await self._finalise(task, tag)
        return duration

    async def stop(self, tag: str | None = None) -> bool:
        """Stop current playback if tags match (or any playback when tag is None)."""
        async with self._lock:
            current_tag = self._current_tag
            done = self._current_done
        if current_tag is None:
            return False
        if tag is not None and current_tag != tag:
            return False
        sd.stop()
        if done:
            await done.wait()
        self._logger.info("audio.output.stopped", tag=current_tag)
        return True

    async def _finalise(self, task: asyncio.Task[None] | None, tag: str) -> None:
        try:
            if task is not None:
                await task
        except Exception as exc:  # pragma: no cover - playback thread failure
            self._logger.error("audio.output.task_error", error=str(exc))
        finally:
            async with self._lock:
                if self._current_tag == tag:
                    if self._current_done is not None:
                        self._current_done.set()
                    self._current_tag = None
                    self._current_done = None


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


__all__ = ["AudioOutputController", "StartCallback"]
