from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from smartread.exceptions import AudioDecodeError

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 24000
BYTES_PER_SAMPLE = 2

SLOT_NARRATION = "narration"
SLOT_SELECTION = "selection"
SLOT_LECTURE = "lecture"


@dataclass(frozen=True)
class AudioBuffer:
    pcm: bytes
    sample_rate: int = DEFAULT_SAMPLE_RATE
    channels: int = 1

    @property
    def frames(self) -> int:
        return len(self.pcm) // (BYTES_PER_SAMPLE * self.channels)

    @property
    def duration(self) -> float:
        return self.frames / float(self.sample_rate)


def decode_audio(payload: str | bytes, *, sample_rate: int = DEFAULT_SAMPLE_RATE, channels: int = 1) -> AudioBuffer:
    """
    Decode a base64 payload of little-endian 16-bit PCM (the speech model's
    output format) into a playable buffer.
    """
    if not payload:
        raise AudioDecodeError("Empty audio payload")
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AudioDecodeError(f"Audio payload is not valid base64: {e}") from e
    if not raw:
        raise AudioDecodeError("Audio payload decoded to zero bytes")
    if len(raw) % (BYTES_PER_SAMPLE * channels) != 0:
        raise AudioDecodeError(f"Truncated PCM data ({len(raw)} bytes for {channels} channel(s))")
    return AudioBuffer(pcm=raw, sample_rate=sample_rate, channels=channels)


class AudioBackend(Protocol):
    def now(self) -> float: ...

    def start(self, buffer: AudioBuffer, offset: float) -> Any: ...

    def stop(self, handle: Any) -> None: ...

    async def next_frame(self) -> None: ...


class ClockBackend:
    """
    Headless backend: tracks time against the monotonic clock and emits no
    sound. A platform backend with real output keeps the same contract.
    """

    def __init__(self, frame_interval: float = 1 / 60) -> None:
        self.frame_interval = frame_interval
        self.active: set[int] = set()
        self._next_handle = 0

    def now(self) -> float:
        return time.monotonic()

    def start(self, buffer: AudioBuffer, offset: float) -> int:
        self._next_handle += 1
        self.active.add(self._next_handle)
        return self._next_handle

    def stop(self, handle: Any) -> None:
        self.active.discard(handle)

    async def next_frame(self) -> None:
        await asyncio.sleep(self.frame_interval)


class AudioSlot:
    """
    Single-occupancy player. Starting a new playback always stops the current
    source first; `stop()` and `pause()` are no-ops when nothing is active.
    """

    def __init__(self, name: str, backend: AudioBackend) -> None:
        self.name = name
        self.backend = backend
        self.auto_restart = False
        self.buffer: AudioBuffer | None = None
        self.progress = 0.0
        self.is_playing = False
        self._offset = 0.0
        self._start_ref = 0.0
        self._handle: Any = None
        self._ticker: asyncio.Task | None = None
        self._progress_listeners: list[Callable[[float], None]] = []
        self._finished_listeners: list[Callable[[], None]] = []

    @property
    def offset(self) -> float:
        return self._offset

    @property
    def duration(self) -> float:
        return self.buffer.duration if self.buffer else 0.0

    def on_progress(self, callback: Callable[[float], None]) -> None:
        self._progress_listeners.append(callback)

    def on_finished(self, callback: Callable[[], None]) -> None:
        self._finished_listeners.append(callback)

    def _release_source(self) -> None:
        if self._handle is not None:
            try:
                self.backend.stop(self._handle)
            except Exception:
                logger.debug("[%s] backend stop failed", self.name, exc_info=True)
            self._handle = None
        if self._ticker is not None:
            if not self._ticker.done() and self._ticker is not _current_task():
                self._ticker.cancel()
            self._ticker = None

    def play(self, buffer: AudioBuffer | None = None, offset: float = 0.0) -> None:
        buffer = buffer or self.buffer
        if buffer is None:
            raise ValueError(f"No audio loaded in slot {self.name}")
        self._release_source()
        self.buffer = buffer
        duration = buffer.duration
        offset = min(max(offset, 0.0), duration) if duration > 0 else 0.0

        self._handle = self.backend.start(buffer, offset)
        self._start_ref = self.backend.now() - offset
        self._offset = offset
        self.is_playing = True
        self._publish(offset / duration if duration > 0 else 0.0)
        logger.debug("[%s] play from %.2fs / %.2fs", self.name, offset, duration)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the caller drives progress through tick().
            return
        self._ticker = loop.create_task(self._run())

    def play_payload(self, payload: str | bytes, *, sample_rate: int = DEFAULT_SAMPLE_RATE) -> AudioBuffer:
        try:
            buffer = decode_audio(payload, sample_rate=sample_rate)
        except AudioDecodeError:
            self.stop()
            raise
        self.play(buffer, 0.0)
        return buffer

    def pause(self) -> None:
        if not self.is_playing:
            return
        self._offset = max(0.0, self.backend.now() - self._start_ref)
        self._release_source()
        self.is_playing = False

    def resume(self) -> None:
        if self.buffer is None or self.is_playing:
            return
        offset = 0.0 if self.auto_restart or self.progress >= 1.0 else self._offset
        self.play(self.buffer, offset)

    def restart(self) -> None:
        self._offset = 0.0
        self.play(self.buffer, 0.0)

    def stop(self) -> None:
        if self.buffer is None and not self.is_playing and self._handle is None:
            return
        self._release_source()
        self.is_playing = False
        self.buffer = None
        self._offset = 0.0
        self.progress = 0.0

    def tick(self) -> float:
        """
        Recompute progress from the clock; reaching the end stops the slot and
        rewinds the stored offset.
        """
        if not self.is_playing or self.buffer is None:
            return self.progress
        duration = self.buffer.duration
        if duration <= 0:
            self._finish()
            return self.progress
        elapsed = self.backend.now() - self._start_ref
        progress = min(elapsed / duration, 1.0)
        self._publish(progress)
        if progress >= 1.0:
            self._finish()
        return progress

    def _finish(self) -> None:
        self._release_source()
        self.is_playing = False
        self._offset = 0.0
        self._publish(1.0)
        logger.debug("[%s] playback finished", self.name)
        for cb in list(self._finished_listeners):
            cb()

    def _publish(self, progress: float) -> None:
        self.progress = progress
        for cb in list(self._progress_listeners):
            cb(progress)

    async def _run(self) -> None:
        while self.is_playing:
            await self.backend.next_frame()
            self.tick()


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class AudioEngine:
    def __init__(self, backend: AudioBackend | None = None, *, sample_rate: int = DEFAULT_SAMPLE_RATE) -> None:
        self.backend = backend or ClockBackend()
        self.sample_rate = sample_rate
        self.slots: dict[str, AudioSlot] = {
            name: AudioSlot(name, self.backend) for name in (SLOT_NARRATION, SLOT_SELECTION, SLOT_LECTURE)
        }

    @property
    def narration(self) -> AudioSlot:
        return self.slots[SLOT_NARRATION]

    @property
    def selection(self) -> AudioSlot:
        return self.slots[SLOT_SELECTION]

    @property
    def lecture(self) -> AudioSlot:
        return self.slots[SLOT_LECTURE]

    def decode(self, payload: str | bytes) -> AudioBuffer:
        return decode_audio(payload, sample_rate=self.sample_rate)

    def stop_all(self) -> None:
        for slot in self.slots.values():
            slot.stop()

    def close(self) -> None:
        """Stop every slot and detach listeners; the engine is unusable afterwards."""
        for slot in self.slots.values():
            slot.stop()
            slot.buffer = None
            slot._progress_listeners.clear()
            slot._finished_listeners.clear()
