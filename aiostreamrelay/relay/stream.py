"""Audio format and frame stream primitives shared by pipelines and sinks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import suppress
from dataclasses import dataclass

from aiostreamrelay.models.channel import StreamSettings

logger = logging.getLogger(__name__)

_FFMPEG_SAMPLE_FORMATS = {16: "s16le", 24: "s24le", 32: "s32le"}


@dataclass(frozen=True)
class AudioFormat:
    """Audio format of the relayed stream."""

    sample_rate: int = 48000
    """Sample rate in Hz (e.g., 44100, 48000)."""
    bit_depth: int = 16
    """Bit depth in bits per sample (16, 24, or 32)."""
    channels: int = 2
    """Number of audio channels (1 for mono, 2 for stereo)."""

    @classmethod
    def from_settings(cls, settings: StreamSettings) -> AudioFormat:
        """Build the output format configured in the stream settings."""
        return cls(
            sample_rate=settings.sample_rate,
            bit_depth=settings.bit_depth,
            channels=settings.channels,
        )

    @property
    def frame_stride(self) -> int:
        """Bytes per PCM sample frame (one sample for every channel)."""
        return self.channels * (self.bit_depth // 8)

    @property
    def ffmpeg_format(self) -> str:
        """Raw PCM muxer name understood by ffmpeg."""
        try:
            return _FFMPEG_SAMPLE_FORMATS[self.bit_depth]
        except KeyError:
            raise ValueError(f"Unsupported bit depth: {self.bit_depth}") from None

    def bytes_per_duration(self, duration_ms: int) -> int:
        """Return the byte size of duration_ms of audio, aligned to whole sample frames."""
        samples = self.sample_rate * duration_ms // 1000
        return max(samples, 1) * self.frame_stride


class FrameStream:
    """
    Bounded stream of PCM frames from one pipeline to one sink.

    Frames are consumed with ``async for``. When the consumer falls behind and
    the buffer is full, the oldest frame is dropped, since a live feed must not
    lag further and further behind real time.
    """

    def __init__(self, audio_format: AudioFormat, *, max_frames: int = 50) -> None:
        """
        Initialize a frame stream.

        Args:
            audio_format: Format of the PCM bytes carried by this stream.
            max_frames: Number of frames to buffer before dropping the oldest.
        """
        self.audio_format = audio_format
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=max_frames)
        self._closed = False
        self._dropped = 0

    @property
    def closed(self) -> bool:
        """True once the producer closed the stream."""
        return self._closed

    @property
    def dropped(self) -> int:
        """Number of frames dropped because the consumer fell behind."""
        return self._dropped

    def _make_room(self) -> None:
        if self._queue.full():
            with suppress(asyncio.QueueEmpty):
                self._queue.get_nowait()
                self._dropped += 1

    def put(self, frame: bytes) -> None:
        """Queue a frame for the consumer. Ignored after close()."""
        if self._closed or not frame:
            return
        self._make_room()
        self._queue.put_nowait(frame)

    def close(self) -> None:
        """Signal end of stream to the consumer. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._make_room()
        self._queue.put_nowait(None)
        if self._dropped:
            logger.debug("Frame stream closed after dropping %d frame(s)", self._dropped)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        """Yield frames until the stream is closed."""
        while True:
            frame = await self._queue.get()
            if frame is None:
                break
            yield frame
