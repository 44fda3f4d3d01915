"""
Sink side of the relay.

A sink is the destination that renders or transmits audio frames. The
supervisor only relies on this contract:

- ``await bind(frames)`` starts playback of a FrameStream. Raises SinkError
  when playback cannot start, or SinkGoneError when the destination no longer
  exists.
- ``await unbind()`` stops playback. Idempotent.
- ``add_event_listener(callback)`` delivers SinkEvent values (IDLE, ERROR,
  GONE) and returns a function removing the listener.

Any object providing these methods can be used as a sink. FrameSink implements
the contract on top of a single ``write_frame()`` coroutine.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress

from aiostreamrelay.models.types import SinkEventType

from .errors import SinkError, SinkGoneError
from .events import SinkEvent
from .stream import AudioFormat, FrameStream

logger = logging.getLogger(__name__)

SinkEventCallback = Callable[[SinkEvent], None]


class FrameSink:
    """
    Base class for sinks that consume frames one at a time.

    Subclasses implement write_frame() and may override open_output() and
    close_output(). When the frame stream ends the sink reports IDLE; when
    write_frame() raises SinkGoneError it reports GONE, any other exception
    is reported as ERROR.
    """

    _event_cbs: list[SinkEventCallback]
    _play_task: asyncio.Task[None] | None

    def __init__(self, name: str = "sink") -> None:
        """Initialize the sink."""
        self.name = name
        self._event_cbs = []
        self._play_task = None
        self._logger = logger.getChild(name)

    @property
    def playing(self) -> bool:
        """True while a frame stream is being played."""
        return self._play_task is not None and not self._play_task.done()

    def add_event_listener(self, callback: SinkEventCallback) -> Callable[[], None]:
        """
        Register a callback for IDLE, ERROR and GONE events.

        Returns a function to remove the listener.
        """
        self._event_cbs.append(callback)

        def _remove() -> None:
            with suppress(ValueError):
                self._event_cbs.remove(callback)

        return _remove

    def _signal_event(self, event: SinkEvent) -> None:
        for cb in self._event_cbs:
            try:
                cb(event)
            except Exception:
                self._logger.exception("Error in sink event listener")

    async def bind(self, frames: FrameStream) -> None:
        """
        Start playing frames, replacing any stream that is still playing.

        Raises:
            SinkError: If open_output() fails.
        """
        await self.unbind()
        try:
            await self.open_output(frames.audio_format)
        except SinkError:
            raise
        except Exception as err:
            raise SinkError(f"Failed to open output: {err}") from err
        self._play_task = asyncio.get_running_loop().create_task(self._play(frames))
        self._logger.debug("Bound frame stream")

    async def unbind(self) -> None:
        """Stop playback. Safe to call when nothing is bound."""
        task = self._play_task
        self._play_task = None
        if task is None:
            return
        if not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        await self.close_output()
        self._logger.debug("Unbound frame stream")

    async def _play(self, frames: FrameStream) -> None:
        try:
            async for frame in frames:
                await self.write_frame(frame)
        except SinkGoneError as err:
            self._logger.warning("Sink destination is gone: %s", err)
            self._signal_event(SinkEvent(SinkEventType.GONE, detail=str(err)))
        except Exception as err:
            self._logger.warning("Sink playback failed: %s", err)
            self._signal_event(SinkEvent(SinkEventType.ERROR, detail=str(err)))
        else:
            self._logger.debug("Frame stream ended")
            self._signal_event(SinkEvent(SinkEventType.IDLE))

    async def open_output(self, audio_format: AudioFormat) -> None:
        """Prepare the destination for a stream in audio_format."""

    async def close_output(self) -> None:
        """Release the destination after playback stopped."""

    async def write_frame(self, frame: bytes) -> None:
        """Render or transmit one PCM frame."""
        raise NotImplementedError
