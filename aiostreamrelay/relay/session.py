"""Supervision state machine keeping one channel on the air."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from aiostreamrelay.models.channel import ChannelDefinition, StreamSettings, clamp_volume
from aiostreamrelay.models.status import SessionStatus
from aiostreamrelay.models.types import (
    FailureReason,
    PipelineEventType,
    SessionState,
    SinkEventType,
)

from .errors import NoActiveSessionError, SinkError, SinkGoneError
from .events import PipelineEvent, SinkEvent
from .pipeline import PipelineFactory, TranscodePipeline
from .stream import AudioFormat, FrameStream

if TYPE_CHECKING:
    from .health import HealthAdvisor

logger = logging.getLogger(__name__)


@dataclass
class _RetryDue:
    """The retry delay elapsed."""


@dataclass
class _StartupTimeout:
    """The pipeline produced no frame within the startup timeout."""


_SessionInput = PipelineEvent | SinkEvent | _RetryDue | _StartupTimeout


class ChannelSession:
    """
    Live supervisory state for one started channel.

    DO NOT CALL THIS CONSTRUCTOR DIRECTLY. Sessions are created by
    StreamSupervisor.start().

    All transitions run while holding ``_lock``. Pipeline events, sink events and
    timer callbacks are tagged with the generation of the attempt that produced
    them and queued on ``_inputs``; the run task handles them one at a time and
    drops any whose generation is no longer current.

    The lock is also held while a pipeline is spawned or stopped, so control
    operations on one channel wait for process spawn and exit. Sessions never
    share a lock, so a slow process only delays its own channel.
    """

    definition: ChannelDefinition
    """Definition of the channel this session plays."""
    sink: Any
    """Sink binding supplied at creation."""
    _state: SessionState
    _source_index: int
    """Index into definition.streams of the current source."""
    _retry_count: int
    """Attempts made on the current source since it was selected."""
    _sources_attempted: int
    """Sources given up on during the current failure episode."""
    _generation: int
    """Bumped on every new attempt and teardown, invalidating older events."""
    _pipeline: TranscodePipeline | None
    _retry_handle: asyncio.TimerHandle | None
    _startup_handle: asyncio.TimerHandle | None
    _bound_generation: int | None
    """Generation of the attempt currently bound to the sink, None if unbound."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        definition: ChannelDefinition,
        sink: Any,
        settings: StreamSettings,
        pipeline_factory: PipelineFactory,
        *,
        health_advisor: HealthAdvisor | None = None,
        on_state_change: Callable[[ChannelSession], None] | None = None,
        on_failed: Callable[[ChannelSession, FailureReason], None] | None = None,
    ) -> None:
        """
        Initialize a session in the CONNECTING state. Nothing runs until open().

        Args:
            loop: The event loop timers and tasks are scheduled on.
            definition: Channel to play.
            sink: Sink binding (see aiostreamrelay.relay.sink for the contract).
            settings: Retry, timeout and format settings.
            pipeline_factory: Creates one pipeline per attempt.
            health_advisor: Optional source liveness hints.
            on_state_change: Called after every state change.
            on_failed: Called once when the session reaches FAILED.
        """
        self._loop = loop
        self.definition = definition
        self.sink = sink
        self._settings = settings
        self._audio_format = AudioFormat.from_settings(settings)
        self._pipeline_factory = pipeline_factory
        self._health_advisor = health_advisor
        self._on_state_change = on_state_change
        self._on_failed = on_failed
        self._state = SessionState.CONNECTING
        self._source_index = 0
        self._retry_count = 0
        self._sources_attempted = 0
        self._volume = clamp_volume(definition.volume)
        self._started_at: float | None = None
        self._last_error: FailureReason | None = None
        self._attempts = 0
        self._generation = 0
        self._pipeline = None
        self._pump_task: asyncio.Task[None] | None = None
        self._run_task: asyncio.Task[None] | None = None
        self._inputs: asyncio.Queue[tuple[int, _SessionInput]] = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._retry_handle = None
        self._startup_handle = None
        self._bound_generation = None
        self._sink_unsub: Callable[[], None] | None = None
        self._first_audio = asyncio.Event()
        self._closed = False
        self._logger = logger.getChild(definition.name)

    @property
    def channel_id(self) -> str:
        """Identifier of the channel."""
        return self.definition.name

    @property
    def state(self) -> SessionState:
        """Current state."""
        return self._state

    @property
    def source_index(self) -> int:
        """0-based index of the current source."""
        return self._source_index

    @property
    def source_count(self) -> int:
        """Number of sources of the channel."""
        return len(self.definition.streams)

    @property
    def current_url(self) -> str:
        """URL of the current source."""
        return self.definition.streams[self._source_index]

    @property
    def retry_count(self) -> int:
        """Attempts made on the current source since it was selected."""
        return self._retry_count

    @property
    def volume(self) -> float:
        """Effective volume multiplier."""
        return self._volume

    @property
    def generation(self) -> int:
        """Current attempt generation."""
        return self._generation

    @property
    def pipeline(self) -> TranscodePipeline | None:
        """Pipeline of the current attempt, if one is live."""
        return self._pipeline

    @property
    def attempts(self) -> int:
        """Total pipelines spawned by this session."""
        return self._attempts

    @property
    def closed(self) -> bool:
        """True once the session was stopped or failed."""
        return self._closed

    @property
    def last_error(self) -> FailureReason | None:
        """Most recent runtime failure."""
        return self._last_error

    def uptime(self) -> float:
        """Seconds since the first successful play, 0 if it never played."""
        if self._started_at is None:
            return 0.0
        return self._loop.time() - self._started_at

    def snapshot(self) -> SessionStatus:
        """Return a read-only status snapshot."""
        return SessionStatus(
            channel_id=self.channel_id,
            display_name=self.definition.display_name,
            state=self._state,
            source_index=self._source_index + 1,
            source_count=self.source_count,
            source_url=self.current_url,
            volume=self._volume,
            uptime_s=round(self.uptime(), 3),
            retry_count=self._retry_count,
            last_error=self._last_error,
        )

    # Control operations

    async def open(self) -> None:
        """Start the first attempt and the run task."""
        self._sink_unsub = self.sink.add_event_listener(self._on_sink_event)
        self._run_task = self._loop.create_task(self._run())
        async with self._lock:
            await self._connect()

    async def wait_for_audio(self, timeout: float) -> bool:
        """Wait up to timeout seconds for the first frame. Returns True if playing."""
        with suppress(TimeoutError):
            await asyncio.wait_for(self._first_audio.wait(), timeout)
        return self._state is SessionState.PLAYING

    async def next(self) -> int:
        """Switch to the next source, wrapping around. Returns the new 0-based index."""
        async with self._lock:
            if self._closed:
                raise NoActiveSessionError(self.channel_id)
            await self._teardown_attempt()
            self._sources_attempted = 0
            self._rotate()
            await self._connect(use_health_hint=False)
            return self._source_index

    async def set_volume(self, level: float) -> float:
        """
        Change the volume and restart the current source with it.

        Volume is applied by the pipeline's audio filter, so the current source
        is restarted. The source index does not change. Returns the clamped volume.
        """
        async with self._lock:
            if self._closed:
                raise NoActiveSessionError(self.channel_id)
            self._volume = clamp_volume(level)
            self._logger.info("Restarting source %d at volume %.2f", self._source_index + 1, self._volume)
            await self._teardown_attempt()
            self._retry_count = 0
            self._sources_attempted = 0
            await self._connect(use_health_hint=False)
            return self._volume

    async def close(self) -> bool:
        """
        Stop the session.

        Returns once the pipeline process is terminated and the sink is unbound.
        Returns False if the session was already closed.
        """
        async with self._lock:
            if self._closed:
                return False
            self._closed = True
            self._set_state(SessionState.STOPPING)
            await self._teardown_attempt()
            self._release_sink_listener()
        await self._stop_run_task()
        self._first_audio.set()
        self._logger.debug("Session closed")
        return True

    # Timer and listener callbacks, these only enqueue work

    def _on_retry_timer(self, generation: int) -> None:
        if self._closed or generation != self._generation:
            self._logger.debug("Ignoring stale retry timer (generation %d)", generation)
            return
        self._retry_handle = None
        self._inputs.put_nowait((generation, _RetryDue()))

    def _on_startup_timer(self, generation: int) -> None:
        if self._closed or generation != self._generation:
            return
        self._startup_handle = None
        self._inputs.put_nowait((generation, _StartupTimeout()))

    def _on_sink_event(self, event: SinkEvent) -> None:
        if self._closed or self._bound_generation is None:
            return
        self._inputs.put_nowait((self._bound_generation, event))

    async def _pump(self, pipeline: TranscodePipeline, generation: int) -> None:
        """Forward the events of one pipeline onto the session queue."""
        while True:
            event = await pipeline.events.get()
            self._inputs.put_nowait((generation, event))
            if event.type is not PipelineEventType.FIRST_FRAME:
                return

    async def _run(self) -> None:
        """Handle queued inputs one at a time."""
        while True:
            generation, item = await self._inputs.get()
            async with self._lock:
                if self._closed:
                    return
                if generation != self._generation:
                    self._logger.debug("Dropping stale %s (generation %d)", type(item).__name__, generation)
                    continue
                await self._handle(item)
                if self._closed:
                    return

    async def _stop_run_task(self) -> None:
        task = self._run_task
        self._run_task = None
        if task is None or task is asyncio.current_task() or task.done():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    # Transitions, always called with _lock held

    async def _handle(self, item: _SessionInput) -> None:
        if isinstance(item, _RetryDue):
            if self._state is SessionState.RETRYING:
                await self._advance_after_retry()
        elif isinstance(item, _StartupTimeout):
            if self._state is SessionState.CONNECTING:
                await self._fail_attempt(
                    FailureReason.SOURCE_UNREACHABLE,
                    f"no audio within {self._settings.startup_timeout}s",
                )
        elif isinstance(item, PipelineEvent):
            if item.type is PipelineEventType.FIRST_FRAME:
                if self._state is SessionState.CONNECTING and item.frames is not None:
                    await self._begin_playback(item.frames)
            else:
                await self._fail_attempt(
                    item.reason or FailureReason.PIPELINE_CRASHED, item.detail
                )
        elif item.type is SinkEventType.GONE:
            await self._fail_terminal(FailureReason.SINK_GONE, item.detail)
        elif self._state is SessionState.PLAYING:
            await self._fail_attempt(
                FailureReason.SINK_ERROR, item.detail or f"sink reported {item.type.value}"
            )

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        self._logger.debug("State %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(self)

    def _rotate(self) -> None:
        self._source_index = (self._source_index + 1) % self.source_count
        self._retry_count = 0
        self._logger.info(
            "Switching to source %d/%d: %s",
            self._source_index + 1,
            self.source_count,
            self.current_url,
        )

    def _apply_health_hint(self) -> None:
        """Skip sources the health advisor reports down, never the last one left."""
        if self._health_advisor is None:
            return
        while self._sources_attempted + 1 < self.source_count and self._health_advisor.is_likely_down(
            self.current_url
        ):
            self._logger.info("Skipping source %d, health probe reports it down", self._source_index + 1)
            self._sources_attempted += 1
            self._rotate()

    async def _connect(self, *, use_health_hint: bool = True) -> None:
        """Spawn a pipeline for the current source and enter CONNECTING."""
        if use_health_hint:
            self._apply_health_hint()
        self._generation += 1
        generation = self._generation
        self._attempts += 1
        self._set_state(SessionState.CONNECTING)
        self._logger.debug(
            "Connecting to source %d/%d (attempt %d): %s",
            self._source_index + 1,
            self.source_count,
            self._retry_count + 1,
            self.current_url,
        )
        self._startup_handle = self._loop.call_later(
            self._settings.startup_timeout, self._on_startup_timer, generation
        )
        try:
            pipeline = self._pipeline_factory(self.current_url, self._audio_format, self._volume)
            self._pipeline = pipeline
            self._pump_task = self._loop.create_task(self._pump(pipeline, generation))
            await pipeline.start()
        except Exception as err:
            # Reported to the run task as a failure of this attempt
            self._logger.exception("Unexpected error starting pipeline")
            self._inputs.put_nowait(
                (
                    generation,
                    PipelineEvent(
                        PipelineEventType.FAILURE,
                        reason=FailureReason.SOURCE_UNREACHABLE,
                        detail=repr(err),
                    ),
                )
            )

    async def _begin_playback(self, frames: FrameStream) -> None:
        if self._startup_handle is not None:
            self._startup_handle.cancel()
            self._startup_handle = None
        try:
            await self.sink.bind(frames)
        except SinkGoneError as err:
            await self._fail_terminal(FailureReason.SINK_GONE, str(err))
            return
        except SinkError as err:
            await self._fail_attempt(FailureReason.SINK_ERROR, str(err))
            return
        except Exception as err:
            self._logger.exception("Unexpected error binding sink")
            await self._fail_attempt(FailureReason.SINK_ERROR, repr(err))
            return
        self._bound_generation = self._generation
        self._retry_count = 0
        self._sources_attempted = 0
        if self._started_at is None:
            self._started_at = self._loop.time()
        self._logger.info(
            "Playing source %d/%d: %s", self._source_index + 1, self.source_count, self.current_url
        )
        self._set_state(SessionState.PLAYING)
        self._first_audio.set()

    async def _fail_attempt(self, reason: FailureReason, detail: str | None) -> None:
        """Enter RETRYING, or FAILED when no source is left to try."""
        self._last_error = reason
        await self._teardown_attempt()
        self._retry_count += 1
        self._logger.warning(
            "Source %d/%d failed (%s, attempt %d/%d): %s",
            self._source_index + 1,
            self.source_count,
            reason.value,
            self._retry_count,
            self._settings.max_retries,
            detail,
        )
        if (
            self._retry_count >= self._settings.max_retries
            and self._sources_attempted + 1 >= self.source_count
        ):
            await self._fail_terminal(FailureReason.ALL_SOURCES_EXHAUSTED, detail)
            return
        self._set_state(SessionState.RETRYING)
        self._retry_handle = self._loop.call_later(
            self._settings.retry_delay, self._on_retry_timer, self._generation
        )

    async def _advance_after_retry(self) -> None:
        if self._retry_count >= self._settings.max_retries:
            self._sources_attempted += 1
            self._rotate()
        await self._connect()

    async def _fail_terminal(self, reason: FailureReason, detail: str | None) -> None:
        self._last_error = reason
        await self._teardown_attempt()
        self._release_sink_listener()
        self._closed = True
        self._logger.error("Channel %s failed (%s): %s", self.channel_id, reason.value, detail)
        self._set_state(SessionState.FAILED)
        self._first_audio.set()
        if self._on_failed is not None:
            self._on_failed(self, reason)

    async def _teardown_attempt(self) -> None:
        """Release the pipeline and the sink binding of the current attempt."""
        self._generation += 1
        for handle in (self._retry_handle, self._startup_handle):
            if handle is not None:
                handle.cancel()
        self._retry_handle = None
        self._startup_handle = None

        pump_task = self._pump_task
        self._pump_task = None
        if pump_task is not None and not pump_task.done():
            pump_task.cancel()
            with suppress(asyncio.CancelledError):
                await pump_task

        pipeline = self._pipeline
        self._pipeline = None
        if pipeline is not None:
            await pipeline.stop()

        if self._bound_generation is not None:
            self._bound_generation = None
            try:
                await self.sink.unbind()
            except Exception:
                self._logger.exception("Error unbinding sink")

    def _release_sink_listener(self) -> None:
        if self._sink_unsub is not None:
            self._sink_unsub()
            self._sink_unsub = None
