"""Stream supervisor keeping many channels on the air at once."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from typing import Any

from aiostreamrelay.models.channel import StreamSettings
from aiostreamrelay.models.status import NextResult, RelayStatus, SessionStatus, StartSummary
from aiostreamrelay.models.types import FailureReason

from .catalog import ChannelCatalog
from .errors import AlreadyActiveError, NoActiveSessionError, NoVoiceTargetError, UnknownChannelError
from .events import (
    RelayEvent,
    SessionFailedEvent,
    SessionStartedEvent,
    SessionStateChangedEvent,
    SessionStoppedEvent,
)
from .health import HealthAdvisor
from .pipeline import PipelineFactory, default_pipeline_factory
from .session import ChannelSession

logger = logging.getLogger(__name__)


class StreamSupervisor:
    """
    Registry of channel sessions and the control surface over them.

    At most one ChannelSession exists per channel id. start() and stop() for the
    same channel are serialized by a per-channel lock; next() and set_volume()
    are serialized with them by the session's own lock. Runtime failures never
    surface as exceptions, they are observed through status() and events.
    """

    _sessions: dict[str, ChannelSession]
    """Active sessions keyed by channel id."""
    _failed: dict[str, SessionStatus]
    """Final snapshot of sessions that failed, kept until the channel is started again."""
    _channel_locks: dict[str, asyncio.Lock]
    """Locks serializing start/stop per channel id."""
    _event_cbs: list[Callable[[StreamSupervisor, RelayEvent], None]]

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        catalog: ChannelCatalog,
        settings: StreamSettings | None = None,
        *,
        pipeline_factory: PipelineFactory | None = None,
        health_advisor: HealthAdvisor | None = None,
    ) -> None:
        """
        Initialize a new StreamSupervisor.

        Args:
            loop: The asyncio event loop to use for asynchronous operations.
            catalog: Channel definitions that can be started.
            settings: Retry, timeout and format settings, defaults if None.
            pipeline_factory: Creates pipelines, defaults to ffmpeg pipelines
                configured from settings.
            health_advisor: Optional source liveness hints shared by all sessions.
        """
        self._loop = loop
        self._catalog = catalog
        self._settings = settings or StreamSettings()
        if pipeline_factory is None:
            pipeline_factory = default_pipeline_factory(
                ffmpeg_path=self._settings.ffmpeg_path,
                frame_ms=self._settings.frame_ms,
                buffer_frames=self._settings.buffer_frames,
                kill_timeout=self._settings.kill_timeout,
            )
        self._pipeline_factory = pipeline_factory
        self._health_advisor = health_advisor
        self._sessions = {}
        self._failed = {}
        self._channel_locks = {}
        self._event_cbs = []
        logger.debug("StreamSupervisor initialized with %d channel(s)", len(catalog))

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """Read-only access to the event loop used by this supervisor."""
        return self._loop

    @property
    def catalog(self) -> ChannelCatalog:
        """Channel catalog sessions are started from."""
        return self._catalog

    @property
    def settings(self) -> StreamSettings:
        """Settings applied to every session."""
        return self._settings

    @property
    def active_channels(self) -> list[str]:
        """Ids of all channels with a live session."""
        return list(self._sessions)

    def get_session(self, channel_id: str) -> ChannelSession | None:
        """Return the live session of a channel, if any."""
        return self._sessions.get(channel_id)

    def _channel_lock(self, channel_id: str) -> asyncio.Lock:
        return self._channel_locks.setdefault(channel_id, asyncio.Lock())

    def add_event_listener(
        self, callback: Callable[[StreamSupervisor, RelayEvent], None]
    ) -> Callable[[], None]:
        """
        Register a callback to listen for session changes.

        Events include:
        - A session was started
        - A session changed state
        - A session was stopped
        - A session failed and was removed

        Returns a function to remove the listener.
        """
        self._event_cbs.append(callback)

        def _remove() -> None:
            with suppress(ValueError):
                self._event_cbs.remove(callback)

        return _remove

    def _signal_event(self, event: RelayEvent) -> None:
        """Signal an event to all registered listeners."""
        for cb in self._event_cbs:
            try:
                cb(self, event)
            except Exception:
                logger.exception("Error in event listener")

    async def start(
        self,
        channel_id: str,
        sink: Any = None,
        *,
        default_sink: Any = None,
    ) -> StartSummary:
        """
        Start a channel on a sink.

        Returns once the first frame was produced or the startup timeout elapsed.
        A slow start is not an error: the summary reports pending_first_audio and
        the session keeps trying in the background.

        Args:
            channel_id: Name of an enabled channel.
            sink: Sink to play on.
            default_sink: Sink used when sink is None.

        Raises:
            UnknownChannelError: If no enabled channel has this name.
            NoVoiceTargetError: If neither sink nor default_sink was given.
            AlreadyActiveError: If the channel already has a session.
        """
        definition = self._catalog.lookup(channel_id)
        if definition is None:
            raise UnknownChannelError(channel_id)
        binding = sink if sink is not None else default_sink
        if binding is None:
            raise NoVoiceTargetError(channel_id)

        async with self._channel_lock(channel_id):
            if channel_id in self._sessions:
                raise AlreadyActiveError(channel_id)
            session = ChannelSession(
                self._loop,
                definition,
                binding,
                self._settings,
                self._pipeline_factory,
                health_advisor=self._health_advisor,
                on_state_change=self._handle_state_change,
                on_failed=self._handle_session_failed,
            )
            self._sessions[channel_id] = session
            self._failed.pop(channel_id, None)
            logger.info("Starting channel %s (%s)", channel_id, definition.display_name)
            self._signal_event(SessionStartedEvent(channel_id))
            try:
                await session.open()
            except BaseException:
                await session.close()
                if self._sessions.get(channel_id) is session:
                    del self._sessions[channel_id]
                raise

        playing = await session.wait_for_audio(self._settings.startup_timeout)
        if not playing and not session.closed:
            logger.info("Channel %s started, waiting for first audio", channel_id)
        return StartSummary(
            channel_id=channel_id,
            display_name=definition.display_name,
            state=session.state,
            source_index=session.source_index + 1,
            source_count=session.source_count,
            source_url=session.current_url,
            pending_first_audio=not playing,
        )

    async def stop(self, channel_id: str | None = None) -> list[str]:
        """
        Stop one channel, or every channel when channel_id is None.

        Idempotent. Returns the ids of the channels actually stopped, and only
        returns once their pipelines are terminated and sinks unbound.
        """
        if channel_id is not None:
            return [channel_id] if await self._stop_channel(channel_id) else []
        channel_ids = list(self._sessions)
        results = await asyncio.gather(*(self._stop_channel(cid) for cid in channel_ids))
        return [cid for cid, stopped in zip(channel_ids, results, strict=True) if stopped]

    async def _stop_channel(self, channel_id: str) -> bool:
        async with self._channel_lock(channel_id):
            session = self._sessions.get(channel_id)
            if session is None:
                return False
            stopped = await session.close()
            if self._sessions.get(channel_id) is session:
                del self._sessions[channel_id]
        if stopped:
            logger.info("Stopped channel %s", channel_id)
            self._signal_event(SessionStoppedEvent(channel_id))
        return stopped

    async def next(self, channel_id: str) -> NextResult:
        """
        Switch a channel to its next source, wrapping around after the last one.

        Raises:
            NoActiveSessionError: If the channel has no session.
        """
        session = self._sessions.get(channel_id)
        if session is None:
            raise NoActiveSessionError(channel_id)
        index = await session.next()
        return NextResult(
            channel_id=channel_id,
            source_index=index + 1,
            source_count=session.source_count,
        )

    async def set_volume(self, channel_id: str, level: float) -> float:
        """
        Set a channel's volume, clamped to 0.1-2.0. Returns the effective volume.

        The current source is restarted at the new volume.

        Raises:
            NoActiveSessionError: If the channel has no session.
        """
        session = self._sessions.get(channel_id)
        if session is None:
            raise NoActiveSessionError(channel_id)
        return await session.set_volume(level)

    def status(self, channel_id: str | None = None) -> SessionStatus | list[SessionStatus] | None:
        """
        Return status snapshots without blocking.

        With a channel_id, returns that channel's snapshot, the final FAILED
        snapshot if its session failed since it was last started, or None.
        Without one, returns the snapshots of all active sessions.
        """
        if channel_id is None:
            return [session.snapshot() for session in self._sessions.values()]
        session = self._sessions.get(channel_id)
        if session is not None:
            return session.snapshot()
        return self._failed.get(channel_id)

    def relay_status(self) -> RelayStatus:
        """Return aggregate status over all active sessions."""
        return RelayStatus(
            sessions=[session.snapshot() for session in self._sessions.values()],
            enabled_channels=len(self._catalog.list_enabled()),
        )

    async def close(self) -> None:
        """Stop every session."""
        stopped = await self.stop()
        logger.debug("StreamSupervisor closed, stopped %d session(s)", len(stopped))

    def _handle_state_change(self, session: ChannelSession) -> None:
        self._signal_event(
            SessionStateChangedEvent(session.channel_id, session.state, session.source_index)
        )

    def _handle_session_failed(self, session: ChannelSession, reason: FailureReason) -> None:
        """Remove a failed session from the registry."""
        channel_id = session.channel_id
        self._failed[channel_id] = session.snapshot()
        if self._sessions.get(channel_id) is session:
            del self._sessions[channel_id]
        self._signal_event(SessionFailedEvent(channel_id, reason))
