"""Status snapshots and control results returned by the supervisor."""

from __future__ import annotations

from dataclasses import dataclass

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import FailureReason, SessionState


@dataclass
class SessionStatus(DataClassORJSONMixin):
    """Read-only snapshot of one channel session."""

    channel_id: str
    """Channel identifier."""
    display_name: str
    """Human-readable channel name."""
    state: SessionState
    """Current session state."""
    source_index: int
    """1-based index of the current source."""
    source_count: int
    """Number of sources the channel has."""
    source_url: str
    """URL of the current source."""
    volume: float
    """Effective volume multiplier."""
    uptime_s: float
    """Seconds since the first successful play, 0 if never played."""
    retry_count: int
    """Attempts made on the current source since it was selected."""
    last_error: FailureReason | None = None
    """Most recent runtime failure, if any."""

    class Config(BaseConfig):
        """Config for serializing status."""

        omit_none = True


@dataclass
class StartSummary(DataClassORJSONMixin):
    """Result of a successful start."""

    channel_id: str
    """Channel identifier."""
    display_name: str
    """Human-readable channel name."""
    state: SessionState
    """Session state when start returned."""
    source_index: int
    """1-based index of the current source."""
    source_count: int
    """Number of sources the channel has."""
    source_url: str
    """URL of the current source."""
    pending_first_audio: bool
    """True if start returned before any audio was produced."""


@dataclass
class NextResult(DataClassORJSONMixin):
    """Result of switching a channel to its next source."""

    channel_id: str
    """Channel identifier."""
    source_index: int
    """1-based index of the newly selected source."""
    source_count: int
    """Number of sources the channel has."""


@dataclass
class RelayStatus(DataClassORJSONMixin):
    """Aggregate status over every active session."""

    sessions: list[SessionStatus]
    """Snapshots of all active sessions."""
    enabled_channels: int
    """Number of enabled channels in the catalog."""


@dataclass
class SourceProbe(DataClassORJSONMixin):
    """Result of probing one source URL."""

    url: str
    """Probed source URL."""
    index: int
    """0-based position of the source within its channel."""
    healthy: bool
    """True if the source answered with a 2xx or 3xx status in time."""


@dataclass
class ChannelHealth(DataClassORJSONMixin):
    """Result of probing the sources of one channel."""

    channel_id: str
    """Channel identifier."""
    healthy: bool
    """True if at least one source is healthy."""
    sources: list[SourceProbe]
    """Probed sources, in order, up to and including the first healthy one."""
    working_source: str | None = None
    """URL of the first healthy source."""

    class Config(BaseConfig):
        """Config for serializing health results."""

        omit_none = True
