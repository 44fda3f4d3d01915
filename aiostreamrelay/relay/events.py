"""Events emitted by the stream supervisor, pipelines and sinks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from aiostreamrelay.models.types import (
    FailureReason,
    PipelineEventType,
    SessionState,
    SinkEventType,
)

if TYPE_CHECKING:
    from .stream import FrameStream


class RelayEvent:
    """Base event type used by StreamSupervisor.add_event_listener()."""


@dataclass
class SessionStartedEvent(RelayEvent):
    """A session was created for a channel."""

    channel_id: str


@dataclass
class SessionStateChangedEvent(RelayEvent):
    """A session moved to a new state."""

    channel_id: str
    state: SessionState
    source_index: int
    """0-based index of the current source."""


@dataclass
class SessionStoppedEvent(RelayEvent):
    """A session was stopped on request."""

    channel_id: str


@dataclass
class SessionFailedEvent(RelayEvent):
    """A session reached the terminal failed state and was removed."""

    channel_id: str
    reason: FailureReason


@dataclass
class PipelineEvent:
    """Event produced by a TranscodePipeline on its event queue."""

    type: PipelineEventType
    frames: FrameStream | None = None
    """For FIRST_FRAME, the stream of decoded frames."""
    reason: FailureReason | None = None
    """For FAILURE, the failure class."""
    detail: str | None = None
    """Optional human-readable detail."""
    exit_code: int | None = None
    """For ENDED and process-exit FAILURE, the process exit code."""


@dataclass
class SinkEvent:
    """Event produced by a sink."""

    type: SinkEventType
    detail: str | None = None
    """Optional human-readable detail."""
