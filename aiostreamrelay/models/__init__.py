"""Models for the aiostreamrelay channel supervisor."""

from __future__ import annotations

__all__ = [
    "MAX_VOLUME",
    "MIN_VOLUME",
    "ChannelDefinition",
    "ChannelHealth",
    "FailureReason",
    "NextResult",
    "PipelineEventType",
    "RelayConfig",
    "RelayStatus",
    "SessionState",
    "SessionStatus",
    "SinkEventType",
    "SourceProbe",
    "StartSummary",
    "StreamSettings",
    "channel",
    "clamp_volume",
    "load_config",
    "status",
    "types",
]

from . import channel, status, types
from .channel import (
    MAX_VOLUME,
    MIN_VOLUME,
    ChannelDefinition,
    RelayConfig,
    StreamSettings,
    clamp_volume,
    load_config,
)
from .status import (
    ChannelHealth,
    NextResult,
    RelayStatus,
    SessionStatus,
    SourceProbe,
    StartSummary,
)
from .types import FailureReason, PipelineEventType, SessionState, SinkEventType
