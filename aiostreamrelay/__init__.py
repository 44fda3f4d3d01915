"""Keep live audio channels on the air, failing over between backup sources."""

from .models import ChannelDefinition, RelayConfig, SessionState, StreamSettings, load_config
from .relay import (
    ChannelCatalog,
    FrameSink,
    HealthAdvisor,
    StatusServer,
    StreamSupervisor,
    TranscodePipeline,
)

__all__ = [
    "ChannelCatalog",
    "ChannelDefinition",
    "FrameSink",
    "HealthAdvisor",
    "RelayConfig",
    "SessionState",
    "StatusServer",
    "StreamSettings",
    "StreamSupervisor",
    "TranscodePipeline",
    "load_config",
]
