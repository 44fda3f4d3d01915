"""Runtime objects supervising relayed channels."""

from .catalog import ChannelCatalog
from .errors import (
    AlreadyActiveError,
    NoActiveSessionError,
    NoVoiceTargetError,
    RelayError,
    SinkError,
    SinkGoneError,
    UnknownChannelError,
)
from .events import (
    PipelineEvent,
    RelayEvent,
    SessionFailedEvent,
    SessionStartedEvent,
    SessionStateChangedEvent,
    SessionStoppedEvent,
    SinkEvent,
)
from .health import HealthAdvisor
from .pipeline import PipelineFactory, TranscodePipeline, default_pipeline_factory
from .session import ChannelSession
from .sink import FrameSink, SinkEventCallback
from .status_server import StatusServer
from .stream import AudioFormat, FrameStream
from .supervisor import StreamSupervisor

__all__ = [
    "AlreadyActiveError",
    "AudioFormat",
    "ChannelCatalog",
    "ChannelSession",
    "FrameSink",
    "FrameStream",
    "HealthAdvisor",
    "NoActiveSessionError",
    "NoVoiceTargetError",
    "PipelineEvent",
    "PipelineFactory",
    "RelayError",
    "RelayEvent",
    "SessionFailedEvent",
    "SessionStartedEvent",
    "SessionStateChangedEvent",
    "SessionStoppedEvent",
    "SinkError",
    "SinkEvent",
    "SinkEventCallback",
    "SinkGoneError",
    "StatusServer",
    "StreamSupervisor",
    "TranscodePipeline",
    "UnknownChannelError",
    "default_pipeline_factory",
]
