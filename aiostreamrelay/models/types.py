"""Models for enum types used by aiostreamrelay."""

from enum import Enum


class SessionState(Enum):
    """Enum for Channel Session States."""

    CONNECTING = "connecting"
    """Pipeline spawned, awaiting its first frame or a failure."""
    PLAYING = "playing"
    """Frames are flowing into the bound sink."""
    RETRYING = "retrying"
    """Pipeline or sink failed, waiting out the retry delay."""
    STOPPING = "stopping"
    """Teardown in progress."""
    FAILED = "failed"
    """
    Terminal, every source was exhausted or the sink is permanently gone.

    The session is removed from the registry as soon as it enters this state.
    """


class PipelineEventType(Enum):
    """Enum for events emitted by a transcode pipeline."""

    FIRST_FRAME = "first_frame"
    """The decode process produced its first buffer of output."""
    FAILURE = "failure"
    """The pipeline failed before producing any output."""
    ENDED = "ended"
    """The pipeline stopped producing output after it had started."""


class SinkEventType(Enum):
    """Enum for events emitted by a sink."""

    IDLE = "idle"
    """Playback ended, e.g. the frame source was closed."""
    ERROR = "error"
    """Playback failed, the destination may recover."""
    GONE = "gone"
    """The destination no longer exists, no retry can help."""


class FailureReason(Enum):
    """Runtime failure classes recorded on a session, never raised to callers."""

    SOURCE_UNREACHABLE = "source_unreachable"
    """The source could not be opened or produced no audio in time."""
    PIPELINE_CRASHED = "pipeline_crashed"
    """The decode process exited after audio had started."""
    SINK_ERROR = "sink_error"
    """The sink reported an error or went idle unexpectedly."""
    SINK_GONE = "sink_gone"
    """The sink reported it is permanently unavailable."""
    ALL_SOURCES_EXHAUSTED = "all_sources_exhausted"
    """Every source of the channel failed within one failure episode."""
