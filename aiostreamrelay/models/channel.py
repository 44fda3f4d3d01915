"""
Channel catalog and relay settings models.

A channel is a logical continuous audio feed with one or more candidate source
URLs. These models are loaded from JSON and are never mutated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

MIN_VOLUME = 0.1
MAX_VOLUME = 2.0
SUPPORTED_BIT_DEPTHS = frozenset({16, 24, 32})


def clamp_volume(level: float) -> float:
    """Clamp a volume multiplier to the supported range."""
    return max(MIN_VOLUME, min(MAX_VOLUME, float(level)))


@dataclass(frozen=True)
class ChannelDefinition(DataClassORJSONMixin):
    """Definition of one channel in the catalog."""

    name: str
    """Unique channel identifier used by control operations."""
    display_name: str
    """Human-readable channel name."""
    streams: tuple[str, ...]
    """Candidate source URLs in priority order (first is preferred)."""
    category: str = "General"
    """Category used to group channels in listings."""
    volume: float = 1.0
    """Default volume multiplier for new sessions (0.1-2.0)."""
    enabled: bool = True
    """Disabled channels cannot be started."""
    quality: str | None = None
    """Optional free-text quality label (e.g., "HD")."""

    def __post_init__(self) -> None:
        """Validate field values."""
        if not self.name:
            raise ValueError("name cannot be empty")
        if not self.streams:
            raise ValueError(f"Channel {self.name!r} must have at least one stream")
        if not MIN_VOLUME <= self.volume <= MAX_VOLUME:
            raise ValueError(
                f"volume must be in range {MIN_VOLUME}-{MAX_VOLUME}, got {self.volume}"
            )

    class Config(BaseConfig):
        """Config for parsing json definitions."""

        omit_none = True


@dataclass
class StreamSettings(DataClassORJSONMixin):
    """Retry, timeout and output format settings shared by all channels."""

    max_retries: int = 3
    """Attempts per source before rotating to the next one."""
    retry_delay: float = 5.0
    """Seconds to wait between attempts."""
    startup_timeout: float = 10.0
    """Seconds a pipeline may take to produce its first frame."""
    check_interval: float = 60.0
    """Seconds between two health probe rounds."""
    probe_timeout: float = 10.0
    """Seconds a single health probe may take."""
    kill_timeout: float = 2.0
    """Seconds to wait for a terminated pipeline before killing it."""
    ffmpeg_path: str = "ffmpeg"
    """Executable used for decoding and transcoding."""
    sample_rate: int = 48000
    """Output sample rate in Hz."""
    channels: int = 2
    """Output channel count (1 = mono, 2 = stereo)."""
    bit_depth: int = 16
    """Output bit depth (16, 24 or 32)."""
    frame_ms: int = 20
    """Duration of one output frame in milliseconds."""
    buffer_frames: int = 50
    """Frames buffered between pipeline and sink before the oldest is dropped."""

    def __post_init__(self) -> None:
        """Validate field values."""
        if self.max_retries <= 0:
            raise ValueError(f"max_retries must be positive, got {self.max_retries}")
        for name in ("retry_delay", "startup_timeout", "check_interval", "probe_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.kill_timeout < 0:
            raise ValueError(f"kill_timeout cannot be negative, got {self.kill_timeout}")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.channels not in (1, 2):
            raise ValueError(f"channels must be 1 or 2, got {self.channels}")
        if self.bit_depth not in SUPPORTED_BIT_DEPTHS:
            raise ValueError(f"Unsupported bit depth: {self.bit_depth}")
        if self.frame_ms <= 0:
            raise ValueError(f"frame_ms must be positive, got {self.frame_ms}")
        if self.buffer_frames <= 0:
            raise ValueError(f"buffer_frames must be positive, got {self.buffer_frames}")


@dataclass
class RelayConfig(DataClassORJSONMixin):
    """Top level relay configuration."""

    channels: list[ChannelDefinition]
    """All channel definitions, enabled or not."""
    stream_settings: StreamSettings = field(default_factory=StreamSettings)
    """Settings shared by every session."""


def load_config(path: str | Path) -> RelayConfig:
    """Load a RelayConfig from a JSON file."""
    return RelayConfig.from_json(Path(path).read_bytes())
