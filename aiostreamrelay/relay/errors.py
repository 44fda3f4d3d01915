"""Exceptions raised by aiostreamrelay."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all aiostreamrelay errors."""


class UnknownChannelError(RelayError):
    """No enabled channel matches the requested identifier."""

    def __init__(self, channel_id: str) -> None:
        """Initialize the error for a channel identifier."""
        super().__init__(f"Channel {channel_id!r} not found or disabled")
        self.channel_id = channel_id


class AlreadyActiveError(RelayError):
    """A session already exists for the channel."""

    def __init__(self, channel_id: str) -> None:
        """Initialize the error for a channel identifier."""
        super().__init__(f"Channel {channel_id!r} is already playing")
        self.channel_id = channel_id


class NoActiveSessionError(RelayError):
    """The channel has no active session."""

    def __init__(self, channel_id: str) -> None:
        """Initialize the error for a channel identifier."""
        super().__init__(f"No active session for channel {channel_id!r}")
        self.channel_id = channel_id


class NoVoiceTargetError(RelayError):
    """Neither a sink nor a default sink was supplied."""

    def __init__(self, channel_id: str) -> None:
        """Initialize the error for a channel identifier."""
        super().__init__(f"No output target given for channel {channel_id!r}")
        self.channel_id = channel_id


class SinkError(RelayError):
    """A sink could not start playback. The session may retry."""


class SinkGoneError(SinkError):
    """A sink's destination no longer exists. The session cannot recover."""
