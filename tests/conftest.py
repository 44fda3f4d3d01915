from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import suppress

import pytest

from aiostreamrelay.models.channel import ChannelDefinition, StreamSettings
from aiostreamrelay.models.types import FailureReason, PipelineEventType
from aiostreamrelay.relay.catalog import ChannelCatalog
from aiostreamrelay.relay.events import PipelineEvent, SinkEvent
from aiostreamrelay.relay.stream import AudioFormat, FrameStream

OK = "ok"
FAIL = "fail"
RAISE = "raise"


class FakePipeline:
    """Pipeline double that reports events according to a per-URL behaviour."""

    def __init__(self, factory: FakePipelineFactory, url: str, audio_format: AudioFormat, volume: float) -> None:
        self.factory = factory
        self.url = url
        self.audio_format = audio_format
        self.volume = volume
        self.events: asyncio.Queue[PipelineEvent] = asyncio.Queue()
        self.started = False
        self.stopped = False
        self.frames: FrameStream | None = None

    @property
    def running(self) -> bool:
        return self.started and not self.stopped

    def _emit(self, event: PipelineEvent) -> None:
        if not self.stopped:
            self.events.put_nowait(event)

    async def start(self) -> None:
        self.started = True
        self.factory.max_live = max(self.factory.max_live, self.factory.live_count())
        behaviour = self.factory.behaviour.get(self.url, OK)
        if behaviour == OK:
            self.produce_first_frame()
        elif behaviour == FAIL:
            self.fail()
        elif behaviour == RAISE:
            raise ValueError("embedded null byte")

    async def stop(self) -> None:
        delay = self.factory.stop_delay.get(self.url)
        if delay:
            await asyncio.sleep(delay)
        self.stopped = True
        if self.frames is not None:
            self.frames.close()

    def produce_first_frame(self) -> None:
        self.frames = FrameStream(self.audio_format)
        self.frames.put(b"\x00" * self.audio_format.frame_stride)
        self._emit(PipelineEvent(PipelineEventType.FIRST_FRAME, frames=self.frames))

    def fail(self) -> None:
        self._emit(
            PipelineEvent(
                PipelineEventType.FAILURE,
                reason=FailureReason.SOURCE_UNREACHABLE,
                detail="connection refused",
                exit_code=1,
            )
        )

    def end(self, exit_code: int = 0) -> None:
        if self.frames is not None:
            self.frames.close()
        self._emit(
            PipelineEvent(
                PipelineEventType.ENDED,
                reason=FailureReason.PIPELINE_CRASHED,
                exit_code=exit_code,
            )
        )


class FakePipelineFactory:
    """Records every pipeline it creates."""

    def __init__(self) -> None:
        self.behaviour: dict[str, str] = {}
        self.stop_delay: dict[str, float] = {}
        self.pipelines: list[FakePipeline] = []
        self.max_live = 0

    def __call__(self, url: str, audio_format: AudioFormat, volume: float) -> FakePipeline:
        pipeline = FakePipeline(self, url, audio_format, volume)
        self.pipelines.append(pipeline)
        return pipeline

    @property
    def urls(self) -> list[str]:
        return [p.url for p in self.pipelines]

    def live_count(self) -> int:
        return sum(1 for p in self.pipelines if p.running)


class FakeSink:
    """Sink double recording bind/unbind calls."""

    def __init__(self) -> None:
        self.bound: FrameStream | None = None
        self.bind_count = 0
        self.unbind_count = 0
        self.bind_error: Exception | None = None
        self._event_cbs: list[Callable[[SinkEvent], None]] = []

    def add_event_listener(self, callback: Callable[[SinkEvent], None]) -> Callable[[], None]:
        self._event_cbs.append(callback)

        def _remove() -> None:
            with suppress(ValueError):
                self._event_cbs.remove(callback)

        return _remove

    @property
    def listener_count(self) -> int:
        return len(self._event_cbs)

    async def bind(self, frames: FrameStream) -> None:
        if self.bind_error is not None:
            raise self.bind_error
        self.bound = frames
        self.bind_count += 1

    async def unbind(self) -> None:
        self.bound = None
        self.unbind_count += 1

    def emit(self, event: SinkEvent) -> None:
        for cb in list(self._event_cbs):
            cb(event)


@pytest.fixture
def pipelines() -> FakePipelineFactory:
    return FakePipelineFactory()


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def settings() -> StreamSettings:
    return StreamSettings(max_retries=2, retry_delay=0.01, startup_timeout=0.5)


@pytest.fixture
def catalog() -> ChannelCatalog:
    return ChannelCatalog(
        [
            ChannelDefinition(
                name="news",
                display_name="News 24",
                category="News",
                streams=("http://a.example/live", "http://b.example/live", "http://c.example/live"),
            ),
            ChannelDefinition(
                name="solo",
                display_name="Solo Radio",
                category="Music",
                streams=("http://solo.example/live",),
            ),
            ChannelDefinition(
                name="archived",
                display_name="Archived",
                streams=("http://old.example/live",),
                enabled=False,
            ),
        ]
    )
