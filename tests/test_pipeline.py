from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from aiostreamrelay.models.types import FailureReason, PipelineEventType
from aiostreamrelay.relay.events import PipelineEvent
from aiostreamrelay.relay.pipeline import TranscodePipeline, default_pipeline_factory
from aiostreamrelay.relay.stream import AudioFormat

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh scripts as ffmpeg")

# 10 ms of 16 bit mono at 1 kHz: 20 bytes per frame
FORMAT = AudioFormat(sample_rate=1000, bit_depth=16, channels=1)
FRAME_MS = 10


def _fake_ffmpeg(tmp_path: Path, body: str) -> str:
    script = tmp_path / "ffmpeg"
    script.write_text(f"#!/bin/sh\n{body}\n")
    script.chmod(0o755)
    return str(script)


def _make_pipeline(ffmpeg_path: str) -> TranscodePipeline:
    return TranscodePipeline(
        "http://radio.example/live",
        FORMAT,
        ffmpeg_path=ffmpeg_path,
        frame_ms=FRAME_MS,
        kill_timeout=2.0,
    )


async def _next_event(pipeline: TranscodePipeline) -> PipelineEvent:
    return await asyncio.wait_for(pipeline.events.get(), timeout=5.0)


def test_build_args_targets_pcm_output() -> None:
    pipeline = TranscodePipeline(
        "http://radio.example/live",
        AudioFormat(sample_rate=48000, bit_depth=16, channels=2),
        1.5,
        ffmpeg_path="/usr/bin/ffmpeg",
    )

    args = pipeline.build_args()

    assert args[0] == "/usr/bin/ffmpeg"
    assert args[args.index("-i") + 1] == "http://radio.example/live"
    assert args[args.index("-f") + 1] == "s16le"
    assert args[args.index("-ar") + 1] == "48000"
    assert args[args.index("-ac") + 1] == "2"
    assert args[args.index("-af") + 1] == "volume=1.5"
    assert args[-1] == "pipe:1"


def test_default_factory_applies_settings() -> None:
    factory = default_pipeline_factory(ffmpeg_path="/opt/ffmpeg", frame_ms=FRAME_MS)

    pipeline = factory("http://radio.example/live", FORMAT, 0.5)

    assert isinstance(pipeline, TranscodePipeline)
    assert pipeline.volume == 0.5
    assert pipeline.build_args()[0] == "/opt/ffmpeg"


@pytest.mark.asyncio
async def test_spawn_failure_reports_failure(tmp_path: Path) -> None:
    pipeline = _make_pipeline(str(tmp_path / "missing-ffmpeg"))

    await pipeline.start()
    event = await _next_event(pipeline)

    assert event.type is PipelineEventType.FAILURE
    assert event.reason is FailureReason.SOURCE_UNREACHABLE
    assert not pipeline.running
    await pipeline.stop()


@pytest.mark.asyncio
async def test_exit_without_output_reports_failure(tmp_path: Path) -> None:
    pipeline = _make_pipeline(_fake_ffmpeg(tmp_path, "echo 'Connection refused' >&2\nexit 1"))

    await pipeline.start()
    event = await _next_event(pipeline)

    assert event.type is PipelineEventType.FAILURE
    assert event.reason is FailureReason.SOURCE_UNREACHABLE
    assert event.exit_code == 1
    assert event.frames is None
    await pipeline.stop()


@pytest.mark.asyncio
async def test_frames_then_exit_reports_first_frame_and_ended(tmp_path: Path) -> None:
    pipeline = _make_pipeline(_fake_ffmpeg(tmp_path, "head -c 45 /dev/zero\nexit 3"))

    await pipeline.start()
    first = await _next_event(pipeline)
    ended = await _next_event(pipeline)

    assert first.type is PipelineEventType.FIRST_FRAME
    assert first.frames is not None
    assert ended.type is PipelineEventType.ENDED
    assert ended.reason is FailureReason.PIPELINE_CRASHED
    assert ended.exit_code == 3

    frames = [frame async for frame in first.frames]
    # two whole frames, then the trailing partial cut to whole samples
    assert [len(frame) for frame in frames] == [20, 20, 4]
    assert first.frames.closed
    await pipeline.stop()


@pytest.mark.asyncio
async def test_stop_terminates_running_process(tmp_path: Path) -> None:
    pipeline = _make_pipeline(_fake_ffmpeg(tmp_path, "exec sleep 30"))

    await pipeline.start()
    assert pipeline.running
    assert pipeline.pid is not None

    await asyncio.wait_for(pipeline.stop(), timeout=5.0)

    assert not pipeline.running
    assert pipeline.events.empty()


@pytest.mark.asyncio
async def test_stop_is_safe_before_start() -> None:
    pipeline = _make_pipeline("ffmpeg")

    await pipeline.stop()
    await pipeline.stop()

    assert not pipeline.running
    with pytest.raises(RuntimeError):
        await pipeline.start()
