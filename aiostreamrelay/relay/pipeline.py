"""ffmpeg based transcode pipeline turning one source URL into PCM frames."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress

from aiostreamrelay.models.types import FailureReason, PipelineEventType

from .events import PipelineEvent
from .stream import AudioFormat, FrameStream

logger = logging.getLogger(__name__)

# Factory used by sessions to create a pipeline for (url, audio_format, volume).
PipelineFactory = Callable[[str, AudioFormat, float], "TranscodePipeline"]


class TranscodePipeline:
    """
    One decode/transcode attempt for a single source URL.

    The pipeline reports its lifecycle on ``events``: exactly one of
    FIRST_FRAME or FAILURE, then at most one ENDED after FIRST_FRAME.
    Readiness means the decode process produced at least one buffer of output,
    not merely that it was spawned.
    """

    def __init__(
        self,
        url: str,
        audio_format: AudioFormat,
        volume: float = 1.0,
        *,
        ffmpeg_path: str = "ffmpeg",
        frame_ms: int = 20,
        buffer_frames: int = 50,
        kill_timeout: float = 2.0,
        name: str | None = None,
    ) -> None:
        """
        Initialize a pipeline. Nothing is spawned until start() is awaited.

        Args:
            url: Source URL passed to ffmpeg as input.
            audio_format: Target PCM output format.
            volume: Volume multiplier applied by ffmpeg's volume filter.
            ffmpeg_path: ffmpeg executable.
            frame_ms: Duration of one output frame in milliseconds.
            buffer_frames: Frames buffered for the sink before the oldest is dropped.
            kill_timeout: Seconds to wait after terminating before killing the process.
            name: Name used for the pipeline's logger, defaults to "pipeline".
        """
        self.url = url
        self.audio_format = audio_format
        self.volume = volume
        self.events: asyncio.Queue[PipelineEvent] = asyncio.Queue()
        self._ffmpeg_path = ffmpeg_path
        self._frame_bytes = audio_format.bytes_per_duration(frame_ms)
        self._buffer_frames = buffer_frames
        self._kill_timeout = kill_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._frames: FrameStream | None = None
        self._stopped = False
        self._logger = logger.getChild(name or "pipeline")

    def build_args(self) -> list[str]:
        """Return the ffmpeg command line for this pipeline."""
        return [
            self._ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-loglevel",
            "error",
            "-analyzeduration",
            "0",
            "-i",
            self.url,
            "-vn",
            "-f",
            self.audio_format.ffmpeg_format,
            "-ar",
            str(self.audio_format.sample_rate),
            "-ac",
            str(self.audio_format.channels),
            "-af",
            f"volume={self.volume}",
            "pipe:1",
        ]

    @property
    def running(self) -> bool:
        """True while the decode process is alive."""
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> int | None:
        """Process id of the decode process, if spawned."""
        return self._process.pid if self._process is not None else None

    def _emit(self, event: PipelineEvent) -> None:
        if self._stopped:
            return
        self.events.put_nowait(event)

    async def start(self) -> None:
        """Spawn the decode process. A spawn failure is reported as a FAILURE event."""
        if self._process is not None or self._stopped:
            raise RuntimeError("Pipeline can only be started once")
        args = self.build_args()
        self._logger.debug("Spawning %s", " ".join(args))
        try:
            self._process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            self._logger.warning("Failed to spawn %s: %s", self._ffmpeg_path, err)
            self._emit(
                PipelineEvent(
                    PipelineEventType.FAILURE,
                    reason=FailureReason.SOURCE_UNREACHABLE,
                    detail=f"spawn failed: {err}",
                )
            )
            return
        loop = asyncio.get_running_loop()
        self._reader_task = loop.create_task(self._read_loop(self._process))
        self._stderr_task = loop.create_task(self._stderr_loop(self._process))

    def _deliver(self, chunk: bytes) -> None:
        if self._frames is None:
            self._frames = FrameStream(self.audio_format, max_frames=self._buffer_frames)
            self._frames.put(chunk)
            self._logger.debug("First frame received from %s", self.url)
            self._emit(PipelineEvent(PipelineEventType.FIRST_FRAME, frames=self._frames))
            return
        self._frames.put(chunk)

    async def _read_loop(self, process: asyncio.subprocess.Process) -> None:
        """Read fixed-size frames from stdout until EOF, then report the exit."""
        assert process.stdout is not None
        stride = self.audio_format.frame_stride
        try:
            while True:
                try:
                    chunk = await process.stdout.readexactly(self._frame_bytes)
                except asyncio.IncompleteReadError as err:
                    tail = err.partial[: len(err.partial) - len(err.partial) % stride]
                    if tail:
                        self._deliver(tail)
                    break
                self._deliver(chunk)
        except (ConnectionError, OSError) as err:
            self._logger.debug("Reading from ffmpeg failed: %s", err)

        exit_code = await process.wait()
        if self._frames is None:
            self._logger.debug("ffmpeg exited with code %s before producing audio", exit_code)
            self._emit(
                PipelineEvent(
                    PipelineEventType.FAILURE,
                    reason=FailureReason.SOURCE_UNREACHABLE,
                    detail=f"ffmpeg exited with code {exit_code} before producing audio",
                    exit_code=exit_code,
                )
            )
            return
        self._frames.close()
        self._logger.debug("ffmpeg exited with code %s", exit_code)
        self._emit(
            PipelineEvent(
                PipelineEventType.ENDED,
                reason=FailureReason.PIPELINE_CRASHED,
                detail=f"ffmpeg exited with code {exit_code}",
                exit_code=exit_code,
            )
        )

    async def _stderr_loop(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        async for line in process.stderr:
            self._logger.debug("ffmpeg: %s", line.decode(errors="replace").rstrip())

    async def stop(self) -> None:
        """
        Stop the pipeline.

        Always safe to call. When this returns the decode process is no longer
        running and no further events will be emitted.
        """
        self._stopped = True
        for task in (self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
        self._reader_task = None
        self._stderr_task = None

        process = self._process
        if process is not None and process.returncode is None:
            self._logger.debug("Terminating ffmpeg (pid %s)", process.pid)
            with suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self._kill_timeout)
            except TimeoutError:
                self._logger.warning("ffmpeg did not exit in time, killing it")
                with suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        if self._frames is not None:
            self._frames.close()


def default_pipeline_factory(
    *,
    ffmpeg_path: str = "ffmpeg",
    frame_ms: int = 20,
    buffer_frames: int = 50,
    kill_timeout: float = 2.0,
) -> PipelineFactory:
    """Return a factory creating ffmpeg pipelines with the given settings."""

    def _factory(url: str, audio_format: AudioFormat, volume: float) -> TranscodePipeline:
        return TranscodePipeline(
            url,
            audio_format,
            volume,
            ffmpeg_path=ffmpeg_path,
            frame_ms=frame_ms,
            buffer_frames=buffer_frames,
            kill_timeout=kill_timeout,
        )

    return _factory
