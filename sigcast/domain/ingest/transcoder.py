"""Transcoder capability and its ffmpeg implementation.

The ingest pipeline only talks to the `Transcoder` / `TranscoderHandle`
protocols: start a process for a config, push bytes (learning whether the input
is saturated), wait for it to drain, close its input, terminate it, and observe
its lifecycle as a stream of STARTED / ERRORED / EXITED events.
"""

import asyncio
import os
import signal
from collections import deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from loguru import logger

from .hwaccel import DRI_RENDER_DEVICE, HwAccelProfile

DEFAULT_HIGH_WATER = 64 * 1024
STDERR_TAIL_LINES = 20


class TranscoderError(Exception):
    pass


class TranscoderLaunchError(TranscoderError):
    pass


class TranscoderWriteError(TranscoderError):
    pass


class WriteResult(str, Enum):
    ACCEPTED = "accepted"
    BACKPRESSURE = "backpressure"


class TranscoderEventType(str, Enum):
    STARTED = "started"
    ERRORED = "errored"
    EXITED = "exited"


@dataclass(frozen=True)
class TranscoderEvent:
    type: TranscoderEventType
    reason: str | None = None
    code: int | None = None

    @classmethod
    def started(cls) -> "TranscoderEvent":
        return cls(TranscoderEventType.STARTED)

    @classmethod
    def errored(cls, reason: str) -> "TranscoderEvent":
        return cls(TranscoderEventType.ERRORED, reason=reason)

    @classmethod
    def exited(cls, code: int | None, reason: str | None = None) -> "TranscoderEvent":
        return cls(TranscoderEventType.EXITED, reason=reason, code=code)


@dataclass(frozen=True)
class TranscodeConfig:
    """Where and how one session's segments are produced."""

    output_dir: Path
    hwaccel: HwAccelProfile = HwAccelProfile.SOFTWARE
    segment_seconds: int = 4
    playlist_size: int = 10
    playlist_name: str = "playlist.m3u8"
    init_segment_name: str = "init.mp4"
    segment_pattern: str = "segment%d.m4s"
    max_video_rate: str = "600k"
    video_buffer_size: str = "800k"
    audio_bitrate: str = "64k"
    audio_sample_rate: int = 44100

    @property
    def playlist_path(self) -> Path:
        return self.output_dir / self.playlist_name

    @property
    def segment_path_pattern(self) -> Path:
        return self.output_dir / self.segment_pattern


class TranscoderHandle(Protocol):
    def write(self, data: bytes) -> WriteResult: ...

    async def wait_writable(self) -> None: ...

    async def close_input(self) -> None: ...

    async def terminate(self, grace_period: float) -> int | None: ...

    def events(self) -> AsyncIterator[TranscoderEvent]: ...


class Transcoder(Protocol):
    async def start(self, config: TranscodeConfig) -> TranscoderHandle: ...


_ENCODER_OPTIONS: dict[HwAccelProfile, list[str]] = {
    HwAccelProfile.SOFTWARE: ["-preset", "ultrafast", "-tune", "zerolatency", "-crf", "30"],
    HwAccelProfile.NVENC: ["-preset", "p1", "-tune", "ll"],
    HwAccelProfile.QSV: ["-preset", "veryfast"],
    HwAccelProfile.VAAPI: ["-vf", "format=nv12,hwupload"],
}


def build_ffmpeg_command(config: TranscodeConfig, binary: str = "ffmpeg") -> list[str]:
    """Build the ffmpeg command that reads raw media on stdin and writes fMP4 HLS."""
    cmd = [binary, "-hide_banner", "-loglevel", "warning"]

    if config.hwaccel is HwAccelProfile.VAAPI:
        cmd.extend(["-vaapi_device", DRI_RENDER_DEVICE])

    cmd.extend(["-i", "pipe:0"])

    # Video: keyframe on every segment boundary so each segment starts decodable
    cmd.extend(["-c:v", config.hwaccel.video_encoder])
    cmd.extend(_ENCODER_OPTIONS[config.hwaccel])
    cmd.extend([
        "-force_key_frames", f"expr:gte(t,n_forced*{config.segment_seconds})",
        "-sc_threshold", "0",
        "-maxrate", config.max_video_rate,
        "-bufsize", config.video_buffer_size,
    ])

    cmd.extend([
        "-c:a", "aac",
        "-b:a", config.audio_bitrate,
        "-ar", str(config.audio_sample_rate),
    ])

    # temp_file: segments are written as .tmp and renamed once complete
    cmd.extend([
        "-f", "hls",
        "-hls_time", str(config.segment_seconds),
        "-hls_list_size", str(config.playlist_size),
        "-hls_flags", "delete_segments+omit_endlist+append_list+discont_start+temp_file",
        "-hls_segment_type", "fmp4",
        "-hls_fmp4_init_filename", config.init_segment_name,
        "-hls_segment_filename", str(config.segment_path_pattern),
        str(config.playlist_path),
    ])

    return cmd


class SubprocessHandle:
    """TranscoderHandle over an asyncio subprocess with piped stdin/stderr."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        name: str,
        high_water: int = DEFAULT_HIGH_WATER,
    ) -> None:
        if process.stdin is None:
            raise TranscoderLaunchError(f"{name}: process has no stdin pipe")

        self._process = process
        self._stdin = process.stdin
        self._name = name
        self._high_water = high_water
        self._events: asyncio.Queue[TranscoderEvent] = asyncio.Queue()
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        self._stdin.transport.set_write_buffer_limits(high=high_water)
        self._events.put_nowait(TranscoderEvent.started())
        self._watch_task = asyncio.create_task(self._watch(), name=f"transcoder-watch-{name}")

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    def write(self, data: bytes) -> WriteResult:
        if self._stdin.is_closing():
            self._report_error("transcoder input is closed")
            raise TranscoderWriteError(f"{self._name}: transcoder input is closed")

        self._stdin.write(data)

        if self._stdin.transport.get_write_buffer_size() > self._high_water:
            return WriteResult.BACKPRESSURE
        return WriteResult.ACCEPTED

    async def wait_writable(self) -> None:
        try:
            await self._stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            self._report_error(f"transcoder input broke: {exc}")
            raise TranscoderWriteError(f"{self._name}: {exc}") from exc

    async def close_input(self) -> None:
        if self._stdin.is_closing():
            return
        self._stdin.close()
        try:
            await self._stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.debug("{}: stdin closed with {}", self._name, exc)

    async def terminate(self, grace_period: float) -> int | None:
        """Interrupt the process, escalating to SIGKILL after `grace_period` seconds."""
        if self._process.returncode is not None:
            return self._process.returncode

        try:
            if os.name == "posix":
                self._process.send_signal(signal.SIGINT)
            else:
                self._process.terminate()
        except ProcessLookupError:
            pass

        try:
            await asyncio.wait_for(self._process.wait(), timeout=grace_period)
        except asyncio.TimeoutError:
            logger.warning("{}: did not exit within {}s, killing pid {}", self._name, grace_period, self.pid)
            try:
                self._process.kill()
            except ProcessLookupError:
                pass
            await self._process.wait()

        return self._process.returncode

    async def events(self) -> AsyncIterator[TranscoderEvent]:
        while True:
            event = await self._events.get()
            yield event
            if event.type is TranscoderEventType.EXITED:
                return

    def _report_error(self, reason: str) -> None:
        self._events.put_nowait(TranscoderEvent.errored(reason))

    async def _watch(self) -> None:
        stderr = self._process.stderr
        if stderr is not None:
            async for raw in stderr:
                line = raw.decode(errors="replace").rstrip()
                if line:
                    self._stderr_tail.append(line)
                    logger.debug("{}: {}", self._name, line)

        code = await self._process.wait()
        tail = "\n".join(self._stderr_tail) or None
        self._events.put_nowait(TranscoderEvent.exited(code, reason=tail))


class FFmpegTranscoder:
    """Launches one ffmpeg process per ingest session."""

    def __init__(
        self,
        *,
        binary: str = "ffmpeg",
        high_water: int = DEFAULT_HIGH_WATER,
        command_builder: Callable[[TranscodeConfig, str], list[str]] = build_ffmpeg_command,
    ) -> None:
        self.binary = binary
        self.high_water = high_water
        self._command_builder = command_builder

    async def start(self, config: TranscodeConfig) -> SubprocessHandle:
        cmd = self._command_builder(config, self.binary)
        logger.info("Starting transcoder for {} with {}", config.output_dir, config.hwaccel)
        logger.debug("Transcoder command: {}", " ".join(cmd))

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TranscoderLaunchError(f"Failed to launch {cmd[0]}: {exc}") from exc

        return SubprocessHandle(process, name=f"{Path(cmd[0]).name}[{process.pid}]", high_water=self.high_water)
