"""Per-connection ingest pipeline feeding a transcoder process.

One pipeline belongs to one producer connection and owns exactly one
transcoder handle. Media bytes are queued in arrival order and forwarded by a
single writer task, which is the only code that touches the transcoder input.
When the input is saturated the writer waits for it to drain; producers that
run too far ahead are throttled in `on_data` instead of losing bytes.

Every terminal path (launch failure, broken input, unexpected exit, clean
exit, producer disconnect) goes through `_finish`, which runs once.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from sigcast.schemas import IngestState, StreamHealthStatus

from .health import StreamHealthBoard
from .hwaccel import HwAccelProfile, probe_hwaccel, resolve_hwaccel
from .state_machine import IngestStateMachine
from .transcoder import (
    TranscodeConfig,
    Transcoder,
    TranscoderEventType,
    TranscoderHandle,
    TranscoderLaunchError,
    TranscoderWriteError,
    WriteResult,
)

LAUNCH_FAILED_REASON = "An error occurred while processing the stream."
UNEXPECTED_EXIT_REASON = "The streaming process ended unexpectedly."
WRITE_FAILED_REASON = "Unable to process stream data."

FailureCallback = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class IngestSettings:
    media_root: Path
    hwaccel: str = "auto"
    segment_seconds: int = 4
    playlist_size: int = 10
    max_pending_bytes: int = 8 * 1024 * 1024
    stop_grace_seconds: float = 5.0
    stall_timeout_seconds: float = 30.0


class IngestPipeline:
    def __init__(
        self,
        *,
        session_id: str,
        transcoder: Transcoder,
        settings: IngestSettings,
        on_failure: FailureCallback,
        health: StreamHealthBoard | None = None,
        hwaccel_probe: Callable[[], HwAccelProfile] = probe_hwaccel,
    ) -> None:
        self._session_id = session_id
        self._transcoder = transcoder
        self._settings = settings
        self._on_failure = on_failure
        self._health = health
        self._hwaccel_probe = hwaccel_probe

        self._state = IngestState.IDLE
        self._handle: TranscoderHandle | None = None
        self._lock = asyncio.Lock()

        self._pending: deque[bytes] = deque()
        self._pending_bytes = 0
        self._low_water = settings.max_pending_bytes // 2
        self._data_ready = asyncio.Event()
        self._flushed = asyncio.Event()
        self._flushed.set()
        self._capacity = asyncio.Event()
        self._capacity.set()

        self._writer_task: asyncio.Task | None = None
        self._monitor_task: asyncio.Task | None = None
        self._stop_task: asyncio.Task | None = None

        self._stopping = False
        self._finished = False
        self._failed = False
        self._discard_logged = False
        self._done = asyncio.Event()

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> IngestState:
        return self._state

    @property
    def failed(self) -> bool:
        return self._failed

    @property
    def pending_bytes(self) -> int:
        return self._pending_bytes

    @property
    def output_dir(self) -> Path:
        return self._settings.media_root / self._session_id

    async def on_data(self, data: bytes) -> None:
        """Queue media bytes for the transcoder, launching it on first use.

        Never raises for a saturated transcoder input. If too many bytes are
        waiting, the caller is held until the writer catches up or the
        pipeline stops. A transcoder that takes no input for
        `stall_timeout_seconds` fails the stream.
        """
        if not data:
            return

        if self._state is IngestState.IDLE:
            async with self._lock:
                if self._state is IngestState.IDLE and not self._stopping:
                    await self._start()

        if self._state is not IngestState.RUNNING or self._stopping:
            log = logger.debug if self._discard_logged else logger.warning
            log("Discarding {} bytes for stream {}: ingest is {}", len(data), self._session_id, self._state)
            self._discard_logged = True
            return

        self._pending.append(bytes(data))
        self._pending_bytes += len(data)
        self._flushed.clear()
        self._data_ready.set()

        if self._health is not None:
            self._health.update(self._session_id, StreamHealthStatus.ACTIVE)

        if self._pending_bytes > self._settings.max_pending_bytes:
            logger.debug(
                "Stream {} has {} bytes pending, throttling producer", self._session_id, self._pending_bytes
            )
            self._capacity.clear()
            try:
                await asyncio.wait_for(self._capacity.wait(), timeout=self._settings.stall_timeout_seconds)
            except asyncio.TimeoutError:
                logger.error(
                    "Transcoder for stream {} accepted no input for {}s, stopping",
                    self._session_id,
                    self._settings.stall_timeout_seconds,
                )
                await self._finish(WRITE_FAILED_REASON)

    async def on_disconnect(self) -> None:
        """Flush queued bytes, close the transcoder input and stop the process.

        Safe to call more than once and after a failure. The teardown runs in
        its own task, so a cancelled caller does not leave the process behind;
        every caller waits for the same teardown.
        """
        if self._stop_task is None:
            self._stop_task = asyncio.create_task(self._stop(), name=f"ingest-stop-{self._session_id}")
        await asyncio.shield(self._stop_task)

    async def _stop(self) -> None:
        async with self._lock:
            self._stopping = True

            if self._state is IngestState.IDLE:
                self._set_state(IngestState.STOPPED)
                self._mark_ended()
                logger.info("Stream {} disconnected before sending media", self._session_id)
                return

            if not self._finished:
                await self._flush(self._settings.stop_grace_seconds)

        await self._finish(None)

    def _set_state(self, new: IngestState) -> None:
        IngestStateMachine.ensure_transition(self._state, new)
        logger.debug("Ingest {}: {} -> {}", self._session_id, self._state, new)
        self._state = new

    def _mark_ended(self) -> None:
        if self._health is not None and not self._failed:
            self._health.update(self._session_id, StreamHealthStatus.ENDED)

    async def _start(self) -> None:
        self._set_state(IngestState.STARTING)

        config = TranscodeConfig(
            output_dir=self.output_dir,
            hwaccel=resolve_hwaccel(self._settings.hwaccel, self._hwaccel_probe),
            segment_seconds=self._settings.segment_seconds,
            playlist_size=self._settings.playlist_size,
        )

        try:
            await asyncio.to_thread(config.output_dir.mkdir, parents=True, exist_ok=True)
            handle = await self._transcoder.start(config)
        except (TranscoderLaunchError, OSError) as exc:
            logger.error("Failed to start transcoder for stream {}: {}", self._session_id, exc)
            await self._finish(LAUNCH_FAILED_REASON)
            return

        self._handle = handle
        self._set_state(IngestState.RUNNING)
        self._writer_task = asyncio.create_task(self._write_loop(handle), name=f"ingest-writer-{self._session_id}")
        self._monitor_task = asyncio.create_task(self._watch_events(handle), name=f"ingest-monitor-{self._session_id}")

    async def _write_loop(self, handle: TranscoderHandle) -> None:
        try:
            while True:
                if not self._pending:
                    self._flushed.set()
                    self._data_ready.clear()
                    await self._data_ready.wait()
                    continue

                chunk = self._pending.popleft()
                self._pending_bytes -= len(chunk)

                if handle.write(chunk) is WriteResult.BACKPRESSURE:
                    await handle.wait_writable()

                if not self._capacity.is_set() and self._pending_bytes <= self._low_water:
                    self._capacity.set()
        except TranscoderWriteError as exc:
            logger.error("Transcoder input failed for stream {}: {}", self._session_id, exc)
            await self._finish(WRITE_FAILED_REASON)

    async def _watch_events(self, handle: TranscoderHandle) -> None:
        async for event in handle.events():
            if event.type is TranscoderEventType.STARTED:
                logger.info("Transcoder running for stream {}", self._session_id)

            elif event.type is TranscoderEventType.ERRORED:
                logger.error("Transcoder error for stream {}: {}", self._session_id, event.reason)
                if not self._stopping:
                    await self._finish(LAUNCH_FAILED_REASON)
                    return

            elif event.type is TranscoderEventType.EXITED:
                await self._on_exit(event.code, event.reason)
                return

    async def _on_exit(self, code: int | None, reason: str | None) -> None:
        if self._stopping:
            logger.info("Transcoder for stream {} exited with code {} after disconnect", self._session_id, code)
            return

        # a null or negative code means the process was stopped by a signal
        if code is None or code <= 0:
            logger.info("Transcoder for stream {} finished with code {}", self._session_id, code)
            await self._finish(None)
            return

        logger.error(
            "Transcoder for stream {} exited unexpectedly with code {}{}",
            self._session_id,
            code,
            f"\n{reason}" if reason else "",
        )
        await self._finish(UNEXPECTED_EXIT_REASON)

    async def _flush(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._flushed.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Stream {} still had {} bytes pending after {}s", self._session_id, self._pending_bytes, timeout
            )

    async def _finish(self, failure_reason: str | None) -> None:
        if self._finished:
            if self._done_waitable():
                await self._done.wait()
            return
        self._finished = True

        try:
            if failure_reason is not None:
                self._failed = True
                if self._health is not None:
                    self._health.update(self._session_id, StreamHealthStatus.FAILED)
            else:
                self._mark_ended()

            if not IngestStateMachine.is_terminal(self._state):
                self._set_state(IngestState.STOPPED)

            self._release_waiters()
            await self._cancel_tasks()

            if self._handle is not None:
                await self._handle.close_input()
                code = await self._handle.terminate(self._settings.stop_grace_seconds)
                logger.info("Transcoder for stream {} stopped (code={})", self._session_id, code)

            if failure_reason is not None:
                await self._notify_failure(failure_reason)
        finally:
            self._done.set()

    def _done_waitable(self) -> bool:
        # the writer and monitor tasks get cancelled by _finish; they must not wait on it
        current = asyncio.current_task()
        return current is not self._writer_task and current is not self._monitor_task

    def _release_waiters(self) -> None:
        if self._pending:
            logger.warning("Stream {}: discarding {} unsent bytes", self._session_id, self._pending_bytes)
            self._pending.clear()
            self._pending_bytes = 0
        self._flushed.set()
        self._capacity.set()

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        tasks = [
            task
            for task in (self._writer_task, self._monitor_task)
            if task is not None and task is not current and not task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _notify_failure(self, reason: str) -> None:
        try:
            await self._on_failure(reason)
        except Exception as exc:
            logger.warning("Stream {}: could not report ingest failure: {}", self._session_id, exc)


class IngestPipelineTracker:
    """Live pipelines, so shutdown can stop every transcoder."""

    def __init__(self) -> None:
        self._pipelines: set[IngestPipeline] = set()

    def add(self, pipeline: IngestPipeline) -> None:
        self._pipelines.add(pipeline)

    def discard(self, pipeline: IngestPipeline) -> None:
        self._pipelines.discard(pipeline)

    def __len__(self) -> int:
        return len(self._pipelines)

    async def stop_all(self) -> None:
        pipelines = list(self._pipelines)
        if not pipelines:
            return
        logger.info("Stopping {} ingest pipelines", len(pipelines))
        await asyncio.gather(*(p.on_disconnect() for p in pipelines), return_exceptions=True)
