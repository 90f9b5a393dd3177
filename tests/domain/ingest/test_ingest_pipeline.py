"""Tests for IngestPipeline ordering, backpressure and lifecycle handling."""

import asyncio
from pathlib import Path

import pytest

from sigcast.domain.ingest.health import StreamHealthBoard
from sigcast.domain.ingest.hwaccel import HwAccelProfile
from sigcast.domain.ingest.pipeline import (
    LAUNCH_FAILED_REASON,
    UNEXPECTED_EXIT_REASON,
    WRITE_FAILED_REASON,
    IngestPipeline,
    IngestPipelineTracker,
    IngestSettings,
)
from sigcast.schemas import IngestState, StreamHealthStatus
from tests.fixtures.session_fixtures import wait_until
from tests.fixtures.transcoder_fixtures import FailureRecorder, FakeTranscoder

SESSION_ID = "st_01j0000000000000000000000a"


@pytest.fixture
def settings(tmp_path: Path) -> IngestSettings:
    return IngestSettings(media_root=tmp_path, hwaccel="software", stop_grace_seconds=1.0)


@pytest.fixture
def health() -> StreamHealthBoard:
    return StreamHealthBoard()


@pytest.fixture
def make_pipeline(transcoder: FakeTranscoder, settings: IngestSettings, failures: FailureRecorder, health):
    def factory(
        *,
        session_id: str = SESSION_ID,
        transcoder: FakeTranscoder = transcoder,
        settings: IngestSettings = settings,
    ) -> IngestPipeline:
        return IngestPipeline(
            session_id=session_id,
            transcoder=transcoder,
            settings=settings,
            on_failure=failures,
            health=health,
        )

    return factory


def _status(health: StreamHealthBoard) -> StreamHealthStatus | None:
    entry = health.get(SESSION_ID)
    return entry.status if entry else None


class TestStart:
    async def test_first_bytes_launch_transcoder_once(self, make_pipeline, transcoder: FakeTranscoder, tmp_path):
        pipeline = make_pipeline()

        await pipeline.on_data(b"a")
        await pipeline.on_data(b"b")

        assert len(transcoder.configs) == 1
        assert pipeline.state is IngestState.RUNNING

        config = transcoder.configs[0]
        assert config.output_dir == tmp_path / SESSION_ID
        assert config.output_dir.is_dir()
        assert config.hwaccel is HwAccelProfile.SOFTWARE

        await pipeline.on_disconnect()

    async def test_empty_chunk_does_not_launch(self, make_pipeline, transcoder: FakeTranscoder):
        pipeline = make_pipeline()

        await pipeline.on_data(b"")

        assert transcoder.configs == []
        assert pipeline.state is IngestState.IDLE

    async def test_settings_reach_transcode_config(self, make_pipeline, transcoder: FakeTranscoder, tmp_path):
        pipeline = make_pipeline(
            settings=IngestSettings(media_root=tmp_path, hwaccel="nvenc", segment_seconds=2, playlist_size=5)
        )

        await pipeline.on_data(b"a")

        config = transcoder.configs[0]
        assert config.hwaccel is HwAccelProfile.NVENC
        assert config.segment_seconds == 2
        assert config.playlist_size == 5

        await pipeline.on_disconnect()

    async def test_launch_failure_reported_once(self, make_pipeline, failures: FailureRecorder, health):
        """Test a transcoder that cannot start fails the ingest and later bytes are dropped."""
        pipeline = make_pipeline(transcoder=FakeTranscoder(launch_error=True))

        await pipeline.on_data(b"a")
        await pipeline.on_data(b"b")
        await pipeline.on_disconnect()

        assert failures.reasons == [LAUNCH_FAILED_REASON]
        assert pipeline.failed is True
        assert pipeline.state is IngestState.STOPPED
        assert _status(health) is StreamHealthStatus.FAILED

    async def test_disconnect_before_media(self, make_pipeline, transcoder: FakeTranscoder, failures, health):
        pipeline = make_pipeline()

        await pipeline.on_disconnect()

        assert pipeline.state is IngestState.STOPPED
        assert transcoder.configs == []
        assert failures.reasons == []
        assert _status(health) is StreamHealthStatus.ENDED

    async def test_data_after_disconnect_is_discarded(self, make_pipeline, transcoder: FakeTranscoder):
        pipeline = make_pipeline()
        await pipeline.on_disconnect()

        await pipeline.on_data(b"late")

        assert transcoder.configs == []


class TestForwarding:
    async def test_bytes_written_in_arrival_order(self, make_pipeline, transcoder: FakeTranscoder, failures, health):
        pipeline = make_pipeline()
        chunks = [b"chunk-%d" % i for i in range(20)]

        for chunk in chunks:
            await pipeline.on_data(chunk)
        assert _status(health) is StreamHealthStatus.ACTIVE
        await pipeline.on_disconnect()

        handle = transcoder.handle
        assert handle.written == chunks
        assert handle.closed is True
        assert handle.terminate_calls == 1
        assert failures.reasons == []
        assert _status(health) is StreamHealthStatus.ENDED

    async def test_backpressure_waits_for_drain(self, make_pipeline, transcoder: FakeTranscoder):
        """Test the writer holds later chunks until a saturated input drains."""
        pipeline = make_pipeline()
        await pipeline.on_data(b"a")
        handle = transcoder.handle
        handle.backpressure = True
        handle.writable.clear()

        await pipeline.on_data(b"b")
        await pipeline.on_data(b"c")
        await wait_until(lambda: handle.wait_writable_calls == 1)

        assert handle.written in ([b"a"], [b"a", b"b"])
        assert pipeline.pending_bytes > 0

        handle.writable.set()
        await pipeline.on_disconnect()

        assert handle.written == [b"a", b"b", b"c"]

    async def test_producer_throttled_when_too_far_ahead(self, make_pipeline, transcoder: FakeTranscoder, tmp_path):
        """Test on_data blocks once pending bytes pass the limit and resumes at half of it."""
        pipeline = make_pipeline(settings=IngestSettings(media_root=tmp_path, hwaccel="software", max_pending_bytes=4))
        await pipeline.on_data(b"aa")
        handle = transcoder.handle
        handle.backpressure = True
        handle.writable.clear()
        await wait_until(lambda: handle.wait_writable_calls == 1)

        await pipeline.on_data(b"bbb")
        blocked = asyncio.create_task(pipeline.on_data(b"cc"))
        await asyncio.sleep(0.05)

        assert not blocked.done()
        assert pipeline.pending_bytes == 5

        handle.writable.set()
        await asyncio.wait_for(blocked, timeout=1)
        await pipeline.on_disconnect()

        assert handle.written == [b"aa", b"bbb", b"cc"]

    async def test_stalled_transcoder_fails_throttled_producer(
        self, make_pipeline, transcoder: FakeTranscoder, failures, health, tmp_path
    ):
        """Test a transcoder that stays alive but never drains stdin releases the producer with an error."""
        pipeline = make_pipeline(
            settings=IngestSettings(
                media_root=tmp_path,
                hwaccel="software",
                max_pending_bytes=10,
                stop_grace_seconds=0.1,
                stall_timeout_seconds=0.1,
            )
        )
        await pipeline.on_data(b"a")
        handle = transcoder.handle
        handle.backpressure = True
        handle.writable.clear()
        await wait_until(lambda: handle.wait_writable_calls == 1)

        await asyncio.wait_for(pipeline.on_data(b"z" * 20), timeout=2)

        assert failures.reasons == [WRITE_FAILED_REASON]
        assert handle.closed is True
        assert handle.terminate_calls == 1
        assert pipeline.state is IngestState.STOPPED
        assert pipeline.pending_bytes == 0
        assert _status(health) is StreamHealthStatus.FAILED

        await asyncio.wait_for(pipeline.on_disconnect(), timeout=2)
        assert handle.terminate_calls == 1

    async def test_concurrent_streams_do_not_interleave(
        self, transcoder: FakeTranscoder, settings: IngestSettings, failures: FailureRecorder
    ):
        """Test two producers feeding at the same time each reach only their own transcoder, in order."""
        session_ids = ["st_01j0000000000000000000000a", "st_01j0000000000000000000000b"]
        pipelines = {
            sid: IngestPipeline(session_id=sid, transcoder=transcoder, settings=settings, on_failure=failures)
            for sid in session_ids
        }
        chunks = {sid: [b"%s-%d" % (sid[-1:].encode(), i) for i in range(50)] for sid in session_ids}

        async def feed(sid: str) -> None:
            for chunk in chunks[sid]:
                await pipelines[sid].on_data(chunk)
                await asyncio.sleep(0)

        await asyncio.gather(*(feed(sid) for sid in session_ids))
        await asyncio.gather(*(p.on_disconnect() for p in pipelines.values()))

        assert len(transcoder.handles) == 2
        written = {
            config.output_dir.name: handle.written for config, handle in zip(transcoder.configs, transcoder.handles)
        }
        assert written == chunks
        assert failures.reasons == []


class TestTermination:
    async def test_unexpected_exit_reported_once(self, make_pipeline, transcoder: FakeTranscoder, failures, health):
        pipeline = make_pipeline()
        await pipeline.on_data(b"a")

        transcoder.handle.exit(1, "Conversion failed!")
        await asyncio.wait_for(failures.reported.wait(), timeout=1)
        await pipeline.on_disconnect()

        assert failures.reasons == [UNEXPECTED_EXIT_REASON]
        assert pipeline.state is IngestState.STOPPED
        assert _status(health) is StreamHealthStatus.FAILED

    @pytest.mark.parametrize("code", [None, -2, -9])
    async def test_signal_exit_is_not_an_error(
        self, make_pipeline, transcoder: FakeTranscoder, failures, health, code: int | None
    ):
        """Test a process stopped by a signal (null or negative code) ends the stream without a failure."""
        pipeline = make_pipeline()
        await pipeline.on_data(b"a")

        transcoder.handle.exit(code)
        await wait_until(lambda: pipeline.state is IngestState.STOPPED)
        await pipeline.on_disconnect()

        assert failures.reasons == []
        assert pipeline.failed is False
        assert _status(health) is StreamHealthStatus.ENDED

    async def test_clean_exit_is_not_an_error(self, make_pipeline, transcoder: FakeTranscoder, failures, health):
        pipeline = make_pipeline()
        await pipeline.on_data(b"a")

        transcoder.handle.exit(0)
        await wait_until(lambda: pipeline.state is IngestState.STOPPED)
        await pipeline.on_disconnect()

        assert failures.reasons == []
        assert _status(health) is StreamHealthStatus.ENDED

    async def test_exit_after_disconnect_is_not_an_error(self, make_pipeline, transcoder: FakeTranscoder, failures):
        """Test the interrupt sent on disconnect does not surface as a stream error."""
        pipeline = make_pipeline()
        await pipeline.on_data(b"a")

        await pipeline.on_disconnect()

        assert transcoder.handle.returncode is not None
        assert failures.reasons == []
        assert pipeline.failed is False

    async def test_transcoder_error_event_fails_ingest(self, make_pipeline, transcoder: FakeTranscoder, failures):
        pipeline = make_pipeline()
        await pipeline.on_data(b"a")

        transcoder.handle.error("stdin went away")
        await asyncio.wait_for(failures.reported.wait(), timeout=1)

        assert failures.reasons == [LAUNCH_FAILED_REASON]
        assert transcoder.handle.terminate_calls == 1

    async def test_write_failure_reported(self, make_pipeline, transcoder: FakeTranscoder, failures):
        pipeline = make_pipeline()
        await pipeline.on_data(b"a")
        await wait_until(lambda: transcoder.handle.written == [b"a"])
        transcoder.handle.fail_writes = True

        await pipeline.on_data(b"b")
        await asyncio.wait_for(failures.reported.wait(), timeout=1)
        await pipeline.on_disconnect()

        assert failures.reasons == [WRITE_FAILED_REASON]
        assert transcoder.handle.terminate_calls == 1
        assert pipeline.pending_bytes == 0

    async def test_disconnect_is_idempotent(self, make_pipeline, transcoder: FakeTranscoder):
        pipeline = make_pipeline()
        await pipeline.on_data(b"a")

        await pipeline.on_disconnect()
        await pipeline.on_disconnect()

        assert transcoder.handle.terminate_calls == 1

    async def test_cancelled_disconnect_still_stops_transcoder(self, make_pipeline, transcoder: FakeTranscoder):
        """Test teardown survives the connection handler being cancelled mid-flush."""
        pipeline = make_pipeline()
        await pipeline.on_data(b"a")
        handle = transcoder.handle
        handle.backpressure = True
        handle.writable.clear()
        await wait_until(lambda: handle.wait_writable_calls == 1)

        caller = asyncio.create_task(pipeline.on_disconnect())
        await asyncio.sleep(0.01)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        handle.writable.set()
        await pipeline.on_disconnect()

        assert handle.terminate_calls == 1
        assert pipeline.state is IngestState.STOPPED

    async def test_failure_callback_error_is_contained(self, transcoder: FakeTranscoder, settings: IngestSettings):
        """Test a producer that vanished before the error could be sent does not break teardown."""

        async def broken_callback(reason: str) -> None:
            raise RuntimeError("socket closed")

        pipeline = IngestPipeline(
            session_id=SESSION_ID,
            transcoder=FakeTranscoder(launch_error=True),
            settings=settings,
            on_failure=broken_callback,
        )

        await pipeline.on_data(b"a")

        assert pipeline.failed is True
        assert pipeline.state is IngestState.STOPPED


class TestIngestPipelineTracker:
    async def test_stop_all_stops_every_transcoder(self, settings: IngestSettings, failures: FailureRecorder):
        tracker = IngestPipelineTracker()
        transcoders = [FakeTranscoder(), FakeTranscoder()]
        pipelines = [
            IngestPipeline(
                session_id=f"st_01j000000000000000000000{i}x",
                transcoder=t,
                settings=settings,
                on_failure=failures,
            )
            for i, t in enumerate(transcoders)
        ]
        for pipeline in pipelines:
            tracker.add(pipeline)
            await pipeline.on_data(b"media")

        await tracker.stop_all()

        assert len(tracker) == 2
        assert all(t.handle.terminate_calls == 1 for t in transcoders)
        assert all(p.state is IngestState.STOPPED for p in pipelines)
        assert failures.reasons == []

    def test_discard(self, settings: IngestSettings, failures: FailureRecorder, transcoder: FakeTranscoder):
        tracker = IngestPipelineTracker()
        pipeline = IngestPipeline(session_id=SESSION_ID, transcoder=transcoder, settings=settings, on_failure=failures)

        tracker.add(pipeline)
        tracker.discard(pipeline)
        tracker.discard(pipeline)

        assert len(tracker) == 0
