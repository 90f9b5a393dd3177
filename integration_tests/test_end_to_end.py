"""End-to-end stream: producer WebSocket -> ffmpeg -> signed segment -> viewer check.

These tests are excluded from normal unit tests.
Run with: pytest integration_tests/test_end_to_end.py -v

Requires an ffmpeg binary with libx264 on PATH.
"""

import base64
import hashlib
import shutil
import subprocess
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import sigcast.main as main_module
from sigcast.app_config import AppEnvironConfig
from sigcast.domain.crypto import signer

FFMPEG = shutil.which("ffmpeg")
CHUNK_SIZE = 32 * 1024
SEGMENT_TIMEOUT_SECONDS = 30


def _sample_media(seconds: int) -> bytes:
    """Render a short test pattern with a tone as MPEG-TS, the way a producer would stream it."""
    assert FFMPEG is not None
    result = subprocess.run(
        [
            FFMPEG, "-hide_banner", "-loglevel", "error",
            "-f", "lavfi", "-i", f"testsrc=size=320x240:rate=25:duration={seconds}",
            "-f", "lavfi", "-i", f"sine=frequency=440:duration={seconds}",
            "-c:v", "libx264", "-preset", "ultrafast", "-g", "25",
            "-c:a", "aac",
            "-f", "mpegts", "pipe:1",
        ],
        check=True,
        capture_output=True,
    )
    return result.stdout


def _wait_for_file(path: Path, timeout: float) -> None:
    deadline = time.monotonic() + timeout
    while not path.is_file():
        if time.monotonic() > deadline:
            raise AssertionError(f"{path.name} was not produced within {timeout}s")
        time.sleep(0.1)


@pytest.mark.integration
@pytest.mark.skipif(FFMPEG is None, reason="ffmpeg binary required")
class TestSignedStream:
    """A viewer can fetch a live segment and verify it came from the session key."""

    @pytest.fixture
    def settings(self, tmp_path: Path) -> AppEnvironConfig:
        return AppEnvironConfig(
            MEDIA_ROOT=str(tmp_path / "media"),
            TRANSCODER_BINARY=FFMPEG,
            TRANSCODER_HWACCEL="software",
            HLS_SEGMENT_SECONDS=1,
            SESSION_SWEEP_INTERVAL_SECONDS=0,
            LOGFIRE_ENABLE=False,
        )

    @pytest.fixture
    def client(self, settings: AppEnvironConfig, monkeypatch):
        monkeypatch.setattr(main_module, "get_app_environ_config", lambda: settings)
        with TestClient(main_module.app) as client:
            yield client

    def test_segment_signature_verifies(self, client: TestClient, settings: AppEnvironConfig):
        media = _sample_media(seconds=6)

        with client.websocket_connect("/ingest") as ws:
            session_id = ws.receive_json()["session_id"]
            for offset in range(0, len(media), CHUNK_SIZE):
                ws.send_bytes(media[offset:offset + CHUNK_SIZE])

            session_dir = Path(settings.MEDIA_ROOT).resolve() / session_id
            _wait_for_file(session_dir / "segment0.m4s", SEGMENT_TIMEOUT_SECONDS)
            _wait_for_file(session_dir / "playlist.m3u8", SEGMENT_TIMEOUT_SECONDS)

            playlist = client.get(f"/{session_id}/playlist.m3u8")
            segment = client.get(f"/{session_id}/segment0.m4s")
            key = client.get(f"/publickey/{session_id}")

        assert playlist.status_code == 200
        assert "#EXTM3U" in playlist.text

        assert segment.status_code == 200
        segment_hash = segment.headers["x-segment-hash"]
        assert segment_hash == hashlib.sha256(segment.content).hexdigest()

        assert key.status_code == 200
        public_key = signer.load_public_key(base64.b64decode(key.text))
        signature = base64.b64decode(segment.headers["x-segment-signature"])
        assert signer.verify(bytes.fromhex(segment_hash), signature, public_key)

        # Another session's key must not validate this segment
        other_key = signer.generate_key_pair(1024).public_key
        assert not signer.verify(bytes.fromhex(segment_hash), signature, other_key)

    def test_unknown_session_forbidden(self, client: TestClient):
        response = client.get("/st_00000000000000000000000000/segment0.m4s")

        assert response.status_code == 403
