from pydantic import BaseModel

from sigcast.shared.config import config


class AppEnvironConfig(BaseModel):
    DEBUG: bool = config.get_bool("DEBUG")

    # HTTP server
    API_HOST: str = config.get_str("API_HOST", "0.0.0.0")
    API_PORT: int = config.get_int("API_PORT", config.get_int("PORT", 3000))
    API_CORS_ORIGINS: list[str] = config.get_list("API_CORS_ORIGINS", "*")

    # Transcoder output lands in MEDIA_ROOT/<session_id>/
    MEDIA_ROOT: str = config.get_str("MEDIA_ROOT", "media")

    # Sessions
    STREAM_SESSION_TTL_SECONDS: int = config.get_int("STREAM_SESSION_TTL_SECONDS", 300)
    # 0 disables the periodic sweep; expiry is still enforced at read time
    SESSION_SWEEP_INTERVAL_SECONDS: int = config.get_int("SESSION_SWEEP_INTERVAL_SECONDS", 60)
    SIGNING_KEY_BITS: int = config.get_int("SIGNING_KEY_BITS", 2048)

    # Transcoder
    TRANSCODER_BINARY: str = config.get_str("TRANSCODER_BINARY", "ffmpeg")
    TRANSCODER_HWACCEL: str = config.get_str("TRANSCODER_HWACCEL", "auto").lower()
    HLS_SEGMENT_SECONDS: int = config.get_int("HLS_SEGMENT_SECONDS", 4)
    HLS_PLAYLIST_SIZE: int = config.get_int("HLS_PLAYLIST_SIZE", 10)

    # Ingest
    INGEST_MAX_PENDING_BYTES: int = config.get_int("INGEST_MAX_PENDING_BYTES", 8 * 1024 * 1024)
    INGEST_STOP_GRACE_SECONDS: float = config.get_float("INGEST_STOP_GRACE_SECONDS", 5.0)
    # a producer held back longer than this fails the stream
    INGEST_STALL_TIMEOUT_SECONDS: float = config.get_float("INGEST_STALL_TIMEOUT_SECONDS", 30.0)

    # Observability
    LOGFIRE_ENABLE: bool = config.get_bool("LOGFIRE_ENABLE")
    LOGFIRE_TOKEN: str | None = config.get_str("LOGFIRE_TOKEN", "") or None


_app_environ_config = AppEnvironConfig()


def get_app_environ_config() -> AppEnvironConfig:
    return _app_environ_config
