import asyncio
import time
import traceback
import uuid
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from os import environ
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from granian import Granian
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from sigcast.api.errors import app_error_handler
from sigcast.app_config import AppEnvironConfig, get_app_environ_config
from sigcast.domain.ingest.health import StreamHealthBoard
from sigcast.domain.ingest.pipeline import IngestPipelineTracker, IngestSettings
from sigcast.domain.ingest.transcoder import FFmpegTranscoder
from sigcast.domain.segments.gateway import SegmentGateway
from sigcast.domain.segments.public_key import PublicKeyEndpoint
from sigcast.domain.session.registry import SessionRegistry, run_session_sweeper
from sigcast.schemas.messages import SEGMENT_HASH_HEADER, SEGMENT_SIGNATURE_HEADER
from sigcast.shared.api.errors import E_INTERNAL
from sigcast.shared.api.utils import api_failure, init_logger, load_routes, validation_exception_handler
from sigcast.utils.app_errors import AppError

PACKAGE_DIR = Path(__file__).parent


class HTTPLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore
        start_time = time.time()
        request_id = str(uuid.uuid4())[:8]

        logger.info(f"[{request_id}] {request.method} {request.url.path}")

        try:
            response = await call_next(request)

            process_time = (time.time() - start_time) * 1000

            logger.info(
                f"[{request_id}] {request.method} {request.url.path} - "
                f"Status: {response.status_code} - "
                f"Duration: {process_time:.2f}ms"
            )

            return response

        except Exception as exc:
            process_time = (time.time() - start_time) * 1000

            logger.error(
                f"[{request_id}] Unhandled exception in {request.method} {request.url.path} - "
                f"Duration: {process_time:.2f}ms - "
                f"Error: {type(exc).__name__}: {exc}\n"
                f"Traceback:\n{traceback.format_exc()}"
            )

            failure = api_failure(
                errcode=E_INTERNAL,
                errmesg=f"Internal server error (request_id: {request_id})",
            )
            return ORJSONResponse(
                status_code=500,
                content=failure.model_dump(),
            )


def init_state(server: FastAPI, settings: AppEnvironConfig) -> None:
    """Wire the session registry, transcoder and delivery services onto app.state."""
    media_root = Path(settings.MEDIA_ROOT).resolve()
    media_root.mkdir(parents=True, exist_ok=True)

    registry = SessionRegistry(
        ttl=timedelta(seconds=settings.STREAM_SESSION_TTL_SECONDS),
        key_size=settings.SIGNING_KEY_BITS,
    )

    server.state.settings = settings
    server.state.session_registry = registry
    server.state.stream_health = StreamHealthBoard()
    server.state.ingest_pipelines = IngestPipelineTracker()
    server.state.transcoder = FFmpegTranscoder(binary=settings.TRANSCODER_BINARY)
    server.state.ingest_settings = IngestSettings(
        media_root=media_root,
        hwaccel=settings.TRANSCODER_HWACCEL,
        segment_seconds=settings.HLS_SEGMENT_SECONDS,
        playlist_size=settings.HLS_PLAYLIST_SIZE,
        max_pending_bytes=settings.INGEST_MAX_PENDING_BYTES,
        stop_grace_seconds=settings.INGEST_STOP_GRACE_SECONDS,
        stall_timeout_seconds=settings.INGEST_STALL_TIMEOUT_SECONDS,
    )
    server.state.segment_gateway = SegmentGateway(registry, media_root)
    server.state.public_key_endpoint = PublicKeyEndpoint(registry)

    logger.info("Media root: {}", media_root)


@asynccontextmanager
async def lifespan(server: FastAPI):
    init_logger()

    logger.info("Application startup...")

    settings = get_app_environ_config()
    init_state(server, settings)

    load_routes(server, PACKAGE_DIR / "api" / "routers", PACKAGE_DIR / "shared" / "api")

    if settings.LOGFIRE_ENABLE:
        import logfire

        logger.info("Logfire initializing")

        logfire.configure(
            token=settings.LOGFIRE_TOKEN,
            service_name="sigcast",
            service_version=environ.get("BUILD_COMMIT") or "dev",
        )

        logger.info("Logfire instrument fastapi")
        logfire.instrument_fastapi(server, capture_headers=True)

        logger.info("Logfire instrument pydantic")
        logfire.instrument_pydantic()

    sweeper = None
    if settings.SESSION_SWEEP_INTERVAL_SECONDS > 0:
        health: StreamHealthBoard = server.state.stream_health
        tracker: IngestPipelineTracker = server.state.ingest_pipelines
        sweeper = asyncio.create_task(
            run_session_sweeper(
                server.state.session_registry,
                settings.SESSION_SWEEP_INTERVAL_SECONDS,
                on_swept=health.forget,
                stats=lambda: {"pipelines": len(tracker), **health.counts()},
            ),
            name="session-sweeper",
        )

    yield

    logger.info("Application shutdown...")

    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper

    await server.state.ingest_pipelines.stop_all()


app = FastAPI(
    version="1.0",
    title="sigcast",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.add_middleware(HTTPLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,  # type: ignore
    allow_origins=get_app_environ_config().API_CORS_ORIGINS,
    allow_methods=["GET"],
    allow_headers=["*"],
    expose_headers=[SEGMENT_HASH_HEADER, SEGMENT_SIGNATURE_HEADER],
)

app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore
app.add_exception_handler(AppError, app_error_handler)  # type: ignore


def build_granian_kwargs(settings: AppEnvironConfig):
    # Sessions live in process memory, so a single worker serves every stream
    kwargs = {
        "interface": "asgi",
        "address": settings.API_HOST,
        "port": settings.API_PORT,
        "workers": 1,
        "reload": settings.DEBUG,
    }

    return kwargs


if __name__ == "__main__":
    granian_kwargs = build_granian_kwargs(get_app_environ_config())
    Granian("sigcast.main:app", **granian_kwargs).serve()
