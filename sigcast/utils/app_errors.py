"""Application error type raised by routers and domain services."""

import inspect
from enum import Enum, IntEnum
from uuid import uuid4


class AppErrorCode(str, Enum):
    E_INTERNAL_ERROR = "E_INTERNAL_ERROR"

    # Sessions
    E_SESSION_NOT_FOUND = "E_SESSION_NOT_FOUND"
    E_SESSION_FORBIDDEN = "E_SESSION_FORBIDDEN"

    # Segments
    E_SEGMENT_NOT_FOUND = "E_SEGMENT_NOT_FOUND"
    E_SEGMENT_PATH_INVALID = "E_SEGMENT_PATH_INVALID"
    E_SEGMENT_READ_FAILED = "E_SEGMENT_READ_FAILED"

    # Streams
    E_STREAM_NOT_FOUND = "E_STREAM_NOT_FOUND"

    def __str__(self) -> str:
        return self.value


class HttpStatusCode(IntEnum):
    OK = 200
    BAD_REQUEST = 400
    FORBIDDEN = 403
    NOT_FOUND = 404
    INTERNAL_SERVER_ERROR = 500


class AppError(Exception):
    """Error carrying an API error code and HTTP status.

    The call site that raised the error is captured so handlers can log where the
    failure originated rather than where it was converted into a response.
    """

    def __init__(
        self,
        errcode: AppErrorCode | str = AppErrorCode.E_INTERNAL_ERROR,
        errmesg: str = "We are sorry, an error occurred.",
        status_code: int = HttpStatusCode.BAD_REQUEST,
    ):
        super().__init__(errmesg)
        self.errcode = errcode.value if isinstance(errcode, AppErrorCode) else str(errcode)
        self.errmesg = errmesg
        self.status_code = int(status_code)
        self.erresid = uuid4().hex[:10]

        caller_frame = inspect.stack(0)[1]
        module = inspect.getmodule(caller_frame.frame)
        module_name = (
            module.__name__ if module and getattr(module, "__name__", None) else caller_frame.filename
        )
        self.caller_info = f"{module_name}:{caller_frame.function}:{caller_frame.lineno}"

    def __repr__(self) -> str:
        return f"AppError(errcode={self.errcode!r}, status_code={self.status_code}, errmesg={self.errmesg!r})"
