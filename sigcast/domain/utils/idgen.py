import re

from ulid import ULID

STREAM_ID_PREFIX = "st_"

_STREAM_ID_RE = re.compile(r"st_[0-9a-z]{26}")


def new_ulid(prefix: str | None = None) -> str:
    value = str(ULID()).lower()
    return f"{prefix}{value}" if prefix else value


def new_stream_id() -> str:
    return new_ulid(STREAM_ID_PREFIX)


def is_stream_id(value: str) -> bool:
    """Whether `value` has the shape of an issued stream id (and is safe as a path part)."""
    return bool(_STREAM_ID_RE.fullmatch(value))
