from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import Mapping


_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)

_REQUEST_ID_HEADERS = (
    "X-Request-ID",
    "X-Correlation-ID",
    "X-Provider-Request-ID",
)


def set_request_id(value: str | None) -> None:
    _request_id.set(value)


def get_request_id() -> str | None:
    return _request_id.get()


def resolve_request_id(headers: Mapping[str, str]) -> str:
    """Caller-supplied correlation id if any, otherwise a fresh one."""
    for name in _REQUEST_ID_HEADERS:
        value = headers.get(name) or headers.get(name.lower())
        if value and value.strip():
            return value.strip()[:128]
    return str(uuid.uuid4())
