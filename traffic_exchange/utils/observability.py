"""Observability helpers (correlation IDs, client request metadata)."""
from __future__ import annotations
import uuid
from typing import Mapping

REQUEST_ID_HEADER = "X-Request-ID"

def ensure_request_id(headers: Mapping[str, str]) -> str:
    return headers.get(REQUEST_ID_HEADER, None) or str(uuid.uuid4())

def client_ip(host: str | None) -> str:
    # Starlette reports None when the transport has no peer (e.g. some ASGI test harnesses)
    return host or "unknown"

__all__ = ["ensure_request_id", "client_ip", "REQUEST_ID_HEADER"]
