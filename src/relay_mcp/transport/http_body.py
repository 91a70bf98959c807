"""Bounded request body reading."""

from __future__ import annotations

from starlette.requests import Request

from relay_mcp.exceptions import ProtocolError
from relay_mcp.types.json_rpc import INVALID_REQUEST


class BodyTooLargeError(ProtocolError):
    """The request body is larger than the configured limit (HTTP 413)."""

    def __init__(self, max_body_bytes: int):
        super().__init__(
            INVALID_REQUEST,
            f"Request body exceeds max_body_bytes={max_body_bytes}",
            status_code=413,
        )
        self.max_body_bytes = max_body_bytes


async def read_request_body(request: Request, *, max_body_bytes: int) -> bytes:
    """Read an HTTP request body, never buffering more than `max_body_bytes`.

    Raises BodyTooLargeError as soon as the limit is crossed, up front when
    Content-Length already gives it away.
    """
    if max_body_bytes <= 0:
        raise ValueError("max_body_bytes must be positive")

    content_length = request.headers.get("content-length")
    if content_length is not None and content_length.isdigit() and int(content_length) > max_body_bytes:
        raise BodyTooLargeError(max_body_bytes)

    body = bytearray()
    async for chunk in request.stream():
        if len(body) + len(chunk) > max_body_bytes:
            raise BodyTooLargeError(max_body_bytes)
        body.extend(chunk)
    return bytes(body)
