"""Tunnel protocol message construction and serialization."""

import base64
import json
from collections.abc import Iterator
from typing import Any

from ..common.constants import (
    DEFAULT_BODY_ENCODING,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_HTTP_ERROR_STATUS,
    DEFAULT_STREAM_THRESHOLD,
    ErrorCode,
)
from .chunking import StreamChunker
from .exceptions import EncodingError
from .message import (
    Envelope,
    ErrorPayload,
    HttpErrorPayload,
    HttpRequestPayload,
    HttpResponseChunkPayload,
    HttpResponseEndPayload,
    HttpResponseHeaderPayload,
    HttpResponsePayload,
    InspectRequestPayload,
    InspectResponsePayload,
    PingPayload,
    PongPayload,
    ReplayRequestPayload,
    ReplayResponsePayload,
    TunnelClosedPayload,
    TunnelClosePayload,
    TunnelRegisteredPayload,
    TunnelRegisterPayload,
)

BodyLike = bytes | bytearray | memoryview | str


def encode_body(body: BodyLike | None) -> tuple[str | None, str | None]:
    """
    Encode a body for JSON transport.

    Text is UTF-8 encoded first. An absent or empty body encodes to
    ``(None, None)``, so an empty body arrives as ``body: null`` rather
    than as an empty base64 string.

    Returns:
        Tuple of (encoded_body, body_encoding)

    Raises:
        EncodingError: If body is not text or bytes
    """
    if body is None:
        return None, None
    if isinstance(body, str):
        raw = body.encode("utf-8")
    elif isinstance(body, (bytes, bytearray, memoryview)):
        raw = bytes(body)
    else:
        raise EncodingError(f"Unsupported body type: {type(body).__name__}")

    if not raw:
        return None, None
    return base64.b64encode(raw).decode("ascii"), DEFAULT_BODY_ENCODING


def serialize_message(envelope: Envelope) -> str:
    """Serialize an envelope to its JSON text frame."""
    return json.dumps(envelope.to_dict(), separators=(",", ":"), ensure_ascii=False)


# Lifecycle


def create_tunnel_register_message(
    local_port: int, subdomain: str | None = None, auth_token: str | None = None
) -> Envelope:
    return Envelope.of(
        TunnelRegisterPayload(subdomain=subdomain, local_port=local_port, auth_token=auth_token)
    )


def create_tunnel_registered_message(
    tunnel_id: str, public_url: str, subdomain: str
) -> Envelope:
    return Envelope.of(
        TunnelRegisteredPayload(tunnel_id=tunnel_id, public_url=public_url, subdomain=subdomain)
    )


def create_tunnel_close_message(
    tunnel_id: str, reason: str = "Client requested close"
) -> Envelope:
    return Envelope.of(TunnelClosePayload(tunnel_id=tunnel_id, reason=reason))


def create_tunnel_closed_message(tunnel_id: str, reason: str = "") -> Envelope:
    return Envelope.of(TunnelClosedPayload(tunnel_id=tunnel_id, reason=reason))


# HTTP tunneling


def create_http_request_message(
    request_id: str,
    method: str,
    path: str,
    headers: dict[str, Any] | None = None,
    body: BodyLike | None = None,
    query: dict[str, Any] | None = None,
) -> Envelope:
    """
    Build an ``http:request`` envelope.

    Args:
        request_id: Correlation id echoed on every response message
        method: HTTP method
        path: Request path including the query string
        headers: Request headers
        body: Request body; bytes or text, always sent base64 encoded
        query: Parsed query parameters
    """
    encoded_body, body_encoding = encode_body(body)
    return Envelope.of(
        HttpRequestPayload(
            request_id=request_id,
            method=method,
            path=path,
            headers=headers or {},
            body=encoded_body,
            body_encoding=body_encoding,
            query=query or {},
        )
    )


def create_http_response_message(
    request_id: str,
    status_code: int,
    headers: dict[str, Any] | None = None,
    body: BodyLike | None = None,
    body_is_encoded: bool = False,
) -> Envelope:
    """
    Build a unary ``http:response`` envelope carrying the whole body.

    Args:
        body_is_encoded: ``body`` is already base64 text and is passed through
    """
    if body_is_encoded and body:
        if not isinstance(body, str):
            raise EncodingError("Pre-encoded body must be base64 text")
        encoded_body, body_encoding = body, DEFAULT_BODY_ENCODING
    else:
        encoded_body, body_encoding = encode_body(body)

    return Envelope.of(
        HttpResponsePayload(
            request_id=request_id,
            status_code=status_code,
            headers=headers or {},
            body=encoded_body,
            body_encoding=body_encoding,
        )
    )


def create_http_response_header_message(
    request_id: str, status_code: int, headers: dict[str, Any] | None = None
) -> Envelope:
    """Build the header-only ``http:response`` that opens a stream."""
    return Envelope.of(
        HttpResponseHeaderPayload(
            request_id=request_id, status_code=status_code, headers=headers or {}
        )
    )


def create_http_response_chunk_message(
    request_id: str, chunk: BodyLike, index: int
) -> Envelope:
    """
    Build an ``http:response:chunk`` envelope.

    Args:
        chunk: Raw bytes, or text that is already base64 encoded
        index: Position of this chunk in the stream, from 0
    """
    if isinstance(chunk, str):
        encoded = chunk
    elif isinstance(chunk, (bytes, bytearray, memoryview)):
        encoded = base64.b64encode(bytes(chunk)).decode("ascii")
    else:
        raise EncodingError(f"Unsupported chunk type: {type(chunk).__name__}")

    return Envelope.of(HttpResponseChunkPayload(request_id=request_id, chunk=encoded, index=index))


def create_http_response_end_message(request_id: str) -> Envelope:
    return Envelope.of(HttpResponseEndPayload(request_id=request_id))


def create_http_error_message(
    request_id: str,
    error: str,
    code: str = ErrorCode.REQUEST_FAILED,
    status_code: int = DEFAULT_HTTP_ERROR_STATUS,
) -> Envelope:
    """Build an ``http:error`` envelope; ``status_code`` is the relay's fallback answer."""
    return Envelope.of(
        HttpErrorPayload(request_id=request_id, error=error, code=code, status_code=status_code)
    )


# Heartbeat and errors


def create_ping_message() -> Envelope:
    return Envelope.of(PingPayload())


def create_pong_message(ping_timestamp: int | None) -> Envelope:
    return Envelope.of(PongPayload(ping_timestamp=ping_timestamp))


def create_error_message(error: str, code: str = ErrorCode.GENERIC_ERROR) -> Envelope:
    return Envelope.of(ErrorPayload(error=error, code=code))


# Inspection and replay


def create_inspect_request_message(tunnel_id: str, limit: int = 50) -> Envelope:
    return Envelope.of(InspectRequestPayload(tunnel_id=tunnel_id, limit=limit))


def create_inspect_response_message(
    tunnel_id: str, requests: list[dict[str, Any]] | None = None
) -> Envelope:
    return Envelope.of(InspectResponsePayload(tunnel_id=tunnel_id, requests=requests or []))


def create_replay_request_message(
    request_id: str, modifications: dict[str, Any] | None = None
) -> Envelope:
    return Envelope.of(
        ReplayRequestPayload(request_id=request_id, modifications=modifications or {})
    )


def create_replay_response_message(
    request_id: str,
    replay_request_id: str,
    status_code: int,
    headers: dict[str, Any] | None = None,
    body: BodyLike | None = None,
) -> Envelope:
    encoded_body, body_encoding = encode_body(body)
    return Envelope.of(
        ReplayResponsePayload(
            request_id=request_id,
            replay_request_id=replay_request_id,
            status_code=status_code,
            headers=headers or {},
            body=encoded_body,
            body_encoding=body_encoding,
        )
    )


class MessageEncoder:
    """Frames HTTP responses as unary or streamed envelope sequences."""

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        stream_threshold: int = DEFAULT_STREAM_THRESHOLD,
    ) -> None:
        """
        Initialize encoder.

        Args:
            chunk_size: Maximum raw bytes per streamed chunk
            stream_threshold: Bodies larger than this are streamed by default
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size
        self.stream_threshold = stream_threshold

    def should_stream(self, body: BodyLike | None) -> bool:
        """Whether a body is large enough to be streamed."""
        if body is None:
            return False
        size = len(body.encode("utf-8")) if isinstance(body, str) else len(body)
        return size > self.stream_threshold

    def iter_http_response(
        self,
        request_id: str,
        status_code: int,
        headers: dict[str, Any] | None = None,
        body: BodyLike | None = None,
        stream: bool | None = None,
    ) -> Iterator[Envelope]:
        """
        Lazily yield the envelopes framing one response.

        Unary mode yields a single ``http:response``. Streaming mode yields the
        header, one chunk per ``chunk_size`` bytes, and the end message; chunks
        are only encoded as the caller pulls them.

        Args:
            stream: Force streaming on or off; None decides by ``stream_threshold``
        """
        if stream is None:
            stream = self.should_stream(body)

        if not stream:
            yield create_http_response_message(request_id, status_code, headers, body)
            return

        if isinstance(body, str):
            raw = body.encode("utf-8")
        elif body is None:
            raw = b""
        else:
            raw = bytes(body)

        yield create_http_response_header_message(request_id, status_code, headers)
        for chunk in StreamChunker(raw, self.chunk_size):
            yield create_http_response_chunk_message(request_id, chunk.data, chunk.index)
        yield create_http_response_end_message(request_id)

    def encode_http_response(
        self,
        request_id: str,
        status_code: int,
        headers: dict[str, Any] | None = None,
        body: BodyLike | None = None,
        stream: bool | None = None,
    ) -> list[Envelope]:
        """Eager form of ``iter_http_response``."""
        return list(self.iter_http_response(request_id, status_code, headers, body, stream))
