"""Body chunking and streamed response reassembly."""

from collections import OrderedDict
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, NoReturn

from ..common.constants import DEFAULT_CHUNK_SIZE, ErrorCode
from ..common.log_base import get_logger
from .decoder import decode_body
from .exceptions import ProtocolViolationError
from .message import (
    Envelope,
    HttpErrorPayload,
    HttpResponseChunkPayload,
    HttpResponseEndPayload,
    HttpResponseHeaderPayload,
    HttpResponsePayload,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class Chunk:
    """One bounded fragment of a payload."""

    data: bytes
    index: int


class StreamChunker:
    """
    Split a payload into ordered chunks of at most ``chunk_size`` bytes.

    Chunks are produced on demand, either by pulling with ``next_chunk()``
    (cursor based, rewound with ``reset()``), by iterating (each ``iter()``
    starts from the beginning), or pushed to a callback with ``feed()``.
    An empty payload yields no chunks.
    """

    def __init__(self, payload: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        """
        Args:
            payload: Bytes to split
            chunk_size: Maximum chunk length, must be positive

        Raises:
            ValueError: If chunk_size is not positive
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")

        self.payload = bytes(payload)
        self.chunk_size = chunk_size
        self._offset = 0
        self._index = 0

    def __len__(self) -> int:
        """Number of chunks, ``ceil(len(payload) / chunk_size)``."""
        return -(-len(self.payload) // self.chunk_size)

    def __iter__(self) -> Iterator[Chunk]:
        for index, offset in enumerate(range(0, len(self.payload), self.chunk_size)):
            yield Chunk(self.payload[offset : offset + self.chunk_size], index)

    def next_chunk(self) -> Chunk | None:
        """Return the chunk at the cursor and advance, or None when exhausted."""
        if self._offset >= len(self.payload):
            return None

        chunk = Chunk(
            self.payload[self._offset : self._offset + self.chunk_size], self._index
        )
        self._offset += self.chunk_size
        self._index += 1
        return chunk

    def reset(self) -> None:
        """Rewind the ``next_chunk()`` cursor to the first chunk."""
        self._offset = 0
        self._index = 0

    @property
    def exhausted(self) -> bool:
        return self._offset >= len(self.payload)

    def feed(self, callback: Callable[[Chunk], Any]) -> int:
        """
        Push every chunk to ``callback`` in index order.

        Returns:
            Number of chunks delivered
        """
        count = 0
        for chunk in self:
            callback(chunk)
            count += 1
        return count


@dataclass
class AssembledResponse:
    """A response whose body has been fully received."""

    request_id: str
    status_code: int
    headers: dict[str, Any]
    body: bytes | None
    streamed: bool = False
    chunk_count: int = 0


@dataclass
class _StreamState:
    status_code: int
    headers: dict[str, Any]
    parts: list[bytes] = field(default_factory=list)

    @property
    def next_index(self) -> int:
        return len(self.parts)


class ResponseAssembler:
    """
    Receiver-side reconstruction of HTTP responses.

    Streamed bodies must arrive with contiguous indices starting at 0; a gap,
    a repeated index, or a chunk/end for a stream that is not open raises
    ``ProtocolViolationError`` and aborts that stream. Chunk sizes are not
    checked.

    With ``require_expect`` set, responses are only accepted for request ids
    registered through ``expect()``.
    """

    def __init__(self, require_expect: bool = False, ended_history: int = 1024) -> None:
        self.require_expect = require_expect
        self.ended_history = ended_history
        self._expected: set[str] = set()
        self._streams: dict[str, _StreamState] = {}
        self._ended: OrderedDict[str, None] = OrderedDict()

    def expect(self, request_id: str) -> None:
        """Register an outbound request whose response may now arrive."""
        self._expected.add(request_id)
        self._ended.pop(request_id, None)

    def pending(self) -> list[str]:
        """Request ids with a stream currently open."""
        return list(self._streams)

    def in_flight(self) -> list[str]:
        """Request ids expected or streaming that have not finished."""
        return sorted(self._expected | set(self._streams))

    def is_open(self, request_id: str) -> bool:
        return request_id in self._streams

    def was_ended(self, request_id: str) -> bool:
        return request_id in self._ended

    def discard(self, request_id: str) -> bool:
        """
        Drop an in-flight exchange (abort, timeout, remote error).

        Returns:
            Whether the request was open or expected
        """
        known = request_id in self._streams or request_id in self._expected
        self._finish(request_id)
        return known

    def handle(self, envelope: Envelope) -> AssembledResponse | None:
        """
        Feed one response-side envelope.

        Returns:
            The completed response when ``envelope`` finishes one, else None

        Raises:
            ProtocolViolationError: On any sequencing violation
        """
        payload = envelope.payload
        if isinstance(payload, HttpResponseHeaderPayload):
            self.open(payload.request_id, payload.status_code, payload.headers)
            return None
        if isinstance(payload, HttpResponsePayload):
            return self.complete(payload)
        if isinstance(payload, HttpResponseChunkPayload):
            self.add_chunk(payload.request_id, payload.chunk, payload.index)
            return None
        if isinstance(payload, HttpResponseEndPayload):
            return self.end(payload.request_id)
        if isinstance(payload, HttpErrorPayload):
            self._check_known(payload.request_id)
            self._finish(payload.request_id)
            return None

        raise ValueError(f"Not a response message: {envelope.type.value}")

    def complete(self, payload: HttpResponsePayload) -> AssembledResponse:
        """Accept a unary response."""
        request_id = payload.request_id
        if request_id in self._streams:
            self._violation(
                request_id,
                ErrorCode.STREAM_ALREADY_OPEN,
                "Unary response for a request that is already streaming",
            )
        self._check_known(request_id)

        try:
            body = decode_body(payload.body, payload.body_encoding)
        except ValueError as e:
            self._violation(request_id, ErrorCode.INVALID_CHUNK, str(e))

        self._finish(request_id)
        return AssembledResponse(
            request_id=request_id,
            status_code=payload.status_code,
            headers=payload.headers,
            body=body,
        )

    def open(self, request_id: str, status_code: int, headers: dict[str, Any]) -> None:
        """Start a streamed response."""
        if request_id in self._streams:
            self._violation(
                request_id,
                ErrorCode.STREAM_ALREADY_OPEN,
                "Streaming header repeated for an open request",
            )
        self._check_known(request_id)

        self._streams[request_id] = _StreamState(status_code, headers or {})
        logger.debug("Streaming response started", request_id=request_id)

    def add_chunk(self, request_id: str, chunk: str, index: int) -> None:
        """Append the chunk with the next expected index."""
        state = self._require_open(request_id, "Chunk")

        if isinstance(index, bool) or not isinstance(index, int) or index < 0:
            self._violation(request_id, ErrorCode.INVALID_CHUNK, f"Invalid chunk index {index!r}")
        if index < state.next_index:
            self._violation(request_id, ErrorCode.CHUNK_DUPLICATE, f"Duplicate chunk index {index}")
        if index > state.next_index:
            self._violation(
                request_id,
                ErrorCode.CHUNK_INDEX_GAP,
                f"Chunk index gap: expected {state.next_index}, got {index}",
            )

        try:
            data = decode_body(chunk) if isinstance(chunk, str) else None
        except ValueError as e:
            self._violation(request_id, ErrorCode.INVALID_CHUNK, str(e))
        if data is None:
            self._violation(request_id, ErrorCode.INVALID_CHUNK, "Chunk is not a base64 string")

        state.parts.append(data)
        logger.debug("Chunk received", request_id=request_id, index=index, size=len(data))

    def end(self, request_id: str) -> AssembledResponse:
        """Close a stream and return the reconstructed response."""
        state = self._require_open(request_id, "End")
        self._finish(request_id)

        body = b"".join(state.parts)
        logger.debug(
            "Streaming response complete",
            request_id=request_id,
            chunks=len(state.parts),
            total_size=len(body),
        )
        return AssembledResponse(
            request_id=request_id,
            status_code=state.status_code,
            headers=state.headers,
            body=body,
            streamed=True,
            chunk_count=len(state.parts),
        )

    def _require_open(self, request_id: str, what: str) -> _StreamState:
        state = self._streams.get(request_id)
        if state is not None:
            return state
        if request_id in self._ended:
            self._violation(
                request_id,
                ErrorCode.STREAM_ALREADY_ENDED,
                f"{what} for a request that has already ended",
            )
        if self.require_expect and request_id not in self._expected:
            self._violation(
                request_id, ErrorCode.UNKNOWN_REQUEST, f"{what} for an unknown request"
            )
        self._violation(
            request_id, ErrorCode.STREAM_NOT_OPEN, f"{what} for a request with no open stream"
        )

    def _check_known(self, request_id: str) -> None:
        if not self.require_expect or request_id in self._expected:
            return
        if request_id in self._ended:
            self._violation(
                request_id,
                ErrorCode.STREAM_ALREADY_ENDED,
                "Response for a request that has already ended",
            )
        self._violation(request_id, ErrorCode.UNKNOWN_REQUEST, "Response for an unknown request")

    def _finish(self, request_id: str) -> None:
        self._streams.pop(request_id, None)
        self._expected.discard(request_id)
        self._ended[request_id] = None
        self._ended.move_to_end(request_id)
        while len(self._ended) > self.ended_history:
            self._ended.popitem(last=False)

    def _violation(self, request_id: str, code: str, message: str) -> NoReturn:
        # Sequencing errors on an already-finished request do not re-abort it
        if code not in (ErrorCode.STREAM_ALREADY_ENDED, ErrorCode.UNKNOWN_REQUEST):
            self._finish(request_id)
        logger.warning("Protocol violation", request_id=request_id, code=code, error=message)
        raise ProtocolViolationError(message, request_id, code)
