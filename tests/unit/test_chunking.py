"""Unit tests for chunking and streamed response reassembly."""

import base64
import math

import pytest

from devtunnel.common.constants import MAX_CHUNK_SIZE, ErrorCode
from devtunnel.protocol import (
    MessageEncoder,
    ProtocolViolationError,
    ResponseAssembler,
    StreamChunker,
    create_http_error_message,
    create_http_response_chunk_message,
    create_http_response_end_message,
    create_http_response_header_message,
    create_http_response_message,
    create_ping_message,
)


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


class TestStreamChunker:
    """Test payload chunking."""

    @pytest.mark.parametrize(
        "size,chunk_size",
        [(0, 4), (1, 4), (4, 4), (5, 4), (12, 4), (13, 5), (100, 1), (3, 100)],
    )
    def test_chunk_law(self, size, chunk_size):
        """Chunks reassemble the payload with contiguous indices."""
        payload = bytes(i % 251 for i in range(size))
        chunks = list(StreamChunker(payload, chunk_size))

        assert b"".join(c.data for c in chunks) == payload
        assert len(chunks) == math.ceil(size / chunk_size)
        assert [c.index for c in chunks] == list(range(len(chunks)))
        assert all(len(c.data) <= chunk_size for c in chunks)

    def test_final_chunk_length(self):
        """Only the last chunk may be short."""
        chunks = list(StreamChunker(b"x" * 10, 4))
        assert [len(c.data) for c in chunks] == [4, 4, 2]

    def test_exact_multiple(self):
        """An exact multiple ends with a full chunk."""
        chunks = list(StreamChunker(b"x" * 8, 4))
        assert [len(c.data) for c in chunks] == [4, 4]

    def test_empty_payload(self):
        """Empty payload yields nothing."""
        chunker = StreamChunker(b"", 4)
        assert list(chunker) == []
        assert chunker.next_chunk() is None
        assert len(chunker) == 0

    def test_default_chunk_size(self):
        """Default bound is 64KiB."""
        chunker = StreamChunker(b"x" * (MAX_CHUNK_SIZE + 1))
        assert chunker.chunk_size == 65536
        assert [len(c.data) for c in chunker] == [65536, 1]

    def test_iteration_is_restartable(self):
        """Each iteration starts from the first chunk."""
        chunker = StreamChunker(b"abcdef", 2)
        assert list(chunker) == list(chunker)

    def test_pull_cursor(self):
        """next_chunk advances until exhausted and reset rewinds."""
        chunker = StreamChunker(b"abcde", 2)

        pulled = []
        while (chunk := chunker.next_chunk()) is not None:
            pulled.append(chunk)

        assert [c.data for c in pulled] == [b"ab", b"cd", b"e"]
        assert chunker.exhausted

        chunker.reset()
        first = chunker.next_chunk()
        assert first.index == 0
        assert first.data == b"ab"

    def test_feed_pushes_in_order(self):
        """feed delivers every chunk to the callback."""
        received = []
        count = StreamChunker(b"abcde", 2).feed(received.append)

        assert count == 3
        assert [c.index for c in received] == [0, 1, 2]

    def test_accepts_bytearray(self):
        """Mutable buffers are copied."""
        buffer = bytearray(b"abc")
        chunker = StreamChunker(buffer, 2)
        buffer[0] = ord("z")
        assert b"".join(c.data for c in chunker) == b"abc"

    @pytest.mark.parametrize("chunk_size", [0, -1])
    def test_invalid_chunk_size(self, chunk_size):
        """Chunk size must be positive."""
        with pytest.raises(ValueError):
            StreamChunker(b"abc", chunk_size)


class TestResponseAssembler:
    """Test receiver-side reconstruction."""

    def test_streamed_reconstruction(self):
        """Chunks in index order rebuild the body."""
        body = bytes(range(256)) * 10
        assembler = ResponseAssembler()
        result = None
        for envelope in MessageEncoder(chunk_size=100, stream_threshold=0).iter_http_response(
            "req-1", 200, {"content-type": "application/octet-stream"}, body
        ):
            result = assembler.handle(envelope)

        assert result is not None
        assert result.body == body
        assert result.streamed
        assert result.chunk_count == 26
        assert result.status_code == 200
        assert assembler.pending() == []

    def test_unary_response(self):
        """Unary responses complete immediately."""
        assembler = ResponseAssembler()
        result = assembler.handle(create_http_response_message("req-1", 404, {}, b"missing"))

        assert result.body == b"missing"
        assert result.status_code == 404
        assert not result.streamed

    def test_unary_without_body(self):
        """Absent unary bodies stay absent."""
        result = ResponseAssembler().handle(create_http_response_message("req-1", 204))
        assert result.body is None

    def test_zero_chunks(self):
        """Header followed directly by end yields an empty body."""
        assembler = ResponseAssembler()
        assembler.handle(create_http_response_header_message("req-1", 200))
        result = assembler.handle(create_http_response_end_message("req-1"))

        assert result.body == b""
        assert result.chunk_count == 0

    def test_index_gap(self):
        """A skipped index is a violation and aborts the stream."""
        assembler = ResponseAssembler()
        assembler.open("req-1", 200, {})
        assembler.add_chunk("req-1", b64(b"a"), 0)

        with pytest.raises(ProtocolViolationError) as exc_info:
            assembler.add_chunk("req-1", b64(b"c"), 2)

        assert exc_info.value.code == ErrorCode.CHUNK_INDEX_GAP
        assert exc_info.value.request_id == "req-1"
        assert not assembler.is_open("req-1")

    def test_first_chunk_must_be_zero(self):
        """Streams start at index 0."""
        assembler = ResponseAssembler()
        assembler.open("req-1", 200, {})

        with pytest.raises(ProtocolViolationError) as exc_info:
            assembler.add_chunk("req-1", b64(b"a"), 1)
        assert exc_info.value.code == ErrorCode.CHUNK_INDEX_GAP

    def test_duplicate_index(self):
        """A repeated index is a violation."""
        assembler = ResponseAssembler()
        assembler.open("req-1", 200, {})
        assembler.add_chunk("req-1", b64(b"a"), 0)

        with pytest.raises(ProtocolViolationError) as exc_info:
            assembler.add_chunk("req-1", b64(b"a"), 0)
        assert exc_info.value.code == ErrorCode.CHUNK_DUPLICATE

    def test_chunk_after_end(self):
        """Chunks after end are rejected."""
        assembler = ResponseAssembler()
        assembler.open("req-1", 200, {})
        assembler.end("req-1")

        with pytest.raises(ProtocolViolationError) as exc_info:
            assembler.handle(create_http_response_chunk_message("req-1", b"late", 0))
        assert exc_info.value.code == ErrorCode.STREAM_ALREADY_ENDED

    def test_end_after_end(self):
        """A second end is rejected."""
        assembler = ResponseAssembler()
        assembler.open("req-1", 200, {})
        assembler.end("req-1")

        with pytest.raises(ProtocolViolationError) as exc_info:
            assembler.end("req-1")
        assert exc_info.value.code == ErrorCode.STREAM_ALREADY_ENDED

    def test_chunk_without_header(self):
        """Chunks for a stream that never opened are rejected."""
        with pytest.raises(ProtocolViolationError) as exc_info:
            ResponseAssembler().add_chunk("req-9", b64(b"x"), 0)
        assert exc_info.value.code == ErrorCode.STREAM_NOT_OPEN

    def test_end_without_header(self):
        """End for a stream that never opened is rejected."""
        with pytest.raises(ProtocolViolationError) as exc_info:
            ResponseAssembler().handle(create_http_response_end_message("req-9"))
        assert exc_info.value.code == ErrorCode.STREAM_NOT_OPEN

    def test_repeated_header(self):
        """A second header for an open stream is rejected."""
        assembler = ResponseAssembler()
        assembler.open("req-1", 200, {})

        with pytest.raises(ProtocolViolationError) as exc_info:
            assembler.open("req-1", 200, {})
        assert exc_info.value.code == ErrorCode.STREAM_ALREADY_OPEN

    def test_unary_while_streaming(self):
        """A unary response cannot complete an open stream."""
        assembler = ResponseAssembler()
        assembler.open("req-1", 200, {})

        with pytest.raises(ProtocolViolationError) as exc_info:
            assembler.handle(create_http_response_message("req-1", 200, body=b"x"))
        assert exc_info.value.code == ErrorCode.STREAM_ALREADY_OPEN

    def test_invalid_chunk_payload(self):
        """Non-base64 chunk data and bad indices are rejected."""
        assembler = ResponseAssembler()
        assembler.open("req-1", 200, {})
        with pytest.raises(ProtocolViolationError) as exc_info:
            assembler.add_chunk("req-1", "%%%", 0)
        assert exc_info.value.code == ErrorCode.INVALID_CHUNK

        assembler.open("req-2", 200, {})
        with pytest.raises(ProtocolViolationError) as exc_info:
            assembler.add_chunk("req-2", b64(b"x"), "0")
        assert exc_info.value.code == ErrorCode.INVALID_CHUNK

    def test_oversized_chunk_accepted(self):
        """Chunk size is not enforced on receipt."""
        big = b"x" * (MAX_CHUNK_SIZE * 2)
        assembler = ResponseAssembler()
        assembler.open("req-1", 200, {})
        assembler.add_chunk("req-1", b64(big), 0)

        assert assembler.end("req-1").body == big

    def test_interleaved_streams(self):
        """Concurrent streams are kept apart by request id."""
        assembler = ResponseAssembler()
        assembler.open("a", 200, {})
        assembler.open("b", 201, {})
        assembler.add_chunk("a", b64(b"a0"), 0)
        assembler.add_chunk("b", b64(b"b0"), 0)
        assembler.add_chunk("a", b64(b"a1"), 1)

        assert sorted(assembler.pending()) == ["a", "b"]
        assert assembler.end("b").body == b"b0"
        assert assembler.end("a").body == b"a0a1"

    def test_request_id_reuse_after_completion(self):
        """A finished request id may open a new stream."""
        assembler = ResponseAssembler()
        assembler.open("req-1", 200, {})
        assembler.end("req-1")

        assembler.open("req-1", 200, {})
        assembler.add_chunk("req-1", b64(b"again"), 0)
        assert assembler.end("req-1").body == b"again"

    def test_require_expect(self):
        """Strict mode only accepts expected request ids."""
        assembler = ResponseAssembler(require_expect=True)

        with pytest.raises(ProtocolViolationError) as exc_info:
            assembler.handle(create_http_response_message("stray", 200))
        assert exc_info.value.code == ErrorCode.UNKNOWN_REQUEST

        with pytest.raises(ProtocolViolationError) as exc_info:
            assembler.add_chunk("stray", b64(b"x"), 0)
        assert exc_info.value.code == ErrorCode.UNKNOWN_REQUEST

        assembler.expect("req-1")
        assert assembler.in_flight() == ["req-1"]
        assert assembler.handle(create_http_response_message("req-1", 200)).status_code == 200
        assert assembler.in_flight() == []

        with pytest.raises(ProtocolViolationError) as exc_info:
            assembler.handle(create_http_response_message("req-1", 200))
        assert exc_info.value.code == ErrorCode.STREAM_ALREADY_ENDED

    def test_http_error_finishes_stream(self):
        """A remote error closes the stream."""
        assembler = ResponseAssembler()
        assembler.open("req-1", 200, {})
        assert assembler.handle(create_http_error_message("req-1", "boom", "REQUEST_FAILED")) is None

        assert not assembler.is_open("req-1")
        assert assembler.was_ended("req-1")

    def test_discard(self):
        """Discarding aborts an in-flight stream."""
        assembler = ResponseAssembler()
        assembler.open("req-1", 200, {})

        assert assembler.discard("req-1")
        assert not assembler.discard("never-seen")
        with pytest.raises(ProtocolViolationError) as exc_info:
            assembler.add_chunk("req-1", b64(b"x"), 0)
        assert exc_info.value.code == ErrorCode.STREAM_ALREADY_ENDED

    def test_ended_history_is_bounded(self):
        """Only recent finished ids are remembered."""
        assembler = ResponseAssembler(ended_history=2)
        for request_id in ("a", "b", "c"):
            assembler.open(request_id, 200, {})
            assembler.end(request_id)

        assert not assembler.was_ended("a")
        assert assembler.was_ended("b")
        assert assembler.was_ended("c")

    def test_rejects_non_response_messages(self):
        """Only response-side envelopes can be fed."""
        with pytest.raises(ValueError):
            ResponseAssembler().handle(create_ping_message())
