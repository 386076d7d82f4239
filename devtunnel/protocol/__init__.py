"""
Tunnel protocol implementation.

JSON envelopes framing HTTP exchanges over one persistent connection, with
base64 body encoding, chunked streaming responses and strict reassembly.
"""

from .chunking import AssembledResponse, Chunk, ResponseAssembler, StreamChunker
from .decoder import decode_body, parse_message
from .encoder import (
    MessageEncoder,
    create_error_message,
    create_http_error_message,
    create_http_request_message,
    create_http_response_chunk_message,
    create_http_response_end_message,
    create_http_response_header_message,
    create_http_response_message,
    create_inspect_request_message,
    create_inspect_response_message,
    create_ping_message,
    create_pong_message,
    create_replay_request_message,
    create_replay_response_message,
    create_tunnel_close_message,
    create_tunnel_closed_message,
    create_tunnel_register_message,
    create_tunnel_registered_message,
    encode_body,
    serialize_message,
)
from .exceptions import EncodingError, ProtocolViolationError, TunnelProtocolError
from .message import Envelope, MessageType, Payload

__all__ = [
    "Envelope",
    "MessageType",
    "Payload",
    "MessageEncoder",
    "StreamChunker",
    "Chunk",
    "ResponseAssembler",
    "AssembledResponse",
    "parse_message",
    "serialize_message",
    "encode_body",
    "decode_body",
    "create_tunnel_register_message",
    "create_tunnel_registered_message",
    "create_tunnel_close_message",
    "create_tunnel_closed_message",
    "create_http_request_message",
    "create_http_response_message",
    "create_http_response_header_message",
    "create_http_response_chunk_message",
    "create_http_response_end_message",
    "create_http_error_message",
    "create_ping_message",
    "create_pong_message",
    "create_error_message",
    "create_inspect_request_message",
    "create_inspect_response_message",
    "create_replay_request_message",
    "create_replay_response_message",
    "TunnelProtocolError",
    "EncodingError",
    "ProtocolViolationError",
]
