"""Tunnel protocol message structures.

Every wire message is an envelope ``{"type": ..., "payload": {...}}``. The
payload is one record per message type; field names are snake_case in Python
and camelCase on the wire.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from types import NoneType, UnionType
from typing import Any, ClassVar, Union, get_args, get_origin

from ..common.utils import now_ms


class MessageType(str, Enum):
    """Tunnel message types."""

    # Connection lifecycle
    TUNNEL_REGISTER = "tunnel:register"
    TUNNEL_REGISTERED = "tunnel:registered"
    TUNNEL_CLOSE = "tunnel:close"
    TUNNEL_CLOSED = "tunnel:closed"

    # HTTP tunneling
    HTTP_REQUEST = "http:request"
    HTTP_RESPONSE = "http:response"
    HTTP_RESPONSE_CHUNK = "http:response:chunk"
    HTTP_RESPONSE_END = "http:response:end"
    HTTP_ERROR = "http:error"

    # Heartbeat
    PING = "ping"
    PONG = "pong"

    ERROR = "error"

    # Dashboard inspection and replay
    INSPECT_REQUEST = "inspect:request"
    INSPECT_RESPONSE = "inspect:response"
    REPLAY_REQUEST = "replay:request"
    REPLAY_RESPONSE = "replay:response"


def _to_wire_name(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _matches(value: Any, annotation: Any) -> bool:
    """Check a decoded JSON value against a payload field annotation."""
    if annotation is Any:
        return True
    if annotation is NoneType:
        return value is None

    origin = get_origin(annotation)
    if origin in (Union, UnionType):
        return any(_matches(value, arg) for arg in get_args(annotation))

    expected = origin or annotation
    if expected is int:
        # JSON booleans decode to bool, a subclass of int
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, expected)


@dataclass
class Payload:
    """Base class for message payloads."""

    message_type: ClassVar[MessageType]

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary."""
        return {_to_wire_name(f.name): getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Payload":
        """
        Create from a wire dictionary.

        Unknown keys are ignored, as are keys for fields that are not set
        through the constructor.

        Raises:
            TypeError: If a required field is missing or a value does not
                have the field's type
        """
        kwargs = {}
        for f in fields(cls):
            wire_name = _to_wire_name(f.name)
            if not f.init or wire_name not in data:
                continue

            value = data[wire_name]
            if not _matches(value, f.type):
                raise TypeError(
                    f"{cls.__name__}.{wire_name} has invalid type {type(value).__name__}"
                )
            kwargs[f.name] = value
        return cls(**kwargs)


@dataclass
class TunnelRegisterPayload(Payload):
    """Client request to open a tunnel to ``local_port``."""

    message_type: ClassVar[MessageType] = MessageType.TUNNEL_REGISTER

    subdomain: str | None
    local_port: int
    auth_token: str | None = None
    timestamp: int = field(default_factory=now_ms)


@dataclass
class TunnelRegisteredPayload(Payload):
    """Relay confirmation of a registered tunnel."""

    message_type: ClassVar[MessageType] = MessageType.TUNNEL_REGISTERED

    tunnel_id: str
    public_url: str
    subdomain: str
    timestamp: int = field(default_factory=now_ms)


@dataclass
class TunnelClosePayload(Payload):
    message_type: ClassVar[MessageType] = MessageType.TUNNEL_CLOSE

    tunnel_id: str
    reason: str = "Client requested close"
    timestamp: int = field(default_factory=now_ms)


@dataclass
class TunnelClosedPayload(Payload):
    message_type: ClassVar[MessageType] = MessageType.TUNNEL_CLOSED

    tunnel_id: str
    reason: str = ""
    timestamp: int = field(default_factory=now_ms)


@dataclass
class HttpRequestPayload(Payload):
    """A public HTTP request forwarded to the client."""

    message_type: ClassVar[MessageType] = MessageType.HTTP_REQUEST

    request_id: str
    method: str
    path: str
    headers: dict[str, Any] = field(default_factory=dict)
    body: str | None = None
    body_encoding: str | None = None
    query: dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)


@dataclass
class HttpResponsePayload(Payload):
    """A complete (unary) HTTP response."""

    message_type: ClassVar[MessageType] = MessageType.HTTP_RESPONSE

    request_id: str
    status_code: int
    headers: dict[str, Any] = field(default_factory=dict)
    body: str | None = None
    body_encoding: str | None = None
    timestamp: int = field(default_factory=now_ms)


@dataclass
class HttpResponseHeaderPayload(Payload):
    """Header-only response opening a streamed body."""

    message_type: ClassVar[MessageType] = MessageType.HTTP_RESPONSE

    request_id: str
    status_code: int
    headers: dict[str, Any] = field(default_factory=dict)
    streaming: bool = field(default=True, init=False)
    timestamp: int = field(default_factory=now_ms)


@dataclass
class HttpResponseChunkPayload(Payload):
    """One base64 fragment of a streamed body."""

    message_type: ClassVar[MessageType] = MessageType.HTTP_RESPONSE_CHUNK

    request_id: str
    chunk: str
    index: int
    timestamp: int = field(default_factory=now_ms)


@dataclass
class HttpResponseEndPayload(Payload):
    message_type: ClassVar[MessageType] = MessageType.HTTP_RESPONSE_END

    request_id: str
    timestamp: int = field(default_factory=now_ms)


@dataclass
class HttpErrorPayload(Payload):
    """Failure of one exchange; ``status_code`` is what the relay answers with."""

    message_type: ClassVar[MessageType] = MessageType.HTTP_ERROR

    request_id: str
    error: str
    code: str
    status_code: int = 502
    timestamp: int = field(default_factory=now_ms)


@dataclass
class PingPayload(Payload):
    message_type: ClassVar[MessageType] = MessageType.PING

    timestamp: int = field(default_factory=now_ms)


@dataclass
class PongPayload(Payload):
    message_type: ClassVar[MessageType] = MessageType.PONG

    ping_timestamp: int | None = None
    timestamp: int = field(default_factory=now_ms)


@dataclass
class ErrorPayload(Payload):
    """Connection-level error not tied to a single exchange."""

    message_type: ClassVar[MessageType] = MessageType.ERROR

    error: str
    code: str = "GENERIC_ERROR"
    timestamp: int = field(default_factory=now_ms)


@dataclass
class InspectRequestPayload(Payload):
    message_type: ClassVar[MessageType] = MessageType.INSPECT_REQUEST

    tunnel_id: str
    limit: int = 50
    timestamp: int = field(default_factory=now_ms)


@dataclass
class InspectResponsePayload(Payload):
    message_type: ClassVar[MessageType] = MessageType.INSPECT_RESPONSE

    tunnel_id: str
    requests: list[dict[str, Any]] = field(default_factory=list)
    timestamp: int = field(default_factory=now_ms)


@dataclass
class ReplayRequestPayload(Payload):
    message_type: ClassVar[MessageType] = MessageType.REPLAY_REQUEST

    request_id: str
    modifications: dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)


@dataclass
class ReplayResponsePayload(Payload):
    message_type: ClassVar[MessageType] = MessageType.REPLAY_RESPONSE

    request_id: str
    replay_request_id: str
    status_code: int
    headers: dict[str, Any] = field(default_factory=dict)
    body: str | None = None
    body_encoding: str | None = None
    timestamp: int = field(default_factory=now_ms)


PAYLOAD_TYPES: dict[MessageType, type[Payload]] = {
    MessageType.TUNNEL_REGISTER: TunnelRegisterPayload,
    MessageType.TUNNEL_REGISTERED: TunnelRegisteredPayload,
    MessageType.TUNNEL_CLOSE: TunnelClosePayload,
    MessageType.TUNNEL_CLOSED: TunnelClosedPayload,
    MessageType.HTTP_REQUEST: HttpRequestPayload,
    MessageType.HTTP_RESPONSE: HttpResponsePayload,
    MessageType.HTTP_RESPONSE_CHUNK: HttpResponseChunkPayload,
    MessageType.HTTP_RESPONSE_END: HttpResponseEndPayload,
    MessageType.HTTP_ERROR: HttpErrorPayload,
    MessageType.PING: PingPayload,
    MessageType.PONG: PongPayload,
    MessageType.ERROR: ErrorPayload,
    MessageType.INSPECT_REQUEST: InspectRequestPayload,
    MessageType.INSPECT_RESPONSE: InspectResponsePayload,
    MessageType.REPLAY_REQUEST: ReplayRequestPayload,
    MessageType.REPLAY_RESPONSE: ReplayResponsePayload,
}


def payload_class_for(message_type: MessageType, data: dict[str, Any]) -> type[Payload]:
    """Select the payload record for a message type.

    ``http:response`` has two shapes; the streaming header is recognised by
    ``streaming: true``.
    """
    if message_type == MessageType.HTTP_RESPONSE and data.get("streaming") is True:
        return HttpResponseHeaderPayload
    return PAYLOAD_TYPES[message_type]


@dataclass
class Envelope:
    """A ``{type, payload}`` wire unit."""

    type: MessageType
    payload: Payload

    def __post_init__(self) -> None:
        if self.payload.message_type != self.type:
            raise ValueError(
                f"Payload {type(self.payload).__name__} does not match type {self.type.value}"
            )

    @classmethod
    def of(cls, payload: Payload) -> "Envelope":
        """Wrap a payload in an envelope of its own type."""
        return cls(type=payload.message_type, payload=payload)

    @property
    def request_id(self) -> str | None:
        """Correlation id, for exchange-scoped messages."""
        return getattr(self.payload, "request_id", None)

    @property
    def is_streaming_header(self) -> bool:
        return isinstance(self.payload, HttpResponseHeaderPayload)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary."""
        return {"type": self.type.value, "payload": self.payload.to_dict()}
