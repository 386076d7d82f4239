"""Per-connection tunnel message handling for the relay."""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..common.auth import SessionAuthority
from ..common.config import DevTunnelConfig
from ..common.constants import DEFAULT_HTTP_ERROR_STATUS, ErrorCode
from ..common.log_base import get_logger
from ..common.utils import (
    build_public_url,
    filter_response_headers,
    generate_request_id,
    generate_subdomain,
    generate_tunnel_id,
    mask_key,
    sanitize_request_headers,
)
from ..protocol import (
    Envelope,
    MessageType,
    ProtocolViolationError,
    ResponseAssembler,
    create_error_message,
    create_http_error_message,
    create_http_request_message,
    create_pong_message,
    create_tunnel_closed_message,
    create_tunnel_registered_message,
    parse_message,
)
from ..protocol.encoder import BodyLike
from ..protocol.message import (
    HttpErrorPayload,
    TunnelClosePayload,
    TunnelRegisterPayload,
)

logger = get_logger(__name__)

TUNNEL_CREATE_PERMISSION = "tunnel:create"

RESPONSE_TYPES = frozenset(
    {
        MessageType.HTTP_RESPONSE,
        MessageType.HTTP_RESPONSE_CHUNK,
        MessageType.HTTP_RESPONSE_END,
        MessageType.HTTP_ERROR,
    }
)


@dataclass
class TunnelInfo:
    """An active tunnel on this connection."""

    tunnel_id: str
    subdomain: str
    public_url: str
    local_port: int
    session_token: str


@dataclass
class TunnelResponse:
    """Outcome of one forwarded exchange, handed to the public side."""

    request_id: str
    status_code: int
    headers: dict[str, Any] = field(default_factory=dict)
    body: bytes | None = None
    error: str | None = None
    code: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TunnelMessageHandler:
    """
    Handles frames arriving on one client connection.

    ``handle_frame`` returns the envelopes to send back on the same
    connection; completed or failed exchanges are delivered to
    ``on_response``. Transport and timeouts belong to the caller.
    """

    def __init__(
        self,
        authority: SessionAuthority,
        config: DevTunnelConfig | None = None,
        on_response: Callable[[TunnelResponse], Any] | None = None,
    ) -> None:
        self.authority = authority
        self.config = config or DevTunnelConfig()
        self.on_response = on_response
        self.assembler = ResponseAssembler(require_expect=True)
        self.tunnels: dict[str, TunnelInfo] = {}

    # Outbound

    def track_request(self, request_id: str) -> None:
        """Mark a forwarded request as awaiting its response."""
        self.assembler.expect(request_id)

    def build_request(
        self,
        method: str,
        path: str,
        headers: dict[str, Any] | None = None,
        body: BodyLike | None = None,
        query: dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> Envelope:
        """Build and track an ``http:request`` for a public request."""
        request_id = request_id or generate_request_id()
        envelope = create_http_request_message(
            request_id=request_id,
            method=method,
            path=path,
            headers=sanitize_request_headers(headers),
            body=body,
            query=query,
        )
        self.track_request(request_id)
        logger.debug("Request tunneled", request_id=request_id, method=method, path=path)
        return envelope

    def fail_request(
        self,
        request_id: str,
        error: str,
        code: str = ErrorCode.REQUEST_TIMEOUT,
        status_code: int = 504,
    ) -> bool:
        """
        Give up on an exchange (timeout, abort) and report it as failed.

        Returns:
            Whether the request was still in flight
        """
        if not self.assembler.discard(request_id):
            return False

        logger.warning("Request failed", request_id=request_id, code=code, error=error)
        self._deliver(
            TunnelResponse(request_id, status_code, error=error, code=code)
        )
        return True

    # Inbound

    def handle_frame(self, data: str | bytes) -> list[Envelope]:
        """
        Process one raw frame from the client.

        Returns:
            Envelopes to send back to the client
        """
        message = parse_message(data)
        if message is None:
            logger.warning("Invalid message format received")
            return [create_error_message("Invalid message format", ErrorCode.INVALID_MESSAGE)]

        logger.debug("Message received", message_type=message.type.value, request_id=message.request_id)

        if message.type == MessageType.TUNNEL_REGISTER:
            return self._handle_tunnel_register(message.payload)
        if message.type == MessageType.TUNNEL_CLOSE:
            return self._handle_tunnel_close(message.payload)
        if message.type in RESPONSE_TYPES:
            return self._handle_response_message(message)
        if message.type == MessageType.PING:
            return [create_pong_message(message.payload.timestamp)]
        if message.type == MessageType.PONG:
            return []

        logger.warning("Unhandled message type", message_type=message.type.value)
        return [
            create_error_message(
                f"Unknown message type: {message.type.value}", ErrorCode.UNKNOWN_MESSAGE
            )
        ]

    def _handle_tunnel_register(self, payload: TunnelRegisterPayload) -> list[Envelope]:
        api_key = payload.auth_token
        validation = self.authority.validate_api_key(api_key)
        if not validation.valid:
            code = ErrorCode.INVALID_API_KEY if api_key else ErrorCode.AUTH_REQUIRED
            logger.warning("Tunnel registration rejected", code=code, error=validation.error)
            return [create_error_message(validation.error or "Authentication failed", code)]

        if not self.authority.has_permission(api_key, TUNNEL_CREATE_PERMISSION):
            logger.warning(
                "Tunnel registration denied",
                user_id=validation.user_id,
                key=mask_key(api_key),
            )
            return [
                create_error_message(
                    f"Missing permission: {TUNNEL_CREATE_PERMISSION}",
                    ErrorCode.PERMISSION_DENIED,
                )
            ]

        subdomain = payload.subdomain or generate_subdomain()
        tunnel_id = generate_tunnel_id()
        relay = self.config.relay
        public_url = build_public_url(
            relay.scheme, subdomain, relay.public_domain, relay.http_port
        )
        session_token = self.authority.create_session(api_key, tunnel_id)

        self.tunnels[tunnel_id] = TunnelInfo(
            tunnel_id=tunnel_id,
            subdomain=subdomain,
            public_url=public_url,
            local_port=payload.local_port,
            session_token=session_token,
        )

        logger.info(
            "Tunnel active",
            tunnel_id=tunnel_id,
            public_url=public_url,
            local_port=payload.local_port,
            user_id=validation.user_id,
        )
        return [create_tunnel_registered_message(tunnel_id, public_url, subdomain)]

    def _handle_tunnel_close(self, payload: TunnelClosePayload) -> list[Envelope]:
        tunnel = self.tunnels.pop(payload.tunnel_id, None)
        if tunnel is None:
            logger.warning("Close for unknown tunnel", tunnel_id=payload.tunnel_id)
            return [
                create_error_message(
                    f"Tunnel not found: {payload.tunnel_id}", ErrorCode.TUNNEL_NOT_FOUND
                )
            ]

        self.authority.remove_session(tunnel.session_token)
        logger.info("Tunnel closed", tunnel_id=tunnel.tunnel_id, reason=payload.reason)
        return [create_tunnel_closed_message(tunnel.tunnel_id, payload.reason)]

    def _handle_response_message(self, message: Envelope) -> list[Envelope]:
        request_id = message.request_id
        try:
            assembled = self.assembler.handle(message)
        except ProtocolViolationError as e:
            return self._report_violation(e)

        if isinstance(message.payload, HttpErrorPayload):
            payload = message.payload
            logger.debug("Error response", request_id=request_id, code=payload.code)
            self._deliver(
                TunnelResponse(
                    request_id=request_id,
                    status_code=payload.status_code or DEFAULT_HTTP_ERROR_STATUS,
                    error=payload.error,
                    code=payload.code,
                )
            )
        elif assembled is not None:
            logger.debug(
                "Response complete",
                request_id=request_id,
                status_code=assembled.status_code,
                streamed=assembled.streamed,
            )
            self._deliver(
                TunnelResponse(
                    request_id=assembled.request_id,
                    status_code=assembled.status_code,
                    headers=filter_response_headers(assembled.headers),
                    body=assembled.body,
                )
            )
        return []

    def _report_violation(self, error: ProtocolViolationError) -> list[Envelope]:
        if error.code in (ErrorCode.UNKNOWN_REQUEST, ErrorCode.STREAM_ALREADY_ENDED):
            # No live exchange to fail
            return [create_error_message(str(error), error.code)]

        self._deliver(
            TunnelResponse(
                request_id=error.request_id,
                status_code=DEFAULT_HTTP_ERROR_STATUS,
                error=str(error),
                code=error.code,
            )
        )
        return [create_http_error_message(error.request_id, str(error), error.code)]

    def _deliver(self, response: TunnelResponse) -> None:
        if self.on_response is not None:
            self.on_response(response)

    # Lifecycle

    def prune_revoked(self) -> list[Envelope]:
        """
        Close tunnels whose session no longer validates (e.g. key revoked).

        Returns:
            ``tunnel:closed`` envelopes for the pruned tunnels
        """
        closed = []
        for tunnel_id, tunnel in list(self.tunnels.items()):
            if self.authority.validate_session(tunnel.session_token).valid:
                continue
            del self.tunnels[tunnel_id]
            logger.info("Tunnel session revoked", tunnel_id=tunnel_id)
            closed.append(create_tunnel_closed_message(tunnel_id, "Session revoked"))
        return closed

    def close(self) -> None:
        """Drop every tunnel and in-flight exchange on this connection."""
        for request_id in self.assembler.in_flight():
            self.fail_request(
                request_id,
                "Tunnel connection closed",
                ErrorCode.CONNECTION_CLOSED,
                DEFAULT_HTTP_ERROR_STATUS,
            )
        for tunnel in self.tunnels.values():
            self.authority.remove_session(tunnel.session_token)
        if self.tunnels:
            logger.info("Connection closed", tunnels=len(self.tunnels))
        self.tunnels.clear()
