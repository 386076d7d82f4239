"""Protocol-related exceptions."""


class TunnelProtocolError(Exception):
    """Base exception for tunnel protocol errors."""

    pass


class EncodingError(TunnelProtocolError):
    """Raised when an envelope cannot be constructed from the given fields."""

    pass


class ProtocolViolationError(TunnelProtocolError):
    """Raised when a peer breaks the streaming response sequence.

    Attributes:
        request_id: Exchange the offending message belongs to
        code: Machine-readable violation code
    """

    def __init__(self, message: str, request_id: str | None, code: str) -> None:
        super().__init__(message)
        self.request_id = request_id
        self.code = code
