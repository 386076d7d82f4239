"""Project-wide constants for DevTunnel."""

# Protocol
MAX_CHUNK_SIZE = 64 * 1024
DEFAULT_CHUNK_SIZE = MAX_CHUNK_SIZE
DEFAULT_STREAM_THRESHOLD = MAX_CHUNK_SIZE
DEFAULT_HEARTBEAT_INTERVAL = 30.0
DEFAULT_BODY_ENCODING = "base64"
DEFAULT_HTTP_ERROR_STATUS = 502

# Auth
DEFAULT_PERMISSIONS = ("tunnel:create", "tunnel:read")
DEV_KEY_PERMISSIONS = ("tunnel:create", "tunnel:read", "replay:*")
DEFAULT_RATE_LIMIT = 60  # requests per minute, informational only
DEV_KEY_RATE_LIMIT = 100
API_KEY_PREFIX = "dt_"
DEV_KEY_PREFIX = "dev_"
TOKEN_BYTES = 32

# Relay
DEFAULT_PUBLIC_DOMAIN = "localhost"
DEFAULT_HTTP_PORT = 3000

HOP_BY_HOP_HEADERS = frozenset(
    {"connection", "keep-alive", "transfer-encoding", "upgrade", "proxy-connection"}
)
STRIPPED_REQUEST_HEADERS = frozenset({"host", "connection", "upgrade"})


class ErrorCode:
    """Machine-readable error codes carried in ``error`` and ``http:error``."""

    GENERIC_ERROR = "GENERIC_ERROR"
    INVALID_MESSAGE = "INVALID_MESSAGE"
    UNKNOWN_MESSAGE = "UNKNOWN_MESSAGE"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    INVALID_API_KEY = "INVALID_API_KEY"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    TUNNEL_NOT_FOUND = "TUNNEL_NOT_FOUND"
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
    REQUEST_FAILED = "REQUEST_FAILED"
    CONNECTION_CLOSED = "CONNECTION_CLOSED"

    # Stream sequencing violations
    CHUNK_INDEX_GAP = "CHUNK_INDEX_GAP"
    CHUNK_DUPLICATE = "CHUNK_DUPLICATE"
    INVALID_CHUNK = "INVALID_CHUNK"
    UNKNOWN_REQUEST = "UNKNOWN_REQUEST"
    STREAM_NOT_OPEN = "STREAM_NOT_OPEN"
    STREAM_ALREADY_OPEN = "STREAM_ALREADY_OPEN"
    STREAM_ALREADY_ENDED = "STREAM_ALREADY_ENDED"
