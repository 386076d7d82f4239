"""API key and session authority for DevTunnel."""

import threading

from pydantic import BaseModel, Field

from .config import AuthConfig
from .constants import API_KEY_PREFIX, DEV_KEY_PERMISSIONS, DEV_KEY_PREFIX
from .log_base import get_logger
from .store import KeyValueStore, MemoryStore
from .utils import generate_token, mask_key, utc_now_iso

logger = get_logger(__name__)


class ApiKeyRecord(BaseModel):
    """Stored API key."""

    key: str
    user_id: str
    name: str
    permissions: list[str]
    created_at: str = Field(default_factory=utc_now_iso)
    last_used: str | None = None
    rate_limit: int  # requests per minute, not enforced here


class SessionRecord(BaseModel):
    """Stored tunnel session."""

    token: str
    api_key: str
    tunnel_id: str
    created_at: str = Field(default_factory=utc_now_iso)


class ApiKeyValidation(BaseModel):
    """Result of ``SessionAuthority.validate_api_key``."""

    valid: bool
    error: str | None = None
    user_id: str | None = None
    permissions: list[str] = Field(default_factory=list)
    rate_limit: int | None = None


class SessionValidation(BaseModel):
    """Result of ``SessionAuthority.validate_session``."""

    valid: bool
    error: str | None = None
    api_key: str | None = None
    tunnel_id: str | None = None
    created_at: str | None = None


def permission_matches(granted: str, permission: str) -> bool:
    """
    Check one granted permission string against a requested one.

    ``"*"`` grants everything, ``"<resource>:*"`` grants every action of a
    ``resource:action`` permission, anything else must match exactly.
    """
    if granted == "*" or granted == permission:
        return True

    granted_resource, sep, granted_action = granted.partition(":")
    if not sep or granted_action != "*":
        return False

    resource, sep, _ = permission.partition(":")
    return bool(sep) and resource == granted_resource


class SessionAuthority:
    """
    Owns API keys and tunnel sessions.

    A development key is minted on construction; it is not meant for
    production use. Every read-modify-write runs under one re-entrant lock,
    so revoking a key and dropping its sessions is observed as a single step.
    """

    def __init__(
        self,
        config: AuthConfig | None = None,
        key_store: KeyValueStore[str, ApiKeyRecord] | None = None,
        session_store: KeyValueStore[str, SessionRecord] | None = None,
    ) -> None:
        """
        Initialize authority.

        Args:
            config: Credential defaults
            key_store: Backing store for API keys (in-memory by default)
            session_store: Backing store for sessions (in-memory by default)
        """
        self.config = config or AuthConfig()
        self.api_keys = key_store if key_store is not None else MemoryStore()
        self.sessions = session_store if session_store is not None else MemoryStore()
        self._lock = threading.RLock()

        self.dev_key = self._create_default_key()

        logger.info("Session authority initialized", api_keys=len(self.api_keys))

    def _create_default_key(self) -> str:
        """Mint the development API key."""
        dev_key = DEV_KEY_PREFIX + generate_token()
        record = ApiKeyRecord(
            key=dev_key,
            user_id="dev-user",
            name="Development Key",
            permissions=list(DEV_KEY_PERMISSIONS),
            rate_limit=self.config.dev_key_rate_limit,
        )
        with self._lock:
            self.api_keys.set(dev_key, record)

        logger.warning(
            "Development API key created. Do not use it in production.",
            key=mask_key(dev_key),
        )
        return dev_key

    def get_dev_key(self) -> str:
        """Return the development API key."""
        return self.dev_key

    def create_api_key(
        self,
        user_id: str = "anonymous",
        name: str = "API Key",
        permissions: list[str] | None = None,
        rate_limit: int | None = None,
    ) -> str:
        """
        Issue a new API key.

        Args:
            user_id: Owner of the key
            name: Human readable label
            permissions: ``resource:action`` strings, ``resource:*`` or ``*``;
                defaults to the configured default permissions
            rate_limit: Requests per minute (informational)

        Returns:
            The new key
        """
        api_key = API_KEY_PREFIX + generate_token()
        record = ApiKeyRecord(
            key=api_key,
            user_id=user_id,
            name=name,
            permissions=list(
                permissions if permissions is not None else self.config.default_permissions
            ),
            rate_limit=rate_limit if rate_limit is not None else self.config.default_rate_limit,
        )
        with self._lock:
            self.api_keys.set(api_key, record)

        logger.info("API key created", user_id=user_id, name=name)
        return api_key

    def validate_api_key(self, api_key: str | None) -> ApiKeyValidation:
        """
        Validate an API key and stamp its ``last_used`` time.

        Returns:
            Validation result; ``valid`` is False for a missing or unknown key
        """
        if not api_key:
            return ApiKeyValidation(valid=False, error="No API key provided")

        with self._lock:
            record = self.api_keys.get(api_key)
            if record is None:
                return ApiKeyValidation(valid=False, error="Invalid API key")

            record.last_used = utc_now_iso()
            self.api_keys.set(api_key, record)

            return ApiKeyValidation(
                valid=True,
                user_id=record.user_id,
                permissions=list(record.permissions),
                rate_limit=record.rate_limit,
            )

    def has_permission(self, api_key: str | None, permission: str) -> bool:
        """Check whether a valid key grants ``permission``."""
        validation = self.validate_api_key(api_key)
        if not validation.valid:
            return False

        return any(permission_matches(p, permission) for p in validation.permissions)

    def create_session(self, api_key: str, tunnel_id: str) -> str:
        """
        Create a session binding ``api_key`` to a tunnel.

        The key is not re-validated; callers validate it first.

        Returns:
            Session token
        """
        session_token = generate_token()
        with self._lock:
            self.sessions.set(
                session_token,
                SessionRecord(token=session_token, api_key=api_key, tunnel_id=tunnel_id),
            )

        logger.debug("Session created", tunnel_id=tunnel_id)
        return session_token

    def validate_session(self, session_token: str | None) -> SessionValidation:
        """Look up a session token."""
        if not session_token:
            return SessionValidation(valid=False, error="Invalid session")

        with self._lock:
            session = self.sessions.get(session_token)

        if session is None:
            return SessionValidation(valid=False, error="Invalid session")

        return SessionValidation(
            valid=True,
            api_key=session.api_key,
            tunnel_id=session.tunnel_id,
            created_at=session.created_at,
        )

    def remove_session(self, session_token: str) -> None:
        """Remove a session. Removing an unknown token is a no-op."""
        with self._lock:
            removed = self.sessions.delete(session_token)

        if removed:
            logger.debug("Session removed")

    def sessions_for_key(self, api_key: str) -> list[str]:
        """Tokens of the live sessions opened with ``api_key``."""
        with self._lock:
            return [
                token for token, session in self.sessions.items() if session.api_key == api_key
            ]

    def revoke_api_key(self, api_key: str) -> bool:
        """
        Revoke a key together with every session opened with it.

        Returns:
            Whether the key existed
        """
        with self._lock:
            if self.api_keys.get(api_key) is None:
                return False

            dropped = 0
            for token, session in self.sessions.items():
                if session.api_key == api_key:
                    self.sessions.delete(token)
                    dropped += 1
            self.api_keys.delete(api_key)

        logger.info("API key revoked", key=mask_key(api_key), sessions_removed=dropped)
        return True

    def get_all_keys(self) -> list[dict[str, str | None]]:
        """List all keys with the key itself masked."""
        with self._lock:
            return [
                {
                    "key_preview": mask_key(key, visible=8),
                    "user_id": record.user_id,
                    "name": record.name,
                    "created_at": record.created_at,
                    "last_used": record.last_used,
                }
                for key, record in self.api_keys.items()
            ]
