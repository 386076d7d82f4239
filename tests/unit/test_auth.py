"""Unit tests for the session authority."""

import pytest

from devtunnel.common.auth import (
    ApiKeyRecord,
    SessionAuthority,
    SessionRecord,
    permission_matches,
)
from devtunnel.common.config import AuthConfig
from devtunnel.common.store import MemoryStore


class TestApiKeys:
    """Test API key issuance and validation."""

    def test_create_with_defaults(self, authority):
        """New keys get the default permissions and rate limit."""
        key = authority.create_api_key()
        validation = authority.validate_api_key(key)

        assert key.startswith("dt_")
        assert validation.valid
        assert validation.user_id == "anonymous"
        assert validation.permissions == ["tunnel:create", "tunnel:read"]
        assert validation.rate_limit == 60

    def test_create_with_options(self, authority):
        """Explicit options are stored."""
        key = authority.create_api_key(
            user_id="alice", name="CI", permissions=["replay:run"], rate_limit=5
        )
        validation = authority.validate_api_key(key)

        assert validation.user_id == "alice"
        assert validation.permissions == ["replay:run"]
        assert validation.rate_limit == 5

    def test_empty_permission_list_is_kept(self, authority):
        """An explicitly empty permission list is not replaced by defaults."""
        key = authority.create_api_key(permissions=[])
        assert authority.validate_api_key(key).permissions == []

    def test_keys_are_unique(self, authority):
        """Keys are random."""
        keys = {authority.create_api_key() for _ in range(50)}
        assert len(keys) == 50

    def test_config_defaults(self):
        """Defaults come from AuthConfig."""
        authority = SessionAuthority(
            AuthConfig(default_permissions=["tunnel:read"], default_rate_limit=10)
        )
        validation = authority.validate_api_key(authority.create_api_key())

        assert validation.permissions == ["tunnel:read"]
        assert validation.rate_limit == 10

    @pytest.mark.parametrize("key", [None, ""])
    def test_validate_missing(self, authority, key):
        """Missing key fails with a message."""
        validation = authority.validate_api_key(key)
        assert not validation.valid
        assert validation.error == "No API key provided"

    def test_validate_unknown(self, authority):
        """Unknown key fails with a message."""
        validation = authority.validate_api_key("dt_nope")
        assert not validation.valid
        assert validation.error == "Invalid API key"

    def test_validate_stamps_last_used(self, authority):
        """Validation records when a key was last used."""
        key = authority.create_api_key()
        assert authority.api_keys.get(key).last_used is None

        authority.validate_api_key(key)
        assert authority.api_keys.get(key).last_used is not None

    def test_returned_permissions_are_a_copy(self, authority):
        """Mutating a validation result does not grant anything."""
        key = authority.create_api_key(permissions=["tunnel:read"])
        authority.validate_api_key(key).permissions.append("*")

        assert not authority.has_permission(key, "tunnel:create")

    def test_get_all_keys_is_masked(self, authority):
        """Listing never exposes a full key."""
        key = authority.create_api_key(user_id="bob", name="Laptop")
        listing = authority.get_all_keys()

        assert len(listing) == 2
        entry = next(item for item in listing if item["user_id"] == "bob")
        assert entry["key_preview"] == key[:8] + "..."
        assert entry["name"] == "Laptop"
        assert all(key not in str(item) for item in listing)


class TestBootstrapKey:
    """Test the development key."""

    def test_exactly_one_valid_key(self, authority):
        """A fresh authority holds only the development key."""
        assert len(authority.api_keys) == 1

        dev_key = authority.get_dev_key()
        validation = authority.validate_api_key(dev_key)

        assert validation.valid
        assert "tunnel:create" in validation.permissions
        assert dev_key.startswith("dev_")

    def test_dev_key_permissions(self, authority):
        """The development key can create tunnels and replay."""
        dev_key = authority.get_dev_key()

        assert authority.has_permission(dev_key, "tunnel:create")
        assert authority.has_permission(dev_key, "tunnel:read")
        assert authority.has_permission(dev_key, "replay:execute")
        assert not authority.has_permission(dev_key, "admin:keys")
        assert authority.validate_api_key(dev_key).rate_limit == 100

    def test_each_authority_has_its_own_key(self):
        """Development keys are not shared between instances."""
        assert SessionAuthority().get_dev_key() != SessionAuthority().get_dev_key()


class TestPermissions:
    """Test permission resolution."""

    def test_resource_wildcard(self, authority):
        """resource:* grants every action on that resource only."""
        key = authority.create_api_key(permissions=["tunnel:*"])
        assert authority.has_permission(key, "tunnel:create")
        assert authority.has_permission(key, "tunnel:delete")
        assert not authority.has_permission(key, "replay:run")

    def test_other_resource_wildcard(self, authority):
        """http:* does not grant tunnel permissions."""
        key = authority.create_api_key(permissions=["http:*"])
        assert not authority.has_permission(key, "tunnel:create")

    def test_global_wildcard(self, authority):
        """* grants anything."""
        key = authority.create_api_key(permissions=["*"])
        assert authority.has_permission(key, "tunnel:create")
        assert authority.has_permission(key, "anything")

    def test_exact_match(self, authority):
        """An exact string grants itself and nothing else."""
        key = authority.create_api_key(permissions=["tunnel:create"])
        assert authority.has_permission(key, "tunnel:create")
        assert not authority.has_permission(key, "tunnel:read")

    def test_invalid_key(self, authority):
        """Unknown keys have no permissions."""
        assert not authority.has_permission("dt_unknown", "tunnel:create")
        assert not authority.has_permission(None, "tunnel:create")

    def test_has_permission_stamps_last_used(self, authority):
        """Permission checks go through validation."""
        key = authority.create_api_key()
        authority.has_permission(key, "tunnel:create")
        assert authority.api_keys.get(key).last_used is not None

    @pytest.mark.parametrize(
        "granted,requested,expected",
        [
            ("*", "tunnel:create", True),
            ("tunnel:*", "tunnel:create", True),
            ("tunnel:*", "tunnel", False),
            ("tunnel", "tunnel", True),
            ("tunnel", "tunnel:create", False),
            ("tunnel:create", "tunnel:create", True),
            ("tunnel:create", "tunnel:*", False),
            ("tun:*", "tunnel:create", False),
            ("tunnel:*", "tunnel:create:extra", True),
            ("a:b:*", "a:b:c", False),
        ],
    )
    def test_permission_matches(self, granted, requested, expected):
        """Matching rules for a single granted permission."""
        assert permission_matches(granted, requested) is expected


class TestSessions:
    """Test session lifecycle."""

    def test_create_and_validate(self, authority):
        """A created session validates with its binding."""
        key = authority.create_api_key()
        token = authority.create_session(key, "tun_1")
        validation = authority.validate_session(token)

        assert len(token) == 64
        assert validation.valid
        assert validation.api_key == key
        assert validation.tunnel_id == "tun_1"
        assert validation.created_at

    @pytest.mark.parametrize("token", [None, "", "missing"])
    def test_validate_absent(self, authority, token):
        """Absent tokens are invalid."""
        assert not authority.validate_session(token).valid

    def test_remove_is_idempotent(self, authority):
        """Removing twice, or removing an unknown token, is fine."""
        token = authority.create_session(authority.create_api_key(), "tun_1")

        authority.remove_session(token)
        authority.remove_session(token)
        authority.remove_session("never-existed")

        assert not authority.validate_session(token).valid

    def test_session_does_not_revalidate_key(self, authority):
        """Sessions can be created for any key string."""
        token = authority.create_session("dt_unchecked", "tun_1")
        assert authority.validate_session(token).valid

    def test_sessions_for_key(self, authority):
        """Sessions are listed per key."""
        key = authority.create_api_key()
        other = authority.create_api_key()
        t1 = authority.create_session(key, "t1")
        t2 = authority.create_session(key, "t2")
        authority.create_session(other, "t3")

        assert sorted(authority.sessions_for_key(key)) == sorted([t1, t2])


class TestRevocation:
    """Test key revocation."""

    def test_cascade(self, authority):
        """Revoking a key invalidates all its sessions."""
        key = authority.create_api_key()
        t1 = authority.create_session(key, "t1")
        t2 = authority.create_session(key, "t2")

        assert authority.revoke_api_key(key)

        assert not authority.validate_session(t1).valid
        assert not authority.validate_session(t2).valid
        assert not authority.validate_api_key(key).valid
        assert authority.sessions_for_key(key) == []

    def test_other_sessions_survive(self, authority):
        """Only the revoked key's sessions are removed."""
        key = authority.create_api_key()
        other = authority.create_api_key()
        authority.create_session(key, "t1")
        kept = authority.create_session(other, "t2")

        authority.revoke_api_key(key)
        assert authority.validate_session(kept).valid

    def test_revoke_unknown(self, authority):
        """Revoking an unknown key reports False."""
        assert not authority.revoke_api_key("dt_nope")

    def test_revoke_twice(self, authority):
        """The second revocation reports False."""
        key = authority.create_api_key()
        assert authority.revoke_api_key(key)
        assert not authority.revoke_api_key(key)

    def test_revoke_dev_key(self, authority):
        """The development key can be revoked like any other."""
        dev_key = authority.get_dev_key()
        assert authority.revoke_api_key(dev_key)
        assert not authority.validate_api_key(dev_key).valid


class TestCustomStores:
    """Test injecting backing stores."""

    def test_uses_given_stores(self):
        """Records land in the injected stores."""
        keys: MemoryStore[str, ApiKeyRecord] = MemoryStore()
        sessions: MemoryStore[str, SessionRecord] = MemoryStore()
        authority = SessionAuthority(key_store=keys, session_store=sessions)

        key = authority.create_api_key()
        token = authority.create_session(key, "t1")

        assert key in keys
        assert token in sessions
        assert len(keys) == 2

        authority.revoke_api_key(key)
        assert token not in sessions
