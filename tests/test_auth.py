"""
User registration, credential checks and auth tokens.
"""

import pytest

from invman.core.auth import hash_password, parse_token, verify_password
from invman.core.db import get_db
from invman.core.errors import AuthenticationError, RegistrationError, ValidationError
from invman.core.schema import EventActionNo


class TestPasswordHashing:
    """Test PBKDF2 password hashes."""

    def test_hash_format(self):
        encoded = hash_password("secret", iterations=1000)
        algorithm, iterations, salt, digest = encoded.split("$")
        assert algorithm == "pbkdf2_sha256"
        assert iterations == "1000"
        assert len(bytes.fromhex(salt)) == 16
        assert len(bytes.fromhex(digest)) == 32

    def test_verify(self):
        encoded = hash_password("secret")
        assert verify_password("secret", encoded)
        assert not verify_password("Secret", encoded)

    def test_salted(self):
        assert hash_password("secret") != hash_password("secret")

    def test_malformed_hash(self):
        assert not verify_password("secret", "plaintext")
        assert not verify_password("secret", "argon2$1$aa$bb")


class TestRegistration:
    """Test user registration."""

    def test_first_user_is_admin(self, backend):
        first = backend.user_register("alice", "pw")
        second = backend.user_register("bob", "pw")

        assert first.is_admin
        assert not second.is_admin
        assert second.role_id == 2

    def test_password_not_stored_in_clear(self, backend, db_path):
        backend.user_register("alice", "pw-in-clear")
        with get_db(db_path) as conn:
            stored = conn.execute("SELECT password FROM invman_users").fetchone()[0]
        assert "pw-in-clear" not in stored

    def test_register_event(self, backend):
        user = backend.user_register("alice", "pw")
        [event] = backend.events()
        assert event.action == EventActionNo.USER_REGISTER
        assert event.dispatcher == user.id

    def test_username_taken(self, backend, admin):
        with pytest.raises(RegistrationError, match="already taken"):
            backend.user_register("admin", "other")
        assert len(backend.events()) == 1

    @pytest.mark.parametrize("username,password", [("", "pw"), ("  ", "pw"), ("carol", "")])
    def test_empty_credentials(self, backend, username, password):
        with pytest.raises(RegistrationError):
            backend.user_register(username, password)

    def test_registration_disabled(self, backend, admin):
        config = backend.set_allow_registration(False, admin)
        assert config.allow_registration is False

        with pytest.raises(RegistrationError) as exc_info:
            backend.user_register("bob", "pw")
        assert str(exc_info.value) == \
            "User registration failed (Registration is disabled by inventory administrator)"

    def test_only_admin_toggles_registration(self, backend, admin):
        user = backend.user_register("bob", "pw")
        with pytest.raises(AuthenticationError):
            backend.set_allow_registration(False, user)
        assert backend.get_config().allow_registration is True


class TestAuthentication:
    """Test token parsing and credential verification."""

    def test_authenticate(self, backend, admin):
        user = backend.authenticate("admin:admin-pass")
        assert user == admin

    def test_password_may_contain_colon(self, backend):
        created = backend.user_register("alice", "a:b:c")
        assert backend.authenticate("alice:a:b:c").id == created.id

    def test_wrong_password(self, backend, admin):
        with pytest.raises(AuthenticationError) as exc_info:
            backend.authenticate("admin:wrong")
        assert str(exc_info.value) == "User authentication failure (Either username or password is incorrect)"

    def test_unknown_user_same_message(self, backend, admin):
        with pytest.raises(AuthenticationError, match="Either username or password is incorrect"):
            backend.authenticate("nobody:admin-pass")

    @pytest.mark.parametrize("token,reason", [
        (None, "No auth token was provided"),
        ("", "No auth token was provided"),
        ("no-colon", "Failed to split the token"),
        (":pw", "Failed to split the token"),
    ])
    def test_malformed_tokens(self, token, reason):
        with pytest.raises(AuthenticationError) as exc_info:
            parse_token(token)
        assert exc_info.value.reason == reason


class TestUserEdit:
    """Test editing one's own account."""

    def test_change_password(self, backend, admin):
        backend.user_edit(admin, ["password=new-pass"])

        assert backend.authenticate("admin:new-pass") == admin
        with pytest.raises(AuthenticationError):
            backend.authenticate("admin:admin-pass")

    def test_change_display_name(self, backend, admin, db_path):
        backend.user_edit(admin, ["display_name=The Admin"])
        with get_db(db_path) as conn:
            row = conn.execute("SELECT display_name FROM invman_users WHERE id = ?", (admin.id,)).fetchone()
        assert row[0] == "The Admin"

    @pytest.mark.parametrize("options", [[], ["role_id=1"], ["password"], ["password="],
                                         ["display_name=a", "display_name=b"]])
    def test_invalid_options(self, backend, admin, options):
        with pytest.raises(ValidationError):
            backend.user_edit(admin, options)
