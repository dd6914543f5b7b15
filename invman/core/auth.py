"""
User registration and authentication.

Passwords are stored as PBKDF2-HMAC-SHA256 hashes in the form
pbkdf2_sha256$<iterations>$<salt hex>$<hash hex>. Callers authenticate with
a "username:password" token; the resulting user id is the dispatcher
recorded in every audit row.
"""

import secrets
import sqlite3
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from util.logging import logger

from .audit import append_event
from .config import get_password_iterations
from .db import transaction
from .errors import AuthenticationError, RegistrationError, ValidationError
from .registry import get_config
from .schema import EventActionNo

HASH_ALGORITHM = "pbkdf2_sha256"
ADMIN_ROLE_ID = 1
USER_ROLE_ID = 2

# Same message for unknown user and wrong password
CREDENTIALS_MISMATCH = "Either username or password is incorrect"


@dataclass(frozen=True)
class UserIdentity:
    id: int
    username: str
    role_id: int

    @property
    def is_admin(self) -> bool:
        return self.role_id == ADMIN_ROLE_ID


def _kdf(salt: bytes, iterations: int) -> PBKDF2HMAC:
    return PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )


def hash_password(password: str, iterations: int = None) -> str:
    iterations = iterations or get_password_iterations()
    salt = secrets.token_bytes(16)
    digest = _kdf(salt, iterations).derive(password.encode())
    return f"{HASH_ALGORITHM}${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    """Constant-time check of a password against its stored hash."""
    try:
        algorithm, iterations, salt_hex, digest_hex = encoded.split("$")
        if algorithm != HASH_ALGORITHM:
            return False
        _kdf(bytes.fromhex(salt_hex), int(iterations)).verify(password.encode(), bytes.fromhex(digest_hex))
        return True
    except InvalidKey:
        return False
    except ValueError:
        logger.warning("Stored password hash has an unrecognized format")
        return False


def user_register(conn: sqlite3.Connection, username: str, password: str) -> UserIdentity:
    """Register a user. The very first user becomes administrator."""
    if not username or not username.strip():
        raise RegistrationError("Username cannot be empty")
    if not password:
        raise RegistrationError("Password cannot be empty")

    config = get_config(conn)
    if not config.allow_registration:
        raise RegistrationError("Registration is disabled by inventory administrator")

    password_hash = hash_password(password)

    with transaction(conn, "user_register"):
        taken = conn.execute(
            "SELECT COUNT(*) FROM invman_users WHERE username = ?", (username,)
        ).fetchone()[0]
        if taken:
            raise RegistrationError("Username already taken")

        active_users = conn.execute(
            "SELECT COUNT(*) FROM invman_users WHERE deleted_at IS NULL"
        ).fetchone()[0]
        role_id = ADMIN_ROLE_ID if active_users == 0 else USER_ROLE_ID

        cursor = conn.execute(
            "INSERT INTO invman_users (username, role_id, password) VALUES (?, ?, ?)",
            (username, role_id, password_hash)
        )
        user_id = cursor.lastrowid
        append_event(conn, EventActionNo.USER_REGISTER, dispatcher=user_id)

    logger.log_operation("user.register", "success", {"username": username, "role_id": role_id})
    return UserIdentity(id=user_id, username=username, role_id=role_id)


def user_auth(conn: sqlite3.Connection, username: str, password: str) -> UserIdentity:
    row = conn.execute(
        "SELECT id, role_id, password FROM invman_users WHERE username = ? AND deleted_at IS NULL",
        (username,)
    ).fetchone()

    if row is None or not verify_password(password, row["password"]):
        logger.log_auth_attempt(username, success=False, reason=CREDENTIALS_MISMATCH)
        raise AuthenticationError(CREDENTIALS_MISMATCH)

    logger.log_auth_attempt(username, success=True)
    return UserIdentity(id=row["id"], username=username, role_id=row["role_id"])


def parse_token(token: Optional[str]):
    """Split a "username:password" token on the first colon."""
    if not token:
        raise AuthenticationError("No auth token was provided")
    username, sep, password = token.partition(":")
    if not sep or not username:
        raise AuthenticationError("Failed to split the token")
    return username, password


def authenticate(conn: sqlite3.Connection, token: Optional[str]) -> UserIdentity:
    username, password = parse_token(token)
    return user_auth(conn, username, password)


USER_EDIT_OPTIONS = ("display_name", "password")


def user_edit(conn: sqlite3.Connection, user: UserIdentity, options) -> UserIdentity:
    """Change the caller's own display_name and/or password.

    options are "name=value" strings.
    """
    changes = {}
    for option in options:
        key, sep, value = option.partition("=")
        if not sep or key not in USER_EDIT_OPTIONS:
            raise ValidationError(f"Unknown user option '{key}', expected one of {', '.join(USER_EDIT_OPTIONS)}")
        if key in changes:
            raise ValidationError(f"User option {key} was given more than once")
        changes[key] = value
    if not changes:
        raise ValidationError("No user options were given to edit")
    if "password" in changes:
        if not changes["password"]:
            raise ValidationError("Password cannot be empty")
        changes["password"] = hash_password(changes["password"])

    assignments = ",".join(f"{key}=?" for key in changes)
    with transaction(conn, "user_edit"):
        conn.execute(f"UPDATE invman_users SET {assignments} WHERE id=?", list(changes.values()) + [user.id])

    logger.log_operation("user.edit", "success", {"username": user.username, "fields": list(changes)})
    return user
