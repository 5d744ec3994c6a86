"""Session tokens and user lookups backed by the ``sessions`` and ``users`` tables."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)

COOKIE_NAME = "token"
SESSION_LIFETIME = timedelta(hours=24)
COOKIE_LIFETIME = timedelta(hours=2)
TIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

MSG_NO_TOKEN = "No token found"
MSG_LOGIN_OK = "Login successful"
MSG_LOGIN_FAILED = "Login failed"


class AuthError(Exception):
    """Raised when a request carries no valid session."""


class UserNotFoundError(LookupError):
    """Raised when a username or e-mail matches no user."""


def _format_time(moment: datetime) -> str:
    return moment.strftime(TIME_FORMAT)


def _now() -> str:
    return _format_time(datetime.now())


def create_session(conn, user_id: str) -> str:
    """Replace every session of ``user_id`` with a fresh one and return its token."""
    delete_sessions(conn, user_id)
    token = str(uuid.uuid4())
    session_id = str(uuid.uuid4())
    expires_at = _format_time(datetime.now() + SESSION_LIFETIME)
    with conn:
        conn.execute(
            "INSERT INTO sessions (session_id, user_id, token, expires_at) VALUES (?, ?, ?, ?)",
            (session_id, user_id, token, expires_at),
        )
    return token


def validate_session(conn, user_id: str, token: str) -> bool:
    """Tell whether the user holds this unexpired token; expired sessions are removed."""
    row = conn.execute(
        "SELECT expires_at FROM sessions WHERE user_id = ? AND token = ? LIMIT 1",
        (user_id, token),
    ).fetchone()
    if row is None:
        return False
    if row[0] < _now():
        delete_sessions(conn, user_id)
        return False
    return True


def delete_sessions(conn, user_id: str) -> None:
    """Delete all sessions of the user."""
    with conn:
        conn.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))


def active_session_count(conn, user_id: str) -> int:
    """Count the user's sessions that have not expired."""
    row = conn.execute(
        "SELECT COUNT(*) FROM sessions WHERE user_id = ? AND expires_at > ?",
        (user_id, _now()),
    ).fetchone()
    return int(row[0])


def user_id_from_token(conn, token: str | None) -> str | None:
    """Return the user id bound to an unexpired token, or None."""
    if not token:
        return None
    row = conn.execute(
        "SELECT user_id FROM sessions WHERE token = ? AND expires_at > ?",
        (token, _now()),
    ).fetchone()
    if row is None:
        logger.debug("no valid session found for token")
        return None
    return row[0]


def require_user(conn, token: str | None) -> str:
    """Return the user id for the token or raise AuthError."""
    if not token:
        raise AuthError("Unauthorized: Missing token")
    user_id = user_id_from_token(conn, token)
    if not user_id:
        raise AuthError("Unauthorized: Invalid token")
    return user_id


def username_from_user_id(conn, user_id: str) -> str | None:
    """Return the username of a user id, or None when there is no such user."""
    row = conn.execute("SELECT username FROM users WHERE id = ?", (user_id,)).fetchone()
    return None if row is None else row[0]


def user_id_from_username(conn, username: str) -> str:
    """Return the id of the user with this username or e-mail address."""
    if not username:
        raise UserNotFoundError("empty username provided")
    row = conn.execute(
        "SELECT id FROM users WHERE username = ? OR email = ?",
        (username, username),
    ).fetchone()
    if row is None:
        raise UserNotFoundError(f"user not found: {username}")
    return row[0]


def is_logged_in(conn, token: str | None) -> bool:
    """Tell whether the token belongs to a live session."""
    return bool(user_id_from_token(conn, token))


def check_token(conn, token: str | None) -> str:
    """Return the login status message for a cookie token."""
    if token is None:
        return MSG_NO_TOKEN
    row = conn.execute("SELECT COUNT(*) FROM sessions WHERE token = ?", (token,)).fetchone()
    return MSG_LOGIN_OK if row[0] > 0 else MSG_LOGIN_FAILED