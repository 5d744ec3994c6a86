import sqlite3

import pytest

from socialnet.session import (
    AuthError,
    UserNotFoundError,
    active_session_count,
    check_token,
    create_session,
    delete_sessions,
    is_logged_in,
    require_user,
    user_id_from_token,
    user_id_from_username,
    username_from_user_id,
    validate_session,
)

PAST = "2000-01-01 00:00:00.000000"
ALICE_ID = "u1"
BOB_ID = "u2"


@pytest.fixture
def conn():
    db = sqlite3.connect(":memory:")
    db.executescript(
        """
        CREATE TABLE users (id TEXT PRIMARY KEY, username TEXT, email TEXT);
        CREATE TABLE sessions (session_id TEXT, user_id TEXT, token TEXT, expires_at TEXT);
        INSERT INTO users VALUES ('u1', 'alice', 'alice@example.com');
        INSERT INTO users VALUES ('u2', 'bob', 'bob@example.com');
        """
    )
    yield db
    db.close()


def expire(conn, token):
    with conn:
        conn.execute("UPDATE sessions SET expires_at = ? WHERE token = ?", (PAST, token))


def test_create_session_token_resolves_to_user(conn):
    token = create_session(conn, ALICE_ID)
    assert user_id_from_token(conn, token) == "u1"
    assert validate_session(conn, "u1", token) is True


def test_new_session_replaces_old_one(conn):
    first = create_session(conn, ALICE_ID)
    second = create_session(conn, ALICE_ID)
    assert user_id_from_token(conn, first) is None
    assert user_id_from_token(conn, second) == "u1"
    assert active_session_count(conn, "u1") == 1


def test_expired_session_is_invalid_and_removed(conn):
    token = create_session(conn, ALICE_ID)
    expire(conn, token)
    assert user_id_from_token(conn, token) is None
    assert active_session_count(conn, "u1") == 0
    assert validate_session(conn, "u1", token) is False
    remaining = conn.execute("SELECT COUNT(*) FROM sessions WHERE user_id = 'u1'").fetchone()[0]
    assert remaining == 0


def test_validate_session_wrong_user(conn):
    token = create_session(conn, ALICE_ID)
    assert validate_session(conn, "u2", token) is False


def test_delete_sessions(conn):
    token = create_session(conn, ALICE_ID)
    delete_sessions(conn, "u1")
    assert user_id_from_token(conn, token) is None
    assert active_session_count(conn, "u1") == 0


def test_empty_token_has_no_user(conn):
    assert user_id_from_token(conn, "") is None
    assert user_id_from_token(conn, None) is None


def test_require_user(conn):
    token = create_session(conn, BOB_ID)
    assert require_user(conn, token) == "u2"
    with pytest.raises(AuthError):
        require_user(conn, "token")
    with pytest.raises(AuthError):
        require_user(conn, None)


def test_username_from_user_id(conn):
    assert username_from_user_id(conn, "u1") == "alice"
    assert username_from_user_id(conn, "missing") is None


def test_user_id_from_username_or_email(conn):
    assert user_id_from_username(conn, "bob") == "u2"
    assert user_id_from_username(conn, "alice@example.com") == "u1"


def test_user_id_from_username_errors(conn):
    with pytest.raises(UserNotFoundError):
        user_id_from_username(conn, "nobody")
    with pytest.raises(UserNotFoundError):
        user_id_from_username(conn, "")


def test_is_logged_in(conn):
    token = create_session(conn, ALICE_ID)
    assert is_logged_in(conn, token) is True
    assert is_logged_in(conn, "token") is False
    assert is_logged_in(conn, None) is False


def test_check_token_messages(conn):
    token = create_session(conn, ALICE_ID)
    assert check_token(conn, None) == "No token found"
    assert check_token(conn, token) == "Login successful"
    assert check_token(conn, "token") == "Login failed"