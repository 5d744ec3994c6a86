"""User directory queries: listings, search and chat contacts."""

from __future__ import annotations

from dataclasses import dataclass

from socialnet.session import UserNotFoundError, username_from_user_id


@dataclass
class UserSummary:
    id: str
    username: str
    fullname: str
    avatar: str
    followed: bool


@dataclass
class SearchResult:
    id: str
    username: str
    email: str
    avatar: str


@dataclass
class ChatContact:
    username: str
    id: str
    avatar: str
    full_name: str


def list_users(conn, user_id: str) -> list[UserSummary]:
    """Return every other user, flagged with whether ``user_id`` follows them."""
    username = username_from_user_id(conn, user_id)
    if username is None:
        raise UserNotFoundError("Failed to get username")
    rows = conn.execute(
        """
        SELECT u.id, u.username, u.avatar,
               u.first_name || ' ' || u.last_name AS fullname,
               CASE WHEN f.status = 'accepted' THEN 1 ELSE 0 END AS followed
        FROM users u
        LEFT JOIN Followers f ON f.followed_id = u.id
             AND f.follower_id = (SELECT id FROM users WHERE username = ?)
        WHERE u.username != ?
        """,
        (username, username),
    ).fetchall()
    return [
        UserSummary(
            id=uid,
            username=name,
            fullname=fullname or "",
            avatar=avatar or "",
            followed=followed == 1,
        )
        for uid, name, avatar, fullname, followed in rows
    ]


def search_users(conn, search: str | None, group_id: str | None) -> list[SearchResult]:
    """Find users by username or e-mail substring, leaving out members of a group."""
    search = (search or "").strip()
    clauses = []
    args: list = []
    if search:
        pattern = f"%{search}%"
        clauses.append("(LOWER(u.username) LIKE LOWER(?) OR LOWER(u.email) LIKE LOWER(?))")
        args += [pattern, pattern]
    if group_id:
        clauses.append("u.id NOT IN (SELECT user_id FROM group_members WHERE group_id = ?)")
        args.append(group_id)
    where = "".join(f" AND {clause}" for clause in clauses)
    rows = conn.execute(
        "SELECT DISTINCT u.id, u.username, u.email, u.avatar FROM users u WHERE 1=1"
        f"{where} ORDER BY u.username",
        args,
    ).fetchall()
    return [
        SearchResult(id=uid, username=name, email=email or "", avatar=avatar or "")
        for uid, name, email, avatar in rows
    ]


def chat_contacts(conn, user_id: str) -> list[ChatContact]:
    """Return the users linked to ``user_id`` by an accepted follow either way."""
    rows = conn.execute(
        """
        SELECT DISTINCT u.username, u.id, u.avatar, u.first_name || ' ' || u.last_name
        FROM users u
        JOIN Followers f ON (f.followed_id = u.id AND f.follower_id = ?)
                         OR (f.follower_id = u.id AND f.followed_id = ?)
        WHERE u.id != ? AND f.status = 'accepted'
        ORDER BY u.username
        """,
        (user_id, user_id, user_id),
    ).fetchall()
    return [
        ChatContact(username=name, id=uid, avatar=avatar or "", full_name=full or "")
        for name, uid, avatar, full in rows
    ]