"""Follow relations: follower and following lists and pending follow requests."""

from __future__ import annotations

from dataclasses import dataclass

from socialnet.profile import ProfileError
from socialnet.session import (
    UserNotFoundError,
    user_id_from_username,
    username_from_user_id,
)


@dataclass
class FollowRequest:
    """A pending request from ``follower_id`` (named ``username``) to follow."""

    follower_id: str
    username: str


def _names(conn, user_ids) -> list[str]:
    return [username_from_user_id(conn, uid) or "" for uid in user_ids]


def _follower_ids_of_username(conn, username: str) -> list[str]:
    rows = conn.execute(
        """
        SELECT follower_id
        FROM followers
        WHERE followed_id = (SELECT id FROM users WHERE username = ?) AND status = 'accepted'
        """,
        (username,),
    ).fetchall()
    return [row[0] for row in rows]


def _followed_ids_of_username(conn, username: str) -> list[str]:
    rows = conn.execute(
        """
        SELECT followed_id
        FROM followers
        WHERE follower_id = (SELECT id FROM users WHERE username = ?) AND status = 'accepted'
        """,
        (username,),
    ).fetchall()
    return [row[0] for row in rows]


def followers_and_following(conn, viewer_id: str, profile_user: str | None) -> dict:
    """Return who follows ``profile_user`` and whom they follow (accepted only).

    The result also tells whether the profile belongs to the viewer.
    """
    if not profile_user:
        raise ProfileError("Profile user is required")
    viewer = username_from_user_id(conn, viewer_id) or ""
    return {
        "followers": _names(conn, _follower_ids_of_username(conn, profile_user)),
        "following": _names(conn, _followed_ids_of_username(conn, profile_user)),
        "is_own_profile": viewer == profile_user,
    }


def my_followers_and_following(conn, user_id: str) -> dict:
    """Return the accepted followers and followed users of ``user_id`` by username."""
    follower_rows = conn.execute(
        "SELECT follower_id FROM followers WHERE followed_id = ? AND status = 'accepted'",
        (user_id,),
    ).fetchall()
    following_rows = conn.execute(
        "SELECT followed_id FROM followers WHERE follower_id = ? AND status = 'accepted'",
        (user_id,),
    ).fetchall()
    return {
        "followers": _names(conn, (row[0] for row in follower_rows)),
        "following": _names(conn, (row[0] for row in following_rows)),
    }


def pending_follow_requests(conn, user_id: str) -> list[FollowRequest]:
    """Return the follow requests awaiting the user's answer."""
    rows = conn.execute(
        "SELECT follower_id FROM Followers WHERE followed_id = ? AND status = 'pending'",
        (user_id,),
    ).fetchall()
    requests = []
    for (follower_id,) in rows:
        username = username_from_user_id(conn, follower_id)
        if username is None:
            raise UserNotFoundError("Failed to fetch username")
        requests.append(FollowRequest(follower_id=follower_id, username=username))
    return requests


def accept_follow_request(conn, user_id: str, follower_username: str | None) -> int:
    """Accept the follow request of ``follower_username``; return the rows changed."""
    try:
        follower_id = user_id_from_username(conn, follower_username or "")
    except UserNotFoundError:
        follower_id = ""
    with conn:
        cursor = conn.execute(
            "UPDATE Followers SET status = 'accepted' WHERE follower_id = ? AND followed_id = ?",
            (follower_id, user_id),
        )
    return cursor.rowcount