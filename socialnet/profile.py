"""User profiles: public details, follow relations, privacy and profile posts."""

from __future__ import annotations

from dataclasses import dataclass, field

from socialnet.session import AuthError, UserNotFoundError, username_from_user_id

PRIVACY_VALUES = ("public", "private")
NOT_FOLLOWING = "not_following"


class ProfileError(ValueError):
    """Raised when a profile request is malformed."""


@dataclass
class UserInfo:
    """Profile details; ``posts`` holds the number of posts the user wrote."""

    username: str
    email: str
    first_name: str
    last_name: str
    bio: str
    date_of_birth: str
    privacy: str
    avatar: str
    nickname: str
    follow_status: str = NOT_FOLLOWING
    followers_count: int = 0
    following_count: int = 0
    follower_usernames: list[str] = field(default_factory=list)
    following_usernames: list[str] = field(default_factory=list)
    posts: int = 0


@dataclass
class ProfilePost:
    id: str
    user_id: str
    author: str
    content: str
    title: str
    creation_date: str
    status: str
    avatar: str
    image: str
    comments_count: int = 0


def _text(value) -> str:
    return "" if value is None else str(value)


def _id_for_username(conn, username: str) -> str | None:
    row = conn.execute("SELECT id FROM users WHERE username = ?", (username,)).fetchone()
    return None if row is None else row[0]


def followers_count(conn, user_id: str) -> int:
    """Count the accepted followers of the user."""
    row = conn.execute(
        "SELECT COUNT(*) FROM followers WHERE followed_id = ? AND status = 'accepted'",
        (user_id,),
    ).fetchone()
    return int(row[0])


def following_count(conn, user_id: str) -> int:
    """Count the users the user follows with an accepted request."""
    row = conn.execute(
        "SELECT COUNT(*) FROM followers WHERE follower_id = ? AND status = 'accepted'",
        (user_id,),
    ).fetchone()
    return int(row[0])


def follower_usernames(conn, user_id: str) -> list[str]:
    """Return the usernames of the user's accepted followers."""
    rows = conn.execute(
        """
        SELECT u.username
        FROM users u
        JOIN followers f ON u.id = f.follower_id
        WHERE f.followed_id = ? AND f.status = 'accepted'
        """,
        (user_id,),
    ).fetchall()
    return [row[0] for row in rows]


def following_usernames(conn, user_id: str) -> list[str]:
    """Return the usernames the user follows with an accepted request."""
    rows = conn.execute(
        """
        SELECT u.username
        FROM users u
        JOIN followers f ON u.id = f.followed_id
        WHERE f.follower_id = ? AND f.status = 'accepted'
        """,
        (user_id,),
    ).fetchall()
    return [row[0] for row in rows]


def user_info(conn, viewer_id: str, username: str | None) -> UserInfo:
    """Return the profile of ``username`` as seen by ``viewer_id``."""
    if not username:
        raise ProfileError("Username is required")
    user_id = _id_for_username(conn, username)
    if user_id is None:
        raise UserNotFoundError("No user found")
    row = conn.execute(
        "SELECT username, email, first_name, last_name, bio, date_of_birth, privacy,"
        " avatar, nickname FROM users WHERE id = ?",
        (user_id,),
    ).fetchone()
    if row is None:
        raise UserNotFoundError("No user found")
    name, email, first, last, bio, born, privacy, avatar, nickname = (_text(v) for v in row)

    status_row = conn.execute(
        "SELECT status FROM followers WHERE follower_id = ? AND followed_id = ?",
        (viewer_id, user_id),
    ).fetchone()
    follow_status = NOT_FOLLOWING if status_row is None else status_row[0]

    post_count = conn.execute(
        "SELECT COUNT(*) FROM posts WHERE user_id = ?", (user_id,)
    ).fetchone()[0]

    return UserInfo(
        username=name,
        email=email,
        first_name=first,
        last_name=last,
        bio=bio,
        date_of_birth=born,
        privacy=privacy,
        avatar=avatar,
        nickname=nickname,
        follow_status=follow_status,
        followers_count=followers_count(conn, user_id),
        following_count=following_count(conn, user_id),
        follower_usernames=follower_usernames(conn, user_id),
        following_usernames=following_usernames(conn, user_id),
        posts=int(post_count),
    )


def update_privacy(conn, user_id: str, privacy: str | None) -> None:
    """Set the user's profile privacy to ``public`` or ``private``."""
    if privacy not in PRIVACY_VALUES:
        raise ProfileError("Invalid privacy value")
    username = username_from_user_id(conn, user_id)
    if username is None:
        raise AuthError("Unauthorized")
    with conn:
        conn.execute("UPDATE users SET privacy = ? WHERE username = ?", (privacy, username))


def is_accepted_follower(conn, viewer_id: str, owner_id: str) -> bool:
    """Tell whether ``viewer_id`` follows ``owner_id`` with an accepted request."""
    row = conn.execute(
        "SELECT EXISTS(SELECT 1 FROM followers WHERE follower_id = ? AND followed_id = ?"
        " AND status = 'accepted')",
        (viewer_id, owner_id),
    ).fetchone()
    return bool(row[0])


def is_following(conn, follower_username: str | None, followed_username: str | None) -> bool:
    """Tell whether one user follows another, both given by username."""
    if not follower_username or not followed_username:
        raise ProfileError("Missing parameters")
    follower_id = _id_for_username(conn, follower_username)
    if follower_id is None:
        raise UserNotFoundError("Error finding follower user")
    followed_id = _id_for_username(conn, followed_username)
    if followed_id is None:
        raise UserNotFoundError("Error finding followed user")
    return is_accepted_follower(conn, follower_id, followed_id)


def own_posts(conn, viewer_id: str, username: str | None) -> list[ProfilePost]:
    """Return the posts of ``username`` that ``viewer_id`` may see, newest first."""
    if not username:
        raise ProfileError("Username is required")
    user_id = _id_for_username(conn, username)
    if user_id is None:
        raise UserNotFoundError("User not found")
    rows = conn.execute(
        """
        SELECT DISTINCT p.id, p.user_id, p.author, p.content, p.title, p.creation_date,
               p.status, u.avatar, p.image
        FROM posts p
        LEFT JOIN posts_privacy pp ON p.id = pp.post_id
        LEFT JOIN users u ON p.user_id = u.id
        WHERE p.user_id = ?
          AND (
            p.status = 'public'
            OR (p.status = 'private' AND EXISTS (
                SELECT 1 FROM followers
                WHERE follower_id = ? AND followed_id = ? AND status = 'accepted'))
            OR (p.status = 'semi-private' AND pp.user_id = ?)
            OR (? = p.user_id)
          )
        ORDER BY p.creation_date DESC
        """,
        (user_id, viewer_id, user_id, viewer_id, viewer_id),
    ).fetchall()
    posts = []
    for pid, owner, author, content, title, created, status, avatar, image in rows:
        comments = conn.execute(
            "SELECT COUNT(*) FROM comments WHERE post_id = ?", (pid,)
        ).fetchone()[0]
        posts.append(
            ProfilePost(
                id=pid,
                user_id=owner,
                author=_text(author),
                content=_text(content),
                title=_text(title),
                creation_date=_text(created),
                status=_text(status),
                avatar=_text(avatar),
                image=_text(image),
                comments_count=int(comments),
            )
        )
    return posts


def my_privacy(conn, user_id: str) -> str:
    """Return the privacy setting of the user."""
    username = username_from_user_id(conn, user_id)
    row = None
    if username is not None:
        row = conn.execute(
            "SELECT privacy FROM users WHERE username = ?", (username,)
        ).fetchone()
    if row is None:
        raise UserNotFoundError("Failed to fetch privacy")
    return _text(row[0])