"""Posts: visibility rules, feeds, image uploads and creation."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from socialnet.session import (
    TIME_FORMAT,
    AuthError,
    UserNotFoundError,
    user_id_from_username,
    username_from_user_id,
)

MAX_TITLE_LENGTH = 100
MAX_CONTENT_LENGTH = 1000
MAX_IMAGE_SIZE = 2 * 1024 * 1024
ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/gif")

_SIGNATURES = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


class PostError(ValueError):
    """Raised when a post or its image is rejected."""


@dataclass
class Post:
    id: str
    user_id: str
    author: str
    avatar: str
    content: str
    title: str
    image: str
    creation_date: str
    status: str


@dataclass
class PrivacyEntry:
    id: str
    post_id: str
    user_id: str
    username: str


@dataclass
class ImageUpload:
    filename: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def can_view_post(conn, user_id: str, post_id: str) -> bool:
    """Tell whether ``user_id`` may see the post."""
    row = conn.execute("SELECT user_id, status FROM posts WHERE id = ?", (post_id,)).fetchone()
    if row is None:
        return False
    owner_id, status = row[0], row[1]
    if user_id == owner_id:
        return True
    if status == "public":
        return True
    if status == "semi-private":
        found = conn.execute(
            "SELECT EXISTS (SELECT 1 FROM posts_privacy WHERE post_id = ? AND user_id = ?)",
            (post_id, user_id),
        ).fetchone()
        return bool(found[0])
    if status == "private":
        found = conn.execute(
            "SELECT EXISTS (SELECT 1 FROM Followers WHERE follower_id = ? AND followed_id = ?"
            " AND status = 'accepted')",
            (user_id, owner_id),
        ).fetchone()
        return bool(found[0])
    return False


def visible_posts(conn, user_id: str, uploads_url: str) -> list[Post]:
    """Return the feed of posts ``user_id`` may see, newest first."""
    rows = conn.execute(
        """
        SELECT DISTINCT p.id, p.author, p.content, p.title, p.user_id, p.creation_date,
               p.status, u.avatar, p.image
        FROM posts p
        LEFT JOIN posts_privacy pp ON p.id = pp.post_id
        LEFT JOIN Followers f ON p.user_id = f.followed_id
        LEFT JOIN users u ON p.user_id = u.id
        WHERE p.status = 'public'
           OR (p.status = 'semi-private' AND pp.user_id = ?)
           OR (f.follower_id = ? AND f.status = 'accepted')
           OR p.user_id = ?
        ORDER BY p.creation_date DESC
        """,
        (user_id, user_id, user_id),
    ).fetchall()
    posts = []
    for pid, author, content, title, owner, created, status, avatar, image in rows:
        if not can_view_post(conn, user_id, pid):
            continue
        image = image or ""
        if image:
            image = f"{uploads_url.rstrip('/')}/{image}"
        posts.append(
            Post(
                id=pid,
                user_id=owner,
                author=author,
                avatar=avatar or "",
                content=content,
                title=title,
                image=image,
                creation_date=created,
                status=status,
            )
        )
    return posts


def privacy_entries(conn) -> list[PrivacyEntry]:
    """Return every post-privacy grant with the granted user's name."""
    rows = conn.execute("SELECT id, post_id, user_id FROM posts_privacy").fetchall()
    return [
        PrivacyEntry(
            id=entry_id,
            post_id=post_id,
            user_id=uid,
            username=username_from_user_id(conn, uid) or "",
        )
        for entry_id, post_id, uid in rows
    ]


def validate_post(title: str | None, content: str | None) -> None:
    """Raise PostError unless title and content are present and within limits."""
    if not title or not content:
        raise PostError("Missing required fields")
    if len(title.encode("utf-8")) > MAX_TITLE_LENGTH:
        raise PostError("Title must not exceed 100 characters")
    if len(content.encode("utf-8")) > MAX_CONTENT_LENGTH:
        raise PostError("Content must not exceed 1000 characters")


def detect_image_type(data: bytes) -> str:
    """Sniff the media type of image data from its leading bytes."""
    head = data[:512]
    for signature, media_type in _SIGNATURES:
        if head.startswith(signature):
            return media_type
    return "application/octet-stream"


def save_image(upload: ImageUpload, directory) -> str:
    """Check and store an uploaded image, returning the stored file name."""
    if upload.size > MAX_IMAGE_SIZE:
        raise PostError("image file too large")
    if detect_image_type(upload.data) not in ALLOWED_IMAGE_TYPES:
        raise PostError("Invalid image file type")
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    filename = f"_{int(time.time())}{Path(upload.filename).suffix}"
    (target_dir / filename).write_bytes(upload.data)
    return filename


def _insert_post(conn, post_id, title, content, user_id, author, status, image) -> None:
    conn.execute(
        "INSERT INTO posts (id, title, content, user_id, author, creation_date, status, image)"
        " VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        (post_id, title, content, user_id, author,
         datetime.now().strftime(TIME_FORMAT), status, image),
    )


def create_post(
    conn,
    user_id: str,
    title: str | None,
    content: str | None,
    status: str | None,
    allowed_users: str | None,
    image: ImageUpload | None,
    uploads_dir,
) -> list[str]:
    """Create a post and return the ids of the rows written.

    Semi-private posts are written once per allowed user, each with its own
    privacy grant. Unknown statuses write nothing.
    """
    validate_post(title, content)
    status = status or ""
    author = username_from_user_id(conn, user_id)
    if not author:
        raise AuthError("Unauthorized: User not found")

    image_name = save_image(image, uploads_dir) if image is not None else ""

    created: list[str] = []
    if status.lower() in ("public", "private"):
        post_id = str(uuid.uuid4())
        with conn:
            _insert_post(conn, post_id, title, content, user_id, author, status, image_name)
        created.append(post_id)

    if status == "semi-private":
        grantees = []
        for name in (allowed_users or "").split(","):
            try:
                grantees.append(user_id_from_username(conn, name.strip()))
            except UserNotFoundError as exc:
                raise PostError("User not found") from exc
        with conn:
            for grantee in grantees:
                post_id = str(uuid.uuid4())
                _insert_post(conn, post_id, title, content, user_id, author, status, image_name)
                conn.execute(
                    "INSERT INTO posts_privacy (id, post_id, user_id) VALUES (?, ?, ?)",
                    (str(uuid.uuid4()), post_id, grantee),
                )
                created.append(post_id)
    return created