"""Group chat rooms: stored messages and live delivery to group members."""

from __future__ import annotations

import dataclasses
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from socialnet.notifications import NotificationHub, NotificationType, notify
from socialnet.session import TIME_FORMAT, username_from_user_id

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 500
RECENT_LIMIT = 50

ERR_TOO_SHORT = "Message must be at least 1 character long"
ERR_TOO_LONG = "Message must not exceed 500 characters"


class GroupChatError(ValueError):
    """Raised when a group chat message is rejected."""


@dataclass
class GroupMessage:
    """A message posted to a group; ``username`` and ``avatar`` describe the sender."""

    id: str
    group_id: str
    sender_id: str
    content: str
    created_at: str
    username: str = ""
    avatar: str = ""

    def to_dict(self) -> dict:
        """Return the message as a JSON-ready mapping."""
        return {
            "id": self.id,
            "group_id": self.group_id,
            "sender_id": self.sender_id,
            "avatar": self.avatar,
            "content": self.content,
            "created_at": self.created_at,
            "username": self.username,
        }


def group_exists(conn, group_id: str) -> bool:
    """Tell whether a group with this id exists."""
    row = conn.execute(
        "SELECT EXISTS(SELECT 1 FROM groups WHERE id = ?)", (group_id,)
    ).fetchone()
    return bool(row[0])


def is_group_member(conn, user_id: str, group_id: str) -> bool:
    """Tell whether the user is an accepted member of the group."""
    row = conn.execute(
        "SELECT EXISTS(SELECT 1 FROM group_members"
        " WHERE group_id = ? AND user_id = ? AND status = 'accepted')",
        (group_id, user_id),
    ).fetchone()
    return bool(row[0])


def save_group_message(conn, message: GroupMessage) -> None:
    """Store a group message."""
    with conn:
        conn.execute(
            "INSERT INTO group_messages (id, group_id, sender_id, content, created_at)"
            " VALUES (?, ?, ?, ?, ?)",
            (message.id, message.group_id, message.sender_id, message.content, message.created_at),
        )


def recent_group_messages(conn, group_id: str) -> list[GroupMessage]:
    """Return the latest messages of the group, newest first, with sender details."""
    rows = conn.execute(
        """
        SELECT m.id, m.group_id, m.sender_id, m.content, m.created_at, u.username, u.avatar
        FROM group_messages m
        JOIN users u ON m.sender_id = u.id
        WHERE m.group_id = ?
        ORDER BY m.created_at DESC
        LIMIT ?
        """,
        (group_id, RECENT_LIMIT),
    ).fetchall()
    return [
        GroupMessage(
            id=mid,
            group_id=gid,
            sender_id=sender,
            content=content,
            created_at=created,
            username=username or "",
            avatar=avatar or "",
        )
        for mid, gid, sender, content, created, username, avatar in rows
    ]


def group_member_ids(conn, group_id: str) -> list[str]:
    """Return the ids of every member of the group, whatever their status."""
    rows = conn.execute(
        "SELECT user_id FROM group_members WHERE group_id = ?", (group_id,)
    ).fetchall()
    return [row[0] for row in rows]


def _with_sender(conn, message: GroupMessage) -> GroupMessage | None:
    row = conn.execute(
        "SELECT username, avatar FROM users WHERE id = ?", (message.sender_id,)
    ).fetchone()
    if row is None:
        return None
    return dataclasses.replace(message, username=row[0], avatar=row[1] or "")


def _content_of(data) -> str:
    if not isinstance(data, dict):
        raise GroupChatError("message must be a JSON object")
    content = data.get("content")
    if content is None:
        content = ""
    if not isinstance(content, str):
        raise GroupChatError("content must be a string")
    size = len(content.encode("utf-8"))
    if size < 1:
        raise GroupChatError(ERR_TOO_SHORT)
    if size > MAX_MESSAGE_LENGTH:
        raise GroupChatError(ERR_TOO_LONG)
    return content


class GroupChatHub:
    """Websocket connections of users in group chat rooms, one per user and group."""

    def __init__(self) -> None:
        self._groups: dict[str, dict[str, object]] = {}

    def register(self, group_id: str, user_id: str, ws) -> None:
        """Attach the user's connection to the group room."""
        self._groups.setdefault(group_id, {})[user_id] = ws

    def unregister(self, group_id: str, user_id: str) -> None:
        """Detach the user from the room; forget the room once it is empty."""
        members = self._groups.get(group_id)
        if members is None:
            return
        members.pop(user_id, None)
        if not members:
            del self._groups[group_id]

    def connections(self, group_id: str) -> dict:
        """Return the live connections of a room by user id."""
        return dict(self._groups.get(group_id, {}))

    async def broadcast(self, conn, message: GroupMessage) -> int:
        """Send the message, with its sender's details, to everyone in the room.

        Returns how many sends succeeded.
        """
        enriched = _with_sender(conn, message)
        if enriched is None:
            logger.warning("unknown sender %s for group message", message.sender_id)
            return 0
        payload = enriched.to_dict()
        delivered = 0
        for user_id, ws in list(self._groups.get(message.group_id, {}).items()):
            try:
                await ws.send_json(payload)
            except Exception as exc:  # noqa: BLE001 - one broken socket must not stop the rest
                logger.warning("error broadcasting to %s: %s", user_id, exc)
            else:
                delivered += 1
        return delivered

    async def handle_message(
        self,
        conn,
        notifications: NotificationHub,
        group_id: str,
        user_id: str,
        data,
    ) -> GroupMessage:
        """Store a message from ``user_id``, notify the other members and broadcast it."""
        content = _content_of(data)
        message = GroupMessage(
            id=str(uuid.uuid4()),
            group_id=group_id,
            sender_id=user_id,
            content=content,
            created_at=datetime.now().strftime(TIME_FORMAT),
        )
        save_group_message(conn, message)

        sender_name = username_from_user_id(conn, user_id)
        for member_id in group_member_ids(conn, group_id):
            member_name = username_from_user_id(conn, member_id)
            if member_name == sender_name:
                continue
            try:
                await notify(
                    conn,
                    notifications,
                    member_name or "",
                    sender_name or "",
                    NotificationType.GROUP_MESSAGE,
                    content,
                )
            except (ValueError, LookupError) as exc:
                logger.warning("could not notify group member %s: %s", member_id, exc)

        await self.broadcast(conn, message)
        return message