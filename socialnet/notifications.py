"""Stored notifications and their real-time delivery over websockets."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from socialnet.session import TIME_FORMAT, user_id_from_username

logger = logging.getLogger(__name__)

NEW_NOTIFICATION = "new_notification"


class NotificationType(str, Enum):
    MESSAGE = "message"
    FOLLOW_REQUEST = "follow_request"
    GROUP_INVITE = "group_invite"
    GROUP_REQUEST = "group_request"
    EVENT_CREATED = "event_created"
    GROUP_MESSAGE = "group_message"


def _type_value(notif_type) -> str:
    return notif_type.value if isinstance(notif_type, NotificationType) else str(notif_type)


@dataclass
class Notification:
    id: str
    user_id: str
    sender_id: str
    type: str
    content: str
    is_read: bool
    created_at: str
    sender_username: str
    related_entity_id: str | None = None
    related_entity_type: str | None = None

    def to_dict(self) -> dict:
        """Return the notification as a JSON-ready mapping."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "sender_id": self.sender_id,
            "type": self.type,
            "content": self.content,
            "is_read": self.is_read,
            "created_at": self.created_at,
            "sender_username": self.sender_username,
            "related_entity_id": self.related_entity_id,
            "related_entity_type": self.related_entity_type,
        }


class NotificationHub:
    """Websocket connections of users listening for notifications."""

    def __init__(self) -> None:
        self._clients: dict[str, list] = {}

    def register(self, username: str, ws) -> None:
        """Add a connection for the user."""
        self._clients.setdefault(username, []).append(ws)

    def unregister(self, username: str, ws) -> None:
        """Drop a connection; forget the user once none remain."""
        connections = self._clients.get(username)
        if connections is None:
            return
        if ws in connections:
            connections.remove(ws)
        if not connections:
            del self._clients[username]

    def connections(self, username: str) -> list:
        """Return the user's live connections."""
        return list(self._clients.get(username, ()))

    async def broadcast(self, username: str, notification: Notification) -> int:
        """Send the notification to every connection of the user.

        Connections that fail are dropped. Returns how many sends succeeded.
        """
        connections = self._clients.get(username)
        if not connections:
            logger.info("user %s is not connected; notification kept for later", username)
            return 0
        message = {"type": NEW_NOTIFICATION, "notification": notification.to_dict()}
        delivered = 0
        for ws in list(connections):
            try:
                await ws.send_json(message)
            except Exception as exc:  # noqa: BLE001 - any transport failure drops the socket
                logger.warning("failed to send notification to %s: %s", username, exc)
                self.unregister(username, ws)
            else:
                delivered += 1
        return delivered


def create_notification(conn, recipient: str, sender: str, notif_type, content: str) -> Notification:
    """Store an unread notification from ``sender`` to ``recipient`` (usernames)."""
    if not recipient:
        raise ValueError("recipient username cannot be empty")
    if not sender:
        raise ValueError("sender username cannot be empty")
    user_id = user_id_from_username(conn, recipient)
    sender_id = user_id_from_username(conn, sender)
    notification = Notification(
        id=str(uuid.uuid4()),
        user_id=user_id,
        sender_id=sender_id,
        type=_type_value(notif_type),
        content=content,
        is_read=False,
        created_at=datetime.now().strftime(TIME_FORMAT),
        sender_username=sender,
    )
    with conn:
        conn.execute(
            "INSERT INTO notifications (id, user_id, sender_id, type, content, is_read, created_at)"
            " VALUES (?, ?, ?, ?, ?, 0, ?)",
            (
                notification.id,
                notification.user_id,
                notification.sender_id,
                notification.type,
                notification.content,
                notification.created_at,
            ),
        )
    return notification


async def notify(conn, hub: NotificationHub, recipient: str, sender: str, notif_type, content: str) -> Notification:
    """Store a notification and push it to the recipient's live connections."""
    notification = create_notification(conn, recipient, sender, notif_type, content)
    await hub.broadcast(recipient, notification)
    return notification


def list_notifications(conn, user_id: str) -> list[Notification]:
    """Return the user's notifications, newest first."""
    rows = conn.execute(
        """
        SELECT n.id, n.user_id, n.sender_id, n.type, n.content, n.is_read, n.created_at,
               u.username
        FROM notifications n
        LEFT JOIN users u ON n.sender_id = u.id
        WHERE n.user_id = ?
        ORDER BY n.created_at DESC
        """,
        (user_id,),
    ).fetchall()
    return [
        Notification(
            id=nid,
            user_id=uid,
            sender_id=sid,
            type=ntype,
            content=content,
            is_read=bool(is_read),
            created_at=created,
            sender_username=sender_name,
        )
        for nid, uid, sid, ntype, content, is_read, created, sender_name in rows
        if sender_name is not None
    ]


def mark_as_read(conn, notification_id: str, user_id: str) -> None:
    """Mark one of the user's notifications as read."""
    with conn:
        conn.execute(
            "UPDATE notifications SET is_read = 1 WHERE id = ? AND user_id = ?",
            (notification_id, user_id),
        )


def delete_notifications(conn, user_id: str, sender_id: str, notif_type) -> None:
    """Delete the user's notifications of one type from one sender."""
    with conn:
        conn.execute(
            "DELETE FROM notifications WHERE user_id = ? AND sender_id = ? AND type = ?",
            (user_id, sender_id, _type_value(notif_type)),
        )