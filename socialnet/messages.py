"""Direct messages between users and their live delivery over websockets."""

from __future__ import annotations

import dataclasses
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from socialnet.notifications import NotificationHub, NotificationType, notify
from socialnet.session import (
    TIME_FORMAT,
    UserNotFoundError,
    user_id_from_username,
    username_from_user_id,
)

logger = logging.getLogger(__name__)

DEFAULT_TYPE = "message"
TYPING = "typing"
PRESENCE_TYPE = "users"
ERROR_TYPE = "error"

_FIELDS = ("message", "username", "receiver", "time", "type")


class MessageError(ValueError):
    """Raised when a chat message is malformed or cannot be stored or read."""


@dataclass
class ChatMessage:
    message: str
    username: str
    receiver: str
    time: str = ""
    type: str = ""

    @classmethod
    def from_dict(cls, data) -> "ChatMessage":
        """Build a message from its JSON mapping; missing fields become empty."""
        if not isinstance(data, dict):
            raise MessageError("message must be a JSON object")
        values = {}
        for name in _FIELDS:
            value = data.get(name)
            if value is None:
                value = ""
            if not isinstance(value, str):
                raise MessageError(f"field {name!r} must be a string")
            values[name] = value
        return cls(**values)

    def to_dict(self) -> dict:
        """Return the message as a JSON-ready mapping."""
        return {
            "message": self.message,
            "username": self.username,
            "receiver": self.receiver,
            "time": self.time,
            "type": self.type,
        }


def validate_incoming(data, username: str) -> ChatMessage:
    """Check a message sent by ``username`` and fill in its sender and type."""
    message = data if isinstance(data, ChatMessage) else ChatMessage.from_dict(data)
    if not message.receiver:
        raise MessageError("Receiver is required")
    if not message.message:
        raise MessageError("Message content is required")
    if message.username != username:
        logger.warning(
            "message username %r does not match authenticated user %r",
            message.username,
            username,
        )
    return dataclasses.replace(
        message,
        username=username,
        type=message.type or DEFAULT_TYPE,
    )


def save_message(conn, sender: str, receiver: str, message: str, msg_type: str) -> str | None:
    """Store a message between two usernames and return its id.

    Typing indicators are checked but not stored; None is returned for them.
    """
    if not sender:
        raise MessageError("sender username cannot be empty")
    if not receiver:
        raise MessageError("receiver username cannot be empty")
    if not message:
        raise MessageError("message content cannot be empty")
    try:
        sender_id = user_id_from_username(conn, sender)
    except UserNotFoundError as exc:
        raise MessageError(f"failed to get sender ID: {exc}") from exc
    try:
        receiver_id = user_id_from_username(conn, receiver)
    except UserNotFoundError as exc:
        raise MessageError(f"failed to get receiver ID: {exc}") from exc
    if sender_id == receiver_id:
        raise MessageError("sender and receiver cannot be the same")
    if msg_type == TYPING:
        return None
    message_id = str(uuid.uuid4())
    with conn:
        conn.execute(
            "INSERT INTO messages (id, sender_id, receiver_id, content, creation_date)"
            " VALUES (?, ?, ?, ?, ?)",
            (message_id, sender_id, receiver_id, message, datetime.now().strftime(TIME_FORMAT)),
        )
    return message_id


def conversation(conn, current_username: str, sender: str, receiver: str) -> list[ChatMessage]:
    """Return the messages exchanged between two users, oldest first.

    The current user must be one of the two; otherwise PermissionError is raised.
    """
    if not sender or not receiver:
        raise MessageError("Sender and receiver are required")
    if current_username not in (sender, receiver):
        raise PermissionError("You are not authorized to view these messages")
    try:
        sender_id = user_id_from_username(conn, sender)
    except UserNotFoundError as exc:
        raise MessageError("Invalid sender username") from exc
    try:
        receiver_id = user_id_from_username(conn, receiver)
    except UserNotFoundError as exc:
        raise MessageError("Invalid receiver username") from exc
    if sender_id == receiver_id:
        raise MessageError("Sender and receiver cannot be the same")

    rows = conn.execute(
        """
        SELECT sender_id, receiver_id, content, creation_date
        FROM messages
        WHERE (sender_id = ? AND receiver_id = ?) OR (sender_id = ? AND receiver_id = ?)
        ORDER BY creation_date ASC
        """,
        (sender_id, receiver_id, receiver_id, sender_id),
    ).fetchall()
    messages = []
    for from_id, to_id, content, created in rows:
        from_name = username_from_user_id(conn, from_id)
        to_name = username_from_user_id(conn, to_id)
        if from_name is None or to_name is None:
            logger.warning("skipping message with unknown participant")
            continue
        messages.append(
            ChatMessage(message=content, username=from_name, receiver=to_name, time=created)
        )
    return messages


def all_usernames(conn) -> list[str]:
    """Return the username of every user."""
    return [row[0] for row in conn.execute("SELECT username FROM users").fetchall()]


def usernames_except(conn, username: str) -> list[str]:
    """Return every username other than ``username``."""
    rows = conn.execute("SELECT username FROM users WHERE username != ?", (username,)).fetchall()
    return [row[0] for row in rows]


class ChatHub:
    """Websocket connections of users taking part in direct chat."""

    def __init__(self) -> None:
        self._clients: dict[str, list] = {}

    def register(self, username: str, ws) -> None:
        """Add a connection and mark the user online."""
        self._clients.setdefault(username, []).append(ws)

    def unregister(self, username: str, ws) -> None:
        """Drop a connection; the user goes offline once none remain."""
        connections = self._clients.get(username)
        if connections is None:
            return
        if ws in connections:
            connections.remove(ws)
        if not connections:
            del self._clients[username]

    def online_users(self) -> frozenset[str]:
        """Return the usernames with at least one live connection."""
        return frozenset(self._clients)

    async def send_to_recipient(self, message: ChatMessage) -> int:
        """Deliver a message to every connection of its receiver; return the count sent."""
        connections = self._clients.get(message.receiver)
        if not connections:
            logger.info("recipient %s not connected", message.receiver)
            return 0
        payload = message.to_dict()
        delivered = 0
        for ws in list(connections):
            try:
                await ws.send_json(payload)
            except Exception as exc:  # noqa: BLE001 - a broken socket must not stop delivery
                logger.warning("error sending message to %s: %s", message.receiver, exc)
            else:
                delivered += 1
        return delivered

    async def broadcast_presence(self, conn) -> int:
        """Send each connected user the lists of online and offline users."""
        online = self.online_users()
        delivered = 0
        for username, connections in list(self._clients.items()):
            others = usernames_except(conn, username)
            payload = {
                "type": PRESENCE_TYPE,
                "onlineuser": [name for name in others if name in online],
                "offlineusers": [name for name in others if name not in online],
            }
            for ws in list(connections):
                try:
                    await ws.send_json(payload)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("error sending presence to %s: %s", username, exc)
                else:
                    delivered += 1
        return delivered

    async def handle_message(
        self,
        conn,
        notifications: NotificationHub,
        ws,
        username: str,
        data,
    ) -> ChatMessage | None:
        """Process one message received from ``username`` on ``ws``.

        Invalid messages are answered with an error on ``ws`` and None is returned.
        Valid ones are delivered, notified and stored, and returned.
        """
        try:
            message = validate_incoming(data, username)
        except MessageError as exc:
            await ws.send_json({"error": str(exc), "type": ERROR_TYPE})
            return None

        await self.send_to_recipient(message)
        try:
            await notify(
                conn,
                notifications,
                message.receiver,
                message.username,
                NotificationType.MESSAGE,
                message.message,
            )
        except (ValueError, LookupError) as exc:
            logger.warning("could not create message notification: %s", exc)

        try:
            save_message(conn, message.username, message.receiver, message.message, message.type)
        except MessageError as exc:
            await ws.send_json({"error": f"Failed to save message: {exc}", "type": ERROR_TYPE})
        return message