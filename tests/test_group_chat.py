import sqlite3

import pytest

from socialnet.group_chat import (
    ERR_TOO_LONG,
    ERR_TOO_SHORT,
    RECENT_LIMIT,
    GroupChatError,
    GroupChatHub,
    GroupMessage,
    group_exists,
    group_member_ids,
    is_group_member,
    recent_group_messages,
    save_group_message,
)
from socialnet.notifications import NotificationHub

SCHEMA = """
CREATE TABLE users (id TEXT PRIMARY KEY, username TEXT, email TEXT, first_name TEXT,
    last_name TEXT, bio TEXT, date_of_birth TEXT, privacy TEXT, avatar TEXT, nickname TEXT);
CREATE TABLE notifications (id TEXT, user_id TEXT, sender_id TEXT, type TEXT, content TEXT,
    is_read INTEGER, created_at TEXT);
CREATE TABLE groups (id TEXT PRIMARY KEY, title TEXT);
CREATE TABLE group_members (group_id TEXT, user_id TEXT, status TEXT);
CREATE TABLE group_messages (id TEXT, group_id TEXT, sender_id TEXT, content TEXT,
    created_at TEXT);
"""


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    connection.executescript(SCHEMA)
    connection.executemany(
        "INSERT INTO users (id, username, email, avatar) VALUES (?, ?, ?, ?)",
        [
            ("u1", "alice", "alice@example.com", "a.png"),
            ("u2", "bob", "bob@example.com", None),
            ("u3", "carol", "carol@example.com", None),
        ],
    )
    connection.executemany("INSERT INTO groups (id, title) VALUES (?, ?)", [("g1", "one"), ("g2", "two")])
    connection.executemany(
        "INSERT INTO group_members (group_id, user_id, status) VALUES (?, ?, ?)",
        [("g1", "u1", "accepted"), ("g1", "u2", "accepted"), ("g1", "u3", "pending")],
    )
    connection.commit()
    yield connection
    connection.close()


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise ConnectionResetError("closed")
        self.sent.append(data)


def _message(mid, sender="u1", created="2024-01-01 10:00:00.000000", group="g1"):
    return GroupMessage(id=mid, group_id=group, sender_id=sender, content=f"text {mid}", created_at=created)


def test_group_exists(conn):
    assert group_exists(conn, "g1") is True
    assert group_exists(conn, "missing") is False


def test_membership_requires_accepted_status(conn):
    assert is_group_member(conn, "u1", "g1") is True
    assert is_group_member(conn, "u3", "g1") is False
    assert is_group_member(conn, "u1", "g2") is False


def test_group_member_ids_include_every_status(conn):
    assert sorted(group_member_ids(conn, "g1")) == ["u1", "u2", "u3"]
    assert group_member_ids(conn, "g2") == []


def test_recent_messages_newest_first_with_sender_details(conn):
    save_group_message(conn, _message("m1", "u1", "2024-01-01 10:00:00.000000"))
    save_group_message(conn, _message("m2", "u2", "2024-01-02 10:00:00.000000"))
    recent = recent_group_messages(conn, "g1")
    assert [m.id for m in recent] == ["m2", "m1"]
    assert recent[0].username == "bob"
    assert recent[0].avatar == ""
    assert recent[1].avatar == "a.png"


def test_recent_messages_are_limited(conn):
    for index in range(RECENT_LIMIT + 5):
        save_group_message(conn, _message(f"m{index:02d}", created=f"2024-01-01 10:00:{index:02d}.000000"))
    recent = recent_group_messages(conn, "g1")
    assert len(recent) == RECENT_LIMIT
    assert recent[0].id == f"m{RECENT_LIMIT + 4:02d}"


def test_to_dict_has_wire_keys(conn):
    data = _message("m1").to_dict()
    assert set(data) == {"id", "group_id", "sender_id", "avatar", "content", "created_at", "username"}
    assert data["content"] == "text m1"


@pytest.mark.asyncio
async def test_broadcast_reaches_only_the_room(conn):
    hub = GroupChatHub()
    first, second, other = FakeSocket(), FakeSocket(), FakeSocket()
    hub.register("g1", "u1", first)
    hub.register("g1", "u2", second)
    hub.register("g2", "u3", other)
    count = await hub.broadcast(conn, _message("m1"))
    assert count == 2
    assert first.sent[0]["username"] == "alice"
    assert second.sent[0]["avatar"] == "a.png"
    assert other.sent == []


@pytest.mark.asyncio
async def test_broadcast_unknown_sender_sends_nothing(conn):
    hub = GroupChatHub()
    ws = FakeSocket()
    hub.register("g1", "u1", ws)
    assert await hub.broadcast(conn, _message("m1", sender="ghost")) == 0
    assert ws.sent == []


@pytest.mark.asyncio
async def test_unregister_empties_room(conn):
    hub = GroupChatHub()
    ws = FakeSocket()
    hub.register("g1", "u1", ws)
    hub.unregister("g1", "u1")
    assert hub.connections("g1") == {}
    assert await hub.broadcast(conn, _message("m1")) == 0


@pytest.mark.asyncio
async def test_failing_socket_does_not_stop_others(conn):
    hub = GroupChatHub()
    good = FakeSocket()
    hub.register("g1", "u1", FakeSocket(fail=True))
    hub.register("g1", "u2", good)
    assert await hub.broadcast(conn, _message("m1")) == 1
    assert len(good.sent) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "data, error",
    [({"content": ""}, ERR_TOO_SHORT), ({}, ERR_TOO_SHORT), ({"content": "x" * 501}, ERR_TOO_LONG)],
)
async def test_handle_message_rejects_bad_length(conn, data, error):
    with pytest.raises(GroupChatError, match=error):
        await GroupChatHub().handle_message(conn, NotificationHub(), "g1", "u1", data)


@pytest.mark.asyncio
async def test_length_is_counted_in_bytes(conn):
    hub = GroupChatHub()
    accepted = await hub.handle_message(conn, NotificationHub(), "g1", "u1", {"content": "é" * 250})
    assert accepted.content == "é" * 250
    with pytest.raises(GroupChatError):
        await hub.handle_message(conn, NotificationHub(), "g1", "u1", {"content": "é" * 251})


@pytest.mark.asyncio
async def test_handle_message_rejects_non_object(conn):
    with pytest.raises(GroupChatError):
        await GroupChatHub().handle_message(conn, NotificationHub(), "g1", "u1", ["hi"])


@pytest.mark.asyncio
async def test_handle_message_stores_notifies_and_broadcasts(conn):
    hub = GroupChatHub()
    notifications = NotificationHub()
    room_socket, bob_alerts = FakeSocket(), FakeSocket()
    hub.register("g1", "u1", room_socket)
    notifications.register("bob", bob_alerts)

    message = await hub.handle_message(conn, notifications, "g1", "u1", {"content": "hello"})

    assert [m.id for m in recent_group_messages(conn, "g1")] == [message.id]
    rows = conn.execute("SELECT user_id, sender_id, type FROM notifications").fetchall()
    assert sorted(rows) == [("u2", "u1", "group_message"), ("u3", "u1", "group_message")]
    assert bob_alerts.sent[0]["notification"]["content"] == "hello"
    assert room_socket.sent[0]["id"] == message.id
    assert room_socket.sent[0]["username"] == "alice"