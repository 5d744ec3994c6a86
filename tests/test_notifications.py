import sqlite3

import pytest

from socialnet.notifications import (
    Notification,
    NotificationHub,
    NotificationType,
    create_notification,
    delete_notifications,
    list_notifications,
    mark_as_read,
    notify,
)
from socialnet.session import UserNotFoundError


@pytest.fixture
def conn():
    db = sqlite3.connect(":memory:")
    db.executescript(
        """
        CREATE TABLE users (id TEXT PRIMARY KEY, username TEXT, email TEXT);
        CREATE TABLE notifications (
            id TEXT PRIMARY KEY, user_id TEXT, sender_id TEXT, type TEXT,
            content TEXT, is_read INTEGER, created_at TEXT
        );
        INSERT INTO users VALUES ('u1', 'alice', 'alice@example.com');
        INSERT INTO users VALUES ('u2', 'bob', 'bob@example.com');
        """
    )
    yield db
    db.close()


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise ConnectionResetError("gone")
        self.sent.append(data)


def test_create_and_list_round_trip(conn):
    created = create_notification(conn, "alice", "bob", NotificationType.MESSAGE, "hi")
    listed = list_notifications(conn, "u1")
    assert listed == [created]
    assert created.user_id == "u1"
    assert created.sender_id == "u2"
    assert created.type == "message"
    assert created.is_read is False


def test_create_accepts_plain_string_type(conn):
    created = create_notification(conn, "alice", "bob", "group_message", "x")
    assert created.type == NotificationType.GROUP_MESSAGE.value


def test_create_rejects_empty_names(conn):
    with pytest.raises(ValueError):
        create_notification(conn, "", "bob", "message", "x")
    with pytest.raises(ValueError):
        create_notification(conn, "alice", "", "message", "x")


def test_create_unknown_user(conn):
    with pytest.raises(UserNotFoundError):
        create_notification(conn, "nobody", "bob", "message", "x")


def test_list_newest_first(conn):
    conn.execute("INSERT INTO notifications VALUES ('n1','u1','u2','message','a',0,'2024-01-01 00:00:00.000000')")
    conn.execute("INSERT INTO notifications VALUES ('n2','u1','u2','message','b',0,'2024-02-01 00:00:00.000000')")
    ids = [n.id for n in list_notifications(conn, "u1")]
    assert ids == ["n2", "n1"]


def test_list_skips_unknown_sender(conn):
    conn.execute("INSERT INTO notifications VALUES ('n1','u1','ghost','message','a',0,'2024-01-01')")
    assert list_notifications(conn, "u1") == []


def test_mark_as_read_only_for_owner(conn):
    created = create_notification(conn, "alice", "bob", "message", "hi")
    mark_as_read(conn, created.id, "u2")
    assert list_notifications(conn, "u1")[0].is_read is False
    mark_as_read(conn, created.id, "u1")
    assert list_notifications(conn, "u1")[0].is_read is True


def test_delete_notifications(conn):
    create_notification(conn, "alice", "bob", "follow_request", "f")
    create_notification(conn, "alice", "bob", "message", "m")
    delete_notifications(conn, "u1", "u2", NotificationType.FOLLOW_REQUEST)
    assert [n.type for n in list_notifications(conn, "u1")] == ["message"]


def test_to_dict_keys():
    n = Notification("i", "u", "s", "message", "c", False, "t", "bob")
    data = n.to_dict()
    assert data["sender_username"] == "bob"
    assert data["is_read"] is False
    assert data["related_entity_id"] is None


@pytest.mark.asyncio
async def test_broadcast_delivers_to_all_connections():
    hub = NotificationHub()
    first, second = FakeSocket(), FakeSocket()
    hub.register("alice", first)
    hub.register("alice", second)
    n = Notification("i", "u", "s", "message", "c", False, "t", "bob")
    assert await hub.broadcast("alice", n) == 2
    assert first.sent == [{"type": "new_notification", "notification": n.to_dict()}]
    assert second.sent == first.sent


@pytest.mark.asyncio
async def test_broadcast_drops_failed_connection():
    hub = NotificationHub()
    good, bad = FakeSocket(), FakeSocket(fail=True)
    hub.register("alice", good)
    hub.register("alice", bad)
    n = Notification("i", "u", "s", "message", "c", False, "t", "bob")
    assert await hub.broadcast("alice", n) == 1
    assert hub.connections("alice") == [good]


@pytest.mark.asyncio
async def test_broadcast_to_offline_user():
    hub = NotificationHub()
    n = Notification("i", "u", "s", "message", "c", False, "t", "bob")
    assert await hub.broadcast("alice", n) == 0


def test_unregister_forgets_user():
    hub = NotificationHub()
    ws = FakeSocket()
    hub.register("alice", ws)
    hub.unregister("alice", ws)
    assert hub.connections("alice") == []


@pytest.mark.asyncio
async def test_notify_stores_and_pushes(conn):
    hub = NotificationHub()
    ws = FakeSocket()
    hub.register("alice", ws)
    created = await notify(conn, hub, "alice", "bob", NotificationType.EVENT_CREATED, "party")
    assert list_notifications(conn, "u1") == [created]
    assert ws.sent[0]["notification"]["id"] == created.id