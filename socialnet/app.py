"""HTTP and websocket server for the social network.

The server works on an existing SQLite database that already holds its tables.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
import sqlite3
from pathlib import Path

from aiohttp import WSMsgType, web

from socialnet.follows import (
    accept_follow_request,
    followers_and_following,
    my_followers_and_following,
    pending_follow_requests,
)
from socialnet.group_chat import (
    GroupChatError,
    GroupChatHub,
    group_exists,
    is_group_member,
    recent_group_messages,
)
from socialnet.messages import ChatHub, conversation
from socialnet.notifications import NotificationHub, list_notifications, mark_as_read
from socialnet.posts import ImageUpload, create_post, privacy_entries, visible_posts
from socialnet.profile import (
    is_following,
    my_privacy,
    own_posts,
    update_privacy,
    user_info,
)
from socialnet.responses import DEV_ORIGIN, cors_headers
from socialnet.session import (
    COOKIE_NAME,
    AuthError,
    UserNotFoundError,
    check_token,
    require_user,
    username_from_user_id,
)
from socialnet.users import chat_contacts, list_users

logger = logging.getLogger(__name__)

ORIGIN_ENV = "SOCIALNET_ORIGIN"
MAX_FORM_SIZE = 10 * 1024 * 1024

CONN_KEY = web.AppKey("conn", sqlite3.Connection)
CHAT_KEY = web.AppKey("chat", ChatHub)
GROUP_CHAT_KEY = web.AppKey("group_chat", GroupChatHub)
NOTIFY_KEY = web.AppKey("notifications", NotificationHub)
UPLOADS_KEY = web.AppKey("uploads", Path)
ORIGIN_KEY = web.AppKey("origin", str)

_NOTIFICATION_FIELDS = (
    "id", "user_id", "sender_id", "sender_username", "type", "content", "is_read", "created_at",
)


class _BadRequest(ValueError):
    """A request whose body or form cannot be read."""


def _text_error(message: str, status: int) -> web.Response:
    return web.Response(text=message + "\n", status=status)


@web.middleware
async def _middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        response = web.Response(status=200)
    else:
        try:
            response = await handler(request)
        except web.HTTPException:
            raise
        except AuthError as exc:
            response = _text_error(str(exc), 401)
        except PermissionError as exc:
            response = _text_error(str(exc), 403)
        except UserNotFoundError as exc:
            response = _text_error(str(exc), 404)
        except ValueError as exc:
            response = _text_error(str(exc), 400)
        except sqlite3.Error as exc:
            logger.error("database error: %s", exc)
            response = _text_error("Database error", 500)
    if not response.prepared:
        response.headers.update(cors_headers(request.app[ORIGIN_KEY]))
    return response


def _conn(request: web.Request) -> sqlite3.Connection:
    return request.app[CONN_KEY]


def _user(request: web.Request) -> str:
    return require_user(_conn(request), request.cookies.get(COOKIE_NAME))


def _username(request: web.Request, user_id: str) -> str:
    username = username_from_user_id(_conn(request), user_id)
    if username is None:
        raise AuthError("Unauthorized: Invalid username")
    return username


async def _json_body(request: web.Request, message: str) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise _BadRequest(message) from exc
    if not isinstance(body, dict):
        raise _BadRequest(message)
    return body


def _as_dicts(items) -> list:
    return [dataclasses.asdict(item) for item in items]


async def _middle(request):
    status = check_token(_conn(request), request.cookies.get(COOKIE_NAME))
    return web.json_response({"message": status})


async def _user_info(request):
    viewer = _user(request)
    info = user_info(_conn(request), viewer, request.query.get("user_id"))
    return web.json_response(dataclasses.asdict(info))


async def _update_privacy(request):
    if request.method != "POST":
        return _text_error("Method not allowed", 405)
    user_id = _user(request)
    body = await _json_body(request, "Invalid request body")
    update_privacy(_conn(request), user_id, body.get("privacy"))
    return web.json_response({"status": "success"})


async def _own_posts(request):
    viewer = _user(request)
    return web.json_response(_as_dicts(own_posts(_conn(request), viewer, request.query.get("username"))))


async def _is_following(request):
    _user(request)
    result = is_following(
        _conn(request), request.query.get("follower_id"), request.query.get("followed_id")
    )
    return web.json_response({"isFollowing": result})


async def _followers_and_following(request):
    viewer = _user(request)
    return web.json_response(
        followers_and_following(_conn(request), viewer, request.query.get("profileUser"))
    )


async def _my_followers_and_following(request):
    return web.json_response(my_followers_and_following(_conn(request), _user(request)))


async def _check_my_privacy(request):
    return web.json_response({"privacy": my_privacy(_conn(request), _user(request))})


async def _follow_invitations(request):
    return web.json_response(_as_dicts(pending_follow_requests(_conn(request), _user(request))))


async def _accept_invitation(request):
    user_id = _user(request)
    body = await _json_body(request, "Failed to decode request body")
    accept_follow_request(_conn(request), user_id, body.get("follower_id"))
    return web.json_response({"status": "success"})


async def _create_post(request):
    if request.method != "POST":
        return web.Response(status=200)
    user_id = _user(request)
    try:
        form = await request.post()
    except ValueError as exc:
        raise _BadRequest("Failed to parse form") from exc
    image = None
    field = form.get("image")
    if isinstance(field, web.FileField):
        image = ImageUpload(filename=field.filename or "", data=field.file.read())

    def text(name):
        value = form.get(name)
        return value if isinstance(value, str) else None

    create_post(
        _conn(request),
        user_id,
        text("title"),
        text("content"),
        text("status"),
        text("allowed_users"),
        image,
        request.app[UPLOADS_KEY],
    )
    return web.json_response({"message": "Post created successfully"})


async def _feed(request):
    user_id = _user(request)
    uploads_url = f"{request.scheme}://{request.host}/uploads/"
    feed = [
        {
            "Id": post.id,
            "User_id": post.user_id,
            "Author": post.author,
            "Avatar": post.avatar,
            "Content": post.content,
            "Title": post.title,
            "Image": post.image,
            "Creation_date": post.creation_date,
            "Status": post.status,
        }
        for post in visible_posts(_conn(request), user_id, uploads_url)
    ]
    return web.json_response(feed)


async def _post_privacy(request):
    return web.json_response(_as_dicts(privacy_entries(_conn(request))))


async def _messages(request):
    if request.method != "GET":
        return _text_error("Invalid request method", 405)
    username = _username(request, _user(request))
    found = conversation(
        _conn(request), username, request.query.get("sender", ""), request.query.get("receiver", "")
    )
    return web.json_response([message.to_dict() for message in found])


async def _open_chat(request):
    return web.json_response(_as_dicts(chat_contacts(_conn(request), _user(request))))


async def _notifications(request):
    found = list_notifications(_conn(request), _user(request))
    return web.json_response(
        [{key: item.to_dict()[key] for key in _NOTIFICATION_FIELDS} for item in found]
    )


async def _mark_as_read(request):
    body = await _json_body(request, "Invalid request body")
    user_id = _user(request)
    mark_as_read(_conn(request), str(body.get("notificationId") or ""), user_id)
    return web.Response(status=200)


async def _all_users(request):
    return web.json_response(_as_dicts(list_users(_conn(request), _user(request))))


def _decode(message):
    if message.type not in (WSMsgType.TEXT, WSMsgType.BINARY):
        return None
    try:
        return json.loads(message.data)
    except ValueError:
        return None


async def _chat_ws(request):
    conn = _conn(request)
    username = _username(request, _user(request))
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    hub = request.app[CHAT_KEY]
    hub.register(username, ws)
    try:
        await hub.broadcast_presence(conn)
        async for message in ws:
            data = _decode(message)
            if data is None:
                break
            try:
                await hub.handle_message(conn, request.app[NOTIFY_KEY], ws, username, data)
            except sqlite3.Error as exc:
                logger.error("chat message from %s failed: %s", username, exc)
    finally:
        hub.unregister(username, ws)
    await hub.broadcast_presence(conn)
    return ws


async def _notification_ws(request):
    username = _username(request, _user(request))
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    hub = request.app[NOTIFY_KEY]
    hub.register(username, ws)
    try:
        async for _ in ws:
            pass
    finally:
        hub.unregister(username, ws)
    return ws


async def _group_ws(request):
    conn = _conn(request)
    user_id = _user(request)
    if request.headers.get("Origin") != request.app[ORIGIN_KEY]:
        raise web.HTTPForbidden(text="Origin not allowed")
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    group_id = request.match_info.get("group_id", "")
    problem = None
    if not group_id:
        problem = "Group ID is required"
    elif not is_group_member(conn, user_id, group_id):
        problem = "Not a member of this group"
    elif not group_exists(conn, group_id):
        problem = "Group does not exist"
    if problem:
        await ws.send_json({"error": problem})
        await ws.close()
        return ws

    hub = request.app[GROUP_CHAT_KEY]
    hub.register(group_id, user_id, ws)
    try:
        await ws.send_json([m.to_dict() for m in recent_group_messages(conn, group_id)])
        async for message in ws:
            data = _decode(message)
            if data is None:
                break
            try:
                await hub.handle_message(conn, request.app[NOTIFY_KEY], group_id, user_id, data)
            except GroupChatError as exc:
                await ws.send_json({"error": str(exc)})
            except sqlite3.Error as exc:
                logger.error("group message in %s failed: %s", group_id, exc)
    finally:
        hub.unregister(group_id, user_id)
    return ws


_ROUTES = (
    ("/middle", _middle),
    ("/api/userinfo", _user_info),
    ("/api/updateprivacy", _update_privacy),
    ("/api/setprivacy", _update_privacy),
    ("/api/ownposts", _own_posts),
    ("/api/isfollowing", _is_following),
    ("/api/getfollowingfolowers", _followers_and_following),
    ("/api/postsprivacy", _my_followers_and_following),
    ("/api/checkmyprivacy", _check_my_privacy),
    ("/api/getinvitationsfollow", _follow_invitations),
    ("/api/accepteinvi", _accept_invitation),
    ("/api/posts", _create_post),
    ("/api/getposts", _feed),
    ("/api/getmessages", _messages),
    ("/api/messages", _messages),
    ("/ws", _chat_ws),
    ("/api/openchat", _open_chat),
    ("/api/postsprv", _post_privacy),
    ("/api/notifications", _notifications),
    ("/api/markasread", _mark_as_read),
    ("/ws/group/{group_id:.*}", _group_ws),
    ("/ws/notifications", _notification_ws),
    ("/api/allusers", _all_users),
)


def create_app(database, static_dir="static", uploads_dir="uploads") -> web.Application:
    """Build the web application over a database path or an open SQLite connection."""
    if isinstance(database, sqlite3.Connection):
        conn = database
        owned = False
    else:
        conn = sqlite3.connect(database)
        owned = True

    app = web.Application(middlewares=[_middleware], client_max_size=MAX_FORM_SIZE)
    app[CONN_KEY] = conn
    app[CHAT_KEY] = ChatHub()
    app[GROUP_CHAT_KEY] = GroupChatHub()
    app[NOTIFY_KEY] = NotificationHub()
    app[ORIGIN_KEY] = os.environ.get(ORIGIN_ENV, DEV_ORIGIN)

    uploads = Path(uploads_dir)
    uploads.mkdir(parents=True, exist_ok=True)
    static = Path(static_dir)
    static.mkdir(parents=True, exist_ok=True)
    app[UPLOADS_KEY] = uploads

    if owned:
        async def _close(_app):
            conn.close()

        app.on_cleanup.append(_close)

    for path, handler in _ROUTES:
        app.router.add_route("*", path, handler)
    app.router.add_static("/static/", static)
    app.router.add_static("/uploads/", uploads)
    return app


def main(argv=None) -> int:
    """Run the server."""
    parser = argparse.ArgumentParser(prog="socialnet", description="Social network server.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--database", default="socialnet.db")
    parser.add_argument("--static", default="static")
    parser.add_argument("--uploads", default="uploads")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    web.run_app(create_app(args.database, args.static, args.uploads), host=args.host, port=args.port)
    return 0