# socialnet

The backend of a small social network, served over HTTP and WebSockets with
aiohttp and kept in a SQLite database.

- **Sessions** (`socialnet.session`) – token cookies tied to users, valid for
  24 hours; lookups between user ids, usernames and e-mail addresses.
- **Posts** (`socialnet.posts`) – public, private (accepted followers only)
  and semi-private (a chosen list of users) posts. Titles may hold up to 100
  bytes and content up to 1000. An optional image of up to 2 MB is accepted
  when its leading bytes show JPEG, PNG or GIF.
- **Profiles and followers** (`socialnet.profile`, `socialnet.follows`) –
  user information with follower and following counts and names, profile
  privacy, pending follow requests and accepting them.
- **Users** (`socialnet.users`) – the list of other users with whether you
  follow them, search by username or e-mail, and chat contacts.
- **Notifications** (`socialnet.notifications`) – stored per user and pushed
  live to the user's open notification WebSockets.
- **Chat** (`socialnet.messages`, `socialnet.group_chat`) – direct messages
  with online/offline presence, and group chat rooms for accepted members
  (messages of 1 to 500 bytes; the latest 50 are sent on joining).
- **Replies** (`socialnet.responses`) – helpers building JSON replies and
  CORS headers.

## Installing

```
pip install .
```

## Running the server

```
socialnet --database socialnet.db
```

Options: `--host` (default `0.0.0.0`), `--port` (default `8080`),
`--database` (default `socialnet.db`), `--static` (default `static`) and
`--uploads` (default `uploads`). The static and uploads directories are
created if missing and served under `/static/` and `/uploads/`.

Replies carry CORS headers for the origin named in the `SOCIALNET_ORIGIN`
environment variable (default `http://localhost:5173`); the group chat
WebSocket accepts only requests whose `Origin` header equals it. Every
authenticated request carries the session in a cookie named `token`.

| Path | Purpose |
| --- | --- |
| `/middle` | tell whether the token cookie belongs to a session |
| `/api/posts` | create a post (multipart form: `title`, `content`, `status`, `allowed_users`, `image`) |
| `/api/getposts` | the posts you may see, newest first |
| `/api/postsprv` | every semi-private post grant |
| `/api/userinfo?user_id=<username>` | a user's profile |
| `/api/ownposts?username=<username>` | a user's posts you may see |
| `/api/isfollowing?follower_id=<username>&followed_id=<username>` | whether one user follows another |
| `/api/updateprivacy`, `/api/setprivacy` | POST `{"privacy": "public" or "private"}` |
| `/api/checkmyprivacy` | your privacy setting |
| `/api/getfollowingfolowers?profileUser=<username>` | a user's followers and following |
| `/api/postsprivacy` | your own followers and following |
| `/api/getinvitationsfollow` | follow requests awaiting you |
| `/api/accepteinvi` | POST `{"follower_id": <username>}` to accept a request |
| `/api/notifications` | your notifications, newest first |
| `/api/markasread` | POST `{"notificationId": <id>}` |
| `/api/messages`, `/api/getmessages` | GET `?sender=&receiver=`: a conversation, oldest first |
| `/api/openchat` | users you can chat with |
| `/api/allusers` | all other users, with whether you follow them |
| `/ws` | direct chat WebSocket |
| `/ws/group/<group id>` | group chat WebSocket |
| `/ws/notifications` | live notifications WebSocket |

Errors come back as plain text: 401 for a missing or invalid session, 403
when you may not see a conversation, 404 for an unknown user, 400 for a
malformed request and 500 for a database failure.

## Using it as a library

```python
from aiohttp import web
from socialnet.app import create_app

app = create_app("social.db", "static", "uploads")
web.run_app(app, port=8080)
```

`create_app` also takes an open `sqlite3.Connection`. The other modules work
directly on a connection:

```python
import sqlite3
from socialnet import posts, session

conn = sqlite3.connect("social.db")
user_id = session.require_user(conn, "token")
for post in posts.visible_posts(conn, user_id, "/uploads/"):
    print(post.title)
```

## What it does not do

- It creates no tables. The database must already hold `users`, `sessions`,
  `posts`, `posts_privacy`, `followers`, `comments`, `notifications`,
  `messages`, `groups`, `group_members` and `group_messages`.
- It has no sign-up or login endpoints; sessions are made in code with
  `session.create_session(conn, user_id)`.
- It has no endpoints for sending follow requests, writing comments,
  creating or managing groups, or events. It only reads the group and
  membership tables to guard group chat.

## Tests

```
pip install ".[test]"
pytest
```