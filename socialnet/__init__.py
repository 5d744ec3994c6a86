"""Social network backend over SQLite: sessions, posts, profiles, followers, notifications and chat."""

__version__ = "0.1.0"