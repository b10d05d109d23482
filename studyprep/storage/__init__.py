from __future__ import annotations

from .sessions import InMemorySessionStore, RedisSessionStore, SessionStore  # noqa: F401

__all__: list[str] = ["SessionStore", "RedisSessionStore", "InMemorySessionStore"]
