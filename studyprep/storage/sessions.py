"""studyprep/storage/sessions.py
###############################################################################
Session store boundary and adapters
###############################################################################
The orchestrator reads a session once and mutates it only through
:meth:`SessionStore.update`, a partial write that is atomic per call.

:class:`RedisSessionStore` keeps each session in a Redis *hash* at
``{prefix}{session_id}`` with one JSON-encoded value per field, so a partial
update is a single ``HSET`` with a mapping.  Connectivity problems surface as
:class:`~studyprep.core.exceptions.PersistenceError`.

:class:`InMemorySessionStore` backs tests and local runs.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Protocol

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError
from pydantic_core import to_jsonable_python
from redis.exceptions import RedisError

from studyprep.core.config import Settings, get_settings
from studyprep.core.exceptions import NotFoundError, PersistenceError
from studyprep.pipeline.types import Session

__all__: list[str] = [
    "SessionStore",
    "RedisSessionStore",
    "InMemorySessionStore",
]

logger = structlog.get_logger(__name__)

if TYPE_CHECKING:
    RedisT = aioredis.Redis[Any]
else:  # Runtime – plain class, avoids subscript TypeError
    RedisT = aioredis.Redis  # type: ignore[misc]


class SessionStore(Protocol):
    async def get(self, session_id: str) -> Session:  # pragma: no cover
        ...

    async def update(self, session_id: str, fields: Mapping[str, Any]) -> None:  # pragma: no cover
        ...


def _encode_fields(fields: Mapping[str, Any]) -> Dict[str, str]:
    return {key: json.dumps(to_jsonable_python(value)) for key, value in fields.items()}


def _decode_fields(raw: Mapping[Any, Any]) -> Dict[str, Any]:
    decoded: Dict[str, Any] = {}
    for key, value in raw.items():
        name = key.decode() if isinstance(key, bytes) else str(key)
        text = value.decode() if isinstance(value, bytes) else value
        try:
            decoded[name] = json.loads(text)
        except (TypeError, json.JSONDecodeError):
            decoded[name] = text
    return decoded


class RedisSessionStore:
    def __init__(self, client: RedisT, *, key_prefix: str = "session:") -> None:
        self._client = client
        self._prefix = key_prefix

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RedisSessionStore":
        settings = settings or get_settings()
        logger.info("redis_client_initializing", url=settings.redis_url)
        client = aioredis.from_url(settings.redis_url, decode_responses=True)
        return cls(client, key_prefix=settings.session_key_prefix)

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}{session_id}"

    async def get(self, session_id: str) -> Session:
        try:
            raw = await self._client.hgetall(self._key(session_id))
        except RedisError as exc:
            logger.error("redis_get_session_failed", session_id=session_id, error=str(exc))
            raise PersistenceError(
                "Session store unavailable.", session_id=session_id, cause=exc
            ) from exc

        if not raw:
            raise NotFoundError(f"Session {session_id} not found.", session_id=session_id)

        data = _decode_fields(raw)
        data.setdefault("id", session_id)
        try:
            return Session.model_validate(data)
        except ValidationError as exc:
            raise PersistenceError(
                f"Session {session_id} record is malformed.", session_id=session_id, cause=exc
            ) from exc

    async def update(self, session_id: str, fields: Mapping[str, Any]) -> None:
        key = self._key(session_id)
        try:
            if not await self._client.exists(key):
                raise NotFoundError(f"Session {session_id} not found.", session_id=session_id)
            await self._client.hset(key, mapping=_encode_fields(fields))
        except RedisError as exc:
            logger.error(
                "redis_update_session_failed",
                session_id=session_id,
                fields=sorted(fields),
                error=str(exc),
            )
            raise PersistenceError(
                "Failed to update session.", session_id=session_id, cause=exc
            ) from exc
        logger.debug("session_updated", session_id=session_id, fields=sorted(fields))

    async def close(self) -> None:
        await self._client.aclose()


class InMemorySessionStore:
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def add(self, session: Session) -> None:
        self._sessions[session.id] = session

    async def get(self, session_id: str) -> Session:
        try:
            return self._sessions[session_id].model_copy(deep=True)
        except KeyError:
            raise NotFoundError(
                f"Session {session_id} not found.", session_id=session_id
            ) from None

    async def update(self, session_id: str, fields: Mapping[str, Any]) -> None:
        async with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                raise NotFoundError(f"Session {session_id} not found.", session_id=session_id)
            merged = {**current.model_dump(), **dict(fields)}
            self._sessions[session_id] = Session.model_validate(merged)

    async def close(self) -> None:
        return None
