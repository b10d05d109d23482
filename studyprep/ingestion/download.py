"""studyprep/ingestion/download.py
###############################################################################
Multi-strategy file download
###############################################################################
Session files live in remote object storage behind signed URLs.  Some storage
edges reject particular TLS handshakes or HTTP client fingerprints, so the
manager walks an ordered list of *transport strategies* until one returns a
non-empty payload:

1. ``hardened`` – httpx with a conservative TLS context (TLS 1.2 minimum,
   restricted cipher suites), explicit headers and **no** redirects.
2. ``plain`` – httpx with library defaults and redirect following.
3. ``alternate`` – aiohttp, a different HTTP implementation altogether.

A zero-byte body counts as a failure even on a 2xx response, and so does a
body exceeding ``max_download_size_mb``.  Between strategies the manager waits
``download_retry_delay_seconds``.
"""

from __future__ import annotations

import asyncio
import ssl
from typing import Awaitable, Callable, Dict, Final, List, Optional, Protocol, Sequence

import aiohttp
import httpx
import structlog

from studyprep.core.config import Settings, get_settings
from studyprep.core.exceptions import DownloadError, StrategyFailure

from .validators import validate_download_url

__all__: list[str] = [
    "TransportStrategy",
    "HardenedHttpxStrategy",
    "PlainHttpxStrategy",
    "AiohttpStrategy",
    "PayloadTooLargeError",
    "DownloadManager",
    "build_strategies",
]

logger = structlog.get_logger(__name__)

_STREAM_CHUNK_SIZE: Final[int] = 64 * 1024
_HARDENED_CIPHERS: Final[str] = "ECDHE+AESGCM:ECDHE+CHACHA20:DHE+AESGCM:!aNULL:!eNULL:!MD5:!DSS"


class PayloadTooLargeError(Exception):
    """Raised by a strategy when the body exceeds the configured size cap."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Payload exceeds {limit} bytes")
        self.limit = limit


class TransportStrategy(Protocol):
    name: str

    async def fetch(self, url: str) -> bytes:  # pragma: no cover - protocol
        ...


def _hardened_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.set_ciphers(_HARDENED_CIPHERS)
    return context


class _HttpxStrategy:
    """Shared streaming body reader for the httpx based strategies."""

    name: str = "httpx"

    def __init__(
        self,
        *,
        timeout: float,
        max_bytes: int,
        user_agent: str,
    ) -> None:
        self._timeout = timeout
        self._max_bytes = max_bytes
        self._user_agent = user_agent

    def _client(self) -> httpx.AsyncClient:  # pragma: no cover - overridden
        raise NotImplementedError

    async def fetch(self, url: str) -> bytes:
        async with self._client() as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                buffer = bytearray()
                async for chunk in response.aiter_bytes(_STREAM_CHUNK_SIZE):
                    buffer.extend(chunk)
                    if len(buffer) > self._max_bytes:
                        raise PayloadTooLargeError(self._max_bytes)
                return bytes(buffer)


class HardenedHttpxStrategy(_HttpxStrategy):
    name = "hardened"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            verify=_hardened_ssl_context(),
            timeout=httpx.Timeout(self._timeout),
            follow_redirects=False,
            headers={
                "User-Agent": self._user_agent,
                "Accept": "*/*",
                "Connection": "close",
            },
        )


class PlainHttpxStrategy(_HttpxStrategy):
    name = "plain"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            follow_redirects=True,
        )


class AiohttpStrategy:
    name = "alternate"

    def __init__(self, *, timeout: float, max_bytes: int, user_agent: str) -> None:
        self._timeout = timeout
        self._max_bytes = max_bytes
        self._user_agent = user_agent

    async def fetch(self, url: str) -> bytes:
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        async with aiohttp.ClientSession(
            timeout=timeout, headers={"User-Agent": self._user_agent}
        ) as session:
            async with session.get(url) as response:
                response.raise_for_status()
                buffer = bytearray()
                async for chunk in response.content.iter_chunked(_STREAM_CHUNK_SIZE):
                    buffer.extend(chunk)
                    if len(buffer) > self._max_bytes:
                        raise PayloadTooLargeError(self._max_bytes)
                return bytes(buffer)


_STRATEGY_FACTORIES: Final[Dict[str, Callable[[Settings], TransportStrategy]]] = {
    "hardened": lambda s: HardenedHttpxStrategy(
        timeout=s.download_timeout_seconds,
        max_bytes=s.max_download_size_bytes,
        user_agent=s.download_user_agent,
    ),
    "plain": lambda s: PlainHttpxStrategy(
        timeout=s.download_timeout_seconds,
        max_bytes=s.max_download_size_bytes,
        user_agent=s.download_user_agent,
    ),
    "alternate": lambda s: AiohttpStrategy(
        timeout=s.download_timeout_seconds,
        max_bytes=s.max_download_size_bytes,
        user_agent=s.download_user_agent,
    ),
}


def build_strategies(settings: Settings) -> List[TransportStrategy]:
    """Instantiate the strategies named in ``settings.download_strategies``, in order."""
    return [_STRATEGY_FACTORIES[name](settings) for name in settings.download_strategies]


def _describe(exc: BaseException) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    if isinstance(exc, aiohttp.ClientResponseError):
        return f"HTTP {exc.status}"
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return "timed out"
    return str(exc) or exc.__class__.__name__


class DownloadManager:
    """Fetch a file's bytes by trying each transport strategy in order."""

    def __init__(
        self,
        strategies: Sequence[TransportStrategy],
        *,
        retry_delay_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not strategies:
            raise ValueError("DownloadManager needs at least one strategy")
        self._strategies = list(strategies)
        self._retry_delay = retry_delay_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "DownloadManager":
        settings = settings or get_settings()
        return cls(
            build_strategies(settings),
            retry_delay_seconds=settings.download_retry_delay_seconds,
        )

    @property
    def strategy_names(self) -> List[str]:
        return [strategy.name for strategy in self._strategies]

    async def fetch(self, url: str, file_name: str) -> bytes:
        """Return the non-empty body of *url*.

        Raises
        ------
        DownloadError
            When the URL is malformed (before any strategy runs) or when every
            strategy failed.  ``failures`` lists each strategy's reason.
        """
        url = validate_download_url(url, file_name=file_name)

        failures: List[StrategyFailure] = []
        last_exc: Optional[BaseException] = None
        total = len(self._strategies)

        for position, strategy in enumerate(self._strategies, start=1):
            try:
                payload = await strategy.fetch(url)
                if not payload:
                    raise ValueError(f"Downloaded file is empty: {file_name}")
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                reason = _describe(exc)
                failures.append(StrategyFailure(strategy=strategy.name, reason=reason))
                logger.warning(
                    "download_strategy_failed",
                    file_name=file_name,
                    strategy=strategy.name,
                    attempt=position,
                    reason=reason,
                )
                if position < total and self._retry_delay > 0:
                    await self._sleep(self._retry_delay)
                continue

            logger.info(
                "download_succeeded",
                file_name=file_name,
                strategy=strategy.name,
                attempt=position,
                size_bytes=len(payload),
            )
            return payload

        details = "; ".join(f"{f.strategy}: {f.reason}" for f in failures)
        last_reason = failures[-1].reason if failures else "unknown"
        logger.error("download_failed", file_name=file_name, failures=details)
        raise DownloadError(
            f"All download strategies failed for {file_name}. "
            f"Last error: {last_reason} ({details})",
            file_name=file_name,
            cause=last_exc,
            failures=failures,
        )
