from __future__ import annotations

from typing import Optional, Protocol
from urllib.parse import urlparse

import structlog

from studyprep.core.exceptions import DownloadError
from studyprep.pipeline.types import FileRef

__all__: list[str] = ["UrlSigner", "validate_download_url", "resolve_download_url"]

logger = structlog.get_logger(__name__)

_ALLOWED_SCHEMES: frozenset[str] = frozenset({"http", "https"})


class UrlSigner(Protocol):
    """Turns a storage identifier into a short-lived direct download URL."""

    def sign(self, storage_id: str) -> str:  # pragma: no cover - protocol
        ...


def validate_download_url(url: Optional[str], *, file_name: Optional[str] = None) -> str:
    """Return *url* stripped, or raise :class:`DownloadError` if it is unusable.

    Only absolute ``http``/``https`` URLs with a host are accepted.
    """
    candidate = (url or "").strip()
    if not candidate:
        logger.warning("download_url_missing", file_name=file_name)
        raise DownloadError("Download URL is empty.", file_name=file_name)

    parsed = urlparse(candidate)
    if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
        logger.warning("download_url_bad_scheme", file_name=file_name, scheme=parsed.scheme)
        raise DownloadError(
            f"Unsupported URL scheme '{parsed.scheme or '<none>'}' (expected http or https).",
            file_name=file_name,
        )
    if not parsed.netloc:
        logger.warning("download_url_no_host", file_name=file_name)
        raise DownloadError("Download URL has no host.", file_name=file_name)
    return candidate


def resolve_download_url(file_ref: FileRef, signer: Optional[UrlSigner] = None) -> str:
    """Pick the URL a file should be downloaded from.

    A signed URL derived from ``storage_id`` wins when a signer is wired in.
    If signing fails the plain ``source_url`` is used instead; with neither
    available the file cannot be downloaded.
    """
    if file_ref.storage_id and signer is not None:
        try:
            return signer.sign(file_ref.storage_id)
        except Exception as exc:  # noqa: BLE001
            if not file_ref.source_url:
                raise DownloadError(
                    "No valid download URL available.",
                    file_name=file_ref.file_name,
                    cause=exc,
                ) from exc
            logger.warning(
                "url_signing_failed",
                file_name=file_ref.file_name,
                error=str(exc),
            )
            return file_ref.source_url

    if not file_ref.source_url:
        raise DownloadError(
            "Missing both storage id and source URL.",
            file_name=file_ref.file_name,
        )
    return file_ref.source_url
