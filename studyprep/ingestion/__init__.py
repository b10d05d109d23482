"""File acquisition: URL resolution and multi-strategy download."""

from __future__ import annotations

from .download import DownloadManager, build_strategies  # noqa: F401
from .validators import UrlSigner, resolve_download_url, validate_download_url  # noqa: F401

__all__: list[str] = [
    "DownloadManager",
    "build_strategies",
    "UrlSigner",
    "resolve_download_url",
    "validate_download_url",
]
