from __future__ import annotations

from .processing_service import ProcessingService  # noqa: F401

__all__: list[str] = ["ProcessingService"]
