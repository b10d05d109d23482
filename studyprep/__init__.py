"""StudyPrep session ingestion pipeline."""

from __future__ import annotations

__all__: list[str] = ["__version__"]

__version__ = "0.1.0"
