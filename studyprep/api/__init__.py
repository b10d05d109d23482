"""StudyPrep API package root.

The FastAPI application lives in :pymod:`studyprep.api.app`; import it from
there (``uvicorn studyprep.api.app:app``).
"""

from __future__ import annotations

__all__: list[str] = []
