"""studyprep/api/routes/__init__.py
###############################################################################
FastAPI **router package marker**.
###############################################################################
Each route module defines a module-level ``router``; registration happens in
:py:mod:`studyprep.api.app`.
"""

from __future__ import annotations

__all__: list[str] = []
