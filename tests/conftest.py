# ruff: noqa: E402
from __future__ import annotations

import sys
from pathlib import Path

# Ensure repository root is first on sys.path
_repo_root: Path = Path(__file__).resolve().parent.parent  # tests/ -> repo root
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

from typing import Callable, List, Optional

import pytest

from studyprep.core.config import Settings
from studyprep.pipeline.types import FileRef, ProcessingPreferences, Session, SessionStatus
from studyprep.storage.sessions import InMemorySessionStore


@pytest.fixture(autouse=True)
def _disable_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent the application Settings class from reading the developer *.env* file.

    Unit-tests must operate against a *clean* environment.  The fixture
    patches ``Settings.model_config['env_file']`` to ``None`` so that Pydantic
    skips dotenv processing entirely, and removes the variables most often
    used by configuration tests unless a test sets them explicitly.
    """

    monkeypatch.setitem(Settings.model_config, "env_file", None)

    for name in (
        "DOWNLOAD_STRATEGIES",
        "CHUNK_SIZE",
        "CHUNK_OVERLAP",
        "OPENAI_API_KEY",
        "OCR_ACCEPTANCE_CONFIDENCE",
        "REDIS_URL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def test_settings() -> Settings:
    """Settings with every fixed delay zeroed and metrics disabled."""
    return Settings(
        download_retry_delay_seconds=0,
        ocr_retry_delay_seconds=0,
        prometheus_enabled=False,
        openai_api_key="sk-test",
    )


@pytest.fixture
def make_session() -> Callable[..., Session]:
    """Factory for sessions with one ``text/plain`` file per given name."""

    def _factory(
        *names: str,
        session_id: str = "sess-1",
        user_id: str = "user-1",
        status: SessionStatus = SessionStatus.pending,
        media_type: str = "text/plain",
        preferences: Optional[ProcessingPreferences] = None,
    ) -> Session:
        files: List[FileRef] = [
            FileRef(
                file_name=name,
                source_url=f"https://files.example.com/{name}",
                media_type=media_type,
            )
            for name in names
        ]
        return Session(
            id=session_id,
            user_id=user_id,
            files=files,
            status=status,
            preferences=preferences or ProcessingPreferences(),
        )

    return _factory


@pytest.fixture
def memory_store() -> InMemorySessionStore:
    return InMemorySessionStore()
