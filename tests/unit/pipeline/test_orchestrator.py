from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import pytest

from studyprep.core.config import Settings
from studyprep.core.exceptions import (
    AggregateExtractionError,
    DownloadError,
    NotFoundError,
    PersistenceError,
    SessionStateError,
    UnauthorizedError,
)
from studyprep.parsing.dispatcher import ExtractionDispatcher
from studyprep.pipeline.chunker import TextChunker
from studyprep.pipeline.content import SUMMARY_ERROR, StudyMaterialGenerator
from studyprep.pipeline.orchestrator import SessionPipeline
from studyprep.pipeline.types import Flashcard, ProcessingPreferences, SessionStatus
from studyprep.storage.sessions import InMemorySessionStore
from tests.fakes import ScriptedDownloader, ScriptedGenerator

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class RecordingStore(InMemorySessionStore):
    """In-memory store that records updates and can fail from a given call on."""

    def __init__(self, fail_from_update: Optional[int] = None) -> None:
        super().__init__()
        self.updates: List[Dict[str, Any]] = []
        self._fail_from = fail_from_update

    async def update(self, session_id: str, fields: Mapping[str, Any]) -> None:
        self.updates.append(dict(fields))
        if self._fail_from is not None and len(self.updates) >= self._fail_from:
            raise PersistenceError("Failed to update session.", session_id=session_id)
        await super().update(session_id, fields)


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


def _pipeline(
    store: InMemorySessionStore,
    settings: Settings,
    payloads: Dict[str, Any],
    generator: Optional[ScriptedGenerator] = None,
) -> SessionPipeline:
    return SessionPipeline(
        store,
        ScriptedDownloader(payloads),
        ExtractionDispatcher.from_settings(settings),
        TextChunker(60, 10),
        StudyMaterialGenerator(generator or ScriptedGenerator()),
        clock=lambda: FIXED_NOW,
    )


async def test_all_files_succeed(store, make_session, test_settings) -> None:
    store.add(make_session("a.txt", "b.txt"))
    pipeline = _pipeline(
        store,
        test_settings,
        {"a.txt": b"Photosynthesis converts light.", "b.txt": b"  Mitosis splits cells.  "},
    )

    result = await pipeline.run("sess-1", "user-1")

    assert result.status is SessionStatus.completed
    assert result.successful_files == ["a.txt", "b.txt"]
    assert result.errors == []
    expected_text = "Photosynthesis converts light.\n\nMitosis splits cells."
    assert result.total_text_length == len(expected_text)
    assert result.total_chunks == 2
    assert [chunk.source for chunk in result.chunks] == ["a.txt", "b.txt"]

    session = await store.get("sess-1")
    assert session.status is SessionStatus.completed
    assert session.summary == "A summary."
    assert session.flashcards == [Flashcard(question="Q?", answer="A.")]
    assert session.study_guide == "A study guide."
    assert session.total_text_length == len(expected_text)
    assert session.total_chunks == 2
    assert session.successful_files == ["a.txt", "b.txt"]
    assert session.processing_errors is None
    assert session.error_message is None
    assert session.processed_at == FIXED_NOW.isoformat()


async def test_partial_failure_completes_with_errors(store, make_session, test_settings) -> None:
    store.add(make_session("a.txt", "b.txt", "c.txt"))
    pipeline = _pipeline(
        store,
        test_settings,
        {
            "a.txt": b"Alpha notes.",
            "b.txt": DownloadError(
                "All download strategies failed for b.txt. Last error: HTTP 404 (hardened: HTTP 404)",
                file_name="b.txt",
            ),
            "c.txt": b"Gamma notes.",
        },
    )

    result = await pipeline.run("sess-1", "user-1")

    assert result.status is SessionStatus.completed_with_errors
    assert result.successful_files == ["a.txt", "c.txt"]
    assert [error.stage for error in result.errors] == ["download"]

    session = await store.get("sess-1")
    assert session.status is SessionStatus.completed_with_errors
    assert session.processing_errors == [
        "Failed to process b.txt: All download strategies failed for b.txt. "
        "Last error: HTTP 404 (hardened: HTTP 404)"
    ]


async def test_blank_file_is_reported_as_extraction_failure(
    store, make_session, test_settings
) -> None:
    store.add(make_session("a.txt", "blank.txt"))
    pipeline = _pipeline(store, test_settings, {"a.txt": b"Content.", "blank.txt": b" \n "})

    result = await pipeline.run("sess-1", "user-1")

    assert result.status is SessionStatus.completed_with_errors
    assert result.errors[0].stage == "extraction"
    assert result.errors[0].message == "utf8: no text content"


async def test_unexpected_file_error_does_not_abort_batch(
    store, make_session, test_settings
) -> None:
    store.add(make_session("a.txt", "b.txt"))
    pipeline = _pipeline(
        store, test_settings, {"a.txt": RuntimeError("socket exploded"), "b.txt": b"Fine."}
    )

    result = await pipeline.run("sess-1", "user-1")

    assert result.successful_files == ["b.txt"]
    assert result.errors[0].stage == "unexpected"
    assert str(result.errors[0]) == "Failed to process a.txt: socket exploded"


async def test_no_text_at_all_fails_the_session(store, make_session, test_settings) -> None:
    store.add(make_session("a.txt", "b.txt"))
    error = DownloadError("All download strategies failed for a.txt. Last error: timed out")
    pipeline = _pipeline(store, test_settings, {"a.txt": error, "b.txt": b""})

    with pytest.raises(AggregateExtractionError) as exc_info:
        await pipeline.run("sess-1", "user-1")

    assert len(exc_info.value.errors) == 2
    session = await store.get("sess-1")
    assert session.status is SessionStatus.failed
    assert session.error_message.startswith(
        "No text content could be extracted from any of the uploaded files. Errors: "
        "Failed to process a.txt: All download strategies failed"
    )
    assert session.processed_at == FIXED_NOW.isoformat()
    assert session.summary is None


async def test_results_are_written_in_one_terminal_update(
    store, make_session, test_settings
) -> None:
    store.add(make_session("a.txt"))
    pipeline = _pipeline(store, test_settings, {"a.txt": b"Some text."})

    await pipeline.run("sess-1", "user-1")

    assert len(store.updates) == 2
    assert store.updates[0] == {"status": SessionStatus.processing, "error_message": None}
    terminal = store.updates[1]
    assert terminal["status"] is SessionStatus.completed
    assert {"summary", "flashcards", "study_guide", "total_chunks", "processed_at"} <= set(
        terminal
    )


async def test_content_failure_still_completes(store, make_session, test_settings) -> None:
    store.add(make_session("a.txt"))
    pipeline = _pipeline(
        store,
        test_settings,
        {"a.txt": b"Some text."},
        generator=ScriptedGenerator(summary=RuntimeError("quota exceeded")),
    )

    result = await pipeline.run("sess-1", "user-1")

    assert result.status is SessionStatus.completed
    assert result.materials.summary == SUMMARY_ERROR


async def test_preferences_limit_generated_materials(store, make_session, test_settings) -> None:
    preferences = ProcessingPreferences(generate_summary=False, generate_study_guide=False)
    store.add(make_session("a.txt", preferences=preferences))
    generator = ScriptedGenerator()
    pipeline = _pipeline(store, test_settings, {"a.txt": b"Some text."}, generator=generator)

    await pipeline.run("sess-1", "user-1")

    session = await store.get("sess-1")
    assert session.summary is None
    assert session.study_guide is None
    assert session.flashcards == [Flashcard(question="Q?", answer="A.")]
    assert len(generator.prompts) == 1


@pytest.mark.parametrize(
    "status",
    [SessionStatus.completed, SessionStatus.completed_with_errors, SessionStatus.failed],
)
async def test_terminal_session_is_not_reprocessed(
    store, make_session, test_settings, status
) -> None:
    store.add(make_session("a.txt", status=status))
    pipeline = _pipeline(store, test_settings, {"a.txt": b"Some text."})

    with pytest.raises(SessionStateError, match=f"Session is already {status.value}."):
        await pipeline.run("sess-1", "user-1")

    assert store.updates == []
    assert (await store.get("sess-1")).status is status


async def test_processing_session_can_be_rerun(store, make_session, test_settings) -> None:
    store.add(make_session("a.txt", status=SessionStatus.processing))
    pipeline = _pipeline(store, test_settings, {"a.txt": b"Some text."})

    result = await pipeline.run("sess-1", "user-1")

    assert result.status is SessionStatus.completed


async def test_missing_session_is_not_written(store, test_settings) -> None:
    pipeline = _pipeline(store, test_settings, {})

    with pytest.raises(NotFoundError):
        await pipeline.run("missing", "user-1")

    assert store.updates == []


async def test_foreign_requester_fails_the_session(store, make_session, test_settings) -> None:
    store.add(make_session("a.txt"))
    pipeline = _pipeline(store, test_settings, {"a.txt": b"Some text."})

    with pytest.raises(UnauthorizedError):
        await pipeline.run("sess-1", "intruder")

    session = await store.get("sess-1")
    assert session.status is SessionStatus.failed
    assert session.error_message == "Unauthorized access to this session."


async def test_load_runnable_does_not_write(store, make_session, test_settings) -> None:
    store.add(make_session("a.txt"))
    pipeline = _pipeline(store, test_settings, {})

    session = await pipeline.load_runnable("sess-1", "user-1")

    assert session.id == "sess-1"
    assert store.updates == []


async def test_terminal_write_failure_is_reraised(make_session, test_settings) -> None:
    store = RecordingStore(fail_from_update=2)
    store.add(make_session("a.txt"))
    pipeline = _pipeline(store, test_settings, {"a.txt": b"Some text."})

    with pytest.raises(PersistenceError):
        await pipeline.run("sess-1", "user-1")

    # terminal write, then the failed-status write
    assert len(store.updates) == 3
    assert store.updates[2]["status"] is SessionStatus.failed
    assert (await store.get("sess-1")).status is SessionStatus.processing


class _FinishingDownloader(ScriptedDownloader):
    """Simulates a concurrent run finishing the session while this one downloads."""

    def __init__(self, store: InMemorySessionStore, finished, payloads) -> None:
        super().__init__(payloads)
        self._store = store
        self._finished = finished

    async def fetch(self, url: str, file_name: str) -> bytes:
        self._store.add(self._finished)
        return await super().fetch(url, file_name)


def _racing_pipeline(store, make_session, test_settings, payload) -> SessionPipeline:
    finished = make_session("a.txt", status=SessionStatus.completed)
    return SessionPipeline(
        store,
        _FinishingDownloader(store, finished, {"a.txt": payload}),
        ExtractionDispatcher.from_settings(test_settings),
        TextChunker(60, 10),
        clock=lambda: FIXED_NOW,
    )


async def test_failure_does_not_overwrite_a_finished_session(
    store, make_session, test_settings
) -> None:
    store.add(make_session("a.txt"))
    pipeline = _racing_pipeline(
        store, make_session, test_settings, DownloadError("All download strategies failed.")
    )

    with pytest.raises(AggregateExtractionError):
        await pipeline.run("sess-1", "user-1")

    assert [update["status"] for update in store.updates] == [SessionStatus.processing]
    assert (await store.get("sess-1")).status is SessionStatus.completed


async def test_results_do_not_overwrite_a_finished_session(
    store, make_session, test_settings
) -> None:
    store.add(make_session("a.txt"))
    pipeline = _racing_pipeline(store, make_session, test_settings, b"Late text.")

    with pytest.raises(SessionStateError, match="Session is already completed."):
        await pipeline.run("sess-1", "user-1")

    assert [update["status"] for update in store.updates] == [SessionStatus.processing]
    assert (await store.get("sess-1")).status is SessionStatus.completed
