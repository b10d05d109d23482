from __future__ import annotations

import asyncio

import pytest

from studyprep.core.config import Settings
from studyprep.ocr.engine import OcrConfig, Recognition
from studyprep.ocr.worker import OcrWorker, OcrWorkerPool, WorkerState
from tests.fakes import ScriptedOcrEngine


class _SlowInitEngine(ScriptedOcrEngine):
    def __init__(self, delay: float, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._delay = delay

    async def initialize(self, config: OcrConfig):
        await asyncio.sleep(self._delay)
        return await super().initialize(config)


async def test_concurrent_callers_share_one_initialisation() -> None:
    engine = _SlowInitEngine(0.01)
    worker = OcrWorker(engine, OcrConfig())

    handles = await asyncio.gather(*(worker.ensure_ready() for _ in range(5)))

    assert engine.initialized == 1
    assert all(handle is handles[0] for handle in handles)
    assert worker.state is WorkerState.ready


async def test_terminate_resets_and_next_use_reinitialises() -> None:
    engine = ScriptedOcrEngine([Recognition("a", 0.9), Recognition("b", 0.9)])
    worker = OcrWorker(engine, OcrConfig())

    await worker.recognize(b"img", "image/png", timeout=1)
    await worker.terminate()
    assert worker.state is WorkerState.uninitialized
    await worker.recognize(b"img", "image/png", timeout=1)

    assert engine.initialized == 2
    assert engine.terminated == 1


async def test_terminate_without_handle_is_noop() -> None:
    engine = ScriptedOcrEngine()
    worker = OcrWorker(engine, OcrConfig())

    await worker.terminate()

    assert engine.terminated == 0


async def test_terminate_errors_are_swallowed() -> None:
    class _BadTerminate(ScriptedOcrEngine):
        async def terminate(self, handle):
            raise RuntimeError("already gone")

    worker = OcrWorker(_BadTerminate(), OcrConfig())
    await worker.ensure_ready()

    await worker.terminate()

    assert worker.state is WorkerState.uninitialized


async def test_init_timeout_leaves_worker_uninitialised() -> None:
    worker = OcrWorker(_SlowInitEngine(1.0), OcrConfig(), init_timeout=0.01)

    with pytest.raises(asyncio.TimeoutError):
        await worker.ensure_ready()

    assert worker.state is WorkerState.uninitialized


async def test_pool_hands_out_workers_and_takes_them_back() -> None:
    pool = OcrWorkerPool(ScriptedOcrEngine(), size=1)

    async with pool.acquire() as first:
        pass
    async with pool.acquire() as second:
        pass

    assert first is second


async def test_pool_returns_worker_when_body_raises() -> None:
    pool = OcrWorkerPool(ScriptedOcrEngine(), size=1)

    with pytest.raises(RuntimeError):
        async with pool.acquire():
            raise RuntimeError("boom")

    async with pool.acquire() as worker:
        assert worker.worker_id == 0


async def test_pool_serialises_access_to_a_single_worker() -> None:
    pool = OcrWorkerPool(ScriptedOcrEngine(), size=1)
    order: list[str] = []

    async def _use(tag: str) -> None:
        async with pool.acquire():
            order.append(f"{tag}-in")
            await asyncio.sleep(0.01)
            order.append(f"{tag}-out")

    await asyncio.gather(_use("a"), _use("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]


async def test_pool_shutdown_terminates_workers_and_rejects_acquire() -> None:
    engine = ScriptedOcrEngine()
    pool = OcrWorkerPool(engine, size=2)
    async with pool.acquire() as worker:
        await worker.ensure_ready()

    await pool.shutdown()
    await pool.shutdown()

    assert pool.closed
    assert engine.terminated == 1
    with pytest.raises(RuntimeError, match="shut down"):
        async with pool.acquire():
            pass


def test_pool_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        OcrWorkerPool(ScriptedOcrEngine(), size=0)


def test_pool_from_settings(test_settings: Settings) -> None:
    pool = OcrWorkerPool.from_settings(test_settings, engine=ScriptedOcrEngine())

    assert pool.size == test_settings.ocr_pool_size
