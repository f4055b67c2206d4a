"""Tests for TileEngineThread."""

from __future__ import annotations

import threading
from io import BytesIO

import pytest
from PIL import Image

from domain.models import TileEngineSettings, TileKey, TileOutcome
from shared.constants import OutcomeStatus
from tiles.cache import TileStore
from tiles.manager import TileEvents, TileManager
from tiles.service import TileEngineThread


def _png() -> bytes:
    buf = BytesIO()
    Image.new('RGB', (4, 4), (200, 10, 10)).save(buf, format='PNG')
    return buf.getvalue()


class _DiskWorker:
    """Writes a PNG for every request, no network."""

    def __init__(self):
        self.threads: set[str] = set()
        self.closed = False

    async def execute(self, request):
        self.threads.add(threading.current_thread().name)
        data = _png()
        TileStore.write_path(request.dest_path, data)
        return TileOutcome(request, OutcomeStatus.SUCCESS, data=data)

    async def close(self):
        self.closed = True


@pytest.fixture
def engine(cache_root):
    finished = threading.Event()
    progress: list[tuple[int, int, int]] = []
    worker = _DiskWorker()
    events = TileEvents(
        download_finished=finished.set,
        region_progress=lambda *a: progress.append(a),
    )
    store = TileStore(cache_root)

    def factory():
        return TileManager(TileEngineSettings(), store=store, worker=worker, events=events)

    eng = TileEngineThread(manager_factory=factory)
    eng.start()
    yield eng, finished, progress, worker, store
    eng.stop()


class TestTileEngineThread:
    def test_start_and_stop(self, cache_root):
        store = TileStore(cache_root)
        eng = TileEngineThread(
            manager_factory=lambda: TileManager(store=store, worker=_DiskWorker())
        )
        eng.start()
        assert eng.is_running()
        eng.stop()
        assert not eng.is_running()

    def test_region_download_runs_on_engine_thread(self, engine):
        eng, finished, progress, worker, store = engine

        eng.download_region(18.0, 54.0, 73.0, 135.0, 1, 2)

        assert finished.wait(5.0)
        eng.wait_idle(timeout=5.0)
        assert progress[-1] == (3, 3, 2)
        assert worker.threads == {'tile-engine'}
        assert store.exists(TileKey(1, 0, 1))

    def test_get_max_available_zoom(self, engine):
        eng, finished, _, _, store = engine
        assert eng.get_max_available_zoom() == 0
        store.save(TileKey(0, 0, 4), _png())
        assert eng.get_max_available_zoom() == 4

    def test_bad_command_does_not_kill_loop(self, engine):
        eng, finished, *_ = engine
        eng.set_zoom('not-a-zoom')
        eng.download_region(18.0, 54.0, 73.0, 135.0, 1, 1)
        assert finished.wait(5.0)
        assert eng.is_running()

    def test_stop_closes_worker(self, engine):
        eng, _, _, worker, _ = engine
        eng.stop()
        assert worker.closed

    def test_call_when_stopped_raises(self):
        eng = TileEngineThread()
        with pytest.raises(RuntimeError, match='not running'):
            eng.set_center(0.0, 0.0)

    def test_failed_factory_raises_on_start(self):
        def factory():
            msg = 'no cache'
            raise OSError(msg)

        eng = TileEngineThread(manager_factory=factory)
        with pytest.raises(RuntimeError, match='did not start'):
            eng.start()
