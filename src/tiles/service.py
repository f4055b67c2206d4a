"""
Поток движка тайлов.

``TileEngineThread`` держит цикл asyncio оркестратора в отдельном daemon-потоке.
Команды из других потоков (GUI, CLI) передаются в цикл через
``call_soon_threadsafe``; сами методы TileManager вызываются только из
потока цикла.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import TYPE_CHECKING, Any

from tiles.manager import TileEvents, TileManager

if TYPE_CHECKING:
    from collections.abc import Callable

    from domain.models import TileEngineSettings
    from tiles.manager import TileScene

logger = logging.getLogger(__name__)


class TileEngineThread:
    """
    Фоновый поток с циклом asyncio и оркестратором тайлов.

    Usage:
        engine = TileEngineThread(settings, events=TileEvents(...))
        engine.start()
        engine.download_region(18, 54, 73, 135, 1, 3)
        engine.stop()
    """

    def __init__(
        self,
        settings: TileEngineSettings | None = None,
        *,
        events: TileEvents | None = None,
        manager_factory: Callable[[], TileManager] | None = None,
    ) -> None:
        self._settings = settings
        self._events = events
        self._manager_factory = manager_factory
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._running = False
        self.manager: TileManager | None = None

    def start(self, timeout: float = 10.0) -> None:
        """Запустить поток и дождаться создания оркестратора."""
        if self._running:
            return
        self._ready.clear()
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, daemon=True, name='tile-engine'
        )
        self._running = True
        self._thread.start()
        if not self._ready.wait(timeout) or not self._running:
            msg = 'Tile engine thread did not start'
            raise RuntimeError(msg)
        logger.info('TileEngineThread started')

    def stop(self, timeout: float = 10.0) -> None:
        """Закрыть оркестратор, остановить цикл и дождаться потока."""
        if not self._running or self._loop is None:
            return
        self._running = False
        if self.manager is not None:
            future = asyncio.run_coroutine_threadsafe(self.manager.close(), self._loop)
            try:
                future.result(timeout)
            except (concurrent.futures.TimeoutError, RuntimeError) as e:
                logger.warning('TileManager did not close cleanly: %s', e)
        self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning('TileEngineThread did not stop within timeout')
        self._thread = None
        logger.info('TileEngineThread stopped')

    def is_running(self) -> bool:
        return self._running and self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        loop = self._loop
        asyncio.set_event_loop(loop)
        try:
            if self._manager_factory is not None:
                self.manager = self._manager_factory()
            else:
                self.manager = TileManager(self._settings, events=self._events)
        except Exception:
            logger.exception('Failed to create TileManager')
            self._running = False
            loop.close()
            self._ready.set()
            return
        self._ready.set()
        try:
            loop.run_forever()
        finally:
            loop.close()

    def call(self, method: str, *args: Any) -> None:
        """Поставить вызов метода оркестратора в цикл движка."""
        if not self.is_running() or self.manager is None:
            msg = 'Tile engine is not running'
            raise RuntimeError(msg)
        self._loop.call_soon_threadsafe(self._invoke, method, args)

    def _invoke(self, method: str, args: tuple) -> None:
        try:
            getattr(self.manager, method)(*args)
        except Exception:
            logger.exception('Tile engine command %s failed', method)

    def run(self, coro_factory: Callable[[TileManager], Any], timeout: float | None = None) -> Any:
        """Выполнить корутину над оркестратором в цикле движка и вернуть результат."""
        if not self.is_running() or self.manager is None:
            msg = 'Tile engine is not running'
            raise RuntimeError(msg)
        future = asyncio.run_coroutine_threadsafe(coro_factory(self.manager), self._loop)
        return future.result(timeout)

    # --- Команды

    def attach_scene(self, scene: TileScene | None) -> None:
        self.call('attach_scene', scene)

    def set_center(self, lat: float, lon: float) -> None:
        self.call('set_center', lat, lon)

    def set_zoom(self, zoom: int) -> None:
        self.call('set_zoom', zoom)

    def set_tile_source(self, template: str, servers: list[str] | None = None) -> None:
        self.call('set_tile_source', template, servers)

    def download_region(
        self,
        min_lat: float,
        max_lat: float,
        min_lon: float,
        max_lon: float,
        min_zoom: int,
        max_zoom: int,
    ) -> None:
        self.call('download_region', min_lat, max_lat, min_lon, max_lon, min_zoom, max_zoom)

    def check_local_tiles(self) -> None:
        self.call('check_local_tiles')

    def get_max_available_zoom(self) -> int:
        # Только чтение каталога кэша, можно вызывать из любого потока
        if self.manager is None:
            msg = 'Tile engine is not running'
            raise RuntimeError(msg)
        return self.manager.get_max_available_zoom()

    def wait_idle(self, timeout: float | None = None) -> None:
        self.run(lambda manager: manager.wait_idle(), timeout)
