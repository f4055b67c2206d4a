"""
Qt-адаптер движка тайлов.

События оркестратора и изменения сцены приходят из потока движка. Они
складываются в ``queue.Queue``, а ``QTimer`` в GUI-потоке забирает их и
эмитит Qt-сигналы, поэтому обработчики UI всегда работают в своём потоке.
"""

from __future__ import annotations

import logging
import queue as _queue_mod
from typing import TYPE_CHECKING, Any

from PySide6.QtCore import QObject, QTimer, Signal

from tiles.manager import TileEvents

if TYPE_CHECKING:
    from PIL import Image

    from domain.models import TileKey

logger = logging.getLogger(__name__)

# Интервал опроса очереди событий из GUI-потока (мс)
_POLL_INTERVAL_MS = 50


class TileSignals(QObject):
    """
    Сигналы движка тайлов для UI.

    Экземпляр одновременно служит целью отображения (``attach_scene``) и
    источником обработчиков ``TileEvents`` (``make_events``).
    """

    region_progress = Signal(int, int, int)  # current, total, zoom
    download_finished = Signal()
    local_tiles_found = Signal(int, int)  # zoom, count
    no_local_tiles_found = Signal()
    viewport_progress = Signal(int, int)  # loaded, requested
    region_failures = Signal(int, int)  # failed, total

    tile_added = Signal(object, object, object)  # TileKey, PIL Image, (x, y)
    tile_moved = Signal(object, object)  # TileKey, (x, y)
    tile_removed = Signal(object)  # TileKey

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._queue: _queue_mod.Queue[tuple[Any, ...]] = _queue_mod.Queue()
        self._poll_timer = QTimer(self)
        self._poll_timer.setInterval(_POLL_INTERVAL_MS)
        self._poll_timer.timeout.connect(self.poll)

    def start(self) -> None:
        self._poll_timer.start()

    def stop(self) -> None:
        self._poll_timer.stop()
        self.poll()

    def make_events(self) -> TileEvents:
        """Обработчики событий для TileManager, пересылающие их в очередь."""
        return TileEvents(
            region_progress=lambda *a: self._post('region_progress', *a),
            download_finished=lambda: self._post('download_finished'),
            local_tiles_found=lambda *a: self._post('local_tiles_found', *a),
            no_local_tiles_found=lambda: self._post('no_local_tiles_found'),
            viewport_progress=lambda *a: self._post('viewport_progress', *a),
            region_failures=lambda *a: self._post('region_failures', *a),
        )

    # --- Цель отображения (вызывается из потока движка)

    def add_tile(self, key: TileKey, image: Image.Image, pos: tuple[int, int]) -> None:
        self._post('tile_added', key, image, pos)

    def move_tile(self, key: TileKey, pos: tuple[int, int]) -> None:
        self._post('tile_moved', key, pos)

    def remove_tile(self, key: TileKey) -> None:
        self._post('tile_removed', key)

    def _post(self, kind: str, *args: Any) -> None:
        self._queue.put((kind, *args))

    def pending(self) -> int:
        return self._queue.qsize()

    def poll(self) -> int:
        """Забрать накопленные сообщения и проэмитить сигналы (GUI-поток)."""
        emitted = 0
        while True:
            try:
                kind, *args = self._queue.get_nowait()
            except _queue_mod.Empty:
                break
            signal = getattr(self, kind, None)
            if signal is None:
                logger.warning('Unknown tile engine message: %s', kind)
                continue
            signal.emit(*args)
            emitted += 1
        return emitted
