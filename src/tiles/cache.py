"""File-based tile cache.

Tiles live one file per tile under ``{root}/{z}/{x}/{y}.{ext}``. The
directory tree is the only persisted state: there is no index, and a missing
file is the only "not cached" signal.
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path

from domain.models import CacheStats, TileKey
from shared.constants import DEFAULT_TILE_EXTENSION

logger = logging.getLogger(__name__)


class TileStoreError(RuntimeError):
    """Local I/O failure while reading or writing a cached tile."""


class TileStore:
    """Disk addressing and raw byte I/O for cached tiles.

    Usage:
        store = TileStore('/data/tilemap')
        store.save(TileKey(x=1, y=2, z=3), png_bytes)
        data = store.load(TileKey(x=1, y=2, z=3))
    """

    def __init__(
        self,
        root: str | Path,
        extension: str = DEFAULT_TILE_EXTENSION,
        *,
        create: bool = True,
    ) -> None:
        """Initialize tile store.

        Args:
            root: Cache root directory.
            extension: Tile file extension without the dot.
            create: Create the root directory if it does not exist.
        """
        self.root = Path(root)
        self.extension = extension.lstrip('.')
        if create:
            try:
                self.root.mkdir(parents=True, exist_ok=True)
            except OSError:
                logger.exception('Failed to create tile cache root %s', self.root)
        logger.info('TileStore initialized at %s', self.root)

    def path_for(self, key: TileKey) -> Path:
        """Get file path for a tile."""
        return self.root / str(key.z) / str(key.x) / f'{key.y}.{self.extension}'

    def exists(self, key: TileKey) -> bool:
        return self.path_for(key).is_file()

    def save(self, key: TileKey, data: bytes) -> Path:
        """Write tile bytes, creating intermediate directories.

        Raises:
            TileStoreError: directory creation failed, the file could not be
                opened, or fewer bytes than ``len(data)`` were written.
        """
        return self.write_path(self.path_for(key), data)

    def load(self, key: TileKey) -> bytes:
        """Read tile bytes.

        Raises:
            TileStoreError: the file is missing, unreadable or empty.
        """
        return self.read_path(self.path_for(key))

    @staticmethod
    def write_path(path: Path, data: bytes) -> Path:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            msg = f'Failed to create directory {path.parent}: {e}'
            raise TileStoreError(msg) from e
        # Пишем во временный файл рядом и переименовываем: читатель видит
        # либо прежнее состояние, либо файл целиком
        tmp_path = path.with_name(f'.{path.name}.{uuid.uuid4().hex}.tmp')
        try:
            with tmp_path.open('wb') as fh:
                written = fh.write(data)
            if written != len(data):
                msg = f'Incomplete write to {path}: {written} of {len(data)} bytes'
                raise TileStoreError(msg)
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            msg = f'Failed to write tile file {path}: {e}'
            raise TileStoreError(msg) from e
        except TileStoreError:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug('Saved tile file %s (%d bytes)', path, written)
        return path

    @staticmethod
    def read_path(path: Path) -> bytes:
        if not path.is_file():
            msg = f'Tile file does not exist: {path}'
            raise TileStoreError(msg)
        try:
            data = path.read_bytes()
        except OSError as e:
            msg = f'Failed to open tile file {path}: {e}'
            raise TileStoreError(msg) from e
        if not data:
            msg = f'Tile file is empty: {path}'
            raise TileStoreError(msg)
        return data

    def zoom_levels(self) -> list[int]:
        """Numeric zoom directories present under the root, ascending."""
        if not self.root.is_dir():
            return []
        zooms = []
        for entry in self.root.iterdir():
            if entry.is_dir() and entry.name.isdigit():
                zooms.append(int(entry.name))
        return sorted(zooms)

    def _iter_tile_files(self, zoom: int):
        zoom_dir = self.root / str(zoom)
        if not zoom_dir.is_dir():
            return
        for x_dir in zoom_dir.iterdir():
            if not (x_dir.is_dir() and x_dir.name.isdigit()):
                continue
            yield from x_dir.glob(f'*.{self.extension}')

    def has_tiles(self, zoom: int) -> bool:
        return next(self._iter_tile_files(zoom), None) is not None

    def count_tiles(self, zoom: int) -> int:
        return sum(1 for _ in self._iter_tile_files(zoom))

    def available_zooms(self) -> list[int]:
        """Zoom levels holding at least one tile file, ascending."""
        return [z for z in self.zoom_levels() if self.has_tiles(z)]

    def max_available_zoom(self) -> int | None:
        zooms = self.available_zooms()
        return zooms[-1] if zooms else None

    def stats(self) -> CacheStats:
        """Get cache statistics across all zoom levels."""
        tiles_by_zoom: dict[int, int] = {}
        size_by_zoom: dict[int, int] = {}
        for zoom in self.zoom_levels():
            count = 0
            size = 0
            for tile_file in self._iter_tile_files(zoom):
                try:
                    size += tile_file.stat().st_size
                except OSError as e:
                    logger.debug('Failed to stat %s: %s', tile_file, e)
                    continue
                count += 1
            tiles_by_zoom[zoom] = count
            size_by_zoom[zoom] = size
        return CacheStats(
            total_tiles=sum(tiles_by_zoom.values()),
            total_size_bytes=sum(size_by_zoom.values()),
            tiles_by_zoom=tiles_by_zoom,
            size_by_zoom=size_by_zoom,
        )
