"""
Математика тайловой сетки Web Mercator (slippy map).

Прямое и обратное преобразование (lat, lon) <-> (x, y) тайла, ограничение
индексов диапазоном зума, охват bbox и окна просмотра, позиция тайла на сцене.
"""

from __future__ import annotations

import math

from shared.constants import (
    MAX_ZOOM,
    MERCATOR_MAX_LAT_DEG,
    MIN_ZOOM,
    WORLD_LNG_HALF_SPAN_DEG,
    WORLD_LNG_SPAN_DEG,
)


def clamp_zoom(zoom: int) -> int:
    """Ограничивает зум диапазоном [MIN_ZOOM, MAX_ZOOM]."""
    return max(MIN_ZOOM, min(MAX_ZOOM, int(zoom)))


def max_tile_index(zoom: int) -> int:
    """Максимальный индекс тайла на уровне zoom (2^zoom - 1)."""
    return (1 << zoom) - 1


def clamp_tile_index(value: int, zoom: int) -> int:
    """Ограничивает индекс тайла диапазоном [0, 2^zoom - 1]."""
    return max(0, min(max_tile_index(zoom), value))


def lat_lon_to_tile(lat: float, lon: float, zoom: int) -> tuple[int, int]:
    """
    Переводит WGS84 (lat, lon) в индексы тайла (x, y) на уровне zoom.

    Индексы не ограничиваются: за это отвечает вызывающий код. Широта
    прижимается к пределу проекции, у полюсов логарифм не определён.
    """
    lat = max(-MERCATOR_MAX_LAT_DEG, min(MERCATOR_MAX_LAT_DEG, lat))
    lat_rad = math.radians(lat)
    n = 1 << zoom
    x = math.floor((lon + WORLD_LNG_HALF_SPAN_DEG) / WORLD_LNG_SPAN_DEG * n)
    y = math.floor(
        (1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi)
        / 2.0
        * n
    )
    return x, y


def tile_to_lat_lon(x: float, y: float, zoom: int) -> tuple[float, float]:
    """Обратное преобразование: северо-западный угол тайла (x, y) -> (lat, lon)."""
    n = 1 << zoom
    lon = x / n * WORLD_LNG_SPAN_DEG - WORLD_LNG_HALF_SPAN_DEG
    lat_rad = math.atan(math.sinh(math.pi * (1.0 - 2.0 * y / n)))
    return math.degrees(lat_rad), lon


def tile_range_for_bbox(
    min_lat: float,
    max_lat: float,
    min_lon: float,
    max_lon: float,
    zoom: int,
) -> tuple[int, int, int, int]:
    """
    Охват географического прямоугольника тайлами.

    Рост широты уменьшает y, поэтому углы берутся как (max_lat, min_lon) и
    (min_lat, max_lon) и затем приводятся к порядку min/max.

    Returns:
        (min_x, min_y, max_x, max_y), ограниченные диапазоном зума.

    """
    x0, y0 = lat_lon_to_tile(max_lat, min_lon, zoom)
    x1, y1 = lat_lon_to_tile(min_lat, max_lon, zoom)
    min_x, max_x = min(x0, x1), max(x0, x1)
    min_y, max_y = min(y0, y1), max(y0, y1)
    return (
        clamp_tile_index(min_x, zoom),
        clamp_tile_index(min_y, zoom),
        clamp_tile_index(max_x, zoom),
        clamp_tile_index(max_y, zoom),
    )


def tile_range_size(tile_range: tuple[int, int, int, int]) -> int:
    """Число тайлов в охвате (min_x, min_y, max_x, max_y)."""
    min_x, min_y, max_x, max_y = tile_range
    return (max_x - min_x + 1) * (max_y - min_y + 1)


def visible_tile_range(
    center_x: int,
    center_y: int,
    viewport_tiles_x: int,
    viewport_tiles_y: int,
    zoom: int,
    *,
    margin: int = 0,
    clamp: bool = True,
) -> tuple[int, int, int, int]:
    """Окно тайлов вокруг центрального тайла, расширенное на margin."""
    half_x = viewport_tiles_x // 2 + margin
    half_y = viewport_tiles_y // 2 + margin
    start_x, end_x = center_x - half_x, center_x + half_x
    start_y, end_y = center_y - half_y, center_y + half_y
    if not clamp:
        return start_x, start_y, end_x, end_y
    return (
        clamp_tile_index(start_x, zoom),
        clamp_tile_index(start_y, zoom),
        clamp_tile_index(end_x, zoom),
        clamp_tile_index(end_y, zoom),
    )


def iter_tile_range(tile_range: tuple[int, int, int, int]):
    """Обход охвата по столбцам: x снаружи, y внутри."""
    min_x, min_y, max_x, max_y = tile_range
    for x in range(min_x, max_x + 1):
        for y in range(min_y, max_y + 1):
            yield x, y


def tile_offset(index: int, center_index: int, viewport_tiles: int, tile_size: int) -> int:
    """Смещение тайла на сцене относительно центрального тайла (пиксели)."""
    return (index - center_index + viewport_tiles // 2) * tile_size
