"""Geo module - slippy map tile math."""

from .tilemath import (
    clamp_tile_index,
    clamp_zoom,
    lat_lon_to_tile,
    tile_offset,
    tile_range_for_bbox,
    tile_to_lat_lon,
    visible_tile_range,
)

__all__ = [
    'clamp_tile_index',
    'clamp_zoom',
    'lat_lon_to_tile',
    'tile_offset',
    'tile_range_for_bbox',
    'tile_to_lat_lon',
    'visible_tile_range',
]
