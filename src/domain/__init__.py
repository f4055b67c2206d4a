"""Domain layer - tile engine models and settings."""
from domain.models import (
    CacheStats,
    DisplayedTile,
    RegionDownloadState,
    TileEngineSettings,
    TileKey,
    TileOutcome,
    TileRequest,
    ViewportState,
)

__all__ = [
    'CacheStats',
    'DisplayedTile',
    'RegionDownloadState',
    'TileEngineSettings',
    'TileKey',
    'TileOutcome',
    'TileRequest',
    'ViewportState',
]
