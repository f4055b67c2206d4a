"""Qt integration for the tile engine."""

from gui.bridge import TileSignals

__all__ = [
    'TileSignals',
]
