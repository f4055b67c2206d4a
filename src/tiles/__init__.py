"""Tile acquisition and caching engine.

This module provides:
- TileStore: file-per-tile disk cache under {root}/{z}/{x}/{y}.{ext}
- TileUrlBuilder: URL templating with round-robin mirrors
- RetryPolicy: exponential backoff for transient failures
- TileWorker: one request -> one outcome fetcher
- TileManager: viewport, dispatch queue and region download sessions
- TileEngineThread: hosts the manager's event loop on a background thread
"""

from tiles.cache import TileStore, TileStoreError
from tiles.manager import TileEvents, TileManager, TileScene
from tiles.retry import RetryPolicy
from tiles.service import TileEngineThread
from tiles.urls import TileUrlBuilder
from tiles.worker import TileWorker, looks_like_image

__all__ = [
    'RetryPolicy',
    'TileEngineThread',
    'TileEvents',
    'TileManager',
    'TileScene',
    'TileStore',
    'TileStoreError',
    'TileUrlBuilder',
    'TileWorker',
    'looks_like_image',
]
