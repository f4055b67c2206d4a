"""
Снимки ресурсов процесса для лога.

Пишутся вокруг длинных выгрузок региона: рост RSS, число потоков и открытых
файлов помогает заметить утечки сессий и задач загрузчика.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

import psutil

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


def _mb(value: float) -> float:
    return round(value / _MB, 2)


def get_memory_info() -> dict[str, Any]:
    """RSS/VMS процесса и свободная память системы, МБ."""
    try:
        mem = psutil.Process().memory_info()
        system = psutil.virtual_memory()
    except psutil.Error as e:
        return {'error': f'Failed to get memory info: {e}'}
    return {
        'process_rss_mb': _mb(mem.rss),
        'process_vms_mb': _mb(mem.vms),
        'system_available_mb': _mb(system.available),
        'system_used_percent': system.percent,
    }


def get_thread_info() -> dict[str, Any]:
    """Python-потоки по именам (в т.ч. tile-engine) и число системных потоков."""
    names = [t.name for t in threading.enumerate()]
    info: dict[str, Any] = {'active_count': len(names), 'thread_names': names}
    try:
        info['system_threads'] = psutil.Process().num_threads()
    except psutil.Error as e:
        logger.debug('num_threads unavailable: %s', e)
    return info


def get_file_descriptor_info() -> dict[str, Any]:
    try:
        process = psutil.Process()
        return {
            'open_files': len(process.open_files()),
            'network_connections': len(process.net_connections()),
            'pid': process.pid,
        }
    except psutil.Error as e:
        return {'error': f'Failed to get file descriptor info: {e}'}


def get_tile_dir_info(cache_dir: str | Path | None) -> dict[str, Any]:
    """Число каталогов зумов в корне кэша тайлов."""
    if cache_dir is None:
        return {'zoom_dirs': 0}
    root = Path(cache_dir)
    zoom_dirs = 0
    if root.is_dir():
        zoom_dirs = sum(1 for p in root.iterdir() if p.is_dir() and p.name.isdigit())
    return {'cache_dir': str(root), 'zoom_dirs': zoom_dirs}


def log_comprehensive_diagnostics(
    operation: str = 'general',
    level: int = logging.INFO,
    cache_dir: str | Path | None = None,
) -> None:
    """Блок диагностики: память, потоки, дескрипторы и кэш тайлов."""
    title = operation.upper()
    mem = get_memory_info()
    threads = get_thread_info()
    fds = get_file_descriptor_info()
    tiles = get_tile_dir_info(cache_dir)

    logger.log(level, '=== DIAGNOSTIC INFO: %s ===', title)
    if 'error' in mem:
        logger.log(level, 'Memory - %s', mem['error'])
    else:
        logger.log(
            level,
            'Memory - RSS: %sMB, VMS: %sMB, available: %sMB (%s%% used)',
            mem['process_rss_mb'],
            mem['process_vms_mb'],
            mem['system_available_mb'],
            mem['system_used_percent'],
        )
    logger.log(
        level,
        'Threads - %d active (%s), system: %s',
        threads['active_count'],
        ', '.join(threads['thread_names']),
        threads.get('system_threads', 'N/A'),
    )
    logger.log(
        level,
        'Resources - open files: %s, connections: %s',
        fds.get('open_files', 'N/A'),
        fds.get('network_connections', 'N/A'),
    )
    logger.log(level, 'Tile cache - Zoom dirs: %s', tiles['zoom_dirs'])
    logger.log(level, '=== END DIAGNOSTIC INFO: %s ===', title)


def log_memory_usage(context: str = '') -> None:
    mem = get_memory_info()
    suffix = f' ({context})' if context else ''
    logger.info(
        'Memory usage%s: RSS=%sMB, available=%sMB',
        suffix,
        mem.get('process_rss_mb', 'N/A'),
        mem.get('system_available_mb', 'N/A'),
    )


def log_thread_status(context: str = '') -> None:
    threads = get_thread_info()
    suffix = f' ({context})' if context else ''
    logger.info(
        'Thread status%s: %d active, system=%s',
        suffix,
        threads['active_count'],
        threads.get('system_threads', 'N/A'),
    )
