"""Command line entry point for the tile cache engine."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from domain.models import TileEngineSettings
from settings_store import load_settings, load_settings_or_default
from shared.constants import LOG_FILENAME
from shared.diagnostics import (
    log_comprehensive_diagnostics,
    log_memory_usage,
    log_thread_status,
)
from shared.paths import resolve_cache_dir, user_data_dir
from shared.progress import ConsoleProgress
from tiles.cache import TileStore
from tiles.manager import TileEvents, TileManager

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_BAD_INPUT = 2


def setup_logging(level: int = logging.INFO) -> Path:
    """Configure application logging to the user data dir.

    Returns:
        Path of the log file.
    """
    log_dir = user_data_dir() / 'log'
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILENAME

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(str(log_file), encoding='utf-8'),
        ],
    )
    return log_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='tilecache',
        description='Загрузка и кэширование тайлов карты',
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Подробный лог (DEBUG)')
    sub = parser.add_subparsers(dest='command', required=True)

    download = sub.add_parser('download', help='Выгрузить тайлы региона')
    download.add_argument(
        '--bbox',
        nargs=4,
        type=float,
        required=True,
        metavar=('MIN_LAT', 'MAX_LAT', 'MIN_LON', 'MAX_LON'),
        help='Географический прямоугольник региона',
    )
    download.add_argument(
        '--zoom',
        nargs=2,
        type=int,
        metavar=('MIN', 'MAX'),
        help='Диапазон зумов (по умолчанию из настроек)',
    )
    download.add_argument('--config', type=Path, help='Файл настроек TOML')
    download.add_argument('--cache-dir', type=Path, help='Корень дискового кэша')
    download.add_argument('--concurrency', type=int, help='Число одновременных запросов')

    info = sub.add_parser('info', help='Статистика дискового кэша по зумам')
    info.add_argument('--config', type=Path, help='Файл настроек TOML')
    info.add_argument('--cache-dir', type=Path, help='Корень дискового кэша')

    local = sub.add_parser('local', help='Самый детальный зум в кэше')
    local.add_argument('--config', type=Path, help='Файл настроек TOML')
    local.add_argument('--cache-dir', type=Path, help='Корень дискового кэша')
    return parser


def _resolve_settings(args: argparse.Namespace) -> TileEngineSettings:
    if args.config is not None:
        settings = load_settings(args.config)
    else:
        settings = load_settings_or_default()
    overrides: dict = {}
    if args.cache_dir is not None:
        overrides['cache_dir'] = str(args.cache_dir)
    if getattr(args, 'concurrency', None) is not None:
        overrides['max_concurrent'] = args.concurrency
    if getattr(args, 'zoom', None) is not None:
        overrides['min_zoom'], overrides['max_zoom'] = args.zoom
    if overrides:
        settings = TileEngineSettings.model_validate(
            {**settings.model_dump(), **overrides}
        )
    return settings


async def run_download(
    settings: TileEngineSettings,
    bbox: tuple[float, float, float, float],
    *,
    manager: TileManager | None = None,
) -> int:
    """Выгрузка региона без GUI; код возврата зависит от числа ошибок."""
    failures = {'failed': 0}
    progress: ConsoleProgress | None = None

    def on_progress(current: int, total: int, zoom: int) -> None:
        nonlocal progress
        if progress is None:
            progress = ConsoleProgress(total)
        progress.update(current, total, zoom)

    def on_failures(failed: int, total: int) -> None:
        failures['failed'] = failed
        logger.warning('%d of %d tiles could not be downloaded', failed, total)

    events = TileEvents(region_progress=on_progress, region_failures=on_failures)
    if manager is None:
        manager = TileManager(settings, events=events)
    else:
        manager.events = events
    min_lat, max_lat, min_lon, max_lon = bbox
    try:
        total = manager.download_region(
            min_lat, max_lat, min_lon, max_lon, settings.min_zoom, settings.max_zoom
        )
        logger.info('Region download started: %d tiles', total)
        await manager.wait_idle()
    finally:
        if progress is not None:
            progress.close()
        await manager.close()
    log_memory_usage('after region download')
    log_thread_status('after region download')
    return EXIT_FAILURES if failures['failed'] else EXIT_OK


def cmd_download(args: argparse.Namespace) -> int:
    settings = _resolve_settings(args)
    log_comprehensive_diagnostics('DOWNLOAD_START', cache_dir=resolve_cache_dir(settings.cache_dir))
    return asyncio.run(run_download(settings, tuple(args.bbox)))


def cmd_info(args: argparse.Namespace) -> int:
    settings = _resolve_settings(args)
    store = TileStore(resolve_cache_dir(settings.cache_dir), settings.tile_extension, create=False)
    stats = store.stats()
    print(f'Cache: {store.root}')
    if not stats.tiles_by_zoom:
        print('No tiles cached')
        return EXIT_OK
    for zoom in sorted(stats.tiles_by_zoom):
        size_mb = stats.size_by_zoom.get(zoom, 0) / (1024 * 1024)
        print(f'  z{zoom:>2}: {stats.tiles_by_zoom[zoom]:>8} tiles  {size_mb:10.2f} MB')
    total_mb = stats.total_size_bytes / (1024 * 1024)
    print(f'Total: {stats.total_tiles} tiles, {total_mb:.2f} MB')
    return EXIT_OK


def cmd_local(args: argparse.Namespace) -> int:
    settings = _resolve_settings(args)
    store = TileStore(resolve_cache_dir(settings.cache_dir), settings.tile_extension, create=False)
    zoom = store.max_available_zoom()
    if zoom is None:
        print('No local tiles found')
        return EXIT_FAILURES
    print(f'Highest local zoom: {zoom} ({store.count_tiles(zoom)} tiles)')
    return EXIT_OK


COMMANDS = {
    'download': cmd_download,
    'info': cmd_info,
    'local': cmd_local,
}


def main(argv: list[str] | None = None) -> int:
    """Main application entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    logger.info('Starting tilecache %s', args.command)
    try:
        return COMMANDS[args.command](args)
    except (ValidationError, FileNotFoundError) as e:
        logger.error('Invalid input: %s', e)
        return EXIT_BAD_INPUT
    except KeyboardInterrupt:
        logger.warning('Interrupted by user')
        return EXIT_FAILURES


if __name__ == '__main__':
    sys.exit(main())
