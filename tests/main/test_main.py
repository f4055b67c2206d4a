"""Tests for the command line entry point."""

import asyncio
import logging
from io import BytesIO

import pytest
from PIL import Image

from domain.models import TileEngineSettings, TileKey, TileOutcome
from main import (
    EXIT_BAD_INPUT,
    EXIT_FAILURES,
    EXIT_OK,
    build_parser,
    main,
    run_download,
    setup_logging,
)
from shared.constants import OutcomeStatus
from tiles.cache import TileStore
from tiles.manager import TileManager

REGION = (18.0, 54.0, 73.0, 135.0)


def _png() -> bytes:
    buf = BytesIO()
    Image.new('RGB', (4, 4)).save(buf, format='PNG')
    return buf.getvalue()


class _Worker:
    def __init__(self, fail=()):
        self.fail = set(fail)
        self.closed = False

    async def execute(self, request):
        await asyncio.sleep(0)
        if request.key in self.fail:
            return TileOutcome(request, OutcomeStatus.FAILURE, reason='HTTP 500 after 3 attempts')
        data = _png()
        TileStore.write_path(request.dest_path, data)
        return TileOutcome(request, OutcomeStatus.SUCCESS, data=data)

    async def close(self):
        self.closed = True


@pytest.fixture
def user_dirs(tmp_path, monkeypatch):
    monkeypatch.setattr('sys.argv', ['tilecache'])
    monkeypatch.setenv('APPDATA', str(tmp_path / 'appdata'))
    monkeypatch.setenv('LOCALAPPDATA', str(tmp_path / 'localappdata'))
    return tmp_path


class TestMain:
    def test_setup_logging(self, user_dirs):
        log_file = setup_logging()
        assert log_file == user_dirs / 'localappdata' / 'TileCache' / 'log' / 'tilecache.log'
        assert log_file.parent.is_dir()
        assert log_file.exists()

    def test_parser_download_args(self):
        args = build_parser().parse_args(
            ['download', '--bbox', '18', '54', '73', '135', '--zoom', '1', '3']
        )
        assert args.command == 'download'
        assert args.bbox == [18.0, 54.0, 73.0, 135.0]
        assert args.zoom == [1, 3]

    def test_parser_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_info_lists_zooms(self, user_dirs, capsys):
        store = TileStore(user_dirs / 'tiles')
        store.save(TileKey(0, 0, 2), _png())
        store.save(TileKey(1, 0, 2), _png())
        store.save(TileKey(3, 3, 4), _png())

        code = main(['info', '--cache-dir', str(store.root)])

        out = capsys.readouterr().out
        assert code == EXIT_OK
        assert 'z 2:        2 tiles' in out
        assert 'Total: 3 tiles' in out

    def test_info_empty_cache(self, user_dirs, capsys):
        code = main(['info', '--cache-dir', str(user_dirs / 'empty')])
        assert code == EXIT_OK
        assert 'No tiles cached' in capsys.readouterr().out

    def test_local_reports_highest_zoom(self, user_dirs, capsys):
        store = TileStore(user_dirs / 'tiles')
        store.save(TileKey(0, 0, 1), _png())
        store.save(TileKey(5, 5, 7), _png())
        assert main(['local', '--cache-dir', str(store.root)]) == EXIT_OK
        assert 'Highest local zoom: 7 (1 tiles)' in capsys.readouterr().out

    def test_local_without_tiles(self, user_dirs):
        assert main(['local', '--cache-dir', str(user_dirs / 'empty')]) == EXIT_FAILURES

    def test_missing_config_is_bad_input(self, user_dirs):
        code = main(
            [
                'download',
                '--bbox', '18', '54', '73', '135',
                '--config', str(user_dirs / 'absent.toml'),
            ]
        )
        assert code == EXIT_BAD_INPUT

    def test_invalid_override_is_bad_input(self, user_dirs):
        code = main(['download', '--bbox', '18', '54', '73', '135', '--concurrency', '0'])
        assert code == EXIT_BAD_INPUT


class TestRunDownload:
    def _manager(self, root, worker):
        settings = TileEngineSettings(min_zoom=1, max_zoom=3, cache_dir=str(root))
        return settings, TileManager(settings, store=TileStore(root), worker=worker)

    @pytest.mark.asyncio
    async def test_all_tiles_downloaded(self, cache_root, capsys):
        worker = _Worker()
        settings, manager = self._manager(cache_root, worker)

        code = await run_download(settings, REGION, manager=manager)

        assert code == EXIT_OK
        assert worker.closed
        assert manager.region_state.completed_count == 9
        assert TileStore(cache_root).count_tiles(3) == 6
        assert '9/9' in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_failures_give_nonzero_exit(self, cache_root):
        worker = _Worker(fail={TileKey(5, 2, 3)})
        settings, manager = self._manager(cache_root, worker)

        code = await run_download(settings, REGION, manager=manager)

        assert code == EXIT_FAILURES
        assert manager.region_state.failed_count == 1

    @pytest.mark.asyncio
    async def test_resource_status_logged_after_download(self, cache_root, caplog):
        settings, manager = self._manager(cache_root, _Worker())
        with caplog.at_level(logging.INFO):
            await run_download(settings, REGION, manager=manager)
        assert 'Memory usage (after region download)' in caplog.text
        assert 'Thread status (after region download)' in caplog.text
