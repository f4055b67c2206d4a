"""Tests for domain models."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from domain.models import (
    RegionDownloadState,
    TileEngineSettings,
    TileKey,
    TileOutcome,
    TileRequest,
)
from shared.constants import OutcomeStatus


class TestTileKey:
    def test_hashable_and_equal(self):
        assert TileKey(1, 2, 3) == TileKey(x=1, y=2, z=3)
        assert len({TileKey(1, 2, 3), TileKey(1, 2, 3)}) == 1

    def test_str(self):
        assert str(TileKey(x=5, y=7, z=4)) == '4/5/7'


class TestTileRequest:
    def test_next_attempt_keeps_identity(self):
        req = TileRequest(
            key=TileKey(1, 2, 3),
            url='https://a.test/3/1/2.png',
            dest_path=Path('3/1/2.png'),
            generation=4,
            region=True,
        )
        nxt = req.next_attempt('https://b.test/3/1/2.png')
        assert nxt.attempt == 1
        assert nxt.url == 'https://b.test/3/1/2.png'
        assert nxt.generation == 4
        assert nxt.region
        assert req.attempt == 0


class TestTileOutcome:
    def _req(self):
        return TileRequest(TileKey(0, 0, 0), 'u', Path('0/0/0.png'))

    def test_success(self):
        out = TileOutcome(self._req(), OutcomeStatus.SUCCESS, data=b'x')
        assert out.ok
        assert out.is_terminal
        assert out.key == TileKey(0, 0, 0)

    def test_retry_not_terminal(self):
        out = TileOutcome(self._req(), OutcomeStatus.RETRY, retry_after=1.0)
        assert not out.ok
        assert not out.is_terminal


class TestRegionDownloadState:
    def test_resolution(self):
        state = RegionDownloadState(generation=1, total_expected=3)
        assert not state.all_resolved
        state.completed_count = 2
        state.failed_count = 1
        assert state.resolved_count == 3
        assert state.all_resolved

    def test_empty_region_is_resolved(self):
        assert RegionDownloadState(generation=0).all_resolved


class TestTileEngineSettings:
    def test_defaults(self):
        s = TileEngineSettings()
        assert s.max_concurrent == 8
        assert s.servers == ['a', 'b', 'c']
        assert s.tile_extension == 'png'
        assert s.prefetch_ring == 0
        assert s.backoff_initial_s == pytest.approx(3.0)

    def test_extension_leading_dot_stripped(self):
        assert TileEngineSettings(tile_extension='.jpg').tile_extension == 'jpg'

    def test_extra_fields_ignored(self):
        s = TileEngineSettings.model_validate({'legacy_field': 1, 'zoom': 5})
        assert s.zoom == 5

    @pytest.mark.parametrize(
        'overrides',
        [
            {'servers': []},
            {'tile_url_template': 'https://tiles.test/{z}/{x}.png'},
            {'zoom': 25},
            {'max_concurrent': 0},
            {'rate_limit_per_sec': -1},
            {'request_timeout_s': 0},
            {'prefetch_ring': 3},
            {'viewport_tiles_x': 0},
            {'min_zoom': 8, 'max_zoom': 4},
        ],
    )
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValidationError):
            TileEngineSettings(**overrides)
