"""Tests for TileWorker."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from domain.models import TileKey, TileRequest
from shared.constants import OutcomeStatus
from tiles.cache import TileStore, TileStoreError
from tiles.retry import RetryPolicy
from tiles.worker import TileWorker, looks_like_image


def _response(status=200, body=b''):
    resp = MagicMock()
    resp.status = status
    resp.read = AsyncMock(return_value=body)
    resp.close = MagicMock()
    resp.release = MagicMock()
    return resp


def _session(*responses):
    session = MagicMock()
    session.get = AsyncMock(side_effect=list(responses))
    session.close = AsyncMock()
    return session


@pytest.fixture
def store(cache_root):
    return TileStore(cache_root)


def _request(store, attempt=0, key=None):
    key = key or TileKey(x=1, y=2, z=3)
    return TileRequest(
        key=key,
        url=f'https://a.tiles.test/{key.z}/{key.x}/{key.y}.png',
        dest_path=store.path_for(key),
        attempt=attempt,
    )


def _worker(store, session, max_attempts=3, backoff=1.0):
    return TileWorker(
        store,
        retry_policy=RetryPolicy(max_attempts=max_attempts, initial_backoff=backoff),
        session=session,
    )


class TestLooksLikeImage:
    def test_png(self, png_bytes):
        assert looks_like_image(png_bytes)

    def test_jpeg_gif_webp(self):
        assert looks_like_image(b'\xff\xd8\xff\xe0rest')
        assert looks_like_image(b'GIF89a....')
        assert looks_like_image(b'RIFF\x00\x00\x00\x00WEBPVP8 ')

    def test_rejects_other(self):
        assert not looks_like_image(b'')
        assert not looks_like_image(b'<html>error</html>')
        assert not looks_like_image(b'RIFF\x00\x00\x00\x00WAVE')


class TestTileWorkerSuccess:
    """Tests for successful downloads and disk hits."""

    @pytest.mark.asyncio
    async def test_download_and_persist(self, store, png_bytes):
        session = _session(_response(200, png_bytes))
        worker = _worker(store, session)
        request = _request(store)

        outcome = await worker.execute(request)

        assert outcome.status is OutcomeStatus.SUCCESS
        assert outcome.data == png_bytes
        assert outcome.attempts == 1
        assert not outcome.from_cache
        assert store.load(request.key) == png_bytes
        session.get.assert_awaited_once()
        assert session.get.call_args.args[0] == request.url
        assert isinstance(session.get.call_args.kwargs['timeout'], aiohttp.ClientTimeout)

    @pytest.mark.asyncio
    async def test_response_released(self, store, png_bytes):
        resp = _response(200, png_bytes)
        worker = _worker(store, _session(resp))
        await worker.execute(_request(store))
        resp.close.assert_called_once()
        resp.release.assert_called_once()

    @pytest.mark.asyncio
    async def test_existing_file_skips_network(self, store, png_bytes):
        request = _request(store)
        store.save(request.key, png_bytes)
        session = _session()
        worker = _worker(store, session)

        outcome = await worker.execute(request)

        assert outcome.ok
        assert outcome.from_cache
        assert outcome.data == png_bytes
        session.get.assert_not_called()
        assert worker.stats['disk_hits'] == 1

    @pytest.mark.asyncio
    async def test_empty_cached_file_is_refetched(self, store, png_bytes):
        request = _request(store)
        request.dest_path.parent.mkdir(parents=True)
        request.dest_path.write_bytes(b'')
        session = _session(_response(200, png_bytes))
        worker = _worker(store, session)

        outcome = await worker.execute(request)

        assert outcome.ok
        assert not outcome.from_cache
        assert store.load(request.key) == png_bytes


class TestTileWorkerFailures:
    """Tests for failure classification and retry decisions."""

    @pytest.mark.asyncio
    async def test_not_found_is_permanent(self, store):
        session = _session(_response(404))
        worker = _worker(store, session)

        outcome = await worker.execute(_request(store))

        assert outcome.status is OutcomeStatus.NOT_FOUND
        assert outcome.is_terminal
        assert outcome.reason == 'Tile not found (404)'
        assert session.get.await_count == 1
        assert not store.exists(outcome.key)

    @pytest.mark.asyncio
    async def test_server_error_asks_for_retry(self, store):
        worker = _worker(store, _session(_response(500)), backoff=2.0)

        outcome = await worker.execute(_request(store))

        assert outcome.status is OutcomeStatus.RETRY
        assert not outcome.is_terminal
        assert outcome.retry_after == pytest.approx(2.0)
        assert 'HTTP 500' in outcome.reason

    @pytest.mark.asyncio
    async def test_backoff_doubles_per_attempt(self, store):
        worker = _worker(store, _session(_response(503)), max_attempts=5, backoff=2.0)
        outcome = await worker.execute(_request(store, attempt=2))
        assert outcome.retry_after == pytest.approx(8.0)
        assert outcome.attempts == 3

    @pytest.mark.asyncio
    async def test_last_attempt_is_terminal_failure(self, store):
        worker = _worker(store, _session(_response(500)), max_attempts=3)

        outcome = await worker.execute(_request(store, attempt=2))

        assert outcome.status is OutcomeStatus.FAILURE
        assert outcome.reason == 'HTTP 500 after 3 attempts'
        assert outcome.retry_after is None

    @pytest.mark.asyncio
    async def test_forbidden_is_transient(self, store):
        outcome = await _worker(store, _session(_response(403))).execute(_request(store))
        assert outcome.status is OutcomeStatus.RETRY

    @pytest.mark.asyncio
    async def test_empty_body_is_transient(self, store):
        outcome = await _worker(store, _session(_response(200, b''))).execute(_request(store))
        assert outcome.status is OutcomeStatus.RETRY
        assert outcome.reason == 'Empty response'

    @pytest.mark.asyncio
    async def test_bad_signature_rejected(self, store):
        """HTTP 200 with a non-image payload is not a success."""
        session = _session(_response(200, b'<html>rate limited</html>'))
        outcome = await _worker(store, session, max_attempts=1).execute(_request(store))
        assert outcome.status is OutcomeStatus.FAILURE
        assert 'Invalid image data' in outcome.reason
        assert not store.exists(outcome.key)

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, store):
        session = MagicMock()
        session.get = AsyncMock(side_effect=aiohttp.ClientConnectionError('reset'))
        outcome = await _worker(store, session).execute(_request(store))
        assert outcome.status is OutcomeStatus.RETRY
        assert 'Network error' in outcome.reason

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, store):
        session = MagicMock()
        session.get = AsyncMock(side_effect=TimeoutError())
        outcome = await _worker(store, session).execute(_request(store))
        assert outcome.status is OutcomeStatus.RETRY

    @pytest.mark.asyncio
    async def test_persist_failure_is_terminal(self, store, png_bytes):
        """Data that cannot be written to disk is a failure, not retried."""
        worker = _worker(store, _session(_response(200, png_bytes)))
        with patch.object(
            TileStore, 'write_path', side_effect=TileStoreError('Incomplete write')
        ):
            outcome = await worker.execute(_request(store))
        assert outcome.status is OutcomeStatus.FAILURE
        assert outcome.is_terminal
        assert 'Incomplete write' in outcome.reason

    @pytest.mark.asyncio
    async def test_unexpected_error_never_raises(self, store):
        session = MagicMock()
        session.get = AsyncMock(side_effect=ValueError('boom'))
        outcome = await _worker(store, session).execute(_request(store))
        assert outcome.status is OutcomeStatus.FAILURE
        assert 'boom' in outcome.reason


class TestTileWorkerSession:
    @pytest.mark.asyncio
    async def test_injected_session_not_closed(self, store):
        session = _session()
        worker = _worker(store, session)
        await worker.close()
        session.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_lazy_session_created_and_closed(self, store):
        created = _session()
        with patch('tiles.worker.make_http_session', return_value=created) as factory:
            worker = TileWorker(store, timeout=5.0)
            assert worker._get_session() is created
            assert worker._get_session() is created
            await worker.close()
        factory.assert_called_once()
        assert factory.call_args.kwargs['timeout'] == 5.0
        created.close.assert_awaited_once()
