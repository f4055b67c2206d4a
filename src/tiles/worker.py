"""
Загрузчик одного тайла.

Один запрос -> один итог. Уже сохранённый тайл читается с диска, иначе
тайл скачивается, проверяется и сохраняется. Исключения наружу не выходят:
любая ошибка превращается в TileOutcome.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import aiohttp

from domain.models import TileOutcome, TileRequest
from infrastructure.http.client import make_http_session
from shared.constants import (
    GIF_SIGNATURES,
    HTTP_NOT_FOUND,
    HTTP_OK,
    HTTP_TIMEOUT_DEFAULT,
    JPEG_SIGNATURE,
    PNG_SIGNATURE,
    WEBP_RIFF,
    WEBP_TAG,
    OutcomeStatus,
)
from tiles.cache import TileStore, TileStoreError
from tiles.retry import RetryPolicy

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

WEBP_TAG_OFFSET = 8


def looks_like_image(data: bytes) -> bool:
    """Проверка сигнатуры: PNG, JPEG, GIF или WEBP."""
    if not data:
        return False
    if data.startswith((PNG_SIGNATURE, JPEG_SIGNATURE, *GIF_SIGNATURES)):
        return True
    return (
        data.startswith(WEBP_RIFF)
        and data[WEBP_TAG_OFFSET : WEBP_TAG_OFFSET + len(WEBP_TAG)] == WEBP_TAG
    )


class TileWorker:
    """
    Выполняет запросы тайлов.

    Может вызываться конкурентно; ограничение параллелизма обеспечивает
    вызывающая сторона. Сессия aiohttp создаётся лениво и переиспользуется.
    """

    def __init__(
        self,
        store: TileStore,
        *,
        retry_policy: RetryPolicy | None = None,
        session: aiohttp.ClientSession | None = None,
        timeout: float = HTTP_TIMEOUT_DEFAULT,
        use_cache: bool = False,
        cache_dir: Path | None = None,
    ) -> None:
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._use_cache = use_cache
        self._cache_dir = cache_dir
        # Статистика
        self.stats = {
            'disk_hits': 0,
            'downloaded': 0,
            'not_found': 0,
            'retries': 0,
            'failures': 0,
        }

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = make_http_session(
                self._cache_dir,
                use_cache=self._use_cache,
                timeout=self.timeout,
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            try:
                await self._session.close()
            except Exception as e:
                logger.debug('Failed to close HTTP session: %s', e, exc_info=True)
        self._session = None

    async def execute(self, request: TileRequest) -> TileOutcome:
        """Выполнить одну попытку для запроса; никогда не бросает исключений."""
        try:
            return await self._execute(request)
        except Exception as e:
            logger.exception('Unexpected error while processing tile %s', request.key)
            self.stats['failures'] += 1
            return TileOutcome(
                request=request,
                status=OutcomeStatus.FAILURE,
                reason=f'Unexpected error: {e}',
                attempts=request.attempt + 1,
            )

    async def _execute(self, request: TileRequest) -> TileOutcome:
        dest = request.dest_path
        if dest.is_file():
            try:
                data = await asyncio.to_thread(TileStore.read_path, dest)
            except TileStoreError as e:
                # Повреждённый файл перезаписывается свежей загрузкой
                logger.warning('Cached tile %s unreadable, refetching: %s', request.key, e)
            else:
                self.stats['disk_hits'] += 1
                logger.debug('Tile %s loaded from disk', request.key)
                return TileOutcome(
                    request=request,
                    status=OutcomeStatus.SUCCESS,
                    data=data,
                    attempts=request.attempt,
                    from_cache=True,
                )

        attempts = request.attempt + 1
        try:
            status, data = await self._download(request.url)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            return self._transient(request, f'Network error: {e}')

        if status == HTTP_NOT_FOUND:
            self.stats['not_found'] += 1
            logger.debug('Tile %s not found (404)', request.key)
            return TileOutcome(
                request=request,
                status=OutcomeStatus.NOT_FOUND,
                reason='Tile not found (404)',
                attempts=attempts,
            )
        if status != HTTP_OK:
            return self._transient(request, f'HTTP {status}')
        if not data:
            return self._transient(request, 'Empty response')
        if not looks_like_image(data):
            return self._transient(request, 'Invalid image data')

        try:
            await asyncio.to_thread(TileStore.write_path, dest, data)
        except TileStoreError as e:
            self.stats['failures'] += 1
            logger.warning('Failed to persist tile %s: %s', request.key, e)
            return TileOutcome(
                request=request,
                status=OutcomeStatus.FAILURE,
                data=data,
                reason=str(e),
                attempts=attempts,
            )

        self.stats['downloaded'] += 1
        logger.debug('Tile %s downloaded (%d bytes)', request.key, len(data))
        return TileOutcome(
            request=request,
            status=OutcomeStatus.SUCCESS,
            data=data,
            attempts=attempts,
        )

    async def _download(self, url: str) -> tuple[int, bytes]:
        session = self._get_session()
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        resp = await session.get(url, timeout=timeout)
        try:
            sc = resp.status
            if sc != HTTP_OK:
                return sc, b''
            return sc, await resp.read()
        finally:
            # Освобождение ресурсов ответа для обоих типов (aiohttp и CachedResponse)
            try:
                close = getattr(resp, 'close', None)
                if callable(close):
                    close()
                release = getattr(resp, 'release', None)
                if callable(release):
                    result = release()
                    if asyncio.iscoroutine(result):
                        await result
            except Exception as e:
                logger.debug('Failed to cleanup HTTP response: %s', e, exc_info=True)

    def _transient(self, request: TileRequest, reason: str) -> TileOutcome:
        attempts = request.attempt + 1
        if self.retry_policy.should_retry(request.attempt):
            delay = self.retry_policy.delay_for(request.attempt)
            self.stats['retries'] += 1
            logger.debug(
                'Tile %s attempt %d failed (%s), retry in %.2fs',
                request.key,
                attempts,
                reason,
                delay,
            )
            return TileOutcome(
                request=request,
                status=OutcomeStatus.RETRY,
                reason=reason,
                attempts=attempts,
                retry_after=delay,
            )
        self.stats['failures'] += 1
        logger.warning('Tile %s failed: %s after %d attempts', request.key, reason, attempts)
        return TileOutcome(
            request=request,
            status=OutcomeStatus.FAILURE,
            reason=f'{reason} after {attempts} attempts',
            attempts=attempts,
        )
