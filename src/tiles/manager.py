"""
Оркестратор тайлов.

Владеет окном просмотра, FIFO-очередью запросов, таблицей показанных тайлов
и счётчиками выгрузки региона. Все изменения состояния выполняются в одном
цикле asyncio: команды вызываются из потока цикла, а итоги загрузчика
приходят через единственную очередь и обрабатываются одной задачей.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from io import BytesIO
from typing import TYPE_CHECKING, Any, Protocol

from PIL import Image

from domain.models import (
    DisplayedTile,
    RegionDownloadState,
    TileEngineSettings,
    TileKey,
    TileOutcome,
    TileRequest,
    ViewportState,
)
from geo.tilemath import (
    clamp_tile_index,
    clamp_zoom,
    iter_tile_range,
    lat_lon_to_tile,
    tile_offset,
    tile_range_for_bbox,
    tile_range_size,
    visible_tile_range,
)
from shared.constants import (
    CLEANUP_MARGIN_TILES,
    COMPLETION_MAX_RECHECKS,
    COMPLETION_RECHECK_INTERVAL_S,
    DISPATCH_INTERVAL_S,
    OutcomeStatus,
    SessionPhase,
)
from shared.paths import resolve_cache_dir
from tiles.cache import TileStore, TileStoreError
from tiles.retry import RetryPolicy
from tiles.urls import TileUrlBuilder
from tiles.worker import TileWorker

if TYPE_CHECKING:
    from collections.abc import Callable

    from domain.models import CacheStats

logger = logging.getLogger(__name__)


class TileScene(Protocol):
    """Цель отображения: получает декодированные тайлы и их позиции."""

    def add_tile(self, key: TileKey, image: Image.Image, pos: tuple[int, int]) -> None: ...

    def move_tile(self, key: TileKey, pos: tuple[int, int]) -> None: ...

    def remove_tile(self, key: TileKey) -> None: ...


@dataclass
class TileEvents:
    """Необязательные обработчики исходящих событий оркестратора."""

    region_progress: Callable[[int, int, int], Any] | None = None
    download_finished: Callable[[], Any] | None = None
    local_tiles_found: Callable[[int, int], Any] | None = None
    no_local_tiles_found: Callable[[], Any] | None = None
    viewport_progress: Callable[[int, int], Any] | None = None
    region_failures: Callable[[int, int], Any] | None = None

    def emit(self, name: str, *args: Any) -> None:
        callback = getattr(self, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception('Event handler %s failed', name)


class TileManager:
    """
    Загрузка, кэширование и размещение тайлов.

    Usage:
        manager = TileManager(settings, events=TileEvents(download_finished=on_done))
        manager.download_region(18, 54, 73, 135, 1, 3)
        await manager.wait_idle()
        await manager.close()
    """

    def __init__(
        self,
        settings: TileEngineSettings | None = None,
        *,
        store: TileStore | None = None,
        worker: TileWorker | None = None,
        url_builder: TileUrlBuilder | None = None,
        events: TileEvents | None = None,
    ) -> None:
        self.settings = settings or TileEngineSettings()
        s = self.settings
        self.store = store or TileStore(resolve_cache_dir(s.cache_dir), s.tile_extension)
        self.url_builder = url_builder or TileUrlBuilder(s.tile_url_template, s.servers)
        self.worker = worker or TileWorker(
            self.store,
            retry_policy=RetryPolicy.from_settings(s),
            timeout=s.request_timeout_s,
            use_cache=s.use_http_cache,
            cache_dir=self.store.root,
        )
        self.events = events or TileEvents()
        self.viewport = ViewportState(
            center_lat=s.center_lat,
            center_lon=s.center_lon,
            zoom=clamp_zoom(s.zoom),
            tile_size_px=s.tile_size_px,
            viewport_tiles_x=s.viewport_tiles_x,
            viewport_tiles_y=s.viewport_tiles_y,
        )
        self.max_concurrent = s.max_concurrent

        self._scene: TileScene | None = None
        self._tiles: dict[TileKey, DisplayedTile] = {}
        # Запросы окна просмотра обслуживаются раньше запросов региона
        self._viewport_pending: deque[TileRequest] = deque()
        self._pending: deque[TileRequest] = deque()
        # Чтения окна просмотра с диска, идущие мимо очереди
        self._local_reads: set[TileRequest] = set()
        # Ключи окна просмотра, запрошенные и ещё не разрешённые
        self._requested: set[TileKey] = set()
        self._in_flight = 0
        self._generation = 0
        self._session: RegionDownloadState | None = None
        self._phase = SessionPhase.IDLE
        self._viewport_requested = 0
        self._viewport_loaded = 0

        self._loop: asyncio.AbstractEventLoop | None = None
        self._results: asyncio.Queue[TileOutcome] | None = None
        self._consumer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._dispatch_handle: asyncio.TimerHandle | None = None
        self._watchdog_handle: asyncio.TimerHandle | None = None
        self._retry_handles: dict[TileRequest, asyncio.TimerHandle] = {}
        self._dispatch_times: deque[float] = deque()
        self._closed = False

    # --- Состояние (только чтение)

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def pending_count(self) -> int:
        return len(self._viewport_pending) + len(self._pending)

    @property
    def region_state(self) -> RegionDownloadState | None:
        return self._session

    @property
    def displayed_tiles(self) -> dict[TileKey, DisplayedTile]:
        return dict(self._tiles)

    # --- Входящие команды

    def attach_scene(self, scene: TileScene | None) -> None:
        self._scene = scene
        if scene is not None:
            self._update_viewport()

    def set_tile_source(self, template: str, servers: list[str] | None = None) -> None:
        self.url_builder.set_template(template, servers)
        logger.info('Tile source set to %s', template)

    def set_center(self, lat: float, lon: float) -> None:
        self.viewport.center_lat = lat
        self.viewport.center_lon = lon
        self._update_viewport()

    def set_zoom(self, zoom: int) -> None:
        zoom = clamp_zoom(zoom)
        old_zoom = self.viewport.zoom
        self.viewport.zoom = zoom
        self._reset_region_session('zoom changed')
        self._drop_pending(lambda r: r.key.z != zoom)
        self._viewport_requested = 0
        self._viewport_loaded = 0
        logger.info('Zoom changed %d -> %d', old_zoom, zoom)
        self._update_viewport()

    def download_region(
        self,
        min_lat: float,
        max_lat: float,
        min_lon: float,
        max_lon: float,
        min_zoom: int,
        max_zoom: int,
    ) -> int:
        """
        Запускает выгрузку региона на диапазоне зумов.

        Уже сохранённые тайлы засчитываются сразу, недостающие ставятся в
        очередь. Если очередь пуста, сессия завершается немедленно.

        Returns:
            Общее число тайлов региона по всем зумам.

        """
        min_zoom, max_zoom = clamp_zoom(min_zoom), clamp_zoom(max_zoom)
        if min_zoom > max_zoom:
            min_zoom, max_zoom = max_zoom, min_zoom

        self._reset_region_session('new region download')
        session = RegionDownloadState(
            generation=self._generation,
            zooms=list(range(min_zoom, max_zoom + 1)),
        )
        self._session = session
        self._phase = SessionPhase.COMPUTING
        logger.info(
            'Region download: lat %.4f..%.4f lon %.4f..%.4f zoom %d..%d',
            min_lat,
            max_lat,
            min_lon,
            max_lon,
            min_zoom,
            max_zoom,
        )

        cached = 0
        for zoom in session.zooms:
            tile_range = tile_range_for_bbox(min_lat, max_lat, min_lon, max_lon, zoom)
            size = tile_range_size(tile_range)
            session.total_expected += size
            zoom_cached = 0
            for x, y in iter_tile_range(tile_range):
                key = TileKey(x=x, y=y, z=zoom)
                if self.store.exists(key):
                    zoom_cached += 1
                    continue
                self._enqueue(self._make_request(key, region=True))
            session.completed_count += zoom_cached
            cached += zoom_cached
            logger.info(
                'Zoom %d: range %s, %d tiles, %d cached', zoom, tile_range, size, zoom_cached
            )

        logger.info(
            'Region total %d tiles, %d cached, %d to download',
            session.total_expected,
            cached,
            session.queued,
        )
        if cached > 0:
            self.events.emit(
                'region_progress', session.completed_count, session.total_expected, min_zoom
            )
        if session.queued == 0:
            logger.info('All region tiles already cached')
            self._finish_session(session)
            return session.total_expected

        self._phase = SessionPhase.DISPATCHING
        self._arm_watchdog()
        self._schedule_dispatch()
        return session.total_expected

    def check_local_tiles(self) -> int | None:
        """
        Переключается на самый детальный зум из кэша и показывает окно с диска.

        Сеть не используется. Returns выбранный зум или None.
        """
        zooms = self.store.available_zooms()
        if not zooms:
            logger.info('No local tiles found in %s', self.store.root)
            self.events.emit('no_local_tiles_found')
            return None
        zoom = zooms[-1]
        self.viewport.zoom = zoom
        self._reset_region_session('switched to local tiles')
        self._drop_pending(lambda r: r.key.z != zoom)
        self._reposition_tiles()
        self._cleanup_tiles()

        count = 0
        for x, y in iter_tile_range(self._visible_range()):
            key = TileKey(x=x, y=y, z=zoom)
            if not self.store.exists(key):
                continue
            count += 1
            if self._scene is None or key in self._tiles:
                continue
            try:
                data = self.store.load(key)
            except TileStoreError as e:
                logger.warning('Failed to load local tile %s: %s', key, e)
                continue
            self._display_tile(key, data)
        logger.info('Local tiles found at zoom %d, %d in view', zoom, count)
        self.events.emit('local_tiles_found', zoom, count)
        return zoom

    def get_max_available_zoom(self) -> int:
        zoom = self.store.max_available_zoom()
        return zoom if zoom is not None else 0

    def local_tiles_info(self) -> CacheStats:
        stats = self.store.stats()
        for zoom, count in stats.tiles_by_zoom.items():
            logger.info(
                'Zoom %d: %d tiles, %.2f MB',
                zoom,
                count,
                stats.size_by_zoom.get(zoom, 0) / (1024 * 1024),
            )
        logger.info(
            'Total: %d tiles, %.2f MB',
            stats.total_tiles,
            stats.total_size_bytes / (1024 * 1024),
        )
        return stats

    async def wait_idle(self, poll_interval: float = DISPATCH_INTERVAL_S) -> None:
        """Ждёт завершения текущей сессии и опустошения очереди."""
        while not self._is_idle():
            await asyncio.sleep(poll_interval)

    async def close(self) -> None:
        self._closed = True
        self._cancel_dispatch()
        self._cancel_watchdog()
        for handle in self._retry_handles.values():
            handle.cancel()
        self._retry_handles.clear()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._consumer is not None:
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
            self._consumer = None
        await self.worker.close()
        logger.info('TileManager closed')

    # --- Окно просмотра

    def _center_tile(self) -> tuple[int, int]:
        vp = self.viewport
        x, y = lat_lon_to_tile(vp.center_lat, vp.center_lon, vp.zoom)
        return clamp_tile_index(x, vp.zoom), clamp_tile_index(y, vp.zoom)

    def _visible_range(self, margin: int = 0, *, clamp: bool = True) -> tuple[int, int, int, int]:
        vp = self.viewport
        cx, cy = self._center_tile()
        return visible_tile_range(
            cx,
            cy,
            vp.viewport_tiles_x,
            vp.viewport_tiles_y,
            vp.zoom,
            margin=margin,
            clamp=clamp,
        )

    def _tile_pos(self, key: TileKey) -> tuple[int, int]:
        vp = self.viewport
        cx, cy = self._center_tile()
        return (
            tile_offset(key.x, cx, vp.viewport_tiles_x, vp.tile_size_px),
            tile_offset(key.y, cy, vp.viewport_tiles_y, vp.tile_size_px),
        )

    def _in_retained_window(self, key: TileKey) -> bool:
        if key.z != self.viewport.zoom:
            return False
        min_x, min_y, max_x, max_y = self._visible_range(CLEANUP_MARGIN_TILES, clamp=False)
        return min_x <= key.x <= max_x and min_y <= key.y <= max_y

    def _update_viewport(self) -> None:
        self._reposition_tiles()
        self._cleanup_tiles()
        self._load_visible_tiles()

    def _reposition_tiles(self) -> None:
        for key, tile in self._tiles.items():
            if key.z != self.viewport.zoom:
                continue
            pos = self._tile_pos(key)
            if pos != tile.pos:
                tile.pos = pos
                if self._scene is not None:
                    self._scene.move_tile(key, pos)

    def _cleanup_tiles(self) -> None:
        stale = [key for key in self._tiles if not self._in_retained_window(key)]
        for key in stale:
            del self._tiles[key]
            if self._scene is not None:
                self._scene.remove_tile(key)
        if stale:
            logger.debug('Evicted %d tiles, %d retained', len(stale), len(self._tiles))

    def _load_visible_tiles(self) -> None:
        # Без сцены недостающие тайлы всё равно скачиваются в кэш
        zoom = self.viewport.zoom
        requested = 0
        for x, y in iter_tile_range(self._visible_range(self.settings.prefetch_ring)):
            key = TileKey(x=x, y=y, z=zoom)
            if key in self._tiles or key in self._requested:
                continue
            cached = self.store.exists(key)
            if cached and self._scene is None:
                continue
            if not cached and not self.settings.browse_download:
                continue
            self._requested.add(key)
            request = self._make_request(key, region=False)
            if cached:
                self._start_local_read(request)
            else:
                self._enqueue(request)
            requested += 1
        if requested:
            self._viewport_requested += requested
            logger.debug('Viewport requested %d tiles at zoom %d', requested, zoom)
            self.events.emit('viewport_progress', self._viewport_loaded, self._viewport_requested)
            self._schedule_dispatch()

    def _display_tile(self, key: TileKey, data: bytes) -> None:
        if self._scene is None or key in self._tiles:
            return
        try:
            image = Image.open(BytesIO(data)).convert('RGB')
        except (OSError, ValueError) as e:
            logger.warning('Failed to decode tile %s: %s', key, e)
            return
        pos = self._tile_pos(key)
        self._tiles[key] = DisplayedTile(key=key, image=image, pos=pos)
        self._scene.add_tile(key, image, pos)

    # --- Очередь и диспетчер

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
            self._results = asyncio.Queue()
            self._consumer = self._loop.create_task(self._consume_results())
        return self._loop

    def _make_request(self, key: TileKey, *, region: bool) -> TileRequest:
        return TileRequest(
            key=key,
            url=self.url_builder.build(key),
            dest_path=self.store.path_for(key),
            generation=self._generation,
            region=region,
        )

    def _is_current(self, request: TileRequest) -> bool:
        session = self._session
        return (
            request.region
            and session is not None
            and request.generation == session.generation
        )

    def _enqueue(self, request: TileRequest) -> None:
        if not request.region:
            self._viewport_pending.append(request)
            return
        self._pending.append(request)
        if self._is_current(request):
            self._session.queued += 1

    def _drop_pending(self, predicate: Callable[[TileRequest], bool]) -> int:
        dropped = 0
        for attr in ('_viewport_pending', '_pending'):
            kept: deque[TileRequest] = deque()
            for request in getattr(self, attr):
                if not predicate(request):
                    kept.append(request)
                    continue
                dropped += 1
                if not request.region:
                    self._requested.discard(request.key)
                elif self._is_current(request):
                    self._session.queued = max(0, self._session.queued - 1)
            setattr(self, attr, kept)
        if dropped:
            logger.debug('Dropped %d pending requests', dropped)
        return dropped

    def _schedule_dispatch(self, delay: float = 0.0) -> None:
        if self._closed or self._dispatch_handle is not None:
            return
        self._dispatch_handle = self._get_loop().call_later(delay, self._dispatch)

    def _cancel_dispatch(self) -> None:
        if self._dispatch_handle is not None:
            self._dispatch_handle.cancel()
            self._dispatch_handle = None

    def _rate_limit_wait(self) -> float:
        limit = self.settings.rate_limit_per_sec
        if limit <= 0:
            return 0.0
        now = self._get_loop().time()
        while self._dispatch_times and now - self._dispatch_times[0] >= 1.0:
            self._dispatch_times.popleft()
        if len(self._dispatch_times) < limit:
            return 0.0
        return max(0.0, 1.0 - (now - self._dispatch_times[0]))

    def _dispatch(self) -> None:
        self._dispatch_handle = None
        if self._closed:
            return
        while self._has_pending():
            if self._in_flight >= self.max_concurrent:
                self._schedule_dispatch(DISPATCH_INTERVAL_S)
                break
            wait = self._rate_limit_wait()
            if wait > 0:
                self._schedule_dispatch(wait)
                break
            queue = self._viewport_pending or self._pending
            request = queue.popleft()
            if self._is_current(request):
                self._session.queued = max(0, self._session.queued - 1)
            self._start(request)
        self._update_phase()

    def _start(self, request: TileRequest) -> None:
        loop = self._get_loop()
        self._in_flight += 1
        if self._is_current(request):
            self._session.in_flight += 1
        if self.settings.rate_limit_per_sec > 0:
            self._dispatch_times.append(loop.time())
        task = loop.create_task(self._run(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, request: TileRequest) -> None:
        outcome = await self.worker.execute(request)
        await self._results.put(outcome)

    def _has_pending(self) -> bool:
        return bool(self._viewport_pending or self._pending)

    def _start_local_read(self, request: TileRequest) -> None:
        """Читает сохранённый тайл окна просмотра, не занимая слот загрузчика."""
        loop = self._get_loop()
        self._local_reads.add(request)
        task = loop.create_task(self._read_local(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _read_local(self, request: TileRequest) -> None:
        try:
            data = await asyncio.to_thread(TileStore.read_path, request.dest_path)
        except TileStoreError as e:
            outcome = TileOutcome(request, OutcomeStatus.FAILURE, reason=str(e), attempts=0)
        else:
            outcome = TileOutcome(
                request, OutcomeStatus.SUCCESS, data=data, attempts=0, from_cache=True
            )
        await self._results.put(outcome)

    async def _consume_results(self) -> None:
        while True:
            outcome = await self._results.get()
            try:
                self._on_tile_result(outcome)
            except Exception:
                logger.exception('Failed to handle result for tile %s', outcome.key)
            finally:
                self._results.task_done()

    # --- Обработка итогов

    def _on_tile_result(self, outcome: TileOutcome) -> None:
        request = outcome.request
        key = request.key
        if request in self._local_reads:
            self._on_local_read(outcome)
            return
        if self._in_flight <= 0:
            logger.warning('In-flight counter underflow on tile %s, clamped to 0', key)
            self._in_flight = 0
        else:
            self._in_flight -= 1

        current = self._is_current(request)
        session = self._session
        if current:
            if session.in_flight <= 0:
                logger.warning('Session in-flight counter underflow on tile %s', key)
                session.in_flight = 0
            else:
                session.in_flight -= 1

        if outcome.status is OutcomeStatus.RETRY:
            self._schedule_retry(outcome, current=current)
            self._schedule_dispatch()
            return

        if not request.region:
            self._requested.discard(key)
            if outcome.ok:
                self._viewport_loaded += 1
                self.events.emit(
                    'viewport_progress', self._viewport_loaded, self._viewport_requested
                )
        elif current:
            if outcome.ok:
                if session.completed_count >= session.total_expected:
                    logger.warning(
                        'Completed count would exceed total (%d), clamped',
                        session.total_expected,
                    )
                else:
                    session.completed_count += 1
            else:
                session.failed_count += 1
                logger.debug('Region tile %s failed: %s', key, outcome.reason)
            self.events.emit(
                'region_progress', session.completed_count, session.total_expected, key.z
            )
        else:
            logger.debug('Ignoring stale result for tile %s (generation %d)', key, request.generation)

        if outcome.ok and self._in_retained_window(key):
            self._display_tile(key, outcome.data)

        if current:
            self._check_completion()
        if self._has_pending():
            self._schedule_dispatch()
        self._update_phase()

    def _on_local_read(self, outcome: TileOutcome) -> None:
        request = outcome.request
        key = request.key
        self._local_reads.discard(request)
        if not outcome.ok:
            # Испорченный файл в кэше: загрузчик прочитает или скачает заново
            logger.warning('Local read of tile %s failed: %s', key, outcome.reason)
            if key.z == self.viewport.zoom and key in self._requested:
                self._enqueue(request)
                self._schedule_dispatch()
            else:
                self._requested.discard(key)
            return
        self._requested.discard(key)
        if key.z != self.viewport.zoom:
            return
        self._viewport_loaded += 1
        self.events.emit('viewport_progress', self._viewport_loaded, self._viewport_requested)
        if self._in_retained_window(key):
            self._display_tile(key, outcome.data)

    def _schedule_retry(self, outcome: TileOutcome, *, current: bool) -> None:
        request = outcome.request
        if request.region and not current:
            logger.debug('Dropping retry of stale tile %s', request.key)
            return
        if not request.region and request.key.z != self.viewport.zoom:
            self._requested.discard(request.key)
            return
        retry = request.next_attempt(self.url_builder.build(request.key))
        if current:
            self._session.scheduled_retries += 1
        delay = outcome.retry_after or 0.0
        logger.debug('Tile %s retry #%d in %.2fs', request.key, retry.attempt, delay)
        self._retry_handles[retry] = self._get_loop().call_later(
            delay, self._requeue_retry, retry
        )

    def _requeue_retry(self, request: TileRequest) -> None:
        self._retry_handles.pop(request, None)
        if request.region:
            if not self._is_current(request):
                logger.debug('Retry of stale tile %s discarded', request.key)
                return
            session = self._session
            session.scheduled_retries = max(0, session.scheduled_retries - 1)
        elif request.key.z != self.viewport.zoom:
            self._requested.discard(request.key)
            return
        self._enqueue(request)
        self._schedule_dispatch()

    # --- Сессия выгрузки региона

    def _reset_region_session(self, reason: str) -> None:
        self._generation += 1
        session = self._session
        if session is not None and not session.finished_emitted:
            logger.info(
                'Region download superseded (%s): %d/%d resolved',
                reason,
                session.resolved_count,
                session.total_expected,
            )
        self._drop_pending(lambda r: r.region)
        for request in [r for r in self._retry_handles if r.region]:
            self._retry_handles.pop(request).cancel()
        self._cancel_watchdog()
        self._session = None
        self._phase = SessionPhase.IDLE

    def _session_drained(self, session: RegionDownloadState) -> bool:
        return (
            session.all_resolved
            and session.in_flight == 0
            and session.queued == 0
            and session.scheduled_retries == 0
        )

    def _check_completion(self) -> None:
        session = self._session
        if session is None or session.finished_emitted:
            return
        if self._session_drained(session):
            self._finish_session(session)

    def _finish_session(self, session: RegionDownloadState) -> None:
        if session.finished_emitted:
            return
        session.finished_emitted = True
        self._phase = SessionPhase.FINISHED
        self._cancel_watchdog()
        logger.info(
            'Region download finished: %d completed, %d failed of %d',
            session.completed_count,
            session.failed_count,
            session.total_expected,
        )
        if session.failed_count > 0:
            self.events.emit('region_failures', session.failed_count, session.total_expected)
        self.events.emit('download_finished')

    def _arm_watchdog(self) -> None:
        if self._closed or self._watchdog_handle is not None:
            return
        self._watchdog_handle = self._get_loop().call_later(
            COMPLETION_RECHECK_INTERVAL_S, self._watchdog, self._generation
        )

    def _cancel_watchdog(self) -> None:
        if self._watchdog_handle is not None:
            self._watchdog_handle.cancel()
            self._watchdog_handle = None

    def _watchdog(self, generation: int) -> None:
        self._watchdog_handle = None
        session = self._session
        if session is None or session.finished_emitted or session.generation != generation:
            return
        if self._session_drained(session):
            self._finish_session(session)
            return
        if session.all_resolved and session.in_flight == 0:
            session.recheck_count += 1
            if session.recheck_count >= COMPLETION_MAX_RECHECKS:
                logger.warning(
                    'Forcing region completion: %d queued, %d retries left behind',
                    session.queued,
                    session.scheduled_retries,
                )
                self._drop_pending(lambda r: r.region)
                for request in [r for r in self._retry_handles if r.region]:
                    self._retry_handles.pop(request).cancel()
                session.queued = 0
                session.scheduled_retries = 0
                self._finish_session(session)
                return
        self._arm_watchdog()

    def _update_phase(self) -> None:
        session = self._session
        if session is None or session.finished_emitted:
            return
        if session.queued > 0:
            self._phase = SessionPhase.DISPATCHING
        elif session.all_resolved:
            self._phase = SessionPhase.DRAINING
        else:
            self._phase = SessionPhase.WAITING

    def _is_idle(self) -> bool:
        session = self._session
        return (
            (session is None or session.finished_emitted)
            and not self._has_pending()
            and self._in_flight == 0
            and not self._local_reads
            and not self._retry_handles
        )
