from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, field_validator, model_validator

from shared.constants import (
    DEFAULT_CENTER_LAT,
    DEFAULT_CENTER_LON,
    DEFAULT_REGION_MAX_ZOOM,
    DEFAULT_REGION_MIN_ZOOM,
    DEFAULT_TILE_EXTENSION,
    DEFAULT_TILE_SERVERS,
    DEFAULT_TILE_URL_TEMPLATE,
    DEFAULT_ZOOM,
    DOWNLOAD_CONCURRENCY,
    DOWNLOAD_RATE_LIMIT_PER_SEC,
    HTTP_BACKOFF_INITIAL_MS,
    HTTP_CACHE_ENABLED,
    HTTP_RETRIES_DEFAULT,
    HTTP_TIMEOUT_DEFAULT,
    MAX_ZOOM,
    MIN_ZOOM,
    PREFETCH_RING_MAX,
    TILE_SIZE,
    VIEWPORT_TILES_X,
    VIEWPORT_TILES_Y,
    OutcomeStatus,
)

if TYPE_CHECKING:
    from pathlib import Path


@dataclass(frozen=True)
class TileKey:
    """Address of one tile in the slippy map grid."""

    x: int
    y: int
    z: int

    def __str__(self) -> str:
        return f'{self.z}/{self.x}/{self.y}'


@dataclass(frozen=True)
class TileRequest:
    """One queued unit of work for the fetch worker."""

    key: TileKey
    url: str
    dest_path: Path
    generation: int = 0
    region: bool = False
    attempt: int = 0

    def next_attempt(self, url: str) -> TileRequest:
        return TileRequest(
            key=self.key,
            url=url,
            dest_path=self.dest_path,
            generation=self.generation,
            region=self.region,
            attempt=self.attempt + 1,
        )


@dataclass
class TileOutcome:
    """Result of one worker invocation.

    RETRY is the only non-terminal status: the request goes back to the
    queue after ``retry_after`` seconds.
    """

    request: TileRequest
    status: OutcomeStatus
    data: bytes = b''
    reason: str = ''
    attempts: int = 1
    from_cache: bool = False
    retry_after: float | None = None

    @property
    def key(self) -> TileKey:
        return self.request.key

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass
class DisplayedTile:
    """Decoded tile registered on the display target."""

    key: TileKey
    image: Any
    pos: tuple[int, int]


@dataclass
class ViewportState:
    center_lat: float = DEFAULT_CENTER_LAT
    center_lon: float = DEFAULT_CENTER_LON
    zoom: int = DEFAULT_ZOOM
    tile_size_px: int = TILE_SIZE
    viewport_tiles_x: int = VIEWPORT_TILES_X
    viewport_tiles_y: int = VIEWPORT_TILES_Y


@dataclass
class RegionDownloadState:
    """Bookkeeping of one region download session."""

    generation: int
    total_expected: int = 0
    completed_count: int = 0
    failed_count: int = 0
    queued: int = 0
    in_flight: int = 0
    scheduled_retries: int = 0
    finished_emitted: bool = False
    recheck_count: int = 0
    zooms: list[int] = field(default_factory=list)

    @property
    def resolved_count(self) -> int:
        return self.completed_count + self.failed_count

    @property
    def all_resolved(self) -> bool:
        return self.resolved_count >= self.total_expected


@dataclass
class CacheStats:
    """Statistics about the on-disk tile cache."""

    total_tiles: int
    total_size_bytes: int
    tiles_by_zoom: dict[int, int]
    size_by_zoom: dict[int, int]


class TileEngineSettings(BaseModel):
    """Settings of the tile engine, persisted as TOML."""

    model_config = {
        'extra': 'ignore',  # игнорировать лишние поля из старых файлов
    }

    # Источник тайлов
    tile_url_template: str = DEFAULT_TILE_URL_TEMPLATE
    servers: list[str] = list(DEFAULT_TILE_SERVERS)
    # Корень дискового кэша; None означает каталог пользователя по умолчанию
    cache_dir: str | None = None
    tile_extension: str = DEFAULT_TILE_EXTENSION

    # Диапазон зумов выгрузки региона
    min_zoom: int = DEFAULT_REGION_MIN_ZOOM
    max_zoom: int = DEFAULT_REGION_MAX_ZOOM

    # Диспетчер
    max_concurrent: int = DOWNLOAD_CONCURRENCY
    rate_limit_per_sec: int = DOWNLOAD_RATE_LIMIT_PER_SEC

    # Повторы
    retry_max: int = HTTP_RETRIES_DEFAULT
    backoff_initial_ms: int = HTTP_BACKOFF_INITIAL_MS
    request_timeout_s: float = HTTP_TIMEOUT_DEFAULT
    use_http_cache: bool = HTTP_CACHE_ENABLED

    # Просмотр
    prefetch_ring: int = 0
    browse_download: bool = True
    tile_size_px: int = TILE_SIZE
    viewport_tiles_x: int = VIEWPORT_TILES_X
    viewport_tiles_y: int = VIEWPORT_TILES_Y
    center_lat: float = DEFAULT_CENTER_LAT
    center_lon: float = DEFAULT_CENTER_LON
    zoom: int = DEFAULT_ZOOM

    @field_validator('servers')
    @classmethod
    def validate_servers(cls, v):
        if not v:
            msg = 'servers must contain at least one mirror label'
            raise ValueError(msg)
        return v

    @field_validator('tile_url_template')
    @classmethod
    def validate_template(cls, v):
        for placeholder in ('{z}', '{x}', '{y}'):
            if placeholder not in v:
                msg = f'tile_url_template is missing {placeholder}'
                raise ValueError(msg)
        return v

    @field_validator('tile_extension')
    @classmethod
    def validate_extension(cls, v):
        v = str(v).lstrip('.')
        if not v:
            msg = 'tile_extension must not be empty'
            raise ValueError(msg)
        return v

    @field_validator('min_zoom', 'max_zoom', 'zoom')
    @classmethod
    def validate_zoom(cls, v):
        v = int(v)
        if not (MIN_ZOOM <= v <= MAX_ZOOM):
            msg = f'zoom must be in [{MIN_ZOOM}, {MAX_ZOOM}]'
            raise ValueError(msg)
        return v

    @field_validator('max_concurrent', 'retry_max', 'tile_size_px')
    @classmethod
    def validate_positive(cls, v):
        v = int(v)
        if v < 1:
            msg = 'value must be >= 1'
            raise ValueError(msg)
        return v

    @field_validator('viewport_tiles_x', 'viewport_tiles_y')
    @classmethod
    def validate_viewport(cls, v):
        v = int(v)
        if v < 1:
            msg = 'viewport must be at least one tile wide'
            raise ValueError(msg)
        return v

    @field_validator('rate_limit_per_sec', 'backoff_initial_ms')
    @classmethod
    def validate_non_negative(cls, v):
        v = int(v)
        if v < 0:
            msg = 'value must not be negative'
            raise ValueError(msg)
        return v

    @field_validator('request_timeout_s')
    @classmethod
    def validate_timeout(cls, v):
        v = float(v)
        if v <= 0:
            msg = 'request_timeout_s must be positive'
            raise ValueError(msg)
        return v

    @field_validator('prefetch_ring')
    @classmethod
    def validate_prefetch_ring(cls, v):
        v = int(v)
        if not (0 <= v <= PREFETCH_RING_MAX):
            msg = f'prefetch_ring must be in [0, {PREFETCH_RING_MAX}]'
            raise ValueError(msg)
        return v

    @model_validator(mode='after')
    def check_zoom_range(self):
        if self.min_zoom > self.max_zoom:
            msg = 'min_zoom must not exceed max_zoom'
            raise ValueError(msg)
        return self

    @property
    def backoff_initial_s(self) -> float:
        return self.backoff_initial_ms / 1000.0
