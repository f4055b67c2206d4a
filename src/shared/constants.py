from enum import Enum

# --- Источник тайлов по умолчанию
# Шаблон URL тайлового сервера; {server} подставляется по кругу из TILE_SERVERS
DEFAULT_TILE_URL_TEMPLATE = 'https://{server}.tile.openstreetmap.org/{z}/{x}/{y}.png'
# Метки зеркал тайлового сервера (раздаются по кругу)
DEFAULT_TILE_SERVERS = ('a', 'b', 'c')
# Расширение файлов тайлов в дисковом кэше
DEFAULT_TILE_EXTENSION = 'png'

# --- Web Mercator / XYZ
# Минимальный и максимальный уровень приближения
MIN_ZOOM = 0
MAX_ZOOM = 19
# Базовый размер тайла Web Mercator (пикселей)
TILE_SIZE = 256
WORLD_LNG_SPAN_DEG = 360.0
WORLD_LNG_HALF_SPAN_DEG = 180.0
# Предел широты проекции Web Mercator (градусы)
MERCATOR_MAX_LAT_DEG = 85.05112878

# --- Окно просмотра
# Центр по умолчанию (Пекин) и стартовый зум
DEFAULT_CENTER_LAT = 39.9042
DEFAULT_CENTER_LON = 116.4074
DEFAULT_ZOOM = 10
# Размер окна просмотра в тайлах по каждой оси
VIEWPORT_TILES_X = 5
VIEWPORT_TILES_Y = 5
# Запас (в тайлах) вокруг окна, внутри которого тайлы не выгружаются
CLEANUP_MARGIN_TILES = 2
# Кольцо предзагрузки вокруг окна (0: только видимые тайлы)
PREFETCH_RING_MAX = 2

# --- Диапазон зумов для выгрузки региона по умолчанию
DEFAULT_REGION_MIN_ZOOM = 3
DEFAULT_REGION_MAX_ZOOM = 10

# --- Параметры диспетчера загрузки
# Максимальное число одновременных запросов
DOWNLOAD_CONCURRENCY = 8
# Ограничение запросов в секунду (0: без ограничения)
DOWNLOAD_RATE_LIMIT_PER_SEC = 0
# Интервал повторного опроса очереди при заполненных слотах (секунды)
DISPATCH_INTERVAL_S = 0.1
# Интервал контрольной проверки завершения сессии (секунды)
COMPLETION_RECHECK_INTERVAL_S = 0.5
# Число контрольных проверок до принудительного завершения сессии
COMPLETION_MAX_RECHECKS = 50

# --- Параметры сетевых запросов по умолчанию
HTTP_TIMEOUT_DEFAULT = 30.0
HTTP_RETRIES_DEFAULT = 3
# Начальная задержка экспоненциального отката (миллисекунды)
HTTP_BACKOFF_INITIAL_MS = 3000
HTTP_OK = 200
HTTP_NOT_FOUND = 404

# Заголовки «как у браузера»: часть тайловых серверов отклоняет голые клиенты
HTTP_DEFAULT_HEADERS = {
    'User-Agent': (
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
    ),
    'Accept': 'image/png,image/svg+xml,image/*;q=0.8,*/*;q=0.5',
    'Accept-Language': 'en-US,en;q=0.9',
    'Accept-Encoding': 'gzip, deflate',
    'Connection': 'keep-alive',
}

# --- HTTP-кэш (предпочтение кэшированных ответов)
HTTP_CACHE_ENABLED = False
HTTP_CACHE_FILENAME = 'http_cache.sqlite'
# Время жизни (TTL) в часах
HTTP_CACHE_EXPIRE_HOURS = 168

# --- Сигнатуры изображений (magic bytes)
PNG_SIGNATURE = b'\x89PNG'
JPEG_SIGNATURE = b'\xff\xd8\xff'
GIF_SIGNATURES = (b'GIF87a', b'GIF89a')
WEBP_RIFF = b'RIFF'
WEBP_TAG = b'WEBP'

# --- Каталоги пользователя
APP_DIR_NAME = 'TileCache'
TILE_CACHE_SUBDIR = 'tilemap'
SETTINGS_FILENAME = 'settings.toml'
LOG_FILENAME = 'tilecache.log'


class SessionPhase(str, Enum):
    """Фазы сессии выгрузки региона."""

    IDLE = 'IDLE'
    COMPUTING = 'COMPUTING'
    DISPATCHING = 'DISPATCHING'
    WAITING = 'WAITING'
    DRAINING = 'DRAINING'
    FINISHED = 'FINISHED'


class OutcomeStatus(str, Enum):
    """Итог одной попытки загрузки тайла."""

    SUCCESS = 'SUCCESS'
    NOT_FOUND = 'NOT_FOUND'
    FAILURE = 'FAILURE'
    RETRY = 'RETRY'

    @property
    def is_terminal(self) -> bool:
        return self is not OutcomeStatus.RETRY
