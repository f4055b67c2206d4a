import logging
from pathlib import Path

import tomlkit

from domain.models import TileEngineSettings
from domain.toml_sections import flat_to_sectioned, sectioned_to_flat
from shared.constants import SETTINGS_FILENAME
from shared.paths import user_config_dir

logger = logging.getLogger(__name__)


def default_settings_path() -> Path:
    """Путь к файлу настроек в каталоге пользователя."""
    return user_config_dir() / SETTINGS_FILENAME


def load_settings(path: str | Path | None = None) -> TileEngineSettings:
    """
    Загрузка и валидация настроек TOML -> TileEngineSettings.

    Поддерживает как секционный формат ([source], [download], ...), так и
    плоский список ключей. Ошибки валидации pydantic пробрасываются.
    """
    path = Path(path) if path is not None else default_settings_path()
    if not path.exists():
        msg = f'Файл настроек не найден: {path}'
        raise FileNotFoundError(msg)
    text = path.read_text(encoding='utf-8')
    data = tomlkit.parse(text).unwrap()
    settings = TileEngineSettings.model_validate(sectioned_to_flat(data))
    logger.info('Settings loaded from %s', path)
    return settings


def load_settings_or_default(path: str | Path | None = None) -> TileEngineSettings:
    """Настройки из файла, а при его отсутствии значения по умолчанию."""
    try:
        return load_settings(path)
    except FileNotFoundError:
        logger.info('Settings file not found, using defaults')
        return TileEngineSettings()


def save_settings(settings: TileEngineSettings, path: str | Path | None = None) -> Path:
    """Сохранение настроек в TOML (без атомарности и бэкапов)."""
    path = Path(path) if path is not None else default_settings_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    text = tomlkit.dumps(flat_to_sectioned(settings.model_dump()))
    path.write_text(text, encoding='utf-8')
    logger.info('Settings saved to %s', path)
    return path
