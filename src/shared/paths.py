"""Пользовательские каталоги приложения и portable режим."""

import os
import sys
from pathlib import Path

from shared.constants import APP_DIR_NAME, TILE_CACHE_SUBDIR


def is_portable_mode() -> bool:
    """
    Определяет, запущено ли приложение в portable режиме.

    Portable режим активируется, если имя исполняемого файла содержит '_portable'.
    """
    return '_portable' in Path(sys.argv[0]).name.lower()


def get_app_dir() -> Path:
    """Директория приложения (где находится исполняемый файл)."""
    return Path(sys.argv[0]).resolve().parent


def user_config_dir() -> Path:
    """Каталог настроек: APPDATA, затем XDG_CONFIG_HOME, затем ~/.config."""
    if is_portable_mode():
        return get_app_dir() / 'configs'
    base = os.getenv('APPDATA') or os.getenv('XDG_CONFIG_HOME')
    root = Path(base) if base else Path.home() / '.config'
    return root / APP_DIR_NAME


def user_data_dir() -> Path:
    """Каталог данных: LOCALAPPDATA, затем XDG_DATA_HOME, затем ~/.local/share."""
    if is_portable_mode():
        return get_app_dir()
    base = os.getenv('LOCALAPPDATA') or os.getenv('XDG_DATA_HOME')
    root = Path(base) if base else Path.home() / '.local' / 'share'
    return root / APP_DIR_NAME


def resolve_cache_dir(cache_dir: str | Path | None = None) -> Path:
    """
    Корень дискового кэша тайлов.

    Явно заданный путь используется как есть (относительный считается от текущего
    каталога), иначе берётся подкаталог в каталоге данных пользователя.
    """
    if cache_dir:
        return Path(cache_dir).expanduser().resolve()
    return (user_data_dir() / TILE_CACHE_SUBDIR).resolve()
