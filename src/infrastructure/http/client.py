from __future__ import annotations

import contextlib
import logging
import sqlite3
import ssl
from datetime import timedelta
from typing import TYPE_CHECKING

import aiohttp
import certifi
from aiohttp_client_cache import CachedSession, SQLiteBackend

from shared.constants import (
    HTTP_CACHE_EXPIRE_HOURS,
    HTTP_CACHE_FILENAME,
    HTTP_DEFAULT_HEADERS,
    HTTP_TIMEOUT_DEFAULT,
)

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def make_ssl_context() -> ssl.SSLContext:
    # SSL-контекст с сертификатами из certifi
    return ssl.create_default_context(cafile=certifi.where())


def make_http_session(
    cache_dir: Path | None = None,
    *,
    use_cache: bool = False,
    headers: dict[str, str] | None = None,
    timeout: float = HTTP_TIMEOUT_DEFAULT,
) -> aiohttp.ClientSession:
    """
    Create the shared HTTP session for tile downloads.

    With ``use_cache`` and a ``cache_dir`` the session is an
    ``aiohttp_client_cache.CachedSession`` over SQLite, which serves cached
    responses first until they expire.
    """
    connector = aiohttp.TCPConnector(ssl=make_ssl_context())
    session_headers = dict(HTTP_DEFAULT_HEADERS)
    if headers:
        session_headers.update(headers)
    client_timeout = aiohttp.ClientTimeout(total=timeout)

    if use_cache and cache_dir is not None:
        cache_dir.mkdir(parents=True, exist_ok=True)
        cache_path = cache_dir / HTTP_CACHE_FILENAME
        with contextlib.suppress(sqlite3.Error):
            if not cache_path.exists():
                with sqlite3.connect(cache_path) as _conn:
                    _conn.execute('PRAGMA journal_mode=WAL;')
        expire_td = timedelta(hours=max(0, int(HTTP_CACHE_EXPIRE_HOURS)))
        backend = SQLiteBackend(str(cache_path), expire_after=expire_td)
        logger.info('HTTP response cache enabled at %s', cache_path)
        return CachedSession(
            cache=backend,
            connector=connector,
            headers=session_headers,
            timeout=client_timeout,
        )
    return aiohttp.ClientSession(
        connector=connector,
        headers=session_headers,
        timeout=client_timeout,
    )
