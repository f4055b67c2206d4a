from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from shared.constants import DEFAULT_TILE_SERVERS, DEFAULT_TILE_URL_TEMPLATE

if TYPE_CHECKING:
    from collections.abc import Sequence

    from domain.models import TileKey

logger = logging.getLogger(__name__)


class TileUrlBuilder:
    """Fills a ``{server}/{z}/{x}/{y}`` template, cycling mirror labels.

    The mirror index advances on every URL that contains ``{server}``, so
    consecutive requests (and retries) land on different mirrors.
    """

    def __init__(
        self,
        template: str = DEFAULT_TILE_URL_TEMPLATE,
        servers: Sequence[str] = DEFAULT_TILE_SERVERS,
    ) -> None:
        self._lock = threading.Lock()
        self._index = 0
        self.template = template
        self.servers = tuple(servers) or DEFAULT_TILE_SERVERS

    def set_template(self, template: str, servers: Sequence[str] | None = None) -> None:
        with self._lock:
            self.template = template
            if servers:
                self.servers = tuple(servers)
            self._index = 0

    def _next_server(self) -> str:
        with self._lock:
            server = self.servers[self._index % len(self.servers)]
            self._index = (self._index + 1) % len(self.servers)
        return server

    def build(self, key: TileKey) -> str:
        url = (
            self.template.replace('{z}', str(key.z))
            .replace('{x}', str(key.x))
            .replace('{y}', str(key.y))
        )
        if '{server}' in url:
            url = url.replace('{server}', self._next_server())
        logger.debug('Generated tile URL: %s', url)
        return url
