import sys
import threading
import time


class SingleLineRenderer:
    """Потокобезопасный рендерер для вывода в одну строку."""

    def __init__(self, *, single_line: bool = True, stream=None) -> None:
        self.single_line = single_line
        self._stream = stream
        self._last_len = 0
        self._lock = threading.Lock()

    @property
    def stream(self):
        return self._stream if self._stream is not None else sys.stdout

    def clear_line(self) -> None:
        """Полностью очистить текущую строку прогресса."""
        with self._lock:
            if self.single_line and self._last_len > 0:
                self.stream.write('\r' + ' ' * self._last_len + '\r')
                self.stream.flush()
                self._last_len = 0

    def write_line(self, msg: str) -> None:
        """Перерисовать текущую строку прогресса."""
        with self._lock:
            if self.single_line:
                pad = max(0, self._last_len - len(msg))
                self.stream.write('\r' + msg + (' ' * pad))
            else:
                self.stream.write(msg + '\n')
            self.stream.flush()
            self._last_len = len(msg)

    def finish_line(self) -> None:
        """Завершить строку прогресса переводом строки."""
        with self._lock:
            if self.single_line and self._last_len > 0:
                self.stream.write('\n')
                self.stream.flush()
            self._last_len = 0


# Экземпляр по умолчанию (можно передать свой при создании классов)
DEFAULT_WRITER = SingleLineRenderer()


class ConsoleProgress:
    """Прогресс-бар выгрузки региона для консоли."""

    def __init__(
        self,
        total: int,
        label: str = 'Tiles',
        writer: SingleLineRenderer | None = None,
    ) -> None:
        self.total = max(1, int(total))
        self.done = 0
        self.zoom: int | None = None
        self.start = time.monotonic()
        self.label = label
        self._writer = writer or DEFAULT_WRITER
        self._writer.clear_line()
        self._render()  # показать 0%

    @staticmethod
    def _format_eta(remaining: float) -> str:
        if remaining == float('inf'):
            return '--:--'
        m, s = divmod(int(remaining), 60)
        h, m = divmod(m, 60)
        if h > 0:
            return f'{h:02d}:{m:02d}:{s:02d}'
        return f'{m:02d}:{s:02d}'

    def _render(self) -> None:
        elapsed = max(1e-6, time.monotonic() - self.start)
        rps = self.done / elapsed
        remaining = (self.total - self.done) / rps if rps > 0 else float('inf')
        bar_len = 30
        filled = int(bar_len * self.done / self.total)
        bar = '█' * filled + '░' * (bar_len - filled)
        zoom_label = f' z{self.zoom}' if self.zoom is not None else ''
        msg = (
            f'{self.label}{zoom_label}: [{bar}] {self.done}/{self.total} | '
            f'{rps:4.1f}/s | ETA {self._format_eta(remaining)}'
        )
        self._writer.write_line(msg)

    def update(self, done: int, total: int, zoom: int | None = None) -> None:
        """Выставить абсолютное значение прогресса (done из total)."""
        self.total = max(1, int(total))
        self.done = min(self.total, max(0, int(done)))
        self.zoom = zoom
        self._render()

    def step_sync(self, n: int = 1) -> None:
        self.done = min(self.total, self.done + n)
        self._render()

    def close(self) -> None:
        self._writer.finish_line()
