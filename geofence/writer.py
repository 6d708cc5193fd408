"""A file writer that buffers output and flushes by size or after a timeout."""

from __future__ import annotations

import os
import threading
import time


class BufferedFileWriter:
    """Append-only file writer with a size threshold and a background flush.

    Data is held in memory until it reaches ``max_size`` bytes, until
    ``timeout`` seconds have passed since the last flush, or until the
    writer is flushed or closed explicitly.
    """

    def __init__(
        self, path: str | os.PathLike[str], max_size: int = 1024, timeout: float = 2.0
    ) -> None:
        fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_APPEND, 0o666)
        self._file = os.fdopen(fd, "ab")
        self.path = path
        self.max_size = max_size
        self.timeout = timeout
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._last_flush = time.monotonic()
        self._closed = False
        self._stop = threading.Event()
        self._timer = threading.Thread(target=self._flush_periodically, daemon=True)
        self._timer.start()

    def __enter__(self) -> BufferedFileWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes | str) -> int:
        """Buffer ``data`` and return its length, flushing if the buffer is full."""
        raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        with self._lock:
            if self._closed:
                raise ValueError("write to closed writer")
            self._buffer += raw
            if len(self._buffer) >= self.max_size:
                self._flush_locked()
        return len(data)

    def flush(self) -> None:
        """Write any buffered data to the file."""
        with self._lock:
            if not self._closed:
                self._flush_locked()

    def close(self) -> None:
        """Flush remaining data, stop the background flush and close the file."""
        with self._lock:
            if self._closed:
                return
            self._stop.set()
            try:
                self._flush_locked()
            finally:
                self._closed = True
                self._file.close()

    def _flush_periodically(self) -> None:
        while not self._stop.wait(self.timeout):
            with self._lock:
                if self._closed:
                    return
                elapsed = time.monotonic() - self._last_flush
                if elapsed >= self.timeout and self._buffer:
                    try:
                        self._flush_locked()
                    except OSError:
                        pass

    def _flush_locked(self) -> None:
        if not self._buffer:
            return
        self._file.write(self._buffer)
        self._file.flush()
        self._buffer.clear()
        self._last_flush = time.monotonic()