from __future__ import annotations

import os
import tempfile
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, Optional


DATE_STAMP = "%Y%m%d"


def iso_now_ms() -> str:
    """UTC ISO-8601 timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def local_today() -> date:
    """Today on the server's local clock (never the provider's date)."""
    return datetime.now().date()


def date_stamp(d: date) -> str:
    return d.strftime(DATE_STAMP)


def parse_date_stamp(s: str) -> Optional[date]:
    """'20240131' -> date(2024, 1, 31); None if it is not a date stamp."""
    if len(s) != 8 or not s.isdigit():
        return None
    try:
        return datetime.strptime(s, DATE_STAMP).date()
    except ValueError:
        return None


def atomic_write_bytes(path: Path, data: bytes, *, suffix: str = ".part") -> Path:
    """
    Write `data` next to `path` under a temporary name, then rename into place.
    Readers see either the old file or the complete new one.
    """
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=suffix)
    tmp_path = Path(tmp)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return path


class ReadWriteLock:
    """
    Many readers or one writer; waiting writers block new readers so the
    janitors are not starved by a steady stream of requests.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class _KeyedLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class KeyedLocks:
    """
    One mutex per key, created on demand and dropped when nobody holds or
    waits on it.

    Usage:
        locks = KeyedLocks()
        with locks.hold("wallpaper_800x600_cover_1a2b3c4d.webp", timeout=30):
            ...
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, _KeyedLock] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Iterator[bool]:
        """
        Yields True once the key's lock is held, False if `timeout` expired.
        """
        with self._guard:
            entry = self._locks.setdefault(key, _KeyedLock())
            entry.users += 1
        acquired = entry.lock.acquire(timeout=-1 if timeout is None else max(0.0, timeout))
        try:
            yield acquired
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    self._locks.pop(key, None)


def elapsed_ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1e3)
