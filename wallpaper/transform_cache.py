from __future__ import annotations

import threading
import time
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from common.errors import ResolveTimeout, ValidationError
from common.logging_setup import get_logger
from common.types import CacheEntry, SourceImage, TransformRequest
from common.utils import KeyedLocks, ReadWriteLock, atomic_write_bytes, elapsed_ms
from wallpaper.cache_key import CacheKeyCodec
from wallpaper.engine import TransformEngine


log = get_logger("wallpaper.cache")


class SourceProvider(Protocol):
    """What the cache needs from the source side (SourceStore implements it)."""

    def get_current_path(self) -> Path: ...

    def read_current(self) -> Tuple[SourceImage, bytes]: ...


class TransformCache:
    """
    Content-addressed derivative cache.

        processed/
          ├─ .gitkeep
          └─ wallpaper_{W}x{H}_{fit}_{hash8}.{ext}

    Hits are answered from disk without touching the source or the engine.
    Misses are single-flight per key: concurrent callers for the same key
    wait for the first one and then see its file. Results are written to a
    temp file and renamed, so a visible entry is always complete.

    `dir_lock` is shared with the CacheJanitor: resolves take it shared,
    purges take it exclusively and call `invalidate()` while holding it.
    """

    def __init__(
        self,
        root: str | Path,
        source: SourceProvider,
        engine: TransformEngine,
        *,
        placeholder: str = ".gitkeep",
        max_workers: int = 2,
        default_timeout: Optional[float] = None,
    ):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.source = source
        self.engine = engine
        self.placeholder = placeholder
        self.default_timeout = default_timeout
        self.dir_lock = ReadWriteLock()
        self._inflight = KeyedLocks()
        self._workers = threading.BoundedSemaphore(max(1, int(max_workers)))
        self._source_dates: Dict[str, date] = {}
        # bumped by every purge; a computation that started before a purge
        # must not promote its result after it
        self.generation = 0
        self._counters_lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    # -------- public API --------

    def path_for(self, key: str) -> Path:
        return self.root / key

    def resolve(self, req: TransformRequest, timeout: Optional[float] = None) -> CacheEntry:
        """
        Path to the derivative for `req`, computing it on a miss.

        Raises:
            ValidationError: `req` is not a TransformRequest (no I/O is done).
            ResolveTimeout: waited longer than `timeout` for an in-flight
                computation of the same key (which keeps running).
            FetchError: today's source had to be acquired and could not be.
            EncodeError: the source could not be decoded / re-encoded.
            OSError: the cache directory is not writable.
        """
        if not isinstance(req, TransformRequest):
            raise ValidationError(f"expected TransformRequest, got {type(req).__name__}")
        key = CacheKeyCodec.for_request(req)

        hit = self._lookup(key, req)
        if hit is not None:
            return hit

        timeout = self.default_timeout if timeout is None else timeout
        with self._inflight.hold(key, timeout=timeout) as acquired:
            if not acquired:
                raise ResolveTimeout(key, timeout or 0.0)
            # someone may have finished this key while we waited
            hit = self._lookup(key, req)
            if hit is not None:
                return hit
            return self._compute(key, req)

    def resolve_bytes(self, req: TransformRequest, timeout: Optional[float] = None) -> Tuple[CacheEntry, bytes]:
        """
        Like resolve(), but also reads the derivative under the shared lock.
        A purge between resolving and reading makes it resolve again.
        """
        while True:
            entry = self.resolve(req, timeout=timeout)
            with self.dir_lock.read():
                try:
                    return entry, entry.local_path.read_bytes()
                except FileNotFoundError:
                    pass
            log.info("Derivative purged before it was read, resolving again", extra={"extra": {"key": entry.key}})

    def invalidate(self) -> None:
        """Forget in-memory state about stored derivatives. Caller holds dir_lock.write()."""
        self.generation += 1
        self._source_dates.clear()

    def lookup(self, req: TransformRequest) -> Optional[CacheEntry]:
        """Cache hit for `req` or None; never computes."""
        return self._lookup(CacheKeyCodec.for_request(req), req)

    def entries(self) -> List[Path]:
        return sorted(
            p for p in self.root.iterdir()
            if p.is_file() and CacheKeyCodec.decode(p.name) is not None
        )

    def stats(self) -> Dict[str, int]:
        files = self.entries()
        total = 0
        for p in files:
            try:
                total += p.stat().st_size
            except FileNotFoundError:
                continue
        return {"files": len(files), "bytes": total, "hits": self.hits, "misses": self.misses}

    # -------- internals --------

    def _lookup(self, key: str, req: TransformRequest) -> Optional[CacheEntry]:
        path = self.path_for(key)
        with self.dir_lock.read():
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                return None
        with self._counters_lock:
            self.hits += 1
        log.debug("Cache hit", extra={"extra": {"key": key}})
        return CacheEntry(
            key=key,
            local_path=path,
            size_bytes=size,
            request=req,
            cached=True,
            source_date=self._source_dates.get(key),
        )

    def _compute(self, key: str, req: TransformRequest) -> CacheEntry:
        with self._counters_lock:
            self.misses += 1
        log.info("Cache miss, transforming", extra={"extra": {"key": key}})
        t0 = time.perf_counter()

        path = self.path_for(key)
        while True:
            generation = self.generation
            # source first: acquiring it may purge this directory, which needs
            # the exclusive lock we must not be holding shared
            image, data = self.source.read_current()
            with self._workers:
                out = self.engine.transform(data, req)

            with self.dir_lock.read():
                if self.generation == generation:
                    atomic_write_bytes(path, out)
                    size = path.stat().st_size
                    self._source_dates[key] = image.acquisition_date
                    break
            # purged mid-transform (e.g. rotation): the source may be gone
            log.info(
                "Cache purged during transform, recomputing",
                extra={"extra": {"key": key, "source": image.filename}},
            )

        log.info(
            "Derivative stored",
            extra={"extra": {
                "key": key,
                "source": image.filename,
                "bytes": size,
                "ms": elapsed_ms(t0),
            }},
        )
        return CacheEntry(
            key=key,
            local_path=path,
            size_bytes=size,
            request=req,
            cached=False,
            source_date=image.acquisition_date,
        )
