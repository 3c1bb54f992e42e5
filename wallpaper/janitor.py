from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from common.logging_setup import get_logger
from common.types import SourceImage
from wallpaper.source_store import SourceStore
from wallpaper.transform_cache import TransformCache


log = get_logger("wallpaper.janitor")


@dataclass
class PurgeResult:
    deleted: int = 0
    failed: int = 0


class CacheJanitor:
    """
    Wipes the derivative cache directory (placeholder excepted).

    Runs under the cache's exclusive directory lock, so it waits for
    in-flight resolves and never removes a file while it is being promoted.
    """

    def __init__(self, cache: TransformCache):
        self.cache = cache

    def purge(self) -> PurgeResult:
        res = PurgeResult()
        with self.cache.dir_lock.write():
            self.cache.invalidate()
            for p in self.cache.root.iterdir():
                if not p.is_file() or p.name == self.cache.placeholder:
                    continue
                try:
                    p.unlink()
                    res.deleted += 1
                except FileNotFoundError:
                    continue
                except OSError as e:
                    res.failed += 1
                    log.error("Failed to delete cache file", extra={"extra": {"file": p.name, "error": str(e)}})
        log.info("Cache cleared", extra={"extra": {"deleted": res.deleted, "failed": res.failed}})
        return res

    def clear_all(self) -> int:
        """Delete every derivative; returns how many files were removed."""
        return self.purge().deleted


class RotationJanitor:
    """
    Acquisition listener: once a source for a new day is stored, delete the
    superseded source files and, if enabled, the derivatives made from them.

        janitor = RotationJanitor(store, cache_janitor, invalidate_derivatives=True)
        janitor.attach()
    """

    def __init__(
        self,
        store: SourceStore,
        cache_janitor: Optional[CacheJanitor] = None,
        *,
        invalidate_derivatives: bool = True,
    ):
        self.store = store
        self.cache_janitor = cache_janitor
        self.invalidate_derivatives = invalidate_derivatives

    def attach(self) -> "RotationJanitor":
        self.store.add_listener(self.on_acquired)
        return self

    def on_acquired(self, image: SourceImage) -> int:
        removed = self.store.rotate(image.acquisition_date)
        if removed:
            log.info(
                "Source rotated",
                extra={"extra": {"date": image.acquisition_date.isoformat(), "removed": [p.name for p in removed]}},
            )
            # only a real day change makes the existing derivatives stale
            if self.invalidate_derivatives and self.cache_janitor is not None and any(
                self.store.source_date(p) not in (None, image.acquisition_date) for p in removed
            ):
                self.cache_janitor.clear_all()
        return len(removed)
