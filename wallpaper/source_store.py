from __future__ import annotations

import os
import tempfile
import threading
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from common.logging_setup import get_logger
from common.types import SourceImage
from common.utils import ReadWriteLock, date_stamp, local_today, parse_date_stamp
from wallpaper.bing import BingClient


log = get_logger("wallpaper.source")

AcquireListener = Callable[[SourceImage], None]


class SourceStore:
    """
    Owns the source directory and the single canonical daily image in it.

        images/
          ├─ .gitkeep
          └─ {YYYYMMDD}_UHD.jpg   (today, local clock)

    Downloads land in a hidden `.download.*.part` file and are renamed into
    place, so readers never observe a partial image. Rotation of superseded
    days is done by the acquisition listeners (see wallpaper.janitor).
    """

    def __init__(
        self,
        root: str | Path,
        client: BingClient,
        *,
        placeholder: str = ".gitkeep",
        suffix: str = "_UHD.jpg",
        clock: Callable[[], date] = local_today,
    ):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.client = client
        self.placeholder = placeholder
        self.suffix = suffix
        self.clock = clock
        self._dir_lock = ReadWriteLock()
        # serializes acquisitions and rotations; re-entrant because listeners
        # run while an acquisition still holds it
        self._acquire_mutex = threading.RLock()
        self._current: Optional[SourceImage] = None
        self._listeners: List[AcquireListener] = []

    # -------- public API --------

    def add_listener(self, listener: AcquireListener) -> None:
        self._listeners.append(listener)

    def filename_for(self, d: date) -> str:
        return f"{date_stamp(d)}{self.suffix}"

    def path_for(self, d: date) -> Path:
        return self.root / self.filename_for(d)

    def has_current(self) -> bool:
        return self.path_for(self.clock()).is_file()

    def source_files(self) -> List[Path]:
        """Every source image on disk (placeholder and temp files excluded)."""
        return sorted(p for p in self.root.glob(f"*{self.suffix}") if p.is_file())

    def source_date(self, path: Path) -> Optional[date]:
        if not path.name.endswith(self.suffix):
            return None
        return parse_date_stamp(path.name[: -len(self.suffix)])

    def get_current(self) -> SourceImage:
        """
        Today's SourceImage, acquiring it first when missing.

        Raises:
            FetchError: the provider could not deliver today's image.
        """
        if not self.has_current():
            with self._acquire_mutex:
                if not self.has_current():
                    log.warning("No source image for today, acquiring", extra={"extra": {"date": date_stamp(self.clock())}})
                    image, _ = self._acquire_locked()
                    return image
        return self._describe(self.clock())

    def get_current_path(self) -> Path:
        return self.get_current().local_path

    def read_current(self) -> Tuple[SourceImage, bytes]:
        """
        Today's image and its bytes, read under the directory's shared lock so
        a concurrent rotation cannot delete it mid-read.
        """
        image = self.get_current()
        with self._dir_lock.read():
            data = image.local_path.read_bytes()
        return image, data

    def acquire(self, *, idx: Optional[int] = None, n: Optional[int] = None, mkt: Optional[str] = None) -> SourceImage:
        image, _ = self.fetch(idx=idx, n=n, mkt=mkt)
        return image

    def fetch(
        self, *, idx: Optional[int] = None, n: Optional[int] = None, mkt: Optional[str] = None
    ) -> Tuple[SourceImage, Dict[str, Any]]:
        """
        Download the provider's current image as today's source, overwriting
        an existing file for the same day. Returns (image, provider payload).

        Raises:
            FetchError: provider unreachable or malformed response.
            OSError: the file could not be written.
        """
        with self._acquire_mutex:
            return self._acquire_locked(idx=idx, n=n, mkt=mkt)

    def rotate(self, new_date: date) -> List[Path]:
        """
        Delete every source image except the one for `new_date`, plus stale
        download leftovers. Failures are logged and skipped.
        """
        keep = self.filename_for(new_date)
        removed: List[Path] = []
        with self._acquire_mutex, self._dir_lock.write():
            for p in self.root.iterdir():
                if not p.is_file() or p.name in (keep, self.placeholder):
                    continue
                if not (p.suffix.lower() == ".jpg" or p.name.endswith(".part")):
                    continue
                try:
                    p.unlink()
                    removed.append(p)
                    log.info("Removed superseded source", extra={"extra": {"file": p.name}})
                except OSError as e:
                    log.error("Failed to remove superseded source", extra={"extra": {"file": p.name, "error": str(e)}})
        return removed

    # -------- internals --------

    def _describe(self, d: date) -> SourceImage:
        cur = self._current
        if cur is not None and cur.acquisition_date == d:
            return cur
        # found on disk (e.g. downloaded by a previous process)
        return SourceImage(acquisition_date=d, uri="", local_path=self.path_for(d), title="")

    def _acquire_locked(
        self, *, idx: Optional[int] = None, n: Optional[int] = None, mkt: Optional[str] = None
    ) -> Tuple[SourceImage, Dict[str, Any]]:
        info = self.client.latest_image(idx=idx, n=n, mkt=mkt)

        # local date, not info.startdate: the provider's day may be skewed
        today = self.clock()
        dest = self.path_for(today)
        existed = dest.exists()
        log.info(
            "Acquiring source image",
            extra={"extra": {
                "file": dest.name,
                "local_date": date_stamp(today),
                "provider_date": info.startdate,
                "overwrite": existed,
            }},
        )

        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".download.", suffix=".part")
        os.close(fd)
        tmp = Path(tmp_name)
        try:
            size = self.client.download(info.image_url, tmp)
            with self._dir_lock.write():
                os.replace(tmp, dest)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

        image = SourceImage(acquisition_date=today, uri=info.image_url, local_path=dest, title=info.title)
        self._current = image
        log.info("Source image stored", extra={"extra": {"file": dest.name, "bytes": size, "title": info.title}})

        for listener in self._listeners:
            try:
                listener(image)
            except Exception:
                # the new source is already in place; a failed cleanup must not undo that
                log.exception("Acquisition listener failed")
        return image, info.payload
