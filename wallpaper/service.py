from __future__ import annotations

"""
Wallpaper service: wires the components together and exposes the serving API
used by the HTTP layer (wallpaper/server.py) and the CLI below.

Examples:
  # Run the HTTP API with background refresh/purge jobs
  python -m wallpaper.service serve --config config/params.yaml

  # One-off operations
  python -m wallpaper.service fetch --mkt en-US
  python -m wallpaper.service resolve --width 800 --height 600 --format webp --fit cover
  python -m wallpaper.service clear-cache
"""

import argparse
import json
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from common.logging_setup import get_logger, setup_logging
from common.types import CacheEntry, SourceImage, TransformRequest
from common.utils import iso_now_ms, local_today
from wallpaper.bing import BingClient
from wallpaper.config import Settings
from wallpaper.engine import TransformEngine
from wallpaper.janitor import CacheJanitor, RotationJanitor
from wallpaper.scheduler import Scheduler
from wallpaper.source_store import SourceStore
from wallpaper.transform_cache import TransformCache


log = get_logger("wallpaper.service")


def _ensure_placeholder(root: Path, name: str) -> None:
    marker = root / name
    if not marker.exists():
        marker.touch()


class WallpaperService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        client: Optional[BingClient] = None,
        clock: Callable[[], date] = local_today,
    ):
        s = settings or Settings()
        self.settings = s

        self.client = client or BingClient(
            s.provider.base_url,
            mkt=s.provider.mkt,
            idx=s.provider.idx,
            n=s.provider.n,
            timeout=s.provider.timeout_s,
            image_suffix=s.provider.image_suffix,
        )
        self.store = SourceStore(
            s.storage.source_dir,
            self.client,
            placeholder=s.storage.placeholder,
            suffix=s.provider.image_suffix,
            clock=clock,
        )
        self.engine = TransformEngine(quality=s.transform.quality)
        self.cache = TransformCache(
            s.storage.cache_dir,
            self.store,
            self.engine,
            placeholder=s.storage.placeholder,
            max_workers=s.transform.max_workers,
            default_timeout=s.cache.wait_timeout_s,
        )
        self.cache_janitor = CacheJanitor(self.cache)
        self.rotation_janitor = RotationJanitor(
            self.store,
            self.cache_janitor,
            invalidate_derivatives=s.cache.invalidate_on_rotation,
        ).attach()

        for root in (self.store.root, self.cache.root):
            _ensure_placeholder(root, s.storage.placeholder)

        self.scheduler = Scheduler()
        self.scheduler.add_job(
            "refresh-source",
            s.scheduler.refresh_interval_s,
            self.refresh_source,
            run_at_start=s.scheduler.refresh_on_start,
        )
        self.scheduler.add_job("purge-cache", s.scheduler.purge_interval_s, self.clear_cache)

    # -------- serving API --------

    def resolve_entry(
        self,
        width: Optional[int] = None,
        height: Optional[int] = None,
        format: Optional[str] = None,
        fit: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CacheEntry:
        req = TransformRequest.create(width=width, height=height, format=format, fit=fit)
        return self.cache.resolve(req, timeout=timeout)

    def resolve_bytes(
        self,
        width: Optional[int] = None,
        height: Optional[int] = None,
        format: Optional[str] = None,
        fit: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Tuple[CacheEntry, bytes]:
        req = TransformRequest.create(width=width, height=height, format=format, fit=fit)
        return self.cache.resolve_bytes(req, timeout=timeout)

    def resolve(
        self,
        width: Optional[int] = None,
        height: Optional[int] = None,
        format: Optional[str] = None,
        fit: Optional[str] = None,
    ) -> Dict[str, Any]:
        """{path, filename, cached, sizeBytes, ...} for the requested derivative."""
        return self.resolve_entry(width=width, height=height, format=format, fit=fit).to_dict()

    def clear_cache(self) -> int:
        return self.cache_janitor.clear_all()

    def refresh_source(self) -> SourceImage:
        return self.store.acquire()

    def fetch_wallpaper(self, idx: Optional[int] = None, n: Optional[int] = None, mkt: Optional[str] = None) -> Dict[str, Any]:
        image, payload = self.store.fetch(idx=idx, n=n, mkt=mkt)
        return {"apiData": payload, "downloadedImage": image.to_dict()}

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": iso_now_ms(),
            "source": {
                "has_current": self.store.has_current(),
                "files": [p.name for p in self.store.source_files()],
            },
            "cache": self.cache.stats(),
            "scheduler": {
                "running": self.scheduler.running,
                "jobs": {
                    j.name: {"runs": j.runs, "failures": j.failures, "last_run": j.last_run}
                    for j in self.scheduler.jobs.values()
                },
            },
        }

    # -------- lifecycle --------

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()


def main() -> None:
    ap = argparse.ArgumentParser(description="Daily wallpaper service")
    ap.add_argument("--config", default=None, help="YAML config (default: $WALLPAPER_CONFIG or config/params.yaml)")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_serve = sub.add_parser("serve", help="Run the HTTP API and background jobs")
    p_serve.add_argument("--host", default=None)
    p_serve.add_argument("--port", type=int, default=None)

    p_fetch = sub.add_parser("fetch", help="Download the provider's current image")
    p_fetch.add_argument("--idx", type=int, default=None)
    p_fetch.add_argument("--n", type=int, default=None)
    p_fetch.add_argument("--mkt", default=None)

    p_res = sub.add_parser("resolve", help="Produce (or look up) one derivative")
    p_res.add_argument("--width", type=int, default=None)
    p_res.add_argument("--height", type=int, default=None)
    p_res.add_argument("--format", default=None)
    p_res.add_argument("--fit", default=None)

    sub.add_parser("clear-cache", help="Delete every cached derivative")

    args = ap.parse_args()

    settings = Settings.from_yaml(args.config)
    setup_logging(settings.logging.level, force=True)

    if args.cmd == "serve":
        import uvicorn

        from wallpaper.server import create_app

        app = create_app(WallpaperService(settings))
        uvicorn.run(app, host=args.host or settings.server.host, port=args.port or settings.server.port)
        return

    svc = WallpaperService(settings)
    if args.cmd == "fetch":
        out: Any = svc.fetch_wallpaper(idx=args.idx, n=args.n, mkt=args.mkt)["downloadedImage"]
    elif args.cmd == "resolve":
        out = svc.resolve(width=args.width, height=args.height, format=args.format, fit=args.fit)
    else:
        out = {"deletedCount": svc.clear_cache()}
    print(json.dumps(out, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
