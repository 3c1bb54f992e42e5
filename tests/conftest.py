"""
Shared fixtures: synthetic JPEG sources, an offline provider client and a
controllable local clock.
"""

import os
import sys
import threading
import time
from datetime import date
from pathlib import Path

import cv2
import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(project_root)

from common.errors import FetchError
from wallpaper.bing import BingImage
from wallpaper.config import Settings
from wallpaper.engine import TransformEngine


def make_jpeg(width: int, height: int, seed: int = 1234) -> bytes:
    """Gradient + a few shapes; compresses well even at 3840x2160."""
    x = np.linspace(0, 255, width, dtype=np.float32)[None, :]
    y = np.linspace(255, 0, height, dtype=np.float32)[:, None]
    base = np.zeros((height, width, 3), dtype=np.uint8)
    base[..., 0] = (0.5 * (x + y)).astype(np.uint8)
    base[..., 1] = np.broadcast_to(x, (height, width)).astype(np.uint8)
    base[..., 2] = np.broadcast_to(y, (height, width)).astype(np.uint8)
    rng = np.random.default_rng(seed)
    for _ in range(10):
        x1, y1 = int(rng.integers(0, width)), int(rng.integers(0, height))
        x2, y2 = int(rng.integers(0, width)), int(rng.integers(0, height))
        cv2.rectangle(base, (min(x1, x2), min(y1, y2)), (max(x1, x2), max(y1, y2)), (255, 255, 255), 3)
    ok, buf = cv2.imencode(".jpg", base, [cv2.IMWRITE_JPEG_QUALITY, 85])
    assert ok
    return buf.tobytes()


class FakeClock:
    def __init__(self, today: date):
        self.today = today

    def __call__(self) -> date:
        return self.today


class FakeBingClient:
    """Offline stand-in for BingClient; counts metadata calls and downloads."""

    def __init__(self, image_bytes: bytes, *, fail: bool = False, delay: float = 0.0, title: str = "Test Title"):
        self.image_bytes = image_bytes
        self.fail = fail
        self.delay = delay
        self.title = title
        self.calls = 0
        self.downloads = 0
        self._lock = threading.Lock()

    def latest_image(self, *, idx=None, n=None, mkt=None) -> BingImage:
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise FetchError("provider unreachable")
        urlbase = "/th?id=OHR.TestImage_ZH-CN0000000000"
        return BingImage(
            urlbase=urlbase,
            startdate="19990101",
            title=self.title,
            image_url=f"https://cn.bing.com{urlbase}_UHD.jpg",
            payload={"images": [{"urlbase": urlbase, "startdate": "19990101", "title": self.title}]},
        )

    def download(self, url: str, dest: Path) -> int:
        with self._lock:
            self.downloads += 1
        Path(dest).write_bytes(self.image_bytes)
        return len(self.image_bytes)


class GatedEngine(TransformEngine):
    """Real engine whose calls block until `release` is set."""

    def __init__(self):
        super().__init__(quality=90)
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def transform(self, source, req):
        self.calls += 1
        self.entered.set()
        assert self.release.wait(5.0)
        return super().transform(source, req)


@pytest.fixture
def small_jpeg() -> bytes:
    return make_jpeg(400, 200)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(date(2024, 5, 1))


@pytest.fixture
def fake_client(small_jpeg) -> FakeBingClient:
    return FakeBingClient(small_jpeg)


@pytest.fixture
def settings(tmp_path) -> Settings:
    s = Settings()
    s.storage.source_dir = str(tmp_path / "images")
    s.storage.cache_dir = str(tmp_path / "processed")
    s.scheduler.refresh_on_start = False
    return s
