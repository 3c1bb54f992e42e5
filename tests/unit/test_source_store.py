"""
Unit tests for SourceStore and source rotation
"""

import os
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import FetchError
from wallpaper.janitor import RotationJanitor
from wallpaper.source_store import SourceStore
from tests.conftest import FakeBingClient


def _visible(root):
    return sorted(p.name for p in root.iterdir())


class TestSourceStore:
    """Test cases for SourceStore"""

    def test_has_current_false_on_empty_dir(self, tmp_path, fake_client, clock):
        store = SourceStore(tmp_path / "images", fake_client, clock=clock)
        assert store.has_current() is False
        assert fake_client.calls == 0

    def test_get_current_path_acquires_when_missing(self, tmp_path, fake_client, clock, small_jpeg):
        """Missing source triggers exactly one acquisition"""
        store = SourceStore(tmp_path / "images", fake_client, clock=clock)
        path = store.get_current_path()
        assert path.name == "20240501_UHD.jpg"
        assert path.read_bytes() == small_jpeg
        assert store.has_current()
        # second call is served from disk
        store.get_current_path()
        assert fake_client.calls == 1

    def test_acquired_image_metadata(self, tmp_path, fake_client, clock):
        """Local clock names the file; provider startdate is ignored"""
        store = SourceStore(tmp_path / "images", fake_client, clock=clock)
        image = store.acquire()
        assert image.acquisition_date == date(2024, 5, 1)
        assert image.title == "Test Title"
        assert image.uri.endswith("_UHD.jpg")
        assert not (tmp_path / "images" / "19990101_UHD.jpg").exists()

    def test_no_partial_files_left(self, tmp_path, fake_client, clock):
        """Temp download is renamed into place"""
        root = tmp_path / "images"
        store = SourceStore(root, fake_client, clock=clock)
        store.acquire()
        assert not [p for p in root.iterdir() if p.name.endswith(".part")]

    def test_fetch_error_propagates_and_leaves_nothing(self, tmp_path, small_jpeg, clock):
        """Provider failure is a FetchError and does not create files"""
        root = tmp_path / "images"
        store = SourceStore(root, FakeBingClient(small_jpeg, fail=True), clock=clock)
        with pytest.raises(FetchError):
            store.get_current_path()
        assert _visible(root) == []

    def test_download_failure_discards_temp_file(self, tmp_path, fake_client, clock):
        root = tmp_path / "images"
        store = SourceStore(root, fake_client, clock=clock)

        def broken_download(url, dest):
            dest.write_bytes(b"partial")
            raise FetchError("connection reset")

        fake_client.download = broken_download
        with pytest.raises(FetchError):
            store.acquire()
        assert _visible(root) == []

    def test_concurrent_get_current_fetches_once(self, tmp_path, small_jpeg, clock):
        """Concurrent callers share one acquisition"""
        client = FakeBingClient(small_jpeg, delay=0.2)
        store = SourceStore(tmp_path / "images", client, clock=clock)
        with ThreadPoolExecutor(max_workers=6) as ex:
            paths = list(ex.map(lambda _: store.get_current_path(), range(6)))
        assert len(set(paths)) == 1
        assert client.calls == 1

    def test_read_current(self, tmp_path, fake_client, clock, small_jpeg):
        store = SourceStore(tmp_path / "images", fake_client, clock=clock)
        image, data = store.read_current()
        assert data == small_jpeg
        assert image.local_path.name == "20240501_UHD.jpg"


class TestRotation:
    """Rotation of superseded source files"""

    def test_new_day_leaves_exactly_one_file(self, tmp_path, fake_client, clock):
        """After D1 then D2, only D2's file remains"""
        root = tmp_path / "images"
        (root).mkdir()
        (root / ".gitkeep").touch()
        store = SourceStore(root, fake_client, clock=clock)
        RotationJanitor(store).attach()

        store.acquire()
        clock.today = date(2024, 5, 2)
        store.acquire()

        files = store.source_files()
        assert [p.name for p in files] == ["20240502_UHD.jpg"]
        assert (root / ".gitkeep").exists()

    def test_same_day_reacquire_overwrites(self, tmp_path, small_jpeg, clock):
        root = tmp_path / "images"
        client = FakeBingClient(small_jpeg)
        store = SourceStore(root, client, clock=clock)
        RotationJanitor(store).attach()
        store.acquire()
        client.image_bytes = small_jpeg + b"\x00"
        store.acquire()
        assert [p.name for p in store.source_files()] == ["20240501_UHD.jpg"]
        assert (root / "20240501_UHD.jpg").read_bytes() == small_jpeg + b"\x00"

    def test_rotate_removes_stale_files(self, tmp_path, fake_client, clock):
        """rotate keeps only the given day and the placeholder"""
        root = tmp_path / "images"
        root.mkdir()
        for name in (".gitkeep", "20240429_UHD.jpg", "20240430_UHD.jpg", "20240501_UHD.jpg", ".download.x.part", "notes.txt"):
            (root / name).write_bytes(b"x")
        store = SourceStore(root, fake_client, clock=clock)
        removed = store.rotate(date(2024, 5, 1))
        assert sorted(p.name for p in removed) == [".download.x.part", "20240429_UHD.jpg", "20240430_UHD.jpg"]
        assert _visible(root) == [".gitkeep", "20240501_UHD.jpg", "notes.txt"]

    def test_rotate_is_idempotent(self, tmp_path, fake_client, clock):
        root = tmp_path / "images"
        store = SourceStore(root, fake_client, clock=clock)
        store.acquire()
        assert store.rotate(date(2024, 5, 1)) == []
