"""
Unit tests for the resize/re-encode engine
"""

import io
import os
import sys

import numpy as np
import pytest
from PIL import Image, features

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import EncodeError
from common.types import TransformRequest
from wallpaper.engine import TransformEngine, fit_image


def _open(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


class TestFitGeometry:
    """Output dimensions of the five fit modes for a 400x200 (2:1) source"""

    @pytest.fixture
    def src(self):
        return np.full((200, 400, 3), 200, dtype=np.uint8)

    def test_cover_crops_to_box(self, src):
        assert fit_image(src, 100, 100, "cover").shape == (100, 100, 3)

    def test_contain_pads_to_box(self, src):
        out = fit_image(src, 100, 100, "contain")
        assert out.shape == (100, 100, 3)
        # 100x50 image centred vertically, black bars top and bottom
        assert out[0, 50].tolist() == [0, 0, 0]
        assert out[99, 50].tolist() == [0, 0, 0]
        assert out[50, 50].tolist() == [200, 200, 200]

    def test_fill_stretches(self, src):
        assert fit_image(src, 100, 100, "fill").shape == (100, 100, 3)

    def test_inside_bounds_without_padding(self, src):
        assert fit_image(src, 100, 100, "inside").shape == (50, 100, 3)

    def test_outside_covers_without_cropping(self, src):
        assert fit_image(src, 100, 100, "outside").shape == (100, 200, 3)

    def test_enlarging(self, src):
        assert fit_image(src, 1600, 1600, "inside").shape == (800, 1600, 3)


class TestTransformEngine:
    """Test cases for TransformEngine"""

    def test_transform_webp_cover(self, small_jpeg):
        """Bytes in, encoded derivative of the requested size out"""
        engine = TransformEngine(quality=90)
        out = engine.transform(small_jpeg, TransformRequest.create(width=160, height=90, format="webp"))
        img = _open(out)
        assert img.format == "WEBP"
        assert img.size == (160, 90)

    def test_transform_from_path(self, small_jpeg, tmp_path):
        """A path source is read and transformed the same way"""
        p = tmp_path / "src.jpg"
        p.write_bytes(small_jpeg)
        req = TransformRequest.create(width=120, height=120, format="png", fit="contain")
        engine = TransformEngine()
        out = engine.transform(p, req)
        assert out == engine.transform(small_jpeg, req)
        img = _open(out)
        assert img.format == "PNG"
        assert img.size == (120, 120)

    def test_transform_is_deterministic(self, small_jpeg):
        """Same inputs give identical bytes"""
        engine = TransformEngine()
        req = TransformRequest.create(width=200, height=100, format="jpg")
        assert engine.transform(small_jpeg, req) == engine.transform(small_jpeg, req)

    def test_jpeg_alias(self, small_jpeg):
        """jpeg and jpg both produce JPEG"""
        out = TransformEngine().transform(small_jpeg, TransformRequest.create(width=50, height=50, format="jpeg"))
        assert _open(out).format == "JPEG"

    @pytest.mark.skipif(not features.check("avif"), reason="Pillow built without AVIF")
    def test_transform_avif(self, small_jpeg):
        out = TransformEngine().transform(small_jpeg, TransformRequest.create(width=64, height=64, format="avif"))
        assert _open(out).size == (64, 64)

    def test_corrupt_source_raises(self):
        """Garbage bytes are an EncodeError, not a crash"""
        with pytest.raises(EncodeError):
            TransformEngine().transform(b"definitely not a jpeg", TransformRequest.create())

    def test_truncated_source_raises(self, small_jpeg):
        with pytest.raises(EncodeError):
            TransformEngine().transform(small_jpeg[:20], TransformRequest.create())

    def test_empty_source_raises(self):
        with pytest.raises(EncodeError):
            TransformEngine().transform(b"", TransformRequest.create())

    def test_missing_path_is_os_error(self, tmp_path):
        """Unreadable path surfaces as OSError"""
        with pytest.raises(OSError):
            TransformEngine().transform(tmp_path / "missing.jpg", TransformRequest.create())
