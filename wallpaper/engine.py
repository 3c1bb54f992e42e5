from __future__ import annotations
"""
Resize + re-encode of the source image.

- Decode / resize: OpenCV (BGR uint8 arrays)
- Letterbox canvas: numpy
- Encode: Pillow (JPEG, PNG, WebP, AVIF)

Fit modes, centre anchored:
    cover    scale to cover W x H, crop the overflow       -> exactly W x H
    contain  scale to fit inside W x H, pad with black     -> exactly W x H
    fill     stretch, aspect ratio ignored                 -> exactly W x H
    inside   scale to fit inside W x H, no padding         -> <= W x H
    outside  scale to cover W x H, no cropping             -> >= W x H
"""

import io
from pathlib import Path
from typing import Tuple, Union

import cv2
import numpy as np
from PIL import Image

from common.errors import EncodeError
from common.types import TransformRequest


PIL_FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "avif": "AVIF",
}

BACKGROUND_BGR = (0, 0, 0)


def decode_bgr(data: bytes) -> np.ndarray:
    if not data:
        raise EncodeError("source image is empty")
    arr = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if img is None:
        raise EncodeError("source image is corrupt or in an unsupported format")
    return img


def _resize(img: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    w, h = size
    H, W = img.shape[:2]
    if (w, h) == (W, H):
        return img
    interp = cv2.INTER_AREA if w * h < W * H else cv2.INTER_CUBIC
    return cv2.resize(img, (w, h), interpolation=interp)


def _scaled(src_w: int, src_h: int, scale: float) -> Tuple[int, int]:
    return max(1, int(round(src_w * scale))), max(1, int(round(src_h * scale)))


def fit_image(img: np.ndarray, width: int, height: int, fit: str) -> np.ndarray:
    """Apply one of the five fit modes; returns a new BGR array."""
    H, W = img.shape[:2]
    sx, sy = width / W, height / H

    if fit == "fill":
        return _resize(img, (width, height))

    if fit == "cover":
        rw, rh = _scaled(W, H, max(sx, sy))
        rw, rh = max(rw, width), max(rh, height)
        out = _resize(img, (rw, rh))
        x0 = (rw - width) // 2
        y0 = (rh - height) // 2
        return np.ascontiguousarray(out[y0 : y0 + height, x0 : x0 + width])

    if fit == "contain":
        rw, rh = _scaled(W, H, min(sx, sy))
        rw, rh = min(rw, width), min(rh, height)
        out = _resize(img, (rw, rh))
        canvas = np.zeros((height, width, 3), dtype=np.uint8)
        canvas[:] = BACKGROUND_BGR
        x0 = (width - rw) // 2
        y0 = (height - rh) // 2
        canvas[y0 : y0 + rh, x0 : x0 + rw] = out
        return canvas

    if fit == "inside":
        rw, rh = _scaled(W, H, min(sx, sy))
        return _resize(img, (min(rw, width), min(rh, height)))

    if fit == "outside":
        rw, rh = _scaled(W, H, max(sx, sy))
        return _resize(img, (max(rw, width), max(rh, height)))

    raise ValueError(f"unknown fit mode: {fit}")


def encode(img: np.ndarray, fmt: str, quality: int = 90) -> bytes:
    """BGR array -> encoded bytes in `fmt` (one of PIL_FORMATS)."""
    pil_fmt = PIL_FORMATS[fmt]
    rgb = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
    pil = Image.fromarray(rgb)
    opts = {}
    if pil_fmt == "PNG":
        opts["compress_level"] = 6
    else:
        opts["quality"] = int(quality)
    buf = io.BytesIO()
    try:
        pil.save(buf, format=pil_fmt, **opts)
    except (KeyError, OSError, ValueError) as e:
        # KeyError: this Pillow build has no encoder for the format
        raise EncodeError(f"failed to encode {fmt}: {e}") from e
    return buf.getvalue()


class TransformEngine:
    """
    Pure function object: (source, TransformRequest) -> encoded bytes.
    No caching and no file output; the cache persists the result.
    """

    def __init__(self, quality: int = 90):
        self.quality = int(quality)

    def transform(self, source: Union[Path, str, bytes], req: TransformRequest) -> bytes:
        """
        Raises:
            EncodeError: corrupt/unsupported source, or encoder failure.
            OSError: `source` is a path that cannot be read.
        """
        data = source if isinstance(source, bytes) else Path(source).read_bytes()
        img = decode_bgr(data)
        out = fit_image(img, req.width, req.height, req.fit)
        return encode(out, req.format, self.quality)

    __call__ = transform
