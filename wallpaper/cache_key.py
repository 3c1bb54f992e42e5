from __future__ import annotations

import hashlib
import re
from typing import NamedTuple, Optional

from common.types import TransformRequest


_KEY_RE = re.compile(r"^wallpaper_(\d+)x(\d+)_([a-z]+)_([0-9a-f]{8})\.([a-z]+)$")


class DecodedKey(NamedTuple):
    width: int
    height: int
    fit: str
    digest: str
    format: str


class CacheKeyCodec:
    """
    Maps (width, height, fit, format) to a derivative filename:

        wallpaper_{width}x{height}_{fit}_{hash8}.{format}

    hash8 is the first 8 hex chars of md5("{w}_{h}_{format}_{fit}"), so files
    written by earlier deployments keep resolving. 32 bits is enough for a
    handful of sizes per day; it is not a collision-proof digest.
    """

    prefix = "wallpaper"

    @staticmethod
    def digest(width: int, height: int, fit: str, format: str) -> str:
        material = f"{int(width)}_{int(height)}_{format}_{fit}".lower()
        # md5 for a short stable tag, not for security
        return hashlib.md5(material.encode("utf-8")).hexdigest()[:8]  # noqa: S324

    @classmethod
    def encode(cls, width: int, height: int, fit: str, format: str) -> str:
        fit = fit.lower()
        format = format.lower()
        return f"{cls.prefix}_{int(width)}x{int(height)}_{fit}_{cls.digest(width, height, fit, format)}.{format}"

    @classmethod
    def for_request(cls, req: TransformRequest) -> str:
        return cls.encode(req.width, req.height, req.fit, req.format)

    @classmethod
    def decode(cls, filename: str) -> Optional[DecodedKey]:
        """Inverse of encode; None for anything that is not a derivative name."""
        m = _KEY_RE.match(filename)
        if not m:
            return None
        w, h, fit, digest, fmt = m.groups()
        if cls.digest(int(w), int(h), fit, fmt) != digest:
            return None
        return DecodedKey(int(w), int(h), fit, digest, fmt)
