from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

from common.errors import ValidationError


VALID_FORMATS = ("jpg", "jpeg", "png", "webp", "avif")
VALID_FITS = ("cover", "contain", "fill", "inside", "outside")

DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080
DEFAULT_FORMAT = "jpg"
DEFAULT_FIT = "cover"
MAX_DIMENSION = 8192

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "avif": "image/avif",
}


def _positive_int(name: str, value: Any) -> int:
    # bool is an int subclass; True must not become a 1px wide image
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}", field=name, value=value)
    if value <= 0:
        raise ValidationError(f"{name} must be > 0, got {value}", field=name, value=value)
    if value > MAX_DIMENSION:
        raise ValidationError(f"{name} must be <= {MAX_DIMENSION}, got {value}", field=name, value=value)
    return value


@dataclass(frozen=True, slots=True)
class SourceImage:
    """
    The canonical daily image kept in the source directory.

    Attributes:
        acquisition_date: local calendar date the file belongs to.
        uri: remote URL it was downloaded from ("" if found on disk at startup).
        local_path: `<YYYYMMDD>_UHD.jpg` inside the source directory.
        title: provider title (or the copyright line before "(").
    """
    acquisition_date: date
    uri: str
    local_path: Path
    title: str = ""

    @property
    def filename(self) -> str:
        return self.local_path.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.uri,
            "filename": self.filename,
            "date": self.acquisition_date.strftime("%Y%m%d"),
            "title": self.title,
        }


@dataclass(frozen=True, slots=True)
class TransformRequest:
    """
    Parameters of one derivative.

    Construction validates; format/fit are lower-cased, anything outside
    VALID_FORMATS / VALID_FITS raises ValidationError.
    """
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    format: str = DEFAULT_FORMAT
    fit: str = DEFAULT_FIT

    def __post_init__(self) -> None:
        _positive_int("width", self.width)
        _positive_int("height", self.height)
        if not isinstance(self.format, str) or self.format.lower() not in VALID_FORMATS:
            raise ValidationError(
                f"unsupported format: {self.format!r}; supported: {', '.join(VALID_FORMATS)}",
                field="format",
                value=self.format,
            )
        if not isinstance(self.fit, str) or self.fit.lower() not in VALID_FITS:
            raise ValidationError(
                f"unsupported fit: {self.fit!r}; supported: {', '.join(VALID_FITS)}",
                field="fit",
                value=self.fit,
            )
        object.__setattr__(self, "format", self.format.lower())
        object.__setattr__(self, "fit", self.fit.lower())

    @classmethod
    def create(
        cls,
        width: Optional[int] = None,
        height: Optional[int] = None,
        format: Optional[str] = None,
        fit: Optional[str] = None,
    ) -> "TransformRequest":
        """Build a request where None means "use the default"."""
        return cls(
            width=DEFAULT_WIDTH if width is None else width,
            height=DEFAULT_HEIGHT if height is None else height,
            format=DEFAULT_FORMAT if format is None else format,
            fit=DEFAULT_FIT if fit is None else fit,
        )

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES[self.format]


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """
    A derivative file in the cache directory.

    `source_date` is None when the file was a hit left by an earlier process.
    """
    key: str
    local_path: Path
    size_bytes: int
    request: TransformRequest
    cached: bool
    source_date: Optional[date] = None

    @property
    def filename(self) -> str:
        return self.local_path.name

    @property
    def file_size_kb(self) -> str:
        return f"{self.size_bytes / 1024:.2f} KB"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.local_path),
            "filename": self.filename,
            "cached": self.cached,
            "sizeBytes": self.size_bytes,
            "fileSize": self.file_size_kb,
            "size": {"width": self.request.width, "height": self.request.height},
            "format": self.request.format,
            "fit": self.request.fit,
            "sourceDate": self.source_date.isoformat() if self.source_date else None,
        }
