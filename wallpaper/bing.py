from __future__ import annotations

"""
Bing HPImageArchive client (the only remote provider of the service).

Usage:
    client = BingClient()
    info = client.latest_image(mkt="en-US")
    # info.image_url -> https://cn.bing.com/th?id=OHR.Foo_ZH-CN123_UHD.jpg
    client.download(info.image_url, Path("images/.tmp_download.part"))

Only `images[0].urlbase`, `startdate`, `title` and `copyright` are consumed.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from common.errors import FetchError


log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass
class BingImage:
    urlbase: str
    startdate: str
    title: str
    image_url: str
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)


def _title_of(image: Dict[str, Any]) -> str:
    title = (image.get("title") or "").strip()
    if title:
        return title
    # older payloads only carry "Description (© Author/Agency)"
    return str(image.get("copyright") or "").split("(")[0].strip()


class BingClient:
    def __init__(
        self,
        base_url: str = "https://cn.bing.com",
        *,
        mkt: str = "zh-CN",
        idx: int = 0,
        n: int = 1,
        timeout: float = 30.0,
        image_suffix: str = "_UHD.jpg",
        session: Optional[requests.Session] = None,
    ):
        """
        Params:
            base_url: provider host, without trailing slash
            mkt/idx/n: default query parameters for HPImageArchive
            timeout: per-request timeout (seconds) for metadata and download
            image_suffix: appended to `urlbase` to locate the full-res image
            session: optional requests.Session for connection reuse
        """
        self.base_url = base_url.rstrip("/")
        self.archive_url = f"{self.base_url}/HPImageArchive.aspx"
        self.defaults = {"format": "js", "idx": int(idx), "n": int(n), "mkt": mkt}
        self.timeout = float(timeout)
        self.image_suffix = image_suffix
        self.session = session or requests.Session()

    # ----------------------------
    # Public API
    # ----------------------------
    def query_params(self, *, idx: Optional[int] = None, n: Optional[int] = None, mkt: Optional[str] = None) -> Dict[str, Any]:
        params = dict(self.defaults)
        if idx is not None:
            params["idx"] = int(idx)
        if n is not None:
            params["n"] = int(n)
        if mkt:
            params["mkt"] = mkt
        return params

    def image_url(self, urlbase: str) -> str:
        return f"{self.base_url}{urlbase}{self.image_suffix}"

    def get_image_archive(self, *, idx: Optional[int] = None, n: Optional[int] = None, mkt: Optional[str] = None) -> Dict[str, Any]:
        """
        Call HPImageArchive and return the decoded JSON payload.

        Raises:
            FetchError: network failure, non-200 status or non-JSON body.
        """
        params = self.query_params(idx=idx, n=n, mkt=mkt)
        log.info("Calling Bing HPImageArchive", extra={"extra": {"params": params}})
        try:
            r = self.session.get(self.archive_url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"Bing API request failed: {e}", cause=e) from e
        if r.status_code != 200:
            raise FetchError(f"Bing API returned HTTP {r.status_code}: {r.text[:200]}", status_code=r.status_code)
        try:
            data = r.json()
        except ValueError as e:
            raise FetchError("Bing API returned a non-JSON body", cause=e, status_code=r.status_code) from e
        if not isinstance(data, dict):
            raise FetchError("Bing API returned an unexpected payload")
        return data

    def latest_image(self, *, idx: Optional[int] = None, n: Optional[int] = None, mkt: Optional[str] = None) -> BingImage:
        """
        Metadata of `images[0]` from the archive.

        Raises:
            FetchError: as get_image_archive, or when no usable image is listed.
        """
        data = self.get_image_archive(idx=idx, n=n, mkt=mkt)
        images = data.get("images")
        if not isinstance(images, list) or not images or not isinstance(images[0], dict):
            raise FetchError("Bing API payload has no images")
        first = images[0]
        urlbase = first.get("urlbase")
        if not isinstance(urlbase, str) or not urlbase:
            raise FetchError("Bing API payload: images[0].urlbase missing")
        return BingImage(
            urlbase=urlbase,
            startdate=str(first.get("startdate") or ""),
            title=_title_of(first),
            image_url=self.image_url(urlbase),
            payload=data,
        )

    def download(self, url: str, dest: Path) -> int:
        """
        Stream `url` into `dest` (truncating it). Returns bytes written.

        The caller owns `dest`: on failure it may hold a partial body and must
        be discarded, never promoted.
        """
        log.info("Downloading image", extra={"extra": {"url": url}})
        written = 0
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as r:
                if r.status_code != 200:
                    raise FetchError(f"image download returned HTTP {r.status_code}", status_code=r.status_code)
                with open(dest, "wb") as f:
                    for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
                            written += len(chunk)
        except requests.RequestException as e:
            raise FetchError(f"image download failed: {e}", cause=e) from e
        if written == 0:
            raise FetchError("image download returned an empty body")
        return written
