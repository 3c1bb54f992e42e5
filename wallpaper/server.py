from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from common.errors import EncodeError, FetchError, ResolveTimeout, ValidationError
from common.logging_setup import get_logger, setup_logging
from wallpaper.config import Settings
from wallpaper.service import WallpaperService


log = get_logger("wallpaper.server")


def _error(status: int, message: str, exc: Exception) -> JSONResponse:
    return JSONResponse({"success": False, "message": message, "error": str(exc)}, status_code=status)


def create_app(service: Optional[WallpaperService] = None, *, start_scheduler: bool = True) -> FastAPI:
    """
    HTTP layer over WallpaperService.

      GET    /health
      GET    /api/wallpaper        ?idx&n&mkt                -> fetch provider image now
      GET    /api/image/process    ?width&height&format&fit  -> JSON with /processed URL
      GET    /api/image/view       ?width&height&format&fit  -> image bytes
      DELETE /api/image/cache                                -> purge derivatives
      GET    /processed/<file>                               -> static derivatives
    """
    svc = service or WallpaperService(Settings.from_yaml())

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if start_scheduler:
            svc.start()
        try:
            yield
        finally:
            if start_scheduler:
                svc.stop()

    app = FastAPI(title="Daily Wallpaper API", version="1.0.0", lifespan=lifespan)
    app.state.service = svc

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ValidationError)
    async def _on_validation(_: Request, exc: ValidationError):
        return _error(400, "invalid parameters", exc)

    @app.exception_handler(FetchError)
    async def _on_fetch(_: Request, exc: FetchError):
        log.error("Provider fetch failed", extra={"extra": {"error": str(exc)}})
        return _error(502, "failed to fetch wallpaper", exc)

    @app.exception_handler(EncodeError)
    async def _on_encode(_: Request, exc: EncodeError):
        log.error("Image processing failed", extra={"extra": {"error": str(exc)}})
        return _error(500, "image processing failed", exc)

    @app.exception_handler(ResolveTimeout)
    async def _on_timeout(_: Request, exc: ResolveTimeout):
        return _error(504, "image processing timed out", exc)

    @app.exception_handler(OSError)
    async def _on_os_error(_: Request, exc: OSError):
        log.error("Storage error", extra={"extra": {"error": str(exc)}})
        return _error(500, "storage error", exc)

    @app.get("/health")
    def health():
        return svc.health()

    @app.get("/api/wallpaper")
    def fetch_wallpaper(
        idx: Optional[int] = Query(None, ge=0),
        n: Optional[int] = Query(None, ge=1, le=8),
        mkt: Optional[str] = Query(None),
    ):
        data = svc.fetch_wallpaper(idx=idx, n=n, mkt=mkt)
        return {"success": True, "message": "wallpaper fetched", "data": data}

    @app.get("/api/image/process")
    def process_image(
        request: Request,
        width: Optional[int] = Query(None),
        height: Optional[int] = Query(None),
        format: Optional[str] = Query(None),
        fit: Optional[str] = Query(None),
    ):
        entry = svc.resolve_entry(width=width, height=height, format=format, fit=fit)
        data = entry.to_dict()
        data.pop("path")
        data["url"] = f"{str(request.base_url).rstrip('/')}/processed/{entry.filename}"
        message = "returned cached image" if entry.cached else "image processed"
        return {"success": True, "message": message, "data": data}

    @app.get("/api/image/view")
    def view_image(
        width: Optional[int] = Query(None),
        height: Optional[int] = Query(None),
        format: Optional[str] = Query(None),
        fit: Optional[str] = Query(None),
    ):
        entry, data = svc.resolve_bytes(width=width, height=height, format=format, fit=fit)
        return Response(
            content=data,
            media_type=entry.request.content_type,
            headers={"Cache-Control": "public, max-age=3600"},
        )

    @app.delete("/api/image/cache")
    def clear_cache():
        deleted = svc.clear_cache()
        return {"success": True, "message": "cache cleared", "data": {"deletedCount": deleted}}

    app.mount("/processed", StaticFiles(directory=str(svc.cache.root)), name="processed")
    return app


# -------- local dev entrypoint --------
if __name__ == "__main__":
    settings = Settings.from_yaml()
    setup_logging(settings.logging.level, force=True)
    uvicorn.run(create_app(WallpaperService(settings)), host=settings.server.host, port=settings.server.port)
