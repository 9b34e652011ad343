"""
Offline Kiosk App - Local Front-end Server for the POS client

This FastAPI application sits between the POS browser and the real
front-end origin. Every asset request goes through the resource cache
manager, so the POS keeps loading while the network is down. It also
exposes the local data API:

- cached third-party assets under /cdn/<host>/...
- status, manual sync
- record writes (stored locally, synced or queued)
- backup export / import

Serve on port 8001.
"""

import logging
from datetime import date
from pathlib import Path

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from fastapi.templating import Jinja2Templates

from ..errors import NetworkError, StoreError
from ..network.cache_manager import Request as CacheRequest

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("OfflineKiosk")

BASE_DIR = Path(__file__).parent
TEMPLATES_DIR = BASE_DIR / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def create_app(coordinator) -> FastAPI:
    """Build the kiosk app around one OfflineCoordinator."""
    app = FastAPI(title="POS Offline Kiosk")
    app.state.coordinator = coordinator

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok", "mode": coordinator.controller.get_current_mode().value}

    @app.get("/api/status")
    async def get_status():
        """Get current connectivity, sync and cache status."""
        try:
            return await coordinator.get_status()
        except StoreError as e:
            raise HTTPException(status_code=500, detail=str(e))

    @app.post("/api/sync")
    async def sync_now():
        result = await coordinator.flush()
        return {"confirmed": result.confirmed, "failed": result.failed}

    @app.post("/api/records/{collection}")
    async def save_record(collection: str, record: dict = Body(...)):
        """Store a record locally; surfaces store failures to the caller."""
        try:
            result = await coordinator.save(collection, record)
        except StoreError as e:
            logger.error(f"Failed to store {collection} record: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": result, "collection": collection, "id": record.get("id")}

    @app.get("/api/export")
    async def export_backup():
        backup = await coordinator.export_backup()
        filename = f"pos_backup_{date.today().isoformat()}.json"
        return JSONResponse(
            backup,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'}
        )

    @app.post("/api/import")
    async def import_backup(document: dict = Body(...)):
        try:
            counts = await coordinator.import_backup(document)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except StoreError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": "imported", "counts": counts}

    async def serve_through_cache(url: str, path: str, request: Request):
        if request.url.query:
            url = f"{url}?{request.url.query}"

        try:
            resp = await coordinator.cache_manager.fetch(CacheRequest(url))
        except NetworkError as e:
            logger.warning(f"Asset unavailable: {e}")
            if "text/html" in request.headers.get("accept", ""):
                return templates.TemplateResponse(
                    request, "offline.html", {"path": path}, status_code=503
                )
            raise HTTPException(status_code=503, detail="Resource unavailable")

        media_type = None
        headers = {}
        for key, value in resp.headers.items():
            if key.lower() == "content-type":
                media_type = value
            else:
                headers[key] = value
        if resp.from_cache:
            headers["X-Cache"] = "HIT"

        return Response(
            content=resp.body,
            status_code=resp.status,
            headers=headers,
            media_type=media_type,
        )

    @app.get("/cdn/{host}/{path:path}")
    async def serve_cdn_asset(host: str, path: str, request: Request):
        """Serve a third-party asset (e.g. Chart.js) from the manifest through the cache."""
        origin = coordinator.cache_manager.external_origins.get(host)
        if origin is None:
            raise HTTPException(status_code=404, detail=f"Unknown asset host: {host}")
        return await serve_through_cache(f"{origin}/{path}", f"/cdn/{host}/{path}", request)

    @app.get("/{path:path}")
    async def serve_asset(path: str, request: Request):
        """Serve a front-end asset through the resource cache manager."""
        url = coordinator.cache_manager.resolve("/" + path)
        return await serve_through_cache(url, "/" + path, request)

    return app


def build_server(app: FastAPI, port: int = 8001):
    """Build a uvicorn server that runs inside an existing event loop."""
    import uvicorn
    logger.info(f"Starting Offline Kiosk on http://0.0.0.0:{port}")
    config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    return uvicorn.Server(config)
