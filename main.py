"""
Main API module for Golink Platform.

Responsibilities:
    - Redirect short names ("go-links") to their destination URLs
    - Expose a small JSON API to create, inspect, list, delete and dump routes
    - Mint auto-generated names through the store's ID allocator

Architecture:
    - App Factory pattern (create_app) for test isolation and DI.
    - The route store is chosen once by the storage factory (GOLINK_BACKEND) and
      closed when the app shuts down.
    - RouteManager holds validation and naming rules; the store holds data.

LLM Prompt Example:
    "Explain how to structure a FastAPI service with an application factory,
    injected dependencies, and a clean separation between API and storage."
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from golink_platform.config import settings
from golink_platform.manager.route_manager import RouteManager
from golink_platform.route import Route
from golink_platform.storage.base import RouteStore
from golink_platform.storage.errors import DecodeError, NotFoundError, StoreError
from golink_platform.storage.storage_factory import get_storage

log = logging.getLogger("golink")


class RouteRequest(BaseModel):
    """Request payload for creating or updating a route."""
    url: str


def _route_json(name: str, route: Route) -> Dict[str, Any]:
    return {"name": name, **route.to_dict()}


def create_app(storage: Optional[RouteStore] = None, admin: Optional[bool] = None) -> FastAPI:
    """
    Factory function to build and configure a new FastAPI app instance.

    Args:
        storage: Route store to serve from. Defaults to `get_storage()` (env-selected).
        admin: Allow admin-level requests (delete, dump). Defaults to GOLINK_ADMIN.

    Returns:
        FastAPI: A configured application instance owning its route store.
    """
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO)

    store = storage if storage is not None else get_storage()  # ← memory/postgres/redis/firestore
    manager = RouteManager(storage=store, timeout=settings.STORE_TIMEOUT)
    allow_admin = settings.ADMIN if admin is None else admin
    log.info("Golink storage backend: %s (admin=%s)", store.backend_name, allow_admin)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        store.close()

    app = FastAPI(
        title="Golink Platform",
        description="Go-links: short names that redirect to long URLs",
        # Framework pages stay under /api; every other top-level name is a go-link.
        docs_url="/api/docs",
        redoc_url=None,
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )
    app.state.storage = store
    app.state.manager = manager

    # ----------------------------------------------------------------
    # Error mapping
    # ----------------------------------------------------------------
    @app.exception_handler(NotFoundError)
    async def _not_found(_request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": "Route not found", "name": exc.key})

    @app.exception_handler(DecodeError)
    async def _corrupt(_request: Request, exc: DecodeError) -> JSONResponse:
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(StoreError)
    async def _unavailable(_request: Request, exc: StoreError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    def _require_admin() -> None:
        if not allow_admin:
            raise HTTPException(status_code=403, detail="Admin requests are disabled")

    def _save(url: str, name: Optional[str], request: Request, check_reachable: bool) -> Dict[str, Any]:
        try:
            name, route = manager.create(url, name=name, check_reachable=check_reachable)
        except ValueError as ve:
            raise HTTPException(status_code=400, detail=str(ve))
        host = settings.HOST or request.headers.get("host", "")
        body = _route_json(name, route)
        body["short_url"] = f"{request.url.scheme}://{host}/{name}" if host else f"/{name}"
        return body

    # ----------------------------------------------------------------
    # Routes
    # ----------------------------------------------------------------
    @app.get("/health")
    def health() -> Dict[str, str]:
        store.ping()
        return {"status": "ok", "backend": store.backend_name}

    @app.get("/api/url/{name:path}")
    def get_route(name: str) -> Dict[str, Any]:
        return _route_json(name, manager.get(name))

    @app.post("/api/url/")
    def create_generated(
        req: RouteRequest,
        request: Request,
        check_reachable: bool = Query(False, description="Verify the URL responds before saving."),
    ) -> Dict[str, Any]:
        """Create a route under a generated name (":" + Base62 of the next ID)."""
        return _save(req.url, None, request, check_reachable)

    @app.post("/api/url/{name:path}")
    def create_named(
        name: str,
        req: RouteRequest,
        request: Request,
        check_reachable: bool = Query(False, description="Verify the URL responds before saving."),
    ) -> Dict[str, Any]:
        """Create or overwrite the route `name`."""
        return _save(req.url, name, request, check_reachable)

    @app.delete("/api/url/{name:path}")
    def delete_route(name: str) -> Dict[str, Any]:
        _require_admin()
        try:
            manager.delete(name)
        except ValueError as ve:
            raise HTTPException(status_code=400, detail=str(ve))
        return {"deleted": name}

    @app.get("/api/urls/")
    def list_routes(
        prefix: str = Query("", description="Only names starting with this prefix."),
        limit: int = Query(100, ge=1, le=1000),
    ) -> Dict[str, Any]:
        routes = manager.list(prefix, limit=limit)
        return {"prefix": prefix, "routes": [_route_json(n, r) for n, r in routes]}

    @app.get("/api/dump")
    def dump_routes() -> Dict[str, Any]:
        """Full backup: {name: {url, time}}."""
        _require_admin()
        return {name: route.to_dict() for name, route in manager.dump().items()}

    @app.get("/{path:path}")
    def redirect(path: str) -> RedirectResponse:
        if not path:
            raise HTTPException(status_code=404, detail="Route not found")
        return RedirectResponse(url=manager.resolve(path), status_code=302)

    return app


# `uvicorn main:app` and `from main import app` keep working.
app = create_app()
