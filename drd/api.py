from __future__ import annotations

from fastapi import FastAPI, HTTPException, Query

from . import db
from .api_models import EventOut, HealthOut, RouteOut, RoutesOut
from .runtime import RouteState
from .watcher import EventWatcher


def create_app(state: RouteState, watcher: EventWatcher | None = None) -> FastAPI:
    """Read-only view of the routing table the watcher publishes into state."""
    app = FastAPI(title="Docker Route Discovery")

    @app.on_event("startup")
    def startup() -> None:
        db.init_db()
        if watcher is not None:
            watcher.start()

    @app.on_event("shutdown")
    def shutdown() -> None:
        if watcher is not None:
            watcher.stop()

    @app.get("/health", response_model=HealthOut)
    def health() -> HealthOut:
        return HealthOut(
            status="healthy",
            generation=state.generation,
            watcher=watcher.state.value if watcher is not None else None,
        )

    @app.get("/routes", response_model=RoutesOut)
    def list_routes() -> RoutesOut:
        routes = state.current()
        return RoutesOut(
            generation=state.generation,
            updated_at=state.updated_at,
            routes=[RouteOut.from_route(routes[key]) for key in sorted(routes)],
        )

    @app.get("/routes/{host_key}", response_model=RouteOut)
    def get_route(host_key: str) -> RouteOut:
        route = state.get(host_key)
        if route is None:
            raise HTTPException(status_code=404, detail=f"No route for host '{host_key}'.")
        return RouteOut.from_route(route)

    @app.get("/events", response_model=list[EventOut])
    def events(limit: int = Query(50, ge=1, le=500)) -> list[EventOut]:
        return [EventOut(**row) for row in db.latest_events(limit)]

    return app
