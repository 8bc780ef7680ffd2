from __future__ import annotations

from pydantic import BaseModel, Field

from .routes import Route


class UpstreamOut(BaseModel):
    ip: str
    port: str
    container_name: str


class RouteOut(BaseModel):
    host_key: str = Field(..., description="Host the route is published under (VIRTUAL_HOST)")
    upstream: UpstreamOut

    @classmethod
    def from_route(cls, route: Route) -> RouteOut:
        return cls(
            host_key=route.host_key,
            upstream=UpstreamOut(
                ip=route.upstream.ip,
                port=route.upstream.port,
                container_name=route.upstream.container_name,
            ),
        )


class RoutesOut(BaseModel):
    generation: int = Field(..., description="Number of snapshots published so far")
    updated_at: str | None = None
    routes: list[RouteOut]


class HealthOut(BaseModel):
    status: str
    generation: int
    watcher: str | None = None


class EventOut(BaseModel):
    id: int
    ts: str
    level: str
    container_name: str | None = None
    container_id: str | None = None
    message: str
