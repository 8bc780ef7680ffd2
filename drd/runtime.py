from __future__ import annotations

from threading import Lock

from .db import utc_now
from .routes import Route, Routes


class RouteState:
    """Holds the last published routing table for readers on other threads."""

    def __init__(self) -> None:
        self.lock = Lock()
        self._routes = Routes()
        self._generation = 0
        self._updated_at: str | None = None

    def publish(self, routes: Routes) -> None:
        with self.lock:
            self._routes = routes
            self._generation += 1
            self._updated_at = utc_now()

    def current(self) -> Routes:
        with self.lock:
            return self._routes

    def get(self, host_key: str) -> Route | None:
        with self.lock:
            return self._routes.get(host_key)

    @property
    def generation(self) -> int:
        with self.lock:
            return self._generation

    @property
    def updated_at(self) -> str | None:
        with self.lock:
            return self._updated_at
