from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace

HOST_KEY_VAR = "VIRTUAL_HOST"
PORT_VAR = "VIRTUAL_PORT"


@dataclass(frozen=True)
class Upstream:
    ip: str = ""
    port: str = ""
    container_name: str = ""


@dataclass(frozen=True)
class Route:
    """One published host key and the endpoint it resolves to."""

    host_key: str = ""
    upstream: Upstream = field(default_factory=Upstream)

    def is_valid(self) -> bool:
        return bool(self.host_key and self.upstream.ip and self.upstream.port)

    def with_upstream(self, **changes: str) -> Route:
        return replace(self, upstream=replace(self.upstream, **changes))

    def to_dict(self) -> dict[str, object]:
        return {
            "host_key": self.host_key,
            "upstream": {
                "ip": self.upstream.ip,
                "port": self.upstream.port,
                "container_name": self.upstream.container_name,
            },
        }


class Routes(Mapping[str, Route]):
    """Immutable routing table snapshot keyed by host key.

    A snapshot is always handed to consumers whole; a newer table replaces it
    rather than patching it.
    """

    __slots__ = ("_routes",)

    def __init__(self, routes: Mapping[str, Route] | None = None) -> None:
        self._routes: dict[str, Route] = dict(routes or {})

    @classmethod
    def from_routes(cls, routes: Iterable[Route], strict: bool = False) -> Routes:
        """Admit routes in order; the first route for a host key wins.

        Invalid routes are dropped, or rejected with ValueError when strict.
        """
        table: dict[str, Route] = {}
        for route in routes:
            if not route.is_valid():
                if strict:
                    raise ValueError(f"Invalid route: {route!r}")
                continue
            table.setdefault(route.host_key, route)
        return cls(table)

    def __getitem__(self, host_key: str) -> Route:
        return self._routes[host_key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    def __repr__(self) -> str:
        return f"Routes({self._routes!r})"

    def to_dict(self) -> dict[str, dict[str, object]]:
        return {key: route.to_dict() for key, route in sorted(self._routes.items())}


class RouteBuilder:
    """Collects route fields from container environment declarations.

    The result may be incomplete: resolving a missing port or address is up to
    the caller, which knows the container's network settings.
    """

    def __init__(self) -> None:
        self.host_key = ""
        self.port = ""

    def parse(self, entry: str) -> None:
        key, sep, value = entry.partition("=")
        if not sep:
            return
        value = value.strip()
        if not value:
            return
        key = key.strip()
        if key == HOST_KEY_VAR:
            self.host_key = value
        elif key == PORT_VAR:
            self.port = value

    def parse_all(self, *entries: str) -> None:
        for entry in entries:
            self.parse(entry)

    def route(self) -> Route:
        return Route(host_key=self.host_key, upstream=Upstream(port=self.port))

    @classmethod
    def build(cls, env: Iterable[str] | None) -> Route:
        builder = cls()
        builder.parse_all(*(env or ()))
        return builder.route()
