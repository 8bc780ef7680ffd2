from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from .db import log_event
from .docker_ops import ContainerInfo, RuntimeClient
from .routes import Route, RouteBuilder, Routes
from .settings import settings

# Bindings on these host addresses are not reachable at one specific endpoint.
WILDCARD_IPS = frozenset({"0.0.0.0", "::", ""})


def _tcp(port: str) -> str:
    return f"{port}/tcp"


def resolve_route(container: ContainerInfo, fallback_ports: Sequence[str]) -> Route | None:
    """Turn one inspected container into a complete route, or None to skip it.

    Port: VIRTUAL_PORT, else the first fallback port the container exposes.
    Address: a published binding on a specific host IP (reachable from other
    nodes; its host port replaces the container port), else for local
    containers the bridge IP, else the first attached network with an IP.
    """
    route = RouteBuilder.build(container.env)
    port = route.upstream.port

    if not port:
        for candidate in fallback_ports:
            if _tcp(candidate) in container.ports:
                port = candidate
                break

    if not port:
        log_event("DEBUG", "Couldn't find a port to expose", container.name, container.short_id)
        return None

    ip = ""
    for binding in container.ports.get(_tcp(port), ()):
        if binding.host_ip not in WILDCARD_IPS:
            ip, port = binding.host_ip, binding.host_port
            break

    # Container addresses only make sense when the container runs on this host.
    if not ip and not container.is_remote:
        ip = container.ip_address

    if not ip and not container.is_remote:
        ip = next((addr for addr in container.networks.values() if addr), "")

    if not ip:
        log_event("DEBUG", "Couldn't find an IP to access container", container.name, container.short_id)
        return None

    route = route.with_upstream(ip=ip, port=port, container_name=container.name)
    if not route.is_valid():
        return None

    log_event("DEBUG", f"Adding route {route.host_key} -> {ip}:{port}", container.name, container.short_id)
    return route


def _inspect(client: RuntimeClient, container_id: str) -> ContainerInfo | None:
    try:
        return client.inspect(container_id)
    except Exception as e:
        log_event("ERROR", f"Failed inspecting container: {type(e).__name__}: {e}", container_id=container_id[:12])
        return None


def enumerate_routes(
    client: RuntimeClient,
    fallback_ports: Sequence[str] | None = None,
    max_workers: int | None = None,
) -> Routes:
    """Build a complete routing table from the currently running containers.

    A listing failure propagates and no table is produced. Containers that
    fail inspection or cannot be routed are skipped.
    """
    if fallback_ports is None:
        fallback_ports = settings.ports

    container_ids = client.list_running()
    if not container_ids:
        return Routes()

    if max_workers is None:
        max_workers = settings.inspect_workers or len(container_ids)
    max_workers = max(1, min(max_workers, len(container_ids)))

    # Leaving the executor block joins every inspection task.
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="drd-inspect") as pool:
        inspected = list(pool.map(lambda cid: _inspect(client, cid), container_ids))

    routes: list[Route] = []
    seen: set[str] = set()
    for container in inspected:
        if container is None:
            continue
        route = resolve_route(container, fallback_ports)
        if route is None:
            continue
        if route.host_key in seen:
            log_event("WARN", f"Host {route.host_key} already routed, ignoring container", container.name, container.short_id)
            continue
        seen.add(route.host_key)
        routes.append(route)

    return Routes.from_routes(routes)
