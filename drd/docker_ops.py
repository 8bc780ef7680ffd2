from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

import docker
from docker.errors import DockerException

from .db import log_event


class AlreadySubscribed(Exception):
    """The listener queue is already registered for runtime events."""


@dataclass(frozen=True)
class PortBinding:
    host_ip: str
    host_port: str


@dataclass(frozen=True)
class ContainerInfo:
    """Read-only view of one inspected container."""

    id: str
    name: str
    env: tuple[str, ...] = ()
    # "8080/tcp" -> host bindings; empty when exposed but not published.
    ports: dict[str, tuple[PortBinding, ...]] = field(default_factory=dict)
    ip_address: str = ""
    # network name -> IP address, in attachment order
    networks: dict[str, str] = field(default_factory=dict)
    is_remote: bool = False

    @property
    def short_id(self) -> str:
        return self.id[:12]

    @classmethod
    def from_inspect(cls, payload: dict[str, Any]) -> ContainerInfo:
        config = payload.get("Config") or {}
        net = payload.get("NetworkSettings") or {}

        ports: dict[str, tuple[PortBinding, ...]] = {}
        for port_def, bindings in (net.get("Ports") or {}).items():
            ports[port_def] = tuple(
                PortBinding(host_ip=b.get("HostIp") or "", host_port=b.get("HostPort") or "")
                for b in (bindings or [])
            )

        networks = {
            name: (attachment or {}).get("IPAddress") or ""
            for name, attachment in (net.get("Networks") or {}).items()
        }

        return cls(
            id=payload.get("Id") or "",
            name=(payload.get("Name") or "").lstrip("/"),
            env=tuple(config.get("Env") or ()),
            ports=ports,
            ip_address=net.get("IPAddress") or "",
            networks=networks,
            # Classic swarm reports the node a container lives on.
            is_remote=bool(payload.get("Node")),
        )


@dataclass(frozen=True)
class RuntimeEvent:
    status: str
    container_id: str

    @classmethod
    def from_docker(cls, payload: dict[str, Any]) -> RuntimeEvent | None:
        """Normalize a decoded docker event; None for non-container events."""
        kind = payload.get("Type")
        if kind is not None and kind != "container":
            return None
        status = payload.get("status") or payload.get("Action") or ""
        container_id = payload.get("id") or (payload.get("Actor") or {}).get("ID") or ""
        if not status:
            return None
        return cls(status=status, container_id=container_id)


class RuntimeClient(Protocol):
    def list_running(self) -> list[str]: ...

    def inspect(self, container_id: str) -> ContainerInfo: ...

    def ping(self) -> None: ...

    def add_listener(self, listener: queue.Queue[RuntimeEvent | None]) -> None: ...

    def remove_listener(self, listener: queue.Queue[RuntimeEvent | None]) -> None: ...

    def close(self) -> None: ...


class DockerRuntime:
    """RuntimeClient backed by the docker SDK.

    Events are read by a pump thread and fanned out to listener queues. When
    the stream ends, every listener gets None.
    """

    def __init__(self, client: docker.DockerClient):
        self._client = client
        self._lock = threading.Lock()
        self._listeners: list[queue.Queue[RuntimeEvent | None]] = []
        self._stream: Any = None
        self._pump: threading.Thread | None = None

    @classmethod
    def from_env(cls) -> DockerRuntime:
        return cls(docker.from_env())

    def list_running(self) -> list[str]:
        return [c["Id"] for c in self._client.api.containers()]

    def inspect(self, container_id: str) -> ContainerInfo:
        return ContainerInfo.from_inspect(self._client.api.inspect_container(container_id))

    def ping(self) -> None:
        # docker-py returns False on some transports instead of raising.
        if not self._client.ping():
            raise DockerException("Docker daemon did not answer ping")

    def add_listener(self, listener: queue.Queue[RuntimeEvent | None]) -> None:
        with self._lock:
            if any(existing is listener for existing in self._listeners):
                raise AlreadySubscribed()
            if self._stream is None:
                self._stream = self._client.events(decode=True, filters={"type": "container"})
                self._pump = threading.Thread(target=self._pump_events, args=(self._stream,), daemon=True)
                self._pump.start()
            self._listeners.append(listener)

    def remove_listener(self, listener: queue.Queue[RuntimeEvent | None]) -> None:
        with self._lock:
            self._listeners = [existing for existing in self._listeners if existing is not listener]
            if self._listeners or self._stream is None:
                return
            stream, self._stream = self._stream, None
        stream.close()

    def close(self) -> None:
        """Stop the event stream and release the SDK connection pool."""
        with self._lock:
            self._listeners = []
            stream, self._stream = self._stream, None
        if stream is not None:
            stream.close()
        self._client.close()

    def _pump_events(self, stream: Any) -> None:
        try:
            for payload in stream:
                event = RuntimeEvent.from_docker(payload)
                if event is None:
                    continue
                for listener in self._snapshot_listeners():
                    _offer(listener, event)
        except Exception as e:
            # Closing the stream from remove_listener also lands here.
            log_event("DEBUG", f"Docker event stream ended: {type(e).__name__}: {e}")
        finally:
            with self._lock:
                listeners = list(self._listeners)
                if self._stream is stream:
                    self._stream = None
            for listener in listeners:
                _offer(listener, None)

    def _snapshot_listeners(self) -> list[queue.Queue[RuntimeEvent | None]]:
        with self._lock:
            return list(self._listeners)


def _offer(listener: queue.Queue[RuntimeEvent | None], item: RuntimeEvent | None) -> None:
    """Deliver without blocking the pump thread.

    A full queue already holds events that will trigger a refresh, so a new
    event can be dropped. The end-of-stream marker must get through: make
    room for it by discarding the oldest entry.
    """
    while True:
        try:
            listener.put_nowait(item)
            return
        except queue.Full:
            if item is not None:
                log_event("DEBUG", f"Listener queue full, dropping {item.status} event", container_id=item.container_id[:12])
                return
        try:
            listener.get_nowait()
        except queue.Empty:
            pass
