from __future__ import annotations

import queue
from collections.abc import Callable, Sequence
from enum import Enum
from threading import Event, Thread

from .db import log_event
from .docker_ops import AlreadySubscribed, DockerRuntime, RuntimeClient, RuntimeEvent
from .enumerator import enumerate_routes
from .routes import Routes
from .settings import settings

LIFECYCLE_STATUSES = frozenset({"start", "stop", "die"})

RoutesHandler = Callable[[Routes], None]


class State(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED_IDLE = "connected_idle"
    WATCHING = "watching"


class EventWatcher:
    """Keeps a routing table in sync with the docker daemon.

    Each call to step() performs one transition:

      DISCONNECTED   -> connect, enumerate, publish -> CONNECTED_IDLE
                        (connect failure: backoff, stay)
      CONNECTED_IDLE -> ping, subscribe -> WATCHING
                        (subscribe failure: backoff, stay)
      WATCHING       -> ping, wait for an event or the idle timeout
                        start/stop/die: enumerate and publish
                        end of stream: drop the client -> DISCONNECTED

    A failed ping in either connected state drops the client and always backs
    off before reconnecting. Snapshots are handed to notify on the control
    thread, one at a time, in the order they were built.
    """

    def __init__(
        self,
        notify: RoutesHandler | None = None,
        connect: Callable[[], RuntimeClient] | None = None,
        fallback_ports: Sequence[str] | None = None,
        ping_interval_s: float | None = None,
        reconnect_interval_s: float | None = None,
        queue_size: int | None = None,
        sleep: Callable[[float], object] | None = None,
    ):
        self.notify = notify
        self._connect = connect or DockerRuntime.from_env
        self.fallback_ports = tuple(fallback_ports) if fallback_ports is not None else settings.ports
        self.ping_interval_s = settings.ping_interval_s if ping_interval_s is None else ping_interval_s
        self.reconnect_interval_s = (
            settings.reconnect_interval_s if reconnect_interval_s is None else reconnect_interval_s
        )
        self.queue_size = max(1, queue_size or settings.event_queue_size)

        self._stop = Event()
        # Waiting on the stop event lets stop() cut a backoff short.
        self._sleep = sleep or self._stop.wait
        self._thr: Thread | None = None

        self.state = State.DISCONNECTED
        self.client: RuntimeClient | None = None
        self._events: queue.Queue[RuntimeEvent | None] | None = None
        self._subscribed = False

        self._transitions: dict[State, Callable[[], State]] = {
            State.DISCONNECTED: self._on_disconnected,
            State.CONNECTED_IDLE: self._on_connected_idle,
            State.WATCHING: self._on_watching,
        }

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self.run, name="drd-watcher", daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thr:
            self._thr.join(timeout)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run(self) -> None:
        log_event("INFO", "Event watcher started")
        while not self._stop.is_set():
            try:
                self.step()
            except Exception as e:
                # A failing consumer must not end discovery.
                log_event("ERROR", f"Event watcher step failed: {type(e).__name__}: {e}")
                self._sleep(self.reconnect_interval_s)
        self._drop_client()
        self.state = State.DISCONNECTED
        log_event("INFO", "Event watcher stopped")

    def step(self) -> State:
        self.state = self._transitions[self.state]()
        return self.state

    # -- publication ---------------------------------------------------------

    def refresh(self) -> Routes | None:
        """Run one enumeration pass and publish it; None if it failed."""
        if self.client is None:
            return None
        try:
            routes = enumerate_routes(self.client, self.fallback_ports)
        except Exception as e:
            log_event("ERROR", f"Error enumerating routes: {type(e).__name__}: {e}")
            return None
        log_event("DEBUG", f"Publishing {len(routes)} route(s)")
        if self.notify is not None:
            self.notify(routes)
        return routes

    # -- transitions ---------------------------------------------------------

    def _on_disconnected(self) -> State:
        try:
            client = self._connect()
        except Exception as e:
            log_event("ERROR", f"Unable to connect to docker daemon: {type(e).__name__}: {e}")
            self._sleep(self.reconnect_interval_s)
            return State.DISCONNECTED

        self._drop_client()
        self.client = client
        self._events = queue.Queue(maxsize=self.queue_size)
        self._subscribed = False
        log_event("INFO", "Connected to docker daemon")
        # A failed pass is logged by refresh(); subscribe anyway.
        self.refresh()
        return State.CONNECTED_IDLE

    def _on_connected_idle(self) -> State:
        client, events = self.client, self._events
        if client is None or events is None:
            return State.DISCONNECTED
        if not self._ping(client):
            return State.DISCONNECTED

        try:
            client.add_listener(events)
        except AlreadySubscribed:
            pass
        except Exception as e:
            log_event("ERROR", f"Error registering docker event listener: {type(e).__name__}: {e}")
            self._sleep(self.reconnect_interval_s)
            return State.CONNECTED_IDLE

        self._subscribed = True
        log_event("INFO", "Watching docker events")
        return State.WATCHING

    def _on_watching(self) -> State:
        client, events = self.client, self._events
        if client is None or events is None:
            return State.DISCONNECTED
        if not self._ping(client):
            return State.DISCONNECTED

        try:
            event = events.get(timeout=self.ping_interval_s)
        except queue.Empty:
            # Idle timeout: loop back to the liveness check.
            return State.WATCHING

        if event is None:
            log_event("WARN", "Docker event stream closed, reconnecting")
            self._drop_client()
            return State.DISCONNECTED

        if event.status in LIFECYCLE_STATUSES:
            log_event("DEBUG", f"Received event {event.status}", container_id=event.container_id[:12])
            self.refresh()
        return State.WATCHING

    # -- helpers -------------------------------------------------------------

    def _ping(self, client: RuntimeClient) -> bool:
        try:
            client.ping()
            return True
        except Exception as e:
            log_event("ERROR", f"Unable to ping docker daemon: {type(e).__name__}: {e}")
            self._drop_client()
            self._sleep(self.reconnect_interval_s)
            return False

    def _drop_client(self) -> None:
        client, events = self.client, self._events
        if client is not None and events is not None and self._subscribed:
            try:
                client.remove_listener(events)
            except Exception as e:
                log_event("DEBUG", f"Error removing docker event listener: {type(e).__name__}: {e}")
        if client is not None:
            try:
                client.close()
            except Exception as e:
                log_event("DEBUG", f"Error closing docker client: {type(e).__name__}: {e}")
        self.client = None
        self._events = None
        self._subscribed = False
