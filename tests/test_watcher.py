import time

import pytest
from docker.errors import DockerException

from drd import db
from drd.docker_ops import RuntimeEvent
from drd.runtime import RouteState
from drd.watcher import EventWatcher, State

from fakes import FakeRuntime, make_container

RECONNECT = 5.0


def _watcher(runtime, published=None, sleeps=None, connect=None):
    published = [] if published is None else published
    sleeps = [] if sleeps is None else sleeps
    return EventWatcher(
        notify=published.append,
        connect=connect or (lambda: runtime),
        fallback_ports=["8080"],
        ping_interval_s=0.01,
        reconnect_interval_s=RECONNECT,
        sleep=sleeps.append,
    )


def _watching(runtime, published, sleeps):
    w = _watcher(runtime, published, sleeps)
    assert w.step() is State.CONNECTED_IDLE
    assert w.step() is State.WATCHING
    return w


def test_connect_failure_backs_off_and_retries():
    rt = FakeRuntime([make_container()])
    attempts = []

    def connect():
        attempts.append(1)
        if len(attempts) == 1:
            raise DockerException("daemon not running")
        return rt

    published, sleeps = [], []
    w = _watcher(rt, published, sleeps, connect=connect)

    assert w.step() is State.DISCONNECTED
    assert sleeps == [RECONNECT]
    assert published == []
    assert w.client is None

    assert w.step() is State.CONNECTED_IDLE
    assert sleeps == [RECONNECT]
    assert list(published[0]) == ["foo.example.com"]


def test_connect_publishes_then_subscribes():
    rt = FakeRuntime([make_container()])
    published, sleeps = [], []
    w = _watching(rt, published, sleeps)

    assert len(published) == 1
    assert len(rt.listeners) == 1
    assert sleeps == []
    assert w.client is rt


def test_enumeration_failure_on_connect_still_subscribes():
    rt = FakeRuntime([make_container()])
    rt.list_error = DockerException("list failed")
    published, sleeps = [], []

    w = _watching(rt, published, sleeps)

    assert published == []
    assert w.state is State.WATCHING


def test_already_subscribed_counts_as_success():
    rt = FakeRuntime([make_container()])
    w = _watcher(rt)
    w.step()
    rt.listeners.append(w._events)

    assert w.step() is State.WATCHING
    assert len(rt.listeners) == 1


def test_subscribe_error_keeps_connection_and_backs_off():
    rt = FakeRuntime([make_container()])
    published, sleeps = [], []
    w = _watcher(rt, published, sleeps)
    w.step()
    rt.subscribe_error = DockerException("events unavailable")

    assert w.step() is State.CONNECTED_IDLE
    assert sleeps == [RECONNECT]
    assert w.client is rt

    rt.subscribe_error = None
    assert w.step() is State.WATCHING
    assert len(published) == 1


def test_ping_failure_while_watching_tears_down_and_backs_off():
    rt = FakeRuntime([make_container()])
    published, sleeps = [], []
    w = _watching(rt, published, sleeps)
    listener = rt.listeners[0]
    rt.ping_error = DockerException("gone")

    assert w.step() is State.DISCONNECTED
    assert sleeps == [RECONNECT]
    assert rt.removed == [listener]
    assert w.client is None


def test_ping_failure_before_subscribing_still_backs_off():
    rt = FakeRuntime([make_container()])
    published, sleeps = [], []
    w = _watcher(rt, published, sleeps)
    w.step()
    rt.ping_error = DockerException("gone")

    assert w.step() is State.DISCONNECTED
    assert sleeps == [RECONNECT]
    assert rt.removed == []
    assert w.client is None


def test_closed_stream_reconnects_without_waiting():
    rt = FakeRuntime([make_container()])
    published, sleeps = [], []
    w = _watching(rt, published, sleeps)
    listener = rt.listeners[0]
    rt.emit(None)

    assert w.step() is State.DISCONNECTED
    assert sleeps == []
    assert rt.removed == [listener]

    # The reconnect attempt itself still backs off when it fails.
    def still_down():
        raise DockerException("still down")

    w._connect = still_down
    assert w.step() is State.DISCONNECTED
    assert sleeps == [RECONNECT]


@pytest.mark.parametrize("status", ["start", "stop", "die"])
def test_lifecycle_event_publishes_new_snapshot(status):
    rt = FakeRuntime([make_container()])
    published, sleeps = [], []
    w = _watching(rt, published, sleeps)

    rt.set_containers(
        [make_container(cid="d" * 16, name="api", env=("VIRTUAL_HOST=api.example.com",), ip="172.17.0.9")]
    )
    rt.emit(RuntimeEvent(status=status, container_id="d" * 16))

    assert w.step() is State.WATCHING
    assert len(published) == 2
    assert list(published[-1]) == ["api.example.com"]
    assert list(published[0]) == ["foo.example.com"]


def test_other_events_are_ignored():
    rt = FakeRuntime([make_container()])
    published, sleeps = [], []
    w = _watching(rt, published, sleeps)
    calls = rt.list_calls

    rt.emit(RuntimeEvent(status="create", container_id="d" * 16))

    assert w.step() is State.WATCHING
    assert len(published) == 1
    assert rt.list_calls == calls


def test_failed_enumeration_keeps_previous_snapshot():
    rt = FakeRuntime([make_container()])
    state = RouteState()
    w = _watcher(rt)
    w.notify = state.publish
    w.step()
    w.step()
    before = state.current()

    rt.list_error = DockerException("list failed")
    rt.emit(RuntimeEvent(status="die", container_id="c0ffee000001"))

    assert w.step() is State.WATCHING
    assert state.generation == 1
    assert state.current() is before
    assert "foo.example.com" in state.current()


def test_idle_timeout_only_loops():
    rt = FakeRuntime([make_container()])
    published, sleeps = [], []
    w = _watching(rt, published, sleeps)
    pings = rt.pings

    assert w.step() is State.WATCHING
    assert rt.pings == pings + 1
    assert len(published) == 1
    assert sleeps == []


def test_new_connection_gets_fresh_listener():
    rt = FakeRuntime([make_container()])
    w = _watching(rt, [], [])
    first = w._events
    rt.emit(None)
    w.step()

    w.step()
    w.step()

    assert w._events is not first
    assert rt.listeners == [w._events]


def test_run_survives_consumer_errors(event_log):
    rt = FakeRuntime([make_container()])

    def broken_consumer(routes):
        raise RuntimeError("consumer bug")

    w = EventWatcher(
        notify=broken_consumer,
        connect=lambda: rt,
        fallback_ports=["8080"],
        ping_interval_s=0.01,
        reconnect_interval_s=RECONNECT,
        sleep=lambda s: w.stop(),
    )
    w.run()

    messages = [e["message"] for e in db.latest_events(20)]
    assert any("consumer bug" in m for m in messages)
    assert "Event watcher stopped" in messages
    assert w.state is State.DISCONNECTED


def test_background_thread_publishes_and_stops():
    rt = FakeRuntime([make_container()])
    state = RouteState()
    w = EventWatcher(
        notify=state.publish,
        connect=lambda: rt,
        fallback_ports=["8080"],
        ping_interval_s=0.01,
        reconnect_interval_s=0.01,
    )
    w.start()
    try:
        deadline = time.time() + 5
        while state.generation < 1 and time.time() < deadline:
            time.sleep(0.01)
        assert "foo.example.com" in state.current()
    finally:
        w.stop()
        w.join(5)

    assert w.stopped
    assert rt.listeners == []


def test_watcher_keeps_running_when_event_log_is_unwritable(monkeypatch):
    from dataclasses import replace

    monkeypatch.setattr(db, "settings", replace(db.settings, db_path="/dev/null/x/drd.db"))
    attempts = []

    def connect():
        attempts.append(1)
        raise DockerException("daemon not running")

    w = EventWatcher(connect=connect, ping_interval_s=0.01, reconnect_interval_s=0.01)
    w.start()
    try:
        deadline = time.time() + 5
        while len(attempts) < 3 and time.time() < deadline:
            time.sleep(0.01)
        assert len(attempts) >= 3
        assert w._thr.is_alive()
    finally:
        w.stop()
        w.join(5)


def test_dropping_a_connection_closes_the_client():
    rt = FakeRuntime([make_container()])
    w = _watching(rt, [], [])
    rt.emit(None)

    assert w.step() is State.DISCONNECTED
    assert rt.closed == 1


def test_steps_without_a_client_fall_back_to_reconnect():
    rt = FakeRuntime([make_container()])
    w = _watcher(rt)
    w.state = State.WATCHING

    assert w.step() is State.DISCONNECTED
    assert rt.pings == 0
