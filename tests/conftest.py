"""Shared fixtures for minify-watch tests."""

import queue

import pytest

from minify_watch.watcher import create_watcher

EXAMPLE_INPUT = "var x = 10"
EXAMPLE_OUTPUT = "var x=10"

EVENT_TIMEOUT = 10.0


class EventLog:
    """Collects session events on a queue so tests can wait for them."""

    def __init__(self):
        self.events = queue.Queue()

    def callbacks(self) -> dict:
        return {
            "on_ready": lambda: self.events.put(("ready", None)),
            "on_success": lambda path: self.events.put(("success", path)),
            "on_failure": lambda path: self.events.put(("failure", path)),
            "on_delete": lambda path: self.events.put(("delete", path)),
            "on_error": lambda exc: self.events.put(("error", exc)),
        }

    def next(self, timeout: float = EVENT_TIMEOUT):
        return self.events.get(timeout=timeout)

    def wait_for(self, kind: str, timeout: float = EVENT_TIMEOUT):
        """Return the payload of the next *kind* event, collecting the others."""
        skipped = []
        while True:
            event, payload = self.events.get(timeout=timeout)
            if event == kind:
                return payload, skipped
            skipped.append((event, payload))

    def drain(self) -> list:
        drained = []
        while True:
            try:
                drained.append(self.events.get_nowait())
            except queue.Empty:
                return drained


@pytest.fixture
def src_dir(tmp_path):
    path = tmp_path / "src"
    path.mkdir()
    return path


@pytest.fixture
def dest_dir(tmp_path):
    path = tmp_path / "dest"
    path.mkdir()
    return path


@pytest.fixture
def make_watcher():
    """Create sessions that are closed automatically after the test."""
    created = []

    def factory(src, dest, options=None, log=None):
        opts = {"persistent": False}
        opts.update(options or {})
        callbacks = log.callbacks() if log is not None else {}
        session = create_watcher(src, dest, opts, **callbacks)
        created.append(session)
        return session

    yield factory
    for session in created:
        session.close()
