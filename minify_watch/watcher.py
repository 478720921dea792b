"""Directory watcher for minify-watch.

Uses the watchdog library to monitor a source tree, coalesces bursts of
notifications per file, and routes them through the build pipeline on a
single dispatcher thread. Outcomes are published to callbacks registered
on the :class:`WatcherSession`.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePath
from typing import Any

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer

from minify_watch.builder import BuildPipeline, BuildStats
from minify_watch.config import WatchConfig
from minify_watch.exceptions import BuildError, WatchError, WriteError

logger = logging.getLogger(__name__)

_JOIN_TIMEOUT = 5.0


class ChangeKind(Enum):
    ADD = "add"
    CHANGE = "change"
    REMOVE = "remove"


@dataclass(frozen=True)
class FileChange:
    """A settled notification for one relative path."""
    kind: ChangeKind
    relative_path: str


class SessionEvent(Enum):
    READY = "ready"
    SUCCESS = "success"
    FAILURE = "failure"
    DELETE = "delete"
    ERROR = "error"


class _SettleTracker:
    """Holds notifications until their path has been quiet for a given time."""

    def __init__(self, settle_seconds: float):
        self._settle_seconds = settle_seconds
        # relative path -> (kind, last notification time), oldest first
        self._pending = {}
        self._lock = threading.Lock()

    def record(self, change: FileChange) -> None:
        with self._lock:
            previous = self._pending.pop(change.relative_path, None)
            kind = change.kind
            if previous is not None and previous[0] is ChangeKind.ADD and kind is ChangeKind.CHANGE:
                kind = ChangeKind.ADD
            self._pending[change.relative_path] = (kind, time.monotonic())
        logger.debug("Pending %s %s", kind.value, change.relative_path)

    def take_settled(self) -> list[FileChange]:
        """Remove and return every change whose quiet period has elapsed."""
        now = time.monotonic()
        with self._lock:
            settled = [
                FileChange(kind, rel)
                for rel, (kind, seen) in self._pending.items()
                if now - seen >= self._settle_seconds
            ]
            for change in settled:
                del self._pending[change.relative_path]
        return settled

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)


class ScriptEventHandler(FileSystemEventHandler):
    """Watchdog handler that turns file events into :class:`FileChange`s."""

    def __init__(
        self,
        root: Path,
        on_change: Callable[[FileChange], None],
        patterns: tuple[str, ...],
        ignore_patterns: tuple[str, ...] = (),
        recursive: bool = True,
        exclude_dir: Path | None = None,
    ):
        super().__init__()
        self._root = root
        self._on_change = on_change
        self._patterns = [p.lower() for p in patterns]
        self._ignore_patterns = [p.lower() for p in ignore_patterns]
        self._recursive = recursive
        self._exclude_dir = exclude_dir
        self.root_deleted = False

    def relative_path(self, path: str) -> str | None:
        """Return the tracked relative path for *path*, or None to ignore it."""
        absolute = Path(os.path.abspath(path))
        if self._exclude_dir is not None and absolute.is_relative_to(self._exclude_dir):
            return None
        try:
            rel = PurePath(os.path.relpath(absolute, self._root))
        except ValueError:
            return None
        if not rel.parts or rel.parts[0] == os.pardir:
            return None
        if not self._recursive and len(rel.parts) > 1:
            return None
        name = rel.name.lower()
        if not any(fnmatch.fnmatch(name, p) for p in self._patterns):
            return None
        for pattern in self._ignore_patterns:
            if fnmatch.fnmatch(name, pattern):
                logger.debug("Ignoring %s (matches %s)", rel, pattern)
                return None
        return rel.as_posix()

    def _notify(self, kind: ChangeKind, path: str) -> None:
        rel = self.relative_path(path)
        if rel is not None:
            self._on_change(FileChange(kind, rel))

    def on_created(self, event: FileSystemEvent) -> None:  # type: ignore[override]
        if not event.is_directory:
            self._notify(ChangeKind.ADD, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:  # type: ignore[override]
        if not event.is_directory:
            self._notify(ChangeKind.CHANGE, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:  # type: ignore[override]
        # inotify may report the root itself as a file deletion
        if Path(os.path.abspath(event.src_path)) == self._root:
            logger.error("Watched folder was removed: %s", self._root)
            self.root_deleted = True
            return
        if event.is_directory:
            return
        self._notify(ChangeKind.REMOVE, event.src_path)

    def on_moved(self, event: FileSystemMovedEvent) -> None:  # type: ignore[override]
        if event.is_directory:
            return
        self._notify(ChangeKind.REMOVE, event.src_path)
        self._notify(ChangeKind.ADD, event.dest_path)


class WatcherSession:
    """A live source -> destination minification session.

    Usage:
        session = create_watcher("src", "dist", {"out_source_map": True})
        session.on_success(lambda path: print("built", path))
        session.wait_ready()
        ...
        session.close()

    Callbacks run on the session's dispatcher thread. ``ready`` fires once
    after the initial scan; ``success``/``failure`` only report builds
    triggered after that; ``delete`` only fires when deletion mirroring is
    on; ``error`` carries WriteError or WatchError instances.
    """

    def __init__(self, src_dir, dest_dir, config: WatchConfig | None = None):
        self._src_dir = src_dir
        self._dest_dir = dest_dir
        self._config = config if config is not None else WatchConfig()
        self._watch_root = Path(src_dir).resolve()
        self._dest_root = Path(dest_dir).resolve()
        self.stats = BuildStats()
        self._pipeline = BuildPipeline(src_dir, dest_dir, self._config, self.stats)
        self._tracker = _SettleTracker(self._config.settle_seconds)
        exclude = self._dest_root if self._dest_root.is_relative_to(self._watch_root) else None
        self._handler = ScriptEventHandler(
            self._watch_root,
            self._tracker.record,
            self._config.patterns,
            self._config.ignore_patterns,
            recursive=self._config.recursive,
            exclude_dir=exclude,
        )
        self._listeners: dict[SessionEvent, list[Callable[..., Any]]] = {
            event: [] for event in SessionEvent
        }
        self._emit_lock = threading.RLock()
        self._ready = False
        self._ready_event = threading.Event()
        self._closed = False
        self._failed: WatchError | None = None
        self._stop = threading.Event()
        self._observer: Any | None = None
        self._thread: threading.Thread | None = None
        self._poll_interval = max(0.01, min(0.05, self._config.settle_seconds / 2))

    # ---- properties ----

    @property
    def src_dir(self):
        return self._src_dir

    @property
    def dest_dir(self):
        return self._dest_dir

    @property
    def config(self) -> WatchConfig:
        return self._config

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def failed(self) -> WatchError | None:
        """The fatal watch error that ended the session, if any."""
        return self._failed

    @property
    def pending_count(self) -> int:
        """Return the number of notifications waiting to settle."""
        return self._tracker.pending_count

    # ---- callback registration ----

    def on_ready(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call *callback* once the initial scan is built (immediately if it already is)."""
        with self._emit_lock:
            if self._ready:
                if not self._closed:
                    self._invoke(SessionEvent.READY, callback)
            else:
                self._listeners[SessionEvent.READY].append(callback)
        return callback

    def on_success(self, callback: Callable[[str], None]) -> Callable[[str], None]:
        self._listeners[SessionEvent.SUCCESS].append(callback)
        return callback

    def on_failure(self, callback: Callable[[str], None]) -> Callable[[str], None]:
        self._listeners[SessionEvent.FAILURE].append(callback)
        return callback

    def on_delete(self, callback: Callable[[str], None]) -> Callable[[str], None]:
        self._listeners[SessionEvent.DELETE].append(callback)
        return callback

    def on_error(self, callback: Callable[[Exception], None]) -> Callable[[Exception], None]:
        self._listeners[SessionEvent.ERROR].append(callback)
        return callback

    def wait_ready(self, timeout: float | None = None) -> bool:
        """Block until the session is ready; False on timeout or early close."""
        return self._ready_event.wait(timeout) and self._ready

    # ---- lifecycle ----

    def start(self) -> "WatcherSession":
        """Start watching and kick off the initial build on the dispatcher thread."""
        if self._thread is not None or self._closed:
            raise WatchError("Session has already been started")
        if not self._watch_root.is_dir():
            logger.error("Source folder does not exist: %s", self._src_dir)
            raise WatchError(f"Source folder does not exist: {self._src_dir}")
        try:
            self._dest_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WriteError(f"Cannot create destination folder {self._dest_dir}: {exc}", self._dest_dir) from exc

        observer = Observer()
        try:
            observer.schedule(self._handler, str(self._watch_root), recursive=self._config.recursive)
            observer.start()
        except OSError as exc:
            logger.error("Cannot watch %s: %s", self._src_dir, exc)
            raise WatchError(f"Cannot watch {self._src_dir}: {exc}") from exc
        self._observer = observer

        self._thread = threading.Thread(
            target=self._run,
            daemon=not self._config.persistent,
            name=f"MinifyWatch-{self._watch_root.name}",
        )
        self._thread.start()
        logger.info(
            "Watching '%s' -> '%s' (minifier=%s, recursive=%s, delete=%s)",
            self._src_dir,
            self._dest_dir,
            self._config.minifier.name,
            self._config.recursive,
            self._config.delete,
        )
        return self

    def close(self) -> None:
        """Stop watching; no callback runs once this returns. Idempotent."""
        with self._emit_lock:
            if self._closed:
                return
            self._closed = True
        self._stop.set()
        self._ready_event.set()
        self._stop_observer()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=_JOIN_TIMEOUT)
        logger.info("Watcher stopped (%s).", self.stats.summary())

    def __enter__(self) -> "WatcherSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ---- dispatcher ----

    def _run(self) -> None:
        try:
            for rel in self._scan():
                if self._stop.is_set():
                    return
                self._build(rel, report=False)
            self._set_ready()
            while not self._stop.is_set():
                for change in self._tracker.take_settled():
                    if self._stop.is_set():
                        return
                    self._dispatch(change)
                self._check_watch()
                self._stop.wait(timeout=self._poll_interval)
        except WatchError as exc:
            self._fail(exc)
        except Exception as exc:
            logger.exception("Dispatcher crashed for %s", self._src_dir)
            self._fail(WatchError(f"Dispatcher crashed: {exc}"))

    def _scan(self) -> list[str]:
        """List the relative paths of every matching file already present."""
        candidates = self._watch_root.rglob("*") if self._config.recursive else self._watch_root.glob("*")
        found = set()
        for path in candidates:
            if not path.is_file():
                continue
            rel = self._handler.relative_path(str(path))
            if rel is not None:
                found.add(rel)
        logger.info("Initial scan found %d file(s) in %s", len(found), self._src_dir)
        return sorted(found)

    def _dispatch(self, change: FileChange) -> None:
        if change.kind is ChangeKind.REMOVE:
            if not self._config.delete:
                logger.debug("Keeping outputs of removed %s (delete disabled)", change.relative_path)
                return
            try:
                self._pipeline.remove(change.relative_path)
            except WriteError as exc:
                self._error(exc)
                return
            except BuildError as exc:
                logger.warning("Cannot remove outputs of %s: %s", change.relative_path, exc)
                return
            self._emit(SessionEvent.DELETE, change.relative_path)
        else:
            self._build(change.relative_path, report=True)

    def _build(self, relative_path: str, report: bool) -> None:
        try:
            rec = self._pipeline.build(relative_path)
        except WriteError as exc:
            self._error(exc)
            return
        if report:
            event = SessionEvent.SUCCESS if rec.success else SessionEvent.FAILURE
            self._emit(event, relative_path)

    def _check_watch(self) -> None:
        if self._handler.root_deleted or not self._watch_root.is_dir():
            raise WatchError(f"Watched folder was removed: {self._src_dir}")
        observer = self._observer
        if observer is not None and not observer.is_alive() and not self._stop.is_set():
            raise WatchError(f"Watch on {self._src_dir} stopped unexpectedly")

    def _stop_observer(self) -> None:
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=_JOIN_TIMEOUT)

    def _fail(self, exc: WatchError) -> None:
        logger.error("Watch failed: %s", exc)
        self._failed = exc
        self._error(exc)
        self._stop.set()
        self._ready_event.set()
        self._stop_observer()

    # ---- emission ----

    def _set_ready(self) -> None:
        with self._emit_lock:
            if self._closed:
                return
            self._ready = True
            self._ready_event.set()
            logger.info("Ready (%s).", self.stats.summary())
            for callback in self._listeners[SessionEvent.READY]:
                self._invoke(SessionEvent.READY, callback)
            self._listeners[SessionEvent.READY].clear()

    def _error(self, exc: Exception) -> None:
        self._emit(SessionEvent.ERROR, exc)

    def _emit(self, event: SessionEvent, *args) -> None:
        with self._emit_lock:
            if self._closed:
                return
            for callback in list(self._listeners[event]):
                self._invoke(event, callback, *args)

    def _invoke(self, event: SessionEvent, callback: Callable[..., Any], *args) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception("Error in %s callback", event.value)


def create_watcher(
    src_dir,
    dest_dir,
    options: WatchConfig | Mapping[str, Any] | None = None,
    *,
    on_ready: Callable[[], None] | None = None,
    on_success: Callable[[str], None] | None = None,
    on_failure: Callable[[str], None] | None = None,
    on_delete: Callable[[str], None] | None = None,
    on_error: Callable[[Exception], None] | None = None,
) -> WatcherSession:
    """Validate *options*, start a session and return it.

    Callbacks passed here are registered before the session starts, so
    none of its events can be missed.
    """
    session = WatcherSession(src_dir, dest_dir, WatchConfig.from_options(options))
    for register, callback in (
        (session.on_ready, on_ready),
        (session.on_success, on_success),
        (session.on_failure, on_failure),
        (session.on_delete, on_delete),
        (session.on_error, on_error),
    ):
        if callback is not None:
            register(callback)
    return session.start()
