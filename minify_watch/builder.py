"""
Build pipeline for minify-watch.

Turns one source file (named by its path relative to the source root)
into its minified destination file and, when enabled, a companion
source map. A failed build never touches existing output, and output
files are replaced whole: content goes to a temporary sibling which is
then renamed over the destination.
"""

import json
import logging
import os
import stat
import tempfile
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from minify_watch.config import WatchConfig
from minify_watch.exceptions import BuildError, MinifyError, ReadError, WriteError

logger = logging.getLogger(__name__)

_HISTORY_LIMIT = 1000


@dataclass(frozen=True)
class FileTask:
    """Source and output locations for one relative path."""
    relative_path: str
    source_path: Path
    destination_path: Path
    source_map_path: Path | None = None


@dataclass
class BuildRecord:
    """Record of a single build attempt."""
    relative_path: str
    destination: str = ""
    started: float = 0.0
    finished: float = 0.0
    success: bool = False
    error: str = ""

    @property
    def duration(self) -> float:
        if self.finished and self.started:
            return self.finished - self.started
        return 0.0


@dataclass
class BuildStats:
    """Aggregated build statistics for a session."""
    total_built: int = 0
    total_failed: int = 0
    total_deleted: int = 0
    total_write_errors: int = 0
    last_built_file: str = ""
    history: list[BuildRecord] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, rec: BuildRecord) -> None:
        with self._lock:
            self.history.append(rec)
            if rec.success:
                self.total_built += 1
                self.last_built_file = rec.destination
            else:
                self.total_failed += 1
            if len(self.history) > _HISTORY_LIMIT:
                self.history = self.history[-_HISTORY_LIMIT:]

    def record_delete(self) -> None:
        with self._lock:
            self.total_deleted += 1

    def record_write_error(self) -> None:
        with self._lock:
            self.total_write_errors += 1

    def summary(self) -> str:
        with self._lock:
            return (
                f"{self.total_built} built, {self.total_failed} failed, "
                f"{self.total_deleted} deleted, {self.total_write_errors} write errors"
            )


def _relative_url(target: Path, start: Path) -> str:
    return PurePosixPath(*Path(os.path.relpath(target, start)).parts).as_posix()


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


_UMASK = _current_umask()


def _output_mode(path: Path) -> int:
    """Mode for a new version of *path*: keep the old one, else what open() would give."""
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        return 0o666 & ~_UMASK


def _atomic_write(path: Path, text: str, encoding: str) -> None:
    """Write *text* to *path* so readers see either old or new content."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as fh:
            fh.write(text)
        # mkstemp creates 0600 files
        os.chmod(tmp_name, _output_mode(path))
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class BuildPipeline:
    """
    Minifies files from the source tree into the destination tree.

    Parameters
    ----------
    source_root : str or Path
        Root of the watched source tree.
    destination_root : str or Path
        Root of the output tree; created on demand.
    config : WatchConfig
        Frozen session configuration (rename rules, minifier, delete flag).
    stats : BuildStats, optional
        Shared statistics object to record outcomes in.
    """

    def __init__(self, source_root, destination_root, config: WatchConfig, stats: BuildStats | None = None):
        self.source_root = Path(source_root)
        self.destination_root = Path(destination_root)
        self.config = config
        self.stats = stats if stats is not None else BuildStats()

    def task_for(self, relative_path: str) -> FileTask:
        """Derive source, destination and source-map paths for *relative_path*."""
        rel = PurePosixPath(relative_path)
        out_rel = self.config.rename(rel)
        map_path = None
        if self.config.out_source_map is not None:
            map_path = self.destination_root.joinpath(*self.config.out_source_map(out_rel).parts)
        return FileTask(
            relative_path=rel.as_posix(),
            source_path=self.source_root.joinpath(*rel.parts),
            destination_path=self.destination_root.joinpath(*out_rel.parts),
            source_map_path=map_path,
        )

    def build(self, relative_path: str) -> BuildRecord:
        """
        Minify one file.

        Read and minification problems, and rename rules that cannot map
        the path, produce a failed record and leave the destination
        untouched. Raises WriteError if output cannot be written. The
        minified file is written before its source map, so a WriteError
        on the map can leave new code next to the previous map.
        """
        rec = BuildRecord(relative_path=relative_path)
        rec.started = time.time()
        try:
            task = self._task(relative_path)
            rec.relative_path = task.relative_path
            rec.destination = str(task.destination_path)
            source = self._read(task)
            result = self._minify(task, source)
        except BuildError as exc:
            rec.error = str(exc)
            rec.finished = time.time()
            logger.warning("Build failed for %s: %s", relative_path, exc)
            self.stats.record(rec)
            return rec

        code = result.code
        source_map = None
        try:
            task.destination_path.parent.mkdir(parents=True, exist_ok=True)
            if task.source_map_path is not None:
                if result.source_map is None:
                    raise WriteError(
                        f"Minifier '{self.config.minifier.name}' returned no source map",
                        task.source_map_path,
                    )
                source_map = dict(result.source_map)
                source_map["file"] = task.destination_path.name
                url = _relative_url(task.source_map_path, task.destination_path.parent)
                code = f"{code}\n//# sourceMappingURL={url}"
            _atomic_write(task.destination_path, code, self.config.encoding)
            if source_map is not None:
                task.source_map_path.parent.mkdir(parents=True, exist_ok=True)
                _atomic_write(task.source_map_path, json.dumps(source_map), self.config.encoding)
        except OSError as exc:
            self.stats.record_write_error()
            logger.error("Cannot write output for %s: %s", task.relative_path, exc)
            raise WriteError(
                f"Cannot write output for {task.relative_path}: {exc}",
                exc.filename or task.destination_path,
            ) from exc
        except WriteError:
            self.stats.record_write_error()
            raise

        rec.success = True
        rec.finished = time.time()
        self.stats.record(rec)
        logger.info(
            "Minified %s -> %s (%d -> %d chars) in %.3fs",
            task.relative_path, task.destination_path, len(source), len(code), rec.duration,
        )
        return rec

    def remove(self, relative_path: str) -> list[Path]:
        """Delete the outputs of *relative_path*; a no-op when delete is off.

        Raises BuildError if the rename rules cannot map the path.
        """
        if not self.config.delete:
            return []
        task = self._task(relative_path)
        removed = []
        for path in (task.destination_path, task.source_map_path):
            if path is None:
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise WriteError(f"Cannot delete {path}: {exc}", path) from exc
            removed.append(path)
            logger.info("Deleted %s", path)
        self.stats.record_delete()
        return removed

    # ---- steps ----

    def _task(self, relative_path: str) -> FileTask:
        try:
            return self.task_for(relative_path)
        except BuildError:
            raise
        except Exception as exc:
            raise BuildError(f"Cannot derive output path for {relative_path}: {exc}", relative_path) from exc

    def _read(self, task: FileTask) -> str:
        try:
            return task.source_path.read_text(encoding=self.config.encoding)
        except (OSError, UnicodeDecodeError) as exc:
            raise ReadError(f"Cannot read {task.source_path}: {exc}", task.relative_path) from exc

    def _minify(self, task: FileTask, source: str):
        minifier = self.config.minifier
        try:
            return minifier.minify(
                source,
                source_name=task.relative_path,
                output_name=task.destination_path.name,
                source_map=self.config.source_maps,
            )
        except MinifyError:
            raise
        except Exception as exc:
            logger.exception("Minifier '%s' crashed on %s", minifier.name, task.relative_path)
            raise MinifyError(f"Minifier error: {exc}", task.relative_path) from exc
