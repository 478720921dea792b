"""Configuration for minify-watch sessions.

A session is configured once, from a plain mapping (or a JSON file
holding one), and the resulting :class:`WatchConfig` is frozen for the
lifetime of the session.
"""

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Any, Union

from minify_watch.exceptions import ConfigError
from minify_watch.minifier import Minifier, get_minifier

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS = ("*.js",)


@dataclass(frozen=True)
class RenameRule:
    """Path-part substitution applied to a relative output path.

    The new stem is ``prefix + (basename or stem) + suffix``; ``extname``
    replaces the extension (dot included) and ``append`` is added after
    the whole file name.
    """
    dirname: str | None = None
    basename: str | None = None
    prefix: str = ""
    suffix: str = ""
    extname: str | None = None
    append: str = ""

    def __call__(self, path: PurePosixPath) -> PurePosixPath:
        parent = PurePosixPath(self.dirname) if self.dirname is not None else path.parent
        stem = self.prefix + (self.basename if self.basename is not None else path.stem) + self.suffix
        ext = self.extname if self.extname is not None else path.suffix
        return parent / (stem + ext + self.append)


@dataclass(frozen=True)
class PatternRule:
    """Token-based rename pattern, e.g. ``"{name}.min.{ext}"``."""
    pattern: str

    def __call__(self, path: PurePosixPath) -> PurePosixPath:
        return path.parent / self.pattern.format(
            name=path.stem,
            ext=path.suffix.lstrip("."),
        )


RenameFunc = Callable[[PurePosixPath], PurePosixPath]

DEFAULT_RENAME = RenameRule(suffix=".min")
DEFAULT_SOURCE_MAP_RENAME = RenameRule(append=".map")


def rename_rule(value: Union[RenameFunc, Mapping[str, Any], str]) -> RenameFunc:
    """Build a rename callable from a rule, a mapping or a pattern string."""
    if isinstance(value, (RenameRule, PatternRule)):
        return value
    if isinstance(value, str):
        if not value.strip():
            raise ConfigError("Rename pattern must not be empty")
        try:
            PatternRule(value)(PurePosixPath("script.js"))
        except (KeyError, IndexError, ValueError, AttributeError) as exc:
            raise ConfigError(f"Invalid rename pattern {value!r}: {exc}") from exc
        return PatternRule(value)
    if isinstance(value, Mapping):
        allowed = {f.name for f in fields(RenameRule)}
        unknown = sorted(set(value) - allowed)
        if unknown:
            raise ConfigError(f"Unknown rename key(s): {', '.join(unknown)}")
        for key, item in value.items():
            if item is not None and not isinstance(item, str):
                raise ConfigError(f"Rename key '{key}' must be a string")
        return RenameRule(**{k: v for k, v in value.items() if v is not None})
    if callable(value):
        return value
    raise ConfigError(f"Unsupported rename rule: {value!r}")


def _source_map_rule(value: Any) -> RenameFunc | None:
    if value is None or value is False:
        return None
    if value is True:
        return DEFAULT_SOURCE_MAP_RENAME
    return rename_rule(value)


def _check_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"Option '{name}' must be true or false, got {value!r}")
    return value


def _check_patterns(name: str, value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    try:
        patterns = tuple(p.strip() for p in value if p.strip())
    except (TypeError, AttributeError):
        raise ConfigError(f"Option '{name}' must be a list of glob patterns") from None
    return patterns


@dataclass(frozen=True)
class WatchConfig:
    """Validated, read-only session configuration."""
    persistent: bool = True
    delete: bool = True
    rename: RenameFunc = DEFAULT_RENAME
    out_source_map: RenameFunc | None = None
    minifier: Minifier = field(default_factory=get_minifier)
    patterns: tuple[str, ...] = DEFAULT_PATTERNS
    ignore_patterns: tuple[str, ...] = ()
    recursive: bool = True
    settle_seconds: float = 0.1
    encoding: str = "utf-8"
    minifier_options: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @property
    def source_maps(self) -> bool:
        return self.out_source_map is not None

    @classmethod
    def from_options(cls, options: Union["WatchConfig", Mapping[str, Any], None] = None) -> "WatchConfig":
        """Validate an options mapping and return a frozen config."""
        if isinstance(options, WatchConfig):
            return options
        opts = dict(options or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(opts) - known)
        if unknown:
            raise ConfigError(f"Unknown option(s): {', '.join(unknown)}")

        kwargs: dict[str, Any] = {}
        for name in ("persistent", "delete", "recursive"):
            if name in opts:
                kwargs[name] = _check_bool(name, opts[name])
        if "rename" in opts:
            kwargs["rename"] = rename_rule(opts["rename"])
        kwargs["out_source_map"] = _source_map_rule(opts.get("out_source_map"))
        for name in ("patterns", "ignore_patterns"):
            if name in opts:
                kwargs[name] = _check_patterns(name, opts[name])
        if "patterns" in kwargs and not kwargs["patterns"]:
            raise ConfigError("Option 'patterns' must contain at least one glob pattern")
        if "settle_seconds" in opts:
            try:
                settle = float(opts["settle_seconds"])
            except (TypeError, ValueError):
                raise ConfigError("Option 'settle_seconds' must be a number") from None
            if settle < 0:
                raise ConfigError("Option 'settle_seconds' must not be negative")
            kwargs["settle_seconds"] = settle
        if "encoding" in opts:
            encoding = opts["encoding"]
            try:
                "".encode(encoding)
            except (LookupError, TypeError):
                raise ConfigError(f"Unknown encoding {encoding!r}") from None
            kwargs["encoding"] = encoding

        minifier_options = opts.get("minifier_options") or {}
        if not isinstance(minifier_options, Mapping):
            raise ConfigError("Option 'minifier_options' must be a mapping")
        minifier_options = dict(minifier_options)
        kwargs["minifier"] = get_minifier(opts.get("minifier", "esprima"), minifier_options)
        kwargs["minifier_options"] = MappingProxyType(minifier_options)
        if kwargs["out_source_map"] is not None and not kwargs["minifier"].supports_source_maps:
            raise ConfigError(
                f"Minifier '{kwargs['minifier'].name}' does not support source maps"
            )
        return cls(**kwargs)


def load_config_file(path: Union[str, Path]) -> dict[str, Any]:
    """Read watcher options from a JSON file."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    logger.info("Configuration loaded from %s", path)
    return data
