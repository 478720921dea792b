"""Exceptions raised by minify-watch."""


class MinifyWatchError(Exception):
    """Base exception for all minify-watch errors."""
    pass


class ConfigError(MinifyWatchError):
    """Invalid watcher or minifier configuration."""
    pass


class BuildError(MinifyWatchError):
    """A single source file could not be built.

    Build errors are scoped to one file and reported as a failed build;
    they never stop the session.
    """

    def __init__(self, message: str, relative_path: str = ""):
        super().__init__(message)
        self.relative_path = relative_path


class ReadError(BuildError):
    """The source file could not be read or decoded."""
    pass


class MinifyError(BuildError):
    """The minifier rejected the source (usually a syntax error)."""
    pass


class WriteError(MinifyWatchError):
    """Minified output or its source map could not be persisted."""

    def __init__(self, message: str, path=None):
        super().__init__(message)
        self.path = path


class WatchError(MinifyWatchError):
    """The directory watch failed; the session cannot continue."""
    pass
