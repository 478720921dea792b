"""minify-watch: keep a folder of minified scripts in sync with its sources.

Watches a source folder for script files, minifies each one through a
pluggable backend and writes the result (plus an optional source map)
into a destination folder, mirroring additions, changes and removals.
"""

__version__ = "1.0.0"
__app_name__ = "minify-watch"

version = __version__

from minify_watch.config import RenameRule, WatchConfig, load_config_file  # noqa: E402
from minify_watch.exceptions import (  # noqa: E402
    ConfigError,
    MinifyError,
    MinifyWatchError,
    ReadError,
    WatchError,
    WriteError,
)
from minify_watch.minifier import Minifier, MinifyResult, get_minifier  # noqa: E402
from minify_watch.watcher import WatcherSession, create_watcher  # noqa: E402

__all__ = [
    "ConfigError",
    "Minifier",
    "MinifyError",
    "MinifyResult",
    "MinifyWatchError",
    "ReadError",
    "RenameRule",
    "WatchConfig",
    "WatchError",
    "WatcherSession",
    "WriteError",
    "create_watcher",
    "get_minifier",
    "load_config_file",
    "version",
]
