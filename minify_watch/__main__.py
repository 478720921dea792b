"""Command-line entry point for minify-watch.

Usage:
    python -m minify_watch SRC DEST            Watch SRC until Ctrl-C
    python -m minify_watch SRC DEST --once     Build SRC once and exit
"""

import argparse
import logging
import logging.handlers
import signal
import sys
import threading

from minify_watch import __app_name__, __version__
from minify_watch.config import load_config_file
from minify_watch.exceptions import MinifyWatchError
from minify_watch.minifier import MINIFIERS
from minify_watch.watcher import create_watcher

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=__app_name__,
        description="Watch a folder of scripts and keep minified copies in sync.",
    )
    parser.add_argument("src", help="source folder to watch")
    parser.add_argument("dest", help="destination folder for minified output")
    parser.add_argument("--config", metavar="FILE", help="JSON file with watcher options")
    parser.add_argument("--no-delete", action="store_true",
                        help="keep outputs when their source is removed")
    parser.add_argument("--source-map", action="store_true",
                        help="write a .map file next to each minified file")
    parser.add_argument("--minifier", choices=sorted(MINIFIERS), help="minification backend")
    parser.add_argument("--prefix", help="prefix for output file names")
    parser.add_argument("--suffix", help="suffix inserted before the extension (default .min)")
    parser.add_argument("--pattern", action="append", metavar="GLOB",
                        help="file name pattern to watch (repeatable, default *.js)")
    parser.add_argument("--settle", type=float, metavar="SECONDS",
                        help="quiet period before a changed file is rebuilt")
    parser.add_argument("--once", action="store_true",
                        help="build existing files, then exit")
    parser.add_argument("--log-level", default="INFO", help="logging level (default INFO)")
    parser.add_argument("--log-file", help="also log to this file (rotated)")
    parser.add_argument("--max-log-size-mb", type=int, default=10,
                        help="rotate the log file at this size")
    parser.add_argument("--log-backup-count", type=int, default=3,
                        help="number of rotated log files to keep")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _setup_logging(args: argparse.Namespace) -> None:
    """Configure stderr logging and an optional rotating file log."""
    level = getattr(logging, args.log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    fmt = logging.Formatter(_LOG_FORMAT)

    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root_logger.addHandler(sh)

    if args.log_file:
        fh = logging.handlers.RotatingFileHandler(
            args.log_file,
            maxBytes=max(1, args.max_log_size_mb) * 1024 * 1024,
            backupCount=max(0, args.log_backup_count),
            encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(fmt)
        root_logger.addHandler(fh)


def build_options(args: argparse.Namespace) -> dict:
    """Merge options from the config file (if any) with command-line flags."""
    options = load_config_file(args.config) if args.config else {}
    if args.no_delete:
        options["delete"] = False
    if args.source_map:
        options.setdefault("out_source_map", True)
    if args.minifier:
        options["minifier"] = args.minifier
    if args.prefix is not None or args.suffix is not None:
        options["rename"] = {
            "prefix": args.prefix or "",
            "suffix": ".min" if args.suffix is None else args.suffix,
        }
    if args.pattern:
        options["patterns"] = args.pattern
    if args.settle is not None:
        options["settle_seconds"] = args.settle
    if args.once:
        options["persistent"] = False
    return options


def _run_once(session) -> int:
    session.wait_ready()
    session.close()
    print(f"{__app_name__}: {session.stats.summary()}")
    if session.failed or session.stats.total_failed or session.stats.total_write_errors:
        return 1
    return 0


def _run_foreground(session) -> int:
    """Run until SIGINT/SIGTERM or a fatal watch error."""
    stop = threading.Event()

    def _handler(sig, frame):
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    session.on_error(lambda exc: stop.set() if session.failed else None)

    print(f"{__app_name__} watching {session.src_dir} (press Ctrl-C to stop)…")
    while not stop.is_set() and not session.failed:
        stop.wait(timeout=1)
    session.close()
    print(f"{__app_name__} stopped: {session.stats.summary()}")
    return 1 if session.failed else 0


def main(argv=None) -> int:
    """Entry point for the ``minify-watch`` command."""
    args = _build_parser().parse_args(argv)
    _setup_logging(args)
    logger.info("%s %s starting.", __app_name__, __version__)

    try:
        session = create_watcher(args.src, args.dest, build_options(args))
    except MinifyWatchError as exc:
        logger.error("%s", exc)
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    if args.once:
        return _run_once(session)
    return _run_foreground(session)


if __name__ == "__main__":
    sys.exit(main())
