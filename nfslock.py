#!/usr/bin/env python3
"""nfslock: hold a lock file on a shared filesystem, optionally while running a command."""
import argparse
import contextlib
import logging
import shlex
import signal
import sys
import threading
from typing import List, Optional

from nfslock_config import LockConfig, Verbosity
from nfslock_context import LOGGER_NAME, LockContext
from nfslock_errors import ConfigurationError, LockError
from nfslock_lock import AcquisitionEngine
from nfslock_supervisor import run_under_lock

LOG_FORMAT = "nfslock: %(levelname)s: %(message)s"
SHUTDOWN_SIGNALS = tuple(getattr(signal, name) for name in ("SIGTERM", "SIGHUP") if hasattr(signal, name))

OPTION_HELP = {
    "retries": "Failed attempts allowed before giving up (default: unlimited)",
    "max_age": "Seconds without refresh after which a lock counts as stale (default: 3600)",
    "sleep_inc": "Backoff increment in seconds per failed attempt (default: 2)",
    "min_sleep": "Shortest backoff sleep in seconds (default: 2)",
    "max_sleep": "Longest backoff sleep in seconds (default: 32)",
    "suspend": "Seconds to back off when stale-lock reclaims keep colliding (default: 1800)",
    "timeout": "Give up after this many seconds (default: never)",
    "refresh": "Seconds between lease refreshes while the command runs (default: 8)",
    "poll_retries": "Link attempts per try before inspecting the lock (default: 16)",
    "poll_max_sleep": "Longest random pause between link attempts (default: 0.08)",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nfslock",
        description="Hold an exclusive lock on a shared (NFS-safe) path, optionally while running a command.",
        usage="%(prog)s [options] LOCKPATH [--] [COMMAND [ARGS...]]",
    )
    for name, text in OPTION_HELP.items():
        # Values stay strings here; LockConfig parses them so bad input is a configuration error.
        parser.add_argument("--" + name.replace("_", "-"), dest=name, metavar="N", help=text)
    parser.add_argument("--dont-sweep", action="store_true", help="Do not remove this host's orphaned temp files")
    parser.add_argument("--debug", action="store_true", help="Trace every attempt (same as -v debug)")
    parser.add_argument(
        "-v", "--verbosity",
        default="warn",
        help="One of fatal, error, warn, info, debug (default: warn)",
    )
    parser.add_argument("path", metavar="LOCKPATH", help="Lock file shared by all contenders")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to run while the lock is held")
    return parser


def configure_logging(level: int) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_nfslock_cli", False):
            logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._nfslock_cli = True
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def split_command(words: List[str]) -> List[str]:
    if words and words[0] == "--":
        return list(words[1:])
    return list(words)


def _exit_on_signal(signum, frame):
    raise SystemExit(128 + signum)


@contextlib.contextmanager
def shutdown_signals():
    """Turn SIGTERM and SIGHUP into ``SystemExit`` so the lock and child are cleaned up."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = {signum: signal.signal(signum, _exit_on_signal) for signum in SHUTDOWN_SIGNALS}
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def main(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)
    options = {name: getattr(args, name) for name in OPTION_HELP}
    options.update(dont_sweep=args.dont_sweep, debug=args.debug, verbosity=args.verbosity)

    try:
        config = LockConfig.from_options(options)
    except ConfigurationError as exc:
        configure_logging(Verbosity.ERROR.log_level).error("%s", exc)
        sys.exit(1)

    logger = configure_logging(config.log_level)
    ctx = LockContext.create(config, logger)
    command = split_command(args.command)

    try:
        with shutdown_signals():
            if not command:
                held = AcquisitionEngine(ctx).acquire(args.path, refresh=False)
                logger.info("locked %s; remove it to release", held.path)
                sys.exit(0)

            held = AcquisitionEngine(ctx).acquire(args.path)
            status = run_under_lock(held, command[0], command[1:])
    except LockError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.error("interrupted")
        sys.exit(130)

    if status.failed:
        print(f"nfslock: command {shlex.join(command)!r} failed with {status.describe()}", file=sys.stderr)
    sys.exit(status.exit_code)


if __name__ == "__main__":
    main()
