"""
Run a child process while holding a lock.
"""
import subprocess
import sys
from typing import Optional, Sequence

from nfslock_context import LockContext
from nfslock_errors import LeaseLost, SpawnFailure
from nfslock_lock import AcquisitionEngine, HeldLock
from nfslock_models import ExitStatus

TERMINATE_GRACE = 5.0


def _flush_std_streams():
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (AttributeError, ValueError):
            pass


def _stop_child(child: subprocess.Popen):
    if child.poll() is not None:
        return
    child.terminate()
    try:
        child.wait(timeout=TERMINATE_GRACE)
    except subprocess.TimeoutExpired:
        child.kill()
        child.wait()


def run_under_lock(held: HeldLock, command: str, args: Sequence[str] = ()) -> ExitStatus:
    """Run ``command args...`` and release ``held`` however the child ends.

    The lock is released on every path out of here: normal or non-zero exit,
    a spawn failure, or an exception while waiting. A lease lost mid-run
    terminates the child and raises ``LeaseLost``; a child must never keep
    running once it is no longer protected.
    """
    argv = (command,) + tuple(args)
    log = held.ctx.logger
    child: Optional[subprocess.Popen] = None

    with held:
        _flush_std_streams()
        try:
            child = subprocess.Popen(argv)
        except OSError as exc:
            raise SpawnFailure(f"cannot run {command!r}: {exc.strerror or exc}") from exc
        log.debug("started %r as pid %d under %s", command, child.pid, held.path)

        if held.refresher is not None:
            def on_lost(exc: LeaseLost):
                if child.poll() is None:
                    log.error("terminating pid %d: %s", child.pid, exc)
                    child.terminate()

            held.refresher.on_lost = on_lost
            if held.lost is not None:
                on_lost(held.lost)

        try:
            returncode = child.wait()
        finally:
            _stop_child(child)

        held.check()
        status = ExitStatus.from_returncode(returncode)
        log.debug("%r finished: %s", command, status.describe())
    return status


def run_command(ctx: LockContext, path, command: str, args: Sequence[str] = ()) -> ExitStatus:
    """Acquire ``path``, run the command under it, release."""
    argv = tuple(args)
    held = AcquisitionEngine(ctx).acquire(path)
    return run_under_lock(held, command, argv)
