"""
Lock acquisition over filesystems without reliable exclusive create.

Each attempt writes a descriptor to a private temp file beside the lock and
hard-links it onto the lock path. ``link()`` refuses to replace an existing
target, so the filesystem alone decides which of several contenders wins.
"""
import dataclasses
import logging
import random
from pathlib import Path
from typing import Callable, Optional, Tuple

import nfslock_config as cfg
from nfslock_config import LockConfig
from nfslock_context import LockContext
from nfslock_errors import AcquisitionTimeout, IOFailure, LeaseLost
from nfslock_models import Inspection, LockDescriptor, Verdict
from nfslock_refresh import LeaseRefresher
from nfslock_stale import StalenessDetector
from nfslock_sweep import sweep
from nfslock_utils import SleepCycle, tmp_name


class HeldLock:
    """A lock we own. Releasing it is our obligation."""

    def __init__(self, ctx: LockContext, descriptor: LockDescriptor):
        self.ctx = ctx
        self.descriptor = descriptor
        self.path = descriptor.path
        self.content = descriptor.to_text()
        self.refresher: Optional[LeaseRefresher] = None
        self.released = False

    def start_refresher(self, interval: float, on_lost: Optional[Callable[[LeaseLost], None]] = None):
        self.refresher = LeaseRefresher(self.ctx, self.path, self.content, interval, on_lost=on_lost)
        self.refresher.start()

    @property
    def lost(self) -> Optional[LeaseLost]:
        if self.refresher is None:
            return None
        return self.refresher.error

    def check(self):
        if self.lost is not None:
            raise self.lost

    def release(self):
        """Stop refreshing, then unlink the lock if it is still ours."""
        if self.released:
            return
        if self.refresher is not None:
            self.refresher.stop()
        lost = self.lost
        if lost is None:
            # An IOFailure from here on leaves the lock held; release() may be retried.
            text = self.ctx.fs.read_text(self.path)
            if text is None:
                lost = LeaseLost(f"lock {self.path} was removed while held")
            elif text != self.content:
                lost = LeaseLost(f"lock {self.path} is now held by someone else; leaving it in place")
        if lost is not None:
            self.released = True
            raise lost
        self.ctx.fs.remove(self.path)
        self.released = True
        self.ctx.logger.debug("released %s (generation %d)", self.path, self.descriptor.generation)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


class AcquisitionEngine:
    def __init__(self, ctx: LockContext, rng: Optional[random.Random] = None):
        self.ctx = ctx
        self.retry = ctx.config.retry
        self.lease = ctx.config.lease
        self.detector = StalenessDetector(ctx)
        self.rng = rng or random.Random()

    def acquire(self, path: Path, refresh: bool = True, on_lost: Optional[Callable[[LeaseLost], None]] = None) -> HeldLock:
        """Block until ``path`` is ours or the retry policy gives up.

        Raises ``AcquisitionTimeout`` when retries or the timeout run out and
        ``IOFailure`` on any unexpected filesystem error.
        """
        path = Path(path)
        log = self.ctx.logger
        clock = self.ctx.clock
        retry = self.retry

        if not self.ctx.config.dont_sweep:
            sweep(self.ctx, path.parent, self.lease.max_age, keep=path)

        deadline = None if retry.timeout is None else clock.monotonic() + retry.timeout
        cycle = SleepCycle(retry.min_sleep, retry.max_sleep, retry.sleep_inc, rng=self.rng)
        failures = 0
        last: Optional[Inspection] = None

        log.debug("attempting to lock %s", path)
        while True:
            reclaims = 0
            while True:
                held, fs_now = self._attempt(path, deadline)
                if held is not None:
                    log.debug("acquired %s after %d failed attempt(s)", path, failures)
                    if refresh and self.lease.refresh is not None:
                        held.start_refresher(self.lease.refresh, on_lost=on_lost)
                    return held
                last = self.detector.inspect(path, fs_now)
                if last.verdict is not Verdict.STALE or reclaims >= cfg.MAX_RECLAIMS:
                    break
                reclaims += 1
                self.detector.reclaim(path, last, fs_now)
                self._check_deadline(path, deadline, last)

            failures += 1
            if retry.retries is not None and failures > retry.retries:
                raise AcquisitionTimeout(f"gave up on {path} after {retry.retries} retries", last.describe())
            # Checked only after an attempt: a timeout of 0 still tries once.
            self._check_deadline(path, deadline, last)

            if last.verdict is Verdict.VALID:
                delay = cycle.next()
                log.debug("%s %s; sleeping %.2fs", path, last.describe(), delay)
            elif last.verdict is Verdict.STALE:
                delay = retry.suspend
                log.info("%s keeps going stale under other reclaimers; suspending %.2fs", path, delay)
            else:
                delay = 0.0
                log.debug("%s vanished before it could be inspected; retrying", path)
            self._sleep(delay, deadline)

    def _attempt(self, path: Path, deadline: Optional[float]) -> Tuple[Optional[HeldLock], float]:
        """One create-then-link attempt.

        Returns the held lock, or ``None`` and the current time as seen by the
        filesystem: the temp file's mtime advanced by local elapsed time. That
        keeps host clock skew out of staleness decisions.
        """
        fs = self.ctx.fs
        clock = self.ctx.clock
        descriptor = LockDescriptor.for_current_process(path)
        tmp = path.parent / tmp_name(self.ctx.host)
        tmp_stat = fs.create_exclusive(tmp, descriptor.to_text())
        observed = clock.monotonic()
        try:
            for poll in range(self.retry.poll_retries):
                if fs.link_exclusive(tmp, path):
                    # The link carries the temp file's mtime; the lease starts now.
                    try:
                        fs.touch(path)
                    except FileNotFoundError:
                        continue
                    created_at = fs.mtime(path) or tmp_stat.st_mtime
                    return HeldLock(self.ctx, dataclasses.replace(descriptor, created_at=created_at)), 0.0
                if poll + 1 >= self.retry.poll_retries or self._expired(deadline):
                    break
                self._sleep(self.rng.uniform(0, self.retry.poll_max_sleep), deadline)
        finally:
            try:
                fs.remove(tmp)
            except IOFailure as exc:
                self.ctx.logger.warning("could not remove temp file %s: %s", tmp, exc)
        return None, tmp_stat.st_mtime + (clock.monotonic() - observed)

    def _expired(self, deadline: Optional[float]) -> bool:
        return deadline is not None and self.ctx.clock.monotonic() >= deadline

    def _check_deadline(self, path: Path, deadline: Optional[float], last: Optional[Inspection]):
        if self._expired(deadline):
            raise AcquisitionTimeout(
                f"timed out after {self.retry.timeout:g}s waiting for {path}",
                last.describe() if last is not None else "",
            )

    def _sleep(self, seconds: float, deadline: Optional[float]):
        if deadline is not None:
            seconds = min(seconds, max(0.0, deadline - self.ctx.clock.monotonic()))
        self.ctx.clock.sleep(seconds)


def acquire(path: Path, ctx: Optional[LockContext] = None, refresh: bool = True) -> HeldLock:
    return AcquisitionEngine(ctx or LockContext()).acquire(path, refresh=refresh)


class FileLock:
    """``with FileLock(path) as held:`` holds ``path`` for the block."""

    def __init__(self, lock_path: Path, config: Optional[LockConfig] = None, logger: Optional[logging.Logger] = None, ctx: Optional[LockContext] = None):
        self.lock_path = Path(lock_path)
        self.ctx = ctx or LockContext.create(config, logger)
        self.held: Optional[HeldLock] = None

    def __enter__(self) -> HeldLock:
        self.held = AcquisitionEngine(self.ctx).acquire(self.lock_path)
        return self.held

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.held is not None:
            self.held.release()
            self.held = None
