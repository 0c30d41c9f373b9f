"""
Lease-based staleness checks.

A lock is stale once its mtime, as kept by the shared filesystem, is older than
``max_age``. Holders are never checked by host or pid: that cannot be done
reliably across machines.
"""
from pathlib import Path
from typing import Optional

from nfslock_context import LockContext
from nfslock_models import Inspection, LockDescriptor, Verdict


def is_stale(mtime: float, now: float, max_age: Optional[float]) -> bool:
    if max_age is None:
        return False
    return now - mtime > max_age


class StalenessDetector:
    def __init__(self, ctx: LockContext):
        self.ctx = ctx
        self.max_age = ctx.config.lease.max_age

    def inspect(self, path: Path, now: float) -> Inspection:
        mtime = self.ctx.fs.mtime(path)
        if mtime is None:
            return Inspection(Verdict.MISSING)
        owner = "unknown"
        text = self.ctx.fs.read_text(path)
        if text:
            descriptor = LockDescriptor.from_text(path, text, created_at=mtime)
            if descriptor is not None:
                owner = descriptor.owner
        verdict = Verdict.STALE if is_stale(mtime, now, self.max_age) else Verdict.VALID
        return Inspection(verdict, mtime=mtime, age=now - mtime, owner=owner)

    def reclaim(self, path: Path, seen: Inspection, now: float) -> bool:
        """Remove a lock judged stale; True when ``path`` is free afterwards.

        The lock is stat'ed again right before removal and left alone if it was
        refreshed or replaced since ``seen`` was taken. This narrows the window
        in which a live holder's refresh races our removal; it cannot close it.
        """
        log = self.ctx.logger
        mtime = self.ctx.fs.mtime(path)
        if mtime is None:
            return True
        if mtime != seen.mtime or not is_stale(mtime, now, self.max_age):
            log.debug("lock %s was refreshed before it could be reclaimed", path)
            return False
        removed = self.ctx.fs.remove(path)
        if removed:
            log.warning("reclaimed stale lock %s (%s)", path, seen.describe())
        return True
