"""
Removal of temporary artifacts orphaned by killed acquisitions on this host.
"""
from pathlib import Path
from typing import List, Optional

from nfslock_context import LockContext
from nfslock_errors import IOFailure
from nfslock_utils import parse_tmp_name, pid_alive, tmp_name


def sweep(ctx: LockContext, directory: Path, max_age: Optional[float], host: Optional[str] = None, keep: Optional[Path] = None) -> List[Path]:
    """Delete this host's leftover temp files in ``directory``.

    A temp file qualifies when its embedded host is ``host`` and it is either
    older than ``max_age`` or names a pid that is no longer running. Files of
    other hosts are never touched, whatever their age, and neither is ``keep``
    (the lock itself). Returns the paths removed.
    """
    log = ctx.logger
    host = host or ctx.host
    directory = Path(directory)
    removed: List[Path] = []
    try:
        names = ctx.fs.list_dir(directory)
    except IOFailure as exc:
        log.warning("sweep skipped: %s", exc)
        return removed

    now = None
    if max_age is not None:
        # Ages are judged by the server's clock, the one that stamped the mtimes.
        try:
            now = ctx.fs.server_time(directory, tmp_name(host))
        except IOFailure as exc:
            log.debug("using local clock for sweep ages: %s", exc)
            now = ctx.clock.now()
    for name in sorted(names):
        parsed = parse_tmp_name(name)
        if parsed is None:
            continue
        path = directory / name
        if keep is not None and path == Path(keep):
            continue
        if parsed.host != host:
            log.debug("not sweeping %s: belongs to %s", name, parsed.host)
            continue
        try:
            mtime = ctx.fs.mtime(path)
            if mtime is None:
                continue
            expired = max_age is not None and now - mtime > max_age
            orphaned = not pid_alive(parsed.pid)
            if not (expired or orphaned):
                log.debug("not sweeping %s: pid %s alive and file is recent", name, parsed.pid)
                continue
            if ctx.fs.remove(path):
                log.debug("swept %s (%s)", name, "expired" if expired else f"pid {parsed.pid} gone")
                removed.append(path)
        except IOFailure as exc:
            log.warning("could not sweep %s: %s", name, exc)
    return removed
