"""
Filesystem and clock primitives used by the lock engine.

Everything here relies on one assumption: ``link()`` onto a shared path fails
when the target exists, even on filesystems (NFS) where ``O_EXCL`` creation is
not trustworthy.
"""
import errno
import os
import time
from pathlib import Path
from typing import List, Optional

from nfslock_errors import IOFailure


def _io_failure(action: str, path, exc: OSError) -> IOFailure:
    return IOFailure(f"{action} {path}: {exc.strerror or exc}")


class Clock:
    def now(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float):
        if seconds > 0:
            time.sleep(seconds)


class FileSystem:
    def create_exclusive(self, path: Path, content: str) -> os.stat_result:
        """Create ``path`` (must not exist) with ``content`` and return its stat."""
        try:
            fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except OSError as exc:
            raise _io_failure("cannot create", path, exc) from exc
        try:
            # Readable by every contender regardless of umask.
            os.fchmod(fd, 0o644)
            os.write(fd, content.encode("utf-8"))
            os.fsync(fd)
            return os.fstat(fd)
        except OSError as exc:
            raise _io_failure("cannot write", path, exc) from exc
        finally:
            os.close(fd)

    def link_exclusive(self, src: Path, dst: Path) -> bool:
        """Hard-link ``src`` to ``dst``; False when ``dst`` already exists.

        NFS may retransmit a link whose first reply was lost and then report
        EEXIST for our own link, so both outcomes are re-checked by comparing
        inodes of the two paths.
        """
        try:
            os.link(str(src), str(dst))
        except FileExistsError:
            return self._links_to(src, dst)
        except OSError as exc:
            raise _io_failure("cannot link", dst, exc) from exc
        return self._links_to(src, dst)

    def _links_to(self, src: Path, dst: Path) -> bool:
        try:
            src_stat = os.lstat(str(src))
            dst_stat = os.lstat(str(dst))
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise _io_failure("cannot stat", dst, exc) from exc
        return (src_stat.st_dev, src_stat.st_ino) == (dst_stat.st_dev, dst_stat.st_ino)

    def mtime(self, path: Path) -> Optional[float]:
        """mtime of ``path``, or ``None`` when it does not exist."""
        try:
            return os.stat(str(path)).st_mtime
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise _io_failure("cannot stat", path, exc) from exc

    def read_text(self, path: Path) -> Optional[str]:
        try:
            return Path(path).read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise _io_failure("cannot read", path, exc) from exc

    def touch(self, path: Path):
        """Renew mtime without ever creating the file."""
        try:
            os.utime(str(path), None)
        except FileNotFoundError:
            raise
        except OSError as exc:
            raise _io_failure("cannot touch", path, exc) from exc

    def remove(self, path: Path) -> bool:
        """Unlink ``path``; False when it was already gone."""
        try:
            os.unlink(str(path))
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            if exc.errno == errno.ESTALE:
                return False
            raise _io_failure("cannot remove", path, exc) from exc

    def server_time(self, directory: Path, name: str) -> float:
        """Current time by the clock of the filesystem holding ``directory``.

        Creates ``name`` there, reads back its mtime and removes it again.
        """
        path = Path(directory) / name
        stamp = self.create_exclusive(path, "").st_mtime
        self.remove(path)
        return stamp

    def list_dir(self, directory: Path) -> List[str]:
        try:
            return os.listdir(str(directory))
        except OSError as exc:
            raise _io_failure("cannot list", directory, exc) from exc
