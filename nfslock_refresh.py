"""
Background lease renewal for a held lock.
"""
import threading
from pathlib import Path
from typing import Callable, Optional

from nfslock_context import LockContext
from nfslock_errors import LeaseLost, LockError


class LeaseRefresher:
    """Touches the lock every ``interval`` seconds until stopped.

    Each tick first checks that the file at ``path`` still carries our
    descriptor, then bumps its mtime. Content is never rewritten and the file
    is never recreated. The first failed tick is recorded in ``error``,
    reported through ``on_lost`` and ends the thread.
    """

    def __init__(self, ctx: LockContext, path: Path, content: str, interval: float, on_lost: Optional[Callable[[LeaseLost], None]] = None):
        self.ctx = ctx
        self.path = Path(path)
        self.content = content
        self.interval = interval
        self.on_lost = on_lost
        self.error: Optional[LeaseLost] = None
        self.ticks = 0
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"nfslock-refresh:{self.path.name}", daemon=True)

    def start(self):
        self._thread.start()

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def stop(self):
        """Stop and wait for the thread, so no tick can follow a release."""
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join()

    def tick(self):
        text = self.ctx.fs.read_text(self.path)
        if text is None:
            raise LeaseLost(f"lock {self.path} disappeared while held")
        if text != self.content:
            raise LeaseLost(f"lock {self.path} was taken over by another holder")
        try:
            self.ctx.fs.touch(self.path)
        except FileNotFoundError:
            raise LeaseLost(f"lock {self.path} disappeared while held") from None
        self.ticks += 1
        self.ctx.logger.debug("refreshed %s", self.path)

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.tick()
            except LockError as exc:
                lost = exc if isinstance(exc, LeaseLost) else LeaseLost(f"cannot refresh {self.path}: {exc}")
                self.error = lost
                self.ctx.logger.error("%s", lost)
                if self.on_lost is not None:
                    self.on_lost(lost)
                return
