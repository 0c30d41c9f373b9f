"""
Shared utility helpers.
"""
import datetime
import itertools
import os
import random
import re
import socket
import uuid
from typing import NamedTuple, Optional

import nfslock_config as cfg

_generations = itertools.count(1)

_TMP_PATTERN = re.compile(
    r"^" + re.escape(cfg.TMP_PREFIX) + r"(?P<host>.+)_(?P<pid>\d+)_(?P<token>[0-9a-f]+)" + re.escape(cfg.TMP_SUFFIX) + r"$"
)


class TempName(NamedTuple):
    host: str
    pid: int
    token: str


def now_ts() -> str:
    return datetime.datetime.now().isoformat(timespec="seconds")


def host_identity() -> str:
    """Short, filename-safe name of this host."""
    name = socket.gethostname() or "localhost"
    return name.split(".")[0].replace(os.sep, "-") or "localhost"


def next_generation() -> int:
    return next(_generations)


def tmp_name(host: str, pid: Optional[int] = None) -> str:
    pid = os.getpid() if pid is None else pid
    return f"{cfg.TMP_PREFIX}{host}_{pid}_{uuid.uuid4().hex}{cfg.TMP_SUFFIX}"


def parse_tmp_name(name: str) -> Optional[TempName]:
    match = _TMP_PATTERN.match(name)
    if not match:
        return None
    return TempName(match.group("host"), int(match.group("pid")), match.group("token"))


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    return True


class SleepCycle:
    """Backoff curve: ``min(max_sleep, min_sleep + sleep_inc * attempt)`` with jitter.

    Jitter spreads contenders that started together; it is at most ``jitter``
    of the nominal value either way and never pushes a sleep past ``max_sleep``.
    """

    def __init__(self, min_sleep: float, max_sleep: float, sleep_inc: float, jitter: float = 0.1, rng: Optional[random.Random] = None):
        self.min_sleep = float(min_sleep)
        self.max_sleep = float(max_sleep)
        self.sleep_inc = float(sleep_inc)
        self.jitter = jitter
        self.rng = rng or random.Random()
        self.attempt = 0

    def nominal(self, attempt: int) -> float:
        return min(self.max_sleep, self.min_sleep + self.sleep_inc * attempt)

    def next(self) -> float:
        base = self.nominal(self.attempt)
        self.attempt += 1
        if self.jitter and base > 0:
            base *= 1 + self.rng.uniform(-self.jitter, self.jitter)
        return max(0.0, min(self.max_sleep, base))

    def reset(self):
        self.attempt = 0
