"""
Data model for lock descriptors and supervised runs.
"""
import enum
import os
import signal as signal_module
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from nfslock_utils import host_identity, next_generation, now_ts


@dataclass(frozen=True)
class LockDescriptor:
    path: Path
    host: str
    pid: int
    ppid: int = 0
    generation: int = 0
    stamp: str = field(default_factory=now_ts)
    # Read back from the filesystem; never taken from the content.
    created_at: Optional[float] = None

    @classmethod
    def for_current_process(cls, path: Path) -> "LockDescriptor":
        return cls(
            path=Path(path),
            host=host_identity(),
            pid=os.getpid(),
            ppid=os.getppid(),
            generation=next_generation(),
        )

    @classmethod
    def from_text(cls, path: Path, text: str, created_at: Optional[float] = None) -> Optional["LockDescriptor"]:
        """Parse descriptor content; ``None`` for partial or foreign content."""
        meta: Dict[str, str] = {}
        for line in text.splitlines():
            key, sep, value = line.partition(":")
            if sep:
                meta[key.strip()] = value.strip()
        if "host" not in meta or "pid" not in meta:
            return None
        try:
            return cls(
                path=Path(path),
                host=meta["host"],
                pid=int(meta["pid"]),
                ppid=int(meta.get("ppid") or 0),
                generation=int(meta.get("generation") or 0),
                stamp=meta.get("time", ""),
                created_at=created_at,
            )
        except ValueError:
            return None

    @property
    def owner(self) -> str:
        return f"{self.host}:{self.pid}"

    def to_text(self) -> str:
        return (
            f"host: {self.host}\n"
            f"pid: {self.pid}\n"
            f"ppid: {self.ppid}\n"
            f"generation: {self.generation}\n"
            f"time: {self.stamp}\n"
        )


class Verdict(enum.Enum):
    MISSING = "missing"
    VALID = "valid"
    STALE = "stale"


@dataclass(frozen=True)
class Inspection:
    verdict: Verdict
    mtime: Optional[float] = None
    age: Optional[float] = None
    owner: str = "unknown"

    def describe(self) -> str:
        if self.verdict is Verdict.MISSING:
            return "lock vanished"
        age = f"{self.age:.1f}s" if self.age is not None else "unknown age"
        return f"held by {self.owner}, {self.verdict.value}, {age} since last refresh"


@dataclass(frozen=True)
class ExitStatus:
    code: Optional[int] = None
    signal: Optional[int] = None

    @classmethod
    def from_returncode(cls, returncode: int) -> "ExitStatus":
        if returncode < 0:
            return cls(signal=-returncode)
        return cls(code=returncode)

    @property
    def exit_code(self) -> int:
        if self.signal is not None:
            return 128 + self.signal
        return self.code or 0

    @property
    def failed(self) -> bool:
        return self.exit_code != 0

    def describe(self) -> str:
        if self.signal is not None:
            try:
                name = signal_module.Signals(self.signal).name
            except ValueError:
                name = str(self.signal)
            return f"signal {name}"
        return f"status {self.code}"
