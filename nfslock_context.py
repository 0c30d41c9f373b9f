"""
Explicit context handed to every component in place of module globals.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from nfslock_config import LockConfig
from nfslock_fs import Clock, FileSystem
from nfslock_utils import host_identity

LOGGER_NAME = "nfslock"


@dataclass
class LockContext:
    config: LockConfig = field(default_factory=LockConfig)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(LOGGER_NAME))
    fs: FileSystem = field(default_factory=FileSystem)
    clock: Clock = field(default_factory=Clock)
    host: str = field(default_factory=host_identity)

    @classmethod
    def create(cls, config: Optional[LockConfig] = None, logger: Optional[logging.Logger] = None) -> "LockContext":
        ctx = cls(config=config or LockConfig())
        if logger is not None:
            ctx.logger = logger
        return ctx
