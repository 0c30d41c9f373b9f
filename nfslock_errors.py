"""
Exceptions raised by the lock engine.
"""


class LockError(Exception):
    """Base class for every failure that ends an nfslock run."""


class ConfigurationError(LockError):
    pass


class AcquisitionTimeout(LockError):
    """Retries or the wall-clock budget ran out before the lock was obtained."""

    def __init__(self, message: str, contention: str = ""):
        if contention:
            message = f"{message} ({contention})"
        super().__init__(message)
        self.contention = contention


class IOFailure(LockError):
    """A filesystem call failed for a reason other than "already exists"."""


class LeaseLost(LockError):
    """The held lock vanished or was replaced while we still believed we owned it."""


class SpawnFailure(LockError):
    pass
