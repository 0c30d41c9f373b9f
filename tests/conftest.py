import logging
import os
import time

import pytest

from nfslock_config import LockConfig
from nfslock_context import LOGGER_NAME, LockContext
from nfslock_models import LockDescriptor

FAST = {
    "min_sleep": 0.02,
    "max_sleep": 0.1,
    "sleep_inc": 0.02,
    "suspend": 0.05,
    "poll_retries": 2,
    "poll_max_sleep": 0.01,
    "max_age": 60,
    "refresh": "none",
}


def make_ctx(**overrides) -> LockContext:
    options = dict(FAST)
    options.update(overrides)
    return LockContext.create(LockConfig.from_options(options, environ={}))


def plant_lock(path, age=0.0, host="otherhost", pid=4242):
    """Write a lock as if another machine held it, last refreshed ``age`` seconds ago."""
    descriptor = LockDescriptor(path=path, host=host, pid=pid, generation=1)
    path.write_text(descriptor.to_text(), encoding="utf-8")
    if age:
        stamp = time.time() - age
        os.utime(path, (stamp, stamp))
    return descriptor


def wait_for(predicate, timeout=3.0, interval=0.02):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def lock_path(tmp_path):
    return tmp_path / "job.lock"


@pytest.fixture(autouse=True)
def reset_cli_logging():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
