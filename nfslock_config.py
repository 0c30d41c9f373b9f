"""
Configuration and constants for nfslock.
"""
import enum
import logging
import math
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from nfslock_errors import ConfigurationError

TMP_PREFIX = ".nfslock_"
TMP_SUFFIX = ".lck"
DEBUG_ENV = "NFSLOCK_DEBUG"

# Retry defaults
DEFAULT_RETRIES = None
DEFAULT_SLEEP_INC = 2.0
DEFAULT_MIN_SLEEP = 2.0
DEFAULT_MAX_SLEEP = 32.0
DEFAULT_SUSPEND = 1800.0
DEFAULT_TIMEOUT = None
DEFAULT_POLL_RETRIES = 16
DEFAULT_POLL_MAX_SLEEP = 0.08

# Lease defaults
DEFAULT_MAX_AGE = 3600.0
DEFAULT_REFRESH = 8.0

# Reclaim-and-retry rounds allowed per outer retry before backing off for `suspend`.
MAX_RECLAIMS = 3

UNBOUNDED = {"", "none", "inf", "infinity", "unlimited"}
TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


class Verbosity(enum.IntEnum):
    FATAL = 0
    ERROR = 1
    WARN = 2
    INFO = 3
    DEBUG = 4

    @property
    def log_level(self) -> int:
        return {
            Verbosity.FATAL: logging.CRITICAL,
            Verbosity.ERROR: logging.ERROR,
            Verbosity.WARN: logging.WARNING,
            Verbosity.INFO: logging.INFO,
            Verbosity.DEBUG: logging.DEBUG,
        }[self]

    @classmethod
    def parse(cls, value) -> "Verbosity":
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        if text.isdigit():
            level = min(int(text), max(cls))
            return cls(level)
        try:
            return cls[text.upper()]
        except KeyError:
            names = ", ".join(v.name.lower() for v in cls)
            raise ConfigurationError(f"verbosity must be one of {names}, got {value!r}") from None


def parse_count(name: str, value, allow_unbounded: bool = False) -> Optional[int]:
    if value is None:
        if allow_unbounded:
            return None
        raise ConfigurationError(f"{name} is required")
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        number = value
    else:
        text = str(value).strip().lower()
        if allow_unbounded and text in UNBOUNDED:
            return None
        try:
            number = int(text)
        except ValueError:
            raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None
    if number < 0:
        raise ConfigurationError(f"{name} must not be negative, got {number}")
    return number


def parse_seconds(name: str, value, allow_unbounded: bool = False) -> Optional[float]:
    if value is None:
        if allow_unbounded:
            return None
        raise ConfigurationError(f"{name} is required")
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a number of seconds, got {value!r}")
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().lower()
        if allow_unbounded and text in UNBOUNDED:
            return None
        try:
            number = float(text)
        except ValueError:
            raise ConfigurationError(f"{name} must be a number of seconds, got {value!r}") from None
    if math.isnan(number) or number < 0:
        raise ConfigurationError(f"{name} must be a non-negative number, got {value!r}")
    if math.isinf(number):
        if allow_unbounded:
            return None
        raise ConfigurationError(f"{name} must be finite")
    return number


def parse_flag(name: str, value) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


@dataclass(frozen=True)
class RetryPolicy:
    retries: Optional[int] = DEFAULT_RETRIES
    sleep_inc: float = DEFAULT_SLEEP_INC
    min_sleep: float = DEFAULT_MIN_SLEEP
    max_sleep: float = DEFAULT_MAX_SLEEP
    suspend: float = DEFAULT_SUSPEND
    timeout: Optional[float] = DEFAULT_TIMEOUT
    poll_retries: int = DEFAULT_POLL_RETRIES
    poll_max_sleep: float = DEFAULT_POLL_MAX_SLEEP


@dataclass(frozen=True)
class LeasePolicy:
    max_age: Optional[float] = DEFAULT_MAX_AGE
    refresh: Optional[float] = DEFAULT_REFRESH


@dataclass(frozen=True)
class LockConfig:
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    lease: LeasePolicy = field(default_factory=LeasePolicy)
    dont_sweep: bool = False
    debug: bool = False
    verbosity: Verbosity = Verbosity.WARN

    def __post_init__(self):
        lease = self.lease
        if lease.refresh is not None and lease.refresh <= 0:
            raise ConfigurationError("refresh must be positive; use none to disable refreshing")
        if lease.max_age is not None and lease.refresh is not None and lease.refresh >= lease.max_age:
            raise ConfigurationError(
                f"refresh ({lease.refresh:g}s) must be shorter than max_age ({lease.max_age:g}s), "
                "otherwise live holders look stale"
            )
        retry = self.retry
        if retry.min_sleep > retry.max_sleep:
            raise ConfigurationError(
                f"min_sleep ({retry.min_sleep:g}) must not exceed max_sleep ({retry.max_sleep:g})"
            )
        if retry.poll_retries < 1:
            raise ConfigurationError("poll_retries must be at least 1")

    @property
    def log_level(self) -> int:
        if self.debug:
            return logging.DEBUG
        return self.verbosity.log_level

    @classmethod
    def from_options(cls, options: Mapping, environ: Optional[Mapping] = None) -> "LockConfig":
        """Build a config from loosely typed option values (CLI strings, env, kwargs).

        Missing keys and ``None`` values fall back to the defaults above.
        """
        environ = os.environ if environ is None else environ
        opts = {k: v for k, v in options.items() if v is not None}

        def seconds(name, default, unbounded=False):
            if name not in opts:
                return default
            return parse_seconds(name, opts[name], allow_unbounded=unbounded)

        def count(name, default, unbounded=False):
            if name not in opts:
                return default
            return parse_count(name, opts[name], allow_unbounded=unbounded)

        retry = RetryPolicy(
            retries=count("retries", DEFAULT_RETRIES, unbounded=True),
            sleep_inc=seconds("sleep_inc", DEFAULT_SLEEP_INC),
            min_sleep=seconds("min_sleep", DEFAULT_MIN_SLEEP),
            max_sleep=seconds("max_sleep", DEFAULT_MAX_SLEEP),
            suspend=seconds("suspend", DEFAULT_SUSPEND),
            timeout=seconds("timeout", DEFAULT_TIMEOUT, unbounded=True),
            poll_retries=count("poll_retries", DEFAULT_POLL_RETRIES),
            poll_max_sleep=seconds("poll_max_sleep", DEFAULT_POLL_MAX_SLEEP),
        )
        lease = LeasePolicy(
            max_age=seconds("max_age", DEFAULT_MAX_AGE, unbounded=True),
            refresh=seconds("refresh", DEFAULT_REFRESH, unbounded=True),
        )

        debug = parse_flag("debug", opts.get("debug", False))
        if not debug and environ.get(DEBUG_ENV):
            debug = parse_flag(DEBUG_ENV, environ[DEBUG_ENV])

        return cls(
            retry=retry,
            lease=lease,
            dont_sweep=parse_flag("dont_sweep", opts.get("dont_sweep", False)),
            debug=debug,
            verbosity=Verbosity.parse(opts.get("verbosity", Verbosity.WARN)),
        )
