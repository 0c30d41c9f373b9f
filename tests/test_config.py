import logging

import pytest

import nfslock_config as cfg
from nfslock_config import LockConfig, Verbosity
from nfslock_errors import ConfigurationError
from nfslock_models import ExitStatus, LockDescriptor


def test_defaults_are_declared_once():
    config = LockConfig.from_options({}, environ={})
    assert config.retry.retries is None
    assert config.retry.timeout is None
    assert config.retry.min_sleep == cfg.DEFAULT_MIN_SLEEP
    assert config.retry.poll_retries == cfg.DEFAULT_POLL_RETRIES
    assert config.lease.max_age == cfg.DEFAULT_MAX_AGE
    assert config.lease.refresh == cfg.DEFAULT_REFRESH
    assert config == LockConfig()


def test_string_options_are_parsed():
    config = LockConfig.from_options(
        {"retries": "3", "timeout": "2.5", "max_age": "60", "refresh": "5", "dont_sweep": "yes"},
        environ={},
    )
    assert config.retry.retries == 3
    assert config.retry.timeout == 2.5
    assert config.lease.max_age == 60.0
    assert config.lease.refresh == 5.0
    assert config.dont_sweep is True


@pytest.mark.parametrize("value", ["none", "inf", ""])
def test_unbounded_values(value):
    config = LockConfig.from_options({"retries": value, "timeout": value, "refresh": value}, environ={})
    assert config.retry.retries is None
    assert config.retry.timeout is None
    assert config.lease.refresh is None


@pytest.mark.parametrize(
    "options, message",
    [
        ({"retries": "many"}, "retries must be an integer"),
        ({"max_sleep": "soon"}, "max_sleep must be a number"),
        ({"sleep_inc": "-1"}, "non-negative"),
        ({"poll_retries": "none"}, "poll_retries must be an integer"),
        ({"debug": "maybe"}, "debug must be a boolean"),
        ({"verbosity": "chatty"}, "verbosity must be one of"),
    ],
)
def test_bad_values_raise_configuration_error(options, message):
    with pytest.raises(ConfigurationError) as excinfo:
        LockConfig.from_options(options, environ={})
    assert message in str(excinfo.value)


def test_refresh_must_be_shorter_than_max_age():
    with pytest.raises(ConfigurationError) as excinfo:
        LockConfig.from_options({"max_age": "10", "refresh": "10"}, environ={})
    assert "must be shorter than max_age" in str(excinfo.value)

    config = LockConfig.from_options({"max_age": "none", "refresh": "30"}, environ={})
    assert config.lease.max_age is None


def test_min_sleep_cannot_exceed_max_sleep():
    with pytest.raises(ConfigurationError):
        LockConfig.from_options({"min_sleep": "10", "max_sleep": "1"}, environ={})


def test_verbosity_maps_to_log_levels():
    assert Verbosity.parse("fatal").log_level == logging.CRITICAL
    assert Verbosity.parse("WARN").log_level == logging.WARNING
    assert Verbosity.parse("4") is Verbosity.DEBUG
    assert Verbosity.parse("9") is Verbosity.DEBUG
    assert Verbosity.FATAL < Verbosity.ERROR < Verbosity.WARN < Verbosity.INFO < Verbosity.DEBUG


def test_debug_flag_and_environment_force_debug_level():
    assert LockConfig.from_options({"debug": True}, environ={}).log_level == logging.DEBUG
    assert LockConfig.from_options({}, environ={cfg.DEBUG_ENV: "1"}).log_level == logging.DEBUG
    assert LockConfig.from_options({"verbosity": "info"}, environ={}).log_level == logging.INFO


def test_descriptor_text_round_trip_and_partial_content(tmp_path):
    descriptor = LockDescriptor(path=tmp_path / "a.lock", host="node1", pid=12, ppid=1, generation=3, stamp="2024-01-01T00:00:00")
    parsed = LockDescriptor.from_text(descriptor.path, descriptor.to_text(), created_at=5.0)

    assert parsed.owner == "node1:12"
    assert parsed.generation == 3
    assert parsed.created_at == 5.0
    assert LockDescriptor.from_text(descriptor.path, "host: node1\n") is None
    assert LockDescriptor.from_text(descriptor.path, "host: node1\npid: twelve\n") is None


def test_exit_status_maps_signals_to_shell_codes():
    assert ExitStatus.from_returncode(0).failed is False
    assert ExitStatus.from_returncode(7).exit_code == 7
    killed = ExitStatus.from_returncode(-15)
    assert killed.signal == 15
    assert killed.exit_code == 143
    assert killed.describe() == "signal SIGTERM"
