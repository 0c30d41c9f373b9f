import signal
import subprocess
import sys
import threading
import time
from pathlib import Path

import pytest

import nfslock
from conftest import make_ctx, plant_lock, wait_for
from nfslock_errors import LeaseLost, SpawnFailure
from nfslock_lock import AcquisitionEngine
from nfslock_models import LockDescriptor
from nfslock_supervisor import run_command, run_under_lock
from nfslock_utils import pid_alive

SCRIPT = Path(__file__).resolve().parent.parent / "nfslock.py"


def py(code):
    return [sys.executable, "-c", code]


def run_main(argv):
    with pytest.raises(SystemExit) as excinfo:
        nfslock.main(argv)
    return excinfo.value.code


def test_command_runs_and_lock_is_released(lock_path):
    code = run_main(["--max-age", "60", "--refresh", "5", str(lock_path)] + py("pass"))

    assert code == 0
    assert not lock_path.exists()


def test_failing_command_propagates_status_and_reports(lock_path, capsys):
    code = run_main(["--max-age", "60", "--refresh", "5", str(lock_path), "--"] + py("import sys; sys.exit(7)"))

    assert code == 7
    err = capsys.readouterr().err
    assert "failed with status 7" in err
    assert not lock_path.exists()


def test_stale_lock_is_reclaimed_from_command_line(lock_path):
    plant_lock(lock_path, age=120)

    code = run_main(["--max-age", "60", "--retries", "3", "--poll-retries", "1", str(lock_path)] + py("pass"))

    assert code == 0
    assert not lock_path.exists()


def test_without_command_lock_is_left_held(lock_path):
    code = run_main(["--poll-retries", "1", str(lock_path)])

    assert code == 0
    descriptor = LockDescriptor.from_text(lock_path, lock_path.read_text())
    assert descriptor is not None


def test_command_sees_lock_and_arguments(lock_path, tmp_path):
    out = tmp_path / "out.txt"
    script = (
        "import os, sys; "
        f"open({str(out)!r}, 'w').write(' '.join(sys.argv[1:]) + '|' + str(os.path.exists({str(lock_path)!r})))"
    )
    code = run_main([str(lock_path), sys.executable, "-c", script, "one", "two words"])

    assert code == 0
    assert out.read_text() == "one two words|True"


def test_bad_option_value_exits_one(lock_path, capsys):
    code = run_main(["--retries", "lots", str(lock_path)])

    assert code == 1
    assert "retries must be an integer" in capsys.readouterr().err
    assert not lock_path.exists()


def test_refresh_not_below_max_age_exits_one(lock_path, capsys):
    code = run_main(["--max-age", "5", "--refresh", "8", str(lock_path)] + py("pass"))

    assert code == 1
    assert "must be shorter than max_age" in capsys.readouterr().err


def test_timeout_against_held_lock_exits_one(lock_path, capsys):
    planted = plant_lock(lock_path)
    argv = ["--timeout", "0.3", "--min-sleep", "0.1", "--max-sleep", "0.1", "--poll-retries", "1", str(lock_path)]

    code = run_main(argv + py("pass"))

    assert code == 1
    assert "timed out" in capsys.readouterr().err
    assert lock_path.read_text() == planted.to_text()


def test_unrunnable_command_exits_one_and_releases(lock_path, tmp_path, capsys):
    code = run_main([str(lock_path), str(tmp_path / "no-such-program")])

    assert code == 1
    assert "cannot run" in capsys.readouterr().err
    assert not lock_path.exists()


def test_signal_death_maps_to_shell_status(lock_path, capsys):
    code = run_main([str(lock_path)] + py("import os, signal; os.kill(os.getpid(), signal.SIGTERM)"))

    assert code == 128 + 15
    assert "failed with signal SIGTERM" in capsys.readouterr().err
    assert not lock_path.exists()


def test_run_under_lock_releases_on_spawn_failure(lock_path, tmp_path):
    held = AcquisitionEngine(make_ctx(refresh=1, max_age=10)).acquire(lock_path)

    with pytest.raises(SpawnFailure):
        run_under_lock(held, str(tmp_path / "missing"))

    assert not lock_path.exists()
    assert not held.refresher.running


def test_run_command_returns_exit_status(lock_path):
    status = run_command(make_ctx(refresh=1, max_age=10), lock_path, sys.executable, ["-c", "raise SystemExit(3)"])

    assert status.code == 3
    assert status.failed
    assert not lock_path.exists()


def test_lost_lease_terminates_child(lock_path):
    held = AcquisitionEngine(make_ctx(refresh=0.05, max_age=10)).acquire(lock_path)
    remover = threading.Timer(0.3, lock_path.unlink)
    remover.start()

    started = time.monotonic()
    with pytest.raises(LeaseLost):
        run_under_lock(held, sys.executable, ["-c", "import time; time.sleep(30)"])
    remover.join()

    assert time.monotonic() - started < 10
    assert not lock_path.exists()


@pytest.mark.parametrize("signum", [signal.SIGTERM, signal.SIGHUP])
def test_termination_signal_releases_lock_and_stops_child(lock_path, tmp_path, signum):
    pid_file = tmp_path / "child.pid"
    script = f"import os, pathlib, time; pathlib.Path({str(pid_file)!r}).write_text(str(os.getpid())); time.sleep(30)"
    proc = subprocess.Popen([sys.executable, str(SCRIPT), "--refresh", "none", str(lock_path)] + py(script))
    try:
        assert wait_for(lambda: pid_file.exists() and pid_file.read_text().strip(), timeout=10)
        child_pid = int(pid_file.read_text())
        assert lock_path.exists()

        proc.send_signal(signum)
        assert proc.wait(timeout=15) == 128 + signum
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()

    assert not lock_path.exists()
    assert wait_for(lambda: not pid_alive(child_pid), timeout=5)


def test_signal_handlers_are_restored_after_main(lock_path):
    before = signal.getsignal(signal.SIGTERM)

    assert run_main(["--poll-retries", "1", str(lock_path)] + py("pass")) == 0

    assert signal.getsignal(signal.SIGTERM) == before
