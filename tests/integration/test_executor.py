import os
import re
import sys
import threading
import time
from pathlib import Path

import pytest

from coderunner.core.errors import ExecutorSpawnError
from coderunner.core.models import Limits
from coderunner.executor.process import ProcessExecutor
from templates import program

PY = sys.executable

posix_only = pytest.mark.skipif(os.name != "posix", reason="process groups are POSIX")


def _alive(pid: int) -> bool:
    """True while pid exists and is not a zombie."""
    stat = Path(f"/proc/{pid}/stat")
    if stat.exists():
        try:
            state = stat.read_text().rsplit(")", 1)[1].split()[0]
        except (OSError, IndexError):
            return False
        return state != "Z"
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _wait_dead(pid: int, within: float = 3.0) -> bool:
    deadline = time.monotonic() + within
    while time.monotonic() < deadline:
        if not _alive(pid):
            return True
        time.sleep(0.05)
    return not _alive(pid)


def _script(tmp_path: Path, name: str, body: str) -> Path:
    p = tmp_path / name
    p.write_text(body, encoding="utf-8")
    return p


def test_three_reads_without_trailing_newline(tmp_path):
    src = _script(tmp_path, "r.py", program("read_three.py"))
    res = ProcessExecutor().run([PY, str(src)], tmp_path, "Owner\n20\n1.75", timeout=10)
    assert not res.timed_out
    assert res.exit_code == 0
    assert res.stdout.strip() == "Hello Owner, you are 20 years old and 1.75 meters tall."


def test_stdin_is_closed_when_empty(tmp_path):
    src = _script(tmp_path, "r.py", "import sys\nprint(len(sys.stdin.read()))\n")
    res = ProcessExecutor().run([PY, str(src)], tmp_path, None, timeout=10)
    assert not res.timed_out
    assert res.stdout.strip() == "0"


def test_stdin_is_not_shell_parsed(tmp_path):
    payload = "$(touch pwned); `touch pwned2` | rm -rf / ; echo hi"
    src = _script(tmp_path, "r.py", "import sys\nsys.stdout.write(sys.stdin.read())\n")
    res = ProcessExecutor().run([PY, str(src)], tmp_path, payload, timeout=10)
    assert res.stdout == payload
    assert not (tmp_path / "pwned").exists()
    assert not (tmp_path / "pwned2").exists()


def test_large_stdout_and_stderr_do_not_deadlock(tmp_path):
    # both streams far beyond a pipe buffer, interleaved
    body = (
        "import sys\n"
        "for i in range(2000):\n"
        "    sys.stdout.write('o' * 100 + '\\n')\n"
        "    sys.stderr.write('e' * 100 + '\\n')\n"
    )
    src = _script(tmp_path, "big.py", body)
    res = ProcessExecutor().run([PY, str(src)], tmp_path, "", timeout=20)
    assert not res.timed_out
    assert res.stdout.count("\n") == 2000
    assert res.stderr.count("\n") == 2000


def test_large_stdin(tmp_path):
    data = "x" * (1024 * 1024)
    src = _script(tmp_path, "cat.py", "import sys\nprint(len(sys.stdin.read()))\n")
    res = ProcessExecutor().run([PY, str(src)], tmp_path, data, timeout=20)
    assert res.stdout.strip() == str(len(data))


def test_program_ignoring_stdin(tmp_path):
    src = _script(tmp_path, "q.py", "print('bye')\n")
    res = ProcessExecutor().run([PY, str(src)], tmp_path, "y" * (1024 * 1024), timeout=10)
    assert res.stdout.strip() == "bye"


def test_output_cap(tmp_path):
    src = _script(tmp_path, "spam.py", "import sys\nsys.stdout.write('a' * 100000)\n")
    res = ProcessExecutor(max_output_bytes=1000).run([PY, str(src)], tmp_path, "", timeout=10)
    assert len(res.stdout) == 1000
    assert res.truncated
    assert not res.timed_out


def test_exit_code_reported(tmp_path):
    src = _script(tmp_path, "x.py", "import sys\nsys.exit(7)\n")
    res = ProcessExecutor().run([PY, str(src)], tmp_path, "", timeout=10)
    assert res.exit_code == 7
    assert not res.timed_out


def test_spawn_error(tmp_path):
    with pytest.raises(ExecutorSpawnError) as ei:
        ProcessExecutor().run(["no-such-binary-abc"], tmp_path, "", timeout=5)
    assert ei.value.argv0 == "no-such-binary-abc"


def test_compile_has_no_stdin(tmp_path):
    src = _script(tmp_path, "c.py", "import sys\nprint(repr(sys.stdin.read()))\n")
    res = ProcessExecutor().compile([PY, str(src)], tmp_path)
    assert res.stdout.strip() == "''"


def test_compile_timeout(tmp_path):
    src = _script(tmp_path, "slow.py", "import time\ntime.sleep(30)\n")
    t0 = time.monotonic()
    res = ProcessExecutor(compile_timeout_s=0.5).compile([PY, str(src)], tmp_path)
    assert res.timed_out
    assert time.monotonic() - t0 < 5


@posix_only
def test_timeout_kills_whole_tree(tmp_path):
    src = _script(tmp_path, "tree.py", program("spawn_tree.py"))
    t0 = time.monotonic()
    res = ProcessExecutor().run([PY, str(src)], tmp_path, "", timeout=2.0)
    elapsed = time.monotonic() - t0

    assert res.timed_out
    assert 2.0 <= elapsed < 2.0 + 3.0
    m = re.search(r"CHILD_PID=(\d+)", res.stdout)
    assert m, res.stdout
    assert _wait_dead(int(m.group(1)))


@posix_only
def test_normal_exit_reaps_leftover_children(tmp_path):
    body = (
        "import subprocess, sys\n"
        "c = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(600)'],\n"
        "                     stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)\n"
        "print(c.pid)\n"
    )
    src = _script(tmp_path, "bg.py", body)
    res = ProcessExecutor().run([PY, str(src)], tmp_path, "", timeout=10)
    assert not res.timed_out
    assert _wait_dead(int(res.stdout.strip()))


@posix_only
def test_cancel_kills_tree(tmp_path):
    src = _script(tmp_path, "tree.py", program("spawn_tree.py"))
    cancel = threading.Event()
    threading.Timer(0.5, cancel.set).start()
    res = ProcessExecutor().run([PY, str(src)], tmp_path, "", timeout=30, cancel=cancel)
    assert res.cancelled
    assert not res.timed_out
    m = re.search(r"CHILD_PID=(\d+)", res.stdout)
    assert m and _wait_dead(int(m.group(1)))


@pytest.mark.skipif(not hasattr(os, "fork"), reason="rlimits need fork")
def test_rlimits_applied(tmp_path):
    src = _script(tmp_path, "lim.py", "import resource\nprint(resource.getrlimit(resource.RLIMIT_NOFILE)[0])\n")
    res = ProcessExecutor(Limits(nofile=64)).run([PY, str(src)], tmp_path, "", timeout=10)
    assert res.stdout.strip() == "64"


def test_cpu_bound_program(tmp_path):
    src = _script(tmp_path, "cpu.py", program("cpu_bound.py"))
    res = ProcessExecutor().run([PY, str(src)], tmp_path, "20000", timeout=30)
    assert res.stdout.startswith("sum_primes_up_to 20000 ")
