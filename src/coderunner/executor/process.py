# src/coderunner/executor/process.py
from __future__ import annotations
import os
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import Dict, IO, List, Optional

import structlog

from ..core.errors import ExecutorSpawnError
from ..core.models import ExecutionResult, Limits
from ..isolation.isolation import ArgvWrapper
from ..runner.rlimits import make_preexec

log = structlog.get_logger(__name__)

_CHUNK = 64 * 1024


class _Drain(threading.Thread):
    """Reads one pipe to EOF, keeping at most ``cap`` bytes."""

    def __init__(self, stream: IO[bytes], cap: int, name: str):
        super().__init__(name=name, daemon=True)
        self.stream = stream
        self.cap = cap
        self.chunks: List[bytes] = []
        self.size = 0
        self.truncated = False

    def run(self) -> None:
        try:
            while True:
                chunk = self.stream.read1(_CHUNK)
                if not chunk:
                    break
                room = self.cap - self.size
                if room > 0:
                    kept = chunk[:room]
                    self.chunks.append(kept)
                    self.size += len(kept)
                if len(chunk) > room:
                    # keep reading: the child must never block on a full pipe
                    self.truncated = True
        finally:
            self.stream.close()

    def text(self) -> str:
        return b"".join(self.chunks).decode("utf-8", errors="replace")


def _feed(stream: IO[bytes], data: bytes) -> None:
    try:
        if data:
            stream.write(data)
    except BrokenPipeError:
        # child exited (or was killed) without reading everything
        pass
    finally:
        try:
            stream.close()  # EOF for the child's blocking reads
        except BrokenPipeError:
            pass


class ProcessExecutor:
    """
    Spawns compile/run commands as direct argv (never through a shell).

    Every child starts its own session, so its pid doubles as the process
    group id; the group is SIGKILLed on the way out of every call. Once
    compile()/run() return, nothing they started is still alive, unless a
    descendant moved itself into another session.
    """

    def __init__(
        self,
        limits: Optional[Limits] = None,
        *,
        max_output_bytes: int = 1024 * 1024,
        compile_timeout_s: Optional[float] = 30.0,
        wrap_run: Optional[ArgvWrapper] = None,
        poll_interval_s: float = 0.05,
        drain_grace_s: float = 2.0,
    ):
        self.limits = limits or Limits()
        self.max_output_bytes = max_output_bytes
        self.compile_timeout_s = compile_timeout_s
        self.wrap_run = wrap_run
        self.poll_interval_s = poll_interval_s
        self.drain_grace_s = drain_grace_s
        self._preexec = make_preexec(self.limits)

    # ---------- public ----------

    def compile(
        self,
        argv: List[str],
        cwd: Path,
        *,
        env: Optional[Dict[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ExecutionResult:
        return self._execute(argv, cwd, None, self.compile_timeout_s, env, cancel)

    def run(
        self,
        argv: List[str],
        cwd: Path,
        stdin: Optional[str],
        timeout: Optional[float],
        *,
        env: Optional[Dict[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ExecutionResult:
        if self.wrap_run:
            argv = self.wrap_run(list(argv))
        data = (stdin or "").encode("utf-8")
        return self._execute(argv, cwd, data, timeout, env, cancel)

    # ---------- internals ----------

    def _execute(
        self,
        argv: List[str],
        cwd: Path,
        stdin_data: Optional[bytes],
        timeout: Optional[float],
        env: Optional[Dict[str, str]],
        cancel: Optional[threading.Event],
    ) -> ExecutionResult:
        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(cwd),
                env=env,
                stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
                preexec_fn=self._preexec,
                close_fds=True,
            )
        except OSError as e:
            # FileNotFoundError / PermissionError for a missing or unusable toolchain
            raise ExecutorSpawnError(argv[0], e.strerror or str(e)) from e

        log.debug("process.spawned", argv0=argv[0], pid=proc.pid)

        out = _Drain(proc.stdout, self.max_output_bytes, f"drain-out-{proc.pid}")
        err = _Drain(proc.stderr, self.max_output_bytes, f"drain-err-{proc.pid}")
        out.start()
        err.start()

        feeder = None
        if stdin_data is not None:
            feeder = threading.Thread(
                target=_feed, args=(proc.stdin, stdin_data), name=f"feed-{proc.pid}", daemon=True
            )
            feeder.start()

        deadline = start + timeout if timeout else None
        timed_out = cancelled = False
        try:
            while True:
                try:
                    proc.wait(timeout=self.poll_interval_s)
                    break
                except subprocess.TimeoutExpired:
                    pass
                if cancel is not None and cancel.is_set():
                    cancelled = True
                    break
                if deadline is not None and time.monotonic() >= deadline:
                    timed_out = True
                    break
        finally:
            self._kill_tree(proc)
            proc.wait()

        grace = time.monotonic() + self.drain_grace_s
        for t in (feeder, out, err):
            if t is not None:
                t.join(max(0.0, grace - time.monotonic()))
        if out.is_alive() or err.is_alive():
            # a descendant escaped the group and still holds the pipe
            log.warning("process.drain_stuck", pid=proc.pid, argv0=argv[0])

        res = ExecutionResult(
            stdout=out.text(),
            stderr=err.text(),
            exit_code=proc.returncode,
            timed_out=timed_out,
            cancelled=cancelled,
            truncated=out.truncated or err.truncated,
            duration_s=time.monotonic() - start,
        )
        if timed_out or cancelled:
            log.info(
                "process.killed",
                pid=proc.pid,
                argv0=argv[0],
                reason="timeout" if timed_out else "cancelled",
                duration_s=round(res.duration_s, 3),
            )
        return res

    @staticmethod
    def _kill_tree(proc: subprocess.Popen) -> None:
        if os.name == "posix":
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                # group already empty
                pass
        if proc.poll() is None:
            proc.kill()
