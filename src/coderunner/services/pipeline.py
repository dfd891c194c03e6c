from __future__ import annotations
import os
import threading
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import structlog

from ..core.errors import CompileError, ExecutorSpawnError, SourceTransformError, ValidationError
from ..core.models import ExecutionResult, Job, JobStatus
from ..executor.process import ProcessExecutor
from ..toolchains.registry import ToolchainPipeline, ToolchainRegistry
from .workspace import Workspace, WorkspaceManager

log = structlog.get_logger(__name__)

NO_OUTPUT = "No output"
TRUNCATED_MARKER = "\n[output truncated]"
CANCELLED_MARKER = "\n[cancelled]"


def timeout_marker(timeout_s: float) -> str:
    return f"\n[timeout] exceeded {timeout_s:g}s"


def combine_output(res: ExecutionResult) -> str:
    out = res.stdout
    if res.stderr:
        if out and not out.endswith("\n"):
            out += "\n"
        out += res.stderr
    if res.truncated:
        out += TRUNCATED_MARKER
    return out


class JobPipeline:
    """
    validate -> [transform + compile] -> run -> assemble output, for one job.

    Every job that gets past validation gets exactly one workspace, and
    that workspace is destroyed on the way out whatever happened.
    """

    def __init__(
        self,
        registry: ToolchainRegistry,
        workspaces: WorkspaceManager,
        executor: ProcessExecutor,
        *,
        run_timeout_s: float = 7.0,
        max_source_bytes: Optional[int] = None,
        runtimes: Optional[Mapping[str, str]] = None,
        base_env: Optional[Mapping[str, str]] = None,
        cache_dir: Optional[Path] = None,
    ):
        self.registry = registry
        self.workspaces = workspaces
        self.executor = executor
        self.run_timeout_s = run_timeout_s
        self.max_source_bytes = max_source_bytes
        self.runtimes = dict(runtimes or {})
        self.base_env = dict(os.environ if base_env is None else base_env)
        # without a shared cache each job builds into its own workspace
        self.cache_dir = cache_dir
        if cache_dir is not None:
            cache_dir.mkdir(parents=True, exist_ok=True)

    # ---------- entry point ----------

    def execute(self, job: Job, cancel: Optional[threading.Event] = None) -> Job:
        toolchain = self.admit(job)
        if toolchain is not None:
            self.run(job, toolchain, cancel)
        return job

    def admit(self, job: Job) -> Optional[ToolchainPipeline]:
        """Created -> Validated, or Created -> Rejected (returns None)."""
        try:
            toolchain = self.validate(job)
        except ValidationError as e:
            job.finish(JobStatus.REJECTED, output="", error=str(e))
            log.info("job.rejected", job_id=job.job_id, language=job.language, reason=str(e))
            return None
        job.advance(JobStatus.VALIDATED)
        return toolchain

    def run(self, job: Job, toolchain: ToolchainPipeline, cancel: Optional[threading.Event] = None) -> Job:
        ws = self.workspaces.create(job.job_id)
        try:
            self._drive(job, toolchain, ws, cancel)
        finally:
            self.workspaces.destroy(ws)

        log.info("job.finished", job_id=job.job_id, language=job.language,
                 status=job.status.value, error=job.error)
        return job

    def validate(self, job: Job) -> ToolchainPipeline:
        if not job.language or not job.code or not job.code.strip():
            raise ValidationError("Missing language or code")
        toolchain = self.registry.lookup(job.language)
        if toolchain is None:
            raise ValidationError("Language not supported")
        if self.max_source_bytes is not None and len(job.code.encode("utf-8")) > self.max_source_bytes:
            raise ValidationError(f"Source code too large (max {self.max_source_bytes} bytes)")
        return toolchain

    # ---------- phases ----------

    def _drive(
        self,
        job: Job,
        toolchain: ToolchainPipeline,
        ws: Workspace,
        cancel: Optional[threading.Event],
    ) -> None:
        try:
            if toolchain.needs_compile:
                job.advance(JobStatus.COMPILING)
                try:
                    res = self._compile(job, toolchain, ws, cancel)
                except (SourceTransformError, CompileError) as e:
                    job.finish(JobStatus.COMPILE_FAILED, str(e), error=type(e).__name__)
                    return
                if res.cancelled:
                    job.finish(JobStatus.CANCELLED, combine_output(res) + CANCELLED_MARKER, error="cancelled")
                    return
                job.advance(JobStatus.COMPILE_SUCCEEDED)
            else:
                job.advance(JobStatus.COMPILE_SKIPPED)
                self.workspaces.write_source(ws, toolchain.source_filename(job.job_id), job.code)

            job.advance(JobStatus.RUNNING)
            paths = ws.paths()
            res = self.executor.run(
                self._argv(toolchain.run_command(paths)),
                ws.root,
                job.stdin,
                self.run_timeout_s,
                env=self._env(toolchain, paths),
                cancel=cancel,
            )
        except ExecutorSpawnError as e:
            job.finish(JobStatus.RUNTIME_FAILED, f"[spawn error] {e}", error=type(e).__name__)
            return

        if res.timed_out:
            job.finish(JobStatus.TIMED_OUT, combine_output(res) + timeout_marker(self.run_timeout_s),
                       error="timeout")
        elif res.cancelled:
            job.finish(JobStatus.CANCELLED, combine_output(res) + CANCELLED_MARKER, error="cancelled")
        else:
            # the program's own exit code is not a pipeline failure
            job.finish(JobStatus.COMPLETED, combine_output(res) or NO_OUTPUT)

    def _compile(
        self,
        job: Job,
        toolchain: ToolchainPipeline,
        ws: Workspace,
        cancel: Optional[threading.Event],
    ) -> ExecutionResult:
        code = job.code
        if toolchain.source_transform is not None:
            code = toolchain.source_transform(code)

        self.workspaces.write_source(ws, toolchain.source_filename(job.job_id), code)
        for kind in toolchain.artifacts:
            self.workspaces.artifact_path(ws, kind, stem=toolchain.source_stem or "Main")

        paths = ws.paths()
        res = self.executor.compile(
            self._argv(toolchain.compile_command(paths)),
            ws.root,
            env=self._env(toolchain, paths),
            cancel=cancel,
        )
        if res.cancelled:
            return res

        # any diagnostic text counts, warnings included
        if res.timed_out or res.exit_code != 0 or res.stderr.strip():
            diagnostics = res.stderr or res.stdout or f"compiler exited with {res.exit_code}"
            if res.timed_out:
                diagnostics += timeout_marker(self.executor.compile_timeout_s or 0)
            raise CompileError(diagnostics)
        return res

    # ---------- helpers ----------

    def _argv(self, argv: List[str]) -> List[str]:
        if argv and argv[0] in self.runtimes:
            return [self.runtimes[argv[0]], *argv[1:]]
        return argv

    def _env(self, toolchain: ToolchainPipeline, paths: Mapping[str, Path]) -> Dict[str, str]:
        env = dict(self.base_env)
        workdir = str(paths["workdir"])
        env["HOME"] = workdir
        env["TMPDIR"] = workdir
        cache_dir = self.cache_dir or paths["workdir"] / ".cache"
        env.update(toolchain.environment({**paths, "cache_dir": cache_dir}))
        return env
