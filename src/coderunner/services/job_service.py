from __future__ import annotations
import threading
from typing import Optional

import structlog

from ..core.models import Job, Limits
from ..executor.process import ProcessExecutor
from ..isolation.isolation import IsolationPipeline, probe_capabilities
from ..settings import Settings
from ..toolchains.registry import DEFAULT_REGISTRY, ToolchainRegistry
from .admission import AdmissionController
from .history import HistoryStore, RunRecord
from .pipeline import JobPipeline
from .workspace import WorkspaceManager

log = structlog.get_logger(__name__)


class ExecutionService:
    """
    Ties admission control, the job pipeline and the history store together.

    Built once at process start from Settings; close() at shutdown.
    """

    def __init__(
        self,
        settings: Settings,
        registry: ToolchainRegistry = DEFAULT_REGISTRY,
        history: Optional[HistoryStore] = None,
    ):
        self.settings = settings
        self.registry = registry

        self.workspaces = WorkspaceManager(settings.jobs_dir)

        limits = Limits.from_dict(settings.limits)
        self.iso = IsolationPipeline(
            strategy=settings.isolation,
            allow_network=settings.allow_network,
            limits=limits,
        )
        self.executor = ProcessExecutor(
            limits,
            max_output_bytes=settings.max_output_bytes,
            compile_timeout_s=settings.compile_timeout_s,
            wrap_run=self.iso.build(),
        )
        self.pipeline = JobPipeline(
            registry,
            self.workspaces,
            self.executor,
            run_timeout_s=settings.run_timeout_s,
            max_source_bytes=settings.max_source_bytes,
            runtimes=settings.runtimes,
            cache_dir=settings.cache_dir,
        )
        self.admission = AdmissionController(
            settings.max_concurrent_jobs,
            settings.max_queued_jobs,
            settings.queue_timeout_s,
        )

        if history is None and settings.history_url:
            history = HistoryStore(settings.history_url)
        self.history = history

        log.info(
            "service.started",
            jobs_dir=str(self.workspaces.jobs_dir),
            languages=registry.languages(),
            capabilities=probe_capabilities(settings.isolation, settings.allow_network),
        )

    def submit(
        self,
        language: str,
        code: str,
        stdin: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Job:
        """Run one job to a terminal state. Raises OverloadedError when busy."""
        job = Job(language=language or "", code=code or "", stdin=stdin)
        # bad requests are answered without waiting for a worker
        toolchain = self.pipeline.admit(job)
        if toolchain is None:
            return job
        with self.admission.slot():
            self.pipeline.run(job, toolchain, cancel=cancel)
        self._remember(job)
        return job

    def _remember(self, job: Job) -> None:
        if self.history is None:
            return
        try:
            self.history.record(RunRecord(
                job_id=job.job_id,
                language=job.language,
                code=job.code,
                input=job.stdin,
                output=job.output,
                status=job.status.value,
                created_at=job.created_at,
            ))
        except Exception:
            # persistence never decides the response
            log.exception("history.enqueue_failed", job_id=job.job_id)

    def languages(self):
        return self.registry.languages()

    def close(self) -> None:
        if self.history is not None:
            self.history.close()
        log.info("service.stopped")
