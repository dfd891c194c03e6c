from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

from .utils import new_job_id


class JobStatus(str, Enum):
    CREATED = "CREATED"
    VALIDATED = "VALIDATED"
    REJECTED = "REJECTED"
    COMPILE_SKIPPED = "COMPILE_SKIPPED"
    COMPILING = "COMPILING"
    COMPILE_FAILED = "COMPILE_FAILED"
    COMPILE_SUCCEEDED = "COMPILE_SUCCEEDED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    TIMED_OUT = "TIMED_OUT"
    RUNTIME_FAILED = "RUNTIME_FAILED"
    CANCELLED = "CANCELLED"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[JobStatus] = frozenset({
    JobStatus.REJECTED,
    JobStatus.COMPILE_FAILED,
    JobStatus.COMPLETED,
    JobStatus.TIMED_OUT,
    JobStatus.RUNTIME_FAILED,
    JobStatus.CANCELLED,
})

_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.CREATED: frozenset({JobStatus.VALIDATED, JobStatus.REJECTED}),
    JobStatus.VALIDATED: frozenset({JobStatus.COMPILE_SKIPPED, JobStatus.COMPILING}),
    JobStatus.COMPILING: frozenset({
        JobStatus.COMPILE_FAILED,
        JobStatus.COMPILE_SUCCEEDED,
        JobStatus.RUNTIME_FAILED,  # compiler binary missing
        JobStatus.CANCELLED,
    }),
    JobStatus.COMPILE_SKIPPED: frozenset({JobStatus.RUNNING}),
    JobStatus.COMPILE_SUCCEEDED: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({
        JobStatus.COMPLETED,
        JobStatus.TIMED_OUT,
        JobStatus.RUNTIME_FAILED,
        JobStatus.CANCELLED,
    }),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class Limits:
    cpu_seconds: Optional[int] = None
    memory_bytes: Optional[int] = None
    nofile: Optional[int] = None
    stack_bytes: int = 8 * 1024 * 1024

    @classmethod
    def from_dict(cls, raw: Dict) -> "Limits":
        def _int(key):
            v = raw.get(key)
            return int(v) if v is not None else None

        return cls(
            cpu_seconds=_int("cpu_seconds"),
            memory_bytes=_int("memory_bytes"),
            nofile=_int("nofile"),
            stack_bytes=int(raw.get("stack_bytes", 8 * 1024 * 1024)),
        )


@dataclass
class ExecutionResult:
    stdout: str
    stderr: str
    exit_code: Optional[int]
    timed_out: bool = False
    cancelled: bool = False
    truncated: bool = False
    duration_s: float = 0.0


@dataclass
class Job:
    language: str
    code: str
    stdin: Optional[str] = None
    job_id: str = field(default_factory=new_job_id)
    status: JobStatus = JobStatus.CREATED
    output: str = ""
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def advance(self, new: JobStatus) -> None:
        allowed = _TRANSITIONS.get(self.status, frozenset())
        if new not in allowed:
            raise InvalidTransition(f"{self.status.value} -> {new.value}")
        self.status = new

    def finish(self, new: JobStatus, output: str, error: Optional[str] = None) -> None:
        self.advance(new)
        self.output = output
        self.error = error


class ArtifactKind(str, Enum):
    BINARY = "binary"
    CLASS = "class"
