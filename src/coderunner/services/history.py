from __future__ import annotations
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from sqlalchemy.orm import sessionmaker
from sqlmodel import Field, Session, SQLModel, create_engine, select

log = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunRecord(SQLModel, table=True):
    __tablename__ = "runs"

    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: str = Field(index=True)
    language: str
    code: str
    input: Optional[str] = None
    output: str
    status: str
    created_at: datetime = Field(default_factory=_utcnow, index=True)


class HistoryStore:
    """Completed runs, written off the request path.

    record() only queues the write; a failing database is logged and
    otherwise ignored.
    """

    def __init__(self, url: str = "sqlite:///./coderunner.db"):
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine = create_engine(url, connect_args=connect_args)
        SQLModel.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, class_=Session, expire_on_commit=False)
        # one writer keeps sqlite happy and preserves arrival order
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="history")

    def record(self, rec: RunRecord) -> Optional[Future]:
        try:
            fut = self._writer.submit(self._insert, rec)
        except RuntimeError:
            # writer already shut down
            log.warning("history.dropped", job_id=rec.job_id)
            return None
        fut.add_done_callback(self._log_failure)
        return fut

    def _insert(self, rec: RunRecord) -> None:
        with self.SessionLocal() as s:
            s.add(rec)
            s.commit()

    @staticmethod
    def _log_failure(fut: Future) -> None:
        exc = fut.exception()
        if exc is not None:
            log.warning("history.write_failed", error=str(exc))

    def recent(self, limit: int = 20) -> List[RunRecord]:
        with self.SessionLocal() as s:
            stmt = select(RunRecord).order_by(RunRecord.id.desc()).limit(limit)
            return list(s.exec(stmt).all())

    def close(self) -> None:
        self._writer.shutdown(wait=True)
        self.engine.dispose()
