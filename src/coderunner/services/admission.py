from __future__ import annotations
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Deque, Iterator, Optional

import structlog

from ..core.errors import OverloadedError

log = structlog.get_logger(__name__)


class AdmissionController:
    """At most ``max_concurrent`` jobs run; at most ``max_queued`` wait.

    A request arriving with the queue full, or waiting longer than
    ``queue_timeout_s``, gets OverloadedError.
    """

    def __init__(self, max_concurrent: int, max_queued: int, queue_timeout_s: Optional[float] = None):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.max_concurrent = max_concurrent
        self.max_queued = max(0, max_queued)
        self.queue_timeout_s = queue_timeout_s
        self._cond = threading.Condition()
        self._active = 0
        self._queue: Deque[object] = deque()

    @property
    def active(self) -> int:
        with self._cond:
            return self._active

    @property
    def waiting(self) -> int:
        with self._cond:
            return len(self._queue)

    def acquire(self) -> None:
        with self._cond:
            if self._active < self.max_concurrent and not self._queue:
                self._active += 1
                return
            if len(self._queue) >= self.max_queued:
                log.warning("admission.rejected", active=self._active, waiting=len(self._queue))
                raise OverloadedError()

            # first come, first served: only the head of the queue may take a slot
            me = object()
            self._queue.append(me)
            deadline = None if self.queue_timeout_s is None else time.monotonic() + self.queue_timeout_s
            try:
                while self._active >= self.max_concurrent or self._queue[0] is not me:
                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        log.warning("admission.queue_timeout", waited_s=self.queue_timeout_s)
                        raise OverloadedError("timed out waiting for a free worker")
                    self._cond.wait(remaining)
                self._active += 1
            finally:
                self._queue.remove(me)
                if self._queue and self._active < self.max_concurrent:
                    self._cond.notify_all()

    def release(self) -> None:
        with self._cond:
            if self._active <= 0:
                raise RuntimeError("release() without acquire()")
            self._active -= 1
            self._cond.notify_all()

    @contextmanager
    def slot(self) -> Iterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()
