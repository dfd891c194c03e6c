from __future__ import annotations
from typing import Callable, Optional

from ..core.models import Limits

try:
    import resource
except ImportError:  # not available on Windows
    resource = None


def apply_rlimits(limits: Limits) -> None:
    """
    Process-level caps: CPU time, address space, file descriptors, stack.
    A limit the OS refuses is left at its inherited value.
    """
    if resource is None:
        return
    pairs = (
        (resource.RLIMIT_CPU, limits.cpu_seconds),
        (resource.RLIMIT_AS, limits.memory_bytes),
        (resource.RLIMIT_NOFILE, limits.nofile),
        (resource.RLIMIT_STACK, limits.stack_bytes),
    )
    for which, value in pairs:
        if value is None:
            continue
        try:
            resource.setrlimit(which, (value, value))
        except (ValueError, OSError):
            pass


def make_preexec(limits: Limits) -> Optional[Callable[[], None]]:
    """Pre-exec hook for the child, or None when nothing is limited.

    The session split is done by Popen(start_new_session=True), not here.
    """
    if resource is None:
        return None
    if limits.cpu_seconds is None and limits.memory_bytes is None and limits.nofile is None:
        return None

    def _fn():
        apply_rlimits(limits)

    return _fn
