from __future__ import annotations
from typing import Callable, List, Optional
import os
import shutil

from ..core.models import Limits


ArgvWrapper = Callable[[List[str]], List[str]]


def wrap_with_unshare(cmd: List[str], allow_network: bool) -> List[str]:
    """
    Best-effort: separate user+mount+pid namespaces, no chroot.
    --net only as root; most unprivileged hosts cannot create one.
    """
    unshare = shutil.which("unshare")
    if not unshare:
        return cmd  # fallback

    flags = ["--user", "--map-root-user", "--mount", "--pid", "--fork", "--kill-child"]
    if not allow_network and hasattr(os, "geteuid") and os.geteuid() == 0:
        flags.append("--net")
    # argv is passed through untouched, never re-parsed by a shell
    return [unshare, *flags, "--", *cmd]


def wrap_with_cgroups(cmd: List[str], limits: Limits) -> List[str]:
    """
    systemd-run --scope to apply MemoryMax/CPUQuota.
    Without systemd-run (minimal containers, WSL...) the command is returned as is.
    """
    sdrun = shutil.which("systemd-run")
    if not sdrun:
        return cmd

    props = ["-p", "CPUQuota=100%"]
    if limits.memory_bytes:
        props += ["-p", f"MemoryMax={limits.memory_bytes}"]
    return [sdrun, "--scope", "--quiet", *props, "--", *cmd]


class IsolationPipeline:
    def __init__(self, strategy: str, allow_network: bool, limits: Limits):
        self.strategy = (strategy or "none").lower()
        self.allow_network = allow_network
        self.limits = limits

    def build(self) -> Optional[ArgvWrapper]:
        if self.strategy == "none":
            return None

        def composer(cmd: List[str]) -> List[str]:
            out = cmd
            if "unshare" in self.strategy:
                out = wrap_with_unshare(out, self.allow_network)
            if "cgroups" in self.strategy:
                out = wrap_with_cgroups(out, self.limits)
            return out

        return composer


def probe_capabilities(strategy: str, allow_network: bool) -> dict:
    """What the host offers, logged once at startup."""
    return {
        "strategy": strategy,
        "allow_network": allow_network,
        "euid": os.geteuid() if hasattr(os, "geteuid") else None,
        "has_unshare": bool(shutil.which("unshare")),
        "has_systemd_run": bool(shutil.which("systemd-run")),
    }
