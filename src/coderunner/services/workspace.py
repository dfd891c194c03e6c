from __future__ import annotations
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Set

import structlog

from ..core.errors import CleanupError, WorkspaceIOError
from ..core.models import ArtifactKind

log = structlog.get_logger(__name__)


@dataclass
class Workspace:
    """One job's private directory plus every path created inside it."""

    job_id: str
    root: Path
    artifacts: Set[Path] = field(default_factory=set)
    source: Optional[Path] = None
    destroyed: bool = False

    def paths(self) -> Dict[str, Path]:
        """Placeholder values for toolchain command templates."""
        out = {"workdir": self.root, "binary": _binary_path(self.root)}
        if self.source is not None:
            out["source"] = self.source
        return out


def _binary_path(root: Path) -> Path:
    return root / ("main.exe" if sys.platform == "win32" else "main")


class WorkspaceManager:
    """
    Lays out workspaces on the filesystem as:
      <jobs_dir>/<job_id>/
        ├─ <source file>   (written by write_source)
        ├─ main            (compiled binary, C/C++)
        └─ Main.class      (Java)
    Everything under <job_id>/ is removed by destroy().
    """

    def __init__(self, jobs_dir: Path):
        # always absolute, commands run with cwd=<job_id>/
        self.jobs_dir = jobs_dir if jobs_dir.is_absolute() else jobs_dir.resolve()
        self.jobs_dir.mkdir(parents=True, exist_ok=True)

    def create(self, job_id: str) -> Workspace:
        root = self.jobs_dir / job_id
        try:
            # exist_ok=False: a live workspace is never handed out twice
            root.mkdir(mode=0o700)
        except OSError as e:
            raise WorkspaceIOError(f"cannot create workspace {root}: {e}") from e
        log.debug("workspace.created", job_id=job_id, root=str(root))
        return Workspace(job_id=job_id, root=root)

    def write_source(self, ws: Workspace, filename: str, content: str) -> Path:
        if Path(filename).name != filename:
            raise WorkspaceIOError(f"invalid source filename: {filename!r}")
        path = ws.root / filename
        ws.artifacts.add(path)
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise WorkspaceIOError(f"cannot write {path}: {e}") from e
        ws.source = path
        return path

    def artifact_path(self, ws: Workspace, kind: ArtifactKind, stem: str = "Main") -> Path:
        if kind is ArtifactKind.BINARY:
            path = _binary_path(ws.root)
        elif kind is ArtifactKind.CLASS:
            path = ws.root / f"{stem}.class"
        else:
            raise ValueError(f"unknown artifact kind: {kind}")
        ws.artifacts.add(path)
        return path

    def destroy(self, ws: Workspace) -> None:
        """Best effort; never raises. Missing paths count as removed."""
        if ws.destroyed:
            return
        ws.destroyed = True

        for path in sorted(ws.artifacts):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                self._report(ws, CleanupError(f"{path}: {e}"))

        try:
            shutil.rmtree(ws.root)
        except FileNotFoundError:
            pass
        except OSError as e:
            self._report(ws, CleanupError(f"{ws.root}: {e}"))
        else:
            log.debug("workspace.destroyed", job_id=ws.job_id)

    @staticmethod
    def _report(ws: Workspace, err: CleanupError) -> None:
        log.warning("workspace.cleanup_failed", job_id=ws.job_id, error=str(err))
