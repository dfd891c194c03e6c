from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..core.models import ArtifactKind
from .transforms import java_main_class

Template = Tuple[str, ...]


@dataclass(frozen=True)
class ToolchainPipeline:
    """How one language is compiled (optionally) and run.

    Command templates are plain data: strings with ``{source}``,
    ``{binary}`` and ``{workdir}`` placeholders, filled from the job's
    workspace paths at dispatch time. Environment templates may also use
    ``{cache_dir}``, the build cache shared across jobs.
    """

    language: str
    file_extension: str
    run_template: Template
    compile_template: Optional[Template] = None
    source_transform: Optional[Callable[[str], str]] = None
    # fixed source file name (without extension) when the toolchain needs one
    source_stem: Optional[str] = None
    env_template: Mapping[str, str] = field(default_factory=dict)
    # files the compile step leaves in the workspace
    artifacts: Tuple[ArtifactKind, ...] = ()

    def __post_init__(self):
        if self.source_transform is not None and self.compile_template is None:
            raise ValueError(f"{self.language}: source_transform needs a compile step")

    @property
    def needs_compile(self) -> bool:
        return self.compile_template is not None

    def source_filename(self, job_id: str) -> str:
        return f"{self.source_stem or job_id}.{self.file_extension}"

    def compile_command(self, paths: Mapping[str, Path]) -> List[str]:
        if self.compile_template is None:
            raise ValueError(f"{self.language} has no compile step")
        return _expand(self.compile_template, paths)

    def run_command(self, paths: Mapping[str, Path]) -> List[str]:
        return _expand(self.run_template, paths)

    def environment(self, paths: Mapping[str, Path]) -> Dict[str, str]:
        values = {k: str(v) for k, v in paths.items()}
        return {k: v.format(**values) for k, v in self.env_template.items()}


def _expand(template: Template, paths: Mapping[str, Path]) -> List[str]:
    values = {k: str(v) for k, v in paths.items()}
    return [part.format(**values) for part in template]


class ToolchainRegistry:
    """Read-only language id -> pipeline lookup."""

    def __init__(self, pipelines: Iterable[ToolchainPipeline]):
        table = {}
        for p in pipelines:
            if p.language in table:
                raise ValueError(f"duplicate toolchain: {p.language}")
            table[p.language] = p
        self._table = MappingProxyType(table)

    def lookup(self, language: str) -> Optional[ToolchainPipeline]:
        return self._table.get(language)

    def __contains__(self, language: object) -> bool:
        return language in self._table

    def languages(self) -> List[str]:
        return sorted(self._table)


DEFAULT_PIPELINES: Tuple[ToolchainPipeline, ...] = (
    ToolchainPipeline(
        language="javascript",
        file_extension="js",
        run_template=("node", "{source}"),
    ),
    ToolchainPipeline(
        language="python",
        file_extension="py",
        run_template=("python3", "{source}"),
        env_template={"PYTHONUNBUFFERED": "1", "PYTHONDONTWRITEBYTECODE": "1"},
    ),
    ToolchainPipeline(
        language="c",
        file_extension="c",
        compile_template=("gcc", "{source}", "-o", "{binary}"),
        run_template=("{binary}",),
        artifacts=(ArtifactKind.BINARY,),
    ),
    ToolchainPipeline(
        language="cpp",
        file_extension="cpp",
        compile_template=("g++", "{source}", "-o", "{binary}"),
        run_template=("{binary}",),
        artifacts=(ArtifactKind.BINARY,),
    ),
    ToolchainPipeline(
        language="java",
        file_extension="java",
        source_stem="Main",
        source_transform=java_main_class,
        compile_template=("javac", "{source}"),
        run_template=("java", "-cp", "{workdir}", "Main"),
        artifacts=(ArtifactKind.CLASS,),
    ),
    ToolchainPipeline(
        language="go",
        file_extension="go",
        # `go run` builds into a temp dir and execs the result as a grandchild
        run_template=("go", "run", "{source}"),
        env_template={"GOCACHE": "{cache_dir}/go-build", "GOTMPDIR": "{workdir}"},
    ),
    ToolchainPipeline(
        language="php",
        file_extension="php",
        run_template=("php", "{source}"),
    ),
    ToolchainPipeline(
        language="ruby",
        file_extension="rb",
        run_template=("ruby", "{source}"),
    ),
)

DEFAULT_REGISTRY = ToolchainRegistry(DEFAULT_PIPELINES)
