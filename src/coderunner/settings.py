from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ---- workspaces ----
    jobs_dir: Path = Path("jobs")
    # build caches shared by every job (GOCACHE lives under it)
    cache_dir: Path = Field(default_factory=lambda: Path.home() / ".cache" / "coderunner")

    # ---- timeouts (seconds) ----
    run_timeout_s: float = 7.0
    compile_timeout_s: float = 30.0

    # ---- admission ----
    max_concurrent_jobs: int = 4
    max_queued_jobs: int = 16
    queue_timeout_s: float = 30.0

    # ---- request / output caps ----
    max_source_bytes: int = 10 * 1024
    max_output_bytes: int = 1024 * 1024

    # runtime name -> binary, e.g. {"python3": "/usr/bin/python3.12"}
    runtimes: Dict[str, str] = Field(default_factory=dict)

    # cpu_seconds / memory_bytes / nofile, applied as rlimits in the child
    limits: Dict[str, Any] = Field(default_factory=dict)

    # none | unshare | cgroups | unshare+cgroups
    isolation: str = "none"
    allow_network: bool = False

    # ---- history ----
    history_url: Optional[str] = "sqlite:///./coderunner.db"

    # ---- api / logging ----
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    # env prefix CODERUNNER_*
    model_config = SettingsConfigDict(env_prefix="CODERUNNER_", extra="ignore")


_YAML_KEYS = (
    "jobs_dir",
    "cache_dir",
    "run_timeout_s",
    "compile_timeout_s",
    "max_concurrent_jobs",
    "max_queued_jobs",
    "queue_timeout_s",
    "max_source_bytes",
    "max_output_bytes",
    "runtimes",
    "limits",
    "isolation",
    "allow_network",
    "history_url",
    "cors_origins",
    "log_level",
)


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        return {}
    except yaml.YAMLError:
        # a broken config file must not take the service down
        return {}
    return data if isinstance(data, dict) else {}


def load_settings(conf_path: Optional[Path] = None) -> Settings:
    """Env vars (CODERUNNER_*) first, then conf/coderunner.yaml on top.

    The YAML path can be overridden with ``CODERUNNER_CONF``.
    """
    s = Settings()

    if conf_path is None:
        conf_path = Path(os.environ.get("CODERUNNER_CONF", "conf/coderunner.yaml"))
    data = _read_yaml(conf_path)

    update = {k: data[k] for k in _YAML_KEYS if k in data and data[k] is not None}
    if "history_url" in data and data["history_url"] is None:
        update["history_url"] = None  # explicit null disables history
    if not update:
        return s

    # re-validate so YAML values get the same coercion as env values
    merged = s.model_dump()
    merged.update(update)
    return Settings(**merged)
