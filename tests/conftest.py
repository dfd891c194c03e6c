import sys

import pytest
from fastapi.testclient import TestClient

from coderunner.api.app import create_app
from coderunner.executor.process import ProcessExecutor
from coderunner.services.job_service import ExecutionService
from coderunner.services.pipeline import JobPipeline
from coderunner.services.workspace import WorkspaceManager
from coderunner.settings import Settings
from coderunner.toolchains.registry import DEFAULT_REGISTRY


@pytest.fixture
def jobs_dir(tmp_path):
    d = tmp_path / "jobs"
    d.mkdir()
    return d


@pytest.fixture(scope="session")
def toolchain_cache(tmp_path_factory):
    # shared across the session like the real service's cache_dir
    return tmp_path_factory.mktemp("cache")


@pytest.fixture
def settings(jobs_dir, toolchain_cache):
    return Settings(
        jobs_dir=jobs_dir,
        cache_dir=toolchain_cache,
        # the first `go run` of the session fills an empty build cache
        run_timeout_s=30,
        compile_timeout_s=60,
        max_concurrent_jobs=4,
        max_queued_jobs=8,
        queue_timeout_s=30,
        runtimes={"python3": sys.executable},
        history_url=None,
    )


@pytest.fixture
def service(settings):
    svc = ExecutionService(settings)
    yield svc
    svc.close()


@pytest.fixture
def workspaces(jobs_dir):
    return WorkspaceManager(jobs_dir)


@pytest.fixture
def executor():
    return ProcessExecutor(compile_timeout_s=30)


@pytest.fixture
def pipeline(workspaces, executor, toolchain_cache):
    return JobPipeline(
        DEFAULT_REGISTRY,
        workspaces,
        executor,
        run_timeout_s=5,
        max_source_bytes=10 * 1024,
        runtimes={"python3": sys.executable},
        cache_dir=toolchain_cache,
    )


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c
