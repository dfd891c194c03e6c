from __future__ import annotations
import argparse
import sys
from pathlib import Path
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .core.errors import CodeRunnerError
from .core.models import JobStatus
from .logging import setup_logging
from .settings import load_settings

EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_INTERNAL = 2


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="coderunner", description="Compile and run code snippets.")
    ap.add_argument("--config", type=Path, default=None, help="YAML config (default conf/coderunner.yaml)")
    sub = ap.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="run one program and print its output")
    run.add_argument("--language", "-l", required=True)
    src = run.add_mutually_exclusive_group(required=True)
    src.add_argument("--file", "-f", type=Path)
    src.add_argument("--code", "-c")
    inp = run.add_mutually_exclusive_group()
    inp.add_argument("--input", "-i", default=None)
    inp.add_argument("--input-file", type=Path, default=None)
    run.add_argument("--no-history", action="store_true", help="do not record the run")

    serve = sub.add_parser("serve", help="start the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)

    sub.add_parser("languages", help="list supported languages")
    return ap


def _cmd_run(args, settings) -> int:
    from .services.job_service import ExecutionService

    try:
        code = args.file.read_text(encoding="utf-8") if args.file else args.code
        stdin = args.input_file.read_text(encoding="utf-8") if args.input_file else args.input
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_VALIDATION

    if args.no_history:
        settings = settings.model_copy(update={"history_url": None})

    try:
        svc = ExecutionService(settings)
    except (OSError, SQLAlchemyError, CodeRunnerError) as e:
        # unusable jobs_dir / cache_dir, unreachable history_url
        print(f"error: cannot start: {e}", file=sys.stderr)
        return EXIT_INTERNAL
    try:
        job = svc.submit(args.language, code, stdin)
    except CodeRunnerError as e:
        # overloaded, workspace I/O
        print(f"error: {e}", file=sys.stderr)
        return EXIT_INTERNAL
    finally:
        svc.close()

    if job.status is JobStatus.REJECTED:
        print(f"error: {job.error}", file=sys.stderr)
        return EXIT_VALIDATION

    sys.stdout.write(job.output)
    if not job.output.endswith("\n"):
        sys.stdout.write("\n")
    return EXIT_INTERNAL if job.status is JobStatus.RUNTIME_FAILED else EXIT_OK


def _cmd_serve(args, settings) -> int:
    import uvicorn

    from .api.app import create_app

    uvicorn.run(create_app(settings), host=args.host, port=args.port, log_config=None)
    return EXIT_OK


def _cmd_languages(args, settings) -> int:
    from .toolchains.registry import DEFAULT_REGISTRY

    for lang in DEFAULT_REGISTRY.languages():
        print(lang)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = load_settings(args.config)
    # `run` prints the program output on stdout, so logs go to stderr
    if args.command == "run":
        setup_logging("WARNING", stream=sys.stderr)
    else:
        setup_logging(settings.log_level)

    handlers = {"run": _cmd_run, "serve": _cmd_serve, "languages": _cmd_languages}
    return handlers[args.command](args, settings)


if __name__ == "__main__":
    sys.exit(main())
