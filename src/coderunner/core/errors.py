from __future__ import annotations


class CodeRunnerError(Exception):
    """Base for every error raised by the execution core."""


class ValidationError(CodeRunnerError):
    """Unsupported language, empty or oversized source. Client error."""


class SourceTransformError(CodeRunnerError):
    """Language-specific rewrite could not find the construct it rewrites."""


class CompileError(CodeRunnerError):
    def __init__(self, diagnostics: str):
        super().__init__(diagnostics)
        self.diagnostics = diagnostics


class ExecutorSpawnError(CodeRunnerError):
    """The compiler / interpreter binary itself could not be started."""

    def __init__(self, argv0: str, reason: str):
        super().__init__(f"{argv0}: {reason}")
        self.argv0 = argv0
        self.reason = reason


class WorkspaceIOError(CodeRunnerError):
    pass


class CleanupError(CodeRunnerError):
    """Only ever logged, never raised past the workspace manager."""


class OverloadedError(CodeRunnerError):
    """Admission queue is full. Retryable."""

    def __init__(self, message: str = "server busy, retry later", retry_after_s: int = 1):
        super().__init__(message)
        self.retry_after_s = retry_after_s
