"""
Custom exceptions for the job service, grouped by where they originate.
"""


class BeatfloError(Exception):
    """Base exception for all application-specific errors."""


class ToolError(BeatfloError):
    """Base class for failures of an external command line tool."""

    def __init__(self, tool: str, message: str):
        super().__init__(message)
        self.tool = tool


class ToolNotInstalledError(ToolError):
    """Raised when the executable cannot be found on the host."""

    def __init__(self, tool: str):
        super().__init__(tool, f"{tool} is not installed or not on PATH")


class ToolExecutionError(ToolError):
    """Raised when a tool ran but exited with a non-zero code."""

    def __init__(self, tool: str, exit_code: int, stderr: str = ""):
        super().__init__(tool, f"{tool} exited with code {exit_code}")
        self.exit_code = exit_code
        self.stderr = stderr


class ToolTimeoutError(ToolError):
    """Raised when a tool exceeded its time budget and was killed."""

    def __init__(self, tool: str, timeout: float):
        super().__init__(tool, f"{tool} timed out after {timeout:g}s")
        self.timeout = timeout


class JobStateError(BeatfloError):
    """Raised when an update would break a job's lifecycle invariants."""


class PipelineError(BeatfloError):
    """Raised by an orchestrator when a job cannot produce its artifact."""


class ArtifactNotReadyError(BeatfloError):
    """Raised when an artifact is requested before its job completed."""


class ArtifactMissingError(BeatfloError):
    """Raised when a completed job's artifact is no longer on disk."""
