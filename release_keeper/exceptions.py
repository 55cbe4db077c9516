"""Custom exceptions for release-keeper"""

from typing import List, Optional


class ReleaseKeeperError(Exception):
    """Base exception for all release-keeper errors."""
    pass


class EnvironmentProblem(ReleaseKeeperError):
    """A required tool, file or network resource is not available."""
    pass


class GitNotInstalledError(EnvironmentProblem):
    """Exception raised when git cannot be executed."""

    def __init__(self):
        super().__init__("git is not installed or not in PATH")


class ToolNotFoundError(EnvironmentProblem):
    """Exception raised when a build tool cannot be executed."""

    def __init__(self, tool: str, hint: Optional[str] = None):
        self.tool = tool
        self.hint = hint

        error_msg = f"{tool} is not installed"
        if hint:
            error_msg += f". {hint}"

        super().__init__(error_msg)


class NotInstalledError(EnvironmentProblem):
    """Exception raised when no source tree can be located or provisioned."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{reason}: {path}")


class MissingFileError(EnvironmentProblem):
    """Exception raised when an expected file does not exist."""

    def __init__(self, path: str, what: str = "file"):
        self.path = path
        super().__init__(f"{what} not found: {path}")


class ValidationError(ReleaseKeeperError):
    """Exception raised when a request is rejected before any mutation."""
    pass


class DetachedHeadError(ValidationError):
    """Exception raised when repository is in detached HEAD state."""

    def __init__(self):
        super().__init__(
            "detached HEAD state detected; please switch to the main branch before updating"
        )


class ToolError(ReleaseKeeperError):
    """An external tool ran and reported a failure."""
    pass


class GitOperationError(ToolError):
    """Exception raised for errors in Git operations."""

    def __init__(self, operation: str, message: Optional[str] = None, output: Optional[str] = None):
        self.operation = operation
        self.message = message
        self.output = output

        error_msg = f"Git operation '{operation}' failed"
        if message:
            error_msg += f": {message}"
        if output:
            error_msg += f"\n{output.strip()}"

        super().__init__(error_msg)


class GitHubAPIError(ToolError):
    """Exception raised for errors in GitHub API operations."""

    def __init__(self, operation: str, message: Optional[str] = None):
        self.operation = operation
        self.message = message

        error_msg = f"GitHub API operation '{operation}' failed"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class BuildError(ToolError):
    """Exception raised when the compiler returns a failure."""

    def __init__(self, message: str, output: Optional[str] = None):
        self.output = output
        error_msg = message
        if output:
            error_msg += f"\n{output.strip()}"
        super().__init__(error_msg)


class ConflictError(ReleaseKeeperError):
    """Version-control conflict, with the short hashes that conflicted."""

    def __init__(self, operation: str, hashes: List[str], message: Optional[str] = None):
        self.operation = operation
        self.hashes = list(hashes)
        super().__init__(message or f"Conflict during {operation} on {', '.join(self.hashes)}")


class OperationBusyError(ReleaseKeeperError):
    """Exception raised when another long-running operation holds the slot."""

    def __init__(self, requested: str, running: Optional[str] = None):
        self.requested = requested
        self.running = running
        error_msg = f"Cannot start '{requested}': another operation is running"
        if running:
            error_msg += f" ({running})"
        super().__init__(error_msg)
