"""Custom exceptions for ABAP Bridge.

This module defines exception classes for the error conditions that can occur
while talking to remote systems, persisting state, and driving a migration run.
"""


class ABAPMigrationError(Exception):
    """Base exception for all ABAP migration tool errors."""

    pass


class APIError(ABAPMigrationError):
    """Base class for API-related errors."""

    def __init__(self, message: str, status_code: int | None = None, response: dict | None = None):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
        """
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with status code and response."""
        msg = self.message
        if self.status_code:
            msg = f"[{self.status_code}] {msg}"
        if self.response:
            msg = f"{msg}: {self.response}"
        return msg


class AuthenticationError(APIError):
    """Raised when authentication fails (401 Unauthorized)."""

    pass


class AuthorizationError(APIError):
    """Raised when authorization fails (403 Forbidden)."""

    pass


class NotFoundError(APIError):
    """Raised when an endpoint or resource is not found (404 Not Found)."""

    pass


class ConflictError(APIError):
    """Raised when a resource conflict occurs (409 Conflict)."""

    pass


class RateLimitError(APIError):
    """Raised when API rate limit is exceeded (429 Too Many Requests)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: dict | None = None,
        retry_after: int | None = None,
    ):
        """Initialize rate limit error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
            retry_after: Seconds to wait before retrying (from Retry-After header)
        """
        super().__init__(message, status_code, response)
        self.retry_after = retry_after


class ServerError(APIError):
    """Raised when server returns 5xx error."""

    pass


class NetworkError(ABAPMigrationError):
    """Raised when network-related errors occur (timeouts, connection failures)."""

    pass


class ToolExecutionError(ABAPMigrationError):
    """Raised when a remote tool reports a structured failure.

    Attributes:
        tool: Name of the remote tool that failed
    """

    def __init__(self, message: str, tool: str | None = None):
        super().__init__(message)
        self.tool = tool


class ObjectNotFoundError(ABAPMigrationError):
    """Raised when an object name and type cannot be resolved in a system."""

    def __init__(self, name: str, objtype: str, system: str | None = None):
        self.name = name
        self.objtype = objtype
        self.system = system
        where = f" in {system}" if system else ""
        super().__init__(f"Object {name} ({objtype}) not found{where}")


class StateError(ABAPMigrationError):
    """Raised when state management errors occur."""

    pass


class ProjectNotFoundError(StateError):
    """Raised when a migration project does not exist."""

    pass


class ConfigurationError(ABAPMigrationError):
    """Raised when configuration is invalid or missing."""

    pass


class MigrationError(ABAPMigrationError):
    """Raised when migration operations fail."""

    pass


class DependencyParseError(MigrationError):
    """Raised when ABAP source cannot be split into statements."""

    pass


class AgentError(MigrationError):
    """Raised when the migration agent returns an unusable response."""

    pass


class MigrationCancelledError(ABAPMigrationError):
    """Raised at a checkpoint once the run's cancellation token has fired.

    This is the only way a paused run unwinds; it must never be treated as
    an ordinary unit or discovery failure.
    """

    def __init__(self, reason: str = "Migration paused"):
        self.reason = reason
        super().__init__(reason)
