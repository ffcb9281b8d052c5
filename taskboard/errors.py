"""
Error taxonomy for taskboard.

Every error a service raises derives from TaskboardError and carries the HTTP
status the API answers with. The HTTP layer maps them to `{"error": message}`.
"""


class TaskboardError(Exception):
    """Base exception for all taskboard errors."""

    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(TaskboardError):
    """Malformed or missing client input."""

    status_code = 400
    default_message = "Invalid input"


class ConflictError(TaskboardError):
    """A uniqueness rule would be violated (username, email)."""

    status_code = 400
    default_message = "Already exists"


class AuthenticationError(TaskboardError):
    """Bad credentials. Answered with 400, not 401."""

    status_code = 400
    default_message = "Invalid credentials"


class AuthorizationError(TaskboardError):
    """No valid session."""

    status_code = 401
    default_message = "Unauthorized"


class NotFoundError(TaskboardError):
    """Missing resource, or one owned by somebody else."""

    status_code = 404
    default_message = "Not found"


class StorageError(TaskboardError):
    """Failure of the underlying store."""

    status_code = 500
    default_message = "Server error"


class ConfigurationError(TaskboardError):
    """Invalid environment configuration."""
