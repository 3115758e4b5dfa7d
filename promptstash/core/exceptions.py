"""Custom exception classes for the PromptStash API."""

from fastapi import HTTPException, status


class StashPlatformError(Exception):
    """Base exception for PromptStash."""

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class AuthenticationError(StashPlatformError):
    """Raised when authentication fails."""
    pass


class AuthorizationError(StashPlatformError):
    """Raised when user lacks permission."""
    pass


class ResourceNotFoundError(StashPlatformError):
    """Raised when a requested resource is not found."""
    pass


class ResourceConflictError(StashPlatformError):
    """Raised when a write collides with concurrent state."""
    pass


class VersionConflictError(ResourceConflictError):
    """Raised when no free version number was found within the retry budget.

    This reflects contention on a single file, not inconsistency. The
    enclosing transaction has been rolled back and the client may retry.
    """

    retryable = True

    def __init__(self, file_id: int, attempts: int):
        self.file_id = file_id
        self.attempts = attempts
        super().__init__(
            f"Failed to create version for file {file_id} after {attempts} "
            f"attempts due to version conflicts"
        )


class TransactionTimeoutError(StashPlatformError):
    """Raised when the store aborts a transaction for exceeding its timeout."""

    retryable = True


class ValidationError(StashPlatformError):
    """Raised when input validation fails."""
    pass


# HTTP exception shortcuts
def unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)
