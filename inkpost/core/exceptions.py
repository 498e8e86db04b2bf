"""Errors raised by the blog services.

Anything not listed here (database or storage failures) propagates unchanged
from the underlying library.
"""


class InkpostError(Exception):
    """Base exception for all Inkpost errors."""


class AuthenticationError(InkpostError):
    """Raised when an operation needs an authenticated user and there is none."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class InvalidCredentialsError(AuthenticationError):
    """Raised for any failed sign-in.

    Unknown usernames and wrong passwords share one message so callers cannot
    probe which usernames exist.
    """

    MESSAGE = "Invalid username or password"

    def __init__(self, message: str = MESSAGE):
        super().__init__(message)


class IncorrectPasswordError(AuthenticationError):
    def __init__(self, message: str = "Current password is incorrect"):
        super().__init__(message)


class AuthApiError(InkpostError):
    """Raised by the auth subsystem for rejected requests (duplicate email, weak password...)."""


class UsernameTakenError(InkpostError):
    def __init__(self, username: str):
        super().__init__(f"Username '{username}' is already taken")
        self.username = username


class SlugConflictError(InkpostError):
    def __init__(self, slug: str):
        super().__init__(f"Slug already exists: {slug}")
        self.slug = slug


class FileValidationError(InkpostError):
    """Raised before any upload when a file has the wrong type or is too large."""


class PostValidationError(InkpostError):
    pass


class RecordNotFoundError(InkpostError):
    """Raised when a mutation affects or returns no rows."""


class InvalidStateTransition(InkpostError):
    pass


class PermissionDeniedError(InkpostError):
    pass
