"""
Custom Exceptions

Centralized exception definitions for error handling.
Each one is an HTTPException with a stable machine-readable ``code`` so
clients can branch on it instead of on the message text.
"""
from fastapi import HTTPException, status


class AppError(HTTPException):
    """Base class for errors rendered as {"detail": ..., "code": ...}."""

    code = "error"

    def __init__(self, status_code: int, detail: str, code: str | None = None, headers: dict | None = None):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        if code is not None:
            self.code = code


class InvalidInputError(AppError):
    """Raised when input validation fails."""

    code = "invalid_input"

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(status.HTTP_400_BAD_REQUEST, detail)


class AuthenticationError(AppError):
    """Raised when authentication fails."""

    code = "unauthorized"

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status.HTTP_401_UNAUTHORIZED,
            detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenError(AppError):
    """Raised when the caller lacks the permission or ownership an action requires."""

    code = "forbidden"

    def __init__(self, detail: str = "Insufficient permissions"):
        super().__init__(status.HTTP_403_FORBIDDEN, detail)


class NotFoundError(AppError):
    """Raised when an entity cannot be found (or is soft-deleted)."""

    code = "not_found"

    def __init__(self, entity: str = "Resource", code: str | None = None):
        super().__init__(status.HTTP_404_NOT_FOUND, f"{entity} not found", code=code)


class ConflictError(AppError):
    """Raised on uniqueness violations and on deletes blocked by references."""

    code = "conflict"

    def __init__(self, detail: str = "Resource already exists", code: str | None = None):
        super().__init__(status.HTTP_409_CONFLICT, detail, code=code)


class AlreadyMemberError(ConflictError):
    """The user already holds an active membership in the organization."""

    def __init__(self, detail: str = "User is already a member of this organization"):
        super().__init__(detail, code="already_member")


class InvitationNotFoundError(NotFoundError):

    def __init__(self):
        super().__init__("Invitation", code="invitation_not_found")


class InvitationExpiredError(AppError):

    code = "invitation_expired"

    def __init__(self, detail: str = "Invitation expired"):
        super().__init__(status.HTTP_410_GONE, detail)


class InvitationAlreadyProcessedError(ConflictError):
    """The invitation was accepted already, possibly by a concurrent request."""

    def __init__(self, detail: str = "Invitation has already been processed"):
        super().__init__(detail, code="invitation_already_processed")
