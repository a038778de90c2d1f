"""Application error taxonomy.

Services raise these; the handler registered in ``app.main`` turns them into
``{"detail": ..., "code": ...}`` JSON responses with the matching status.
"""


class AppError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code


class AuthenticationError(AppError):
    """Missing or invalid principal."""

    status_code = 401
    code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class AuthorizationError(AppError):
    """Insufficient role or scope."""

    status_code = 403
    code = "AUTHORIZATION_ERROR"

    def __init__(self, message: str = "Not authorized for this action"):
        super().__init__(message)


class NotFoundError(AppError):
    """Absent or out-of-scope entity. Both cases look identical to callers."""

    status_code = 404
    code = "NOT_FOUND_ERROR"

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")
        self.resource = resource


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, fields: dict[str, str] | None = None):
        super().__init__(message)
        self.fields = fields or {}


class LLMServiceError(AppError):
    """Enrichment backend unavailable or unparseable (explicit calls only)."""

    status_code = 503
    code = "LLM_SERVICE_ERROR"

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class DatabaseError(AppError):
    status_code = 500
    code = "DATABASE_ERROR"

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error
