"""
Agora - Error Taxonomy
========================
Exceptions shared by the authenticator, the realtime hub and the stores.

Each error carries a short machine-readable ``code`` and the HTTP status the
web layer should answer with when the error reaches a route:

    DuplicateUser            409  registration with a taken username
    InvalidCredentials       401  unknown user or wrong password
    NotAuthenticated         303  missing / expired session (redirect to login)
    PersistenceFailure       500  a store rejected a write or read
    StorageConnectionFailure 503  a store could not be reached at startup
"""

from http import HTTPStatus


class AgoraError(Exception):
    """Base class for all application errors."""

    code = "agora_error"
    status = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class DuplicateUser(AgoraError):
    code = "duplicate_user"
    status = HTTPStatus.CONFLICT

    def __init__(self, username: str):
        super().__init__(f"User '{username}' is already registered")
        self.username = username


class InvalidCredentials(AgoraError):
    code = "invalid_credentials"
    status = HTTPStatus.UNAUTHORIZED

    def __init__(self):
        super().__init__("Invalid username or password")


class NotAuthenticated(AgoraError):
    """Recoverable: the web layer answers with a redirect to the login page."""

    code = "not_authenticated"
    status = HTTPStatus.SEE_OTHER


class PersistenceFailure(AgoraError):
    code = "persistence_failure"

    def __init__(self, operation: str, cause: Exception | None = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"Persisting {operation} failed{detail}")
        self.operation = operation
        self.cause = cause


class StorageConnectionFailure(AgoraError):
    code = "storage_connection_failure"
    status = HTTPStatus.SERVICE_UNAVAILABLE

    def __init__(self, store: str, cause: Exception | None = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"Could not connect to {store}{detail}")
        self.store = store
        self.cause = cause
