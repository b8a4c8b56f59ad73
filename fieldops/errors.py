"""
Domain error taxonomy.

Services raise these; the app maps them to HTTP responses in one place
(see ``main.create_app``).
"""


class DomainError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    """Missing or malformed required field."""
    status_code = 400


class ReferentialError(DomainError):
    """A reference points outside the owning aggregate."""
    status_code = 400


class AccessDenied(DomainError):
    status_code = 403


class NotFoundError(DomainError):
    status_code = 404


class PersistenceError(DomainError):
    """Transaction failure. The message is generic; the cause is logged server-side."""
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
