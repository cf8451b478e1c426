"""
Error taxonomy for the membership API. Every ApiError maps to one HTTP status
and is rendered by the router as {"success": false, "error": message}.
"""


class ApiError(Exception):
    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ApiError):
    status = 400


class DuplicateError(ApiError):
    status = 400


class AuthError(ApiError):
    status = 401


class NotFoundError(ApiError):
    status = 404


class MethodNotAllowed(ApiError):
    status = 405


class InternalError(ApiError):
    status = 500


class StoreError(Exception):
    """Raised by record store adapters when the backend fails."""
