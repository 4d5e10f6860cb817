"""Error taxonomy shared by services and routes.

Every error carries an HTTP status, a user-facing message and optional
structured context. Handlers in ``confreg.main`` render them as a flat
``{"error": message, **context}`` JSON body.
"""


class ApiError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, **self.context}


class BadRequest(ApiError):
    status_code = 400
    default_message = "Bad request"


class MissingRequiredFields(BadRequest):
    def __init__(self, missing: list[str]):
        super().__init__("Missing required information", missing=missing)
        self.missing = missing


class Unauthorized(ApiError):
    status_code = 401
    default_message = "unauthorized"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Unauthorized"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class MethodNotAllowed(ApiError):
    status_code = 405
    default_message = "Method not allowed"


class Conflict(ApiError):
    status_code = 409
    default_message = "Registration already exists"


class PayloadTooLarge(ApiError):
    status_code = 413
    default_message = "Payload too large"


class TooManyRequests(ApiError):
    status_code = 429
    default_message = "Service interruption: try again later"

    def __init__(self, retry_after_seconds: int, message: str | None = None):
        super().__init__(message, retryAfterSeconds=retry_after_seconds)
        self.retry_after_seconds = retry_after_seconds


class ServerError(ApiError):
    status_code = 500


class InsertFailed(ServerError):
    default_message = "insert_failed"
