"""Error taxonomy for call tracking."""


class CallTrackingError(Exception):
    """Base error carrying the HTTP status and machine code surfaced to callers."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class NotAuthenticated(CallTrackingError):
    status_code = 401
    code = "unauthorized"


class NotAuthorized(CallTrackingError):
    status_code = 403
    code = "forbidden"


class CallNotFound(CallTrackingError):
    status_code = 404
    code = "call_not_found"


class ValidationFailure(CallTrackingError):
    status_code = 400
    code = "invalid_request"


class StorageFailure(CallTrackingError):
    status_code = 500
    code = "storage_error"


class NoLatencyData(CallTrackingError):
    status_code = 404
    code = "no_latency_data"
