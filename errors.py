"""Error taxonomy shared by the Flask handlers and the API client.

Service functions raise these; ``app.py`` turns them into
``{"error": message, "code": code}`` responses with the matching status,
and ``client.py`` turns such responses back into the same classes.
"""


class ApiError(Exception):
    status = 500
    code = "error"
    default_message = "Internal server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class BadRequest(ApiError):
    status = 400
    code = "bad_request"
    default_message = "Bad request"


class ValidationError(BadRequest):
    code = "validation_error"
    default_message = "Invalid request"


class ExpiredToken(BadRequest):
    code = "expired_token"
    default_message = "Token has expired"


class Unauthorized(ApiError):
    status = 401
    code = "unauthorized"
    default_message = "Unauthorized"


class Forbidden(ApiError):
    status = 403
    code = "forbidden"
    default_message = "Forbidden"


class NotFound(ApiError):
    status = 404
    code = "not_found"
    default_message = "Not found"


class Conflict(ApiError):
    status = 409
    code = "conflict"
    default_message = "Already exists"


class NetworkError(ApiError):
    """Raised client side when no usable response came back."""
    status = None
    code = "network_error"
    default_message = "Network error. Please try again."


_CLASSES = (BadRequest, ValidationError, ExpiredToken, Unauthorized, Forbidden, NotFound, Conflict)
BY_CODE = {cls.code: cls for cls in _CLASSES}
BY_STATUS = {400: BadRequest, 401: Unauthorized, 403: Forbidden, 404: NotFound, 409: Conflict}


def from_response(status, message, code=None):
    """Rebuild the error a server response stands for."""
    cls = BY_CODE.get(code) or BY_STATUS.get(status, ApiError)
    return cls(message)
