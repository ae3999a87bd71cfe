from typing import Any, Dict, Optional


class APIError(Exception):
    """An error that is rendered to the client as `{"error": message, ...}`."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message}
        body.update({k: v for k, v in self.extra.items() if v is not None})
        return body


class InvalidRequestError(APIError):
    status_code = 400


class AuthenticationError(APIError):
    status_code = 401


class NotFoundError(APIError):
    status_code = 404


class ConfigurationError(APIError):
    status_code = 500


class UpstreamError(APIError):
    """A failure reported by (or while reaching) the payment gateway."""

    def __init__(self, message: str, status_code: int = 500, code: Optional[str] = None,
                 field: Optional[str] = None):
        super().__init__(message, status_code=status_code, code=code, field=field)
        self.code = code
        self.field = field
