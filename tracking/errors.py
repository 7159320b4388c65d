# tracking/errors.py
from typing import Optional

class TrackingError(Exception):
    """Base tracking error."""
    def __init__(self, msg: str = "", **ctx):
        super().__init__(msg)
        self.msg = msg
        self.ctx = ctx

    def __str__(self):
        base = self.msg or self.__class__.__name__
        if self.ctx:
            details = ", ".join(f"{k}={v}" for k, v in self.ctx.items())
            return f"{base} [{details}]"
        return base

class ConfigError(TrackingError, ValueError):
    """Invalid tracker configuration (interval/duration constraints)."""

class AuthorityError(TrackingError):
    """Failure talking to the payment/membership authority."""

class NotFoundError(AuthorityError):
    """The authority does not know the requested id."""

class NetworkError(AuthorityError):
    """Transport failure or timeout; transient for polling purposes."""

class ApiError(AuthorityError):
    """Authority answered with success=false or an unusable payload."""
    def __init__(self, msg: str, *, status: Optional[int] = None, payload: Optional[dict] = None):
        super().__init__(msg)
        self.status = status
        self.payload = payload or {}
