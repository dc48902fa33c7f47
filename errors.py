"""Error taxonomy shared by every StarWish service."""

from __future__ import annotations

from typing import Any, Dict, Optional


class StarWishError(Exception):
    """Raised when a StarWish service operation fails."""

    status_code = 400
    code = "error"
    message_key = "errors.generic"
    action = "retry"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
        message_key: Optional[str] = None,
    ):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        if message_key:
            self.message_key = message_key
        self.payload = payload or {"error": self.code}


class ValidationError(StarWishError):
    """Input rejected locally, before any backend call."""

    status_code = 400
    code = "validation_failed"
    message_key = "errors.validation"
    action = "fix_input"


class NotAuthenticated(StarWishError):
    status_code = 401
    code = "not_authenticated"
    message_key = "errors.signInRequired"
    action = "sign_in"


class NotFound(StarWishError):
    status_code = 404
    code = "not_found"
    message_key = "errors.notFound"
    action = "go_back"


class BackendRejected(StarWishError):
    """The backend answered with a semantic error (constraint, permission, missing row)."""

    status_code = 409
    code = "rejected"
    message_key = "errors.rejected"
    action = "retry"

    def __init__(self, message: str, *, conflict: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.conflict = conflict


class BackendUnavailable(StarWishError):
    """No usable response from the backend."""

    status_code = 503
    code = "backend_unavailable"
    message_key = "errors.connectivity"
    action = "retry"
