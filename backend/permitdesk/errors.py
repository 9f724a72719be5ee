"""Domain error taxonomy.

Each error is a werkzeug ``HTTPException`` so the application-wide error
handler renders it with the same JSON shape as ``abort()`` calls, adding a
stable machine-readable ``code``:

    {"error": {"status": 400, "title": "Bad Request", "detail": "...", "code": "INVALID_TRANSITION"}}
"""
from __future__ import annotations
from typing import Any, Dict, Optional
from werkzeug.exceptions import BadRequest, Forbidden, NotFound as _NotFound, Conflict as _Conflict


class ValidationError(BadRequest):
    error_code = 'VALIDATION_ERROR'

    def __init__(self, description: Optional[str] = None, extra: Optional[Dict[str, Any]] = None):
        super().__init__(description=description)
        self.extra = extra or {}


class InvalidTransition(BadRequest):
    error_code = 'INVALID_TRANSITION'

    def __init__(self, description: Optional[str] = None, extra: Optional[Dict[str, Any]] = None):
        super().__init__(description=description)
        self.extra = extra or {}


class Unauthorized(Forbidden):
    """Actor lacks the permission key or role for the operation (HTTP 403)."""
    error_code = 'UNAUTHORIZED'

    def __init__(self, description: Optional[str] = None, error_code: Optional[str] = None, extra: Optional[Dict[str, Any]] = None):
        super().__init__(description=description)
        if error_code:
            self.error_code = error_code
        self.extra = extra or {}


class NotFound(_NotFound):
    error_code = 'NOT_FOUND'

    def __init__(self, description: Optional[str] = None, extra: Optional[Dict[str, Any]] = None):
        super().__init__(description=description)
        self.extra = extra or {}


class Conflict(_Conflict):
    error_code = 'CONFLICT'

    def __init__(self, description: Optional[str] = None, extra: Optional[Dict[str, Any]] = None):
        super().__init__(description=description)
        self.extra = extra or {}


__all__ = ['ValidationError', 'InvalidTransition', 'Unauthorized', 'NotFound', 'Conflict']
