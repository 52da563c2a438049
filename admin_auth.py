import os
import secrets
from functools import wraps

from flask import request

from errors import UnauthorizedError


def admin_ok(req) -> bool:
    # Header auth only; no query params. Closed when ADMIN_API_KEY is unset.
    key = req.headers.get("X-Admin-Key", "")
    expected = os.getenv("ADMIN_API_KEY", "")
    return bool(expected) and secrets.compare_digest(key, expected)


def require_admin(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not admin_ok(request):
            raise UnauthorizedError("Admin access required")
        return view(*args, **kwargs)

    return wrapper
