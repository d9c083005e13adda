# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify

from .services import security_service
from .services.registry import get_services


def _client_key() -> str:
    return request.remote_addr or "unknown"


def rate_limited(f):
    """
    Throttle a route per client address (fixed window).

    The limiter comes from the app's service bundle, so every route wrapped
    with this decorator shares one counter per client. Rejections return 429
    with Retry-After and are recorded as RATE_LIMITED security events.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        limiter = get_services().rate_limiter
        result = limiter.hit(_client_key())

        if not result.allowed:
            security_service.log_security_event(
                event_type="RATE_LIMITED",
                success=False,
                resource=request.path,
                action=request.method,
                reason=f"More than {result.limit} requests in window",
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
            )
            response = jsonify({
                "error": "Too many requests",
                "retry_after_seconds": result.retry_after_seconds,
            })
            response.status_code = 429
            response.headers.update(result.headers())
            return response

        response = f(*args, **kwargs)
        return response

    return decorated_function
