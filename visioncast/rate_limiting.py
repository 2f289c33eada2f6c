"""
Per-client rate limiting for the generation and prompt endpoints.

Uses slowapi (backed by the ``limits`` library) to throttle requests per
client IP address.  The limit is read from ``VISIONCAST_RATE_LIMIT``
(default ``30/minute``).

slowapi decorators are applied when the route modules are imported, which
is before the configuration has been read.  The decorator therefore
receives a ``GenerationRateLimitConfiguration`` callable, which slowapi
invokes on every request; ``server_factory.create_application`` sets the
configured value once at startup.

The limiter and its configuration are module-level objects shared by
every application instance in the process.  Test fixtures call
``configure()`` and ``rate_limiter.reset()`` between tests.
"""

import fastapi
import fastapi.responses
import slowapi
import slowapi.errors
import slowapi.util

import visioncast.error_handling


class GenerationRateLimitConfiguration:
    """
    Holds the rate limit string for rate-limited endpoints.

    Written once at startup through ``configure()`` and read by slowapi
    on every request through ``__call__()``.
    """

    def __init__(self, default_rate_limit: str = "30/minute") -> None:
        self._rate_limit_string: str = default_rate_limit

    def configure(self, rate_limit_string: str) -> None:
        """
        Args:
            rate_limit_string: A ``limits`` specification such as
                ``"30/minute"`` or ``"500/day"``.
        """
        self._rate_limit_string = rate_limit_string

    def __call__(self) -> str:
        return self._rate_limit_string


generation_rate_limit_configuration = GenerationRateLimitConfiguration()

rate_limiter = slowapi.Limiter(key_func=slowapi.util.get_remote_address)

generation_rate_limit = rate_limiter.limit(generation_rate_limit_configuration)


async def rate_limit_exceeded_handler(
    request: fastapi.Request,
    rate_limit_exceeded_exception: slowapi.errors.RateLimitExceeded,
) -> fastapi.responses.JSONResponse:
    """
    Return HTTP 429 ``rate_limit_exceeded`` with a ``Retry-After`` header
    taken from ``app.state.retry_after_rate_limit_seconds``.
    """
    response = visioncast.error_handling.build_error_response(
        429,
        "rate_limit_exceeded",
        f"Rate limit exceeded: {rate_limit_exceeded_exception.detail}",
        getattr(request.state, "correlation_id", "unknown"),
    )
    response.headers["Retry-After"] = str(getattr(request.app.state, "retry_after_rate_limit_seconds", 60))
    return response
