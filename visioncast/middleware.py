"""
HTTP middleware for the creations service.

All middleware here is pure ASGI, which keeps unhandled exceptions
catchable at the outermost layer instead of being wrapped by
``BaseHTTPMiddleware``.

- **CorrelationIdMiddleware** (outermost): assigns a UUID v4 correlation
  ID to every request, binds it to the structlog context, echoes it in the
  ``X-Correlation-ID`` header, logs request start and completion, records
  request metrics, and converts any unhandled exception into a JSON 500.
- **RequestTimeoutMiddleware**: aborts requests that exceed the configured
  end-to-end duration with HTTP 504 (``request_timeout``).  Background
  generations run in their own tasks and are not affected.
- **ContentTypeValidationMiddleware**: rejects POST, PUT and PATCH requests
  whose ``Content-Type`` is not ``application/json`` with HTTP 415.
- **RequestPayloadSizeLimitMiddleware**: rejects request bodies larger than
  the configured limit with HTTP 413, from the ``Content-Length`` header
  when present and from the streamed byte count otherwise.

Execution order (last registered is outermost)::

    Request → CorrelationId → RequestTimeout → ContentType → PayloadSizeLimit → CORS → App
"""

import asyncio
import json
import threading
import time
import uuid

import starlette.types
import structlog
import structlog.contextvars

import visioncast.metrics

logger = structlog.get_logger()


class InFlightRequestCounter:
    """
    Thread-safe count of HTTP requests currently being processed.

    Read at shutdown so the ``graceful_shutdown_initiated`` log entry can
    report how many requests were still in progress.
    """

    def __init__(self) -> None:
        self._count: int = 0
        self._lock = threading.Lock()

    def increment(self) -> None:
        with self._lock:
            self._count += 1

    def decrement(self) -> None:
        with self._lock:
            self._count -= 1

    @property
    def count(self) -> int:
        return self._count


def extract_header_value(headers: list[tuple[bytes, bytes]], header_name: bytes) -> str | None:
    """Return the decoded value of the first matching ASGI header, or ``None``."""
    for candidate_name, candidate_value in headers:
        if candidate_name.lower() == header_name:
            return candidate_value.decode("latin-1").strip()
    return None


def extract_content_length_from_headers(
    headers: list[tuple[bytes, bytes]],
) -> int | None:
    """
    Return the integer ``Content-Length`` of an ASGI header list, or
    ``None`` if the header is absent or not an integer.
    """
    content_length_value = extract_header_value(headers, b"content-length")
    if content_length_value is None:
        return None
    try:
        return int(content_length_value)
    except ValueError:
        return None


def _correlation_id_from_scope(scope: starlette.types.Scope) -> str:
    return scope.get("state", {}).get("correlation_id", "unknown")


async def send_json_error_response(
    send: starlette.types.Send,
    status_code: int,
    code: str,
    message: str,
    correlation_id: str,
    extra_headers: list[tuple[bytes, bytes]] | None = None,
) -> int:
    """
    Send a complete error response in the standard envelope.

    Returns:
        The number of body bytes sent.
    """
    response_body = json.dumps(
        {
            "error": {
                "code": code,
                "message": message,
                "correlation_id": correlation_id,
            }
        }
    ).encode()

    await send(
        {
            "type": "http.response.start",
            "status": status_code,
            "headers": [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(response_body)).encode()),
                *(extra_headers or []),
            ],
        }
    )
    await send({"type": "http.response.body", "body": response_body})
    return len(response_body)


class CorrelationIdMiddleware:
    """
    Assign a correlation ID to every request and act as the final error
    boundary.

    The ID is stored in ``scope["state"]["correlation_id"]`` (readable as
    ``request.state.correlation_id``) and bound to the structlog context
    variables, so every log entry emitted while handling the request,
    including those of background tasks it schedules, carries it.
    """

    def __init__(
        self,
        app: starlette.types.ASGIApp,
        metrics_collector: visioncast.metrics.MetricsCollector | None = None,
        in_flight_request_counter: InFlightRequestCounter | None = None,
    ) -> None:
        self.app = app
        self._metrics_collector = metrics_collector
        self._in_flight_request_counter = in_flight_request_counter

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        correlation_id = str(uuid.uuid4())
        method = scope.get("method", "")
        path = scope.get("path", "")
        start_time = time.monotonic()
        response_status = 0
        response_started = False

        scope.setdefault("state", {})["correlation_id"] = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        logger.info(
            "http_request_received",
            method=method,
            path=path,
            request_payload_bytes=extract_content_length_from_headers(scope.get("headers", [])),
        )

        if self._in_flight_request_counter is not None:
            self._in_flight_request_counter.increment()

        async def send_with_correlation_id(message: starlette.types.Message) -> None:
            nonlocal response_status, response_started
            if message["type"] == "http.response.start":
                response_started = True
                response_status = message.get("status", 0)
                message["headers"] = [
                    *message.get("headers", []),
                    (b"x-correlation-id", correlation_id.encode()),
                ]
            await send(message)

        try:
            await self.app(scope, receive, send_with_correlation_id)
        except Exception:
            logger.exception("unexpected_exception", method=method, path=path)
            response_status = 500
            if not response_started:
                await send_json_error_response(
                    send,
                    500,
                    "internal_server_error",
                    "An unexpected internal error occurred.",
                    correlation_id,
                    extra_headers=[(b"x-correlation-id", correlation_id.encode())],
                )
        finally:
            if self._in_flight_request_counter is not None:
                self._in_flight_request_counter.decrement()

            duration_milliseconds = round((time.monotonic() - start_time) * 1000, 1)
            logger.info(
                "http_request_completed",
                method=method,
                path=path,
                status=response_status,
                duration_milliseconds=duration_milliseconds,
            )
            if self._metrics_collector is not None:
                self._metrics_collector.record_request(
                    method=method,
                    path=path,
                    status=response_status,
                    duration_milliseconds=duration_milliseconds,
                )


class RequestTimeoutMiddleware:
    """
    Abort any request that runs longer than ``request_timeout_seconds``.

    If the inner application has already sent response headers when the
    timeout fires, the status is committed; the timeout is logged and the
    response is left as is.
    """

    def __init__(
        self,
        app: starlette.types.ASGIApp,
        request_timeout_seconds: float = 30.0,
    ) -> None:
        self.app = app
        self._request_timeout_seconds = request_timeout_seconds

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_headers_already_sent = False

        async def send_with_header_tracking(message: starlette.types.Message) -> None:
            nonlocal response_headers_already_sent
            if message["type"] == "http.response.start":
                response_headers_already_sent = True
            await send(message)

        try:
            await asyncio.wait_for(
                self.app(scope, receive, send_with_header_tracking),
                timeout=self._request_timeout_seconds,
            )
        except TimeoutError:
            logger.error(
                "request_timeout_exceeded",
                timeout_seconds=self._request_timeout_seconds,
                path=scope.get("path", ""),
                method=scope.get("method", ""),
                response_headers_already_sent=response_headers_already_sent,
            )
            if response_headers_already_sent:
                return
            await send_json_error_response(
                send,
                504,
                "request_timeout",
                "The request exceeded the maximum allowed processing time and was aborted.",
                _correlation_id_from_scope(scope),
            )


class ContentTypeValidationMiddleware:
    """
    Require ``application/json`` on requests that carry a body.

    Only POST, PUT and PATCH are checked.  Parameters such as
    ``; charset=utf-8`` are accepted.
    """

    _METHODS_REQUIRING_JSON_BODY: frozenset[str] = frozenset({"POST", "PUT", "PATCH"})

    def __init__(self, app: starlette.types.ASGIApp) -> None:
        self.app = app

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] != "http" or scope.get("method", "") not in self._METHODS_REQUIRING_JSON_BODY:
            await self.app(scope, receive, send)
            return

        content_type_value = extract_header_value(scope.get("headers", []), b"content-type")
        if content_type_value is None or not content_type_value.lower().startswith("application/json"):
            logger.warning(
                "http_unsupported_media_type",
                received_content_type=content_type_value,
                expected_content_type="application/json",
            )
            await send_json_error_response(
                send,
                415,
                "unsupported_media_type",
                "The Content-Type header must be 'application/json'. This API only accepts JSON request bodies.",
                _correlation_id_from_scope(scope),
            )
            return

        await self.app(scope, receive, send)


class RequestPayloadSizeLimitMiddleware:
    """
    Reject request bodies larger than ``maximum_request_payload_bytes``.

    A declared ``Content-Length`` above the limit is rejected before any
    body byte is read.  Without a usable ``Content-Length`` the streamed
    bytes are counted; once the limit is crossed the application receives
    an empty final chunk and, provided it has not started responding, the
    client receives the 413 response.
    """

    def __init__(
        self,
        app: starlette.types.ASGIApp,
        maximum_request_payload_bytes: int = 65_536,
    ) -> None:
        self.app = app
        self._maximum_request_payload_bytes = maximum_request_payload_bytes

    def _payload_too_large_message(self) -> str:
        return f"The request payload exceeds the maximum allowed size of {self._maximum_request_payload_bytes} bytes."

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        declared_content_length = extract_content_length_from_headers(scope.get("headers", []))
        if declared_content_length is not None and declared_content_length > self._maximum_request_payload_bytes:
            logger.warning(
                "http_payload_too_large",
                declared_content_length=declared_content_length,
                maximum_allowed_bytes=self._maximum_request_payload_bytes,
            )
            await send_json_error_response(
                send,
                413,
                "payload_too_large",
                self._payload_too_large_message(),
                _correlation_id_from_scope(scope),
            )
            return

        accumulated_body_bytes = 0
        payload_limit_exceeded = False
        response_started = False

        async def receive_with_size_tracking() -> starlette.types.Message:
            nonlocal accumulated_body_bytes, payload_limit_exceeded
            message = await receive()
            if message["type"] == "http.request":
                accumulated_body_bytes += len(message.get("body", b""))
                if accumulated_body_bytes > self._maximum_request_payload_bytes:
                    payload_limit_exceeded = True
                    logger.warning(
                        "http_payload_too_large",
                        accumulated_bytes=accumulated_body_bytes,
                        maximum_allowed_bytes=self._maximum_request_payload_bytes,
                    )
                    return {"type": "http.request", "body": b"", "more_body": False}
            return message

        async def send_unless_payload_rejected(message: starlette.types.Message) -> None:
            nonlocal response_started
            if payload_limit_exceeded and not response_started:
                return
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive_with_size_tracking, send_unless_payload_rejected)
        except Exception:
            if not payload_limit_exceeded:
                raise

        if payload_limit_exceeded and not response_started:
            await send_json_error_response(
                send,
                413,
                "payload_too_large",
                self._payload_too_large_message(),
                _correlation_id_from_scope(scope),
            )
