"""Tests for visioncast/middleware.py: InFlightRequestCounter,
CorrelationIdMiddleware, RequestTimeoutMiddleware,
ContentTypeValidationMiddleware, and RequestPayloadSizeLimitMiddleware."""

import asyncio
import uuid

import fastapi
import httpx
import pytest
import pytest_asyncio
import structlog

import visioncast.metrics
import visioncast.middleware


def _create_test_app(
    metrics_collector: visioncast.metrics.MetricsCollector | None = None,
    request_timeout_seconds: float = 5.0,
    maximum_request_payload_bytes: int = 100,
) -> fastapi.FastAPI:
    """
    Minimal application with the full middleware stack, registered in the
    same order as the server factory.
    """
    app = fastapi.FastAPI()

    @app.get("/correlation")
    async def correlation_endpoint(request: fastapi.Request):
        return {
            "correlation_id": request.state.correlation_id,
            "bound_correlation_id": structlog.contextvars.get_contextvars().get("correlation_id"),
        }

    @app.get("/error")
    async def error_endpoint():
        raise RuntimeError("something broke")

    @app.get("/slow")
    async def slow_endpoint():
        await asyncio.sleep(5.0)
        return {"status": "completed"}

    @app.post("/echo")
    async def echo_endpoint(request: fastapi.Request):
        return {"received_bytes": len(await request.body())}

    @app.patch("/echo")
    async def patch_echo_endpoint(request: fastapi.Request):
        return {"received_bytes": len(await request.body())}

    @app.get("/creations/{creation_id}")
    async def creation_endpoint(creation_id: str):
        return {"creation_id": creation_id}

    app.add_middleware(
        visioncast.middleware.RequestPayloadSizeLimitMiddleware,
        maximum_request_payload_bytes=maximum_request_payload_bytes,
    )
    app.add_middleware(visioncast.middleware.ContentTypeValidationMiddleware)
    app.add_middleware(
        visioncast.middleware.RequestTimeoutMiddleware,
        request_timeout_seconds=request_timeout_seconds,
    )
    app.add_middleware(
        visioncast.middleware.CorrelationIdMiddleware,
        metrics_collector=metrics_collector,
    )
    return app


@pytest.fixture
def metrics_collector():
    return visioncast.metrics.MetricsCollector()


@pytest_asyncio.fixture
async def client(metrics_collector):
    app = _create_test_app(metrics_collector=metrics_collector, request_timeout_seconds=0.1)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


class TestInFlightRequestCounter:

    def test_initial_count_is_zero(self):
        assert visioncast.middleware.InFlightRequestCounter().count == 0

    def test_increments_and_decrements(self):
        counter = visioncast.middleware.InFlightRequestCounter()
        counter.increment()
        counter.increment()
        counter.decrement()
        assert counter.count == 1

    @pytest.mark.asyncio
    async def test_counter_decremented_even_on_unhandled_exception(self):
        counter = visioncast.middleware.InFlightRequestCounter()

        async def failing_app(scope, receive, send):
            raise RuntimeError("boom")

        middleware = visioncast.middleware.CorrelationIdMiddleware(
            failing_app,
            in_flight_request_counter=counter,
        )
        sent_messages: list[dict] = []

        async def send(message: dict) -> None:
            sent_messages.append(message)

        async def receive() -> dict:
            return {"type": "http.request", "body": b"", "more_body": False}

        await middleware({"type": "http", "method": "GET", "path": "/", "headers": []}, receive, send)

        assert counter.count == 0
        assert sent_messages[0]["status"] == 500


class TestHeaderHelpers:

    def test_extract_header_value_is_case_insensitive(self):
        headers = [(b"Content-Type", b" application/json ")]
        assert visioncast.middleware.extract_header_value(headers, b"content-type") == "application/json"

    def test_malformed_content_length_is_none(self):
        assert visioncast.middleware.extract_content_length_from_headers([(b"content-length", b"abc")]) is None

    def test_missing_content_length_is_none(self):
        assert visioncast.middleware.extract_content_length_from_headers([]) is None


class TestCorrelationIdMiddleware:

    @pytest.mark.asyncio
    async def test_header_is_a_uuid4_matching_request_state(self, client):
        response = await client.get("/correlation")

        correlation_id = response.headers["X-Correlation-ID"]
        assert str(uuid.UUID(correlation_id, version=4)) == correlation_id
        assert response.json()["correlation_id"] == correlation_id

    @pytest.mark.asyncio
    async def test_correlation_id_is_bound_to_log_context(self, client):
        response = await client.get("/correlation")
        assert response.json()["bound_correlation_id"] == response.headers["X-Correlation-ID"]

    @pytest.mark.asyncio
    async def test_unique_per_request(self, client):
        first_response = await client.get("/correlation")
        second_response = await client.get("/correlation")
        assert first_response.headers["X-Correlation-ID"] != second_response.headers["X-Correlation-ID"]

    @pytest.mark.asyncio
    async def test_unhandled_exception_returns_json_500(self, client):
        response = await client.get("/error")

        assert response.status_code == 500
        body = response.json()
        assert body["error"]["code"] == "internal_server_error"
        assert body["error"]["correlation_id"] == response.headers["X-Correlation-ID"]

    @pytest.mark.asyncio
    async def test_records_request_metrics_with_normalised_path(self, client, metrics_collector):
        await client.get("/creations/0123456789abcdef0123456789abcdef")

        request_counts = metrics_collector.snapshot()["request_counts"]
        assert request_counts == {"GET /creations/{creation_id} 200": 1}

    @pytest.mark.asyncio
    async def test_non_http_scope_passed_through(self):
        inner_called = False

        async def inner_app(scope, receive, send):
            nonlocal inner_called
            inner_called = True

        middleware = visioncast.middleware.CorrelationIdMiddleware(inner_app)
        await middleware({"type": "lifespan"}, None, None)

        assert inner_called


class TestRequestTimeoutMiddleware:

    @pytest.mark.asyncio
    async def test_fast_request_completes_normally(self, client):
        response = await client.get("/correlation")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_slow_request_returns_504(self, client):
        response = await client.get("/slow")

        assert response.status_code == 504
        body = response.json()
        assert body["error"]["code"] == "request_timeout"
        assert body["error"]["correlation_id"] == response.headers["X-Correlation-ID"]

    @pytest.mark.asyncio
    async def test_timeout_after_headers_sent_does_not_replace_response(self):
        async def streaming_app(scope, receive, send):
            await send({"type": "http.response.start", "status": 200, "headers": []})
            await asyncio.sleep(5.0)

        middleware = visioncast.middleware.RequestTimeoutMiddleware(streaming_app, request_timeout_seconds=0.05)
        sent_messages: list[dict] = []

        async def send(message: dict) -> None:
            sent_messages.append(message)

        await middleware({"type": "http", "method": "GET", "path": "/stream", "headers": []}, None, send)

        assert [message["type"] for message in sent_messages] == ["http.response.start"]
        assert sent_messages[0]["status"] == 200


class TestContentTypeValidationMiddleware:

    @pytest.mark.asyncio
    async def test_post_with_json_content_type_passes(self, client):
        response = await client.post("/echo", content=b"{}", headers={"Content-Type": "application/json"})
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_charset_parameter_is_accepted(self, client):
        response = await client.post(
            "/echo",
            content=b"{}",
            headers={"Content-Type": "application/json; charset=utf-8"},
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_post_with_wrong_content_type_returns_415(self, client):
        response = await client.post("/echo", content=b"a=b", headers={"Content-Type": "text/plain"})

        assert response.status_code == 415
        assert response.json()["error"]["code"] == "unsupported_media_type"
        assert "X-Correlation-ID" in response.headers

    @pytest.mark.asyncio
    async def test_patch_without_content_type_returns_415(self, client):
        response = await client.patch("/echo", content=b"{}")
        assert response.status_code == 415

    @pytest.mark.asyncio
    async def test_get_request_bypasses_content_type_check(self, client):
        response = await client.get("/correlation")
        assert response.status_code == 200


class TestRequestPayloadSizeLimitMiddleware:

    @pytest.mark.asyncio
    async def test_request_exactly_at_limit_passes(self, client):
        response = await client.post(
            "/echo",
            content=b"x" * 100,
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 200
        assert response.json() == {"received_bytes": 100}

    @pytest.mark.asyncio
    async def test_content_length_exceeding_limit_returns_413(self, client):
        response = await client.post(
            "/echo",
            content=b"x" * 101,
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 413
        body = response.json()
        assert body["error"]["code"] == "payload_too_large"
        assert "100" in body["error"]["message"]

    @pytest.mark.asyncio
    async def test_streaming_body_exceeding_limit_returns_413(self):
        """Without Content-Length the streamed bytes are counted."""
        body_read_by_application = b""

        async def reading_app(scope, receive, send):
            nonlocal body_read_by_application
            while True:
                message = await receive()
                body_read_by_application += message.get("body", b"")
                if not message.get("more_body", False):
                    break
            await send({"type": "http.response.start", "status": 200, "headers": []})
            await send({"type": "http.response.body", "body": b"ok"})

        chunks = [
            {"type": "http.request", "body": b"x" * 60, "more_body": True},
            {"type": "http.request", "body": b"x" * 60, "more_body": False},
        ]

        async def receive() -> dict:
            return chunks.pop(0)

        sent_messages: list[dict] = []

        async def send(message: dict) -> None:
            sent_messages.append(message)

        middleware = visioncast.middleware.RequestPayloadSizeLimitMiddleware(
            reading_app,
            maximum_request_payload_bytes=100,
        )
        await middleware(
            {
                "type": "http",
                "method": "POST",
                "path": "/upload",
                "headers": [],
                "state": {"correlation_id": "test-correlation-id"},
            },
            receive,
            send,
        )

        assert len(body_read_by_application) == 60
        assert sent_messages[0]["status"] == 413
        assert b"test-correlation-id" in sent_messages[1]["body"]

    @pytest.mark.asyncio
    async def test_non_exceeding_exception_is_re_raised(self):
        async def failing_app(scope, receive, send):
            raise ValueError("unrelated")

        middleware = visioncast.middleware.RequestPayloadSizeLimitMiddleware(failing_app)

        with pytest.raises(ValueError):
            await middleware({"type": "http", "method": "POST", "path": "/", "headers": []}, None, None)
