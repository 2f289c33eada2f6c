"""
Route definitions for health, readiness, and metrics endpoints.

- ``GET /health``: liveness probe; HTTP 200 whenever the process runs.

- ``GET /health/ready``: readiness probe.  The service is ready once the
  generation pipeline has been built at startup.  The language model is
  reported (``ok``, ``unconfigured`` or ``unavailable``) but does not
  decide readiness, because generations fall back to the basic
  enhancement without it.  The image provider cascade always ends in the
  placeholder provider, so it is listed rather than probed.  When not
  ready the response is HTTP 503 with a ``Retry-After`` header.

- ``GET /metrics``: request counts, latencies and generation outcomes in
  JSON.

All three responses carry ``Cache-Control: no-store, no-cache`` and
``Pragma: no-cache``.
"""

import typing

import fastapi
import fastapi.responses
import structlog

logger = structlog.get_logger()

health_router = fastapi.APIRouter(tags=["Health"])

_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS: dict[str, str] = {
    "Cache-Control": "no-store, no-cache",
    "Pragma": "no-cache",
}


@health_router.get(
    "/health",
    summary="Liveness check",
    description="Returns a simple healthy status when the service is running.",
    status_code=200,
    responses={
        200: {
            "description": "The service process is running and accepting requests.",
            "content": {"application/json": {"example": {"status": "healthy"}}},
        },
    },
)
async def health_check() -> fastapi.responses.JSONResponse:
    return fastapi.responses.JSONResponse(
        content={"status": "healthy"},
        headers=_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS,
    )


@health_router.get(
    "/health/ready",
    summary="Readiness check",
    description=(
        "Reports whether the generation pipeline is initialised, together "
        "with the state of the language model and the configured image "
        "providers. Returns HTTP 503 with a Retry-After header when the "
        "pipeline is not initialised."
    ),
    status_code=200,
    responses={
        200: {
            "description": "The generation pipeline is ready to accept submissions.",
            "content": {
                "application/json": {
                    "example": {
                        "status": "ready",
                        "checks": {
                            "generation_pipeline": "ok",
                            "language_model": "unconfigured",
                            "image_providers": ["pollinations", "huggingface", "dezgo", "placeholder"],
                        },
                    },
                },
            },
        },
        503: {
            "description": "Service Unavailable: the generation pipeline has not been initialised.",
            "headers": {
                "Retry-After": {
                    "description": "Number of seconds to wait before retrying the readiness check.",
                    "schema": {"type": "integer"},
                },
            },
        },
    },
)
async def readiness_check(request: fastapi.Request) -> fastapi.responses.JSONResponse:
    checks: dict[str, typing.Any] = {}

    generation_pipeline_is_ready = getattr(request.app.state, "creation_generation_service", None) is not None
    checks["generation_pipeline"] = "ok" if generation_pipeline_is_ready else "unavailable"

    language_model_service = getattr(request.app.state, "language_model_service", None)
    if language_model_service is None:
        checks["language_model"] = "unconfigured"
    else:
        try:
            language_model_is_healthy = await language_model_service.check_health()
        except Exception:
            logger.warning("language_model_health_check_failed", exc_info=True)
            language_model_is_healthy = False
        checks["language_model"] = "ok" if language_model_is_healthy else "unavailable"

    image_provider_cascade = getattr(request.app.state, "image_provider_cascade", None)
    checks["image_providers"] = image_provider_cascade.provider_names if image_provider_cascade is not None else []

    response_headers: dict[str, str] = dict(_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS)
    if not generation_pipeline_is_ready:
        response_headers["Retry-After"] = str(getattr(request.app.state, "retry_after_not_ready_seconds", 10))

    return fastapi.responses.JSONResponse(
        content={
            "status": "ready" if generation_pipeline_is_ready else "not_ready",
            "checks": checks,
        },
        status_code=200 if generation_pipeline_is_ready else 503,
        headers=response_headers,
    )


@health_router.get(
    "/metrics",
    summary="Service metrics",
    description=(
        "Returns request counts and latencies per endpoint, and generation "
        "outcomes by status and by image provider, in JSON format."
    ),
    status_code=200,
)
async def get_metrics(request: fastapi.Request) -> fastapi.responses.JSONResponse:
    """
    Return a point-in-time snapshot from the metrics collector, with
    ``collected_at`` and ``service_started_at`` timestamps.
    """
    metrics_collector = getattr(request.app.state, "metrics_collector", None)
    if metrics_collector is None:
        content: dict[str, typing.Any] = {
            "request_counts": {},
            "request_latencies": {},
            "generation_outcomes": {"by_status": {}, "by_provider": {}},
        }
    else:
        content = metrics_collector.snapshot()

    return fastapi.responses.JSONResponse(
        content=content,
        headers=_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS,
    )
