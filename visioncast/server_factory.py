"""
FastAPI application factory.

``create_application`` builds a fully configured FastAPI instance: the
lifespan manager constructs the shared services and stores them on
``app.state``, then error handlers, rate limiting, middleware and routes
are registered.  Using a factory rather than a module-level global keeps
the application easy to re-create in tests.
"""

import collections.abc
import contextlib
import copy

import fastapi
import fastapi.middleware.cors
import fastapi.openapi.utils
import httpx
import slowapi.errors
import structlog

import configuration
import visioncast.authentication
import visioncast.background_tasks
import visioncast.error_handling
import visioncast.logging_config
import visioncast.metrics
import visioncast.middleware
import visioncast.rate_limiting
import visioncast.routes.creation_routes
import visioncast.routes.health_routes
import visioncast.routes.prompt_routes
import visioncast.services.creation_generation_service
import visioncast.services.creation_store
import visioncast.services.image_generation_orchestrator
import visioncast.services.image_providers
import visioncast.services.language_model_service
import visioncast.services.notification_service
import visioncast.services.prompt_enhancement_service

logger = structlog.get_logger()


def create_application(
    application_configuration: configuration.ApplicationConfiguration | None = None,
) -> fastapi.FastAPI:
    """
    Create and fully configure the FastAPI application.

    Args:
        application_configuration: Settings to use.  Read from the
            environment when omitted.
    """
    if application_configuration is None:
        application_configuration = configuration.ApplicationConfiguration()
    visioncast.logging_config.configure_logging(
        log_level=application_configuration.log_level,
    )

    metrics_collector = visioncast.metrics.MetricsCollector()
    in_flight_request_counter = visioncast.middleware.InFlightRequestCounter()

    @contextlib.asynccontextmanager
    async def application_lifespan(
        fastapi_application: fastapi.FastAPI,
    ) -> collections.abc.AsyncIterator[None]:
        """
        Build the shared services on startup; drain background
        generations and close outbound HTTP clients on shutdown.
        """
        language_model_service_instance = None
        if application_configuration.language_model_api_key:
            language_model_service_instance = visioncast.services.language_model_service.LanguageModelService(
                api_key=application_configuration.language_model_api_key,
                model_name=application_configuration.language_model_name,
                request_timeout_seconds=(application_configuration.timeout_for_language_model_requests_in_seconds),
                base_url=application_configuration.language_model_base_url,
                connection_pool_size=application_configuration.language_model_connection_pool_size,
                maximum_response_bytes=application_configuration.language_model_maximum_response_bytes,
            )
        else:
            logger.warning(
                "language_model_not_configured",
                detail="No language model API key is set; prompts will use basic enhancement.",
            )

        prompt_enhancement_service_instance = visioncast.services.prompt_enhancement_service.PromptEnhancementService(
            language_model_service_instance,
            maximum_attempts=application_configuration.language_model_maximum_attempts,
            rate_limit_backoff_seconds=application_configuration.language_model_rate_limit_backoff_seconds,
        )

        image_provider_http_client = httpx.AsyncClient(follow_redirects=True)
        image_provider_cascade = visioncast.services.image_providers.build_default_image_provider_cascade(
            image_provider_http_client,
            application_configuration,
        )

        image_generation_orchestrator = visioncast.services.image_generation_orchestrator.ImageGenerationOrchestrator(
            prompt_enhancement_service_instance,
            image_provider_cascade,
        )

        creation_store_instance = visioncast.services.creation_store.CreationStore()
        notification_service_instance = visioncast.services.notification_service.NotificationService()
        background_task_scheduler = visioncast.background_tasks.BackgroundTaskScheduler()

        creation_generation_service_instance = (
            visioncast.services.creation_generation_service.CreationGenerationService(
                creation_store=creation_store_instance,
                image_generation_orchestrator=image_generation_orchestrator,
                notification_service=notification_service_instance,
                background_task_scheduler=background_task_scheduler,
                maximum_concurrent_generations=application_configuration.maximum_concurrent_generations,
                metrics_collector=metrics_collector,
            )
        )

        fastapi_application.state.language_model_service = language_model_service_instance
        fastapi_application.state.prompt_enhancement_service = prompt_enhancement_service_instance
        fastapi_application.state.image_provider_cascade = image_provider_cascade
        fastapi_application.state.creation_store = creation_store_instance
        fastapi_application.state.notification_service = notification_service_instance
        fastapi_application.state.background_task_scheduler = background_task_scheduler
        fastapi_application.state.creation_generation_service = creation_generation_service_instance
        fastapi_application.state.access_token_verifier = visioncast.authentication.AccessTokenVerifier(
            token_secret=application_configuration.authentication_token_secret,
            token_algorithm=application_configuration.authentication_token_algorithm,
        )
        fastapi_application.state.metrics_collector = metrics_collector
        fastapi_application.state.retry_after_rate_limit_seconds = (
            application_configuration.retry_after_rate_limit_seconds
        )
        fastapi_application.state.retry_after_not_ready_seconds = (
            application_configuration.retry_after_not_ready_seconds
        )

        logger.info(
            "services_initialised",
            language_model=(
                application_configuration.language_model_name if language_model_service_instance else None
            ),
            image_providers=image_provider_cascade.provider_names,
            maximum_concurrent_generations=application_configuration.maximum_concurrent_generations,
        )

        yield

        logger.info(
            "graceful_shutdown_initiated",
            in_flight_requests=in_flight_request_counter.count,
            pending_generations=background_task_scheduler.pending_task_count,
        )

        await background_task_scheduler.drain(
            grace_period_seconds=application_configuration.background_task_shutdown_grace_seconds,
        )
        await image_provider_http_client.aclose()
        if language_model_service_instance is not None:
            await language_model_service_instance.close()
        logger.info("services_shutdown_complete")

    fastapi_application = fastapi.FastAPI(
        title="VisionCast Creations",
        description=(
            "Asynchronous AI image generation. Prompts are enhanced by a "
            "language model (with a rule-based fallback), rendered by a "
            "cascade of image providers ending in a placeholder, and "
            "tracked as creations that clients poll until they finish."
        ),
        version="1.0.0",
        lifespan=application_lifespan,
    )

    visioncast.error_handling.register_error_handlers(fastapi_application)

    visioncast.rate_limiting.generation_rate_limit_configuration.configure(
        application_configuration.rate_limit,
    )
    fastapi_application.state.limiter = visioncast.rate_limiting.rate_limiter
    fastapi_application.add_exception_handler(
        slowapi.errors.RateLimitExceeded,
        visioncast.rate_limiting.rate_limit_exceeded_handler,  # type: ignore[arg-type]
    )

    if application_configuration.cors_allowed_origins:
        fastapi_application.add_middleware(
            fastapi.middleware.cors.CORSMiddleware,
            allow_origins=application_configuration.cors_allowed_origins,
            allow_methods=["GET", "POST", "PATCH", "DELETE"],
            allow_headers=["Authorization", "Content-Type", "Accept"],
        )

    # ── Middleware registration ───────────────────────────────────────
    #
    # The last call to ``add_middleware`` is the outermost layer:
    #
    #   Request → CorrelationId → RequestTimeout → ContentType
    #           → PayloadSizeLimit → CORS → App

    fastapi_application.add_middleware(
        visioncast.middleware.RequestPayloadSizeLimitMiddleware,
        maximum_request_payload_bytes=application_configuration.maximum_request_payload_bytes,
    )

    fastapi_application.add_middleware(
        visioncast.middleware.ContentTypeValidationMiddleware,
    )

    fastapi_application.add_middleware(
        visioncast.middleware.RequestTimeoutMiddleware,
        request_timeout_seconds=application_configuration.timeout_for_requests_in_seconds,
    )

    fastapi_application.add_middleware(
        visioncast.middleware.CorrelationIdMiddleware,
        metrics_collector=metrics_collector,
        in_flight_request_counter=in_flight_request_counter,
    )

    fastapi_application.include_router(visioncast.routes.creation_routes.creation_router)
    fastapi_application.include_router(visioncast.routes.prompt_routes.prompt_router)
    fastapi_application.include_router(visioncast.routes.health_routes.health_router)

    _customise_openapi_schema(fastapi_application)

    return fastapi_application


def _customise_openapi_schema(fastapi_application: fastapi.FastAPI) -> None:
    """
    Replace the application's ``openapi()`` with a version that drops the
    422 responses FastAPI adds to every body-accepting route (validation
    failures are returned as 400 here) and documents the 404, 405 and 500
    responses every route can produce.
    """

    _error_response_schema_reference = {
        "content": {
            "application/json": {
                "schema": {
                    "$ref": "#/components/schemas/ErrorResponse",
                },
            },
        },
    }

    def customised_openapi() -> dict:
        if fastapi_application.openapi_schema:
            return fastapi_application.openapi_schema

        openapi_schema = fastapi.openapi.utils.get_openapi(
            title=fastapi_application.title,
            version=fastapi_application.version,
            description=fastapi_application.description,
            routes=fastapi_application.routes,
        )

        component_schemas = openapi_schema.setdefault("components", {}).setdefault("schemas", {})
        component_schemas.pop("HTTPValidationError", None)
        component_schemas.pop("ValidationError", None)

        global_error_responses = {
            "404": {
                **copy.deepcopy(_error_response_schema_reference),
                "description": "Not Found (``not_found`` or ``creation_not_found``).",
            },
            "405": {
                **copy.deepcopy(_error_response_schema_reference),
                "description": (
                    "Method Not Allowed (``method_not_allowed``). The ``Allow`` header lists permitted methods."
                ),
            },
            "500": {
                **copy.deepcopy(_error_response_schema_reference),
                "description": "Internal Server Error (``internal_server_error``).",
            },
        }

        for path_item in openapi_schema.get("paths", {}).values():
            for operation in path_item.values():
                if isinstance(operation, dict) and "responses" in operation:
                    operation["responses"].pop("422", None)
                    for status_code, response_schema in global_error_responses.items():
                        operation["responses"].setdefault(status_code, copy.deepcopy(response_schema))

        fastapi_application.openapi_schema = openapi_schema
        return openapi_schema

    fastapi_application.openapi = customised_openapi  # type: ignore[method-assign]
