"""Shared fixtures for route integration tests."""

import datetime
from unittest.mock import AsyncMock, MagicMock

import fastapi
import httpx
import pytest
import pytest_asyncio
import slowapi.errors

import visioncast.background_tasks
import visioncast.error_handling
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
import visioncast.services.notification_service
import visioncast.services.prompt_enhancement_service


@pytest.fixture
def mock_image_generation_orchestrator():
    """
    Orchestrator double returning a completed generation from the
    ``pollinations`` provider.
    """
    generation_result = visioncast.services.image_generation_orchestrator.ImageGenerationResult(
        image_url="https://image.example/generated.jpg",
        enhanced_prompt="A red fox in snow, photorealistic",
        original_prompt="A red fox in snow",
        style="realistic",
        size="1024x1024",
        quality="high",
        metadata=visioncast.services.image_generation_orchestrator.ImageGenerationMetadata(
            enhancement_method="basic",
            provider_used="pollinations",
            model="Basic Enhancement + pollinations",
            timestamp=datetime.datetime.now(datetime.UTC),
            generation_seconds=0.5,
        ),
    )
    orchestrator = MagicMock()
    orchestrator.generate_image = AsyncMock(return_value=generation_result)
    return orchestrator


@pytest.fixture
def mock_language_model_service():
    service = AsyncMock()
    service.generate_text = AsyncMock(return_value="A majestic red fox, golden hour")
    service.check_health = AsyncMock(return_value=True)
    service.test_connection = AsyncMock(
        return_value={
            "success": True,
            "response": "API connection successful",
            "message": "Language model API connection is working",
            "model": "gemini-1.5-flash",
        }
    )
    return service


@pytest.fixture
def creation_store():
    return visioncast.services.creation_store.CreationStore()


@pytest.fixture
def background_task_scheduler():
    return visioncast.background_tasks.BackgroundTaskScheduler()


@pytest.fixture
def notification_service():
    return visioncast.services.notification_service.NotificationService()


@pytest.fixture
def test_app(
    access_token_verifier,
    creation_store,
    background_task_scheduler,
    notification_service,
    mock_image_generation_orchestrator,
    mock_language_model_service,
):
    app = fastapi.FastAPI()
    visioncast.error_handling.register_error_handlers(app)

    metrics_collector = visioncast.metrics.MetricsCollector()

    app.add_middleware(
        visioncast.middleware.RequestPayloadSizeLimitMiddleware,
        maximum_request_payload_bytes=65_536,
    )
    app.add_middleware(
        visioncast.middleware.ContentTypeValidationMiddleware,
    )
    app.add_middleware(
        visioncast.middleware.RequestTimeoutMiddleware,
        request_timeout_seconds=30.0,
    )
    app.add_middleware(
        visioncast.middleware.CorrelationIdMiddleware,
        metrics_collector=metrics_collector,
    )
    app.include_router(visioncast.routes.creation_routes.creation_router)
    app.include_router(visioncast.routes.prompt_routes.prompt_router)
    app.include_router(visioncast.routes.health_routes.health_router)

    app.state.limiter = visioncast.rate_limiting.rate_limiter
    app.add_exception_handler(
        slowapi.errors.RateLimitExceeded,
        visioncast.rate_limiting.rate_limit_exceeded_handler,
    )

    prompt_enhancement_service = visioncast.services.prompt_enhancement_service.PromptEnhancementService(
        mock_language_model_service,
        sleep=AsyncMock(),
    )

    app.state.language_model_service = mock_language_model_service
    app.state.prompt_enhancement_service = prompt_enhancement_service
    app.state.image_provider_cascade = visioncast.services.image_providers.ImageProviderCascade(
        [visioncast.services.image_providers.PlaceholderImageProvider(base_url="https://source.unsplash.com")]
    )
    app.state.creation_store = creation_store
    app.state.notification_service = notification_service
    app.state.background_task_scheduler = background_task_scheduler
    app.state.creation_generation_service = visioncast.services.creation_generation_service.CreationGenerationService(
        creation_store=creation_store,
        image_generation_orchestrator=mock_image_generation_orchestrator,
        notification_service=notification_service,
        background_task_scheduler=background_task_scheduler,
        metrics_collector=metrics_collector,
    )
    app.state.access_token_verifier = access_token_verifier
    app.state.metrics_collector = metrics_collector
    app.state.retry_after_rate_limit_seconds = 60
    app.state.retry_after_not_ready_seconds = 10

    return app


@pytest_asyncio.fixture
async def client(test_app):
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
