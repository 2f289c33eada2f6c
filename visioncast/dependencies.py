"""
FastAPI dependency providers.

Each function returns a shared service instance stored on the application
state by the lifespan manager in ``server_factory``.
"""

import fastapi

import visioncast.services.creation_generation_service
import visioncast.services.creation_store
import visioncast.services.language_model_service
import visioncast.services.prompt_enhancement_service


def get_creation_store(
    request: fastapi.Request,
) -> visioncast.services.creation_store.CreationStore:
    return request.app.state.creation_store  # type: ignore[no-any-return]


def get_creation_generation_service(
    request: fastapi.Request,
) -> visioncast.services.creation_generation_service.CreationGenerationService:
    return request.app.state.creation_generation_service  # type: ignore[no-any-return]


def get_prompt_enhancement_service(
    request: fastapi.Request,
) -> visioncast.services.prompt_enhancement_service.PromptEnhancementService:
    return request.app.state.prompt_enhancement_service  # type: ignore[no-any-return]


def get_language_model_service(
    request: fastapi.Request,
) -> visioncast.services.language_model_service.LanguageModelService | None:
    """
    Return the language model service, or ``None`` when no API key is
    configured.  Callers decide how an unconfigured model is reported.
    """
    return getattr(request.app.state, "language_model_service", None)
