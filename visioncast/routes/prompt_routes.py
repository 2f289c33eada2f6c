"""
Route definitions for the prompt tools.

These endpoints expose the prompt enhancer on its own, without creating a
creation: enhancement (language model with the rule-based fallback),
creative variations, and a quality analysis.  None of them fail when the
language model is unavailable; they degrade to the basic enhancement, the
original prompt, and a null analysis respectively.

The responses carry ``Cache-Control: no-store`` because every answer is
generated per request.
"""

import time
import typing

import fastapi

import visioncast.authentication
import visioncast.dependencies
import visioncast.models
import visioncast.rate_limiting
import visioncast.services.prompt_enhancement_service

prompt_router = fastapi.APIRouter(
    prefix="/prompts",
    tags=["Prompt Tools"],
)

PromptEnhancementServiceDependency = typing.Annotated[
    visioncast.services.prompt_enhancement_service.PromptEnhancementService,
    fastapi.Depends(visioncast.dependencies.get_prompt_enhancement_service),
]

_COMMON_ERROR_RESPONSES: dict[int | str, dict[str, typing.Any]] = {
    400: {
        "description": (
            "Bad Request: invalid JSON (``invalid_request_json``) or failed validation (``request_validation_failed``)."
        ),
        "model": visioncast.models.ErrorResponse,
    },
    401: {
        "description": "Unauthorized (``authentication_required``).",
        "model": visioncast.models.ErrorResponse,
    },
    415: {
        "description": "Unsupported Media Type: the ``Content-Type`` header is not ``application/json``.",
        "model": visioncast.models.ErrorResponse,
    },
    429: {
        "description": "Too Many Requests (``rate_limit_exceeded``).",
        "model": visioncast.models.ErrorResponse,
    },
}


@prompt_router.post(
    "/enhance",
    response_model=visioncast.models.PromptEnhancementResponse,
    summary="Enhance a prompt for image generation",
    description=(
        "Rewrites the prompt with the language model. When the model is "
        "unavailable the rule-based enhancement is returned instead and "
        "``enhancementMethod`` is ``basic``."
    ),
    responses=_COMMON_ERROR_RESPONSES,
    dependencies=[fastapi.Depends(visioncast.authentication.get_authenticated_user)],
)
@visioncast.rate_limiting.generation_rate_limit
async def enhance_prompt(
    request: fastapi.Request,
    response: fastapi.Response,
    prompt_enhancement_request: visioncast.models.PromptEnhancementRequest,
    prompt_enhancement_service: PromptEnhancementServiceDependency,
) -> visioncast.models.PromptEnhancementResponse:
    enhancement_result = await prompt_enhancement_service.enhance_prompt(
        prompt_enhancement_request.prompt,
        prompt_enhancement_request.style,
        prompt_enhancement_request.quality,
    )
    response.headers["Cache-Control"] = "no-store"
    return visioncast.models.PromptEnhancementResponse(
        data=visioncast.models.PromptEnhancementData(
            original_prompt=prompt_enhancement_request.prompt,
            enhanced_prompt=enhancement_result.enhanced_prompt,
            enhancement_method=enhancement_result.enhancement_method,
            created=int(time.time()),
        ),
    )


@prompt_router.post(
    "/variations",
    response_model=visioncast.models.PromptVariationsResponse,
    summary="Generate creative variations of a prompt",
    description="Returns up to ``count`` variations, or the original prompt alone when none can be generated.",
    responses=_COMMON_ERROR_RESPONSES,
    dependencies=[fastapi.Depends(visioncast.authentication.get_authenticated_user)],
)
@visioncast.rate_limiting.generation_rate_limit
async def generate_prompt_variations(
    request: fastapi.Request,
    response: fastapi.Response,
    prompt_variations_request: visioncast.models.PromptVariationsRequest,
    prompt_enhancement_service: PromptEnhancementServiceDependency,
) -> visioncast.models.PromptVariationsResponse:
    variations = await prompt_enhancement_service.generate_prompt_variations(
        prompt_variations_request.prompt,
        count=prompt_variations_request.count,
    )
    response.headers["Cache-Control"] = "no-store"
    return visioncast.models.PromptVariationsResponse(
        data=visioncast.models.PromptVariationsData(
            original_prompt=prompt_variations_request.prompt,
            variations=variations,
        ),
    )


@prompt_router.post(
    "/analyze",
    response_model=visioncast.models.PromptAnalysisResponse,
    summary="Score the quality of a prompt",
    description="Returns clarity, creativity and technical scores with suggestions. ``analysis`` is null when the language model is unavailable.",
    responses=_COMMON_ERROR_RESPONSES,
    dependencies=[fastapi.Depends(visioncast.authentication.get_authenticated_user)],
)
@visioncast.rate_limiting.generation_rate_limit
async def analyze_prompt(
    request: fastapi.Request,
    response: fastapi.Response,
    prompt_analysis_request: visioncast.models.PromptAnalysisRequest,
    prompt_enhancement_service: PromptEnhancementServiceDependency,
) -> visioncast.models.PromptAnalysisResponse:
    prompt_quality_analysis = await prompt_enhancement_service.analyze_prompt_quality(
        prompt_analysis_request.prompt,
    )
    response.headers["Cache-Control"] = "no-store"
    return visioncast.models.PromptAnalysisResponse(
        data=visioncast.models.PromptAnalysisData(analysis=prompt_quality_analysis),
    )
