"""
End-to-end generation of a single image: prompt enhancement followed by
provider resolution.

The orchestrator is pure with respect to creations: it neither reads nor
writes records.  The background generation run owns the status
transition and uses the ``ImageGenerationResult`` returned here to
populate the completed record.
"""

import dataclasses
import datetime
import time

import structlog

import visioncast.exceptions
import visioncast.models
import visioncast.services.image_providers
import visioncast.services.prompt_enhancement_service

logger = structlog.get_logger()

_MODEL_DISPLAY_NAME_PREFIXES: dict[str, str] = {
    visioncast.services.prompt_enhancement_service.ENHANCEMENT_METHOD_LANGUAGE_MODEL: "Gemini AI Enhanced",
    visioncast.services.prompt_enhancement_service.ENHANCEMENT_METHOD_BASIC: "Basic Enhancement",
}


def build_model_display_name(enhancement_method: str, provider_used: str) -> str:
    """Describe the pipeline that produced an image, e.g. ``Basic Enhancement + placeholder``."""
    prefix = _MODEL_DISPLAY_NAME_PREFIXES.get(enhancement_method, enhancement_method)
    return f"{prefix} + {provider_used}"


@dataclasses.dataclass(frozen=True)
class ImageGenerationMetadata:
    enhancement_method: str
    provider_used: str
    model: str
    timestamp: datetime.datetime
    generation_seconds: float


@dataclasses.dataclass(frozen=True)
class ImageGenerationResult:
    """
    Outcome of a successful generation.

    ``success`` is always ``True``: failures are raised as
    ``ImageGenerationError`` instead of being returned.
    """

    image_url: str
    enhanced_prompt: str
    original_prompt: str
    style: str
    size: str
    quality: str
    metadata: ImageGenerationMetadata
    success: bool = True


class ImageGenerationOrchestrator:
    """
    Composes the prompt enhancer and the provider cascade.

    Both collaborators are designed never to fail, so any exception that
    escapes them is unmodelled and is reported as ``ImageGenerationError``.
    """

    def __init__(
        self,
        prompt_enhancement_service: visioncast.services.prompt_enhancement_service.PromptEnhancementService,
        image_provider_cascade: visioncast.services.image_providers.ImageProviderCascade,
    ) -> None:
        self.prompt_enhancement_service = prompt_enhancement_service
        self.image_provider_cascade = image_provider_cascade

    async def generate_image(self, prompt: str, style: str, size: str, quality: str) -> ImageGenerationResult:
        """
        Enhance the prompt and resolve an image for it.

        Args:
            prompt: The user's original prompt.
            style: Requested visual style.
            size: ``WIDTHxHEIGHT`` string.
            quality: Requested quality tier.

        Returns:
            The image URL together with the prompts used and the
            generation metadata.

        Raises:
            ImageGenerationError: When an unexpected error escapes either
                stage, with the message ``Failed to generate image: ...``.
        """
        generation_start_time = time.perf_counter()

        try:
            width, height = visioncast.models.parse_image_width_and_height(size)
            enhancement_result = await self.prompt_enhancement_service.enhance_prompt(prompt, style, quality)
            image_resolution = await self.image_provider_cascade.resolve_image(
                enhancement_result.enhanced_prompt,
                width,
                height,
            )
        except Exception as unexpected_error:
            logger.exception("image_generation_failed", error=str(unexpected_error))
            raise visioncast.exceptions.ImageGenerationError(
                detail=f"Failed to generate image: {unexpected_error}",
            ) from unexpected_error

        generation_seconds = round(time.perf_counter() - generation_start_time, 3)

        logger.info(
            "image_generation_completed",
            enhancement_method=enhancement_result.enhancement_method,
            provider_used=image_resolution.provider_used,
            generation_seconds=generation_seconds,
        )

        return ImageGenerationResult(
            image_url=image_resolution.url,
            enhanced_prompt=enhancement_result.enhanced_prompt,
            original_prompt=prompt,
            style=style,
            size=size,
            quality=quality,
            metadata=ImageGenerationMetadata(
                enhancement_method=enhancement_result.enhancement_method,
                provider_used=image_resolution.provider_used,
                model=build_model_display_name(
                    enhancement_result.enhancement_method,
                    image_resolution.provider_used,
                ),
                timestamp=datetime.datetime.now(datetime.UTC),
                generation_seconds=generation_seconds,
            ),
        )
