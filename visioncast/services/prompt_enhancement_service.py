"""
Prompt enhancement with a language model and a rule-based fallback.

``PromptEnhancementService.enhance_prompt`` is the first stage of every
image generation.  It asks the language model to rewrite the user's
prompt for image generation and, whenever that is impossible, appends a
fixed style and quality suffix instead.  It never raises: the worst case
is a ``basic`` enhancement.

Retry policy
------------
The language model is attempted at most ``maximum_attempts`` times.  A
failure whose message names a rate-limit or overload condition (see
``RETRYABLE_FAILURE_MARKERS``) is retried after a fixed backoff; any
other failure ends the attempts at once.  After the last failed attempt
the rule-based enhancement is used and a ``prompt_enhancement_degraded``
warning is logged.

The same service also produces prompt variations and a quality analysis
for the prompt assistant endpoints.
"""

import asyncio
import dataclasses
import json
import re
import typing

import pydantic
import structlog

import visioncast.exceptions
import visioncast.models
import visioncast.services.language_model_service

logger = structlog.get_logger()

ENHANCEMENT_METHOD_LANGUAGE_MODEL = "gemini"
ENHANCEMENT_METHOD_BASIC = "basic"

RETRYABLE_FAILURE_MARKERS = (
    "quota",
    "overloaded",
    "rate limit",
    "resource exhausted",
    "too many requests",
)

STYLE_ENHANCEMENT_SUFFIXES: dict[str, str] = {
    "realistic": ", photorealistic, high detail, professional photography, sharp focus",
    "artistic": ", artistic style, creative interpretation, beautiful composition, fine art",
    "cartoon": ", cartoon style, animated, colorful, friendly, digital art",
    "abstract": ", abstract art, modern, creative, unique perspective, contemporary",
}

HIGH_QUALITY_ENHANCEMENT_SUFFIX = ", ultra high quality, 4K resolution, masterpiece"

ENHANCEMENT_INSTRUCTION_TEMPLATE = """\
You are an expert AI art prompt engineer. Take this user prompt and enhance it to create a detailed, high-quality prompt for image generation.

Original prompt: "{prompt}"
Style requested: {style}
Quality level: {quality}

Please provide an enhanced version that:
1. Maintains the core concept from the original prompt
2. Adds appropriate details for {style} style
3. Includes quality and technical specifications
4. Uses professional photography/art terminology
5. Is optimized for AI image generation

Return only the enhanced prompt, no explanation needed."""

VARIATIONS_INSTRUCTION_TEMPLATE = """\
Create {count} creative variations of this image generation prompt. Each variation should:
1. Maintain the core concept
2. Add unique creative elements
3. Use different artistic approaches
4. Be suitable for AI image generation

Original prompt: "{prompt}"

Return the variations as a numbered list, one per line."""

ANALYSIS_INSTRUCTION_TEMPLATE = """\
Analyze this AI image generation prompt and provide feedback:

Prompt: "{prompt}"

Please evaluate:
1. Clarity and specificity (1-10)
2. Creative potential (1-10)
3. Technical adequacy (1-10)
4. Suggestions for improvement

Format your response as JSON with keys: clarity, creativity, technical, suggestions, overallScore"""

DEFAULT_PROMPT_QUALITY_ANALYSIS = visioncast.models.PromptQualityAnalysis(
    clarity=7,
    creativity=6,
    technical=6,
    suggestions=["Consider adding more specific details", "Specify desired art style"],
    overall_score=6.3,
)

_NUMBERED_LIST_PREFIX_PATTERN = re.compile(r"^\s*\d+[.)]\s*")
_CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$")


@dataclasses.dataclass(frozen=True)
class PromptEnhancementResult:
    enhanced_prompt: str
    enhancement_method: str


def build_basic_enhancement(prompt: str, style: str, quality: str) -> str:
    """
    Apply the rule-based enhancement: a style suffix, then a quality
    suffix when ``quality`` is ``high``.  Unknown styles add nothing.
    """
    enhanced_prompt = prompt + STYLE_ENHANCEMENT_SUFFIXES.get(style, "")
    if quality == "high":
        enhanced_prompt += HIGH_QUALITY_ENHANCEMENT_SUFFIX
    return enhanced_prompt


def is_retryable_language_model_failure(error_message: str) -> bool:
    """Return True when the failure message names a rate-limit or overload condition."""
    lowercase_message = error_message.lower()
    return any(marker in lowercase_message for marker in RETRYABLE_FAILURE_MARKERS)


class PromptEnhancementService:
    """
    Turns user prompts into image-generation prompts.

    The language model service is optional.  When it is ``None`` (no API
    key configured) every enhancement is ``basic``, variations fall back
    to the original prompt and analysis returns ``None``.
    """

    def __init__(
        self,
        language_model_service: visioncast.services.language_model_service.LanguageModelService | None,
        maximum_attempts: int = 2,
        rate_limit_backoff_seconds: float = 2.0,
        sleep: typing.Callable[[float], typing.Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.language_model_service = language_model_service
        self._maximum_attempts = max(1, maximum_attempts)
        self._rate_limit_backoff_seconds = rate_limit_backoff_seconds
        self._sleep = sleep

    @property
    def language_model_is_configured(self) -> bool:
        return self.language_model_service is not None

    async def enhance_prompt(self, prompt: str, style: str, quality: str) -> PromptEnhancementResult:
        """
        Enhance a prompt for image generation.

        Args:
            prompt: The user's original prompt.
            style: Requested visual style.
            quality: Requested quality tier.

        Returns:
            The enhanced prompt and the method that produced it
            (``gemini`` or ``basic``).  The method reflects the path
            actually taken, so a configured but failing language model
            yields ``basic``.
        """
        if self.language_model_service is None:
            logger.info("prompt_enhancement_basic", reason="language_model_not_configured")
            return PromptEnhancementResult(
                enhanced_prompt=build_basic_enhancement(prompt, style, quality),
                enhancement_method=ENHANCEMENT_METHOD_BASIC,
            )

        instruction = ENHANCEMENT_INSTRUCTION_TEMPLATE.format(prompt=prompt, style=style, quality=quality)

        last_failure_detail = ""
        for attempt_number in range(1, self._maximum_attempts + 1):
            try:
                enhanced_prompt = await self.language_model_service.generate_text(instruction)
            except visioncast.exceptions.ServiceError as language_model_error:
                last_failure_detail = language_model_error.detail
                retryable = is_retryable_language_model_failure(last_failure_detail)
                logger.warning(
                    "prompt_enhancement_attempt_failed",
                    attempt=attempt_number,
                    maximum_attempts=self._maximum_attempts,
                    retryable=retryable,
                    error=last_failure_detail,
                )
                if not retryable or attempt_number >= self._maximum_attempts:
                    break
                await self._sleep(self._rate_limit_backoff_seconds)
                continue
            except Exception as unexpected_error:
                last_failure_detail = str(unexpected_error)
                logger.warning(
                    "prompt_enhancement_attempt_failed",
                    attempt=attempt_number,
                    maximum_attempts=self._maximum_attempts,
                    retryable=False,
                    error=last_failure_detail,
                    error_type=type(unexpected_error).__name__,
                )
                break

            logger.info(
                "prompt_enhancement_completed",
                attempt=attempt_number,
                enhanced_prompt_length=len(enhanced_prompt),
            )
            return PromptEnhancementResult(
                enhanced_prompt=enhanced_prompt,
                enhancement_method=ENHANCEMENT_METHOD_LANGUAGE_MODEL,
            )

        logger.warning(
            "prompt_enhancement_degraded",
            error=last_failure_detail,
        )
        return PromptEnhancementResult(
            enhanced_prompt=build_basic_enhancement(prompt, style, quality),
            enhancement_method=ENHANCEMENT_METHOD_BASIC,
        )

    async def generate_prompt_variations(self, prompt: str, count: int = 3) -> list[str]:
        """
        Ask the language model for up to ``count`` creative variations.

        The model's numbered list is split into lines and the numbering is
        removed.  Any failure, including an unconfigured model or an empty
        list, returns ``[prompt]``.
        """
        if self.language_model_service is None:
            return [prompt]

        try:
            variations_text = await self.language_model_service.generate_text(
                VARIATIONS_INSTRUCTION_TEMPLATE.format(count=count, prompt=prompt),
            )
        except visioncast.exceptions.ServiceError as language_model_error:
            logger.warning("prompt_variations_failed", error=language_model_error.detail)
            return [prompt]

        variations = [
            _NUMBERED_LIST_PREFIX_PATTERN.sub("", line).strip()
            for line in variations_text.splitlines()
            if line.strip()
        ]
        variations = [variation for variation in variations if variation]
        return variations[:count] or [prompt]

    async def analyze_prompt_quality(self, prompt: str) -> visioncast.models.PromptQualityAnalysis | None:
        """
        Ask the language model to score a prompt.

        Returns:
            The parsed analysis; the default analysis when the model's
            answer is not the expected JSON; ``None`` when the model is
            unconfigured or the call fails.
        """
        if self.language_model_service is None:
            return None

        try:
            analysis_text = await self.language_model_service.generate_text(
                ANALYSIS_INSTRUCTION_TEMPLATE.format(prompt=prompt),
            )
        except visioncast.exceptions.ServiceError as language_model_error:
            logger.warning("prompt_analysis_failed", error=language_model_error.detail)
            return None

        try:
            return visioncast.models.PromptQualityAnalysis.model_validate(
                json.loads(_CODE_FENCE_PATTERN.sub("", analysis_text.strip())),
            )
        except (ValueError, pydantic.ValidationError):
            logger.info("prompt_analysis_unparsable", response_length=len(analysis_text))
            return DEFAULT_PROMPT_QUALITY_ANALYSIS.model_copy(deep=True)
