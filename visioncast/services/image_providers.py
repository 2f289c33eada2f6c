"""
Image providers and the provider cascade.

An image is resolved by trying an ordered list of providers and taking the
first one that succeeds:

1. ``pollinations``: a direct-URL generator.  The image URL is built from
   the prompt and verified with a ``HEAD`` request.
2. ``huggingface``: an inference endpoint returning image bytes, which are
   inlined as a ``data:`` URL.
3. ``dezgo``: a second inference endpoint, handled the same way.
4. ``placeholder``: a stock-photo URL chosen by a keyword classifier over
   the prompt.  It performs no I/O and cannot fail.

Every provider signals failure by raising ``ImageProviderUnavailableError``.
The cascade also bounds each provider with its own timeout and treats any
other exception from a non-terminal provider as a failure, so
``ImageProviderCascade.resolve_image`` always returns a URL.
"""

import abc
import asyncio
import base64
import dataclasses
import time
import typing
import urllib.parse

import httpx
import structlog

import configuration
import visioncast.exceptions

logger = structlog.get_logger()

DEFAULT_INLINE_IMAGE_CONTENT_TYPE = "image/jpeg"

# Ordered: the first category with a matching keyword wins.
PLACEHOLDER_CATEGORY_KEYWORDS: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("nature", "nature", ("nature", "landscape", "forest", "mountain", "ocean")),
    ("animals", "animals", ("animal", "cat", "dog", "bird", "wildlife")),
    ("architecture", "architecture", ("city", "building", "architecture", "urban")),
    ("people", "people", ("person", "portrait", "human", "face")),
    ("food", "food", ("food", "meal", "restaurant")),
    ("technology", "tech", ("technology", "computer", "digital", "tech")),
)

PLACEHOLDER_DEFAULT_CATEGORY = "abstract"


def current_time_in_milliseconds() -> int:
    return time.time_ns() // 1_000_000


def classify_prompt_for_placeholder(prompt: str) -> tuple[str, str | None]:
    """
    Choose a stock-photo category for a prompt.

    Substring matching over the lowercased prompt; the first category in
    ``PLACEHOLDER_CATEGORY_KEYWORDS`` with any matching keyword wins.

    Returns:
        ``(category, keyword)``; the keyword is ``None`` for the default
        ``abstract`` category.
    """
    lowercase_prompt = prompt.lower()
    for category, search_keyword, trigger_words in PLACEHOLDER_CATEGORY_KEYWORDS:
        if any(trigger_word in lowercase_prompt for trigger_word in trigger_words):
            return category, search_keyword
    return PLACEHOLDER_DEFAULT_CATEGORY, None


def encode_image_as_data_url(image_bytes: bytes, content_type: str | None) -> str:
    """Inline raw image bytes as a base64 ``data:`` URL."""
    media_type = (content_type or "").split(";")[0].strip()
    if not media_type.startswith("image/"):
        media_type = DEFAULT_INLINE_IMAGE_CONTENT_TYPE
    return f"data:{media_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"


@dataclasses.dataclass(frozen=True)
class ImageResolution:
    url: str
    provider_used: str


class ImageProvider(abc.ABC):
    """
    A single source of images.

    Attributes:
        name: Provider name recorded in the creation metadata.
        timeout_seconds: Upper bound for one ``attempt``; ``None`` for
            providers that perform no I/O.
    """

    name: str
    timeout_seconds: float | None = None

    @abc.abstractmethod
    async def attempt(self, prompt: str, width: int, height: int) -> str:
        """
        Produce an image URL for the prompt.

        Raises:
            ImageProviderUnavailableError: When this provider cannot
                produce an image.
        """


class _HttpImageProvider(ImageProvider):
    """Shared request handling for providers that call an HTTP endpoint."""

    def __init__(self, http_client: httpx.AsyncClient, timeout_seconds: float) -> None:
        self.http_client = http_client
        self.timeout_seconds = timeout_seconds

    async def _send(self, method: str, url: str, **request_arguments: typing.Any) -> httpx.Response:
        try:
            http_response = await self.http_client.request(
                method,
                url,
                timeout=self.timeout_seconds,
                **request_arguments,
            )
        except httpx.TimeoutException as timeout_error:
            raise visioncast.exceptions.ImageProviderUnavailableError(
                self.name,
                detail=f"The {self.name} request timed out.",
            ) from timeout_error
        except httpx.HTTPError as http_error:
            raise visioncast.exceptions.ImageProviderUnavailableError(
                self.name,
                detail=f"The {self.name} request failed: {type(http_error).__name__}.",
            ) from http_error

        if not http_response.is_success:
            raise visioncast.exceptions.ImageProviderUnavailableError(
                self.name,
                detail=f"The {self.name} endpoint returned HTTP status {http_response.status_code}.",
            )
        return http_response


class PollinationsImageProvider(_HttpImageProvider):
    """
    Direct-URL provider.  The generated URL itself is the result; a ``HEAD``
    probe confirms the endpoint answers before the URL is accepted.
    """

    name = "pollinations"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        timeout_seconds: float = 10.0,
        clock: typing.Callable[[], int] = current_time_in_milliseconds,
    ) -> None:
        super().__init__(http_client, timeout_seconds)
        self.base_url = base_url.rstrip("/")
        self._clock = clock

    def build_image_url(self, prompt: str, width: int, height: int) -> str:
        query_string = urllib.parse.urlencode(
            {
                "width": width,
                "height": height,
                "seed": self._clock(),
                "model": "flux",
                "nologo": "true",
            },
        )
        return f"{self.base_url}/prompt/{urllib.parse.quote(prompt, safe='')}?{query_string}"

    async def attempt(self, prompt: str, width: int, height: int) -> str:
        image_url = self.build_image_url(prompt, width, height)
        await self._send("HEAD", image_url)
        return image_url


class HuggingFaceImageProvider(_HttpImageProvider):
    """Inference provider returning raw image bytes."""

    name = "huggingface"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        inference_url: str,
        api_token: str = "",
        inference_steps: int = 20,
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__(http_client, timeout_seconds)
        self.inference_url = inference_url
        self._api_token = api_token
        self._inference_steps = inference_steps

    async def attempt(self, prompt: str, width: int, height: int) -> str:
        request_headers = {"Authorization": f"Bearer {self._api_token}"} if self._api_token else {}
        http_response = await self._send(
            "POST",
            self.inference_url,
            headers=request_headers,
            json={
                "inputs": prompt,
                "parameters": {
                    "width": width,
                    "height": height,
                    "num_inference_steps": self._inference_steps,
                },
            },
        )
        return encode_image_as_data_url(http_response.content, http_response.headers.get("content-type"))


class DezgoImageProvider(_HttpImageProvider):
    """Inference provider returning raw image bytes."""

    name = "dezgo"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        text_to_image_url: str,
        api_key: str = "",
        model_name: str = "epic_realism",
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__(http_client, timeout_seconds)
        self.text_to_image_url = text_to_image_url
        self._api_key = api_key
        self._model_name = model_name

    async def attempt(self, prompt: str, width: int, height: int) -> str:
        request_headers = {"X-Dezgo-Key": self._api_key} if self._api_key else {}
        http_response = await self._send(
            "POST",
            self.text_to_image_url,
            headers=request_headers,
            json={
                "prompt": prompt,
                "width": width,
                "height": height,
                "model": self._model_name,
                "format": "jpg",
            },
        )
        return encode_image_as_data_url(http_response.content, http_response.headers.get("content-type"))


class PlaceholderImageProvider(ImageProvider):
    """Terminal provider: builds a categorised stock-photo URL without any I/O."""

    name = "placeholder"

    def __init__(
        self,
        base_url: str,
        clock: typing.Callable[[], int] = current_time_in_milliseconds,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._clock = clock

    def build_image_url(self, prompt: str, width: int, height: int) -> str:
        category, search_keyword = classify_prompt_for_placeholder(prompt)
        search_terms = category if search_keyword is None else f"{category}&{search_keyword}"
        return f"{self.base_url}/{width}x{height}/?{search_terms}&sig={self._clock()}"

    async def attempt(self, prompt: str, width: int, height: int) -> str:
        return self.build_image_url(prompt, width, height)


class ImageProviderCascade:
    """
    Tries providers in order until one returns an image URL.

    The last provider is the terminal fallback and must not perform I/O
    that can fail; an exception from it propagates to the caller, which
    the generation orchestrator reports as a generation failure.
    """

    def __init__(self, image_providers: typing.Sequence[ImageProvider]) -> None:
        if not image_providers:
            raise ValueError("At least one image provider is required.")
        self.image_providers = list(image_providers)

    @property
    def provider_names(self) -> list[str]:
        return [image_provider.name for image_provider in self.image_providers]

    async def _attempt_with_timeout(self, image_provider: ImageProvider, prompt: str, width: int, height: int) -> str:
        try:
            async with asyncio.timeout(image_provider.timeout_seconds):
                return await image_provider.attempt(prompt, width, height)
        except TimeoutError as timeout_error:
            raise visioncast.exceptions.ImageProviderUnavailableError(
                image_provider.name,
                detail=f"The {image_provider.name} provider exceeded {image_provider.timeout_seconds} seconds.",
            ) from timeout_error

    async def resolve_image(self, enhanced_prompt: str, width: int, height: int) -> ImageResolution:
        """
        Resolve an image URL for the prompt.

        Args:
            enhanced_prompt: The prompt produced by the enhancer.
            width: Image width in pixels.
            height: Image height in pixels.

        Returns:
            The URL and the name of the provider that produced it.
        """
        *fallible_providers, terminal_provider = self.image_providers

        for image_provider in fallible_providers:
            try:
                image_url = await self._attempt_with_timeout(image_provider, enhanced_prompt, width, height)
            except visioncast.exceptions.ImageProviderUnavailableError as provider_error:
                logger.warning(
                    "image_provider_failed",
                    provider=image_provider.name,
                    error=provider_error.detail,
                )
                continue
            except Exception as unexpected_error:
                logger.warning(
                    "image_provider_failed",
                    provider=image_provider.name,
                    error=str(unexpected_error),
                    error_type=type(unexpected_error).__name__,
                )
                continue

            logger.info("image_provider_succeeded", provider=image_provider.name)
            return ImageResolution(url=image_url, provider_used=image_provider.name)

        image_url = await terminal_provider.attempt(enhanced_prompt, width, height)
        logger.info("image_provider_succeeded", provider=terminal_provider.name, terminal=True)
        return ImageResolution(url=image_url, provider_used=terminal_provider.name)


def build_default_image_provider_cascade(
    http_client: httpx.AsyncClient,
    application_configuration: configuration.ApplicationConfiguration,
) -> ImageProviderCascade:
    """Assemble the standard four-provider cascade from configuration."""
    return ImageProviderCascade(
        [
            PollinationsImageProvider(
                http_client,
                base_url=application_configuration.pollinations_base_url,
                timeout_seconds=application_configuration.pollinations_timeout_seconds,
            ),
            HuggingFaceImageProvider(
                http_client,
                inference_url=application_configuration.hugging_face_inference_url,
                api_token=application_configuration.hugging_face_api_token,
                inference_steps=application_configuration.hugging_face_inference_steps,
                timeout_seconds=application_configuration.hugging_face_timeout_seconds,
            ),
            DezgoImageProvider(
                http_client,
                text_to_image_url=application_configuration.dezgo_text_to_image_url,
                api_key=application_configuration.dezgo_api_key,
                model_name=application_configuration.dezgo_model,
                timeout_seconds=application_configuration.dezgo_timeout_seconds,
            ),
            PlaceholderImageProvider(base_url=application_configuration.placeholder_image_base_url),
        ],
    )
