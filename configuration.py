"""
Application configuration module.

Loads all configuration values from environment variables with the prefix
VISIONCAST_.  Default values are provided for local development, and a
.env file is also supported via pydantic-settings.

This module is the single source of truth for runtime configuration
within the service process.  The language model API key, provider
endpoints and timeouts are read here once and injected into the services
at startup; nothing downstream reads the environment directly.
"""

import pydantic
import pydantic_settings


class ApplicationConfiguration(pydantic_settings.BaseSettings):
    """
    Centralised configuration for the VisionCast creations service.

    Every field maps to an environment variable prefixed with VISIONCAST_.
    For example, the field ``language_model_api_key`` is populated from the
    environment variable VISIONCAST_LANGUAGE_MODEL_API_KEY.

    Configuration categories
    ------------------------
    - **Application**: host, port, CORS, log level, rate limit
    - **Authentication**: bearer token secret and signing algorithm
    - **Language model (Gemini)**: API key, base URL, model name, timeout,
      retry attempts and backoff, connection pool, maximum response bytes
    - **Image providers**: endpoint, timeout and optional credentials for
      each provider in the cascade, plus the placeholder service
    - **Generation**: background concurrency and shutdown grace period
    - **Resilience**: request payload ceiling and end-to-end timeout
    - **Client poller**: default interval and attempt budget

    Provider timeouts and the poller budget are independent settings: the
    first bounds a single outbound call and advances the cascade, the
    second bounds how long a client keeps observing a creation.
    """

    # ── Application settings ─────────────────────────────────────────────

    application_host: str = "127.0.0.1"

    application_port: int = pydantic.Field(default=8000, ge=1, le=65535)

    cors_allowed_origins: list[str] = pydantic.Field(
        default=[],
        description=(
            "Allowed CORS origins as a JSON list. An empty list disables CORS "
            "entirely. Example: '[\"http://localhost:5173\"]'."
        ),
    )

    log_level: str = pydantic.Field(
        default="INFO",
        description=(
            "Minimum log level for structured JSON logging. "
            "Accepted values: DEBUG, INFO, WARNING, ERROR, CRITICAL."
        ),
    )

    rate_limit: str = pydantic.Field(
        default="30/minute",
        description=(
            "Per-IP rate limit for generation submission and prompt "
            "endpoints, in the format 'count/period' where period is one "
            "of: second, minute, hour, day."
        ),
    )

    # ── Authentication settings ───────────────────────────────────────────

    authentication_token_secret: str = pydantic.Field(
        default="change-me-in-production",
        min_length=1,
        description="Shared secret used to verify bearer tokens.",
    )

    authentication_token_algorithm: str = pydantic.Field(
        default="HS256",
        description="JWT signing algorithm accepted for bearer tokens.",
    )

    # ── Language model (Gemini) settings ──────────────────────────────────

    language_model_api_key: str = pydantic.Field(
        default="",
        description=(
            "Gemini API key. When empty, the language model is treated as "
            "unconfigured and prompts are enhanced with the rule-based "
            "fallback only."
        ),
    )

    language_model_base_url: str = pydantic.Field(
        default="https://generativelanguage.googleapis.com",
        description="Base URL of the Gemini REST API.",
    )

    language_model_name: str = pydantic.Field(
        default="gemini-1.5-flash",
        min_length=1,
        description="Gemini model used for prompt enhancement and analysis.",
    )

    timeout_for_language_model_requests_in_seconds: float = pydantic.Field(
        default=30.0,
        gt=0,
        description="Maximum time to wait for a single language model call.",
    )

    language_model_maximum_attempts: int = pydantic.Field(
        default=2,
        ge=1,
        description=(
            "Total number of language model attempts for one prompt "
            "enhancement before falling back to rule-based enhancement."
        ),
    )

    language_model_rate_limit_backoff_seconds: float = pydantic.Field(
        default=2.0,
        ge=0,
        description=(
            "Fixed delay before retrying a language model call that failed "
            "with a quota or overload condition."
        ),
    )

    language_model_connection_pool_size: int = pydantic.Field(
        default=10,
        ge=1,
        description="Maximum connections in the language model httpx pool.",
    )

    language_model_maximum_response_bytes: int = pydantic.Field(
        default=1_048_576,
        ge=1,
        description=(
            "Maximum response body size accepted from the language model. "
            "Larger responses are treated as upstream failures."
        ),
    )

    # ── Image provider settings ───────────────────────────────────────────

    pollinations_base_url: str = pydantic.Field(
        default="https://image.pollinations.ai",
        description="Base URL of the Pollinations direct-URL image endpoint.",
    )

    pollinations_timeout_seconds: float = pydantic.Field(
        default=10.0,
        gt=0,
        description="Timeout for the Pollinations existence probe.",
    )

    hugging_face_inference_url: str = pydantic.Field(
        default="https://api-inference.huggingface.co/models/stabilityai/stable-diffusion-xl-base-1.0",
        description="Hugging Face inference endpoint for text-to-image.",
    )

    hugging_face_api_token: str = pydantic.Field(
        default="",
        description="Optional Hugging Face bearer token.",
    )

    hugging_face_inference_steps: int = pydantic.Field(
        default=20,
        ge=1,
        description="Inference step count sent to the Hugging Face endpoint.",
    )

    hugging_face_timeout_seconds: float = pydantic.Field(
        default=30.0,
        gt=0,
        description="Timeout for the Hugging Face inference request.",
    )

    dezgo_text_to_image_url: str = pydantic.Field(
        default="https://api.dezgo.com/text2image",
        description="Dezgo text-to-image endpoint.",
    )

    dezgo_api_key: str = pydantic.Field(
        default="",
        description="Optional Dezgo API key, sent as the X-Dezgo-Key header.",
    )

    dezgo_model: str = pydantic.Field(
        default="epic_realism",
        description="Dezgo model identifier.",
    )

    dezgo_timeout_seconds: float = pydantic.Field(
        default=30.0,
        gt=0,
        description="Timeout for the Dezgo text-to-image request.",
    )

    placeholder_image_base_url: str = pydantic.Field(
        default="https://source.unsplash.com",
        description="Stock-photo service used by the terminal placeholder provider.",
    )

    # ── Generation settings ───────────────────────────────────────────────

    maximum_concurrent_generations: int = pydantic.Field(
        default=4,
        ge=1,
        description=(
            "Maximum number of background generations running at once. "
            "Further submissions are accepted and wait for a free slot."
        ),
    )

    background_task_shutdown_grace_seconds: float = pydantic.Field(
        default=30.0,
        ge=0,
        description=(
            "Time allowed at shutdown for in-flight background generations "
            "to finish before they are cancelled."
        ),
    )

    # ── Resilience settings ───────────────────────────────────────────────

    retry_after_rate_limit_seconds: int = pydantic.Field(
        default=60,
        ge=0,
        description="Retry-After value on HTTP 429 rate-limit responses.",
    )

    retry_after_not_ready_seconds: int = pydantic.Field(
        default=10,
        ge=0,
        description="Retry-After value on HTTP 503 readiness responses.",
    )

    maximum_request_payload_bytes: int = pydantic.Field(
        default=65_536,
        ge=1,
        description="Requests with larger bodies are rejected with HTTP 413.",
    )

    timeout_for_requests_in_seconds: float = pydantic.Field(
        default=30.0,
        gt=0,
        description=(
            "Maximum end-to-end duration of a single HTTP request. "
            "Background generations are not bound by this value."
        ),
    )

    # ── Client poller settings ────────────────────────────────────────────

    poller_interval_seconds: float = pydantic.Field(
        default=2.0,
        gt=0,
        description="Delay between two status reads of the client poller.",
    )

    poller_maximum_attempts: int = pydantic.Field(
        default=30,
        ge=1,
        description="Status reads performed before the poller reports a timeout.",
    )

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_prefix="VISIONCAST_",
    )
