"""
Pydantic models for the creation record, request validation and response
serialisation.

The API speaks camelCase JSON (``fileUrl``, ``isPublic``) while the Python
side uses snake_case attributes.  Every model therefore carries an alias
generator and accepts both spellings on input; responses are serialised by
alias, which FastAPI does by default for ``response_model`` routes.

A few record fields keep the wire names of the document store they were
designed for: the identifier is ``_id``, the owner is ``userId`` and the
creation kind is ``type``.

Success responses follow the envelope ``{"status": "success", "data": ...}``;
error responses follow ``{"error": {code, message, details?, correlation_id}}``
(see ``ErrorResponse`` below).
"""

import datetime
import enum
import typing

import pydantic
import pydantic.alias_generators

# ──────────────────────────────────────────────────────────────────────────────
#  Constants
# ──────────────────────────────────────────────────────────────────────────────

MINIMUM_IMAGE_PROMPT_LENGTH = 5
MAXIMUM_IMAGE_PROMPT_LENGTH = 500
MAXIMUM_CREATION_PROMPT_LENGTH = 1000
MAXIMUM_TITLE_LENGTH = 100
MAXIMUM_DESCRIPTION_LENGTH = 500
MAXIMUM_TAG_LENGTH = 30
MAXIMUM_PROMPT_VARIATIONS = 5

SUPPORTED_IMAGE_STYLES = ("realistic", "artistic", "cartoon", "abstract")
SUPPORTED_IMAGE_SIZES = ("1024x1024", "1024x768", "768x1024", "1920x1080")
SUPPORTED_QUALITIES = ("standard", "high", "ultra")

DEFAULT_IMAGE_STYLE = "realistic"
DEFAULT_IMAGE_SIZE = "1024x1024"
DEFAULT_QUALITY = "high"
DEFAULT_IMAGE_FORMAT = "jpg"

CreationKind = typing.Literal["image", "video"]
CreationStyle = typing.Literal[
    "realistic",
    "artistic",
    "cartoon",
    "abstract",
    "cinematic",
    "documentary",
    "commercial",
]
CreationQuality = typing.Literal["standard", "high", "ultra"]


class CreationStatus(enum.StrEnum):
    """Lifecycle states of a creation."""

    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"
    DELETED = "deleted"


_CAMEL_CASE_MODEL_CONFIGURATION = pydantic.ConfigDict(
    alias_generator=pydantic.alias_generators.to_camel,
    populate_by_name=True,
)


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def parse_image_width_and_height(image_size: str) -> tuple[int, int]:
    """Parse a ``WIDTHxHEIGHT`` size string into integer width and height."""
    width_string, height_string = image_size.lower().split("x")
    return int(width_string), int(height_string)


# ──────────────────────────────────────────────────────────────────────────────
#  Creation Record
# ──────────────────────────────────────────────────────────────────────────────


class CreationMetadata(pydantic.BaseModel):
    """
    Generation metadata stored alongside a creation.

    ``original_prompt``, ``style``, ``size``, ``quality`` and ``format`` are
    written at submission time.  ``enhanced_prompt``,
    ``enhancement_method`` and ``provider_used`` are written by the
    ``generating -> completed`` transition.
    """

    enhanced_prompt: str | None = None
    original_prompt: str
    style: str
    size: str
    quality: str
    format: str = DEFAULT_IMAGE_FORMAT
    enhancement_method: str | None = None
    provider_used: str | None = None

    model_config = _CAMEL_CASE_MODEL_CONFIGURATION


class CreationRecord(pydantic.BaseModel):
    """
    A single user creation and the state of its generation.

    The record is created in ``generating`` state by the submission handler,
    mutated exactly once by the background generation run
    (``completed`` or ``failed``), and may later be soft-deleted by its
    owner.  ``file_url`` is populated if and only if the status is
    ``completed``; ``error`` is populated only when the status is
    ``failed``.  These rules are enforced by ``CreationStore``, which is the
    only component that writes records.
    """

    identifier: str = pydantic.Field(..., alias="_id")
    owner_identifier: str = pydantic.Field(..., alias="userId")
    kind: CreationKind = pydantic.Field(default="image", alias="type")
    title: str = pydantic.Field(..., max_length=MAXIMUM_TITLE_LENGTH)
    description: str | None = pydantic.Field(default=None, max_length=MAXIMUM_DESCRIPTION_LENGTH)
    prompt: str = pydantic.Field(..., min_length=1, max_length=MAXIMUM_CREATION_PROMPT_LENGTH)
    style: CreationStyle = DEFAULT_IMAGE_STYLE
    size: str = DEFAULT_IMAGE_SIZE
    quality: CreationQuality = DEFAULT_QUALITY
    status: CreationStatus = CreationStatus.GENERATING
    file_url: str | None = None
    thumbnail_url: str | None = None
    generation_time: float | None = None
    model: str | None = None
    error: str | None = None
    metadata: CreationMetadata
    tags: list[str] = pydantic.Field(default_factory=list)
    is_public: bool = False
    download_count: int = pydantic.Field(default=0, ge=0)
    created_at: datetime.datetime = pydantic.Field(default_factory=_utc_now)
    updated_at: datetime.datetime = pydantic.Field(default_factory=_utc_now)

    model_config = _CAMEL_CASE_MODEL_CONFIGURATION

    @property
    def is_terminal(self) -> bool:
        return self.status in (CreationStatus.COMPLETED, CreationStatus.FAILED)

    def is_visible_to(self, requester_identifier: str | None) -> bool:
        """Return True when the requester owns the creation or it is public."""
        return self.owner_identifier == requester_identifier or self.is_public


# ──────────────────────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────────────────────


def _validate_choice(value: str, supported_values: tuple[str, ...], field_label: str) -> str:
    if value not in supported_values:
        raise ValueError(
            f"The {field_label} '{value}' is not supported. Supported values are: {', '.join(supported_values)}."
        )
    return value


class ImageGenerationSubmissionRequest(pydantic.BaseModel):
    """
    Request body for the POST /creations/generate/image endpoint.

    The prompt is trimmed before its length is checked, so surrounding
    whitespace never counts towards the 5 to 500 character window.
    """

    prompt: str = pydantic.Field(
        ...,
        min_length=MINIMUM_IMAGE_PROMPT_LENGTH,
        max_length=MAXIMUM_IMAGE_PROMPT_LENGTH,
        description=(
            f"Text describing the desired image, between "
            f"{MINIMUM_IMAGE_PROMPT_LENGTH} and {MAXIMUM_IMAGE_PROMPT_LENGTH} "
            f"characters after trimming."
        ),
        examples=["A lighthouse on a cliff at dusk"],
    )

    style: str = pydantic.Field(
        default=DEFAULT_IMAGE_STYLE,
        description=f"Visual style. Supported styles: {', '.join(SUPPORTED_IMAGE_STYLES)}.",
        examples=list(SUPPORTED_IMAGE_STYLES),
    )

    size: str = pydantic.Field(
        default=DEFAULT_IMAGE_SIZE,
        description=f"Image dimensions in WIDTHxHEIGHT format. Supported sizes: {', '.join(SUPPORTED_IMAGE_SIZES)}.",
        examples=list(SUPPORTED_IMAGE_SIZES),
    )

    quality: str = pydantic.Field(
        default=DEFAULT_QUALITY,
        description=f"Quality tier. Supported qualities: {', '.join(SUPPORTED_QUALITIES)}.",
    )

    kind: str = pydantic.Field(
        default="image",
        alias="type",
        description="Creation type. Only 'image' is accepted on this endpoint.",
    )

    @pydantic.field_validator("style")
    @classmethod
    def validate_image_style(cls, style_value: str) -> str:
        return _validate_choice(style_value, SUPPORTED_IMAGE_STYLES, "style")

    @pydantic.field_validator("size")
    @classmethod
    def validate_image_size(cls, size_value: str) -> str:
        """Validate that the requested size is among the supported dimensions."""
        return _validate_choice(size_value, SUPPORTED_IMAGE_SIZES, "image size")

    @pydantic.field_validator("quality")
    @classmethod
    def validate_quality(cls, quality_value: str) -> str:
        return _validate_choice(quality_value, SUPPORTED_QUALITIES, "quality")

    @pydantic.field_validator("kind")
    @classmethod
    def validate_kind(cls, kind_value: str) -> str:
        if kind_value != "image":
            raise ValueError("Only image generation is supported on this endpoint.")
        return kind_value

    model_config = pydantic.ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="forbid",
    )


class CreationUpdateRequest(pydantic.BaseModel):
    """
    Request body for PATCH /creations/{creation_id}.

    Only the display fields may be changed; the prompt, generation
    parameters, status and owner are immutable through this surface.
    Fields left out of the body are not touched.
    """

    title: str | None = pydantic.Field(default=None, min_length=3, max_length=MAXIMUM_TITLE_LENGTH)
    description: str | None = pydantic.Field(default=None, max_length=MAXIMUM_DESCRIPTION_LENGTH)
    tags: list[typing.Annotated[str, pydantic.Field(min_length=1, max_length=MAXIMUM_TAG_LENGTH)]] | None = None
    is_public: bool | None = None

    model_config = pydantic.ConfigDict(
        alias_generator=pydantic.alias_generators.to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="forbid",
    )


class PromptEnhancementRequest(pydantic.BaseModel):
    """Request body for the POST /prompts/enhance endpoint."""

    prompt: str = pydantic.Field(
        ...,
        min_length=1,
        max_length=MAXIMUM_CREATION_PROMPT_LENGTH,
        pattern=r".*\S.*",
        examples=["A cat sitting on a windowsill"],
    )
    style: str = DEFAULT_IMAGE_STYLE
    quality: str = DEFAULT_QUALITY

    @pydantic.field_validator("style")
    @classmethod
    def validate_image_style(cls, style_value: str) -> str:
        return _validate_choice(style_value, SUPPORTED_IMAGE_STYLES, "style")

    @pydantic.field_validator("quality")
    @classmethod
    def validate_quality(cls, quality_value: str) -> str:
        return _validate_choice(quality_value, SUPPORTED_QUALITIES, "quality")

    model_config = pydantic.ConfigDict(extra="forbid")


class PromptVariationsRequest(pydantic.BaseModel):
    """Request body for the POST /prompts/variations endpoint."""

    prompt: str = pydantic.Field(
        ...,
        min_length=1,
        max_length=MAXIMUM_CREATION_PROMPT_LENGTH,
        pattern=r".*\S.*",
    )
    count: int = pydantic.Field(default=3, ge=1, le=MAXIMUM_PROMPT_VARIATIONS)

    model_config = pydantic.ConfigDict(extra="forbid")


class PromptAnalysisRequest(pydantic.BaseModel):
    """Request body for the POST /prompts/analyze endpoint."""

    prompt: str = pydantic.Field(
        ...,
        min_length=1,
        max_length=MAXIMUM_CREATION_PROMPT_LENGTH,
        pattern=r".*\S.*",
    )

    model_config = pydantic.ConfigDict(extra="forbid")


# ──────────────────────────────────────────────────────────────────────────────
#  Response Models
# ──────────────────────────────────────────────────────────────────────────────


class CreationSubmissionData(pydantic.BaseModel):
    creation: CreationRecord
    message: str


class CreationSubmissionResponse(pydantic.BaseModel):
    """Response body for POST /creations/generate/image (HTTP 201)."""

    status: typing.Literal["success"] = "success"
    data: CreationSubmissionData


class CreationDetailData(pydantic.BaseModel):
    creation: CreationRecord


class CreationDetailResponse(pydantic.BaseModel):
    """Response body for single-creation reads and updates."""

    status: typing.Literal["success"] = "success"
    data: CreationDetailData


class PaginationDetail(pydantic.BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class CreationListData(pydantic.BaseModel):
    creations: list[CreationRecord]
    pagination: PaginationDetail


class CreationListResponse(pydantic.BaseModel):
    """Response body for the owner and public creation listings."""

    status: typing.Literal["success"] = "success"
    data: CreationListData


class CreationTypeStatistics(pydantic.BaseModel):
    """Per-type aggregate of an owner's creations."""

    kind: str = pydantic.Field(..., alias="_id")
    count: int
    average_generation_time: float | None = None

    model_config = _CAMEL_CASE_MODEL_CONFIGURATION


class CreationStatisticsData(pydantic.BaseModel):
    stats: list[CreationTypeStatistics]


class CreationStatisticsResponse(pydantic.BaseModel):
    status: typing.Literal["success"] = "success"
    data: CreationStatisticsData


class CreationDeletionResponse(pydantic.BaseModel):
    status: typing.Literal["success"] = "success"
    message: str


class CreationDownloadData(pydantic.BaseModel):
    download_url: str
    filename: str

    model_config = _CAMEL_CASE_MODEL_CONFIGURATION


class CreationDownloadResponse(pydantic.BaseModel):
    status: typing.Literal["success"] = "success"
    data: CreationDownloadData


class LanguageModelConnectionTestData(pydantic.BaseModel):
    """
    Outcome of a language model round trip.

    ``response``, ``message`` and ``model`` are present on success;
    ``error`` is present on failure.
    """

    success: bool
    response: str | None = None
    message: str | None = None
    model: str | None = None
    error: str | None = None


class LanguageModelConnectionTestResponse(pydantic.BaseModel):
    status: typing.Literal["success"] = "success"
    data: LanguageModelConnectionTestData


class PromptEnhancementData(pydantic.BaseModel):
    original_prompt: str
    enhanced_prompt: str
    enhancement_method: str
    created: int = pydantic.Field(
        ...,
        description="Unix timestamp (seconds since epoch) indicating when the enhancement completed.",
    )

    model_config = _CAMEL_CASE_MODEL_CONFIGURATION


class PromptEnhancementResponse(pydantic.BaseModel):
    """Response body for the POST /prompts/enhance endpoint."""

    status: typing.Literal["success"] = "success"
    data: PromptEnhancementData


class PromptVariationsData(pydantic.BaseModel):
    original_prompt: str
    variations: list[str]

    model_config = _CAMEL_CASE_MODEL_CONFIGURATION


class PromptVariationsResponse(pydantic.BaseModel):
    status: typing.Literal["success"] = "success"
    data: PromptVariationsData


class PromptQualityAnalysis(pydantic.BaseModel):
    """
    Language model assessment of a prompt.  Scores are on a 1 to 10 scale.
    """

    clarity: float
    creativity: float
    technical: float
    suggestions: list[str] = pydantic.Field(default_factory=list)
    overall_score: float

    model_config = _CAMEL_CASE_MODEL_CONFIGURATION


class PromptAnalysisData(pydantic.BaseModel):
    analysis: PromptQualityAnalysis | None


class PromptAnalysisResponse(pydantic.BaseModel):
    """Response body for POST /prompts/analyze.  ``analysis`` is null when the language model is unavailable."""

    status: typing.Literal["success"] = "success"
    data: PromptAnalysisData


# ──────────────────────────────────────────────────────────────────────────────
#  Error Models
# ──────────────────────────────────────────────────────────────────────────────


class ErrorDetail(pydantic.BaseModel):
    """
    Detailed error information nested inside the error response.

    The ``details`` field can be:
    - A descriptive string (for single-cause errors such as payload_too_large)
    - An array of validation error objects (for request_validation_failed)
    - Omitted when no additional context is available
    """

    code: str = pydantic.Field(
        ...,
        description="A machine-readable error code in snake_case format.",
    )

    message: str = pydantic.Field(
        ...,
        description="A human-readable error description safe for display to end users.",
    )

    details: str | list | None = pydantic.Field(
        default=None,
        description="Additional context about the error, when available.",
    )

    correlation_id: str = pydantic.Field(
        ...,
        description="Correlation identifier matching the X-Correlation-ID response header.",
    )


class ErrorResponse(pydantic.BaseModel):
    """
    Standardised error response returned for all error conditions.
    """

    error: ErrorDetail = pydantic.Field(
        ...,
        description="An object containing error details.",
    )
