"""
Custom exception classes for the VisionCast creations service.

Every anticipated failure mode of the service maps to one class in this
module.  Classes that can reach the HTTP boundary are translated into a
JSON error envelope by ``error_handling.py``; the remaining classes are
internal signals that the generation pipeline absorbs and converts into
fallback behaviour.

Exception hierarchy
-------------------
::

    Exception (Python built-in)
    └── ServiceError (base class for all service exceptions)
        ├── LanguageModelServiceUnavailableError  → absorbed by the enhancer
        ├── PromptEnhancementError                → absorbed by the enhancer
        ├── ImageProviderUnavailableError         → absorbed by the cascade
        ├── ImageGenerationError                  → creation marked failed
        ├── ProhibitedPromptContentError          → HTTP 400
        ├── CreationNotReadyError                 → HTTP 400
        ├── AuthenticationError                   → HTTP 401
        ├── CreationAccessForbiddenError          → HTTP 403
        ├── CreationNotFoundError                 → HTTP 404
        └── InvalidCreationStatusTransitionError  → HTTP 409

Each subclass carries a ``default_detail`` class attribute used when the
raise site does not supply an explicit message.
"""


class ServiceError(Exception):
    """
    Base exception for all service-level errors.

    Attributes:
        detail: A human-readable description of the error, safe for
            inclusion in API responses and in the ``error`` field of a
            failed creation.
    """

    default_detail: str = "A service error occurred."

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class LanguageModelServiceUnavailableError(ServiceError):
    """
    Raised when the Gemini language model API cannot be reached, times
    out, or answers with a non-success HTTP status.

    The detail message of quota (HTTP 429) and overload (HTTP 503)
    responses contains the words ``quota`` and ``overloaded``
    respectively; the prompt enhancer inspects these markers to decide
    whether a retry after a backoff is worthwhile.
    """

    default_detail = "The language model service is unavailable."


class PromptEnhancementError(ServiceError):
    """
    Raised when the language model answers but the completion is
    malformed or empty.
    """

    default_detail = "Prompt enhancement failed."


class ImageProviderUnavailableError(ServiceError):
    """
    Raised by a single image provider when it cannot produce an image:
    timeout, network error, or non-success response.

    The provider cascade catches this exception and advances to the next
    provider, so it never reaches a caller of the cascade.
    """

    default_detail = "The image provider is unavailable."

    def __init__(self, provider_name: str, detail: str | None = None) -> None:
        self.provider_name = provider_name
        super().__init__(detail)


class ImageGenerationError(ServiceError):
    """
    Raised by the generation orchestrator when the whole generation fails.

    Both internal stages are designed never to fail, so this signals an
    unmodelled error.  The background generation run converts it into the
    ``generating -> failed`` transition of the associated creation.
    """

    default_detail = "Image generation failed."


class ProhibitedPromptContentError(ServiceError):
    """
    Raised when a submitted prompt contains a term from the blocked
    content list.  Mapped to HTTP 400 (``prompt_rejected``).
    """

    default_detail = "Prompt contains inappropriate content."


class CreationNotReadyError(ServiceError):
    """
    Raised when an operation requires a completed creation (for example
    downloading it) but the creation has not completed.
    """

    default_detail = "Creation is not ready for download."


class AuthenticationError(ServiceError):
    """
    Raised when a request that requires an authenticated owner carries no
    bearer token, or a token that is invalid or expired.
    """

    default_detail = "You are not logged in. Please log in to get access."


class CreationAccessForbiddenError(ServiceError):
    """
    Raised when the requester neither owns the creation nor is allowed
    to see it because it is public.
    """

    default_detail = "You do not have permission to access this creation."


class CreationNotFoundError(ServiceError):
    """Raised when no creation exists with the requested identifier."""

    default_detail = "Creation not found."


class InvalidCreationStatusTransitionError(ServiceError):
    """
    Raised when a status write would violate the creation lifecycle, for
    example writing ``completed`` over a ``failed`` creation or returning
    a terminal creation to ``generating``.
    """

    default_detail = "The requested creation status transition is not allowed."

    def __init__(
        self,
        current_status: str,
        requested_status: str,
        detail: str | None = None,
    ) -> None:
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            detail or f"Cannot change creation status from '{current_status}' to '{requested_status}'.",
        )
