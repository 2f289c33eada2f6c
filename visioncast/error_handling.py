"""
Centralised error-handling registration for the FastAPI application.

Every exception that can reach the HTTP boundary is mapped to a status
code and a machine-readable error code, and rendered in the standard
envelope ``{"error": {code, message, details?, correlation_id}}``:

    - Invalid JSON                          →  400 invalid_request_json
    - Request validation failure            →  400 request_validation_failed
    - Prompt with blocked content           →  400 prompt_rejected
    - Download of an unfinished creation    →  400 creation_not_ready
    - Missing or invalid bearer token       →  401 authentication_required
    - Creation owned by someone else        →  403 creation_access_forbidden
    - Unknown creation                      →  404 creation_not_found
    - Undefined endpoint                    →  404 not_found
    - Wrong HTTP method                     →  405 method_not_allowed
    - Lifecycle violation                   →  409 invalid_status_transition
    - Unexpected internal errors            →  500 internal_server_error

Enhancer and provider failures never reach this layer: the generation
pipeline absorbs them.  Rate limiting (429) is handled in
``rate_limiting.py`` and the remaining transport-level errors (413, 415,
504, 500) in ``middleware.py``.
"""

import dataclasses

import fastapi
import fastapi.exceptions
import fastapi.responses
import starlette.exceptions
import starlette.routing
import starlette.types
import structlog

import visioncast.exceptions
import visioncast.models

logger = structlog.get_logger()


@dataclasses.dataclass(frozen=True)
class _ServiceErrorMapping:
    status_code: int
    error_code: str
    log_event: str


_SERVICE_ERROR_MAPPINGS: dict[type[visioncast.exceptions.ServiceError], _ServiceErrorMapping] = {
    visioncast.exceptions.ProhibitedPromptContentError: _ServiceErrorMapping(400, "prompt_rejected", "prompt_rejected"),
    visioncast.exceptions.CreationNotReadyError: _ServiceErrorMapping(
        400, "creation_not_ready", "creation_not_ready"
    ),
    visioncast.exceptions.AuthenticationError: _ServiceErrorMapping(
        401, "authentication_required", "authentication_failed"
    ),
    visioncast.exceptions.CreationAccessForbiddenError: _ServiceErrorMapping(
        403, "creation_access_forbidden", "creation_access_forbidden"
    ),
    visioncast.exceptions.CreationNotFoundError: _ServiceErrorMapping(404, "creation_not_found", "creation_not_found"),
    visioncast.exceptions.InvalidCreationStatusTransitionError: _ServiceErrorMapping(
        409, "invalid_status_transition", "invalid_status_transition"
    ),
}

_HTTP_STATUS_CODE_TO_ERROR_CODE: dict[int, str] = {
    404: "not_found",
    405: "method_not_allowed",
}

_HTTP_STATUS_CODE_TO_ERROR_MESSAGE: dict[int, str] = {
    404: "The requested endpoint does not exist.",
    405: "The HTTP method is not allowed for this endpoint.",
}

_HTTP_STATUS_CODE_TO_LOG_EVENT_NAME: dict[int, str] = {
    404: "http_not_found",
    405: "http_method_not_allowed",
}


def _get_correlation_id(request: fastapi.Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


_CANDIDATE_HTTP_METHODS = ("DELETE", "GET", "HEAD", "OPTIONS", "PATCH", "POST", "PUT")


def _discover_allowed_methods_for_path(
    fastapi_application: fastapi.FastAPI,
    request_scope: starlette.types.Scope,
) -> str:
    """
    Ask the application's router which methods it would fully match for
    the request path.  Each candidate method is tried through the public
    ``matches`` contract of the top-level routes, so routes added through
    ``include_router`` are found however the router stores them.

    Returns:
        A sorted, comma-separated method list such as ``"DELETE, GET,
        PATCH"``, or an empty string when nothing matches.
    """
    allowed_methods: set[str] = set()

    for candidate_method in _CANDIDATE_HTTP_METHODS:
        candidate_scope = {**request_scope, "method": candidate_method}
        for route in fastapi_application.router.routes:
            match, _ = route.matches(candidate_scope)
            if match == starlette.routing.Match.FULL:
                allowed_methods.add(candidate_method)
                break

    return ", ".join(sorted(allowed_methods))


def build_error_response(
    status_code: int,
    code: str,
    message: str,
    correlation_id: str,
    details: list | str | None = None,
) -> fastapi.responses.JSONResponse:
    """
    Build a JSON error response in the standard envelope.

    ``details`` is omitted from the body entirely when not given.
    """
    error_detail_keyword_arguments: dict = {
        "code": code,
        "message": message,
        "correlation_id": correlation_id,
    }
    if details is not None:
        error_detail_keyword_arguments["details"] = details

    error_response = visioncast.models.ErrorResponse(
        error=visioncast.models.ErrorDetail(**error_detail_keyword_arguments),
    )

    return fastapi.responses.JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(exclude_unset=True),
    )


def register_error_handlers(fastapi_application: fastapi.FastAPI) -> None:
    """
    Register all exception handlers on the application.

    The catch-all for unexpected exceptions (HTTP 500) lives in
    ``CorrelationIdMiddleware`` rather than here, because Starlette routes
    ``Exception`` handlers to ``ServerErrorMiddleware``, which re-raises
    after responding.
    """

    @fastapi_application.exception_handler(
        fastapi.exceptions.RequestValidationError,
    )
    async def handle_request_validation_error(
        request: fastapi.Request,
        validation_error: fastapi.exceptions.RequestValidationError,
    ) -> fastapi.responses.JSONResponse:
        """
        Return 400 for invalid requests.

        Malformed JSON yields ``invalid_request_json``; well-formed JSON
        that does not match the schema, or an invalid query parameter,
        yields ``request_validation_failed`` with one sanitised entry per
        problem.  Input values are never echoed back.
        """
        errors = validation_error.errors()
        logger.warning(
            "http_validation_failed",
            error_locations=[list(error.get("loc", [])) for error in errors],
        )

        if any(error.get("type", "").startswith("json") for error in errors):
            return build_error_response(
                status_code=400,
                code="invalid_request_json",
                message="The request body contains invalid JSON.",
                correlation_id=_get_correlation_id(request),
            )

        sanitised_validation_error_details = [
            {
                "loc": list(error.get("loc", [])),
                "msg": error.get("msg", ""),
                "type": error.get("type", ""),
            }
            for error in errors
        ]

        return build_error_response(
            status_code=400,
            code="request_validation_failed",
            message="The request failed validation.",
            correlation_id=_get_correlation_id(request),
            details=sanitised_validation_error_details,
        )

    async def handle_service_error(
        request: fastapi.Request,
        service_error: visioncast.exceptions.ServiceError,
    ) -> fastapi.responses.JSONResponse:
        """Render a mapped ``ServiceError`` subclass."""
        error_mapping = next(
            mapping
            for exception_class, mapping in _SERVICE_ERROR_MAPPINGS.items()
            if isinstance(service_error, exception_class)
        )
        logger.warning(
            error_mapping.log_event,
            status_code=error_mapping.status_code,
            detail=service_error.detail,
            path=request.url.path,
        )
        response = build_error_response(
            error_mapping.status_code,
            error_mapping.error_code,
            service_error.detail,
            _get_correlation_id(request),
        )
        if error_mapping.status_code == 401:
            response.headers["WWW-Authenticate"] = "Bearer"
        return response

    for service_exception_class in _SERVICE_ERROR_MAPPINGS:
        fastapi_application.add_exception_handler(service_exception_class, handle_service_error)

    @fastapi_application.exception_handler(
        starlette.exceptions.HTTPException,
    )
    async def handle_starlette_http_exception(
        request: fastapi.Request,
        http_exception: starlette.exceptions.HTTPException,
    ) -> fastapi.responses.JSONResponse:
        """
        Return structured JSON for framework-raised HTTP errors such as
        404 and 405.  A 405 carries an ``Allow`` header computed from the
        registered routes.
        """
        error_code = _HTTP_STATUS_CODE_TO_ERROR_CODE.get(
            http_exception.status_code,
            "unexpected_error",
        )
        error_message = _HTTP_STATUS_CODE_TO_ERROR_MESSAGE.get(
            http_exception.status_code,
            str(http_exception.detail),
        )

        logger.warning(
            _HTTP_STATUS_CODE_TO_LOG_EVENT_NAME.get(http_exception.status_code, "http_framework_error"),
            status_code=http_exception.status_code,
            error_code=error_code,
            detail=str(http_exception.detail),
        )

        response = build_error_response(
            http_exception.status_code,
            error_code,
            error_message,
            _get_correlation_id(request),
        )

        if http_exception.status_code == 405:
            response.headers["Allow"] = _discover_allowed_methods_for_path(
                fastapi_application=request.app,  # type: ignore[arg-type]
                request_scope=request.scope,
            )

        return response
