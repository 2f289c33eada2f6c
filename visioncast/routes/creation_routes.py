"""
Route definitions for creations.

``POST /creations/generate/image`` stores a new creation in ``generating``
state, schedules its generation in the background and answers 201 straight
away.  Clients then poll ``GET /creations/{creation_id}`` until the status
is ``completed`` or ``failed``.

The remaining routes list, update, soft-delete and download creations.
Every route except ``GET /creations/public`` requires a bearer token.  A
creation is readable by its owner, and by anyone once it is public; only
the owner may change or delete it.

Static paths are declared before ``/{creation_id}`` so that they are not
captured by the identifier parameter.
"""

import typing

import fastapi
import structlog

import visioncast.authentication
import visioncast.dependencies
import visioncast.exceptions
import visioncast.models
import visioncast.rate_limiting
import visioncast.services.creation_generation_service
import visioncast.services.creation_store
import visioncast.services.language_model_service

logger = structlog.get_logger()

creation_router = fastapi.APIRouter(
    prefix="/creations",
    tags=["Creations"],
)

AuthenticatedUserDependency = typing.Annotated[
    visioncast.authentication.AuthenticatedUser,
    fastapi.Depends(visioncast.authentication.get_authenticated_user),
]

CreationStoreDependency = typing.Annotated[
    visioncast.services.creation_store.CreationStore,
    fastapi.Depends(visioncast.dependencies.get_creation_store),
]

CreationSort = typing.Literal["createdAt", "-createdAt", "title", "-title", "updatedAt", "-updatedAt"]


def _error_documentation(description: str) -> dict[str, typing.Any]:
    return {"description": description, "model": visioncast.models.ErrorResponse}


_VALIDATION_ERROR_DOCUMENTATION = _error_documentation(
    "Bad Request: invalid JSON (``invalid_request_json``) or failed validation (``request_validation_failed``)."
)
_AUTHENTICATION_ERROR_DOCUMENTATION = _error_documentation(
    "Unauthorized: the bearer token is missing, invalid or expired (``authentication_required``)."
)
_FORBIDDEN_ERROR_DOCUMENTATION = _error_documentation(
    "Forbidden: the creation belongs to another user (``creation_access_forbidden``)."
)
_NOT_FOUND_ERROR_DOCUMENTATION = _error_documentation(
    "Not Found: no creation has this identifier (``creation_not_found``)."
)


def _build_pagination(page: int, limit: int, total: int) -> visioncast.models.PaginationDetail:
    return visioncast.models.PaginationDetail(
        page=page,
        limit=limit,
        total=total,
        pages=visioncast.services.creation_store.calculate_page_count(total, limit),
    )


async def _load_creation_visible_to(
    creation_store: visioncast.services.creation_store.CreationStore,
    creation_identifier: str,
    authenticated_user: visioncast.authentication.AuthenticatedUser,
) -> visioncast.models.CreationRecord:
    """
    Raises:
        CreationNotFoundError: If no creation has this identifier.
        CreationAccessForbiddenError: If the creation is neither owned by
            the user nor public.
    """
    creation = await creation_store.get_creation(creation_identifier)
    if creation is None:
        raise visioncast.exceptions.CreationNotFoundError()
    if not creation.is_visible_to(authenticated_user.identifier):
        raise visioncast.exceptions.CreationAccessForbiddenError()
    return creation


async def _load_creation_owned_by(
    creation_store: visioncast.services.creation_store.CreationStore,
    creation_identifier: str,
    authenticated_user: visioncast.authentication.AuthenticatedUser,
) -> visioncast.models.CreationRecord:
    creation = await creation_store.get_creation(creation_identifier)
    if creation is None:
        raise visioncast.exceptions.CreationNotFoundError()
    if creation.owner_identifier != authenticated_user.identifier:
        raise visioncast.exceptions.CreationAccessForbiddenError()
    return creation


# ── Submission ────────────────────────────────────────────────────────


@creation_router.post(
    "/generate/image",
    response_model=visioncast.models.CreationSubmissionResponse,
    summary="Start generating an image from a prompt",
    description=(
        "Stores a new creation in the ``generating`` state and starts its "
        "generation in the background. The response is returned before "
        "the image exists; poll ``GET /creations/{creation_id}`` for the result."
    ),
    status_code=201,
    responses={
        400: _error_documentation(
            "Bad Request: invalid JSON, failed validation, or a prompt containing blocked content (``prompt_rejected``)."
        ),
        401: _AUTHENTICATION_ERROR_DOCUMENTATION,
        413: _error_documentation("Payload Too Large (``payload_too_large``)."),
        415: _error_documentation("Unsupported Media Type: the ``Content-Type`` header is not ``application/json``."),
        429: _error_documentation(
            "Too Many Requests (``rate_limit_exceeded``). The ``Retry-After`` header says when to retry."
        ),
    },
)
@visioncast.rate_limiting.generation_rate_limit
async def submit_image_generation(
    request: fastapi.Request,
    submission: visioncast.models.ImageGenerationSubmissionRequest,
    authenticated_user: AuthenticatedUserDependency,
    creation_generation_service: typing.Annotated[
        visioncast.services.creation_generation_service.CreationGenerationService,
        fastapi.Depends(visioncast.dependencies.get_creation_generation_service),
    ],
) -> visioncast.models.CreationSubmissionResponse:
    creation = await creation_generation_service.submit_image_generation(
        owner_identifier=authenticated_user.identifier,
        submission=submission,
    )
    return visioncast.models.CreationSubmissionResponse(
        data=visioncast.models.CreationSubmissionData(
            creation=creation,
            message=visioncast.services.creation_generation_service.GENERATION_STARTED_MESSAGE,
        ),
    )


# ── Listings and aggregates ───────────────────────────────────────────


@creation_router.get(
    "",
    response_model=visioncast.models.CreationListResponse,
    summary="List the caller's creations",
    description=(
        "Returns one page of the caller's creations. Deleted creations "
        "are only included when ``status=deleted`` is requested."
    ),
    responses={
        400: _VALIDATION_ERROR_DOCUMENTATION,
        401: _AUTHENTICATION_ERROR_DOCUMENTATION,
    },
)
async def list_creations(
    authenticated_user: AuthenticatedUserDependency,
    creation_store: CreationStoreDependency,
    page: typing.Annotated[int, fastapi.Query(ge=1)] = 1,
    limit: typing.Annotated[int, fastapi.Query(ge=1, le=100)] = 20,
    creation_kind: typing.Annotated[visioncast.models.CreationKind | None, fastapi.Query(alias="type")] = None,
    status: visioncast.models.CreationStatus | None = None,
    sort: CreationSort = "-createdAt",
) -> visioncast.models.CreationListResponse:
    creations, total = await creation_store.list_owner_creations(
        authenticated_user.identifier,
        kind=creation_kind,
        status=status,
        sort=sort,
        page=page,
        limit=limit,
    )
    return visioncast.models.CreationListResponse(
        data=visioncast.models.CreationListData(
            creations=creations,
            pagination=_build_pagination(page, limit, total),
        ),
    )


@creation_router.get(
    "/public",
    response_model=visioncast.models.CreationListResponse,
    summary="List public creations",
    description=(
        "Returns one page of completed creations their owners have made "
        "public. ``tags`` is a comma-separated list; a creation matches "
        "when it carries any of the tags. No authentication is required."
    ),
    responses={400: _VALIDATION_ERROR_DOCUMENTATION},
)
async def list_public_creations(
    creation_store: CreationStoreDependency,
    page: typing.Annotated[int, fastapi.Query(ge=1)] = 1,
    limit: typing.Annotated[int, fastapi.Query(ge=1, le=100)] = 20,
    creation_kind: typing.Annotated[visioncast.models.CreationKind | None, fastapi.Query(alias="type")] = None,
    tags: str | None = None,
    sort: CreationSort = "-createdAt",
) -> visioncast.models.CreationListResponse:
    requested_tags = [tag.strip() for tag in tags.split(",") if tag.strip()] if tags else None
    creations, total = await creation_store.list_public_creations(
        kind=creation_kind,
        tags=requested_tags,
        sort=sort,
        page=page,
        limit=limit,
    )
    return visioncast.models.CreationListResponse(
        data=visioncast.models.CreationListData(
            creations=creations,
            pagination=_build_pagination(page, limit, total),
        ),
    )


@creation_router.get(
    "/stats",
    response_model=visioncast.models.CreationStatisticsResponse,
    summary="Per-type statistics of the caller's creations",
    responses={401: _AUTHENTICATION_ERROR_DOCUMENTATION},
)
async def get_creation_statistics(
    authenticated_user: AuthenticatedUserDependency,
    creation_store: CreationStoreDependency,
) -> visioncast.models.CreationStatisticsResponse:
    statistics = await creation_store.compute_owner_statistics(authenticated_user.identifier)
    return visioncast.models.CreationStatisticsResponse(
        data=visioncast.models.CreationStatisticsData(stats=statistics),
    )


@creation_router.get(
    "/language-model/connection-test",
    response_model=visioncast.models.LanguageModelConnectionTestResponse,
    response_model_exclude_none=True,
    summary="Check the language model round trip",
    description=(
        "Sends a fixed instruction to the language model and reports "
        "whether it answered. A failed round trip is reported in the body "
        "with ``success: false``, not as an HTTP error."
    ),
    responses={401: _AUTHENTICATION_ERROR_DOCUMENTATION},
)
async def test_language_model_connection(
    authenticated_user: AuthenticatedUserDependency,
    language_model_service: typing.Annotated[
        visioncast.services.language_model_service.LanguageModelService | None,
        fastapi.Depends(visioncast.dependencies.get_language_model_service),
    ],
) -> visioncast.models.LanguageModelConnectionTestResponse:
    if language_model_service is None:
        connection_test_result: dict[str, object] = {
            "success": False,
            "error": "The language model API key is not configured.",
        }
    else:
        connection_test_result = await language_model_service.test_connection()

    logger.info(
        "language_model_connection_tested",
        requested_by=authenticated_user.identifier,
        success=connection_test_result["success"],
    )
    return visioncast.models.LanguageModelConnectionTestResponse(
        data=visioncast.models.LanguageModelConnectionTestData.model_validate(connection_test_result),
    )


# ── Single creation ───────────────────────────────────────────────────


@creation_router.get(
    "/{creation_id}",
    response_model=visioncast.models.CreationDetailResponse,
    summary="Read one creation",
    description=(
        "Returns the creation with its current status. This is the "
        "endpoint clients poll after submitting a generation."
    ),
    responses={
        401: _AUTHENTICATION_ERROR_DOCUMENTATION,
        403: _FORBIDDEN_ERROR_DOCUMENTATION,
        404: _NOT_FOUND_ERROR_DOCUMENTATION,
    },
)
async def get_creation(
    creation_id: str,
    authenticated_user: AuthenticatedUserDependency,
    creation_store: CreationStoreDependency,
) -> visioncast.models.CreationDetailResponse:
    creation = await _load_creation_visible_to(creation_store, creation_id, authenticated_user)
    return visioncast.models.CreationDetailResponse(
        data=visioncast.models.CreationDetailData(creation=creation),
    )


@creation_router.patch(
    "/{creation_id}",
    response_model=visioncast.models.CreationDetailResponse,
    summary="Update the display fields of a creation",
    description="Changes ``title``, ``description``, ``tags`` or ``isPublic``. Only the owner may update.",
    responses={
        400: _VALIDATION_ERROR_DOCUMENTATION,
        401: _AUTHENTICATION_ERROR_DOCUMENTATION,
        403: _FORBIDDEN_ERROR_DOCUMENTATION,
        404: _NOT_FOUND_ERROR_DOCUMENTATION,
    },
)
async def update_creation(
    creation_id: str,
    creation_update: visioncast.models.CreationUpdateRequest,
    authenticated_user: AuthenticatedUserDependency,
    creation_store: CreationStoreDependency,
) -> visioncast.models.CreationDetailResponse:
    await _load_creation_owned_by(creation_store, creation_id, authenticated_user)
    updated_creation = await creation_store.update_display_fields(
        creation_id,
        creation_update.model_dump(exclude_unset=True),
    )
    logger.info(
        "creation_updated",
        creation_id=creation_id,
        updated_fields=sorted(creation_update.model_fields_set),
    )
    return visioncast.models.CreationDetailResponse(
        data=visioncast.models.CreationDetailData(creation=updated_creation),
    )


@creation_router.delete(
    "/{creation_id}",
    response_model=visioncast.models.CreationDeletionResponse,
    summary="Soft-delete a creation",
    description=(
        "Marks the creation as ``deleted``. A generation still running for "
        "it finishes in the background and its result is discarded."
    ),
    responses={
        401: _AUTHENTICATION_ERROR_DOCUMENTATION,
        403: _FORBIDDEN_ERROR_DOCUMENTATION,
        404: _NOT_FOUND_ERROR_DOCUMENTATION,
    },
)
async def delete_creation(
    creation_id: str,
    authenticated_user: AuthenticatedUserDependency,
    creation_store: CreationStoreDependency,
) -> visioncast.models.CreationDeletionResponse:
    await _load_creation_owned_by(creation_store, creation_id, authenticated_user)
    await creation_store.mark_deleted(creation_id)
    return visioncast.models.CreationDeletionResponse(message="Creation deleted successfully")


@creation_router.get(
    "/{creation_id}/download",
    response_model=visioncast.models.CreationDownloadResponse,
    summary="Get the download link of a finished creation",
    description="Returns the file URL and a file name, and counts the download.",
    responses={
        400: _error_documentation("Bad Request: the creation has not completed (``creation_not_ready``)."),
        401: _AUTHENTICATION_ERROR_DOCUMENTATION,
        403: _FORBIDDEN_ERROR_DOCUMENTATION,
        404: _NOT_FOUND_ERROR_DOCUMENTATION,
    },
)
async def download_creation(
    creation_id: str,
    authenticated_user: AuthenticatedUserDependency,
    creation_store: CreationStoreDependency,
) -> visioncast.models.CreationDownloadResponse:
    creation = await _load_creation_visible_to(creation_store, creation_id, authenticated_user)
    if creation.status != visioncast.models.CreationStatus.COMPLETED or not creation.file_url:
        raise visioncast.exceptions.CreationNotReadyError()

    await creation_store.increment_download_count(creation_id)
    return visioncast.models.CreationDownloadResponse(
        data=visioncast.models.CreationDownloadData(
            download_url=creation.file_url,
            filename=f"{creation.title}.{creation.metadata.format}",
        ),
    )
