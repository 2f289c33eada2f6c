"""
In-memory store of creation records.

The store is the only component that writes creations, and it enforces
the lifecycle every record follows:

::

    generating ──► completed
        │
        └────────► failed

    any status ──► deleted      (owner soft-delete)

There is no transition back into ``generating``, and a terminal record
(``completed`` or ``failed``) is never overwritten by another generation
write.  A write that would break these rules raises
``InvalidCreationStatusTransitionError`` and leaves the record untouched.

All mutations run under one ``asyncio.Lock``, so the check of the current
status and the write that follows it are atomic with respect to other
tasks.  Callers always receive deep copies; mutating a returned record
has no effect on the store.
"""

import asyncio
import datetime
import math
import typing

import structlog

import visioncast.exceptions
import visioncast.models

logger = structlog.get_logger()

CreationStatus = visioncast.models.CreationStatus

SORTABLE_CREATION_FIELDS: dict[str, str] = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "title": "title",
}

DEFAULT_CREATION_SORT = "-createdAt"

_ALLOWED_STATUS_TRANSITIONS: dict[CreationStatus, frozenset[CreationStatus]] = {
    CreationStatus.GENERATING: frozenset({CreationStatus.COMPLETED, CreationStatus.FAILED, CreationStatus.DELETED}),
    CreationStatus.COMPLETED: frozenset({CreationStatus.DELETED}),
    CreationStatus.FAILED: frozenset({CreationStatus.DELETED}),
    CreationStatus.DELETED: frozenset({CreationStatus.DELETED}),
}


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def calculate_page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


def _sort_records(
    records: list[visioncast.models.CreationRecord],
    sort: str,
) -> list[visioncast.models.CreationRecord]:
    descending = sort.startswith("-")
    sort_field = SORTABLE_CREATION_FIELDS.get(sort.lstrip("-"))
    if sort_field is None:
        raise ValueError(f"Unsupported sort field '{sort}'.")
    return sorted(records, key=lambda record: getattr(record, sort_field), reverse=descending)


def _paginate(
    records: list[visioncast.models.CreationRecord],
    page: int,
    limit: int,
) -> list[visioncast.models.CreationRecord]:
    first_index = (page - 1) * limit
    return records[first_index : first_index + limit]


class CreationStore:
    """
    Keeps creation records in process memory, keyed by identifier.

    Records do not survive a restart.  The public coroutine interface is
    the seam a database-backed store would implement.
    """

    def __init__(self) -> None:
        self._creations: dict[str, visioncast.models.CreationRecord] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._creations)

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_creation(self, creation_identifier: str) -> visioncast.models.CreationRecord | None:
        """Return a copy of the record, or ``None`` if no such creation exists."""
        stored_record = self._creations.get(creation_identifier)
        return stored_record.model_copy(deep=True) if stored_record is not None else None

    async def list_owner_creations(
        self,
        owner_identifier: str,
        kind: str | None = None,
        status: str | None = None,
        sort: str = DEFAULT_CREATION_SORT,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[visioncast.models.CreationRecord], int]:
        """
        Return one page of an owner's creations and the total match count.

        Soft-deleted creations are only listed when ``status`` asks for
        ``deleted`` explicitly.
        """
        matching_records = [
            record
            for record in self._creations.values()
            if record.owner_identifier == owner_identifier
            and (kind is None or record.kind == kind)
            and (record.status == status if status is not None else record.status != CreationStatus.DELETED)
        ]
        page_records = _paginate(_sort_records(matching_records, sort), page, limit)
        return [record.model_copy(deep=True) for record in page_records], len(matching_records)

    async def list_public_creations(
        self,
        kind: str | None = None,
        tags: typing.Sequence[str] | None = None,
        sort: str = DEFAULT_CREATION_SORT,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[visioncast.models.CreationRecord], int]:
        """
        Return one page of public, completed creations.

        When ``tags`` is given, a creation matches if it carries at least
        one of them.
        """
        wanted_tags = set(tags or ())
        matching_records = [
            record
            for record in self._creations.values()
            if record.is_public
            and record.status == CreationStatus.COMPLETED
            and (kind is None or record.kind == kind)
            and (not wanted_tags or wanted_tags.intersection(record.tags))
        ]
        page_records = _paginate(_sort_records(matching_records, sort), page, limit)
        return [record.model_copy(deep=True) for record in page_records], len(matching_records)

    async def compute_owner_statistics(
        self,
        owner_identifier: str,
    ) -> list[visioncast.models.CreationTypeStatistics]:
        """Count an owner's non-deleted creations per type with their mean generation time."""
        records_by_kind: dict[str, list[visioncast.models.CreationRecord]] = {}
        for record in self._creations.values():
            if record.owner_identifier == owner_identifier and record.status != CreationStatus.DELETED:
                records_by_kind.setdefault(record.kind, []).append(record)

        statistics = []
        for kind, records in sorted(records_by_kind.items()):
            generation_times = [record.generation_time for record in records if record.generation_time is not None]
            statistics.append(
                visioncast.models.CreationTypeStatistics(
                    kind=kind,
                    count=len(records),
                    average_generation_time=(
                        round(sum(generation_times) / len(generation_times), 3) if generation_times else None
                    ),
                ),
            )
        return statistics

    # ── Writes ───────────────────────────────────────────────────────────

    async def add_creation(self, creation: visioncast.models.CreationRecord) -> visioncast.models.CreationRecord:
        """
        Insert a new record.  New records must be in ``generating`` state.

        Raises:
            ValueError: If the identifier is already taken or the record
                is not in ``generating`` state.
        """
        if creation.status != CreationStatus.GENERATING:
            raise ValueError("New creations must start in the 'generating' state.")

        async with self._lock:
            if creation.identifier in self._creations:
                raise ValueError(f"A creation with identifier '{creation.identifier}' already exists.")
            self._creations[creation.identifier] = creation.model_copy(deep=True)

        logger.info(
            "creation_created",
            creation_id=creation.identifier,
            owner_id=creation.owner_identifier,
            kind=creation.kind,
        )
        return creation.model_copy(deep=True)

    async def _transition(
        self,
        creation_identifier: str,
        requested_status: CreationStatus,
        field_updates: dict[str, typing.Any],
    ) -> visioncast.models.CreationRecord:
        async with self._lock:
            stored_record = self._creations.get(creation_identifier)
            if stored_record is None:
                raise visioncast.exceptions.CreationNotFoundError()

            current_status = stored_record.status
            if requested_status not in _ALLOWED_STATUS_TRANSITIONS[current_status]:
                raise visioncast.exceptions.InvalidCreationStatusTransitionError(
                    current_status=current_status.value,
                    requested_status=requested_status.value,
                )

            updated_record = stored_record.model_copy(
                update={**field_updates, "status": requested_status, "updated_at": _utc_now()},
                deep=True,
            )
            self._creations[creation_identifier] = updated_record

        logger.info(
            "creation_status_transition",
            creation_id=creation_identifier,
            from_status=current_status.value,
            to_status=requested_status.value,
        )
        return updated_record.model_copy(deep=True)

    async def mark_completed(
        self,
        creation_identifier: str,
        file_url: str,
        generation_time: float,
        model: str,
        enhanced_prompt: str,
        enhancement_method: str,
        provider_used: str,
    ) -> visioncast.models.CreationRecord:
        """
        Apply ``generating -> completed``.

        Sets the file and thumbnail URLs, generation time and model display
        name, and records the enhanced prompt, enhancement method and
        provider in the metadata.

        Raises:
            ValueError: If ``file_url`` is empty.
            CreationNotFoundError: If the creation does not exist.
            InvalidCreationStatusTransitionError: If the creation is no
                longer ``generating``.
        """
        if not file_url:
            raise ValueError("A completed creation requires a file URL.")

        stored_record = self._creations.get(creation_identifier)
        if stored_record is None:
            raise visioncast.exceptions.CreationNotFoundError()

        completed_metadata = stored_record.metadata.model_copy(
            update={
                "enhanced_prompt": enhanced_prompt,
                "enhancement_method": enhancement_method,
                "provider_used": provider_used,
            },
        )
        return await self._transition(
            creation_identifier,
            CreationStatus.COMPLETED,
            {
                "file_url": file_url,
                "thumbnail_url": file_url,
                "generation_time": generation_time,
                "model": model,
                "error": None,
                "metadata": completed_metadata,
            },
        )

    async def mark_failed(self, creation_identifier: str, error: str) -> visioncast.models.CreationRecord:
        """
        Apply ``generating -> failed`` with the failure message.

        Raises:
            CreationNotFoundError: If the creation does not exist.
            InvalidCreationStatusTransitionError: If the creation is no
                longer ``generating``.
        """
        return await self._transition(
            creation_identifier,
            CreationStatus.FAILED,
            {"error": error, "file_url": None, "thumbnail_url": None},
        )

    async def mark_deleted(self, creation_identifier: str) -> visioncast.models.CreationRecord:
        """Soft-delete a creation.  Deleting an already deleted creation is a no-op write."""
        return await self._transition(creation_identifier, CreationStatus.DELETED, {})

    async def update_display_fields(
        self,
        creation_identifier: str,
        display_field_updates: dict[str, typing.Any],
    ) -> visioncast.models.CreationRecord:
        """
        Change the title, description, tags or public flag of a creation.

        Any other key in ``display_field_updates`` is rejected, so the
        status, owner and generation fields cannot be changed this way.
        """
        unsupported_fields = set(display_field_updates) - {"title", "description", "tags", "is_public"}
        if unsupported_fields:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unsupported_fields))}.")

        async with self._lock:
            stored_record = self._creations.get(creation_identifier)
            if stored_record is None:
                raise visioncast.exceptions.CreationNotFoundError()
            updated_record = stored_record.model_copy(
                update={**display_field_updates, "updated_at": _utc_now()},
                deep=True,
            )
            self._creations[creation_identifier] = updated_record

        return updated_record.model_copy(deep=True)

    async def increment_download_count(self, creation_identifier: str) -> visioncast.models.CreationRecord:
        async with self._lock:
            stored_record = self._creations.get(creation_identifier)
            if stored_record is None:
                raise visioncast.exceptions.CreationNotFoundError()
            stored_record.download_count += 1

        return stored_record.model_copy(deep=True)
