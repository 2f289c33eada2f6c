"""
Asynchronous image generation for creations.

``submit_image_generation`` is called by the request handler.  It screens
the prompt, stores a new creation in ``generating`` state, schedules the
generation run in the background and returns the record immediately.

``run_image_generation`` is the background run.  It owns the single
status transition of the creation:

- On success the creation becomes ``completed`` with the image URL and
  generation metadata, and a ``generation_complete`` notification is sent.
- On any error the creation becomes ``failed`` with the error message,
  and a high-priority ``system`` notification is sent.
- If the creation was deleted while the run was in progress, the store
  refuses the transition and the result is discarded.

No error escapes the run.  At most ``maximum_concurrent_generations``
runs execute at once; further runs wait for a free slot.
"""

import asyncio
import datetime
import uuid

import structlog

import visioncast.background_tasks
import visioncast.exceptions
import visioncast.metrics
import visioncast.models
import visioncast.services.creation_store
import visioncast.services.image_generation_orchestrator
import visioncast.services.notification_service

logger = structlog.get_logger()

BLOCKED_PROMPT_TERMS = ("violence", "gore", "nsfw", "explicit")

GENERATION_STARTED_MESSAGE = "Image generation started. You will be notified when complete."


def ensure_prompt_is_allowed(prompt: str) -> None:
    """
    Reject prompts containing a blocked term (case-insensitive substring).

    Raises:
        ProhibitedPromptContentError: If a blocked term is present.
    """
    lowercase_prompt = prompt.lower()
    for blocked_term in BLOCKED_PROMPT_TERMS:
        if blocked_term in lowercase_prompt:
            logger.info("prompt_rejected", blocked_term=blocked_term)
            raise visioncast.exceptions.ProhibitedPromptContentError()


def build_generated_image_title(created_at: datetime.datetime) -> str:
    return f"Generated Image - {created_at.month}/{created_at.day}/{created_at.year}"


class CreationGenerationService:
    """Accepts image generation requests and runs them to a terminal state."""

    def __init__(
        self,
        creation_store: visioncast.services.creation_store.CreationStore,
        image_generation_orchestrator: visioncast.services.image_generation_orchestrator.ImageGenerationOrchestrator,
        notification_service: visioncast.services.notification_service.NotificationService,
        background_task_scheduler: visioncast.background_tasks.BackgroundTaskScheduler,
        maximum_concurrent_generations: int = 4,
        metrics_collector: visioncast.metrics.MetricsCollector | None = None,
    ) -> None:
        self.creation_store = creation_store
        self.image_generation_orchestrator = image_generation_orchestrator
        self.notification_service = notification_service
        self.background_task_scheduler = background_task_scheduler
        self.metrics_collector = metrics_collector
        self._generation_slots = asyncio.Semaphore(maximum_concurrent_generations)

    async def submit_image_generation(
        self,
        owner_identifier: str,
        submission: visioncast.models.ImageGenerationSubmissionRequest,
    ) -> visioncast.models.CreationRecord:
        """
        Create a ``generating`` creation and start its generation.

        Args:
            owner_identifier: The authenticated user submitting the prompt.
            submission: The validated request body.

        Returns:
            The newly stored creation, still in ``generating`` state.

        Raises:
            ProhibitedPromptContentError: If the prompt contains a blocked term.
        """
        ensure_prompt_is_allowed(submission.prompt)

        created_at = datetime.datetime.now(datetime.UTC)
        creation = await self.creation_store.add_creation(
            visioncast.models.CreationRecord(
                identifier=uuid.uuid4().hex,
                owner_identifier=owner_identifier,
                kind="image",
                title=build_generated_image_title(created_at),
                description=f'AI generated image from prompt: "{submission.prompt}"',
                prompt=submission.prompt,
                style=submission.style,
                size=submission.size,
                quality=submission.quality,
                status=visioncast.models.CreationStatus.GENERATING,
                metadata=visioncast.models.CreationMetadata(
                    original_prompt=submission.prompt,
                    style=submission.style,
                    size=submission.size,
                    quality=submission.quality,
                ),
                created_at=created_at,
                updated_at=created_at,
            ),
        )

        self.background_task_scheduler.schedule(
            self.run_image_generation(creation.identifier),
            name=f"image-generation-{creation.identifier}",
        )

        logger.info(
            "image_generation_submitted",
            creation_id=creation.identifier,
            owner_id=owner_identifier,
            style=submission.style,
            size=submission.size,
            quality=submission.quality,
        )
        return creation

    async def run_image_generation(self, creation_identifier: str) -> None:
        """Run one generation to completion.  Never raises except on cancellation."""
        async with self._generation_slots:
            creation = await self.creation_store.get_creation(creation_identifier)
            if creation is None or creation.status != visioncast.models.CreationStatus.GENERATING:
                if creation is None:
                    skip_reason = "creation_not_found"
                elif creation.is_terminal:
                    skip_reason = "already_finished"
                else:
                    skip_reason = "creation_deleted"
                logger.info(
                    "image_generation_skipped",
                    creation_id=creation_identifier,
                    reason=skip_reason,
                )
                return

            logger.info("image_generation_started", creation_id=creation_identifier)

            try:
                generation_result = await self.image_generation_orchestrator.generate_image(
                    creation.prompt,
                    creation.style,
                    creation.size,
                    creation.quality,
                )
            except Exception as generation_error:
                failure_message = (
                    generation_error.detail
                    if isinstance(generation_error, visioncast.exceptions.ServiceError)
                    else f"Failed to generate image: {generation_error}"
                )
                await self._record_generation_failure(creation_identifier, failure_message)
                return

            await self._record_generation_success(creation_identifier, generation_result)

    async def _record_generation_success(
        self,
        creation_identifier: str,
        generation_result: visioncast.services.image_generation_orchestrator.ImageGenerationResult,
    ) -> None:
        try:
            completed_creation = await self.creation_store.mark_completed(
                creation_identifier,
                file_url=generation_result.image_url,
                generation_time=generation_result.metadata.generation_seconds,
                model=generation_result.metadata.model,
                enhanced_prompt=generation_result.enhanced_prompt,
                enhancement_method=generation_result.metadata.enhancement_method,
                provider_used=generation_result.metadata.provider_used,
            )
        except (
            visioncast.exceptions.CreationNotFoundError,
            visioncast.exceptions.InvalidCreationStatusTransitionError,
        ) as transition_error:
            logger.info(
                "image_generation_result_discarded",
                creation_id=creation_identifier,
                reason=transition_error.detail,
            )
            return
        except Exception as store_error:
            await self._record_generation_failure(
                creation_identifier,
                f"Failed to store generated image: {store_error}",
            )
            return

        if self.metrics_collector is not None:
            self.metrics_collector.record_generation_outcome(
                visioncast.models.CreationStatus.COMPLETED.value,
                generation_result.metadata.provider_used,
            )

        await self.notification_service.notify_generation_completed(completed_creation)

    async def _record_generation_failure(self, creation_identifier: str, failure_message: str) -> None:
        logger.error(
            "image_generation_run_failed",
            creation_id=creation_identifier,
            error=failure_message,
        )
        try:
            failed_creation = await self.creation_store.mark_failed(creation_identifier, failure_message)
        except (
            visioncast.exceptions.CreationNotFoundError,
            visioncast.exceptions.InvalidCreationStatusTransitionError,
        ) as transition_error:
            logger.info(
                "image_generation_result_discarded",
                creation_id=creation_identifier,
                reason=transition_error.detail,
            )
            return

        if self.metrics_collector is not None:
            self.metrics_collector.record_generation_outcome(visioncast.models.CreationStatus.FAILED.value, None)

        await self.notification_service.notify_generation_failed(failed_creation)
