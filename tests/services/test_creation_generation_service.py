"""
Tests for visioncast/services/creation_generation_service.py.

Uses a real store, scheduler and notification inbox with a mocked
generation orchestrator, and waits for background runs with
``BackgroundTaskScheduler.wait_until_idle``.
"""

import asyncio
import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

import visioncast.background_tasks
import visioncast.exceptions
import visioncast.metrics
import visioncast.models
import visioncast.services.creation_generation_service
import visioncast.services.creation_store
import visioncast.services.image_generation_orchestrator
import visioncast.services.notification_service


def _build_generation_result(image_url: str = "https://image.example/cat.jpg"):
    return visioncast.services.image_generation_orchestrator.ImageGenerationResult(
        image_url=image_url,
        enhanced_prompt="A red fox in snow, photorealistic",
        original_prompt="A red fox in snow",
        style="realistic",
        size="1024x1024",
        quality="high",
        metadata=visioncast.services.image_generation_orchestrator.ImageGenerationMetadata(
            enhancement_method="basic",
            provider_used="pollinations",
            model="Basic Enhancement + pollinations",
            timestamp=datetime.datetime.now(datetime.UTC),
            generation_seconds=1.25,
        ),
    )


class _GenerationHarness:
    """Wires a CreationGenerationService to real collaborators."""

    def __init__(self, generate_image: AsyncMock, maximum_concurrent_generations: int = 4) -> None:
        self.creation_store = visioncast.services.creation_store.CreationStore()
        self.notification_service = visioncast.services.notification_service.NotificationService()
        self.background_task_scheduler = visioncast.background_tasks.BackgroundTaskScheduler()
        self.metrics_collector = visioncast.metrics.MetricsCollector()
        self.image_generation_orchestrator = MagicMock()
        self.image_generation_orchestrator.generate_image = generate_image
        self.creation_generation_service = (
            visioncast.services.creation_generation_service.CreationGenerationService(
                creation_store=self.creation_store,
                image_generation_orchestrator=self.image_generation_orchestrator,
                notification_service=self.notification_service,
                background_task_scheduler=self.background_task_scheduler,
                maximum_concurrent_generations=maximum_concurrent_generations,
                metrics_collector=self.metrics_collector,
            )
        )

    async def submit(self, prompt: str = "A red fox in snow", owner_identifier: str = "owner-1"):
        return await self.creation_generation_service.submit_image_generation(
            owner_identifier,
            visioncast.models.ImageGenerationSubmissionRequest(prompt=prompt),
        )


class TestEnsurePromptIsAllowed:

    @pytest.mark.parametrize("prompt", ["Extreme VIOLENCE scene", "gory gore", "an nsfw picture", "explicitly red"])
    def test_blocked_terms_are_rejected(self, prompt):
        with pytest.raises(visioncast.exceptions.ProhibitedPromptContentError):
            visioncast.services.creation_generation_service.ensure_prompt_is_allowed(prompt)

    def test_clean_prompt_passes(self):
        visioncast.services.creation_generation_service.ensure_prompt_is_allowed("A peaceful meadow")


class TestBuildGeneratedImageTitle:

    def test_uses_month_day_year_without_padding(self):
        created_at = datetime.datetime(2026, 3, 7, tzinfo=datetime.UTC)
        assert (
            visioncast.services.creation_generation_service.build_generated_image_title(created_at)
            == "Generated Image - 3/7/2026"
        )


class TestSubmitImageGeneration:

    @pytest.mark.asyncio
    async def test_returns_generating_record_before_the_run_finishes(self):
        generation_may_finish = asyncio.Event()

        async def blocked_generation(*arguments):
            await generation_may_finish.wait()
            return _build_generation_result()

        harness = _GenerationHarness(AsyncMock(side_effect=blocked_generation))

        creation = await harness.submit()

        assert creation.status == visioncast.models.CreationStatus.GENERATING
        assert creation.owner_identifier == "owner-1"
        assert creation.kind == "image"
        assert creation.title.startswith("Generated Image - ")
        assert creation.description == 'AI generated image from prompt: "A red fox in snow"'
        assert creation.metadata.original_prompt == "A red fox in snow"
        assert creation.file_url is None
        assert len(creation.identifier) == 32
        assert harness.background_task_scheduler.pending_task_count == 1

        generation_may_finish.set()
        await harness.background_task_scheduler.wait_until_idle()

    @pytest.mark.asyncio
    async def test_blocked_prompt_creates_nothing(self):
        harness = _GenerationHarness(AsyncMock(return_value=_build_generation_result()))

        with pytest.raises(visioncast.exceptions.ProhibitedPromptContentError):
            await harness.submit(prompt="Some graphic violence")

        assert len(harness.creation_store) == 0
        assert harness.background_task_scheduler.pending_task_count == 0


class TestRunImageGeneration:

    @pytest.mark.asyncio
    async def test_success_completes_creation_and_notifies(self):
        harness = _GenerationHarness(AsyncMock(return_value=_build_generation_result()))

        creation = await harness.submit()
        await harness.background_task_scheduler.wait_until_idle()

        completed_creation = await harness.creation_store.get_creation(creation.identifier)
        assert completed_creation.status == visioncast.models.CreationStatus.COMPLETED
        assert completed_creation.file_url == "https://image.example/cat.jpg"
        assert completed_creation.generation_time == 1.25
        assert completed_creation.model == "Basic Enhancement + pollinations"
        assert completed_creation.metadata.provider_used == "pollinations"
        harness.image_generation_orchestrator.generate_image.assert_awaited_once_with(
            "A red fox in snow",
            "realistic",
            "1024x1024",
            "high",
        )

        notifications = await harness.notification_service.list_notifications("owner-1")
        assert len(notifications) == 1
        assert notifications[0].notification_type == "generation_complete"
        assert notifications[0].data["imageUrl"] == "https://image.example/cat.jpg"

        generation_outcomes = harness.metrics_collector.snapshot()["generation_outcomes"]
        assert generation_outcomes["by_status"] == {"completed": 1}
        assert generation_outcomes["by_provider"] == {"pollinations": 1}

    @pytest.mark.asyncio
    async def test_generation_error_fails_creation_and_notifies(self):
        harness = _GenerationHarness(
            AsyncMock(
                side_effect=visioncast.exceptions.ImageGenerationError("Failed to generate image: provider crashed")
            )
        )

        creation = await harness.submit()
        await harness.background_task_scheduler.wait_until_idle()

        failed_creation = await harness.creation_store.get_creation(creation.identifier)
        assert failed_creation.status == visioncast.models.CreationStatus.FAILED
        assert failed_creation.error == "Failed to generate image: provider crashed"
        assert failed_creation.file_url is None

        notifications = await harness.notification_service.list_notifications("owner-1")
        assert notifications[0].notification_type == "system"
        assert notifications[0].priority == "high"
        assert harness.metrics_collector.snapshot()["generation_outcomes"]["by_status"] == {"failed": 1}

    @pytest.mark.asyncio
    async def test_unexpected_error_message_is_prefixed(self):
        harness = _GenerationHarness(AsyncMock(side_effect=RuntimeError("disk on fire")))

        creation = await harness.submit()
        await harness.background_task_scheduler.wait_until_idle()

        failed_creation = await harness.creation_store.get_creation(creation.identifier)
        assert failed_creation.error == "Failed to generate image: disk on fire"

    @pytest.mark.asyncio
    async def test_creation_deleted_mid_run_stays_deleted(self):
        generation_may_finish = asyncio.Event()

        async def blocked_generation(*arguments):
            await generation_may_finish.wait()
            return _build_generation_result()

        harness = _GenerationHarness(AsyncMock(side_effect=blocked_generation))

        creation = await harness.submit()
        await asyncio.sleep(0)
        await harness.creation_store.mark_deleted(creation.identifier)
        generation_may_finish.set()
        await harness.background_task_scheduler.wait_until_idle()

        deleted_creation = await harness.creation_store.get_creation(creation.identifier)
        assert deleted_creation.status == visioncast.models.CreationStatus.DELETED
        assert deleted_creation.file_url is None
        assert await harness.notification_service.list_notifications("owner-1") == []

    @pytest.mark.asyncio
    async def test_run_for_non_generating_creation_is_skipped(self):
        harness = _GenerationHarness(AsyncMock(return_value=_build_generation_result()))

        await harness.creation_generation_service.run_image_generation("missing")

        harness.image_generation_orchestrator.generate_image.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rerun_of_finished_creation_is_skipped(self):
        harness = _GenerationHarness(AsyncMock(return_value=_build_generation_result()))
        creation = await harness.submit()
        await harness.background_task_scheduler.wait_until_idle()
        assert (await harness.creation_store.get_creation(creation.identifier)).is_terminal

        await harness.creation_generation_service.run_image_generation(creation.identifier)

        assert harness.image_generation_orchestrator.generate_image.await_count == 1
        assert len(await harness.notification_service.list_notifications("owner-1")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_runs_are_bounded(self):
        running_generations = 0
        peak_running_generations = 0

        async def tracked_generation(*arguments):
            nonlocal running_generations, peak_running_generations
            running_generations += 1
            peak_running_generations = max(peak_running_generations, running_generations)
            await asyncio.sleep(0.01)
            running_generations -= 1
            return _build_generation_result()

        harness = _GenerationHarness(AsyncMock(side_effect=tracked_generation), maximum_concurrent_generations=2)

        submitted_creations = [await harness.submit() for _ in range(5)]
        await harness.background_task_scheduler.wait_until_idle()

        assert peak_running_generations == 2
        for creation in submitted_creations:
            stored_creation = await harness.creation_store.get_creation(creation.identifier)
            assert stored_creation.status == visioncast.models.CreationStatus.COMPLETED
