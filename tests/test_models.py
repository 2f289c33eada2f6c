"""Tests for visioncast/models.py: request validation and record serialisation."""

import datetime

import pydantic
import pytest

import visioncast.models


def _build_creation_record(**overrides) -> visioncast.models.CreationRecord:
    record_fields = {
        "identifier": "abc123",
        "owner_identifier": "owner-1",
        "title": "Generated Image - 1/2/2026",
        "prompt": "A lighthouse at dusk",
        "metadata": visioncast.models.CreationMetadata(
            original_prompt="A lighthouse at dusk",
            style="realistic",
            size="1024x1024",
            quality="high",
        ),
    }
    record_fields.update(overrides)
    return visioncast.models.CreationRecord(**record_fields)


class TestImageGenerationSubmissionRequest:

    def test_defaults(self):
        submission = visioncast.models.ImageGenerationSubmissionRequest(prompt="A red fox in snow")

        assert submission.style == "realistic"
        assert submission.size == "1024x1024"
        assert submission.quality == "high"
        assert submission.kind == "image"

    def test_prompt_is_trimmed_before_length_check(self):
        submission = visioncast.models.ImageGenerationSubmissionRequest(prompt="   hello   ")
        assert submission.prompt == "hello"

    @pytest.mark.parametrize("prompt", ["abcd", "   abc   ", "x" * 501])
    def test_prompt_length_outside_window_is_rejected(self, prompt):
        with pytest.raises(pydantic.ValidationError):
            visioncast.models.ImageGenerationSubmissionRequest(prompt=prompt)

    def test_prompt_of_exactly_500_characters_is_accepted(self):
        submission = visioncast.models.ImageGenerationSubmissionRequest(prompt="x" * 500)
        assert len(submission.prompt) == 500

    @pytest.mark.parametrize(
        ("field_name", "invalid_value"),
        [("style", "cinematic"), ("size", "512x512"), ("quality", "low")],
    )
    def test_unsupported_choices_are_rejected(self, field_name, invalid_value):
        with pytest.raises(pydantic.ValidationError, match="not supported"):
            visioncast.models.ImageGenerationSubmissionRequest(prompt="A red fox in snow", **{field_name: invalid_value})

    def test_type_must_be_image(self):
        with pytest.raises(pydantic.ValidationError, match="Only image generation"):
            visioncast.models.ImageGenerationSubmissionRequest.model_validate({"prompt": "A red fox", "type": "video"})

    def test_unknown_fields_are_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            visioncast.models.ImageGenerationSubmissionRequest.model_validate({"prompt": "A red fox", "seed": 4})


class TestCreationUpdateRequest:

    def test_accepts_camel_case_public_flag(self):
        creation_update = visioncast.models.CreationUpdateRequest.model_validate({"isPublic": True})

        assert creation_update.is_public is True
        assert creation_update.model_dump(exclude_unset=True) == {"is_public": True}

    @pytest.mark.parametrize(
        "invalid_body",
        [
            {"title": "ab"},
            {"title": "x" * 101},
            {"description": "x" * 501},
            {"tags": ["x" * 31]},
            {"status": "completed"},
            {"fileUrl": "https://example.com/a.jpg"},
        ],
    )
    def test_invalid_updates_are_rejected(self, invalid_body):
        with pytest.raises(pydantic.ValidationError):
            visioncast.models.CreationUpdateRequest.model_validate(invalid_body)


class TestPromptVariationsRequest:

    @pytest.mark.parametrize("count", [0, 6])
    def test_count_outside_range_is_rejected(self, count):
        with pytest.raises(pydantic.ValidationError):
            visioncast.models.PromptVariationsRequest(prompt="A cat", count=count)

    def test_blank_prompt_is_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            visioncast.models.PromptVariationsRequest(prompt="   ")


class TestCreationRecord:

    def test_serialises_with_wire_names(self):
        serialised_record = _build_creation_record().model_dump(by_alias=True, mode="json")

        assert serialised_record["_id"] == "abc123"
        assert serialised_record["userId"] == "owner-1"
        assert serialised_record["type"] == "image"
        assert serialised_record["status"] == "generating"
        assert serialised_record["fileUrl"] is None
        assert serialised_record["isPublic"] is False
        assert serialised_record["downloadCount"] == 0
        assert serialised_record["metadata"]["originalPrompt"] == "A lighthouse at dusk"
        assert serialised_record["metadata"]["format"] == "jpg"

    def test_round_trips_through_wire_names(self):
        record = _build_creation_record(status=visioncast.models.CreationStatus.COMPLETED, file_url="https://x/y.jpg")
        restored_record = visioncast.models.CreationRecord.model_validate(record.model_dump(by_alias=True))
        assert restored_record == record

    def test_timestamps_are_timezone_aware(self):
        record = _build_creation_record()
        assert record.created_at.tzinfo is datetime.UTC

    @pytest.mark.parametrize(
        ("status", "expected_terminal"),
        [("generating", False), ("completed", True), ("failed", True), ("deleted", False)],
    )
    def test_is_terminal(self, status, expected_terminal):
        assert _build_creation_record(status=status).is_terminal is expected_terminal

    def test_visibility(self):
        private_record = _build_creation_record()
        public_record = _build_creation_record(is_public=True)

        assert private_record.is_visible_to("owner-1")
        assert not private_record.is_visible_to("someone-else")
        assert not private_record.is_visible_to(None)
        assert public_record.is_visible_to("someone-else")


class TestCreationTypeStatistics:

    def test_serialises_kind_as_underscore_id(self):
        statistics = visioncast.models.CreationTypeStatistics(kind="image", count=2, average_generation_time=1.5)
        assert statistics.model_dump(by_alias=True) == {"_id": "image", "count": 2, "averageGenerationTime": 1.5}


class TestParseImageWidthAndHeight:

    def test_parses_supported_sizes(self):
        assert visioncast.models.parse_image_width_and_height("1920x1080") == (1920, 1080)
        assert visioncast.models.parse_image_width_and_height("768x1024") == (768, 1024)
