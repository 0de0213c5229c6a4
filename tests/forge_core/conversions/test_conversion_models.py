"""
Unit tests for conversion domain models.

Covers:
- Forward-only status and download transitions
- Monotonic progress on ConversionTask copies
- StatusReport URL fallback
- GenerationConfig parsing rules
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from forge_core.conversions.models import (
    ConversionTask,
    DownloadStatus,
    Figurine,
    GenerationConfig,
    TaskKind,
    TaskStatus,
    TASK_COLUMNS,
)
from forge_core.domain.exceptions import InvalidTransitionError


def make_task(**overrides) -> ConversionTask:
    data = {
        "task_id": "task-1",
        "owner_id": "user-1",
        "kind": TaskKind.IMAGE_TO_3D,
        "source_ref": "https://images/dragon.png",
        "progress_percent": 30,
    }
    data.update(overrides)
    return ConversionTask(**data)


class TestAdvance:
    """Tests for ConversionTask.advance."""

    def test_moves_forward(self):
        task = make_task().advance(TaskStatus.PROCESSING, progress_percent=50)

        assert task.status == TaskStatus.PROCESSING
        assert task.progress_percent == 50

    def test_returns_new_instance(self):
        original = make_task()

        original.advance(TaskStatus.PROCESSING)

        assert original.status == TaskStatus.PENDING

    def test_progress_never_decreases(self):
        task = make_task(status=TaskStatus.PROCESSING, progress_percent=60)

        assert task.advance(TaskStatus.PROCESSING, progress_percent=40).progress_percent == 60

    def test_rejects_backward_move(self):
        task = make_task(status=TaskStatus.PROCESSING)

        with pytest.raises(InvalidTransitionError):
            task.advance(TaskStatus.PENDING)

    @pytest.mark.parametrize(
        "terminal", [TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.TIMED_OUT]
    )
    def test_terminal_tasks_do_not_move(self, terminal):
        task = make_task(status=terminal)

        with pytest.raises(InvalidTransitionError):
            task.advance(TaskStatus.PROCESSING)

    def test_repeating_terminal_status_is_a_no_op(self):
        task = make_task(status=TaskStatus.FAILED)

        assert task.advance(TaskStatus.FAILED) is task

    def test_terminal_task_rejects_changes(self):
        task = make_task(status=TaskStatus.SUCCEEDED)

        with pytest.raises(InvalidTransitionError):
            task.advance(TaskStatus.SUCCEEDED, error="late")

    def test_success_to_failure_is_rejected(self):
        with pytest.raises(InvalidTransitionError):
            make_task(status=TaskStatus.SUCCEEDED).advance(TaskStatus.FAILED)


class TestAdvanceDownload:
    """Tests for ConversionTask.advance_download."""

    def test_requires_succeeded_task(self):
        with pytest.raises(InvalidTransitionError):
            make_task(status=TaskStatus.PROCESSING).advance_download(DownloadStatus.DOWNLOADING)

    def test_moves_forward(self):
        task = make_task(status=TaskStatus.SUCCEEDED).advance_download(
            DownloadStatus.DOWNLOADING
        )

        assert task.advance_download(DownloadStatus.COMPLETED).download_status == (
            DownloadStatus.COMPLETED
        )

    def test_completed_may_repeat(self):
        task = make_task(status=TaskStatus.SUCCEEDED, download_status=DownloadStatus.COMPLETED)

        again = task.advance_download(DownloadStatus.COMPLETED, persisted_model_url="http://x")

        assert again.persisted_model_url == "http://x"

    @pytest.mark.parametrize(
        "current,target",
        [
            (DownloadStatus.COMPLETED, DownloadStatus.FAILED),
            (DownloadStatus.FAILED, DownloadStatus.COMPLETED),
            (DownloadStatus.DOWNLOADING, DownloadStatus.PENDING),
        ],
    )
    def test_rejects_illegal_moves(self, current, target):
        task = make_task(status=TaskStatus.SUCCEEDED, download_status=current)

        with pytest.raises(InvalidTransitionError):
            task.advance_download(target)


class TestToReport:
    def test_prefers_persisted_urls(self):
        task = make_task(
            status=TaskStatus.SUCCEEDED,
            model_artifact_url="https://vendor/x.glb",
            persisted_model_url="http://stored/x.glb",
        )

        assert task.to_report().model_url == "http://stored/x.glb"

    def test_falls_back_to_vendor_url(self):
        task = make_task(
            status=TaskStatus.SUCCEEDED,
            download_status=DownloadStatus.FAILED,
            model_artifact_url="https://vendor/x.glb",
            thumbnail_artifact_url="https://vendor/x.png",
        )

        report = task.to_report()

        assert report.model_url == "https://vendor/x.glb"
        assert report.thumbnail_url == "https://vendor/x.png"
        assert report.to_dict()["download_status"] == "failed"


class TestPrompt:
    def test_text_tasks_expose_prompt(self):
        task = make_task(kind=TaskKind.TEXT_TO_3D, source_ref="a red dragon")

        assert task.prompt == "a red dragon"

    def test_image_tasks_have_no_prompt(self):
        assert make_task().prompt is None


class TestFromDbRow:
    def test_builds_task_from_row(self):
        values = {
            "task_id": "task-1",
            "owner_id": "user-1",
            "kind": "text_to_3d",
            "status": "processing",
            "progress_percent": 45,
            "source_ref": "a dragon",
            "config": {"art_style": "cartoon"},
            "model_artifact_url": None,
            "thumbnail_artifact_url": None,
            "download_status": "pending",
            "persisted_model_url": None,
            "persisted_thumbnail_url": None,
            "attempts": 3,
            "error": None,
            "created_at": "2024-01-01T00:00:00Z",
            "updated_at": "2024-01-01T00:00:00Z",
        }
        row = tuple(values[c] for c in TASK_COLUMNS)

        task = ConversionTask.from_db_row(row)

        assert task.status == TaskStatus.PROCESSING
        assert task.config.art_style.value == "cartoon"
        assert task.attempts == 3

    def test_figurine_id_is_stringified(self):
        import uuid

        fig_id = uuid.uuid4()
        row = (fig_id, "user-1", "Title", None, "realistic", None, None, None,
               "2024-01-01T00:00:00Z", "2024-01-01T00:00:00Z")

        assert Figurine.from_db_row(row).id == str(fig_id)


class TestGenerationConfig:
    """Tests for GenerationConfig parsing."""

    def test_defaults(self):
        config = GenerationConfig()

        assert config.art_style.value == "realistic"
        assert config.ai_model == "meshy-5"
        assert config.topology.value == "quad"
        assert config.target_polycount == 20000
        assert config.texture_richness.value == "high"
        assert config.moderation is True

    def test_accepts_camel_case(self):
        config = GenerationConfig.model_validate(
            {"artStyle": "cartoon", "targetPolycount": 5000, "textureRichness": "low"}
        )

        assert config.art_style.value == "cartoon"
        assert config.target_polycount == 5000
        assert config.texture_richness.value == "low"

    def test_rejects_unknown_keys(self):
        with pytest.raises(PydanticValidationError):
            GenerationConfig.model_validate({"colour": "red"})

    @pytest.mark.parametrize(
        "data",
        [
            {"art_style": "watercolor"},
            {"target_polycount": 0},
            {"target_polycount": "many"},
            {"moderation": "yes"},
            {"topology": "hex"},
        ],
    )
    def test_rejects_invalid_values(self, data):
        with pytest.raises(PydanticValidationError):
            GenerationConfig.model_validate(data)

    def test_vendor_payload_skips_blank_negative_prompt(self):
        assert "negative_prompt" not in GenerationConfig(negative_prompt="   ").to_vendor_payload()
