"""
Unit tests for FigurineReconciler.

The reconciler should:
1. Link a persisted model to exactly one figurine per task
2. Reuse a figurine made from the same source image
3. Never change title, prompt or style of an existing figurine
4. Carry the persisted URL on every failure
"""

import pytest

from forge_core.conversions.models import (
    ConversionTask,
    Figurine,
    GenerationConfig,
    TaskKind,
    TaskStatus,
)
from forge_core.domain.exceptions import ReconciliationError

from app.conversion.services.reconciler import FigurineReconciler, derive_title
from tests.app.conversion.fakes import InMemoryFigurineStore

MODEL_URL = "http://storage.local/figurine-models/user-1/models/task-1.glb"


def image_task(**overrides) -> ConversionTask:
    data = {
        "task_id": "task-1",
        "owner_id": "user-1",
        "kind": TaskKind.IMAGE_TO_3D,
        "status": TaskStatus.SUCCEEDED,
        "source_ref": "https://images/dragon.png",
        "config": GenerationConfig(art_style="cartoon"),
    }
    data.update(overrides)
    return ConversionTask(**data)


def text_task(prompt: str = "a red dragon", **overrides) -> ConversionTask:
    return image_task(kind=TaskKind.TEXT_TO_3D, source_ref=prompt, **overrides)


class TestDeriveTitle:
    def test_short_prompt_is_used_verbatim(self):
        assert derive_title(text_task("a red dragon")) == "a red dragon"

    def test_prompt_of_exactly_50_characters_is_kept(self):
        prompt = "x" * 50

        assert derive_title(text_task(prompt)) == prompt

    def test_long_prompt_is_truncated_with_ellipsis(self):
        title = derive_title(text_task("y" * 80))

        assert title == "y" * 47 + "..."
        assert len(title) == 50

    def test_image_task_uses_task_id_prefix(self):
        task = image_task(task_id="0123456789abcdef")

        assert derive_title(task) == "3D Model - 01234567..."


class TestReconcileCreates:
    """Tests for creating new figurines."""

    def test_creates_figurine_for_text_task(self):
        store = InMemoryFigurineStore()

        result = FigurineReconciler(store).reconcile(text_task(), MODEL_URL)

        assert result.created is True
        figurine = store.figurines[result.figurine_id]
        assert figurine.title == "a red dragon"
        assert figurine.prompt == "a red dragon"
        assert figurine.style == "cartoon"
        assert figurine.model_url == MODEL_URL
        assert figurine.task_id == "task-1"
        assert figurine.source_image_url is None

    def test_creates_figurine_for_image_task(self):
        store = InMemoryFigurineStore()

        result = FigurineReconciler(store).reconcile(image_task(), MODEL_URL)

        figurine = store.figurines[result.figurine_id]
        assert figurine.source_image_url == "https://images/dragon.png"
        assert figurine.prompt is None

    def test_running_twice_keeps_one_figurine(self):
        store = InMemoryFigurineStore()
        reconciler = FigurineReconciler(store)

        first = reconciler.reconcile(text_task(), MODEL_URL)
        second = reconciler.reconcile(text_task(), MODEL_URL)

        assert first.figurine_id == second.figurine_id
        assert second.created is False
        assert len(store.figurines) == 1
        assert store.attach_calls == []


class TestReconcileExisting:
    """Tests for attaching to existing figurines."""

    def test_attaches_to_figurine_with_same_source_image(self):
        existing = Figurine(
            id="fig-1",
            owner_id="user-1",
            title="My dragon",
            prompt="keep me",
            style="pbr",
            source_image_url="https://images/dragon.png",
        )
        store = InMemoryFigurineStore([existing])

        result = FigurineReconciler(store).reconcile(image_task(), MODEL_URL)

        assert result.figurine_id == "fig-1"
        assert result.created is False
        updated = store.figurines["fig-1"]
        assert updated.model_url == MODEL_URL
        assert updated.task_id == "task-1"
        assert (updated.title, updated.prompt, updated.style) == ("My dragon", "keep me", "pbr")

    def test_does_not_take_figurine_of_another_task(self):
        other = Figurine(
            id="fig-other",
            owner_id="user-1",
            title="Other",
            source_image_url="https://images/dragon.png",
            task_id="task-0",
            model_url="http://stored/old.glb",
        )
        store = InMemoryFigurineStore([other])

        result = FigurineReconciler(store).reconcile(image_task(), MODEL_URL)

        assert result.created is True
        assert result.figurine_id != "fig-other"
        assert store.figurines["fig-other"].model_url == "http://stored/old.glb"

    def test_other_owner_is_ignored(self):
        foreign = Figurine(
            id="fig-x", owner_id="user-2", title="X", source_image_url="https://images/dragon.png"
        )
        store = InMemoryFigurineStore([foreign])

        result = FigurineReconciler(store).reconcile(image_task(), MODEL_URL)

        assert result.figurine_id != "fig-x"


class TestReconcileFailures:
    def test_store_error_becomes_reconciliation_error(self):
        store = InMemoryFigurineStore(fail_on_create=True)

        with pytest.raises(ReconciliationError) as exc_info:
            FigurineReconciler(store).reconcile(text_task(), MODEL_URL)

        assert exc_info.value.persisted_model_url == MODEL_URL
        assert isinstance(exc_info.value.cause, RuntimeError)

    def test_lost_race_returns_winner(self):
        winner = Figurine(id="fig-winner", owner_id="user-1", title="W", task_id="task-1")

        class RacingStore(InMemoryFigurineStore):
            def __init__(self):
                super().__init__()
                self.lookups = 0

            def find_by_task_id(self, task_id):
                self.lookups += 1
                return winner if self.lookups > 1 else None

            def create(self, figurine):
                return False

        result = FigurineReconciler(RacingStore()).reconcile(text_task(), MODEL_URL)

        assert result.figurine_id == "fig-winner"
        assert result.created is False

    def test_figurine_linked_by_another_task_meanwhile_is_left_alone(self):
        """A source-image match claimed by a concurrent task gets a new figurine instead."""
        claimed = Figurine(
            id="fig-1",
            owner_id="user-1",
            title="Dragon",
            source_image_url="https://images/dragon.png",
            task_id="task-0",
            model_url="http://stored/task-0.glb",
        )

        class StaleLookupStore(InMemoryFigurineStore):
            def find_by_source_image(self, owner_id, source_image_url):
                # Read before task-0 linked it
                return claimed.model_copy(update={"task_id": None, "model_url": None})

        store = StaleLookupStore([claimed])

        result = FigurineReconciler(store).reconcile(image_task(), MODEL_URL)

        assert result.created is True
        assert result.figurine_id != "fig-1"
        assert store.figurines["fig-1"].model_url == "http://stored/task-0.glb"
        assert store.figurines["fig-1"].task_id == "task-0"
        assert store.find_by_task_id("task-1").model_url == MODEL_URL
