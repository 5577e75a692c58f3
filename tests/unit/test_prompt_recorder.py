from typing import Any
from unittest.mock import AsyncMock, MagicMock

import psycopg
import pytest

from genstore.analytics.recorder import GenerationAnalytics, PromptAnalyticsRecorder
from genstore.database.models import PromptRecord
from genstore.database.repositories.prompt_repository import PromptRepository


class _InMemoryPrompts:
    """Just enough of the prompts table to exercise deduplication."""

    def __init__(self) -> None:
        self.rows: list[PromptRecord] = []

    async def find_recent_by_user(
        self, user_id: str, category: str | None = None, limit: int = 50
    ) -> list[PromptRecord]:
        return [
            r for r in reversed(self.rows)
            if r.user_id == user_id and (category is None or r.category == category)
        ][:limit]

    async def create(self, *, user_id: str, content: str, category: str, **_: Any) -> str:
        record = PromptRecord(id=f"p-{len(self.rows) + 1}", user_id=user_id, content=content, category=category)
        self.rows.append(record)
        return record.id

    async def increment_usage(self, prompt_id: str, **_: Any) -> None:
        for row in self.rows:
            if row.id == prompt_id:
                row.usage_count += 1


def _analytics(**kwargs: Any) -> GenerationAnalytics:
    defaults: dict[str, Any] = {
        "user_id": "user-1",
        "prompt": "a red fox in the snow at night",
        "model": "flux-schnell",
        "image_ids": ("img-1", "img-2"),
        "images_generated": 2,
        "generation_time": 2.5,
    }
    return GenerationAnalytics(**{**defaults, **kwargs})


def _mock_repo() -> MagicMock:
    repo = MagicMock(spec=PromptRepository)
    repo.find_recent_by_user = AsyncMock(return_value=[])
    repo.create = AsyncMock(return_value="p-1")
    repo.increment_usage = AsyncMock()
    repo.record_attempt = AsyncMock()
    repo.link_images = AsyncMock()
    return repo


class TestSavePromptDeduplication:
    async def test_same_prompt_twice_yields_one_row(self) -> None:
        store = _InMemoryPrompts()
        recorder = PromptAnalyticsRecorder(store)  # type: ignore[arg-type]

        first = await recorder.save_prompt_from_generation(
            user_id="user-1", content="a red fox in the snow at night", model="flux-schnell"
        )
        second = await recorder.save_prompt_from_generation(
            user_id="user-1", content="a red fox in the snow at night", model="flux-dev"
        )

        assert first == second
        assert len(store.rows) == 1
        assert store.rows[0].usage_count == 2

    async def test_near_duplicate_reuses_prompt(self) -> None:
        store = _InMemoryPrompts()
        recorder = PromptAnalyticsRecorder(store)  # type: ignore[arg-type]

        first = await recorder.save_prompt_from_generation(
            user_id="user-1", content="a red fox in the deep snow at night", model="m"
        )
        second = await recorder.save_prompt_from_generation(
            user_id="user-1", content="A red fox   in the snow at night", model="m"
        )

        assert first == second
        assert len(store.rows) == 1

    async def test_other_users_do_not_share_prompts(self) -> None:
        store = _InMemoryPrompts()
        recorder = PromptAnalyticsRecorder(store)  # type: ignore[arg-type]

        first = await recorder.save_prompt_from_generation(
            user_id="user-1", content="a red fox in the snow", model="m"
        )
        second = await recorder.save_prompt_from_generation(
            user_id="user-2", content="a red fox in the snow", model="m"
        )

        assert first != second
        assert len(store.rows) == 2

    async def test_different_prompt_creates_new_row(self) -> None:
        store = _InMemoryPrompts()
        recorder = PromptAnalyticsRecorder(store)  # type: ignore[arg-type]

        await recorder.save_prompt_from_generation(user_id="u", content="a red fox in the snow", model="m")
        await recorder.save_prompt_from_generation(user_id="u", content="a blue whale in the sea", model="m")

        assert len(store.rows) == 2

    async def test_invalid_prompt_is_skipped(self) -> None:
        repo = _mock_repo()
        recorder = PromptAnalyticsRecorder(repo)

        assert await recorder.save_prompt_from_generation(user_id="u", content="hi", model="m") is None
        repo.create.assert_not_awaited()

    async def test_prompt_of_only_symbols_is_skipped(self) -> None:
        store = _InMemoryPrompts()
        recorder = PromptAnalyticsRecorder(store)  # type: ignore[arg-type]

        first = await recorder.save_prompt_from_generation(user_id="u", content="@" * 12, model="m")
        second = await recorder.save_prompt_from_generation(user_id="u", content="#" * 12, model="m")

        assert first is None
        assert second is None
        assert store.rows == []

    async def test_short_prompt_after_cleaning_is_skipped(self) -> None:
        repo = _mock_repo()
        recorder = PromptAnalyticsRecorder(repo)

        result = await recorder.save_prompt_from_generation(
            user_id="u", content="fox @@@@@@@@@@@@", model="m"
        )

        assert result is None
        repo.find_recent_by_user.assert_not_awaited()

    async def test_database_error_returns_none(self) -> None:
        repo = _mock_repo()
        repo.find_recent_by_user.side_effect = psycopg.OperationalError("down")
        recorder = PromptAnalyticsRecorder(repo)

        result = await recorder.save_prompt_from_generation(
            user_id="u", content="a red fox in the snow", model="m"
        )

        assert result is None


class TestRecordGeneration:
    async def test_runs_all_three_operations(self) -> None:
        repo = _mock_repo()
        recorder = PromptAnalyticsRecorder(repo)

        prompt_id = await recorder.record_generation(_analytics(cost=0.006))

        assert prompt_id == "p-1"
        attempt = repo.record_attempt.await_args.kwargs
        assert attempt["prompt_id"] == "p-1"
        assert attempt["successful"] is True
        assert attempt["cost"] == 0.006
        assert attempt["images_generated"] == 2
        repo.link_images.assert_awaited_once()
        assert repo.link_images.await_args.args == ("p-1", ["img-1", "img-2"])

    async def test_estimates_cost_when_unknown(self) -> None:
        repo = _mock_repo()
        recorder = PromptAnalyticsRecorder(repo)

        await recorder.record_generation(_analytics(parameters={"width": 512, "height": 512}))

        assert repo.record_attempt.await_args.kwargs["cost"] == pytest.approx(0.0057)

    async def test_no_images_skips_linking(self) -> None:
        repo = _mock_repo()
        recorder = PromptAnalyticsRecorder(repo)

        await recorder.record_generation(_analytics(image_ids=()))

        repo.link_images.assert_not_awaited()

    async def test_failures_are_swallowed(self) -> None:
        repo = _mock_repo()
        repo.record_attempt.side_effect = psycopg.OperationalError("down")
        repo.link_images.side_effect = psycopg.OperationalError("down")
        recorder = PromptAnalyticsRecorder(repo)

        prompt_id = await recorder.record_generation(_analytics())

        assert prompt_id == "p-1"

    async def test_unexpected_error_in_save_is_swallowed(self) -> None:
        recorder = PromptAnalyticsRecorder(_mock_repo())
        recorder.save_prompt_from_generation = AsyncMock(side_effect=RuntimeError("boom"))  # type: ignore[method-assign]

        assert await recorder.record_generation(_analytics()) is None
