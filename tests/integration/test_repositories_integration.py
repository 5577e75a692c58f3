import pytest

from genstore.analytics.recorder import GenerationAnalytics, PromptAnalyticsRecorder
from genstore.database.models import ImageRecordInsert
from genstore.database.repositories.image_repository import ImageRepository
from genstore.database.repositories.prompt_repository import PromptRepository


def _row(user_id: str, index: int) -> ImageRecordInsert:
    return ImageRecordInsert(
        user_id=user_id,
        original_prompt="a red fox in the snow at night",
        file_path=f"https://res.cloudinary.com/demo/image/upload/it-{index}.png",
        model="flux-schnell",
        parameters={"seed": index},
        width=64,
        height=32,
        cost=0.003,
        generation_time=1500,
    )


@pytest.mark.integration
@pytest.mark.usefixtures("integration_cleanup")
class TestImageRepositoryIntegration:
    async def test_batch_insert_and_read_back(self, test_user_id: str) -> None:
        repo = ImageRepository()

        ids = await repo.insert_many([_row(test_user_id, i) for i in range(3)])

        assert len(ids) == 3
        assert len(set(ids)) == 3
        record = await repo.find_by_id(ids[1])
        assert record is not None
        assert record.file_path.endswith("it-1.png")
        assert record.parameters == {"seed": 1}
        assert record.generation_time == 1500


@pytest.mark.integration
@pytest.mark.usefixtures("integration_cleanup")
class TestPromptAnalyticsIntegration:
    async def test_duplicate_prompt_increments_usage(self, test_user_id: str) -> None:
        recorder = PromptAnalyticsRecorder(PromptRepository())

        first = await recorder.save_prompt_from_generation(
            user_id=test_user_id, content="a red fox in the snow at night", model="flux-schnell"
        )
        second = await recorder.save_prompt_from_generation(
            user_id=test_user_id, content="a red fox in the snow at night", model="flux-dev"
        )

        assert first is not None
        assert first == second
        record = await PromptRepository().find_by_id(first)
        assert record is not None
        assert record.usage_count == 2

    async def test_record_generation_links_images(self, test_user_id: str) -> None:
        image_ids = await ImageRepository().insert_many([_row(test_user_id, 0)])
        recorder = PromptAnalyticsRecorder(PromptRepository())

        prompt_id = await recorder.record_generation(
            GenerationAnalytics(
                user_id=test_user_id,
                prompt="a red fox in the snow at night",
                model="flux-schnell",
                image_ids=tuple(image_ids),
                images_generated=1,
                generation_time=2.0,
                cost=0.004,
            )
        )

        assert prompt_id is not None
        prompt = await PromptRepository().find_by_id(prompt_id)
        assert prompt is not None
        assert prompt.total_attempts == 1
        assert prompt.successful_generations == 1
        assert prompt.avg_cost == pytest.approx(0.004)
        image = await ImageRepository().find_by_id(image_ids[0])
        assert image is not None
        assert image.prompt_id == prompt_id
