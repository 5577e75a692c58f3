from dataclasses import dataclass, field
from typing import Any

from genstore.analytics.cost import estimate_cost
from genstore.analytics.similarity import clean_prompt, find_similar, is_valid_prompt
from genstore.database.repositories.prompt_repository import PromptRepository
from genstore.logging.logger import Log


@dataclass(frozen=True)
class GenerationAnalytics:
    """Everything the recorder needs to know about one finished generation."""

    user_id: str
    prompt: str
    model: str
    category: str = "image"
    parameters: dict[str, Any] = field(default_factory=dict)
    successful: bool = True
    image_ids: tuple[str, ...] = ()
    images_generated: int = 0
    generation_time: float | None = None
    cost: float | None = None
    error_message: str | None = None


class PromptAnalyticsRecorder:
    """Deduplicates prompts per user and tracks how well each one performs.

    Every public operation catches, logs and swallows its own failures; the
    recorder must never influence the generation response.
    """

    def __init__(
        self,
        prompt_repo: PromptRepository,
        similarity_threshold: float = 0.85,
        recent_limit: int = 50,
    ) -> None:
        self._prompt_repo = prompt_repo
        self._similarity_threshold = similarity_threshold
        self._recent_limit = recent_limit

    async def save_prompt_from_generation(
        self,
        *,
        user_id: str,
        content: str,
        model: str,
        category: str = "image",
        parameters: dict[str, Any] | None = None,
    ) -> str | None:
        """Return the id of the matching or newly created prompt, or None."""
        cleaned = clean_prompt(content or "")
        if not user_id or not is_valid_prompt(cleaned):
            Log.debug(f"Skipping prompt capture for user {user_id!r}: invalid prompt")
            return None

        params = parameters or {}
        try:
            recent = await self._prompt_repo.find_recent_by_user(
                user_id, category=category, limit=self._recent_limit
            )
            existing = find_similar(cleaned, recent, self._similarity_threshold)
            if existing is not None:
                await self._prompt_repo.increment_usage(
                    existing.id, model_used=model, parameters=params
                )
                Log.info(f"Reused prompt {existing.id} for user {user_id}")
                return existing.id

            prompt_id = await self._prompt_repo.create(
                user_id=user_id,
                content=cleaned,
                category=category,
                model_used=model,
                parameters=params,
            )
        except Exception as exc:
            Log.error(f"Failed to save prompt for user {user_id}: {exc}")
            return None

        Log.info(f"Saved new prompt {prompt_id} for user {user_id}")
        return prompt_id

    async def record_generation_attempt(self, prompt_id: str, analytics: GenerationAnalytics) -> None:
        try:
            await self._prompt_repo.record_attempt(
                prompt_id=prompt_id,
                user_id=analytics.user_id,
                successful=analytics.successful,
                model_used=analytics.model,
                parameters=analytics.parameters,
                generation_time=analytics.generation_time,
                cost=self._cost_of(analytics),
                images_generated=analytics.images_generated,
                error_message=analytics.error_message,
            )
        except Exception as exc:
            Log.error(f"Failed to record generation attempt for prompt {prompt_id}: {exc}")

    async def link_prompt_to_images(
        self, prompt_id: str, image_ids: list[str], analytics: GenerationAnalytics
    ) -> None:
        if not image_ids:
            return
        try:
            await self._prompt_repo.link_images(
                prompt_id,
                image_ids,
                successful=analytics.successful,
                generation_time=analytics.generation_time,
                model_used=analytics.model,
                parameters=analytics.parameters,
                error_message=analytics.error_message,
            )
        except Exception as exc:
            Log.error(f"Failed to link prompt {prompt_id} to {len(image_ids)} image(s): {exc}")

    async def record_generation(self, analytics: GenerationAnalytics) -> str | None:
        """Save the prompt, record the attempt and link the stored images."""
        try:
            prompt_id = await self.save_prompt_from_generation(
                user_id=analytics.user_id,
                content=analytics.prompt,
                model=analytics.model,
                category=analytics.category,
                parameters=analytics.parameters,
            )
            if prompt_id is None:
                return None
            await self.record_generation_attempt(prompt_id, analytics)
            await self.link_prompt_to_images(prompt_id, list(analytics.image_ids), analytics)
        except Exception as exc:
            Log.error(f"Prompt analytics failed for user {analytics.user_id}: {exc}")
            return None
        return prompt_id

    @staticmethod
    def _cost_of(analytics: GenerationAnalytics) -> float | None:
        if analytics.cost is not None:
            return analytics.cost
        return estimate_cost(
            analytics.model, analytics.parameters, max(1, analytics.images_generated)
        )
