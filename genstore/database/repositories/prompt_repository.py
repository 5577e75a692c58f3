from typing import Any

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from genstore.database.connection import get_connection
from genstore.database.models import PromptRecord


class PromptRepository:
    """Database operations for the prompts, prompt_attempts and prompt_images tables."""

    async def find_recent_by_user(
        self, user_id: str, category: str | None = None, limit: int = 50
    ) -> list[PromptRecord]:
        """Return the user's most recently used prompts, newest first."""
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT id, user_id, content, category, usage_count, total_attempts,
                           successful_generations, avg_cost, avg_generation_time,
                           last_used_at, created_at
                    FROM prompts
                    WHERE user_id = %s
                      AND (%s::text IS NULL OR category = %s)
                    ORDER BY last_used_at DESC NULLS LAST
                    LIMIT %s
                    """,
                    (user_id, category, category, limit),
                )
                rows = await cur.fetchall()

        return [self._to_record(row) for row in rows]

    async def find_by_id(self, prompt_id: str) -> PromptRecord | None:
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT id, user_id, content, category, usage_count, total_attempts,
                           successful_generations, avg_cost, avg_generation_time,
                           last_used_at, created_at
                    FROM prompts
                    WHERE id = %s
                    """,
                    (prompt_id,),
                )
                row = await cur.fetchone()

        return self._to_record(row) if row is not None else None

    async def create(
        self,
        *,
        user_id: str,
        content: str,
        category: str,
        model_used: str,
        parameters: dict[str, Any],
    ) -> str:
        """Insert a new prompt with a usage count of one and return its id."""
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    INSERT INTO prompts
                    (user_id, content, category, model_used, parameters,
                     usage_count, total_attempts, successful_generations,
                     avg_cost, avg_generation_time, last_used_at)
                    VALUES (%s, %s, %s, %s, %s, 1, 0, 0, 0, 0, NOW())
                    RETURNING id
                    """,
                    (user_id, content, category, model_used, Jsonb(parameters)),
                )
                row = await cur.fetchone()
            await conn.commit()

        if row is None:
            raise RuntimeError("INSERT INTO prompts returned no id")
        return str(row["id"])

    async def increment_usage(
        self,
        prompt_id: str,
        *,
        model_used: str,
        parameters: dict[str, Any],
    ) -> None:
        """Atomically bump usage_count and remember the latest model and parameters."""
        async with get_connection() as conn:
            await conn.execute(
                """
                UPDATE prompts
                SET usage_count = usage_count + 1,
                    model_used = %s,
                    parameters = %s,
                    last_used_at = NOW()
                WHERE id = %s
                """,
                (model_used, Jsonb(parameters), prompt_id),
            )
            await conn.commit()

    async def record_attempt(
        self,
        *,
        prompt_id: str,
        user_id: str,
        successful: bool,
        model_used: str,
        parameters: dict[str, Any],
        generation_time: float | None,
        cost: float | None,
        images_generated: int,
        error_message: str | None,
    ) -> None:
        """Insert one prompt_attempts row and fold it into the prompt's aggregates.

        Both statements share a transaction; averages use the pre-update
        total_attempts so they stay exact running means.
        """
        async with get_connection() as conn:
            await conn.execute(
                """
                INSERT INTO prompt_attempts
                (prompt_id, user_id, successful, model_used, parameters,
                 generation_time, cost, images_generated, error_message)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    prompt_id,
                    user_id,
                    successful,
                    model_used,
                    Jsonb(parameters),
                    generation_time,
                    cost,
                    images_generated,
                    error_message,
                ),
            )
            await conn.execute(
                """
                UPDATE prompts
                SET total_attempts = total_attempts + 1,
                    successful_generations = successful_generations + %s,
                    avg_cost = CASE
                        WHEN %s::double precision IS NULL THEN avg_cost
                        ELSE (avg_cost * total_attempts + %s::double precision)
                             / (total_attempts + 1)
                    END,
                    avg_generation_time = CASE
                        WHEN %s::double precision IS NULL THEN avg_generation_time
                        ELSE (avg_generation_time * total_attempts + %s::double precision)
                             / (total_attempts + 1)
                    END,
                    last_used_at = NOW()
                WHERE id = %s
                """,
                (
                    1 if successful else 0,
                    cost,
                    cost,
                    generation_time,
                    generation_time,
                    prompt_id,
                ),
            )
            await conn.commit()

    async def link_images(
        self,
        prompt_id: str,
        image_ids: list[str],
        *,
        successful: bool,
        generation_time: float | None,
        model_used: str | None,
        parameters: dict[str, Any],
        error_message: str | None,
    ) -> None:
        """Insert prompt_images link rows and set images.prompt_id in one transaction."""
        if not image_ids:
            return
        async with get_connection() as conn:
            async with conn.cursor() as cur:
                await cur.executemany(
                    """
                    INSERT INTO prompt_images
                    (prompt_id, image_id, generation_successful, generation_time,
                     model_used, parameters_used, error_message)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    [
                        (
                            prompt_id,
                            image_id,
                            successful,
                            generation_time,
                            model_used,
                            Jsonb(parameters),
                            error_message,
                        )
                        for image_id in image_ids
                    ],
                )
                await cur.execute(
                    "UPDATE images SET prompt_id = %s WHERE id = ANY(%s)",
                    (prompt_id, image_ids),
                )
            await conn.commit()

    @staticmethod
    def _to_record(row: dict[str, Any]) -> PromptRecord:
        return PromptRecord(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            content=row["content"],
            category=row["category"],
            usage_count=row["usage_count"],
            total_attempts=row["total_attempts"],
            successful_generations=row["successful_generations"],
            avg_cost=float(row["avg_cost"] or 0),
            avg_generation_time=float(row["avg_generation_time"] or 0),
            last_used_at=row["last_used_at"],
            created_at=row["created_at"],
        )
