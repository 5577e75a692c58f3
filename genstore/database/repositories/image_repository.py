from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from genstore.database.connection import get_connection
from genstore.database.models import ImageRecord, ImageRecordInsert

_INSERT_COLUMNS = (
    "user_id",
    "original_prompt",
    "file_path",
    "model",
    "parameters",
    "width",
    "height",
    "cost",
    "generation_time",
    "tags",
    "is_favorite",
    "folder_id",
)


class ImageRepository:
    """Database operations for the images table."""

    async def insert_many(self, rows: list[ImageRecordInsert]) -> list[str]:
        """Insert all rows in one statement and return their ids in row order.

        The insert is all-or-nothing: on any database error nothing is committed
        and the psycopg error propagates to the caller.
        """
        if not rows:
            return []

        row_placeholder = "(" + ", ".join(["%s"] * len(_INSERT_COLUMNS)) + ")"
        query = (
            f"INSERT INTO images ({', '.join(_INSERT_COLUMNS)}) "
            f"VALUES {', '.join([row_placeholder] * len(rows))} "
            "RETURNING id"
        )
        params: list[object] = []
        for row in rows:
            params.extend(
                (
                    row.user_id,
                    row.original_prompt,
                    row.file_path,
                    row.model,
                    Jsonb(row.parameters),
                    row.width,
                    row.height,
                    row.cost,
                    row.generation_time,
                    row.tags,
                    row.is_favorite,
                    row.folder_id,
                )
            )

        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                inserted = await cur.fetchall()
            await conn.commit()

        return [str(r["id"]) for r in inserted]

    async def find_by_id(self, image_id: str) -> ImageRecord | None:
        """Find an image row by ID. Useful for tests and reconciliation."""
        async with get_connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT id, user_id, original_prompt, file_path, model, parameters,
                           width, height, cost, generation_time, is_favorite,
                           folder_id, prompt_id, created_at
                    FROM images
                    WHERE id = %s
                    """,
                    (image_id,),
                )
                row = await cur.fetchone()

        if row is None:
            return None

        return ImageRecord(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            original_prompt=row["original_prompt"],
            file_path=row["file_path"],
            model=row["model"],
            parameters=row["parameters"] or {},
            width=row["width"],
            height=row["height"],
            cost=float(row["cost"]) if row["cost"] is not None else None,
            generation_time=row["generation_time"],
            is_favorite=row["is_favorite"],
            folder_id=str(row["folder_id"]) if row["folder_id"] is not None else None,
            prompt_id=str(row["prompt_id"]) if row["prompt_id"] is not None else None,
            created_at=row["created_at"],
        )
