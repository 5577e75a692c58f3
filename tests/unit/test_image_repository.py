from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest

from genstore.database.models import ImageRecordInsert
from genstore.database.repositories.image_repository import ImageRepository


def _mock_connection(mock_get_conn: MagicMock) -> tuple[MagicMock, MagicMock]:
    """Wire up an async mock connection + cursor and return (mock_conn, mock_cursor)."""
    mock_cursor = MagicMock()
    mock_cursor.execute = AsyncMock()
    mock_cursor.fetchone = AsyncMock()
    mock_cursor.fetchall = AsyncMock()
    mock_conn = MagicMock()
    mock_conn.commit = AsyncMock()
    mock_conn.cursor.return_value.__aenter__ = AsyncMock(return_value=mock_cursor)
    mock_conn.cursor.return_value.__aexit__ = AsyncMock(return_value=False)
    mock_get_conn.return_value.__aenter__ = AsyncMock(return_value=mock_conn)
    mock_get_conn.return_value.__aexit__ = AsyncMock(return_value=False)
    return mock_conn, mock_cursor


def _row(index: int) -> ImageRecordInsert:
    return ImageRecordInsert(
        user_id="user-1",
        original_prompt="a fox",
        file_path=f"https://res.cloudinary.com/demo/{index}.png",
        model="flux-schnell",
        parameters={"seed": index},
        width=64,
        height=32,
        cost=0.003,
        generation_time=1200,
    )


class TestInsertMany:
    @patch("genstore.database.repositories.image_repository.get_connection")
    async def test_inserts_all_rows_in_one_statement(self, mock_get_conn: MagicMock) -> None:
        mock_conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.fetchall.return_value = [{"id": "uuid-0"}, {"id": "uuid-1"}]

        ids = await ImageRepository().insert_many([_row(0), _row(1)])

        assert ids == ["uuid-0", "uuid-1"]
        mock_cursor.execute.assert_awaited_once()
        query, params = mock_cursor.execute.await_args.args
        assert query.count("(%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)") == 2
        assert "RETURNING id" in query
        assert len(params) == 24
        assert params[2] == "https://res.cloudinary.com/demo/0.png"
        mock_conn.commit.assert_awaited_once()

    @patch("genstore.database.repositories.image_repository.get_connection")
    async def test_empty_batch_skips_database(self, mock_get_conn: MagicMock) -> None:
        assert await ImageRepository().insert_many([]) == []
        mock_get_conn.assert_not_called()

    @patch("genstore.database.repositories.image_repository.get_connection")
    async def test_database_error_propagates_without_commit(self, mock_get_conn: MagicMock) -> None:
        mock_conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.execute.side_effect = psycopg.errors.NotNullViolation("user_id")

        with pytest.raises(psycopg.Error):
            await ImageRepository().insert_many([_row(0)])

        mock_conn.commit.assert_not_awaited()


class TestFindById:
    @patch("genstore.database.repositories.image_repository.get_connection")
    async def test_returns_none_when_missing(self, mock_get_conn: MagicMock) -> None:
        _conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = None

        assert await ImageRepository().find_by_id("missing") is None

    @patch("genstore.database.repositories.image_repository.get_connection")
    async def test_maps_row(self, mock_get_conn: MagicMock) -> None:
        _conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = {
            "id": "uuid-0",
            "user_id": "user-1",
            "original_prompt": "a fox",
            "file_path": "https://res.cloudinary.com/demo/0.png",
            "model": "flux-schnell",
            "parameters": None,
            "width": 64,
            "height": 32,
            "cost": 0.003,
            "generation_time": 1200,
            "is_favorite": False,
            "folder_id": None,
            "prompt_id": "p-1",
            "created_at": None,
        }

        record = await ImageRepository().find_by_id("uuid-0")

        assert record is not None
        assert record.parameters == {}
        assert record.prompt_id == "p-1"
        assert record.cost == 0.003


class TestImageRecordInsert:
    def test_rejects_relative_file_path(self) -> None:
        with pytest.raises(ValueError):
            ImageRecordInsert(
                user_id="u", original_prompt="p", file_path="images/0.png", model="m"
            )

    def test_rejects_blank_user(self) -> None:
        with pytest.raises(ValueError):
            ImageRecordInsert(
                user_id=" ", original_prompt="p", file_path="https://s.test/0.png", model="m"
            )
