from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from genstore.database.repositories.prompt_repository import PromptRepository


def _mock_connection(mock_get_conn: MagicMock) -> tuple[MagicMock, MagicMock]:
    """Wire up an async mock connection + cursor and return (mock_conn, mock_cursor)."""
    mock_cursor = MagicMock()
    mock_cursor.execute = AsyncMock()
    mock_cursor.executemany = AsyncMock()
    mock_cursor.fetchone = AsyncMock()
    mock_cursor.fetchall = AsyncMock()
    mock_conn = MagicMock()
    mock_conn.execute = AsyncMock()
    mock_conn.commit = AsyncMock()
    mock_conn.cursor.return_value.__aenter__ = AsyncMock(return_value=mock_cursor)
    mock_conn.cursor.return_value.__aexit__ = AsyncMock(return_value=False)
    mock_get_conn.return_value.__aenter__ = AsyncMock(return_value=mock_conn)
    mock_get_conn.return_value.__aexit__ = AsyncMock(return_value=False)
    return mock_conn, mock_cursor


def _prompt_row(prompt_id: str = "p-1", content: str = "a red fox in the snow") -> dict:
    return {
        "id": prompt_id,
        "user_id": "user-1",
        "content": content,
        "category": "image",
        "usage_count": 2,
        "total_attempts": 4,
        "successful_generations": 3,
        "avg_cost": None,
        "avg_generation_time": 2.5,
        "last_used_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
        "created_at": None,
    }


class TestFindRecentByUser:
    @patch("genstore.database.repositories.prompt_repository.get_connection")
    async def test_maps_rows(self, mock_get_conn: MagicMock) -> None:
        _conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.fetchall.return_value = [_prompt_row("p-1"), _prompt_row("p-2")]

        records = await PromptRepository().find_recent_by_user("user-1", category="image")

        assert [r.id for r in records] == ["p-1", "p-2"]
        assert records[0].avg_cost == 0.0
        assert records[0].avg_generation_time == 2.5
        query, params = mock_cursor.execute.await_args.args
        assert "ORDER BY last_used_at DESC" in query
        assert params == ("user-1", "image", "image", 50)


class TestCreate:
    @patch("genstore.database.repositories.prompt_repository.get_connection")
    async def test_returns_new_id(self, mock_get_conn: MagicMock) -> None:
        mock_conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = {"id": "p-9"}

        prompt_id = await PromptRepository().create(
            user_id="user-1",
            content="a red fox in the snow",
            category="image",
            model_used="flux-schnell",
            parameters={},
        )

        assert prompt_id == "p-9"
        mock_conn.commit.assert_awaited_once()

    @patch("genstore.database.repositories.prompt_repository.get_connection")
    async def test_missing_returning_row_raises(self, mock_get_conn: MagicMock) -> None:
        _conn, mock_cursor = _mock_connection(mock_get_conn)
        mock_cursor.fetchone.return_value = None

        with pytest.raises(RuntimeError):
            await PromptRepository().create(
                user_id="u", content="c" * 20, category="image", model_used="m", parameters={}
            )


class TestIncrementUsage:
    @patch("genstore.database.repositories.prompt_repository.get_connection")
    async def test_increments_in_the_database(self, mock_get_conn: MagicMock) -> None:
        mock_conn, _cursor = _mock_connection(mock_get_conn)

        await PromptRepository().increment_usage("p-1", model_used="flux-dev", parameters={})

        query, params = mock_conn.execute.await_args.args
        assert "usage_count = usage_count + 1" in query
        assert params[0] == "flux-dev"
        assert params[-1] == "p-1"
        mock_conn.commit.assert_awaited_once()


class TestRecordAttempt:
    @patch("genstore.database.repositories.prompt_repository.get_connection")
    async def test_inserts_attempt_and_updates_aggregates_in_one_transaction(
        self, mock_get_conn: MagicMock
    ) -> None:
        mock_conn, _cursor = _mock_connection(mock_get_conn)

        await PromptRepository().record_attempt(
            prompt_id="p-1",
            user_id="user-1",
            successful=True,
            model_used="flux-schnell",
            parameters={},
            generation_time=2.0,
            cost=0.003,
            images_generated=1,
            error_message=None,
        )

        assert mock_conn.execute.await_count == 2
        insert_query = mock_conn.execute.await_args_list[0].args[0]
        update_query, update_params = mock_conn.execute.await_args_list[1].args
        assert "INSERT INTO prompt_attempts" in insert_query
        assert "total_attempts = total_attempts + 1" in update_query
        assert update_params[0] == 1
        mock_conn.commit.assert_awaited_once()


class TestLinkImages:
    @patch("genstore.database.repositories.prompt_repository.get_connection")
    async def test_links_each_image(self, mock_get_conn: MagicMock) -> None:
        mock_conn, mock_cursor = _mock_connection(mock_get_conn)

        await PromptRepository().link_images(
            "p-1",
            ["img-1", "img-2"],
            successful=True,
            generation_time=1.0,
            model_used="flux-schnell",
            parameters={},
            error_message=None,
        )

        rows = mock_cursor.executemany.await_args.args[1]
        assert [row[1] for row in rows] == ["img-1", "img-2"]
        update_query, update_params = mock_cursor.execute.await_args.args
        assert "UPDATE images SET prompt_id" in update_query
        assert update_params == ("p-1", ["img-1", "img-2"])
        mock_conn.commit.assert_awaited_once()

    @patch("genstore.database.repositories.prompt_repository.get_connection")
    async def test_no_images_is_a_no_op(self, mock_get_conn: MagicMock) -> None:
        await PromptRepository().link_images(
            "p-1",
            [],
            successful=True,
            generation_time=None,
            model_used=None,
            parameters={},
            error_message=None,
        )

        mock_get_conn.assert_not_called()
