import os
import uuid
from collections.abc import AsyncGenerator
from typing import Any

import psycopg
import pytest

from genstore.config.settings import Settings
from genstore.database.connection import close_pool, get_connection, init_pool

_REQUIRED_TABLES = ("images", "prompts", "prompt_attempts", "prompt_images")


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "genstore_test")
    return Settings()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture
async def integration_pool(test_settings: Settings) -> AsyncGenerator[None, None]:
    try:
        await init_pool(test_settings)
    except Exception as e:
        pytest.skip(
            f"PostgreSQL test DB not available: {e}. Set DB_* env to point at a test database"
        )
    try:
        async with get_connection() as conn:
            for table in _REQUIRED_TABLES:
                cur = await conn.execute("SELECT to_regclass(%s)", (table,))
                row = await cur.fetchone()
                if row is None or row[0] is None:
                    pytest.skip(f"Table {table} missing from the test database")
        yield
    finally:
        await close_pool()


@pytest.fixture
async def db_conn(integration_pool: None) -> AsyncGenerator[psycopg.AsyncConnection[Any], None]:
    async with get_connection() as conn:
        yield conn


@pytest.fixture
def test_user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
async def integration_cleanup(
    integration_pool: None, test_user_id: str
) -> AsyncGenerator[None, None]:
    yield
    async with get_connection() as conn:
        await conn.execute(
            "DELETE FROM prompt_images WHERE prompt_id IN (SELECT id FROM prompts WHERE user_id = %s)",
            (test_user_id,),
        )
        await conn.execute("DELETE FROM prompt_attempts WHERE user_id = %s", (test_user_id,))
        await conn.execute("DELETE FROM images WHERE user_id = %s", (test_user_id,))
        await conn.execute("DELETE FROM prompts WHERE user_id = %s", (test_user_id,))
        await conn.commit()
