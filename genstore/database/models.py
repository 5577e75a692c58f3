from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class ImageRecordInsert(BaseModel):
    """Row payload for the images table, validated before it reaches the database."""

    user_id: str
    original_prompt: str
    file_path: str
    model: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    width: int | None = None
    height: int | None = None
    cost: float | None = None
    generation_time: int | None = None
    tags: list[str] = Field(default_factory=list)
    is_favorite: bool = False
    folder_id: str | None = None

    @field_validator("file_path")
    @classmethod
    def _require_http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"file_path must be an absolute URL, got '{value}'")
        return value

    @field_validator("user_id", "model")
    @classmethod
    def _require_non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value


@dataclass
class ImageRecord:
    """Represents a row from the images table."""

    id: str
    user_id: str
    original_prompt: str
    file_path: str
    model: str
    parameters: dict[str, Any]
    width: int | None = None
    height: int | None = None
    cost: float | None = None
    generation_time: int | None = None
    is_favorite: bool = False
    folder_id: str | None = None
    prompt_id: str | None = None
    created_at: datetime | None = None


@dataclass
class PromptRecord:
    """Represents a row from the prompts table."""

    id: str
    user_id: str
    content: str
    category: str = "generated"
    usage_count: int = 1
    total_attempts: int = 0
    successful_generations: int = 0
    avg_cost: float = 0.0
    avg_generation_time: float = 0.0
    last_used_at: datetime | None = None
    created_at: datetime | None = None
