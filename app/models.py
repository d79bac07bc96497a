"""Pydantic models describing autocomplete results and API payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .media_types import MediaType

ReviewStatus = Literal["pending", "in_progress", "completed", "abandoned"]


class AutocompleteRequest(BaseModel):
    """Free-text query plus the declared media type."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    query: str = Field(min_length=1)
    media_type: MediaType = Field(
        validation_alias=AliasChoices("type", "media_type", "mediaType"),
    )

    @field_validator("query", mode="before")
    @classmethod
    def _strip_query(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class ResolvedMetadata(BaseModel):
    """Structured metadata returned by the generative service.

    The five core keys must be present in the payload; unknown values arrive as
    explicit ``null``. Core types are checked strictly so ``"1965"`` is not
    accepted where a year is expected. Extended fields are best effort: values
    of a near-miss type are converted and anything else is dropped to ``None``.
    """

    model_config = ConfigDict(strict=True, extra="ignore")

    title: str = Field(min_length=1)
    year: int | None
    creator: str | None
    genre: str | None
    synopsis: str | None

    platform: str | None = None
    developer: str | None = None
    publisher: str | None = None
    duration_min: int | None = None
    pages: int | None = None
    episodes: int | None = None
    seasons: int | None = None
    isbn: str | None = None

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("platform", "developer", "publisher", "isbn", mode="before")
    @classmethod
    def _coerce_extended_text(cls, value: object) -> str | None:
        if isinstance(value, bool):
            return None
        if isinstance(value, str):
            return value.strip() or None
        if isinstance(value, int):
            return str(value)
        if isinstance(value, (list, tuple)):
            parts = [
                str(part).strip()
                for part in value
                if isinstance(part, (str, int)) and not isinstance(part, bool)
            ]
            return ", ".join(part for part in parts if part) or None
        return None

    @field_validator("duration_min", "pages", "episodes", "seasons", mode="before")
    @classmethod
    def _coerce_extended_count(cls, value: object) -> int | None:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
        return None


class AutocompleteFallback(BaseModel):
    """Prefilled manual-entry form returned when autocompletion is unavailable."""

    title: str
    type: MediaType


class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    avatar_color: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    avatar_color: str
    created_at: datetime


class ItemFields(BaseModel):
    """Editable item attributes shared by create and update payloads."""

    title: str = Field(min_length=1)
    year: int | None = None
    creator: str | None = None
    genre: str | None = None
    synopsis: str | None = None
    cover_url: str | None = None
    platform: str | None = None
    developer: str | None = None
    publisher: str | None = None
    duration_min: int | None = None
    pages: int | None = None
    episodes: int | None = None
    seasons: int | None = None
    isbn: str | None = None
    metadata: dict[str, Any] | None = None
    status: str | None = None

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class ItemCreate(ItemFields):
    type: MediaType
    created_by: int | None = None


class ItemUpdate(ItemFields):
    """Partial update; fields missing from the body keep their stored value."""

    title: str | None = Field(default=None, min_length=1)

    @field_validator("title")
    @classmethod
    def _title_not_null(cls, value: str | None) -> str:
        if value is None:
            raise ValueError("title cannot be null")
        return value


class ItemOut(ItemFields):
    id: int
    type: MediaType
    created_by: int | None = None
    created_at: datetime
    avg_rating: float | None = None
    review_count: int = 0


class ReviewUpsert(BaseModel):
    user_id: int
    rating: float | None = Field(default=None, ge=0, le=10)
    status: ReviewStatus = "pending"
    review_text: str | None = None


class ReviewDelete(BaseModel):
    user_id: int


class ReviewOut(BaseModel):
    id: int
    item_id: int
    user_id: int
    rating: float | None = None
    status: ReviewStatus
    review_text: str | None = None
    updated_at: datetime
    user_name: str
    avatar_color: str


class ItemDetail(ItemOut):
    reviews: list[ReviewOut] = Field(default_factory=list)


class ListCreate(BaseModel):
    user_id: int
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    is_public: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class ListUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    is_public: bool = False


class ListOut(BaseModel):
    id: int
    user_id: int
    name: str
    description: str | None = None
    is_public: bool
    created_at: datetime
    user_name: str | None = None
    item_count: int = 0


class ListItemOut(ItemOut):
    added_at: datetime


class ListDetail(ListOut):
    items: list[ListItemOut] = Field(default_factory=list)


class ListItemAdd(BaseModel):
    item_id: int


class ApiKeyUpdate(BaseModel):
    api_key: str = Field(
        min_length=1, validation_alias=AliasChoices("apiKey", "api_key")
    )

    @field_validator("api_key", mode="before")
    @classmethod
    def _strip_key(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class TypeCount(BaseModel):
    type: MediaType
    count: int


class UserStats(BaseModel):
    reviewed: int
    completed: int
    avg_rating: float | None = None


class Stats(BaseModel):
    total_items: int
    total_users: int
    items_by_type: list[TypeCount]
    user_stats: UserStats | None = None
