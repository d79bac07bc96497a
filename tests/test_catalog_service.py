"""Tests for catalog persistence operations."""

from __future__ import annotations

import asyncio

import pytest
from pydantic import ValidationError

from app.database import Database
from app.media_types import MediaType
from app.models import (
    ItemCreate,
    ItemUpdate,
    ListCreate,
    ListUpdate,
    ReviewUpsert,
    UserCreate,
)
from app.services.catalog import CatalogService, ConflictError


def _run(tmp_path, scenario) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
        await database.create_all()
        try:
            await scenario(CatalogService(database.session_factory))
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_users_are_unique_by_name(tmp_path) -> None:
    async def scenario(service: CatalogService) -> None:
        created = await service.create_user(UserCreate(name="  Ana  "))
        assert created["name"] == "Ana"
        assert created["avatar_color"] == "#6366f1"
        with pytest.raises(ConflictError):
            await service.create_user(UserCreate(name="Ana"))
        await service.create_user(UserCreate(name="Bruno", avatar_color="#ff0000"))
        assert [user["name"] for user in await service.list_users()] == ["Ana", "Bruno"]

        await service.delete_user(created["id"])
        with pytest.raises(KeyError):
            await service.delete_user(created["id"])

    _run(tmp_path, scenario)


def test_create_item_returns_existing_duplicate(tmp_path) -> None:
    async def scenario(service: CatalogService) -> None:
        payload = ItemCreate(type=MediaType.BOOK, title="Dune", year=1965, creator="Frank Herbert")
        first, created = await service.create_item(payload)
        second, created_again = await service.create_item(payload)

        assert created is True
        assert created_again is False
        assert second["id"] == first["id"]

        undated = ItemCreate(type=MediaType.PODCAST, title="Radio Ambulante")
        undated_first, _ = await service.create_item(undated)
        undated_second, created_undated = await service.create_item(undated)
        assert created_undated is False
        assert undated_second["id"] == undated_first["id"]

    _run(tmp_path, scenario)


def test_item_filters_and_ratings(tmp_path) -> None:
    async def scenario(service: CatalogService) -> None:
        ana = await service.create_user(UserCreate(name="Ana"))
        bruno = await service.create_user(UserCreate(name="Bruno"))
        dune, _ = await service.create_item(
            ItemCreate(type=MediaType.BOOK, title="Dune", year=1965, creator="Frank Herbert", pages=412)
        )
        zelda, _ = await service.create_item(
            ItemCreate(type=MediaType.GAME, title="Zelda", year=2017, created_by=bruno["id"])
        )

        await service.upsert_review(dune["id"], ReviewUpsert(user_id=ana["id"], rating=8, status="completed"))
        await service.upsert_review(dune["id"], ReviewUpsert(user_id=bruno["id"], rating=6))

        books = await service.list_items(media_type=MediaType.BOOK)
        assert [item["title"] for item in books] == ["Dune"]
        assert books[0]["avg_rating"] == pytest.approx(7.0)
        assert books[0]["review_count"] == 2
        assert books[0]["pages"] == 412

        completed = await service.list_items(user_id=ana["id"], status="completed")
        assert [item["id"] for item in completed] == [dune["id"]]

        brunos = await service.list_items(user_id=bruno["id"])
        assert {item["id"] for item in brunos} == {dune["id"], zelda["id"]}

        found = await service.list_items(search="herbert")
        assert [item["id"] for item in found] == [dune["id"]]

        detail = await service.get_item(dune["id"])
        assert {review["user_name"] for review in detail["reviews"]} == {"Ana", "Bruno"}

    _run(tmp_path, scenario)


def test_review_upsert_and_delete(tmp_path) -> None:
    async def scenario(service: CatalogService) -> None:
        ana = await service.create_user(UserCreate(name="Ana"))
        item, _ = await service.create_item(ItemCreate(type=MediaType.MOVIE, title="Alien", year=1979))

        first = await service.upsert_review(item["id"], ReviewUpsert(user_id=ana["id"], rating=9))
        second = await service.upsert_review(
            item["id"],
            ReviewUpsert(user_id=ana["id"], rating=10, status="completed", review_text="Classic"),
        )
        assert second["id"] == first["id"]
        assert second["rating"] == 10
        assert second["status"] == "completed"

        with pytest.raises(KeyError):
            await service.upsert_review(999, ReviewUpsert(user_id=ana["id"]))

        await service.delete_review(item["id"], ana["id"])
        with pytest.raises(KeyError):
            await service.delete_review(item["id"], ana["id"])

    _run(tmp_path, scenario)


def test_update_and_delete_item(tmp_path) -> None:
    async def scenario(service: CatalogService) -> None:
        item, _ = await service.create_item(ItemCreate(type=MediaType.ANIME, title="Frieren"))

        updated = await service.update_item(
            item["id"], ItemUpdate(title="Sousou no Frieren", year=2023, episodes=28)
        )
        assert updated["title"] == "Sousou no Frieren"
        assert updated["episodes"] == 28

        await service.delete_item(item["id"])
        with pytest.raises(KeyError):
            await service.get_item(item["id"])
        with pytest.raises(KeyError):
            await service.update_item(item["id"], ItemUpdate(title="Gone"))

    _run(tmp_path, scenario)


def test_update_item_keeps_fields_missing_from_payload(tmp_path) -> None:
    async def scenario(service: CatalogService) -> None:
        item, _ = await service.create_item(
            ItemCreate(
                type=MediaType.BOOK,
                title="Dune",
                year=1965,
                pages=412,
                isbn="978",
                publisher="Chilton",
                status="reading",
                metadata={"edition": "first"},
            )
        )

        updated = await service.update_item(
            item["id"],
            ItemUpdate(
                title="Dune",
                year=1965,
                creator="Frank Herbert",
                genre="Science Fiction",
                synopsis="...",
                cover_url=None,
            ),
        )

        assert updated["creator"] == "Frank Herbert"
        assert updated["cover_url"] is None
        assert (updated["pages"], updated["isbn"], updated["publisher"]) == (412, "978", "Chilton")
        assert updated["status"] == "reading"
        assert updated["metadata"] == {"edition": "first"}

        renamed = await service.update_item(item["id"], ItemUpdate(genre="Space opera"))
        assert renamed["title"] == "Dune"
        assert renamed["genre"] == "Space opera"

    _run(tmp_path, scenario)


def test_item_update_rejects_null_title() -> None:
    with pytest.raises(ValidationError):
        ItemUpdate(title=None)


def test_lists_visibility_and_membership(tmp_path) -> None:
    async def scenario(service: CatalogService) -> None:
        ana = await service.create_user(UserCreate(name="Ana"))
        bruno = await service.create_user(UserCreate(name="Bruno"))
        item, _ = await service.create_item(ItemCreate(type=MediaType.SERIES, title="Dark", year=2017))

        public = await service.create_list(ListCreate(user_id=ana["id"], name="Favoritas"))
        private = await service.create_list(
            ListCreate(user_id=bruno["id"], name="Secreta", is_public=False)
        )

        assert await service.add_list_item(public["id"], item["id"]) is True
        assert await service.add_list_item(public["id"], item["id"]) is False

        anonymous = await service.list_lists()
        assert [entry["id"] for entry in anonymous] == [public["id"]]
        assert anonymous[0]["item_count"] == 1
        assert anonymous[0]["user_name"] == "Ana"

        owned = await service.list_lists(bruno["id"])
        assert {entry["id"] for entry in owned} == {public["id"], private["id"]}

        detail = await service.get_list(public["id"])
        assert [entry["title"] for entry in detail["items"]] == ["Dark"]

        renamed = await service.update_list(
            public["id"], ListUpdate(name="Top", description="Lo mejor", is_public=True)
        )
        assert renamed["name"] == "Top"

        await service.remove_list_item(public["id"], item["id"])
        with pytest.raises(KeyError):
            await service.remove_list_item(public["id"], item["id"])

        await service.delete_list(private["id"])
        with pytest.raises(KeyError):
            await service.get_list(private["id"])

    _run(tmp_path, scenario)


def test_deleting_item_removes_reviews_and_list_entries(tmp_path) -> None:
    async def scenario(service: CatalogService) -> None:
        ana = await service.create_user(UserCreate(name="Ana"))
        item, _ = await service.create_item(ItemCreate(type=MediaType.MANGA, title="Berserk"))
        media_list = await service.create_list(ListCreate(user_id=ana["id"], name="Manga"))
        await service.add_list_item(media_list["id"], item["id"])
        await service.upsert_review(item["id"], ReviewUpsert(user_id=ana["id"], rating=10))

        await service.delete_item(item["id"])

        detail = await service.get_list(media_list["id"])
        assert detail["items"] == []
        stats = await service.stats(ana["id"])
        assert stats["user_stats"]["reviewed"] == 0

    _run(tmp_path, scenario)


def test_stats(tmp_path) -> None:
    async def scenario(service: CatalogService) -> None:
        ana = await service.create_user(UserCreate(name="Ana"))
        first, _ = await service.create_item(ItemCreate(type=MediaType.BOOK, title="Dune", year=1965))
        await service.create_item(ItemCreate(type=MediaType.BOOK, title="Emma", year=1815))
        await service.create_item(ItemCreate(type=MediaType.GAME, title="Celeste", year=2018))
        await service.upsert_review(first["id"], ReviewUpsert(user_id=ana["id"], rating=8, status="completed"))

        stats = await service.stats(ana["id"])

        assert stats["total_items"] == 3
        assert stats["total_users"] == 1
        assert stats["items_by_type"][0] == {"type": "book", "count": 2}
        assert stats["user_stats"] == {"reviewed": 1, "completed": 1, "avg_rating": 8.0}
        assert (await service.stats())["user_stats"] is None

    _run(tmp_path, scenario)
