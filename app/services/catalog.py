"""Persistence operations for users, items, reviews and lists."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Select, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import Item, ListItem, MediaList, Review, User
from ..media_types import MediaType
from ..models import (
    ItemCreate,
    ItemUpdate,
    ListCreate,
    ListUpdate,
    ReviewUpsert,
    UserCreate,
)

logger = logging.getLogger(__name__)

DEFAULT_AVATAR_COLOR = "#6366f1"
ITEM_FIELDS: tuple[str, ...] = (
    "title",
    "year",
    "creator",
    "genre",
    "synopsis",
    "cover_url",
    "platform",
    "developer",
    "publisher",
    "duration_min",
    "pages",
    "episodes",
    "seasons",
    "isbn",
    "status",
)


class ConflictError(ValueError):
    """Raised when a write violates a uniqueness rule."""


def _avg_rating_column():
    return (
        select(func.avg(Review.rating))
        .where(Review.item_id == Item.id, Review.rating.is_not(None))
        .correlate(Item)
        .scalar_subquery()
        .label("avg_rating")
    )


def _review_count_column():
    return (
        select(func.count(Review.id))
        .where(Review.item_id == Item.id)
        .correlate(Item)
        .scalar_subquery()
        .label("review_count")
    )


def _item_select() -> Select:
    return select(Item, _avg_rating_column(), _review_count_column())


def item_to_dict(
    item: Item, *, avg_rating: float | None = None, review_count: int = 0
) -> dict[str, Any]:
    payload: dict[str, Any] = {field: getattr(item, field) for field in ITEM_FIELDS}
    payload.update(
        id=item.id,
        type=item.type,
        metadata=item.extra_metadata,
        created_by=item.created_by,
        created_at=item.created_at,
        avg_rating=float(avg_rating) if avg_rating is not None else None,
        review_count=int(review_count or 0),
    )
    return payload


def user_to_dict(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "avatar_color": user.avatar_color,
        "created_at": user.created_at,
    }


def review_to_dict(review: Review, user: User) -> dict[str, Any]:
    return {
        "id": review.id,
        "item_id": review.item_id,
        "user_id": review.user_id,
        "rating": review.rating,
        "status": review.status,
        "review_text": review.review_text,
        "updated_at": review.updated_at,
        "user_name": user.name,
        "avatar_color": user.avatar_color,
    }


def list_to_dict(
    media_list: MediaList, *, user_name: str | None = None, item_count: int = 0
) -> dict[str, Any]:
    return {
        "id": media_list.id,
        "user_id": media_list.user_id,
        "name": media_list.name,
        "description": media_list.description,
        "is_public": bool(media_list.is_public),
        "created_at": media_list.created_at,
        "user_name": user_name,
        "item_count": int(item_count or 0),
    }


class CatalogService:
    """CRUD operations over the catalog tables.

    Missing rows raise ``KeyError`` and uniqueness violations raise
    ``ConflictError``; the HTTP layer maps them to status codes.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # Users

    async def list_users(self) -> list[dict[str, Any]]:
        async with self._session_factory() as session:
            result = await session.scalars(select(User).order_by(User.name))
            return [user_to_dict(user) for user in result]

    async def create_user(self, payload: UserCreate) -> dict[str, Any]:
        async with self._session_factory() as session:
            user = User(
                name=payload.name,
                avatar_color=payload.avatar_color or DEFAULT_AVATAR_COLOR,
            )
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError("User already exists") from exc
            return user_to_dict(user)

    async def delete_user(self, user_id: int) -> None:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise KeyError("User not found")
            await session.delete(user)
            await session.commit()

    # Items

    async def list_items(
        self,
        *,
        media_type: MediaType | None = None,
        user_id: int | None = None,
        status: str | None = None,
        search: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        statement = _item_select()
        if media_type is not None:
            statement = statement.where(Item.type == MediaType(media_type).value)
        if user_id is not None and status:
            reviewed = select(Review.item_id).where(
                Review.user_id == user_id, Review.status == status
            )
            statement = statement.where(Item.id.in_(reviewed))
        elif user_id is not None:
            reviewed = select(Review.item_id).where(Review.user_id == user_id)
            statement = statement.where(
                or_(Item.id.in_(reviewed), Item.created_by == user_id)
            )
        if search:
            pattern = f"%{search.strip()}%"
            statement = statement.where(
                or_(Item.title.ilike(pattern), Item.creator.ilike(pattern))
            )
        statement = (
            statement.order_by(Item.created_at.desc(), Item.id.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self._session_factory() as session:
            rows = await session.execute(statement)
            return [
                item_to_dict(item, avg_rating=avg, review_count=count)
                for item, avg, count in rows.all()
            ]

    async def get_item(self, item_id: int) -> dict[str, Any]:
        async with self._session_factory() as session:
            row = (await session.execute(_item_select().where(Item.id == item_id))).first()
            if row is None:
                raise KeyError("Item not found")
            item, avg, count = row
            payload = item_to_dict(item, avg_rating=avg, review_count=count)
            reviews = await session.execute(
                select(Review, User)
                .join(User, Review.user_id == User.id)
                .where(Review.item_id == item_id)
                .order_by(Review.updated_at.desc())
            )
            payload["reviews"] = [
                review_to_dict(review, user) for review, user in reviews.all()
            ]
            return payload

    async def create_item(self, payload: ItemCreate) -> tuple[dict[str, Any], bool]:
        """Insert an item; an existing (type, title, year) match is returned instead.

        The second element tells whether a new row was created.
        """

        media_type = MediaType(payload.type).value
        async with self._session_factory() as session:
            existing = await self._find_item(session, media_type, payload.title, payload.year)
            if existing is not None:
                return item_to_dict(existing), False
            if payload.created_by is not None and await session.get(User, payload.created_by) is None:
                raise KeyError("User not found")

            item = Item(type=media_type, created_by=payload.created_by)
            self._apply_item_fields(item, payload)
            session.add(item)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                existing = await self._find_item(
                    session, media_type, payload.title, payload.year
                )
                if existing is not None:
                    return item_to_dict(existing), False
                raise ConflictError("Item could not be stored") from exc
            logger.info("Created %s item %s", media_type, item.id)
            return item_to_dict(item), True

    async def update_item(self, item_id: int, payload: ItemUpdate) -> dict[str, Any]:
        async with self._session_factory() as session:
            item = await session.get(Item, item_id)
            if item is None:
                raise KeyError("Item not found")
            self._apply_item_fields(item, payload, partial=True)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError("Another item already uses this title and year") from exc
        return await self.get_item(item_id)

    async def delete_item(self, item_id: int) -> None:
        async with self._session_factory() as session:
            item = await session.get(Item, item_id)
            if item is None:
                raise KeyError("Item not found")
            await session.delete(item)
            await session.commit()
            logger.info("Deleted item %s", item_id)

    # Reviews

    async def upsert_review(self, item_id: int, payload: ReviewUpsert) -> dict[str, Any]:
        async with self._session_factory() as session:
            if await session.get(Item, item_id) is None:
                raise KeyError("Item not found")
            user = await session.get(User, payload.user_id)
            if user is None:
                raise KeyError("User not found")

            review = await session.scalar(
                select(Review).where(
                    Review.item_id == item_id, Review.user_id == payload.user_id
                )
            )
            if review is None:
                review = Review(item_id=item_id, user_id=payload.user_id)
                session.add(review)
            review.rating = payload.rating
            review.status = payload.status
            review.review_text = payload.review_text
            review.updated_at = datetime.utcnow()
            await session.commit()
            return review_to_dict(review, user)

    async def delete_review(self, item_id: int, user_id: int) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(Review).where(Review.item_id == item_id, Review.user_id == user_id)
            )
            await session.commit()
            if not result.rowcount:
                raise KeyError("Review not found")

    # Lists

    async def list_lists(self, user_id: int | None = None) -> list[dict[str, Any]]:
        item_count = (
            select(func.count())
            .select_from(ListItem)
            .where(ListItem.list_id == MediaList.id)
            .correlate(MediaList)
            .scalar_subquery()
        )
        statement = select(MediaList, User.name, item_count).join(
            User, MediaList.user_id == User.id
        )
        if user_id is not None:
            statement = statement.where(
                or_(MediaList.user_id == user_id, MediaList.is_public.is_(True))
            )
        else:
            statement = statement.where(MediaList.is_public.is_(True))
        statement = statement.order_by(MediaList.created_at.desc(), MediaList.id.desc())
        async with self._session_factory() as session:
            rows = await session.execute(statement)
            return [
                list_to_dict(media_list, user_name=name, item_count=count)
                for media_list, name, count in rows.all()
            ]

    async def get_list(self, list_id: int) -> dict[str, Any]:
        async with self._session_factory() as session:
            row = (
                await session.execute(
                    select(MediaList, User.name)
                    .join(User, MediaList.user_id == User.id)
                    .where(MediaList.id == list_id)
                )
            ).first()
            if row is None:
                raise KeyError("List not found")
            media_list, user_name = row
            entries = await session.execute(
                _item_select()
                .add_columns(ListItem.added_at)
                .select_from(Item)
                .join(ListItem, ListItem.item_id == Item.id)
                .where(ListItem.list_id == list_id)
                .order_by(ListItem.added_at.desc())
            )
            items = []
            for item, avg, count, added_at in entries.all():
                entry = item_to_dict(item, avg_rating=avg, review_count=count)
                entry["added_at"] = added_at
                items.append(entry)
            payload = list_to_dict(media_list, user_name=user_name, item_count=len(items))
            payload["items"] = items
            return payload

    async def create_list(self, payload: ListCreate) -> dict[str, Any]:
        async with self._session_factory() as session:
            user = await session.get(User, payload.user_id)
            if user is None:
                raise KeyError("User not found")
            media_list = MediaList(
                user_id=payload.user_id,
                name=payload.name,
                description=payload.description,
                is_public=payload.is_public,
            )
            session.add(media_list)
            await session.commit()
            return list_to_dict(media_list, user_name=user.name)

    async def update_list(self, list_id: int, payload: ListUpdate) -> dict[str, Any]:
        async with self._session_factory() as session:
            media_list = await session.get(MediaList, list_id)
            if media_list is None:
                raise KeyError("List not found")
            media_list.name = payload.name
            media_list.description = payload.description
            media_list.is_public = payload.is_public
            await session.commit()
        return await self.get_list(list_id)

    async def delete_list(self, list_id: int) -> None:
        async with self._session_factory() as session:
            media_list = await session.get(MediaList, list_id)
            if media_list is None:
                raise KeyError("List not found")
            await session.delete(media_list)
            await session.commit()

    async def add_list_item(self, list_id: int, item_id: int) -> bool:
        """Add ``item_id`` to a list. Returns False when it was already there."""

        async with self._session_factory() as session:
            if await session.get(MediaList, list_id) is None:
                raise KeyError("List not found")
            if await session.get(Item, item_id) is None:
                raise KeyError("Item not found")
            if await session.get(ListItem, (list_id, item_id)) is not None:
                return False
            session.add(ListItem(list_id=list_id, item_id=item_id))
            await session.commit()
            return True

    async def remove_list_item(self, list_id: int, item_id: int) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ListItem).where(
                    ListItem.list_id == list_id, ListItem.item_id == item_id
                )
            )
            await session.commit()
            if not result.rowcount:
                raise KeyError("Item not in list")

    # Stats

    async def stats(self, user_id: int | None = None) -> dict[str, Any]:
        async with self._session_factory() as session:
            total_items = await session.scalar(select(func.count()).select_from(Item))
            total_users = await session.scalar(select(func.count()).select_from(User))
            count = func.count(Item.id)
            by_type = await session.execute(
                select(Item.type, count).group_by(Item.type).order_by(count.desc())
            )
            user_stats: dict[str, Any] | None = None
            if user_id is not None:
                reviewed = await session.scalar(
                    select(func.count()).select_from(Review).where(Review.user_id == user_id)
                )
                completed = await session.scalar(
                    select(func.count())
                    .select_from(Review)
                    .where(Review.user_id == user_id, Review.status == "completed")
                )
                avg_rating = await session.scalar(
                    select(func.avg(Review.rating)).where(
                        Review.user_id == user_id, Review.rating.is_not(None)
                    )
                )
                user_stats = {
                    "reviewed": reviewed or 0,
                    "completed": completed or 0,
                    "avg_rating": float(avg_rating) if avg_rating is not None else None,
                }
            return {
                "total_items": total_items or 0,
                "total_users": total_users or 0,
                "items_by_type": [
                    {"type": media_type, "count": amount}
                    for media_type, amount in by_type.all()
                ],
                "user_stats": user_stats,
            }

    @staticmethod
    async def _find_item(
        session: AsyncSession, media_type: str, title: str, year: int | None
    ) -> Item | None:
        statement = select(Item).where(Item.type == media_type, Item.title == title)
        if year is None:
            statement = statement.where(Item.year.is_(None))
        else:
            statement = statement.where(Item.year == year)
        return await session.scalar(statement.limit(1))

    @staticmethod
    def _apply_item_fields(
        item: Item, payload: ItemCreate | ItemUpdate, *, partial: bool = False
    ) -> None:
        provided = payload.model_fields_set
        for field in ITEM_FIELDS:
            if partial and field not in provided:
                continue
            setattr(item, field, getattr(payload, field))
        if not partial or "metadata" in provided:
            item.extra_metadata = payload.metadata
