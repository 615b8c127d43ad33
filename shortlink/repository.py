"""Storage operations used by the redirect, recording and analytics pipeline.

``LinkRepository`` is the only module that talks to SQLAlchemy. Each call opens
its own session from the injected ``async_sessionmaker`` and commits before
returning, so two calls can run concurrently (the click recorder relies on it)
and a detached task never borrows the session of a finished request.

Operations
==========
::
    find_link_by_slug(slug)             -> Link | None
    find_link_by_id(link_id)            -> Link | None
    create_link(slug, target_url, ...)  -> Link          (SlugConflict on duplicate)
    create_click(link_id, ...)          -> Click
    update_link_last_click_at(id, ts)   -> None          (never moves backwards)
    find_clicks_since(link_id, since, until=None)
                                        -> list[Click]   (timestamp ascending)
    count_clicks_for_link(link_id)      -> int
    list_links(sort, order)             -> list[(Link, click_count)]
    delete_link(link_id)                -> bool          (cascades to clicks)
    list_tags()                         -> list[str]
    find_site_setting()                 -> SiteSetting | None
    get_or_create_site_setting(defaults) -> SiteSetting  (single row, id 1)
    update_site_setting(changes, defaults) -> SiteSetting

Errors
======
- ``IntegrityError`` on the slug unique index becomes ``SlugConflict``.
- Any other ``SQLAlchemyError`` becomes ``StorageFailure`` chained to the cause.
"""

import datetime
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, assert_never

from prometheus_client import Counter
from sqlalchemy import func, or_, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlink.enums import LinkSortField, SortOrder
from shortlink.errors import SlugConflict, StorageFailure
from shortlink.models import SITE_SETTING_ID, Click, Link, SiteSetting, as_utc, utcnow

__all__ = ["LinkRepository"]

DATABASE_READS_TOTAL = Counter(
    "shortlink_database_reads_total",
    "Total database read operations",
)
DATABASE_WRITES_TOTAL = Counter(
    "shortlink_database_writes_total",
    "Total database write operations",
)


class LinkRepository:
    """Datastore collaborator for links and clicks."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StorageFailure(str(exc)) from exc

    async def ping(self) -> None:
        async with self._session() as session:
            await session.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    async def find_link_by_slug(self, slug: str) -> Link | None:
        async with self._session() as session:
            result = await session.execute(select(Link).where(Link.slug == slug))
            DATABASE_READS_TOTAL.inc()
            return result.scalar_one_or_none()

    async def find_link_by_id(self, link_id: str) -> Link | None:
        async with self._session() as session:
            link = await session.get(Link, link_id)
            DATABASE_READS_TOTAL.inc()
            return link

    async def create_link(
        self,
        slug: str,
        target_url: str,
        *,
        title: str | None = None,
        tag: str | None = None,
        expires_at: datetime.datetime | None = None,
        click_limit: int | None = None,
    ) -> Link:
        async with self._session() as session:
            link = Link(
                slug=slug,
                target_url=target_url,
                title=title,
                tag=tag,
                expires_at=as_utc(expires_at) if expires_at else None,
                click_limit=click_limit,
            )
            session.add(link)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise SlugConflict(slug) from exc
            DATABASE_WRITES_TOTAL.inc()
            await session.refresh(link)
            return link

    async def delete_link(self, link_id: str) -> bool:
        async with self._session() as session:
            link = await session.get(Link, link_id)
            DATABASE_READS_TOTAL.inc()
            if link is None:
                return False
            await session.delete(link)
            await session.commit()
            DATABASE_WRITES_TOTAL.inc()
            return True

    async def list_links(
        self,
        sort: LinkSortField = LinkSortField.CREATED_AT,
        order: SortOrder = SortOrder.DESC,
    ) -> list[tuple[Link, int]]:
        click_count = func.count(Click.id).label("click_count")
        column = _sort_column(sort, click_count)
        primary = column.asc() if order is SortOrder.ASC else column.desc()

        stmt = (
            select(Link, click_count)
            .outerjoin(Click, Click.link_id == Link.id)
            .group_by(Link.id)
            .order_by(primary.nulls_last(), Link.created_at.desc(), Link.id)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            DATABASE_READS_TOTAL.inc()
            return [(link, count) for link, count in result.all()]

    async def list_tags(self) -> list[str]:
        stmt = select(Link.tag).where(Link.tag.is_not(None)).distinct()
        async with self._session() as session:
            result = await session.execute(stmt)
            DATABASE_READS_TOTAL.inc()
            tags = {tag.strip() for tag in result.scalars() if tag and tag.strip()}
        return sorted(tags)

    # ------------------------------------------------------------------
    # Clicks
    # ------------------------------------------------------------------

    async def create_click(
        self,
        link_id: str,
        referrer: str | None,
        user_agent: str,
        device: str,
        country: str | None,
        city: str | None,
        timestamp: datetime.datetime | None = None,
    ) -> Click:
        async with self._session() as session:
            click = Click(
                link_id=link_id,
                referrer=referrer,
                user_agent=user_agent,
                device=device,
                country=country,
                city=city,
                timestamp=as_utc(timestamp) if timestamp else utcnow(),
            )
            session.add(click)
            await session.commit()
            DATABASE_WRITES_TOTAL.inc()
            return click

    async def update_link_last_click_at(self, link_id: str, timestamp: datetime.datetime) -> None:
        timestamp = as_utc(timestamp)
        # Concurrent redirects may commit out of order; keep the newest value.
        stmt = (
            update(Link)
            .where(Link.id == link_id)
            .where(or_(Link.last_click_at.is_(None), Link.last_click_at < timestamp))
            .values(last_click_at=timestamp)
        )
        async with self._session() as session:
            await session.execute(stmt)
            await session.commit()
            DATABASE_WRITES_TOTAL.inc()

    async def find_clicks_since(
        self,
        link_id: str,
        since: datetime.datetime,
        until: datetime.datetime | None = None,
    ) -> list[Click]:
        stmt = select(Click).where(Click.link_id == link_id, Click.timestamp >= as_utc(since))
        if until is not None:
            stmt = stmt.where(Click.timestamp <= as_utc(until))
        stmt = stmt.order_by(Click.timestamp, Click.id)
        async with self._session() as session:
            result = await session.execute(stmt)
            DATABASE_READS_TOTAL.inc()
            return list(result.scalars().all())

    async def count_clicks_for_link(self, link_id: str) -> int:
        stmt = select(func.count(Click.id)).where(Click.link_id == link_id)
        async with self._session() as session:
            result = await session.execute(stmt)
            DATABASE_READS_TOTAL.inc()
            return int(result.scalar_one())

    # ------------------------------------------------------------------
    # Site settings
    # ------------------------------------------------------------------

    async def find_site_setting(self) -> SiteSetting | None:
        async with self._session() as session:
            setting = await session.get(SiteSetting, SITE_SETTING_ID)
            DATABASE_READS_TOTAL.inc()
            return setting

    async def get_or_create_site_setting(self, defaults: dict[str, Any]) -> SiteSetting:
        async with self._session() as session:
            setting = await session.get(SiteSetting, SITE_SETTING_ID)
            DATABASE_READS_TOTAL.inc()
            if setting is not None:
                return setting

            setting = SiteSetting(id=SITE_SETTING_ID, **defaults)
            session.add(setting)
            try:
                await session.commit()
            except IntegrityError:
                # Another request created the row first.
                await session.rollback()
                return await session.get(SiteSetting, SITE_SETTING_ID)
            DATABASE_WRITES_TOTAL.inc()
            return setting

    async def update_site_setting(self, changes: dict[str, Any], defaults: dict[str, Any]) -> SiteSetting:
        await self.get_or_create_site_setting(defaults)
        async with self._session() as session:
            if changes:
                await session.execute(
                    update(SiteSetting)
                    .where(SiteSetting.id == SITE_SETTING_ID)
                    .values(**changes, updated_at=utcnow())
                )
                await session.commit()
                DATABASE_WRITES_TOTAL.inc()
            setting = await session.get(SiteSetting, SITE_SETTING_ID)
            DATABASE_READS_TOTAL.inc()
            return setting


def _sort_column(sort: LinkSortField, click_count: Any) -> Any:
    match sort:
        case LinkSortField.CREATED_AT:
            return Link.created_at
        case LinkSortField.TITLE:
            return Link.title
        case LinkSortField.CLICK_COUNT:
            return click_count
        case LinkSortField.LAST_CLICK_AT:
            return Link.last_click_at
        case LinkSortField.EXPIRES_AT:
            return Link.expires_at
        case _:
            assert_never(sort)
