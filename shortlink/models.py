"""SQLAlchemy ORM models for the short-link service.

This module defines the database schema using SQLAlchemy declarative models
with proper indexing and timestamp management for links and their click events.

Data Model Layout
=================
::
    links table
    ├─ id (VARCHAR(36) PRIMARY KEY, uuid4)
    ├─ slug (VARCHAR(64) UNIQUE, INDEXED)
    ├─ target_url (TEXT NOT NULL)
    ├─ title (VARCHAR(200) NULL)
    ├─ tag (VARCHAR(50) NULL, INDEXED)
    ├─ expires_at (TIMESTAMPTZ NULL)
    ├─ click_limit (INTEGER NULL)
    ├─ last_click_at (TIMESTAMPTZ NULL)
    └─ created_at (TIMESTAMPTZ NOT NULL)

    clicks table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ link_id (FK links.id ON DELETE CASCADE)
    ├─ timestamp (TIMESTAMPTZ NOT NULL)
    ├─ referrer (TEXT NULL)
    ├─ user_agent (TEXT NOT NULL)
    ├─ device (VARCHAR(16) NOT NULL)
    ├─ country (VARCHAR(100) NULL)
    └─ city (VARCHAR(100) NULL)

    site_settings table (at most one row, id = 1)
    ├─ id (INTEGER PRIMARY KEY)
    ├─ logo_url (TEXT NULL)
    ├─ default_qr_style (VARCHAR(16) NOT NULL)
    ├─ not_found_title / not_found_description (NOT NULL)
    ├─ not_found_button_text / not_found_button_url (NOT NULL)
    └─ updated_at (TIMESTAMPTZ NOT NULL)

Class Relationship Diagram
=========================
::
    Link 1 ──── * Click
    (cascade delete; Click rows are insert-only)

How to Use
===========
**Step 1 — Import**::
    from shortlink.models import Click, Link

**Step 2 — Create a new link**::
    link = Link(slug="abc123", target_url="https://example.com")
    session.add(link)
    await session.commit()

**Step 3 — Query clicks**::
    result = await session.execute(select(Click).where(Click.link_id == link.id))

Key Behaviours
===============
- slug is indexed for fast lookups during redirects.
- Timestamps are written as timezone-aware UTC from Python, not by the server,
  so every backend stores the same instant.
- Deleting a Link deletes its Clicks (ORM cascade and ON DELETE CASCADE).

Classes:
    Link:  A persistent shortening record.
    Click:  One recorded redirect for a Link.
    SiteSetting:  Branding and not-found page settings edited from the admin API.
"""

import datetime
import uuid
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shortlink.database import Base

__all__ = ["Link", "Click", "SiteSetting", "SITE_SETTING_ID", "utcnow", "as_utc"]

SITE_SETTING_ID = 1


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """Normalize to aware UTC; naive values (SQLite drops tzinfo) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Link(Base):
    __tablename__ = "links"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    slug: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    tag: Mapped[Optional[str]] = mapped_column(String(50), index=True, nullable=True)
    expires_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    click_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_click_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    clicks: Mapped[list["Click"]] = relationship(
        back_populates="link",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Link(id={self.id}, slug='{self.slug}')>"


class Click(Base):
    __tablename__ = "clicks"
    __table_args__ = (Index("ix_clicks_link_id_timestamp", "link_id", "timestamp"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    link_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("links.id", ondelete="CASCADE"), nullable=False
    )
    timestamp: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    referrer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_agent: Mapped[str] = mapped_column(Text, nullable=False, default="")
    device: Mapped[str] = mapped_column(String(16), nullable=False)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    link: Mapped[Link] = relationship(back_populates="clicks")

    def __repr__(self) -> str:
        return f"<Click(id={self.id}, link_id='{self.link_id}', device='{self.device}')>"


class SiteSetting(Base):
    __tablename__ = "site_settings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)
    logo_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    default_qr_style: Mapped[str] = mapped_column(String(16), nullable=False)
    not_found_title: Mapped[str] = mapped_column(String(200), nullable=False)
    not_found_description: Mapped[str] = mapped_column(Text, nullable=False)
    not_found_button_text: Mapped[str] = mapped_column(String(100), nullable=False)
    not_found_button_url: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<SiteSetting(id={self.id}, default_qr_style='{self.default_qr_style}')>"
