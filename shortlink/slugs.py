"""Slug generation and assignment for new links.

Flow Diagram — Link Creation
============================
::
    ┌─────────────┐
    │ LinkCreate  │
    └──────┬──────┘
           ▼
    custom slug given?
    ┌─────┴──────┐
    │ YES         │ NO
    ▼             ▼
┌──────────┐  ┌──────────────┐
│ check     │  │ generate     │◄──┐
│ once      │  │ nanoid slug  │   │ taken
└────┬─────┘  └──────┬───────┘   │
     │ taken?        ▼           │
     ▼         ┌──────────────┐  │
 SlugConflict  │ available?   ├──┘
               └──────┬───────┘
                      ▼
               ┌──────────────┐
               │ insert link  │  (unique index is the final arbiter)
               └──────────────┘

Key Behaviours
===============
- Slugs are drawn from the URL-safe alphabet ``A-Za-z0-9_-``.
- A taken custom slug is rejected, never retried.
- Slugs naming a fixed route (health, docs, the not-found page, ...) are never
  handed out.
- Generated slugs retry until a free one is found, including when a concurrent
  creator wins the race between the availability check and the insert.
"""

import logging

from nanoid import generate

from shortlink.errors import SlugConflict
from shortlink.models import Link
from shortlink.repository import LinkRepository
from shortlink.schemas import LinkCreate, reserved_slugs

__all__ = ["SLUG_ALPHABET", "generate_slug", "is_slug_available", "assign_slug", "create_short_url"]

SLUG_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_-"
DEFAULT_SLUG_LENGTH = 6

logger = logging.getLogger("shortlink.slugs")


def generate_slug(length: int = DEFAULT_SLUG_LENGTH) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(SLUG_ALPHABET, length)


async def is_slug_available(repository: LinkRepository, slug: str) -> bool:
    return await repository.find_link_by_slug(slug) is None


async def assign_slug(
    repository: LinkRepository,
    custom_slug: str | None = None,
    length: int = DEFAULT_SLUG_LENGTH,
) -> str:
    if custom_slug:
        if custom_slug in reserved_slugs() or not await is_slug_available(repository, custom_slug):
            raise SlugConflict(custom_slug)
        return custom_slug

    while True:
        slug = generate_slug(length)
        if slug in reserved_slugs():
            continue
        if await is_slug_available(repository, slug):
            return slug
        logger.debug(f"Generated slug collision: {slug}")


async def create_short_url(
    repository: LinkRepository,
    payload: LinkCreate,
    length: int = DEFAULT_SLUG_LENGTH,
) -> Link:
    """Assign a slug for ``payload`` and persist the link.

    Raises:
        SlugConflict: the custom slug is already taken.
    """
    while True:
        slug = await assign_slug(repository, payload.custom_slug, length)
        try:
            return await repository.create_link(
                slug,
                payload.target_url,
                title=payload.title,
                tag=payload.tag,
                expires_at=payload.expires_at,
                click_limit=payload.click_limit,
            )
        except SlugConflict:
            if payload.custom_slug:
                raise
            logger.debug(f"Generated slug {slug} taken by a concurrent creator, retrying")
