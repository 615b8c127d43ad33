"""Pydantic schemas for request/response validation in the short-link service.

This module defines Pydantic models for API input validation and output serialization,
ensuring type safety and automatic OpenAPI documentation generation.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ target_url: str (validated http/https URL)
    ├─ custom_slug: str | None (URL-safe alphabet)
    ├─ title / tag: str | None
    ├─ expires_at: datetime | None
    └─ click_limit: int | None

    LinkResponse (Output)
    └─ link columns + short_url + click_count

    AnalyticsResponse (Output)
    ├─ link: LinkSummary
    └─ analytics: AnalyticsReport
        ├─ period, total_clicks_in_period
        ├─ timeline[]       (date, clicks)
        ├─ top_referrers[]  (domain, count)
        ├─ device_stats[]   (device, count)
        ├─ country_stats[]  (country, count)
        ├─ city_stats[]     (city, count)
        └─ hourly_stats[]   (hour, count)

    SiteSettingsUpdate (Input) / SiteSettingsResponse (Output)
    └─ logoUrl, defaultQrStyle, custom404Title, custom404Description,
       custom404ButtonText, custom404ButtonUrl

Key Behaviours
===============
- Python attributes are snake_case; JSON on the wire is camelCase
  (``targetUrl``, ``topReferrers`` ...), matching the dashboard contract.
- Input accepts either spelling.
- All datetime fields are timezone-aware.
"""

import datetime
import re

import validators
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from shortlink.config import get_settings
from shortlink.enums import HealthStatus, QrStyle

__all__ = [
    "LinkCreate",
    "LinkResponse",
    "LinkDeleteResponse",
    "LinkSummary",
    "TimelinePoint",
    "ReferrerStat",
    "DeviceStat",
    "CountryStat",
    "CityStat",
    "HourlyStat",
    "AnalyticsReport",
    "AnalyticsResponse",
    "HealthResponse",
    "NotFoundPage",
    "SiteSettingsResponse",
    "SiteSettingsUpdate",
    "ErrorResponse",
    "reserved_slugs",
]

SLUG_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
FIXED_ROUTE_SLUGS = frozenset({"api", "docs", "health", "metrics", "redoc"})


def reserved_slugs() -> frozenset[str]:
    """Single path segments the app serves itself; a link there could never redirect."""
    not_found = get_settings().NOT_FOUND_PATH.strip("/").split("/", 1)[0]
    return FIXED_ROUTE_SLUGS | {not_found} if not_found else FIXED_ROUTE_SLUGS


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class LinkCreate(CamelModel):
    target_url: str
    custom_slug: str | None = None
    title: str | None = Field(None, max_length=200)
    tag: str | None = Field(None, max_length=50)
    expires_at: datetime.datetime | None = None
    click_limit: int | None = Field(None, ge=1)

    @field_validator("target_url")
    @classmethod
    def validate_target_url(cls, v: str) -> str:
        v = v.strip()
        if not v.lower().startswith(("http://", "https://")) or not validators.url(v):
            raise ValueError("Target URL must be a valid http:// or https:// URL")
        return v

    @field_validator("custom_slug")
    @classmethod
    def validate_custom_slug(cls, v: str | None) -> str | None:
        if v is None or v == "":
            return None
        if len(v) < 3 or len(v) > 64:
            raise ValueError("Custom slug must be between 3 and 64 characters")
        if not SLUG_PATTERN.match(v):
            raise ValueError("Custom slug may only contain letters, digits, '-' and '_'")
        if v in reserved_slugs():
            raise ValueError(f"Custom slug '{v}' is reserved")
        return v

    @field_validator("title", "tag")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is not None:
            v = v.strip()
        return v or None


class LinkResponse(CamelModel):
    id: str
    slug: str
    short_url: str
    target_url: str
    title: str | None = None
    tag: str | None = None
    expires_at: datetime.datetime | None = None
    click_limit: int | None = None
    last_click_at: datetime.datetime | None = None
    created_at: datetime.datetime
    click_count: int = 0


class LinkDeleteResponse(CamelModel):
    success: bool
    message: str


class LinkSummary(CamelModel):
    id: str
    slug: str
    target_url: str
    created_at: datetime.datetime
    total_clicks: int


class TimelinePoint(CamelModel):
    date: datetime.date
    clicks: int


class ReferrerStat(CamelModel):
    domain: str
    count: int


class DeviceStat(CamelModel):
    device: str
    count: int


class CountryStat(CamelModel):
    country: str
    count: int


class CityStat(CamelModel):
    city: str
    count: int


class HourlyStat(CamelModel):
    hour: int = Field(..., ge=0, le=23)
    count: int


class AnalyticsReport(CamelModel):
    period: str
    timezone: str
    timeline: list[TimelinePoint]
    top_referrers: list[ReferrerStat]
    device_stats: list[DeviceStat]
    country_stats: list[CountryStat]
    city_stats: list[CityStat]
    hourly_stats: list[HourlyStat]
    total_clicks_in_period: int


class AnalyticsResponse(CamelModel):
    link: LinkSummary
    analytics: AnalyticsReport


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus


class NotFoundPage(CamelModel):
    title: str
    description: str
    button_text: str
    button_url: str
    logo_url: str | None = None


class SiteSettingsResponse(CamelModel):
    logo_url: str | None = None
    default_qr_style: QrStyle
    not_found_title: str = Field(..., alias="custom404Title")
    not_found_description: str = Field(..., alias="custom404Description")
    not_found_button_text: str = Field(..., alias="custom404ButtonText")
    not_found_button_url: str = Field(..., alias="custom404ButtonUrl")


class SiteSettingsUpdate(CamelModel):
    """Partial update; omitted or blank fields keep their stored value.

    ``logoUrl`` is the exception: sending it blank or null clears the logo.
    """

    logo_url: str | None = Field(None, max_length=2048)
    default_qr_style: QrStyle | None = None
    not_found_title: str | None = Field(None, alias="custom404Title", max_length=200)
    not_found_description: str | None = Field(None, alias="custom404Description", max_length=500)
    not_found_button_text: str | None = Field(None, alias="custom404ButtonText", max_length=100)
    not_found_button_url: str | None = Field(None, alias="custom404ButtonUrl", max_length=2048)

    @field_validator("logo_url", "not_found_title", "not_found_description", "not_found_button_text")
    @classmethod
    def strip_text(cls, v: str | None) -> str | None:
        if v is not None:
            v = v.strip()
        return v or None

    @field_validator("not_found_button_url")
    @classmethod
    def validate_button_url(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if v.startswith("/") and not v.startswith("//"):
            return v
        if not v.lower().startswith(("http://", "https://")) or not validators.url(v):
            raise ValueError("Button URL must be a site path or an http:// or https:// URL")
        return v

    def changes(self) -> dict[str, str | None]:
        values = self.model_dump(exclude_unset=True)
        changes = {name: value for name, value in values.items() if value and name != "logo_url"}
        if "logo_url" in values:
            changes["logo_url"] = values["logo_url"]
        return changes


class ErrorResponse(BaseModel):
    detail: str
