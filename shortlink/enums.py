"""Shared enums for the short-link service.

This module defines all status and category enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = [
    "HealthStatus",
    "DeviceType",
    "RedirectStatus",
    "RequestStatus",
    "LinkSortField",
    "SortOrder",
    "StatOrder",
    "QrStyle",
]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class DeviceType(StrEnum):
    """Coarse client device category stored on every click."""

    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"
    UNKNOWN = "unknown"

    @classmethod
    def from_str(cls, value: str | None) -> "DeviceType":
        """Safely parse from string, falling back to UNKNOWN for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class RedirectStatus(StrEnum):
    """Outcome labels for redirect resolution, used in logs and metrics."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    LIMIT_REACHED = "limit_reached"
    ERROR = "error"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    CONFLICT = "conflict"


class LinkSortField(StrEnum):
    """Sortable columns of the admin link listing."""

    CREATED_AT = "createdAt"
    TITLE = "title"
    CLICK_COUNT = "clickCount"
    LAST_CLICK_AT = "lastClickAt"
    EXPIRES_AT = "expiresAt"


class SortOrder(StrEnum):
    ASC = "asc"
    DESC = "desc"


class StatOrder(StrEnum):
    """Ranking applied to an analytics histogram."""

    COUNT_DESC = "count_desc"
    LABEL_ASC = "label_asc"


class QrStyle(StrEnum):
    """Module shape preselected by QR code generators."""

    SQUARE = "square"
    ROUNDED = "rounded"
    DOTS = "dots"
