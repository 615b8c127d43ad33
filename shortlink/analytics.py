"""Analytics aggregation over raw click events.

Aggregation Pipeline
====================
::
    ┌──────────────────┐
    │ link_id, N days, │
    │ timezone         │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐   window start = local midnight of (today - N + 1)
    │ find_clicks_since│   ONE query; every metric reads this snapshot
    └────────┬─────────┘
             ▼
    ┌────────┴─────────┬───────────────┬──────────────┬──────────────┐
    ▼                  ▼               ▼              ▼              ▼
 timeline[N]     top referrers    devices      countries/cities   hourly[24]
 (zero-filled)   (host, top 10)   (all)        (top 10 each)      (zero-filled)

Key Behaviours
===============
- ``sum(timeline) == total_clicks_in_period == sum(hourly)``.
- Day and hour buckets use the caller's IANA timezone; unknown names fall back
  to the configured default.
- Histograms rank by count descending, ties broken by label ascending.
- Missing referrers, and referrers without a parsable host, count as "Direct";
  missing geography counts as "Unknown"; missing device as "unknown".
"""

import datetime
import logging
import time
from collections import Counter as Tally
from collections.abc import Sequence
from typing import Any, assert_never
from urllib.parse import urlsplit
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from prometheus_client import Histogram

from shortlink.enums import DeviceType, StatOrder
from shortlink.errors import LinkNotFound
from shortlink.models import Click, Link, as_utc, utcnow
from shortlink.repository import LinkRepository
from shortlink.schemas import (
    AnalyticsReport,
    AnalyticsResponse,
    CityStat,
    CountryStat,
    DeviceStat,
    HourlyStat,
    LinkSummary,
    ReferrerStat,
    TimelinePoint,
)

__all__ = [
    "AnalyticsAggregator",
    "summarize_clicks",
    "resolve_timezone",
    "window_start",
    "referrer_domain",
]

DIRECT = "Direct"
UNKNOWN = "Unknown"
TOP_N = 10

ANALYTICS_DURATION = Histogram(
    "shortlink_analytics_duration_seconds",
    "Time taken to aggregate link analytics",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

logger = logging.getLogger("shortlink.analytics")


def resolve_timezone(name: str | None, default: str = "UTC") -> datetime.tzinfo:
    for candidate in (name, default):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            logger.debug(f"Unknown timezone {candidate!r}, falling back")
    return datetime.timezone.utc


def window_start(window_days: int, tz: datetime.tzinfo, now: datetime.datetime) -> datetime.datetime:
    """First instant of the oldest day bucket, as aware UTC."""
    first_day = now.astimezone(tz).date() - datetime.timedelta(days=window_days - 1)
    return datetime.datetime.combine(first_day, datetime.time.min, tzinfo=tz).astimezone(datetime.timezone.utc)


def referrer_domain(referrer: str | None) -> str:
    if not referrer or not referrer.strip():
        return DIRECT
    try:
        host = urlsplit(referrer.strip()).hostname
    except ValueError:
        return DIRECT
    return host or DIRECT


def _rank(tally: Tally, order: StatOrder, limit: int | None = None) -> list[tuple[Any, int]]:
    match order:
        case StatOrder.COUNT_DESC:
            ranked = sorted(tally.items(), key=lambda item: (-item[1], str(item[0])))
        case StatOrder.LABEL_ASC:
            ranked = sorted(tally.items(), key=lambda item: item[0])
        case _:
            assert_never(order)
    return ranked if limit is None else ranked[:limit]


def _timezone_name(tz: datetime.tzinfo) -> str:
    return getattr(tz, "key", None) or str(tz)


def summarize_clicks(
    clicks: Sequence[Click],
    window_days: int,
    tz: datetime.tzinfo,
    now: datetime.datetime,
) -> AnalyticsReport:
    """Bucket a snapshot of clicks into every report metric.

    Clicks outside the ``window_days`` local-date range are ignored so that the
    timeline, hourly histogram and total always agree.
    """
    assert window_days > 0, f"window_days must be positive, got {window_days!r}"
    today = now.astimezone(tz).date()
    days = [today - datetime.timedelta(days=offset) for offset in range(window_days - 1, -1, -1)]
    first_day = days[0]

    in_window: list[tuple[Click, datetime.datetime]] = []
    for click in clicks:
        local = as_utc(click.timestamp).astimezone(tz)
        if first_day <= local.date() <= today:
            in_window.append((click, local))

    per_day = Tally(local.date() for _, local in in_window)
    per_hour = Tally(local.hour for _, local in in_window)
    per_hour.update({hour: 0 for hour in range(24)})

    referrers = Tally(referrer_domain(click.referrer) for click, _ in in_window)
    devices = Tally(DeviceType.from_str(click.device).value for click, _ in in_window)
    countries = Tally(click.country or UNKNOWN for click, _ in in_window)
    cities = Tally(click.city or UNKNOWN for click, _ in in_window)

    return AnalyticsReport(
        period=f"{window_days} days",
        timezone=_timezone_name(tz),
        timeline=[TimelinePoint(date=day, clicks=per_day.get(day, 0)) for day in days],
        top_referrers=[
            ReferrerStat(domain=domain, count=count)
            for domain, count in _rank(referrers, StatOrder.COUNT_DESC, TOP_N)
        ],
        device_stats=[
            DeviceStat(device=device, count=count)
            for device, count in _rank(devices, StatOrder.COUNT_DESC)
        ],
        country_stats=[
            CountryStat(country=country, count=count)
            for country, count in _rank(countries, StatOrder.COUNT_DESC, TOP_N)
        ],
        city_stats=[
            CityStat(city=city, count=count)
            for city, count in _rank(cities, StatOrder.COUNT_DESC, TOP_N)
        ],
        hourly_stats=[
            HourlyStat(hour=hour, count=count)
            for hour, count in _rank(per_hour, StatOrder.LABEL_ASC)
        ],
        total_clicks_in_period=len(in_window),
    )


class AnalyticsAggregator:
    def __init__(self, repository: LinkRepository, default_timezone: str = "UTC"):
        self._repository = repository
        self._default_timezone = default_timezone

    async def _require_link(self, link_id: str) -> Link:
        link = await self._repository.find_link_by_id(link_id)
        if link is None:
            raise LinkNotFound(link_id)
        return link

    async def aggregate(
        self,
        link_id: str,
        window_days: int,
        timezone: str | None = None,
        now: datetime.datetime | None = None,
    ) -> AnalyticsReport:
        """Aggregate the trailing ``window_days`` of clicks for one link.

        Raises:
            LinkNotFound: no link has ``link_id``.
        """
        link = await self._require_link(link_id)
        return await self._aggregate(link, window_days, timezone, now)

    async def link_analytics(
        self,
        link_id: str,
        window_days: int,
        timezone: str | None = None,
        now: datetime.datetime | None = None,
    ) -> AnalyticsResponse:
        link = await self._require_link(link_id)
        report = await self._aggregate(link, window_days, timezone, now)
        total = await self._repository.count_clicks_for_link(link.id)
        return AnalyticsResponse(
            link=LinkSummary(
                id=link.id,
                slug=link.slug,
                target_url=link.target_url,
                created_at=as_utc(link.created_at),
                total_clicks=total,
            ),
            analytics=report,
        )

    async def _aggregate(
        self,
        link: Link,
        window_days: int,
        timezone: str | None,
        now: datetime.datetime | None,
    ) -> AnalyticsReport:
        if window_days < 1:
            raise ValueError(f"window_days must be positive, got {window_days!r}")

        started = time.perf_counter()
        now = as_utc(now) if now is not None else utcnow()
        tz = resolve_timezone(timezone, self._default_timezone)

        clicks = await self._repository.find_clicks_since(link.id, window_start(window_days, tz, now), now)
        report = summarize_clicks(clicks, window_days, tz, now)

        ANALYTICS_DURATION.observe(time.perf_counter() - started)
        logger.debug(f"Aggregated {report.total_clicks_in_period} clicks for link {link.id} over {window_days} days")
        return report
