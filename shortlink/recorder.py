"""Click recording for resolved redirects.

Flow Diagram — record_click()
=============================
::
    ┌──────────────┐
    │ link_id +    │
    │ headers      │
    └──────┬───────┘
           ▼
    ┌──────────────┐     x-forwarded-for[0] → x-real-ip → 127.0.0.1
    │ extract IP,  │
    │ referrer, UA │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ classify UA  │
    │ + geolocate  │
    └──────┬───────┘
           ▼
    ┌──────────────┬──────────────┐   asyncio.gather, no ordering
    │ insert Click │ touch Link   │
    │ row          │ last_click_at│
    └──────────────┴──────────────┘
           │ any failure
           ▼
    RecordingFailure (observed by the task supervisor, never by the visitor)

Key Behaviours
===============
- The caller guarantees the link exists; it is not looked up again here.
- Both writes are always issued; a failure of either is raised once, unretried.
"""

import asyncio
import logging
from collections.abc import Mapping

from prometheus_client import Counter

from shortlink.classifier import RequestClassifier
from shortlink.errors import RecordingFailure
from shortlink.models import utcnow
from shortlink.repository import LinkRepository

__all__ = ["ClickRecorder", "extract_client_ip", "snapshot_headers"]

LOOPBACK_IP = "127.0.0.1"
RECORDED_HEADERS = ("user-agent", "referer", "x-forwarded-for", "x-real-ip")

CLICKS_RECORDED_TOTAL = Counter(
    "shortlink_clicks_recorded_total",
    "Total click events persisted",
    ["device"],
)


def snapshot_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy the headers click recording needs out of a live request."""
    return {name: headers[name] for name in RECORDED_HEADERS if headers.get(name)}


def extract_client_ip(headers: Mapping[str, str]) -> str:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return LOOPBACK_IP


class ClickRecorder:
    def __init__(self, repository: LinkRepository, classifier: RequestClassifier, logger: logging.Logger | logging.LoggerAdapter):
        self._repository = repository
        self._classifier = classifier
        self._logger = logger

    async def record_click(self, link_id: str, headers: Mapping[str, str]) -> None:
        user_agent = headers.get("user-agent") or ""
        referrer = headers.get("referer") or None
        ip = extract_client_ip(headers)

        ua_info = self._classifier.classify_user_agent(user_agent)
        geo = self._classifier.classify_ip(ip)
        now = utcnow()

        results = await asyncio.gather(
            self._repository.create_click(
                link_id,
                referrer=referrer,
                user_agent=user_agent,
                device=ua_info.device.value,
                country=geo.country,
                city=geo.city,
                timestamp=now,
            ),
            self._repository.update_link_last_click_at(link_id, now),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                raise RecordingFailure(link_id, result) from result

        CLICKS_RECORDED_TOTAL.labels(device=ua_info.device.value).inc()
        self._logger.debug(
            f"Click recorded for link {link_id}",
            extra={
                "operation": "record_click",
                "link_id": link_id,
                "device": ua_info.device.value,
                "country": geo.country,
            },
        )
