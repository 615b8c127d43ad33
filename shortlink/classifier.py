"""Request classification: device category from the user agent, geography from the IP.

Device Classification
=====================
::
    user agent ──► user-agents parser ──► tablet / mobile / pc ?
                                              │ undecided
                                              ▼
                        keyword fallback (order matters)
                        1. tablet keyword            → tablet
                        2. mobile keyword, no desktop → mobile
                        3. desktop keyword           → desktop
                        4. anything else             → desktop

Geolocation
===========
::
    ip ──► public address? ── no ──► (None, None)
              │ yes
              ▼
         database available? (probed once per GeoLocator)
              │ no ──► (None, None)
              ▼ yes
         reader.city(ip) ── error ──► (None, None)
              ▼
         (country name, city name)

Key Behaviours
===============
- Geography is best-effort: nothing in this module raises to the caller.
- A missing or unreadable database is reported once, when it is probed.
- Private, loopback, link-local, reserved and unparseable addresses are never looked up.
"""

import ipaddress
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import geoip2.database
import geoip2.errors
from user_agents import parse as parse_user_agent

from shortlink.enums import DeviceType
from shortlink.errors import GeoLookupFailure

__all__ = [
    "UserAgentInfo",
    "GeoInfo",
    "GeoLocator",
    "RequestClassifier",
    "classify_user_agent",
    "is_public_ip",
]

logger = logging.getLogger("shortlink.classifier")

TABLET_KEYWORDS = ("ipad", "tablet", "kindle", "silk/", "playbook", "nexus 7", "nexus 9", "nexus 10", "sm-t")
MOBILE_KEYWORDS = ("mobile", "iphone", "ipod", "android", "blackberry", "windows phone", "iemobile", "opera mini", "webos")
DESKTOP_KEYWORDS = ("windows nt", "macintosh", "x11", "cros")


@dataclass(frozen=True)
class UserAgentInfo:
    device: DeviceType
    browser: str | None = None
    os: str | None = None


@dataclass(frozen=True)
class GeoInfo:
    country: str | None = None
    city: str | None = None


NO_GEO = GeoInfo()


def _family(value: str | None) -> str | None:
    if not value or value == "Other":
        return None
    return value


def _device_from_keywords(user_agent: str) -> DeviceType:
    ua = user_agent.lower()
    has_desktop = any(keyword in ua for keyword in DESKTOP_KEYWORDS)
    if any(keyword in ua for keyword in TABLET_KEYWORDS):
        return DeviceType.TABLET
    if any(keyword in ua for keyword in MOBILE_KEYWORDS) and not has_desktop:
        return DeviceType.MOBILE
    return DeviceType.DESKTOP


def classify_user_agent(user_agent: str) -> UserAgentInfo:
    parsed = parse_user_agent(user_agent or "")

    if parsed.is_tablet:
        device = DeviceType.TABLET
    elif parsed.is_mobile:
        device = DeviceType.MOBILE
    elif parsed.is_pc:
        device = DeviceType.DESKTOP
    else:
        device = _device_from_keywords(user_agent or "")

    return UserAgentInfo(
        device=device,
        browser=_family(parsed.browser.family),
        os=_family(parsed.os.family),
    )


def is_public_ip(ip: str) -> bool:
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return False
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
        or address.is_multicast
    )


class GeoLocator:
    """Offline IP geolocation backed by a MaxMind City database.

    The database is opened and probed with ``probe_ip`` on first use. The
    outcome is kept for the lifetime of the instance, so a missing database
    costs one failed open rather than one per request.
    """

    def __init__(
        self,
        database_path: str,
        probe_ip: str = "8.8.8.8",
        reader_factory: Callable[[str], Any] = geoip2.database.Reader,
    ):
        self._database_path = database_path
        self._probe_ip = probe_ip
        self._reader_factory = reader_factory
        self._reader: Any = None
        self._available: bool | None = None

    @property
    def available(self) -> bool:
        if self._available is None:
            try:
                self._reader = self._open()
            except GeoLookupFailure as exc:
                logger.warning(f"Geolocation disabled: {exc}")
                self._available = False
            else:
                logger.info(f"GeoIP database loaded from {self._database_path}")
                self._available = True
        return self._available

    def probe(self) -> bool:
        """Open and probe the database now instead of on the first lookup."""
        return self.available

    def _open(self) -> Any:
        try:
            reader = self._reader_factory(self._database_path)
        except Exception as exc:
            raise GeoLookupFailure(f"cannot open {self._database_path}: {exc}") from exc

        try:
            reader.city(self._probe_ip)
        except geoip2.errors.AddressNotFoundError:
            pass
        except Exception as exc:
            reader.close()
            raise GeoLookupFailure(f"probe lookup of {self._probe_ip} failed: {exc}") from exc
        return reader

    def lookup(self, ip: str) -> GeoInfo:
        if not is_public_ip(ip) or not self.available:
            return NO_GEO
        try:
            response = self._reader.city(ip.strip())
        except geoip2.errors.AddressNotFoundError:
            return NO_GEO
        except Exception as exc:
            logger.debug(f"GeoIP lookup failed for {ip}: {exc}")
            return NO_GEO

        country = response.country.name or response.country.iso_code
        return GeoInfo(country=country or None, city=response.city.name or None)

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None
        self._available = None


class RequestClassifier:
    """Derives the click attributes stored alongside every redirect."""

    def __init__(self, geo_locator: GeoLocator):
        self._geo_locator = geo_locator

    def classify_user_agent(self, user_agent: str) -> UserAgentInfo:
        return classify_user_agent(user_agent)

    def classify_ip(self, ip: str) -> GeoInfo:
        return self._geo_locator.lookup(ip)
