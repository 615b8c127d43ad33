"""Dependency injection with a singleton service manager.

This module wires the long-lived collaborators (settings, logger, session
factory, geolocation, background task supervisor) once per process and hands
them to route handlers through FastAPI dependencies, together with a
lightweight per-request context used for structured logging.
"""

import asyncio
import logging
import secrets
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlink.analytics import AnalyticsAggregator
from shortlink.classifier import GeoLocator, RequestClassifier
from shortlink.config import Settings, get_settings
from shortlink.database import async_session
from shortlink.recorder import ClickRecorder
from shortlink.repository import LinkRepository
from shortlink.resolver import ClickTaskSupervisor, RedirectResolver


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    Everything held here is created once at startup and shared by every
    request. The GeoLocator is the only piece of process-wide state in the
    redirect path; it is injected here rather than living in a module global.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        geo_locator: GeoLocator | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return
        self.settings = settings or get_settings()
        self.logger = self._setup_logger()
        self.repository = LinkRepository(session_factory or async_session)
        self.geo_locator = geo_locator or GeoLocator(
            self.settings.GEOIP_DATABASE_PATH,
            probe_ip=self.settings.GEOIP_PROBE_IP,
        )
        # Opening the database file is blocking IO.
        await asyncio.to_thread(self.geo_locator.probe)
        self.classifier = RequestClassifier(self.geo_locator)
        self.supervisor = ClickTaskSupervisor(self.logger)
        self.recorder = ClickRecorder(self.repository, self.classifier, self.logger)
        self.resolver = RedirectResolver(
            self.repository,
            self.recorder,
            self.supervisor,
            self.logger,
            enforce_limits=self.settings.ENFORCE_LINK_LIMITS,
        )
        self.aggregator = AnalyticsAggregator(self.repository, self.settings.DEFAULT_TIMEZONE)
        self._initialized = True

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("shortlink")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def cleanup(self) -> None:
        """Finish in-flight click recordings and release resources at shutdown."""
        if not self._initialized:
            return
        await self.supervisor.drain()
        self.geo_locator.close()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking data plus access to shared resources.

    Attributes:
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def repository(self) -> LinkRepository:
        return self.service_manager.repository

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Get shared logger with request context."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "tags": ",".join(self.tags),
            },
        )

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    client_ip = request.client.host if request.client else None
    return RequestContext(
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=client_ip,
    )


def get_resolver(manager: ServiceManager = Depends(get_service_manager)) -> RedirectResolver:
    return manager.resolver


def get_aggregator(manager: ServiceManager = Depends(get_service_manager)) -> AnalyticsAggregator:
    return manager.aggregator


async def require_admin(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> None:
    """Reject admin API calls without ``Authorization: Bearer <ADMIN_TOKEN>``."""
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    expected = manager.settings.ADMIN_TOKEN
    if scheme.lower() != "bearer" or not token or not secrets.compare_digest(token.strip().encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
