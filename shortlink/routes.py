"""FastAPI route definitions for the short-link service.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    GET    /404
        └─ NotFoundPage (404)

    POST   /api/links                       (admin)
        ├─ LinkCreate (request body)
        └─ LinkResponse (201) or 409/422

    GET    /api/links?sort=&order=          (admin)
        └─ list[LinkResponse] (200)

    GET    /api/links/:id                   (admin)
        └─ LinkResponse (200) or 404

    DELETE /api/links/:id                   (admin)
        └─ LinkDeleteResponse (200) or 404

    GET    /api/links/:id/analytics?days=&timezone=   (admin)
        └─ AnalyticsResponse (200) or 404

    GET    /api/tags                        (admin)
        └─ list[str] (200)

    GET    /api/settings                    (admin, creates the row on first read)
    PUT    /api/settings                    (admin)
        ├─ SiteSettingsUpdate (request body)
        └─ SiteSettingsResponse (200) or 422

    GET    /api/settings/public
        └─ SiteSettingsResponse (200), configured defaults when nothing is stored

    GET    /:slug
        └─ 302 → target URL, or 302 → /404

Key Behaviours
===============
- The slug route is registered last so fixed paths win.
- The slug route only ever answers 302; misses and errors go to NOT_FOUND_PATH.
- Admin routes require a bearer token and answer structured JSON errors.
- Domain errors (LinkNotFound, SlugConflict, StorageFailure) are mapped to
  HTTP responses by the handlers registered in ``shortlink.main``.
"""

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from prometheus_client import Counter

from shortlink.analytics import AnalyticsAggregator
from shortlink.config import Settings, get_settings
from shortlink.dependencies import (
    RequestContext,
    ServiceManager,
    get_aggregator,
    get_request_context,
    get_resolver,
    get_service_manager,
    require_admin,
)
from shortlink.enums import HealthStatus, LinkSortField, RequestStatus, SortOrder
from shortlink.errors import LinkNotFound, SlugConflict, StorageFailure
from shortlink.models import Link, SiteSetting, as_utc
from shortlink.resolver import Found, RedirectResolver
from shortlink.schemas import (
    AnalyticsResponse,
    ErrorResponse,
    HealthResponse,
    LinkCreate,
    LinkDeleteResponse,
    LinkResponse,
    NotFoundPage,
    SiteSettingsResponse,
    SiteSettingsUpdate,
)
from shortlink.slugs import create_short_url

__all__ = ["router"]

settings = get_settings()

LINK_CREATION_REQUESTS_TOTAL = Counter(
    "shortlink_link_creation_requests_total",
    "Total link creation requests",
    ["status"],
)

router = APIRouter()
api_router = APIRouter(
    prefix="/api",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
    responses={401: {"model": ErrorResponse}},
)
NOT_FOUND_RESPONSES = {404: {"model": ErrorResponse}}


def _link_response(link: Link, click_count: int, base_url: str) -> LinkResponse:
    return LinkResponse(
        id=link.id,
        slug=link.slug,
        short_url=f"{base_url.rstrip('/')}/{link.slug}",
        target_url=link.target_url,
        title=link.title,
        tag=link.tag,
        expires_at=as_utc(link.expires_at) if link.expires_at else None,
        click_limit=link.click_limit,
        last_click_at=as_utc(link.last_click_at) if link.last_click_at else None,
        created_at=as_utc(link.created_at),
        click_count=click_count,
    )


SITE_SETTING_FIELDS = (
    "logo_url",
    "default_qr_style",
    "not_found_title",
    "not_found_description",
    "not_found_button_text",
    "not_found_button_url",
)


def _site_defaults(settings: Settings) -> dict[str, str | None]:
    return {
        "logo_url": None,
        "default_qr_style": settings.DEFAULT_QR_STYLE,
        "not_found_title": settings.NOT_FOUND_TITLE,
        "not_found_description": settings.NOT_FOUND_DESCRIPTION,
        "not_found_button_text": settings.NOT_FOUND_BUTTON_TEXT,
        "not_found_button_url": settings.NOT_FOUND_BUTTON_URL,
    }


def _site_settings_response(setting: SiteSetting | None, settings: Settings) -> SiteSettingsResponse:
    if setting is None:
        return SiteSettingsResponse(**_site_defaults(settings))
    return SiteSettingsResponse(**{name: getattr(setting, name) for name in SITE_SETTING_FIELDS})


async def _public_site_settings(manager: ServiceManager) -> SiteSettingsResponse:
    """Stored settings, or the configured defaults when none are stored or storage is down."""
    try:
        setting = await manager.repository.find_site_setting()
    except StorageFailure as exc:
        manager.logger.warning(f"Site settings unavailable, using defaults: {exc}")
        setting = None
    return _site_settings_response(setting, manager.settings)


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(manager: ServiceManager = Depends(get_service_manager)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    try:
        await manager.repository.ping()
    except Exception as e:
        manager.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    return HealthResponse(status=db_status, database=db_status)


@router.get(settings.NOT_FOUND_PATH, response_model=NotFoundPage, tags=["redirect"])
async def not_found_page(manager: ServiceManager = Depends(get_service_manager)) -> JSONResponse:
    site = await _public_site_settings(manager)
    page = NotFoundPage(
        title=site.not_found_title,
        description=site.not_found_description,
        button_text=site.not_found_button_text,
        button_url=site.not_found_button_url,
        logo_url=site.logo_url,
    )
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=page.model_dump(by_alias=True))


@router.get("/api/settings/public", response_model=SiteSettingsResponse, tags=["settings"])
async def public_site_settings(manager: ServiceManager = Depends(get_service_manager)) -> SiteSettingsResponse:
    return await _public_site_settings(manager)


@api_router.post("/links", response_model=LinkResponse, status_code=201, responses={409: {"model": ErrorResponse}})
async def create_link(
    payload: LinkCreate,
    ctx: RequestContext = Depends(get_request_context),
) -> LinkResponse:
    ctx.add_tag("link_creation")
    ctx.logger.info(
        f"Link creation requested: {payload.target_url}",
        extra={"operation": "create_link", "custom_slug": payload.custom_slug},
    )
    try:
        link = await create_short_url(ctx.repository, payload, ctx.settings.SLUG_LENGTH)
    except SlugConflict as exc:
        LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
        ctx.logger.warning(f"Link creation failed: {exc}")
        raise

    LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
    ctx.logger.info(
        f"Link created: {link.slug}",
        extra={"operation": "create_link", "link_id": link.id, "duration_ms": ctx.get_duration()},
    )
    return _link_response(link, 0, ctx.settings.BASE_URL)


@api_router.get("/links", response_model=list[LinkResponse])
async def list_links(
    sort: LinkSortField = Query(LinkSortField.CREATED_AT),
    order: SortOrder = Query(SortOrder.DESC),
    ctx: RequestContext = Depends(get_request_context),
) -> list[LinkResponse]:
    rows = await ctx.repository.list_links(sort, order)
    return [_link_response(link, count, ctx.settings.BASE_URL) for link, count in rows]


@api_router.get("/links/{link_id}", response_model=LinkResponse, responses=NOT_FOUND_RESPONSES)
async def get_link(
    link_id: str,
    ctx: RequestContext = Depends(get_request_context),
) -> LinkResponse:
    link = await ctx.repository.find_link_by_id(link_id)
    if link is None:
        raise LinkNotFound(link_id)
    clicks = await ctx.repository.count_clicks_for_link(link.id)
    return _link_response(link, clicks, ctx.settings.BASE_URL)


@api_router.delete("/links/{link_id}", response_model=LinkDeleteResponse, responses=NOT_FOUND_RESPONSES)
async def delete_link(
    link_id: str,
    ctx: RequestContext = Depends(get_request_context),
) -> LinkDeleteResponse:
    if not await ctx.repository.delete_link(link_id):
        raise LinkNotFound(link_id)
    ctx.logger.info(f"Link deleted: {link_id}", extra={"operation": "delete_link", "link_id": link_id})
    return LinkDeleteResponse(success=True, message="Link deleted successfully")


@api_router.get("/links/{link_id}/analytics", response_model=AnalyticsResponse, responses=NOT_FOUND_RESPONSES)
async def get_link_analytics(
    link_id: str,
    days: int = Query(7, ge=1, le=settings.ANALYTICS_MAX_DAYS),
    timezone: str | None = Query(None, max_length=64),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
    ctx: RequestContext = Depends(get_request_context),
) -> AnalyticsResponse:
    ctx.logger.info(
        f"Analytics requested for link {link_id} over {days} days",
        extra={"operation": "analytics", "link_id": link_id, "days": days},
    )
    return await aggregator.link_analytics(link_id, days, timezone)


@api_router.get("/tags", response_model=list[str])
async def list_tags(ctx: RequestContext = Depends(get_request_context)) -> list[str]:
    return await ctx.repository.list_tags()


@api_router.get("/settings", response_model=SiteSettingsResponse)
async def get_site_settings(ctx: RequestContext = Depends(get_request_context)) -> SiteSettingsResponse:
    setting = await ctx.repository.get_or_create_site_setting(_site_defaults(ctx.settings))
    return _site_settings_response(setting, ctx.settings)


@api_router.put("/settings", response_model=SiteSettingsResponse)
async def update_site_settings(
    payload: SiteSettingsUpdate,
    ctx: RequestContext = Depends(get_request_context),
) -> SiteSettingsResponse:
    changes = payload.changes()
    setting = await ctx.repository.update_site_setting(changes, _site_defaults(ctx.settings))
    ctx.logger.info(
        f"Site settings updated: {', '.join(sorted(changes)) or 'no changes'}",
        extra={"operation": "update_settings"},
    )
    return _site_settings_response(setting, ctx.settings)


router.include_router(api_router)


@router.get("/{slug}", tags=["redirect"], response_class=RedirectResponse, status_code=302)
async def redirect_to_target(
    slug: str,
    request: Request,
    resolver: RedirectResolver = Depends(get_resolver),
    manager: ServiceManager = Depends(get_service_manager),
) -> RedirectResponse:
    outcome = await resolver.resolve(slug, request.headers)
    if isinstance(outcome, Found):
        return RedirectResponse(url=outcome.target_url, status_code=status.HTTP_302_FOUND)
    return RedirectResponse(url=manager.settings.NOT_FOUND_PATH, status_code=status.HTTP_302_FOUND)
