from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .cache import TTLCache
from .config import load_analytics_config
from .exceptions import (
    AnalyticsError,
    DataSourceUnavailable,
    DecodeFailure,
    UnknownDimension,
    UpstreamQueryFailure,
)
from .models import ErrorFeedFilters, ResolutionStatus, Severity, to_payload
from .repository import AnalyticsDataRepository, build_repository_from_env
from .service import AnalyticsService

load_dotenv()

logger = logging.getLogger(__name__)

app = FastAPI(title="Nubo Admin Analytics API", version="0.1.0")
config = load_analytics_config()
repository: Optional[AnalyticsDataRepository] = build_repository_from_env(config)
result_cache = TTLCache(ttl_s=config.cache.ttl_seconds)

_ERROR_STATUS = {
    UpstreamQueryFailure: 502,
    DecodeFailure: 502,
    DataSourceUnavailable: 503,
    UnknownDimension: 400,
}


class AnalyticsResponse(BaseModel):
    data: Any
    source: str


class FunnelRequest(BaseModel):
    details: bool = False


def get_service() -> AnalyticsService:
    if repository is None:
        raise DataSourceUnavailable(
            "ANALYTICS_DATABASE_URL is not configured; no data source is available."
        )
    return AnalyticsService(repository, config)


@app.exception_handler(AnalyticsError)
async def analytics_error_handler(request: Request, exc: AnalyticsError) -> JSONResponse:
    status_code = _ERROR_STATUS.get(type(exc), 500)
    logger.warning("%s %s failed (%s): %s", request.method, request.url.path, exc.kind, exc)
    return JSONResponse(status_code=status_code, content={"error": {"kind": exc.kind, "message": str(exc)}})


def _respond(service: AnalyticsService, key: str, producer: Callable[[], Any]) -> AnalyticsResponse:
    if service.config.cache.enable:
        data = result_cache.get_or_compute(f"{service.source}:{key}", lambda: to_payload(producer()))
    else:
        data = to_payload(producer())
    return AnalyticsResponse(data=data, source=service.source)


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/funnel", response_model=AnalyticsResponse)
def funnel_endpoint(
    details: bool = False, service: AnalyticsService = Depends(get_service)
) -> AnalyticsResponse:
    return _respond(service, f"funnel:{details}", lambda: service.funnel(include_details=details))


@app.post("/funnel", response_model=AnalyticsResponse)
def funnel_details_endpoint(
    request: FunnelRequest, service: AnalyticsService = Depends(get_service)
) -> AnalyticsResponse:
    return _respond(
        service, f"funnel:{request.details}", lambda: service.funnel(include_details=request.details)
    )


@app.get("/errors", response_model=AnalyticsResponse)
def errors_endpoint(
    limit: Optional[int] = Query(None, ge=1, le=500),
    type: Optional[Severity] = None,
    status: Optional[ResolutionStatus] = None,
    service: AnalyticsService = Depends(get_service),
) -> AnalyticsResponse:
    filters = ErrorFeedFilters(
        severity=type,
        status=status,
        limit=limit if limit is not None else service.config.feed.error_feed_limit,
    )
    key = f"errors:{filters.limit}:{type and type.value}:{status and status.value}"
    return _respond(service, key, lambda: service.error_feed(filters))


@app.get("/rankings/users", response_model=AnalyticsResponse)
def top_users_endpoint(service: AnalyticsService = Depends(get_service)) -> AnalyticsResponse:
    return _respond(service, "rankings:users", service.top_users)


@app.get("/rankings/{dimension}", response_model=AnalyticsResponse)
def rankings_endpoint(dimension: str, service: AnalyticsService = Depends(get_service)) -> AnalyticsResponse:
    return _respond(service, f"rankings:{dimension}", lambda: service.rankings(dimension))


@app.get("/partners/stats", response_model=AnalyticsResponse)
def partner_stats_endpoint(service: AnalyticsService = Depends(get_service)) -> AnalyticsResponse:
    return _respond(service, "partners:stats", service.partner_stats)


@app.get("/influencers", response_model=AnalyticsResponse)
def influencers_endpoint(service: AnalyticsService = Depends(get_service)) -> AnalyticsResponse:
    return _respond(service, "influencers", service.influencers)


@app.get("/influencers/stats", response_model=AnalyticsResponse)
def influencer_stats_endpoint(service: AnalyticsService = Depends(get_service)) -> AnalyticsResponse:
    return _respond(service, "influencers:stats", service.influencer_dashboard)


@app.get("/influencers/{code}/affiliates", response_model=AnalyticsResponse)
def affiliates_endpoint(code: str, service: AnalyticsService = Depends(get_service)) -> AnalyticsResponse:
    return _respond(service, f"influencers:{code}:affiliates", lambda: service.affiliates(code))


@app.get("/activity", response_model=AnalyticsResponse)
def activity_endpoint(service: AnalyticsService = Depends(get_service)) -> AnalyticsResponse:
    return _respond(service, "activity", service.activity)


@app.get("/overview", response_model=AnalyticsResponse)
def overview_endpoint(service: AnalyticsService = Depends(get_service)) -> AnalyticsResponse:
    return _respond(service, "overview", service.overview)


@app.get("/opportunities", response_model=AnalyticsResponse)
def opportunities_endpoint(service: AnalyticsService = Depends(get_service)) -> AnalyticsResponse:
    return _respond(service, "opportunities", service.opportunities)
