from __future__ import annotations

import uuid
from typing import Callable, List, Mapping, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel

from pwa_cache.config import AppConfig, app_config
from pwa_cache.engine import CacheEngine
from pwa_cache.errors import InvalidSchedule, NetworkFailure, StoreOpenFailure
from pwa_cache.logging import bind_request_context, get_logger, setup_logging
from pwa_cache.models import AlertSchedule, ResourceRequest, ResourceResponse, origin_path
from pwa_cache.scheduler import build_scheduler, log_alert, reschedule
from pwa_cache.storage import PreferenceStore

logger = get_logger(__name__)

INTERCEPTED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class CacheStatusResponse(BaseModel):
    version: str
    active_version: Optional[str] = None
    state: Optional[str] = None
    pending_state: Optional[str] = None
    versions: List[str]


class ClearCacheResponse(BaseModel):
    deleted: List[str]


class SkipWaitingResponse(BaseModel):
    released: bool


class SchedulePayload(BaseModel):
    time: Optional[str] = None


def is_navigation_request(method: str, headers: Mapping[str, str]) -> bool:
    """Decide whether a request loads a whole page rather than a subresource."""
    if method.upper() != "GET":
        return False
    mode = headers.get("sec-fetch-mode")
    if mode is not None:
        return mode.lower() == "navigate"
    return "text/html" in headers.get("accept", "").lower()


def _to_resource_request(request: Request, body: bytes) -> ResourceRequest:
    url = origin_path(request.url.path)
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return ResourceRequest(
        method=request.method,
        url=url,
        headers=tuple(request.headers.items()),
        body=body,
        is_navigation=is_navigation_request(request.method, request.headers),
    )


def _to_http_response(resource: ResourceResponse) -> Response:
    response = Response(content=resource.body, status_code=resource.status)
    for name, value in resource.headers:
        response.headers.append(name, value)
    response.headers["X-Cache-Source"] = resource.source
    return response


def create_app(
    config: Optional[AppConfig] = None,
    *,
    engine: Optional[CacheEngine] = None,
    alert_job: Callable[[], None] = log_alert,
) -> FastAPI:
    config = config or app_config
    setup_logging(config.logging)

    engine = engine or CacheEngine.from_config(config)
    preferences = PreferenceStore(config.cache.db_path)

    app = FastAPI(title="PWA Cache")
    app.state.engine = engine
    app.state.preferences = preferences
    app.state.scheduler = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def _start() -> None:
        logger.info("engine.start", version=engine.version)
        await engine.start()
        try:
            schedule = await preferences.get_schedule()
        except InvalidSchedule as exc:
            logger.warning("schedule.invalid_stored_value", error=str(exc))
            schedule = None
        scheduler = build_scheduler(alert_job, config.schedule, schedule)
        if scheduler and not scheduler.running:
            logger.info("scheduler.start")
            scheduler.start()
        app.state.scheduler = scheduler

    @app.on_event("shutdown")
    async def _stop() -> None:
        scheduler = app.state.scheduler
        if scheduler and scheduler.running:
            logger.info("scheduler.stop")
            scheduler.shutdown(wait=False)
        await engine.close()

    @app.exception_handler(NetworkFailure)
    async def _offline(_: Request, exc: NetworkFailure) -> PlainTextResponse:
        return PlainTextResponse(
            "You are offline and this resource is not available from the cache.",
            status_code=504,
            headers={"X-Cache-Source": "offline"},
        )

    @app.exception_handler(StoreOpenFailure)
    async def _store_unavailable(_: Request, exc: StoreOpenFailure) -> PlainTextResponse:
        logger.error("cache.store_unavailable", version=exc.version, error=exc.reason)
        return PlainTextResponse("Cache storage is unavailable.", status_code=503)

    @app.get("/_cache", response_model=CacheStatusResponse)
    async def cache_status() -> CacheStatusResponse:
        return CacheStatusResponse(**await engine.status())

    @app.delete("/_cache", response_model=ClearCacheResponse)
    async def clear_cache() -> ClearCacheResponse:
        return ClearCacheResponse(deleted=await engine.clear_all())

    @app.post("/_cache/skip-waiting", response_model=SkipWaitingResponse)
    async def skip_waiting() -> SkipWaitingResponse:
        return SkipWaitingResponse(released=engine.skip_waiting())

    @app.get("/_schedule", response_model=SchedulePayload)
    async def get_schedule() -> SchedulePayload:
        schedule = await preferences.get_schedule()
        return SchedulePayload(time=str(schedule) if schedule else None)

    @app.put("/_schedule", response_model=SchedulePayload)
    async def put_schedule(payload: SchedulePayload) -> SchedulePayload:
        schedule: Optional[AlertSchedule] = None
        if payload.time:
            try:
                schedule = AlertSchedule.parse(payload.time)
            except InvalidSchedule as exc:
                raise HTTPException(status_code=422, detail=str(exc)) from exc
        await preferences.set_schedule(schedule)
        reschedule(app.state.scheduler, alert_job, schedule)
        return SchedulePayload(time=str(schedule) if schedule else None)

    @app.api_route("/{path:path}", methods=INTERCEPTED_METHODS)
    async def intercept(path: str, request: Request) -> Response:
        body = await request.body()
        resource_request = _to_resource_request(request, body)
        bind_request_context(
            trace_id=uuid.uuid4().hex,
            method=resource_request.method,
            url=resource_request.url,
        )
        resource = await engine.on_request(resource_request)
        return _to_http_response(resource)

    return app


app = create_app()
