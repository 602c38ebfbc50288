"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from beatflo.api.v1.health import router as health_router
from beatflo.api.v1.info import router as info_router
from beatflo.api.v1.downloads import router as downloads_router
from beatflo.api.v1.bulk import router as bulk_router
from beatflo.api.v1.mixsets import router as mixsets_router
from beatflo.api.v1.waveforms import router as waveforms_router
from beatflo.api.v1.jobs import router as jobs_router


def _mount(parent: APIRouter) -> APIRouter:
    parent.include_router(health_router, tags=["health"])
    parent.include_router(info_router, tags=["info"])
    parent.include_router(downloads_router, tags=["downloads"])
    parent.include_router(bulk_router, tags=["bulk"])
    parent.include_router(mixsets_router, tags=["mixsets"])
    parent.include_router(waveforms_router, tags=["waveforms"])
    parent.include_router(jobs_router, tags=["jobs"])
    return parent


v1_router = _mount(APIRouter(prefix="/api/v1"))

# Compatibility shim: the same endpoints at the paths the web client uses
# (/api/download, /api/progress/{id}, /api/file/{id}, ...)
compat_router = _mount(APIRouter(prefix="/api", include_in_schema=False))
