from __future__ import annotations

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from archreview import APP_VERSION
from archreview.api.services import ConfigManagerGetter
from archreview.config import settings

_READY_CACHE_TTL_SECONDS = 30.0


def build_system_router(*, get_config_manager: ConfigManagerGetter) -> APIRouter:
    router = APIRouter()
    ready_cache: dict[str, object] = {"ts": 0.0, "ok": None, "payload": None}

    def cache_set(ok: bool, payload: dict[str, object]) -> None:
        ready_cache["ts"] = time.time()
        ready_cache["ok"] = ok
        ready_cache["payload"] = payload

    def cache_get() -> dict[str, object] | None:
        ts = float(ready_cache.get("ts") or 0.0)
        if time.time() - ts > _READY_CACHE_TTL_SECONDS:
            return None
        payload = ready_cache.get("payload")
        return payload if isinstance(payload, dict) else None

    @router.get("/")
    def root() -> dict[str, str]:
        return {"service": "archreview-backend", "status": "running", "version": APP_VERSION}

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "environment": settings.app_env}

    @router.get("/ready", response_model=None)
    def ready() -> JSONResponse:
        cached = cache_get()
        if cached is not None:
            return JSONResponse(status_code=200 if ready_cache.get("ok") else 503, content=cached)

        checks = get_config_manager().run_config_checks()
        ok = all(check["status"] != "fail" for check in checks)
        payload: dict[str, object] = {
            "status": "ready" if ok else "not_ready",
            "environment": settings.app_env,
            "checks": checks,
        }
        cache_set(ok, payload)
        return JSONResponse(status_code=200 if ok else 503, content=payload)

    return router
