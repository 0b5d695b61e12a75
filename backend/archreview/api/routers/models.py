from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from archreview.api.contracts import CustomModelCreateRequest, ModelActionRequest
from archreview.api.services import (
    ConfigManagerGetter,
    HealthCheckerGetter,
    merge_config_with_health,
    serialize_config,
    serialize_health,
)
from archreview.auth import require_admin
from archreview.catalog import CUSTOM_PROVIDER_LABEL
from archreview.model_config import utc_now_iso

logger = logging.getLogger("archreview.api")


def build_models_router(
    *,
    get_config_manager: ConfigManagerGetter,
    get_health_checker: HealthCheckerGetter,
) -> APIRouter:
    router = APIRouter()
    admin = APIRouter(prefix="/admin/models", dependencies=[Depends(require_admin)])

    @router.get("/models")
    def list_models() -> dict[str, object]:
        manager = get_config_manager()
        return {
            "models": [serialize_config(config) for config in manager.get_all_configs() if config.enabled],
            "defaultModel": manager.get_default_model(),
        }

    @router.get("/models/health")
    async def models_health(summary: bool = Query(default=False)) -> dict[str, object]:
        checker = get_health_checker()
        if summary:
            return checker.get_health_summary()

        statuses = await checker.check_all_models_health()
        available = [status.model_id for status in statuses if status.available]
        return {
            "models": [serialize_health(status) for status in statuses],
            "availableModels": available,
            "summary": {
                "total": len(statuses),
                "available": len(available),
                "unavailable": len(statuses) - len(available),
            },
        }

    @router.get("/models/{model_id}/health")
    async def model_health(model_id: str, use_cache: bool = Query(default=True)) -> dict[str, object]:
        if get_config_manager().get_model_config(model_id) is None:
            raise HTTPException(status_code=404, detail=f"Model '{model_id}' not found")
        status = await get_health_checker().get_model_health_status(model_id, use_cache=use_cache)
        return serialize_health(status)

    @admin.get("")
    async def admin_list_models() -> dict[str, object]:
        manager = get_config_manager()
        statuses = {status.model_id: status for status in await get_health_checker().check_all_models_health()}
        checked_at = utc_now_iso()
        return {
            "success": True,
            "models": [
                merge_config_with_health(config, statuses.get(config.model_id), checked_at)
                for config in manager.get_all_configs()
            ],
            "defaultModel": manager.get_default_model(),
        }

    @admin.post("")
    async def admin_test_model(payload: ModelActionRequest) -> dict[str, object]:
        if not payload.model_id:
            raise HTTPException(status_code=400, detail="modelId is required")
        if payload.action != "test":
            raise HTTPException(status_code=400, detail=f"Unsupported action: {payload.action or '<empty>'}")
        if get_config_manager().get_model_config(payload.model_id) is None:
            raise HTTPException(status_code=404, detail=f"Model '{payload.model_id}' not found")

        status = await get_health_checker().get_model_health_status(payload.model_id, use_cache=False)
        logger.info(
            "model_test_completed",
            extra={"event": "model_test_completed", "model_id": payload.model_id, "available": status.available},
        )
        return {
            "success": status.available,
            "message": "Model test succeeded" if status.available else status.error or "Model test failed",
            "healthStatus": serialize_health(status),
        }

    @admin.post("/config")
    def admin_update_model_config(payload: ModelActionRequest) -> dict[str, object]:
        if not payload.model_id or not payload.action:
            raise HTTPException(status_code=400, detail="modelId and action are required")

        manager = get_config_manager()
        if payload.action in {"enable", "disable"}:
            if not manager.set_model_enabled(payload.model_id, payload.action == "enable"):
                raise HTTPException(status_code=404, detail=f"Model '{payload.model_id}' not found")
        elif payload.action == "setDefault":
            if not manager.set_default_model(payload.model_id):
                raise HTTPException(
                    status_code=400,
                    detail="Cannot set default model; make sure the model exists and is enabled",
                )
        else:
            raise HTTPException(status_code=400, detail=f"Unsupported action: {payload.action}")

        logger.info(
            "model_config_action_applied",
            extra={"event": "model_config_action_applied", "model_id": payload.model_id, "action": payload.action},
        )
        return {
            "success": True,
            "configs": [serialize_config(config) for config in manager.get_all_configs()],
            "defaultModel": manager.get_default_model(),
        }

    @admin.post("/custom")
    def admin_add_custom_model(payload: CustomModelCreateRequest) -> dict[str, object]:
        model_id = payload.model_id.strip()
        name = payload.name.strip()
        if not model_id or not name:
            raise HTTPException(status_code=400, detail="modelId and name are required")

        created = get_config_manager().add_custom_model(
            model_id,
            name,
            payload.description,
            payload.provider.strip() or CUSTOM_PROVIDER_LABEL,
            payload.api_config,
        )
        if created is None:
            raise HTTPException(status_code=409, detail=f"Model '{model_id}' already exists")
        return {"success": True, "model": serialize_config(created)}

    @admin.delete("/custom")
    def admin_delete_custom_model(model_id: str = Query(default="", alias="modelId")) -> dict[str, object]:
        if not model_id:
            raise HTTPException(status_code=400, detail="modelId is required")
        if not get_config_manager().delete_custom_model(model_id):
            raise HTTPException(status_code=404, detail="Model not found or is a built-in model")
        return {"success": True}

    @admin.get("/health")
    async def admin_models_health() -> dict[str, object]:
        checks: list[dict[str, str]] = list(get_config_manager().run_config_checks())
        statuses = await get_health_checker().check_all_models_health()
        if statuses:
            available = sum(1 for status in statuses if status.available)
            checks.append(
                {
                    "name": "health_probe",
                    "status": "pass",
                    "message": f"{available}/{len(statuses)} model(s) available.",
                }
            )
        else:
            checks.append({"name": "health_probe", "status": "fail", "message": "Health probe returned no models."})

        passed = all(check["status"] != "fail" for check in checks)
        return {
            "success": passed,
            "checks": checks,
            "summary": {
                "total": len(checks),
                "passed": sum(1 for check in checks if check["status"] == "pass"),
                "failed": sum(1 for check in checks if check["status"] == "fail"),
                "warnings": sum(1 for check in checks if check["status"] == "warn"),
            },
        }

    router.include_router(admin)
    return router
