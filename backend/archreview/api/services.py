from __future__ import annotations

from typing import Callable

from archreview.health import ModelHealthChecker, ModelHealthStatus
from archreview.model_config import ModelConfig, ModelConfigManager
from archreview.observability import mask_secret
from archreview.review import AIReviewService

ConfigManagerGetter = Callable[[], ModelConfigManager]
HealthCheckerGetter = Callable[[], ModelHealthChecker]
ReviewServiceGetter = Callable[[], AIReviewService]


def serialize_config(config: ModelConfig) -> dict[str, object]:
    payload = config.model_dump(mode="json", by_alias=True, exclude_none=True)
    api_config = payload.get("apiConfig")
    if isinstance(api_config, dict) and api_config.get("apiKey"):
        api_config["apiKey"] = mask_secret(str(api_config["apiKey"]))
    return payload


def serialize_health(status: ModelHealthStatus) -> dict[str, object]:
    return status.model_dump(mode="json", by_alias=True, exclude_none=True)


def merge_config_with_health(
    config: ModelConfig,
    health: ModelHealthStatus | None,
    checked_at: str,
) -> dict[str, object]:
    payload = serialize_config(config)
    payload["available"] = health.available if health is not None else False
    payload["lastChecked"] = health.last_checked if health is not None else checked_at
    if health is not None:
        for key in ("error", "errorCode", "responseTime"):
            value = serialize_health(health).get(key)
            if value is not None:
                payload[key] = value
    return payload
