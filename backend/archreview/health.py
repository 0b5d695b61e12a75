from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
import threading
import time
from typing import Callable

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from archreview.config import Settings
from archreview.llm_client import (
    CustomEndpointClient,
    HealthErrorCode,
    LLMClient,
    LLMInvocationError,
    custom_endpoint_error_code,
    error_code_for_status,
)
from archreview.model_config import ModelConfig, ModelConfigManager, utc_now_iso
from archreview.observability import redact_text

logger = logging.getLogger("archreview.health")

PROBE_PROMPT = "Hello. Reply with the single sentence: model available."
PROBE_TEMPERATURE = 0.1
BATCH_FAILURE_MESSAGE = "Health check failed"

ERROR_MESSAGES: dict[HealthErrorCode, str] = {
    HealthErrorCode.INSUFFICIENT_QUOTA: "AI service quota exhausted; upgrade the service plan.",
    HealthErrorCode.NETWORK_ERROR: "Network connection failed; check network settings.",
    HealthErrorCode.TIMEOUT_ERROR: "Model response timed out.",
    HealthErrorCode.AUTH_ERROR: "API authentication failed; check the credentials.",
    HealthErrorCode.MODEL_NOT_FOUND: "Model does not exist or is not configured.",
    HealthErrorCode.SERVER_ERROR: "AI service temporarily unavailable; retry later.",
    HealthErrorCode.RATE_LIMIT: "Too many requests; retry later.",
    HealthErrorCode.CONFIG_ERROR: "AI service configuration error.",
    HealthErrorCode.NO_API_ENDPOINT: "No API endpoint configured for this model.",
    HealthErrorCode.INVALID_RESPONSE: "Model endpoint returned an invalid response.",
    HealthErrorCode.API_ERROR: "Model endpoint rejected the request.",
    HealthErrorCode.UNKNOWN_ERROR: "Unknown error.",
}

# Checked in order; the first rule with a matching fragment wins.
_MESSAGE_RULES: tuple[tuple[HealthErrorCode, tuple[str, ...]], ...] = (
    (HealthErrorCode.INSUFFICIENT_QUOTA, ("insufficient_quota", "insufficient quota", "quota exceeded", "upgrade your plan")),
    (HealthErrorCode.NETWORK_ERROR, ("econnrefused", "enotfound", "connection refused", "name or service not known")),
    (HealthErrorCode.TIMEOUT_ERROR, ("timeout", "timed out")),
    (HealthErrorCode.AUTH_ERROR, ("401", "403", "unauthorized", "authentication failed", "forbidden")),
    (HealthErrorCode.MODEL_NOT_FOUND, ("404", "model not found", "does not exist")),
    (HealthErrorCode.SERVER_ERROR, ("500", "502", "503")),
    (HealthErrorCode.RATE_LIMIT, ("429", "rate limit")),
    (HealthErrorCode.CONFIG_ERROR, ("config",)),
)


class ModelHealthStatus(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())

    model_id: str
    name: str
    available: bool
    last_checked: str
    error: str | None = None
    error_code: HealthErrorCode | None = None
    error_details: str | None = None
    response_time: int | None = None
    is_custom: bool = False


def classify_message(message: str) -> HealthErrorCode:
    lowered = message.lower()
    for code, fragments in _MESSAGE_RULES:
        if any(fragment in lowered for fragment in fragments):
            return code
    return HealthErrorCode.UNKNOWN_ERROR


def classify_error(exc: BaseException) -> HealthErrorCode:
    """Map a probe failure to an error code, preferring structured data over message text."""
    if isinstance(exc, LLMInvocationError):
        if exc.reason is not None:
            return exc.reason
        if exc.status_code is not None:
            return error_code_for_status(exc.status_code)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return HealthErrorCode.TIMEOUT_ERROR
    return classify_message(str(exc))


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


def _error_details(exc: BaseException) -> str:
    text = str(exc) or exc.__class__.__name__
    return redact_text(f"{exc.__class__.__name__}: {text}", max_length=1000)


class ModelHealthChecker:
    def __init__(
        self,
        config_manager: ModelConfigManager,
        llm_client: LLMClient,
        *,
        settings: Settings,
        custom_client: CustomEndpointClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._configs = config_manager
        self._llm_client = llm_client
        self._settings = settings
        self._custom_client = custom_client or CustomEndpointClient()
        self._clock = clock
        self._cache: dict[str, tuple[ModelHealthStatus, float]] = {}
        self._cache_lock = threading.Lock()

    async def check_model_health(self, model_id: str) -> ModelHealthStatus:
        started = time.perf_counter()
        checked_at = utc_now_iso()
        builtin = self._configs.get_builtin(model_id)
        config = self._configs.get_model_config(model_id)

        logger.info("model_health_check_started", extra={"event": "model_health_check_started", "model_id": model_id})

        if builtin is not None:
            name = config.name if config is not None else builtin.name
            try:
                await asyncio.wait_for(
                    self._llm_client.invoke(
                        [{"role": "user", "content": PROBE_PROMPT}],
                        model=builtin.provider_model_id,
                        temperature=PROBE_TEMPERATURE,
                    ),
                    timeout=self._settings.health_check_timeout_seconds,
                )
            except Exception as exc:
                return self._failure(model_id, name, checked_at, started, classify_error(exc), exc, is_custom=False)
            return self._success(model_id, name, checked_at, started, is_custom=False)

        if config is None:
            return self._failure(
                model_id,
                model_id,
                checked_at,
                started,
                HealthErrorCode.MODEL_NOT_FOUND,
                None,
                is_custom=False,
            )
        return await self._check_custom_model(config, checked_at, started)

    async def _check_custom_model(self, config: ModelConfig, checked_at: str, started: float) -> ModelHealthStatus:
        api_config = config.api_config
        if api_config is None or not api_config.endpoint.strip():
            return self._failure(
                config.model_id,
                config.name,
                checked_at,
                started,
                HealthErrorCode.NO_API_ENDPOINT,
                None,
                is_custom=True,
            )

        timeout = self._settings.health_check_timeout_seconds
        try:
            await asyncio.wait_for(
                self._custom_client.chat(
                    endpoint=api_config.endpoint.strip(),
                    model=api_config.model or config.model_id,
                    messages=[{"role": "user", "content": PROBE_PROMPT}],
                    max_tokens=self._settings.custom_probe_max_tokens,
                    api_key=api_config.api_key,
                    api_version=api_config.api_version,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except LLMInvocationError as exc:
            # Custom endpoints are classified by HTTP status alone when one was received.
            if exc.status_code is not None and exc.reason is not HealthErrorCode.INVALID_RESPONSE:
                code = custom_endpoint_error_code(exc.status_code)
            else:
                code = classify_error(exc)
            return self._failure(config.model_id, config.name, checked_at, started, code, exc, is_custom=True)
        except Exception as exc:
            return self._failure(
                config.model_id, config.name, checked_at, started, classify_error(exc), exc, is_custom=True
            )
        return self._success(config.model_id, config.name, checked_at, started, is_custom=True)

    def _success(self, model_id: str, name: str, checked_at: str, started: float, *, is_custom: bool) -> ModelHealthStatus:
        status = ModelHealthStatus(
            model_id=model_id,
            name=name,
            available=True,
            last_checked=checked_at,
            response_time=_elapsed_ms(started),
            is_custom=is_custom,
        )
        logger.info(
            "model_health_check_passed",
            extra={
                "event": "model_health_check_passed",
                "model_id": model_id,
                "response_time_ms": status.response_time,
            },
        )
        return status

    def _failure(
        self,
        model_id: str,
        name: str,
        checked_at: str,
        started: float,
        code: HealthErrorCode,
        exc: BaseException | None,
        *,
        is_custom: bool,
    ) -> ModelHealthStatus:
        message = ERROR_MESSAGES[code]
        if code is HealthErrorCode.UNKNOWN_ERROR and exc is not None and str(exc):
            message = redact_text(str(exc))
        status = ModelHealthStatus(
            model_id=model_id,
            name=name,
            available=False,
            last_checked=checked_at,
            error=message,
            error_code=code,
            error_details=_error_details(exc) if exc is not None else None,
            response_time=_elapsed_ms(started),
            is_custom=is_custom,
        )
        logger.warning(
            "model_health_check_failed",
            extra={
                "event": "model_health_check_failed",
                "model_id": model_id,
                "error_code": code.value,
                "error": status.error_details or message,
                "response_time_ms": status.response_time,
            },
        )
        return status

    def _model_ids(self) -> list[str]:
        model_ids = list(self._configs.builtin_ids)
        for config in self._configs.get_all_configs():
            if config.model_id not in model_ids:
                model_ids.append(config.model_id)
        return model_ids

    def _display_name(self, model_id: str) -> str:
        config = self._configs.get_model_config(model_id)
        if config is not None:
            return config.name
        builtin = self._configs.get_builtin(model_id)
        return builtin.name if builtin is not None else model_id

    async def check_all_models_health(self) -> list[ModelHealthStatus]:
        model_ids = self._model_ids()
        logger.info(
            "model_health_batch_started",
            extra={"event": "model_health_batch_started", "model_count": len(model_ids)},
        )
        try:
            results = list(await asyncio.gather(*(self.check_model_health(model_id) for model_id in model_ids)))
        except Exception as exc:
            logger.exception(
                "model_health_batch_failed",
                extra={"event": "model_health_batch_failed", "error": str(exc)},
            )
            checked_at = utc_now_iso()
            return [
                ModelHealthStatus(
                    model_id=model_id,
                    name=self._display_name(model_id),
                    available=False,
                    last_checked=checked_at,
                    error=BATCH_FAILURE_MESSAGE,
                    error_code=HealthErrorCode.UNKNOWN_ERROR,
                    error_details=_error_details(exc),
                    is_custom=not self._configs.is_builtin(model_id),
                )
                for model_id in model_ids
            ]

        timestamp = self._clock()
        with self._cache_lock:
            for status in results:
                self._cache[status.model_id] = (status, timestamp)

        logger.info(
            "model_health_batch_completed",
            extra={
                "event": "model_health_batch_completed",
                "total": len(results),
                "available": sum(1 for status in results if status.available),
            },
        )
        return [status.model_copy() for status in results]

    async def get_model_health_status(self, model_id: str, use_cache: bool = True) -> ModelHealthStatus:
        if use_cache:
            with self._cache_lock:
                cached = self._cache.get(model_id)
            if cached is not None and self._clock() - cached[1] < self._settings.health_cache_ttl_seconds:
                return cached[0].model_copy()

        status = await self.check_model_health(model_id)
        with self._cache_lock:
            self._cache[model_id] = (status, self._clock())
        return status.model_copy()

    async def get_available_models(self) -> list[str]:
        return [status.model_id for status in await self.check_all_models_health() if status.available]

    async def are_models_available(self, model_ids: list[str]) -> dict[str, bool]:
        results: dict[str, bool] = {}
        for model_id in model_ids:
            status = await self.get_model_health_status(model_id)
            results[model_id] = status.available
        return results

    def get_health_summary(self) -> dict[str, object]:
        with self._cache_lock:
            entries = list(self._cache.values())
        summary: dict[str, object] = {
            "total": len(entries),
            "available": sum(1 for status, _ in entries if status.available),
            "unavailable": sum(1 for status, _ in entries if not status.available),
        }
        if entries:
            latest = max(timestamp for _, timestamp in entries)
            summary["lastChecked"] = datetime.fromtimestamp(latest, tz=timezone.utc).isoformat()
        return summary

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()
        logger.info("model_health_cache_cleared", extra={"event": "model_health_cache_cleared"})
