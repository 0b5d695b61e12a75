from __future__ import annotations

from datetime import datetime, timezone
import logging
import threading
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from archreview.catalog import (
    BUILTIN_MODELS,
    CUSTOM_PRIORITY_BASE,
    CUSTOM_PROVIDER_LABEL,
    DEFAULT_MODEL,
    BuiltinModel,
)

logger = logging.getLogger("archreview.models")

_DESCRIPTIVE_FIELDS = {"name", "description", "provider", "priority", "api_config"}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ApiConfig(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    endpoint: str = ""
    api_key: str | None = None
    api_version: str | None = None
    model: str | None = None


class ModelConfig(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())

    model_id: str
    name: str
    description: str = ""
    provider: str = ""
    enabled: bool = True
    is_default: bool = False
    priority: int
    last_updated: str = Field(default_factory=utc_now_iso)
    is_custom: bool = False
    api_config: ApiConfig | None = None


class ModelConfigManager:
    """In-memory registry of built-in and custom model configurations.

    Every operation that cannot proceed returns ``None``/``False`` instead of raising; the
    HTTP layer turns those into 4xx responses. State lives for the lifetime of the object.
    """

    def __init__(
        self,
        *,
        default_model: str = DEFAULT_MODEL,
        catalog: Mapping[str, BuiltinModel] | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._catalog = dict(catalog if catalog is not None else BUILTIN_MODELS)
        self._fallback_model_id = default_model
        self._configs: dict[str, ModelConfig] = {}
        self._next_custom_priority = max(CUSTOM_PRIORITY_BASE, len(self._catalog) + 1)
        self._initialize_configs(default_model)

    def _initialize_configs(self, default_model: str) -> None:
        if default_model not in self._catalog and self._catalog:
            default_model = next(iter(self._catalog))
        now = utc_now_iso()
        for index, model in enumerate(self._catalog.values(), start=1):
            self._configs[model.id] = ModelConfig(
                model_id=model.id,
                name=model.name,
                description=model.description,
                provider=model.provider,
                enabled=True,
                is_default=model.id == default_model,
                priority=index,
                last_updated=now,
            )
        logger.info(
            "model_configs_initialized",
            extra={
                "event": "model_configs_initialized",
                "model_ids": list(self._configs),
                "default_model": default_model,
            },
        )

    @property
    def builtin_ids(self) -> list[str]:
        return list(self._catalog)

    def is_builtin(self, model_id: str) -> bool:
        return model_id in self._catalog

    def get_builtin(self, model_id: str) -> BuiltinModel | None:
        return self._catalog.get(model_id)

    def get_all_configs(self) -> list[ModelConfig]:
        with self._lock:
            ordered = sorted(self._configs.values(), key=lambda config: (config.priority, config.model_id))
            return [config.model_copy(deep=True) for config in ordered]

    def get_model_config(self, model_id: str) -> ModelConfig | None:
        with self._lock:
            config = self._configs.get(model_id)
            return config.model_copy(deep=True) if config is not None else None

    def get_enabled_models(self) -> list[str]:
        return [config.model_id for config in self.get_all_configs() if config.enabled]

    def is_model_enabled(self, model_id: str) -> bool:
        with self._lock:
            config = self._configs.get(model_id)
            return bool(config and config.enabled)

    def _touch(self, config: ModelConfig, **changes: Any) -> None:
        for key, value in changes.items():
            setattr(config, key, value)
        config.last_updated = utc_now_iso()

    def _first_other_enabled(self, model_id: str) -> ModelConfig | None:
        for config in sorted(self._configs.values(), key=lambda item: (item.priority, item.model_id)):
            if config.enabled and config.model_id != model_id:
                return config
        return None

    def _move_default(self, target: ModelConfig) -> None:
        for config in self._configs.values():
            if config.is_default and config.model_id != target.model_id:
                self._touch(config, is_default=False)
        if not target.is_default:
            self._touch(target, is_default=True)

    def _release_default(self, config: ModelConfig) -> str | None:
        """Hand the default flag to the first other enabled config; returns its id."""
        replacement = self._first_other_enabled(config.model_id)
        if replacement is not None:
            self._move_default(replacement)
            return replacement.model_id
        self._touch(config, is_default=False)
        return None

    def set_default_model(self, model_id: str) -> bool:
        with self._lock:
            config = self._configs.get(model_id)
            if config is None or not config.enabled:
                logger.warning(
                    "default_model_rejected",
                    extra={
                        "event": "default_model_rejected",
                        "model_id": model_id,
                        "reason": "unknown" if config is None else "disabled",
                    },
                )
                return False
            self._move_default(config)
        logger.info("default_model_set", extra={"event": "default_model_set", "model_id": model_id})
        return True

    def set_model_enabled(self, model_id: str, enabled: bool) -> bool:
        with self._lock:
            config = self._configs.get(model_id)
            if config is None:
                return False

            replacement: str | None = None
            if not enabled and config.is_default:
                replacement = self._release_default(config)
            self._touch(config, enabled=enabled)

            # Re-enabling into a registry with no enabled default restores the invariant.
            if enabled and not any(item.is_default and item.enabled for item in self._configs.values()):
                self._move_default(config)

        logger.info(
            "model_enabled_changed",
            extra={
                "event": "model_enabled_changed",
                "model_id": model_id,
                "enabled": enabled,
                "reassigned_default": replacement,
            },
        )
        return True

    def add_custom_model(
        self,
        model_id: str,
        name: str,
        description: str = "",
        provider: str = CUSTOM_PROVIDER_LABEL,
        api_config: ApiConfig | Mapping[str, Any] | None = None,
    ) -> ModelConfig | None:
        if isinstance(api_config, Mapping):
            api_config = ApiConfig.model_validate(api_config)

        with self._lock:
            if model_id in self._configs:
                logger.warning(
                    "custom_model_duplicate",
                    extra={"event": "custom_model_duplicate", "model_id": model_id},
                )
                return None
            config = ModelConfig(
                model_id=model_id,
                name=name,
                description=description,
                provider=provider or CUSTOM_PROVIDER_LABEL,
                enabled=True,
                is_default=False,
                priority=self._next_custom_priority,
                is_custom=True,
                api_config=api_config,
            )
            self._next_custom_priority += 1
            self._configs[model_id] = config
            created = config.model_copy(deep=True)

        logger.info(
            "custom_model_added",
            extra={
                "event": "custom_model_added",
                "model_id": model_id,
                "priority": created.priority,
                "has_endpoint": bool(api_config and api_config.endpoint),
            },
        )
        return created

    def delete_custom_model(self, model_id: str) -> bool:
        with self._lock:
            config = self._configs.get(model_id)
            if config is None or not config.is_custom or model_id in self._catalog:
                return False
            replacement: str | None = None
            if config.is_default:
                replacement = self._release_default(config)
            del self._configs[model_id]

        logger.info(
            "custom_model_deleted",
            extra={"event": "custom_model_deleted", "model_id": model_id, "reassigned_default": replacement},
        )
        return True

    def update_model_config(self, model_id: str, **updates: Any) -> ModelConfig | None:
        """Merge ``updates`` into a config.

        ``enabled`` and ``is_default`` go through the same paths as
        :meth:`set_model_enabled` and :meth:`set_default_model` so the default invariant holds.
        Returns ``None`` when the update would leave an enabled registry without a default,
        or when ``api_config`` targets a built-in model.
        """
        enabled = updates.pop("enabled", None)
        is_default = updates.pop("is_default", None)
        unknown = set(updates) - _DESCRIPTIVE_FIELDS
        if unknown:
            raise TypeError(f"Unsupported model config fields: {sorted(unknown)}")

        with self._lock:
            config = self._configs.get(model_id)
            if config is None:
                return None
            if is_default and enabled is False:
                return None
            if is_default and enabled is None and not config.enabled:
                return None
            # Clearing the flag needs another enabled config to take it over.
            if (
                is_default is False
                and config.is_default
                and enabled is not False
                and self._first_other_enabled(model_id) is None
            ):
                return None
            if "api_config" in updates and not config.is_custom:
                return None

            api_config = updates.get("api_config")
            if isinstance(api_config, Mapping):
                updates["api_config"] = ApiConfig.model_validate(api_config)
            if updates:
                self._touch(config, **updates)
            if enabled is not None:
                self.set_model_enabled(model_id, bool(enabled))
            if is_default:
                self.set_default_model(model_id)
            elif is_default is False and config.is_default:
                self._release_default(config)
            updated = config.model_copy(deep=True)

        logger.info(
            "model_config_updated",
            extra={"event": "model_config_updated", "model_id": model_id, "fields": sorted(updates)},
        )
        return updated

    def get_default_model(self) -> str:
        configs = self.get_all_configs()
        for config in configs:
            if config.is_default and config.enabled:
                return config.model_id
        for config in configs:
            if config.enabled:
                return config.model_id
        return self._fallback_model_id

    def run_config_checks(self) -> list[dict[str, str]]:
        """Self-diagnostics over the registry, one entry per check."""
        checks: list[dict[str, str]] = []
        configs = self.get_all_configs()

        if not configs:
            checks.append(
                {"name": "registry_initialized", "status": "fail", "message": "No model configurations are loaded."}
            )
        else:
            checks.append(
                {
                    "name": "registry_initialized",
                    "status": "pass",
                    "message": f"Registry holds {len(configs)} model(s).",
                }
            )

        default_model = self.get_default_model()
        default_config = next((config for config in configs if config.model_id == default_model), None)
        if default_config is None:
            checks.append(
                {
                    "name": "default_model",
                    "status": "fail",
                    "message": f"Default model '{default_model}' has no configuration.",
                }
            )
        else:
            checks.append(
                {
                    "name": "default_model",
                    "status": "pass",
                    "message": f"Default model: {default_config.name} ({default_model}).",
                }
            )

        enabled = [config for config in configs if config.enabled]
        if enabled:
            checks.append(
                {"name": "enabled_models", "status": "pass", "message": f"{len(enabled)} model(s) enabled."}
            )
        else:
            checks.append({"name": "enabled_models", "status": "fail", "message": "No models are enabled."})

        builtin_count = sum(1 for config in configs if not config.is_custom)
        if builtin_count < len(self._catalog):
            checks.append(
                {
                    "name": "builtin_models",
                    "status": "warn",
                    "message": f"Built-in models missing (have {builtin_count}, expected {len(self._catalog)}).",
                }
            )
        else:
            checks.append(
                {
                    "name": "builtin_models",
                    "status": "pass",
                    "message": f"All built-in models configured ({builtin_count}).",
                }
            )

        custom_count = len(configs) - builtin_count
        checks.append(
            {
                "name": "custom_models",
                "status": "pass" if custom_count else "info",
                "message": f"{custom_count} custom model(s) configured."
                if custom_count
                else "No custom models configured.",
            }
        )
        return checks
