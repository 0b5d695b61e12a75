from __future__ import annotations

import pytest

from archreview.catalog import BUILTIN_MODELS, CUSTOM_PRIORITY_BASE, DEFAULT_MODEL
from archreview.model_config import ModelConfigManager


def _default_count(manager: ModelConfigManager) -> int:
    return sum(1 for config in manager.get_all_configs() if config.is_default)


def test_builtin_models_are_registered_in_catalog_order() -> None:
    manager = ModelConfigManager()

    configs = manager.get_all_configs()
    assert [config.model_id for config in configs] == list(BUILTIN_MODELS)
    assert [config.priority for config in configs] == [1, 2, 3]
    for model_id in BUILTIN_MODELS:
        config = manager.get_model_config(model_id)
        assert config is not None
        assert config.is_custom is False
        assert config.enabled is True
    assert manager.get_default_model() == DEFAULT_MODEL
    assert _default_count(manager) == 1


def test_get_model_config_returns_none_for_unknown_id() -> None:
    assert ModelConfigManager().get_model_config("gpt-unknown") is None


def test_get_all_configs_is_stable_without_mutation() -> None:
    manager = ModelConfigManager()
    manager.add_custom_model("local-qwen", "Local Qwen")

    first = [config.model_dump_json(by_alias=True) for config in manager.get_all_configs()]
    second = [config.model_dump_json(by_alias=True) for config in manager.get_all_configs()]
    assert first == second


def test_returned_configs_are_copies() -> None:
    manager = ModelConfigManager()
    config = manager.get_model_config("kimi-k2")
    assert config is not None
    config.enabled = False

    assert manager.is_model_enabled("kimi-k2") is True


def test_add_custom_model_defaults_and_priority() -> None:
    manager = ModelConfigManager()

    created = manager.add_custom_model("x", "Model X", "desc", "Acme")
    assert created is not None

    config = manager.get_model_config("x")
    assert config is not None
    assert config.is_custom is True
    assert config.enabled is True
    assert config.is_default is False
    builtin_priorities = [c.priority for c in manager.get_all_configs() if not c.is_custom]
    assert config.priority > max(builtin_priorities)
    assert config.priority == CUSTOM_PRIORITY_BASE

    second = manager.add_custom_model("y", "Model Y")
    assert second is not None
    assert second.priority == CUSTOM_PRIORITY_BASE + 1
    assert second.provider == "Custom"


def test_add_custom_model_rejects_duplicate_ids() -> None:
    manager = ModelConfigManager()

    assert manager.add_custom_model("kimi-k2", "Shadow Kimi") is None
    assert manager.add_custom_model("x", "Model X") is not None
    assert manager.add_custom_model("x", "Model X again") is None
    assert manager.get_model_config("x").name == "Model X"


def test_add_custom_model_accepts_api_config_mapping() -> None:
    manager = ModelConfigManager()

    created = manager.add_custom_model(
        "x",
        "Model X",
        api_config={"endpoint": "https://llm.example/v1/chat", "apiKey": "secret-key", "apiVersion": "2024-06-01"},
    )
    assert created is not None
    assert created.api_config is not None
    assert created.api_config.endpoint == "https://llm.example/v1/chat"
    assert created.api_config.api_key == "secret-key"
    assert created.api_config.api_version == "2024-06-01"


def test_set_default_model_on_disabled_model_fails_and_keeps_previous_default() -> None:
    manager = ModelConfigManager()
    assert manager.set_model_enabled("deepseek-r1", False)

    assert manager.set_default_model("deepseek-r1") is False
    assert manager.get_default_model() == "kimi-k2"
    assert manager.get_model_config("kimi-k2").is_default is True
    assert _default_count(manager) == 1


def test_set_default_model_on_unknown_model_fails() -> None:
    manager = ModelConfigManager()
    assert manager.set_default_model("nope") is False
    assert manager.get_default_model() == "kimi-k2"


def test_set_default_model_moves_flag() -> None:
    manager = ModelConfigManager()

    assert manager.set_default_model("deepseek-r1") is True
    assert manager.get_default_model() == "deepseek-r1"
    assert manager.get_model_config("kimi-k2").is_default is False
    assert _default_count(manager) == 1


def test_disabling_default_reassigns_before_disable() -> None:
    manager = ModelConfigManager()

    assert manager.set_model_enabled("kimi-k2", False) is True

    assert manager.get_default_model() != "kimi-k2"
    assert manager.get_default_model() == "doubao-seed"
    assert manager.get_model_config("doubao-seed").is_default is True
    assert manager.get_model_config("kimi-k2").is_default is False
    assert _default_count(manager) == 1


def test_disabling_last_enabled_model_leaves_no_default() -> None:
    manager = ModelConfigManager()
    manager.set_model_enabled("doubao-seed", False)
    manager.set_model_enabled("deepseek-r1", False)

    assert manager.set_model_enabled("kimi-k2", False) is True
    assert _default_count(manager) == 0
    assert manager.get_enabled_models() == []
    assert manager.get_default_model() == DEFAULT_MODEL


def test_enabling_into_registry_without_default_restores_one() -> None:
    manager = ModelConfigManager()
    for model_id in BUILTIN_MODELS:
        manager.set_model_enabled(model_id, False)

    assert manager.set_model_enabled("deepseek-r1", True)
    assert manager.get_model_config("deepseek-r1").is_default is True
    assert _default_count(manager) == 1


def test_set_model_enabled_unknown_id_fails() -> None:
    assert ModelConfigManager().set_model_enabled("nope", True) is False


@pytest.mark.parametrize("model_id", list(BUILTIN_MODELS))
def test_delete_builtin_model_always_fails(model_id: str) -> None:
    manager = ModelConfigManager()
    assert manager.delete_custom_model(model_id) is False
    manager.set_model_enabled(model_id, False)
    assert manager.delete_custom_model(model_id) is False
    assert manager.get_model_config(model_id) is not None


def test_delete_custom_model() -> None:
    manager = ModelConfigManager()
    manager.add_custom_model("x", "Model X")

    assert manager.delete_custom_model("x") is True
    assert manager.get_model_config("x") is None
    assert manager.delete_custom_model("x") is False


def test_delete_default_custom_model_reassigns_default() -> None:
    manager = ModelConfigManager()
    manager.add_custom_model("x", "Model X")
    assert manager.set_default_model("x")

    assert manager.delete_custom_model("x") is True
    assert manager.get_default_model() == "doubao-seed"
    assert _default_count(manager) == 1


def test_update_model_config_merges_and_refreshes_timestamp() -> None:
    manager = ModelConfigManager()
    before = manager.get_model_config("kimi-k2")

    updated = manager.update_model_config("kimi-k2", description="Updated description", priority=7)
    assert updated is not None
    assert updated.description == "Updated description"
    assert updated.priority == 7
    assert updated.name == before.name
    assert updated.last_updated >= before.last_updated
    assert manager.get_all_configs()[-1].model_id == "kimi-k2"


def test_update_model_config_unknown_id_returns_none() -> None:
    assert ModelConfigManager().update_model_config("nope", name="x") is None


def test_update_model_config_rejects_identity_fields() -> None:
    manager = ModelConfigManager()
    with pytest.raises(TypeError):
        manager.update_model_config("kimi-k2", model_id="other")


def test_update_model_config_routes_flags_through_invariants() -> None:
    manager = ModelConfigManager()

    updated = manager.update_model_config("kimi-k2", enabled=False)
    assert updated is not None
    assert updated.enabled is False
    assert updated.is_default is False
    assert _default_count(manager) == 1

    assert manager.update_model_config("kimi-k2", is_default=True) is None
    updated = manager.update_model_config("deepseek-r1", is_default=True)
    assert updated is not None and updated.is_default is True
    assert _default_count(manager) == 1


def test_update_model_config_cannot_clear_only_enabled_default() -> None:
    manager = ModelConfigManager()
    manager.set_model_enabled("doubao-seed", False)
    manager.set_model_enabled("deepseek-r1", False)

    assert manager.update_model_config("kimi-k2", is_default=False) is None
    assert manager.get_enabled_models() == ["kimi-k2"]
    assert manager.get_model_config("kimi-k2").is_default is True
    assert _default_count(manager) == 1


def test_update_model_config_clearing_default_hands_it_over() -> None:
    manager = ModelConfigManager()

    updated = manager.update_model_config("kimi-k2", is_default=False)
    assert updated is not None and updated.is_default is False
    assert manager.get_default_model() == "doubao-seed"
    assert _default_count(manager) == 1


def test_update_model_config_rejects_api_config_on_builtin() -> None:
    manager = ModelConfigManager()

    result = manager.update_model_config(
        "kimi-k2", api_config={"endpoint": "https://other.example/chat", "apiKey": "k"}
    )
    assert result is None
    assert manager.get_model_config("kimi-k2").api_config is None

    manager.add_custom_model("x", "Model X")
    updated = manager.update_model_config("x", api_config={"endpoint": "https://x.example/chat"})
    assert updated is not None
    assert updated.api_config.endpoint == "https://x.example/chat"


def test_default_count_invariant_across_mixed_operations() -> None:
    manager = ModelConfigManager()
    operations = [
        lambda: manager.add_custom_model("a", "A"),
        lambda: manager.set_default_model("a"),
        lambda: manager.set_model_enabled("a", False),
        lambda: manager.set_model_enabled("doubao-seed", False),
        lambda: manager.set_default_model("deepseek-r1"),
        lambda: manager.delete_custom_model("a"),
        lambda: manager.set_model_enabled("deepseek-r1", False),
        lambda: manager.set_model_enabled("kimi-k2", False),
        lambda: manager.set_model_enabled("doubao-seed", True),
    ]
    for operation in operations:
        operation()
        assert _default_count(manager) in (0, 1)
        enabled_defaults = [c for c in manager.get_all_configs() if c.enabled and c.is_default]
        if manager.get_enabled_models():
            assert len(enabled_defaults) == 1


def test_run_config_checks_reports_state() -> None:
    manager = ModelConfigManager()
    checks = {check["name"]: check for check in manager.run_config_checks()}
    assert checks["registry_initialized"]["status"] == "pass"
    assert checks["default_model"]["status"] == "pass"
    assert checks["enabled_models"]["status"] == "pass"
    assert checks["builtin_models"]["status"] == "pass"
    assert checks["custom_models"]["status"] == "info"

    for model_id in BUILTIN_MODELS:
        manager.set_model_enabled(model_id, False)
    checks = {check["name"]: check for check in manager.run_config_checks()}
    assert checks["enabled_models"]["status"] == "fail"


def test_camel_case_serialization() -> None:
    manager = ModelConfigManager()
    payload = manager.get_model_config("kimi-k2").model_dump(by_alias=True, exclude_none=True)
    assert payload["modelId"] == "kimi-k2"
    assert payload["isDefault"] is True
    assert payload["isCustom"] is False
    assert "lastUpdated" in payload
    assert "apiConfig" not in payload
