from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BuiltinModel:
    id: str
    name: str
    description: str
    provider_model_id: str
    provider: str


# Catalog order defines built-in priorities 1..N.
BUILTIN_MODELS: dict[str, BuiltinModel] = {
    "doubao-seed": BuiltinModel(
        id="doubao-seed",
        name="Doubao Seed Thinking",
        description=(
            "Reasoning-enhanced model from ByteDance with deep-thinking mode, "
            "suited to complex tasks and professional analysis."
        ),
        provider_model_id="doubao-seed-1-6-thinking-250715",
        provider="ByteDance",
    ),
    "kimi-k2": BuiltinModel(
        id="kimi-k2",
        name="Kimi K2",
        description="Long-context model from Moonshot AI, suited to long document analysis.",
        provider_model_id="kimi-k2-250905",
        provider="Moonshot AI",
    ),
    "deepseek-r1": BuiltinModel(
        id="deepseek-r1",
        name="DeepSeek R1",
        description="Reasoning-reinforced model from DeepSeek, suited to complex logical review.",
        provider_model_id="deepseek-r1-250528",
        provider="DeepSeek",
    ),
}

DEFAULT_MODEL = "kimi-k2"
CUSTOM_PRIORITY_BASE = 100
CUSTOM_PROVIDER_LABEL = "Custom"
