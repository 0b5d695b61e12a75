from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Sequence

from pydantic import BaseModel

from archreview.config import Settings
from archreview.llm_client import (
    CustomEndpointClient,
    HealthErrorCode,
    LLMClient,
    LLMInvocationError,
    LLMMessage,
    extract_chat_content,
)
from archreview.model_config import ModelConfigManager
from archreview.observability import redact_text
from archreview.prompts import SYSTEM_PROMPTS, Profession, build_user_prompt, get_profession

logger = logging.getLogger("archreview.review")

SEVERITIES = {"high", "medium", "low"}


class UnsupportedProfessionError(ValueError):
    """Raised for a profession key with no reviewer prompt."""


class ReviewParseError(ValueError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class ReviewItem(BaseModel):
    id: str
    description: str
    standard: str = ""
    suggestion: str = ""
    severity: str = "medium"
    display_order: int


class ReviewResult(BaseModel):
    profession: str
    ai_analysis: str
    review_items: list[ReviewItem]


class ReviewDiagnostic(BaseModel):
    code: str
    message: str


class ReviewOutcome(BaseModel):
    result: ReviewResult
    fallback: bool = False
    model_id: str | None = None
    diagnostic: ReviewDiagnostic | None = None


def extract_json_object(raw: str) -> str | None:
    """Greedy match from the first ``{`` to the last ``}``."""
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end <= start:
        return None
    return raw[start : end + 1]


def parse_review_payload(raw: str) -> dict[str, Any]:
    candidate = extract_json_object(raw)
    if candidate is None:
        raise ReviewParseError("no_json", "Model response did not contain a JSON object.")
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ReviewParseError("invalid_json", f"Model response contained malformed JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ReviewParseError("invalid_structure", "Model response JSON must be an object.")
    if not payload.get("ai_analysis"):
        raise ReviewParseError("invalid_structure", "Model response is missing ai_analysis.")
    if not isinstance(payload.get("review_items"), list):
        raise ReviewParseError("invalid_structure", "Model response review_items must be an array.")
    return payload


def normalize_review_items(profession: Profession, raw_items: list[Any]) -> list[ReviewItem]:
    items: list[ReviewItem] = []
    seen_ids: set[str] = set()
    for raw_item in raw_items:
        if not isinstance(raw_item, dict):
            continue
        index = len(items) + 1
        item_id = str(raw_item.get("id") or "").strip()
        if not item_id or item_id in seen_ids:
            item_id = f"{profession.id_prefix}_{index}"
            suffix = 1
            while item_id in seen_ids:
                suffix += 1
                item_id = f"{profession.id_prefix}_{index}_{suffix}"
        seen_ids.add(item_id)

        severity = str(raw_item.get("severity") or "medium").strip().lower()
        items.append(
            ReviewItem(
                id=item_id,
                description=str(raw_item.get("description") or "").strip(),
                standard=str(raw_item.get("standard") or "").strip(),
                suggestion=str(raw_item.get("suggestion") or "").strip(),
                severity=severity if severity in SEVERITIES else "medium",
                display_order=index,
            )
        )
    return items


def build_fallback_review(profession: Profession) -> ReviewResult:
    return ReviewResult(
        profession=profession.key,
        ai_analysis=(
            f"{profession.name} review: the AI analysis service is temporarily unavailable, so no detailed "
            "analysis could be produced. Review this discipline's design manually against the applicable "
            "national codes and standards."
        ),
        review_items=[
            ReviewItem(
                id=f"{profession.id_prefix}_1",
                description="AI review service is temporarily unavailable; manual review is recommended.",
                standard="Refer to the applicable national codes and standards.",
                suggestion="Ask an administrator to check the AI service status, or review this discipline manually.",
                severity="medium",
                display_order=1,
            )
        ],
    )


class AIReviewService:
    """Runs one reviewer prompt per profession against the selected model."""

    def __init__(
        self,
        config_manager: ModelConfigManager,
        llm_client: LLMClient,
        *,
        settings: Settings,
        custom_client: CustomEndpointClient | None = None,
    ) -> None:
        self._configs = config_manager
        self._llm_client = llm_client
        self._settings = settings
        self._custom_client = custom_client or CustomEndpointClient()

    def resolve_model_id(self, model_type: str | None) -> str:
        if model_type and self._configs.get_model_config(model_type) is not None:
            return model_type
        return self._configs.get_default_model()

    async def _invoke(self, model_id: str, messages: Sequence[LLMMessage]) -> str:
        builtin = self._configs.get_builtin(model_id)
        if builtin is not None:
            response = await self._llm_client.invoke(
                messages,
                model=builtin.provider_model_id,
                temperature=self._settings.review_temperature,
                thinking="enabled",
            )
            return response.content

        config = self._configs.get_model_config(model_id)
        api_config = config.api_config if config is not None else None
        if api_config is None or not api_config.endpoint.strip():
            raise LLMInvocationError(
                f"Model '{model_id}' has no API endpoint configured.", reason=HealthErrorCode.NO_API_ENDPOINT
            )
        payload = await self._custom_client.chat(
            endpoint=api_config.endpoint.strip(),
            model=api_config.model or model_id,
            messages=messages,
            max_tokens=self._settings.custom_review_max_tokens,
            api_key=api_config.api_key,
            api_version=api_config.api_version,
            timeout=self._settings.review_timeout_seconds,
        )
        return extract_chat_content(payload)

    async def review_profession(
        self,
        profession: str,
        report_summary: str,
        model_type: str | None = None,
    ) -> ReviewOutcome:
        discipline = get_profession(profession)
        if discipline is None:
            raise UnsupportedProfessionError(f"Unsupported profession: {profession}")

        model_id = self.resolve_model_id(model_type)
        messages: list[LLMMessage] = [
            {"role": "system", "content": SYSTEM_PROMPTS[discipline.key]},
            {"role": "user", "content": build_user_prompt(discipline, report_summary)},
        ]
        started = time.perf_counter()
        logger.info(
            "profession_review_started",
            extra={"event": "profession_review_started", "profession": discipline.key, "model_id": model_id},
        )

        try:
            raw = await asyncio.wait_for(
                self._invoke(model_id, messages),
                timeout=self._settings.review_timeout_seconds,
            )
            payload = parse_review_payload(raw)
        except asyncio.TimeoutError:
            return self._fallback(discipline, model_id, started, "timeout", "AI review timed out.")
        except ReviewParseError as exc:
            return self._fallback(discipline, model_id, started, exc.code, str(exc))
        except Exception as exc:
            return self._fallback(discipline, model_id, started, "invocation_failed", str(exc))

        result = ReviewResult(
            profession=discipline.key,
            ai_analysis=str(payload["ai_analysis"]),
            review_items=normalize_review_items(discipline, payload["review_items"]),
        )
        logger.info(
            "profession_review_completed",
            extra={
                "event": "profession_review_completed",
                "profession": discipline.key,
                "model_id": model_id,
                "item_count": len(result.review_items),
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return ReviewOutcome(result=result, model_id=model_id)

    def _fallback(self, discipline: Profession, model_id: str, started: float, code: str, message: str) -> ReviewOutcome:
        message = redact_text(message, max_length=500)
        logger.warning(
            "profession_review_fallback",
            extra={
                "event": "profession_review_fallback",
                "profession": discipline.key,
                "model_id": model_id,
                "reason": code,
                "error": message,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return ReviewOutcome(
            result=build_fallback_review(discipline),
            fallback=True,
            model_id=model_id,
            diagnostic=ReviewDiagnostic(code=code, message=message),
        )

    async def analyze_profession(
        self,
        profession: str,
        report_summary: str,
        model_type: str | None = None,
    ) -> ReviewResult:
        outcome = await self.review_profession(profession, report_summary, model_type)
        return outcome.result

    async def review_report(
        self,
        professions: Sequence[str],
        report_summary: str,
        model_type: str | None = None,
    ) -> list[ReviewOutcome]:
        logger.info(
            "report_review_started",
            extra={"event": "report_review_started", "professions": list(professions)},
        )
        try:
            return list(
                await asyncio.gather(
                    *(self.review_profession(profession, report_summary, model_type) for profession in professions)
                )
            )
        except Exception as exc:
            logger.error(
                "report_review_parallel_failed",
                extra={"event": "report_review_parallel_failed", "error": str(exc)},
            )

        outcomes: list[ReviewOutcome] = []
        for profession in professions:
            try:
                outcomes.append(await self.review_profession(profession, report_summary, model_type))
            except Exception as exc:
                logger.error(
                    "profession_review_skipped",
                    extra={"event": "profession_review_skipped", "profession": profession, "error": str(exc)},
                )
        return outcomes

    async def analyze_report(
        self,
        professions: Sequence[str],
        report_summary: str,
        model_type: str | None = None,
    ) -> list[ReviewResult]:
        return [outcome.result for outcome in await self.review_report(professions, report_summary, model_type)]
