from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from archreview.api.contracts import ReviewRequest
from archreview.api.services import ConfigManagerGetter, ReviewServiceGetter
from archreview.prompts import PROFESSIONS

logger = logging.getLogger("archreview.api")


def build_reviews_router(
    *,
    get_config_manager: ConfigManagerGetter,
    get_review_service: ReviewServiceGetter,
) -> APIRouter:
    router = APIRouter()

    @router.get("/professions")
    def list_professions() -> dict[str, object]:
        return {
            "professions": [
                {"id": profession.key, "name": profession.name, "prefix": profession.id_prefix}
                for profession in PROFESSIONS.values()
            ]
        }

    @router.post("/reviews")
    async def create_review(payload: ReviewRequest) -> dict[str, object]:
        unsupported = [profession for profession in payload.professions if profession not in PROFESSIONS]
        if unsupported:
            raise HTTPException(status_code=400, detail=f"Unsupported professions: {', '.join(unsupported)}")
        if len(set(payload.professions)) != len(payload.professions):
            raise HTTPException(status_code=400, detail="Professions must not repeat")

        manager = get_config_manager()
        if payload.model_id:
            config = manager.get_model_config(payload.model_id)
            if config is None:
                raise HTTPException(status_code=400, detail=f"Unknown model '{payload.model_id}'")
            if not config.enabled:
                raise HTTPException(status_code=400, detail=f"Model '{payload.model_id}' is disabled")

        outcomes = await get_review_service().review_report(
            payload.professions,
            payload.report_summary,
            payload.model_id,
        )
        fallbacks = [
            {
                "profession": outcome.result.profession,
                "code": outcome.diagnostic.code if outcome.diagnostic else "unknown",
                "message": outcome.diagnostic.message if outcome.diagnostic else "",
            }
            for outcome in outcomes
            if outcome.fallback
        ]
        if fallbacks:
            logger.warning(
                "review_completed_with_fallbacks",
                extra={
                    "event": "review_completed_with_fallbacks",
                    "fallback_professions": [item["profession"] for item in fallbacks],
                },
            )
        return {
            "modelId": outcomes[0].model_id if outcomes else manager.get_default_model(),
            "results": [outcome.result.model_dump(mode="json") for outcome in outcomes],
            "fallbacks": fallbacks,
        }

    return router
