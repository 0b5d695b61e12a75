from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from archreview import APP_VERSION
from archreview.api.routers.models import build_models_router
from archreview.api.routers.reviews import build_reviews_router
from archreview.api.routers.system import build_system_router
from archreview.config import settings
from archreview.health import ModelHealthChecker
from archreview.llm_client import CustomEndpointClient, LLMClient, build_llm_client
from archreview.model_config import ModelConfigManager
from archreview.observability import (
    configure_logging,
    normalize_request_id,
    reset_request_id,
    sanitize_for_logging,
    set_request_id,
)
from archreview.review import AIReviewService

logger = logging.getLogger("archreview.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    logger.info(
        "application_startup",
        extra={
            "event": "application_startup",
            "environment": settings.app_env,
            "llm_backend": settings.llm_backend,
            "default_model": app.state.config_manager.get_default_model(),
        },
    )
    yield
    logger.info("application_shutdown", extra={"event": "application_shutdown"})


def create_app(
    *,
    config_manager: ModelConfigManager | None = None,
    llm_client: LLMClient | None = None,
    custom_client: CustomEndpointClient | None = None,
) -> FastAPI:
    cors_origins = settings.cors_origins_list
    if settings.cors_allow_credentials and any(origin == "*" for origin in cors_origins):
        raise RuntimeError("Invalid CORS_ORIGINS: wildcard '*' is not allowed when credentials are enabled.")

    app = FastAPI(title=settings.app_name, version=APP_VERSION, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", settings.request_id_header],
    )

    manager = config_manager or ModelConfigManager(default_model=settings.default_model_id)
    client = llm_client or build_llm_client(settings)
    endpoint_client = custom_client or CustomEndpointClient()
    app.state.config_manager = manager
    app.state.health_checker = ModelHealthChecker(
        manager,
        client,
        settings=settings,
        custom_client=endpoint_client,
    )
    app.state.review_service = AIReviewService(
        manager,
        client,
        settings=settings,
        custom_client=endpoint_client,
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = normalize_request_id(request.headers.get(settings.request_id_header))
        request.state.request_id = request_id
        token = set_request_id(request_id)
        started = time.perf_counter()

        logger.info(
            "request_started",
            extra={
                "event": "request_started",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "query": sanitize_for_logging(dict(request.query_params)),
                "client_ip": request.client.host if request.client else None,
            },
        )

        try:
            response = await call_next(request)
            response.headers[settings.request_id_header] = request_id
            logger.info(
                "request_completed",
                extra={
                    "event": "request_completed",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            return response
        except Exception:
            logger.exception(
                "request_failed",
                extra={
                    "event": "request_failed",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            raise
        finally:
            reset_request_id(token)

    routers = (
        build_system_router(get_config_manager=lambda: app.state.config_manager),
        build_models_router(
            get_config_manager=lambda: app.state.config_manager,
            get_health_checker=lambda: app.state.health_checker,
        ),
        build_reviews_router(
            get_config_manager=lambda: app.state.config_manager,
            get_review_service=lambda: app.state.review_service,
        ),
    )
    for router in routers:
        app.include_router(router)
        app.include_router(router, prefix="/api", include_in_schema=False)

    return app


app = create_app()
