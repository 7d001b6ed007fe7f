import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.routes import router
from app.auth.identity import IdentityProvider, SupabaseIdentityClient
from app.config.settings import Settings, get_settings
from app.core.errors import (
    AppError,
    ConfigurationError,
    app_error_response,
    request_id_from_request,
)
from app.core.logging import configure_logging
from app.middleware.request_id import RequestIDMiddleware
from app.models.recommendations import (
    EXPECTED_BODY_HINT,
    is_malformed_body,
    validation_reasons,
)
from app.providers.base import CompletionClient
from app.providers.http_openai import OpenAICompletionClient
from app.ratelimit.limiter import FixedWindowRateLimiter, RateLimiter
from app.services.recommendation_service import RecommendationService

logger = logging.getLogger("bookmatch.app")

RATE_LIMIT_SCOPES = {"global", "user"}


def _build_recommendation_service(
    settings: Settings,
    identity_provider: IdentityProvider | None = None,
    completion_client: CompletionClient | None = None,
    rate_limiter: RateLimiter | None = None,
) -> RecommendationService:
    missing = settings.missing_required
    if missing:
        raise ConfigurationError(missing)

    if settings.rate_limit_scope_normalized not in RATE_LIMIT_SCOPES:
        raise RuntimeError(
            f"Unsupported BOOKMATCH_RATE_LIMIT_SCOPE value: {settings.rate_limit_scope}"
        )

    return RecommendationService(
        settings=settings,
        identity_provider=identity_provider
        or SupabaseIdentityClient(
            base_url=settings.supabase_url or "",
            api_key=settings.supabase_key or "",
            timeout_s=settings.supabase_timeout_s,
        ),
        completion_client=completion_client
        or OpenAICompletionClient(
            api_key=settings.openai_api_key or "",
            base_url=settings.openai_base_url,
            model=settings.openai_model,
            timeout_s=settings.openai_timeout_s,
        ),
        rate_limiter=rate_limiter
        or FixedWindowRateLimiter(
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        ),
    )


def create_app(
    identity_provider: IdentityProvider | None = None,
    completion_client: CompletionClient | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="BookMatch Gateway", version="0.1.0")
    app.add_middleware(RequestIDMiddleware)

    app.state.startup_error = None
    try:
        app.state.recommendation_service = _build_recommendation_service(
            settings,
            identity_provider=identity_provider,
            completion_client=completion_client,
            rate_limiter=rate_limiter,
        )
    except ConfigurationError as exc:
        if settings.strict_startup:
            raise
        logger.error("startup_configuration_missing", extra={"error_code": "configuration"})
        app.state.recommendation_service = None
        app.state.startup_error = str(exc)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(
            exc.status_code, exc.code, exc.error_type, exc.message, request_id, exc.headers
        )

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = request_id_from_request(request)
        errors = exc.errors()
        if is_malformed_body(errors):
            message = EXPECTED_BODY_HINT
        else:
            message = ", ".join(validation_reasons(errors))
        return app_error_response(
            400, "request_validation_failed", "validation", message, request_id
        )

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(
            500,
            "internal_error",
            "internal",
            f"Internal server error: {type(exc).__name__}",
            request_id,
        )

    app.include_router(router)
    return app
