import logging
from time import perf_counter

from fastapi import Request

from app.auth.identity import AuthenticationError, IdentityProvider, VerifiedUser
from app.config.settings import Settings
from app.conversation.window import ConversationWindowBuilder
from app.core.errors import AppError, request_id_from_request
from app.models.recommendations import BookRecommendations, RecommendationInput
from app.providers.base import CompletionClient, CompletionFailure
from app.ratelimit.limiter import GLOBAL_KEY, RateLimiter, RateLimitExceededError

logger = logging.getLogger("bookmatch.recommendations")

RATE_LIMIT_REMAINING_HEADER = "X-RateLimit-Remaining"


class RecommendationService:
    """Runs one recommendation request: rate limit, auth, window, completion."""

    def __init__(
        self,
        settings: Settings,
        identity_provider: IdentityProvider,
        completion_client: CompletionClient,
        rate_limiter: RateLimiter,
        window_builder: ConversationWindowBuilder | None = None,
    ):
        self._settings = settings
        self._identity_provider = identity_provider
        self._completion_client = completion_client
        self._rate_limiter = rate_limiter
        self._window_builder = window_builder or ConversationWindowBuilder()

    async def handle(
        self, request: Request, payload: RecommendationInput
    ) -> BookRecommendations:
        request_id = request_id_from_request(request)
        try:
            return await self._generate(request, request_id, payload)
        except AppError:
            raise
        except Exception as exc:
            logger.exception("recommendation_failed", extra={"request_id": request_id})
            raise AppError(
                500,
                "internal_error",
                "internal",
                f"Internal server error: {type(exc).__name__}: {exc}",
            ) from exc

    async def _generate(
        self, request: Request, request_id: str, payload: RecommendationInput
    ) -> BookRecommendations:
        started = perf_counter()
        per_user_limit = self._settings.rate_limit_scope_normalized == "user"

        if per_user_limit:
            user = await self._authenticate(payload.access_token, request_id)
            remaining = self._admit(user.id, request_id)
        else:
            remaining = self._admit(GLOBAL_KEY, request_id)
            user = await self._authenticate(payload.access_token, request_id)
        request.state.rate_limit_remaining = remaining

        window = self._window_builder.stage(payload.messages)
        outcome = await self._completion_client.complete(window)
        latency_ms = int((perf_counter() - started) * 1000)

        if isinstance(outcome, CompletionFailure):
            error = outcome.error
            logger.warning(
                "recommendation_upstream_failed",
                extra={
                    "request_id": request_id,
                    "user_id": user.id,
                    "model": self._completion_client.model,
                    "error_code": error.code,
                    "latency_ms": latency_ms,
                },
            )
            raise AppError(
                self._settings.upstream_failure_status,
                error.code,
                "upstream",
                error.message,
            )

        logger.info(
            "recommendation_completed",
            extra={
                "request_id": request_id,
                "user_id": user.id,
                "model": self._completion_client.model,
                "message_count": len(window),
                "latency_ms": latency_ms,
                "rate_limit_remaining": remaining,
                "outcome": "success",
            },
        )
        return outcome.recommendations

    def _admit(self, key: str, request_id: str) -> int:
        try:
            return self._rate_limiter.acquire(key)
        except RateLimitExceededError as exc:
            logger.info(
                "rate_limited",
                extra={"request_id": request_id, "retry_after_s": exc.retry_after_s},
            )
            raise AppError(
                429,
                "rate_limited",
                "rate_limit",
                f"429: Too many requests. Wait for {exc.retry_after_s} seconds.",
                headers={"Retry-After": str(exc.retry_after_s), RATE_LIMIT_REMAINING_HEADER: "0"},
            ) from exc

    async def _authenticate(self, access_token: str, request_id: str) -> VerifiedUser:
        try:
            user = await self._identity_provider.verify(access_token)
        except AuthenticationError as exc:
            logger.info(
                "auth_rejected", extra={"request_id": request_id, "error_code": "auth_invalid"}
            )
            raise AppError(
                401, "auth_invalid", "auth", f"User not signed-in, {exc.reason}"
            ) from exc

        if user is None:
            logger.info(
                "auth_rejected", extra={"request_id": request_id, "error_code": "auth_no_user"}
            )
            raise AppError(401, "auth_no_user", "auth", "User not signed-in")
        return user
