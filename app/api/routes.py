from fastapi import APIRouter, Request, Response
from fastapi.responses import HTMLResponse

from app.core.errors import AppError
from app.models.recommendations import BookRecommendations, RecommendationInput
from app.services.recommendation_service import (
    RATE_LIMIT_REMAINING_HEADER,
    RecommendationService,
)

router = APIRouter()

WELCOME_PAGE = "<h1>Welcome to BookMatch backend using FastAPI</h1>"


@router.get("/", response_class=HTMLResponse)
def welcome() -> str:
    return WELCOME_PAGE


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/generate-recommendations", response_model=BookRecommendations)
async def generate_recommendations(
    request: Request, response: Response, payload: RecommendationInput
) -> BookRecommendations:
    service: RecommendationService | None = request.app.state.recommendation_service
    if service is None:
        startup_error = request.app.state.startup_error
        raise AppError(
            500,
            "configuration_missing",
            "configuration",
            f"Internal server error: {startup_error} "
            "(missing environment variables, expired api keys)",
        )
    result = await service.handle(request, payload)
    response.headers[RATE_LIMIT_REMAINING_HEADER] = str(request.state.rate_limit_remaining)
    return result
