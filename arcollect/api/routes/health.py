"""Health check endpoints."""

from fastapi import APIRouter

from ... import __version__
from ..schemas import HealthResponse

router = APIRouter()

SERVICE_NAME = "ar-collections-agent"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check if the API server is running and healthy.",
)
def health_check() -> HealthResponse:
    return HealthResponse(status="healthy", version=__version__, service=SERVICE_NAME)
