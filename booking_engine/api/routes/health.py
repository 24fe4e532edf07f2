from fastapi import APIRouter, Response, status

from booking_engine.core.config import get_settings
from booking_engine.schemas.health import HealthResponse
from booking_engine.services.health_service import HealthService

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def healthcheck(response: Response) -> HealthResponse:
    health = HealthService(get_settings()).get_status()
    if health.status != "ok":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return health
