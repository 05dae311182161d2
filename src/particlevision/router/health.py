"""Router – health check."""

from fastapi import APIRouter, Depends

from src.particlevision.dependencies import Services, get_services
from src.particlevision.schemas.model import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
def health_check(services: Services = Depends(get_services)) -> HealthResponse:
    """Liveness / readiness check."""
    engine = services.engine
    return HealthResponse(
        status="ok",
        model_id=services.settings.model_id,
        model_status=engine.status() if engine is not None else "disabled",
    )
