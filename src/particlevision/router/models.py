"""Router – model catalogue."""

from fastapi import APIRouter, Depends

from src.particlevision.config import MODEL_REGISTRY
from src.particlevision.dependencies import Services, get_services
from src.particlevision.schemas.model import ModelInfo, ModelsResponse

router = APIRouter(tags=["Models"])


@router.get("/get-models", response_model=ModelsResponse)
def get_models(services: Services = Depends(get_services)) -> ModelsResponse:
    """Return every registered model; ``active`` marks the one being served."""
    models = [
        ModelInfo(
            id=model_id,
            name=meta["name"],
            input_shape=meta["input_shape"],
            decision=meta["decision"],
            classes=list(meta["classes"]),
            active=model_id == services.settings.model_id,
        )
        for model_id, meta in MODEL_REGISTRY.items()
    ]
    return ModelsResponse(models=models)
