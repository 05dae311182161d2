from pydantic import BaseModel, ConfigDict


class ModelInfo(BaseModel):
    """Single model entry returned by /get-models."""
    id: str
    name: str
    input_shape: tuple[int, int, int]
    decision: str
    classes: list[str]
    active: bool


class ModelsResponse(BaseModel):
    """Response schema for GET /get-models."""
    models: list[ModelInfo]


class HealthResponse(BaseModel):
    """Response schema for GET /health."""
    model_config = ConfigDict(protected_namespaces=())

    status: str
    model_id: str
    model_status: str
