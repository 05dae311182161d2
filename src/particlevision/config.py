from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


# ──────────────────────────────────────────────
# Settings (from environment variables / .env)
# ──────────────────────────────────────────────
class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""

    # CORS settings
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000"
    cors_allow_credentials: bool = True
    cors_allow_methods: str = "GET,POST,DELETE,OPTIONS"
    cors_allow_headers: str = "*"

    # Upload settings
    max_upload_size: int = 10 * 1024 * 1024  # 10 MB
    allowed_extensions: str = ".jpg,.jpeg,.png,.webp,.bmp,.gif"
    public_base_url: str = ""  # prefix for stored image URLs

    # Model settings
    model_id: str = "particles10"
    inference_enabled: bool = True
    degraded_mode: bool = True

    # Prediction store
    store_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    predictions_key: str = "predictions"

    # Pipeline
    max_concurrency: int = 4

    # Application settings
    environment: Literal["development", "production"] = "production"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def cors_methods_list(self) -> list[str]:
        """Parse CORS methods from comma-separated string."""
        if self.cors_allow_methods == "*":
            return ["*"]
        return [method.strip() for method in self.cors_allow_methods.split(",")]

    @property
    def cors_headers_list(self) -> list[str]:
        """Parse CORS headers from comma-separated string."""
        if self.cors_allow_headers == "*":
            return ["*"]
        return [header.strip() for header in self.cors_allow_headers.split(",")]

    @property
    def allowed_extensions_set(self) -> set[str]:
        """Parse allowed extensions from comma-separated string."""
        return {ext.strip().lower() for ext in self.allowed_extensions.split(",")}


# Global settings instance
settings = Settings()

# ──────────────────────────────────────────────
# Paths
# ──────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent          # src/
MODELS_DIR = BASE_DIR / "models"
UPLOAD_DIR = BASE_DIR / "uploads"

# Create upload directory if it doesn't exist
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

# ──────────────────────────────────────────────
# Placeholder label for records persisted without a classification.
# Must never appear in a model vocabulary.
# ──────────────────────────────────────────────
UNAVAILABLE_LABEL = "unavailable"

# ──────────────────────────────────────────────
# Model registry
#   key   → unique model id (selected with MODEL_ID)
#   value → dict with:
#       - name: display name
#       - input_shape: (height, width, channels), channels-last, RGB
#       - decision: "multiclass" (softmax / argmax) or "binary" (sigmoid)
#       - logits: output needs a softmax before argmax
#       - classes: labels, index-aligned with the model output
#       - keras_path: path to .keras file (preferred)
#       - tflite_path: path to .tflite file (fallback)
# ──────────────────────────────────────────────
MODEL_REGISTRY: dict[str, dict] = {
    "particles10": {
        "name": "ParticleNet-10 (RGB 32x32)",
        "input_shape": (32, 32, 3),
        "decision": "multiclass",
        "logits": False,
        "classes": (
            "proton",
            "neutron",
            "electron",
            "positron",
            "muon",
            "pion",
            "kaon",
            "photon",
            "neutrino",
            "alpha",
        ),
        "keras_path": MODELS_DIR / "particles10" / "particles10.keras",
        "tflite_path": MODELS_DIR / "particles10" / "particles10.tflite",
    },
    "wboson": {
        "name": "W-Boson Jet Tagger (grayscale 25x25)",
        "input_shape": (25, 25, 1),
        "decision": "binary",
        "logits": False,
        "classes": (
            "QCD Background",
            "W Boson Signal",
        ),
        "keras_path": MODELS_DIR / "wboson" / "wboson.keras",
        "tflite_path": MODELS_DIR / "wboson" / "wboson.tflite",
    },
}

for _model_id, _meta in MODEL_REGISTRY.items():
    if UNAVAILABLE_LABEL in _meta["classes"]:
        raise ValueError(f"Model '{_model_id}' uses the reserved label '{UNAVAILABLE_LABEL}'.")
