"""Process settings using pydantic-settings.

Environment variables (and an optional .env file) for the API service and
the CLI. Model definitions live in classifier.yaml; these settings only say
where the files are and how to log.

Author: Matthew Hong
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
        LOG_JSON: Emit structured JSON logs (plain text when False)
        PORT: FastAPI server port
        MODELS_DIR: Directory containing the bundled ONNX model files
        LABELS_DIR: Directory containing label files (default: MODELS_DIR)
        DEFAULT_MODEL: Overrides classification.default_model when set
        PRELOAD_MODELS: Load every available model at API startup
    """

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    PORT: int = 8100
    MODELS_DIR: str = "./models"
    LABELS_DIR: str | None = None
    DEFAULT_MODEL: str | None = None
    PRELOAD_MODELS: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance (singleton pattern).

    Returns:
        Settings instance loaded from environment
    """
    return Settings()
