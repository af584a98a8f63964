"""Pydantic models for API request/response schemas.

Author: Matthew Hong
"""

from pydantic import BaseModel, Field


class PredictionModel(BaseModel):
    """One ranked prediction.

    Attributes:
        label: Class label
        confidence: Confidence score [0, 1]
    """

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassifyResponse(BaseModel):
    """Response model for /classify endpoint.

    Attributes:
        request_id: Unique request identifier for tracing
        model: Backend that produced the result
        label: Top label
        confidence: Top confidence
        text: Display text for the top prediction
        fallback_used: Whether the unprocessed image was classified instead
        preprocessing_error: Why pre-processing was skipped, if it was
        processed_size: [width, height] of the image the classifier saw
        predictions: Ranked predictions
        timing: Performance breakdown (preprocess_ms, classify_ms, total_ms)
    """

    request_id: str
    model: str
    label: str
    confidence: float
    text: str
    fallback_used: bool
    preprocessing_error: str | None = None
    processed_size: list[int]
    predictions: list[PredictionModel]
    timing: dict[str, float] = Field(
        description="Performance timing breakdown in milliseconds"
    )


class ModelStatus(BaseModel):
    """Status of one classifier backend.

    Attributes:
        name: Selector value
        index: Position in the model selection control
        loaded: Whether a classifier has been constructed
        available: Whether model files exist on disk (None if unknown)
    """

    name: str
    index: int
    loaded: bool
    available: bool | None = None


class ModelsResponse(BaseModel):
    """Response model for /models endpoint."""

    default_model: str
    models: list[ModelStatus]


class HealthResponse(BaseModel):
    """Response model for /health endpoint.

    Attributes:
        status: Service health status
        models_loaded: Whether the classification service is ready
    """

    status: str = "healthy"
    models_loaded: bool
