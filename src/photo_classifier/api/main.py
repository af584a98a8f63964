"""FastAPI application for the photo classifier.

This module provides the HTTP shell around the classification service:
- POST /classify: Pre-process and classify an uploaded photo
- GET /models: List classifier backends and their status
- GET /health: Service health check

Pre-processing failures never fail a request; the unprocessed photo is
classified instead and the response says so.

Author: Matthew Hong
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, Form, HTTPException, Query, Request, UploadFile

from photo_classifier.config import (
    get_default_model,
    get_processing_defaults,
    validate_config,
)
from photo_classifier.errors import InferenceError, ModelLoadError
from photo_classifier.logger import request_id_var, setup_logging
from photo_classifier.model.registry import ModelRegistry
from photo_classifier.processing.image import RawImage
from photo_classifier.processing.pipeline import CropRect, ProcessingConfig
from photo_classifier.selector import ModelSelector
from photo_classifier.session import ERROR_TEXT, ClassificationService, build_service
from photo_classifier.settings import get_settings

from .models import (
    ClassifyResponse,
    HealthResponse,
    ModelsResponse,
    ModelStatus,
    PredictionModel,
)

logger = logging.getLogger(__name__)


def check_startup(registry: ModelRegistry | None, preload: bool = False) -> list[str]:
    """Validate classifier.yaml and report which bundled models are present.

    Config errors are logged, not raised: a broken backend only fails the
    requests that select it.

    Args:
        registry: Registry backing the service (skip model checks when None)
        preload: Load every available model now instead of on first use

    Returns:
        Configuration errors found
    """
    errors = validate_config()
    for error in errors:
        logger.warning(f"Config error: {error}")

    if registry is not None:
        available = [selector.value for selector in registry.list_available()]
        logger.info(f"Models available: {available or 'none'}")

        if preload:
            registry.preload_all()

    return errors


def resolve_processing_config(
    defaults: ProcessingConfig | None,
    crop_x: int | None = None,
    crop_y: int | None = None,
    crop_width: int | None = None,
    crop_height: int | None = None,
    scale: float | None = None,
    contrast: float | None = None,
) -> ProcessingConfig | None:
    """Merge per-request pre-processing fields over the configured defaults.

    Raises:
        HTTPException: 422 if only part of the crop rectangle is given
    """
    crop_values = [crop_x, crop_y, crop_width, crop_height]
    crop_given = [value is not None for value in crop_values]

    if any(crop_given) and not all(crop_given):
        raise HTTPException(
            status_code=422,
            detail="crop_x, crop_y, crop_width and crop_height must be given together",
        )

    if not any(crop_given) and scale is None and contrast is None:
        return defaults

    return (defaults or ProcessingConfig()).with_overrides(
        crop=CropRect(*crop_values) if all(crop_given) else None,
        scale=scale,
        contrast=contrast,
    )


def create_app(
    service: ClassificationService | None = None,
    registry: ModelRegistry | None = None,
    default_model: ModelSelector | None = None,
    processing_defaults: ProcessingConfig | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    When ``service`` is given it is used as-is; otherwise the service is
    built from settings and classifier.yaml during startup.

    Args:
        service: Pre-built classification service
        registry: Model registry backing the service (for /models)
        default_model: Backend used when a request names none
        processing_defaults: Pre-processing used when a request brings none
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager.

        Handles startup and shutdown:
        - Startup: Setup logging, build the classification service, check config
          and models
        - Shutdown: Log
        """
        settings = get_settings()

        setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)
        logger.info("Starting photo classifier service", extra={"port": settings.PORT})

        if app.state.service is None:
            app.state.service, app.state.registry = build_service(settings)
            app.state.default_model = (
                ModelSelector(settings.DEFAULT_MODEL)
                if settings.DEFAULT_MODEL
                else get_default_model()
            )
            app.state.processing_defaults = get_processing_defaults()

        check_startup(app.state.registry, preload=settings.PRELOAD_MODELS)

        logger.info("Service ready for requests")

        yield

        logger.info("Shutting down photo classifier service")

    app = FastAPI(
        title="Photo Classifier Service",
        description="Capture-and-classify demo with three interchangeable image classifiers",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.service = service
    app.state.registry = registry
    app.state.default_model = default_model or ModelSelector.GOOGLENET
    app.state.processing_defaults = processing_defaults

    @app.post("/classify", response_model=ClassifyResponse)
    async def classify(
        request: Request,
        file: UploadFile = File(...),
        model: ModelSelector | None = Query(None),
        crop_x: int | None = Form(None),
        crop_y: int | None = Form(None),
        crop_width: int | None = Form(None),
        crop_height: int | None = Form(None),
        scale: float | None = Form(None),
        contrast: float | None = Form(None),
    ):
        """Pre-process and classify an uploaded photo.

        Args:
            file: Uploaded image file (JPEG, PNG, etc.)
            model: Backend to use (default: configured default model)
            crop_x, crop_y, crop_width, crop_height: Crop rectangle
            scale: Resample factor
            contrast: Contrast multiplier

        Returns:
            ClassifyResponse with the top label and ranked predictions

        Raises:
            HTTPException: 400 undecodable image, 422 classification failed,
                503 service or model not available
        """
        request_id = str(uuid.uuid4())
        request_id_var.set(request_id)

        logger.info("Received classify request", extra={"endpoint": "/classify"})

        state = request.app.state
        if state.service is None:
            logger.error("Service not initialized", extra={"endpoint": "/classify"})
            raise HTTPException(status_code=503, detail="Service not ready")

        selected = model or state.default_model
        config = resolve_processing_config(
            state.processing_defaults,
            crop_x=crop_x,
            crop_y=crop_y,
            crop_width=crop_width,
            crop_height=crop_height,
            scale=scale,
            contrast=contrast,
        )

        image_bytes = await file.read()
        try:
            image = RawImage.from_bytes(image_bytes)
        except ValueError as e:
            logger.warning(f"Rejected upload: {e}", extra={"endpoint": "/classify", "status_code": 400})
            raise HTTPException(status_code=400, detail=str(e))

        try:
            outcome = await asyncio.to_thread(state.service.classify, image, selected, config)
        except ModelLoadError as e:
            logger.error(
                f"Model unavailable: {e}",
                extra={"endpoint": "/classify", "status_code": 503, "model": selected.value},
            )
            raise HTTPException(status_code=503, detail=f"Model {selected.value} unavailable")
        except InferenceError as e:
            logger.error(
                f"Classification failed: {e}",
                extra={"endpoint": "/classify", "status_code": 422, "model": selected.value},
            )
            raise HTTPException(status_code=422, detail=ERROR_TEXT)

        logger.info(
            "Classify complete",
            extra={
                "endpoint": "/classify",
                "latency_ms": outcome.timing["total_ms"],
                "status_code": 200,
            },
        )

        return ClassifyResponse(
            request_id=request_id,
            model=selected.value,
            label=outcome.payload.label,
            confidence=outcome.payload.confidence,
            text=outcome.payload.text,
            fallback_used=outcome.fallback_used,
            preprocessing_error=(
                str(outcome.preprocessing_error) if outcome.preprocessing_error else None
            ),
            processed_size=[outcome.image.width, outcome.image.height],
            predictions=[
                PredictionModel(label=p.label, confidence=p.confidence)
                for p in outcome.result
            ],
            timing=outcome.timing,
        )

    @app.get("/models", response_model=ModelsResponse)
    async def models(request: Request):
        """List classifier backends with their load status."""
        request_id_var.set(str(uuid.uuid4()))
        state = request.app.state

        statuses = []
        for selector in ModelSelector:
            statuses.append(
                ModelStatus(
                    name=selector.value,
                    index=selector.index,
                    loaded=state.service is not None and state.service.classifiers.is_loaded(selector),
                    available=state.registry.is_available(selector) if state.registry else None,
                )
            )

        return ModelsResponse(default_model=state.default_model.value, models=statuses)

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request):
        """Health check endpoint."""
        request_id_var.set(str(uuid.uuid4()))

        return HealthResponse(
            status="healthy",
            models_loaded=request.app.state.service is not None,
        )

    return app


app = create_app()


def run() -> None:
    """Entry point for the photo-classifier-api console script."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "photo_classifier.api.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        log_config=None,
    )
