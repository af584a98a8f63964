"""Capture-and-classify orchestration.

This module wires the pre-processing pipeline to the classifier backends
and produces what the presentation shell displays.

Fallback policy:
- If pre-processing fails (bad crop, scale or contrast, degenerate
  geometry), the unprocessed image is classified instead.
- If the classifier fails on a processed image, it is retried once with the
  unprocessed image.
- Model load failures and failures on the unprocessed image are raised to
  the caller. CaptureSession turns them into the "could not classify"
  message so a session never dies on a recoverable error.

Author: Matthew Hong
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from pathlib import Path

from photo_classifier.config import get_classification_config
from photo_classifier.errors import (
    InferenceError,
    ModelLoadError,
    PreprocessingError,
)
from photo_classifier.model.classifier import (
    ClassificationResult,
    Classifier,
    ClassifierSet,
)
from photo_classifier.model.registry import ModelRegistry, SessionConfig
from photo_classifier.processing.image import ProcessedImage, RawImage
from photo_classifier.processing.pipeline import Preprocessor, ProcessingConfig
from photo_classifier.selector import ModelSelector
from photo_classifier.settings import Settings

logger = logging.getLogger(__name__)


# =============================================================================
# Display Payload
# =============================================================================

ERROR_TEXT = "Error, could not classify"

CONFIDENCE_SIGNIFICANT_DIGITS = 4

# Below this, ".g" formatting switches to scientific notation
FIXED_POINT_THRESHOLD = 1e-4


def format_confidence(confidence: float, digits: int = CONFIDENCE_SIGNIFICANT_DIGITS) -> str:
    """Render a confidence with ``digits`` significant digits (0.97 -> '0.97').

    Values too small for ``.g`` to print in fixed point keep the same number
    of significant digits (1.5e-05 -> '0.000015').
    """
    if 0.0 < confidence < FIXED_POINT_THRESHOLD:
        decimals = digits - 1 - math.floor(math.log10(confidence))
        return f"{confidence:.{decimals}f}".rstrip("0")

    return f"{confidence:.{digits}g}"


def format_display_text(label: str, confidence: float) -> str:
    return f"This might be a {label}\nconf:{format_confidence(confidence)}"


@dataclass(frozen=True)
class DisplayPayload:
    """What the shell shows for one classification.

    Attributes:
        label: Top label, None on failure
        confidence: Top confidence, None on failure
        error: User-facing error message, None on success
    """

    label: str | None
    confidence: float | None
    error: str | None = None

    @classmethod
    def from_result(cls, result: ClassificationResult) -> "DisplayPayload":
        top = result.top
        return cls(label=top.label, confidence=top.confidence)

    @classmethod
    def failure(cls, message: str = ERROR_TEXT) -> "DisplayPayload":
        return cls(label=None, confidence=None, error=message)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def text(self) -> str:
        if self.error is not None:
            return self.error
        return format_display_text(self.label, self.confidence)


# =============================================================================
# Classification Service
# =============================================================================

@dataclass
class ClassificationOutcome:
    """Everything produced by one classification request.

    Attributes:
        result: Ranked predictions
        payload: Display payload for the top prediction
        image: The image the classifier actually saw
        fallback_used: True if the unprocessed image was classified because
            pre-processing or the first classifier call failed
        preprocessing_error: The pre-processing failure, if any
        timing: preprocess_ms, classify_ms, total_ms
    """

    result: ClassificationResult
    payload: DisplayPayload
    image: ProcessedImage
    fallback_used: bool = False
    preprocessing_error: PreprocessingError | None = None
    timing: dict[str, float] = field(default_factory=dict)


class ClassificationService:
    """Pre-process and classify captured images.

    Attributes:
        classifiers: Per-backend classifier cache
        preprocessor: Pre-processing pipeline
        log_threshold: Predictions above this confidence are logged at DEBUG
    """

    def __init__(
        self,
        classifiers: ClassifierSet,
        preprocessor: Preprocessor | None = None,
        log_threshold: float = 0.05,
    ) -> None:
        self.classifiers = classifiers
        self.preprocessor = preprocessor or Preprocessor()
        self.log_threshold = log_threshold

    def classify(
        self,
        image: RawImage,
        model: ModelSelector,
        config: ProcessingConfig | None = None,
    ) -> ClassificationOutcome:
        """Classify a captured image with the chosen backend.

        Args:
            image: Captured image (not modified)
            model: Backend to use
            config: Pre-processing to apply, or None to classify as captured

        Returns:
            ClassificationOutcome

        Raises:
            ModelLoadError: If the backend cannot be loaded
            InferenceError: If classification of the unprocessed image fails
        """
        model = ModelSelector(model)
        t0 = time.perf_counter()

        classifier = self.classifiers.get(model)

        processed, preprocessing_error = self._prepare(image, config)
        t_pre = time.perf_counter()

        self._check_input_size(classifier, processed)

        fallback_used = preprocessing_error is not None
        try:
            result = classifier.classify(processed)
            payload = DisplayPayload.from_result(result)
        except InferenceError as e:
            if processed.is_passthrough:
                logger.error(f"Classification with {model.value} failed: {e}")
                raise

            logger.warning(
                f"Classification of processed image failed ({e}); "
                f"retrying with the unprocessed image",
                extra={"model": model.value},
            )
            processed = ProcessedImage.passthrough(image)
            fallback_used = True
            result = classifier.classify(processed)
            payload = DisplayPayload.from_result(result)

        t_cls = time.perf_counter()

        self._log_predictions(result)

        timing = {
            "preprocess_ms": (t_pre - t0) * 1000,
            "classify_ms": (t_cls - t_pre) * 1000,
            "total_ms": (t_cls - t0) * 1000,
        }

        logger.info(
            "Classification complete",
            extra={
                "model": model.value,
                "label": payload.label,
                "confidence": payload.confidence,
                "fallback_used": fallback_used,
                "latency_ms": timing["total_ms"],
            },
        )

        return ClassificationOutcome(
            result=result,
            payload=payload,
            image=processed,
            fallback_used=fallback_used,
            preprocessing_error=preprocessing_error,
            timing=timing,
        )

    def _prepare(
        self,
        image: RawImage,
        config: ProcessingConfig | None,
    ) -> tuple[ProcessedImage, PreprocessingError | None]:
        if config is None:
            return ProcessedImage.passthrough(image), None

        try:
            return self.preprocessor(image, config), None
        except PreprocessingError as e:
            logger.warning(
                f"Pre-processing failed ({type(e).__name__}: {e}); "
                f"classifying the unprocessed image"
            )
            return ProcessedImage.passthrough(image), e

    def _check_input_size(self, classifier: Classifier, image: ProcessedImage) -> None:
        expected = classifier.input_size
        if image.is_passthrough or expected is None:
            return

        if (image.height, image.width) != tuple(expected):
            logger.warning(
                f"Processed image is {image.width}x{image.height} but "
                f"{classifier.model.value} expects {expected[1]}x{expected[0]}; "
                f"the classifier will resize it"
            )

    def _log_predictions(self, result: ClassificationResult) -> None:
        for prediction in result.above(self.log_threshold):
            logger.debug(f"  {prediction.label} {prediction.confidence:.4f}")


# =============================================================================
# Capture Session
# =============================================================================

class CaptureSession:
    """State of one user's capture screen.

    Holds the selected backend, the pre-processing to apply, and the last
    captured image so that switching backends re-classifies it. Requests made
    through the async methods are serialized per session.

    Example:
        >>> session = CaptureSession(service)
        >>> session.capture(RawImage.from_file("photo.jpg")).text
        'This might be a tabby\\nconf:0.8123'
        >>> session.select_model(ModelSelector.RESNET50).text
        'This might be a tiger cat\\nconf:0.5521'
    """

    def __init__(
        self,
        service: ClassificationService,
        model: ModelSelector = ModelSelector.GOOGLENET,
        config: ProcessingConfig | None = None,
    ) -> None:
        self.service = service
        self.model = ModelSelector(model)
        self.config = config

        self.last_image: RawImage | None = None
        self.last_outcome: ClassificationOutcome | None = None
        self._lock = asyncio.Lock()

    def capture(self, image: RawImage) -> DisplayPayload:
        """Classify a newly captured image with the selected backend."""
        self.last_image = image
        return self._run(image)

    def select_model(self, model: ModelSelector) -> DisplayPayload | None:
        """Switch backend; re-classify the last capture if there is one.

        Returns:
            New payload, or None if nothing has been captured yet
        """
        self.model = ModelSelector(model)
        logger.info(f"Selected model {self.model.value}")

        if self.last_image is None:
            return None

        return self._run(self.last_image)

    async def capture_async(self, image: RawImage) -> DisplayPayload:
        async with self._lock:
            return await asyncio.to_thread(self.capture, image)

    async def select_model_async(self, model: ModelSelector) -> DisplayPayload | None:
        async with self._lock:
            return await asyncio.to_thread(self.select_model, model)

    def _run(self, image: RawImage) -> DisplayPayload:
        try:
            outcome = self.service.classify(image, self.model, self.config)
        except ModelLoadError as e:
            logger.error(f"Model {self.model.value} unavailable: {e}")
            self.last_outcome = None
            return DisplayPayload.failure()
        except InferenceError as e:
            logger.error(f"Could not classify with {self.model.value}: {e}")
            self.last_outcome = None
            return DisplayPayload.failure()

        self.last_outcome = outcome
        return outcome.payload


# =============================================================================
# Factory
# =============================================================================

def build_service(settings: Settings) -> tuple[ClassificationService, ModelRegistry]:
    """Build the ONNX-backed service from settings and classifier.yaml.

    Nothing is loaded here; each backend is loaded on first use.

    Returns:
        Tuple of (service, registry)
    """
    classification = get_classification_config()

    registry = ModelRegistry(
        Path(settings.MODELS_DIR),
        config=SessionConfig.from_config(),
        labels_dir=Path(settings.LABELS_DIR) if settings.LABELS_DIR else None,
    )
    classifiers = ClassifierSet.from_registry(registry, top_k=int(classification["top_k"]))
    service = ClassificationService(
        classifiers,
        log_threshold=float(classification["log_threshold"]),
    )

    return service, registry
