"""
Photo Classifier - Capture-and-classify with interchangeable pretrained models

Modules:
- processing: Orientation, crop, rescale and contrast pre-processing
- model: ONNX Runtime classifier backends and their registry
- session: Fallback-aware classification service and capture session
- config: classifier.yaml access
- api: FastAPI shell
- cli: Command-line shell
"""

from photo_classifier.errors import (
    EmptyClassificationResult,
    InferenceError,
    InvalidContrastAmount,
    InvalidCropBounds,
    InvalidScaleFactor,
    ModelLoadError,
    PhotoClassifierError,
    PreprocessingError,
    ResamplingFailure,
)
from photo_classifier.processing import (
    CropRect,
    Orientation,
    ProcessedImage,
    ProcessingConfig,
    RawImage,
    preprocess,
)
from photo_classifier.selector import ModelSelector
from photo_classifier.session import (
    CaptureSession,
    ClassificationOutcome,
    ClassificationService,
    DisplayPayload,
)

__version__ = "0.1.0"

__all__ = [
    "EmptyClassificationResult",
    "InferenceError",
    "InvalidContrastAmount",
    "InvalidCropBounds",
    "InvalidScaleFactor",
    "ModelLoadError",
    "PhotoClassifierError",
    "PreprocessingError",
    "ResamplingFailure",
    "CropRect",
    "Orientation",
    "ProcessedImage",
    "ProcessingConfig",
    "RawImage",
    "preprocess",
    "ModelSelector",
    "CaptureSession",
    "ClassificationOutcome",
    "ClassificationService",
    "DisplayPayload",
]
