"""
Error Taxonomy

Every failure the classifier can report has its own exception type so the
shells can tell them apart:

- PreprocessingError (ValueError): bad crop, scale or contrast values, or a
  geometry that cannot be resampled. Always recoverable: the caller may
  classify the unprocessed image instead.
- ModelLoadError (RuntimeError): a classifier backend could not be loaded.
  Switching to another model is the recovery path.
- InferenceError (RuntimeError): the runtime failed to produce a result,
  including the case where it produced no predictions at all.

Author: Matthew Hong
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from photo_classifier.selector import ModelSelector


class PhotoClassifierError(Exception):
    """Base class for all photo classifier errors."""


# =============================================================================
# Pre-processing
# =============================================================================

class PreprocessingError(PhotoClassifierError, ValueError):
    """Pre-processing could not produce an output image."""


class InvalidCropBounds(PreprocessingError):
    """Crop rectangle lies outside the source image."""


class InvalidScaleFactor(PreprocessingError):
    """Scale factor is zero, negative or not finite."""


class InvalidContrastAmount(PreprocessingError):
    """Contrast amount is zero, negative or not finite."""


class ResamplingFailure(PreprocessingError):
    """Geometry is degenerate or the resampler failed."""


# =============================================================================
# Classification
# =============================================================================

class ModelLoadError(PhotoClassifierError, RuntimeError):
    """A classifier backend could not be loaded."""

    def __init__(self, message: str, model: ModelSelector | None = None) -> None:
        super().__init__(message)
        self.model = model


class InferenceError(PhotoClassifierError, RuntimeError):
    """The inference runtime failed to classify an image."""

    def __init__(self, message: str, model: ModelSelector | None = None) -> None:
        super().__init__(message)
        self.model = model


class EmptyClassificationResult(InferenceError):
    """The classifier returned zero predictions."""
