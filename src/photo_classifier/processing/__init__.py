"""
Processing Module - Capture Pre-processing

This module turns a captured photo into a classifier-ready image:
- Orientation normalization (EXIF)
- Crop to a rectangle
- Lanczos rescale
- Contrast adjustment around mid-gray

Every call is pure: the caller passes the config it wants applied, and the
source RawImage is never modified.
"""

from photo_classifier.processing.transforms import (
    adjust_contrast,
    crop,
    imagenet_normalize,
    load_image,
    load_image_from_bytes,
    normalize_orientation,
    rescale,
)

from photo_classifier.processing.image import Orientation, ProcessedImage, RawImage
from photo_classifier.processing.pipeline import (
    CropRect,
    Preprocessor,
    ProcessingConfig,
    preprocess,
)

__all__ = [
    # Low-level transforms
    "adjust_contrast",
    "crop",
    "imagenet_normalize",
    "load_image",
    "load_image_from_bytes",
    "normalize_orientation",
    "rescale",
    # Image containers
    "Orientation",
    "ProcessedImage",
    "RawImage",
    # Pipeline
    "CropRect",
    "Preprocessor",
    "ProcessingConfig",
    "preprocess",
]
