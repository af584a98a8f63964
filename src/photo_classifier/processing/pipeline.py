"""
Pre-processing Pipeline

Turns a captured RawImage into a ProcessedImage sized and toned for a
fixed-input classifier.

Pipeline (fixed order):
    0. Rotate/mirror into display orientation (crop coordinates are
       display coordinates)
    1. Crop to config.crop (None = whole image)
    2. Rescale by config.scale (Lanczos)
    3. Adjust contrast by config.contrast around mid-gray

The pipeline keeps no state between calls. Whether to pre-process at all is
decided by the caller on every request.

Author: Matthew Hong
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Mapping

from photo_classifier.errors import ResamplingFailure
from photo_classifier.processing.image import ProcessedImage, RawImage
from photo_classifier.processing.transforms import (
    adjust_contrast,
    check_contrast,
    check_crop_bounds,
    check_scale,
    crop,
    normalize_orientation,
    rescale,
    scaled_size,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class CropRect:
    """
    Crop rectangle in pixel coordinates.

    Attributes:
        x: Left edge
        y: Top edge
        width: Rectangle width
        height: Rectangle height
    """

    x: int
    y: int
    width: int
    height: int

    @classmethod
    def from_sequence(cls, values: Any) -> CropRect:
        """Build from an [x, y, width, height] list or a mapping."""
        if isinstance(values, Mapping):
            return cls(
                x=int(values["x"]),
                y=int(values["y"]),
                width=int(values["width"]),
                height=int(values["height"]),
            )

        values = list(values)
        if len(values) != 4:
            raise ValueError(f"Crop needs 4 values [x, y, width, height], got {values}")

        x, y, width, height = (int(v) for v in values)
        return cls(x=x, y=y, width=width, height=height)

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)


@dataclass(frozen=True)
class ProcessingConfig:
    """
    Pre-processing parameters for a single pipeline invocation.

    Values are checked against the image by ``preprocess``, not here, so an
    invalid config surfaces as a typed PreprocessingError at call time.

    Attributes:
        crop: Rectangle to keep, or None for the whole image
        scale: Resample factor applied after cropping (1.0 = unchanged)
        contrast: Contrast multiplier around mid-gray (1.0 = unchanged)
    """

    crop: CropRect | None = None
    scale: float = 1.0
    contrast: float = 1.0

    @classmethod
    def identity(cls) -> ProcessingConfig:
        return cls()

    @property
    def is_identity(self) -> bool:
        return self.crop is None and self.scale == 1.0 and self.contrast == 1.0

    def with_overrides(
        self,
        crop: CropRect | None = None,
        scale: float | None = None,
        contrast: float | None = None,
    ) -> ProcessingConfig:
        """Copy with the given values replaced; None keeps the current value."""
        return replace(
            self,
            crop=crop if crop is not None else self.crop,
            scale=float(scale) if scale is not None else self.scale,
            contrast=float(contrast) if contrast is not None else self.contrast,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ProcessingConfig:
        """
        Build a config from a mapping such as the ``preprocessing`` section
        of classifier.yaml.

        Example:
            >>> ProcessingConfig.from_dict({"crop": [0, 0, 100, 100], "scale": 2})
            ProcessingConfig(crop=CropRect(x=0, y=0, width=100, height=100), scale=2.0, contrast=1.0)
        """
        data = data or {}
        raw_crop = data.get("crop")

        return cls(
            crop=CropRect.from_sequence(raw_crop) if raw_crop is not None else None,
            scale=float(data.get("scale", 1.0)),
            contrast=float(data.get("contrast", 1.0)),
        )

    @classmethod
    def center_crop(
        cls,
        image_width: int,
        image_height: int,
        crop_size: int,
        target_size: int,
        contrast: float = 1.0,
    ) -> ProcessingConfig:
        """
        Centered square crop of ``crop_size`` scaled to ``target_size``.

        The crop is clamped to the shorter image side.

        Example:
            >>> config = ProcessingConfig.center_crop(4032, 3024, 2240, 224)
            >>> config.crop, config.scale
            (CropRect(x=896, y=392, width=2240, height=2240), 0.1)
        """
        side = min(crop_size, image_width, image_height)
        if side < 1 or target_size < 1:
            raise ValueError(
                f"Cannot center-crop {crop_size} -> {target_size} "
                f"from {image_width}x{image_height}"
            )

        rect = CropRect(
            x=(image_width - side) // 2,
            y=(image_height - side) // 2,
            width=side,
            height=side,
        )
        return cls(crop=rect, scale=target_size / side, contrast=contrast)


# =============================================================================
# Preprocessor
# =============================================================================

class Preprocessor:
    """
    Deterministic crop → scale → contrast pipeline.

    Example:
        >>> preprocessor = Preprocessor()
        >>> image = RawImage(np.zeros((2688, 2688, 3), dtype=np.uint8))
        >>> config = ProcessingConfig(crop=CropRect(1232, 1232, 224, 224))
        >>> preprocessor(image, config).pixels.shape
        (224, 224, 3)
    """

    def __call__(self, image: RawImage, config: ProcessingConfig) -> ProcessedImage:
        return self.preprocess(image, config)

    def preprocess(self, image: RawImage, config: ProcessingConfig) -> ProcessedImage:
        """
        Run the pipeline. ``image`` is never modified.

        Raises:
            InvalidCropBounds: If config.crop lies outside the upright image
            InvalidScaleFactor: If config.scale is not positive and finite
            InvalidContrastAmount: If config.contrast is not positive and finite
            ResamplingFailure: If the geometry is degenerate or resampling fails
        """
        t0 = time.perf_counter()

        pixels = normalize_orientation(image.pixels, image.orientation)
        self.validate(config, pixels.shape[0], pixels.shape[1])

        if config.crop is not None:
            pixels = crop(pixels, config.crop)
            logger.debug(f"Cropped to {config.crop.as_tuple()} -> {pixels.shape[:2]}")

        scaled = rescale(pixels, config.scale)
        logger.debug(f"Scaled {pixels.shape[:2]} by {config.scale} -> {scaled.shape[:2]}")

        adjusted = adjust_contrast(scaled, config.contrast)

        elapsed_ms = (time.perf_counter() - t0) * 1000
        logger.debug(
            f"Preprocessed {image.width}x{image.height} -> "
            f"{adjusted.shape[1]}x{adjusted.shape[0]} in {elapsed_ms:.1f} ms"
        )

        return ProcessedImage(
            pixels=adjusted,
            source_shape=(image.height, image.width),
            config=config,
        )

    @staticmethod
    def validate(config: ProcessingConfig, height: int, width: int) -> None:
        """
        Check a config against an upright image of the given size before any
        pixel work is done.
        """
        if config.crop is not None:
            check_crop_bounds(config.crop, (height, width))
            height, width = config.crop.height, config.crop.width

        check_scale(config.scale)
        check_contrast(config.contrast)

        out_width, out_height = scaled_size(width, height, config.scale)
        if out_width < 1 or out_height < 1:
            raise ResamplingFailure(
                f"Scaling {width}x{height} by {config.scale} yields an empty image"
            )


_default_preprocessor = Preprocessor()


def preprocess(image: RawImage, config: ProcessingConfig) -> ProcessedImage:
    """Module-level shortcut for ``Preprocessor().preprocess``."""
    return _default_preprocessor.preprocess(image, config)
