"""
Image Containers

RawImage is what the capture shell hands to the pipeline; ProcessedImage is
what the pipeline hands to the classifier and back to the shell for display.
Both wrap an RGB or RGBA uint8 pixel buffer with shape [H, W, C].

Author: Matthew Hong
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Tuple

import cv2
import numpy as np

from photo_classifier.processing.transforms import (
    load_image,
    load_image_from_bytes,
    normalize_orientation,
)

if TYPE_CHECKING:
    from photo_classifier.processing.pipeline import ProcessingConfig


# =============================================================================
# Constants
# =============================================================================

PIXEL_FORMATS: dict[int, str] = {3: "RGB8", 4: "RGBA8"}
"""Supported channel counts and their pixel format names."""


class Orientation(IntEnum):
    """EXIF orientation of a captured pixel buffer.

    Values follow the EXIF Orientation tag (1-8). UP means the buffer is
    already in display orientation.
    """

    UP = 1
    UP_MIRRORED = 2
    DOWN = 3
    DOWN_MIRRORED = 4
    LEFT_MIRRORED = 5
    RIGHT = 6
    RIGHT_MIRRORED = 7
    LEFT = 8


def _validate_pixels(pixels: np.ndarray) -> None:
    if not isinstance(pixels, np.ndarray):
        raise ValueError(f"Expected numpy array, got {type(pixels)}")

    if pixels.ndim != 3:
        raise ValueError(f"Expected 3D array [H, W, C], got {pixels.ndim}D")

    if pixels.shape[2] not in PIXEL_FORMATS:
        raise ValueError(f"Expected 3 or 4 channels, got {pixels.shape[2]}")

    if pixels.dtype != np.uint8:
        raise ValueError(f"Expected uint8 dtype, got {pixels.dtype}")

    if pixels.shape[0] < 1 or pixels.shape[1] < 1:
        raise ValueError(f"Invalid image dimensions: {pixels.shape[:2]}")


def _freeze(pixels: np.ndarray) -> np.ndarray:
    frozen = np.ascontiguousarray(pixels).copy()
    frozen.flags.writeable = False
    return frozen


# =============================================================================
# Raw Image
# =============================================================================

@dataclass(frozen=True, eq=False)
class RawImage:
    """
    Immutable captured image.

    The pixel buffer is copied on construction and marked read-only, so
    nothing downstream can change what the camera delivered.

    Attributes:
        pixels: uint8 array with shape [H, W, 3] (RGB8) or [H, W, 4] (RGBA8)
        orientation: EXIF orientation of the buffer

    Example:
        >>> image = RawImage(np.zeros((480, 640, 3), dtype=np.uint8))
        >>> image.width, image.height, image.pixel_format
        (640, 480, 'RGB8')
    """

    pixels: np.ndarray
    orientation: Orientation = Orientation.UP

    def __post_init__(self) -> None:
        _validate_pixels(self.pixels)
        object.__setattr__(self, "pixels", _freeze(self.pixels))
        object.__setattr__(self, "orientation", Orientation(self.orientation))

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def pixel_format(self) -> str:
        return PIXEL_FORMATS[self.pixels.shape[2]]

    @classmethod
    def from_file(cls, path: str | Path) -> RawImage:
        """Decode an image file. EXIF orientation is applied by the decoder."""
        return cls(load_image(str(path)))

    @classmethod
    def from_bytes(cls, data: bytes) -> RawImage:
        """Decode encoded image bytes (JPEG, PNG, ...)."""
        return cls(load_image_from_bytes(data))


# =============================================================================
# Processed Image
# =============================================================================

@dataclass(frozen=True, eq=False)
class ProcessedImage:
    """
    Output of the pre-processing pipeline.

    Always in display orientation. ``config`` is the ProcessingConfig that
    produced it, or None when the image is an unprocessed passthrough.

    Attributes:
        pixels: uint8 array with shape [H, W, 3] or [H, W, 4]
        source_shape: (height, width) of the RawImage it came from
        config: Applied configuration, None for passthrough
    """

    pixels: np.ndarray
    source_shape: Tuple[int, int]
    config: ProcessingConfig | None = None

    def __post_init__(self) -> None:
        _validate_pixels(self.pixels)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def pixel_format(self) -> str:
        return PIXEL_FORMATS[self.pixels.shape[2]]

    @property
    def orientation(self) -> Orientation:
        return Orientation.UP

    @property
    def is_passthrough(self) -> bool:
        return self.config is None

    @classmethod
    def passthrough(cls, image: RawImage) -> ProcessedImage:
        """Wrap an unprocessed RawImage (upright) for classification."""
        pixels = normalize_orientation(image.pixels, image.orientation)
        return cls(
            pixels=np.array(pixels, copy=True),
            source_shape=(image.height, image.width),
            config=None,
        )

    def save(self, path: str | Path) -> None:
        """
        Write the image to disk. Format is chosen from the file extension.

        Raises:
            ValueError: If the image cannot be encoded
        """
        if self.pixels.shape[2] == 4:
            bgr = cv2.cvtColor(self.pixels, cv2.COLOR_RGBA2BGRA)
        else:
            bgr = cv2.cvtColor(self.pixels, cv2.COLOR_RGB2BGR)

        if not cv2.imwrite(str(path), bgr):
            raise ValueError(f"Failed to write image: {path}")
