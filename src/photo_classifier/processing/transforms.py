"""
Low-Level Image Transforms

This module contains the atomic transformation functions used by the
pre-processing pipeline and by the classifier adapters.

Functions:
    load_image: Load image file as RGB numpy array
    load_image_from_bytes: Decode image bytes as RGB numpy array
    normalize_orientation: Rotate/flip a buffer into display orientation
    crop: Extract a validated sub-rectangle
    rescale: Lanczos resample by a scale factor
    adjust_contrast: Linear contrast stretch around mid-gray
    imagenet_normalize: Apply mean/std normalization for classifier input

Constants:
    IMAGENET_MEAN: ImageNet dataset channel means [R, G, B]
    IMAGENET_STD: ImageNet dataset channel standard deviations [R, G, B]
    MID_GRAY: Pivot intensity for contrast adjustment

Author: Matthew Hong
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Tuple

import cv2
import numpy as np

from photo_classifier.errors import (
    InvalidContrastAmount,
    InvalidCropBounds,
    InvalidScaleFactor,
    ResamplingFailure,
)

if TYPE_CHECKING:
    from photo_classifier.processing.pipeline import CropRect


# =============================================================================
# Constants
# =============================================================================

# ImageNet normalization constants
# Reference: https://pytorch.org/vision/stable/models.html
IMAGENET_MEAN: np.ndarray = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD: np.ndarray = np.array([0.229, 0.224, 0.225], dtype=np.float32)

MID_GRAY: float = 127.5
"""Intensity left unchanged by contrast adjustment (uint8 scale)."""

RESAMPLING_FILTER: int = cv2.INTER_LANCZOS4


# =============================================================================
# Image Loading
# =============================================================================

def load_image(image_path: str) -> np.ndarray:
    """
    Load an image file as an RGB numpy array.

    Uses OpenCV for decoding with explicit BGR to RGB conversion. OpenCV
    applies the EXIF orientation tag while decoding, so the result is in
    display orientation. Any alpha channel is dropped.

    Args:
        image_path: Path to image file (JPEG, PNG, etc.)

    Returns:
        RGB uint8 array with shape [H, W, 3]

    Raises:
        ValueError: If image cannot be loaded (file not found or corrupted)
    """
    bgr = cv2.imread(image_path, cv2.IMREAD_COLOR)

    if bgr is None:
        raise ValueError(f"Failed to load image: {image_path}")

    return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)


def load_image_from_bytes(image_bytes: bytes) -> np.ndarray:
    """
    Decode image bytes as an RGB numpy array.

    Useful for images received over HTTP without writing to disk. Alpha is
    dropped and EXIF orientation applied, as in load_image.

    Args:
        image_bytes: Raw image bytes (JPEG, PNG, etc.)

    Returns:
        RGB uint8 array with shape [H, W, 3]

    Raises:
        ValueError: If image cannot be decoded
    """
    if not image_bytes:
        raise ValueError("Failed to decode image from bytes: empty input")

    nparr = np.frombuffer(image_bytes, np.uint8)
    bgr = cv2.imdecode(nparr, cv2.IMREAD_COLOR)

    if bgr is None:
        raise ValueError("Failed to decode image from bytes")

    return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)


# =============================================================================
# Geometric Transforms
# =============================================================================

def normalize_orientation(pixels: np.ndarray, orientation: int) -> np.ndarray:
    """
    Rotate and/or mirror a pixel buffer into display ("up") orientation.

    Args:
        pixels: Array with shape [H, W, C]
        orientation: EXIF orientation value (1-8)

    Returns:
        The input itself for orientation 1, otherwise a new contiguous array

    Raises:
        ValueError: If orientation is not an EXIF value
    """
    orientation = int(orientation)

    if orientation == 1:
        return pixels
    if orientation == 2:
        upright = pixels[:, ::-1]
    elif orientation == 3:
        upright = np.rot90(pixels, 2)
    elif orientation == 4:
        upright = pixels[::-1, :]
    elif orientation == 5:
        upright = np.transpose(pixels, (1, 0, 2))
    elif orientation == 6:
        upright = np.rot90(pixels, -1)
    elif orientation == 7:
        upright = np.rot90(np.transpose(pixels, (1, 0, 2)), 2)
    elif orientation == 8:
        upright = np.rot90(pixels, 1)
    else:
        raise ValueError(f"Invalid EXIF orientation: {orientation}")

    return np.ascontiguousarray(upright)


def check_crop_bounds(rect: CropRect, image_shape: Tuple[int, int]) -> None:
    """
    Validate a crop rectangle against an image of shape (height, width).

    Raises:
        InvalidCropBounds: If origin or extent is negative, or the rectangle
            extends past the image edge
        ResamplingFailure: If the rectangle has zero area
    """
    height, width = image_shape

    if rect.x < 0 or rect.y < 0:
        raise InvalidCropBounds(f"Crop origin ({rect.x}, {rect.y}) is negative")

    if rect.width < 0 or rect.height < 0:
        raise InvalidCropBounds(
            f"Crop extent {rect.width}x{rect.height} is negative"
        )

    if rect.x + rect.width > width or rect.y + rect.height > height:
        raise InvalidCropBounds(
            f"Crop ({rect.x}, {rect.y}, {rect.width}, {rect.height}) exceeds "
            f"image bounds {width}x{height}"
        )

    if rect.width == 0 or rect.height == 0:
        raise ResamplingFailure(
            f"Crop {rect.width}x{rect.height} has zero area"
        )


def crop(pixels: np.ndarray, rect: CropRect) -> np.ndarray:
    """
    Extract a sub-rectangle from an image.

    Unlike clamping crop helpers, out-of-range rectangles are rejected rather
    than silently shrunk.

    Args:
        pixels: Array with shape [H, W, C]
        rect: Rectangle in pixel coordinates

    Returns:
        New array with shape [rect.height, rect.width, C]

    Raises:
        InvalidCropBounds: If rect is outside the image
        ResamplingFailure: If rect has zero area

    Example:
        >>> image = np.zeros((480, 640, 3), dtype=np.uint8)
        >>> crop(image, CropRect(100, 100, 200, 300)).shape
        (300, 200, 3)
    """
    check_crop_bounds(rect, pixels.shape[:2])

    return pixels[rect.y : rect.y + rect.height, rect.x : rect.x + rect.width].copy()


def check_scale(scale: float) -> None:
    """
    Raises:
        InvalidScaleFactor: If scale is not a positive finite number
    """
    if not math.isfinite(scale) or scale <= 0:
        raise InvalidScaleFactor(f"Scale factor must be positive and finite, got {scale}")


def scaled_size(width: int, height: int, scale: float) -> Tuple[int, int]:
    """Output (width, height) for a resample by ``scale``."""
    return int(round(width * scale)), int(round(height * scale))


def rescale(
    pixels: np.ndarray,
    scale: float,
    interpolation: int = RESAMPLING_FILTER,
) -> np.ndarray:
    """
    Resample an image by a scale factor.

    Output dimensions are round(W * scale) x round(H * scale). When they equal
    the input dimensions the pixels are copied unchanged.

    Args:
        pixels: Array with shape [H, W, C]
        scale: Positive, finite scale factor
        interpolation: OpenCV interpolation flag (default: Lanczos)

    Returns:
        New resampled array

    Raises:
        InvalidScaleFactor: If scale is not positive and finite
        ResamplingFailure: If the output would have zero area or OpenCV fails

    Example:
        >>> image = np.zeros((1000, 1000, 3), dtype=np.uint8)
        >>> rescale(image, 0.224).shape
        (224, 224, 3)
    """
    check_scale(scale)

    height, width = pixels.shape[:2]
    new_width, new_height = scaled_size(width, height, scale)

    if new_width < 1 or new_height < 1:
        raise ResamplingFailure(
            f"Scaling {width}x{height} by {scale} yields an empty image"
        )

    if (new_width, new_height) == (width, height):
        return pixels.copy()

    try:
        resized = cv2.resize(pixels, (new_width, new_height), interpolation=interpolation)
    except cv2.error as e:
        raise ResamplingFailure(f"Resampling to {new_width}x{new_height} failed: {e}") from e

    if resized is None or resized.shape[:2] != (new_height, new_width):
        raise ResamplingFailure(f"Resampling to {new_width}x{new_height} failed")

    return resized


# =============================================================================
# Intensity Transforms
# =============================================================================

def check_contrast(amount: float) -> None:
    """
    Raises:
        InvalidContrastAmount: If amount is not a positive finite number
    """
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidContrastAmount(
            f"Contrast amount must be positive and finite, got {amount}"
        )


def adjust_contrast(pixels: np.ndarray, amount: float) -> np.ndarray:
    """
    Linearly rescale intensities around mid-gray.

    Formula: out = clip(round((pixel - 127.5) * amount + 127.5), 0, 255)

    Values below 1.0 pull pixels towards gray, values above push them away.
    An alpha channel, if present, is left untouched.

    Args:
        pixels: uint8 array with shape [H, W, 3] or [H, W, 4]
        amount: Positive contrast multiplier (1.0 = unchanged)

    Returns:
        New uint8 array with the same shape

    Raises:
        InvalidContrastAmount: If amount is not positive and finite

    Example:
        >>> image = np.array([[[0, 127, 255]]], dtype=np.uint8)
        >>> adjust_contrast(image, 0.5)[0, 0]
        array([ 64, 127, 191], dtype=uint8)
    """
    check_contrast(amount)

    if amount == 1.0:
        return pixels.copy()

    color = pixels[..., :3].astype(np.float32)
    stretched = (color - MID_GRAY) * amount + MID_GRAY

    adjusted = pixels.copy()
    adjusted[..., :3] = np.clip(np.rint(stretched), 0, 255).astype(np.uint8)

    return adjusted


def imagenet_normalize(
    image: np.ndarray,
    mean: np.ndarray = IMAGENET_MEAN,
    std: np.ndarray = IMAGENET_STD,
) -> np.ndarray:
    """
    Apply mean/std normalization to an image.

    Converts image to float32, scales to [0, 1], then normalizes using the
    given channel means and standard deviations (ImageNet by default).

    Formula: normalized = (pixel / 255.0 - mean) / std

    Args:
        image: RGB uint8 or float32 array with shape [H, W, 3]
        mean: Channel means
        std: Channel standard deviations

    Returns:
        Normalized float32 array with shape [H, W, 3]
    """
    if image.dtype == np.uint8:
        normalized = image.astype(np.float32) / 255.0
    else:
        normalized = image.astype(np.float32)
        if normalized.max() > 1.0:
            normalized /= 255.0

    return (normalized - mean) / std
