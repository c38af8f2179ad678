"""
Image validation and region helpers shared by the feature extractors.

Every extractor receives a BGR uint8 image as loaded by ``cv2.imread``.
Nothing here modifies its input: crops and bands are views, and derived
images (HSV, smoothed, gradient) are always new arrays.
"""

import cv2
import numpy as np
import logging
from typing import List

from .exceptions import FeatureExtractionError

logger = logging.getLogger(__name__)

# HSV thresholds for "blue" pixels (OpenCV hue scale 0-179).
# Fixed on purpose: stored blue-scene vectors depend on them.
BLUE_HUE_RANGE = (100, 130)
BLUE_MIN_SATURATION = 30
BLUE_MIN_VALUE = 50


def validate_image(image_np: np.ndarray,
                   min_rows: int = 1,
                   min_cols: int = 1) -> np.ndarray:
    """
    Check that an image is a non-empty 3-channel uint8 array.

    Args:
        image_np: Candidate BGR image.
        min_rows: Smallest acceptable height.
        min_cols: Smallest acceptable width.

    Returns:
        The same array, unchanged.

    Raises:
        FeatureExtractionError: If the image is missing, empty, not
            3-channel 8-bit, or smaller than the requested minimum.
    """
    if image_np is None or not isinstance(image_np, np.ndarray) or image_np.size == 0:
        raise FeatureExtractionError("Source image is empty")

    if image_np.ndim != 3 or image_np.shape[2] != 3:
        raise FeatureExtractionError(
            f"Image must be 3-channel color (BGR), got shape {image_np.shape}"
        )

    if image_np.dtype != np.uint8:
        raise FeatureExtractionError(
            f"Image must be 8-bit unsigned, got {image_np.dtype}"
        )

    h, w = image_np.shape[:2]
    if h < min_rows or w < min_cols:
        raise FeatureExtractionError(
            f"Image too small: {w}x{h}, need at least {min_cols}x{min_rows}"
        )

    return image_np


def extract_center_patch(image_np: np.ndarray,
                         patch_size: int = 7) -> np.ndarray:
    """
    Extract the square patch centred on the image's centre pixel.

    The centre is ``(rows // 2, cols // 2)`` and the patch reaches
    ``patch_size // 2`` pixels in each direction, inclusive.

    Args:
        image_np: BGR uint8 image.
        patch_size: Odd patch edge length.

    Returns:
        View of shape (patch_size, patch_size, 3).
    """
    validate_image(image_np, min_rows=patch_size, min_cols=patch_size)

    h, w = image_np.shape[:2]
    center_y = h // 2
    center_x = w // 2
    half = patch_size // 2

    y1 = center_y - half
    x1 = center_x - half

    # Even sizes shift the window: 8 rows give centre 4, window 1..7
    return image_np[y1:y1 + patch_size, x1:x1 + patch_size]


def split_rows(image_np: np.ndarray, parts: int) -> List[np.ndarray]:
    """
    Split an image into horizontal bands of ``rows // parts`` rows.

    The last band absorbs the remainder, so for ``parts=2`` an odd
    height leaves the top half one row shorter than the bottom.

    Raises:
        FeatureExtractionError: If the image has fewer rows than parts.
    """
    validate_image(image_np, min_rows=parts)

    h = image_np.shape[0]
    band = h // parts
    bands = []
    for i in range(parts):
        start = i * band
        end = h if i == parts - 1 else start + band
        bands.append(image_np[start:end])
    return bands


def compute_blue_fraction(image_np: np.ndarray,
                          hue_range: tuple = BLUE_HUE_RANGE,
                          min_saturation: int = BLUE_MIN_SATURATION,
                          min_value: int = BLUE_MIN_VALUE) -> float:
    """
    Fraction of pixels that read as blue in HSV space.

    A pixel counts when its hue lies in ``hue_range`` (inclusive),
    saturation is above ``min_saturation`` and value above
    ``min_value``.

    Args:
        image_np: BGR uint8 image.

    Returns:
        Value in [0, 1].
    """
    validate_image(image_np)

    hsv = cv2.cvtColor(image_np, cv2.COLOR_BGR2HSV)
    h_ch = hsv[:, :, 0]
    s_ch = hsv[:, :, 1]
    v_ch = hsv[:, :, 2]

    mask = ((h_ch >= hue_range[0]) & (h_ch <= hue_range[1])
            & (s_ch > min_saturation) & (v_ch > min_value))

    fraction = float(np.count_nonzero(mask)) / mask.size
    logger.debug(f"Blue pixel fraction: {fraction:.4f}")
    return fraction
