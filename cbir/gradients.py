"""
Separable 3x3 Sobel-style gradient operators.

Each operator smooths with [1, 2, 1] / 4 along one axis and then
differentiates with a central difference along the other. The smoothing
pass works on integers and truncates the division, which is what the
stored texture features were computed with, so the exact rounding has to
be reproduced here rather than delegated to ``cv2.Sobel``.

Boundary handling:
    grad_x  first/last rows copied by the smoothing pass,
            first/last columns zeroed by the derivative pass
    grad_y  first/last columns copied by the smoothing pass,
            first/last rows zeroed by the derivative pass
"""

import numpy as np
import logging

from .preprocessing import validate_image
from .exceptions import FeatureExtractionError

logger = logging.getLogger(__name__)


def _smooth_vertical(image_np: np.ndarray) -> np.ndarray:
    src = image_np.astype(np.int32)
    out = src.copy()
    out[1:-1] = (src[:-2] + 2 * src[1:-1] + src[2:]) // 4
    return out


def _smooth_horizontal(image_np: np.ndarray) -> np.ndarray:
    src = image_np.astype(np.int32)
    out = src.copy()
    out[:, 1:-1] = (src[:, :-2] + 2 * src[:, 1:-1] + src[:, 2:]) // 4
    return out


def grad_x(image_np: np.ndarray) -> np.ndarray:
    """
    Horizontal gradient of a BGR image.

    Args:
        image_np: BGR uint8 image.

    Returns:
        int16 array of the same shape; positive where intensity grows
        to the right.
    """
    validate_image(image_np)

    smoothed = _smooth_vertical(image_np)
    out = np.zeros(smoothed.shape, dtype=np.int16)
    out[:, 1:-1] = smoothed[:, 2:] - smoothed[:, :-2]
    return out


def grad_y(image_np: np.ndarray) -> np.ndarray:
    """
    Vertical gradient of a BGR image, positive upward.

    Args:
        image_np: BGR uint8 image.

    Returns:
        int16 array of the same shape; positive where the row above is
        brighter than the row below.
    """
    validate_image(image_np)

    smoothed = _smooth_horizontal(image_np)
    out = np.zeros(smoothed.shape, dtype=np.int16)
    out[1:-1] = smoothed[:-2] - smoothed[2:]
    return out


def magnitude(gx: np.ndarray, gy: np.ndarray) -> np.ndarray:
    """
    Per-channel gradient magnitude ``sqrt(gx^2 + gy^2)``.

    Args:
        gx: int16 3-channel output of grad_x.
        gy: int16 3-channel output of grad_y.

    Returns:
        uint8 image, values clamped to [0, 255] and truncated.

    Raises:
        FeatureExtractionError: If the inputs differ in shape or are not
            both int16 3-channel images.
    """
    for name, grad in (("gx", gx), ("gy", gy)):
        if grad is None or grad.size == 0:
            raise FeatureExtractionError(f"Gradient input {name} is empty")
        if grad.dtype != np.int16 or grad.ndim != 3 or grad.shape[2] != 3:
            raise FeatureExtractionError(
                f"Gradient input {name} must be int16 3-channel, "
                f"got {grad.dtype} {grad.shape}"
            )

    if gx.shape != gy.shape:
        raise FeatureExtractionError(
            f"Gradient shapes differ: {gx.shape} vs {gy.shape}"
        )

    fx = gx.astype(np.float32)
    fy = gy.astype(np.float32)
    mag = np.sqrt(fx * fx + fy * fy)
    return np.clip(mag, 0, 255).astype(np.uint8)
