"""
Chromaticity and gradient-magnitude histogram builders.

Two histogram families feed the colour and texture features:

    chromaticity_histogram        2D histogram over rg-chromaticity
                                  (r = R/(R+G+B), g = G/(R+G+B)),
                                  normalized by the number of pixels that
                                  were bright enough to be counted
    gradient_magnitude_histogram  1D histogram over the grayscale
                                  gradient magnitude, normalized by the
                                  total pixel count

The two normalizations differ on purpose: stored databases were built
that way, and changing either would shift every retrieval result.

Default bin counts are fixed: they determine the stored vector lengths
(256, 128 and 272 values); other counts can still be passed per call.
"""

import cv2
import numpy as np
import logging

from .gradients import grad_x, grad_y, magnitude
from .preprocessing import validate_image

logger = logging.getLogger(__name__)

# Bins per chromaticity axis for whole-image histograms (16 -> 256 values)
CHROMA_BINS = 16
# Bins per chromaticity axis for per-region histograms (8 -> 64 values)
REGION_BINS = 8
GRADIENT_BINS = 16


def chromaticity_histogram(image_np: np.ndarray,
                           bins: int = CHROMA_BINS) -> np.ndarray:
    """
    Build a normalized 2D rg-chromaticity histogram.

    Process:
        1. Sum B+G+R per pixel, skip pixels whose sum is below 1
        2. r = R / sum, g = G / sum
        3. Bin index floor(value * bins), clamped to bins - 1
        4. Divide counts by the number of non-skipped pixels
        5. Flatten with the r bin as the outer index

    Args:
        image_np: BGR uint8 image.
        bins: Bins per chromaticity axis.

    Returns:
        Float32 vector of bins * bins values summing to 1, or all zeros
        if every pixel was skipped.
    """
    validate_image(image_np)

    pixels = image_np.reshape(-1, 3).astype(np.float32)
    blue, green, red = pixels[:, 0], pixels[:, 1], pixels[:, 2]
    total = blue + green + red

    valid = total >= 1.0
    counted = int(np.count_nonzero(valid))

    hist = np.zeros((bins, bins), dtype=np.float32)
    if counted == 0:
        logger.debug("No pixels bright enough for chromaticity histogram")
        return hist.flatten()

    r = red[valid] / total[valid]
    g = green[valid] / total[valid]

    r_idx = np.minimum((r * bins).astype(np.int64), bins - 1)
    g_idx = np.minimum((g * bins).astype(np.int64), bins - 1)

    counts = np.bincount(r_idx * bins + g_idx, minlength=bins * bins)
    hist = counts.astype(np.float32) / np.float32(counted)
    return hist


def gradient_magnitude_histogram(image_np: np.ndarray,
                                 bins: int = GRADIENT_BINS) -> np.ndarray:
    """
    Build a normalized histogram of grayscale gradient magnitude.

    Process:
        1. grad_x, grad_y and their per-channel magnitude
        2. Convert the 3-channel magnitude image to grayscale
        3. Bin index floor(value * bins / 256), clamped to bins - 1
        4. Divide counts by the total pixel count

    Args:
        image_np: BGR uint8 image.
        bins: Number of magnitude bins.

    Returns:
        Float32 vector of ``bins`` values summing to 1.
    """
    validate_image(image_np)

    mag = magnitude(grad_x(image_np), grad_y(image_np))
    gray = cv2.cvtColor(mag, cv2.COLOR_BGR2GRAY)

    values = gray.reshape(-1).astype(np.int64)
    idx = np.minimum(values * bins // 256, bins - 1)

    counts = np.bincount(idx, minlength=bins)
    return counts.astype(np.float32) / np.float32(values.size)
