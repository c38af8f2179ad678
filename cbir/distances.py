"""
Distance metrics between feature vectors.

All metrics return a non-negative float where 0 means identical, and
raise DistanceError for inputs they cannot compare (empty vectors,
length mismatches, bad chunking). A failed comparison never looks like a
distance.

    ssd                       sum of squared differences (fixed patch)
    histogram_intersection    1 - sum(min(a, b)) (chromaticity)
    weighted_multi_histogram  weighted per-chunk intersection (split region)
    texture_color_distance    colour prefix + texture suffix intersection
    cosine_distance           1 - cosine similarity (embeddings)

The composite blue-scene distance lives in scoring.py.
"""

import os
import numpy as np
import logging
from typing import Sequence

from .exceptions import DistanceError
from .histograms import CHROMA_BINS, GRADIENT_BINS

logger = logging.getLogger(__name__)

SPLIT_REGION_WEIGHTS = (
    float(os.environ.get("CBIR_SPLIT_W_TOP", "0.5")),
    float(os.environ.get("CBIR_SPLIT_W_BOTTOM", "0.5")),
)

COLOR_SIZE = CHROMA_BINS * CHROMA_BINS
TEXTURE_SIZE = GRADIENT_BINS
COLOR_WEIGHT = float(os.environ.get("CBIR_COLOR_W", "0.5"))
TEXTURE_WEIGHT = float(os.environ.get("CBIR_TEXTURE_W", "0.5"))

# Norms below this are treated as zero vectors
COSINE_EPSILON = 1e-10

# Allowed drift of a weight vector's sum from 1.0 before warning
WEIGHT_SUM_TOLERANCE = 0.01


def _as_pair(feature1, feature2):
    a = np.asarray(feature1, dtype=np.float64).reshape(-1)
    b = np.asarray(feature2, dtype=np.float64).reshape(-1)

    if a.size == 0 or b.size == 0:
        raise DistanceError("Feature vectors are empty")
    if a.size != b.size:
        raise DistanceError(
            f"Feature vectors have different sizes: {a.size} vs {b.size}"
        )
    return a, b


def check_weight_sum(weights: Sequence[float], label: str = "weights") -> None:
    """Warn when weights do not sum to roughly 1. Never raises."""
    total = float(np.sum(weights))
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        logger.warning(f"{label} sum to {total:.4f}, expected 1.0")


def ssd(feature1, feature2) -> float:
    """
    Sum of squared differences.

    Returns:
        Distance in [0, inf).
    """
    a, b = _as_pair(feature1, feature2)
    diff = a - b
    return float(np.dot(diff, diff))


def histogram_intersection(hist1, hist2) -> float:
    """
    Histogram intersection distance ``1 - sum(min(h1, h2))``.

    Intended for normalized histograms. The result is clamped to [0, 1]
    so float rounding on near-identical histograms cannot go negative.
    """
    a, b = _as_pair(hist1, hist2)
    intersection = float(np.minimum(a, b).sum())
    return float(min(1.0, max(0.0, 1.0 - intersection)))


def weighted_multi_histogram(feature1,
                             feature2,
                             num_histograms: int,
                             weights: Sequence[float] = None) -> float:
    """
    Weighted sum of per-chunk histogram intersection distances.

    Both vectors are split into ``num_histograms`` equal contiguous
    chunks; chunk i of one is compared against chunk i of the other.

    Args:
        feature1: Concatenated histograms.
        feature2: Concatenated histograms, same layout.
        num_histograms: Number of chunks.
        weights: One weight per chunk; equal weights when omitted.

    Raises:
        DistanceError: If the length does not divide evenly or the weight
            count differs from ``num_histograms``.
    """
    a, b = _as_pair(feature1, feature2)

    if num_histograms <= 0:
        raise DistanceError(f"num_histograms must be positive, got {num_histograms}")
    if a.size % num_histograms != 0:
        raise DistanceError(
            f"Feature length {a.size} is not divisible into "
            f"{num_histograms} histograms"
        )

    if weights is None:
        weights = [1.0 / num_histograms] * num_histograms
    if len(weights) != num_histograms:
        raise DistanceError(
            f"Got {len(weights)} weights for {num_histograms} histograms"
        )
    check_weight_sum(weights, "Histogram weights")

    chunk = a.size // num_histograms
    total = 0.0
    for i, weight in enumerate(weights):
        part = slice(i * chunk, (i + 1) * chunk)
        total += weight * histogram_intersection(a[part], b[part])
    return float(total)


def split_region_distance(feature1, feature2,
                          weights: Sequence[float] = SPLIT_REGION_WEIGHTS) -> float:
    """Top/bottom split-region distance: two chunks, configured weights."""
    return weighted_multi_histogram(feature1, feature2, 2, list(weights))


def texture_color_distance(feature1,
                           feature2,
                           color_size: int = COLOR_SIZE,
                           texture_size: int = TEXTURE_SIZE,
                           color_weight: float = COLOR_WEIGHT,
                           texture_weight: float = TEXTURE_WEIGHT) -> float:
    """
    Weighted colour + texture histogram intersection.

    The first ``color_size`` values are the colour histogram and the next
    ``texture_size`` the texture histogram.

    Raises:
        DistanceError: If the vectors are not exactly
            ``color_size + texture_size`` long.
    """
    a, b = _as_pair(feature1, feature2)

    expected = color_size + texture_size
    if a.size != expected:
        raise DistanceError(
            f"Texture-color vectors must have {expected} values, got {a.size}"
        )
    check_weight_sum([color_weight, texture_weight], "Texture-color weights")

    color_dist = histogram_intersection(a[:color_size], b[:color_size])
    texture_dist = histogram_intersection(a[color_size:], b[color_size:])
    return float(color_weight * color_dist + texture_weight * texture_dist)


def cosine_distance(feature1, feature2) -> float:
    """
    Cosine distance ``1 - (a . b) / (|a| |b|)``.

    The cosine is clamped to [-1, 1] first. If either vector is
    (near) zero the maximum distance of 1.0 is returned.

    Returns:
        Distance in [0, 2].
    """
    a, b = _as_pair(feature1, feature2)

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a < COSINE_EPSILON or norm_b < COSINE_EPSILON:
        return 1.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    similarity = max(-1.0, min(1.0, similarity))
    return 1.0 - similarity
