"""
Composite blue-scene distance and result ranking.

The blue-scene distance is a weighted sum of four signals:

    blue       |blue_fraction_a - blue_fraction_b|
    texture    intersection of the 16-bin gradient histograms
    spatial    weighted intersection of the three 64-bin band histograms
    embedding  cosine distance of the 512-value CNN embeddings

Signal weights are loaded from the environment to allow tuning without
code changes, and can be overridden per call. See DEFAULT_WEIGHTS.
"""

import os
import logging
from typing import List, Sequence

from .distances import (
    histogram_intersection, weighted_multi_histogram, cosine_distance,
    check_weight_sum,
)
from .exceptions import DistanceError

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    "blue":      float(os.environ.get("CBIR_BLUE_W", "0.40")),
    "texture":   float(os.environ.get("CBIR_TEXTURE_W_CUSTOM", "0.20")),
    "spatial":   float(os.environ.get("CBIR_SPATIAL_W", "0.20")),
    "embedding": float(os.environ.get("CBIR_EMBED_W", "0.20")),
}

# Top / middle / bottom band weights for the spatial signal
SPATIAL_WEIGHTS = (0.33, 0.34, 0.33)

# Layout of the 209-value blue-scene vector
BLUE_SCENE_DIM = 209
BLUE_INDEX = 0
TEXTURE_SLICE = slice(1, 17)
SPATIAL_SLICE = slice(17, 209)
SPATIAL_BANDS = 3
EMBEDDING_DIM = 512


def _check_length(vector, expected: int, label: str) -> None:
    if vector is None or len(vector) != expected:
        got = 0 if vector is None else len(vector)
        raise DistanceError(f"{label} must have {expected} values, got {got}")


def blue_scene_distance(custom1,
                        custom2,
                        embedding1,
                        embedding2,
                        weights: dict = None,
                        spatial_weights: Sequence[float] = SPATIAL_WEIGHTS) -> float:
    """
    Weighted composite distance between two blue-scene descriptors.

    Args:
        custom1: 209-value blue-scene vector of the first image.
        custom2: 209-value blue-scene vector of the second image.
        embedding1: 512-value embedding of the first image.
        embedding2: 512-value embedding of the second image.
        weights: Optional override for the signal weights dict.
        spatial_weights: Per-band weights for the spatial signal.

    Returns:
        Non-negative weighted distance.

    Raises:
        DistanceError: If any input has the wrong length or a signal
            weight is missing.
    """
    _check_length(custom1, BLUE_SCENE_DIM, "Blue-scene vector")
    _check_length(custom2, BLUE_SCENE_DIM, "Blue-scene vector")
    _check_length(embedding1, EMBEDDING_DIM, "Embedding vector")
    _check_length(embedding2, EMBEDDING_DIM, "Embedding vector")

    w = weights if weights is not None else DEFAULT_WEIGHTS
    missing = sorted(set(DEFAULT_WEIGHTS) - set(w))
    if missing:
        raise DistanceError(f"Blue-scene weights missing: {', '.join(missing)}")
    check_weight_sum(list(w.values()), "Blue-scene weights")

    blue_dist = abs(float(custom1[BLUE_INDEX]) - float(custom2[BLUE_INDEX]))
    texture_dist = histogram_intersection(custom1[TEXTURE_SLICE],
                                          custom2[TEXTURE_SLICE])
    spatial_dist = weighted_multi_histogram(custom1[SPATIAL_SLICE],
                                            custom2[SPATIAL_SLICE],
                                            SPATIAL_BANDS,
                                            list(spatial_weights))
    embed_dist = cosine_distance(embedding1, embedding2)

    return float(
        w["blue"] * blue_dist
        + w["texture"] * texture_dist
        + w["spatial"] * spatial_dist
        + w["embedding"] * embed_dist
    )


def rank_matches(results: List) -> List:
    """
    Sort match results by distance, smallest first.

    The sort is stable, so equal distances keep store order.

    Args:
        results: Items with a ``distance`` attribute.

    Returns:
        New sorted list.
    """
    return sorted(results, key=lambda m: m.distance)
