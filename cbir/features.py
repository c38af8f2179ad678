"""
Feature extractors and the feature-type registry.

Each feature type pairs an extractor (BGR image -> float32 vector of a
fixed length) with the distance metric used to compare its vectors:

    baseline        147  centre 7x7 patch, B,G,R per pixel     SSD
    histogram       256  16x16 rg-chromaticity histogram       intersection
    multihistogram  128  8x8 chromaticity, top + bottom half   weighted intersection
    texture         272  16x16 chromaticity + 16 gradient bins texture-color
    dnn             512  pretrained CNN embedding (external)   cosine
    custom          209  blue fraction + gradient histogram    blue-scene composite
                         + 8x8 chromaticity over three bands   (+ joined embedding)

Extractors raise FeatureExtractionError for invalid input and never
return a partially filled vector.
"""

import numpy as np
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .distances import (
    ssd, histogram_intersection, split_region_distance,
    texture_color_distance, cosine_distance,
)
from .embedding import EMBEDDING_DIM
from .exceptions import FeatureExtractionError
from .histograms import (
    chromaticity_histogram, gradient_magnitude_histogram,
    CHROMA_BINS, REGION_BINS, GRADIENT_BINS,
)
from .preprocessing import (
    validate_image, extract_center_patch, split_rows, compute_blue_fraction,
)
from .scoring import blue_scene_distance, BLUE_SCENE_DIM

logger = logging.getLogger(__name__)

PATCH_SIZE = 7
FIXED_PATCH_DIM = PATCH_SIZE * PATCH_SIZE * 3
CHROMATICITY_DIM = CHROMA_BINS * CHROMA_BINS
SPLIT_REGION_DIM = 2 * REGION_BINS * REGION_BINS
COLOR_TEXTURE_DIM = CHROMATICITY_DIM + GRADIENT_BINS
# Blue-scene layout is fixed to match the composite distance
BLUE_SCENE_GRADIENT_BINS = 16
BLUE_SCENE_REGION_BINS = 8


class FeatureType(str, Enum):
    """Closed set of supported feature types, valued by their tag."""

    FIXED_PATCH = "baseline"
    CHROMATICITY = "histogram"
    SPLIT_REGION = "multihistogram"
    COLOR_TEXTURE = "texture"
    EMBEDDING = "dnn"
    BLUE_SCENE = "custom"

    @classmethod
    def from_tag(cls, tag: str) -> "FeatureType":
        """Parse a tag ("baseline") or member name ("FIXED_PATCH")."""
        if isinstance(tag, cls):
            return tag
        key = str(tag).strip()
        for member in cls:
            if key.lower() == member.value or key.upper() == member.name:
                return member
        valid = ", ".join(m.value for m in cls)
        raise ValueError(f"Unknown feature type '{tag}' (expected one of: {valid})")


def _finish(feature: np.ndarray, expected: int, label: str) -> np.ndarray:
    feature = np.asarray(feature, dtype=np.float32).reshape(-1)
    if feature.size != expected:
        raise FeatureExtractionError(
            f"Expected {expected} {label} features, got {feature.size}"
        )
    return feature


def extract_fixed_patch(image_np: np.ndarray) -> np.ndarray:
    """
    Centre 7x7 patch as a 147-value vector.

    Values are emitted B, G, R per pixel, scanning the patch row by row.

    Raises:
        FeatureExtractionError: If the image is smaller than 7x7.
    """
    patch = extract_center_patch(image_np, PATCH_SIZE)
    return _finish(patch.reshape(-1), FIXED_PATCH_DIM, "fixed-patch")


def extract_chromaticity(image_np: np.ndarray,
                         bins: int = CHROMA_BINS) -> np.ndarray:
    """Whole-image rg-chromaticity histogram (bins * bins values)."""
    hist = chromaticity_histogram(image_np, bins)
    return _finish(hist, bins * bins, "chromaticity")


def extract_split_region(image_np: np.ndarray,
                         bins: int = REGION_BINS) -> np.ndarray:
    """
    Chromaticity histograms of the top and bottom halves, concatenated.

    The split row is ``rows // 2``; with an odd height the top half is
    one row shorter.
    """
    top, bottom = split_rows(image_np, 2)
    feature = np.concatenate([
        chromaticity_histogram(top, bins),
        chromaticity_histogram(bottom, bins),
    ])
    return _finish(feature, 2 * bins * bins, "split-region")


def extract_color_texture(image_np: np.ndarray,
                          color_bins: int = CHROMA_BINS,
                          texture_bins: int = GRADIENT_BINS) -> np.ndarray:
    """Whole-image chromaticity histogram followed by the gradient histogram."""
    feature = np.concatenate([
        chromaticity_histogram(image_np, color_bins),
        gradient_magnitude_histogram(image_np, texture_bins),
    ])
    return _finish(feature, color_bins * color_bins + texture_bins,
                   "color-texture")


def extract_blue_scene(image_np: np.ndarray) -> np.ndarray:
    """
    209-value blue-scene descriptor.

    Layout:
        [0]       fraction of blue pixels (HSV)
        [1:17]    16-bin gradient magnitude histogram
        [17:81]   8x8 chromaticity histogram, top third
        [81:145]  8x8 chromaticity histogram, middle third
        [145:209] 8x8 chromaticity histogram, bottom third

    Bands are ``rows // 3`` tall; the bottom band takes the leftover rows.
    The matching embedding is not part of this vector and has to be
    joined from an embedding store by filename.
    """
    validate_image(image_np, min_rows=3)

    parts = [
        np.array([compute_blue_fraction(image_np)], dtype=np.float32),
        gradient_magnitude_histogram(image_np, BLUE_SCENE_GRADIENT_BINS),
    ]
    for band in split_rows(image_np, 3):
        parts.append(chromaticity_histogram(band, BLUE_SCENE_REGION_BINS))

    return _finish(np.concatenate(parts), BLUE_SCENE_DIM, "blue-scene")


def make_embedding_extractor(embedder) -> Callable[[np.ndarray], np.ndarray]:
    """Wrap an Embedder so it follows the extractor contract."""
    def extract_embedding(image_np: np.ndarray) -> np.ndarray:
        validate_image(image_np)
        return _finish(embedder.embed(image_np), EMBEDDING_DIM, "embedding")
    return extract_embedding


@dataclass(frozen=True)
class FeaturePipeline:
    """Extractor, metric and vector layout of one feature type."""

    feature_type: FeatureType
    extract: Optional[Callable[[np.ndarray], np.ndarray]]
    distance: Callable[..., float]
    dimension: int
    # Target vector is looked up in the store by filename, not extracted
    uses_lookup: bool = False
    # Distances also need a 512-value embedding per image
    needs_embedding_store: bool = False


PIPELINES = {
    FeatureType.FIXED_PATCH: FeaturePipeline(
        FeatureType.FIXED_PATCH, extract_fixed_patch, ssd, FIXED_PATCH_DIM),
    FeatureType.CHROMATICITY: FeaturePipeline(
        FeatureType.CHROMATICITY, extract_chromaticity,
        histogram_intersection, CHROMATICITY_DIM),
    FeatureType.SPLIT_REGION: FeaturePipeline(
        FeatureType.SPLIT_REGION, extract_split_region,
        split_region_distance, SPLIT_REGION_DIM),
    FeatureType.COLOR_TEXTURE: FeaturePipeline(
        FeatureType.COLOR_TEXTURE, extract_color_texture,
        texture_color_distance, COLOR_TEXTURE_DIM),
    FeatureType.EMBEDDING: FeaturePipeline(
        FeatureType.EMBEDDING, None, cosine_distance, EMBEDDING_DIM,
        uses_lookup=True),
    FeatureType.BLUE_SCENE: FeaturePipeline(
        FeatureType.BLUE_SCENE, extract_blue_scene, blue_scene_distance,
        BLUE_SCENE_DIM, needs_embedding_store=True),
}


def get_pipeline(feature_type) -> FeaturePipeline:
    """Look up the pipeline for a FeatureType or tag."""
    return PIPELINES[FeatureType.from_tag(feature_type)]


def extract_feature(image_np: np.ndarray, feature_type, embedder=None) -> np.ndarray:
    """
    Extract the feature vector of the given type from one image.

    Args:
        image_np: BGR uint8 image.
        feature_type: FeatureType or tag.
        embedder: Required for the embedding type only.

    Raises:
        FeatureExtractionError: On invalid input, or if an embedding is
            requested without an embedder.
    """
    pipeline = get_pipeline(feature_type)
    if pipeline.feature_type is FeatureType.EMBEDDING:
        if embedder is None:
            raise FeatureExtractionError(
                "Embedding features need an embedder; they are not computed locally"
            )
        return make_embedding_extractor(embedder)(image_np)
    return pipeline.extract(image_np)
