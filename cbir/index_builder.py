"""
Batch feature extraction and FAISS index construction.

Processes a directory of images and builds the retrieval databases:
    - Feature store (.csv): one vector per image for a given feature type
    - FAISS index: exact in-memory index over a store, for the feature
      types whose metric FAISS can reproduce (SSD and cosine)

Extraction is independent per image, so it can run on a thread pool;
results are always collected in directory order before writing.
"""

import os
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

import cv2
import faiss
import numpy as np

from .exceptions import CBIRError
from .feature_store import FeatureRecord, FeatureStore, write_feature_csv
from .features import FeatureType, extract_feature, get_pipeline

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.bmp'}

# Log progress every N images
PROGRESS_INTERVAL = 500


def list_image_filenames(image_dir: str) -> List[str]:
    """
    Sorted bare filenames of the images in a directory.

    Only regular files with a recognised extension (case-insensitive)
    are returned.

    Raises:
        NotADirectoryError: If image_dir is not a directory.
    """
    if not os.path.isdir(image_dir):
        raise NotADirectoryError(f"Directory does not exist: {image_dir}")

    filenames = sorted(
        f for f in os.listdir(image_dir)
        if os.path.splitext(f)[1].lower() in IMAGE_EXTENSIONS
        and os.path.isfile(os.path.join(image_dir, f))
    )
    logger.info(f"Found {len(filenames)} images in {image_dir}")
    return filenames


def _extract_one(image_dir: str,
                 filename: str,
                 feature_type: FeatureType,
                 embedder) -> Optional[FeatureRecord]:
    filepath = os.path.join(image_dir, filename)
    image = cv2.imread(filepath)
    if image is None:
        logger.warning(f"Could not read: {filename}")
        return None

    try:
        features = extract_feature(image, feature_type, embedder=embedder)
    except CBIRError as e:
        logger.warning(f"Failed to process {filename}: {e}")
        return None

    return FeatureRecord(filename, features)


def extract_directory(image_dir: str,
                      feature_type,
                      embedder=None,
                      max_workers: int = 1) -> Tuple[List[FeatureRecord], dict]:
    """
    Extract one feature vector per image in a directory.

    Args:
        image_dir: Directory containing images.
        feature_type: FeatureType or tag.
        embedder: Embedder instance, required for the embedding type. It
            is shared by all worker threads; OnnxEmbedder serializes its
            forward pass, other embedders must be thread-safe themselves.
        max_workers: Threads to extract with; 1 runs inline.

    Returns:
        Tuple of (records in filename order, stats dict with 'total',
        'processed' and 'errors' counts).
    """
    feature_type = FeatureType.from_tag(feature_type)
    if feature_type is FeatureType.EMBEDDING and embedder is None:
        raise ValueError("Embedding extraction needs an embedder")

    filenames = list_image_filenames(image_dir)
    logger.info(
        f"Extracting {feature_type.value} features from "
        f"{len(filenames)} images in {image_dir}"
    )

    def work(filename):
        return _extract_one(image_dir, filename, feature_type, embedder)

    results = []
    if max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            for i, record in enumerate(pool.map(work, filenames)):
                results.append(record)
                if (i + 1) % PROGRESS_INTERVAL == 0:
                    logger.info(f"Processed {i + 1}/{len(filenames)} images")
    else:
        for i, filename in enumerate(filenames):
            results.append(work(filename))
            if (i + 1) % PROGRESS_INTERVAL == 0:
                logger.info(f"Processed {i + 1}/{len(filenames)} images")

    records = [r for r in results if r is not None]
    stats = {
        "total": len(filenames),
        "processed": len(records),
        "errors": len(filenames) - len(records),
    }
    logger.info(
        f"Extraction complete: {stats['processed']} succeeded, "
        f"{stats['errors']} failed"
    )
    return records, stats


def build_feature_store(image_dir: str,
                        output_csv: str,
                        feature_type,
                        embedder=None,
                        max_workers: int = 1) -> dict:
    """
    Extract features for a directory and write them as a store file.

    Returns:
        Dict with 'success', 'total', 'processed', 'errors',
        'dimensions' and 'output_path'.
    """
    records, stats = extract_directory(image_dir, feature_type,
                                       embedder=embedder,
                                       max_workers=max_workers)
    if not records:
        return {"success": False, "error": "No valid images processed", **stats}

    write_feature_csv(output_csv, records)

    return {
        "success": True,
        **stats,
        "dimensions": int(records[0].features.size),
        "output_path": output_csv,
    }


def build_faiss_index(store: FeatureStore, feature_type) -> faiss.Index:
    """
    Build an exact FAISS index over a feature store.

    Fixed-patch stores get an IndexFlatL2 (squared L2 is SSD). Embedding
    stores get an IndexFlatIP over L2-normalized vectors (inner product
    is cosine similarity). Row i of the index is record i of the store.

    Raises:
        ValueError: For empty stores or feature types FAISS cannot rank.
    """
    feature_type = FeatureType.from_tag(feature_type)
    if len(store) == 0:
        raise ValueError("Cannot index an empty feature store")

    data = store.as_matrix()
    dim = data.shape[1]
    expected = get_pipeline(feature_type).dimension
    if dim != expected:
        raise ValueError(
            f"Store dimension {dim} doesn't match {feature_type.value} "
            f"dimension {expected}"
        )

    if feature_type is FeatureType.FIXED_PATCH:
        index = faiss.IndexFlatL2(dim)
    elif feature_type is FeatureType.EMBEDDING:
        data = np.ascontiguousarray(data)
        faiss.normalize_L2(data)
        index = faiss.IndexFlatIP(dim)
    else:
        raise ValueError(
            f"No FAISS index for {feature_type.value} features; "
            f"use exact distances instead"
        )

    index.add(data)
    logger.info(f"Built {type(index).__name__} index: {index.ntotal} vectors, {dim}d")
    return index
