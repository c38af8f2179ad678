"""
Content-based image retrieval engine.

Orchestrates a query through fixed stages:
    1. LOAD_TARGET        extract the target vector from the query image,
                          or look it up by filename (embedding type); the
                          blue-scene type does both
    2. LOAD_STORE         the primary feature store (done at construction)
    3. LOAD_JOIN_STORE    the embedding store, for the blue-scene type
    4. COMPUTE_DISTANCES  type-specific distance to every record
    5. RANK               stable ascending sort
    6. RETURN_TOP_K       truncate; asking for more than exists is fine

A failure in any stage aborts the query with a QueryError naming the
stage. Per-record problems while computing distances (a vector of the
wrong length, a filename missing from the embedding store) only skip
that record.
"""

import logging
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

import faiss
import numpy as np

from .exceptions import CBIRError, QueryError, QueryStage
from .feature_store import FeatureStore
from .features import FeatureType, get_pipeline
from .scoring import rank_matches

logger = logging.getLogger(__name__)


class MatchResult(NamedTuple):
    """Database filename and its distance to the query."""

    filename: str
    distance: float


class RetrievalEngine:
    """
    Ranks the images of one feature store against a query.

    The blue-scene type also needs an embedding store, joined by
    filename.
    """

    def __init__(self,
                 store: FeatureStore,
                 feature_type,
                 embedding_store: Optional[FeatureStore] = None):
        """
        Args:
            store: Primary feature store for ``feature_type``.
            feature_type: FeatureType or tag.
            embedding_store: Embedding store joined by filename; required
                for the blue-scene type, ignored otherwise.

        Raises:
            QueryError: If the primary store is empty or a required
                embedding store is missing or empty.
        """
        self.feature_type = FeatureType.from_tag(feature_type)
        self.pipeline = get_pipeline(self.feature_type)

        if store is None or len(store) == 0:
            raise QueryError(QueryStage.LOAD_STORE, "Feature database is empty")
        self.store = store

        self.embedding_store = None
        if self.pipeline.needs_embedding_store:
            if embedding_store is None or len(embedding_store) == 0:
                raise QueryError(
                    QueryStage.LOAD_JOIN_STORE,
                    f"{self.feature_type.value} features need a non-empty "
                    f"embedding store"
                )
            self.embedding_store = embedding_store
            logger.info(
                f"Joined embedding store: {len(embedding_store)} vectors"
            )

        logger.info(
            f"Loaded {self.feature_type.value} store: {len(store)} vectors, "
            f"{store.dimension}d"
        )

    @classmethod
    def from_csv(cls,
                 feature_csv: str,
                 feature_type,
                 embedding_csv: Optional[str] = None) -> "RetrievalEngine":
        """Load the store file(s) and build an engine."""
        feature_type = FeatureType.from_tag(feature_type)
        try:
            store = FeatureStore.load(feature_csv)
        except OSError as e:
            raise QueryError(QueryStage.LOAD_STORE,
                             f"Could not read {feature_csv}: {e}") from e

        embedding_store = None
        if get_pipeline(feature_type).needs_embedding_store:
            if not embedding_csv:
                raise QueryError(QueryStage.LOAD_JOIN_STORE,
                                 "No embedding store given")
            try:
                embedding_store = FeatureStore.load(embedding_csv)
            except OSError as e:
                raise QueryError(QueryStage.LOAD_JOIN_STORE,
                                 f"Could not read {embedding_csv}: {e}") from e

        return cls(store, feature_type, embedding_store)

    def load_target(self,
                    target_image: Optional[np.ndarray] = None,
                    target_filename: Optional[str] = None
                    ) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        """
        Resolve the query into (target vector, target embedding).

        The embedding is only returned for the blue-scene type.

        Raises:
            QueryError: At LOAD_TARGET if extraction fails, an input is
                missing, or the filename is absent from a required store.
        """
        stage = QueryStage.LOAD_TARGET

        if self.pipeline.uses_lookup:
            if not target_filename:
                raise QueryError(stage, "Embedding queries need a target filename")
            try:
                return self.store.lookup(target_filename), None
            except CBIRError as e:
                raise QueryError(stage, str(e)) from e

        if target_image is None:
            raise QueryError(stage, "No target image given")
        try:
            target = self.pipeline.extract(target_image)
        except CBIRError as e:
            raise QueryError(stage, f"Failed to extract target features: {e}") from e

        target_embedding = None
        if self.pipeline.needs_embedding_store:
            if not target_filename:
                raise QueryError(stage, "Blue-scene queries need a target filename")
            try:
                target_embedding = self.embedding_store.lookup(target_filename)
            except CBIRError as e:
                raise QueryError(stage, f"No embedding for target: {e}") from e

        return target, target_embedding

    def compute_distances(self,
                          target: np.ndarray,
                          target_embedding: Optional[np.ndarray] = None
                          ) -> Tuple[List[MatchResult], int]:
        """
        Distance from the target to every record in the store.

        Returns:
            Tuple of (unsorted results in store order, number of records
            skipped).
        """
        distance = self.pipeline.distance
        results = []
        skipped = 0

        for record in self.store:
            try:
                if self.pipeline.needs_embedding_store:
                    embedding = self.embedding_store.get(record.filename)
                    if embedding is None:
                        logger.warning(
                            f"No embedding for {record.filename}, skipping"
                        )
                        skipped += 1
                        continue
                    dist = distance(target, record.features,
                                    target_embedding, embedding)
                else:
                    dist = distance(target, record.features)
            except CBIRError as e:
                logger.warning(
                    f"Error computing distance for {record.filename}: {e}"
                )
                skipped += 1
                continue

            results.append(MatchResult(record.filename, dist))

        return results, skipped

    def query_vector(self,
                     target: np.ndarray,
                     top_k: int = 3,
                     target_embedding: Optional[np.ndarray] = None
                     ) -> List[MatchResult]:
        """
        Rank the store against a ready target vector.

        Raises:
            QueryError: At COMPUTE_DISTANCES if no record could be compared.
        """
        if top_k < 0:
            raise QueryError(QueryStage.RETURN_TOP_K,
                             f"top_k must be non-negative, got {top_k}")
        if self.pipeline.needs_embedding_store and target_embedding is None:
            raise QueryError(QueryStage.LOAD_TARGET,
                             "Blue-scene queries need a target embedding")

        results, skipped = self.compute_distances(target, target_embedding)
        if not results:
            raise QueryError(
                QueryStage.COMPUTE_DISTANCES,
                f"No database entries could be compared ({skipped} skipped)"
            )

        ranked = rank_matches(results)[:top_k]

        logger.info(
            f"Query complete: {len(results)} compared, {skipped} skipped, "
            f"{len(ranked)} returned"
        )
        return ranked

    def query(self,
              target_image: Optional[np.ndarray] = None,
              target_filename: Optional[str] = None,
              top_k: int = 3) -> List[MatchResult]:
        """
        Find the top_k closest database images to a query.

        Args:
            target_image: BGR query image (all types except embedding).
            target_filename: Query filename; used for the embedding
                lookup (embedding and blue-scene types).
            top_k: Number of matches to return.

        Returns:
            MatchResults sorted by ascending distance. The query image
            itself is not filtered out if it is in the database.
        """
        target, target_embedding = self.load_target(target_image, target_filename)
        return self.query_vector(target, top_k, target_embedding)


def search_index(index: faiss.Index,
                 store: FeatureStore,
                 feature_type,
                 target: np.ndarray,
                 top_k: int = 3) -> List[MatchResult]:
    """
    Rank a store through an exact FAISS index built by build_faiss_index.

    Distances are converted back to this package's metrics: squared L2
    is already SSD, and inner product of normalized vectors becomes
    ``1 - similarity``.

    Raises:
        ValueError: If the target dimension doesn't match the index.
    """
    feature_type = FeatureType.from_tag(feature_type)

    query = np.asarray(target, dtype=np.float32).reshape(1, -1)
    if query.shape[1] != index.d:
        raise ValueError(
            f"Query dimension {query.shape[1]} doesn't match "
            f"index dimension {index.d}"
        )

    is_cosine = feature_type is FeatureType.EMBEDDING
    if is_cosine:
        query = np.ascontiguousarray(query)
        faiss.normalize_L2(query)

    k = min(top_k, index.ntotal)
    if k <= 0:
        return []
    distances, indices = index.search(query, k)

    results = []
    for dist, idx in zip(distances[0], indices[0]):
        if idx < 0 or idx >= len(store):
            continue
        value = float(dist)
        if is_cosine:
            value = 1.0 - max(-1.0, min(1.0, value))
        results.append(MatchResult(store.records[idx].filename, value))
    return results


def compare_embedding_rankings(store_a: FeatureStore,
                               store_b: FeatureStore,
                               query_filenames: Iterable[str],
                               top_k: int = 3) -> List[Dict]:
    """
    Compare how two embedding stores rank the same queries.

    For each query filename present in both stores, both stores are
    ranked by cosine distance with the query itself left out.

    Returns:
        One dict per query with 'query', 'matches_a', 'matches_b' and
        'overlap' (number of filenames shared by the two top-k lists).
        Queries missing from either store are logged and skipped.
    """
    engine_a = RetrievalEngine(store_a, FeatureType.EMBEDDING)
    engine_b = RetrievalEngine(store_b, FeatureType.EMBEDDING)

    comparisons = []
    for filename in query_filenames:
        if filename not in store_a or filename not in store_b:
            logger.warning(f"{filename} missing from an embedding store, skipping")
            continue

        ranked = []
        for engine in (engine_a, engine_b):
            matches = engine.query(target_filename=filename, top_k=len(engine.store))
            ranked.append([m for m in matches if m.filename != filename][:top_k])

        shared = {m.filename for m in ranked[0]} & {m.filename for m in ranked[1]}
        comparisons.append({
            "query": filename,
            "matches_a": ranked[0],
            "matches_b": ranked[1],
            "overlap": len(shared),
        })

    return comparisons
