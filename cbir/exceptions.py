"""
Exception types raised by the retrieval pipeline.

Extraction and distance failures are raised rather than returned as
sentinel values, so a caller can always tell a failed comparison apart
from a legitimate distance. Batch layers (directory extraction, distance
computation over a store) catch these per item and keep going.
"""

from enum import Enum


class CBIRError(Exception):
    """Base class for all retrieval pipeline errors."""


class FeatureExtractionError(CBIRError, ValueError):
    """Image could not be turned into a feature vector."""


class DistanceError(CBIRError, ValueError):
    """Two feature vectors could not be compared."""


class StoreLookupError(CBIRError, KeyError):
    """Identifier is missing from a feature store."""

    def __str__(self):
        # KeyError repr-quotes its argument
        return str(self.args[0]) if self.args else ""


class QueryStage(str, Enum):
    """Stages of a single retrieval query, in execution order."""

    LOAD_TARGET = "load_target"
    LOAD_STORE = "load_store"
    LOAD_JOIN_STORE = "load_join_store"
    COMPUTE_DISTANCES = "compute_distances"
    RANK = "rank"
    RETURN_TOP_K = "return_top_k"


class QueryError(CBIRError):
    """A single-target query failed at the given stage."""

    def __init__(self, stage: QueryStage, message: str):
        super().__init__(f"[{stage.value}] {message}")
        self.stage = stage
