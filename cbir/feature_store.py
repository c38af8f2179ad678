"""
Flat-text feature store: one ``filename,v1,v2,...,vN`` line per image.

Values are written in fixed-point with 6 fractional digits, no header,
no quoting; filenames must not contain commas. Loading is tolerant:
malformed lines and unparsable values are skipped with a warning, and a
line that yields no values is dropped, so one bad row never aborts a
whole database load.

Values are read back as float32. A write-then-read round trip is exact
to 1e-6 only for magnitudes up to about 8; beyond that the float32
spacing dominates and the error is bounded by 5e-7 plus about 6e-8
times the magnitude (fixed-patch values up to 255 come back exact,
being integers).

FeatureStore keeps records in file order and builds a filename index
once, so joined lookups during batch distance computation stay O(1).
Duplicate filenames are allowed; lookups return the first record.
"""

import os
import logging
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional

import numpy as np

from .exceptions import StoreLookupError

logger = logging.getLogger(__name__)

FLOAT_PRECISION = 6


class FeatureRecord(NamedTuple):
    """Image filename paired with its feature vector."""

    filename: str
    features: np.ndarray


def format_record(record: FeatureRecord,
                  precision: int = FLOAT_PRECISION) -> str:
    """Render one record as a store line (without the newline)."""
    values = ",".join(f"{float(v):.{precision}f}" for v in record.features)
    return f"{record.filename},{values}"


def parse_line(line: str,
               line_number: int = 0,
               expected_dim: Optional[int] = None) -> Optional[FeatureRecord]:
    """
    Parse one store line.

    Args:
        line: Raw line, trailing newline allowed.
        line_number: 1-based position, used in warnings.
        expected_dim: If given, lines with a different value count are
            rejected.

    Returns:
        FeatureRecord, or None if the line is blank or unusable.
    """
    line = line.strip()
    if not line:
        return None

    tokens = line.split(",")
    filename = tokens[0].strip()
    if not filename:
        logger.warning(f"Malformed line {line_number}: missing filename")
        return None

    if expected_dim is not None and len(tokens) - 1 != expected_dim:
        logger.warning(
            f"Malformed line {line_number}: {len(tokens) - 1} values, "
            f"expected {expected_dim}"
        )
        return None

    values = []
    for token in tokens[1:]:
        try:
            values.append(float(token))
        except ValueError:
            logger.warning(f"Invalid float value on line {line_number}: {token!r}")

    if expected_dim is not None and len(values) != expected_dim:
        logger.warning(
            f"Malformed line {line_number}: only {len(values)} of "
            f"{expected_dim} values parsed"
        )
        return None

    if not values:
        logger.warning(f"No features found on line {line_number}")
        return None

    return FeatureRecord(filename, np.array(values, dtype=np.float32))


def write_feature_csv(path: str,
                      records: Iterable[FeatureRecord],
                      precision: int = FLOAT_PRECISION) -> int:
    """
    Write records to a store file, replacing it.

    Returns:
        Number of records written.
    """
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    count = 0
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        for record in records:
            f.write(format_record(record, precision))
            f.write("\n")
            count += 1

    logger.info(f"Wrote {count} feature vectors to {path}")
    return count


def read_feature_csv(path: str,
                     expected_dim: Optional[int] = None) -> List[FeatureRecord]:
    """
    Read every usable record from a store file.

    Raises:
        OSError: If the file cannot be opened.
    """
    records = []
    skipped = 0
    with open(path, "r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            record = parse_line(line, line_number, expected_dim)
            if record is None:
                if line.strip():
                    skipped += 1
                continue
            records.append(record)

    logger.info(
        f"Read {len(records)} feature vectors from {path}"
        + (f" ({skipped} lines skipped)" if skipped else "")
    )
    return records


class FeatureStore:
    """
    Ordered, read-only collection of feature records for one feature type.
    """

    def __init__(self, records: Iterable[FeatureRecord]):
        self.records: List[FeatureRecord] = [
            FeatureRecord(r.filename, np.asarray(r.features, dtype=np.float32))
            for r in records
        ]

        self._index: Dict[str, int] = {}
        for i, record in enumerate(self.records):
            # First occurrence wins for duplicate filenames
            self._index.setdefault(record.filename, i)

        duplicates = len(self.records) - len(self._index)
        if duplicates:
            logger.warning(f"Feature store has {duplicates} duplicate filenames")

    @classmethod
    def load(cls, path: str, expected_dim: Optional[int] = None) -> "FeatureStore":
        """Load a store file; see read_feature_csv."""
        return cls(read_feature_csv(path, expected_dim))

    def save(self, path: str, precision: int = FLOAT_PRECISION) -> int:
        return write_feature_csv(path, self.records, precision)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[FeatureRecord]:
        return iter(self.records)

    def __contains__(self, filename) -> bool:
        return filename in self._index

    @property
    def filenames(self) -> List[str]:
        return [r.filename for r in self.records]

    @property
    def dimension(self) -> Optional[int]:
        """Length of the first record's vector, or None when empty."""
        if not self.records:
            return None
        return int(self.records[0].features.size)

    def get(self, filename: str) -> Optional[np.ndarray]:
        """Feature vector for filename, or None if absent."""
        i = self._index.get(filename)
        return None if i is None else self.records[i].features

    def lookup(self, filename: str) -> np.ndarray:
        """
        Feature vector for filename.

        Raises:
            StoreLookupError: If no record has this filename.
        """
        features = self.get(filename)
        if features is None:
            raise StoreLookupError(f"'{filename}' not found in feature store")
        return features

    def as_matrix(self) -> np.ndarray:
        """
        Stack all vectors into an (N, dim) float32 array.

        Raises:
            ValueError: If records have different lengths.
        """
        if not self.records:
            return np.zeros((0, 0), dtype=np.float32)
        dims = {r.features.size for r in self.records}
        if len(dims) != 1:
            raise ValueError(f"Records have mixed dimensions: {sorted(dims)}")
        return np.vstack([r.features for r in self.records]).astype(np.float32)
