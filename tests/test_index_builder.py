"""Tests for batch extraction and FAISS index construction."""

import time

import numpy as np
import faiss
import pytest

from cbir.index_builder import (
    list_image_filenames, extract_directory, build_feature_store,
    build_faiss_index,
)
from cbir.embedding import OnnxEmbedder
from cbir.feature_store import FeatureStore
from cbir.features import FeatureType


class SlowStatefulNet:
    """Holds the input between setInput and forward, like cv2.dnn.Net."""

    def __init__(self):
        self._blob = None

    def setInput(self, blob):
        self._blob = blob

    def forward(self, layer):
        time.sleep(0.01)
        out = np.zeros((1, 512), dtype=np.float32)
        out[0, :3] = self._blob[0].mean(axis=(1, 2))
        return out


class TestListImageFilenames:
    """Tests for the directory listing."""

    def test_sorted_and_filtered(self, image_dir):
        assert list_image_filenames(str(image_dir)) == [
            "a_red.png", "b_blue.png", "broken.jpg", "c_sky.PNG", "d_check.bmp",
        ]

    def test_ignores_subdirectories(self, image_dir):
        (image_dir / "folder.jpg").mkdir()
        assert "folder.jpg" not in list_image_filenames(str(image_dir))

    def test_missing_directory_raises(self, tmp_path):
        with pytest.raises(NotADirectoryError):
            list_image_filenames(str(tmp_path / "missing"))


class TestExtractDirectory:
    """Tests for per-directory extraction."""

    def test_counts_and_order(self, image_dir):
        records, stats = extract_directory(str(image_dir), "baseline")
        assert stats == {"total": 5, "processed": 4, "errors": 1}
        assert [r.filename for r in records] == [
            "a_red.png", "b_blue.png", "c_sky.PNG", "d_check.bmp",
        ]
        assert all(r.features.shape == (147,) for r in records)

    def test_threaded_matches_sequential(self, image_dir):
        sequential, _ = extract_directory(str(image_dir), "texture")
        threaded, stats = extract_directory(str(image_dir), "texture", max_workers=3)
        assert stats["processed"] == 4
        assert [r.filename for r in threaded] == [r.filename for r in sequential]
        for a, b in zip(sequential, threaded):
            assert np.array_equal(a.features, b.features)

    def test_extraction_failures_skipped(self, tmp_path):
        import cv2
        cv2.imwrite(str(tmp_path / "tiny.png"), np.zeros((4, 4, 3), dtype=np.uint8))
        cv2.imwrite(str(tmp_path / "ok.png"), np.zeros((20, 20, 3), dtype=np.uint8))
        records, stats = extract_directory(str(tmp_path), FeatureType.FIXED_PATCH)
        assert [r.filename for r in records] == ["ok.png"]
        assert stats["errors"] == 1

    def test_embedding_needs_embedder(self, image_dir):
        with pytest.raises(ValueError, match="embedder"):
            extract_directory(str(image_dir), "dnn")

    def test_embedding_with_embedder(self, image_dir, fake_embedder):
        records, stats = extract_directory(str(image_dir), "dnn", embedder=fake_embedder)
        assert stats["processed"] == 4
        assert all(r.features.shape == (512,) for r in records)

    def test_threaded_shared_network_keeps_embeddings_aligned(self, image_dir):
        embedder = OnnxEmbedder(net=SlowStatefulNet())
        sequential, _ = extract_directory(str(image_dir), "dnn", embedder=embedder)
        threaded, stats = extract_directory(str(image_dir), "dnn",
                                            embedder=embedder, max_workers=4)
        assert stats["processed"] == 4
        assert [r.filename for r in threaded] == [r.filename for r in sequential]
        for a, b in zip(sequential, threaded):
            assert np.array_equal(a.features, b.features), a.filename
        # Each image got a distinct embedding
        assert len({tuple(r.features[:3]) for r in threaded}) == 4


class TestBuildFeatureStore:
    """Tests for writing a store from a directory."""

    def test_writes_loadable_store(self, image_dir, tmp_path):
        output = tmp_path / "out" / "histogram.csv"
        result = build_feature_store(str(image_dir), str(output), "histogram")
        assert result["success"]
        assert result["processed"] == 4
        assert result["errors"] == 1
        assert result["dimensions"] == 256

        store = FeatureStore.load(str(output), expected_dim=256)
        assert store.filenames == ["a_red.png", "b_blue.png", "c_sky.PNG", "d_check.bmp"]

    def test_empty_directory(self, tmp_path):
        result = build_feature_store(str(tmp_path), str(tmp_path / "x.csv"), "baseline")
        assert not result["success"]
        assert "error" in result
        assert not (tmp_path / "x.csv").exists()


class TestBuildFaissIndex:
    """Tests for exact FAISS indexes over stores."""

    def test_fixed_patch_uses_l2(self, make_store):
        store = make_store([(f"{i}.jpg", np.full(147, i)) for i in range(5)])
        index = build_faiss_index(store, "baseline")
        assert isinstance(index, faiss.IndexFlatL2)
        assert index.ntotal == 5
        assert index.d == 147

    def test_embedding_uses_inner_product(self, make_store):
        rng = np.random.RandomState(0)
        store = make_store([(f"{i}.jpg", rng.rand(512)) for i in range(5)])
        index = build_faiss_index(store, FeatureType.EMBEDDING)
        assert isinstance(index, faiss.IndexFlatIP)

    def test_does_not_modify_store(self, make_store):
        store = make_store([("a.jpg", np.full(512, 3.0))])
        build_faiss_index(store, "dnn")
        assert store.lookup("a.jpg")[0] == 3.0

    def test_histogram_types_rejected(self, make_store):
        store = make_store([("a.jpg", np.ones(256) / 256)])
        with pytest.raises(ValueError, match="No FAISS index"):
            build_faiss_index(store, "histogram")

    def test_dimension_mismatch_raises(self, make_store):
        store = make_store([("a.jpg", np.ones(100))])
        with pytest.raises(ValueError, match="dimension"):
            build_faiss_index(store, "baseline")

    def test_empty_store_raises(self):
        with pytest.raises(ValueError, match="empty"):
            build_faiss_index(FeatureStore([]), "baseline")
