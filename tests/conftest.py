"""Shared test fixtures for retrieval tests."""

import numpy as np
import cv2
import pytest

from cbir.feature_store import FeatureRecord, FeatureStore


@pytest.fixture
def red_square_image():
    """Generate a 200x200 red square on white background (BGR)."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    img[40:160, 40:160] = [30, 30, 200]  # Red square
    return img


@pytest.fixture
def blue_circle_image():
    """Generate a 200x200 blue circle on white background (BGR)."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    cv2.circle(img, (100, 100), 60, (200, 30, 30), -1)
    return img


@pytest.fixture
def sky_image():
    """Generate a 120x90 scene: blue sky over a green field (BGR)."""
    img = np.zeros((90, 120, 3), dtype=np.uint8)
    img[:45] = [220, 120, 40]   # Saturated blue
    img[45:] = [40, 160, 60]    # Green
    return img


@pytest.fixture
def textured_image():
    """Generate a 200x200 checkerboard (strong gradients)."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 200
    for y in range(0, 200, 20):
        for x in range(0, 200, 20):
            if (x // 20 + y // 20) % 2 == 0:
                img[y:y+20, x:x+20] = [50, 50, 50]
    return img


@pytest.fixture
def noise_image():
    """Generate a 200x200 random noise image."""
    rng = np.random.RandomState(42)
    return rng.randint(0, 255, (200, 200, 3), dtype=np.uint8)


@pytest.fixture
def gradient_image():
    """Generate a 64x48 image whose values ramp left to right."""
    ramp = np.tile(np.arange(0, 256, 4, dtype=np.uint8), (48, 1))
    return np.dstack([ramp, ramp // 2, 255 - ramp])


class FakeEmbedder:
    """Deterministic stand-in for a CNN: mean colour per band, padded to 512."""

    def __init__(self, dim=512):
        self.dim = dim
        self.calls = 0

    def embed(self, image_np):
        self.calls += 1
        small = cv2.resize(image_np, (8, 8), interpolation=cv2.INTER_AREA)
        vec = np.zeros(self.dim, dtype=np.float32)
        flat = small.reshape(-1).astype(np.float32) / 255.0
        vec[:flat.size] = flat[:self.dim]
        vec[-1] = 1.0
        return vec


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def make_store():
    """Build a FeatureStore from {filename: vector} pairs, in order."""
    def _make(items):
        return FeatureStore(
            FeatureRecord(name, np.asarray(vec, dtype=np.float32))
            for name, vec in items
        )
    return _make


@pytest.fixture
def image_dir(tmp_path, red_square_image, blue_circle_image, sky_image,
              textured_image):
    """Directory of four images plus files that must be ignored."""
    cv2.imwrite(str(tmp_path / "b_blue.png"), blue_circle_image)
    cv2.imwrite(str(tmp_path / "a_red.png"), red_square_image)
    cv2.imwrite(str(tmp_path / "c_sky.PNG"), sky_image)
    cv2.imwrite(str(tmp_path / "d_check.bmp"), textured_image)
    (tmp_path / "notes.txt").write_text("not an image")
    (tmp_path / "broken.jpg").write_bytes(b"not really a jpeg")
    return tmp_path
