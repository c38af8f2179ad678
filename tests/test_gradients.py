"""Tests for the separable gradient operators."""

import numpy as np
import pytest

from cbir.gradients import grad_x, grad_y, magnitude
from cbir.exceptions import FeatureExtractionError


def _vertical_edge():
    """5x5 image, dark left three columns, value 100 on the right two."""
    img = np.zeros((5, 5, 3), dtype=np.uint8)
    img[:, 3:] = 100
    return img


def _horizontal_edge():
    """5x5 image, value 100 on the top three rows, dark below."""
    img = np.zeros((5, 5, 3), dtype=np.uint8)
    img[:3] = 100
    return img


class TestGradX:
    """Tests for the horizontal gradient."""

    def test_output_shape_and_dtype(self, noise_image):
        gx = grad_x(noise_image)
        assert gx.shape == noise_image.shape
        assert gx.dtype == np.int16

    def test_constant_image_is_zero(self):
        img = np.full((10, 12, 3), 77, dtype=np.uint8)
        assert not np.any(grad_x(img))

    def test_vertical_edge_response(self):
        gx = grad_x(_vertical_edge())
        expected_row = [0, 0, 100, 100, 0]
        for row in range(5):
            for ch in range(3):
                assert list(gx[row, :, ch]) == expected_row

    def test_boundary_columns_zero(self, noise_image):
        gx = grad_x(noise_image)
        assert not np.any(gx[:, 0])
        assert not np.any(gx[:, -1])

    def test_smoothing_truncates(self):
        img = np.zeros((3, 3, 3), dtype=np.uint8)
        img[0, 2] = 1
        img[1, 2] = 1
        gx = grad_x(img)[:, :, 0]
        # Middle row smooths to (1 + 2 + 0) // 4 == 0; top row is copied
        assert gx.tolist() == [[0, 1, 0], [0, 0, 0], [0, 0, 0]]

    def test_negative_values(self):
        img = np.zeros((5, 5, 3), dtype=np.uint8)
        img[:, :2] = 200
        gx = grad_x(img)
        assert gx[2, 1, 0] == -200

    def test_does_not_modify_input(self, noise_image):
        before = noise_image.copy()
        grad_x(noise_image)
        assert np.array_equal(before, noise_image)

    def test_single_pixel_image(self):
        gx = grad_x(np.full((1, 1, 3), 9, dtype=np.uint8))
        assert gx.shape == (1, 1, 3)
        assert not np.any(gx)

    def test_rejects_grayscale(self):
        with pytest.raises(FeatureExtractionError):
            grad_x(np.zeros((5, 5), dtype=np.uint8))


class TestGradY:
    """Tests for the vertical gradient."""

    def test_output_shape_and_dtype(self, noise_image):
        gy = grad_y(noise_image)
        assert gy.shape == noise_image.shape
        assert gy.dtype == np.int16

    def test_horizontal_edge_positive_up(self):
        gy = grad_y(_horizontal_edge())
        expected_col = [0, 0, 100, 100, 0]
        for col in range(5):
            assert list(gy[:, col, 1]) == expected_col

    def test_boundary_rows_zero(self, noise_image):
        gy = grad_y(noise_image)
        assert not np.any(gy[0])
        assert not np.any(gy[-1])

    def test_vertical_edge_has_no_vertical_gradient(self):
        assert not np.any(grad_y(_vertical_edge()))

    def test_rejects_empty(self):
        with pytest.raises(FeatureExtractionError, match="empty"):
            grad_y(np.zeros((0, 0, 3), dtype=np.uint8))


class TestMagnitude:
    """Tests for the gradient magnitude combiner."""

    def test_pythagorean(self):
        gx = np.full((2, 2, 3), 3, dtype=np.int16)
        gy = np.full((2, 2, 3), -4, dtype=np.int16)
        mag = magnitude(gx, gy)
        assert mag.dtype == np.uint8
        assert np.all(mag == 5)

    def test_clamps_to_255(self):
        gx = np.full((2, 2, 3), 255, dtype=np.int16)
        gy = np.full((2, 2, 3), -255, dtype=np.int16)
        assert np.all(magnitude(gx, gy) == 255)

    def test_truncates(self):
        gx = np.full((1, 1, 3), 1, dtype=np.int16)
        gy = np.full((1, 1, 3), 1, dtype=np.int16)
        # sqrt(2) == 1.414...
        assert np.all(magnitude(gx, gy) == 1)

    def test_size_mismatch_raises(self):
        gx = np.zeros((4, 4, 3), dtype=np.int16)
        gy = np.zeros((4, 5, 3), dtype=np.int16)
        with pytest.raises(FeatureExtractionError, match="differ"):
            magnitude(gx, gy)

    def test_wrong_dtype_raises(self):
        gx = np.zeros((4, 4, 3), dtype=np.uint8)
        gy = np.zeros((4, 4, 3), dtype=np.int16)
        with pytest.raises(FeatureExtractionError, match="int16"):
            magnitude(gx, gy)

    def test_wrong_channels_raises(self):
        gx = np.zeros((4, 4), dtype=np.int16)
        with pytest.raises(FeatureExtractionError):
            magnitude(gx, gx)

    def test_pipeline_on_real_image(self, textured_image):
        mag = magnitude(grad_x(textured_image), grad_y(textured_image))
        assert mag.shape == textured_image.shape
        assert mag.max() > 0
