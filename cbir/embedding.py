"""
Pretrained CNN embeddings through OpenCV's DNN module.

The network is an opaque oracle: an image goes in, 512 floats come out of
the designated flatten layer. Only the preprocessing contract matters
for reproducibility:

    - resize to 224x224, no centre crop
    - subtract the BGR mean (124, 116, 104)
    - scale by (1 / 255) * (1 / 0.226)
    - swap BGR -> RGB

Any object with an ``embed(image) -> np.ndarray`` method can stand in for
OnnxEmbedder, which is how tests avoid loading a real model. One
OnnxEmbedder may be shared between threads: preprocessing runs
concurrently, the forward pass is serialized on the shared network.
"""

import os
import cv2
import numpy as np
import logging
import threading
from typing import Optional, Protocol

from .exceptions import FeatureExtractionError
from .preprocessing import validate_image

logger = logging.getLogger(__name__)

EMBEDDING_DIM = 512
EMBED_INPUT_SIZE = 224
EMBED_MEAN = (124, 116, 104)
EMBED_SCALE = (1.0 / 255.0) * (1.0 / 0.226)

# Flatten layer of the ResNet18 v2 ONNX export
DEFAULT_OUTPUT_LAYER = os.environ.get(
    "CBIR_EMBED_LAYER", "onnx_node!resnetv22_flatten0_reshape0"
)


class Embedder(Protocol):
    """Anything that maps a BGR image to a fixed-length embedding."""

    def embed(self, image_np: np.ndarray) -> np.ndarray:
        ...


def preprocess_for_embedding(image_np: np.ndarray,
                             input_size: int = EMBED_INPUT_SIZE,
                             mean: tuple = EMBED_MEAN,
                             scale: float = EMBED_SCALE) -> np.ndarray:
    """
    Build the network input blob for a BGR image.

    Returns:
        Float32 NCHW blob of shape (1, 3, input_size, input_size).
    """
    validate_image(image_np)
    return cv2.dnn.blobFromImage(
        image_np,
        scalefactor=scale,
        size=(input_size, input_size),
        mean=mean,
        swapRB=True,
        crop=False,
        ddepth=cv2.CV_32F,
    )


class OnnxEmbedder:
    """
    Run a pretrained ONNX network and read one layer as the embedding.

    Either ``model_path`` (loaded with ``cv2.dnn.readNet``) or an already
    constructed ``net`` exposing ``setInput``/``forward`` must be given.
    """

    def __init__(self,
                 model_path: Optional[str] = None,
                 output_layer: str = DEFAULT_OUTPUT_LAYER,
                 net=None,
                 dim: int = EMBEDDING_DIM):
        if net is None:
            if not model_path:
                raise ValueError("Either model_path or net is required")
            net = cv2.dnn.readNet(model_path)
            if net.empty():
                raise ValueError(f"Failed to load network from {model_path}")
            logger.info(
                f"Loaded embedding network {model_path}: "
                f"{len(net.getLayerNames())} layers"
            )

        self.net = net
        self.output_layer = output_layer
        self.dim = dim
        # cv2.dnn.Net keeps the input blob between setInput and forward
        self._net_lock = threading.Lock()

    def embed(self, image_np: np.ndarray) -> np.ndarray:
        """
        Compute the embedding for one BGR image.

        Raises:
            FeatureExtractionError: If the image is invalid or the network
                output does not have exactly ``dim`` values.
        """
        blob = preprocess_for_embedding(image_np)
        with self._net_lock:
            self.net.setInput(blob)
            output = self.net.forward(self.output_layer)

        vector = np.asarray(output, dtype=np.float32).reshape(-1)
        if vector.size != self.dim:
            raise FeatureExtractionError(
                f"Embedding has {vector.size} values, expected {self.dim}"
            )
        return vector
