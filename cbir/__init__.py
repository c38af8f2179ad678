"""
cbir: content-based image retrieval over handcrafted and CNN features.

Extracts fixed-length feature vectors from images, stores them as flat
text databases, and ranks database images against a query with a
metric matched to each feature type.

Modules:
    engine         RetrievalEngine query pipeline + FAISS search
    features       Feature extractors and the FeatureType registry
    histograms     Chromaticity and gradient-magnitude histograms
    gradients      Separable Sobel gradient operators
    distances      SSD, histogram intersection, cosine and friends
    scoring        Composite blue-scene distance + ranking
    embedding      Pretrained CNN embeddings via OpenCV DNN
    feature_store  Flat-text feature database I/O
    index_builder  Batch extraction over an image directory
    preprocessing  Image validation and region helpers
    cli            Command-line entry point
"""

__version__ = "1.0.0"
