"""CLI interface for feature extraction and retrieval queries."""

import argparse
import logging
import os
import sys

import cv2

from .embedding import OnnxEmbedder, DEFAULT_OUTPUT_LAYER
from .engine import RetrievalEngine, compare_embedding_rankings
from .exceptions import CBIRError
from .feature_store import FeatureStore
from .features import FeatureType
from .index_builder import build_feature_store

logger = logging.getLogger(__name__)

FEATURE_TAGS = [t.value for t in FeatureType]


def print_top_matches(results, top_n: int) -> None:
    """Print ranked matches with 6-decimal distances."""
    print(f"Top {min(top_n, len(results))} matches:")
    for rank, match in enumerate(results[:top_n], start=1):
        print(f"{rank}. {match.filename} (distance: {match.distance:.6f})")


def _cmd_extract(args) -> int:
    embedder = None
    if FeatureType.from_tag(args.feature) is FeatureType.EMBEDDING:
        if not args.model:
            print("Error: --model is required for dnn features", file=sys.stderr)
            return 1
        embedder = OnnxEmbedder(args.model, output_layer=args.layer)

    stats = build_feature_store(args.image_dir, args.output_csv, args.feature,
                                embedder=embedder, max_workers=args.workers)
    print(f"Total images: {stats['total']}")
    print(f"Success: {stats['processed']}")
    print(f"Failed: {stats['errors']}")
    if not stats["success"]:
        print(f"Error: {stats['error']}", file=sys.stderr)
        return 1
    print(f"Saved {stats['dimensions']}-value features to {stats['output_path']}")
    return 0


def _cmd_query(args) -> int:
    engine = RetrievalEngine.from_csv(args.feature_csv, args.feature,
                                      embedding_csv=args.embeddings)

    image = None
    if not engine.pipeline.uses_lookup:
        image = cv2.imread(args.target)
        if image is None:
            print(f"Error: Failed to load target image: {args.target}", file=sys.stderr)
            return 1

    results = engine.query(target_image=image,
                           target_filename=os.path.basename(args.target),
                           top_k=args.num_matches)
    print_top_matches(results, args.num_matches)
    return 0


def _cmd_compare(args) -> int:
    store_a = FeatureStore.load(args.provided_csv)
    store_b = FeatureStore.load(args.custom_csv)

    for comparison in compare_embedding_rankings(store_a, store_b,
                                                 args.queries, args.top_k):
        print(f"\nComparing: {comparison['query']}")
        for label, key in (("Provided", "matches_a"), ("Custom", "matches_b")):
            ranked = " ".join(
                f"{m.filename} ({m.distance:.4f})" for m in comparison[key]
            )
            print(f"  {label} top {args.top_k}: {ranked}")
        print(f"  Overlap: {comparison['overlap']}/{args.top_k}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cbir",
        description="Content-based image retrieval: extract features and query them",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    extract = sub.add_parser("extract", help="Build a feature store from a directory")
    extract.add_argument("image_dir", help="Directory containing images")
    extract.add_argument("output_csv", help="Feature store file to write")
    extract.add_argument("--feature", choices=FEATURE_TAGS, default="baseline",
                         help="Feature type to extract")
    extract.add_argument("--model", default=None,
                         help="ONNX model path (dnn features only)")
    extract.add_argument("--layer", default=DEFAULT_OUTPUT_LAYER,
                         help="Network layer to read embeddings from")
    extract.add_argument("--workers", type=int, default=1,
                         help="Number of extraction threads")
    extract.set_defaults(func=_cmd_extract)

    query = sub.add_parser("query", help="Find the closest images to a target")
    query.add_argument("target", help="Target image path (or filename for dnn)")
    query.add_argument("feature_csv", help="Feature store file")
    query.add_argument("num_matches", type=int, help="Number of matches to show")
    query.add_argument("--feature", choices=FEATURE_TAGS, default="baseline",
                       help="Feature type of the store")
    query.add_argument("--embeddings", default=None,
                       help="Embedding store file (custom features only)")
    query.set_defaults(func=_cmd_query)

    compare = sub.add_parser("compare", help="Compare rankings of two embedding stores")
    compare.add_argument("provided_csv", help="First embedding store")
    compare.add_argument("custom_csv", help="Second embedding store")
    compare.add_argument("queries", nargs="+", help="Query filenames")
    compare.add_argument("--top-k", type=int, default=3,
                         help="Matches per query to compare")
    compare.set_defaults(func=_cmd_compare)

    return parser


def main(argv=None) -> int:
    """CLI entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S"
    )

    try:
        return args.func(args)
    except (CBIRError, OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
