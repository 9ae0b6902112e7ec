"""Console script for building mipmap pyramids.

Console Scripts:
    zarrmip-build: Build the mipmap levels and statistics of a stored volume
"""

import argparse
import json
import sys
from typing import List, Optional

from zarrmip.geometry import DEFAULT_CHUNK_TARGET_BYTES, DEFAULT_SHARD_TARGET_BYTES
from zarrmip.histogram import DEFAULT_HISTOGRAM_BINS
from zarrmip.logging import configure_logging
from zarrmip.pyramid import (
    DEFAULT_ANALYTICS_GROUP,
    DEFAULT_LEVEL_PREFIX,
    DEFAULT_MAX_DIMENSION,
    build_mipmaps_sync,
)
from zarrmip.store import open_store


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zarrmip-build",
        description="Build max-pooled mipmap levels and intensity statistics for a Zarr volume",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  zarrmip-build dataset.zarr /0
  zarrmip-build dataset.zarr /0 --target-max-dimension 128 --histogram-bins 256
  zarrmip-build dataset.zip /1 --level-prefix /pyramid --log-level DEBUG
        """,
    )

    parser.add_argument("store", help="Zarr store: directory, .zip file or fsspec URL")
    parser.add_argument("base_path", help="Path of the base array inside the store (e.g. /0)")

    parser.add_argument(
        "--level-prefix",
        default=DEFAULT_LEVEL_PREFIX,
        help=f"Path prefix for generated levels (default: {DEFAULT_LEVEL_PREFIX})",
    )
    parser.add_argument(
        "--target-max-dimension",
        type=int,
        default=DEFAULT_MAX_DIMENSION,
        help="Stop once the largest spatial extent is at or below this "
        f"(default: {DEFAULT_MAX_DIMENSION})",
    )
    parser.add_argument(
        "--histogram-bins",
        type=int,
        default=DEFAULT_HISTOGRAM_BINS,
        help=f"Bins per channel histogram (default: {DEFAULT_HISTOGRAM_BINS})",
    )
    parser.add_argument(
        "--analytics-group",
        default=DEFAULT_ANALYTICS_GROUP,
        help=f"Group receiving full histograms (default: {DEFAULT_ANALYTICS_GROUP})",
    )
    parser.add_argument(
        "--read-concurrency",
        type=int,
        default=1,
        help="Source chunks fetched concurrently (default: 1, serial)",
    )
    parser.add_argument(
        "--chunk-target-bytes",
        type=int,
        default=DEFAULT_CHUNK_TARGET_BYTES,
        help=f"Soft byte budget per chunk (default: {DEFAULT_CHUNK_TARGET_BYTES})",
    )
    parser.add_argument(
        "--shard-target-bytes",
        type=int,
        default=DEFAULT_SHARD_TARGET_BYTES,
        help=f"Soft byte budget per shard (default: {DEFAULT_SHARD_TARGET_BYTES})",
    )
    parser.add_argument(
        "--overwrite", action="store_true", help="Replace level arrays left by a previous build"
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Console script entry point; prints the build result as JSON."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level)

    store = open_store(args.store, mode="a")
    try:
        result = build_mipmaps_sync(
            store,
            args.base_path,
            level_prefix=args.level_prefix,
            target_max_dimension=args.target_max_dimension,
            histogram_bins=args.histogram_bins,
            analytics_group_path=args.analytics_group,
            read_concurrency=args.read_concurrency,
            chunk_target_bytes=args.chunk_target_bytes,
            shard_target_bytes=args.shard_target_bytes,
            overwrite=args.overwrite,
        )
    except Exception as e:
        print(f"Error during build: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()

    json.dump(result.to_dict(), sys.stdout)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
