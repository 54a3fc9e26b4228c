# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Command-line interface for codebase indexing.

Commands:
    codebase-index index ROOT OUTPUT [options]   Index a directory
    codebase-index show ARTIFACT                 Describe an existing artifact

Exit codes:
    0   Success (per-file issues are printed but do not fail the run)
    1   Fatal scan or output error, invalid configuration or artifact
    130 Interrupted
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from codebase_index import __version__
from codebase_index.config import Config, ConfigurationError
from codebase_index.indexer import CodebaseIndexer, IndexingError, IndexingResult
from codebase_index.logging_setup import setup_logging
from codebase_index.serializer import InvalidDataError, artifact_info

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="codebase-index",
        description="Extract types, members and relationships from a source tree into a compact index",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    index = subparsers.add_parser("index", help="Index a directory tree")
    index.add_argument("root", type=Path, help="Root directory to index")
    index.add_argument("output", type=Path, help="Artifact path to write")
    index.add_argument("--format", choices=["json", "cbor"], default=None, help="Artifact format")
    index.add_argument(
        "--compress",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="gzip-compress the artifact",
    )
    index.add_argument(
        "--mode",
        choices=["in-place", "indexed"],
        default=None,
        help="in-place: normalized entity graph; indexed: string-table index",
    )
    index.add_argument("--workers", type=_positive_int, default=None, help="Parser threads")
    index.add_argument("--config", type=Path, default=None, help="Configuration file")
    index.add_argument("--log-dir", type=Path, default=None, help="Directory for JSON log files")
    index.add_argument("--verbose", "-v", action="store_true", help="Log to the console as well")

    show = subparsers.add_parser("show", help="Describe an index artifact")
    show.add_argument("artifact", type=Path, help="Artifact to read")

    return parser


def _overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.format is not None:
        overrides["output_format"] = args.format
    if args.compress is not None:
        overrides["compress_output"] = args.compress
    if args.mode is not None:
        overrides["optimization_mode"] = args.mode.replace("-", "_")
    if args.workers is not None:
        overrides["max_workers"] = args.workers
    return overrides


def _print_result(result: IndexingResult) -> None:
    codebase = result.codebase
    meta = result.metadata
    if codebase is not None:
        print(
            f"Indexed {codebase.total_file_count} files: {codebase.total_type_count} types, "
            f"{codebase.total_method_count} methods, {codebase.total_property_count} properties"
        )
    print(
        f"Wrote {meta.size_in_bytes} bytes to {result.output_path} "
        f"(~{meta.token_count} tokens, ratio {meta.compression_ratio}, {meta.duration_ms} ms)"
    )
    if result.issues:
        print(f"{len(result.issues)} files or directories skipped:")
        for issue in result.issues:
            print(f"  [{issue.kind}] {issue.path}: {issue.message}")


def _run_index(args: argparse.Namespace) -> int:
    setup_logging(
        log_dir=args.log_dir,
        log_level=logging.DEBUG if args.verbose else logging.INFO,
        console_output=args.verbose,
    )

    try:
        config = Config(args.config, overrides=_overrides_from_args(args))
    except ConfigurationError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    indexer = CodebaseIndexer(args.root, config=config)
    try:
        result = indexer.run(args.output)
    except IndexingError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    _print_result(result)
    return EXIT_OK


def _run_show(args: argparse.Namespace) -> int:
    try:
        info = artifact_info(args.artifact.read_bytes())
    except OSError as e:
        print(f"error: cannot read {args.artifact}: {e}", file=sys.stderr)
        return EXIT_ERROR
    except InvalidDataError as e:
        print(f"error: {args.artifact} is not a valid index artifact: {e}", file=sys.stderr)
        return EXIT_ERROR

    print(json.dumps(info, indent=2))
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the command-line interface.

    Returns:
        Process exit code.
    """
    args = build_parser().parse_args(argv)
    try:
        if args.command == "index":
            return _run_index(args)
        return _run_show(args)
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
