#!/usr/bin/env python3
"""
split_gpx_routes.py

Splits every GPX route file in an input directory into parts of at most N route points, so that GPS devices
with a route point limit can import them.

Features:
- Finds all *.gpx files in the input directory (non-recursive).
- Clears and recreates the output directory before splitting.
- Writes <output>/<name>/<name>_split_<n>.gpx for every part of every input file.
- Keeps going when a single file fails and reports a summary at the end.

Usage:
    python split_gpx_routes.py [--input-dir DIR] [--output-dir DIR] [--points-per-file N] [options]

Options:
    --input-dir DIR          Directory containing the GPX files (default: ./input, env GPX_SPLIT_INPUT_DIR)
    --output-dir DIR         Directory for the split files, wiped on each run (default: ./output,
                             env GPX_SPLIT_OUTPUT_DIR)
    --points-per-file INT    Maximum route points per output file (default: 50, env GPX_SPLIT_POINTS_PER_FILE)
    --pretty                 Pretty-print the output files
    --no-clean               Do not clear the output directory before splitting
    --verify                 Read every output file back with gpxpy and check it
    --strict                 Exit with status 1 if any file failed
    --verbose                Enable verbose output for debugging
"""

import argparse
import logging
import os
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from gpx_route_splitter import (
    DEFAULT_POINTS_PER_FILE,
    DirectoryResetError,
    GpxSplitError,
    split_gpx,
    verify_split_file,
)

logger = logging.getLogger(__name__)

DEFAULT_INPUT_DIR = "./input"
DEFAULT_OUTPUT_DIR = "./output"


@dataclass
class SplitConfig:
    """Settings for one batch run, built once at start-up."""
    input_dir: Path = Path(DEFAULT_INPUT_DIR)
    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    points_per_file: int = DEFAULT_POINTS_PER_FILE
    pretty: bool = False
    clean: bool = True
    verify: bool = False
    strict: bool = False


@dataclass
class BatchSummary:
    """Outcome of a batch run."""
    files_found: int = 0
    files_split: int = 0
    files_skipped: int = 0
    files_written: int = 0
    reset_failed: bool = False
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def files_failed(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.reset_failed


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments, falling back to environment variables and defaults.

    Args:
        argv (list): Arguments to parse. Defaults to sys.argv[1:].

    Returns:
        argparse.Namespace: Parsed arguments.
    """
    parser = argparse.ArgumentParser(description="Split GPX routes into files with a limited number of route points")
    parser.add_argument('--input-dir', default=os.environ.get('GPX_SPLIT_INPUT_DIR', DEFAULT_INPUT_DIR),
                        help=f'Directory containing the GPX files (default: {DEFAULT_INPUT_DIR})')
    parser.add_argument('--output-dir', default=os.environ.get('GPX_SPLIT_OUTPUT_DIR', DEFAULT_OUTPUT_DIR),
                        help=f'Directory for the split files, cleared on each run (default: {DEFAULT_OUTPUT_DIR})')
    parser.add_argument('--points-per-file',
                        default=os.environ.get('GPX_SPLIT_POINTS_PER_FILE', str(DEFAULT_POINTS_PER_FILE)),
                        help=f'Maximum route points per output file (default: {DEFAULT_POINTS_PER_FILE})')
    parser.add_argument('--pretty', action='store_true', help='Pretty-print the output files')
    parser.add_argument('--no-clean', action='store_true',
                        help='Do not clear the output directory before splitting')
    parser.add_argument('--verify', action='store_true',
                        help='Read every output file back with gpxpy and check it')
    parser.add_argument('--strict', action='store_true', help='Exit with status 1 if any file failed')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose output for debugging')

    return parser.parse_args(argv)


def validate_arguments(args) -> SplitConfig:
    """
    Validate parsed arguments and build the run configuration.

    Args:
        args (argparse.Namespace): Parsed command-line arguments.

    Returns:
        SplitConfig: The configuration for this run.

    Raises:
        SystemExit: If validation fails.
    """
    try:
        points_per_file = int(args.points_per_file)
    except (TypeError, ValueError):
        logger.error(f"❌ Error: Points per file must be an integer: {args.points_per_file}")
        sys.exit(1)

    if points_per_file <= 0:
        logger.error(f"❌ Error: Points per file must be positive: {points_per_file}")
        sys.exit(1)

    input_dir = Path(args.input_dir)
    if input_dir.exists() and not input_dir.is_dir():
        logger.error(f"❌ Error: Input path is not a directory: {input_dir}")
        sys.exit(1)

    return SplitConfig(
        input_dir=input_dir,
        output_dir=Path(args.output_dir),
        points_per_file=points_per_file,
        pretty=args.pretty,
        clean=not args.no_clean,
        verify=args.verify,
        strict=args.strict,
    )


def list_gpx_files(input_dir) -> List[Path]:
    """
    List the GPX files directly inside input_dir, sorted by name.

    Args:
        input_dir (str or Path): Directory to scan.

    Returns:
        list: Paths of the *.gpx files. Empty if the directory does not exist.
    """
    input_dir = Path(input_dir)
    if not input_dir.is_dir():
        logger.error(f"❌ Input directory not found: {input_dir}")
        return []
    return sorted(p for p in input_dir.iterdir() if p.is_file() and p.suffix == '.gpx')


def check_safe_to_clear(output_dir: Path, input_dir: Optional[Path] = None):
    """
    Refuse to clear directories whose loss is never intended.

    Raises:
        DirectoryResetError: If output_dir is the filesystem root, the home directory, the working directory,
            or the input directory or one of its parents.
    """
    target = output_dir.resolve()
    protected = {Path(target.anchor), Path.home().resolve(), Path.cwd().resolve()}
    if target in protected:
        raise DirectoryResetError(f"Refusing to clear protected directory: {target}")
    if input_dir is not None:
        source = input_dir.resolve()
        if target == source or target in source.parents:
            raise DirectoryResetError(f"Refusing to clear {target}: it contains the input directory {source}")


def reset_output_directory(output_dir, input_dir=None) -> bool:
    """
    Delete the output directory tree and recreate it empty.

    Args:
        output_dir (str or Path): Directory to clear.
        input_dir (str or Path): Input directory, which must not be inside output_dir.

    Returns:
        bool: True if the directory was cleared, False if the reset failed (the failure is logged).
    """
    output_dir = Path(output_dir)
    try:
        check_safe_to_clear(output_dir, Path(input_dir) if input_dir is not None else None)
        try:
            shutil.rmtree(output_dir)
        except FileNotFoundError:
            pass
        output_dir.mkdir(parents=True)
    except (OSError, DirectoryResetError) as e:
        logger.error(f"❌ Error clearing directory: {e}")
        return False

    logger.info(f"Cleared all files and folders in {output_dir}")
    return True


def process_gpx_file(gpx_file: Path, config: SplitConfig, summary: BatchSummary):
    """Split one file and record its outcome; errors are logged and counted, never raised."""
    try:
        result = split_gpx(gpx_file, config.output_dir, config.points_per_file, pretty=config.pretty)
        if config.verify:
            for output_file, size in zip(result.output_files, result.chunk_sizes):
                verify_split_file(output_file, size)
    except GpxSplitError as e:
        logger.error(f"❌ Failed to process {gpx_file}: {e}")
        summary.failures[str(gpx_file)] = str(e)
        return

    if result.skipped:
        summary.files_skipped += 1
    else:
        summary.files_split += 1
        summary.files_written += len(result.output_files)


def process_gpx_files(config: SplitConfig) -> BatchSummary:
    """
    Split every GPX file of the configured input directory.

    Args:
        config (SplitConfig): Settings for the run.

    Returns:
        BatchSummary: Counts of split, skipped and failed files.
    """
    summary = BatchSummary()

    input_exists = config.input_dir.is_dir()
    gpx_files = list_gpx_files(config.input_dir)
    summary.files_found = len(gpx_files)

    if config.clean:
        if input_exists:
            summary.reset_failed = not reset_output_directory(config.output_dir, config.input_dir)
        else:
            logger.warning(f"⚠️ Not clearing {config.output_dir} because the input directory is missing")

    if not gpx_files:
        logger.warning("⚠️ No GPX files found in the input directory.")
        return summary

    logger.info(f"Found {len(gpx_files)} GPX file(s) to process.")
    for gpx_file in gpx_files:
        process_gpx_file(gpx_file, config, summary)

    logger.info(f"📦 All GPX files processed: {summary.files_split} split into {summary.files_written} file(s), "
                f"{summary.files_skipped} skipped, {summary.files_failed} failed.")
    for name, reason in summary.failures.items():
        logger.warning(f" - {name}: {reason}")
    return summary


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point of the script.

    Returns:
        int: Process exit status.
    """
    args = parse_arguments(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')

    config = validate_arguments(args)
    logger.info(f"🚀 Splitting GPX routes from {config.input_dir} into {config.output_dir} "
                f"({config.points_per_file} points per file)")

    summary = process_gpx_files(config)

    if config.strict and not summary.ok:
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
