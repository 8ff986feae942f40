#!/usr/bin/env python
"""
Ratogrammer - Main Script

Calibrates TreeFam gene family trees with fossil ages using r8s, writes the
resulting ratograms, chronograms and phylograms, and tabulates substitution
rate by time since gene duplication for every family.
This script serves as the command-line interface to the calibration pipeline.
"""

import sys
import glob
import argparse
import logging
import time
from ratogram.pipeline import CalibrationPipeline


# Set up logging
def setup_logging(log_level, log_file=None):
    """Configure logging system based on specified log level and optional log file."""
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    # Basic configuration for console logging
    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Add file handler if log_file is specified
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        file_handler.setFormatter(formatter)
        logging.getLogger().addHandler(file_handler)

        logging.info(f"Logging to file: {log_file}")


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Calibrate gene family trees with fossils and tabulate rate by distance",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        "--intree", "-i",
        required=True,
        nargs="+",
        help="Input gene trees (TreeFam .nhx.emf); glob patterns are expanded"
    )

    parser.add_argument(
        "--fcdir", "-f",
        default=".fossil_cache",
        help="Directory to read/write cached fossil calibrations"
    )

    parser.add_argument(
        "--ratodir", "-r",
        default="ratograms",
        help="Output directory for ratograms, chronograms, phylograms and tables"
    )

    parser.add_argument(
        "--exe", "-e",
        default="r8s",
        help="r8s executable"
    )

    parser.add_argument(
        "--template", "-t",
        help="Template to generate r8s commands (default: built-in)"
    )

    parser.add_argument(
        "--deviations",
        type=float,
        default=8.0,
        help="Prune tips whose branch length deviates more than this many standard deviations"
    )

    parser.add_argument(
        "--timeout",
        type=float,
        help="Seconds to wait for r8s before giving up on a family"
    )

    parser.add_argument(
        "--calibration-url",
        help="Base URL of the fossil calibration service"
    )

    parser.add_argument(
        "--skip-remote",
        action="store_true",
        help="Only use cached fossil calibrations"
    )

    parser.add_argument(
        "--cache-empty",
        action="store_true",
        help="Cache empty calibration lookups so they are not retried"
    )

    parser.add_argument(
        "--keep-files",
        action="store_true",
        help="Keep the generated r8s command files"
    )

    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        default="warning",
        help="Set logging level"
    )

    parser.add_argument(
        "--log-file",
        help="Path to output log file"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 0.1.0"
    )

    return parser.parse_args(argv)


def build_config(args):
    """Create the pipeline configuration dict from parsed arguments."""
    calibration = {
        'cache_dir': args.fcdir,
        'skip_remote': args.skip_remote,
        'cache_empty': args.cache_empty,
    }
    if args.calibration_url:
        calibration['base_url'] = args.calibration_url

    return {
        'output_dir': args.ratodir,
        'pruner': {
            'deviations': args.deviations,
        },
        'calibration': calibration,
        'runner': {
            'exe': args.exe,
            'template': args.template,
            'timeout': args.timeout,
            'keep_files': args.keep_files,
            'output_dir': args.ratodir,
        },
    }


def expand_inputs(patterns):
    """Expand glob patterns, keeping literal paths that match nothing."""
    paths = []
    for pattern in patterns:
        matches = sorted(glob.glob(pattern))
        paths.extend(matches or [pattern])
    return paths


def main(argv=None):
    """Main function."""
    args = parse_args(argv)

    setup_logging(args.log_level, args.log_file)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    pipeline = CalibrationPipeline(config=build_config(args))

    try:
        results = pipeline.run_batch(expand_inputs(args.intree))
    except Exception as e:
        logger.error(f"Error during calibration run: {str(e)}")
        logger.error("Exception details:", exc_info=True)
        return 1

    for result in results:
        print(f"{result.family_id}\t{result.status}\t{result.reason}")

    elapsed_time = time.time() - start_time
    logger.info(f"Calibration run completed in {elapsed_time:.2f} seconds")
    return 0


if __name__ == "__main__":
    sys.exit(main())
