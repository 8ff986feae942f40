#!/usr/bin/env python
"""
Rate by Distance - Stand-alone table generator

Reads the chronogram, ratogram and (optionally) phylogram of one gene family
and prints substitution rate by time since duplication as tab-separated rows.
"""

import sys
import argparse
import logging

from ratogram.exceptions import RatogramError
from ratogram.pipeline import family_id_for
from ratogram.tree_parser import TreeParser
from ratogram.rate_traverser import RateDistanceTraverser, write_records
from ratogrammer import setup_logging


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Tabulate substitution rate by time since gene duplication",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--chronogram", "-c", required=True, help="Chronogram in Newick format")
    parser.add_argument("--ratogram", "-r", required=True, help="Ratogram in Newick format")
    parser.add_argument("--phylogram", "-p", help="Phylogram in Newick format")
    parser.add_argument("--output", "-o", help="Output file (default: standard output)")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        default="warning",
        help="Set logging level"
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main function."""
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    family_id = family_id_for(args.chronogram)
    logger.info(f"Tree family ID: {family_id}")

    try:
        trees = []
        for path in (args.chronogram, args.ratogram, args.phylogram):
            trees.append(TreeParser().parse_from_file(path) if path else None)
        traverser = RateDistanceTraverser.from_trees(family_id, *trees)
        records = traverser.traverse_all()
    except (RatogramError, FileNotFoundError) as e:
        logger.error(f"Could not compute rate by distance: {str(e)}")
        return 1

    with_phylogram = args.phylogram is not None
    if args.output:
        with open(args.output, 'w', encoding='utf-8') as handle:
            write_records(records, handle, with_phylogram=with_phylogram)
    else:
        write_records(records, sys.stdout, with_phylogram=with_phylogram)
    return 0


if __name__ == "__main__":
    sys.exit(main())
