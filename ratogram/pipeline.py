#!/usr/bin/env python
"""
Calibration Pipeline - Main orchestration module

This module coordinates the per-family workflow, from reading a TreeFam gene
tree to fossil calibration with r8s and the rate-by-distance table, and runs
it over a batch of families. Any error that concerns a single family skips
that family; only I/O failures on required outputs end the batch.
"""

import os
import time
import logging
from dataclasses import dataclass, field

from ratogram.exceptions import RatogramError
from ratogram.tree_parser import TreeParser
from ratogram.species_map import SpeciesMapper
from ratogram.outlier_pruner import OutlierPruner
from ratogram.calibration_client import FossilCalibrationClient
from ratogram.fossil_mapper import FossilMapper
from ratogram.r8s_runner import CalibrationRunner, get_nchar, alignment_path_for
from ratogram.rate_traverser import RateDistanceTraverser, write_records


@dataclass
class FamilyResult:
    """Outcome of processing one gene family."""
    family_id: str
    status: str = 'pending'
    reason: str = ''
    records: list = field(default_factory=list)
    mapped_fossils: list = field(default_factory=list)
    pruned_tips: list = field(default_factory=list)
    warnings: list = field(default_factory=list)
    outputs: dict = field(default_factory=dict)


def family_id_for(path):
    """Family identifier: the file name up to its first dot."""
    return os.path.basename(path).split('.')[0]


class CalibrationPipeline:
    """Orchestrates fossil calibration and rate-by-distance analysis of gene families."""

    def __init__(self, config=None, client=None, runner=None):
        """
        Initialize with optional configuration.

        Args:
            config (dict, optional): Configuration options for the pipeline,
                                     with sections 'parser', 'pruner',
                                     'calibration' and 'runner', and an
                                     'output_dir'.
            client (FossilCalibrationClient, optional): Calibration client to use.
            runner (CalibrationRunner, optional): r8s runner to use.
        """
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

        self.output_dir = self.config.get('output_dir', '.')
        self.parser = TreeParser(config=self.config.get('parser', {}))
        self.species_mapper = SpeciesMapper(self.config.get('species'))
        self.client = client or FossilCalibrationClient(config=self.config.get('calibration', {}))
        self.runner = runner or CalibrationRunner(config=self.config.get('runner', {}))

        self.results = []
        self.logger.info("Calibration pipeline initialized")

    def load_tree(self, tree_path):
        """
        Read a gene tree and relabel its tips by species.

        Returns:
            tuple: (dendropy.Tree, list of pruned tip labels)
        """
        self.logger.info(f"Going to read {tree_path}")
        tree = self.parser.parse_from_file(tree_path)
        pruned = self.species_mapper.relabel_tips(tree)
        return tree, pruned

    def process_family(self, tree_path, alignment_path=None):
        """
        Run the complete workflow for one family.

        Args:
            tree_path (str): Path to the gene tree.
            alignment_path (str, optional): Path to the CDS alignment. Derived
                                            from tree_path if omitted.

        Returns:
            FamilyResult: The outcome, with status 'passed', 'skipped' or 'failed'.
        """
        family_id = family_id_for(tree_path)
        result = FamilyResult(family_id=family_id)
        self.logger.info(f"Going to analyze {tree_path}")

        try:
            # Without an alignment there is no sequence length for r8s
            nchar = get_nchar(alignment_path or alignment_path_for(tree_path))
            if not nchar:
                self.logger.warning(f"No alignment for {tree_path}")
                return self._finish(result, 'skipped', 'no alignment')
            self.logger.info(f"Alignment has {nchar} characters")

            if not os.path.exists(tree_path):
                self.logger.warning(f"No tree file {tree_path}")
                return self._finish(result, 'skipped', 'no tree')

            tree, pruned = self.load_tree(tree_path)
            result.pruned_tips.extend(pruned)

            pruner = OutlierPruner(tree, config=self.config.get('pruner', {}))
            result.pruned_tips.extend(pruner.prune_outliers())

            mapper = FossilMapper(tree, self.client, config=self.config.get('mapper', {}))
            fossils = mapper.run()
            result.warnings.extend(mapper.warnings)
            result.mapped_fossils = fossils
            if not fossils:
                self.logger.warning(f"No fossils map onto {family_id}")
                return self._finish(result, 'skipped', 'no fossils mapped')

            output = self.runner.run_calibration(tree, nchar, fossils, family=family_id)
            trees = self.runner.parse_result(output)
            result.outputs = self.runner.write_results(trees, self.output_dir, family_id)

            result.records = self.rate_by_distance(family_id, trees)

        except RatogramError as e:
            self.logger.error(f"*** analysis failure in {tree_path}: {str(e)}")
            return self._finish(result, 'failed', f"{type(e).__name__}: {str(e)}")

        table = os.path.join(self.output_dir, f"{family_id}.ratebydist.tsv")
        with open(table, 'w', encoding='utf-8') as handle:
            write_records(result.records, handle)
        result.outputs['table'] = table

        return self._finish(result, 'passed')

    def rate_by_distance(self, family_id, trees):
        """
        Build rate-by-distance records from the r8s result trees.

        Args:
            family_id (str): Family identifier.
            trees (dict): Newick strings keyed by tree kind.

        Returns:
            list: RateRecord objects.
        """
        chronogram = TreeParser().parse_from_string(trees['chronogram'])
        ratogram = TreeParser().parse_from_string(trees['ratogram'])
        phylogram = TreeParser().parse_from_string(trees['phylogram']) if trees.get('phylogram') else None
        traverser = RateDistanceTraverser.from_trees(family_id, chronogram, ratogram, phylogram)
        return traverser.traverse_all()

    def run_batch(self, tree_paths):
        """
        Process several families, continuing past per-family failures.

        Args:
            tree_paths (list): Paths to gene trees.

        Returns:
            list: FamilyResult objects, one per input.
        """
        start_time = time.time()
        results = [self.process_family(path) for path in tree_paths]

        summary = self.get_summary(results)
        elapsed = time.time() - start_time
        self.logger.info(
            f"Processed {summary['total']} families in {elapsed:.2f} seconds: "
            f"{summary['passed']} passed, {summary['skipped']} skipped, {summary['failed']} failed"
        )
        return results

    def get_summary(self, results=None):
        """
        Return pass/skip/fail counts.

        Returns:
            dict: Counts per status and total.
        """
        results = self.results if results is None else results
        summary = {'total': len(results), 'passed': 0, 'skipped': 0, 'failed': 0}
        for result in results:
            summary[result.status] = summary.get(result.status, 0) + 1
        return summary

    def _finish(self, result, status, reason=''):
        result.status = status
        result.reason = reason
        self.results.append(result)
        level = logging.INFO if status == 'passed' else logging.WARNING
        self.logger.log(level, f"Family {result.family_id}: {status}{' (' + reason + ')' if reason else ''}")
        return result
