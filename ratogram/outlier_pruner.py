#!/usr/bin/env python
"""
Outlier Pruner Module - Removes tips with aberrant terminal branch lengths

Tip branches that deviate from the mean terminal branch length by more than a
multiple of the standard deviation are pruned. Statistics are re-evaluated
after each pass until a pass prunes nothing.
"""

import logging
import numpy as np

from ratogram.exceptions import PruneError
from ratogram.tree_model import get_terminals, node_name, prune_tips

DEFAULT_DEVIATIONS = 8.0


class OutlierPruner:
    """Iteratively prunes outlier tips from a tree."""

    def __init__(self, tree, config=None):
        """
        Initialize with a DendroPy tree object.

        Args:
            tree (dendropy.Tree): The tree to prune in place.
            config (dict, optional): May include 'deviations', the number of
                                     standard deviations beyond which a tip
                                     branch is an outlier.
        """
        self.tree = tree
        self.config = config or {}
        self.logger = logging.getLogger(__name__)
        self.deviations = float(self.config.get('deviations', DEFAULT_DEVIATIONS))

        self.pruned = []
        self.iterations = 0
        self.mean = None
        self.stdev = None

    def find_outliers(self, multiplier):
        """
        Compute the mean and sample standard deviation of the terminal branch
        lengths and return the tips outside mean +/- multiplier * stdev.

        Args:
            multiplier (float): Number of standard deviations.

        Returns:
            list: Outlier tip nodes, empty if fewer than three tips remain.
        """
        tips = get_terminals(self.tree)
        if len(tips) < 3:
            self.logger.debug(f"Only {len(tips)} tips left, not computing statistics")
            return []

        lengths = np.array([tip.edge_length or 0.0 for tip in tips], dtype=float)
        self.mean = float(np.mean(lengths))
        self.stdev = float(np.std(lengths, ddof=1))

        upper = self.mean + multiplier * self.stdev
        lower = self.mean - multiplier * self.stdev
        outliers = [tip for tip, length in zip(tips, lengths) if length > upper or length < lower]

        if outliers and len(outliers) == len(tips):
            raise PruneError(
                "All tips flagged as outliers",
                context={'mean': self.mean, 'stdev': self.stdev, 'tips': len(tips)}
            )
        return outliers

    def prune_outliers(self, multiplier=None):
        """
        Prune outlier tips until a pass prunes none.

        Each pass strictly reduces the number of tips, so the loop terminates.

        Args:
            multiplier (float, optional): Overrides the configured number of
                                          standard deviations.

        Returns:
            list: Labels of all tips pruned by this call.
        """
        multiplier = self.deviations if multiplier is None else float(multiplier)
        self.logger.info(f"Pruning tips beyond {multiplier} standard deviations")

        pruned = []
        while True:
            self.iterations += 1
            outliers = self.find_outliers(multiplier)
            if not outliers:
                break

            labels = [node_name(tip) for tip in outliers]
            self.logger.info(f"Pass {self.iterations}: pruning {len(outliers)} outlier tips: {labels}")
            prune_tips(self.tree, outliers)
            pruned.extend(labels)

        self.pruned.extend(pruned)
        self.logger.info(f"Outlier pruning stable after {self.iterations} passes, {len(pruned)} tips pruned")
        return pruned

    def get_pruning_stats(self):
        """
        Return statistics about the pruning done so far.

        Returns:
            dict: Number of passes and pruned tips, last mean and stdev.
        """
        return {
            'iterations': self.iterations,
            'pruned_tips': len(self.pruned),
            'remaining_tips': len(get_terminals(self.tree)),
            'mean': self.mean,
            'stdev': self.stdev,
        }
