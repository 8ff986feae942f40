#!/usr/bin/env python
"""
Rate-Distance Traverser Module - Substitution rate by time since duplication

For every duplication node found in the chronogram, ratogram and (optionally)
phylogram of a gene family, the subtrees below the node are walked in
lock-step. Each branch yields one row with its distance in time from the
duplication and the local substitution rate the ratogram assigns to it. The
walk along a lineage stops at the next duplication node, which is the start
of its own walk.
"""

import csv
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ratogram.exceptions import ParseError
from ratogram.topology_indexer import TopologyIndexer
from ratogram.tree_model import node_name, is_duplication_label

HEADER = ['familyId', 'taxon', 'distance', 'rate', 'duplicationHash', 'tipCount', 'meanHeight']


@dataclass
class RateRecord:
    """One output row: a branch below a duplication node."""
    family_id: str
    taxon: str
    distance: float
    rate: float
    duplication_hash: str
    tip_count: Optional[int] = None
    mean_height: Optional[float] = None

    def as_row(self, with_phylogram=True):
        row = [self.family_id, self.taxon, self.distance, self.rate, self.duplication_hash]
        if with_phylogram:
            row.extend([self.tip_count, self.mean_height])
        return row


class RateDistanceTraverser:
    """Walks matched duplication subtrees and emits rate-by-distance records."""

    def __init__(self, family_id, index, trees=2, config=None):
        """
        Initialize with an index built over the family's trees.

        Args:
            family_id (str): Gene family identifier written to every row.
            index (TopologyIndex): Index over chronogram, ratogram and, if
                                   trees is 3, phylogram, in that order.
            trees (int): Number of indexed trees, 2 or 3.
            config (dict, optional): Configuration options (currently unused).
        """
        self.family_id = family_id
        self.index = index
        self.trees = trees
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_trees(cls, family_id, chronogram, ratogram, phylogram=None, config=None):
        """
        Ladderize and index the trees of a family and return a traverser.

        Ladderizing gives all trees the same child order, which the lock-step
        walk relies on.
        """
        indexer = TopologyIndexer()
        index = None
        trees = [t for t in (chronogram, ratogram, phylogram) if t is not None]
        for tree in trees:
            tree.ladderize(ascending=True)
            index = indexer.index_tree(tree, index)
        return cls(family_id, index, trees=len(trees), config=config)

    def traverse_all(self):
        """
        Traverse every duplication node present in all trees.

        Returns:
            list: RateRecord objects, grouped per duplication node in index order.
        """
        records = []
        for digest, nodes in TopologyIndexer().matched_duplications(self.index, self.trees):
            chrono, rato = nodes[0], nodes[1]
            phylo = nodes[2] if self.trees > 2 else None
            records.extend(self.traverse(chrono, rato, phylo, digest))
        self.logger.info(f"Family {self.family_id}: {len(records)} rate-by-distance records")
        return records

    def traverse(self, chrono, rato, phylo, duplication_hash):
        """
        Walk the subtree below one duplication node.

        Args:
            chrono: Duplication node in the chronogram.
            rato: Matching node in the ratogram.
            phylo: Matching node in the phylogram, or None.
            duplication_hash (str): Topology digest of the duplication node.

        Tips carry bare labels and, like nested duplication nodes, end the
        walk along their lineage without a row of their own.

        Returns:
            list: RateRecord objects in pre-order of the chronogram.
        """
        taxon = node_name(chrono)
        origin = self.index.get(chrono).distance_from_root
        tip_count = None
        mean_height = None

        records = []

        # Reversed so that children are popped in stored order
        stack = list(reversed(self._child_triples(chrono, rato, phylo)))
        while stack:
            c_node, r_node, p_node = stack.pop()

            if is_duplication_label(node_name(c_node)):
                if c_node.is_internal():
                    self.logger.debug(f"Reached nested duplication {node_name(c_node)} below {taxon}")
                continue

            if self.trees > 2 and tip_count is None:
                tip_count = len(self.index.get(chrono).tips)
                mean_height = self._mean_height(phylo)

            records.append(RateRecord(
                family_id=self.family_id,
                taxon=taxon,
                distance=self.index.get(c_node).distance_from_root - origin,
                rate=r_node.edge_length or 0.0,
                duplication_hash=duplication_hash,
                tip_count=tip_count,
                mean_height=mean_height,
            ))
            stack.extend(reversed(self._child_triples(c_node, r_node, p_node)))
        return records

    def _child_triples(self, c_node, r_node, p_node):
        c_children = c_node.child_nodes()
        r_children = r_node.child_nodes()
        p_children = p_node.child_nodes() if p_node is not None else [None] * len(c_children)
        if not (len(c_children) == len(r_children) == len(p_children)):
            raise ParseError(
                f"Trees disagree on the number of children below {node_name(c_node) or 'unlabeled node'}"
            )
        return list(zip(c_children, r_children, p_children))

    def _mean_height(self, phylo):
        """Mean root distance of the phylogram tips below a node, net of the node's own."""
        heights = [self.index.get(tip).distance_from_root for tip in phylo.leaf_iter()]
        return float(np.mean(heights)) - self.index.get(phylo).distance_from_root


def write_records(records, handle, with_phylogram=True):
    """
    Write records as tab-separated rows with a header line.

    Args:
        records (iterable): RateRecord objects.
        handle: Writable text file object.
        with_phylogram (bool): Whether to include the tipCount and meanHeight columns.
    """
    writer = csv.writer(handle, delimiter='\t', lineterminator='\n')
    writer.writerow(HEADER if with_phylogram else HEADER[:5])
    for record in records:
        writer.writerow(record.as_row(with_phylogram))
