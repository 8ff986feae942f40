#!/usr/bin/env python
"""
Topology Indexer Module - Matches nodes across parallel trees by tip content

Each internal node is identified by a digest of the sorted set of tip labels it
subtends. Nodes in different trees of the same family (chronogram, ratogram,
phylogram) that share a digest represent the same split. Internal nodes with a
bare taxon label are duplication nodes and are collected per digest, so that
the rate-by-distance traversal can pick up the matching node from every tree.

Two unrelated nodes with the same tip set cannot be told apart by this digest.
Within one family the tip sets of distinct internal nodes differ by
construction, so such collisions only arise from digest collisions, which are
accepted.
"""

import base64
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from ratogram.tree_model import depth_first_traverse, node_name, is_duplication_label


@dataclass
class NodeMetrics:
    """Values computed for a node while indexing."""
    distance_from_root: float = 0.0
    tips: frozenset = frozenset()
    topology_hash: Optional[str] = None


class TopologyIndex:
    """Per-node metrics plus the digest-to-duplication-node mapping, shared across trees."""

    def __init__(self):
        self.metrics = {}
        self.duplications = {}

    def get(self, node) -> NodeMetrics:
        return self.metrics[node]

    def add_duplication(self, topology_hash, node):
        self.duplications.setdefault(topology_hash, []).append(node)


def topology_hash(tips) -> str:
    """
    Digest a tip label set: MD5 of the comma-joined, sorted labels, base64
    encoded without padding.

    :param tips: Iterable of tip labels.
    :return: A 22 character digest.
    """
    joined = ','.join(sorted(tips))
    digest = hashlib.md5(joined.encode('utf-8')).digest()
    return base64.b64encode(digest).decode('ascii').rstrip('=')


class TopologyIndexer:
    """Computes root distances, tip sets and topology digests for trees."""

    def __init__(self, config=None):
        """
        Initialize the indexer.

        Args:
            config (dict, optional): Configuration options (currently unused).
        """
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

    def index_tree(self, tree, index=None) -> TopologyIndex:
        """
        Index a tree in a single depth-first pass.

        The pre-order step sets the distance from the root, the post-order
        step builds tip sets bottom-up, digests internal nodes and records
        duplication nodes under their digest. Indexing the trees of a family
        in a fixed order (chronogram, ratogram, phylogram) puts their nodes in
        the same positions of every digest bucket.

        Args:
            tree (dendropy.Tree): The tree to index.
            index (TopologyIndex, optional): Index to extend. A new one is
                                             created if omitted.

        Returns:
            TopologyIndex: The extended index.
        """
        if index is None:
            index = TopologyIndex()
        metrics = index.metrics

        def pre_order(node):
            parent = node.parent_node
            if parent is None:
                distance = 0.0
            else:
                distance = metrics[parent].distance_from_root + (node.edge_length or 0.0)
            metrics[node] = NodeMetrics(distance_from_root=distance)

        def post_order(node):
            name = node_name(node)
            data = metrics[node]
            if node.is_leaf():
                data.tips = frozenset([name])
                return

            tips = set()
            for child in node.child_nodes():
                tips.update(metrics[child].tips)
            data.tips = frozenset(tips)
            data.topology_hash = topology_hash(tips)

            if is_duplication_label(name):
                index.add_duplication(data.topology_hash, node)

        depth_first_traverse(tree.seed_node, pre=pre_order, post=post_order)
        self.logger.info(f"Indexed tree, {len(index.duplications)} duplication digests so far")
        return index

    def matched_duplications(self, index, n_trees):
        """
        Yield the duplication buckets that hold exactly one node per tree.

        Args:
            index (TopologyIndex): An index extended with n_trees trees.
            n_trees (int): Number of trees that were indexed.

        Yields:
            tuple: (digest, list of nodes in indexing order)
        """
        for digest, nodes in index.duplications.items():
            if len(nodes) != n_trees:
                self.logger.warning(
                    f"Duplication {node_name(nodes[0])} ({digest}) found in {len(nodes)} "
                    f"of {n_trees} trees, skipping"
                )
                continue
            yield digest, nodes
