#!/usr/bin/env python
"""
Fossil Mapper Module - Maps fossil calibrations onto speciation nodes

TreeFam labels internal nodes with the higher taxon of the species below
them. The same label can occur on nested nodes (the outermost one is the
divergence the calibration applies to) and on paralogous copies of a
speciation event in different lineages after a gene duplication (each copy
receives its own copy of the calibration).

Mapping happens in two passes. The first pass walks the tree from the root,
clears nested repeats, gives paralogous repeats an instance suffix and looks
up fossils for each distinct label. The second pass assigns crown fossils to
all speciation nodes carrying their taxon, relabelling nodes and fossils
taxon_1 ... taxon_k so that the calibration script can refer to them.
"""

import logging
from collections import OrderedDict

from ratogram.exceptions import MappingWarning
from ratogram.tree_model import (node_name, set_node_name, strip_instance_suffix,
                                 is_duplication_event)


class FossilMapper:
    """Resolves fossil calibrations against the internal nodes of a gene tree."""

    def __init__(self, tree, client, config=None):
        """
        Initialize with a tree and a calibration client.

        Args:
            tree (dendropy.Tree): Gene family tree with taxon-labelled internal nodes.
            client (FossilCalibrationClient): Source of fossil records.
            config (dict, optional): Configuration options (currently unused).
        """
        self.tree = tree
        self.client = client
        self.config = config or {}
        self.logger = logging.getLogger(__name__)
        self.warnings = []

    def speciation_nodes(self):
        """
        Return the labelled internal nodes that are speciation events, in pre-order.

        Returns:
            list: DendroPy nodes.
        """
        nodes = []
        for node in self.tree.preorder_node_iter():
            if node.is_leaf() or not node_name(node):
                continue
            if is_duplication_event(node):
                continue
            nodes.append(node)
        return nodes

    def collect_fossil_taxa(self):
        """
        First pass: disambiguate repeated labels and look up fossils.

        Nodes are visited root to tip, so the outermost of a set of nested,
        identically labelled nodes is seen first and keeps the label. Each
        distinct label is looked up once through the client, which caches the
        result.

        Returns:
            list: Taxon names for which fossils are available, in visit order.
        """
        self.logger.info("Disambiguating node labels and fetching fossils")
        seen = {}
        taxa = []
        for node in self.speciation_nodes():
            name = strip_instance_suffix(node_name(node))
            if not name:
                continue

            # Nested under a speciation node with the same label
            if self._has_labelled_ancestor(node, name):
                self._warn(f"Already seen {name} in ancestor, clearing nested label", name)
                set_node_name(node, '')
                continue

            # Paralogous copy in another lineage
            if name in seen:
                seen[name] += 1
                set_node_name(node, f"{name}_{seen[name]}")
                self.logger.debug(f"Relabelled paralogous {name} as {name}_{seen[name]}")
                continue

            seen[name] = 1
            if self.client.fetch_fossils(name):
                taxa.append(name)
            else:
                self.logger.info(f"No fossils for {name}")
        return taxa

    def read_fossils(self, taxa):
        """
        Read the fossils for a list of taxa, keeping the first record for each
        fossil identifier.

        Args:
            taxa (list): Taxon names as returned by collect_fossil_taxa().

        Returns:
            list: FossilRecord objects.
        """
        fossils = []
        seen_taxa = set()
        seen_ids = set()
        for taxon in taxa:
            if taxon in seen_taxa:
                continue
            seen_taxa.add(taxon)
            for record in self.client.fetch_fossils(taxon):
                if record.nfos in seen_ids:
                    continue
                seen_ids.add(record.nfos)
                fossils.append(record)
        self.logger.info(f"Read {len(fossils)} distinct fossils for {len(seen_taxa)} taxa")
        return fossils

    def map_fossils(self, fossils):
        """
        Second pass: map crown fossils onto speciation nodes.

        Every speciation node whose label, ignoring the instance suffix,
        equals the fossil's taxon receives a copy of the fossil. Copies and
        nodes are relabelled taxon_1 ... taxon_k in pre-order. Fossils that do
        not map and nodes that receive no fossil are dropped with a warning;
        unmapped nodes lose their label.

        Args:
            fossils (list): FossilRecord objects.

        Returns:
            list: The mapped FossilRecord copies.
        """
        self.logger.info("Going to map fossils to tree")
        candidates = OrderedDict()
        for node in self.speciation_nodes():
            candidates.setdefault(strip_instance_suffix(node_name(node)), []).append(node)

        mapped = []
        for fossil in fossils:
            taxon = fossil.calibrated_taxon
            if not fossil.is_crown:
                self._warn(f"Stem calibrations not supported, skipping fossil {fossil.nfos} for {taxon}", taxon)
                continue

            nodes = candidates.pop(taxon, None)
            if not nodes:
                self._warn(f"Couldn't map fossil {fossil.nfos} for {taxon}", taxon)
                continue

            for i, node in enumerate(nodes, start=1):
                label = f"{taxon}_{i}"
                set_node_name(node, label)
                mapped.append(fossil.renamed(label))
            self.logger.info(f"Successfully mapped fossil {taxon} to {len(nodes)} nodes")

        # Nodes without calibration must not be mistaken for duplication nodes later
        for taxon, nodes in candidates.items():
            self._warn(f"No fossil for {len(nodes)} node(s) labelled {taxon}, clearing labels", taxon)
            for node in nodes:
                set_node_name(node, '')

        return mapped

    def run(self):
        """
        Execute both passes.

        Returns:
            list: The mapped FossilRecord copies, possibly empty.
        """
        taxa = self.collect_fossil_taxa()
        fossils = self.read_fossils(taxa)
        return self.map_fossils(fossils)

    def _has_labelled_ancestor(self, node, name):
        for ancestor in node.ancestor_iter(inclusive=False):
            if is_duplication_event(ancestor):
                continue
            if strip_instance_suffix(node_name(ancestor)) == name:
                return True
        return False

    def _warn(self, message, taxon):
        warning = MappingWarning(message, taxon=taxon)
        self.warnings.append(warning)
        self.logger.warning(message)
