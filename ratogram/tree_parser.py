#!/usr/bin/env python
"""
Tree Parser Module - Parses and writes Newick/NHX gene family trees

This module provides functionality for reading gene family trees in Newick
format, including TreeFam-style NHX comments that flag duplication events,
and for writing them back without losing tip or internal labels.
"""

import os
import logging
import dendropy

from ratogram.exceptions import ParseError

SUPPORTED_FORMATS = ('newick', 'nexus')


class TreeParser:
    """Parses Newick format trees into DendroPy tree objects."""

    def __init__(self, config=None):
        """
        Initialize the tree parser.

        Args:
            config (dict, optional): Configuration dictionary. A 'schema' entry
                                     overrides the DendroPy reader settings.
        """
        self.config = config or {}
        self.tree = None
        self.logger = logging.getLogger(__name__)

    def parse_from_file(self, filepath, format='newick'):
        """
        Parse a tree from a file path.

        TreeFam EMF dumps carry the tree as the single line that starts with an
        opening parenthesis, so for Newick input all other lines are ignored.

        Args:
            filepath (str): Path to the tree file.
            format (str): 'newick' or 'nexus'.

        Returns:
            dendropy.Tree: The parsed tree object.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ParseError: If the file cannot be parsed as a tree.
        """
        if not os.path.exists(filepath):
            raise FileNotFoundError(f"Tree file not found: {filepath}")

        self.logger.info(f"Parsing tree from file: {filepath}")
        with open(filepath, 'r', encoding='utf-8') as handle:
            content = handle.read()

        if format == 'newick':
            lines = [line.strip() for line in content.splitlines() if line.strip().startswith('(')]
            if lines:
                content = lines[0]

        return self.parse_from_string(content, format=format)

    def parse_from_string(self, tree_string, format='newick'):
        """
        Parse a tree from a string.

        Args:
            tree_string (str): Newick (or Nexus) tree description.
            format (str): 'newick' or 'nexus'.

        Returns:
            dendropy.Tree: The parsed tree object.

        Raises:
            ParseError: If the string cannot be parsed as a tree.
        """
        if format not in SUPPORTED_FORMATS:
            raise ParseError(f"Unsupported tree format: {format}")
        if not tree_string or not tree_string.strip():
            raise ParseError("Empty tree description")

        self.logger.debug("Parsing tree from string")
        try:
            self.tree = dendropy.Tree.get(
                data=tree_string,
                schema=format,
                **self._get_schema_kwargs()
            )
        except Exception as e:
            self.logger.error(f"Failed to parse tree string: {str(e)}")
            raise ParseError(f"Could not parse tree string: {str(e)}") from e

        if self.tree is None or self.tree.seed_node is None or not self.tree.seed_node.child_nodes():
            raise ParseError("Tree description contains no branches")

        self._log_tree_stats()
        return self.tree

    def write_to_string(self, tree, annotations=False):
        """
        Serialize a tree to a Newick string, keeping internal node labels and
        branch lengths.

        Args:
            tree (dendropy.Tree): The tree to write.
            annotations (bool): Whether to write node annotations as comments.

        Returns:
            str: The Newick string, terminated by a semicolon.
        """
        return tree.as_string(
            schema='newick',
            suppress_rooting=True,
            suppress_internal_node_labels=False,
            suppress_edge_lengths=False,
            suppress_annotations=not annotations,
            unquoted_underscores=True,
        ).strip()

    def write_to_file(self, tree, path, annotations=False):
        """
        Write a tree to file in Newick format.

        Args:
            tree (dendropy.Tree): The tree to write.
            path (str): Output file path.
            annotations (bool): Whether to write node annotations as comments.
        """
        output_dir = os.path.dirname(path)
        if output_dir and not os.path.exists(output_dir):
            os.makedirs(output_dir)
        with open(path, 'w', encoding='utf-8') as handle:
            handle.write(self.write_to_string(tree, annotations=annotations) + '\n')
        self.logger.info(f"Tree written to {path}")

    def _get_schema_kwargs(self):
        """
        Get schema-specific keyword arguments for the DendroPy reader.

        Returns:
            dict: Schema-specific keyword arguments.
        """
        # Internal labels are taxon names of ancestral nodes, not OTUs, and
        # NHX comments are kept raw so that tree_model.nhx_tags can read them
        schema_kwargs = {
            'preserve_underscores': True,
            'suppress_internal_node_taxa': True,
            'suppress_leaf_node_taxa': False,
            'case_sensitive_taxon_labels': True,
            'extract_comment_metadata': False,
        }

        # Add any schema-specific settings from config
        if 'schema' in self.config:
            schema_kwargs.update(self.config['schema'])

        return schema_kwargs

    def _log_tree_stats(self):
        """Log statistics about the parsed tree."""
        num_tips = len(self.tree.leaf_nodes())
        num_internal = len(self.tree.internal_nodes())
        self.logger.info(f"Tree parsed successfully with {num_tips} tips and {num_internal} internal nodes")
