#!/usr/bin/env python
"""
Tree Model Module - Traversal, pruning and labelling helpers for DendroPy trees

DendroPy keeps tip labels on the taxon object and internal labels on the node
itself. The helpers in this module hide that difference and add the few
operations the calibration pipeline needs on top of DendroPy: hook-based
depth-first traversal, tip pruning that removes emptied ancestors, and the
label conventions that distinguish duplication nodes from speciation nodes.
"""

import re
import logging

from dendropy import Tree
from dendropy.datamodel.treemodel import Node

from ratogram.exceptions import PruneError

logger = logging.getLogger(__name__)

# Suffix appended to speciation node labels when the same taxon occurs more than once
INSTANCE_SUFFIX = re.compile(r'_\d+$')

# NHX comment prefix, e.g. [&&NHX:D=Y:S=Primates]
NHX_PREFIX = '&&NHX:'

# Values of the NHX 'D' tag that mark a duplication event
DUPLICATION_VALUES = {'y', 'yes', 't', 'true', '1'}


def node_name(node: Node) -> str:
    """
    Return the label of a node: the taxon label for tips, the node label otherwise.

    :param node: The focal node.
    :return: The label, or an empty string if the node is unlabeled.
    """
    if node.taxon is not None and node.taxon.label:
        return node.taxon.label
    return node.label or ''


def set_node_name(node: Node, name: str) -> None:
    """
    Set the label of a node, on the taxon for tips and on the node otherwise.

    :param node: The focal node.
    :param name: The new label. An empty string clears it.
    """
    if node.taxon is not None:
        node.taxon.label = name
    else:
        node.label = name or None


def get_terminals(tree: Tree) -> list:
    """Return the tips of the tree in stable left-to-right order."""
    return list(tree.leaf_node_iter())


def has_instance_suffix(label) -> bool:
    """True if the label carries an instance suffix such as Primates_2."""
    return bool(label) and INSTANCE_SUFFIX.search(label) is not None


def strip_instance_suffix(label) -> str:
    """Remove the instance suffix, if any, from a label."""
    if not label:
        return ''
    return INSTANCE_SUFFIX.sub('', label)


def is_duplication_label(label) -> bool:
    """
    True if a label denotes a duplication node, i.e. it is a bare taxon
    name without instance suffix.
    """
    return bool(label) and not has_instance_suffix(label)


def nhx_tags(node: Node) -> dict:
    """
    Collect the NHX key/value tags of a node.

    Tags are taken from the node's annotation set, where DendroPy stores
    comment metadata it extracted while parsing, and from any raw
    [&&NHX:...] comments that were kept verbatim.

    :param node: The focal node.
    :return: Dictionary of tag names to string values.
    """
    tags = {}
    for annotation in node.annotations:
        tags[annotation.name] = str(annotation.value)
    for comment in getattr(node, 'comments', None) or []:
        if not comment.startswith(NHX_PREFIX):
            continue
        for field in comment[len(NHX_PREFIX):].split(':'):
            if '=' in field:
                key, value = field.split('=', 1)
                tags[key.strip()] = value.strip()
    return tags


def is_duplication_event(node: Node) -> bool:
    """True if the node carries an NHX flag marking it as a gene duplication."""
    value = nhx_tags(node).get('D')
    return value is not None and value.lower() in DUPLICATION_VALUES


def depth_first_traverse(node: Node, pre=None, post=None) -> None:
    """
    Visit a subtree depth-first, calling the pre hook on entry of each node
    and the post hook after all its children have been visited.

    Uses an explicit stack, so tree depth is not bounded by the recursion
    limit. Children are visited in their stored order.

    :param node: Root of the subtree to traverse.
    :param pre: Optional callable invoked with each node before its children.
    :param post: Optional callable invoked with each node after its children.
    """
    stack = [(node, False)]
    while stack:
        current, children_done = stack.pop()
        if children_done:
            if post is not None:
                post(current)
            continue
        if pre is not None:
            pre(current)
        stack.append((current, True))
        for child in reversed(current.child_nodes()):
            stack.append((child, False))


def prune_tips(tree: Tree, nodes) -> int:
    """
    Remove terminal nodes from the tree. Internal nodes that are left without
    children are removed as well, recursively up to the root. Nothing is
    reparented.

    :param tree: The tree to prune.
    :param nodes: Iterable of tip nodes to remove.
    :return: The number of tips removed.
    :raises PruneError: If pruning removes every tip of the tree.
    """
    root = tree.seed_node
    count = 0
    for tip in nodes:
        parent = tip.parent_node
        if parent is None:
            raise PruneError("Cannot prune the root node", context={'tip': node_name(tip)})
        parent.remove_child(tip)
        count += 1

        # Walk up while the pruned lineage leaves empty internal nodes behind
        while parent is not root and not parent.child_nodes():
            grandparent = parent.parent_node
            grandparent.remove_child(parent)
            parent = grandparent

    remaining = len(root.child_nodes())
    if remaining == 0:
        raise PruneError("Pruning collapsed the whole tree", context={'pruned': count})
    if remaining == 1:
        logger.warning("Root node has a single child after pruning")

    logger.debug(f"Pruned {count} tips")
    return count
