#!/usr/bin/env python
"""
Unit tests for the outlier_pruner module.
"""

import pytest

from ratogram.tree_parser import TreeParser
from ratogram.outlier_pruner import OutlierPruner, DEFAULT_DEVIATIONS
from ratogram.tree_model import get_terminals, node_name
from ratogram.exceptions import PruneError


def star_tree(lengths, outliers=None):
    """Build a star tree with tips t0..tn and optional extra tips."""
    tips = [f"t{i}:{length}" for i, length in enumerate(lengths)]
    for label, length in (outliers or {}).items():
        tips.append(f"{label}:{length}")
    return TreeParser().parse_from_string("(" + ",".join(tips) + ");")


# Tests
def test_default_deviations():
    """Test that the configured default is eight standard deviations."""
    pruner = OutlierPruner(star_tree([1.0, 1.0, 1.0]))
    assert pruner.deviations == DEFAULT_DEVIATIONS == 8.0

    pruner = OutlierPruner(star_tree([1.0, 1.0, 1.0]), config={'deviations': 2})
    assert pruner.deviations == 2.0


def test_prunes_extreme_tip_with_default():
    """Test that one very long branch among a hundred equal ones is pruned."""
    tree = star_tree([1.0] * 100, outliers={'runaway': 1000.0})
    pruner = OutlierPruner(tree)

    pruned = pruner.prune_outliers()

    assert pruned == ['runaway']
    assert len(get_terminals(tree)) == 100
    assert 'runaway' not in [node_name(tip) for tip in get_terminals(tree)]


def test_prunes_with_custom_multiplier():
    """Test that a lower multiplier prunes what the default tolerates."""
    lengths = [1.0] * 9

    tree = star_tree(lengths, outliers={'long': 50.0})
    assert OutlierPruner(tree).prune_outliers() == []

    tree = star_tree(lengths, outliers={'long': 50.0})
    assert OutlierPruner(tree).prune_outliers(multiplier=2.0) == ['long']


def test_pruning_is_idempotent():
    """Test that a second run on a pruned tree prunes nothing."""
    tree = star_tree([1.0] * 9, outliers={'long': 50.0})
    pruner = OutlierPruner(tree, config={'deviations': 2.0})

    first = pruner.prune_outliers()
    second = pruner.prune_outliers()

    assert first == ['long']
    assert second == []


def test_no_statistics_below_three_tips():
    """Test that trees with fewer than three tips are left alone."""
    tree = TreeParser().parse_from_string("(A:1,B:100);")
    pruner = OutlierPruner(tree, config={'deviations': 0.1})

    assert pruner.find_outliers(0.1) == []
    assert pruner.prune_outliers() == []
    assert len(get_terminals(tree)) == 2


def test_missing_lengths_count_as_zero():
    """Test that tips without branch lengths do not break the statistics."""
    tree = TreeParser().parse_from_string("(A,B,C,D);")
    assert OutlierPruner(tree).prune_outliers() == []


def test_pruning_stats():
    """Test the statistics reported after pruning."""
    tree = star_tree([1.0] * 9, outliers={'long': 50.0})
    pruner = OutlierPruner(tree, config={'deviations': 2.0})
    pruner.prune_outliers()

    stats = pruner.get_pruning_stats()
    assert stats['pruned_tips'] == 1
    assert stats['remaining_tips'] == 9
    assert stats['iterations'] == 2
    assert stats['mean'] == pytest.approx(1.0)
    assert stats['stdev'] == pytest.approx(0.0)


def test_all_tips_flagged_raises():
    """Test that a threshold rejecting every tip is an error and prunes nothing."""
    tree = star_tree([1.0, 1.0, 4.0])
    pruner = OutlierPruner(tree, config={'deviations': 0})

    with pytest.raises(PruneError) as excinfo:
        pruner.prune_outliers()

    assert excinfo.value.context['tips'] == 3
    assert excinfo.value.context['mean'] == pytest.approx(2.0)
    assert len(get_terminals(tree)) == 3
