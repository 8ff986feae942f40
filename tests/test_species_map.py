#!/usr/bin/env python
"""
Unit tests for the species_map module.
"""

import pytest

from ratogram.species_map import SpeciesMapper, ENSEMBL_PREFIXES
from ratogram.tree_parser import TreeParser
from ratogram.tree_model import get_terminals, node_name


# Fixtures
@pytest.fixture
def mapper():
    return SpeciesMapper()


# Tests
@pytest.mark.parametrize("gene_id,species", [
    ("ENSP00000263025", "Homo sapiens"),
    ("ENSPTRP00000012345", "Pan troglodytes"),
    ("ENSMUSP00000001234", "Mus musculus"),
    ("ENSCSAVP00000001234", "Ciona savignyi"),
    ("FBP00000001", "Drosophila melanogaster"),
    ("ENSFOOP00000000001", None),
])
def test_species_for(mapper, gene_id, species):
    """Test that the peptide suffix is stripped before the prefix lookup."""
    assert mapper.species_for(gene_id) == species


def test_relabel_tips_numbers_per_species(mapper):
    """Test that tips become Genus_species.N, counted per species in tip order."""
    tree = TreeParser().parse_from_string(
        "((ENSP00000000001,ENSMUSP00000000001),(ENSP00000000002,ENSRNOP00000000001));"
    )
    pruned = mapper.relabel_tips(tree)

    assert pruned == []
    assert [node_name(tip) for tip in get_terminals(tree)] == [
        "Homo_sapiens.1", "Mus_musculus.1", "Homo_sapiens.2", "Rattus_norvegicus.1"
    ]


def test_relabel_tips_prunes_unknown(mapper):
    """Test that tips with unknown prefixes are removed from the tree."""
    tree = TreeParser().parse_from_string(
        "((ENSP00000000001,ENSFOOP00000000001),(ENSBARP00000000002,ENSBAZP00000000001));"
    )
    pruned = mapper.relabel_tips(tree)

    assert pruned == ["ENSFOOP00000000001", "ENSBARP00000000002", "ENSBAZP00000000001"]
    assert [node_name(tip) for tip in get_terminals(tree)] == ["Homo_sapiens.1"]


def test_custom_lookup():
    mapper = SpeciesMapper({'ABC': 'Alphus betus'})
    assert mapper.species_for("ABCP001") == "Alphus betus"
    assert mapper.species_for("ENSP00000000001") is None


def test_prefix_table_complete():
    """Test a few entries of the built-in table."""
    assert len(ENSEMBL_PREFIXES) == 69
    assert ENSEMBL_PREFIXES['ENS'] == 'Homo sapiens'
    assert ENSEMBL_PREFIXES['ENSGGO'] == 'Gorilla gorilla gorilla'
