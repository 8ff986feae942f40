#!/usr/bin/env python
"""
Species Map Module - Relabels Ensembl gene tips with species names

TreeFam gene trees have Ensembl peptide identifiers as tip labels. The
identifier prefix (the part before the trailing 'P<digits>') identifies the
species. Tips are relabelled 'Genus_species.<n>', numbering the genes of each
species in tip order, so that tip labels identify the species and remain
unique. Tips whose prefix is unknown are pruned.
"""

import re
import logging

from ratogram.tree_model import get_terminals, node_name, set_node_name, prune_tips

PEPTIDE_SUFFIX = re.compile(r'P\d+$')

ENSEMBL_PREFIXES = {
    'ENSAME': 'Ailuropoda melanoleuca',
    'ENSAPL': 'Anas platyrhynchos',
    'ENSACA': 'Anolis carolinensis',
    'ENSAMX': 'Astyanax mexicanus',
    'ENSBTA': 'Bos taurus',
    'ENSCEL': 'Caenorhabditis elegans',
    'ENSCJA': 'Callithrix jacchus',
    'ENSCAF': 'Canis lupus familiaris',
    'ENSCPO': 'Cavia porcellus',
    'ENSCSA': 'Chlorocebus sabaeus',
    'ENSCHO': 'Choloepus hoffmanni',
    'ENSCIN': 'Ciona intestinalis',
    'ENSCSAV': 'Ciona savignyi',
    'ENSDAR': 'Danio rerio',
    'ENSDNO': 'Dasypus novemcinctus',
    'ENSDOR': 'Dipodomys ordii',
    'FB': 'Drosophila melanogaster',
    'ENSETE': 'Echinops telfairi',
    'ENSECA': 'Equus caballus',
    'ENSEEU': 'Erinaceus europaeus',
    'ENSFCA': 'Felis catus',
    'ENSFAL': 'Ficedula albicollis',
    'ENSGMO': 'Gadus morhua',
    'ENSGAL': 'Gallus gallus',
    'ENSGAC': 'Gasterosteus aculeatus',
    'ENSGGO': 'Gorilla gorilla gorilla',
    'ENS': 'Homo sapiens',
    'ENSSTO': 'Ictidomys tridecemlineatus',
    'ENSLAC': 'Latimeria chalumnae',
    'ENSLOC': 'Lepisosteus oculatus',
    'ENSLAF': 'Loxodonta africana',
    'ENSMMU': 'Macaca mulatta',
    'ENSMEU': 'Macropus eugenii',
    'ENSMGA': 'Meleagris gallopavo',
    'ENSMIC': 'Microcebus murinus',
    'ENSMOD': 'Monodelphis domestica',
    'ENSMUS': 'Mus musculus',
    'ENSMPU': 'Mustela putorius furo',
    'ENSMLU': 'Myotis lucifugus',
    'ENSNLE': 'Nomascus leucogenys',
    'ENSOPR': 'Ochotona princeps',
    'ENSONI': 'Oreochromis niloticus',
    'ENSOAN': 'Ornithorhynchus anatinus',
    'ENSOCU': 'Oryctolagus cuniculus',
    'ENSORL': 'Oryzias latipes',
    'ENSOGA': 'Otolemur garnettii',
    'ENSOAR': 'Ovis aries',
    'ENSPTR': 'Pan troglodytes',
    'ENSPAN': 'Papio anubis',
    'ENSPSI': 'Pelodiscus sinensis',
    'ENSPMA': 'Petromyzon marinus',
    'ENSPFO': 'Poecilia formosa',
    'ENSPPY': 'Pongo abelii',
    'ENSPCA': 'Procavia capensis',
    'ENSPVA': 'Pteropus vampyrus',
    'ENSRNO': 'Rattus norvegicus',
    'ENSSCE': 'Saccharomyces cerevisiae',
    'ENSSHA': 'Sarcophilus harrisii',
    'ENSSAR': 'Sorex araneus',
    'ENSSSC': 'Sus scrofa',
    'ENSTGU': 'Taeniopygia guttata',
    'ENSTRU': 'Takifugu rubripes',
    'ENSTSY': 'Tarsius syrichta',
    'ENSTNI': 'Tetraodon nigroviridis',
    'ENSTBE': 'Tupaia belangeri',
    'ENSTTR': 'Tursiops truncatus',
    'ENSVPA': 'Vicugna pacos',
    'ENSXET': 'Xenopus tropicalis',
    'ENSXMA': 'Xiphophorus maculatus',
}


class SpeciesMapper:
    """Relabels gene tips by species and prunes tips of unknown species."""

    def __init__(self, lookup=None):
        """
        Args:
            lookup (dict, optional): Identifier prefix to species name. Defaults
                                     to the Ensembl prefixes.
        """
        self.lookup = lookup if lookup is not None else ENSEMBL_PREFIXES
        self.logger = logging.getLogger(__name__)

    def species_for(self, gene_id):
        """Return the species name for a gene identifier, or None if unknown."""
        return self.lookup.get(PEPTIDE_SUFFIX.sub('', gene_id))

    def relabel_tips(self, tree):
        """
        Relabel all tips and prune those without a species mapping.

        Args:
            tree (dendropy.Tree): Tree to relabel in place.

        Returns:
            list: Labels of the pruned tips.
        """
        counts = {}
        prune = []
        for tip in get_terminals(tree):
            gene_id = node_name(tip)
            species = self.species_for(gene_id)
            if species is None:
                self.logger.error(f"No mapping for {gene_id} - will prune")
                prune.append(tip)
                continue
            counts[species] = counts.get(species, 0) + 1
            set_node_name(tip, f"{species.replace(' ', '_')}.{counts[species]}")

        pruned = [node_name(tip) for tip in prune]
        if prune:
            prune_tips(tree, prune)
        return pruned
