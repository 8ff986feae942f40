#!/usr/bin/env python
"""
Calibration Runner Module - Runs r8s and reads back its trees

This module turns a fossil-mapped gene tree into an r8s command script, runs
r8s on it and extracts the ratogram, chronogram and phylogram that r8s prints
once its analysis has passed.
"""

import os
import re
import time
import shutil
import logging
import tempfile
import subprocess
from string import Template

from Bio import SeqIO

from ratogram.exceptions import ExternalToolError, CalibrationFailedError, ParseError
from ratogram.tree_parser import TreeParser

PASSED_PATTERN = re.compile(r'^\s*PASSED\s*$')
TREE_PATTERN = re.compile(r'tree \S+ = (\(.+;)')

# Order in which r8s describes the trees in the default template
TREE_KINDS = ('ratogram', 'chronogram', 'phylogram')

DEFAULT_TEMPLATE = """#NEXUS
[ generated by $script on $date for $family ]
begin trees;
tree $family = [&R] $tree
end;

begin r8s;
blformat lengths=persite nsites=$nchar ulrate=no round=yes;
collapse;
$fossils
set smoothing=100 checkGradient=yes;
divtime method=pl algorithm=tn;
describe plot=rato_description;
describe plot=chrono_description;
describe plot=phylo_description;
end;
"""


def get_nchar(alignment_path):
    """
    Return the length of the first sequence in a FASTA alignment.

    Args:
        alignment_path (str): Path to the alignment.

    Returns:
        int or None: Number of characters, None if there is no alignment.

    Raises:
        ParseError: If the alignment is not valid FASTA or holds no sequence.
    """
    if not alignment_path or not os.path.exists(alignment_path):
        return None
    try:
        for record in SeqIO.parse(alignment_path, "fasta"):
            return len(record.seq)
    except ValueError as e:
        raise ParseError(f"Unreadable alignment {alignment_path}: {str(e)}") from e
    raise ParseError(f"No sequences in alignment {alignment_path}")


def alignment_path_for(tree_path):
    """Return the CDS alignment path that belongs with a TreeFam tree file."""
    if tree_path.endswith('.nhx.emf'):
        return tree_path[:-len('.nhx.emf')] + '.cds.fasta'
    return os.path.splitext(tree_path)[0] + '.cds.fasta'


class CalibrationRunner:
    """Builds r8s input, runs r8s and parses its output."""

    def __init__(self, config=None):
        """
        Initialize with optional configuration.

        Args:
            config (dict, optional): May include 'exe' (path to r8s),
                                     'template' (path to a command template),
                                     'timeout' (seconds) and 'keep_files'.
        """
        self.config = config or {}
        self.logger = logging.getLogger(__name__)
        self.parser = TreeParser()

        self.exe = self.config.get('exe', 'r8s')
        self.timeout = self.config.get('timeout')
        self.keep_files = self.config.get('keep_files', False)
        self.output_dir = self.config.get('output_dir', '.')
        self.template = self._load_template(self.config.get('template'))

        self.logger.info(f"Calibration runner initialized with exe={self.exe}")

    def _load_template(self, template_path):
        if not template_path:
            return Template(DEFAULT_TEMPLATE)
        if not os.path.exists(template_path):
            raise FileNotFoundError(f"Template not found: {template_path}")
        with open(template_path, 'r', encoding='utf-8') as f:
            return Template(f.read())

    def render_fossils(self, fossils):
        """
        Render one constraint command per fossil.

        Args:
            fossils (list): Mapped FossilRecord objects.

        Returns:
            str: r8s commands, one per line.
        """
        lines = []
        for fossil in fossils:
            bounds = []
            if fossil.min_age is not None:
                bounds.append(f"min_age={fossil.min_age:g}")
            if fossil.max_age is not None:
                bounds.append(f"max_age={fossil.max_age:g}")
            if not bounds:
                self.logger.warning(f"Fossil {fossil.nfos} for {fossil.calibrated_taxon} has no ages, skipping")
                continue
            lines.append(f"constrain taxon={fossil.calibrated_taxon} {' '.join(bounds)};")
        return '\n'.join(lines)

    def render_commands(self, tree, nchar, fossils, family='family'):
        """
        Fill the command template.

        Args:
            tree (dendropy.Tree): Fossil-mapped gene tree.
            nchar (int): Alignment length.
            fossils (list): Mapped FossilRecord objects.
            family (str): Family identifier.

        Returns:
            str: The r8s command script.
        """
        return self.template.safe_substitute(
            tree=self.parser.write_to_string(tree),
            nchar=nchar,
            fossils=self.render_fossils(fossils),
            script='ratogrammer',
            date=time.strftime('%a %b %d %H:%M:%S %Y'),
            family=family,
        )

    def run_calibration(self, tree, nchar, fossils, family='family'):
        """
        Run r8s on a tree and return everything it printed.

        Args:
            tree (dendropy.Tree): Fossil-mapped gene tree.
            nchar (int): Alignment length.
            fossils (list): Mapped FossilRecord objects.
            family (str): Family identifier.

        Returns:
            str: Combined stdout and stderr of r8s.

        Raises:
            ExternalToolError: If r8s is missing, times out, fails or prints nothing.
        """
        commands = self.render_commands(tree, nchar, fossils, family=family)
        self.logger.debug(f"\n{commands}\n")

        with tempfile.TemporaryDirectory() as temp_dir:
            script_path = os.path.join(temp_dir, f"{family}.r8s")
            with open(script_path, 'w', encoding='utf-8') as f:
                f.write(commands)

            cmd = [self.exe, '-b', '-f', script_path]
            self.logger.info("Going to run r8s, this may take a while")
            self.logger.debug(f"Running command: {' '.join(cmd)}")
            try:
                result = subprocess.run(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    check=False,
                    timeout=self.timeout
                )
            except FileNotFoundError as e:
                raise ExternalToolError(f"r8s executable not found: {self.exe}", tool_name=self.exe) from e
            except subprocess.TimeoutExpired as e:
                raise ExternalToolError(f"r8s timed out after {self.timeout} seconds",
                                        tool_name=self.exe, context={'command': ' '.join(cmd)}) from e

            if self.keep_files:
                if not os.path.exists(self.output_dir):
                    os.makedirs(self.output_dir)
                shutil.copy2(script_path, os.path.join(self.output_dir, os.path.basename(script_path)))

        output = (result.stdout or '') + (result.stderr or '')
        self.logger.debug(f"\n{output}\n")

        if result.returncode != 0:
            self.logger.error(f"r8s failed with exit code {result.returncode}")
            raise ExternalToolError(
                f"r8s failed with exit code {result.returncode}",
                tool_name=self.exe,
                return_code=result.returncode,
                context={'stderr': result.stderr, 'command': ' '.join(cmd)}
            )
        if not output.strip():
            raise ExternalToolError("r8s produced no output", tool_name=self.exe, return_code=0)

        return output

    def parse_result(self, output):
        """
        Extract the trees r8s printed after its PASSED marker.

        Args:
            output (str): Combined r8s output.

        Returns:
            dict: Newick strings keyed 'ratogram', 'chronogram', 'phylogram'.

        Raises:
            CalibrationFailedError: If the analysis did not pass.
            ParseError: If fewer than three trees follow the marker.
        """
        passed = False
        trees = []
        for line in output.splitlines():

            # Check if we passed, set flag
            if PASSED_PATTERN.match(line):
                if not passed:
                    self.logger.info("Analysis passed OK - reading trees")
                passed = True
                continue

            # With the flag set, tree descriptions are the results
            if passed:
                match = TREE_PATTERN.search(line)
                if match:
                    trees.append(match.group(1))

        if not passed:
            self.logger.error("Analysis failure, no PASSED marker in r8s output")
            raise CalibrationFailedError("r8s analysis did not pass")

        if len(trees) < len(TREE_KINDS):
            raise ParseError(f"Expected {len(TREE_KINDS)} trees after PASSED, found {len(trees)}")

        return dict(zip(TREE_KINDS, trees))

    def write_results(self, trees, output_dir, stem):
        """
        Write the result trees to '<stem>.<kind>.tre' files.

        Args:
            trees (dict): As returned by parse_result().
            output_dir (str): Directory to write to.
            stem (str): Family identifier.

        Returns:
            dict: Paths keyed by tree kind.
        """
        if not os.path.exists(output_dir):
            os.makedirs(output_dir)
        paths = {}
        for kind, newick in trees.items():
            path = os.path.join(output_dir, f"{stem}.{kind}.tre")
            with open(path, 'w', encoding='utf-8') as f:
                f.write(newick + '\n')
            self.logger.info(f"{kind} written to {path}")
            paths[kind] = path
        return paths

    def is_available(self):
        """Check if the r8s executable can be found."""
        return shutil.which(self.exe) is not None
