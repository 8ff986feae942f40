#!/usr/bin/env python
"""
Integration tests for the calibration pipeline.

r8s is replaced by a runner that replays a recorded r8s log, and fossils come
from the cached test calibrations, so the complete per-family workflow runs
without network access or external tools.
"""

import csv
import shutil
import pytest
from pathlib import Path

# Import the modules to test
from ratogram.pipeline import CalibrationPipeline, FamilyResult, family_id_for
from ratogram.r8s_runner import CalibrationRunner
from ratogram.calibration_client import FossilCalibrationClient
from ratogram.rate_traverser import HEADER


class ReplayRunner(CalibrationRunner):
    """Calibration runner that returns recorded output instead of running r8s."""

    def __init__(self, output, config=None):
        super().__init__(config=config)
        self.output = output
        self.calls = []

    def run_calibration(self, tree, nchar, fossils, family='family'):
        self.calls.append((self.parser.write_to_string(tree), nchar, list(fossils), family))
        return self.output


# Fixtures
@pytest.fixture
def data_dir():
    """Path to test data directory."""
    return Path(__file__).parent / "data"


@pytest.fixture
def r8s_output(data_dir):
    with open(data_dir / "r8s_output.log", encoding='utf-8') as f:
        return f.read()


@pytest.fixture
def work_dir(data_dir, tmp_path):
    """Copy of the family tree, its alignment and the fossil cache."""
    shutil.copy(data_dir / "TF105001.nhx.emf", tmp_path)
    shutil.copy(data_dir / "TF105001.cds.fasta", tmp_path)
    shutil.copytree(data_dir / "fossils", tmp_path / "fossils")
    return tmp_path


@pytest.fixture
def client(work_dir):
    return FossilCalibrationClient(config={'cache_dir': str(work_dir / "fossils"), 'skip_remote': True})


@pytest.fixture
def pipeline_factory(work_dir, client):
    def make(output):
        runner = ReplayRunner(output)
        config = {'output_dir': str(work_dir / "ratograms")}
        return CalibrationPipeline(config=config, client=client, runner=runner)
    return make


def read_table(path):
    with open(path, encoding='utf-8') as f:
        return list(csv.reader(f, delimiter='\t'))


# Tests
def test_family_id_for():
    assert family_id_for("/data/trees/TF105001.nhx.emf") == "TF105001"
    assert family_id_for("TF101001") == "TF101001"


def test_process_family_passed(pipeline_factory, work_dir, r8s_output):
    """Test the complete workflow for one family."""
    pipeline = pipeline_factory(r8s_output)
    result = pipeline.process_family(str(work_dir / "TF105001.nhx.emf"))

    assert isinstance(result, FamilyResult)
    assert result.status == 'passed', result.reason
    assert result.family_id == 'TF105001'
    assert result.pruned_tips == ['ENSFOOP00000000001']
    assert [f.calibrated_taxon for f in result.mapped_fossils] == ['Catarrhini_1', 'Catarrhini_2', 'Murinae_1']

    # r8s received the relabelled, calibrated tree and the alignment length
    newick, nchar, fossils, family = pipeline.runner.calls[0]
    assert nchar == 39
    assert family == 'TF105001'
    assert "Homo_sapiens.2" in newick
    assert "ENSFOOP" not in newick


def test_process_family_outputs(pipeline_factory, work_dir, r8s_output):
    """Test the trees and rate table written for a passed family."""
    result = pipeline_factory(r8s_output).process_family(str(work_dir / "TF105001.nhx.emf"))

    out = work_dir / "ratograms"
    for kind in ('ratogram', 'chronogram', 'phylogram'):
        assert (out / f"TF105001.{kind}.tre").exists()
    assert result.outputs['table'] == str(out / "TF105001.ratebydist.tsv")

    rows = read_table(result.outputs['table'])
    assert rows[0] == HEADER
    assert len(rows) == 5
    assert all(row[0] == 'TF105001' and row[1] == 'Catarrhini' for row in rows[1:])
    assert sorted(float(row[2]) for row in rows[1:]) == [10.0, 10.0, 34.0, 34.0]
    assert all(row[5] == '6' for row in rows[1:])


def test_process_family_records(pipeline_factory, work_dir, r8s_output):
    """Test rates and distances below the duplication node."""
    result = pipeline_factory(r8s_output).process_family(str(work_dir / "TF105001.nhx.emf"))

    pairs = sorted((r.distance, r.rate) for r in result.records)
    assert pairs == [
        (pytest.approx(10.0), pytest.approx(0.009)),
        (pytest.approx(10.0), pytest.approx(0.010)),
        (pytest.approx(34.0), pytest.approx(0.007)),
        (pytest.approx(34.0), pytest.approx(0.008)),
    ]
    assert len({r.duplication_hash for r in result.records}) == 1


def test_mapping_warnings_collected(pipeline_factory, work_dir, r8s_output):
    """Test that mapping problems are recorded on the result, not raised."""
    result = pipeline_factory(r8s_output).process_family(str(work_dir / "TF105001.nhx.emf"))

    taxa = {w.taxon for w in result.warnings}
    assert {'Murinae', 'Homininae', 'Euarchontoglires'} <= taxa


def test_skipped_without_alignment(pipeline_factory, work_dir, r8s_output):
    """Test that a family without alignment is skipped before anything else."""
    (work_dir / "TF105001.cds.fasta").unlink()
    pipeline = pipeline_factory(r8s_output)
    result = pipeline.process_family(str(work_dir / "TF105001.nhx.emf"))

    assert result.status == 'skipped'
    assert result.reason == 'no alignment'
    assert pipeline.runner.calls == []


def test_explicit_alignment_path(pipeline_factory, work_dir, data_dir, r8s_output):
    """Test that an alignment given explicitly overrides the derived path."""
    (work_dir / "TF105001.cds.fasta").unlink()
    result = pipeline_factory(r8s_output).process_family(
        str(work_dir / "TF105001.nhx.emf"),
        alignment_path=str(data_dir / "TF105001.cds.fasta")
    )
    assert result.status == 'passed'


def test_skipped_without_fossils(work_dir, r8s_output):
    """Test that a family onto which no fossil maps is skipped."""
    empty_cache = work_dir / "empty"
    client = FossilCalibrationClient(config={'cache_dir': str(empty_cache), 'skip_remote': True})
    runner = ReplayRunner(r8s_output)
    pipeline = CalibrationPipeline(config={'output_dir': str(work_dir / "out")}, client=client, runner=runner)

    result = pipeline.process_family(str(work_dir / "TF105001.nhx.emf"))

    assert result.status == 'skipped'
    assert result.reason == 'no fossils mapped'
    assert runner.calls == []


def test_failed_calibration(pipeline_factory, work_dir, r8s_output):
    """Test that an r8s run without PASSED fails the family and writes no table."""
    pipeline = pipeline_factory(r8s_output.replace("PASSED", "FAILED"))
    result = pipeline.process_family(str(work_dir / "TF105001.nhx.emf"))

    assert result.status == 'failed'
    assert result.reason.startswith('CalibrationFailedError')
    assert not (work_dir / "ratograms" / "TF105001.ratebydist.tsv").exists()


def test_run_batch_continues(pipeline_factory, work_dir, r8s_output):
    """Test that a batch continues past skipped families and counts outcomes."""
    lonely = work_dir / "TF999999.nhx.emf"
    shutil.copy(work_dir / "TF105001.nhx.emf", lonely)

    pipeline = pipeline_factory(r8s_output)
    results = pipeline.run_batch([str(lonely), str(work_dir / "TF105001.nhx.emf")])

    assert [r.status for r in results] == ['skipped', 'passed']
    summary = pipeline.get_summary()
    assert summary == {'total': 2, 'passed': 1, 'skipped': 1, 'failed': 0}


def test_run_batch_continues_past_bad_alignment(pipeline_factory, work_dir, r8s_output):
    """Test that an alignment Biopython cannot read fails only its own family."""
    shutil.copy(work_dir / "TF105001.nhx.emf", work_dir / "TF999999.nhx.emf")
    (work_dir / "TF999999.cds.fasta").write_text("this is not fasta\n")

    pipeline = pipeline_factory(r8s_output)
    results = pipeline.run_batch([str(work_dir / "TF999999.nhx.emf"), str(work_dir / "TF105001.nhx.emf")])

    assert [r.status for r in results] == ['failed', 'passed']
    assert results[0].reason.startswith('ParseError')
    assert [call[3] for call in pipeline.runner.calls] == ['TF105001']


def test_run_batch_continues_past_missing_tree(pipeline_factory, work_dir, r8s_output):
    """Test that a tree path that does not exist is skipped."""
    shutil.copy(work_dir / "TF105001.cds.fasta", work_dir / "TF999998.cds.fasta")

    pipeline = pipeline_factory(r8s_output)
    results = pipeline.run_batch([str(work_dir / "TF999998.nhx.emf"), str(work_dir / "TF105001.nhx.emf")])

    assert [r.status for r in results] == ['skipped', 'passed']
    assert results[0].reason == 'no tree'
    assert pipeline.get_summary() == {'total': 2, 'passed': 1, 'skipped': 1, 'failed': 0}


@pytest.mark.parametrize("content", [
    "[{\"nfos\": \"101\",",
    "[{\"crown_vs_stem\": \"crown\", \"min_age\": 25.2}]",
])
def test_corrupt_fossil_cache_fails_family(pipeline_factory, work_dir, r8s_output, content):
    """Test that an unreadable cache file fails the family instead of the run."""
    (work_dir / "fossils" / "Catarrhini.json").write_text(content)

    pipeline = pipeline_factory(r8s_output)
    result = pipeline.process_family(str(work_dir / "TF105001.nhx.emf"))

    assert result.status == 'failed'
    assert result.reason.startswith('ParseError')
    assert pipeline.runner.calls == []
