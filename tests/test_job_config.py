"""Unit tests for job-file parsing and cut-map construction."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from bs2phiphi import BsCuts, PhiCuts, TrackCuts, read_job
from bs2phiphi.config import format_job, parse_cut_tokens

JOB_TEXT = """\
# signal sample
dataType       mc
isSignal       1
studyGen       1
applyTrkQuality 0
histFile       out/bs2phiphi.root
maxEvent       500
scaleFactor    0.5
inputFile      a.root b.root
inputFile      c.json
trkSelCutList  ptMin=2.0 etaMax=2.5 chi2RedMax=5 nStubMin=4
phiSelCutList  massWindow=0.015 dzTrkPairMax=1.0 bogus drTrkPairMax=0.12
bsSelCutList   massLow=5.0 massHigh=5.8 isolCone=0.4
"""


class TestJobConfig(unittest.TestCase):
    """Validate job-file keys, cut lists and error reporting."""

    def _write(self, tmpdir: str, text: str) -> Path:
        path = Path(tmpdir) / "analysis.job"
        path.write_text(text, encoding="utf-8")
        return path

    def test_read_job_parses_settings_and_cut_lists(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            job = read_job(self._write(tmpdir, JOB_TEXT))

        self.assertEqual(job.data_type, "mc")
        self.assertTrue(job.is_signal)
        self.assertTrue(job.study_gen)
        self.assertFalse(job.dump_gen_info)
        self.assertFalse(job.apply_track_quality)
        self.assertEqual(job.hist_file, "out/bs2phiphi.root")
        self.assertEqual(job.max_event, 500)
        self.assertAlmostEqual(job.scale_factor, 0.5)
        self.assertEqual(job.input_files, ["a.root", "b.root", "c.json"])
        self.assertEqual(job.phi_cut_map, {"massWindow": 0.015, "dzTrkPairMax": 1.0, "drTrkPairMax": 0.12})

        self.assertEqual(job.track_cuts, TrackCuts(min_pt=2.0, max_abs_eta=2.5, max_chi2_red=5.0, min_n_stub=4.0))
        self.assertAlmostEqual(job.phi_cuts.mass_window, 0.015)
        self.assertEqual(job.phi_cuts.opposite_charge, 1.0)
        self.assertIsNone(job.phi_cuts.max_dxy)
        self.assertEqual(job.bs_cuts.isolation_cone, 0.4)
        self.assertEqual(job.bs_cuts.min_mass, 5.0)

    def test_defaults_without_cut_lists(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            job = read_job(self._write(tmpdir, "inputFile events.json\n"))

        self.assertEqual(job.tree_name, "events")
        self.assertEqual(job.max_event, -1)
        self.assertTrue(job.apply_track_quality)
        self.assertEqual(job.phi_cuts, PhiCuts())
        self.assertEqual(job.bs_cuts, BsCuts())
        self.assertEqual(job.phi_cuts.mass_window, 0.02)

    def test_unknown_cut_name_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = self._write(tmpdir, "phiSelCutList massWindw=0.02\n")
            with self.assertRaisesRegex(ValueError, "Unknown cut 'massWindw'"):
                read_job(path)

    def test_bad_values_report_location(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = self._write(tmpdir, "dataType mc\nmaxEvent many\n")
            with self.assertRaisesRegex(ValueError, r"analysis\.job:2: invalid value for 'maxEvent'"):
                read_job(path)
            path = self._write(tmpdir, "histFile\n")
            with self.assertRaisesRegex(ValueError, "has no value"):
                read_job(path)

    def test_unknown_key_is_logged_and_ignored(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = self._write(tmpdir, "colour blue\nmaxEvent 3\n")
            with self.assertLogs("bs2phiphi.Config", level="WARNING") as logs:
                job = read_job(path)
        self.assertEqual(job.max_event, 3)
        self.assertIn("unknown job key 'colour'", logs.output[0])

    def test_missing_job_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            read_job("/nonexistent/analysis.job")

    def test_parse_cut_tokens_skips_tokens_without_value(self) -> None:
        self.assertEqual(parse_cut_tokens(["ptMin=2", "etaMax", "=1", "nStubMin="]), {"ptMin": 2.0})

    def test_cut_map_round_trip_by_job_names(self) -> None:
        cuts = TrackCuts.from_mapping({"ptMin": 1.5, "nStubPSMin": 2})
        self.assertEqual(cuts.as_mapping()["ptMin"], 1.5)
        self.assertEqual(cuts.as_mapping()["nStubPSMin"], 2)
        self.assertIsNone(cuts.as_mapping()["etaMax"])

    def test_format_job_lists_inputs_and_cuts(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            job = read_job(self._write(tmpdir, JOB_TEXT))
        text = format_job(job)
        self.assertIn("c.json", text)
        self.assertIn(">>> phiSelCutList", text)
        self.assertIn("drTrkPairMax", text)


if __name__ == "__main__":
    unittest.main()
