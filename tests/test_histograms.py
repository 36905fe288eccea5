"""Unit tests for the named histogram registry."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

import uproot

from bs2phiphi import CUTFLOW_STEPS, HistogramSet, book_histograms


class TestHistogramSet(unittest.TestCase):
    """Validate booking, filling, scaling and ROOT output."""

    def test_book_and_fill(self) -> None:
        hset = HistogramSet()
        hset.book_1d("mass", "Mass", 10, 0.0, 10.0)
        hset.book_2d("pt2d", "pt vs pt", 5, 0.0, 5.0, 5, 0.0, 5.0)

        hset.fill("mass", 2.5)
        hset.fill("mass", 2.7, weight=3.0)
        hset.fill("pt2d", 1.5, 3.5)

        self.assertEqual(hset.get("mass").values()[2], 4.0)
        self.assertEqual(hset.get("pt2d").values()[1, 3], 1.0)
        self.assertIn("mass", hset)
        self.assertEqual(len(hset), 2)
        self.assertEqual(hset.names(), ["mass", "pt2d"])

    def test_unknown_and_duplicate_names(self) -> None:
        hset = HistogramSet()
        hset.book_1d("mass", "Mass", 10, 0.0, 10.0)
        with self.assertRaisesRegex(KeyError, "was it booked"):
            hset.fill("massX", 1.0)
        with self.assertRaisesRegex(ValueError, "already booked"):
            hset.book_1d("mass", "Mass again", 10, 0.0, 10.0)

    def test_profile_averages_and_is_not_scaled(self) -> None:
        hset = HistogramSet()
        hset.book_1d("count", "Count", 4, -0.5, 3.5)
        hset.book_profile("prof", "Mean y vs x", 4, -0.5, 3.5)
        hset.fill("count", 1)
        hset.fill("prof", 1, 2.0)
        hset.fill("prof", 1, 4.0)

        hset.scale(0.5)

        self.assertEqual(hset.get("count").values()[1], 0.5)
        self.assertAlmostEqual(hset.get("prof").values()[1], 3.0)

    def test_analysis_booking(self) -> None:
        reco_only = book_histograms(HistogramSet())
        with_gen = book_histograms(HistogramSet(), study_gen=True)

        self.assertEqual(reco_only.get("evcount").axes[0].size, len(CUTFLOW_STEPS))
        for name in ("trk4nStubPS", "isol3", "anglePlanes", "phiPt"):
            self.assertIn(name, reco_only)
        self.assertNotIn("genKPt1", reco_only)
        for name in ("genKPt1", "genBsPt", "drVsMatchedTrk", "mDr_phi", "all2D", "signalDZ"):
            self.assertIn(name, with_gen)

    def test_save_writes_root_file(self) -> None:
        hset = HistogramSet()
        hset.book_1d("mass", "Mass", 10, 0.0, 10.0)
        hset.book_2d("pt2d", "pt vs pt", 5, 0.0, 5.0, 5, 0.0, 5.0)
        hset.fill("mass", 7.2)
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "hists.root"
            hset.save(path)
            with uproot.open(path) as root_file:
                mass = root_file["mass"].values()
                self.assertEqual(root_file["pt2d"].values().shape, (5, 5))
        self.assertEqual(mass[7], 1.0)


if __name__ == "__main__":
    unittest.main()
