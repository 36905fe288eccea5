"""Unit tests for event loaders and candidate table export."""

from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

import pandas as pd

from bs2phiphi import Event, PhiPhiCombiner
from bs2phiphi.io import (
    candidate_rows,
    load_events,
    load_events_json,
    write_candidates_table,
    write_events_root,
)

from builders import gen_from_tracks, signal_tracks


class TestIOLoaders(unittest.TestCase):
    """Validate JSON and ROOT event input plus tabular candidate output."""

    def test_load_events_json_parses_event_payload(self) -> None:
        """Event loader should parse tracks, gen particles and defaults."""
        payload = {
            "events": [
                {
                    "run": 3,
                    "lumi": 12,
                    "event": 4567,
                    "tracks": [
                        {"pt": 5.0, "eta": 0.1, "phi": 0.2, "charge": 1, "vertex_z": 0.3, "n_stub": 6},
                        {"index": 7, "pt": 4.0, "eta": -0.1, "phi": 0.25, "charge": -1, "is_genuine": 1},
                    ],
                    "gen_particles": [
                        {"pdg_id": 333, "pt": 9.0, "eta": 0.0, "phi": 0.2, "energy": 9.1, "mother_index": 2},
                    ],
                },
                {"tracks": []},
            ]
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "events.json"
            path.write_text(json.dumps(payload), encoding="utf-8")
            events = load_events_json(path)

        self.assertEqual(len(events), 2)
        first = events[0]
        self.assertEqual((first.run, first.lumi, first.event), (3, 12, 4567))
        self.assertEqual([t.index for t in first.tracks], [0, 7])
        self.assertEqual(first.tracks[0].n_stub, 6)
        self.assertAlmostEqual(first.tracks[0].vertex_z, 0.3)
        self.assertTrue(first.tracks[1].is_genuine)
        self.assertEqual(first.gen_particles[0].pdg_id, 333)
        self.assertEqual(first.gen_particles[0].mother_index, 2)
        self.assertEqual(events[1].event, 1)
        self.assertEqual(events[1].tracks, ())

    def test_load_events_json_rejects_incomplete_tracks(self) -> None:
        payload = {"events": [{"tracks": [{"pt": 1.0, "eta": 0.0, "phi": 0.0}]}]}
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "events.json"
            path.write_text(json.dumps(payload), encoding="utf-8")
            with self.assertRaisesRegex(ValueError, "missing: charge"):
                load_events_json(path)
            path.write_text(json.dumps({"tracks": []}), encoding="utf-8")
            with self.assertRaisesRegex(ValueError, "key 'events'"):
                load_events_json(path)

    def test_load_events_rejects_unknown_suffix_and_missing_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "events.txt"
            path.write_text("", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_events(path)
            with self.assertRaises(FileNotFoundError):
                load_events(Path(tmpdir) / "absent.root")

    def test_root_tree_written_and_read_back(self) -> None:
        """Tracks and truth records survive the flat ROOT ntuple layout."""
        tracks = tuple(signal_tracks())
        events = [
            Event(1, 2, 100, tracks, tuple(gen_from_tracks(list(tracks)))),
            Event(1, 2, 101, tracks[:2], ()),
        ]
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "sample.root"
            write_events_root(path, events)
            loaded = load_events(path)
            first_only = load_events(path, max_events=1)

        self.assertEqual(len(loaded), 2)
        self.assertEqual(len(first_only), 1)
        evt = loaded[0]
        self.assertEqual((evt.run, evt.lumi, evt.event), (1, 2, 100))
        self.assertEqual(len(evt.tracks), 5)
        self.assertEqual(evt.tracks[3].index, 3)
        self.assertEqual(evt.tracks[3].charge, -1)
        self.assertEqual(evt.tracks[0].n_stub, 6)
        self.assertAlmostEqual(evt.tracks[2].phi, tracks[2].phi, places=12)
        self.assertEqual([g.pdg_id for g in evt.gen_particles], [531, 333, 333, 321, -321, 321, -321, 211])
        self.assertEqual(evt.gen_particles[4].mother_index, 1)
        self.assertEqual(len(loaded[1].tracks), 2)
        self.assertEqual(loaded[1].gen_particles, ())

    def test_root_reader_reports_missing_tree(self) -> None:
        events = [Event(1, 1, 1, tuple(signal_tracks()))]
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "sample.root"
            write_events_root(path, events, tree_name="ntuple")
            with self.assertRaisesRegex(ValueError, "Tree 'events' not found"):
                load_events(path)
            self.assertEqual(len(load_events(path, tree_name="ntuple")), 1)

    def test_candidate_rows_and_csv_table(self) -> None:
        event = Event(5, 6, 7, tuple(signal_tracks()))
        selection = PhiPhiCombiner().select_event(event)

        rows = candidate_rows(event, selection.bs_candidates, {"isol1": 0.25})

        [row] = rows
        self.assertEqual(row["rank"], 0)
        self.assertEqual(row["track_indices"], "0,1,2,3")
        self.assertAlmostEqual(row["phi1_mass"], 1.019445, places=9)
        self.assertEqual(row["isol1"], 0.25)
        with tempfile.TemporaryDirectory() as tmpdir:
            out = Path(tmpdir) / "candidates.csv"
            write_candidates_table(out, rows)
            df = pd.read_csv(out)
            with self.assertRaises(ValueError):
                write_candidates_table(Path(tmpdir) / "candidates.txt", rows)
        self.assertEqual(len(df), 1)
        self.assertAlmostEqual(df["bs_mass"][0], selection.best.mass, places=6)


if __name__ == "__main__":
    unittest.main()
