"""Candidate combination engine: track pairs into phi, phi pairs into Bs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from .histograms import CUTFLOW_STEPS, HistogramSet
from .models import (
    BsCandidate,
    BsCuts,
    Event,
    PhiCandidate,
    PhiCuts,
    Track,
    TrackCuts,
    iter_pairs,
)
from .physics import average_vertex, delta_pos, phi_lorentz, track_delta_r
from .pid import make_kaon, make_phi


@dataclass(frozen=True)
class Selection:
    """Outcome of the candidate selection for one event."""

    tracks: tuple[Track, ...]
    phi_candidates: tuple[PhiCandidate, ...]
    bs_candidates: tuple[BsCandidate, ...]
    steps: tuple[str, ...]

    @property
    def selected(self) -> bool:
        return bool(self.bs_candidates)

    @property
    def best(self) -> BsCandidate | None:
        return self.bs_candidates[0] if self.bs_candidates else None


@dataclass
class PhiPhiCombiner:
    """Build and filter phi and Bs candidates from event tracks.

    When `histograms` is set, the monitoring distributions are filled at each
    cut stage while candidates are built.
    """

    kaon_mass: float = make_kaon().mass
    phi_mass: float = make_phi().mass
    apply_track_quality: bool = True
    histograms: HistogramSet | None = field(default=None, repr=False)

    def preselect_tracks(
        self,
        tracks: Sequence[Track],
        cuts: TrackCuts | None = None,
    ) -> list[Track]:
        """Apply track-level preselection before combinatorics."""
        if cuts is None:
            return list(tracks)
        out: list[Track] = []
        for t in tracks:
            if cuts.min_pt is not None and t.pt < cuts.min_pt:
                continue
            if cuts.max_abs_eta is not None and abs(t.eta) > cuts.max_abs_eta:
                continue
            if self.apply_track_quality:
                if cuts.max_chi2_red is not None and t.chi2_red > cuts.max_chi2_red:
                    continue
                if cuts.min_n_stub is not None and t.n_stub < cuts.min_n_stub:
                    continue
                if cuts.min_n_stub_ps is not None and t.n_stub_ps < cuts.min_n_stub_ps:
                    continue
            out.append(t)
        return out

    def find_phi_candidates(
        self,
        tracks: Sequence[Track],
        track_cuts: TrackCuts | None = None,
        phi_cuts: PhiCuts | None = None,
    ) -> list[PhiCandidate]:
        """Pair preselected tracks into phi candidates, closest to the pole mass first.

        Cut order per pair: charge, dz, dxy, dR, mass window, pt.
        """
        cuts = phi_cuts or PhiCuts()
        selected = self.preselect_tracks(tracks, track_cuts)
        phis: list[PhiCandidate] = []
        for trk_i, trk_j in iter_pairs(selected):
            if cuts.opposite_charge and trk_i.charge * trk_j.charge >= 0:
                continue

            dxy, dz = delta_pos(trk_i, trk_j)
            self._fill("dzTrackPair", dz)
            if cuts.max_dz is not None and dz > cuts.max_dz:
                continue
            self._fill("dxyTrackPair", dxy)
            if cuts.max_dxy is not None and dxy > cuts.max_dxy:
                continue

            dr = track_delta_r(trk_i, trk_j)
            self._fill("drTrackPair", dr)
            if cuts.max_dr is not None and dr > cuts.max_dr:
                continue

            p4 = phi_lorentz(trk_i, trk_j, self.kaon_mass)
            mass = p4.mass
            self._fill("phimass0", mass)
            dmass = abs(mass - self.phi_mass)
            if cuts.mass_window is not None and dmass > cuts.mass_window:
                continue
            self._fill("dzTrackPair2", dz)
            self._fill("dxyTrackPair2", dxy)

            self._fill("phiCandPt", p4.pt)
            if cuts.min_pt is not None and p4.pt < cuts.min_pt:
                continue
            self._fill("phimass", mass)

            phis.append(
                PhiCandidate(
                    dmass=dmass,
                    index1=trk_i.index,
                    index2=trk_j.index,
                    dxy=dxy,
                    dz=dz,
                    dr=dr,
                    p4=p4,
                    vertex=average_vertex(trk_i, trk_j),
                )
            )
        phis.sort(key=lambda c: c.dmass)
        return phis

    def find_bs_candidates(
        self,
        phis: Sequence[PhiCandidate],
        bs_cuts: BsCuts | None = None,
    ) -> list[BsCandidate]:
        """Pair phi candidates without shared tracks into Bs candidates.

        `phi1` of each candidate is the phi with the larger pt. Candidates are
        returned ranked by the summed phi mass offsets.
        """
        cuts = bs_cuts or BsCuts()
        out: list[BsCandidate] = []
        for phi_i, phi_j in iter_pairs(phis):
            if phi_i.shares_track(phi_j):
                continue

            dxy, dz = delta_pos(phi_i, phi_j)
            self._fill("dzPhiPair", dz)
            if cuts.max_dz is not None and dz > cuts.max_dz:
                continue
            self._fill("dxyPhiPair", dxy)
            if cuts.max_dxy is not None and dxy > cuts.max_dxy:
                continue

            dr = phi_i.p4.delta_r(phi_j.p4)
            self._fill("drPhiPair", dr)
            if cuts.max_dr is not None and dr > cuts.max_dr:
                continue

            mass = (phi_i.p4 + phi_j.p4).mass
            self._fill("bsmass0", mass)
            if cuts.min_mass is not None and mass < cuts.min_mass:
                continue
            if cuts.max_mass is not None and mass > cuts.max_mass:
                continue

            phi1, phi2 = (phi_i, phi_j) if phi_i.p4.pt >= phi_j.p4.pt else (phi_j, phi_i)
            self._fill("bsmass", mass)
            self._fill("phi1Pt", phi1.p4.pt)
            self._fill("phi2Pt", phi2.p4.pt)
            self._fill("phiPt", phi1.p4.pt, phi2.p4.pt)
            self._fill("drPhi1TrackPair", phi1.dr)
            self._fill("drPhi2TrackPair", phi2.dr)
            self._fill("dxyPhi1TrackPair", phi1.dxy)
            self._fill("dzPhi1TrackPair", phi1.dz)
            self._fill("dxyPhi2TrackPair", phi2.dxy)
            self._fill("dzPhi2TrackPair", phi2.dz)
            out.append(BsCandidate(phi1=phi1, phi2=phi2, dxy=dxy, dz=dz, dr=dr))
        out.sort(key=lambda c: c.dmass)
        return out

    def select_event(
        self,
        event: Event,
        track_cuts: TrackCuts | None = None,
        phi_cuts: PhiCuts | None = None,
        bs_cuts: BsCuts | None = None,
    ) -> Selection:
        """Run the full phi/Bs selection on one event.

        `steps` lists the cut-flow steps (after `total`) that the event
        reached.
        """
        steps: list[str] = []
        tracks = event.tracks
        if len(tracks) < 4:
            return Selection(tracks, (), (), tuple(steps))
        steps.append("ntrk>=4")

        phis = self.find_phi_candidates(tracks, track_cuts, phi_cuts)
        self._fill("nPhiCand", len(phis))
        if phis:
            steps.append("nPhi>=1")
        if len(phis) < 2:
            return Selection(tracks, tuple(phis), (), tuple(steps))
        steps.append("nPhi>=2")

        bs_list = self.find_bs_candidates(phis, bs_cuts)
        self._fill("bsCandList", len(bs_list))
        if bs_list:
            steps.append("nBs>=1")
        return Selection(tracks, tuple(phis), tuple(bs_list), tuple(steps))

    def select_events(
        self,
        events: Sequence[Event],
        track_cuts: TrackCuts | None = None,
        phi_cuts: PhiCuts | None = None,
        bs_cuts: BsCuts | None = None,
    ) -> list[Selection]:
        """Run `select_event` on a list of events."""
        return [self.select_event(e, track_cuts, phi_cuts, bs_cuts) for e in events]

    def _fill(self, name: str, *values: float) -> None:
        if self.histograms is not None:
            self.histograms.fill(name, *values)


def cutflow_bin(step: str) -> int:
    """Return the `evcount` bin center for a cut-flow step name."""
    try:
        return CUTFLOW_STEPS.index(step)
    except ValueError as exc:
        raise ValueError(f"Unknown cut-flow step '{step}'.") from exc
