"""Named histogram registry backed by `hist` and written with `uproot`.

Histograms are booked once per job and looked up by name while filling, so
the selection code never has to carry histogram handles around.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import hist
import uproot

logger = logging.getLogger("bs2phiphi.Histograms")

# Cut-flow steps recorded in the `evcount` histogram, one bin per step.
CUTFLOW_STEPS: tuple[str, ...] = (
    "total",
    "genFilter",
    "ntrk>=4",
    "nPhi>=1",
    "nPhi>=2",
    "nBs>=1",
)


class HistogramSet:
    """Book, fill, scale and persist a flat set of named histograms."""

    def __init__(self) -> None:
        self._hists: dict[str, hist.Hist] = {}
        self._profiles: set[str] = set()

    def book_1d(self, name: str, title: str, nbins: int, lo: float, hi: float) -> hist.Hist:
        h = hist.Hist(hist.axis.Regular(nbins, lo, hi, name="x"), name=name, label=title)
        return self._add(name, h)

    def book_2d(
        self,
        name: str,
        title: str,
        nxbins: int,
        xlo: float,
        xhi: float,
        nybins: int,
        ylo: float,
        yhi: float,
    ) -> hist.Hist:
        h = hist.Hist(
            hist.axis.Regular(nxbins, xlo, xhi, name="x"),
            hist.axis.Regular(nybins, ylo, yhi, name="y"),
            name=name,
            label=title,
        )
        return self._add(name, h)

    def book_profile(self, name: str, title: str, nbins: int, lo: float, hi: float) -> hist.Hist:
        """Book a profile: the mean of a sampled value per x bin."""
        h = hist.Hist(
            hist.axis.Regular(nbins, lo, hi, name="x"),
            storage=hist.storage.Mean(),
            name=name,
            label=title,
        )
        self._profiles.add(name)
        return self._add(name, h)

    def _add(self, name: str, h: hist.Hist) -> hist.Hist:
        if name in self._hists:
            raise ValueError(f"Histogram '{name}' is already booked.")
        self._hists[name] = h
        return h

    def get(self, name: str) -> hist.Hist:
        try:
            return self._hists[name]
        except KeyError as exc:
            raise KeyError(f"Histogram '{name}' not found; was it booked?") from exc

    def fill(self, name: str, *values: float, weight: float = 1.0) -> None:
        """Fill one entry. Profiles take `(x, y)` and average `y` per x bin."""
        h = self.get(name)
        if name in self._profiles:
            x, y = values
            if weight == 1.0:
                h.fill([x], sample=[y])
            else:
                h.fill([x], sample=[y], weight=[weight])
        else:
            h.fill(*values, weight=weight)

    def scale(self, factor: float) -> None:
        """Scale all counting histograms; profiles hold means and are left alone."""
        for name, h in self._hists.items():
            if name not in self._profiles:
                h *= factor

    def names(self) -> list[str]:
        return list(self._hists)

    def __contains__(self, name: object) -> bool:
        return name in self._hists

    def __iter__(self) -> Iterator[tuple[str, hist.Hist]]:
        return iter(self._hists.items())

    def __len__(self) -> int:
        return len(self._hists)

    def save(self, path: str | Path) -> None:
        """Write all histograms into a new ROOT file."""
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        with uproot.recreate(out) as root_file:
            for name, h in self._hists.items():
                root_file[name] = h
        logger.info("Saved %d histograms to %s", len(self._hists), out)


def book_histograms(hset: HistogramSet, study_gen: bool = False) -> HistogramSet:
    """Book the analysis histograms. Generator-level plots need `study_gen`."""
    n_steps = len(CUTFLOW_STEPS)
    hset.book_1d("evcount", "Selected event count", n_steps, -0.5, n_steps - 0.5)

    # tracks
    hset.book_1d("ntrk", "Number of tracks", 200, -0.5, 199.5)
    hset.book_1d("central", "Number of central tracks (|#eta| < 1.1)", 100, -0.5, 99.5)
    hset.book_1d("fwd", "Number of forward tracks (|#eta| >= 1.1)", 100, -0.5, 99.5)
    hset.book_1d("trkVertexZ", "Track vertex z", 200, -25.0, 25.0)
    hset.book_1d("trkVertexXY", "Track vertex xy", 100, 0.0, 1.0)
    hset.book_1d("trkPt", "Track pt", 200, 0.0, 100.0)
    hset.book_1d("trkChi2", "Track chi2", 200, 0.0, 200.0)

    # track pairs and phi candidates
    hset.book_1d("dzTrackPair", "dz between track pair", 200, 0.0, 2.0)
    hset.book_1d("dzTrackPair2", "dz between track pair (after mass cut)", 200, 0.0, 2.0)
    hset.book_1d("dxyTrackPair", "dxy between track pair", 200, 0.0, 0.5)
    hset.book_1d("dxyTrackPair2", "dxy between track pair (after mass cut)", 200, 0.0, 0.5)
    hset.book_1d("drTrackPair", "dR between track pair", 200, 0.0, 1.0)
    hset.book_1d("phiCandPt", "Phi candidate pt", 200, 0.0, 100.0)
    hset.book_1d("phimass0", "Track pair invariant mass", 200, 0.9, 1.2)
    hset.book_1d("phimass", "Phi candidate mass", 200, 0.9, 1.2)
    hset.book_1d("nPhiCand", "Number of phi candidates", 20, -0.5, 19.5)

    # phi pairs and Bs candidates
    hset.book_1d("dxyPhiPair", "dxy between phi pair", 200, 0.0, 0.5)
    hset.book_1d("dzPhiPair", "dz between phi pair", 200, 0.0, 2.0)
    hset.book_1d("drPhiPair", "dR between phi pair", 200, 0.0, 2.0)
    hset.book_1d("drPhi1TrackPair", "dR between phi1 tracks", 200, 0.0, 1.0)
    hset.book_1d("drPhi2TrackPair", "dR between phi2 tracks", 200, 0.0, 1.0)
    hset.book_1d("dxyPhi1TrackPair", "dxy between phi1 tracks", 200, 0.0, 0.5)
    hset.book_1d("dzPhi1TrackPair", "dz between phi1 tracks", 200, 0.0, 2.0)
    hset.book_1d("dxyPhi2TrackPair", "dxy between phi2 tracks", 200, 0.0, 0.5)
    hset.book_1d("dzPhi2TrackPair", "dz between phi2 tracks", 200, 0.0, 2.0)
    hset.book_1d("bsmass0", "Phi pair invariant mass", 200, 4.5, 6.5)
    hset.book_1d("bsmass", "Bs candidate mass", 200, 4.5, 6.5)
    hset.book_1d("phi1Pt", "Leading phi pt", 200, 0.0, 100.0)
    hset.book_1d("phi2Pt", "Sub-leading phi pt", 200, 0.0, 100.0)
    hset.book_2d("phiPt", "Phi pt: leading vs sub-leading", 100, 0.0, 50.0, 100, 0.0, 50.0)
    hset.book_1d("bsCandList", "Number of Bs candidates", 20, -0.5, 19.5)
    hset.book_1d("anglePlanes", "Angle between phi decay planes", 64, 0.0, 3.2)

    # kaons of the best Bs candidate, ordered by pt
    for i in range(1, 5):
        hset.book_1d(f"trk{i}Pt", f"Kaon {i} pt", 200, 0.0, 50.0)
        hset.book_1d(f"trk{i}Eta", f"Kaon {i} eta", 100, -3.0, 3.0)
        hset.book_1d(f"trk{i}Phi", f"Kaon {i} phi", 64, -3.2, 3.2)
        hset.book_1d(f"trk{i}Chi2", f"Kaon {i} track chi2", 200, 0.0, 200.0)
        hset.book_1d(f"trk{i}Chi2Red", f"Kaon {i} track reduced chi2", 200, 0.0, 50.0)
        hset.book_1d(f"trk{i}nStub", f"Kaon {i} number of stubs", 15, -0.5, 14.5)
        hset.book_1d(f"trk{i}nStubPS", f"Kaon {i} number of PS stubs", 15, -0.5, 14.5)
        hset.book_1d(f"isol{i}", f"Kaon {i} relative isolation", 100, 0.0, 5.0)
    hset.book_1d("drKaonPair", "dR between kaon pairs", 200, 0.0, 2.0)

    if study_gen:
        _book_gen_histograms(hset)
    return hset


def _book_gen_histograms(hset: HistogramSet) -> None:
    for i in range(1, 5):
        hset.book_1d(f"genKPt{i}", f"Gen kaon {i} pt", 200, 0.0, 50.0)
        hset.book_1d(f"genKEta{i}", f"Gen kaon {i} eta", 100, -5.0, 5.0)
        hset.book_1d(f"genKPhi{i}", f"Gen kaon {i} phi", 64, -3.2, 3.2)
        hset.book_1d(f"signalPt{i}", f"Matched signal track {i} pt", 200, 0.0, 50.0)
    hset.book_1d("genKPtCheck", "Gen kaon pt (all)", 200, 0.0, 50.0)
    hset.book_1d("genPhiM", "Gen phi mass from kaon pair", 200, 0.9, 1.2)
    for i in (1, 2):
        hset.book_1d(f"genPhiPt{i}", f"Gen phi {i} pt", 200, 0.0, 100.0)
        hset.book_1d(f"genPhiEta{i}", f"Gen phi {i} eta", 100, -5.0, 5.0)
        hset.book_1d(f"genPhiPhi{i}", f"Gen phi {i} phi", 64, -3.2, 3.2)
    hset.book_1d("genDrKPair", "Gen dR between kaons of a phi", 200, 0.0, 1.0)
    hset.book_1d("genDrPhiPair", "Gen dR between phis", 200, 0.0, 4.0)
    hset.book_1d("genBsPt", "Gen Bs pt", 200, 0.0, 100.0)
    hset.book_1d("genBsEta", "Gen Bs eta", 100, -5.0, 5.0)
    hset.book_1d("genBsPhi", "Gen Bs phi", 64, -3.2, 3.2)

    hset.book_1d("phiVXY", "Gen phi vertex xy", 100, 0.0, 1.0)
    hset.book_1d("phiVZ", "Gen phi vertex z", 200, -25.0, 25.0)
    hset.book_1d("BsVXY", "Gen Bs vertex xy", 100, 0.0, 1.0)
    hset.book_1d("BsVZ", "Gen Bs vertex z", 200, -25.0, 25.0)

    # reco to gen matching
    hset.book_1d("ptDiff", "Relative pt difference of matched kaons", 100, 0.0, 1.0)
    hset.book_1d("nMatched", "Number of gen-matched kaon tracks", 5, -0.5, 4.5)
    hset.book_profile("drVsMatchedTrk", "dR between phis vs matched tracks", 5, -0.5, 4.5)
    hset.book_1d("drPhiGenPhi", "dR between reco and gen phi", 100, 0.0, 0.5)
    for kind in ("K", "phi"):
        hset.book_1d(f"mDr_{kind}", f"Matched {kind} dR", 100, 0.0, 0.1)
        hset.book_1d(f"mDpt_{kind}", f"Matched {kind} relative pt difference", 100, -0.5, 0.5)
        hset.book_1d(f"mDphi_{kind}", f"Matched {kind} dphi", 100, -0.1, 0.1)
        hset.book_1d(f"mDeta_{kind}", f"Matched {kind} deta", 100, -0.1, 0.1)

    # signal track properties
    hset.book_1d("signalDr", "dR between matched tracks of a phi", 200, 0.0, 1.0)
    hset.book_1d("signalPhiM", "Mass of matched track pair", 200, 0.9, 1.2)
    hset.book_1d("signalNtrk", "Number of matched signal tracks", 5, -0.5, 4.5)
    hset.book_1d("signalCentral", "Matched signal tracks, central", 5, -0.5, 4.5)
    hset.book_1d("signalFwd", "Matched signal tracks, forward", 5, -0.5, 4.5)
    hset.book_1d("signal_VZ", "Matched signal track vertex z", 200, -25.0, 25.0)
    hset.book_1d("signal_VXY", "Matched signal track vertex xy", 100, 0.0, 1.0)
    hset.book_1d("signal_chi", "Matched signal track reduced chi2", 200, 0.0, 50.0)
    hset.book_1d("signalDPT", "Matched signal track relative pt difference", 100, 0.0, 1.0)
    for prefix in ("signal", "all"):
        hset.book_1d(f"{prefix}DXYPV", f"{prefix}: track dxy wrt gen vertex", 100, 0.0, 1.0)
        hset.book_1d(f"{prefix}DZPV", f"{prefix}: track dz wrt gen vertex", 200, 0.0, 2.0)
        hset.book_2d(f"{prefix}2D", f"{prefix}: track pair dz vs dxy", 100, 0.0, 0.5, 100, 0.0, 2.0)
        hset.book_1d(f"{prefix}DXY", f"{prefix}: track pair dxy", 100, 0.0, 0.5)
        hset.book_1d(f"{prefix}DZ", f"{prefix}: track pair dz", 200, 0.0, 2.0)
