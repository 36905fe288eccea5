"""Event-loop driver for the Bs -> phi phi -> 4K analysis.

`BsAnalysis` ties the job configuration, the candidate combiner and the
histogram set together:

1. `begin_job` books histograms and attaches the job log file.
2. `event_loop` fills track, generator, candidate and kaon distributions.
3. `end_job` scales and saves histograms, writes the candidate table and
   logs the cut-flow summary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Sequence

from tabulate import tabulate

from .combiner import PhiPhiCombiner, Selection, cutflow_bin
from .config import JobConfig, format_job
from .histograms import CUTFLOW_STEPS, HistogramSet, book_histograms
from .io import candidate_rows, iter_events, write_candidates_table
from .models import BsCandidate, Event, GenParticle, LorentzVector, Track, iter_pairs
from .physics import (
    binomial_error,
    decay_plane_angle,
    delta_pos,
    delta_phi,
    delta_r,
    gen_delta_r,
    gen_invariant_mass,
    isolation,
    phi_lorentz,
    poisson_error,
    track_delta_r,
    track_to_lorentz,
)
from .pid import make_bs, make_kaon, make_phi

logger = logging.getLogger("bs2phiphi.Analysis")

CENTRAL_ETA_MAX = 1.1
GEN_ETA_MAX = 2.5
MATCH_MAX_DR = 0.05
MATCH_MAX_REL_DPT = 0.3


@dataclass(frozen=True)
class GenDecay:
    """Generator-level Bs -> phi phi -> 4K chain found in one event."""

    bs: GenParticle | None
    phis: tuple[GenParticle, ...]
    kaons: tuple[GenParticle, ...]

    def kaons_of(self, phi: GenParticle) -> tuple[GenParticle, ...]:
        return tuple(k for k in self.kaons if k.mother_index == phi.index)


def read_gen_particles(gen_particles: Sequence[GenParticle]) -> GenDecay:
    """Collect the kaons from phi from Bs, and the phis from Bs."""
    kaon, phi, bs = make_kaon(), make_phi(), make_bs()
    by_index = {gp.index: gp for gp in gen_particles}

    def mother(gp: GenParticle) -> GenParticle | None:
        return by_index.get(gp.mother_index) if gp.mother_index >= 0 else None

    phis: list[GenParticle] = []
    for gp in gen_particles:
        m = mother(gp)
        if phi.matches(gp.pdg_id) and m is not None and bs.matches(m.pdg_id):
            phis.append(gp)
    phi_indices = {p.index for p in phis}
    kaons = [
        gp for gp in gen_particles
        if kaon.matches(gp.pdg_id) and gp.mother_index in phi_indices
    ]
    bs_particle = by_index.get(phis[0].mother_index) if phis else None
    return GenDecay(bs=bs_particle, phis=tuple(phis), kaons=tuple(kaons))


def gen_filter(decay: GenDecay, min_pt: float = 2.0, max_abs_eta: float = GEN_ETA_MAX) -> bool:
    """Require all four signal kaons inside the tracker acceptance."""
    if len(decay.kaons) != 4:
        return False
    return all(k.pt > min_pt and abs(k.eta) < max_abs_eta for k in decay.kaons)


class BsAnalysis:
    """Run the phi/Bs selection over the events of one job."""

    def __init__(self, job: JobConfig, collect_candidates: bool = False) -> None:
        self.job = job
        self.collect_candidates = collect_candidates or bool(job.table_file)
        self.histograms = HistogramSet()
        self.combiner = PhiPhiCombiner(
            apply_track_quality=job.apply_track_quality,
            histograms=self.histograms,
        )
        self.track_cuts = job.track_cuts
        self.phi_cuts = job.phi_cuts
        self.bs_cuts = job.bs_cuts
        self.candidates: list[dict[str, Any]] = []
        self.n_events = 0
        self._log_handler: logging.Handler | None = None
        self._raw_cutflow: dict[str, float] | None = None

    @property
    def study_gen(self) -> bool:
        return self.job.study_gen

    def begin_job(self) -> None:
        book_histograms(self.histograms, study_gen=self.study_gen)
        if self.job.log_file:
            self._log_handler = logging.FileHandler(self.job.log_file, mode="w", encoding="utf-8")
            self._log_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
            pkg_logger = logging.getLogger("bs2phiphi")
            if pkg_logger.level == logging.NOTSET:
                pkg_logger.setLevel(logging.DEBUG if self.job.verbosity > 0 else logging.INFO)
            pkg_logger.addHandler(self._log_handler)
        logger.info("Job configuration:\n%s", format_job(self.job))

    def run(self) -> "BsAnalysis":
        self.begin_job()
        try:
            self.event_loop(self.iter_input_events())
        finally:
            self.end_job()
        return self

    def iter_input_events(self) -> Iterator[Event]:
        """Chain the events of all input files, honouring `maxEvent`."""
        if not self.job.input_files:
            raise ValueError("Job defines no inputFile.")
        remaining = self.job.max_event
        for path in self.job.input_files:
            logger.info("Reading %s", path)
            for event in iter_events(path, tree_name=self.job.tree_name, max_events=remaining):
                yield event
            if remaining >= 0:
                remaining = max(self.job.max_event - self.n_events, 0)
                if remaining == 0:
                    return

    def event_loop(self, events: Iterable[Event]) -> None:
        for event in events:
            if 0 <= self.job.max_event <= self.n_events:
                break
            self.process_event(event)
            if self.n_events % 1000 == 0:
                logger.info("Processed %d events", self.n_events)

    def process_event(self, event: Event) -> Selection | None:
        """Process one event. Returns None if the generator filter rejects it."""
        self.n_events += 1
        self._count("total")
        if self.job.verbosity > 1:
            logger.debug("run %d lumi %d event %d\n%s", event.run, event.lumi, event.event,
                         format_tracks(event.tracks))
        self.fill_track_info(event.tracks)

        decay: GenDecay | None = None
        if self.study_gen:
            decay = read_gen_particles(event.gen_particles)
            if self.job.dump_gen_info:
                logger.debug("Generator particles:\n%s", format_gen_particles(event.gen_particles))
            if self.job.is_signal and not gen_filter(decay, self.job.gen_pt_min):
                return None
            self.plot_gen(decay)
            self.plot_gen_vertex(decay)
            self.plot_signal_properties(event.tracks, decay)
        self._count("genFilter")

        selection = self.combiner.select_event(event, self.track_cuts, self.phi_cuts, self.bs_cuts)
        for step in selection.steps:
            self._count(step)
        best = selection.best
        if best is None:
            return selection

        kaons = kaon_tracks(event.tracks, best)
        kaon_lvs = [track_to_lorentz(t, self.combiner.kaon_mass) for t in kaons]
        self.fill_kaon_info(kaon_lvs)
        self.fill_kaon_track_info(kaons)
        isol = self.compute_isolation(event.tracks, best)
        for lv_i, lv_j in iter_pairs(kaon_lvs):
            self.histograms.fill("drKaonPair", lv_i.delta_r(lv_j))
        self.histograms.fill("anglePlanes", decay_plane_angle(*kaon_lvs))

        extras: dict[str, Any] = {f"isol{i}": v for i, v in enumerate(isol, start=1)}
        if decay is not None and decay.kaons:
            n_matched = self.do_trk_gen_match(kaon_lvs, decay)
            self.histograms.fill("drVsMatchedTrk", n_matched, best.dr)
            self.check_phi_kaon_bs(best, kaon_lvs, decay)
            extras["n_gen_matched"] = n_matched
        if self.collect_candidates:
            self.candidates.extend(candidate_rows(event, selection.bs_candidates, extras))
        return selection

    def fill_track_info(self, tracks: Sequence[Track]) -> None:
        hs = self.histograms
        hs.fill("ntrk", len(tracks))
        n_central = sum(1 for t in tracks if abs(t.eta) < CENTRAL_ETA_MAX)
        hs.fill("central", n_central)
        hs.fill("fwd", len(tracks) - n_central)
        for t in tracks:
            hs.fill("trkPt", t.pt)
            hs.fill("trkVertexZ", t.vertex_z)
            hs.fill("trkVertexXY", t.vertex_xy)
            hs.fill("trkChi2", t.chi2)

    def fill_kaon_info(self, kaon_lvs: Sequence[LorentzVector]) -> None:
        """Kaon kinematics of the best candidate, ordered by decreasing pt."""
        for i, lv in enumerate(sorted(kaon_lvs, key=lambda v: v.pt, reverse=True), start=1):
            self.histograms.fill(f"trk{i}Pt", lv.pt)
            self.histograms.fill(f"trk{i}Eta", lv.eta)
            self.histograms.fill(f"trk{i}Phi", lv.phi)

    def fill_kaon_track_info(self, kaons: Sequence[Track]) -> None:
        for i, t in enumerate(sorted(kaons, key=lambda t: t.pt, reverse=True), start=1):
            self.histograms.fill(f"trk{i}Chi2", t.chi2)
            self.histograms.fill(f"trk{i}Chi2Red", t.chi2_red)
            self.histograms.fill(f"trk{i}nStub", t.n_stub)
            self.histograms.fill(f"trk{i}nStubPS", t.n_stub_ps)

    def compute_isolation(self, tracks: Sequence[Track], bs: BsCandidate) -> list[float]:
        """Relative isolation of the four kaons, ordered by decreasing kaon pt.

        The other three kaons of the candidate are excluded from each sum.
        """
        cuts = self.bs_cuts
        cone = cuts.isolation_cone if cuts.isolation_cone is not None else 0.3
        kaons = sorted(kaon_tracks(tracks, bs), key=lambda t: t.pt, reverse=True)
        values: list[float] = []
        for i, kaon in enumerate(kaons, start=1):
            value = isolation(
                kaon,
                tracks,
                excluded=bs.track_indices,
                cone=cone,
                max_dz=cuts.isolation_max_dz,
                min_pt=cuts.isolation_min_track_pt,
            )
            self.histograms.fill(f"isol{i}", value)
            values.append(value)
        return values

    def plot_gen(self, decay: GenDecay) -> None:
        hs = self.histograms
        kaons = sorted(decay.kaons, key=lambda k: k.pt, reverse=True)
        for k in kaons:
            hs.fill("genKPtCheck", k.pt)
        for i, k in enumerate(kaons[:4], start=1):
            hs.fill(f"genKPt{i}", k.pt)
            hs.fill(f"genKEta{i}", k.eta)
            hs.fill(f"genKPhi{i}", k.phi)

        for phi in decay.phis:
            pair = decay.kaons_of(phi)
            if len(pair) == 2:
                hs.fill("genPhiM", gen_invariant_mass(*pair))
                hs.fill("genDrKPair", gen_delta_r(*pair))
        phis = sorted(decay.phis, key=lambda p: p.pt, reverse=True)
        for i, phi in enumerate(phis[:2], start=1):
            hs.fill(f"genPhiPt{i}", phi.pt)
            hs.fill(f"genPhiEta{i}", phi.eta)
            hs.fill(f"genPhiPhi{i}", phi.phi)
        if len(phis) >= 2:
            hs.fill("genDrPhiPair", gen_delta_r(phis[0], phis[1]))
        if decay.bs is not None:
            hs.fill("genBsPt", decay.bs.pt)
            hs.fill("genBsEta", decay.bs.eta)
            hs.fill("genBsPhi", decay.bs.phi)

    def plot_gen_vertex(self, decay: GenDecay) -> None:
        """Production vertices of the generated phis (Bs decay point) and Bs."""
        for phi in decay.phis:
            self.histograms.fill("phiVXY", _xy(phi.vx, phi.vy))
            self.histograms.fill("phiVZ", phi.vz)
        if decay.bs is not None:
            self.histograms.fill("BsVXY", _xy(decay.bs.vx, decay.bs.vy))
            self.histograms.fill("BsVZ", decay.bs.vz)

    def plot_signal_properties(self, tracks: Sequence[Track], decay: GenDecay) -> None:
        """Properties of the tracks matched to the generated signal kaons."""
        hs = self.histograms
        matched: dict[int, Track] = {}
        for k in decay.kaons:
            trk = closest_track(k, tracks)
            if trk is not None and trk.index not in {t.index for t in matched.values()}:
                matched[k.index] = trk

        hs.fill("signalNtrk", len(matched))
        n_central = sum(1 for t in matched.values() if abs(t.eta) < CENTRAL_ETA_MAX)
        hs.fill("signalCentral", n_central)
        hs.fill("signalFwd", len(matched) - n_central)
        by_pt = sorted(matched.values(), key=lambda t: t.pt, reverse=True)
        for i, t in enumerate(by_pt[:4], start=1):
            hs.fill(f"signalPt{i}", t.pt)

        gen_by_index = {k.index: k for k in decay.kaons}
        for k_index, t in matched.items():
            k = gen_by_index[k_index]
            hs.fill("signal_VZ", t.vertex_z)
            hs.fill("signal_VXY", t.vertex_xy)
            hs.fill("signal_chi", t.chi2_red)
            hs.fill("signalDPT", abs(t.pt - k.pt) / k.pt if k.pt > 0 else 0.0)
            hs.fill("signalDXYPV", _xy(t.vertex_x - k.vx, t.vertex_y - k.vy))
            hs.fill("signalDZPV", abs(t.vertex_z - k.vz))

        for phi in decay.phis:
            pair = [matched[k.index] for k in decay.kaons_of(phi) if k.index in matched]
            if len(pair) != 2:
                continue
            dxy, dz = delta_pos(pair[0], pair[1])
            hs.fill("signalDr", track_delta_r(pair[0], pair[1]))
            hs.fill("signalPhiM", phi_lorentz(pair[0], pair[1], self.combiner.kaon_mass).mass)
            hs.fill("signalDXY", dxy)
            hs.fill("signalDZ", dz)
            hs.fill("signal2D", dxy, dz)

        if decay.phis:
            ref = decay.phis[0]
            for t in tracks:
                hs.fill("allDXYPV", _xy(t.vertex_x - ref.vx, t.vertex_y - ref.vy))
                hs.fill("allDZPV", abs(t.vertex_z - ref.vz))
        for trk_i, trk_j in iter_pairs(tracks):
            dxy, dz = delta_pos(trk_i, trk_j)
            hs.fill("allDXY", dxy)
            hs.fill("allDZ", dz)
            hs.fill("all2D", dxy, dz)

    def do_trk_gen_match(self, kaon_lvs: Sequence[LorentzVector], decay: GenDecay) -> int:
        """Count the reconstructed kaons matched to a generated signal kaon."""
        n_matched = 0
        for lv in kaon_lvs:
            matched, pt_diff = is_gen_kaon_matched(lv, decay.kaons)
            if matched:
                n_matched += 1
                self.histograms.fill("ptDiff", pt_diff)
        self.histograms.fill("nMatched", n_matched)
        return n_matched

    def check_phi_kaon_bs(
        self,
        bs: BsCandidate,
        kaon_lvs: Sequence[LorentzVector],
        decay: GenDecay,
    ) -> None:
        """Resolution of reconstructed kaons and phis wrt the closest generated ones."""
        for lv in kaon_lvs:
            gp = closest_gen(lv, decay.kaons)
            if gp is not None:
                self._fill_resolution("K", lv, gp)
        for phi in (bs.phi1, bs.phi2):
            gp = closest_gen(phi.p4, decay.phis)
            if gp is not None:
                self.histograms.fill("drPhiGenPhi", delta_r(phi.p4.eta, phi.p4.phi, gp.eta, gp.phi))
                self._fill_resolution("phi", phi.p4, gp)

    def _fill_resolution(self, kind: str, lv: LorentzVector, gp: GenParticle) -> None:
        hs = self.histograms
        hs.fill(f"mDr_{kind}", delta_r(lv.eta, lv.phi, gp.eta, gp.phi))
        hs.fill(f"mDpt_{kind}", (lv.pt - gp.pt) / gp.pt if gp.pt > 0 else 0.0)
        hs.fill(f"mDphi_{kind}", delta_phi(lv.phi, gp.phi))
        hs.fill(f"mDeta_{kind}", lv.eta - gp.eta)

    def end_job(self) -> None:
        try:
            self._raw_cutflow = self.cutflow()
            if self.job.scale_factor != 1.0:
                self.histograms.scale(self.job.scale_factor)
            if self.job.hist_file and self.histograms.names():
                self.histograms.save(self.job.hist_file)
            if self.job.table_file:
                write_candidates_table(self.job.table_file, self.candidates)
            logger.info("Results:\n%s", self.format_results())
        finally:
            if self._log_handler is not None:
                logging.getLogger("bs2phiphi").removeHandler(self._log_handler)
                self._log_handler.close()
                self._log_handler = None

    def cutflow(self) -> dict[str, float]:
        """Return unweighted `{step: count}` from the `evcount` histogram.

        After `end_job` the counts taken before `scaleFactor` was applied are
        returned, so efficiencies and their errors stay event counts.
        """
        if self._raw_cutflow is not None:
            return dict(self._raw_cutflow)
        if "evcount" not in self.histograms:
            return {}
        values = self.histograms.get("evcount").values()
        return {step: float(values[cutflow_bin(step)]) for step in CUTFLOW_STEPS}

    def format_results(self) -> str:
        """Cut-flow table with efficiencies wrt the first step and the previous one."""
        counts = self.cutflow()
        total = counts.get("total", 0.0)
        rows = []
        previous = total
        for step, n in counts.items():
            eff = n / total if total > 0 else 0.0
            rel = n / previous if previous > 0 else 0.0
            rows.append(
                (step, n, eff, poisson_error(n, total), binomial_error(n, total), rel)
            )
            previous = n
        return tabulate(
            rows,
            headers=["step", "events", "eff", "poisson err", "binomial err", "rel eff"],
            floatfmt=("g", ".0f", ".4f", ".4f", ".4f", ".4f"),
        )

    def _count(self, step: str) -> None:
        self.histograms.fill("evcount", cutflow_bin(step))


def kaon_tracks(tracks: Sequence[Track], bs: BsCandidate) -> list[Track]:
    """Return the four tracks of a Bs candidate in phi1, phi2 order."""
    by_index = {t.index: t for t in tracks}
    return [by_index[i] for i in bs.track_indices]


def closest_gen(lv: LorentzVector, particles: Sequence[GenParticle]) -> GenParticle | None:
    """Generator particle closest in dR to `lv`."""
    return min(
        particles,
        key=lambda gp: delta_r(lv.eta, lv.phi, gp.eta, gp.phi),
        default=None,
    )


def closest_track(gp: GenParticle, tracks: Sequence[Track], max_dr: float = MATCH_MAX_DR) -> Track | None:
    """Track closest in dR to a generator particle, within `max_dr`."""
    best: Track | None = None
    best_dr = max_dr
    for t in tracks:
        dr = delta_r(t.eta, t.phi, gp.eta, gp.phi)
        if dr < best_dr:
            best, best_dr = t, dr
    return best


def is_gen_kaon_matched(
    lv: LorentzVector,
    gen_kaons: Sequence[GenParticle],
    max_dr: float = MATCH_MAX_DR,
    max_rel_dpt: float = MATCH_MAX_REL_DPT,
) -> tuple[bool, float]:
    """Match a reconstructed kaon to the closest generated kaon.

    Returns `(matched, relative pt difference)`; the pt difference is 0 when
    no generated kaon lies within `max_dr`.
    """
    gp = closest_gen(lv, gen_kaons)
    if gp is None or delta_r(lv.eta, lv.phi, gp.eta, gp.phi) >= max_dr or gp.pt <= 0:
        return False, 0.0
    pt_diff = abs(lv.pt - gp.pt) / gp.pt
    return pt_diff < max_rel_dpt, pt_diff


def format_tracks(tracks: Sequence[Track]) -> str:
    rows = [
        (t.index, t.pt, t.eta, t.phi, t.charge, t.vertex_z, t.chi2_red, t.n_stub, t.n_stub_ps)
        for t in tracks
    ]
    return tabulate(
        rows,
        headers=["indx", "pt", "eta", "phi", "q", "vz", "chi2red", "nstub", "nstubPS"],
        floatfmt=".3f",
    )


def format_gen_particles(particles: Sequence[GenParticle]) -> str:
    rows = [
        (gp.index, gp.pdg_id, gp.status, gp.mother_index, gp.pt, gp.eta, gp.phi, gp.energy, gp.vz)
        for gp in particles
    ]
    return tabulate(
        rows,
        headers=["indx", "pdgId", "status", "mother", "pt", "eta", "phi", "energy", "vz"],
        floatfmt=".3f",
    )


def _xy(x: float, y: float) -> float:
    return (x * x + y * y) ** 0.5
