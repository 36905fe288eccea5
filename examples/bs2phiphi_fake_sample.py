"""Synthetic Bs -> phi(K K) phi(K K) sample generator.

This script does two steps:
1. Generate a fake event sample with configurable signal fraction, each event
   carrying tracker tracks and (for signal) the generator truth chain.
2. Write the events into a flat ROOT tree readable by the `bs2phiphi` job.

Run from repository root:
    PYTHONPATH=src python3 examples/bs2phiphi_fake_sample.py
    PYTHONPATH=src python3 -m bs2phiphi.cli examples/bs2phiphi.job
"""

from __future__ import annotations

import argparse
import math
from dataclasses import replace
from random import Random

from bs2phiphi import KAON_MASS, PHI_POLE_MASS, Event, GenParticle, LorentzVector, Track, make_bs
from bs2phiphi.io import write_events_root

MASS_BS = make_bs().mass
WIDTH_PHI = 0.00425
BS_DECAY_LENGTH_CM = 0.05

P4 = tuple[float, float, float, float]


def parse_args() -> argparse.Namespace:
    """Parse CLI options for fake-data generation."""
    parser = argparse.ArgumentParser(description="Generate a synthetic Bs -> phi phi sample.")
    parser.add_argument("--n-events", type=int, default=1000, help="Number of events to generate.")
    parser.add_argument(
        "--signal-fraction",
        type=float,
        default=0.5,
        help="Fraction of events containing one truth Bs decay.",
    )
    parser.add_argument("--n-background", type=int, default=30, help="Mean number of pileup tracks.")
    parser.add_argument("--seed", type=int, default=12345, help="RNG seed for reproducibility.")
    parser.add_argument("--out", default="examples/bs2phiphi_sample.root", help="Output ROOT file.")
    return parser.parse_args()


def random_unit_vector(rng: Random) -> tuple[float, float, float]:
    """Sample an isotropic 3D unit vector."""
    cos_theta = rng.uniform(-1.0, 1.0)
    sin_theta = math.sqrt(max(0.0, 1.0 - cos_theta * cos_theta))
    phi = rng.uniform(0.0, 2.0 * math.pi)
    return sin_theta * math.cos(phi), sin_theta * math.sin(phi), cos_theta


def two_body_momentum(parent_mass: float, m1: float, m2: float) -> float:
    """Return daughter momentum magnitude in parent rest frame."""
    term = (parent_mass * parent_mass - (m1 + m2) * (m1 + m2)) * (
        parent_mass * parent_mass - (m1 - m2) * (m1 - m2)
    )
    if term <= 0.0:
        return 0.0
    return math.sqrt(term) / (2.0 * parent_mass)


def lorentz_boost(p4: P4, beta: tuple[float, float, float]) -> P4:
    """Boost an `(E, px, py, pz)` four-vector by beta vector."""
    e, px, py, pz = p4
    bx, by, bz = beta
    b2 = bx * bx + by * by + bz * bz
    if b2 <= 0.0:
        return p4
    gamma = 1.0 / math.sqrt(max(1e-16, 1.0 - b2))
    bp = bx * px + by * py + bz * pz
    gamma2 = (gamma - 1.0) / b2
    return (
        gamma * (e + bp),
        px + gamma2 * bp * bx + gamma * e * bx,
        py + gamma2 * bp * by + gamma * e * by,
        pz + gamma2 * bp * bz + gamma * e * bz,
    )


def decay_two_body(parent: P4, parent_mass: float, m1: float, m2: float, rng: Random) -> tuple[P4, P4]:
    """Generate a two-body decay and return daughter four-vectors in lab frame."""
    p = two_body_momentum(parent_mass, m1, m2)
    u = random_unit_vector(rng)
    d1 = (math.sqrt(m1 * m1 + p * p), p * u[0], p * u[1], p * u[2])
    d2 = (math.sqrt(m2 * m2 + p * p), -p * u[0], -p * u[1], -p * u[2])
    e = parent[0]
    beta = (parent[1] / e, parent[2] / e, parent[3] / e)
    return lorentz_boost(d1, beta), lorentz_boost(d2, beta)


def sample_phi_mass(rng: Random) -> float:
    """Sample a truncated Breit-Wigner phi mass."""
    while True:
        m = PHI_POLE_MASS + 0.5 * WIDTH_PHI * math.tan(math.pi * (rng.random() - 0.5))
        if 2.0 * KAON_MASS + 0.005 <= m <= 1.06:
            return m


def _lv(p4: P4) -> LorentzVector:
    e, px, py, pz = p4
    return LorentzVector(px, py, pz, e)


def make_track(index: int, lv: LorentzVector, charge: int, vertex: tuple[float, float, float],
               rng: Random, genuine: bool) -> Track:
    """Smear a charged particle into a tracker track."""
    n_stub = rng.randint(4, 6)
    chi2 = rng.expovariate(1.0 / (2.0 * n_stub - 4.0))
    return Track(
        index=index,
        pt=lv.pt * rng.gauss(1.0, 0.01),
        eta=lv.eta + rng.gauss(0.0, 0.002),
        phi=lv.phi + rng.gauss(0.0, 0.002),
        charge=charge,
        curvature=charge / max(lv.pt, 1e-3),
        chi2=chi2,
        chi2_red=chi2 / (2.0 * n_stub - 4.0),
        vertex_x=vertex[0] + rng.gauss(0.0, 0.002),
        vertex_y=vertex[1] + rng.gauss(0.0, 0.002),
        vertex_z=vertex[2] + rng.gauss(0.0, 0.05),
        n_stub=n_stub,
        n_stub_ps=rng.randint(0, min(3, n_stub)),
        is_genuine=genuine,
    )


def _gen(index: int, pdg_id: int, lv: LorentzVector, vertex: tuple[float, float, float],
         mother: int, charge: int = 0, status: int = 1) -> GenParticle:
    return GenParticle(
        index=index,
        pdg_id=pdg_id,
        pt=lv.pt,
        eta=lv.eta,
        phi=lv.phi,
        energy=lv.e,
        status=status,
        charge=charge,
        vx=vertex[0],
        vy=vertex[1],
        vz=vertex[2],
        mother_index=mother,
    )


def generate_signal(
    pv: tuple[float, float, float], rng: Random
) -> tuple[list[LorentzVector], list[int], tuple[float, float, float], list[GenParticle]]:
    """Generate one truth Bs -> phi phi -> K+ K- K+ K- decay."""
    pt_bs = rng.uniform(5.0, 30.0)
    eta_bs = rng.uniform(-2.0, 2.0)
    phi_bs = rng.uniform(-math.pi, math.pi)
    bs_lv = LorentzVector.from_pt_eta_phi_m(pt_bs, eta_bs, phi_bs, MASS_BS)
    bs = (bs_lv.e, bs_lv.px, bs_lv.py, bs_lv.pz)

    flight = rng.expovariate(1.0 / BS_DECAY_LENGTH_CM) * bs_lv.p / MASS_BS
    sv = (
        pv[0] + flight * bs_lv.px / bs_lv.p,
        pv[1] + flight * bs_lv.py / bs_lv.p,
        pv[2] + flight * bs_lv.pz / bs_lv.p,
    )
    m1, m2 = sample_phi_mass(rng), sample_phi_mass(rng)
    phi1, phi2 = decay_two_body(bs, MASS_BS, m1, m2, rng)

    gen = [_gen(0, 531, bs_lv, pv, mother=-1, status=2)]
    kaons: list[LorentzVector] = []
    charges: list[int] = []
    for phi_index, (phi_p4, phi_mass) in enumerate(((phi1, m1), (phi2, m2)), start=1):
        gen.append(_gen(phi_index, 333, _lv(phi_p4), sv, mother=0, status=2))
        k_plus, k_minus = decay_two_body(phi_p4, phi_mass, KAON_MASS, KAON_MASS, rng)
        for p4, charge in ((k_plus, 1), (k_minus, -1)):
            lv = _lv(p4)
            gen.append(_gen(len(gen), 321 * charge, lv, sv, mother=phi_index, charge=charge))
            kaons.append(lv)
            charges.append(charge)
    return kaons, charges, sv, gen


def generate_event(event_id: int, is_signal: bool, n_background: int, rng: Random) -> Event:
    """Build one event: optional signal kaons plus pileup tracks."""
    pv = (rng.gauss(0.0, 0.002), rng.gauss(0.0, 0.002), rng.gauss(0.0, 5.0))
    tracks: list[Track] = []
    gen: list[GenParticle] = []
    if is_signal:
        kaons, charges, sv, gen = generate_signal(pv, rng)
        for lv, charge in zip(kaons, charges):
            if lv.pt > 0.5 and abs(lv.eta) < 2.4:
                tracks.append(make_track(len(tracks), lv, charge, sv, rng, genuine=True))

    for _ in range(max(0, int(rng.gauss(n_background, 0.3 * n_background)))):
        lv = LorentzVector.from_pt_eta_phi_m(
            2.0 + rng.expovariate(1.0 / 2.0),
            rng.uniform(-2.4, 2.4),
            rng.uniform(-math.pi, math.pi),
            rng.choice((0.13957, KAON_MASS)),
        )
        vertex = (pv[0], pv[1], pv[2] + rng.gauss(0.0, 0.5))
        tracks.append(make_track(len(tracks), lv, rng.choice((-1, 1)), vertex, rng, genuine=rng.random() < 0.9))
    rng.shuffle(tracks)
    tracks = [replace(t, index=i) for i, t in enumerate(tracks)]
    return Event(run=1, lumi=1 + event_id // 100, event=event_id, tracks=tuple(tracks), gen_particles=tuple(gen))


def main() -> int:
    args = parse_args()
    rng = Random(args.seed)
    events = [
        generate_event(i, rng.random() < args.signal_fraction, args.n_background, rng)
        for i in range(args.n_events)
    ]
    write_events_root(args.out, events)
    n_signal = sum(1 for e in events if e.gen_particles)
    print(f"Wrote {len(events)} events ({n_signal} with a truth Bs) to {args.out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
