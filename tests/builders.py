"""Synthetic track and generator-particle builders shared by the unit tests."""

from __future__ import annotations

import math

from bs2phiphi import KAON_MASS, PHI_POLE_MASS, GenParticle, LorentzVector, Track


def phi_opening(pt: float) -> float:
    """Azimuthal opening of two equal-pt, equal-eta kaons with the phi pole mass."""
    return math.acos(1.0 - (PHI_POLE_MASS**2 - 4.0 * KAON_MASS**2) / (2.0 * pt * pt))


def phi_pair(
    first_index: int,
    pt: float = 5.0,
    eta: float = 0.5,
    phi0: float = 0.0,
    vz: float = 0.0,
    charges: tuple[int, int] = (1, -1),
    **extra,
) -> list[Track]:
    """Two kaon tracks whose invariant mass equals the phi pole mass."""
    half = 0.5 * phi_opening(pt)
    return [
        Track(first_index, pt=pt, eta=eta, phi=phi0 - half, charge=charges[0], vertex_z=vz, **extra),
        Track(first_index + 1, pt=pt, eta=eta, phi=phi0 + half, charge=charges[1], vertex_z=vz, **extra),
    ]


def signal_tracks() -> list[Track]:
    """Four kaon tracks from two phis plus one unrelated soft track."""
    tracks = phi_pair(0, pt=5.0, eta=0.5, phi0=0.0, chi2=4.0, chi2_red=1.0, n_stub=6, n_stub_ps=3)
    tracks += phi_pair(2, pt=4.0, eta=0.3, phi0=1.0, chi2=6.0, chi2_red=1.5, n_stub=5, n_stub_ps=2)
    tracks.append(Track(4, pt=1.0, eta=0.5, phi=2.5, charge=1, chi2=2.0, chi2_red=0.5, n_stub=4))
    return tracks


def gen_from_tracks(tracks: list[Track]) -> list[GenParticle]:
    """Bs -> phi phi -> 4K truth record whose kaons coincide with the first four tracks."""
    kaon_lvs = [LorentzVector.from_pt_eta_phi_m(t.pt, t.eta, t.phi, KAON_MASS) for t in tracks[:4]]
    phi1 = kaon_lvs[0] + kaon_lvs[1]
    phi2 = kaon_lvs[2] + kaon_lvs[3]
    bs = phi1 + phi2
    particles = [
        _gen(0, 531, bs, mother=-1, status=2),
        _gen(1, 333, phi1, mother=0, status=2, vz=0.01),
        _gen(2, 333, phi2, mother=0, status=2, vz=0.01),
    ]
    for i, (lv, trk) in enumerate(zip(kaon_lvs, tracks[:4]), start=3):
        pdg_id = 321 * trk.charge
        particles.append(_gen(i, pdg_id, lv, mother=1 if i < 5 else 2, charge=trk.charge, vz=0.01))
    particles.append(GenParticle(7, 211, pt=0.8, eta=1.0, phi=-2.0, energy=1.3, charge=1))
    return particles


def _gen(index: int, pdg_id: int, lv: LorentzVector, mother: int, status: int = 1,
         charge: int = 0, vz: float = 0.0) -> GenParticle:
    return GenParticle(
        index,
        pdg_id,
        pt=lv.pt,
        eta=lv.eta,
        phi=lv.phi,
        energy=lv.e,
        status=status,
        charge=charge,
        vz=vz,
        mother_index=mother,
    )
