"""Physics/math helpers for building and filtering phi and Bs candidates."""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from .models import KAON_MASS, GenParticle, LorentzVector, PhiCandidate, Track, delta_phi


def delta_r(eta1: float, phi1: float, eta2: float, phi2: float) -> float:
    """Distance in the (eta, phi) plane."""
    dphi = delta_phi(phi1, phi2)
    deta = eta1 - eta2
    return math.sqrt(dphi * dphi + deta * deta)


def same_object(lv1: LorentzVector, lv2: LorentzVector) -> bool:
    """Return True when two 4-vectors describe the same physics object."""
    return abs(lv1.pt - lv2.pt) < 1e-08 and lv1.delta_r(lv2) < 1e-08


def track_to_lorentz(track: Track, mass: float = KAON_MASS) -> LorentzVector:
    """Convert a track plus mass hypothesis into a Lorentz 4-vector."""
    return LorentzVector.from_pt_eta_phi_m(track.pt, track.eta, track.phi, mass)


def phi_lorentz(trk_i: Track, trk_j: Track, mass: float = KAON_MASS) -> LorentzVector:
    """4-vector of a track pair under the kaon mass hypothesis."""
    return track_to_lorentz(trk_i, mass) + track_to_lorentz(trk_j, mass)


def track_delta_r(trk_i: Track, trk_j: Track) -> float:
    return delta_r(trk_i.eta, trk_i.phi, trk_j.eta, trk_j.phi)


def gen_delta_r(gp_i: GenParticle, gp_j: GenParticle) -> float:
    return delta_r(gp_i.eta, gp_i.phi, gp_j.eta, gp_j.phi)


def gen_invariant_mass(gp_i: GenParticle, gp_j: GenParticle) -> float:
    """Invariant mass of two generator particles."""
    return (gp_i.p4 + gp_j.p4).mass


def delta_pos(
    a: Track | PhiCandidate, b: Track | PhiCandidate
) -> tuple[float, float]:
    """Return `(dxy, dz)` between two tracks or two phi candidates.

    Tracks use their reference points, phi candidates the average vertex of
    their two tracks. `dz` is an absolute difference.
    """
    xa, ya, za = a.vertex
    xb, yb, zb = b.vertex
    return math.hypot(xa - xb, ya - yb), abs(za - zb)


def average_vertex(trk_i: Track, trk_j: Track) -> tuple[float, float, float]:
    return (
        0.5 * (trk_i.vertex_x + trk_j.vertex_x),
        0.5 * (trk_i.vertex_y + trk_j.vertex_y),
        0.5 * (trk_i.vertex_z + trk_j.vertex_z),
    )


def decay_plane_angle(
    k1: LorentzVector, k2: LorentzVector, k3: LorentzVector, k4: LorentzVector
) -> float:
    """Angle in [0, pi] between the planes spanned by (k1, k2) and (k3, k4)."""
    n1 = cross3((k1.px, k1.py, k1.pz), (k2.px, k2.py, k2.pz))
    n2 = cross3((k3.px, k3.py, k3.pz), (k4.px, k4.py, k4.pz))
    den = norm3(n1) * norm3(n2)
    if den <= 0.0:
        return 0.0
    cos_angle = max(-1.0, min(1.0, dot3(n1, n2) / den))
    return math.acos(cos_angle)


def isolation(
    kaon: Track,
    tracks: Sequence[Track],
    excluded: Iterable[int] = (),
    cone: float = 0.3,
    max_dz: float | None = None,
    min_pt: float | None = None,
) -> float:
    """Relative track isolation of one kaon.

    Sums the pt of all tracks inside a `cone` around the kaon, skipping the
    kaon itself and any index in `excluded`. Optional `max_dz` and `min_pt`
    restrict the sum to tracks compatible with the kaon vertex.
    """
    if kaon.pt <= 0.0:
        return 0.0
    skip = set(excluded)
    skip.add(kaon.index)
    sum_pt = 0.0
    for trk in tracks:
        if trk.index in skip:
            continue
        if min_pt is not None and trk.pt < min_pt:
            continue
        if max_dz is not None and abs(trk.vertex_z - kaon.vertex_z) > max_dz:
            continue
        if track_delta_r(kaon, trk) >= cone:
            continue
        sum_pt += trk.pt
    return sum_pt / kaon.pt


def poisson_error(k: float, n: float) -> float:
    """Error on the ratio `k / n` assuming Poisson fluctuations of `k`."""
    if n <= 0:
        return 0.0
    return math.sqrt(max(k, 0.0)) / n


def binomial_error(k: float, n: float) -> float:
    """Error on the efficiency `k / n` assuming binomial statistics."""
    if n <= 0:
        return 0.0
    return math.sqrt(max(k * (1.0 - k / n), 0.0)) / n


def dot3(a: tuple[float, float, float], b: tuple[float, float, float]) -> float:
    """3D dot product."""
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]


def cross3(
    a: tuple[float, float, float], b: tuple[float, float, float]
) -> tuple[float, float, float]:
    """3D cross product."""
    return (
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0],
    )


def norm3(a: tuple[float, float, float]) -> float:
    """Euclidean norm of a 3D vector."""
    return math.sqrt(dot3(a, a))
