"""Core data models used by the Bs -> phi phi analysis.

This module defines:
- immutable event records (`Track`, `GenParticle`, `Event`)
- a small 4-vector (`LorentzVector`)
- candidate structures (`PhiCandidate`, `BsCandidate`)
- cut maps built from job-file `name=value` tokens (`TrackCuts`, `PhiCuts`,
  `BsCuts`)
- helper iterator for pairwise combinatorics.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from itertools import combinations
from typing import Any, Iterable, Mapping, Sequence, TypeVar

KAON_MASS = 0.493  # GeV
PHI_POLE_MASS = 1.019445  # GeV

Vertex3 = tuple[float, float, float]


def delta_phi(phia: float, phib: float) -> float:
    """Azimuthal difference wrapped into (-pi, pi]."""
    dphi = phia - phib
    while dphi > math.pi:
        dphi -= 2 * math.pi
    while dphi <= -math.pi:
        dphi += 2 * math.pi
    return dphi


@dataclass(frozen=True)
class LorentzVector:
    """Simple 4-vector with convenience properties and addition."""

    px: float
    py: float
    pz: float
    e: float

    @classmethod
    def from_pt_eta_phi_m(cls, pt: float, eta: float, phi: float, mass: float) -> "LorentzVector":
        """Build a 4-vector from collider coordinates and a mass."""
        px = pt * math.cos(phi)
        py = pt * math.sin(phi)
        pz = pt * math.sinh(eta)
        energy = math.sqrt(px * px + py * py + pz * pz + mass * mass)
        return cls(px, py, pz, energy)

    @classmethod
    def from_pt_eta_phi_e(cls, pt: float, eta: float, phi: float, energy: float) -> "LorentzVector":
        """Build a 4-vector from collider coordinates and an energy."""
        return cls(pt * math.cos(phi), pt * math.sin(phi), pt * math.sinh(eta), energy)

    def __add__(self, other: "LorentzVector") -> "LorentzVector":
        """Component-wise 4-vector addition."""
        return LorentzVector(
            self.px + other.px,
            self.py + other.py,
            self.pz + other.pz,
            self.e + other.e,
        )

    @property
    def p2(self) -> float:
        """Squared 3-momentum magnitude."""
        return self.px * self.px + self.py * self.py + self.pz * self.pz

    @property
    def p(self) -> float:
        return math.sqrt(self.p2)

    @property
    def pt(self) -> float:
        return math.hypot(self.px, self.py)

    @property
    def phi(self) -> float:
        return math.atan2(self.py, self.px) if (self.px or self.py) else 0.0

    @property
    def eta(self) -> float:
        """Pseudorapidity; +-1e9 along the beam axis."""
        p = self.p
        if p == abs(self.pz):
            return 1e9 if self.pz >= 0 else -1e9
        return 0.5 * math.log((p + self.pz) / (p - self.pz))

    @property
    def mass2(self) -> float:
        """Invariant mass squared."""
        return self.e * self.e - self.p2

    @property
    def mass(self) -> float:
        """Invariant mass with signed handling for small negative mass2 values."""
        m2 = self.mass2
        return m2**0.5 if m2 >= 0.0 else -((-m2) ** 0.5)

    def delta_phi(self, other: "LorentzVector") -> float:
        return delta_phi(self.phi, other.phi)

    def delta_r(self, other: "LorentzVector") -> float:
        """Distance in the (eta, phi) plane."""
        dphi = self.delta_phi(other)
        deta = self.eta - other.eta
        return math.sqrt(dphi * dphi + deta * deta)


@dataclass(frozen=True)
class Track:
    """Single reconstructed track with kinematics, vertex and fit quality.

    `pt`, `eta` and `phi` are taken at the point of closest approach to the
    beam line, `vertex_*` is the track reference point (POCA) in cm.
    """

    index: int
    pt: float
    eta: float
    phi: float
    charge: int
    curvature: float = 0.0
    chi2: float = 0.0
    chi2_red: float = 0.0
    vertex_x: float = 0.0
    vertex_y: float = 0.0
    vertex_z: float = 0.0
    n_stub: int = 0
    n_stub_ps: int = 0
    is_genuine: bool = False

    @property
    def vertex_xy(self) -> float:
        """Transverse distance of the track reference point from the beam line."""
        return math.hypot(self.vertex_x, self.vertex_y)

    @property
    def vertex(self) -> Vertex3:
        return self.vertex_x, self.vertex_y, self.vertex_z


@dataclass(frozen=True)
class GenParticle:
    """Generator-level truth particle with production vertex and mother link."""

    index: int
    pdg_id: int
    pt: float
    eta: float
    phi: float
    energy: float
    status: int = 1
    charge: int = 0
    vx: float = 0.0
    vy: float = 0.0
    vz: float = 0.0
    mother_index: int = -1

    @property
    def p4(self) -> LorentzVector:
        return LorentzVector.from_pt_eta_phi_e(self.pt, self.eta, self.phi, self.energy)

    @property
    def mass(self) -> float:
        return self.p4.mass


@dataclass(frozen=True)
class Event:
    """One event payload with its own track and generator-particle lists."""

    run: int
    lumi: int
    event: int
    tracks: tuple[Track, ...]
    gen_particles: tuple[GenParticle, ...] = ()


@dataclass(frozen=True)
class PhiCandidate:
    """Track pair compatible with a phi -> K+ K- decay.

    `dmass` is the distance of the pair mass from the phi pole mass.
    """

    dmass: float
    index1: int
    index2: int
    dxy: float
    dz: float
    dr: float
    p4: LorentzVector
    vertex: Vertex3

    @property
    def track_indices(self) -> tuple[int, int]:
        return self.index1, self.index2

    def shares_track(self, other: "PhiCandidate") -> bool:
        return bool(set(self.track_indices) & set(other.track_indices))


@dataclass(frozen=True)
class BsCandidate:
    """Pair of phi candidates accepted as a Bs -> phi phi candidate."""

    phi1: PhiCandidate
    phi2: PhiCandidate
    dxy: float
    dz: float
    dr: float

    @property
    def p4(self) -> LorentzVector:
        return self.phi1.p4 + self.phi2.p4

    @property
    def mass(self) -> float:
        return self.p4.mass

    @property
    def dmass(self) -> float:
        """Summed phi mass offsets, used to rank candidates within an event."""
        return self.phi1.dmass + self.phi2.dmass

    @property
    def track_indices(self) -> tuple[int, int, int, int]:
        return self.phi1.track_indices + self.phi2.track_indices


_C = TypeVar("_C", bound="_CutMap")


@dataclass(frozen=True)
class _CutMap:
    """Base for cut maps keyed by the names used in job files.

    Each dataclass field carries its job-file name in `metadata["key"]`.
    """

    @classmethod
    def keys(cls) -> dict[str, str]:
        """Map job-file cut names to dataclass field names."""
        return {f.metadata.get("key", f.name): f.name for f in fields(cls)}

    @classmethod
    def from_mapping(cls: type[_C], values: Mapping[str, float]) -> _C:
        """Build a cut map from `{name: value}` pairs read from a job file."""
        keys = cls.keys()
        kwargs: dict[str, Any] = {}
        for name, value in values.items():
            if name not in keys:
                supported = ", ".join(sorted(keys))
                raise ValueError(
                    f"Unknown cut '{name}' for {cls.__name__}. Supported cuts: {supported}"
                )
            kwargs[keys[name]] = value
        return cls(**kwargs)

    def as_mapping(self) -> dict[str, float | None]:
        """Return active thresholds keyed by their job-file names."""
        return {key: getattr(self, attr) for key, attr in self.keys().items()}


def _cut(key: str, default: float | None = None) -> Any:
    return field(default=default, metadata={"key": key})


@dataclass(frozen=True)
class TrackCuts(_CutMap):
    """Track-level preselection applied before pair combinatorics."""

    min_pt: float | None = _cut("ptMin")
    max_abs_eta: float | None = _cut("etaMax")
    max_chi2_red: float | None = _cut("chi2RedMax")
    min_n_stub: float | None = _cut("nStubMin")
    min_n_stub_ps: float | None = _cut("nStubPSMin")


@dataclass(frozen=True)
class PhiCuts(_CutMap):
    """Track-pair cuts defining a phi candidate."""

    mass_window: float | None = _cut("massWindow", 0.02)
    max_dz: float | None = _cut("dzTrkPairMax")
    max_dxy: float | None = _cut("dxyTrkPairMax")
    max_dr: float | None = _cut("drTrkPairMax")
    min_pt: float | None = _cut("ptMin")
    opposite_charge: float | None = _cut("oppositeCharge", 1.0)


@dataclass(frozen=True)
class BsCuts(_CutMap):
    """Phi-pair cuts defining a Bs candidate, plus kaon isolation settings."""

    min_mass: float | None = _cut("massLow")
    max_mass: float | None = _cut("massHigh")
    max_dz: float | None = _cut("dzPhiPairMax")
    max_dxy: float | None = _cut("dxyPhiPairMax")
    max_dr: float | None = _cut("drPhiPairMax")
    isolation_cone: float | None = _cut("isolCone", 0.3)
    isolation_max_dz: float | None = _cut("isolDzMax")
    isolation_min_track_pt: float | None = _cut("isolTrkPtMin")


def iter_pairs(items: Sequence[Any]) -> Iterable[tuple[Any, Any]]:
    """Yield every unordered pair `(items[i], items[j])` with `i < j`."""
    return combinations(items, 2)
