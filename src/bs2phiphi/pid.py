"""Particle-species helpers used in truth matching and mass assignment.

The decay chain studied here is Bs -> phi phi with phi -> K+ K-. Species are
identified by absolute PDG id, since both charge conjugates are analysed.
"""

from __future__ import annotations

from dataclasses import dataclass

from .models import KAON_MASS, PHI_POLE_MASS


@dataclass(frozen=True)
class ParticleSpecies:
    """Named particle species with nominal mass and PDG id."""

    name: str
    mass: float
    pdg_id: int

    def matches(self, pdg_id: int) -> bool:
        """Return True for the particle or its charge conjugate."""
        return abs(pdg_id) == self.pdg_id


_KAON = ParticleSpecies(name="K", mass=KAON_MASS, pdg_id=321)
_PHI = ParticleSpecies(name="phi", mass=PHI_POLE_MASS, pdg_id=333)
_BS = ParticleSpecies(name="Bs", mass=5.36688, pdg_id=531)

_NAME_TO_SPECIES: dict[str, ParticleSpecies] = {
    "k": _KAON,
    "kaon": _KAON,
    "phi": _PHI,
    "bs": _BS,
    "b_s0": _BS,
}


def make_kaon() -> ParticleSpecies:
    """Return the charged-kaon species."""
    return _KAON


def make_phi() -> ParticleSpecies:
    """Return the phi(1020) species."""
    return _PHI


def make_bs() -> ParticleSpecies:
    """Return the Bs0 species."""
    return _BS


def species_from_name(name: str) -> ParticleSpecies:
    """Resolve a short particle name (e.g. `K`, `phi`) into a species."""
    key = name.strip().lower()
    try:
        return _NAME_TO_SPECIES[key]
    except KeyError as exc:
        supported = ", ".join(sorted(_NAME_TO_SPECIES))
        raise ValueError(
            f"Unknown particle species name '{name}'. Supported names: {supported}"
        ) from exc
