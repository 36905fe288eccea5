"""Public package exports for the Bs -> phi phi candidate analysis."""

from .analysis import BsAnalysis, GenDecay, gen_filter, read_gen_particles
from .combiner import PhiPhiCombiner, Selection
from .config import JobConfig, read_job
from .histograms import CUTFLOW_STEPS, HistogramSet, book_histograms
from .models import (
    KAON_MASS,
    PHI_POLE_MASS,
    BsCandidate,
    BsCuts,
    Event,
    GenParticle,
    LorentzVector,
    PhiCandidate,
    PhiCuts,
    Track,
    TrackCuts,
)
from .pid import ParticleSpecies, make_bs, make_kaon, make_phi, species_from_name

__all__ = [
    "BsAnalysis",
    "GenDecay",
    "gen_filter",
    "read_gen_particles",
    "PhiPhiCombiner",
    "Selection",
    "JobConfig",
    "read_job",
    "CUTFLOW_STEPS",
    "HistogramSet",
    "book_histograms",
    "KAON_MASS",
    "PHI_POLE_MASS",
    "Track",
    "GenParticle",
    "Event",
    "LorentzVector",
    "PhiCandidate",
    "BsCandidate",
    "TrackCuts",
    "PhiCuts",
    "BsCuts",
    "ParticleSpecies",
    "make_kaon",
    "make_phi",
    "make_bs",
    "species_from_name",
]
