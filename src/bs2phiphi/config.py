"""Job-file parsing for the Bs -> phi phi analysis.

A job file holds one `key value...` entry per line, e.g.::

    dataType       mc
    isSignal       1
    studyGen       1
    histFile       bs2phiphi.root
    maxEvent       -1
    inputFile      signal_1.root signal_2.root
    trkSelCutList  ptMin=2.0 etaMax=2.5 chi2RedMax=5 nStubMin=4
    phiSelCutList  massWindow=0.02 dzTrkPairMax=1.0 drTrkPairMax=0.12
    bsSelCutList   massLow=5.0 massHigh=5.8 dzPhiPairMax=1.0

Blank lines and lines starting with `#` are ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tabulate import tabulate

from .models import BsCuts, PhiCuts, TrackCuts

logger = logging.getLogger("bs2phiphi.Config")

_CUT_LIST_KEYS = ("trkSelCutList", "phiSelCutList", "bsSelCutList")
_FLAG_KEYS = {
    "isSignal": "is_signal",
    "studyGen": "study_gen",
    "dumpGenInfo": "dump_gen_info",
    "applyTrkQuality": "apply_track_quality",
}
_STR_KEYS = {
    "dataType": "data_type",
    "histFile": "hist_file",
    "logFile": "log_file",
    "tableFile": "table_file",
    "treeName": "tree_name",
}
_INT_KEYS = {"maxEvent": "max_event", "verbosity": "verbosity"}
_FLOAT_KEYS = {"scaleFactor": "scale_factor", "genPtMin": "gen_pt_min"}


@dataclass
class JobConfig:
    """Settings of one analysis job."""

    data_type: str = "mc"
    is_signal: bool = False
    study_gen: bool = False
    dump_gen_info: bool = False
    apply_track_quality: bool = True
    hist_file: str | None = None
    log_file: str | None = None
    table_file: str | None = None
    tree_name: str = "events"
    max_event: int = -1
    verbosity: int = 0
    scale_factor: float = 1.0
    gen_pt_min: float = 2.0
    input_files: list[str] = field(default_factory=list)
    track_cut_map: dict[str, float] = field(default_factory=dict)
    phi_cut_map: dict[str, float] = field(default_factory=dict)
    bs_cut_map: dict[str, float] = field(default_factory=dict)

    @property
    def track_cuts(self) -> TrackCuts:
        return TrackCuts.from_mapping(self.track_cut_map)

    @property
    def phi_cuts(self) -> PhiCuts:
        return PhiCuts.from_mapping(self.phi_cut_map)

    @property
    def bs_cuts(self) -> BsCuts:
        return BsCuts.from_mapping(self.bs_cut_map)

    def validate(self) -> None:
        """Check cut names against the cut-map dataclasses."""
        TrackCuts.from_mapping(self.track_cut_map)
        PhiCuts.from_mapping(self.phi_cut_map)
        BsCuts.from_mapping(self.bs_cut_map)

    def cut_maps(self) -> dict[str, dict[str, float]]:
        return {
            "trkSelCutList": self.track_cut_map,
            "phiSelCutList": self.phi_cut_map,
            "bsSelCutList": self.bs_cut_map,
        }


def read_job(path: str | Path) -> JobConfig:
    """Read a job file into a `JobConfig`.

    Cut names are validated against the cut-map dataclasses, so typos fail
    here rather than silently disabling a cut.
    """
    job_path = Path(path)
    if not job_path.is_file():
        raise FileNotFoundError(f"Job file {job_path} not found.")
    job = JobConfig()
    for lineno, raw in enumerate(job_path.read_text(encoding="utf-8").splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        tokens = line.split()
        key = tokens[0]
        if len(tokens) < 2:
            raise ValueError(f"{job_path}:{lineno}: key '{key}' has no value.")
        _apply_entry(job, key, tokens[1:], f"{job_path}:{lineno}")

    job.validate()
    logger.debug("Read job %s with %d input files", job_path, len(job.input_files))
    return job


def _apply_entry(job: JobConfig, key: str, values: list[str], where: str) -> None:
    try:
        if key in _CUT_LIST_KEYS:
            job.cut_maps()[key].update(parse_cut_tokens(values))
        elif key == "inputFile":
            job.input_files.extend(values)
        elif key in _FLAG_KEYS:
            setattr(job, _FLAG_KEYS[key], int(values[0]) > 0)
        elif key in _STR_KEYS:
            setattr(job, _STR_KEYS[key], values[0])
        elif key in _INT_KEYS:
            setattr(job, _INT_KEYS[key], int(values[0]))
        elif key in _FLOAT_KEYS:
            setattr(job, _FLOAT_KEYS[key], float(values[0]))
        else:
            logger.warning("%s: unknown job key '%s' ignored", where, key)
    except ValueError as exc:
        raise ValueError(f"{where}: invalid value for '{key}': {exc}") from exc


def parse_cut_tokens(tokens: list[str]) -> dict[str, float]:
    """Parse `name=value` tokens; tokens without a value are skipped."""
    cuts: dict[str, float] = {}
    for token in tokens:
        name, sep, value = token.partition("=")
        if not sep or not name or not value:
            continue
        cuts[name] = float(value)
    return cuts


def format_job(job: JobConfig) -> str:
    """Render the job settings and its cut maps for the log."""
    settings: list[tuple[str, Any]] = [
        ("dataType", job.data_type),
        ("isSignal", int(job.is_signal)),
        ("studyGen", int(job.study_gen)),
        ("dumpGenInfo", int(job.dump_gen_info)),
        ("applyTrkQuality", int(job.apply_track_quality)),
        ("treeName", job.tree_name),
        ("maxEvent", job.max_event),
        ("verbosity", job.verbosity),
        ("scaleFactor", job.scale_factor),
        ("genPtMin", job.gen_pt_min),
        ("histFile", job.hist_file),
        ("logFile", job.log_file),
        ("tableFile", job.table_file),
    ]
    parts = [tabulate(settings, headers=["key", "value"])]
    parts.append("inputFile:\n" + "\n".join(f"  {name}" for name in job.input_files))
    parts.append(format_cuts(job.cut_maps()))
    return "\n\n".join(parts)


def format_cuts(cut_maps: dict[str, dict[str, float]]) -> str:
    """Render `{list name: {cut: value}}` as one table per cut list."""
    blocks = []
    for list_name, cuts in cut_maps.items():
        rows = [(name, value) for name, value in sorted(cuts.items())]
        blocks.append(f">>> {list_name}\n" + tabulate(rows, headers=["cut", "value"], floatfmt=".3g"))
    return "\n".join(blocks)
