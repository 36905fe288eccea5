"""Input/output helpers for event samples and tabular candidate export.

ROOT event trees are flat ntuples with scalar branches `run`, `lumi`,
`event` and two jagged branch groups sharing one counter each:

- `ntrk` / `trk_<field>` for `Track` fields (`trk_pt`, `trk_vertex_z`, ...)
- `ngen` / `gen_<field>` for `GenParticle` fields (optional).
"""

from __future__ import annotations

import json
import logging
from dataclasses import fields
from pathlib import Path
from typing import Any, Iterator, Sequence

import awkward as ak
import numpy as np
import uproot

from .models import BsCandidate, Event, GenParticle, Track

logger = logging.getLogger("bs2phiphi.IO")

TRACK_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(Track) if f.name != "index")
GEN_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(GenParticle) if f.name != "index")
_REQUIRED_TRACK_FIELDS = ("pt", "eta", "phi", "charge")
_REQUIRED_GEN_FIELDS = ("pdg_id", "pt", "eta", "phi", "energy")
_INT_FIELDS = {"charge", "n_stub", "n_stub_ps", "pdg_id", "status", "mother_index"}
_BOOL_FIELDS = {"is_genuine"}


def load_events(
    path: str | Path,
    tree_name: str = "events",
    max_events: int = -1,
) -> list[Event]:
    """Load events from a `.root` or `.json` file."""
    return list(iter_events(path, tree_name=tree_name, max_events=max_events))


def iter_events(
    path: str | Path,
    tree_name: str = "events",
    max_events: int = -1,
    step_size: int | str = "50 MB",
) -> Iterator[Event]:
    """Iterate over events of one input file, dispatching on its suffix."""
    in_path = Path(path)
    if not in_path.is_file():
        raise FileNotFoundError(f"Input file {in_path} not found.")
    suffix = in_path.suffix.lower()
    if suffix == ".root":
        yield from iter_events_root(in_path, tree_name, max_events, step_size)
    elif suffix == ".json":
        events = load_events_json(in_path)
        yield from (events if max_events < 0 else events[:max_events])
    else:
        raise ValueError(f"Unsupported input format '{suffix}'. Use .root or .json")


def iter_events_root(
    path: str | Path,
    tree_name: str = "events",
    max_events: int = -1,
    step_size: int | str = "50 MB",
) -> Iterator[Event]:
    """Read events from a ROOT tree in chunks of `step_size`."""
    entry_stop = None if max_events < 0 else max_events
    with uproot.open(path) as root_file:
        if tree_name not in root_file.keys(cycle=False):
            raise ValueError(f"Tree '{tree_name}' not found in {path}.")
        tree = root_file[tree_name]
        branch_names = set(tree.keys())
        missing = [f"trk_{name}" for name in _REQUIRED_TRACK_FIELDS if f"trk_{name}" not in branch_names]
        if missing:
            raise ValueError(f"Tree '{tree_name}' in {path} lacks branches: {', '.join(missing)}")
        has_gen = "gen_pdg_id" in branch_names
        entry = 0
        for chunk in tree.iterate(
            filter_name=["run", "lumi", "event", "trk_*", "gen_*"],
            step_size=step_size,
            entry_stop=entry_stop,
            library="ak",
        ):
            for record in ak.to_list(chunk):
                yield _event_from_record(record, entry, has_gen)
                entry += 1
    logger.debug("Read %d events from %s:%s", entry, path, tree_name)


def write_events_root(
    path: str | Path,
    events: Sequence[Event],
    tree_name: str = "events",
) -> None:
    """Write events into a ROOT tree with the layout read by `iter_events_root`."""
    branches: dict[str, Any] = {
        "run": np.asarray([e.run for e in events], dtype=np.int32),
        "lumi": np.asarray([e.lumi for e in events], dtype=np.int32),
        "event": np.asarray([e.event for e in events], dtype=np.int64),
        "trk": _zip_jagged([e.tracks for e in events], TRACK_FIELDS),
        "gen": _zip_jagged([e.gen_particles for e in events], GEN_FIELDS),
    }
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with uproot.recreate(out) as root_file:
        root_file[tree_name] = branches


def load_events_json(path: str | Path) -> list[Event]:
    """Load multi-event input JSON into `Event` objects.

    Expected shape:
    {
      "events": [
        {"run": 1, "lumi": 1, "event": 7, "tracks": [...], "gen_particles": [...]},
        ...
      ]
    }
    """
    data = _load_json(path)
    events_data = data.get("events")
    if not isinstance(events_data, list):
        raise ValueError("Events JSON must contain a list under key 'events'.")
    out: list[Event] = []
    for idx, event in enumerate(events_data):
        if not isinstance(event, dict):
            raise ValueError(f"Event entry at index {idx} must be an object.")
        tracks_data = event.get("tracks")
        if not isinstance(tracks_data, list):
            raise ValueError(f"Event at index {idx} must contain a list under key 'tracks'.")
        gen_data = event.get("gen_particles", [])
        if not isinstance(gen_data, list):
            raise ValueError(f"Event at index {idx}: 'gen_particles' must be a list.")
        context = f"event {idx}"
        out.append(
            Event(
                run=int(event.get("run", 1)),
                lumi=int(event.get("lumi", 1)),
                event=int(event.get("event", idx)),
                tracks=tuple(
                    _parse_item(Track, item, tidx, context, _REQUIRED_TRACK_FIELDS)
                    for tidx, item in enumerate(tracks_data)
                ),
                gen_particles=tuple(
                    _parse_item(GenParticle, item, gidx, context, _REQUIRED_GEN_FIELDS)
                    for gidx, item in enumerate(gen_data)
                ),
            )
        )
    return out


def candidate_rows(
    event: Event,
    candidates: Sequence[BsCandidate],
    extras: dict[str, Any] | None = None,
) -> list[dict[str, Any]]:
    """Flatten the Bs candidates of one event into DataFrame-ready rows."""
    rows: list[dict[str, Any]] = []
    for rank, bs in enumerate(candidates):
        p4 = bs.p4
        row: dict[str, Any] = {
            "run": event.run,
            "lumi": event.lumi,
            "event": event.event,
            "rank": rank,
            "bs_mass": p4.mass,
            "bs_pt": p4.pt,
            "bs_eta": p4.eta,
            "bs_phi": p4.phi,
            "phi_pair_dxy": bs.dxy,
            "phi_pair_dz": bs.dz,
            "phi_pair_dr": bs.dr,
            "track_indices": ",".join(str(i) for i in bs.track_indices),
        }
        for tag, phi in (("phi1", bs.phi1), ("phi2", bs.phi2)):
            row[f"{tag}_mass"] = phi.p4.mass
            row[f"{tag}_dmass"] = phi.dmass
            row[f"{tag}_pt"] = phi.p4.pt
            row[f"{tag}_eta"] = phi.p4.eta
            row[f"{tag}_trk_dxy"] = phi.dxy
            row[f"{tag}_trk_dz"] = phi.dz
            row[f"{tag}_trk_dr"] = phi.dr
            row[f"{tag}_vz"] = phi.vertex[2]
        if rank == 0 and extras:
            row.update(extras)
        rows.append(row)
    return rows


def write_candidates_table(path: str | Path, rows: list[dict[str, Any]]) -> None:
    """Write candidate rows into Parquet/CSV/Pickle table."""
    pd = _require_pandas()
    df = pd.DataFrame(rows)
    out = Path(path)
    suffix = out.suffix.lower()
    if suffix == ".parquet":
        df.to_parquet(out, index=False)
    elif suffix in (".pkl", ".pickle"):
        df.to_pickle(out)
    elif suffix == ".csv":
        df.to_csv(out, index=False)
    else:
        raise ValueError(
            f"Unsupported output format '{suffix}'. Use .parquet, .csv, or .pkl"
        )
    logger.info("Wrote %d candidate rows to %s", len(df), out)


def _require_pandas():
    """Import pandas lazily and provide a clear installation hint on failure."""
    try:
        import pandas as pd  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "pandas is required to write output tables. Install pandas and pyarrow."
        ) from exc
    return pd


def _event_from_record(record: dict[str, Any], entry: int, has_gen: bool) -> Event:
    """Convert one `ak.to_list` event record into an `Event`."""
    tracks = _objects_from_record(Track, record, "trk", TRACK_FIELDS)
    gen = _objects_from_record(GenParticle, record, "gen", GEN_FIELDS) if has_gen else ()
    return Event(
        run=int(record.get("run", 0)),
        lumi=int(record.get("lumi", 0)),
        event=int(record.get("event", entry)),
        tracks=tracks,
        gen_particles=gen,
    )


def _objects_from_record(cls, record: dict[str, Any], prefix: str, names: tuple[str, ...]):
    columns = {name: record[f"{prefix}_{name}"] for name in names if f"{prefix}_{name}" in record}
    n = len(next(iter(columns.values()))) if columns else 0
    return tuple(
        cls(index=i, **{name: _coerce(name, values[i]) for name, values in columns.items()})
        for i in range(n)
    )


def _zip_jagged(per_event: Sequence[Sequence[Any]], names: tuple[str, ...]) -> ak.Array:
    """Build a jagged record array `{field: [[...], ...]}` from object lists."""
    counts = np.asarray([len(objs) for objs in per_event], dtype=np.int64)
    columns = {}
    for name in names:
        if name in _BOOL_FIELDS:
            dtype: Any = np.bool_
        elif name in _INT_FIELDS:
            dtype = np.int32
        else:
            dtype = np.float64
        flat = np.asarray([getattr(o, name) for objs in per_event for o in objs], dtype=dtype)
        columns[name] = ak.unflatten(flat, counts)
    return ak.zip(columns)


def _parse_item(cls, item: Any, idx: int, context: str, required: tuple[str, ...]):
    """Parse one track or gen-particle dictionary."""
    if not isinstance(item, dict):
        raise ValueError(f"{cls.__name__} entry at index {idx} in {context} must be an object.")
    missing = [name for name in required if name not in item]
    if missing:
        raise ValueError(
            f"{cls.__name__} at index {idx} in {context} is missing: {', '.join(missing)}"
        )
    known = {f.name for f in fields(cls)} - {"index"}
    kwargs = {name: _coerce(name, value) for name, value in item.items() if name in known}
    return cls(index=int(item.get("index", idx)), **kwargs)


def _coerce(name: str, value: Any) -> Any:
    if name in _BOOL_FIELDS:
        return bool(value)
    if name in _INT_FIELDS:
        return int(value)
    return float(value)


def _load_json(path: str | Path) -> dict[str, Any]:
    """Read and validate a JSON object document from disk."""
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"JSON document at {path} must be an object.")
    return data
