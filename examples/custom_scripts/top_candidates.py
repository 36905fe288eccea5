"""Example custom callback: rank candidates and persist top-N summary."""

from __future__ import annotations

import json
from pathlib import Path


def process(candidates, context):
    """Sort by summed phi mass offset and save the top candidates."""
    ranked = sorted(candidates, key=lambda r: r["phi1_dmass"] + r["phi2_dmass"])
    payload = {
        "n_total": len(candidates),
        "top_candidates": [
            {
                "event": r["event"],
                "track_indices": r["track_indices"],
                "bs_mass": r["bs_mass"],
                "bs_pt": r["bs_pt"],
                "phi1_mass": r["phi1_mass"],
                "phi2_mass": r["phi2_mass"],
            }
            for r in ranked[:3]
        ],
    }
    out = Path(context["job_path"]).with_name("top_candidates.json")
    out.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    print(f"Wrote {out}")
