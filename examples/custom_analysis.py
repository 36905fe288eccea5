"""Example custom callback: write a tiny summary of the best Bs candidates."""

from __future__ import annotations

import json
from pathlib import Path


def process(candidates, context):
    """Keep the top-ranked candidate per event and save a summary JSON."""
    best = [row for row in candidates if row["rank"] == 0]
    summary = {
        "n_events": context["n_events"],
        "n_candidates": len(candidates),
        "n_selected_events": len(best),
        "cutflow": context["cutflow"],
        "mean_bs_mass": sum(r["bs_mass"] for r in best) / len(best) if best else None,
    }
    out_path = Path(context["job_path"]).with_name("summary.json")
    out_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
    print(f"Custom analysis summary written to {out_path}")
