"""Command-line interface for running the Bs -> phi phi analysis on a job file."""

from __future__ import annotations

import argparse
import importlib.util
import logging
from pathlib import Path
from typing import Any

from .analysis import BsAnalysis
from .config import read_job


def build_parser() -> argparse.ArgumentParser:
    """Define and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="bs2phiphi",
        description="Reconstruct Bs -> phi phi -> 4K candidates and fill selection histograms.",
    )
    parser.add_argument("job", help="Job file with input files, outputs and cut lists.")
    parser.add_argument(
        "--max-event",
        type=int,
        default=None,
        help="Override maxEvent from the job file (-1 for all events).",
    )
    parser.add_argument(
        "--verbosity",
        type=int,
        default=None,
        help="Override verbosity from the job file (>0 enables debug logging).",
    )
    parser.add_argument("--hist-file", default=None, help="Override histFile from the job file.")
    parser.add_argument(
        "--table",
        default=None,
        help="Optional output table for Bs candidates (.parquet, .csv, .pkl).",
    )
    parser.add_argument(
        "--custom-script",
        default=None,
        help="Path to Python file with process(candidates, context) function.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint: read job, run the event loop, optional custom hook."""
    args = build_parser().parse_args(argv)
    job = read_job(args.job)
    if args.max_event is not None:
        job.max_event = args.max_event
    if args.verbosity is not None:
        job.verbosity = args.verbosity
    if args.hist_file is not None:
        job.hist_file = args.hist_file
    if args.table is not None:
        job.table_file = args.table
    setup_logging(job.verbosity)

    analysis = BsAnalysis(job, collect_candidates=bool(args.custom_script)).run()

    if args.custom_script:
        run_custom_script(
            script_path=args.custom_script,
            candidates=analysis.candidates,
            context={
                "job_path": args.job,
                "job": job,
                "n_events": analysis.n_events,
                "cutflow": analysis.cutflow(),
                "histograms": analysis.histograms,
            },
        )
    return 0


def setup_logging(verbosity: int = 0) -> logging.Logger:
    """Configure root logging once; `verbosity > 0` switches to DEBUG."""
    level = logging.DEBUG if verbosity > 0 else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("bs2phiphi").setLevel(level)
    return logging.getLogger("bs2phiphi")


def run_custom_script(
    script_path: str, candidates: list[dict[str, Any]], context: dict[str, Any]
) -> None:
    """Execute user-supplied post-processing callback `process(candidates, context)`."""
    module = _load_module(script_path)
    process = getattr(module, "process", None)
    if process is None or not callable(process):
        raise ValueError(
            f"Custom script {script_path} must define callable process(candidates, context)."
        )
    process(candidates, context)


def _load_module(script_path: str):
    """Import a Python module from an arbitrary file path."""
    path = Path(script_path)
    spec = importlib.util.spec_from_file_location(path.stem, path)
    if spec is None or spec.loader is None:
        raise ValueError(f"Cannot import custom script: {script_path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


if __name__ == "__main__":
    raise SystemExit(main())
