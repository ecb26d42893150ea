"""Command-line interface for running the HF trigger selection on event inputs."""

from __future__ import annotations

import argparse
import importlib.util
import logging
from pathlib import Path
from typing import Any

from .calibration import CalibrationProvider
from .config import FilterConfig, load_filter_config
from .errors import ConfigurationError
from .filter import HfFilter
from .io import candidate_rows, decision_rows, load_events_json, write_results_table
from .ml import ModelProvider, Scorer
from .models import EventDecision
from .qa import FillRecorder


def build_parser() -> argparse.ArgumentParser:
    """Define and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="hf-filter",
        description="Apply heavy-flavour software-trigger selections to reconstructed events.",
    )
    parser.add_argument("--events", required=True, help="Input JSON with key 'events'.")
    parser.add_argument(
        "--out",
        required=True,
        help="Output table file for charm candidates (.parquet, .csv, .pkl).",
    )
    parser.add_argument("--config", default=None, help="JSON filter configuration (defaults when omitted).")
    parser.add_argument(
        "--calibration-dir",
        default=None,
        help="Directory with TPC post-calibration maps, one <run>.npz per run.",
    )
    parser.add_argument(
        "--run",
        type=int,
        default=None,
        help="Run number of the post-calibration maps; events' own run numbers are used when omitted.",
    )
    parser.add_argument(
        "--models-dir",
        default=None,
        help="Directory with TorchScript models (<particle>.pt or <particle>/<timestamp>.pt).",
    )
    parser.add_argument(
        "--model-timestamp",
        type=int,
        default=None,
        help="Model timestamp; selects <models-dir>/<particle>/<timestamp>.pt.",
    )
    parser.add_argument(
        "--decisions-out",
        default=None,
        help="Optional output table with one row per event and trigger flags.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    parser.add_argument(
        "--custom-script",
        default=None,
        help="Path to Python file with process(decisions, context) function.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint: load inputs, run the filter, write tables, optional custom hook."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config = load_filter_config(args.config) if args.config else FilterConfig()
    events = load_events_json(args.events)

    calibration = None
    if config.compute_tpc_post_calib:
        if args.calibration_dir is None:
            raise ConfigurationError("--calibration-dir is required when compute_tpc_post_calib is enabled.")
        provider = CalibrationProvider(args.calibration_dir)
        calibration = provider.get(args.run) if args.run is not None else provider

    scorers: dict[str, Scorer] = {}
    if config.ml.enabled_species:
        if args.models_dir is None:
            raise ConfigurationError("--models-dir is required when ML scoring is enabled.")
        models = ModelProvider(args.models_dir)
        for name in config.ml.enabled_species:
            metadata = {}
            if name in config.ml.input_shapes:
                metadata["input_shape"] = [1, config.ml.input_shapes[name]]
            scorers[name] = models.retrieve(name, args.model_timestamp, metadata)

    qa = FillRecorder() if config.qa_level > 0 else None
    hf_filter = HfFilter(config, calibration=calibration, scorers=scorers, qa=qa)
    decisions = hf_filter.process_events(events)

    write_results_table(args.out, candidate_rows(decisions))
    if args.decisions_out:
        write_results_table(args.decisions_out, decision_rows(decisions))

    if args.custom_script:
        run_custom_script(
            script_path=args.custom_script,
            decisions=decisions,
            context={
                "events_path": args.events,
                "config": config,
                "qa": qa,
                "output_path": args.out,
                "decisions_path": args.decisions_out,
            },
        )
    return 0


def run_custom_script(script_path: str, decisions: list[EventDecision], context: dict[str, Any]) -> None:
    """Execute user-supplied post-processing callback `process(decisions, context)`."""
    module = _load_module(script_path)
    process = getattr(module, "process", None)
    if process is None or not callable(process):
        raise ValueError(f"Custom script {script_path} must define callable process(decisions, context).")
    process(decisions, context)


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
