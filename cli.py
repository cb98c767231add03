"""Command-line entry point: run, sweep and summarise pharmacy accessibility scenarios."""

import argparse
import signal
import sys
import threading
from pathlib import Path

from config.defaults import SWEEP_START, SWEEP_STOP, SWEEP_STEP
from config.settings import AnalysisConfig, SOLVER_METHODS
from data.loader import load_prepared_inputs
from data.result_store import ResultStore
from data.routing_client import build_provider
from data.sample_data import generate_sample_csvs, generate_sample_excel
from engine.accessibility import SCENARIO_ERRORS, AccessibilityAnalysis
from engine.errors import ConfigurationError, InputDataError, ScenarioCancelled
from engine.summary import compare_scenarios, format_national_summary, national_summary, region_summary
from logging_config import get_logger, log_error, setup_logging

logger = get_logger("cli")

EXIT_OK = 0
EXIT_SCENARIO_FAILED = 1
EXIT_INVALID_INPUT = 2
EXIT_INTERRUPTED = 130


def _positive_int(value: str) -> int:
    n = int(value)
    if n < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return n


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pharmacy-access",
        description="Optimal pharmacy placement and population accessibility analysis",
    )
    parser.add_argument("--data-dir", type=Path, help="Directory with prepared pharmacy and population files")
    parser.add_argument("--results-dir", type=Path, help="Directory for persisted scenario results")
    parser.add_argument("--env-file", type=str, help="Path to a .env file with OPENROUTESERVICE_API_KEY")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    sub = parser.add_subparsers(dest="command", required=True)

    def add_analysis_args(p):
        p.add_argument("--offline", action="store_true",
                       help="Use straight-line isochrones instead of OpenRouteService")
        p.add_argument("--solver", choices=SOLVER_METHODS, help="MCLP solver method")
        p.add_argument("--radius-km", type=float, help="MCLP coverage radius in km")

    run = sub.add_parser("run", help="Run one scenario")
    run.add_argument("count", type=_positive_int, help="National number of pharmacies")
    add_analysis_args(run)

    sweep = sub.add_parser("sweep", help="Run a series of scenarios")
    sweep.add_argument("--counts", type=_positive_int, nargs="+", help="Explicit pharmacy counts")
    sweep.add_argument("--start", type=_positive_int, default=SWEEP_START)
    sweep.add_argument("--stop", type=_positive_int, default=SWEEP_STOP)
    sweep.add_argument("--step", type=_positive_int, default=SWEEP_STEP)
    sweep.add_argument("--parallel-scenarios", type=_positive_int, help="Scenarios to run at once")
    add_analysis_args(sweep)

    summarize = sub.add_parser("summarize", help="Summarise persisted results")
    summarize.add_argument("--counts", type=_positive_int, nargs="+", help="Counts to include (default: all)")
    summarize.add_argument("--output-dir", type=Path, help="Where to write summary CSVs (default: results dir)")

    sample = sub.add_parser("sample-data", help="Write a synthetic prepared dataset")
    sample.add_argument("--output-dir", type=Path, help="Target directory (default: data dir)")
    sample.add_argument("--seed", type=int, default=42)
    sample.add_argument("--xlsx", action="store_true", help="Also write .xlsx copies")

    return parser


def _sweep_counts(args) -> list:
    if args.counts:
        return sorted(set(args.counts))
    return list(range(args.start, args.stop + 1, args.step))


def _build_analysis(config: AnalysisConfig, offline: bool) -> AccessibilityAnalysis:
    provider = build_provider(config, offline=offline)
    candidates, demand = load_prepared_inputs(config)
    return AccessibilityAnalysis(
        config, demand, candidates, provider, store=ResultStore(config.results_dir),
    )


def _report_partial(result):
    for warning in result.warnings:
        logger.warning(
            f"Incomplete isochrones for facilities {list(warning.facility_ids)} "
            f"at {', '.join(f'{t:g}' for t in warning.thresholds_km)} km: {warning.message}",
            extra={"facility_count": result.facility_count_requested},
        )


def cmd_run(args, config: AnalysisConfig, cancel_event: threading.Event) -> int:
    analysis = _build_analysis(config, args.offline)
    try:
        result = analysis.run_scenario(args.count, cancel_event)
    except SCENARIO_ERRORS as exc:
        log_error(logger, exc.kind, str(exc), facility_count=args.count)
        return EXIT_SCENARIO_FAILED

    _report_partial(result)
    stats = national_summary(result.to_frame())
    print(format_national_summary(args.count, stats))
    return EXIT_OK


def cmd_sweep(args, config: AnalysisConfig, cancel_event: threading.Event) -> int:
    counts = _sweep_counts(args)
    if not counts:
        raise ConfigurationError("Sweep range is empty; check --start/--stop/--step")

    analysis = _build_analysis(config, args.offline)
    report = analysis.run_sweep(counts, cancel_event)

    for n in sorted(report.results):
        _report_partial(report.results[n])
    for n, error in sorted(report.failures.items()):
        print(f"Scenario {n}: FAILED ({error.kind}) {error}")
    for n in sorted(report.results):
        status = "partial" if report.results[n].is_partial else "ok"
        print(f"Scenario {n}: {status}")

    return EXIT_OK if report.ok else EXIT_SCENARIO_FAILED


def cmd_summarize(args, config: AnalysisConfig) -> int:
    store = ResultStore(config.results_dir)
    counts = sorted(set(args.counts)) if args.counts else store.available_counts()
    if not counts:
        raise InputDataError(f"No persisted results found in {config.results_dir}")
    try:
        frames = store.load_all(counts)
    except FileNotFoundError as exc:
        raise InputDataError(str(exc)) from exc

    output_dir = args.output_dir or config.results_dir
    output_dir.mkdir(parents=True, exist_ok=True)

    comparison = compare_scenarios(frames)
    comparison.to_csv(output_dir / "scenario_comparison.csv", index=False)
    for n, frame in frames.items():
        region_summary(frame, by="county").to_csv(
            output_dir / f"county_summary_{n}_pharmacies.csv", index=False
        )
        region_summary(frame, by="municipality").to_csv(
            output_dir / f"municipal_summary_{n}_pharmacies.csv", index=False
        )
        print(format_national_summary(n, national_summary(frame)))
        print()

    logger.info(f"Summaries for {len(frames)} scenarios written to {output_dir}")
    return EXIT_OK


def cmd_sample_data(args, config: AnalysisConfig) -> int:
    output_dir = args.output_dir or config.data_dir
    generate_sample_csvs(str(output_dir), seed=args.seed)
    if args.xlsx:
        generate_sample_excel(str(output_dir), seed=args.seed)
    print(f"Sample prepared inputs written to {output_dir}/")
    return EXIT_OK


def _install_interrupt_handler(cancel_event: threading.Event):
    """First Ctrl-C sets the cancel event so queued work is dropped; a second one aborts."""
    if threading.current_thread() is not threading.main_thread():
        return None

    def handle(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        cancel_event.set()
        logger.warning("Interrupt received; finishing in-flight requests (Ctrl-C again to abort)")

    return signal.signal(signal.SIGINT, handle)


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level, json_format=args.json_logs)

    cancel_event = threading.Event()
    previous_handler = _install_interrupt_handler(cancel_event)
    try:
        overrides = {
            "data_dir": args.data_dir,
            "results_dir": args.results_dir,
            "solver_method": getattr(args, "solver", None),
            "radius_km": getattr(args, "radius_km", None),
            "max_parallel_scenarios": getattr(args, "parallel_scenarios", None),
        }
        config = AnalysisConfig.from_env(args.env_file, **overrides)

        if args.command == "run":
            return cmd_run(args, config, cancel_event)
        if args.command == "sweep":
            return cmd_sweep(args, config, cancel_event)
        if args.command == "summarize":
            return cmd_summarize(args, config)
        return cmd_sample_data(args, config)
    except (ConfigurationError, InputDataError) as exc:
        log_error(logger, exc.kind, str(exc))
        return EXIT_INVALID_INPUT
    except (ScenarioCancelled, KeyboardInterrupt):
        cancel_event.set()
        logger.warning("Interrupted; in-flight work discarded, nothing further persisted")
        return EXIT_INTERRUPTED
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)


if __name__ == "__main__":
    sys.exit(main())
