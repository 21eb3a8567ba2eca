import argparse
import logging
import sys
from typing import Optional

from tabulate import tabulate

from . import plan_parser, reporting, runner
from .comparator import judge
from .config import env_override, load_config, to_timeout
from .errors import ConfigError, EngineConnectionError
from .models import Outcome
from .predicates import parse_expectations
from .scenarios import load_scenarios
from .session import SessionRunner

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def main(argv: Optional[list] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _setup_logging(getattr(args, "verbose", False))

    try:
        if args.command == "run":
            return _run(args)
        if args.command == "check":
            return _check(args)
        if args.command == "parse":
            return _parse(args)
        if args.command == "list":
            return _list(args)
    except ConfigError as exc:
        print("Config error: %s" % exc, file=sys.stderr)
        return EXIT_CONFIG

    parser.print_help()
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pgtune-validate",
        description="Check PostgreSQL parameter tuning effects with EXPLAIN ANALYZE scenarios.",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    run_cmd = sub.add_parser(
        "run",
        help="Run scenarios and report PASS/FAIL/WARN/ERROR per scenario.",
        formatter_class=argparse.RawTextHelpFormatter,
        epilog="""examples:
  pgtune-validate run --config scenarios/workshop.ini
  pgtune-validate run --config scenarios/workshop.ini --parallel 4 --timeout 30
  pgtune-validate run --config scenarios/workshop.ini --scenario low_work_mem_sort --csv out/results.csv

exit codes: 0 all passed (warnings allowed), 1 any FAIL/ERROR,
            2 config or connection error before any scenario ran""",
    )
    _add_config_arg(run_cmd)
    run_cmd.add_argument(
        "--timeout",
        type=float,
        help="Per-scenario time budget in seconds (0 disables). Overrides [harness] timeout.",
    )
    run_cmd.add_argument(
        "--parallel",
        type=int,
        help="Concurrent scenarios, each on its own session. Overrides [harness] parallel.",
    )
    run_cmd.add_argument(
        "--scenario",
        action="append",
        help="Only run the named scenario (can be passed multiple times).",
    )
    run_cmd.add_argument("--csv", help="Also write verdicts to this CSV file.")
    run_cmd.add_argument("--json", help="Also write the full report to this JSON file.")
    run_cmd.add_argument("--graph", help="Also save a verdict chart (PNG) to this path.")
    _add_verbose_arg(run_cmd)

    check_cmd = sub.add_parser("check", help="Only test the database connection (SELECT version()).")
    _add_config_arg(check_cmd)
    _add_verbose_arg(check_cmd)

    parse_cmd = sub.add_parser(
        "parse",
        help="Parse a saved EXPLAIN ANALYZE text plan, optionally judging expectations.",
        formatter_class=argparse.RawTextHelpFormatter,
        epilog="""examples:
  pgtune-validate parse --plan-file /tmp/low_work_mem.out --expect "contains external merge"
  psql -c "EXPLAIN (ANALYZE, BUFFERS) ..." | pgtune-validate parse --plan-file -""",
    )
    parse_cmd.add_argument("--plan-file", required=True, help="Plan text file, '-' for stdin.")
    parse_cmd.add_argument(
        "--expect",
        action="append",
        help="Expectation line, e.g. 'contains Index Scan' (can be passed multiple times).",
    )
    _add_verbose_arg(parse_cmd)

    list_cmd = sub.add_parser("list", help="List scenarios defined in the config file.")
    _add_config_arg(list_cmd)
    _add_verbose_arg(list_cmd)

    return parser


def _add_config_arg(cmd):
    cmd.add_argument(
        "--config",
        required=True,
        help="INI file with [postgres], [harness] and [scenario <name>] sections.",
    )


def _add_verbose_arg(cmd):
    cmd.add_argument("-v", "--verbose", action="store_true", help="Log progress and SQL.")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(args):
    cfg = env_override(load_config(args.config))
    if getattr(args, "timeout", None) is not None:
        cfg.harness.timeout = to_timeout(args.timeout, "--timeout")
    if getattr(args, "parallel", None) is not None:
        if args.parallel < 1:
            raise ConfigError("--parallel must be at least 1")
        cfg.harness.parallel = args.parallel
    return cfg


def _connection_failed(exc) -> int:
    print("Cannot connect to the database: %s" % exc, file=sys.stderr)
    print("Is the server running? e.g. docker-compose up -d", file=sys.stderr)
    return EXIT_CONFIG


def _run(args) -> int:
    cfg = _load(args)
    scenarios = load_scenarios(args.config, only=args.scenario)
    session_runner = SessionRunner(cfg.postgres)

    try:
        version = session_runner.check_connection()
    except EngineConnectionError as exc:
        return _connection_failed(exc)
    print("Connected: %s" % version)
    print("Running %d scenario(s), timeout=%s, parallel=%d"
          % (len(scenarios), cfg.harness.timeout or "none", cfg.harness.parallel))

    verdicts = runner.run_all(
        session_runner,
        scenarios,
        timeout=cfg.harness.timeout,
        parallel=cfg.harness.parallel,
        on_verdict=lambda v: print(reporting.format_verdict(v)),
    )
    report = reporting.aggregate(verdicts)
    reporting.print_report(report, cfg.harness.truncate)

    if args.csv:
        print("CSV written to %s" % reporting.export_csv(report, args.csv))
    if args.json:
        print("JSON written to %s" % reporting.export_json(report, args.json))
    if args.graph:
        print("[Graph Saved] %s" % reporting.save_chart(report, args.graph))
    return reporting.exit_code(report)


def _check(args) -> int:
    cfg = _load(args)
    try:
        version = SessionRunner(cfg.postgres).check_connection()
    except EngineConnectionError as exc:
        return _connection_failed(exc)
    print("Database connection successful: %s" % version)
    return EXIT_OK


def _parse(args) -> int:
    if args.plan_file == "-":
        # parse() decodes bytes with errors="replace"
        raw = sys.stdin.buffer.read()
    else:
        try:
            with open(args.plan_file, "rb") as fp:
                raw = fp.read()
        except OSError as exc:
            raise ConfigError("Cannot read plan file: %s" % exc) from exc

    facts = plan_parser.parse(raw)
    rows = [
        ["operators", ", ".join(sorted(facts.operators)) or "-"],
        ["estimated_rows", _or_dash(facts.estimated_rows)],
        ["actual_rows", _or_dash(facts.actual_rows)],
        ["buffer_hits", _or_dash(facts.buffer_hits)],
        ["buffer_reads", _or_dash(facts.buffer_reads)],
        ["external_sort_detected", facts.external_sort_detected],
        ["sort_methods", ", ".join(sorted(facts.sort_methods)) or "-"],
        ["planning_time_ms", _or_dash(facts.planning_time_ms)],
        ["execution_time_ms", _or_dash(facts.execution_time_ms)],
        ["subplans_removed", _or_dash(facts.subplans_removed)],
        ["workers_launched", _or_dash(facts.workers_launched)],
    ]
    print(tabulate(rows, headers=["fact", "value"], tablefmt="psql"))

    if not args.expect:
        return EXIT_OK
    outcome, reason = judge(facts, parse_expectations(args.expect))
    print("%s %s" % (outcome.value, reason))
    return EXIT_FAILED if outcome is Outcome.FAIL else EXIT_OK


def _list(args) -> int:
    scenarios = load_scenarios(args.config)
    rows = [
        [s.name, len(s.setup_statements), s.expected.describe(), s.severity, s.description]
        for s in scenarios
    ]
    print(tabulate(rows, headers=["scenario", "setup", "expect", "severity", "description"],
                   tablefmt="psql"))
    return EXIT_OK


def _or_dash(value):
    return "-" if value is None else value


if __name__ == "__main__":
    sys.exit(main())
