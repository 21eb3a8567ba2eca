import csv
import json

from pgtune_validate.models import Outcome, Verdict
from pgtune_validate.reporting import (
    aggregate,
    export_csv,
    export_json,
    exit_code,
    format_report,
    format_verdict,
    save_chart,
    truncate,
)


def verdict(name, outcome, reason="", raw_output="", elapsed_ms=1.0):
    return Verdict(scenario_name=name, outcome=outcome, reason=reason,
                   raw_output=raw_output, elapsed_ms=elapsed_ms)


def sample_report():
    return aggregate([
        verdict("spill", Outcome.PASS, "found operator 'external merge'"),
        verdict("pk_lookup", Outcome.FAIL, "missing operator 'Index Scan'", raw_output="Seq Scan on t\n" * 500),
        verdict("gin", Outcome.WARN, "insufficient data: no Buffers line in plan"),
        verdict("slow", Outcome.ERROR, "timeout"),
    ])


def test_aggregate_counts_and_order():
    report = sample_report()

    assert [v.scenario_name for v in report.verdicts] == ["spill", "pk_lookup", "gin", "slow"]
    assert (report.pass_count, report.fail_count, report.warn_count, report.error_count) == (1, 1, 1, 1)
    assert report.total == 4


def test_aggregate_empty():
    report = aggregate([])
    assert report.total == 0
    assert exit_code(report) == 0


def test_warnings_do_not_change_exit_code():
    report = aggregate([verdict("a", Outcome.PASS), verdict("b", Outcome.WARN)])
    assert exit_code(report) == 0


def test_fail_or_error_exits_one():
    assert exit_code(aggregate([verdict("a", Outcome.PASS), verdict("b", Outcome.FAIL)])) == 1
    assert exit_code(aggregate([verdict("a", Outcome.ERROR)])) == 1


def test_truncate():
    assert truncate("short", 100) == "short"
    cut = truncate("x" * 150, 100)
    assert cut.startswith("x" * 100)
    assert cut.endswith("(50 more characters)")
    assert truncate("x" * 150, 0) == "x" * 150


def test_format_report():
    text = format_report(sample_report(), truncate_at=100)

    for name in ("spill", "pk_lookup", "gin", "slow"):
        assert name in text
    assert "--- pk_lookup (FAIL) ---" in text
    assert "more characters" in text
    # passing scenarios do not dump their plan
    assert "--- spill" not in text
    assert text.splitlines()[-1] == "Total: 4  Pass: 1  Fail: 1  Warn: 1  Error: 1"


def test_format_verdict():
    line = format_verdict(verdict("slow", Outcome.ERROR, "timeout"))
    assert "slow [ERROR] timeout" in line


def test_export_csv(tmp_path):
    path = export_csv(sample_report(), str(tmp_path / "out" / "results.csv"))

    with open(path, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert [r["scenario_name"] for r in rows] == ["spill", "pk_lookup", "gin", "slow"]
    assert rows[3]["outcome"] == "ERROR"
    assert rows[3]["reason"] == "timeout"


def test_export_json(tmp_path):
    path = export_json(sample_report(), str(tmp_path / "results.json"))

    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert data["total"] == 4
    assert data["fail_count"] == 1
    assert data["verdicts"][1]["outcome"] == "FAIL"


def test_save_chart(tmp_path):
    path = save_chart(sample_report(), str(tmp_path / "charts" / "verdicts.png"))

    with open(path, "rb") as f:
        assert f.read(8) == b"\x89PNG\r\n\x1a\n"


def test_failed_statement_shown_with_engine_message():
    report = aggregate([
        verdict("bad_setup", Outcome.ERROR, "statement failed: invalid value for parameter",
                raw_output="ERROR:  invalid value for parameter \"work_mem\"\nSTATEMENT:  SET work_mem = 'lots'"),
    ])

    lines = format_report(report).splitlines()
    start = lines.index("--- bad_setup (ERROR) ---")
    assert lines[start + 1].startswith("ERROR:  invalid value")
    assert lines[start + 2] == "STATEMENT:  SET work_mem = 'lots'"
