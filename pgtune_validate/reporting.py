import csv
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterable

import matplotlib
matplotlib.use('Agg')  # charts go to files, no display
import matplotlib.pyplot as plt
import numpy as np
from tabulate import tabulate

from .models import Outcome, Report, Verdict

SYMBOLS = {
    Outcome.PASS: "✅",
    Outcome.FAIL: "❌",
    Outcome.WARN: "⚠️",
    Outcome.ERROR: "💥",
}

_COUNTER = {
    Outcome.PASS: "pass_count",
    Outcome.FAIL: "fail_count",
    Outcome.WARN: "warn_count",
    Outcome.ERROR: "error_count",
}


def aggregate(verdicts: Iterable[Verdict]) -> Report:
    counts = {name: 0 for name in _COUNTER.values()}
    ordered = []
    for verdict in verdicts:
        counts[_COUNTER[verdict.outcome]] += 1
        ordered.append(verdict)
    return Report(verdicts=tuple(ordered), **counts)


def exit_code(report: Report) -> int:
    """0 when nothing failed or errored. Warnings never change the exit code."""
    return 0 if report.fail_count == 0 and report.error_count == 0 else 1


def print_section(title):
    print(f"\n{'=' * 70}")
    print(f" {title}")
    print('=' * 70)


def truncate(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + "\n... (%d more characters)" % (len(text) - limit)


def format_verdict(verdict: Verdict) -> str:
    return "%s %s [%s] %s" % (
        SYMBOLS[verdict.outcome],
        verdict.scenario_name,
        verdict.outcome.value,
        verdict.reason,
    )


def format_report(report: Report, truncate_at: int = 2000) -> str:
    rows = [
        [idx, verdict.scenario_name, verdict.outcome.value, verdict.reason, "%.1f" % verdict.elapsed_ms]
        for idx, verdict in enumerate(report.verdicts, start=1)
    ]
    parts = [
        tabulate(rows, headers=["#", "scenario", "outcome", "reason", "ms"], tablefmt="psql")
    ]

    for verdict in report.failures:
        if verdict.raw_output:
            parts.append("")
            parts.append("--- %s (%s) ---" % (verdict.scenario_name, verdict.outcome.value))
            parts.append(truncate(verdict.raw_output, truncate_at))

    parts.append("")
    parts.append(
        "Total: %d  Pass: %d  Fail: %d  Warn: %d  Error: %d"
        % (report.total, report.pass_count, report.fail_count, report.warn_count, report.error_count)
    )
    return "\n".join(parts)


def print_report(report: Report, truncate_at: int = 2000) -> None:
    print_section("Validation Results")
    print(format_report(report, truncate_at))


def to_dict(report: Report) -> Dict[str, Any]:
    return {
        "total": report.total,
        "pass_count": report.pass_count,
        "fail_count": report.fail_count,
        "warn_count": report.warn_count,
        "error_count": report.error_count,
        "verdicts": [
            {
                "scenario_name": v.scenario_name,
                "outcome": v.outcome.value,
                "reason": v.reason,
                "elapsed_ms": round(v.elapsed_ms, 3),
                "raw_output": v.raw_output,
            }
            for v in report.verdicts
        ],
    }


def to_json(report: Report) -> str:
    return json.dumps(to_dict(report), ensure_ascii=False, indent=2)


def export_json(report: Report, path: str) -> str:
    _ensure_parent(path)
    with open(path, "w", encoding="utf-8") as fp:
        fp.write(to_json(report))
    return path


def export_csv(report: Report, path: str) -> str:
    """One row per verdict, for CI dashboards."""
    _ensure_parent(path)
    fieldnames = ["scenario_name", "outcome", "reason", "elapsed_ms"]
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for verdict in report.verdicts:
            writer.writerow({
                "scenario_name": verdict.scenario_name,
                "outcome": verdict.outcome.value,
                "reason": verdict.reason,
                "elapsed_ms": "%.3f" % verdict.elapsed_ms,
            })
    return path


def save_chart(report: Report, path: str) -> str:
    """Outcome counts next to per-scenario elapsed time, saved as an image."""
    colors = {
        Outcome.PASS: '#2ecc71',
        Outcome.FAIL: '#e74c3c',
        Outcome.WARN: '#f1c40f',
        Outcome.ERROR: '#8e44ad',
    }

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(14, 6), gridspec_kw={'width_ratios': [1, 3]})

    outcomes = list(Outcome)
    counts = [getattr(report, _COUNTER[o]) for o in outcomes]
    bars = ax1.bar([o.value for o in outcomes], counts,
                   color=[colors[o] for o in outcomes], edgecolor='black')
    ax1.set_title('Verdicts', fontsize=14, fontweight='bold')
    ax1.set_ylabel('Scenarios', fontsize=12)
    for bar, count in zip(bars, counts):
        ax1.text(bar.get_x() + bar.get_width() / 2, bar.get_height(), str(count),
                 ha='center', va='bottom')

    names = [v.scenario_name for v in report.verdicts]
    x = np.arange(len(names))
    ax2.bar(x, [v.elapsed_ms for v in report.verdicts],
            color=[colors[v.outcome] for v in report.verdicts], edgecolor='black')
    ax2.set_title('Elapsed time per scenario', fontsize=14, fontweight='bold')
    ax2.set_ylabel('ms', fontsize=12)
    ax2.set_xticks(x)
    ax2.set_xticklabels(names, rotation=45, ha='right')

    plt.tight_layout()
    _ensure_parent(path)
    fig.savefig(path, dpi=150, bbox_inches='tight', facecolor='white')
    plt.close(fig)
    return path


def _ensure_parent(path: str) -> None:
    parent = Path(path).parent
    if str(parent) not in ("", "."):
        os.makedirs(parent, exist_ok=True)
