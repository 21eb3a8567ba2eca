"""
PostgreSQL parameter tuning validation harness.

Runs EXPLAIN (ANALYZE, BUFFERS) scenarios against a running server, reads
the text plans into PlanFacts, and judges each scenario against its
expectations (operators present or absent, row estimate quality, buffer hit
ratio, timings).
"""

from .comparator import judge
from .models import Outcome, PlanFacts, Report, Verdict
from .plan_parser import parse
from .reporting import aggregate, exit_code
from .scenarios import Scenario, load_scenarios

__all__ = [
    "Outcome",
    "PlanFacts",
    "Report",
    "Scenario",
    "Verdict",
    "aggregate",
    "exit_code",
    "judge",
    "load_scenarios",
    "parse",
]

__version__ = "0.1.0"
