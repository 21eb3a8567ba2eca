from typing import Tuple

from .models import Outcome, PlanFacts, Verdict
from .predicates import Predicate


def judge(facts: PlanFacts, expected: Predicate) -> Tuple[Outcome, str]:
    return expected.evaluate(facts)


def verdict_for(scenario, facts: PlanFacts, raw_output: str, elapsed_ms: float = 0.0) -> Verdict:
    """
    Judge one scenario's facts. A scenario marked severity=warn reports an
    unmet expectation as WARN instead of FAIL.
    """
    outcome, reason = judge(facts, scenario.expected)
    if outcome is Outcome.FAIL and scenario.severity == "warn":
        outcome = Outcome.WARN
    return Verdict(
        scenario_name=scenario.name,
        outcome=outcome,
        reason=reason,
        raw_output=raw_output,
        elapsed_ms=elapsed_ms,
    )


def error_verdict(scenario, reason: str, raw_output: str = "", elapsed_ms: float = 0.0) -> Verdict:
    return Verdict(
        scenario_name=scenario.name,
        outcome=Outcome.ERROR,
        reason=reason,
        raw_output=raw_output,
        elapsed_ms=elapsed_ms,
    )
