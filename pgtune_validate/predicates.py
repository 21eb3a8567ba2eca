"""
Expectations a scenario places on its plan.

Each predicate answers evaluate(facts) -> (Outcome, reason). A predicate that
needs a fact the plan did not show answers WARN ("insufficient data"), never
FAIL: what EXPLAIN prints depends on server version and settings.

Scenario files spell predicates one per line:

    contains external merge
    not_contains Index Scan
    any_of Hash Join, Nested Loop, Merge Join
    rows_within 10
    text Subplans Removed
    not_text Heap Fetches
    min_actual_rows 10000
    hit_ratio_at_least 0.9
    execution_time_below 500
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Sequence, Tuple

from .errors import ConfigError
from .models import Outcome, PlanFacts
from .plan_parser import known_operator

logger = logging.getLogger(__name__)

INSUFFICIENT_DATA = "insufficient data"


def _has_operator(facts: PlanFacts, name: str) -> bool:
    needle = name.strip().lower()
    return any(needle in op.lower() for op in facts.operators)


def _shown(facts: PlanFacts) -> str:
    return ", ".join(sorted(facts.operators)) or "none"


class Predicate(ABC):
    @abstractmethod
    def evaluate(self, facts: PlanFacts) -> Tuple[Outcome, str]:
        pass

    @abstractmethod
    def describe(self) -> str:
        pass

    def __repr__(self):
        return "%s(%s)" % (type(self).__name__, self.describe())

    def __eq__(self, other):
        return type(self) is type(other) and self.__dict__ == other.__dict__

    def __hash__(self):
        return hash((type(self).__name__, self.describe()))


class MustContainOperator(Predicate):
    def __init__(self, name: str):
        self.name = name

    def evaluate(self, facts):
        if _has_operator(facts, self.name):
            return Outcome.PASS, "found operator '%s'" % self.name
        return Outcome.FAIL, "missing operator '%s' (plan shows: %s)" % (self.name, _shown(facts))

    def describe(self):
        return "contains %s" % self.name


class MustNotContainOperator(Predicate):
    def __init__(self, name: str):
        self.name = name

    def evaluate(self, facts):
        if _has_operator(facts, self.name):
            return Outcome.FAIL, "unexpected operator '%s' (plan shows: %s)" % (self.name, _shown(facts))
        return Outcome.PASS, "operator '%s' absent" % self.name

    def describe(self):
        return "not_contains %s" % self.name


class AnyOperator(Predicate):
    def __init__(self, names: Sequence[str]):
        self.names = tuple(names)

    def evaluate(self, facts):
        for name in self.names:
            if _has_operator(facts, name):
                return Outcome.PASS, "found operator '%s'" % name
        return Outcome.FAIL, "none of %s in plan (plan shows: %s)" % (
            ", ".join("'%s'" % n for n in self.names),
            _shown(facts),
        )

    def describe(self):
        return "any_of %s" % ", ".join(self.names)


class RowEstimateWithinFactor(Predicate):
    """Planner row estimate and actual rows agree within max_ratio either way."""

    def __init__(self, max_ratio: float):
        if max_ratio < 1:
            raise ValueError("max_ratio must be >= 1")
        self.max_ratio = max_ratio

    def evaluate(self, facts):
        if facts.actual_rows is None or facts.estimated_rows is None:
            return Outcome.WARN, "%s: row estimate needs both estimated and actual rows" % INSUFFICIENT_DATA
        # the planner never estimates below one row; clamp both sides the same way
        actual = max(facts.actual_rows, 1)
        estimated = max(facts.estimated_rows, 1)
        ratio = max(actual / estimated, estimated / actual)
        detail = "actual=%s estimated=%s ratio=%.2f" % (facts.actual_rows, facts.estimated_rows, ratio)
        if ratio <= self.max_ratio:
            return Outcome.PASS, "row estimate within %gx (%s)" % (self.max_ratio, detail)
        return Outcome.FAIL, "row estimate off by more than %gx (%s)" % (self.max_ratio, detail)

    def describe(self):
        return "rows_within %g" % self.max_ratio


class MustContainText(Predicate):
    def __init__(self, text: str):
        self.text = text

    def evaluate(self, facts):
        if self.text.lower() in facts.plan_text.lower():
            return Outcome.PASS, "plan mentions '%s'" % self.text
        return Outcome.FAIL, "plan does not mention '%s'" % self.text

    def describe(self):
        return "text %s" % self.text


class MustNotContainText(Predicate):
    def __init__(self, text: str):
        self.text = text

    def evaluate(self, facts):
        if self.text.lower() in facts.plan_text.lower():
            return Outcome.FAIL, "plan unexpectedly mentions '%s'" % self.text
        return Outcome.PASS, "plan does not mention '%s'" % self.text

    def describe(self):
        return "not_text %s" % self.text


class ActualRowsAtLeast(Predicate):
    def __init__(self, minimum: int):
        self.minimum = minimum

    def evaluate(self, facts):
        if facts.actual_rows is None:
            return Outcome.WARN, "%s: no actual row count in plan" % INSUFFICIENT_DATA
        if facts.actual_rows >= self.minimum:
            return Outcome.PASS, "%s rows (expected: %s+)" % (facts.actual_rows, self.minimum)
        return Outcome.FAIL, "%s rows (expected: %s+)" % (facts.actual_rows, self.minimum)

    def describe(self):
        return "min_actual_rows %s" % self.minimum


class BufferHitRatioAtLeast(Predicate):
    def __init__(self, min_ratio: float):
        if not 0 <= min_ratio <= 1:
            raise ValueError("min_ratio must be between 0 and 1")
        self.min_ratio = min_ratio

    def evaluate(self, facts):
        if facts.buffer_hits is None and facts.buffer_reads is None:
            return Outcome.WARN, "%s: no Buffers line in plan" % INSUFFICIENT_DATA
        hits = facts.buffer_hits or 0
        reads = facts.buffer_reads or 0
        if hits + reads == 0:
            return Outcome.WARN, "%s: no shared buffers touched" % INSUFFICIENT_DATA
        ratio = hits / (hits + reads)
        detail = "hit=%s read=%s ratio=%.2f" % (hits, reads, ratio)
        if ratio >= self.min_ratio:
            return Outcome.PASS, "buffer hit ratio ok (%s)" % detail
        return Outcome.FAIL, "buffer hit ratio below %g (%s)" % (self.min_ratio, detail)

    def describe(self):
        return "hit_ratio_at_least %g" % self.min_ratio


class ExecutionTimeBelow(Predicate):
    def __init__(self, max_ms: float):
        self.max_ms = max_ms

    def evaluate(self, facts):
        if facts.execution_time_ms is None:
            return Outcome.WARN, "%s: no Execution Time in plan" % INSUFFICIENT_DATA
        if facts.execution_time_ms < self.max_ms:
            return Outcome.PASS, "execution %.3f ms < %g ms" % (facts.execution_time_ms, self.max_ms)
        return Outcome.FAIL, "execution %.3f ms >= %g ms" % (facts.execution_time_ms, self.max_ms)

    def describe(self):
        return "execution_time_below %g" % self.max_ms


class CompositeAnd(Predicate):
    """
    All children must hold. The first FAIL decides; without a FAIL the first
    WARN decides; otherwise PASS.
    """

    def __init__(self, children: Sequence[Predicate]):
        self.children = tuple(children)

    def evaluate(self, facts):
        warning = None
        for child in self.children:
            outcome, reason = child.evaluate(facts)
            if outcome is Outcome.FAIL:
                return outcome, reason
            if outcome is Outcome.WARN and warning is None:
                warning = reason
        if warning is not None:
            return Outcome.WARN, warning
        if not self.children:
            return Outcome.PASS, "no expectations"
        if len(self.children) == 1:
            return self.children[0].evaluate(facts)
        return Outcome.PASS, "all %d expectations met" % len(self.children)

    def describe(self):
        return "; ".join(child.describe() for child in self.children)


# =============================================================================
# Expectation lines
# =============================================================================

def _operator(arg):
    if known_operator(arg) is None:
        logger.debug("'%s' is not a known operator name, matching as substring", arg)
    return arg


def _number(kind, arg, cast):
    try:
        return cast(arg)
    except ValueError as exc:
        raise ConfigError("'%s' expects a number, got %r" % (kind, arg)) from exc


def parse_expectation(line: str) -> Predicate:
    """One expectation line -> Predicate. Raises ConfigError on bad input."""
    text = line.strip()
    kind, _, arg = text.partition(" ")
    kind = kind.lower()
    arg = arg.strip()
    if not arg:
        raise ConfigError("Expectation '%s' is missing its argument" % text)

    try:
        if kind == "contains":
            return MustContainOperator(_operator(arg))
        if kind == "not_contains":
            return MustNotContainOperator(_operator(arg))
        if kind == "any_of":
            names = [n.strip() for n in arg.split(",") if n.strip()]
            return AnyOperator([_operator(n) for n in names])
        if kind == "rows_within":
            return RowEstimateWithinFactor(_number(kind, arg, float))
        if kind == "text":
            return MustContainText(arg)
        if kind == "not_text":
            return MustNotContainText(arg)
        if kind == "min_actual_rows":
            return ActualRowsAtLeast(_number(kind, arg, int))
        if kind == "hit_ratio_at_least":
            return BufferHitRatioAtLeast(_number(kind, arg, float))
        if kind == "execution_time_below":
            return ExecutionTimeBelow(_number(kind, arg, float))
    except ValueError as exc:
        raise ConfigError("Bad expectation '%s': %s" % (text, exc)) from exc
    raise ConfigError("Unknown expectation '%s'" % kind)


def parse_expectations(lines: Sequence[str]) -> Predicate:
    predicates: List[Predicate] = [
        parse_expectation(line) for line in lines if line.strip() and not line.strip().startswith("#")
    ]
    if not predicates:
        raise ConfigError("At least one expectation is required")
    if len(predicates) == 1:
        return predicates[0]
    return CompositeAnd(predicates)
