from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional, Tuple


class Outcome(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    WARN = "WARN"
    ERROR = "ERROR"


@dataclass(frozen=True)
class PlanFacts:
    """
    Facts read out of one EXPLAIN ANALYZE text plan.

    Numeric fields stay None when the plan does not show them; 0 means the
    plan really reported zero.
    """

    operators: FrozenSet[str] = frozenset()
    actual_rows: Optional[int] = None
    estimated_rows: Optional[int] = None
    buffer_reads: Optional[int] = None
    buffer_hits: Optional[int] = None
    external_sort_detected: bool = False
    sort_methods: FrozenSet[str] = frozenset()
    planning_time_ms: Optional[float] = None
    execution_time_ms: Optional[float] = None
    subplans_removed: Optional[int] = None
    workers_launched: Optional[int] = None
    plan_text: str = field(default="", repr=False)


@dataclass(frozen=True)
class Verdict:
    scenario_name: str
    outcome: Outcome
    reason: str
    raw_output: str = field(default="", repr=False)
    elapsed_ms: float = 0.0


@dataclass(frozen=True)
class Report:
    verdicts: Tuple[Verdict, ...] = ()
    pass_count: int = 0
    fail_count: int = 0
    warn_count: int = 0
    error_count: int = 0

    @property
    def total(self) -> int:
        return self.pass_count + self.fail_count + self.warn_count + self.error_count

    @property
    def failures(self) -> Tuple[Verdict, ...]:
        return tuple(
            v for v in self.verdicts if v.outcome in (Outcome.FAIL, Outcome.ERROR)
        )
