"""Orchestration tests with a fake session runner."""

import threading
import time

from pgtune_validate.errors import EngineConnectionError, ScenarioTimeout, StatementError
from pgtune_validate.models import Outcome
from pgtune_validate.predicates import MustContainOperator
from pgtune_validate.reporting import aggregate
from pgtune_validate.runner import run_all, run_scenario
from pgtune_validate.scenarios import Scenario

SORT_PLAN = (
    "Sort  (cost=10.00..11.00 rows=100 width=4) (actual time=0.1..0.2 rows=100 loops=1)\n"
    "  Sort Method: external merge  Disk: 352kB\n"
)
INDEX_PLAN = "Index Scan using t_pkey on t  (cost=0.29..8.31 rows=1 width=4) (actual time=0.02..0.02 rows=1 loops=1)\n"


def scenario(name, expect="external merge"):
    return Scenario(
        name=name,
        setup_statements=(),
        query="SELECT %s" % name,
        expected=MustContainOperator(expect),
    )


class FakeSessionRunner:
    """Answers each scenario from a dict of plan text or exception per name."""

    def __init__(self, outputs, delays=None):
        self.outputs = outputs
        self.delays = delays or {}
        self.calls = []
        self.timeouts = []
        self._lock = threading.Lock()

    def run(self, scenario, timeout=None):
        with self._lock:
            self.calls.append(scenario.name)
            self.timeouts.append(timeout)
        time.sleep(self.delays.get(scenario.name, 0))
        output = self.outputs[scenario.name]
        if isinstance(output, Exception):
            raise output
        return output


def test_pass_and_fail_verdicts():
    fake = FakeSessionRunner({"spill": SORT_PLAN, "no_spill": INDEX_PLAN})

    passed = run_scenario(fake, scenario("spill"))
    failed = run_scenario(fake, scenario("no_spill"))

    assert passed.outcome is Outcome.PASS
    assert failed.outcome is Outcome.FAIL
    assert "external merge" in failed.reason
    assert failed.raw_output == INDEX_PLAN
    assert failed.elapsed_ms >= 0


def test_timeout_becomes_error_verdict():
    fake = FakeSessionRunner({"slow": ScenarioTimeout("SELECT pg_sleep(10)", 1)})

    verdict = run_scenario(fake, scenario("slow"), timeout=1)

    assert verdict.outcome is Outcome.ERROR
    assert verdict.reason == "timeout"
    assert fake.timeouts == [1]


def test_statement_error_keeps_statement():
    fake = FakeSessionRunner({"bad": StatementError("SET work_mem = 'lots'", "invalid value for parameter")})

    verdict = run_scenario(fake, scenario("bad"))

    assert verdict.outcome is Outcome.ERROR
    assert verdict.reason == "statement failed: invalid value for parameter"
    assert verdict.raw_output == "invalid value for parameter\nSTATEMENT:  SET work_mem = 'lots'"


def test_connection_error_is_scenario_local():
    fake = FakeSessionRunner({
        "first": EngineConnectionError("server closed the connection unexpectedly"),
        "second": SORT_PLAN,
    })

    verdicts = run_all(fake, [scenario("first"), scenario("second")])

    assert [v.outcome for v in verdicts] == [Outcome.ERROR, Outcome.PASS]
    assert verdicts[0].reason.startswith("connection error:")


def test_unexpected_exception_still_yields_one_verdict():
    fake = FakeSessionRunner({"boom": RuntimeError("driver bug"), "fine": SORT_PLAN})

    verdicts = run_all(fake, [scenario("boom"), scenario("fine")])

    assert len(verdicts) == 2
    assert verdicts[0].outcome is Outcome.ERROR
    assert "RuntimeError" in verdicts[0].reason


def test_one_verdict_per_scenario_and_counts_sum():
    outputs = {
        "a": SORT_PLAN,
        "b": INDEX_PLAN,
        "c": ScenarioTimeout(),
        "d": SORT_PLAN,
        "e": StatementError("SELECT 1/0", "division by zero"),
    }
    scenarios = [scenario(name) for name in outputs]

    verdicts = run_all(FakeSessionRunner(outputs), scenarios)
    report = aggregate(verdicts)

    assert [v.scenario_name for v in verdicts] == list(outputs)
    assert report.total == len(scenarios)
    assert (report.pass_count, report.fail_count, report.warn_count, report.error_count) == (2, 1, 0, 2)


def test_parallel_keeps_declaration_order():
    names = ["first", "second", "third", "fourth"]
    # earlier scenarios finish last
    delays = {"first": 0.2, "second": 0.15, "third": 0.05, "fourth": 0}
    fake = FakeSessionRunner({name: SORT_PLAN for name in names}, delays=delays)
    seen = []

    verdicts = run_all(fake, [scenario(name) for name in names], parallel=4,
                       on_verdict=lambda v: seen.append(v.scenario_name))

    assert [v.scenario_name for v in verdicts] == names
    assert sorted(seen) == sorted(names)
    assert all(v.outcome is Outcome.PASS for v in verdicts)


def test_parallel_matches_sequential():
    outputs = {"a": SORT_PLAN, "b": INDEX_PLAN, "c": ScenarioTimeout(), "d": SORT_PLAN}
    scenarios = [scenario(name) for name in outputs]

    sequential = run_all(FakeSessionRunner(outputs), scenarios)
    parallel = run_all(FakeSessionRunner(outputs), scenarios, parallel=3)

    assert [(v.scenario_name, v.outcome, v.reason) for v in sequential] == \
        [(v.scenario_name, v.outcome, v.reason) for v in parallel]


def test_empty_scenario_list():
    assert run_all(FakeSessionRunner({}), []) == []
