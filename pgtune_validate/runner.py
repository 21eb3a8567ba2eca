import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence

from . import plan_parser
from .comparator import error_verdict, verdict_for
from .errors import EngineConnectionError, ScenarioTimeout, StatementError
from .models import Verdict

logger = logging.getLogger(__name__)


def run_scenario(session_runner, scenario, timeout: Optional[float] = None) -> Verdict:
    """Run, parse and judge one scenario. Always returns exactly one Verdict."""
    start = time.perf_counter()

    def _elapsed():
        return (time.perf_counter() - start) * 1000.0

    try:
        raw_output = session_runner.run(scenario, timeout=timeout)
    except ScenarioTimeout:
        return error_verdict(scenario, "timeout", elapsed_ms=_elapsed())
    except StatementError as exc:
        # engine message first, then the statement, as in the server log
        raw_output = "%s\nSTATEMENT:  %s" % (exc.message, exc.statement)
        return error_verdict(
            scenario, "statement failed: %s" % exc.message, raw_output=raw_output, elapsed_ms=_elapsed()
        )
    except EngineConnectionError as exc:
        return error_verdict(scenario, "connection error: %s" % exc, elapsed_ms=_elapsed())
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Scenario %s crashed", scenario.name)
        return error_verdict(
            scenario, "unexpected %s: %s" % (type(exc).__name__, exc), elapsed_ms=_elapsed()
        )

    facts = plan_parser.parse(raw_output)
    return verdict_for(scenario, facts, raw_output, elapsed_ms=_elapsed())


def run_all(
    session_runner,
    scenarios: Sequence,
    timeout: Optional[float] = None,
    parallel: int = 1,
    on_verdict: Optional[Callable[[Verdict], None]] = None,
) -> List[Verdict]:
    """
    Run every scenario; verdicts come back in declaration order.

    With parallel > 1 each worker opens its own session per scenario. Verdicts
    land in fixed slots and are only returned after every worker finished.
    """
    slots: List[Optional[Verdict]] = [None] * len(scenarios)

    if parallel <= 1 or len(scenarios) <= 1:
        for idx, scenario in enumerate(scenarios):
            slots[idx] = run_scenario(session_runner, scenario, timeout)
            if on_verdict:
                on_verdict(slots[idx])
    else:
        lock = threading.Lock()

        def _run(idx):
            verdict = run_scenario(session_runner, scenarios[idx], timeout)
            with lock:
                slots[idx] = verdict
                if on_verdict:
                    on_verdict(verdict)

        with ThreadPoolExecutor(max_workers=parallel) as pool:
            futures = [pool.submit(_run, idx) for idx in range(len(scenarios))]
            for future in as_completed(futures):
                future.result()

    return [verdict for verdict in slots if verdict is not None]
