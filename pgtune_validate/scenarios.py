"""
Scenario definitions.

Scenarios live in the same INI file as the connection settings, one section
each:

    [scenario low_work_mem_sort]
    description = Low work_mem causes external merge
    setup =
        SET work_mem = '1MB'
    query =
        SELECT department, AVG(salary)
        FROM employee_salaries
        GROUP BY department
        ORDER BY AVG(salary) DESC
    expect =
        contains external merge

setup holds one statement per line (a trailing ';' is dropped). expect holds
one expectation per line and all of them must hold.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .config import read_parser
from .errors import ConfigError
from .predicates import Predicate, parse_expectations

SECTION_PREFIX = "scenario "
SEVERITIES = ("fail", "warn")


@dataclass(frozen=True)
class Scenario:
    name: str
    setup_statements: Tuple[str, ...]
    query: str
    expected: Predicate = field(compare=False)
    description: str = ""
    severity: str = "fail"

    def __post_init__(self):
        if not self.name:
            raise ConfigError("Scenario name must not be empty")
        if not self.query.strip():
            raise ConfigError("Scenario %s has no query" % self.name)
        if self.severity not in SEVERITIES:
            raise ConfigError(
                "Scenario %s: severity must be one of %s" % (self.name, ", ".join(SEVERITIES))
            )


def load_scenarios(path: str, only: Optional[Sequence[str]] = None) -> List[Scenario]:
    """Scenarios in file order, optionally filtered to the given names."""
    parser = read_parser(path)
    scenarios = []
    for section in parser.sections():
        if not section.startswith(SECTION_PREFIX):
            continue
        name = section[len(SECTION_PREFIX):].strip()
        scenarios.append(_scenario_from_section(name, dict(parser.items(section))))

    if not scenarios:
        raise ConfigError("No [scenario <name>] sections in %s" % path)

    if only:
        known = {s.name for s in scenarios}
        missing = [name for name in only if name not in known]
        if missing:
            raise ConfigError("Unknown scenario(s): %s" % ", ".join(missing))
        scenarios = [s for s in scenarios if s.name in set(only)]
    return scenarios


def _scenario_from_section(name, raw) -> Scenario:
    if "query" not in raw:
        raise ConfigError("Scenario %s: missing 'query'" % name)
    if "expect" not in raw:
        raise ConfigError("Scenario %s: missing 'expect'" % name)
    try:
        expected = parse_expectations(raw["expect"].splitlines())
    except ConfigError as exc:
        raise ConfigError("Scenario %s: %s" % (name, exc)) from exc
    return Scenario(
        name=name,
        setup_statements=tuple(split_statements(raw.get("setup", ""))),
        query=_strip_semicolon(raw["query"].strip()),
        expected=expected,
        description=" ".join(raw.get("description", "").split()),
        severity=raw.get("severity", "fail").strip().lower(),
    )


def split_statements(text: str) -> List[str]:
    statements = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("--"):
            continue
        statement = _strip_semicolon(line)
        if statement:
            statements.append(statement)
    return statements


def _strip_semicolon(statement: str) -> str:
    return statement.rstrip().rstrip(";").rstrip()
