import pytest

from pgtune_validate.errors import ConfigError
from pgtune_validate.predicates import CompositeAnd, MustContainOperator
from pgtune_validate.scenarios import Scenario, load_scenarios, split_statements

SCENARIOS = """
[postgres]
host = localhost

[scenario low_work_mem_sort]
description = Low work_mem
    causes external merge
severity = warn
setup =
    SET work_mem = '1MB';
    -- planner hint
    SET enable_hashagg = off
query =
    SELECT department, salary
    FROM employee_salaries
    ORDER BY salary DESC;
expect =
    contains external merge

[scenario primary_key_lookup]
query = SELECT * FROM performance_test WHERE id = 50000
expect =
    contains Index Scan
    # no seq scan on a pk lookup
    not_contains Seq Scan
"""


@pytest.fixture
def scenario_file(tmp_path):
    def _write(text):
        path = tmp_path / "scenarios.ini"
        path.write_text(text, encoding="utf-8")
        return str(path)
    return _write


def test_load_scenarios_in_file_order(scenario_file):
    scenarios = load_scenarios(scenario_file(SCENARIOS))

    assert [s.name for s in scenarios] == ["low_work_mem_sort", "primary_key_lookup"]

    sort = scenarios[0]
    assert sort.setup_statements == ("SET work_mem = '1MB'", "SET enable_hashagg = off")
    assert sort.query == "SELECT department, salary\nFROM employee_salaries\nORDER BY salary DESC"
    assert sort.expected == MustContainOperator("external merge")
    assert sort.severity == "warn"
    assert sort.description == "Low work_mem causes external merge"

    lookup = scenarios[1]
    assert lookup.setup_statements == ()
    assert lookup.severity == "fail"
    assert isinstance(lookup.expected, CompositeAnd)
    assert len(lookup.expected.children) == 2


def test_filter_by_name(scenario_file):
    scenarios = load_scenarios(scenario_file(SCENARIOS), only=["primary_key_lookup"])
    assert [s.name for s in scenarios] == ["primary_key_lookup"]


def test_unknown_name_filter(scenario_file):
    with pytest.raises(ConfigError, match="nope"):
        load_scenarios(scenario_file(SCENARIOS), only=["nope"])


def test_no_scenarios(scenario_file):
    with pytest.raises(ConfigError):
        load_scenarios(scenario_file("[postgres]\nhost = localhost\n"))


def test_missing_expect(scenario_file):
    with pytest.raises(ConfigError, match="broken"):
        load_scenarios(scenario_file("[scenario broken]\nquery = SELECT 1\n"))


def test_bad_expectation_names_scenario(scenario_file):
    with pytest.raises(ConfigError, match="broken"):
        load_scenarios(scenario_file("[scenario broken]\nquery = SELECT 1\nexpect = rows_within many\n"))


def test_bad_severity(scenario_file):
    text = "[scenario s]\nquery = SELECT 1\nexpect = contains Result\nseverity = maybe\n"
    with pytest.raises(ConfigError):
        load_scenarios(scenario_file(text))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_scenarios(str(tmp_path / "missing.ini"))


def test_empty_query_rejected():
    with pytest.raises(ConfigError):
        Scenario(name="s", setup_statements=(), query="  ", expected=MustContainOperator("Sort"))


def test_split_statements():
    assert split_statements("SET a = 1;\n\n-- note\n  SET b = 2  \n;") == ["SET a = 1", "SET b = 2"]


def test_sample_workshop_file_loads():
    from pathlib import Path

    path = Path(__file__).resolve().parents[1] / "scenarios" / "workshop.ini"
    scenarios = load_scenarios(str(path))

    names = [s.name for s in scenarios]
    assert "low_work_mem_sort" in names
    assert len(names) == len(set(names))
