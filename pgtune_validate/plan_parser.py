"""
EXPLAIN ANALYZE text plan -> PlanFacts

Reads the plan the way you read it by eye:

 Sort  (cost=1834.00..1859.00 rows=10000 width=44) (actual time=15.2..16.1 rows=10000 loops=1)
   Sort Key: salary DESC
   Sort Method: external merge  Disk: 1234kB
   Buffers: shared hit=834 read=200, temp read=150 written=151
   ->  Seq Scan on employee_salaries  (cost=0.00..1834.00 rows=10000 width=44) (...)
 Planning Time: 0.123 ms
 Execution Time: 15.456 ms

The text format is prose that changes between server versions, so parse()
never raises: anything it does not recognise just contributes no facts.
"""

import re
from typing import Iterable, List, Optional

from .models import PlanFacts

# Operator names the harness knows. Expectations naming anything else still
# match as a substring, they only get logged.
KNOWN_OPERATORS = (
    "Seq Scan",
    "Parallel Seq Scan",
    "Index Scan",
    "Index Only Scan",
    "Parallel Index Scan",
    "Parallel Index Only Scan",
    "Bitmap Heap Scan",
    "Parallel Bitmap Heap Scan",
    "Bitmap Index Scan",
    "BitmapAnd",
    "BitmapOr",
    "Tid Scan",
    "Subquery Scan",
    "Function Scan",
    "Values Scan",
    "CTE Scan",
    "WorkTable Scan",
    "Foreign Scan",
    "Custom Scan",
    "Nested Loop",
    "Hash Join",
    "Merge Join",
    "Hash",
    "Sort",
    "Incremental Sort",
    "Aggregate",
    "HashAggregate",
    "GroupAggregate",
    "MixedAggregate",
    "WindowAgg",
    "Gather",
    "Gather Merge",
    "Append",
    "Merge Append",
    "Materialize",
    "Memoize",
    "Limit",
    "Unique",
    "Result",
    "ProjectSet",
    "Group",
    "SetOp",
    "HashSetOp",
    "LockRows",
    "Recursive Union",
    "Insert",
    "Update",
    "Delete",
    "Merge",
)

# a plan node name must end in one of these words
_OPERATOR_TAIL = re.compile(
    r"(?:Scan|Join|Loop|Sort|Aggregate|Agg|Gather|Merge|Append|Hash|Materialize|"
    r"Memoize|Limit|Unique|Result|ProjectSet|Group|SetOp|LockRows|Union|Insert|"
    r"Update|Delete|BitmapAnd|BitmapOr|Backward)$"
)

# "->  Hash Join  (cost=...", root line "Sort  (cost=...", or a bare node line
# when costs and analyze are both off. Detail lines always carry "Label:".
_NODE_LINE = re.compile(r"^\s*(?P<arrow>->\s*)?(?P<body>[A-Za-z][^:(]*?)\s*(?:\(|$)")
_NODE_SUFFIX = re.compile(r"\s+(?:using|on)\s+.*$")
_INDEX_NAME = re.compile(
    r"(?:Index Scan|Index Only Scan|Bitmap Index Scan)(?: Backward)?\s+(?:using|on)\s+(?P<index>\S+)"
)
_GIN_TOKEN = re.compile(r"(?:^|_)gin(?:_|$)", re.IGNORECASE)

_EST_ROWS = re.compile(r"\(cost=\d+(?:\.\d+)?\.\.\d+(?:\.\d+)? rows=(\d+)")
_ACTUAL_ROWS = re.compile(r"actual(?: time=\d+(?:\.\d+)?\.\.\d+(?:\.\d+)?)? rows=(\d+(?:\.\d+)?)")
_BUFFERS_LINE = re.compile(r"^\s*Buffers:")
_PLANNING_BLOCK = re.compile(r"^\s*Planning:\s*$")
_SHARED_HIT = re.compile(r"shared hit=(\d+)")
_SHARED_READ = re.compile(r"shared(?: hit=\d+)? read=(\d+)")
_SORT_METHOD = re.compile(r"Sort Method:\s*(?P<method>[A-Za-z-]+(?: [A-Za-z-]+)*)")
_EXTERNAL_SORT = re.compile(r"external (?:merge|sort)", re.IGNORECASE)
_PLANNING_TIME = re.compile(r"Planning [Tt]ime:\s*(\d+(?:\.\d+)?)\s*ms")
_EXECUTION_TIME = re.compile(r"(?:Execution [Tt]ime|Total runtime):\s*(\d+(?:\.\d+)?)\s*ms")
_SUBPLANS_REMOVED = re.compile(r"Subplans Removed:\s*(\d+)")
_WORKERS_LAUNCHED = re.compile(r"Workers Launched:\s*(\d+)")

# psql decorations around a plan pasted from a terminal
_PSQL_HEADER = re.compile(r"^\s*QUERY PLAN\s*$")
_PSQL_RULE = re.compile(r"^\s*-{3,}\s*$")
_PSQL_FOOTER = re.compile(r"^\s*\(\d+ rows?\)\s*$")


def parse(raw_output) -> PlanFacts:
    """Extract PlanFacts from raw EXPLAIN text. Never raises."""
    if raw_output is None:
        return PlanFacts()
    if not isinstance(raw_output, str):
        try:
            raw_output = raw_output.decode("utf-8", errors="replace")
        except AttributeError:
            raw_output = str(raw_output)

    lines = plan_lines(raw_output)
    operators = set()
    sort_methods = set()
    estimated_rows = None
    actual_rows = None
    buffer_hits = None
    buffer_reads = None
    planning_indent = None

    for idx, line in enumerate(lines):
        # "Planning:" opens a block of planner buffer usage, not query execution
        if _PLANNING_BLOCK.match(line):
            planning_indent = _indent(line)
            continue
        if planning_indent is not None and _indent(line) <= planning_indent:
            planning_indent = None
        name = node_name(line, is_root=(idx == 0))
        if name:
            operators.add(name)
            if _is_gin_index_scan(line):
                operators.add("GIN Index Scan")

        if estimated_rows is None:
            estimated_rows = _first_int(_EST_ROWS, line)
        if actual_rows is None:
            match = _ACTUAL_ROWS.search(line)
            if match:
                actual_rows = int(round(float(match.group(1))))

        if _BUFFERS_LINE.match(line) and planning_indent is None:
            if buffer_hits is None:
                buffer_hits = _first_int(_SHARED_HIT, line)
            if buffer_reads is None:
                buffer_reads = _first_int(_SHARED_READ, line)

        match = _SORT_METHOD.search(line)
        if match:
            sort_methods.add(match.group("method"))

        for external in _EXTERNAL_SORT.findall(line):
            operators.add(external.lower())

    text = "\n".join(lines)
    return PlanFacts(
        operators=frozenset(operators),
        actual_rows=actual_rows,
        estimated_rows=estimated_rows,
        buffer_reads=buffer_reads,
        buffer_hits=buffer_hits,
        external_sort_detected=bool(_EXTERNAL_SORT.search(text)),
        sort_methods=frozenset(sort_methods),
        planning_time_ms=_first_float(_PLANNING_TIME, text),
        execution_time_ms=_first_float(_EXECUTION_TIME, text),
        subplans_removed=_first_int(_SUBPLANS_REMOVED, text),
        workers_launched=_first_int(_WORKERS_LAUNCHED, text),
        plan_text=text,
    )


def plan_lines(raw_output: str) -> List[str]:
    """Plan lines without psql decorations and blank lines."""
    lines = []
    for line in raw_output.splitlines():
        if not line.strip():
            continue
        if _PSQL_HEADER.match(line) or _PSQL_RULE.match(line) or _PSQL_FOOTER.match(line):
            continue
        lines.append(line.rstrip())
    return lines


def node_name(line: str, is_root: bool = False) -> Optional[str]:
    """
    Operator name of a plan node line, or None for detail lines.

    "->  Index Scan using idx_orders on orders  (cost=..." -> "Index Scan"
    """
    match = _NODE_LINE.match(line)
    if not match:
        return None
    if not (match.group("arrow") or is_root or "(cost=" in line or "(actual" in line):
        return None
    name = _NODE_SUFFIX.sub("", match.group("body")).strip()
    name = " ".join(name.split())
    if not name or len(name.split()) > 5 or not _OPERATOR_TAIL.search(name):
        return None
    return name


def known_operator(name: str) -> Optional[str]:
    """Canonical spelling of an operator name, if the harness knows it."""
    lowered = name.strip().lower()
    for known in _known_variants():
        if known.lower() == lowered:
            return known
    return None


def _known_variants() -> Iterable[str]:
    yield from KNOWN_OPERATORS
    yield "GIN Index Scan"
    yield "external merge"
    yield "external sort"


def _is_gin_index_scan(line: str) -> bool:
    match = _INDEX_NAME.search(line)
    return bool(match and _GIN_TOKEN.search(match.group("index")))


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


def _first_int(pattern, text) -> Optional[int]:
    match = pattern.search(text)
    return int(match.group(1)) if match else None


def _first_float(pattern, text) -> Optional[float]:
    match = pattern.search(text)
    return float(match.group(1)) if match else None
