"""
Quarantine determination engine.

This module computes which sterilization cycles and tools are invalidated
by a failed BI test. A FAIL means no cycle run since the last PASS can be
trusted, so the engine:

- Finds the most recent passing BI test (the known-safe baseline)
- Selects every cycle (closed or in progress) that started strictly after it
- Collects the tools of those cycles, de-duplicated by id
- Resolves each tool against the roster, inferring a placeholder if missing
- Aggregates counts, operators, the start-time span and per-category totals

Everything here is pure: no I/O, no clock, no shared state. The same
inputs always produce the same QuarantineData, so callers may compute it
once per request or memoize it.
"""

from datetime import datetime
from collections.abc import Iterable, Mapping
from typing import Dict, List, Optional, Union

from ..models.bi_test_result import BITestResult
from ..models.sterilization_cycle import SterilizationCycle
from ..models.tool import Tool, ResolvedTool, PlaceholderTool, AffectedTool
from ..models.quarantine import QuarantineData, DateRange

ToolRoster = Union[Mapping[str, Tool], Iterable[Tool]]


def find_last_passed_result(test_results: Iterable[BITestResult]) -> Optional[BITestResult]:
    """
    Find the most recent passing BI test.

    Ties on date are broken by id so the choice is deterministic; two passes
    at the same instant should not occur under the one-test-per-day rule.

    Args:
        test_results: All BI test results for the facility

    Returns:
        The passing result with the latest date, or None if nothing passed
    """
    passed = [result for result in test_results if result.passed]
    if not passed:
        return None
    return max(passed, key=lambda result: (result.date, str(result.id)))


def is_cycle_affected(cycle: SterilizationCycle, last_passed_date: Optional[datetime]) -> bool:
    """
    Decide whether a cycle falls inside the quarantine window.

    The boundary is exclusive: a cycle that started at (or before) the last
    passing test is presumed safe.

    Args:
        cycle: Cycle to check
        last_passed_date: Date of the last passing test, or None if none exists

    Returns:
        True if the cycle must be quarantined
    """
    if last_passed_date is None:
        return True
    return cycle.start_time > last_passed_date


def _index_roster(tool_roster: ToolRoster) -> Mapping[str, Tool]:
    if isinstance(tool_roster, Mapping):
        return tool_roster
    return {tool.id: tool for tool in tool_roster}


def resolve_tool(tool_id: str, roster: Mapping[str, Tool]) -> AffectedTool:
    """
    Resolve a tool id referenced by a cycle.

    Args:
        tool_id: Tool id from cycle.tools
        roster: Tool roster indexed by id

    Returns:
        ResolvedTool if the id is in the roster, PlaceholderTool otherwise
    """
    tool = roster.get(tool_id)
    if tool is None:
        return PlaceholderTool(tool_id=tool_id)
    return ResolvedTool(tool=tool)


def compute_quarantine(
    test_results: Iterable[BITestResult],
    closed_cycles: Iterable[SterilizationCycle],
    current_cycle: Optional[SterilizationCycle] = None,
    tool_roster: ToolRoster = ()
) -> QuarantineData:
    """
    Compute the quarantine snapshot for one facility.

    Args:
        test_results: All BI test results (any order)
        closed_cycles: Cycle history excluding the current cycle
        current_cycle: Cycle in progress, if any
        tool_roster: Tools known to the facility, as a list or id -> Tool mapping

    Returns:
        QuarantineData describing the affected cycles and tools
    """
    last_passed = find_last_passed_result(test_results)
    last_passed_date = last_passed.date if last_passed is not None else None

    all_cycles = list(closed_cycles)
    if current_cycle is not None:
        all_cycles.append(current_cycle)

    affected_cycles = sorted(
        (cycle for cycle in all_cycles if is_cycle_affected(cycle, last_passed_date)),
        key=lambda cycle: (cycle.start_time, cycle.id)
    )

    roster = _index_roster(tool_roster)

    # Walk cycles in order so tools and operators keep first-appearance order
    affected_tools: List[AffectedTool] = []
    seen_tool_ids = set()
    unique_operators: List[str] = []
    for cycle in affected_cycles:
        if cycle.operator not in unique_operators:
            unique_operators.append(cycle.operator)
        for tool_id in cycle.tools:
            if tool_id in seen_tool_ids:
                continue
            seen_tool_ids.add(tool_id)
            affected_tools.append(resolve_tool(tool_id, roster))

    category_counts: Dict[str, int] = {}
    for tool in affected_tools:
        category_counts[tool.category] = category_counts.get(tool.category, 0) + 1
    tools_by_category = {category: category_counts[category] for category in sorted(category_counts)}

    date_range = None
    if affected_cycles:
        start_times = [cycle.start_time for cycle in affected_cycles]
        date_range = DateRange(start=min(start_times), end=max(start_times))

    has_current_cycle_affected = (
        current_cycle is not None and is_cycle_affected(current_cycle, last_passed_date)
    )

    return QuarantineData(
        last_passed_date=last_passed_date,
        affected_cycles=affected_cycles,
        affected_tools=affected_tools,
        total_tools_affected=len(affected_tools),
        total_cycles_affected=len(affected_cycles),
        unique_operators=unique_operators,
        date_range=date_range,
        tools_by_category=tools_by_category,
        has_current_cycle_affected=has_current_cycle_affected,
    )
