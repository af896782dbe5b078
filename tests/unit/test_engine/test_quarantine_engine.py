"""Unit tests for the quarantine engine."""

from datetime import timedelta

import pytest

from bi_compliance.core.engine.quarantine_engine import (
    compute_quarantine,
    find_last_passed_result,
    is_cycle_affected,
    resolve_tool,
)
from bi_compliance.core.models.tool import ResolvedTool, PlaceholderTool, UNKNOWN_CATEGORY

from conftest import T0, make_result, make_cycle, make_tool


class TestFindLastPassedResult:
    """Test selection of the known-safe baseline."""

    def test_no_results(self):
        assert find_last_passed_result([]) is None

    def test_only_failures_and_skips(self):
        results = [make_result("fail", T0), make_result("skip", T0 + timedelta(days=1))]
        assert find_last_passed_result(results) is None

    def test_latest_pass_wins_regardless_of_order(self):
        older = make_result("pass", T0)
        newer = make_result("pass", T0 + timedelta(days=2))
        failure = make_result("fail", T0 + timedelta(days=3))

        assert find_last_passed_result([newer, failure, older]) == newer


class TestIsCycleAffected:
    """Test the exclusive boundary."""

    def test_no_baseline_affects_everything(self):
        cycle = make_cycle("c1", T0 - timedelta(days=365))
        assert is_cycle_affected(cycle, None) is True

    def test_cycle_at_pass_instant_is_safe(self):
        cycle = make_cycle("c1", T0)
        assert is_cycle_affected(cycle, T0) is False

    def test_cycle_one_microsecond_after_pass_is_affected(self):
        cycle = make_cycle("c1", T0 + timedelta(microseconds=1))
        assert is_cycle_affected(cycle, T0) is True

    def test_cycle_before_pass_is_safe(self):
        cycle = make_cycle("c1", T0 - timedelta(hours=1))
        assert is_cycle_affected(cycle, T0) is False


class TestResolveTool:
    """Test roster resolution."""

    def test_known_tool(self):
        tool = make_tool("t1", category="Forceps")
        resolved = resolve_tool("t1", {"t1": tool})

        assert isinstance(resolved, ResolvedTool)
        assert resolved.tool == tool
        assert resolved.category == "Forceps"
        assert resolved.is_placeholder is False

    def test_unknown_tool_becomes_placeholder(self):
        resolved = resolve_tool("ghost", {})

        assert isinstance(resolved, PlaceholderTool)
        assert resolved.id == "ghost"
        assert resolved.name == "Tool ghost"
        assert resolved.category == UNKNOWN_CATEGORY
        assert resolved.is_placeholder is True

    def test_known_tool_without_category(self):
        resolved = resolve_tool("t1", {"t1": make_tool("t1")})
        assert resolved.category == UNKNOWN_CATEGORY


class TestComputeQuarantine:
    """Test the full quarantine computation."""

    @pytest.fixture
    def roster(self):
        return [
            make_tool("t1", category="Forceps"),
            make_tool("t2", category="Scissors"),
            make_tool("t3", category="Forceps"),
        ]

    def test_empty_history(self):
        quarantine = compute_quarantine([], [])

        assert quarantine.last_passed_date is None
        assert quarantine.affected_cycles == []
        assert quarantine.affected_tools == []
        assert quarantine.total_tools_affected == 0
        assert quarantine.total_cycles_affected == 0
        assert quarantine.unique_operators == []
        assert quarantine.date_range is None
        assert quarantine.tools_by_category == {}
        assert quarantine.has_current_cycle_affected is False

    def test_no_pass_history_affects_every_cycle(self, roster):
        cycles = [
            make_cycle("c1", T0 - timedelta(days=30), ["t1"]),
            make_cycle("c2", T0 - timedelta(days=1), ["t2"]),
        ]
        results = [make_result("fail", T0 - timedelta(days=10))]

        quarantine = compute_quarantine(results, cycles, None, roster)

        assert quarantine.last_passed_date is None
        assert quarantine.total_cycles_affected == 2
        assert [tool.id for tool in quarantine.affected_tools] == ["t1", "t2"]

    def test_boundary_is_exclusive(self, roster):
        results = [make_result("pass", T0)]
        cycles = [
            make_cycle("at-pass", T0, ["t1"]),
            make_cycle("after-pass", T0 + timedelta(microseconds=1), ["t2"]),
        ]

        quarantine = compute_quarantine(results, cycles, None, roster)

        assert [cycle.id for cycle in quarantine.affected_cycles] == ["after-pass"]
        assert [tool.id for tool in quarantine.affected_tools] == ["t2"]

    def test_tools_deduplicated_across_cycles(self, roster):
        results = [make_result("pass", T0)]
        cycles = [
            make_cycle("c1", T0 + timedelta(hours=1), ["t1", "t2"]),
            make_cycle("c2", T0 + timedelta(hours=2), ["t2", "t3"]),
            make_cycle("c3", T0 + timedelta(hours=3), ["t1", "t3"]),
        ]

        quarantine = compute_quarantine(results, cycles, None, roster)

        assert quarantine.total_cycles_affected == 3
        assert quarantine.total_tools_affected == 3
        assert [tool.id for tool in quarantine.affected_tools] == ["t1", "t2", "t3"]
        assert quarantine.tools_by_category == {"Forceps": 2, "Scissors": 1}

    def test_scenario_pass_then_later_cycles(self, roster):
        """Cycles before the last pass are safe, later ones are held."""
        results = [
            make_result("fail", T0 - timedelta(days=3)),
            make_result("pass", T0),
        ]
        cycles = [
            make_cycle("before", T0 - timedelta(days=1), ["t1"], operator="carol"),
            make_cycle("after-1", T0 + timedelta(hours=2), ["t2"], operator="bob", batch_id="B1"),
            make_cycle("after-2", T0 + timedelta(hours=5), ["t3"], operator="dave", batch_id="B2"),
        ]

        quarantine = compute_quarantine(results, cycles, None, roster)

        assert quarantine.last_passed_date == T0
        assert [cycle.id for cycle in quarantine.affected_cycles] == ["after-1", "after-2"]
        assert quarantine.unique_operators == ["bob", "dave"]
        assert quarantine.date_range.start == T0 + timedelta(hours=2)
        assert quarantine.date_range.end == T0 + timedelta(hours=5)
        assert quarantine.affected_batch_ids() == ["B1", "B2"]

    def test_scenario_no_cycles_since_pass(self, roster):
        results = [make_result("pass", T0)]
        cycles = [make_cycle("before", T0 - timedelta(hours=3), ["t1"])]

        quarantine = compute_quarantine(results, cycles, None, roster)

        assert quarantine.last_passed_date == T0
        assert quarantine.total_cycles_affected == 0
        assert quarantine.total_tools_affected == 0
        assert quarantine.date_range is None

    def test_cycles_without_tools(self, roster):
        results = [make_result("pass", T0)]
        cycles = [make_cycle("empty", T0 + timedelta(hours=1), [])]

        quarantine = compute_quarantine(results, cycles, None, roster)

        assert quarantine.total_cycles_affected == 1
        assert quarantine.total_tools_affected == 0
        assert quarantine.tools_by_category == {}

    def test_unknown_tools_are_placeholders(self, roster):
        cycles = [make_cycle("c1", T0, ["t1", "missing"])]

        quarantine = compute_quarantine([], cycles, None, roster)

        assert quarantine.total_tools_affected == 2
        assert quarantine.placeholder_tool_ids() == ["missing"]
        assert quarantine.tools_by_category == {"Forceps": 1, UNKNOWN_CATEGORY: 1}

    def test_roster_as_mapping(self, roster):
        cycles = [make_cycle("c1", T0, ["t2"])]
        quarantine = compute_quarantine([], cycles, None, {tool.id: tool for tool in roster})

        assert quarantine.affected_tools[0].name == "Instrument t2"

    def test_current_cycle_included(self, roster):
        results = [make_result("pass", T0)]
        current = make_cycle("running", T0 + timedelta(hours=1), ["t3"], end_time=None)

        quarantine = compute_quarantine(results, [], current, roster)

        assert quarantine.has_current_cycle_affected is True
        assert [cycle.id for cycle in quarantine.affected_cycles] == ["running"]

    def test_current_cycle_at_boundary_is_not_affected(self, roster):
        results = [make_result("pass", T0)]
        current = make_cycle("running", T0, ["t3"], end_time=None)

        quarantine = compute_quarantine(results, [], current, roster)

        assert quarantine.has_current_cycle_affected is False
        assert quarantine.total_cycles_affected == 0

    def test_cycles_sorted_by_start_time_then_id(self, roster):
        same_start = T0 + timedelta(hours=1)
        cycles = [
            make_cycle("c-late", T0 + timedelta(hours=2)),
            make_cycle("c-b", same_start),
            make_cycle("c-a", same_start),
        ]

        quarantine = compute_quarantine([make_result("pass", T0)], cycles, None, roster)

        assert [cycle.id for cycle in quarantine.affected_cycles] == ["c-a", "c-b", "c-late"]

    def test_idempotent_serialization(self, roster):
        results = [make_result("pass", T0), make_result("fail", T0 + timedelta(days=1))]
        cycles = [
            make_cycle("c2", T0 + timedelta(hours=3), ["t3", "t1"], operator="erin"),
            make_cycle("c1", T0 + timedelta(hours=1), ["t2", "ghost"]),
        ]

        first = compute_quarantine(results, cycles, None, roster)
        second = compute_quarantine(list(reversed(results)), list(reversed(cycles)), None, list(reversed(roster)))

        assert first.model_dump_json() == second.model_dump_json()
