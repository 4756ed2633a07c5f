"""Tests for the tool simulator, catalog presets and scenario providers."""

import pytest

from agentflow.simulation import (
    ToolInvocation,
    ToolOverride,
    ToolSimulator,
    get_mock_preset,
    get_provider,
    normalize_capability,
    seeded_random,
)
from agentflow.simulation.providers import InjectedError


class TestSeededRandom:
    def test_deterministic_unit_interval(self):
        first = seeded_random("calendar:list_events:{}")
        assert first == seeded_random("calendar:list_events:{}")
        assert 0.0 <= first <= 1.0
        assert first != seeded_random("calendar:create_event:{}")


class TestCatalog:
    def test_preset_lookup(self):
        preset = get_mock_preset("calendar", "list_success")
        assert preset is not None
        assert not preset.is_error
        assert get_mock_preset("calendar", None) is None
        assert get_mock_preset("unknown", "list_success") is None

    def test_error_preset(self):
        assert get_mock_preset("web_search", "timeout").is_error

    def test_capability_aliases(self):
        assert normalize_capability("calendar.find_free_time") == "calendar.list_events"
        assert normalize_capability("gmail.send_email") == "gmail.send_email"


class TestToolSimulator:
    @pytest.mark.asyncio
    async def test_generated_data_is_deterministic(self):
        sim = ToolSimulator()
        invocation = ToolInvocation(tool_name="web_search", operation="search", args={"query": "ai"})
        first = await sim.invoke(invocation)
        second = await sim.invoke(invocation)
        assert first.ok
        assert first.mock_source == "generated"
        assert first.data == second.data
        assert first.data["results"][0]["title"] == "Result 1 for ai"

    @pytest.mark.asyncio
    async def test_preset(self):
        result = await ToolSimulator().invoke(
            ToolInvocation(tool_name="calendar", operation="list_events", mock_preset="list_success")
        )
        assert result.ok
        assert result.used_preset == "list_success"
        assert result.data == get_mock_preset("calendar", "list_success").result

    @pytest.mark.asyncio
    async def test_error_mode(self):
        result = await ToolSimulator().invoke(
            ToolInvocation(tool_name="gmail", operation="send_email", error_mode="rate_limit")
        )
        assert not result.ok
        assert result.to_dict()["error"] == {
            "kind": "rate_limit",
            "message": "Rate limit exceeded for gmail.send_email",
            "code": "RATE_LIMIT",
        }

    @pytest.mark.asyncio
    async def test_override_custom_output_wins(self):
        sim = ToolSimulator()
        sim.set_override("calendar", "list_events", ToolOverride(custom_output={"custom": True}))
        invocation = ToolInvocation(tool_name="calendar", operation="list_events", mock_preset="list_success")
        result = await sim.invoke(invocation)
        assert result.data == {"custom": True}
        assert result.mock_source == "custom"

        sim.remove_override("calendar", "list_events")
        assert (await sim.invoke(invocation)).used_preset == "list_success"

    @pytest.mark.asyncio
    async def test_override_error_mode(self):
        sim = ToolSimulator()
        sim.set_override("http_request", "get", ToolOverride(error_mode="timeout"))
        result = await sim.invoke(ToolInvocation(tool_name="http_request", operation="get"))
        assert result.error.kind == "timeout"

    def test_calendar_timestamps_use_fixed_epoch(self):
        events = ToolSimulator().generate("calendar", "list_events", {}, "seed-with-events-7")
        for event in events:
            assert event["start"].startswith("2025-08-10")


class TestSimulationProviders:
    @pytest.mark.asyncio
    async def test_scenarios(self):
        calendar = get_provider("calendar")
        busy = await calendar.run("findEvents", scenario_id="busy-week", latency_ms=0)
        empty = await calendar.run("findEvents", scenario_id="empty-calendar", latency_ms=0)
        assert 3 <= len(busy["data"]["events"]) <= 6
        assert busy["data"]["events"][1]["title"] == "Team Sync (double-booked)"
        assert empty["data"]["events"] == []

    @pytest.mark.asyncio
    async def test_unknown_operation_and_injected_error(self):
        email = get_provider("email")
        assert await email.run("archive", latency_ms=0) == {"error": "Unknown operation: archive"}
        injected = await email.run("listEmails", latency_ms=0, inject_error=InjectedError("timeout"))
        assert injected == {"error": "timeout"}

    def test_unknown_provider(self):
        assert get_provider("fax") is None
        assert get_provider(None) is None
