"""
Simulation providers used by tool-agent nodes in simulate mode.

Each provider serves a handful of operations against named scenarios
(e.g. a busy week, an empty inbox). Output is derived from a seeded hash of
the operation, scenario and params, so the same request always yields the
same data.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


def seeded_random(seed: str) -> float:
    """32-bit FNV-1a hash of ``seed`` scaled into [0, 1]."""
    h = 2166136261
    for ch in seed:
        h ^= ord(ch)
        h = (h * 16777619) & 0xFFFFFFFF
    return h / 0xFFFFFFFF


@dataclass
class InjectedError:
    type: str
    message: str | None = None


@dataclass
class Scenario:
    id: str
    label: str


@dataclass
class Operation:
    name: str
    params_schema: dict[str, str] = field(default_factory=dict)


class SimulationProvider(ABC):
    """A simulated external service."""

    id: str
    label: str
    operations: list[Operation]
    scenarios: list[Scenario]
    default_latency_ms: int = 100

    async def run(
        self,
        operation: str,
        params: dict[str, Any] | None = None,
        scenario_id: str | None = None,
        latency_ms: int | None = None,
        inject_error: InjectedError | None = None,
    ) -> dict[str, Any]:
        """
        Run an operation.

        Returns:
            ``{"data": ...}`` on success or ``{"error": message}`` on failure
        """
        latency = self.default_latency_ms if latency_ms is None else latency_ms
        if latency > 0:
            await asyncio.sleep(latency / 1000)
        if inject_error is not None:
            return {"error": inject_error.message or inject_error.type}

        params = params or {}
        scenario = scenario_id or (self.scenarios[0].id if self.scenarios else "")
        rnd = seeded_random(operation + scenario + json.dumps(params, separators=(",", ":")))
        data = self.generate(operation, params, scenario, rnd)
        if data is None:
            return {"error": f"Unknown operation: {operation}"}
        return {"data": data}

    @abstractmethod
    def generate(
        self, operation: str, params: dict[str, Any], scenario_id: str, rnd: float
    ) -> dict[str, Any] | None:
        """Produce operation data, or None for an unknown operation."""


class CalendarProvider(SimulationProvider):
    id = "calendar"
    label = "Calendar"
    operations = [
        Operation("findEvents"),
        Operation("createEvent", {"title": "string", "date": "string"}),
    ]
    scenarios = [
        Scenario("busy-week", "Busy week with double-bookings"),
        Scenario("empty-calendar", "Empty calendar"),
    ]
    default_latency_ms = 120

    def generate(self, operation, params, scenario_id, rnd):
        if operation == "findEvents":
            count = 0 if scenario_id == "empty-calendar" else 3 + int(rnd * 3)
            events = [
                {
                    "id": f"evt_{i}_{scenario_id}",
                    "title": (
                        "Team Sync (double-booked)"
                        if i == 1 and scenario_id == "busy-week"
                        else f"Event {i + 1}"
                    ),
                    "start": f"2025-08-{10 + i}T{8 + i:02d}:00:00Z",
                    "end": f"2025-08-{10 + i}T{9 + i:02d}:00:00Z",
                    "location": "Zoom" if rnd > 0.5 else "HQ Room 2",
                }
                for i in range(count)
            ]
            return {"events": events}
        if operation == "createEvent":
            return {"ok": True, "event": {"id": f"evt_{int(rnd * 10000)}", **params}}
        return None


class EmailProvider(SimulationProvider):
    id = "email"
    label = "Email"
    operations = [
        Operation("listEmails"),
        Operation("sendEmail", {"to": "string", "subject": "string"}),
    ]
    scenarios = [
        Scenario("support-inbox", "Support inbox (unread)"),
        Scenario("clean-inbox", "Clean inbox"),
    ]
    default_latency_ms = 80

    def generate(self, operation, params, scenario_id, rnd):
        if operation == "listEmails":
            count = 0 if scenario_id == "clean-inbox" else 2 + int(rnd * 3)
            emails = [
                {
                    "id": f"em_{i}_{scenario_id}",
                    "from": "customer@acme.com" if rnd > 0.5 else "alerts@service.io",
                    "subject": (
                        "Password reset not working"
                        if i == 0 and scenario_id == "support-inbox"
                        else f"Message {i + 1}"
                    ),
                    "receivedAt": f"2025-08-{15 + i}T1{i}:15:00Z",
                }
                for i in range(count)
            ]
            return {"emails": emails}
        if operation == "sendEmail":
            return {"ok": True, "messageId": f"msg_{int(rnd * 100000)}", **params}
        return None


PROVIDERS: dict[str, SimulationProvider] = {p.id: p for p in (CalendarProvider(), EmailProvider())}


def get_provider(provider_id: str | None) -> SimulationProvider | None:
    return PROVIDERS.get(provider_id or "")
