"""
Run Schema - options for a workflow run and the manifest it leaves behind.

A RunManifest is a serializable snapshot of one run: the graph that ran,
the options it ran with and every node's result. It is enough to replay
the run later.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field

from agentflow.graph.model import Connection, Node


class RunStatus(StrEnum):
    """Status of a run."""

    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"  # reset() before completion


class Environment(StrEnum):
    MOCK = "mock"
    LIVE = "live"


class Scenario(BaseModel):
    """Free-text scenario injected into the start node's input."""

    name: str | None = None
    description: str | None = None

    model_config = {"extra": "allow"}


class Overrides(BaseModel):
    """Run-level overrides that win over node defaults."""

    seed: int | None = None
    environment: Environment = Environment.MOCK
    latency: int | None = Field(default=None, description="Extra latency (ms) for mocked tools")
    error_injection: dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("error_injection", "errorInjection"),
        description="tool name -> error mode",
    )
    model: str | None = None
    provider: str | None = None
    temperature: float | None = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class RunOptions(BaseModel):
    """Caller-supplied options for a single run."""

    inputs: dict[str, Any] = Field(default_factory=dict)
    assertions: list[dict[str, Any]] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)
    scenario: Scenario | None = None
    overrides: Overrides = Field(default_factory=Overrides)
    allowed_models: list[str] | None = Field(
        default=None,
        validation_alias=AliasChoices("allowed_models", "allowedModels"),
        description="If set, any LLM call with a model outside this list fails the run",
    )

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @property
    def scenario_description(self) -> str | None:
        return self.scenario.description if self.scenario else None


class RunManifest(BaseModel):
    """Serializable record of a finished run."""

    id: str
    timestamp: datetime = Field(default_factory=datetime.now)
    scenario: Scenario | None = None
    environment: Environment = Environment.MOCK
    seed: int | None = None

    nodes: list[Node] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    start_node_id: str | None = None

    results: dict[str, Any] = Field(default_factory=dict)
    assertions: dict[str, Any] | None = None
    duration: int = Field(default=0, description="Wall time in milliseconds")
    status: RunStatus = RunStatus.RUNNING

    model_config = {"extra": "allow"}

    @computed_field
    @property
    def node_count(self) -> int:
        return len(self.nodes)
