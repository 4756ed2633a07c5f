"""Schema definitions for runs."""

from agentflow.schemas.run import Environment, Overrides, RunManifest, RunOptions, RunStatus, Scenario

__all__ = ["Environment", "Overrides", "RunManifest", "RunOptions", "RunStatus", "Scenario"]
