"""AgentFlow - execution engine for visual agent workflow graphs."""

from agentflow.graph.model import FlowDocument
from agentflow.runtime.engine import FlowEngine
from agentflow.runtime.runner import LinearRunner, run_workflow_with_properties
from agentflow.runtime.steppable import SteppableRunner
from agentflow.schemas.run import RunManifest, RunOptions

__version__ = "0.1.0"

__all__ = [
    "FlowDocument",
    "FlowEngine",
    "LinearRunner",
    "SteppableRunner",
    "run_workflow_with_properties",
    "RunManifest",
    "RunOptions",
]
