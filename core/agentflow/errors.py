"""Exception types raised by the execution engine.

Node-level problems are recovered into node output and never raise; the
types here cover the few conditions that abort a run or reject input.
"""


class AgentFlowError(Exception):
    """Base class for all engine errors."""


class GraphError(AgentFlowError):
    """A flow document cannot be turned into a graph (e.g. an edge with no endpoint)."""


class NoExecutorError(AgentFlowError):
    """No executor is registered for a node's resolved kind."""

    def __init__(self, kind_key: str):
        self.kind_key = kind_key
        super().__init__(f"No executor for node type: {kind_key}")


class StartNodeNotSetError(AgentFlowError):
    """A run was requested without a start node."""

    def __init__(self, message: str = "Start node not set"):
        super().__init__(message)


class PolicyViolationError(AgentFlowError):
    """An LLM call used a model outside the run's allow-list."""

    def __init__(self, disallowed: list[str], allowed: list[str]):
        self.disallowed = disallowed
        self.allowed = allowed
        super().__init__(
            f"Model policy violation: used {', '.join(disallowed)}; allowed: {', '.join(allowed)}"
        )


class LLMError(AgentFlowError):
    """An LLM call failed. Providers raise this instead of returning empty text."""


class LLMAuthError(LLMError):
    """The provider rejected the credentials."""


class LLMTransportError(LLMError):
    """The provider could not be reached or returned an unusable response."""
