"""
Execution result shown by the testing panel.

Every node run through the properties bridge produces one of these. The
three tabs mirror what a reviewer needs: the configuration that was read,
what came out and why.
"""

import json
import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

NO_INFO = "No info input in properties panel"


class ResultType(StrEnum):
    MOCK = "mock"
    COMPUTED = "computed"
    ERROR = "error"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class PropertyField(_CamelModel):
    key: str
    label: str
    value: Any = None
    configured: bool = False


class InputsTab(_CamelModel):
    title: str = "Properties Panel Configuration"
    properties: list[PropertyField] = Field(default_factory=list)


class OutputsTab(_CamelModel):
    title: str = "Execution Result"
    result: Any = None
    result_type: ResultType = ResultType.ERROR
    source: str = ""


class SummaryTab(_CamelModel):
    title: str = "Execution Summary"
    explanation: str = ""
    rules_fired: list[str] = Field(default_factory=list)
    missing_properties: list[str] = Field(default_factory=list)


class ExecutionResult(_CamelModel):
    """Outcome of executing one node from its Properties Panel configuration."""

    result: Any = None
    properties_used: dict[str, Any] = Field(default_factory=dict)
    execution_summary: str = ""
    node_type: str
    node_id: str
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))
    inputs_tab: InputsTab = Field(default_factory=InputsTab)
    outputs_tab: OutputsTab = Field(default_factory=OutputsTab)
    summary_tab: SummaryTab = Field(default_factory=SummaryTab)
    trace: dict[str, Any] = Field(default_factory=dict)
    parsed_intent: dict[str, Any] | None = None

    @property
    def result_type(self) -> ResultType:
        return self.outputs_tab.result_type

    @property
    def is_error(self) -> bool:
        return self.outputs_tab.result_type == ResultType.ERROR

    # --- builders used by the bridge ---

    def set_output(
        self,
        result: Any,
        result_type: ResultType,
        source: str,
        summary: str,
        explanation: str = "",
        rules_fired: list[str] | None = None,
    ) -> "ExecutionResult":
        self.result = result
        self.outputs_tab.result = result
        self.outputs_tab.result_type = result_type
        self.outputs_tab.source = source
        self.execution_summary = summary
        self.summary_tab.explanation = explanation
        if rules_fired is not None:
            self.summary_tab.rules_fired = rules_fired
        return self

    def missing(self, properties: list[str], explanation: str) -> "ExecutionResult":
        """Mark the result as failed because nothing usable was configured."""
        self.summary_tab.missing_properties = list(properties)
        self.summary_tab.explanation = explanation
        self.outputs_tab.result = NO_INFO
        self.outputs_tab.result_type = ResultType.ERROR
        self.outputs_tab.source = "Missing Properties Panel configuration"
        self.execution_summary = "Missing required properties"
        return self

    def use_mock_response(self, mock_response: Any) -> "ExecutionResult":
        """Use a configured mock, parsed as JSON when it parses."""
        try:
            value = json.loads(mock_response) if isinstance(mock_response, str) else mock_response
        except json.JSONDecodeError:
            return self.set_output(
                mock_response,
                ResultType.MOCK,
                "Mock Response (text) from Properties Panel",
                "Used mock response text from Properties Panel",
                "Used mock response text configured in Properties Panel",
                ["Mock Response (text)"],
            )
        return self.set_output(
            value,
            ResultType.MOCK,
            "Mock Response from Properties Panel",
            "Used mock response from Properties Panel",
            "Used mock response configured in Properties Panel",
            ["Mock Response"],
        )

    def to_ui(self) -> dict[str, Any]:
        """camelCase dict for UI consumers."""
        return self.model_dump(by_alias=True, mode="json")
