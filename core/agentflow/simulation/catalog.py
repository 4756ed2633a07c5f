"""
Tool catalog - schemas and canned mock presets for the built-in tools.

The catalog is a plain lookup table. The simulator and the properties
bridge read presets from it; nothing here performs I/O.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field


class ToolParameter(BaseModel):
    name: str
    type: Literal["string", "number", "boolean", "object", "array"]
    description: str = ""
    required: bool = False
    default: Any = None
    enum: list[str] | None = None


class ToolOperation(BaseModel):
    description: str
    parameters: list[ToolParameter] = Field(default_factory=list)
    returns: str = ""


class ToolMockPreset(BaseModel):
    """A named canned result. Presets with ``error`` simulate a failure."""

    name: str
    description: str = ""
    args: dict[str, Any] | None = None
    result: Any = None
    latency_ms: int = 0
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


class ToolSchema(BaseModel):
    name: str
    description: str
    parameters: list[ToolParameter] = Field(default_factory=list)
    operations: dict[str, ToolOperation] | None = None
    returns: str = ""
    mock_presets: list[ToolMockPreset] = Field(default_factory=list)


def _p(name: str, type_: str, description: str, required: bool = False, **extra: Any) -> ToolParameter:
    return ToolParameter(name=name, type=type_, description=description, required=required, **extra)


TOOL_CATALOG: dict[str, ToolSchema] = {
    "web_search": ToolSchema(
        name="web_search",
        description="Search the web for information",
        parameters=[
            _p("query", "string", "Search query", True),
            _p("limit", "number", "Number of results to return", default=10),
            _p("domain", "string", "Specific domain to search"),
        ],
        returns="Array of search results with title, url, and snippet",
        mock_presets=[
            ToolMockPreset(
                name="success",
                description="Successful search with results",
                args={"query": "artificial intelligence", "limit": 3},
                result={
                    "results": [
                        {
                            "title": "What is Artificial Intelligence?",
                            "url": "https://example.com/ai-intro",
                            "snippet": "Artificial Intelligence (AI) is the simulation of human intelligence in machines...",
                        },
                        {
                            "title": "AI Applications in 2024",
                            "url": "https://example.com/ai-2024",
                            "snippet": "Explore the latest applications of AI technology across various industries...",
                        },
                    ],
                    "total": 1250000,
                },
                latency_ms=800,
            ),
            ToolMockPreset(
                name="not_found",
                description="No results found",
                args={"query": "xyzabc123nonexistent"},
                result={"results": [], "total": 0},
                latency_ms=300,
            ),
            ToolMockPreset(
                name="timeout",
                description="Search timeout error",
                error="Search request timed out",
                latency_ms=5000,
            ),
            ToolMockPreset(
                name="rate_limit",
                description="Rate limit exceeded",
                error="Rate limit exceeded. Please try again later.",
                latency_ms=100,
            ),
        ],
    ),
    "http_request": ToolSchema(
        name="http_request",
        description="Make HTTP requests to external APIs",
        parameters=[
            _p("url", "string", "Request URL", True),
            _p("method", "string", "HTTP method", default="GET", enum=["GET", "POST", "PUT", "DELETE", "PATCH"]),
            _p("headers", "object", "Request headers"),
            _p("body", "object", "Request body"),
        ],
        returns="HTTP response with status, headers, and data",
        mock_presets=[
            ToolMockPreset(
                name="success",
                description="Successful HTTP request",
                args={"url": "https://api.example.com/data", "method": "GET"},
                result={
                    "status": 200,
                    "headers": {"content-type": "application/json"},
                    "data": {"message": "Success", "timestamp": "2024-01-01T00:00:00Z"},
                },
                latency_ms=500,
            ),
            ToolMockPreset(
                name="not_found", description="404 Not Found", error="HTTP 404: Resource not found", latency_ms=200
            ),
            ToolMockPreset(
                name="server_error",
                description="500 Internal Server Error",
                error="HTTP 500: Internal server error",
                latency_ms=1000,
            ),
        ],
    ),
    "calendar": ToolSchema(
        name="calendar",
        description="Calendar operations for scheduling and events",
        operations={
            "list_events": ToolOperation(
                description="List calendar events",
                parameters=[
                    _p("start_date", "string", "Start date (ISO format)", True),
                    _p("end_date", "string", "End date (ISO format)", True),
                ],
                returns="Array of calendar events",
            ),
            "create_event": ToolOperation(
                description="Create a new calendar event",
                parameters=[
                    _p("title", "string", "Event title", True),
                    _p("start_time", "string", "Start time (ISO format)", True),
                    _p("end_time", "string", "End time (ISO format)", True),
                    _p("description", "string", "Event description"),
                ],
                returns="Created event object",
            ),
        },
        returns="Varies by operation",
        mock_presets=[
            ToolMockPreset(
                name="list_success",
                description="Successful event listing",
                args={"start_date": "2024-01-01", "end_date": "2024-01-07"},
                result={
                    "events": [
                        {
                            "id": "evt_1",
                            "title": "Team Meeting",
                            "start": "2024-01-02T10:00:00Z",
                            "end": "2024-01-02T11:00:00Z",
                            "description": "Weekly team sync",
                        },
                        {
                            "id": "evt_2",
                            "title": "Project Review",
                            "start": "2024-01-04T14:00:00Z",
                            "end": "2024-01-04T15:30:00Z",
                            "description": "Q1 project review meeting",
                        },
                    ]
                },
                latency_ms=600,
            ),
            ToolMockPreset(
                name="create_success",
                description="Successful event creation",
                args={
                    "title": "New Meeting",
                    "start_time": "2024-01-10T15:00:00Z",
                    "end_time": "2024-01-10T16:00:00Z",
                },
                result={
                    "id": "evt_new",
                    "title": "New Meeting",
                    "start": "2024-01-10T15:00:00Z",
                    "end": "2024-01-10T16:00:00Z",
                    "created": True,
                },
                latency_ms=400,
            ),
        ],
    ),
    "gmail": ToolSchema(
        name="gmail",
        description="Gmail operations for email management",
        operations={
            "list_emails": ToolOperation(
                description="List emails from inbox",
                parameters=[
                    _p("query", "string", "Search query"),
                    _p("limit", "number", "Number of emails to return", default=10),
                ],
                returns="Array of email objects",
            ),
            "send_email": ToolOperation(
                description="Send an email",
                parameters=[
                    _p("to", "string", "Recipient email address", True),
                    _p("subject", "string", "Email subject", True),
                    _p("body", "string", "Email body", True),
                ],
                returns="Sent email confirmation",
            ),
        },
        returns="Varies by operation",
        mock_presets=[
            ToolMockPreset(
                name="list_success",
                description="Successful email listing",
                result={
                    "emails": [
                        {
                            "id": "msg_1",
                            "subject": "Project Update",
                            "from": "team@example.com",
                            "date": "2024-01-01T12:00:00Z",
                            "snippet": "Here is the latest update on our project...",
                        },
                        {
                            "id": "msg_2",
                            "subject": "Meeting Reminder",
                            "from": "calendar@example.com",
                            "date": "2024-01-01T09:00:00Z",
                            "snippet": "Reminder: Team meeting at 2 PM today...",
                        },
                    ]
                },
                latency_ms=700,
            ),
            ToolMockPreset(
                name="send_success",
                description="Successful email sending",
                args={"to": "user@example.com", "subject": "Test Email", "body": "This is a test email."},
                result={"id": "msg_sent", "status": "sent", "timestamp": "2024-01-01T12:00:00Z"},
                latency_ms=900,
            ),
        ],
    ),
    "db_query": ToolSchema(
        name="db_query",
        description="Database query operations",
        parameters=[
            _p("query", "string", "SQL query to execute", True),
            _p("database", "string", "Database name", default="default"),
            _p("limit", "number", "Maximum number of rows to return", default=100),
        ],
        returns="Query results with rows and metadata",
        mock_presets=[
            ToolMockPreset(
                name="select_success",
                description="Successful SELECT query",
                args={"query": "SELECT * FROM users LIMIT 5"},
                result={
                    "rows": [
                        {"id": 1, "name": "John Doe", "email": "john@example.com"},
                        {"id": 2, "name": "Jane Smith", "email": "jane@example.com"},
                    ],
                    "rowCount": 2,
                    "columns": ["id", "name", "email"],
                },
                latency_ms=200,
            ),
            ToolMockPreset(
                name="syntax_error",
                description="SQL syntax error",
                error="SQL syntax error: You have an error in your SQL syntax",
                latency_ms=50,
            ),
        ],
    ),
}


def get_tool_schema(tool_name: str | None) -> ToolSchema | None:
    return TOOL_CATALOG.get(tool_name or "")


def get_available_tools() -> list[str]:
    return list(TOOL_CATALOG)


def get_tool_mock_presets(tool_name: str) -> list[str]:
    schema = get_tool_schema(tool_name)
    return [p.name for p in schema.mock_presets] if schema else []


def get_mock_preset(tool_name: str | None, preset_name: str | None) -> ToolMockPreset | None:
    schema = get_tool_schema(tool_name)
    if schema is None or not preset_name:
        return None
    return next((p for p in schema.mock_presets if p.name == preset_name), None)


CAPABILITY_ALIASES: dict[str, str] = {
    "calendar.find_free_time": "calendar.list_events",
    "web.search": "web_search.search",
}


def normalize_capability(capability: str) -> str:
    """Map legacy or model-invented capability strings onto catalog ones."""
    return CAPABILITY_ALIASES.get(capability, capability)
