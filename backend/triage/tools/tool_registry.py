"""
Tool registry: the single source of truth for the tools the model may call.

Each entry names its handler method on ToolExecutor; adding a tool means adding
one entry here and one handler there. Tool sets scope which entries a
conversation is offered.
"""

from dataclasses import dataclass

from triage.models.schemas import ToolDefinition

TOOL_REGISTRY = [
    {
        "name": "list_failed_jobs",
        "description": "List all failed jobs in the current workflow run. Returns job names and IDs.",
        "parameters": {"type": "object", "properties": {}},
        "handler": "_list_failed_jobs",
    },
    {
        "name": "get_job_logs",
        "description": (
            "Get the last N lines of logs for a specific failed job. "
            "Use list_failed_jobs first to get job IDs."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "job_id": {"type": "integer", "description": "The job ID to fetch logs for"},
                "tail_lines": {
                    "type": "integer",
                    "description": "Number of lines from the end to return (optional; capped per model)",
                },
            },
            "required": ["job_id"],
        },
        "handler": "_get_job_logs",
    },
    {
        "name": "read_file",
        "description": (
            "Read the contents of a file in the repository checkout. "
            "Use this to inspect source files mentioned in error messages."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative file path from the repository root"},
            },
            "required": ["path"],
        },
        "handler": "_read_file",
    },
    {
        "name": "get_workflow_run_info",
        "description": "Get metadata about the current workflow run: branch, commit SHA, event type, workflow name.",
        "parameters": {"type": "object", "properties": {}},
        "handler": "_get_workflow_run_info",
    },
]

# Derived: name -> registry entry
TOOLS_BY_NAME = {t["name"]: t for t in TOOL_REGISTRY}


@dataclass(frozen=True)
class ToolSet:
    """A named, ordered subset of the registry offered to one conversation."""
    name: str
    tool_names: tuple[str, ...]

    def __contains__(self, tool_name: str) -> bool:
        return tool_name in self.tool_names

    def definitions(self) -> list[ToolDefinition]:
        return [
            ToolDefinition(
                name=name,
                description=TOOLS_BY_NAME[name]["description"],
                parameters=TOOLS_BY_NAME[name]["parameters"],
            )
            for name in self.tool_names
        ]


DIAGNOSTIC_TOOL_SET = ToolSet(
    name="diagnostic",
    tool_names=("list_failed_jobs", "get_job_logs", "read_file", "get_workflow_run_info"),
)

# The fix stage may only inspect files; it cannot enumerate jobs or re-read logs.
FIX_TOOL_SET = ToolSet(name="fix", tool_names=("read_file",))


def validate_registry(executor_cls: type, tool_sets: tuple[ToolSet, ...] = (DIAGNOSTIC_TOOL_SET, FIX_TOOL_SET)) -> None:
    """Check every registry entry is well formed and backed by a handler.

    Raises:
        ValueError: on a duplicate name, a non-object schema, a missing handler,
            or a tool set naming an unregistered tool
    """
    if len(TOOLS_BY_NAME) != len(TOOL_REGISTRY):
        raise ValueError("duplicate tool names in TOOL_REGISTRY")

    for entry in TOOL_REGISTRY:
        params = entry.get("parameters", {})
        if params.get("type") != "object" or not isinstance(params.get("properties"), dict):
            raise ValueError(f"tool '{entry['name']}' must declare an object parameter schema")
        for required in params.get("required", []):
            if required not in params["properties"]:
                raise ValueError(f"tool '{entry['name']}' requires undeclared parameter '{required}'")
        if not callable(getattr(executor_cls, entry["handler"], None)):
            raise ValueError(f"tool '{entry['name']}' has no handler '{entry['handler']}'")

    for tool_set in tool_sets:
        unknown = [n for n in tool_set.tool_names if n not in TOOLS_BY_NAME]
        if unknown:
            raise ValueError(f"tool set '{tool_set.name}' names unregistered tools: {', '.join(unknown)}")
