"""Tools module: tool registry, executor and workspace file access."""
from .codebase_tools import CodebaseTools
from .tool_registry import TOOL_REGISTRY, DIAGNOSTIC_TOOL_SET, FIX_TOOL_SET, ToolSet
from .tool_executor import ToolExecutor

__all__ = [
    'CodebaseTools',
    'TOOL_REGISTRY',
    'DIAGNOSTIC_TOOL_SET',
    'FIX_TOOL_SET',
    'ToolSet',
    'ToolExecutor',
]
