"""
LocalPilot Tool Layer

Everything between a model-requested ToolCall and the tool server that
runs it:

    ToolCall → ToolExecutionEngine (schema check, timeout) → ToolServer

Components:
- ToolServer: transport-neutral interface (list_tools, call_tool, ping)
- StdioToolServer: JSON-RPC 2.0 over a subprocess's stdin/stdout
- LocalToolServer: in-process handlers
- ToolRegistry: discovery and the name -> descriptor cache
- ToolExecutionEngine: validated, bounded dispatch
"""

from localpilot.tools.executor import ToolExecutionEngine
from localpilot.tools.local import LocalToolServer, RegisteredTool
from localpilot.tools.protocol import ToolServer, ToolServerResponse
from localpilot.tools.registry import ToolRegistry
from localpilot.tools.stdio import StdioToolServer

__all__ = [
    "LocalToolServer",
    "RegisteredTool",
    "StdioToolServer",
    "ToolExecutionEngine",
    "ToolRegistry",
    "ToolServer",
    "ToolServerResponse",
]
