"""Agent MCP tools package.

Commands run through execute_command; output that outlives a call is
collected with read_output; terminal_contents scrapes a pane directly.
"""

from claude_agent_sdk import create_sdk_mcp_server

from .terminal import execute_tool, list_sessions_tool, read_output_tool, terminal_contents_tool

# ============================================================================
# TERMINAL_TOOLS: the MCP tools exposed to the agent.
# ============================================================================

TERMINAL_TOOLS = [
    execute_tool,
    read_output_tool,
    terminal_contents_tool,
    list_sessions_tool,
]

terminal_server = create_sdk_mcp_server(
    name="termpool",
    version="0.1.0",
    tools=TERMINAL_TOOLS,
)

__all__ = [
    "terminal_server",
    "TERMINAL_TOOLS",
    "execute_tool",
    "read_output_tool",
    "terminal_contents_tool",
    "list_sessions_tool",
]
