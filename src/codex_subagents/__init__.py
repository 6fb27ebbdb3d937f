"""codex-subagents: delegate persona-scoped tasks to Codex CLI sub-agents over MCP."""

__version__ = "0.3.0"

SERVER_NAME = "codex-subagents"
