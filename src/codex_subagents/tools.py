"""MCP tool registration - the closed set of tools this server exposes."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable

from mcp import types

from .agents.registry import AgentRegistry, validate_agents
from .models import delegate_batch_input_schema, delegate_input_schema
from .router import DelegationRouter

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]


class ToolRegistryError(Exception):
	"""Raised when the tool set is incomplete or registered twice."""
	pass


class ToolKind(str, Enum):
	DELEGATE = "delegate"
	DELEGATE_BATCH = "delegate_batch"
	LIST_AGENTS = "list_agents"
	VALIDATE_AGENTS = "validate_agents"


# Tools whose arguments carry orchestration token / request_id
DELEGATION_TOOLS = frozenset({ToolKind.DELEGATE, ToolKind.DELEGATE_BATCH})


@dataclass(frozen=True)
class ToolDef:
	kind: ToolKind
	description: str
	input_schema: dict[str, Any]
	handler: ToolHandler

	def to_tool(self) -> types.Tool:
		return types.Tool(name=self.kind.value, description=self.description, inputSchema=self.input_schema)


class ToolRegistry:
	"""
	Explicit name -> handler table.

	Usage:
		registry = ToolRegistry()

		@registry.tool(ToolKind.LIST_AGENTS, "List agents", {"type": "object"})
		async def list_agents(args):
			...

		registry.validate()
	"""

	def __init__(self):
		self._tools: dict[ToolKind, ToolDef] = {}

	def tool(self, kind: ToolKind, description: str, input_schema: dict[str, Any]) -> Callable[[ToolHandler], ToolHandler]:
		def decorator(handler: ToolHandler) -> ToolHandler:
			if kind in self._tools:
				raise ToolRegistryError(f"Tool registered twice: {kind.value}")
			self._tools[kind] = ToolDef(kind=kind, description=description, input_schema=input_schema, handler=handler)
			return handler
		return decorator

	def get(self, name: str) -> ToolDef | None:
		try:
			return self._tools.get(ToolKind(name))
		except ValueError:
			return None

	def list_tools(self) -> list[types.Tool]:
		return [self._tools[kind].to_tool() for kind in ToolKind if kind in self._tools]

	def validate(self) -> None:
		"""Fail fast when a tool kind has no handler."""
		missing = [kind.value for kind in ToolKind if kind not in self._tools]
		if missing:
			raise ToolRegistryError(f"Tools without a handler: {', '.join(missing)}")


def register_all_tools(registry: ToolRegistry, router: DelegationRouter, agents: AgentRegistry) -> None:
	"""Register every tool and check the set is complete."""

	@registry.tool(
		ToolKind.DELEGATE,
		"Run a named sub-agent (or an inline persona+profile) as an isolated Codex task. "
		"Untrusted calls are routed through the orchestrator.",
		delegate_input_schema(),
	)
	async def delegate(args: dict[str, Any]) -> dict[str, Any]:
		return await router.delegate(args)

	@registry.tool(
		ToolKind.DELEGATE_BATCH,
		"Run several delegate calls concurrently. Results keep the order of items.",
		delegate_batch_input_schema(),
	)
	async def delegate_batch(args: dict[str, Any]) -> dict[str, Any]:
		return await router.delegate_batch(args)

	@registry.tool(
		ToolKind.LIST_AGENTS,
		"List available sub-agents from built-ins and the custom agents dir.",
		{"type": "object", "properties": {}, "additionalProperties": False},
	)
	async def list_agents(args: dict[str, Any]) -> dict[str, Any]:
		return {"agents": await asyncio.to_thread(agents.list_rows)}

	@registry.tool(
		ToolKind.VALIDATE_AGENTS,
		"Validate agent files and report errors/warnings per file.",
		{"type": "object", "properties": {"dir": {"type": "string"}}, "additionalProperties": False},
	)
	async def validate(args: dict[str, Any]) -> dict[str, Any]:
		directory = args.get("dir")
		return await asyncio.to_thread(validate_agents, Path(directory) if directory else agents.agents_dir)

	registry.validate()
	logger.debug(f"Registered tools: {', '.join(k.value for k in ToolKind)}")
