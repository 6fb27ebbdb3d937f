"""
codex-subagents MCP server.

A narrow JSON-RPC dispatcher (initialize, tools/list, tools/call, shutdown)
over the custom stdio framing in transport.py.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from mcp import types

from . import SERVER_NAME, __version__
from .config import Config, load_config
from .models import DelegateResult
from .orchestration.request_log import RequestLog
from .orchestration.session import OrchestrationSession
from .router import DelegationRouter
from .tools import DELEGATION_TOOLS, ToolKind, ToolRegistry, register_all_tools
from .transport import FrameDecoder, StdioTransport

logger = logging.getLogger(__name__)

JSONRPC = "2.0"
INITIALIZED_NOTIFICATION = "notifications/initialized"
LOG_NOTIFICATION = "notifications/message"

Send = Callable[[dict[str, Any]], None]


class RpcError(Exception):
	"""Protocol-level error answered with a JSON-RPC error object."""

	def __init__(self, code: int, message: str):
		super().__init__(message)
		self.code = code
		self.message = message


def _dump(model: Any) -> dict[str, Any]:
	return model.model_dump(by_alias=True, exclude_none=True, mode="json")


class SubagentsServer:
	"""
	Dispatches decoded JSON-RPC messages.

	Usage:
		transport = StdioTransport()
		server = SubagentsServer(load_config(), send=transport.send)
		await server.serve(transport)
	"""

	def __init__(
		self,
		config: Config,
		send: Send,
		session: Optional[OrchestrationSession] = None,
		router: Optional[DelegationRouter] = None,
		base_cwd: Optional[Path] = None,
	):
		self.config = config
		self.send = send
		self.session = session or OrchestrationSession()
		if router is None:
			request_log = RequestLog(notify=self.notify if config.debug else None)
			router = DelegationRouter.from_config(
				config, session=self.session, request_log=request_log, base_cwd=base_cwd
			)
		self.router = router
		self.tools = ToolRegistry()
		register_all_tools(self.tools, self.router, self.router.registry)

		self._methods: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
			"initialize": self._initialize,
			"tools/list": self._tools_list,
			"tools/call": self._tools_call,
			"shutdown": self._shutdown,
		}
		self._pending: set[asyncio.Task] = set()

	# ------------------------------------------------------------------
	# Outgoing messages
	# ------------------------------------------------------------------

	def notify(self, method: str, params: dict[str, Any]) -> None:
		self.send({"jsonrpc": JSONRPC, "method": method, "params": params})

	def _respond(self, msg_id: Any, result: Any) -> None:
		self.send({"jsonrpc": JSONRPC, "id": msg_id, "result": result})

	def _error(self, msg_id: Any, code: int, message: str) -> None:
		error = types.ErrorData(code=code, message=message)
		self.send({"jsonrpc": JSONRPC, "id": msg_id, "error": _dump(error)})

	def _debug(self, level: str, data: dict[str, Any]) -> None:
		if self.config.debug:
			self.notify(LOG_NOTIFICATION, {"level": level, "logger": SERVER_NAME, "data": data})

	# ------------------------------------------------------------------
	# Dispatch
	# ------------------------------------------------------------------

	async def serve(self, transport: StdioTransport) -> None:
		"""Dispatch every incoming message as its own task until EOF."""
		async for message in transport.messages():
			self.dispatch(message)
		if self._pending:
			await asyncio.gather(*self._pending, return_exceptions=True)

	def dispatch(self, message: Any) -> asyncio.Task:
		task = asyncio.create_task(self.handle(message))
		self._pending.add(task)
		task.add_done_callback(self._pending.discard)
		return task

	async def handle(self, message: Any) -> None:
		"""Answer one message. Notifications (no id) never get a reply."""
		if not isinstance(message, dict):
			logger.debug(f"Ignoring non-object message: {message!r}")
			return

		is_notification = "id" not in message
		msg_id = message.get("id")
		method = message.get("method")
		handler = self._methods.get(method) if isinstance(method, str) else None
		if handler is None:
			if not is_notification:
				self._error(msg_id, types.METHOD_NOT_FOUND, f"Method not found: {method}")
			return

		params = message.get("params")
		try:
			result = await handler(params if isinstance(params, dict) else {})
		except RpcError as e:
			if not is_notification:
				self._error(msg_id, e.code, e.message)
			return
		except Exception as e:
			logger.exception(f"Unhandled error in {method}")
			if not is_notification:
				self._error(msg_id, types.INTERNAL_ERROR, f"Unhandled error in {method}: {e}")
			return

		if not is_notification:
			self._respond(msg_id, result)

		if method == "initialize":
			# Let the initialize reply go out first
			await asyncio.sleep(0)
			self.notify(INITIALIZED_NOTIFICATION, {})

	# ------------------------------------------------------------------
	# Methods
	# ------------------------------------------------------------------

	async def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
		client = params.get("clientInfo") or {}
		logger.info(f"initialize from {client.get('name', 'unknown client')}")
		result = types.InitializeResult(
			protocolVersion=types.LATEST_PROTOCOL_VERSION,
			capabilities=types.ServerCapabilities(tools=types.ToolsCapability(listChanged=False)),
			serverInfo=types.Implementation(name=SERVER_NAME, version=__version__),
		)
		return _dump(result)

	async def _tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
		return {"tools": [_dump(tool) for tool in self.tools.list_tools()]}

	async def _tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
		name = params.get("name")
		tool = self.tools.get(name) if isinstance(name, str) else None
		if tool is None:
			raise RpcError(types.INVALID_PARAMS, f"Unknown tool: {name}")

		args = params.get("arguments")
		if args is None:
			args = {}
		if tool.kind in DELEGATION_TOOLS and isinstance(args, dict):
			args = self.inject_orchestration(tool.kind, args)

		is_error = False
		try:
			data = await tool.handler(args)
		except Exception as e:
			logger.exception(f"Unhandled error in {tool.kind.value}")
			self._debug("error", {"tool": tool.kind.value, "error": repr(e)})
			data = DelegateResult.failure(code=1, stderr=f"Unhandled error in {tool.kind.value}: {e}").model_dump()
			is_error = True

		text = json.dumps(data, indent=2 if self.config.debug else None)
		result = types.CallToolResult(content=[types.TextContent(type="text", text=text)], isError=is_error)
		return _dump(result)

	async def _shutdown(self, params: dict[str, Any]) -> None:
		logger.info("shutdown requested")
		return None

	def inject_orchestration(self, kind: ToolKind, args: dict[str, Any]) -> dict[str, Any]:
		"""
		Attribute a delegation call to the orchestrator run in flight.

		Only fills token / request_id where the caller left them empty.
		"""
		request_id = self.session.current_request_id
		if request_id is None:
			return args

		args = dict(args)
		if not args.get("token"):
			args["token"] = self.session.token

		if kind == ToolKind.DELEGATE_BATCH and isinstance(args.get("items"), list):
			args["items"] = [
				{**item, "request_id": request_id} if isinstance(item, dict) and not item.get("request_id") else item
				for item in args["items"]
			]
		elif "items" not in args and not args.get("request_id"):
			args["request_id"] = request_id

		self._debug("debug", {"injected": kind.value, "request_id": request_id})
		return args


async def run_stdio(config: Optional[Config] = None) -> None:
	"""Serve over stdin/stdout until stdin closes."""
	config = config or load_config()
	transport = StdioTransport(FrameDecoder(config.max_message_bytes, config.max_buffer_bytes))
	server = SubagentsServer(config, send=transport.send)
	logger.info(f"{SERVER_NAME} {__version__} ready (agents dir: {server.router.registry.agents_dir or 'none'})")
	await server.serve(transport)
