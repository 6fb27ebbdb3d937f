"""Shared test helpers for codex-subagents tests."""

import json
from pathlib import Path
from typing import Any

from codex_subagents.executor import ExecResult
from codex_subagents.orchestration.ledger import LEDGER_ROOT, Todo, load_todo


class FakeExecutor:
	"""Stands in for CodexExecutor: records calls and answers with canned results."""

	def __init__(self, respond=None):
		self.calls: list[dict] = []
		self.respond = respond or (lambda profile, task, cwd: ExecResult(code=0, stdout=f"ran {profile}", stderr=""))

	async def run(self, profile, task, cwd):
		self.calls.append({"profile": profile, "task": task, "cwd": str(cwd)})
		result = self.respond(profile, task, cwd)
		if hasattr(result, "__await__"):
			result = await result
		return result


def only_request_id(base: Path) -> str:
	"""The single request directory under <base>/orchestration."""
	dirs = [p.name for p in (base / LEDGER_ROOT).iterdir() if p.is_dir()]
	assert len(dirs) == 1, dirs
	return dirs[0]


def read_todo(base: Path, request_id: str | None = None) -> Todo:
	return load_todo(request_id or only_request_id(base), base)


def read_log(base: Path, request_id: str) -> list[dict[str, Any]]:
	path = base / LEDGER_ROOT / request_id / "request.log.jsonl"
	return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


def tool_payload(response: dict[str, Any]) -> Any:
	"""Decode the JSON text content of a tools/call response."""
	return json.loads(response["result"]["content"][0]["text"])
