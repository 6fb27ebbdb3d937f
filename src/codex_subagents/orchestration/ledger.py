"""
Orchestration Ledger - File-backed todo records for delegation requests.

Layout (relative to the request's working directory):
	orchestration/<request_id>/todo.json
	orchestration/<request_id>/steps/<step_id>/{prompt,stdout,stderr}.txt

Features:
- Atomic saves (temp sibling file + rename)
- Sequential step ids (step-1, step-2, ...)
- Per-request single-writer transactions within one server process
"""

import asyncio
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

LEDGER_ROOT = "orchestration"
TODO_FILENAME = "todo.json"


class LedgerError(Exception):
	"""Raised when a todo file cannot be read or parsed."""
	pass


class TodoNotFoundError(LedgerError):
	"""Raised when a todo file does not exist for a request id."""
	pass


class StepStatus(str, Enum):
	"""Status of a single step. Transitions only move forward."""
	QUEUED = "queued"
	RUNNING = "running"
	DONE = "done"
	BLOCKED = "blocked"
	CANCELED = "canceled"


class TodoStatus(str, Enum):
	"""Status of a whole delegation request."""
	ACTIVE = "active"
	DONE = "done"
	CANCELED = "canceled"


_STEP_RANK = {
	StepStatus.QUEUED: 0,
	StepStatus.RUNNING: 1,
	StepStatus.DONE: 2,
	StepStatus.BLOCKED: 2,
	StepStatus.CANCELED: 2,
}


def utc_now() -> str:
	return datetime.now(timezone.utc).isoformat()


class Step(BaseModel):
	"""One executed or logged sub-unit of an orchestration run."""
	id: str
	title: str
	agent: str
	status: StepStatus
	stdout_path: Optional[str] = None
	stderr_path: Optional[str] = None
	prompt: Optional[str] = None
	prompt_path: Optional[str] = None
	started_at: Optional[str] = None
	ended_at: Optional[str] = None
	notes: Optional[str] = None


class Todo(BaseModel):
	"""Audit record for one delegation request."""
	request_id: str
	created_at: str = Field(default_factory=utc_now)
	user_prompt: str
	requested_agent: str
	status: TodoStatus = Field(default=TodoStatus.ACTIVE)
	steps: list[Step] = Field(default_factory=list)
	next_actions: list[str] = Field(default_factory=list)
	summary: Optional[str] = None


def ledger_dir(request_id: str, base: str | Path) -> Path:
	return Path(base) / LEDGER_ROOT / request_id


def todo_path(request_id: str, base: str | Path) -> Path:
	return ledger_dir(request_id, base) / TODO_FILENAME


def step_dir(request_id: str, base: str | Path, step_id: str) -> Path:
	return ledger_dir(request_id, base) / "steps" / step_id


def todo_exists(request_id: str, base: str | Path) -> bool:
	return todo_path(request_id, base).exists()


def load_todo(request_id: str, base: str | Path) -> Todo:
	"""
	Read and parse the todo for a request.

	Raises:
		TodoNotFoundError: If no todo.json exists for the request
		LedgerError: If the file cannot be parsed
	"""
	path = todo_path(request_id, base)
	try:
		raw = path.read_text(encoding="utf-8")
	except FileNotFoundError as e:
		raise TodoNotFoundError(f"No todo for request {request_id} at {path}") from e
	try:
		return Todo.model_validate_json(raw)
	except ValidationError as e:
		raise LedgerError(f"Corrupt todo for request {request_id} at {path}: {e}") from e


def save_todo(todo: Todo, base: str | Path) -> Path:
	"""Write the todo to a temp sibling, then atomically rename it into place."""
	path = todo_path(todo.request_id, base)
	path.parent.mkdir(parents=True, exist_ok=True)
	payload = todo.model_dump_json(indent=2)

	fd, temp = tempfile.mkstemp(prefix=".todo.", suffix=".tmp", dir=str(path.parent))
	try:
		with os.fdopen(fd, "w", encoding="utf-8") as f:
			f.write(payload)
		os.replace(temp, path)
	except BaseException:
		Path(temp).unlink(missing_ok=True)
		raise
	return path


def new_todo(request_id: str, user_prompt: str, requested_agent: str) -> Todo:
	return Todo(request_id=request_id, user_prompt=user_prompt, requested_agent=requested_agent)


def append_step(
	todo: Todo,
	*,
	title: str,
	agent: str,
	status: StepStatus = StepStatus.QUEUED,
	**fields: Optional[str],
) -> Step:
	"""Append a step with the next sequential id and return it."""
	step = Step(
		id=f"step-{len(todo.steps) + 1}",
		title=title,
		agent=agent,
		status=status,
		**fields,
	)
	todo.steps.append(step)
	return step


def update_step(todo: Todo, step_id: str, **patch) -> Optional[Step]:
	"""Merge patch fields into the step with the given id. No-op for unknown ids."""
	for idx, step in enumerate(todo.steps):
		if step.id != step_id:
			continue
		patch = dict(patch)
		if "status" in patch:
			new_status = StepStatus(patch["status"])
			if _STEP_RANK[new_status] < _STEP_RANK[step.status]:
				logger.warning(f"Ignoring backward status change {step.status.value} -> {new_status.value} for {step_id}")
				del patch["status"]
			else:
				patch["status"] = new_status
		todo.steps[idx] = step.model_copy(update=patch)
		return todo.steps[idx]
	return None


def recompute_status(todo: Todo) -> TodoStatus:
	"""Active while any step is running, done otherwise. Canceled is sticky."""
	if todo.status != TodoStatus.CANCELED:
		running = any(s.status == StepStatus.RUNNING for s in todo.steps)
		todo.status = TodoStatus.ACTIVE if running else TodoStatus.DONE
	return todo.status


def finalize(todo: Todo, summary: str, status: TodoStatus = TodoStatus.DONE) -> None:
	todo.status = status
	todo.summary = summary


def write_step_outputs(
	request_id: str,
	base: str | Path,
	step_id: str,
	prompt: str,
	stdout: str,
	stderr: str,
) -> dict[str, str]:
	"""Persist the exact prompt and outputs of a step. Returns the file paths."""
	target = step_dir(request_id, base, step_id)
	target.mkdir(parents=True, exist_ok=True)
	paths = {}
	for key, filename, content in (
		("prompt_path", "prompt.txt", prompt),
		("stdout_path", "stdout.txt", stdout),
		("stderr_path", "stderr.txt", stderr),
	):
		path = target / filename
		path.write_text(content, encoding="utf-8")
		paths[key] = str(path)
	return paths


class LedgerStore:
	"""
	Serializes load-modify-save cycles per request id.

	Without this, two steps of one request finishing together would each
	load the same todo and the last save would drop the other's update.
	File access runs in worker threads so the event loop keeps serving
	other requests.

	Usage:
		store = LedgerStore()
		async with store.transaction(request_id, base) as todo:
			append_step(todo, title="scan", agent="security", status=StepStatus.RUNNING)
	"""

	def __init__(self):
		self._locks: dict[tuple[str, str], asyncio.Lock] = {}
		self._holders: dict[tuple[str, str], int] = {}

	@asynccontextmanager
	async def _locked(self, request_id: str, base: str | Path) -> AsyncIterator[None]:
		"""Hold the request lock; drop it once nobody holds or waits for it."""
		key = (str(Path(base).resolve()), request_id)
		lock = self._locks.setdefault(key, asyncio.Lock())
		self._holders[key] = self._holders.get(key, 0) + 1
		try:
			async with lock:
				yield
		finally:
			self._holders[key] -= 1
			if not self._holders[key]:
				del self._holders[key]
				del self._locks[key]

	@asynccontextmanager
	async def transaction(self, request_id: str, base: str | Path) -> AsyncIterator[Todo]:
		"""Load the todo under the request lock and save it on clean exit."""
		async with self._locked(request_id, base):
			todo = await asyncio.to_thread(load_todo, request_id, base)
			yield todo
			await asyncio.to_thread(save_todo, todo, base)

	async def create(self, todo: Todo, base: str | Path) -> bool:
		"""Save a fresh todo unless one already exists. Returns True if created."""
		async with self._locked(todo.request_id, base):
			if await asyncio.to_thread(todo_exists, todo.request_id, base):
				return False
			await asyncio.to_thread(save_todo, todo, base)
			return True
