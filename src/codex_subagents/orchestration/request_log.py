"""
Request Log - Append-only JSONL audit stream per delegation request.

Each request gets orchestration/<request_id>/request.log.jsonl with one JSON
object per lifecycle event. Writes are best-effort: when the file cannot be
written the line is cached in memory and flushed on the next success.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from .ledger import ledger_dir, utc_now

logger = logging.getLogger(__name__)

LOG_FILENAME = "request.log.jsonl"

EVENTS = frozenset({
	"request_started",
	"step_started",
	"step_update",
	"step_completed",
	"step_error",
	"request_completed",
})

Notify = Callable[[str, dict[str, Any]], None]


class PlanStatus(str, Enum):
	IN_PROGRESS = "in_progress"
	COMPLETED = "completed"
	ERROR = "error"


@dataclass
class _PlanStep:
	id: str
	name: str
	status: PlanStatus = PlanStatus.IN_PROGRESS


@dataclass
class _RunState:
	dir: Path
	steps: list[_PlanStep] = field(default_factory=list)
	cache: list[str] = field(default_factory=list)
	degraded: bool = False
	started: bool = False
	start: float = field(default_factory=time.monotonic)

	def find(self, step_id: Optional[str]) -> Optional[_PlanStep]:
		return next((s for s in self.steps if s.id == step_id), None)


class RequestLog:
	"""Tracks in-flight runs and appends their lifecycle events to disk."""

	def __init__(self, notify: Optional[Notify] = None):
		self.notify = notify
		self._runs: dict[str, _RunState] = {}

	def log_event(self, base: str | Path, run_id: str, event: str, **fields: Any) -> dict[str, Any]:
		"""
		Record a lifecycle event for a run.

		Args:
			base: Working directory that holds the orchestration/ tree
			run_id: Request id
			event: One of EVENTS
			**fields: Extra record fields (agent, step_id, name, error, ...)

		Returns:
			The record as written (or cached)
		"""
		if event not in EVENTS:
			raise ValueError(f"Unknown log event: {event}")

		state = self._runs.get(run_id)
		if event == "request_started" or state is None:
			directory = ledger_dir(run_id, base)
			state = _RunState(dir=directory, started=event == "request_started")
			self._runs[run_id] = state

		record: dict[str, Any] = {"run_id": run_id, "event": event, **fields}
		self._track(state, record)

		record.setdefault("ts", utc_now())
		self._append(state, json.dumps(record) + "\n")
		self._notify_plan(state, record)

		if event == "request_completed" or self._idle(state, event):
			self._runs.pop(run_id, None)
		return record

	def _idle(self, state: _RunState, event: str) -> bool:
		"""A run seen only through its steps is forgotten once none is in progress."""
		if state.started or state.cache or event not in {"step_completed", "step_error"}:
			return False
		return all(s.status != PlanStatus.IN_PROGRESS for s in state.steps)

	def _track(self, state: _RunState, record: dict[str, Any]) -> None:
		event = record["event"]
		step_id = record.get("step_id")
		if event == "step_started":
			for s in state.steps:
				if s.status == PlanStatus.IN_PROGRESS:
					s.status = PlanStatus.COMPLETED
			if step_id and record.get("name"):
				state.steps.append(_PlanStep(id=step_id, name=record["name"]))
		elif event == "step_completed":
			step = state.find(step_id)
			if step:
				step.status = PlanStatus.COMPLETED
		elif event == "step_error":
			step = state.find(step_id)
			if step:
				step.status = PlanStatus.ERROR
		elif event == "request_completed":
			record.setdefault("steps_total", len(state.steps))
			record.setdefault(
				"steps_succeeded", sum(1 for s in state.steps if s.status == PlanStatus.COMPLETED)
			)
			record.setdefault("steps_failed", sum(1 for s in state.steps if s.status == PlanStatus.ERROR))
			record.setdefault("elapsed_ms", int((time.monotonic() - state.start) * 1000))

	def _append(self, state: _RunState, line: str) -> None:
		path = state.dir / LOG_FILENAME
		try:
			state.dir.mkdir(parents=True, exist_ok=True)
			with open(path, "a", encoding="utf-8") as f:
				if state.cache:
					f.write("".join(state.cache))
				f.write(line)
			state.cache = []
			state.degraded = False
		except OSError as e:
			state.cache.append(line)
			if not state.degraded:
				logger.warning(f"Request log degraded for {state.dir}: {e}; caching locally")
				self._send("console", {"text": "logging degraded; caching locally"})
			state.degraded = True

	def _notify_plan(self, state: _RunState, record: dict[str, Any]) -> None:
		event = record["event"]
		if event in {"step_started", "step_completed", "step_error", "request_completed"}:
			lines = [f"{idx}. {s.name} - {s.status.value}" for idx, s in enumerate(state.steps, start=1)]
			self._send("update_plan", {"steps": lines})
		elif event == "step_update" and record.get("output_summary"):
			self._send("console", {"text": str(record["output_summary"])[:120]})

	def _send(self, method: str, params: dict[str, Any]) -> None:
		if not self.notify:
			return
		try:
			self.notify(method, params)
		except Exception:
			logger.debug(f"Notification {method} failed", exc_info=True)
