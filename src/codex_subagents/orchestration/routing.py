"""
Orchestrator Routing - Envelope wrapping and orchestrator output digestion.

A request that reaches a non-orchestrator agent without the orchestration
token is rewritten into an orchestrator task: a fresh todo is created and
the original task is prefixed with an [[ORCH-ENVELOPE]] block.
"""

import json
import logging
import re
import uuid
from pathlib import Path
from typing import Optional

from ..agents.builtin import ORCHESTRATOR
from ..models import DelegateParams
from .ledger import LedgerStore, new_todo
from .request_log import RequestLog

logger = logging.getLogger(__name__)

ENVELOPE_OPEN = "[[ORCH-ENVELOPE]]"
ENVELOPE_CLOSE = "[[/ORCH-ENVELOPE]]"

SUMMARY_LIMIT = 500
NEXT_ACTIONS_LIMIT = 5

_ACTION_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.+?)\s*$")


def new_request_id() -> str:
	return str(uuid.uuid4())


def build_envelope(params: DelegateParams, request_id: str) -> str:
	"""Wrap the task with the routing metadata the orchestrator reads first."""
	meta = {
		"request_id": request_id,
		"requested_agent": params.agent,
		"cwd": params.cwd,
		"mirror_repo": params.mirror_repo,
		"profile": params.profile,
		"has_persona": bool(params.persona),
	}
	return "\n".join([
		ENVELOPE_OPEN,
		json.dumps(meta, indent=2),
		ENVELOPE_CLOSE,
		"",
		params.task,
	])


async def route_through_orchestrator(
	params: DelegateParams,
	base: str | Path,
	store: LedgerStore,
	request_log: Optional[RequestLog] = None,
) -> DelegateParams:
	"""
	Create (or reuse) the todo for a request and rewrite it for the orchestrator.

	Args:
		params: The incoming delegate arguments
		base: Writable working directory that holds the ledger
		store: Ledger store used to create the todo
		request_log: Optional JSONL log receiving request_started

	Returns:
		New params with agent=orchestrator, the envelope task and a request_id
	"""
	request_id = params.request_id or new_request_id()
	todo = new_todo(request_id, user_prompt=params.task, requested_agent=params.agent)
	created = await store.create(todo, base)
	if created:
		logger.info(f"Routed {params.agent} request through orchestrator as {request_id}")
		if request_log:
			request_log.log_event(
				base,
				request_id,
				"request_started",
				agent=ORCHESTRATOR,
				input_summary=params.task[:200],
				decision=f"requested_agent={params.agent}",
			)

	return params.model_copy(update={
		"agent": ORCHESTRATOR,
		"task": build_envelope(params, request_id),
		"request_id": request_id,
	})


def summarize_output(stdout: str, stderr: str, limit: int = SUMMARY_LIMIT) -> Optional[str]:
	"""First non-empty paragraph of stdout, falling back to stderr."""
	for text in (stdout, stderr):
		for chunk in re.split(r"\n\s*\n", text.strip()):
			chunk = chunk.strip()
			if chunk:
				return chunk if len(chunk) <= limit else chunk[:limit - 3] + "..."
	return None


def extract_next_actions(stdout: str, limit: int = NEXT_ACTIONS_LIMIT) -> list[str]:
	"""Bullet or numbered lines from stdout, in order, capped at `limit`."""
	actions: list[str] = []
	for line in stdout.splitlines():
		if line.strip().startswith("[[ORCH-"):
			continue
		match = _ACTION_RE.match(line)
		if match:
			actions.append(match.group(1))
			if len(actions) >= limit:
				break
	return actions
