"""
Delegation Router - Decides how a delegate call runs and drives the ledger.

Routing states:
- DIRECT: caller holds the orchestration token; run the agent as asked
  (and record a ledger step when a request_id is attached)
- NEEDS_REROUTING: untrusted call to a non-orchestrator agent; wrap it in
  an orchestrator envelope and route it to the orchestrator
- BOOTSTRAPPING: call to the orchestrator itself; make sure the request has
  a ledger, then run the orchestrator and digest its output
"""

import asyncio
import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from .agents.builtin import ORCHESTRATOR
from .agents.models import AgentSpec
from .agents.registry import AgentRegistry, resolve_agents_dir
from .batch import BatchProcessor
from .config import Config
from .executor import CodexExecutor, ExecResult
from .models import DelegateBatchParams, DelegateParams, DelegateResult, summarize_validation_error
from .orchestration.ledger import (
	LEDGER_ROOT,
	LedgerStore,
	StepStatus,
	append_step,
	new_todo,
	recompute_status,
	todo_exists,
	update_step,
	utc_now,
	write_step_outputs,
)
from .orchestration.markers import apply_markers
from .orchestration.request_log import RequestLog
from .orchestration.routing import extract_next_actions, route_through_orchestrator, summarize_output
from .orchestration.session import OrchestrationSession
from .workdir import MirrorError, mirror_repo, prepare_workdir, write_persona

logger = logging.getLogger(__name__)

TITLE_LIMIT = 80

ONLY_ORCHESTRATOR_MESSAGE = (
	"Only orchestrator can delegate to sub-agents within an orchestration request. "
	"Nested delegate calls need the orchestration token of the active run."
)

FALLBACK_DIRNAME = "codex-subagents"


class RouteState(str, Enum):
	DIRECT = "direct"
	NEEDS_REROUTING = "needs_rerouting"
	BOOTSTRAPPING = "bootstrapping"


def step_title(task: str, limit: int = TITLE_LIMIT) -> str:
	"""First non-empty line of the task, truncated."""
	first = next((line.strip() for line in task.splitlines() if line.strip()), "")
	return first if len(first) <= limit else first[:limit - 3] + "..."


def unknown_agent(agent: str) -> DelegateResult:
	return DelegateResult.failure(
		code=2,
		stderr=(
			f"Unknown agent: {agent}. Create agents/{agent}.md or pass persona+profile inline. "
			"Use the list_agents tool to see what is available."
		),
	)


class DelegationRouter:
	"""
	Runs delegate / delegate_batch requests.

	Usage:
		router = DelegationRouter.from_config(load_config())
		result = await router.delegate({"agent": "security", "task": "scan for secrets"})
	"""

	def __init__(
		self,
		registry: AgentRegistry,
		executor: CodexExecutor,
		session: Optional[OrchestrationSession] = None,
		store: Optional[LedgerStore] = None,
		request_log: Optional[RequestLog] = None,
		base_cwd: Optional[Path] = None,
		mirror_all: bool = False,
		batch_concurrency: int = 0,
	):
		self.registry = registry
		self.executor = executor
		self.session = session or OrchestrationSession()
		self.store = store or LedgerStore()
		self.request_log = request_log or RequestLog()
		self.base_cwd = (base_cwd or Path.cwd()).resolve()
		self.mirror_all = mirror_all
		self.batch = BatchProcessor(max_concurrency=batch_concurrency)

	@classmethod
	def from_config(
		cls,
		config: Config,
		session: Optional[OrchestrationSession] = None,
		request_log: Optional[RequestLog] = None,
		base_cwd: Optional[Path] = None,
	) -> "DelegationRouter":
		base = base_cwd or Path.cwd()
		return cls(
			registry=AgentRegistry(resolve_agents_dir(config.agents_dir, cwd=base)),
			executor=CodexExecutor(
				codex_bin=config.codex_bin,
				timeout_seconds=config.timeout_seconds,
				env_prefixes=config.env_prefixes,
			),
			session=session,
			request_log=request_log,
			base_cwd=base,
			mirror_all=config.mirror_all,
			batch_concurrency=config.batch_concurrency,
		)

	# ------------------------------------------------------------------
	# Public operations
	# ------------------------------------------------------------------

	async def delegate(self, params: dict[str, Any] | DelegateParams) -> dict[str, Any]:
		"""Run one delegate call. Always returns {ok, code, stdout, stderr, working_dir}."""
		result = await self._delegate(params)
		return result.model_dump()

	async def delegate_batch(self, params: dict[str, Any]) -> dict[str, Any]:
		"""
		Run several delegate calls concurrently.

		Accepts {items: [...], token?} or a single legacy delegate shape.
		Never raises; returns {results} in input order.
		"""
		if isinstance(params, dict) and "items" in params:
			try:
				batch = DelegateBatchParams.model_validate(params)
			except ValidationError as e:
				failure = DelegateResult.failure(
					code=2, stderr=f"Invalid delegate_batch arguments: {summarize_validation_error(e)}"
				)
				return {"results": [failure.model_dump()]}
			items = [self._with_batch_token(item, batch.token) for item in batch.items]
		else:
			items = [params]

		outcomes = await self.batch.execute(items, self.delegate)
		results = []
		for outcome in outcomes:
			if outcome.success:
				results.append(outcome.result)
			else:
				results.append(DelegateResult.failure(code=1, stderr=f"Unhandled error: {outcome.error}").model_dump())
		return {"results": results}

	def resolve_spec(self, params: DelegateParams) -> Optional[AgentSpec]:
		"""Registry entry for the agent, else the inline persona/profile pair."""
		known = self.registry.get(params.agent)
		if known:
			return known
		if params.persona and params.profile:
			return AgentSpec(
				profile=params.profile,
				persona=params.persona,
				approval_policy=params.approval_policy,
				sandbox_mode=params.sandbox_mode,
			)
		return None

	async def _lookup(self, params: DelegateParams) -> Optional[AgentSpec]:
		# The registry re-reads the agents directory on every lookup
		return await asyncio.to_thread(self.resolve_spec, params)

	def classify(self, params: DelegateParams) -> RouteState:
		if params.agent == ORCHESTRATOR:
			return RouteState.BOOTSTRAPPING
		if self.session.is_authorized(params.token):
			return RouteState.DIRECT
		return RouteState.NEEDS_REROUTING

	# ------------------------------------------------------------------
	# State machine
	# ------------------------------------------------------------------

	async def _delegate(self, raw: dict[str, Any] | DelegateParams) -> DelegateResult:
		try:
			params = raw if isinstance(raw, DelegateParams) else DelegateParams.model_validate(raw)
		except ValidationError as e:
			return DelegateResult.failure(code=2, stderr=f"Invalid delegate arguments: {summarize_validation_error(e)}")

		if params.cwd and not Path(params.cwd).is_dir():
			return DelegateResult.failure(code=1, stderr=f"Working directory not found: {params.cwd}")

		# Unknown agents fail before any rerouting can mask them
		authorized = self.session.is_authorized(params.token)
		if await self._lookup(params) is None and not authorized and not params.request_id:
			return unknown_agent(params.agent)

		while True:
			state = self.classify(params)
			if state == RouteState.NEEDS_REROUTING:
				if params.request_id:
					logger.warning(f"Rejected untrusted delegate to {params.agent} for request {params.request_id}")
					return DelegateResult.failure(code=1, stderr=ONLY_ORCHESTRATOR_MESSAGE)
				base, params = await asyncio.to_thread(self._writable_base, params)
				params = await route_through_orchestrator(params, base, self.store, self.request_log)
				continue
			if state == RouteState.BOOTSTRAPPING:
				params = await self._bootstrap(params)
			break

		return await self._execute(params)

	async def _bootstrap(self, params: DelegateParams) -> DelegateParams:
		"""Give an orchestrator call a request id and a ledger."""
		base, params = await asyncio.to_thread(self._writable_base, params)
		if not params.request_id:
			return await route_through_orchestrator(params, base, self.store, self.request_log)

		todo = new_todo(params.request_id, user_prompt=params.task, requested_agent=ORCHESTRATOR)
		if await self.store.create(todo, base):
			self.request_log.log_event(base, params.request_id, "request_started", agent=ORCHESTRATOR)
		return params

	def _writable_base(self, params: DelegateParams) -> tuple[Path, DelegateParams]:
		"""Directory that will hold the ledger; falls back to the temp root."""
		base = Path(params.cwd) if params.cwd else self.base_cwd
		try:
			# Only the ledger root is created; base itself must already exist
			(base / LEDGER_ROOT).mkdir(exist_ok=True)
			if os.access(base / LEDGER_ROOT, os.W_OK):
				return base, params
		except OSError as e:
			logger.debug(f"Cannot create ledger root under {base}: {e}")

		fallback = Path(tempfile.gettempdir()) / FALLBACK_DIRNAME
		(fallback / LEDGER_ROOT).mkdir(parents=True, exist_ok=True)
		logger.warning(f"{base} is not writable; using {fallback} for request {params.request_id or '(new)'}")
		return fallback, params.model_copy(update={"cwd": str(fallback)})

	def _ledger_base(self, params: DelegateParams) -> Path:
		"""Where the ledger of an existing request lives."""
		base = Path(params.cwd) if params.cwd else self.base_cwd
		fallback = Path(tempfile.gettempdir()) / FALLBACK_DIRNAME
		if params.request_id and not todo_exists(params.request_id, base) and todo_exists(params.request_id, fallback):
			return fallback
		return base

	async def _execute(self, params: DelegateParams) -> DelegateResult:
		spec = await self._lookup(params)
		if spec is None:
			return unknown_agent(params.agent)

		workdir = await asyncio.to_thread(prepare_workdir, params.agent)

		cwd = Path(params.cwd) if params.cwd else self.base_cwd
		if params.mirror_repo:
			try:
				await asyncio.to_thread(mirror_repo, cwd, workdir, self.base_cwd, mirror_all=self.mirror_all)
			except MirrorError as e:
				return DelegateResult.failure(
					code=1,
					stderr=(
						f"Failed to mirror repo into temp dir: {e}. "
						"Consider disabling mirroring or using a git worktree."
					),
					working_dir=str(workdir),
				)

		await asyncio.to_thread(write_persona, workdir, params.agent, spec)

		is_orchestrator = params.agent == ORCHESTRATOR
		logged = not is_orchestrator and self.session.is_authorized(params.token) and bool(params.request_id)
		ledger_base = await asyncio.to_thread(self._ledger_base, params) if params.request_id else None

		step_id = None
		if logged:
			step_id = await self._start_step(params, ledger_base)

		exec_cwd = workdir if params.mirror_repo else cwd
		if is_orchestrator and params.request_id:
			with self.session.orchestrating(params.request_id):
				res = await self.executor.run(spec.profile, params.task, exec_cwd)
			await self._digest_orchestrator_output(params.request_id, ledger_base, res)
		else:
			res = await self.executor.run(spec.profile, params.task, exec_cwd)

		if logged:
			await self._finish_step(params, ledger_base, step_id, res)

		stdout = res.stdout.strip()
		return DelegateResult(
			ok=res.code == 0 and bool(stdout),
			code=res.code,
			stdout=stdout,
			stderr=res.stderr.strip(),
			working_dir=str(workdir),
		)

	# ------------------------------------------------------------------
	# Ledger bookkeeping
	# ------------------------------------------------------------------

	async def _start_step(self, params: DelegateParams, base: Path) -> str:
		title = step_title(params.task)
		async with self.store.transaction(params.request_id, base) as todo:
			step = append_step(
				todo,
				title=title,
				agent=params.agent,
				status=StepStatus.RUNNING,
				prompt=params.task,
				started_at=utc_now(),
			)
			recompute_status(todo)
			step_idx = len(todo.steps)

		self.request_log.log_event(
			base,
			params.request_id,
			"step_started",
			agent=params.agent,
			step_id=step.id,
			step_idx=step_idx,
			name=title,
			input_summary=params.task[:200],
			status="started",
		)
		return step.id

	async def _finish_step(self, params: DelegateParams, base: Path, step_id: str, res: ExecResult) -> None:
		paths = await asyncio.to_thread(
			write_step_outputs, params.request_id, base, step_id, params.task, res.stdout, res.stderr
		)
		status = StepStatus.DONE if res.code == 0 else StepStatus.BLOCKED
		async with self.store.transaction(params.request_id, base) as todo:
			update_step(todo, step_id, status=status, ended_at=utc_now(), **paths)
			recompute_status(todo)

		if status == StepStatus.DONE:
			self.request_log.log_event(
				base,
				params.request_id,
				"step_completed",
				agent=params.agent,
				step_id=step_id,
				status="completed",
				output_summary=res.stdout.strip()[:200],
			)
		else:
			self.request_log.log_event(
				base,
				params.request_id,
				"step_error",
				agent=params.agent,
				step_id=step_id,
				status="error",
				error={"type": "exit_code", "message": f"exit {res.code}: {res.stderr.strip()[:200]}"},
			)

	async def _digest_orchestrator_output(self, request_id: str, base: Path, res: ExecResult) -> None:
		summary = summarize_output(res.stdout, res.stderr)
		next_actions = extract_next_actions(res.stdout)
		async with self.store.transaction(request_id, base) as todo:
			todo.summary = summary
			todo.next_actions = next_actions

		added = await apply_markers(self.store, request_id, base, res.stdout)
		if added:
			logger.info(f"Recorded {added} orchestrator marker(s) for {request_id}")

		self.request_log.log_event(
			base,
			request_id,
			"request_completed",
			agent=ORCHESTRATOR,
			status="completed" if res.code == 0 else "error",
			output_summary=(summary or "")[:200],
		)

	@staticmethod
	def _with_batch_token(item: Any, token: Optional[str]) -> Any:
		if token and isinstance(item, dict) and not item.get("token"):
			return {**item, "token": token}
		return item
