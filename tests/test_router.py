"""Tests for the delegation router: gating, rerouting, ledger bookkeeping, batches."""

import asyncio
import os
import tempfile
import threading
from pathlib import Path

import pytest

from codex_subagents.executor import ExecResult
from codex_subagents.orchestration.ledger import LEDGER_ROOT, LedgerStore, new_todo
from codex_subagents.orchestration.routing import ENVELOPE_OPEN, route_through_orchestrator
from codex_subagents.models import DelegateParams
from codex_subagents.router import FALLBACK_DIRNAME, ONLY_ORCHESTRATOR_MESSAGE, RouteState, step_title

from .helpers import only_request_id, read_log, read_todo


class TestValidationAndGating:
	"""Failures that happen before anything runs."""

	@pytest.mark.asyncio
	async def test_invalid_arguments(self, router):
		result = await router.delegate({})
		assert result["ok"] is False
		assert result["code"] == 2
		assert result["stderr"].startswith("Invalid delegate arguments:")
		assert "agent" in result["stderr"] and "task" in result["stderr"]

	@pytest.mark.asyncio
	async def test_invalid_enum_value(self, router):
		result = await router.delegate({"agent": "reviewer", "task": "t", "sandbox_mode": "yolo"})
		assert result["code"] == 2
		assert "sandbox_mode" in result["stderr"]

	@pytest.mark.asyncio
	async def test_unknown_agent(self, router, workspace):
		"""Unknown agents fail before rerouting, so no ledger appears."""
		result = await router.delegate({"agent": "ghost", "task": "boo", "cwd": str(workspace)})
		assert result == {
			"ok": False,
			"code": 2,
			"stdout": "",
			"stderr": result["stderr"],
			"working_dir": "",
		}
		assert "Unknown agent: ghost" in result["stderr"]
		assert not (workspace / LEDGER_ROOT).exists()

	@pytest.mark.asyncio
	async def test_unknown_agent_with_token(self, router):
		result = await router.delegate({"agent": "ghost", "task": "boo", "token": router.session.token})
		assert result["code"] == 2
		assert "Unknown agent" in result["stderr"]

	@pytest.mark.asyncio
	async def test_untrusted_nested_call_rejected(self, router):
		result = await router.delegate({"agent": "reviewer", "task": "t", "request_id": "req-1"})
		assert result["ok"] is False
		assert result["code"] == 1
		assert result["stderr"] == ONLY_ORCHESTRATOR_MESSAGE

	@pytest.mark.asyncio
	async def test_wrong_token_rejected(self, router):
		result = await router.delegate({"agent": "reviewer", "task": "t", "token": "f" * 64, "request_id": "req-1"})
		assert "Only orchestrator" in result["stderr"]

	@pytest.mark.asyncio
	async def test_non_ascii_token_rejected(self, router):
		item = {"agent": "debugger", "task": "run", "token": "tökén", "request_id": "req-1"}
		result = await router.delegate(item)
		assert result["code"] == 1
		assert result["stderr"] == ONLY_ORCHESTRATOR_MESSAGE

		batch = await router.delegate_batch({"items": [item]})
		assert batch["results"][0]["stderr"] == ONLY_ORCHESTRATOR_MESSAGE

	@pytest.mark.asyncio
	async def test_missing_cwd_reported(self, router, workspace, fake_executor):
		"""A mistyped cwd is reported, not created."""
		missing = workspace / "no-such-dir"
		result = await router.delegate({"agent": "security", "task": "scan", "cwd": str(missing)})
		assert result["code"] == 1
		assert result["stderr"] == f"Working directory not found: {missing}"
		assert not missing.exists()
		assert fake_executor.calls == []

	def test_classify(self, router):
		token = router.session.token
		assert router.classify(DelegateParams(agent="orchestrator", task="t")) == RouteState.BOOTSTRAPPING
		assert router.classify(DelegateParams(agent="reviewer", task="t", token=token)) == RouteState.DIRECT
		assert router.classify(DelegateParams(agent="reviewer", task="t")) == RouteState.NEEDS_REROUTING


class TestRerouting:
	"""Untrusted calls go through the orchestrator."""

	@pytest.mark.asyncio
	async def test_security_request_creates_active_ledger(self, router, workspace):
		"""Example: delegate(security, scan) with a missing codex binary."""
		result = await router.delegate({"agent": "security", "task": "scan", "cwd": str(workspace)})

		assert result["ok"] is False
		assert result["code"] == 127
		assert "codex binary not found" in result["stderr"]

		request_id = only_request_id(workspace)
		todo = read_todo(workspace, request_id)
		assert todo.requested_agent == "security"
		assert todo.user_prompt == "scan"
		assert todo.status.value == "active"
		assert todo.summary and "codex binary not found" in todo.summary

		events = [e["event"] for e in read_log(workspace, request_id)]
		assert events[0] == "request_started"
		assert events[-1] == "request_completed"

	@pytest.mark.asyncio
	async def test_orchestrator_receives_envelope(self, router, workspace, fake_executor):
		await router.delegate({"agent": "reviewer", "task": "review auth.py", "cwd": str(workspace)})

		assert len(fake_executor.calls) == 1
		call = fake_executor.calls[0]
		assert call["profile"] == "orchestrator"
		assert call["task"].startswith(ENVELOPE_OPEN)
		assert call["task"].endswith("\n\nreview auth.py")
		assert '"requested_agent": "reviewer"' in call["task"]
		assert call["cwd"] == str(workspace)

	@pytest.mark.asyncio
	async def test_session_marks_run_active_during_execution(self, router, workspace, fake_executor):
		seen = []

		def respond(profile, task, cwd):
			seen.append(router.session.current_request_id)
			return ExecResult(code=0, stdout="ok", stderr="")

		fake_executor.respond = respond
		await router.delegate({"agent": "reviewer", "task": "t", "cwd": str(workspace)})

		assert seen == [only_request_id(workspace)]
		assert router.session.current_request_id is None

	@pytest.mark.asyncio
	async def test_orchestrator_output_digested(self, router, workspace, fake_executor):
		"""Summary, next actions and markers land in the ledger."""
		stdout = "\n".join([
			"[[ORCH-THINK]] {\"text\":\"plan\"}",
			"[[ORCH-DECISION]] {\"text\":\"go\"}",
			"Reviewed the module.",
			"",
			"- add tests",
			"- fix lint",
		])
		fake_executor.respond = lambda profile, task, cwd: ExecResult(code=0, stdout=stdout, stderr="")

		result = await router.delegate({"agent": "orchestrator", "task": "plan it", "cwd": str(workspace)})
		assert result["ok"] is True

		todo = read_todo(workspace)
		assert todo.requested_agent == "orchestrator"
		assert todo.next_actions == ["add tests", "fix lint"]
		assert todo.summary.startswith("[[ORCH-THINK]]")
		assert [s.title for s in todo.steps] == ["think: plan", "decision: go"]
		assert all(s.status.value == "done" and s.agent == "orchestrator" for s in todo.steps)


class TestIdempotence:
	"""Reusing a request id never forks the ledger."""

	@pytest.mark.asyncio
	async def test_route_twice_same_request_id(self, workspace):
		store = LedgerStore()
		params = DelegateParams(agent="security", task="scan", request_id="req-1")

		first = await route_through_orchestrator(params, workspace, store)
		created_at = read_todo(workspace, "req-1").created_at
		second = await route_through_orchestrator(params, workspace, store)

		assert first.request_id == second.request_id == "req-1"
		assert only_request_id(workspace) == "req-1"
		assert read_todo(workspace, "req-1").created_at == created_at

	@pytest.mark.asyncio
	async def test_orchestrator_with_request_id_twice(self, router, workspace, fake_executor):
		args = {"agent": "orchestrator", "task": "t", "request_id": "req-7", "cwd": str(workspace)}
		await router.delegate(args)
		await router.delegate(args)
		assert only_request_id(workspace) == "req-7"
		assert read_todo(workspace, "req-7").requested_agent == "orchestrator"


class TestUnwritableCwd:
	"""Ledgers fall back to the temp root when cwd cannot be written."""

	@pytest.fixture
	def read_only_workspace(self, workspace, tmp_path, monkeypatch):
		temp_root = tmp_path / "tmp"
		temp_root.mkdir()
		monkeypatch.setattr(tempfile, "tempdir", str(temp_root))

		real_access = os.access

		def access(path, mode, *args, **kwargs):
			if Path(path).is_relative_to(workspace):
				return False
			return real_access(path, mode, *args, **kwargs)

		monkeypatch.setattr(os, "access", access)
		return temp_root / FALLBACK_DIRNAME

	@pytest.mark.asyncio
	async def test_routed_request_uses_fallback(self, router, workspace, fake_executor, read_only_workspace):
		fallback = read_only_workspace
		result = await router.delegate({"agent": "security", "task": "scan", "cwd": str(workspace)})

		assert result["ok"] is True
		request_id = only_request_id(fallback)
		assert (fallback / LEDGER_ROOT / request_id / "todo.json").is_file()
		assert not any((workspace / LEDGER_ROOT).iterdir())
		assert read_todo(fallback, request_id).requested_agent == "security"
		assert fake_executor.calls[0]["cwd"] == str(fallback)
		assert [e["event"] for e in read_log(fallback, request_id)] == ["request_started", "request_completed"]

	@pytest.mark.asyncio
	async def test_follow_up_step_finds_fallback_ledger(self, router, workspace, fake_executor, read_only_workspace):
		fallback = read_only_workspace
		await router.delegate({"agent": "security", "task": "scan", "cwd": str(workspace)})
		request_id = only_request_id(fallback)

		result = await router.delegate({
			"agent": "reviewer",
			"task": "review findings",
			"token": router.session.token,
			"request_id": request_id,
			"cwd": str(workspace),
		})

		assert result["ok"] is True
		assert fake_executor.calls[-1]["cwd"] == str(workspace)
		steps = read_todo(fallback, request_id).steps
		assert [(s.agent, s.status.value) for s in steps] == [("reviewer", "done")]
		assert not (workspace / LEDGER_ROOT / request_id).exists()


class TestLoggedSteps:
	"""Authorized calls with a request id are recorded as steps."""

	async def _seed(self, router, workspace, request_id="req-1"):
		await router.store.create(new_todo(request_id, "user prompt", "orchestrator"), workspace)

	@pytest.mark.asyncio
	async def test_debugger_missing_binary_blocks_step(self, router, workspace):
		"""Example: authorized debugger call without a codex binary."""
		await self._seed(router, workspace)
		result = await router.delegate({
			"agent": "debugger",
			"task": "run",
			"token": router.session.token,
			"request_id": "req-1",
			"cwd": str(workspace),
		})

		assert result["code"] == 127
		todo = read_todo(workspace, "req-1")
		assert len(todo.steps) == 1
		step = todo.steps[0]
		assert step.id == "step-1"
		assert step.status.value == "blocked"
		assert step.agent == "debugger"
		assert step.prompt == "run"
		assert step.started_at and step.ended_at
		assert "codex binary not found" in Path(step.stderr_path).read_text()
		assert Path(step.prompt_path).read_text() == "run"
		assert todo.status.value == "done"

		events = [e["event"] for e in read_log(workspace, "req-1")]
		assert events == ["step_started", "step_error"]

	@pytest.mark.asyncio
	async def test_successful_step(self, router, workspace, fake_executor):
		await self._seed(router, workspace)
		fake_executor.respond = lambda profile, task, cwd: ExecResult(code=0, stdout="  all good \n", stderr="")

		result = await router.delegate({
			"agent": "reviewer",
			"task": "Review the parser\nwith care",
			"token": router.session.token,
			"request_id": "req-1",
			"cwd": str(workspace),
		})

		assert result["ok"] is True
		assert result["stdout"] == "all good"
		assert Path(result["working_dir"], "AGENTS.md").read_text().startswith("# Persona: reviewer")

		step = read_todo(workspace, "req-1").steps[0]
		assert step.status.value == "done"
		assert step.title == "Review the parser"
		assert Path(step.stdout_path).read_text() == "  all good \n"

	@pytest.mark.asyncio
	async def test_concurrent_steps_get_distinct_ids(self, router, workspace, fake_executor):
		await self._seed(router, workspace)

		async def respond(profile, task, cwd):
			await asyncio.sleep(0.01)
			return ExecResult(code=0, stdout=task, stderr="")

		fake_executor.respond = respond
		token = router.session.token
		items = [
			{"agent": "reviewer", "task": f"task {i}", "token": token, "request_id": "req-1", "cwd": str(workspace)}
			for i in range(5)
		]
		results = await asyncio.gather(*(router.delegate(item) for item in items))

		assert all(r["ok"] for r in results)
		todo = read_todo(workspace, "req-1")
		assert sorted(s.id for s in todo.steps) == sorted(f"step-{i}" for i in range(1, 6))
		assert all(s.status.value == "done" for s in todo.steps)
		assert todo.status.value == "done"

	@pytest.mark.asyncio
	async def test_direct_call_without_request_id_is_not_logged(self, router, workspace, fake_executor):
		result = await router.delegate({"agent": "reviewer", "task": "t", "token": router.session.token})
		assert result["ok"] is True
		assert not (workspace / LEDGER_ROOT).exists()


class TestExecutionOptions:
	"""Inline agents and mirroring."""

	@pytest.mark.asyncio
	async def test_inline_persona_and_profile(self, router, fake_executor):
		result = await router.delegate({
			"agent": "adhoc",
			"task": "t",
			"persona": "You are terse.",
			"profile": "fast",
			"token": router.session.token,
		})
		assert result["ok"] is True
		assert fake_executor.calls[0]["profile"] == "fast"
		assert "You are terse." in Path(result["working_dir"], "AGENTS.md").read_text()

	@pytest.mark.asyncio
	async def test_mirror_copies_tree_and_runs_there(self, router, workspace, fake_executor):
		(workspace / "app.py").write_text("print('hi')\n")
		(workspace / ".env").write_text("SECRET=1\n")

		result = await router.delegate({
			"agent": "reviewer",
			"task": "t",
			"mirror_repo": True,
			"cwd": str(workspace),
			"token": router.session.token,
		})

		workdir = Path(result["working_dir"])
		assert fake_executor.calls[0]["cwd"] == str(workdir)
		assert (workdir / "app.py").exists()
		assert not (workdir / ".env").exists()

	@pytest.mark.asyncio
	async def test_mirror_outside_base_fails(self, router, tmp_path, fake_executor):
		outside = tmp_path / "elsewhere"
		outside.mkdir()
		result = await router.delegate({
			"agent": "reviewer",
			"task": "t",
			"mirror_repo": True,
			"cwd": str(outside),
			"token": router.session.token,
		})
		assert result["code"] == 1
		assert result["stderr"].startswith("Failed to mirror repo into temp dir:")
		assert fake_executor.calls == []

	@pytest.mark.asyncio
	async def test_mirror_runs_off_the_event_loop(self, router, workspace, fake_executor, monkeypatch):
		"""A slow copy must not stall other coroutines."""
		released = threading.Event()

		def slow_mirror(src, dest, base, mirror_all=False):
			assert released.wait(timeout=5), "event loop was blocked during the mirror"

		monkeypatch.setattr("codex_subagents.router.mirror_repo", slow_mirror)

		async def release():
			await asyncio.sleep(0.01)
			released.set()

		result, _ = await asyncio.gather(
			router.delegate({
				"agent": "reviewer",
				"task": "t",
				"mirror_repo": True,
				"cwd": str(workspace),
				"token": router.session.token,
			}),
			release(),
		)
		assert result["ok"] is True
		assert fake_executor.calls[0]["cwd"] == result["working_dir"]


class TestBatch:
	"""delegate_batch."""

	@pytest.mark.asyncio
	async def test_results_keep_input_order(self, router, fake_executor):
		delays = {"a": 0.03, "b": 0.01, "c": 0.0}

		async def respond(profile, task, cwd):
			await asyncio.sleep(delays[task])
			return ExecResult(code=0, stdout=f"out-{task}", stderr="")

		fake_executor.respond = respond
		result = await router.delegate_batch({
			"items": [{"agent": "reviewer", "task": t} for t in "abc"],
			"token": router.session.token,
		})

		assert [r["stdout"] for r in result["results"]] == ["out-a", "out-b", "out-c"]

	@pytest.mark.asyncio
	async def test_mixed_success_and_failure(self, router, fake_executor):
		result = await router.delegate_batch({
			"items": [
				{"agent": "reviewer", "task": "fine"},
				{"agent": "ghost", "task": "x"},
				{"task": "no agent"},
				"not an object",
			],
			"token": router.session.token,
		})
		codes = [r["code"] for r in result["results"]]
		assert codes == [0, 2, 2, 2]

	@pytest.mark.asyncio
	async def test_item_token_overrides_batch_token(self, router, fake_executor):
		result = await router.delegate_batch({
			"items": [{"agent": "reviewer", "task": "t", "token": "bad", "request_id": "req-1"}],
			"token": router.session.token,
		})
		assert "Only orchestrator" in result["results"][0]["stderr"]

	@pytest.mark.asyncio
	async def test_legacy_single_shape(self, router):
		result = await router.delegate_batch({"agent": "ghost", "task": "x"})
		assert len(result["results"]) == 1
		assert result["results"][0]["code"] == 2

	@pytest.mark.asyncio
	async def test_exception_becomes_failure(self, router, monkeypatch):
		async def explode(params):
			raise RuntimeError("kaput")

		monkeypatch.setattr(router, "delegate", explode)
		result = await router.delegate_batch({"items": [{"agent": "reviewer", "task": "t"}]})
		assert result["results"] == [{
			"ok": False,
			"code": 1,
			"stdout": "",
			"stderr": "Unhandled error: kaput",
			"working_dir": "",
		}]

	@pytest.mark.asyncio
	async def test_invalid_batch_shape(self, router):
		result = await router.delegate_batch({"items": "nope"})
		assert result["results"][0]["code"] == 2


def test_step_title():
	assert step_title("\n\nFirst line\nsecond") == "First line"
	long = step_title("x" * 200)
	assert len(long) == 80
	assert long.endswith("...")
