"""Shared fixtures: fake codex binaries and a router wired to tmp_path."""

import stat
from pathlib import Path

import pytest

from codex_subagents.agents.registry import AgentRegistry
from codex_subagents.executor import CodexExecutor
from codex_subagents.orchestration.session import OrchestrationSession
from codex_subagents.router import DelegationRouter

from .helpers import FakeExecutor


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
	"""Keep the developer's own settings out of the tests."""
	for key in (
		"CODEX_SUBAGENTS_DIR",
		"CODEX_SUBAGENTS_CONFIG_DIR",
		"CODEX_SUBAGENTS_CODEX_BIN",
		"CODEX_SUBAGENTS_TIMEOUT_MS",
		"CODEX_SUBAGENTS_MIRROR_ALL",
		"CODEX_SUBAGENTS_DEBUG",
	):
		monkeypatch.delenv(key, raising=False)


@pytest.fixture
def fake_codex(tmp_path):
	"""Factory for executable /bin/sh scripts standing in for the codex CLI."""

	def make(body: str, name: str = "codex") -> Path:
		bin_dir = tmp_path / "bin"
		bin_dir.mkdir(exist_ok=True)
		path = bin_dir / name
		path.write_text("#!/bin/sh\n" + body + "\n")
		path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
		return path

	return make


@pytest.fixture
def workspace(tmp_path) -> Path:
	"""Directory the router treats as its base cwd."""
	path = tmp_path / "workspace"
	path.mkdir()
	return path


@pytest.fixture
def router(tmp_path, workspace) -> DelegationRouter:
	"""Router whose codex binary does not exist (every execution exits 127)."""
	return DelegationRouter(
		registry=AgentRegistry(None),
		executor=CodexExecutor(codex_bin=str(tmp_path / "missing-codex"), timeout_seconds=5),
		session=OrchestrationSession(),
		base_cwd=workspace,
	)


@pytest.fixture
def fake_executor(router, monkeypatch) -> FakeExecutor:
	fake = FakeExecutor()
	monkeypatch.setattr(router, "executor", fake)
	return fake
