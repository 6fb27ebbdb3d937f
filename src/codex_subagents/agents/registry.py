"""
Agent Registry - Discovers custom agents and merges them with the built-ins.

Custom agents are discovered from (first match wins):
- An explicit --agents-dir flag
- The CODEX_SUBAGENTS_DIR environment variable
- ./agents or ./.codex-subagents/agents relative to the working directory

The directory is re-read on every lookup so edits apply without a restart.
"""

import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from .builtin import BUILTIN_AGENTS
from .models import AgentFileReport, AgentSpec
from .sources import source_for

logger = logging.getLogger(__name__)

AGENTS_DIR_ENV = "CODEX_SUBAGENTS_DIR"


def resolve_agents_dir(
	explicit: Optional[str | Path] = None,
	env: Optional[Mapping[str, str]] = None,
	cwd: Optional[Path] = None,
) -> Optional[Path]:
	"""Resolve the custom agents directory, or None if nothing is configured."""
	if explicit:
		return Path(explicit)
	env = os.environ if env is None else env
	if env.get(AGENTS_DIR_ENV):
		return Path(env[AGENTS_DIR_ENV])
	base = cwd or Path.cwd()
	for candidate in (base / "agents", base / ".codex-subagents" / "agents"):
		if candidate.is_dir():
			return candidate
	return None


def load_agents(agents_dir: Optional[Path]) -> dict[str, AgentSpec]:
	"""Load every valid agent file in a directory. Bad files are skipped."""
	if not agents_dir or not agents_dir.is_dir():
		return {}

	agents: dict[str, AgentSpec] = {}
	for path in sorted(agents_dir.iterdir()):
		if path.is_dir():
			continue
		source = source_for(path)
		if source is None:
			continue
		try:
			spec = source.load()
		except (OSError, UnicodeDecodeError) as e:
			logger.warning(f"Failed to read agent file {path}: {e}")
			continue
		if spec:
			agents[source.name] = spec
	return agents


def validate_agents(agents_dir: Optional[Path]) -> dict[str, Any]:
	"""
	Validate agent files and report errors/warnings per file.

	Returns:
		Dict with ok flag, summary counts, per-file reports and the directory
	"""
	empty_summary = {"files": 0, "ok": 0, "withErrors": 0, "withWarnings": 0}
	if not agents_dir:
		return {
			"ok": False,
			"summary": empty_summary,
			"error": f"No agents directory configured. Use --agents-dir, {AGENTS_DIR_ENV}, or create ./agents",
			"files": [],
		}
	if not agents_dir.is_dir():
		return {
			"ok": False,
			"summary": empty_summary,
			"error": f"Agents directory not found: {agents_dir}",
			"files": [],
		}

	reports: list[AgentFileReport] = []
	for path in sorted(agents_dir.iterdir()):
		if path.is_dir():
			continue
		source = source_for(path)
		if source is None:
			report = AgentFileReport(file=path.name)
			report.warning("unsupported_extension", f"Skipping unsupported file: {path.name}")
			reports.append(report)
			continue
		try:
			reports.append(source.inspect())
		except (OSError, UnicodeDecodeError) as e:
			report = AgentFileReport(file=path.name, agent_name=source.name)
			report.error("unhandled", str(e))
			reports.append(report)

	summary = {
		"files": len(reports),
		"ok": sum(1 for r in reports if r.ok),
		"withErrors": sum(1 for r in reports if r.errors > 0),
		"withWarnings": sum(1 for r in reports if r.warnings > 0),
	}
	return {
		"ok": summary["withErrors"] == 0,
		"summary": summary,
		"files": [r.to_dict() for r in reports],
		"dir": str(agents_dir),
	}


class AgentRegistry:
	"""Built-in agents plus whatever the agents directory currently holds."""

	def __init__(self, agents_dir: Optional[Path] = None):
		self.agents_dir = agents_dir

	def custom(self) -> dict[str, AgentSpec]:
		return load_agents(self.agents_dir)

	def all(self) -> dict[str, AgentSpec]:
		"""Combined registry; custom agents shadow built-ins of the same name."""
		return {**BUILTIN_AGENTS, **self.custom()}

	def get(self, name: str) -> Optional[AgentSpec]:
		return self.all().get(name)

	def list_rows(self) -> list[dict[str, Any]]:
		"""Rows for the list_agents tool."""
		rows = []
		for source, agents in (("builtin", BUILTIN_AGENTS), ("custom", self.custom())):
			for name, spec in agents.items():
				rows.append({
					"name": name,
					"profile": spec.profile,
					"approval_policy": spec.approval_policy,
					"sandbox_mode": spec.sandbox_mode,
					"source": source,
				})
		return rows
