"""
Agent Sources - One parsing strategy per agent file format.

Custom agents live in a directory as either:
- <name>.md   markdown persona with optional YAML frontmatter
- <name>.json structured record with `persona` or `personaFile`

Both are normalised to AgentSpec before reaching the router.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from .models import APPROVAL_POLICIES, SANDBOX_MODES, AgentFileReport, AgentSpec

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "reviewer"

# Fences must sit on their own line; CRLF files are common on Windows checkouts
_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)(.*)\Z", re.DOTALL)


def split_frontmatter(content: str) -> tuple[Optional[str], str]:
	"""Split a markdown file into (frontmatter_text, body).

	Returns (None, content) when there is no well-formed frontmatter block.
	"""
	match = _FRONTMATTER_RE.match(content)
	if not match:
		return None, content
	return match.group(1), match.group(2)


class AgentSource(ABC):
	"""A single agent definition file."""

	suffix: str = ""

	def __init__(self, path: Path):
		self.path = path

	@property
	def name(self) -> str:
		return self.path.stem

	@abstractmethod
	def inspect(self) -> AgentFileReport:
		"""Parse the file and collect every issue found along the way."""

	def load(self) -> Optional[AgentSpec]:
		"""Build an AgentSpec, or None if the file cannot produce one."""
		report = self.inspect()
		parsed = {k: v for k, v in report.parsed.items() if k in AgentSpec.model_fields}
		if not parsed.get("profile") or not parsed.get("persona"):
			logger.warning(f"Skipping agent file {self.path.name}: no usable profile/persona")
			return None
		try:
			return AgentSpec(**parsed)
		except ValidationError as e:
			logger.warning(f"Skipping agent file {self.path.name}: {e}")
			return None

	def _check_policies(self, report: AgentFileReport, approval_policy: Any, sandbox_mode: Any) -> None:
		"""Validate optional policy fields; invalid values are reported and dropped."""
		if approval_policy:
			ap = str(approval_policy).strip()
			if ap in APPROVAL_POLICIES:
				report.parsed["approval_policy"] = ap
			else:
				report.error("invalid_approval_policy", f"Invalid approval_policy: {ap}", "approval_policy")
		if sandbox_mode:
			sm = str(sandbox_mode).strip()
			if sm in SANDBOX_MODES:
				report.parsed["sandbox_mode"] = sm
			else:
				report.error("invalid_sandbox_mode", f"Invalid sandbox_mode: {sm}", "sandbox_mode")


class MarkdownAgentSource(AgentSource):
	"""Markdown persona with optional `---` YAML frontmatter."""

	suffix = ".md"

	def inspect(self) -> AgentFileReport:
		report = AgentFileReport(file=self.path.name, agent_name=self.name)
		content = self.path.read_text(encoding="utf-8")
		frontmatter_text, body = split_frontmatter(content)

		attrs: dict[str, Any] = {}
		if frontmatter_text is not None and frontmatter_text.strip():
			try:
				loaded = yaml.safe_load(frontmatter_text)
			except yaml.YAMLError as e:
				report.error("invalid_frontmatter", f"Invalid YAML frontmatter: {e}")
				loaded = None
			if isinstance(loaded, dict):
				attrs = loaded
			elif loaded is not None:
				report.error("invalid_frontmatter", "Frontmatter must be a mapping")

		profile = str(attrs.get("profile") or attrs.get("agent_profile") or "").strip()
		if not profile:
			report.warning(
				"missing_profile",
				f"profile missing; loader defaults to {DEFAULT_PROFILE}",
				"profile",
			)
		report.parsed["profile"] = profile or DEFAULT_PROFILE

		self._check_policies(report, attrs.get("approval_policy"), attrs.get("sandbox_mode"))

		persona = body.strip()
		if not persona:
			report.error("empty_persona", "Persona body is empty", "persona")
		report.parsed["persona"] = persona
		report.parsed["persona_length"] = len(persona)
		return report


class JsonAgentSource(AgentSource):
	"""Structured JSON agent record."""

	suffix = ".json"

	def inspect(self) -> AgentFileReport:
		report = AgentFileReport(file=self.path.name, agent_name=self.name)
		try:
			obj = json.loads(self.path.read_text(encoding="utf-8"))
		except json.JSONDecodeError as e:
			report.error("json_parse_error", str(e))
			return report
		if not isinstance(obj, dict):
			report.error("json_parse_error", "Agent JSON must be an object")
			return report

		profile = str(obj.get("profile") or "").strip()
		if not profile:
			report.error("missing_profile", "profile is required", "profile")
		else:
			report.parsed["profile"] = profile

		self._check_policies(report, obj.get("approval_policy"), obj.get("sandbox_mode"))

		persona = obj.get("persona") if isinstance(obj.get("persona"), str) else None
		if not persona and obj.get("personaFile"):
			persona_path = self.path.parent / str(obj["personaFile"])
			if not persona_path.exists():
				report.error(
					"persona_file_missing",
					f"personaFile not found: {persona_path}",
					"personaFile",
				)
			else:
				persona = persona_path.read_text(encoding="utf-8")

		if not persona or not persona.strip():
			report.error(
				"missing_persona",
				"persona or personaFile is required and must be non-empty",
				"persona",
			)
		else:
			report.parsed["persona"] = persona
			report.parsed["persona_length"] = len(persona)
		return report


SOURCE_TYPES: dict[str, type[AgentSource]] = {
	MarkdownAgentSource.suffix: MarkdownAgentSource,
	JsonAgentSource.suffix: JsonAgentSource,
}


def source_for(path: Path) -> Optional[AgentSource]:
	"""Pick the parsing strategy for a file, or None for unsupported files."""
	source_type = SOURCE_TYPES.get(path.suffix.lower())
	return source_type(path) if source_type else None
