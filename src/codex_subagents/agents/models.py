"""
Agent Models - Pydantic schemas for sub-agent definitions.

An agent is a Codex CLI profile plus the persona text written into the
sub-agent's working directory.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ApprovalPolicy(str, Enum):
	"""When Codex asks before running commands."""
	NEVER = "never"
	ON_REQUEST = "on-request"
	ON_FAILURE = "on-failure"
	UNTRUSTED = "untrusted"


class SandboxMode(str, Enum):
	"""How much of the filesystem the sub-agent may touch."""
	READ_ONLY = "read-only"
	WORKSPACE_WRITE = "workspace-write"
	DANGER_FULL_ACCESS = "danger-full-access"


APPROVAL_POLICIES = [p.value for p in ApprovalPolicy]
SANDBOX_MODES = [m.value for m in SandboxMode]


class AgentSpec(BaseModel):
	"""A resolved agent definition. Never mutated once built."""
	model_config = ConfigDict(frozen=True, use_enum_values=True)

	profile: str = Field(description="Codex CLI profile name")
	persona: str = Field(description="Persona text written to AGENTS.md")
	approval_policy: Optional[ApprovalPolicy] = Field(default=None)
	sandbox_mode: Optional[SandboxMode] = Field(default=None)


class ValidationIssue(BaseModel):
	"""A single problem found in an agent file."""
	level: str = Field(description="'error' or 'warning'")
	code: str
	message: str
	field: Optional[str] = Field(default=None)


class AgentFileReport(BaseModel):
	"""Validation outcome for one file in the agents directory."""
	file: str
	agent_name: Optional[str] = None
	issues: list[ValidationIssue] = Field(default_factory=list)
	parsed: dict[str, Any] = Field(default_factory=dict)

	@property
	def errors(self) -> int:
		return sum(1 for i in self.issues if i.level == "error")

	@property
	def warnings(self) -> int:
		return sum(1 for i in self.issues if i.level == "warning")

	@property
	def ok(self) -> bool:
		return self.errors == 0

	def error(self, code: str, message: str, field: Optional[str] = None) -> None:
		self.issues.append(ValidationIssue(level="error", code=code, message=message, field=field))

	def warning(self, code: str, message: str, field: Optional[str] = None) -> None:
		self.issues.append(ValidationIssue(level="warning", code=code, message=message, field=field))

	def to_dict(self) -> dict[str, Any]:
		out: dict[str, Any] = {
			"file": self.file,
			"agent_name": self.agent_name,
			"ok": self.ok,
			"errors": self.errors,
			"warnings": self.warnings,
			"issues": [i.model_dump(exclude_none=True) for i in self.issues],
		}
		if self.parsed:
			out["parsed"] = self.parsed
		return out
