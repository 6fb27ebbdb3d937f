"""
Delegation Models - Tool arguments and results for the delegate tools.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .agents.models import ApprovalPolicy, SandboxMode


class DelegateParams(BaseModel):
	"""Arguments of a single delegate call."""
	model_config = ConfigDict(extra="forbid", use_enum_values=True)

	agent: str = Field(min_length=1, description="Agent name (built-in or from the agents dir)")
	task: str = Field(min_length=1, description="Task text passed to codex exec")
	cwd: Optional[str] = Field(default=None, description="Working directory for the sub-agent")
	mirror_repo: bool = Field(default=False, description="Copy cwd into the temp workdir first")
	profile: Optional[str] = Field(default=None, description="Inline profile for ad-hoc agents")
	persona: Optional[str] = Field(default=None, description="Inline persona for ad-hoc agents")
	approval_policy: Optional[ApprovalPolicy] = Field(default=None)
	sandbox_mode: Optional[SandboxMode] = Field(default=None)
	token: Optional[str] = Field(default=None, description="Orchestration token")
	request_id: Optional[str] = Field(default=None, description="Orchestration request id")


class DelegateBatchParams(BaseModel):
	"""Arguments of delegate_batch."""
	model_config = ConfigDict(extra="forbid")

	items: list[Any] = Field(description="delegate arguments, one per sub-task")
	token: Optional[str] = Field(default=None, description="Token used by items without their own")


class DelegateResult(BaseModel):
	"""Outcome of a delegate call. Failures are results too, never exceptions."""
	ok: bool
	code: int
	stdout: str = ""
	stderr: str = ""
	working_dir: str = ""

	@classmethod
	def failure(cls, code: int, stderr: str, working_dir: str = "") -> "DelegateResult":
		return cls(ok=False, code=code, stdout="", stderr=stderr, working_dir=working_dir)


def summarize_validation_error(error: ValidationError) -> str:
	"""One line listing every violated constraint, e.g. 'task: Field required'."""
	parts = []
	for err in error.errors():
		loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
		parts.append(f"{loc}: {err.get('msg', 'invalid')}")
	return "; ".join(parts)


def delegate_input_schema() -> dict[str, Any]:
	"""JSON schema advertised for the delegate tool."""
	schema = DelegateParams.model_json_schema()
	schema["additionalProperties"] = False
	return schema


def delegate_batch_input_schema() -> dict[str, Any]:
	item_schema = delegate_input_schema()
	defs = item_schema.pop("$defs", None)
	schema: dict[str, Any] = {
		"type": "object",
		"properties": {
			"items": {"type": "array", "items": item_schema},
			"token": {"type": "string"},
		},
		"required": ["items"],
		"additionalProperties": False,
	}
	if defs:
		schema["$defs"] = defs
	return schema
