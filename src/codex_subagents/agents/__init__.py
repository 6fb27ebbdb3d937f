"""Agents module - built-in personas, custom agent files, and validation."""

from .builtin import BUILTIN_AGENTS, ORCHESTRATOR
from .models import AgentSpec, ApprovalPolicy, SandboxMode
from .registry import AgentRegistry, load_agents, resolve_agents_dir, validate_agents

__all__ = [
	"AgentRegistry",
	"AgentSpec",
	"ApprovalPolicy",
	"BUILTIN_AGENTS",
	"ORCHESTRATOR",
	"SandboxMode",
	"load_agents",
	"resolve_agents_dir",
	"validate_agents",
]
