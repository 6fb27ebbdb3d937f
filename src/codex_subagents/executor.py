"""
Codex Executor - Runs `codex exec` for a sub-agent with a clean environment.

The child only sees an allow-listed set of environment variables plus any
variable under a recognised prefix (CODEX_*, OPENAI_* by default), never the
full ambient environment.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

ENV_ALLOWLIST = (
	"PATH",
	"HOME",
	"USER",
	"LOGNAME",
	"SHELL",
	"LANG",
	"LC_ALL",
	"LC_CTYPE",
	"TERM",
	"TMPDIR",
	"TEMP",
	"TMP",
	"XDG_CONFIG_HOME",
	"XDG_DATA_HOME",
	"XDG_CACHE_HOME",
	# Windows
	"SYSTEMROOT",
	"COMSPEC",
	"PATHEXT",
	"APPDATA",
	"LOCALAPPDATA",
	"USERPROFILE",
)

NOT_FOUND_CODE = 127


@dataclass
class ExecResult:
	code: int
	stdout: str
	stderr: str


def build_env(
	environ: Optional[Mapping[str, str]] = None,
	prefixes: tuple[str, ...] = ("CODEX_", "OPENAI_"),
) -> dict[str, str]:
	"""Copy only allow-listed and prefixed variables from the environment."""
	environ = os.environ if environ is None else environ
	env = {key: environ[key] for key in ENV_ALLOWLIST if key in environ}
	for key, val in environ.items():
		if any(key.startswith(prefix) for prefix in prefixes):
			env[key] = val
	return env


class CodexExecutor:
	"""Spawns the Codex CLI with a hard timeout."""

	def __init__(
		self,
		codex_bin: str = "codex",
		timeout_seconds: float = 120.0,
		env_prefixes: tuple[str, ...] = ("CODEX_", "OPENAI_"),
	):
		self.codex_bin = codex_bin
		self.timeout_seconds = timeout_seconds
		self.env_prefixes = env_prefixes

	def build_args(self, profile: str, task: str) -> list[str]:
		return [self.codex_bin, "exec", "--profile", profile, task]

	async def run(self, profile: str, task: str, cwd: str | Path) -> ExecResult:
		"""
		Run one sub-agent task.

		Args:
			profile: Codex profile name
			task: Task text
			cwd: Directory the sub-agent runs in

		Returns:
			ExecResult; failures to start or finish are results, not exceptions
		"""
		args = self.build_args(profile, task)
		if not Path(cwd).is_dir():
			return ExecResult(code=1, stdout="", stderr=f"Working directory not found: {cwd}")

		logger.info(f"Running {self.codex_bin} exec --profile {profile} in {cwd}")
		try:
			proc = await asyncio.create_subprocess_exec(
				*args,
				stdin=asyncio.subprocess.DEVNULL,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				cwd=str(cwd),
				env=build_env(prefixes=self.env_prefixes),
			)
		except FileNotFoundError:
			return ExecResult(
				code=NOT_FOUND_CODE,
				stdout="",
				stderr=(
					f"codex binary not found in PATH ({self.codex_bin}). "
					"Install Codex CLI and ensure it is on PATH, or set CODEX_SUBAGENTS_CODEX_BIN."
				),
			)
		except PermissionError as e:
			return ExecResult(code=126, stdout="", stderr=f"codex binary is not executable: {e}")
		except OSError as e:
			return ExecResult(code=1, stdout="", stderr=f"Failed to start codex: {e}")

		try:
			stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
		except asyncio.TimeoutError:
			proc.kill()
			await proc.wait()
			timeout_ms = int(self.timeout_seconds * 1000)
			logger.warning(f"codex exec timed out after {timeout_ms}ms (profile={profile})")
			return ExecResult(
				code=1,
				stdout="",
				stderr=(
					f"codex exec timed out after {timeout_ms}ms and was terminated. "
					"Raise CODEX_SUBAGENTS_TIMEOUT_MS or split the task."
				),
			)

		return ExecResult(
			code=proc.returncode if proc.returncode is not None else 0,
			stdout=stdout.decode("utf-8", errors="replace"),
			stderr=stderr.decode("utf-8", errors="replace"),
		)
