"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import platformdirs

APP_NAME = "codex-subagents"
APP_AUTHOR = "codex-subagents"

ENV_PREFIX = "CODEX_SUBAGENTS_"


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))

	# Agents directory; None means "resolve from conventional locations"
	agents_dir: Optional[Path] = None

	# Executor
	codex_bin: str = "codex"
	timeout_ms: int = 120_000
	env_prefixes: tuple[str, ...] = ("CODEX_", "OPENAI_")

	# Mirroring: copy everything, including VCS metadata and secrets
	mirror_all: bool = False

	# Extra diagnostic notifications and pretty-printed tool output
	debug: bool = False

	# Transport limits
	max_message_bytes: int = 4 * 1024 * 1024
	max_buffer_bytes: int = 8 * 1024 * 1024

	# 0 = run every batch item at once
	batch_concurrency: int = 0

	# Derived paths
	config_file: Path = field(init=False)

	def __post_init__(self) -> None:
		self.config_file = self.config_dir / "config.toml"

	@property
	def timeout_seconds(self) -> float:
		return self.timeout_ms / 1000.0


def _parse_bool(val: str) -> bool:
	return val.strip().lower() in {"1", "true", "yes", "on"}


def _apply_env_overrides(config: Config) -> Config:
	"""Apply CODEX_SUBAGENTS_* environment variable overrides."""
	path_map = {
		"CODEX_SUBAGENTS_CONFIG_DIR": "config_dir",
		"CODEX_SUBAGENTS_DIR": "agents_dir",
	}
	for env_key, attr in path_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, Path(val))

	codex_bin = os.getenv("CODEX_SUBAGENTS_CODEX_BIN")
	if codex_bin:
		config.codex_bin = codex_bin

	timeout = os.getenv("CODEX_SUBAGENTS_TIMEOUT_MS")
	if timeout:
		try:
			parsed = int(timeout)
		except ValueError:
			parsed = 0
		if parsed > 0:
			config.timeout_ms = parsed

	for env_key, attr in (
		("CODEX_SUBAGENTS_MIRROR_ALL", "mirror_all"),
		("CODEX_SUBAGENTS_DEBUG", "debug"),
	):
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, _parse_bool(val))

	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	path_fields = {"config_dir", "agents_dir"}
	for key, val in data.items():
		if hasattr(config, key):
			if key in path_fields:
				setattr(config, key, Path(os.path.expanduser(val)))
			elif key == "env_prefixes":
				setattr(config, key, tuple(val))
			else:
				setattr(config, key, val)

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config(**overrides: Any) -> Config:
	"""Load config with precedence: overrides > env vars > config.toml > defaults.

	Overrides whose value is None are ignored, so CLI flags that were not
	given fall through to the lower layers.
	"""
	config = Config()
	# The config file lives in the config dir, so locate that first
	config_dir = overrides.get("config_dir") or os.getenv("CODEX_SUBAGENTS_CONFIG_DIR")
	if config_dir:
		config.config_dir = Path(config_dir)
		config.__post_init__()
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	for key, val in overrides.items():
		if val is None:
			continue
		if not hasattr(config, key):
			raise TypeError(f"Unknown config option: {key}")
		if key in {"config_dir", "agents_dir"}:
			val = Path(val)
		setattr(config, key, val)
	config.__post_init__()
	return config
