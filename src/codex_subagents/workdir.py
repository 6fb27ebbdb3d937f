"""Ephemeral sub-agent working directories: persona injection and repo mirroring."""

import fnmatch
import logging
import re
import shutil
import tempfile
from pathlib import Path

from .agents.builtin import OPERATING_GUIDE
from .agents.models import AgentSpec

logger = logging.getLogger(__name__)

PERSONA_FILENAME = "AGENTS.md"

# Never copied into a mirror unless mirror_all is set
MIRROR_EXCLUDES = (
	# Version control metadata
	".git",
	".hg",
	".svn",
	# Credentials and environment files
	".env",
	".env.*",
	"*.pem",
	"*.key",
	"id_rsa*",
	"id_ed25519*",
	".npmrc",
	".pypirc",
	".netrc",
	".aws",
	".ssh",
	# Dependency caches
	"node_modules",
	".venv",
	"venv",
	"__pycache__",
	".tox",
	".mypy_cache",
	".pytest_cache",
	".ruff_cache",
)


class MirrorError(Exception):
	"""Raised when a working tree cannot be mirrored."""
	pass


def _slugify(text: str, max_len: int = 40) -> str:
	"""Convert text to a filesystem-safe slug."""
	slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
	if len(slug) > max_len:
		slug = slug[:max_len].rstrip("-")
	return slug or "agent"


def prepare_workdir(agent: str) -> Path:
	"""Create a fresh temp directory for one sub-agent run. It is kept for inspection."""
	return Path(tempfile.mkdtemp(prefix=f"codex-{_slugify(agent)}-"))


def write_persona(workdir: Path, agent: str, spec: AgentSpec) -> Path:
	"""Materialize the persona as AGENTS.md inside the workdir."""
	content = f"# Persona: {agent}\n\n{spec.persona.strip()}\n\n{OPERATING_GUIDE}\n"
	target = workdir / PERSONA_FILENAME
	target.write_text(content, encoding="utf-8")
	return target


def _ignore_sensitive(directory: str, names: list[str]) -> set[str]:
	return {
		name for name in names
		if any(fnmatch.fnmatch(name, pattern) for pattern in MIRROR_EXCLUDES)
	}


def mirror_repo(src: str | Path, dest: str | Path, base: str | Path, mirror_all: bool = False) -> Path:
	"""
	Copy a working tree into the sub-agent workdir.

	Args:
		src: Directory to copy
		dest: Existing destination directory
		base: Server base directory; src must resolve inside it
		mirror_all: Copy everything, including VCS metadata and secrets

	Raises:
		MirrorError: If src escapes base, is missing, or the copy fails
	"""
	src_path = Path(src).resolve()
	base_path = Path(base).resolve()
	if not src_path.is_relative_to(base_path):
		raise MirrorError(f"Refusing to mirror {src_path}: outside base directory {base_path}")
	if not src_path.is_dir():
		raise MirrorError(f"Source directory not found: {src_path}")

	dest_path = Path(dest)
	if dest_path.resolve().is_relative_to(src_path):
		# The copy would recurse into itself
		raise MirrorError(f"Destination {dest_path} is inside the mirrored tree {src_path}")

	if mirror_all:
		logger.warning(f"Mirroring {src_path} without exclusions (mirror_all)")
	try:
		shutil.copytree(
			src_path,
			dest_path,
			symlinks=True,
			ignore=None if mirror_all else _ignore_sensitive,
			dirs_exist_ok=True,
		)
	except (OSError, shutil.Error) as e:
		raise MirrorError(str(e)) from e
	return dest_path
