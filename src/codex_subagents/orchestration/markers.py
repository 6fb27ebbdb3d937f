"""
Orchestrator Markers - Structured inline directives in orchestrator output.

Recognised single-line forms (prefix must start the trimmed line):
	[[ORCH-THINK]] {"text": "..."}
	[[ORCH-DECISION]] {"text": "..."}
	[[ORCH-NOTE]] free text

Markers are recorded in the todo as completed orchestrator steps.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from .ledger import LedgerStore, StepStatus, append_step, utc_now

logger = logging.getLogger(__name__)

THINK_PREFIX = "[[ORCH-THINK]]"
DECISION_PREFIX = "[[ORCH-DECISION]]"
NOTE_PREFIX = "[[ORCH-NOTE]]"

_JSON_PREFIXES = {
	THINK_PREFIX: "think",
	DECISION_PREFIX: "decision",
}

TITLE_TEXT_LIMIT = 80


@dataclass(frozen=True)
class Marker:
	type: str
	text: str

	@property
	def title(self) -> str:
		text = self.text if len(self.text) <= TITLE_TEXT_LIMIT else self.text[:TITLE_TEXT_LIMIT - 3] + "..."
		return f"{self.type}: {text}"


def _json_text(payload: str) -> str | None:
	try:
		obj = json.loads(payload)
	except json.JSONDecodeError:
		return None
	if not isinstance(obj, dict):
		return None
	text = obj.get("text")
	if isinstance(text, str) and text:
		return text
	return None


def parse_markers(stdout: str) -> list[Marker]:
	"""Extract markers from orchestrator stdout, in output order."""
	markers: list[Marker] = []
	for raw in stdout.splitlines():
		line = raw.strip()
		if not line.startswith("[[ORCH-"):
			continue

		for prefix, marker_type in _JSON_PREFIXES.items():
			if line.startswith(prefix):
				text = _json_text(line[len(prefix):].strip())
				if text is not None:
					markers.append(Marker(type=marker_type, text=text))
				break
		else:
			if line.startswith(NOTE_PREFIX):
				text = line[len(NOTE_PREFIX):].strip()
				if text:
					markers.append(Marker(type="note", text=text))
	return markers


async def apply_markers(store: LedgerStore, request_id: str, base: str | Path, stdout: str) -> int:
	"""
	Append one done orchestrator step per marker to the request's todo.

	Best-effort: failures are logged and swallowed.

	Returns:
		Number of steps appended
	"""
	markers = parse_markers(stdout)
	if not markers:
		return 0
	try:
		async with store.transaction(request_id, base) as todo:
			now = utc_now()
			for marker in markers:
				append_step(
					todo,
					title=marker.title,
					agent="orchestrator",
					status=StepStatus.DONE,
					notes=marker.text,
					started_at=now,
					ended_at=now,
				)
	except Exception as e:
		logger.warning(f"Failed to apply orchestrator markers for {request_id}: {e}")
		return 0
	return len(markers)
