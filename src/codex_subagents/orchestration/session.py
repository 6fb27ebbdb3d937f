"""
Orchestration Session - The server's authorization token and active runs.

The token lets the router recognise delegate calls made on behalf of an
orchestrator run that this server started. While an orchestrator run is in
flight its request id is on the active stack, so nested delegate calls that
arrive without a token/request_id can be attributed to it.
"""

import logging
import secrets
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class OrchestrationSession:
	"""Per-server orchestration state, passed explicitly to router and dispatcher."""

	def __init__(self, token: Optional[str] = None):
		self._token = token or secrets.token_hex(32)
		self._active: list[str] = []

	@property
	def token(self) -> str:
		return self._token

	def is_authorized(self, token: Optional[str]) -> bool:
		"""Constant-time comparison against the session token."""
		if not token:
			return False
		# compare_digest rejects non-ASCII str, so compare the encoded bytes
		return secrets.compare_digest(token.encode("utf-8"), self._token.encode("utf-8"))

	@property
	def current_request_id(self) -> Optional[str]:
		"""Most recently started orchestrator run that is still in flight."""
		return self._active[-1] if self._active else None

	@property
	def active_request_ids(self) -> list[str]:
		return list(self._active)

	@contextmanager
	def orchestrating(self, request_id: str) -> Iterator[None]:
		"""Mark a request as in flight for the duration of the block."""
		self._active.append(request_id)
		logger.debug(f"Orchestration started: {request_id} (active={len(self._active)})")
		try:
			yield
		finally:
			# Remove by value: overlapping runs may exit in any order
			for idx in range(len(self._active) - 1, -1, -1):
				if self._active[idx] == request_id:
					del self._active[idx]
					break
			logger.debug(f"Orchestration finished: {request_id}")
