"""
Framing Transport - JSON-RPC messages over a raw stdio byte stream.

Two framings are accepted on input:
- Length-prefixed: "Content-Length: <n>" header block, blank line, n body bytes
- Newline-delimited: one JSON document per line

Responses are written in the framing of the first message that parsed
successfully (length-prefixed until then).
"""

import asyncio
import json
import logging
import re
import sys
from enum import Enum
from typing import Any, AsyncIterator, BinaryIO, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGE_BYTES = 4 * 1024 * 1024
DEFAULT_MAX_BUFFER_BYTES = 8 * 1024 * 1024
READ_CHUNK = 64 * 1024

_SEPARATORS = (b"\r\n\r\n", b"\n\n")
_CONTENT_LENGTH_RE = re.compile(rb"^\s*content-length\s*:\s*(\S+)\s*$", re.IGNORECASE | re.MULTILINE)
_HEADER_LINE_RE = re.compile(rb"^[A-Za-z][A-Za-z0-9-]*\s*:")


class FramingMode(str, Enum):
	CONTENT_LENGTH = "content-length"
	NEWLINE = "newline"


class FrameDecoder:
	"""
	Incremental decoder for both framings.

	Usage:
		decoder = FrameDecoder()
		for message in decoder.feed(chunk):
			...
		out = decoder.encode(response)
	"""

	def __init__(
		self,
		max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES,
		max_buffer_bytes: int = DEFAULT_MAX_BUFFER_BYTES,
	):
		self.max_message_bytes = max_message_bytes
		self.max_buffer_bytes = max_buffer_bytes
		self.buffer = bytearray()
		self.mode: Optional[FramingMode] = None

	@property
	def response_mode(self) -> FramingMode:
		return self.mode or FramingMode.CONTENT_LENGTH

	def feed(self, data: bytes) -> list[Any]:
		"""Add bytes and return every message that is now complete."""
		self.buffer.extend(data)
		if len(self.buffer) > self.max_buffer_bytes:
			logger.warning(f"Input buffer exceeded {self.max_buffer_bytes} bytes; dropping it")
			self.buffer.clear()
			return []

		messages: list[Any] = []
		while self.buffer:
			sep_idx, sep_len = self._find_separator()
			if sep_idx >= 0 and not self._looks_like_json(self.buffer[:sep_idx]):
				start = sep_idx + sep_len
				length = self._content_length(bytes(self.buffer[:sep_idx]))
				if length is None:
					logger.debug("Discarding header block without a usable Content-Length")
					del self.buffer[:start]
					continue
				if len(self.buffer) < start + length:
					break
				body = bytes(self.buffer[start:start + length])
				del self.buffer[:start + length]
				self._parse(body, FramingMode.CONTENT_LENGTH, messages)
				continue

			newline = self.buffer.find(b"\n")
			if newline < 0:
				break
			line = bytes(self.buffer[:newline]).strip()
			if sep_idx < 0 and _HEADER_LINE_RE.match(line):
				# Header block whose blank line has not arrived yet
				break
			del self.buffer[:newline + 1]
			if line:
				self._parse(line, FramingMode.NEWLINE, messages)
		return messages

	def encode(self, message: Any) -> bytes:
		"""Serialize a message in the current response framing."""
		body = json.dumps(message).encode("utf-8")
		if self.response_mode == FramingMode.NEWLINE:
			return body + b"\n"
		return f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body

	def _find_separator(self) -> tuple[int, int]:
		best, best_len = -1, 0
		for sep in _SEPARATORS:
			idx = self.buffer.find(sep)
			if idx >= 0 and (best < 0 or idx < best):
				best, best_len = idx, len(sep)
		return best, best_len

	@staticmethod
	def _looks_like_json(block: bytes | bytearray) -> bool:
		return bytes(block).lstrip()[:1] in (b"{", b"[")

	def _content_length(self, header: bytes) -> Optional[int]:
		match = _CONTENT_LENGTH_RE.search(header)
		if not match:
			return None
		try:
			length = int(match.group(1))
		except ValueError:
			return None
		if length < 0 or length > self.max_message_bytes:
			logger.warning(f"Rejecting frame of {length} bytes (limit {self.max_message_bytes})")
			return None
		return length

	def _parse(self, payload: bytes, mode: FramingMode, out: list[Any]) -> None:
		try:
			message = json.loads(payload.decode("utf-8"))
		except (UnicodeDecodeError, json.JSONDecodeError) as e:
			logger.debug(f"Skipping unparsable {mode.value} frame: {e}")
			return
		if self.mode is None:
			self.mode = mode
			logger.debug(f"Framing mode: {mode.value}")
		out.append(message)


class StdioTransport:
	"""Reads framed messages from stdin and writes framed responses to stdout."""

	def __init__(
		self,
		decoder: Optional[FrameDecoder] = None,
		reader: Optional[asyncio.StreamReader] = None,
		output: Optional[BinaryIO] = None,
	):
		self.decoder = decoder or FrameDecoder()
		self.reader = reader
		self.output = output or sys.stdout.buffer

	async def _connect_stdin(self) -> asyncio.StreamReader:
		loop = asyncio.get_running_loop()
		reader = asyncio.StreamReader()
		protocol = asyncio.StreamReaderProtocol(reader)
		await loop.connect_read_pipe(lambda: protocol, sys.stdin)
		return reader

	async def messages(self) -> AsyncIterator[Any]:
		"""Yield decoded messages until stdin reaches EOF."""
		if self.reader is None:
			self.reader = await self._connect_stdin()
		while True:
			chunk = await self.reader.read(READ_CHUNK)
			if not chunk:
				logger.info("stdin closed")
				return
			for message in self.decoder.feed(chunk):
				yield message

	def send(self, message: Any) -> None:
		"""Write one message; called from the event loop so frames never interleave."""
		self.output.write(self.decoder.encode(message))
		self.output.flush()
