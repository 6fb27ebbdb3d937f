"""Tests for the stdio framing transport."""

import asyncio
import io
import json

import pytest

from codex_subagents.transport import FrameDecoder, FramingMode, StdioTransport

MESSAGE = {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "delegate", "text": "héllo ✓"}}


def _frame(message) -> bytes:
	body = json.dumps(message).encode("utf-8")
	return f"Content-Length: {len(body)}\r\n\r\n".encode() + body


class TestLengthPrefixed:
	"""Content-Length framing."""

	def test_round_trip(self):
		"""A frame written by encode() decodes to the same object."""
		frame = FrameDecoder().encode(MESSAGE)
		decoder = FrameDecoder()
		assert decoder.feed(frame) == [MESSAGE]
		assert decoder.mode == FramingMode.CONTENT_LENGTH

	def test_length_counts_bytes_not_characters(self):
		frame = FrameDecoder().encode({"text": "✓✓✓"})
		header, body = frame.split(b"\r\n\r\n", 1)
		assert header == f"Content-Length: {len(body)}".encode()
		assert len(body) > len(json.dumps({"text": "✓✓✓"}, ensure_ascii=False))

	def test_split_across_chunks(self):
		"""Messages arriving in pieces are held until complete."""
		frame = _frame(MESSAGE)
		decoder = FrameDecoder()
		assert decoder.feed(frame[:10]) == []
		assert decoder.feed(frame[10:-5]) == []
		assert decoder.feed(frame[-5:]) == [MESSAGE]

	def test_multiple_frames_in_one_chunk(self):
		decoder = FrameDecoder()
		assert decoder.feed(_frame({"id": 1}) + _frame({"id": 2})) == [{"id": 1}, {"id": 2}]

	def test_header_case_insensitive_and_lf_separator(self):
		body = b'{"id": 3}'
		data = b"content-length: " + str(len(body)).encode() + b"\n\n" + body
		assert FrameDecoder().feed(data) == [{"id": 3}]

	def test_partial_header_waits(self):
		"""A header without its blank line is not consumed as a newline message."""
		decoder = FrameDecoder()
		assert decoder.feed(b"Content-Length: 7\r\n") == []
		assert decoder.feed(b'\r\n{"a":1}') == [{"a": 1}]

	def test_header_without_length_is_discarded(self):
		decoder = FrameDecoder()
		assert decoder.feed(b"X-Foo: bar\r\n\r\n" + _frame(MESSAGE)) == [MESSAGE]

	def test_oversized_length_is_discarded(self):
		decoder = FrameDecoder(max_message_bytes=10)
		assert decoder.feed(b"Content-Length: 100\r\n\r\n" + b'{"a":1}\n') == [{"a": 1}]

	def test_bad_json_body_is_skipped(self):
		decoder = FrameDecoder()
		bad = b"Content-Length: 5\r\n\r\n{nope"
		assert decoder.feed(bad + _frame({"id": 2})) == [{"id": 2}]
		assert decoder.mode == FramingMode.CONTENT_LENGTH


class TestNewlineDelimited:
	"""One JSON document per line."""

	def test_round_trip(self):
		decoder = FrameDecoder()
		assert decoder.feed(json.dumps(MESSAGE).encode() + b"\n") == [MESSAGE]
		assert decoder.mode == FramingMode.NEWLINE

		encoded = decoder.encode(MESSAGE)
		assert encoded.endswith(b"\n")
		assert b"Content-Length" not in encoded
		assert FrameDecoder().feed(encoded) == [MESSAGE]

	def test_several_lines_and_blank_lines(self):
		decoder = FrameDecoder()
		assert decoder.feed(b'{"a":1}\n\n{"b":2}\r\n\n') == [{"a": 1}, {"b": 2}]

	def test_incomplete_line_waits(self):
		decoder = FrameDecoder()
		assert decoder.feed(b'{"a":') == []
		assert decoder.feed(b"1}\n") == [{"a": 1}]

	def test_garbage_line_is_skipped(self):
		decoder = FrameDecoder()
		assert decoder.feed(b'not json\n{"ok":true}\n') == [{"ok": True}]

	def test_mode_follows_first_parsed_message(self):
		decoder = FrameDecoder()
		decoder.feed(b'{"a":1}\n')
		decoder.feed(_frame({"b": 2}))
		assert decoder.mode == FramingMode.NEWLINE


class TestBufferLimit:
	"""Denial-of-service guard."""

	def test_overflow_drops_buffer(self):
		decoder = FrameDecoder(max_buffer_bytes=16)
		assert decoder.feed(b"x" * 32) == []
		assert len(decoder.buffer) == 0
		# Still usable afterwards
		assert decoder.feed(b'{"a":1}\n') == [{"a": 1}]

	def test_default_response_mode_is_length_prefixed(self):
		decoder = FrameDecoder()
		assert decoder.mode is None
		assert decoder.encode({"x": 1}).startswith(b"Content-Length: ")


class TestStdioTransport:
	"""Reader/writer plumbing."""

	@pytest.mark.asyncio
	async def test_reads_until_eof_and_writes_frames(self):
		reader = asyncio.StreamReader()
		reader.feed_data(_frame({"id": 1}) + _frame({"id": 2}))
		reader.feed_eof()
		out = io.BytesIO()
		transport = StdioTransport(reader=reader, output=out)

		messages = [m async for m in transport.messages()]
		assert messages == [{"id": 1}, {"id": 2}]

		transport.send({"id": 1, "result": None})
		assert FrameDecoder().feed(out.getvalue()) == [{"id": 1, "result": None}]
