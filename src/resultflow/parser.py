# Copyright (c) Syntropy Systems
"""Streaming decoder for the analytic engine's result output."""
from __future__ import annotations

import codecs
import contextlib
import json
import logging
import re
from typing import IO, TYPE_CHECKING

from pydantic import ValidationError
from typing_extensions import Self

from resultflow.models.results import AutodetectResult

if TYPE_CHECKING:
    from collections.abc import Iterator
    from types import TracebackType

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 8192
_SEPARATORS = frozenset(" \t\r\n,")
# Characters that change bracket depth or enter a string
_STRUCTURAL = re.compile(r'["{}\[\]]')
# Characters that end a string or escape the next one
_STRING_SPECIAL = re.compile(r'["\\]')


class ResultsParseError(ValueError):
    """Raised when the result stream cannot be decoded."""


class ResultsIterator:
    """Lazy, forward-only iterator over results in a byte stream.

    The engine writes a JSON array of result objects. Elements are decoded as
    they arrive, so iteration blocks on the stream rather than buffering the
    whole output. A missing closing bracket is tolerated because the engine
    may be killed before it finishes the array.

    Each element is scanned for its closing brace before it is decoded, so a
    malformed element fails as soon as it is complete instead of waiting for
    the rest of the stream.
    """

    _stream: IO[bytes]
    _chunk_size: int
    _decoder: json.JSONDecoder
    _text_decoder: codecs.IncrementalDecoder
    _buffer: str
    _pos: int
    _eof: bool
    _started: bool
    _finished: bool
    _closed: bool

    def __init__(self, stream: IO[bytes], chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._stream = stream
        self._chunk_size = chunk_size
        self._decoder = json.JSONDecoder()
        self._text_decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._pos = 0
        self._eof = False
        self._started = False
        self._finished = False
        self._closed = False

    def __iter__(self) -> Iterator[AutodetectResult]:
        return self

    def __next__(self) -> AutodetectResult:
        if self._finished or self._closed:
            raise StopIteration
        document = self._next_document()
        if document is None:
            self._finished = True
            raise StopIteration
        try:
            return AutodetectResult.model_validate(document)
        except ValidationError as e:
            msg = f"Invalid result document: {e}"
            raise ResultsParseError(msg) from e

    def _fill(self) -> bool:
        """Replace the buffer with the next chunk. Returns False at end of stream.

        Callers must have taken what they need from the current buffer.
        """
        if self._eof:
            return False
        # read1 returns whatever is available instead of waiting for a full chunk
        read = getattr(self._stream, "read1", None) or self._stream.read
        try:
            chunk = read(self._chunk_size)
        except (OSError, ValueError) as e:
            msg = f"Error reading result stream: {e}"
            raise ResultsParseError(msg) from e
        if not chunk:
            self._eof = True
            try:
                _ = self._text_decoder.decode(b"", final=True)
            except UnicodeDecodeError as e:
                msg = "Result stream ended inside a multi-byte character"
                raise ResultsParseError(msg) from e
            return False
        try:
            self._buffer = self._text_decoder.decode(chunk)
        except UnicodeDecodeError as e:
            msg = f"Result stream is not valid UTF-8: {e}"
            raise ResultsParseError(msg) from e
        self._pos = 0
        return True

    def _skip_separators(self) -> str | None:
        """Advance past whitespace and commas, returning the next character."""
        while True:
            while self._pos < len(self._buffer) and self._buffer[self._pos] in _SEPARATORS:
                self._pos += 1
            if self._pos < len(self._buffer):
                return self._buffer[self._pos]
            if not self._fill():
                return None

    def _read_element(self) -> str:
        """Return the text of the object that starts at the current position.

        Reads until the brace that closes the object, tracking strings and
        escapes so braces inside string values are ignored.
        """
        parts: list[str] = []
        buffer = self._buffer
        start = pos = self._pos
        depth = 0
        in_string = False
        escaped = False

        while True:
            if escaped and pos < len(buffer):
                pos += 1
                escaped = False
            match = None
            if not escaped:
                pattern = _STRING_SPECIAL if in_string else _STRUCTURAL
                match = pattern.search(buffer, pos)
            if match is None:
                parts.append(buffer[start:])
                if not self._fill():
                    msg = "Result stream ended inside a result document"
                    raise ResultsParseError(msg)
                buffer = self._buffer
                start = pos = 0
                continue

            pos = match.end()
            token = match.group()
            if token == "\\":
                escaped = True
            elif token == '"':
                in_string = not in_string
            elif token in "{[":
                depth += 1
            else:
                depth -= 1
                if depth == 0:
                    parts.append(buffer[start:pos])
                    self._pos = pos
                    return "".join(parts)

    def _next_document(self) -> dict[str, object] | None:
        char = self._skip_separators()
        if char == "[" and not self._started:
            self._started = True
            self._pos += 1
            char = self._skip_separators()
        self._started = True

        if char is None or char == "]":
            return None
        if char != "{":
            msg = f"Expected a result object, got {char!r}"
            raise ResultsParseError(msg)

        text = self._read_element()
        try:
            document = self._decoder.decode(text)
        except json.JSONDecodeError as e:
            msg = f"Malformed result document: {e.msg} at offset {e.pos}"
            raise ResultsParseError(msg) from e
        return document

    def close(self) -> None:
        """Close the underlying stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(OSError):
            self._stream.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class AutodetectResultsParser:
    """Creates result iterators over engine output streams."""

    chunk_size: int

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.chunk_size = chunk_size

    def parse_results(self, stream: IO[bytes]) -> ResultsIterator:
        """Return a closeable iterator of results decoded from ``stream``."""
        logger.debug("Opening result stream")
        return ResultsIterator(stream, chunk_size=self.chunk_size)
