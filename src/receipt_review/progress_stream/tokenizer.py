"""
Incremental tokenizer for the newline-delimited ``data: {...}`` protocol.

The tokenizer knows nothing about the transport: feed it chunks as they
arrive (str or bytes, split anywhere) and it returns the decoded JSON
objects of every line completed so far.
"""

import codecs
import json
import logging
from typing import Union

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "


class EventLineTokenizer:
    """Buffers partial lines across chunks and decodes complete ``data:`` lines."""

    def __init__(self) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> str:
        """Text of the incomplete line held for the next chunk."""
        return self._buffer

    def feed(self, chunk: Union[str, bytes]) -> list[dict]:
        """
        Consume one chunk.

        Returns:
            Decoded objects of the lines completed by this chunk, in order
        """
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)

        self._buffer += chunk
        lines = self._buffer.split("\n")
        # Last element is the incomplete tail ("" if the chunk ended on a newline)
        self._buffer = lines.pop()

        events = []
        for line in lines:
            event = self._parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def close(self) -> list[dict]:
        """Flush the decoder and parse a final line that had no trailing newline."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        event = self._parse_line(tail)
        return [event] if event is not None else []

    def _parse_line(self, line: str) -> Union[dict, None]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None

        payload = line[len(DATA_PREFIX):]
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning("Skipping malformed stream line: %s", e)
            return None

        if not isinstance(data, dict):
            logger.warning("Skipping stream line that is not a JSON object")
            return None
        return data
