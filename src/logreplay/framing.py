"""
Result framing inside the output stream.

The replay result travels inside the ordinary stdout stream, wrapped in two
literal markers:

    ---RESULTS_JSON---{"alerts": [...], ...}---END_RESULTS---

Sending side: encode_result_frame() serializes a ReplayResult and wraps it.
Any occurrence of a marker inside JSON string values is written with a
unicode escape, so the payload never contains a marker literally.

Receiving side: StreamResultParser accumulates stdout chunks of any size,
finds the markers, decodes the payload, and reports it together with the
terminal exit event.

Tool output travels in the same stdout stream and may echo marker text from
the submitted log. The sender always emits its frame last, right before the
exit event, so the parser keeps the last complete frame and opens each frame
at the last start marker preceding its end marker.

Parser states:
    SEARCHING    -> no start marker seen yet
    START_FOUND  -> start marker seen, waiting for the end marker
    DONE         -> a frame was extracted (decoded or not); a later one replaces it
"""

import logging
from collections.abc import Callable
from enum import Enum

from pydantic import ValidationError

from logreplay.errors import PayloadDecodeError
from logreplay.schema import END_MARKER, START_MARKER, OutputEvent, OutputKind, ReplayResult

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[int, ReplayResult | None], None]

# A marker's leading "-" written as a JSON unicode escape
_ESCAPED = {marker: "\\u002d" + marker[1:] for marker in (START_MARKER, END_MARKER)}


def encode_result_frame(result: ReplayResult) -> str:
    """Serialize a result and wrap it in the start/end markers."""
    payload = result.model_dump_json(by_alias=True)
    for marker, escaped in _ESCAPED.items():
        # Markers can overlap ("---" ends one and starts the next)
        while marker in payload:
            payload = payload.replace(marker, escaped)
    return f"{START_MARKER}{payload}{END_MARKER}"


def decode_payload(payload: str) -> ReplayResult:
    """
    Decode the text found between the markers.

    Raises:
        PayloadDecodeError: If the text is not a valid ReplayResult document
    """
    text = payload.strip()
    try:
        return ReplayResult.model_validate_json(text)
    except ValidationError as e:
        raise PayloadDecodeError(
            payload_preview=text[:80],
            underlying_error=f"{e.error_count()} validation error(s): {e.errors()[0]['msg']}",
        ) from e


class ParserState(str, Enum):
    """Where the parser is in the framed stream."""

    SEARCHING = "searching"
    START_FOUND = "start_found"
    DONE = "done"


class StreamResultParser:
    """
    Reassembles the framed result from a stream of output events.

    One parser serves one observer. begin() must be called before each
    replay request is sent; it discards everything left over from the
    previous run. Events that arrive while no replay is active are ignored,
    so late output from an earlier run cannot complete a new one.

    Usage:
        parser = StreamResultParser(on_complete=lambda code, result: ...)
        parser.begin()
        for event in events:
            parser.feed(event)

    Attributes:
        on_complete: Called once per replay with (exit_code, result or None)
        buffer: Accumulated stdout text of the current replay
        state: Current parser state
        result: The decoded result, once available
        active: Whether a replay is in progress
    """

    def __init__(self, on_complete: CompletionCallback | None = None) -> None:
        self.on_complete = on_complete
        self.reset()

    def reset(self) -> None:
        """Return to the initial, inactive state."""
        self.buffer = ""
        self.state = ParserState.SEARCHING
        self.result: ReplayResult | None = None
        self.active = False
        self.exit_code: int | None = None
        self._payload_start = 0
        self._search_from = 0

    def begin(self) -> None:
        """Reset and start accepting events for a new replay."""
        self.reset()
        self.active = True

    @property
    def completed(self) -> bool:
        """Whether the current replay has seen its exit event."""
        return self.exit_code is not None

    def feed(self, event: OutputEvent) -> bool:
        """
        Consume one output event.

        Returns:
            True if the event belonged to the active replay, False if ignored
        """
        if not self.active:
            return False

        if event.kind == OutputKind.STDOUT:
            self._append(event.text)
        elif event.kind == OutputKind.EXIT:
            self._complete(event.exit_code if event.exit_code is not None else 0)
        return True

    def _append(self, text: str) -> None:
        scanned = len(self.buffer)
        self.buffer += text

        while True:
            if self.state != ParserState.START_FOUND:
                # A marker may straddle the previous chunk boundary
                start = self.buffer.find(
                    START_MARKER,
                    max(self._search_from, scanned - len(START_MARKER) + 1),
                )
                if start < 0:
                    return
                self._payload_start = start + len(START_MARKER)
                self.state = ParserState.START_FOUND

            end = self.buffer.find(
                END_MARKER,
                max(self._payload_start, scanned - len(END_MARKER) + 1),
            )
            if end < 0:
                return

            # The frame opens at the last start marker before its end
            opening = self.buffer.rfind(START_MARKER, self._payload_start - len(START_MARKER), end)
            self._decode(self.buffer[opening + len(START_MARKER):end])
            self.state = ParserState.DONE
            self._search_from = scanned = end + len(END_MARKER)

    def _decode(self, payload: str) -> None:
        try:
            self.result = decode_payload(payload)
        except PayloadDecodeError as e:
            logger.error("Failed to parse replay result JSON: %s", e.message)
            self.result = None

    def _complete(self, exit_code: int) -> None:
        self.active = False
        self.exit_code = exit_code
        if self.on_complete is not None:
            self.on_complete(exit_code, self.result)
