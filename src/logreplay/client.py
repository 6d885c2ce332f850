"""
Receiver-side client for the replay channel.

ReplayClient connects to a logreplay server, sends one replay request and
consumes the resulting output events until the terminal exit event,
reassembling the framed ReplayResult on the way.

Example:
    client = ReplayClient("ws://127.0.0.1:3000/ws")
    outcome = await client.replay(log_text, "nginx", on_output=print)
    if outcome.result:
        print(len(outcome.result.alerts), "alerts")
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosedError

from logreplay.errors import StreamIncompleteError
from logreplay.framing import StreamResultParser
from logreplay.orchestrator import ReplayOrchestrator
from logreplay.schema import OutputEvent, ReplayRequest, ReplayResult

logger = logging.getLogger(__name__)

DEFAULT_URL = "ws://127.0.0.1:3000/ws"


@dataclass
class ReplayOutcome:
    """
    What a replay produced, as seen by the receiver.

    Attributes:
        exit_code: Code carried by the exit event
        result: Decoded result, or None if none was found or decodable
        output: Every output event of the replay, in order
    """

    exit_code: int
    result: ReplayResult | None
    output: list[OutputEvent] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether the replay finished cleanly with a result."""
        return self.exit_code == 0 and self.result is not None


class ReplayClient:
    """
    Drives replays against a remote server.

    One client handles one replay at a time. Starting a replay clears the
    output and parser state left by the previous one.

    Attributes:
        url: WebSocket URL of the server's replay channel
        output: Output events of the current or last replay
        parser: Reassembles the framed result
    """

    def __init__(
        self,
        url: str = DEFAULT_URL,
        on_complete: Callable[[int, ReplayResult | None], None] | None = None,
    ) -> None:
        self.url = url
        self.output: list[OutputEvent] = []
        self.parser = StreamResultParser(on_complete=on_complete)

    @property
    def is_running(self) -> bool:
        """Whether a replay is waiting for its exit event."""
        return self.parser.active

    def clear_output(self) -> None:
        """Forget the output and result of the previous replay."""
        self.output = []
        self.parser.reset()

    def handle(self, event: OutputEvent) -> bool:
        """
        Record one event of the active replay.

        Returns:
            True if the event was accepted, False if no replay is active
        """
        if not self.parser.feed(event):
            return False
        self.output.append(event)
        return True

    async def replay(
        self,
        log_content: str,
        log_type: str,
        on_output: Callable[[OutputEvent], None] | None = None,
    ) -> ReplayOutcome:
        """
        Replay log content on the server and wait for the result.

        Args:
            log_content: The raw log lines
            log_type: Engine log type label
            on_output: Called with each output event as it arrives

        Returns:
            ReplayOutcome with the exit code, result and all output

        Raises:
            StreamIncompleteError: If the connection closes before the exit
                event, cleanly or not
            websockets.exceptions.WebSocketException: If the connection
                cannot be opened
        """
        self.clear_output()
        request = ReplayRequest(log_content=log_content, log_type=log_type)

        async with websockets.connect(self.url) as ws:
            self.parser.begin()
            try:
                await ws.send(json.dumps({"event": "replay", "data": request.model_dump(by_alias=True)}))
                async for message in ws:
                    event = _parse_message(message)
                    if event is None or not self.handle(event):
                        continue
                    if on_output is not None:
                        on_output(event)
                    if self.parser.completed:
                        break
            except ConnectionClosedError as e:
                self.parser.active = False
                raise StreamIncompleteError(url=self.url) from e

        if not self.parser.completed:
            self.parser.active = False
            raise StreamIncompleteError(url=self.url)

        return ReplayOutcome(
            exit_code=self.parser.exit_code or 0,
            result=self.parser.result,
            output=list(self.output),
        )


def _parse_message(message: str | bytes) -> OutputEvent | None:
    """Extract the OutputEvent from an `output` envelope, if it is one."""
    try:
        envelope = json.loads(message)
    except ValueError:
        logger.warning("Ignoring non-JSON message from server")
        return None
    if not isinstance(envelope, dict) or envelope.get("event") != "output":
        return None
    try:
        return OutputEvent.model_validate(envelope.get("data"))
    except ValidationError as e:
        logger.warning("Ignoring malformed output event: %s", e.errors()[0]["msg"])
        return None


async def replay_in_process(
    orchestrator: ReplayOrchestrator,
    log_content: str,
    log_type: str,
    on_output: Callable[[OutputEvent], None] | None = None,
) -> ReplayOutcome:
    """
    Run a replay in this process and consume it like a remote observer.

    The orchestrator's events go through the same parser a remote client
    uses, so the result is recovered from the framed stream rather than
    from the orchestrator's return value.
    """
    client = ReplayClient()
    client.parser.begin()

    async def emit(event: OutputEvent) -> None:
        if client.handle(event) and on_output is not None:
            on_output(event)

    try:
        await orchestrator.run(log_content, log_type, emit)
    except Exception as e:
        # Already reported in the stream as error + exit
        logger.error("Replay error: %s", e)

    exit_code = client.parser.exit_code
    return ReplayOutcome(
        exit_code=1 if exit_code is None else exit_code,
        result=client.parser.result,
        output=list(client.output),
    )
