"""Marker-framed command execution over a persistent shell session.

The shell's stdout is an unstructured, append-only stream. To know where one
command's output ends, every command is followed by a directive that prints a
token unique to that invocation; the command is complete when the token shows
up in the accumulated output.

Philosophy:
- Exactly one command per call, no retries at this layer
- Failures are returned as "ERROR: <reason>" text, never raised, so callers
  can inspect shell errors and channel errors the same way
- A timed-out command leaves the session alive for the next command
- Short lock sections: the session lock is held only to clear/snapshot

Public API (the "studs"):
    CommandChannel: Executes one command against a ShellSession
    CommandExecutionRequest: Command text, timeout and unique marker
    ChannelFailure: Channel failure categories
    classify_channel_result: Map a result string to its ChannelFailure
    is_channel_error: True for results produced by the channel's own failures
"""

import logging
import time
import uuid
from dataclasses import dataclass
from enum import StrEnum

from vcmigrate.models.session_models import ShellSession

logger = logging.getLogger(__name__)

ERROR_PREFIX = "ERROR: "
MARKER_PREFIX = "END_COMMAND_"


class ChannelFailure(StrEnum):
    """Failure categories reported by the command channel."""

    SESSION_UNAVAILABLE = "session_unavailable"
    CHANNEL_TIMEOUT = "channel_timeout"
    CHANNEL_IO_FAILURE = "channel_io_failure"


# Reason prefixes, as they appear after "ERROR: "
_SESSION_EXITED = "Shell process has exited"
_SESSION_EXITED_DURING = "Shell process exited unexpectedly"
_SESSION_NOT_AVAILABLE = "Shell session is not available"
_PIPE_CLOSED = "Cannot send command - pipe closed"
_TIMED_OUT = "Command timed out"

_FAILURE_REASONS: dict[str, ChannelFailure] = {
    _SESSION_EXITED: ChannelFailure.SESSION_UNAVAILABLE,
    _SESSION_EXITED_DURING: ChannelFailure.SESSION_UNAVAILABLE,
    _SESSION_NOT_AVAILABLE: ChannelFailure.SESSION_UNAVAILABLE,
    "No active connection": ChannelFailure.SESSION_UNAVAILABLE,
    _PIPE_CLOSED: ChannelFailure.CHANNEL_IO_FAILURE,
    _TIMED_OUT: ChannelFailure.CHANNEL_TIMEOUT,
}


def format_channel_error(reason: str) -> str:
    """Format a channel failure as a tagged text result."""
    return f"{ERROR_PREFIX}{reason}"


def classify_channel_result(output: str) -> ChannelFailure | None:
    """Return the ChannelFailure an output string represents, if any.

    Args:
        output: Result returned by CommandChannel.execute (or a queue wrapper)

    Returns:
        ChannelFailure for channel-generated errors, None for command output

    Example:
        >>> classify_channel_result("ERROR: Command timed out after 5.0 seconds")
        <ChannelFailure.CHANNEL_TIMEOUT: 'channel_timeout'>
        >>> classify_channel_result("hello") is None
        True
    """
    if not output or not output.startswith(ERROR_PREFIX):
        return None
    reason = output[len(ERROR_PREFIX) :]
    for prefix, failure in _FAILURE_REASONS.items():
        if reason.startswith(prefix):
            return failure
    return None


def is_channel_error(output: str) -> bool:
    """True if the output is a failure generated by the channel itself."""
    return classify_channel_result(output) is not None


def session_unavailable_result(detail: str = "") -> str:
    """Result returned when a command cannot be sent to any session."""
    reason = _SESSION_NOT_AVAILABLE + (f" ({detail})" if detail else "")
    return format_channel_error(reason)


@dataclass(frozen=True)
class CommandExecutionRequest:
    """One command invocation. Transient, never persisted.

    Attributes:
        command: Command text sent to the shell
        timeout: Seconds allowed for the whole command
        marker: Token unique to this invocation
    """

    command: str
    timeout: float
    marker: str

    @classmethod
    def create(cls, command: str, timeout: float) -> "CommandExecutionRequest":
        """Create a request with a freshly generated marker."""
        return cls(command=command, timeout=timeout, marker=f"{MARKER_PREFIX}{uuid.uuid4().hex}")


class CommandChannel:
    """Executes commands against a shell session using marker framing.

    Example:
        >>> channel = CommandChannel()
        >>> channel.execute(session, "Write-Output 'hello'", timeout=10)
        'hello'
    """

    DEFAULT_POLL_INTERVAL = 0.05
    DEFAULT_SETTLE_DELAY = 0.05
    DEFAULT_STALE_OUTPUT_THRESHOLD = 30.0

    def __init__(
        self,
        poll_interval: float | None = None,
        settle_delay: float | None = None,
        stale_output_threshold: float | None = None,
    ):
        """Initialize the channel.

        Args:
            poll_interval: Seconds between buffer checks (keep well under 0.1)
            settle_delay: Seconds to wait after writing before polling starts
            stale_output_threshold: Seconds without new output before warning
        """
        self.poll_interval = self.DEFAULT_POLL_INTERVAL if poll_interval is None else poll_interval
        self.settle_delay = self.DEFAULT_SETTLE_DELAY if settle_delay is None else settle_delay
        self.stale_output_threshold = (
            self.DEFAULT_STALE_OUTPUT_THRESHOLD
            if stale_output_threshold is None
            else stale_output_threshold
        )

    def execute(self, session: ShellSession | None, command: str, timeout: float) -> str:
        """Execute one command and return its output.

        Args:
            session: Target session
            command: Command text (must not be empty)
            timeout: Seconds allowed for the whole command

        Returns:
            Command output with the marker removed and whitespace trimmed, or
            an "ERROR: <reason>" string

        Raises:
            ValueError: If command is empty
        """
        if not command or not command.strip():
            raise ValueError("Command cannot be null or empty")

        if session is None or session.has_exited:
            exit_code = session.exit_code if session is not None else None
            pid = session.process_id if session is not None else "None"
            logger.error(f"Shell process {pid} has exited")
            return format_channel_error(f"{_SESSION_EXITED} (Exit Code: {exit_code})")

        request = CommandExecutionRequest.create(command, timeout)
        started = time.monotonic()
        deadline = started + timeout

        session.clear_output()

        logger.debug(f"Executing command in shell process {session.process_id}")
        try:
            session.write_line(session.dialect.build_payload(request.command, request.marker))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to send command - pipe closed for process {session.process_id}: {e}")
            return format_channel_error(f"{_PIPE_CLOSED}: {e}")

        settle = min(self.settle_delay, max(0.0, deadline - time.monotonic()))
        if settle > 0:
            time.sleep(settle)

        return self._wait_for_completion(session, request, started, deadline)

    def _wait_for_completion(
        self,
        session: ShellSession,
        request: CommandExecutionRequest,
        started: float,
        deadline: float,
    ) -> str:
        """Poll the session buffer until the marker, process exit, or deadline."""
        last_length = -1
        last_output_time = time.monotonic()
        stale_warned = False

        while True:
            output = session.snapshot_output()
            now = time.monotonic()

            if request.marker in output:
                logger.debug(
                    f"Command completed in process {session.process_id} "
                    f"after {(now - started) * 1000:.0f}ms"
                )
                return output.replace(request.marker, "").strip()

            if session.has_exited:
                logger.error(
                    f"Shell process {session.process_id} exited unexpectedly during command execution"
                )
                return format_channel_error(
                    f"{_SESSION_EXITED_DURING} (Exit Code: {session.exit_code})"
                )

            if len(output) != last_length:
                last_length = len(output)
                last_output_time = now
                stale_warned = False
            elif not stale_warned and now - last_output_time > self.stale_output_threshold:
                logger.warning(
                    f"No output received from process {session.process_id} "
                    f"for {self.stale_output_threshold:.0f} seconds"
                )
                stale_warned = True

            if now >= deadline:
                logger.warning(
                    f"Command timed out in process {session.process_id} "
                    f"after {(now - started) * 1000:.0f}ms"
                )
                return format_channel_error(f"{_TIMED_OUT} after {request.timeout} seconds")

            time.sleep(min(self.poll_interval, deadline - now))


__all__ = [
    "ChannelFailure",
    "CommandChannel",
    "CommandExecutionRequest",
    "classify_channel_result",
    "format_channel_error",
    "is_channel_error",
    "session_unavailable_result",
]
