"""Serialized access to one shell session.

A session has a single stdin and a single output buffer; two commands in
flight at once would clear each other's output and mix their markers. This
module funnels every caller of a session through one worker thread, so
commands run one at a time in arrival order.

Public API (the "studs"):
    SerializedCommandQueue: FIFO command executor bound to one session
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from vcmigrate.command_channel import CommandChannel, session_unavailable_result
from vcmigrate.models.session_models import ShellSession

logger = logging.getLogger(__name__)


class SerializedCommandQueue:
    """Runs commands for one session strictly one at a time, in submission order.

    The single-worker executor is the queue: ``submit`` never blocks, and
    the worker drains submissions FIFO.

    Example:
        >>> queue = SerializedCommandQueue(channel, session)
        >>> futures = [queue.submit(cmd, timeout=30) for cmd in commands]
        >>> results = [f.result() for f in futures]
    """

    def __init__(self, channel: CommandChannel, session: ShellSession, name: str = "session"):
        """Initialize the queue.

        Args:
            channel: Channel used to execute each command
            session: Session all commands are sent to
            name: Label for the worker thread and log messages
        """
        self.channel = channel
        self.session = session
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"cmdq-{name}")
        self._state_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once close() has been called."""
        return self._closed

    def submit(self, command: str, timeout: float) -> Future[str]:
        """Queue a command for execution.

        Args:
            command: Command text
            timeout: Per-command timeout in seconds (the wait in the queue
                does not count against it)

        Returns:
            Future resolving to the channel result text
        """
        with self._state_lock:
            if not self._closed:
                return self._executor.submit(self._run, command, timeout)

        future: Future[str] = Future()
        future.set_result(session_unavailable_result(f"queue '{self.name}' is closed"))
        return future

    def execute(self, command: str, timeout: float) -> str:
        """Queue a command and wait for its result."""
        return self.submit(command, timeout).result()

    def close(self, wait: bool = True) -> None:
        """Stop accepting commands; optionally wait for queued ones to finish."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
        logger.debug(f"Closing command queue '{self.name}'")
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def _run(self, command: str, timeout: float) -> str:
        return self.channel.execute(self.session, command, timeout)


__all__ = ["SerializedCommandQueue"]
