"""Shell session lifecycle: spawn, health-check, terminate.

Philosophy:
- Try candidate executables in priority order, first survivor wins
- Either a fully wired session or an error, never a half-built session
- Background threads drain stdout/stderr so the pipes never fill up
- Termination always leaves the process dead (graceful first, then kill)

Public API (the "studs"):
    ShellSessionManager: Creates, inspects and terminates shell sessions
    ShellSessionError: Base error for session lifecycle failures
    NoShellExecutableError: No candidate executable could be started
"""

import logging
import os
import subprocess
import threading
import time
from collections.abc import Sequence
from typing import IO

import psutil

from vcmigrate.log_sanitizer import LogSanitizer
from vcmigrate.models.session_models import HealthState, ProcessHealthInfo, ShellSession
from vcmigrate.shell_dialect import POWERSHELL, ShellDialect

logger = logging.getLogger(__name__)


class ShellSessionError(Exception):
    """Raised when shell session lifecycle operations fail."""

    pass


class NoShellExecutableError(ShellSessionError):
    """Raised when none of the candidate executables could be started."""

    pass


# psutil statuses that mean the process will not run another command
_STALLED_STATUSES = frozenset(
    {psutil.STATUS_ZOMBIE, psutil.STATUS_STOPPED, psutil.STATUS_DEAD, psutil.STATUS_TRACING_STOP}
)


class ShellSessionManager:
    """Creates, health-checks and terminates persistent shell sessions.

    Example:
        >>> manager = ShellSessionManager()
        >>> session = manager.create_session()
        >>> manager.get_health(session).is_healthy
        True
        >>> manager.terminate_session(session)
        True
    """

    DEFAULT_STARTUP_GRACE = 0.1  # seconds a new process must survive
    DEFAULT_GRACEFUL_TIMEOUT = 5.0

    def __init__(
        self,
        dialect: ShellDialect = POWERSHELL,
        candidates: Sequence[str] | None = None,
        startup_grace: float | None = None,
    ):
        """Initialize the session manager.

        Args:
            dialect: Shell dialect used to launch and frame commands
            candidates: Executables to try in order (default: dialect's list)
            startup_grace: Seconds a new process must stay alive to be accepted
        """
        self.dialect = dialect
        self.candidates = list(candidates) if candidates else list(dialect.candidates)
        self.startup_grace = (
            self.DEFAULT_STARTUP_GRACE if startup_grace is None else startup_grace
        )
        self.attempted_candidates: list[str] = []

    def create_session(self) -> ShellSession:
        """Start a new persistent shell session.

        Returns:
            ShellSession with reader threads attached

        Raises:
            NoShellExecutableError: If no candidate survives the startup grace
        """
        logger.info(f"Creating new persistent {self.dialect.name} session...")
        self.attempted_candidates = []

        for executable in self.candidates:
            self.attempted_candidates.append(executable)
            process = self._start_process(executable)
            if process is None:
                continue

            session = ShellSession(process=process, executable=executable, dialect=self.dialect)
            self._attach_readers(session)
            logger.info(f"Started shell session using {executable} (PID: {session.process_id})")
            return session

        tried = ", ".join(self.attempted_candidates) or "(none)"
        logger.error(f"Failed to start any {self.dialect.name} executable (tried: {tried})")
        raise NoShellExecutableError(
            f"No usable {self.dialect.name} executable found. Tried: {tried}"
        )

    def terminate_session(
        self, session: ShellSession | None, graceful_timeout: float | None = None
    ) -> bool:
        """Terminate a session, gracefully if possible.

        Sends the dialect's exit directive and waits up to ``graceful_timeout``;
        on timeout or I/O error the whole process tree is killed.

        Args:
            session: Session to terminate (None is a no-op)
            graceful_timeout: Seconds to wait for a graceful exit

        Returns:
            True if the process exited gracefully (or had already exited),
            False if it had to be killed
        """
        if session is None:
            return True

        timeout = self.DEFAULT_GRACEFUL_TIMEOUT if graceful_timeout is None else graceful_timeout
        pid = session.process_id

        if session.has_exited:
            logger.info(f"Shell process {pid} was already terminated")
            self._close_streams(session)
            return True

        logger.info(f"Terminating shell process {pid}...")
        graceful = False
        try:
            session.write_line(self.dialect.exit_command)
            session.process.wait(timeout=timeout)
            graceful = True
            logger.info(f"Shell process {pid} exited gracefully")
        except subprocess.TimeoutExpired:
            logger.warning(f"Shell process {pid} did not exit gracefully, forcing termination")
        except (OSError, ValueError) as e:
            logger.warning(f"Error during graceful termination of process {pid}, forcing kill: {e}")

        if not graceful:
            self._kill_process_tree(session)

        self._close_streams(session)
        return graceful

    def get_health(self, session: ShellSession | None) -> ProcessHealthInfo:
        """Report the health of a session. Never raises.

        Args:
            session: Session to inspect (None is reported as NO_SESSION)

        Returns:
            ProcessHealthInfo for this instant
        """
        if session is None:
            return ProcessHealthInfo(state=HealthState.NO_SESSION, status="Process is null")

        runtime = session.runtime
        try:
            if session.has_exited:
                return ProcessHealthInfo(
                    state=HealthState.EXITED,
                    status=f"Process has exited (Exit Code: {session.exit_code})",
                    runtime=runtime,
                    process_id=session.process_id,
                )

            if session.pid is None:
                raise ShellSessionError("process id unavailable")

            proc = psutil.Process(session.pid)
            with proc.oneshot():
                memory_usage = proc.memory_info().rss
                responding = proc.status() not in _STALLED_STATUSES

            return ProcessHealthInfo(
                state=HealthState.RESPONSIVE if responding else HealthState.UNRESPONSIVE,
                status="Running and responsive" if responding else "Running but not responding",
                runtime=runtime,
                process_id=session.process_id,
                memory_usage_bytes=memory_usage,
            )
        except psutil.NoSuchProcess:
            return ProcessHealthInfo(
                state=HealthState.EXITED,
                status="Process has exited",
                runtime=runtime,
                process_id=session.process_id,
            )
        except Exception as e:
            return ProcessHealthInfo(
                state=HealthState.UNRESPONSIVE,
                status=f"Error checking process health: {e}",
                runtime=runtime,
                process_id=session.process_id,
            )

    def _start_process(self, executable: str) -> subprocess.Popen | None:
        """Start one candidate; return it only if it survives the grace period."""
        logger.debug(f"Attempting to start shell using: {executable}")
        try:
            process = subprocess.Popen(
                self.dialect.launch_command(executable),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                cwd=os.getcwd(),
            )
        except (FileNotFoundError, PermissionError, OSError) as e:
            logger.debug(f"Failed to start shell using {executable}: {e}")
            return None

        if self.startup_grace > 0:
            time.sleep(self.startup_grace)

        if process.poll() is not None:
            logger.debug(
                f"Process started but exited immediately: {executable} (exit code {process.returncode})"
            )
            # No reader threads exist yet, so the pipes can be closed directly
            for stream in (process.stdin, process.stdout, process.stderr):
                if stream is not None:
                    stream.close()
            return None

        return process

    def _attach_readers(self, session: ShellSession) -> None:
        """Start daemon threads that drain stdout/stderr into the session buffer."""
        streams = (
            ("stdout", session.process.stdout, False),
            ("stderr", session.process.stderr, True),
        )
        for name, stream, is_error in streams:
            if stream is None:
                continue
            thread = threading.Thread(
                target=self._drain_stream,
                args=(session, stream, is_error),
                name=f"shell-{session.process_id}-{name}",
                daemon=True,
            )
            thread.start()
            session.reader_threads.append(thread)

    @staticmethod
    def _drain_stream(session: ShellSession, stream: IO[str], is_error: bool) -> None:
        """Read lines until EOF. Runs on a reader thread; must never block on anything else."""
        try:
            for raw_line in iter(stream.readline, ""):
                line = raw_line.rstrip("\r\n")
                if not line:
                    continue
                session.append_output(line)
                if is_error:
                    logger.warning(f"Shell error [{session.process_id}]: {LogSanitizer.sanitize(line)}")
                else:
                    logger.debug(f"Shell output [{session.process_id}]: {LogSanitizer.sanitize(line)}")
        except (OSError, ValueError):
            # Pipe closed - normal during process termination
            pass

    @staticmethod
    def _kill_process_tree(session: ShellSession) -> None:
        """Kill the process and all of its descendants, then reap it."""
        pid = session.process_id
        children: list[psutil.Process] = []
        if session.pid is not None:
            try:
                children = psutil.Process(session.pid).children(recursive=True)
            except psutil.Error:
                children = []

        for child in children:
            try:
                child.kill()
            except psutil.Error:
                pass

        try:
            session.process.kill()
        except OSError:
            pass

        try:
            session.process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.error(f"Failed to reap shell process {pid} after kill")

    @staticmethod
    def _close_streams(session: ShellSession) -> None:
        """Close stdin, let the reader threads reach EOF, then close their pipes.

        A reader still blocked after the join keeps its stream open; closing
        it from here would block on the reader's buffer lock.
        """
        streams = [session.process.stdin]
        for thread in session.reader_threads:
            thread.join(timeout=1)
        if not any(thread.is_alive() for thread in session.reader_threads):
            streams += [session.process.stdout, session.process.stderr]

        for stream in streams:
            if stream is None:
                continue
            try:
                stream.close()
            except (OSError, ValueError):
                pass


__all__ = ["NoShellExecutableError", "ShellSessionError", "ShellSessionManager"]
