"""
Session Data Models

Shared dataclasses for the shell session to avoid circular dependencies.

Philosophy:
- Single responsibility: Session data structures only
- One lock guards the output buffer; critical sections stay short
- No process control here: the manager owns start and teardown
"""

from __future__ import annotations

import subprocess
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vcmigrate.shell_dialect import ShellDialect


@dataclass
class ShellSession:
    """One live interactive shell process plus its I/O handles.

    The output buffer is appended to by the background reader threads only,
    and read/cleared by at most one command execution at a time. Every
    access goes through ``lock``.

    Attributes:
        process: The child process (stdin/stdout/stderr are pipes)
        executable: Candidate executable that was started
        dialect: Shell dialect used to frame commands
        started_at: UTC creation timestamp
    """

    process: subprocess.Popen
    executable: str
    dialect: ShellDialect
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    reader_threads: list[threading.Thread] = field(default_factory=list, repr=False)
    _output_lines: list[str] = field(default_factory=list, repr=False)

    @property
    def pid(self) -> int | None:
        """OS process id, or None if unavailable."""
        return getattr(self.process, "pid", None)

    @property
    def process_id(self) -> str:
        """Process id as display string."""
        return str(self.pid) if self.pid is not None else "Unknown"

    @property
    def has_exited(self) -> bool:
        """True once the process has terminated."""
        return self.process.poll() is not None

    @property
    def is_alive(self) -> bool:
        """Liveness flag."""
        return not self.has_exited

    @property
    def exit_code(self) -> int | None:
        """Exit code, or None while running."""
        return self.process.poll()

    @property
    def runtime(self) -> timedelta:
        """Time since the session was created."""
        return datetime.now(UTC) - self.started_at

    def append_output(self, line: str) -> None:
        """Append one line to the output buffer (reader threads only)."""
        with self.lock:
            self._output_lines.append(line)

    def snapshot_output(self) -> str:
        """Return the accumulated output as a single string."""
        with self.lock:
            return "\n".join(self._output_lines)

    def clear_output(self) -> None:
        """Discard accumulated output (residue from previous commands)."""
        with self.lock:
            self._output_lines.clear()

    def write_line(self, text: str) -> None:
        """Write text to the process stdin and flush.

        Raises:
            OSError: If the pipe is broken
            ValueError: If stdin has been closed
        """
        stdin = self.process.stdin
        if stdin is None:
            raise ValueError("stdin is not connected")
        if not text.endswith("\n"):
            text += "\n"
        stdin.write(text)
        stdin.flush()


class HealthState(StrEnum):
    """Health classification for a shell session."""

    NO_SESSION = "no_session"
    EXITED = "exited"
    RESPONSIVE = "responsive"
    UNRESPONSIVE = "unresponsive"


@dataclass(frozen=True)
class ProcessHealthInfo:
    """Point-in-time health of a shell session.

    Computed on demand and never cached.
    """

    state: HealthState
    status: str
    runtime: timedelta = timedelta(0)
    process_id: str = ""
    memory_usage_bytes: int = 0

    @property
    def is_healthy(self) -> bool:
        """Only a running, responsive process is healthy."""
        return self.state == HealthState.RESPONSIVE

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for display/JSON output."""
        return {
            "state": str(self.state),
            "is_healthy": self.is_healthy,
            "status": self.status,
            "runtime_seconds": round(self.runtime.total_seconds(), 3),
            "process_id": self.process_id,
            "memory_usage_bytes": self.memory_usage_bytes,
        }


__all__ = ["HealthState", "ProcessHealthInfo", "ShellSession"]
