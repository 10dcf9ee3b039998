"""
Shared test fixtures and configuration for vcmigrate tests.

This module provides common fixtures used across all test types:
- Temporary home/config directories
- A scripted fake shell process that answers marker-framed commands
- A fast command channel
"""

import re
import subprocess
from collections.abc import Callable

import pytest

from vcmigrate.command_channel import CommandChannel
from vcmigrate.models.session_models import ShellSession
from vcmigrate.shell_dialect import POWERSHELL, ShellDialect

MARKER_RE = re.compile(r"END_COMMAND_[0-9a-f]{32}")

# ============================================================================
# DIRECTORY FIXTURES
# ============================================================================


@pytest.fixture
def temp_home_dir(tmp_path, monkeypatch):
    """Temporary home directory for testing.

    Sets HOME environment variable to temporary directory
    for testing home directory operations without affecting
    real user home directory.
    """
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    return home_dir


@pytest.fixture
def temp_config_dir(tmp_path, monkeypatch):
    """Temporary .vcmigrate directory used as the default config location."""
    from vcmigrate.config_manager import ConfigManager

    config_dir = tmp_path / ".vcmigrate"
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_DIR", config_dir)
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_FILE", config_dir / "config.toml")
    monkeypatch.delenv("VCMIGRATE_SHELL", raising=False)
    monkeypatch.delenv("VCMIGRATE_COMMAND_TIMEOUT", raising=False)
    return config_dir


# ============================================================================
# FAKE SHELL
# ============================================================================


class _FakeStdin:
    def __init__(self, shell: "FakeShell"):
        self.shell = shell
        self.closed = False

    def write(self, text: str) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed file")
        self.shell.receive(text)
        return len(text)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


class FakeShell:
    """Popen stand-in that answers marker-framed commands synchronously.

    ``responder(command)`` returns the command's output text, or None to
    simulate a command that never finishes (no marker is printed).
    """

    def __init__(self, responder: Callable[[str], str | None] | None = None, pid: int = 4242):
        self.responder = responder or (lambda command: "")
        self.pid = pid
        self.returncode: int | None = None
        self.commands: list[str] = []
        self.session: ShellSession | None = None
        self.stdin = _FakeStdin(self)
        self.stdout = None
        self.stderr = None
        self.exits_on_exit_command = True
        self.killed = False

    def poll(self) -> int | None:
        return self.returncode

    def wait(self, timeout: float | None = None) -> int:
        if self.returncode is None:
            raise subprocess.TimeoutExpired("fake-shell", timeout)
        return self.returncode

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9

    def exit(self, code: int = 1) -> None:
        self.returncode = code

    def receive(self, text: str) -> None:
        if self.returncode is not None:
            raise BrokenPipeError("pipe closed")

        match = MARKER_RE.search(text)
        if match is None:
            if text.strip() == "exit" and self.exits_on_exit_command:
                self.returncode = 0
            return

        command = text[: text.rfind("\n", 0, match.start())]
        self.commands.append(command)
        response = self.responder(command)
        if response is None:
            return
        for line in response.splitlines():
            if line.strip():
                self.session.append_output(line)
        self.session.append_output(match.group(0))


@pytest.fixture
def make_session():
    """Factory for a ShellSession backed by a FakeShell.

    Returns (session, shell).
    """

    def _make(
        responder: Callable[[str], str | None] | None = None,
        dialect: ShellDialect = POWERSHELL,
    ) -> tuple[ShellSession, FakeShell]:
        shell = FakeShell(responder)
        session = ShellSession(process=shell, executable="fake-shell", dialect=dialect)
        shell.session = session
        return session, shell

    return _make


@pytest.fixture
def fast_channel() -> CommandChannel:
    """Command channel with short polling delays."""
    return CommandChannel(poll_interval=0.01, settle_delay=0.0, stale_output_threshold=30.0)
