"""Integration tests driving a real POSIX shell through the session layers.

These run against /bin/sh (or bash) so the reader threads, marker framing
and process teardown are exercised without PowerShell installed.
"""

import shutil
from concurrent.futures import ThreadPoolExecutor

import pytest

from vcmigrate.command_channel import (
    ChannelFailure,
    CommandChannel,
    classify_channel_result,
)
from vcmigrate.command_queue import SerializedCommandQueue
from vcmigrate.inventory_service import parse_records
from vcmigrate.models.session_models import HealthState
from vcmigrate.shell_dialect import POSIX_SHELL
from vcmigrate.shell_session_manager import ShellSessionManager

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(shutil.which("sh") is None, reason="sh not available"),
]


@pytest.fixture
def manager() -> ShellSessionManager:
    return ShellSessionManager(dialect=POSIX_SHELL, candidates=["sh"])


@pytest.fixture
def session(manager):
    session = manager.create_session()
    yield session
    manager.terminate_session(session, 2.0)


@pytest.fixture
def channel() -> CommandChannel:
    return CommandChannel(poll_interval=0.01, settle_delay=0.0)


class TestPosixSession:
    """Test a live sh session."""

    def test_execute_commands(self, session, channel) -> None:
        """Output is returned without the marker; state persists between commands."""
        assert channel.execute(session, "echo hello", 5) == "hello"

        channel.execute(session, "GREETING=persisted", 5)
        assert channel.execute(session, 'echo "$GREETING"', 5) == "persisted"

    def test_multiline_output(self, session, channel) -> None:
        output = channel.execute(session, "printf 'a\\nb\\nc\\n'", 5)

        assert output.splitlines() == ["a", "b", "c"]

    def test_stderr_is_captured(self, session, channel) -> None:
        output = channel.execute(session, "echo oops 1>&2; sleep 0.2", 5)

        assert "oops" in output

    def test_timeout_then_next_command(self, session, channel) -> None:
        """A timed-out command does not break the session."""
        timed_out = channel.execute(session, "sleep 1; echo late", 0.2)

        assert classify_channel_result(timed_out) == ChannelFailure.CHANNEL_TIMEOUT

        output = channel.execute(session, "echo after", 5)
        assert output.splitlines()[-1] == "after"

    def test_exit_during_command(self, session, channel) -> None:
        """Process exit while waiting is reported as unavailable."""
        result = channel.execute(session, "exit 3", 5)

        assert classify_channel_result(result) == ChannelFailure.SESSION_UNAVAILABLE
        assert session.exit_code == 3

    def test_health(self, manager, session) -> None:
        """Repeated checks on an idle session agree."""
        first = manager.get_health(session)
        second = manager.get_health(session)

        assert first.state == HealthState.RESPONSIVE
        assert second.state == first.state
        assert first.is_healthy
        assert first.memory_usage_bytes > 0

    def test_json_after_stderr_noise(self, session, channel) -> None:
        """Records parse even when stderr lines land ahead of the JSON."""
        output = channel.execute(
            session, "echo noise 1>&2; sleep 0.2; echo '[{\"Name\": \"dc1\"}]'", 5
        )

        assert output.splitlines()[0] == "noise"
        assert parse_records(output) == [{"Name": "dc1"}]


class TestPosixQueue:
    """Test serialized execution against a live shell."""

    def test_concurrent_submissions_are_serialized(self, session, channel) -> None:
        """Each caller gets its own command's output."""
        queue = SerializedCommandQueue(channel, session, name="integration")
        try:
            with ThreadPoolExecutor(max_workers=4) as pool:
                results = list(
                    pool.map(lambda n: queue.execute(f"echo item-{n}", 5), range(8))
                )
        finally:
            queue.close()

        assert results == [f"item-{n}" for n in range(8)]


def test_terminate_session(manager) -> None:
    """A live shell exits gracefully on terminate."""
    session = manager.create_session()

    assert manager.terminate_session(session, 2.0) is True
    assert session.has_exited
    assert not manager.get_health(session).is_healthy
