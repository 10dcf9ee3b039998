"""Shell dialects for the persistent command session.

Philosophy:
- The command protocol is independent of the interactive shell behind it
- A dialect only knows how to launch the shell, print a marker, and exit
- Standard library only (no external dependencies)

Public API (the "studs"):
    ShellDialect: Launch/marker/exit conventions for one shell family
    POWERSHELL: PowerShell 7+ with Windows PowerShell fallback
    POSIX_SHELL: bash/sh (used for local diagnostics and integration tests)
    get_dialect: Resolve a dialect by name
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ShellDialect:
    """Conventions for driving one family of interactive shells over stdin.

    Attributes:
        name: Short dialect name (used in config and on the CLI)
        candidates: Executables to try, in priority order
        launch_args: Arguments that make the shell read commands from stdin
        marker_template: Statement that prints a literal token; ``{token}``
            is substituted and must sit inside single quotes
        exit_command: Statement asking the shell to exit gracefully
    """

    name: str
    candidates: tuple[str, ...]
    launch_args: tuple[str, ...]
    marker_template: str
    exit_command: str = "exit"

    def marker_directive(self, token: str) -> str:
        """Return the statement that writes ``token`` to standard output."""
        return self.marker_template.format(token=token)

    def build_payload(self, command: str, token: str) -> str:
        """Build the stdin payload for one command.

        Wire format: ``<command>\\n<marker directive>\\n``. The marker
        directive runs after the command, so its output is the last thing
        the command produces.
        """
        return f"{command}\n{self.marker_directive(token)}\n"

    def launch_command(self, executable: str) -> list[str]:
        """Return the argv used to start ``executable`` in this dialect."""
        return [executable, *self.launch_args]


POWERSHELL = ShellDialect(
    name="powershell",
    candidates=(
        "pwsh",  # PowerShell 7+ on PATH (preferred)
        "pwsh.exe",
        r"C:\Program Files\PowerShell\7\pwsh.exe",
        "powershell.exe",  # Windows PowerShell 5.1 (fallback)
    ),
    launch_args=("-NoProfile", "-NoExit", "-ExecutionPolicy", "Unrestricted", "-Command", "-"),
    marker_template="Write-Output '{token}'",
)

POSIX_SHELL = ShellDialect(
    name="posix",
    candidates=("bash", "sh"),
    launch_args=(),
    marker_template="echo '{token}'",
)

_DIALECTS = {dialect.name: dialect for dialect in (POWERSHELL, POSIX_SHELL)}


def get_dialect(name: str) -> ShellDialect:
    """Resolve a dialect by name.

    Args:
        name: Dialect name ("powershell" or "posix")

    Returns:
        Matching ShellDialect

    Raises:
        ValueError: If the name is unknown
    """
    try:
        return _DIALECTS[name.lower()]
    except KeyError:
        available = ", ".join(sorted(_DIALECTS))
        raise ValueError(f"Unknown shell dialect: {name} (available: {available})") from None


__all__ = ["POSIX_SHELL", "POWERSHELL", "ShellDialect", "get_dialect"]
