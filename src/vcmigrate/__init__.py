"""vcmigrate - vCenter migration automation over a persistent PowerShell session

Philosophy:
- One long-lived shell process per connection, driven over stdin/stdout
- Marker-framed commands (the shell has no message boundaries of its own)
- Strictly sequential access per session
- Failures reported as data, not surprises

The migration business logic lives in the PowerShell scripts; this package
owns the process session, the command protocol, PowerCLI configuration and
the inventory cache.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
