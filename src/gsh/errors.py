"""Fatal errors for gsh.

Per-host failures never raise; they are reported on the result instead.
"""


class GshError(Exception):
    """Base class for errors that abort a whole batch."""


class AgentUnavailableError(GshError):
    """The ssh-agent could not be reached."""


class HostsError(GshError):
    """No hosts could be resolved from the arguments or host group."""


class ConfigError(GshError):
    """Invalid defaults file or unresolvable local user."""
