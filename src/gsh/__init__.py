"""gsh: Run one shell command on many SSH hosts in parallel."""

from .config import Config, Defaults, build_config, load_defaults, load_hosts_file
from .counter import ErrorCounter
from .credentials import CredentialProvider
from .dispatcher import BatchOutcome, BatchState, Dispatcher, run_batch
from .errors import AgentUnavailableError, ConfigError, GshError, HostsError
from .executor import (
    ExecutionResult,
    FailureKind,
    HostStatus,
    OutputMode,
    RemoteExecutor,
    parse_host,
)

__all__ = [
    "Config",
    "Defaults",
    "build_config",
    "load_defaults",
    "load_hosts_file",
    "ErrorCounter",
    "CredentialProvider",
    "BatchOutcome",
    "BatchState",
    "Dispatcher",
    "run_batch",
    "AgentUnavailableError",
    "ConfigError",
    "GshError",
    "HostsError",
    "ExecutionResult",
    "FailureKind",
    "HostStatus",
    "OutputMode",
    "RemoteExecutor",
    "parse_host",
]
