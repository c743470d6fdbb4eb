"""ssh-agent backed credentials shared by every connection in a batch."""

from __future__ import annotations

import logging
import os
from typing import Sequence

import asyncssh

from .errors import AgentUnavailableError

logger = logging.getLogger(__name__)


class CredentialProvider:
    """Wraps one ssh-agent connection and the identities it holds.

    Private keys never leave the agent: each key pair handed out here signs
    authentication challenges by asking the agent to do it.
    """

    def __init__(
        self, agent: asyncssh.SSHAgentClient, keys: Sequence[asyncssh.SSHKeyPair]
    ) -> None:
        self._agent = agent
        self._keys = tuple(keys)
        self._closed = False

    @classmethod
    async def open(cls, agent_path: str | None = None) -> CredentialProvider:
        """Connect to the agent and load its identities.

        Raises:
            AgentUnavailableError: If the agent socket is unset or unreachable
        """
        agent_path = agent_path or os.environ.get("SSH_AUTH_SOCK", "")
        if not agent_path:
            raise AgentUnavailableError("SSH_AUTH_SOCK is not set")

        try:
            agent = await asyncssh.connect_agent(agent_path)
        except (OSError, asyncssh.Error) as e:
            raise AgentUnavailableError(f"Cannot connect to ssh-agent at {agent_path}: {e}") from e
        if agent is None:
            raise AgentUnavailableError(f"Cannot connect to ssh-agent at {agent_path}")

        try:
            keys = await agent.get_keys()
        except (OSError, asyncssh.Error, ValueError) as e:
            agent.close()
            raise AgentUnavailableError(f"ssh-agent at {agent_path} refused to list keys: {e}") from e

        if not keys:
            logger.warning("ssh-agent at %s holds no identities", agent_path)
        else:
            logger.debug("Loaded %d identities from ssh-agent", len(keys))

        return cls(agent, keys)

    def auth_method(self) -> tuple[asyncssh.SSHKeyPair, ...]:
        """Key pairs to pass as ``client_keys``; shareable across connections."""
        return self._keys

    def close(self) -> None:
        """Close the agent connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._agent.close()

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> CredentialProvider:
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()
        await self._agent.wait_closed()
