"""Opening authenticated SSH connections to tail hosts."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import asyncssh

from .config import HostEndpoint, HostKeyPolicy, TailOptions
from .errors import AuthError, DialError, HostVerificationError
from .keys import Credential

logger = logging.getLogger(__name__)


@dataclass
class ClientConnection:
    """A live SSH connection and the host entry it was opened for."""

    endpoint: HostEndpoint
    conn: asyncssh.SSHClientConnection

    @property
    def host_tag(self) -> str:
        return self.endpoint.host_tag

    @property
    def remote_file(self) -> str:
        return self.endpoint.remote_file

    async def close(self) -> None:
        """Close the transport and wait until it is torn down."""
        self.conn.close()
        await self.conn.wait_closed()


def _known_hosts_option(options: TailOptions):
    """Translate the host key policy into asyncssh's ``known_hosts`` argument."""
    if options.host_key_policy is HostKeyPolicy.SKIP:
        return None
    if options.known_hosts is not None:
        return str(options.known_hosts.expanduser())
    # Empty tuple makes asyncssh read ~/.ssh/known_hosts
    return ()


async def establish(
    endpoint: HostEndpoint, credential: Credential, options: TailOptions
) -> ClientConnection:
    """Connect and authenticate to one host.

    Raises DialError, AuthError or HostVerificationError. Nothing is retried.
    """
    if options.host_key_policy is HostKeyPolicy.SKIP:
        logger.warning(
            "[%s] Host key verification is disabled for %s",
            endpoint.host_tag,
            endpoint.target,
        )

    logger.debug(
        "[%s] Connecting to %s@%s", endpoint.host_tag, endpoint.username, endpoint.target
    )

    try:
        conn = await asyncssh.connect(
            endpoint.hostname,
            port=endpoint.port,
            username=endpoint.username,
            client_keys=[credential.key],
            known_hosts=_known_hosts_option(options),
            agent_path=None,
            connect_timeout=options.connect_timeout,
        )
    except asyncssh.HostKeyNotVerifiable as e:
        raise HostVerificationError(endpoint.host_tag, endpoint.target, str(e)) from e
    except asyncssh.PermissionDenied as e:
        raise AuthError(endpoint.host_tag, endpoint.target, str(e)) from e
    except asyncssh.Error as e:
        raise DialError(endpoint.host_tag, endpoint.target, str(e)) from e
    except (OSError, asyncio.TimeoutError) as e:
        raise DialError(endpoint.host_tag, endpoint.target, str(e) or type(e).__name__) from e

    logger.debug("[%s] Connected successfully", endpoint.host_tag)
    return ClientConnection(endpoint=endpoint, conn=conn)
