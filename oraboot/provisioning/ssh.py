"""SSH readiness polling."""

import logging
import time

from oraboot.errors import ConnectivityTimeout
from oraboot.provisioning.retry import RetryExhausted, poll_until
from oraboot.provisioning.ssh_transport import RESULT_OK

logger = logging.getLogger(__name__)

PROBE_COMMAND = "true"
PROBE_CONNECT_TIMEOUT = 5


async def wait_for_ssh(session, policy, sleep=None):
    """Run a no-op over SSH until it succeeds or the policy is exhausted.

    Any failure of the probe counts as "not back yet", including a non-zero
    exit from ``true`` (sshd accepting connections before login is allowed).

    Raises:
        ConnectivityTimeout: the host never answered within the policy.
    """
    started = time.monotonic()

    async def _probe():
        result = await session.run(PROBE_COMMAND, timeout=PROBE_CONNECT_TIMEOUT * 3, connect_timeout=PROBE_CONNECT_TIMEOUT)
        return result.kind == RESULT_OK, result.kind

    try:
        await poll_until(_probe, policy, f"SSH on {session.address}", sleep=sleep)
    except RetryExhausted as e:
        elapsed = time.monotonic() - started
        logger.error(f"Timeout after {e.attempts} attempts waiting for SSH connectivity to {session.address}")
        raise ConnectivityTimeout(session.address, e.attempts, elapsed=elapsed) from None

    logger.info(f"SSH is reachable on {session.address}.")
