"""Remote bootstrap: upgrade, reboot, upload and run the setup script, validate.

Stages run strictly in order and the sequence stops at the first fatal error:

1. upgrade            apt full-upgrade ending in ``reboot``
2. wait-online        SSH probe until the host is back
3. upload             scp the setup script
4. execute            chmod +x and run it as root
5. reboot             optional second reboot
6. wait-online-again  SSH probe again
7. validate           poll a check command for an expected marker

A dropped connection right after a self-issued reboot is expected and is not
an error. A non-zero exit from the same command is.
"""

import logging
import shlex
import time
from dataclasses import dataclass

from oraboot.errors import ConnectivityFailure, OrabootError, RemoteCommandFailure, ValidationFailure
from oraboot.provisioning.retry import RetryExhausted, poll_until
from oraboot.provisioning.ssh import wait_for_ssh
from oraboot.provisioning.ssh_transport import RESULT_CONNECTIVITY, RESULT_OK, RESULT_REMOTE
from oraboot.provisioning.types import (
    STAGE_FAILED,
    STAGE_OK,
    STAGE_SKIPPED,
    BootstrapOutcome,
    RetryPolicy,
)

logger = logging.getLogger(__name__)

UPGRADE_COMMAND = (
    "set -e\n"
    "export DEBIAN_FRONTEND=noninteractive\n"
    "apt-get update -yq\n"
    "apt-get full-upgrade -yq\n"
    "apt-get autoremove -yq\n"
    "apt-get clean\n"
    "reboot"
)
REBOOT_COMMAND = "reboot"
SCRIPT_NAME = "server-setup.sh"

CONNECTIVITY_POLICY = RetryPolicy(attempts=60, delay=5)
VALIDATION_POLICY = RetryPolicy(attempts=10, delay=10)


@dataclass
class BootstrapOptions:
    """Tunables for bootstrap_host()."""

    remote_script_path: str | None = None
    reboot_after_script: bool = True
    validate_command: str = "docker --version"
    validate_marker: str = "Docker version"
    upgrade_command: str = UPGRADE_COMMAND
    connectivity_policy: RetryPolicy = CONNECTIVITY_POLICY
    validation_policy: RetryPolicy = VALIDATION_POLICY


def default_script_path(username):
    home = f"/home/{username}" if username and username != "root" else "/root"
    return f"{home}/{SCRIPT_NAME}"


async def _reboot(session, command):
    """Run a command that ends by rebooting the host.

    Returns a short description of how the command ended. Connectivity loss
    is the normal ending; a remote failure is raised.
    """
    result = await session.run(command, sudo=True)
    if result.kind == RESULT_CONNECTIVITY:
        stderr = result.stderr.strip()
        logger.info(f"Connection dropped (reboot in progress): {stderr or 'no ssh output'}")
        # stderr tells a mid-command drop apart from a refused connection
        return f"disconnected: {stderr}" if stderr else "disconnected"
    if result.kind == RESULT_REMOTE:
        raise RemoteCommandFailure(result.command, result.returncode, result.stderr)
    logger.info("Reboot issued.")
    return "reboot issued"


def _require_ok(result):
    """Raise RemoteCommandFailure for any non-ok result, connectivity loss included."""
    try:
        return result.raise_for_status()
    except ConnectivityFailure as e:
        raise RemoteCommandFailure(result.command, result.returncode, result.stderr) from e


async def _upload(session, local_path, remote_path):
    _require_ok(await session.upload(local_path, remote_path))
    return remote_path


async def _execute(session, remote_path):
    quoted = shlex.quote(remote_path)
    result = _require_ok(await session.run(f"chmod +x {quoted} && sudo {quoted}"))
    return f"exit {result.returncode}"


async def _validate(session, options, sleep=None, dry_run=False):
    command = options.validate_command
    marker = options.validate_marker

    async def _check():
        result = await session.run(command)
        if dry_run:
            return result.ok, result.stdout
        done = result.kind == RESULT_OK and marker in result.stdout
        return done, result.stdout

    try:
        output = await poll_until(_check, options.validation_policy, f"'{command}' to report '{marker}'", sleep=sleep)
    except RetryExhausted as e:
        raise ValidationFailure(command, marker, e.attempts, e.last or "") from None

    logger.info(f"Validation passed: {output.strip()}")
    return output.strip()


async def bootstrap_host(session, script_path, options=None, sleep=None, dry_run=False):
    """Bring a freshly booted host to a usable state.

    Args:
        session: RemoteSession for the target host.
        script_path: local path of the setup script to upload and run.
        options: BootstrapOptions (defaults when None).
        sleep: async sleep used by every wait loop.

    Returns:
        BootstrapOutcome with one entry per stage.

    Raises:
        OrabootError: the first fatal stage error. The partial outcome is
            attached as ``.outcome``.
    """
    options = options or BootstrapOptions()
    remote_path = options.remote_script_path or default_script_path(session.config.username)
    outcome = BootstrapOutcome()

    stages = [
        ("upgrade", "Upgrading system packages (reboot follows)...", lambda: _reboot(session, options.upgrade_command)),
        ("wait-online", "Waiting for host to come back...", lambda: wait_for_ssh(session, options.connectivity_policy, sleep=sleep)),
        ("upload", f"Uploading {script_path} -> {remote_path}...", lambda: _upload(session, script_path, remote_path)),
        ("execute", "Running setup script...", lambda: _execute(session, remote_path)),
        ("reboot", "Rebooting after setup...", lambda: _reboot(session, REBOOT_COMMAND)),
        ("wait-online-again", "Waiting for host to come back...", lambda: wait_for_ssh(session, options.connectivity_policy, sleep=sleep)),
        ("validate", f"Validating with '{options.validate_command}'...", lambda: _validate(session, options, sleep=sleep, dry_run=dry_run)),
    ]

    for name, message, step in stages:
        if name == "reboot" and not options.reboot_after_script:
            outcome.record(name, STAGE_SKIPPED, 0.0)
            continue

        logger.info(f"[{name}] {message}")
        started = time.monotonic()
        try:
            detail = await step()
        except OrabootError as e:
            outcome.record(name, STAGE_FAILED, time.monotonic() - started, str(e))
            logger.error(f"[{name}] failed: {e}")
            e.outcome = outcome
            raise
        outcome.record(name, STAGE_OK, time.monotonic() - started, detail or "")

    logger.info("Bootstrap complete.")
    return outcome
