"""SSH transport: run commands and upload files on the target host via SSH/SCP.

Each call spawns a fresh ``ssh``/``scp`` process; nothing is pooled. Results
separate two failure classes:

- connectivity: the channel never came up or dropped (OpenSSH exit 255,
  local timeout, missing client binary)
- remote: the command ran and exited non-zero
"""

import logging
import shlex
from dataclasses import dataclass

from oraboot.errors import ConnectivityFailure, RemoteCommandFailure
from oraboot.provisioning.shell import run_shell_cmd

logger = logging.getLogger(__name__)

# OpenSSH and scp exit with 255 when the connection itself fails
SSH_CONNECTION_ERROR = 255

RESULT_OK = "ok"
RESULT_CONNECTIVITY = "connectivity"
RESULT_REMOTE = "remote"


def _ssh_options(config, connect_timeout=None):
    opts = []
    if config.strict_host_key_checking:
        opts += ["-o", "StrictHostKeyChecking=yes"]
    else:
        opts += ["-o", "StrictHostKeyChecking=no", "-o", "UserKnownHostsFile=/dev/null"]
    opts += [
        "-o", "BatchMode=yes",
        "-o", f"ConnectTimeout={connect_timeout or config.connect_timeout}",
        "-o", f"ServerAliveInterval={config.keepalive_interval}",
        "-o", f"ServerAliveCountMax={config.keepalive_count}",
    ]
    if config.ssh_key:
        opts += ["-i", config.ssh_key]
    return opts


def ssh_base_args(config, connect_timeout=None):
    """Build base SSH arguments, ending with the user@host address."""
    args = ["ssh", *_ssh_options(config, connect_timeout)]
    if config.port and config.port != 22:
        args += ["-p", str(config.port)]
    args.append(config.address)
    return args


def scp_args(config, local_path, remote_path):
    """Build SCP arguments for a single upload."""
    args = ["scp", *_ssh_options(config)]
    if config.port and config.port != 22:
        args += ["-P", str(config.port)]
    args += [local_path, f"{config.address}:{remote_path}"]
    return args


def privileged(command):
    """Wrap *command* so it runs as root in a non-interactive bash."""
    return f"sudo bash -c {shlex.quote(command)}"


@dataclass
class RemoteResult:
    """Outcome of one ssh/scp invocation."""

    command: str
    kind: str
    returncode: int | None
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.kind == RESULT_OK

    @classmethod
    def classify(cls, command, returncode, stdout, stderr):
        if returncode == 0:
            kind = RESULT_OK
        elif returncode is None or returncode == SSH_CONNECTION_ERROR:
            kind = RESULT_CONNECTIVITY
        else:
            kind = RESULT_REMOTE
        return cls(command=command, kind=kind, returncode=returncode, stdout=stdout, stderr=stderr)

    def raise_for_status(self):
        """Raise ConnectivityFailure or RemoteCommandFailure unless ok."""
        if self.kind == RESULT_CONNECTIVITY:
            raise ConnectivityFailure(self.command, self.stderr)
        if self.kind == RESULT_REMOTE:
            raise RemoteCommandFailure(self.command, self.returncode, self.stderr)
        return self


class RemoteSession:
    """Run commands and upload files against one host."""

    def __init__(self, config, dry_run=False):
        self.config = config
        self.dry_run = dry_run

    @property
    def address(self):
        return self.config.address

    async def run(self, command, sudo=False, timeout=None, connect_timeout=None):
        """Execute *command* on the host and classify the result."""
        full_cmd = privileged(command) if sudo else command
        if self.dry_run:
            logger.info(f"[dry-run] ssh {self.address}: {full_cmd}")
            return RemoteResult(command=command, kind=RESULT_OK, returncode=0)

        args = ssh_base_args(self.config, connect_timeout=connect_timeout)
        args.append(full_cmd)
        logger.debug(f"ssh {self.address}: {full_cmd}")
        rc, stdout, stderr = await run_shell_cmd(args, timeout=timeout or self.config.command_timeout)
        result = RemoteResult.classify(command, rc, stdout, stderr)
        if result.kind == RESULT_REMOTE:
            logger.error(f"SSH error ({self.address}): exit {rc}: {stderr.strip()}")
        elif result.kind == RESULT_CONNECTIVITY:
            logger.debug(f"SSH connection to {self.address} failed: {stderr.strip()}")
        return result

    async def upload(self, local_path, remote_path, timeout=300):
        """Copy a local file to *remote_path* on the host."""
        label = f"scp {local_path} -> {remote_path}"
        if self.dry_run:
            logger.info(f"[dry-run] scp {local_path} -> {self.address}:{remote_path}")
            return RemoteResult(command=label, kind=RESULT_OK, returncode=0)

        rc, stdout, stderr = await run_shell_cmd(scp_args(self.config, local_path, remote_path), timeout=timeout)
        result = RemoteResult.classify(label, rc, stdout, stderr)
        if not result.ok:
            logger.error(f"Failed to SCP {local_path} to {self.address}:{remote_path}: {stderr.strip()}")
        return result
