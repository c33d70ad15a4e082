"""Error types raised by the provisioning workflow.

Every unrecovered failure of a run is an ``OrabootError``; the CLI turns it
into a logged diagnostic and a non-zero exit code.
"""


class OrabootError(Exception):
    """Base class for all provisioning failures."""


class ConfigurationMissing(OrabootError):
    """A required input is absent. Raised before any provider or SSH call."""


class ProvisionTimeout(OrabootError):
    """The instance never reached the target lifecycle state."""

    def __init__(self, instance_id, target, last_state, attempts):
        self.instance_id = instance_id
        self.target = target
        self.last_state = last_state
        self.attempts = attempts
        super().__init__(
            f"Instance {instance_id} did not reach {target} after {attempts} attempts (last state: {last_state})"
        )


class AddressUnavailable(OrabootError):
    """No public address showed up on the instance's VNIC."""

    def __init__(self, instance_id, attempts):
        self.instance_id = instance_id
        self.attempts = attempts
        super().__init__(f"No public IP found for instance {instance_id} after {attempts} attempts")


class ConnectivityTimeout(OrabootError):
    """The host never became reachable over SSH."""

    def __init__(self, address, attempts, elapsed=None):
        self.address = address
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(f"SSH to {address} still unreachable after {attempts} attempts")


class ConnectivityFailure(OrabootError):
    """The SSH transport could not be established (host down, timeout, refused)."""

    def __init__(self, command, stderr=""):
        self.command = command
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"Could not reach host for '{command}'{detail}")


class RemoteCommandFailure(OrabootError):
    """The transport worked but the remote command exited non-zero."""

    def __init__(self, command, returncode, stderr=""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"Remote command '{command}' failed with exit code {returncode}{detail}")


class ValidationFailure(OrabootError):
    """The post-bootstrap check never reported the expected output."""

    def __init__(self, command, expected, attempts, last_output=""):
        self.command = command
        self.expected = expected
        self.attempts = attempts
        self.last_output = last_output
        super().__init__(
            f"Validation '{command}' did not report '{expected}' after {attempts} attempts"
            f" (last output: {last_output.strip()!r})"
        )
