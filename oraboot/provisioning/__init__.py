"""Instance provisioning: OCI lifecycle polling, SSH transport, remote bootstrap."""

from oraboot.provisioning.cloud import provision_instance
from oraboot.provisioning.cloudflare import publish_dns_record
from oraboot.provisioning.oracle import (
    OciClients,
    fetch_public_ip,
    list_images,
    make_clients,
    wait_for_state,
)
from oraboot.provisioning.remote import BootstrapOptions, bootstrap_host
from oraboot.provisioning.retry import RetryExhausted, poll_until
from oraboot.provisioning.shell import run_shell_cmd
from oraboot.provisioning.ssh import wait_for_ssh
from oraboot.provisioning.ssh_transport import RemoteResult, RemoteSession, scp_args, ssh_base_args
from oraboot.provisioning.types import (
    BootstrapOutcome,
    InstanceRecord,
    InstanceSpec,
    LifecycleState,
    ProvisionResult,
    PublishedName,
    RemoteSessionConfig,
    RetryPolicy,
)

__all__ = [
    "BootstrapOptions",
    "BootstrapOutcome",
    "InstanceRecord",
    "InstanceSpec",
    "LifecycleState",
    "OciClients",
    "ProvisionResult",
    "PublishedName",
    "RemoteResult",
    "RemoteSession",
    "RemoteSessionConfig",
    "RetryExhausted",
    "RetryPolicy",
    "bootstrap_host",
    "fetch_public_ip",
    "list_images",
    "make_clients",
    "poll_until",
    "provision_instance",
    "publish_dns_record",
    "run_shell_cmd",
    "scp_args",
    "ssh_base_args",
    "wait_for_ssh",
    "wait_for_state",
]
