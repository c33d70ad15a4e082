"""Oracle Cloud (OCI) provider: launch instances, poll lifecycle, resolve public IP.

The OCI SDK is blocking; every call goes through :func:`asyncio.to_thread`.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import oci

from oraboot.errors import ProvisionTimeout
from oraboot.provisioning.retry import RetryExhausted, poll_until
from oraboot.provisioning.types import InstanceRecord, LifecycleState, RetryPolicy, collapse_state

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "~/.oci/config"
DEFAULT_PROFILE = "DEFAULT"
DEFAULT_SHAPE = "VM.Standard.E4.Flex"

RUNNING_POLICY = RetryPolicy(attempts=30, delay=15)
PUBLIC_IP_POLICY = RetryPolicy(attempts=20, delay=5)


@dataclass
class OciClients:
    """SDK clients bound to one region and compartment."""

    compute: Any
    network: Any
    identity: Any
    compartment_id: str


def make_clients(compartment_id, region=None, config_file=DEFAULT_CONFIG_FILE, profile=DEFAULT_PROFILE):
    """Build compute/network/identity clients from an OCI config file."""
    config = oci.config.from_file(file_location=config_file, profile_name=profile)
    if region:
        config["region"] = region
    oci.config.validate_config(config)
    return OciClients(
        compute=oci.core.ComputeClient(config),
        network=oci.core.VirtualNetworkClient(config),
        identity=oci.identity.IdentityClient(config),
        compartment_id=compartment_id,
    )


# ── Catalog / placement ────────────────────────────────────────────


async def list_images(clients, operating_system="Canonical Ubuntu", version="24.04", name_filter=""):
    """List platform images, keeping those whose display name contains *name_filter*.

    Returns:
        list of (image_id, display_name) tuples, newest first.
    """

    def _list():
        return oci.pagination.list_call_get_all_results(
            clients.compute.list_images,
            compartment_id=clients.compartment_id,
            operating_system=operating_system,
            operating_system_version=version,
            sort_by="TIMECREATED",
            sort_order="DESC",
        ).data

    images = await asyncio.to_thread(_list)
    return [
        (img.id, img.display_name or "")
        for img in images
        if name_filter in (img.display_name or "")
    ]


async def first_availability_domain(clients):
    """Return the name of the first availability domain in the compartment."""

    def _list():
        return clients.identity.list_availability_domains(compartment_id=clients.compartment_id).data

    domains = await asyncio.to_thread(_list)
    if not domains:
        raise RuntimeError(f"No availability domains found in compartment {clients.compartment_id}")
    return domains[0].name


# ── Instances ──────────────────────────────────────────────────────


def _launch_details(spec, compartment_id):
    shape_config = None
    if "Flex" in spec.shape:
        shape_config = oci.core.models.LaunchInstanceShapeConfigDetails(
            ocpus=spec.ocpus,
            memory_in_gbs=spec.memory_in_gbs,
        )
    return oci.core.models.LaunchInstanceDetails(
        compartment_id=compartment_id,
        availability_domain=spec.availability_domain,
        shape=spec.shape,
        shape_config=shape_config,
        display_name=spec.display_name,
        source_details=oci.core.models.InstanceSourceViaImageDetails(image_id=spec.image_id),
        metadata={"ssh_authorized_keys": spec.ssh_public_key},
        create_vnic_details=oci.core.models.CreateVnicDetails(
            assign_public_ip=True,
            subnet_id=spec.subnet_id,
        ),
    )


def _to_record(instance):
    return InstanceRecord(
        id=instance.id,
        state=collapse_state(instance.lifecycle_state),
        provider_state=instance.lifecycle_state or "",
    )


async def launch_instance(clients, spec, dry_run=False):
    """Submit the launch request and return the initial snapshot."""
    logger.info(f"Launching instance '{spec.display_name}' (shape={spec.shape}, ad={spec.availability_domain})...")
    if dry_run:
        logger.info(f"[dry-run] launch_instance image={spec.image_id} subnet={spec.subnet_id}")
        return InstanceRecord(id="dry-run-instance-id", state=LifecycleState.PROVISIONING, provider_state="PROVISIONING")

    details = _launch_details(spec, clients.compartment_id)
    instance = await asyncio.to_thread(lambda: clients.compute.launch_instance(details).data)
    record = _to_record(instance)
    logger.info(f"Instance OCID: {record.id}")
    return record


async def get_instance(clients, instance_id):
    """Fetch a fresh InstanceRecord snapshot."""
    instance = await asyncio.to_thread(lambda: clients.compute.get_instance(instance_id).data)
    return _to_record(instance)


async def wait_for_state(clients, instance_id, target=LifecycleState.RUNNING, policy=RUNNING_POLICY, sleep=None, dry_run=False):
    """Poll the instance until it reports *target*.

    Returns:
        The InstanceRecord observed in the target state.

    Raises:
        ProvisionTimeout: with the last observed state once the policy is spent.
    """
    if dry_run:
        logger.info(f"[dry-run] Poll up to {policy.attempts} times every {policy.delay}s for state {target.value}")
        return InstanceRecord(id=instance_id, state=target, provider_state=target.value)

    async def _check():
        record = await get_instance(clients, instance_id)
        return record.state == target, record

    try:
        record = await poll_until(_check, policy, f"{target.value} state", sleep=sleep)
    except RetryExhausted as e:
        last_state = e.last.provider_state if e.last is not None else None
        raise ProvisionTimeout(instance_id, target.value, last_state, e.attempts) from None

    logger.info(f"Instance is {target.value}.")
    return record


async def fetch_public_ip(clients, instance_id, policy=PUBLIC_IP_POLICY, sleep=None, dry_run=False):
    """Resolve the public IP of the instance's first VNIC.

    VNIC attachment and public IP assignment complete independently after the
    instance is running, so the whole lookup is retried.

    Returns:
        The first non-empty public IP, or None when the policy runs out.
    """
    if dry_run:
        logger.info(f"[dry-run] Poll up to {policy.attempts} times every {policy.delay}s for a public IP")
        return "dry-run-host"

    def _lookup():
        attachments = clients.compute.list_vnic_attachments(
            compartment_id=clients.compartment_id,
            instance_id=instance_id,
        ).data
        if not attachments:
            return None
        vnic = clients.network.get_vnic(attachments[0].vnic_id).data
        return getattr(vnic, "public_ip", None) or None

    async def _check():
        ip = await asyncio.to_thread(_lookup)
        return bool(ip), ip

    try:
        ip = await poll_until(_check, policy, "public IP", sleep=sleep)
    except RetryExhausted:
        logger.warning(f"No public IP for instance {instance_id} after {policy.attempts} attempts.")
        return None

    logger.info(f"Public IP: {ip}")
    return ip
