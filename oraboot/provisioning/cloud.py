"""Provisioning driver: launch an OCI instance, publish its IP, bootstrap it.

Order of operations:
    image + availability domain -> launch -> RUNNING -> public IP
    -> DNS record (optional) -> grace delay -> bootstrap

Every stage either returns or raises; there is no rollback of resources
created by earlier stages.
"""

import asyncio
import dataclasses
import logging

from oraboot.errors import AddressUnavailable
from oraboot.provisioning import oracle
from oraboot.provisioning.cloudflare import publish_dns_record
from oraboot.provisioning.remote import BootstrapOptions, bootstrap_host
from oraboot.provisioning.ssh_transport import RemoteSession
from oraboot.provisioning.types import (
    InstanceSpec,
    LifecycleState,
    ProvisionResult,
    RemoteSessionConfig,
)

logger = logging.getLogger(__name__)


async def resolve_image(clients, config, dry_run=False):
    """Return the configured image OCID, or the newest catalog match."""
    if config.image_id:
        return config.image_id
    if dry_run:
        logger.info(
            f"[dry-run] list_images os='{config.operating_system}' version={config.operating_system_version}"
            f" filter='{config.image_name_filter}'"
        )
        return "dry-run-image-id"

    images = await oracle.list_images(
        clients,
        operating_system=config.operating_system,
        version=config.operating_system_version,
        name_filter=config.image_name_filter,
    )
    if not images:
        raise RuntimeError(
            f"No {config.operating_system} {config.operating_system_version} image matches '{config.image_name_filter}'"
        )
    image_id, name = images[0]
    logger.info(f"Image: {name} ({image_id})")
    return image_id


async def resolve_availability_domain(clients, config, dry_run=False):
    if config.availability_domain:
        return config.availability_domain
    if dry_run:
        logger.info("[dry-run] list_availability_domains")
        return "dry-run-ad"
    ad = await oracle.first_availability_domain(clients)
    logger.info(f"Availability domain: {ad}")
    return ad


def _read_public_key(path):
    with open(path) as f:
        return f.read().strip()


def bootstrap_options(config):
    return BootstrapOptions(
        remote_script_path=config.remote_script_path,
        reboot_after_script=config.reboot_after_script,
        validate_command=config.validate_command,
        validate_marker=config.validate_marker,
        connectivity_policy=config.connectivity_policy,
        validation_policy=config.validation_policy,
    )


def session_config(config, host):
    return RemoteSessionConfig(
        host=host,
        username=config.ssh_user,
        ssh_key=config.ssh_private_key_path,
        connect_timeout=config.connect_timeout,
        strict_host_key_checking=config.strict_host_key_checking,
    )


async def provision_instance(
    config,
    clients=None,
    session_factory=RemoteSession,
    publish=publish_dns_record,
    sleep=None,
    dry_run=False,
):
    """Run the whole workflow for one instance.

    Args:
        config: validated ProvisionConfig.
        clients: OciClients; built from the OCI config file when None.
        session_factory: callable(RemoteSessionConfig, dry_run=...) -> RemoteSession.
        publish: async DNS publisher with the signature of publish_dns_record().
        sleep: async sleep used by the grace delay and all polling loops.

    Returns:
        ProvisionResult.

    Raises:
        OrabootError: ProvisionTimeout, AddressUnavailable, ConnectivityTimeout,
            RemoteCommandFailure or ValidationFailure, whichever stage failed.
    """
    sleep = sleep or asyncio.sleep

    if clients is None and not dry_run:
        clients = await asyncio.to_thread(
            oracle.make_clients,
            config.compartment_id,
            config.region,
            config.oci_config_file,
            config.oci_profile,
        )

    image_id = await resolve_image(clients, config, dry_run=dry_run)
    availability_domain = await resolve_availability_domain(clients, config, dry_run=dry_run)

    spec = InstanceSpec(
        image_id=image_id,
        shape=config.shape,
        availability_domain=availability_domain,
        ssh_public_key=_read_public_key(config.ssh_public_key_path),
        subnet_id=config.subnet_id,
        display_name=config.instance_name,
        ocpus=config.ocpus,
        memory_in_gbs=config.memory_in_gbs,
    )
    record = await oracle.launch_instance(clients, spec, dry_run=dry_run)

    logger.info(
        f"Waiting for RUNNING (up to {config.running_policy.attempts} checks, {config.running_policy.delay}s apart)..."
    )
    record = await oracle.wait_for_state(
        clients, record.id, LifecycleState.RUNNING, config.running_policy, sleep=sleep, dry_run=dry_run
    )

    public_ip = await oracle.fetch_public_ip(clients, record.id, config.public_ip_policy, sleep=sleep, dry_run=dry_run)
    if not public_ip:
        raise AddressUnavailable(record.id, config.public_ip_policy.attempts)
    record = dataclasses.replace(record, public_ip=public_ip)

    published = None
    if config.dns_enabled:
        published = await publish(
            config.cloudflare_api_token,
            config.cloudflare_zone_id,
            config.dns_name,
            public_ip,
            ttl=config.dns_ttl,
            proxied=config.dns_proxied,
            dry_run=dry_run,
        )
    else:
        logger.info("DNS publishing disabled; skipping Cloudflare record.")

    if dry_run:
        logger.info(f"[dry-run] Wait {config.grace_delay}s for startup services to settle")
    elif config.grace_delay:
        logger.info(f"Waiting {config.grace_delay}s for startup services to settle...")
        await sleep(config.grace_delay)

    session = session_factory(session_config(config, public_ip), dry_run=dry_run)
    outcome = await bootstrap_host(session, config.script_path, bootstrap_options(config), sleep=sleep, dry_run=dry_run)

    return ProvisionResult(
        instance=record,
        public_ip=public_ip,
        published_name=published,
        outcome=outcome,
    )
