"""Images command: list catalog images matching the configured filter."""

import asyncio
import logging
import sys

import oci

from oraboot.config import DEFAULT_CONFIG_PATH, resolve_values
from oraboot.errors import ConfigurationMissing
from oraboot.provisioning.oracle import DEFAULT_CONFIG_FILE, DEFAULT_PROFILE, list_images, make_clients

logger = logging.getLogger(__name__)


def handle_images(args):
    """CLI handler for 'images'."""
    asyncio.run(_handle_images(args))


async def _handle_images(args):
    try:
        values = resolve_values(args.config)
        if not values.get("compartment_id"):
            raise ConfigurationMissing("Missing required configuration: compartment_id (env ORACLE_TENANCY_ID)")
    except ConfigurationMissing as e:
        logger.error(f"Error: {e}")
        sys.exit(1)

    operating_system = args.os or values.get("operating_system", "Canonical Ubuntu")
    version = args.os_version or values.get("operating_system_version", "24.04")
    name_filter = args.filter if args.filter is not None else values.get("image_name_filter", "")

    try:
        clients = await asyncio.to_thread(
            make_clients,
            values["compartment_id"],
            values.get("region"),
            values.get("oci_config_file", DEFAULT_CONFIG_FILE),
            values.get("oci_profile", DEFAULT_PROFILE),
        )
        images = await list_images(clients, operating_system=operating_system, version=version, name_filter=name_filter)
    except (oci.exceptions.ServiceError, oci.exceptions.ClientError) as e:
        logger.error(f"Error: {e}")
        sys.exit(1)

    if not images:
        logger.info(f"No {operating_system} {version} images match '{name_filter}'.")
        return
    for image_id, name in images:
        logger.info(f"{name:<60} {image_id}")


def register_images_command(subparsers):
    """Register the 'images' subcommand."""
    parser = subparsers.add_parser("images", help="List OCI platform images")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help=f"YAML config file (default: {DEFAULT_CONFIG_PATH})")
    parser.add_argument("--os", default=None, help="Operating system (default: Canonical Ubuntu)")
    parser.add_argument("--os-version", default=None, help="Operating system version (default: 24.04)")
    parser.add_argument("--filter", default=None, help="Keep images whose display name contains this text")
    parser.set_defaults(func=handle_images)
