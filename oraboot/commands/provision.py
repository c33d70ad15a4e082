"""Provision command: launch an OCI instance, publish DNS, bootstrap it."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import httpx
import oci

from oraboot.config import DEFAULT_CONFIG_PATH, load_config
from oraboot.errors import OrabootError
from oraboot.provisioning.cloud import provision_instance
from oraboot.redact import redact_secrets, register_secret

logger = logging.getLogger(__name__)


def _overrides(args):
    return {
        "image_id": args.image_id,
        "instance_name": args.name,
        "script_path": args.script,
        "ssh_public_key_path": args.ssh_key,
        "publish_dns": False if args.no_dns else None,
        "reboot_after_script": False if args.no_second_reboot else None,
    }


def write_report(path, data):
    """Write the run report as JSON, with secret values masked."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(redact_secrets(json.dumps(data, indent=2)) + "\n")
    logger.info(f"Report written to {path}")


# ── CLI handler ────────────────────────────────────────────────────


def handle_provision(args):
    """CLI handler for 'provision'."""
    asyncio.run(_handle_provision(args))


async def _handle_provision(args):
    try:
        config = load_config(args.config, overrides=_overrides(args))
    except OrabootError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    register_secret(config.cloudflare_api_token)

    try:
        result = await provision_instance(config, dry_run=args.dry_run)
    except OrabootError as e:
        outcome = getattr(e, "outcome", None)
        if outcome is not None:
            logger.info("")
            logger.info(outcome.format_table())
        logger.error(f"Error: {type(e).__name__}: {e}")
        if args.report:
            report = {"ok": False, "error": type(e).__name__, "message": str(e)}
            if outcome is not None:
                report["bootstrap"] = outcome.to_dict()
            write_report(args.report, report)
        sys.exit(1)
    except (oci.exceptions.ServiceError, oci.exceptions.ClientError, httpx.HTTPError, RuntimeError) as e:
        logger.error(f"Error: {e}")
        if args.report:
            write_report(args.report, {"ok": False, "error": type(e).__name__, "message": str(e)})
        sys.exit(1)

    logger.info("")
    logger.info(result.outcome.format_table())
    logger.info("")
    logger.info(f"Instance: {result.instance.id}")
    logger.info(f"Connect:  ssh {config.ssh_user}@{result.public_ip}")
    if result.published_name is not None:
        logger.info(f"DNS:      {result.published_name.name} -> {result.published_name.address}")
    if args.report:
        write_report(args.report, {"ok": True, **result.to_dict()})


# ── Registration ───────────────────────────────────────────────────


def register_provision_command(subparsers):
    """Register the 'provision' subcommand."""
    parser = subparsers.add_parser("provision", help="Create, publish and bootstrap an OCI instance")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help=f"YAML config file (default: {DEFAULT_CONFIG_PATH})")
    parser.add_argument("--image-id", default=None, help="Image OCID (fallback: ORACLE_IMAGE_ID, then catalog lookup)")
    parser.add_argument("--name", default=None, help="Instance display name, also the DNS label")
    parser.add_argument("--script", default=None, help="Setup script to upload and run (default: ./server-setup.sh)")
    parser.add_argument("--ssh-key", default=None, help="SSH public key file (default: ~/.ssh/id_ed25519.pub)")
    parser.add_argument("--no-dns", action="store_true", help="Skip the Cloudflare DNS record")
    parser.add_argument("--no-second-reboot", action="store_true", help="Do not reboot after the setup script")
    parser.add_argument("--report", default=None, help="Write a JSON run report to this path")
    parser.add_argument("--dry-run", action="store_true", help="Log every action without executing")
    parser.set_defaults(func=handle_provision)
