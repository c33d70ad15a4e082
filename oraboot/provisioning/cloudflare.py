"""Cloudflare DNS: publish the instance address as an A record via the REST API."""

import json
import logging

import httpx

from oraboot.provisioning.types import PublishedName

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.cloudflare.com/client/v4"


async def _api_request(method, path, data, api_token, api_url=DEFAULT_API_URL, dry_run=False):
    """Make an authenticated Cloudflare API request.

    Returns:
        The ``result`` member of the response envelope, or ``None`` in dry-run mode.
    """
    url = f"{api_url}{path}"

    if dry_run:
        logger.info(f"[dry-run] {method} {url}")
        logger.info(f"[dry-run] payload: {json.dumps(data, indent=2)}")
        return None

    headers = {"Authorization": f"Bearer {api_token}", "Content-Type": "application/json"}
    async with httpx.AsyncClient() as client:
        resp = await client.request(method, url, json=data, headers=headers, timeout=60)
    resp.raise_for_status()
    body = resp.json()
    return body.get("result", body)


async def publish_dns_record(api_token, zone_id, name, address, ttl=1, proxied=True, api_url=DEFAULT_API_URL, dry_run=False):
    """Create an A record ``name -> address``.

    Conflicts with an existing record are left to Cloudflare; the HTTP error
    propagates unchanged.
    """
    record = {
        "type": "A",
        "name": name,
        "content": address,
        "ttl": ttl,
        "proxied": proxied,
    }
    logger.info(f"Publishing DNS record {name} -> {address}...")
    result = await _api_request("POST", f"/zones/{zone_id}/dns_records", record, api_token, api_url, dry_run)
    record_id = result.get("id") if isinstance(result, dict) else None
    if not dry_run:
        logger.info(f"Cloudflare DNS record created (id={record_id}).")
    return PublishedName(name=name, address=address, ttl=ttl, proxied=proxied, record_id=record_id)
