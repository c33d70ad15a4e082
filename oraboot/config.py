"""Run configuration: YAML file + environment, validated once at startup.

Precedence (highest first): explicit overrides (CLI flags), environment
variables, the YAML file, built-in defaults.
"""

import logging
import os
from dataclasses import dataclass, field

import yaml

from oraboot.errors import ConfigurationMissing
from oraboot.provisioning.oracle import DEFAULT_CONFIG_FILE, DEFAULT_PROFILE, DEFAULT_SHAPE, PUBLIC_IP_POLICY, RUNNING_POLICY
from oraboot.provisioning.remote import CONNECTIVITY_POLICY, VALIDATION_POLICY
from oraboot.provisioning.types import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "oraboot.yaml"

# field name -> environment variable
ENV_VARS = {
    "compartment_id": "ORACLE_TENANCY_ID",
    "region": "ORACLE_REGION",
    "subnet_id": "ORACLE_SUBNET_ID",
    "image_id": "ORACLE_IMAGE_ID",
    "cloudflare_api_token": "CLOUDFLARE_API_TOKEN",
    "cloudflare_zone_id": "CLOUDFLARE_ZONE_ID",
    "domain_name": "DOMAIN_NAME",
}

# YAML (section, key) -> field name
YAML_FIELDS = {
    ("oci", "tenancy_id"): "compartment_id",
    ("oci", "region"): "region",
    ("oci", "config_file"): "oci_config_file",
    ("oci", "profile"): "oci_profile",
    ("oci", "subnet_id"): "subnet_id",
    ("oci", "availability_domain"): "availability_domain",
    ("instance", "name"): "instance_name",
    ("instance", "image_id"): "image_id",
    ("instance", "operating_system"): "operating_system",
    ("instance", "operating_system_version"): "operating_system_version",
    ("instance", "image_name_filter"): "image_name_filter",
    ("instance", "shape"): "shape",
    ("instance", "ocpus"): "ocpus",
    ("instance", "memory_in_gbs"): "memory_in_gbs",
    ("ssh", "user"): "ssh_user",
    ("ssh", "public_key"): "ssh_public_key_path",
    ("ssh", "private_key"): "ssh_private_key_path",
    ("ssh", "strict_host_key_checking"): "strict_host_key_checking",
    ("ssh", "connect_timeout"): "connect_timeout",
    ("cloudflare", "api_token"): "cloudflare_api_token",
    ("cloudflare", "zone_id"): "cloudflare_zone_id",
    ("cloudflare", "domain_name"): "domain_name",
    ("cloudflare", "ttl"): "dns_ttl",
    ("cloudflare", "proxied"): "dns_proxied",
    ("bootstrap", "script"): "script_path",
    ("bootstrap", "remote_script_path"): "remote_script_path",
    ("bootstrap", "second_reboot"): "reboot_after_script",
    ("bootstrap", "validate_command"): "validate_command",
    ("bootstrap", "validate_marker"): "validate_marker",
    ("bootstrap", "grace_delay"): "grace_delay",
}

RETRY_FIELDS = {
    "running": "running_policy",
    "public_ip": "public_ip_policy",
    "connectivity": "connectivity_policy",
    "validation": "validation_policy",
}

_PATH_FIELDS = ("oci_config_file", "ssh_public_key_path", "ssh_private_key_path", "script_path")


@dataclass(frozen=True)
class ProvisionConfig:
    """Everything a provisioning run needs, resolved and validated."""

    compartment_id: str
    subnet_id: str
    ssh_public_key_path: str
    script_path: str
    region: str | None = None
    oci_config_file: str = DEFAULT_CONFIG_FILE
    oci_profile: str = DEFAULT_PROFILE
    availability_domain: str | None = None
    instance_name: str = "oraboot-vm"
    image_id: str | None = None
    operating_system: str = "Canonical Ubuntu"
    operating_system_version: str = "24.04"
    image_name_filter: str = ""
    shape: str = DEFAULT_SHAPE
    ocpus: float = 1
    memory_in_gbs: float = 8
    ssh_user: str = "ubuntu"
    ssh_private_key_path: str | None = None
    strict_host_key_checking: bool = False
    connect_timeout: int = 10
    cloudflare_api_token: str | None = None
    cloudflare_zone_id: str | None = None
    domain_name: str | None = None
    dns_ttl: int = 1
    dns_proxied: bool = True
    publish_dns: bool = True
    remote_script_path: str | None = None
    reboot_after_script: bool = True
    validate_command: str = "docker --version"
    validate_marker: str = "Docker version"
    grace_delay: float = 15
    running_policy: RetryPolicy = field(default=RUNNING_POLICY)
    public_ip_policy: RetryPolicy = field(default=PUBLIC_IP_POLICY)
    connectivity_policy: RetryPolicy = field(default=CONNECTIVITY_POLICY)
    validation_policy: RetryPolicy = field(default=VALIDATION_POLICY)

    @property
    def dns_enabled(self) -> bool:
        return self.publish_dns and bool(self.cloudflare_api_token)

    @property
    def dns_name(self) -> str:
        return f"{self.instance_name}.{self.domain_name}"


def _expand_path(path: str) -> str:
    """Expand user home directory and environment variables in path."""
    return os.path.expanduser(os.path.expandvars(path))


def load_yaml(config_path):
    """Load a YAML config file. A missing file yields an empty config."""
    if not config_path or not os.path.exists(config_path):
        return {}
    with open(config_path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationMissing(f"Error parsing YAML config '{config_path}': {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationMissing(f"Config file '{config_path}' must contain a mapping")
    return data


def _policy(raw, default, name):
    if not isinstance(raw, dict):
        raise ConfigurationMissing(f"retry.{name} must be a mapping with 'attempts' and 'delay'")
    try:
        return RetryPolicy(
            attempts=int(raw.get("attempts", default.attempts)),
            delay=float(raw.get("delay", default.delay)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationMissing(f"retry.{name}: {e}") from e


def _from_yaml(data):
    values = {}
    for (section, key), name in YAML_FIELDS.items():
        section_data = data.get(section) or {}
        if key in section_data and section_data[key] is not None:
            values[name] = section_data[key]

    retry = data.get("retry") or {}
    for key, name in RETRY_FIELDS.items():
        if key in retry:
            default = ProvisionConfig.__dataclass_fields__[name].default
            values[name] = _policy(retry[key], default, key)
    return values


def _from_env(env):
    return {name: env[var] for name, var in ENV_VARS.items() if env.get(var)}


def _default_private_key(public_key_path):
    if public_key_path.endswith(".pub"):
        candidate = public_key_path[: -len(".pub")]
        if os.path.exists(candidate):
            return candidate
    return None


def validate(values):
    """Check required fields and input files; raise ConfigurationMissing."""
    missing = []
    for name in ("compartment_id", "subnet_id", "ssh_public_key_path", "script_path"):
        if not values.get(name):
            env_var = ENV_VARS.get(name)
            missing.append(f"{name} (env {env_var})" if env_var else name)
    if missing:
        raise ConfigurationMissing(f"Missing required configuration: {', '.join(missing)}")

    for name in ("ssh_public_key_path", "script_path"):
        if not os.path.isfile(values[name]):
            raise ConfigurationMissing(f"{name}: file not found: {values[name]}")

    cloudflare = [values.get(n) for n in ("cloudflare_api_token", "cloudflare_zone_id", "domain_name")]
    if values.get("publish_dns", True) and any(cloudflare) and not all(cloudflare):
        raise ConfigurationMissing(
            "Cloudflare DNS needs CLOUDFLARE_API_TOKEN, CLOUDFLARE_ZONE_ID and DOMAIN_NAME together"
        )


def resolve_values(config_path=DEFAULT_CONFIG_PATH, overrides=None, env=None):
    """Merge YAML, environment and overrides into a dict of ProvisionConfig fields."""
    env = os.environ if env is None else env
    values = {}
    values.update(_from_yaml(load_yaml(config_path)))
    values.update(_from_env(env))
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})

    for name in _PATH_FIELDS:
        if values.get(name):
            values[name] = _expand_path(str(values[name]))
    return values


def load_config(config_path=DEFAULT_CONFIG_PATH, overrides=None, env=None):
    """Build a validated ProvisionConfig.

    Args:
        config_path: YAML file (optional; missing file is ignored).
        overrides: dict of field values from the CLI; None values are ignored.
        env: environment mapping (default ``os.environ``).

    Raises:
        ConfigurationMissing: a required value or input file is absent.
    """
    values = resolve_values(config_path, overrides, env)
    values.setdefault("ssh_public_key_path", _expand_path("~/.ssh/id_ed25519.pub"))
    values.setdefault("script_path", "./server-setup.sh")

    validate(values)

    if not values.get("ssh_private_key_path"):
        values["ssh_private_key_path"] = _default_private_key(values["ssh_public_key_path"])

    unknown = set(values) - set(ProvisionConfig.__dataclass_fields__)
    if unknown:
        raise ConfigurationMissing(f"Unknown configuration fields: {', '.join(sorted(unknown))}")

    config = ProvisionConfig(**values)
    logger.debug(f"Loaded configuration from {config_path or '<none>'}")
    return config
