"""Configuration loading: YAML file, environment and CLI overrides.

Produces one frozen ResolvedConfig per run. Nothing downstream reads the
environment or the config file directly; everything flows through this
object.
"""

import logging
import os
import re
from dataclasses import dataclass, fields

import yaml

from stackboot.errors import UsageError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/.stackboot.yaml"

# Env var -> ResolvedConfig field
ENV_VARS = {
    "OPENSTACK_ACCESS_KEY_ID": "access_key_id",
    "OPENSTACK_SECRET_ACCESS_KEY": "secret_access_key",
    "OPENSTACK_API_ENDPOINT": "api_endpoint",
    "OPENSTACK_REGION": "region",
}

REQUIRED_FIELDS = ("image", "flavor")


@dataclass(frozen=True)
class ResolvedConfig:
    """All parameters for a single server create run."""

    image: str | None = None
    flavor: str | None = None
    security_groups: tuple[str, ...] = ("default",)
    availability_zone: str | None = None
    ssh_key_name: str | None = None
    ssh_user: str = "root"
    ssh_password: str | None = None
    identity_file: str | None = None
    run_list: tuple[str, ...] = ()
    distro: str = "chef-full"
    template_file: str | None = None
    prerelease: bool = False
    no_host_key_verify: bool = False
    ebs_size: str | None = None
    ebs_no_delete_on_term: bool = False
    subnet_id: str | None = None
    node_name: str | None = None
    environment: str | None = None
    # Provider settings
    access_key_id: str | None = None
    secret_access_key: str | None = None
    api_endpoint: str | None = None
    region: str | None = None


def parse_run_list(value) -> tuple[str, ...]:
    """Split a run list given as 'role[a],recipe[b]' or 'role[a] recipe[b]'."""
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(item for item in re.split(r"[\s,]+", value) if item)
    return tuple(str(item) for item in value)


def parse_groups(value) -> tuple[str, ...]:
    """Split security groups given as 'a,b,c'. Empty input means ('default',)."""
    if value is None:
        return ("default",)
    if isinstance(value, str):
        groups = tuple(g.strip() for g in value.split(",") if g.strip())
    else:
        groups = tuple(str(g) for g in value)
    return groups or ("default",)


def load_config_file(config_path=None) -> dict:
    """Load the YAML config file.

    A missing default file yields an empty mapping; a missing explicit file,
    an unreadable path or malformed YAML is a UsageError.
    """
    explicit = config_path is not None
    path = os.path.expanduser(os.path.expandvars(config_path or DEFAULT_CONFIG_PATH))
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        if explicit:
            raise UsageError(f"Config file '{path}' not found.") from None
        return {}
    except OSError as e:
        raise UsageError(f"Cannot read config file '{path}': {e.strerror or e}") from e
    except yaml.YAMLError as e:
        raise UsageError(f"Error parsing YAML config '{path}': {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise UsageError(f"Config file '{path}' must contain a mapping, got {type(data).__name__}")

    known = {f.name for f in fields(ResolvedConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning(f"Ignoring unknown config keys in {path}: {', '.join(unknown)}")
    logger.debug(f"Loaded config from {path}")
    return {k: v for k, v in data.items() if k in known}


def env_overrides(environ=None) -> dict:
    """Collect provider settings from environment variables."""
    environ = os.environ if environ is None else environ
    return {field_name: environ[var] for var, field_name in ENV_VARS.items() if environ.get(var)}


def resolve_config(file_values=None, env_values=None, cli_values=None) -> ResolvedConfig:
    """Merge config sources into a ResolvedConfig.

    Precedence, highest first: CLI, environment, config file, defaults.
    ``None`` values in a source mean "not set" and do not override.
    """
    merged = {}
    for source in (file_values or {}, env_values or {}, cli_values or {}):
        for key, value in source.items():
            if value is not None:
                merged[key] = value

    missing = [name for name in REQUIRED_FIELDS if not merged.get(name)]
    if missing:
        raise UsageError(f"Missing required option(s): {', '.join(missing)}")

    if "run_list" in merged:
        merged["run_list"] = parse_run_list(merged["run_list"])
    if "security_groups" in merged:
        merged["security_groups"] = parse_groups(merged["security_groups"])
    if merged.get("ebs_size") is not None:
        merged["ebs_size"] = str(merged["ebs_size"])

    return ResolvedConfig(**merged)
