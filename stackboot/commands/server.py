"""Server command: create an instance and bootstrap it with knife."""

import asyncio
import logging
import sys

from stackboot.config import env_overrides, load_config_file, resolve_config
from stackboot.errors import StackbootError
from stackboot.provisioning.cloud import create_server
from stackboot.provisioning.ec2 import EC2Client
from stackboot.redact import register_secret

logger = logging.getLogger(__name__)

# argparse dest -> ResolvedConfig field
_CLI_FIELDS = {
    "flavor": "flavor",
    "image": "image",
    "security_groups": "security_groups",
    "availability_zone": "availability_zone",
    "node_name": "node_name",
    "ssh_key": "ssh_key_name",
    "ssh_user": "ssh_user",
    "ssh_password": "ssh_password",
    "identity_file": "identity_file",
    "access_key_id": "access_key_id",
    "secret_access_key": "secret_access_key",
    "api_endpoint": "api_endpoint",
    "region": "region",
    "prerelease": "prerelease",
    "distro": "distro",
    "template_file": "template_file",
    "run_list": "run_list",
    "environment": "environment",
    "no_host_key_verify": "no_host_key_verify",
    "ebs_size": "ebs_size",
    "ebs_no_delete_on_term": "ebs_no_delete_on_term",
    "subnet_id": "subnet_id",
}


def _cli_values(args):
    return {field_name: getattr(args, dest, None) for dest, field_name in _CLI_FIELDS.items()}


# ── CLI handlers ───────────────────────────────────────────────────


def handle_create(args):
    """CLI handler for 'server create'."""
    try:
        rc = asyncio.run(_handle_create(args))
    except StackbootError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    if rc != 0:
        sys.exit(rc)


async def _handle_create(args):
    config = resolve_config(
        file_values=load_config_file(args.config),
        env_values=env_overrides(),
        cli_values=_cli_values(args),
    )
    register_secret(config.ssh_password)
    register_secret(config.secret_access_key)

    client = EC2Client.from_config(config, dry_run=args.dry_run)
    result = await create_server(config, client, dry_run=args.dry_run)
    return result.bootstrap_rc


# ── Registration ───────────────────────────────────────────────────


def register_create_target(subparsers):
    """Register 'server create'."""
    parser = subparsers.add_parser("create", help="Create a new server and bootstrap it with knife")
    parser.add_argument("-f", "--flavor", default=None, help="The flavor of server (m1.small, m1.medium, etc)")
    parser.add_argument("-I", "--image", default=None, help="The image id for the server")
    parser.add_argument(
        "-G", "--groups", dest="security_groups", default=None, help="Comma-separated security groups (default: default)"
    )
    parser.add_argument("-Z", "--availability-zone", default=None, help="The availability zone")
    parser.add_argument("-N", "--node-name", default=None, help="The Chef node name (default: instance id)")
    parser.add_argument("-S", "--ssh-key", default=None, help="The cloud SSH key pair name")
    parser.add_argument("-x", "--ssh-user", default=None, help="The ssh username (default: root)")
    parser.add_argument("-P", "--ssh-password", default=None, help="The ssh password")
    parser.add_argument("-i", "--identity-file", default=None, help="The SSH identity file used for authentication")
    parser.add_argument(
        "-A", "--openstack-access-key-id", dest="access_key_id", default=None,
        help="Access key id (fallback: OPENSTACK_ACCESS_KEY_ID env var)",
    )
    parser.add_argument(
        "-K", "--openstack-secret-access-key", dest="secret_access_key", default=None,
        help="Secret access key (fallback: OPENSTACK_SECRET_ACCESS_KEY env var)",
    )
    parser.add_argument(
        "--openstack-api-endpoint", dest="api_endpoint", default=None,
        help="EC2 API endpoint URL (fallback: OPENSTACK_API_ENDPOINT env var)",
    )
    parser.add_argument("--region", default=None, help="Region (fallback: OPENSTACK_REGION env var)")
    parser.add_argument("--prerelease", action="store_true", default=None, help="Install the pre-release chef gems")
    parser.add_argument("-d", "--distro", default=None, help="Bootstrap a distro using a template (default: chef-full)")
    parser.add_argument("--template-file", default=None, help="Full path to location of template to use")
    parser.add_argument("-r", "--run-list", default=None, help="Comma separated list of roles/recipes to apply")
    parser.add_argument("-E", "--environment", default=None, help="The Chef environment for the node")
    parser.add_argument(
        "--no-host-key-verify", action="store_true", default=None, help="Disable host key verification"
    )
    parser.add_argument("--ebs-size", default=None, help="Root volume size in GB (volume-backed images only)")
    parser.add_argument(
        "--ebs-no-delete-on-term", action="store_true", default=None,
        help="Keep the root volume when the instance terminates",
    )
    parser.add_argument("--subnet", dest="subnet_id", default=None, help="Subnet id to launch into")
    parser.add_argument("--config", default=None, help="YAML config file (default: ~/.stackboot.yaml)")
    parser.add_argument("--dry-run", action="store_true", help="Print requests without executing")
    parser.set_defaults(func=handle_create)


def register_server_command(subparsers):
    """Register the 'server' command with its action subparsers."""
    server_parser = subparsers.add_parser("server", help="Manage cloud servers")
    action_subparsers = server_parser.add_subparsers(dest="action", required=True)
    register_create_target(action_subparsers)
