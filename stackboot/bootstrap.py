"""Bootstrap hand-off: build the knife bootstrap request and run it.

The bootstrap itself (installing chef-client, registering the node,
converging the run list) is done by ``knife bootstrap`` over its own SSH
connection. This module only assembles its parameters and reports its exit
code unchanged.
"""

import logging

from stackboot.provisioning.shell import run_shell_cmd
from stackboot.provisioning.types import BootstrapRequest

logger = logging.getLogger(__name__)

KNIFE_BIN = "knife"


def build_bootstrap_request(instance, config) -> BootstrapRequest:
    """Derive the BootstrapRequest for a ready *instance*.

    The node name falls back to the instance id. Sudo is always used.
    Password and identity file are both passed through when set.
    """
    return BootstrapRequest(
        host=instance.dns_name,
        node_name=config.node_name or instance.id,
        run_list=tuple(config.run_list),
        ssh_user=config.ssh_user,
        identity_file=config.identity_file,
        ssh_password=config.ssh_password,
        prerelease=bool(config.prerelease),
        distro=config.distro,
        use_sudo=True,
        template_file=config.template_file or None,
        environment=config.environment,
        no_host_key_verify=bool(config.no_host_key_verify),
    )


def knife_bootstrap_cmd(request, knife_bin=KNIFE_BIN):
    """Build the knife bootstrap command line for *request*."""
    cmd = [knife_bin, "bootstrap", request.host]
    if request.run_list:
        cmd += ["--run-list", ",".join(request.run_list)]
    cmd += ["--ssh-user", request.ssh_user]
    if request.ssh_password:
        cmd += ["--ssh-password", request.ssh_password]
    if request.identity_file:
        cmd += ["--identity-file", request.identity_file]
    cmd += ["--node-name", request.node_name]
    if request.prerelease:
        cmd.append("--prerelease")
    if request.distro:
        cmd += ["--distro", request.distro]
    if request.use_sudo:
        cmd.append("--sudo")
    if request.template_file:
        cmd += ["--template-file", request.template_file]
    if request.environment:
        cmd += ["--environment", request.environment]
    if request.no_host_key_verify:
        cmd.append("--no-host-key-verify")
    return cmd


async def run_bootstrap(request, dry_run=False, runner=run_shell_cmd):
    """Run knife bootstrap against the new node.

    Returns:
        knife's exit code, unchanged.
    """
    logger.info(f"Bootstrapping {request.host} as node '{request.node_name}'...")
    rc, _, _ = await runner(knife_bootstrap_cmd(request), dry_run=dry_run, log_output=True)
    if rc != 0:
        logger.error(f"knife bootstrap exited with status {rc}")
    return rc
