"""Server create pipeline: provision, wait for readiness, bootstrap.

Each stage is awaited before the next starts. Nothing is cleaned up on
failure; a created instance is left for the operator to remove.
"""

import logging
from dataclasses import dataclass

from stackboot.bootstrap import build_bootstrap_request, run_bootstrap
from stackboot.errors import ProviderError, ProvisioningError
from stackboot.provisioning.provisioner import parse_volume_size, provision
from stackboot.provisioning.ssh import wait_for_ssh
from stackboot.provisioning.status import wait_for_ready
from stackboot.provisioning.types import BootstrapRequest, Instance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerCreateResult:
    instance: Instance
    bootstrap_request: BootstrapRequest
    bootstrap_rc: int


def _log_instance(instance):
    logger.info(f"Instance ID:        {instance.id}")
    logger.info(f"Flavor:             {instance.flavor_id}")
    logger.info(f"Image:              {instance.image_id}")
    logger.info(f"Availability Zone:  {instance.availability_zone}")
    logger.info(f"Security Groups:    {', '.join(instance.groups)}")
    logger.info(f"SSH Key:            {instance.key_name}")


def _log_network(instance):
    logger.info(f"Public DNS Name:    {instance.dns_name}")
    logger.info(f"Public IP Address:  {instance.ip_address}")
    logger.info(f"Private DNS Name:   {instance.private_dns_name}")
    logger.info(f"Private IP Address: {instance.private_ip_address}")


async def create_server(
    config,
    client,
    *,
    poll_policy=None,
    ssh_policy=None,
    ssh_options=None,
    bootstrap_runner=run_bootstrap,
    dry_run=False,
):
    """Create one server from *config* and bootstrap it.

    Args:
        config: ResolvedConfig for this run.
        client: provider client exposing get_image/create_instance/poll_instance.
        poll_policy: RetryPolicy for the cloud readiness phase.
        ssh_policy: RetryPolicy for the SSH reachability phase.
        ssh_options: extra keyword arguments for wait_for_ssh
            (port, connect_timeout, refused_delay, initial_delay, open_connection).
        bootstrap_runner: coroutine function taking (request, dry_run=...)
            and returning an exit code.

    Returns:
        ServerCreateResult with the ready instance and the bootstrap exit code.
    """
    # Fail on bad input before talking to the provider at all
    if config.ebs_size is not None:
        parse_volume_size(config.ebs_size)

    try:
        image = await client.get_image(config.image)
    except ProviderError as e:
        raise ProvisioningError(f"Could not look up image '{config.image}': {e}", kind=e.kind) from e

    instance = await provision(config, image, client)
    _log_instance(instance)

    logger.info("Waiting for server to become ready...")
    instance = await wait_for_ready(client, instance, policy=poll_policy)
    _log_network(instance)

    if not instance.dns_name:
        raise ProvisioningError(
            f"Instance {instance.id} is running but has no public DNS name "
            f"(public IP: {instance.ip_address or 'none'}). The instance was left running; "
            f"terminate it manually if it is not needed."
        )

    if dry_run:
        logger.info(f"[dry-run] Wait for sshd on {instance.dns_name}:22")
    else:
        await wait_for_ssh(instance.dns_name, policy=ssh_policy, **(ssh_options or {}))

    request = build_bootstrap_request(instance, config)
    rc = await bootstrap_runner(request, dry_run=dry_run)

    logger.info("")
    _log_instance(instance)
    _log_network(instance)
    logger.info(f"Run List:           {', '.join(request.run_list)}")

    return ServerCreateResult(instance=instance, bootstrap_request=request, bootstrap_rc=rc)
