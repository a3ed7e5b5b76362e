"""Instance provisioning: build the create request and submit it."""

import logging

from stackboot.errors import ProviderError, ProvisioningError, UsageError
from stackboot.provisioning.types import BlockDeviceMapping, InstanceCreateRequest

logger = logging.getLogger(__name__)


def parse_volume_size(value) -> int:
    """Parse an --ebs-size override into a positive integer (GB).

    Raises:
        UsageError: if the value is not a positive integer.
    """
    if isinstance(value, bool):
        raise UsageError("--ebs-size must be an integer")
    try:
        size = int(str(value).strip())
    except ValueError:
        raise UsageError("--ebs-size must be an integer") from None
    if size <= 0:
        raise UsageError(f"--ebs-size must be a positive integer, got {size}")
    return size


def build_create_request(config, image) -> InstanceCreateRequest:
    """Combine resolved config and image metadata into an InstanceCreateRequest.

    A block device mapping is attached only for volume-backed images. Its
    size is the --ebs-size override or the image default; its
    delete-on-termination flag is forced off by --ebs-no-delete-on-term.
    """
    size_override = parse_volume_size(config.ebs_size) if config.ebs_size is not None else None

    mappings = ()
    if image.is_persistent:
        image_map = image.root_mapping
        if image_map is None:
            raise ProvisioningError(f"Image {image.image_id} is volume-backed but reports no block device mapping")
        mappings = (
            BlockDeviceMapping(
                device_name=image_map.device_name,
                volume_size=size_override if size_override is not None else image_map.volume_size,
                delete_on_termination=False if config.ebs_no_delete_on_term else image_map.delete_on_termination,
            ),
        )
    elif size_override is not None:
        logger.warning(f"Image {image.image_id} is not volume-backed; ignoring --ebs-size {size_override}")

    return InstanceCreateRequest(
        image_id=config.image,
        groups=tuple(config.security_groups),
        flavor_id=config.flavor,
        key_name=config.ssh_key_name,
        availability_zone=config.availability_zone,
        subnet_id=config.subnet_id or None,
        block_device_mapping=mappings,
    )


async def provision(config, image, client):
    """Create the instance described by *config* on *image*.

    Creation is not retried: a rejected request surfaces as ProvisioningError
    carrying the provider's message.

    Returns:
        The initial Instance snapshot (usually in "pending" state).
    """
    request = build_create_request(config, image)
    logger.info(f"Creating instance (image={request.image_id}, flavor={request.flavor_id})...")
    try:
        return await client.create_instance(request)
    except ProviderError as e:
        raise ProvisioningError(f"Instance creation failed: {e}", kind=e.kind) from e
