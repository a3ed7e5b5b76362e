"""Instance provisioning: provider client, create request, readiness waiters."""

from stackboot.provisioning.ec2 import EC2Client
from stackboot.provisioning.provisioner import build_create_request, parse_volume_size, provision
from stackboot.provisioning.retry import RetryPolicy
from stackboot.provisioning.shell import run_shell_cmd
from stackboot.provisioning.ssh import tcp_test_ssh, wait_for_ssh
from stackboot.provisioning.status import wait_for_ready
from stackboot.provisioning.types import (
    BlockDeviceMapping,
    BootstrapRequest,
    ImageMetadata,
    Instance,
    InstanceCreateRequest,
)

__all__ = [
    "EC2Client",
    "RetryPolicy",
    "BlockDeviceMapping",
    "BootstrapRequest",
    "ImageMetadata",
    "Instance",
    "InstanceCreateRequest",
    "build_create_request",
    "parse_volume_size",
    "provision",
    "run_shell_cmd",
    "tcp_test_ssh",
    "wait_for_ssh",
    "wait_for_ready",
]
