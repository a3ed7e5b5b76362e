"""EC2-compatible provider: describe images, run and poll instances.

Talks to the EC2 API (OpenStack's EC2 endpoint, or AWS itself) through a
boto3 client. boto3 is blocking, so each call runs in a worker thread and
the pipeline stays a single awaited coroutine.
"""

import asyncio
import logging
from dataclasses import replace

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    NoCredentialsError,
    ParamValidationError,
)

from stackboot.errors import ProviderError, UsageError
from stackboot.provisioning.types import BlockDeviceMapping, ImageMetadata, Instance

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 60
# Signing region used when only an endpoint is configured (OpenStack's default region name)
DEFAULT_REGION = "RegionOne"

_QUOTA_AUTH_CODES = {
    "AuthFailure",
    "UnauthorizedOperation",
    "SignatureDoesNotMatch",
    "InvalidClientTokenId",
    "OptInRequired",
    "Blocked",
    "InstanceLimitExceeded",
    "InsufficientInstanceCapacity",
    "VolumeLimitExceeded",
}
_TRANSIENT_CODES = {
    "InternalError",
    "Unavailable",
    "ServiceUnavailable",
    "RequestLimitExceeded",
}


# ── Errors ────────────────────────────────────────────────────────


def classify_error(code, status_code=200):
    """Map an EC2 error code (and HTTP status) to a ProviderError kind."""
    code = code or ""
    if code.endswith("NotFound"):
        return ProviderError.NOT_FOUND
    if code in _TRANSIENT_CODES or status_code >= 500:
        return ProviderError.TRANSIENT_NETWORK
    if code in _QUOTA_AUTH_CODES or code.endswith("LimitExceeded") or status_code in (401, 403):
        return ProviderError.QUOTA_AUTH
    return ProviderError.INVALID_PARAMETER


def provider_error(action, exc):
    """Translate a boto3/botocore exception into a ProviderError."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = error.get("Code")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 400
        return ProviderError(classify_error(code, status), error.get("Message") or f"{action} failed", code=code)
    if isinstance(exc, BotoConnectionError):
        return ProviderError(ProviderError.TRANSIENT_NETWORK, f"{action} failed: {exc}")
    if isinstance(exc, NoCredentialsError):
        return ProviderError(ProviderError.QUOTA_AUTH, f"{action} failed: {exc}")
    if isinstance(exc, ParamValidationError):
        return ProviderError(ProviderError.INVALID_PARAMETER, f"{action} failed: {exc}")
    return ProviderError(ProviderError.TRANSIENT_NETWORK, f"{action} failed: {exc}")


# ── Response parsing ──────────────────────────────────────────────


def parse_image(response, image_id):
    """Extract ImageMetadata from a describe_images response."""
    images = response.get("Images") or []
    if not images:
        raise ProviderError(ProviderError.NOT_FOUND, f"The image id '[{image_id}]' does not exist", code="InvalidAMIID.NotFound")
    image = images[0]

    mappings = []
    for entry in image.get("BlockDeviceMappings", []):
        ebs = entry.get("Ebs")
        if ebs is None:
            # Ephemeral (virtual name) entries carry no volume settings
            continue
        mappings.append(
            BlockDeviceMapping(
                device_name=entry.get("DeviceName"),
                volume_size=ebs.get("VolumeSize"),
                delete_on_termination=ebs.get("DeleteOnTermination", True),
            )
        )

    return ImageMetadata(
        image_id=image.get("ImageId", image_id),
        root_device_type=image.get("RootDeviceType", "instance-store"),
        root_device_name=image.get("RootDeviceName"),
        block_device_mapping=tuple(mappings),
    )


def _group_names(groups):
    names = (g.get("GroupName") or g.get("GroupId") for g in groups or [])
    return tuple(name for name in names if name)


def parse_instance(data, reservation_groups=()):
    """Extract an Instance from one entry of an Instances list."""
    return Instance(
        id=data.get("InstanceId"),
        state=data.get("State", {}).get("Name", "pending"),
        flavor_id=data.get("InstanceType"),
        image_id=data.get("ImageId"),
        availability_zone=data.get("Placement", {}).get("AvailabilityZone"),
        groups=_group_names(data.get("SecurityGroups")) or _group_names(reservation_groups),
        key_name=data.get("KeyName"),
        dns_name=data.get("PublicDnsName") or None,
        ip_address=data.get("PublicIpAddress") or None,
        private_dns_name=data.get("PrivateDnsName") or None,
        private_ip_address=data.get("PrivateIpAddress") or None,
    )


# ── Client ────────────────────────────────────────────────────────


class EC2Client:
    """Provider client for an EC2-compatible compute API.

    Exposes the three calls the provisioning pipeline needs: get_image,
    create_instance and poll_instance. In dry-run mode no request is sent;
    each call is logged and answered with placeholder data.

    ``client`` takes a ready-made boto3 EC2 client (tests pass a stubbed one).
    """

    def __init__(self, access_key_id, secret_access_key, endpoint=None, region=None, dry_run=False, client=None):
        self.dry_run = dry_run
        self._dry_run_instance = None
        self._client = client
        if dry_run or client is not None:
            self.endpoint = endpoint or (client.meta.endpoint_url if client is not None else None)
            self.region = region
            return

        if not endpoint and not region:
            raise UsageError("An API endpoint or region is required (--openstack-api-endpoint or --region).")
        if not access_key_id or not secret_access_key:
            raise UsageError(
                "Access key id and secret access key are required "
                "(-A/-K or OPENSTACK_ACCESS_KEY_ID/OPENSTACK_SECRET_ACCESS_KEY)."
            )
        self.region = region or DEFAULT_REGION
        session = boto3.Session(
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=self.region,
        )
        self._client = session.client(
            "ec2",
            endpoint_url=endpoint,
            config=Config(
                connect_timeout=REQUEST_TIMEOUT,
                read_timeout=REQUEST_TIMEOUT,
                # RunInstances is sent exactly once; polling does its own retries
                retries={"total_max_attempts": 1},
            ),
        )
        self.endpoint = self._client.meta.endpoint_url

    @classmethod
    def from_config(cls, config, dry_run=False, client=None):
        return cls(
            access_key_id=config.access_key_id,
            secret_access_key=config.secret_access_key,
            endpoint=config.api_endpoint,
            region=config.region,
            dry_run=dry_run,
            client=client,
        )

    async def _call(self, action, method, **kwargs):
        """Run one boto3 call in a worker thread, translating its errors."""
        logger.debug(f"{action} {self.endpoint}")
        try:
            return await asyncio.to_thread(getattr(self._client, method), **kwargs)
        except (ClientError, BotoCoreError) as e:
            raise provider_error(action, e) from e

    async def get_image(self, image_id):
        """Fetch root device type and block device mapping for *image_id*."""
        if self.dry_run:
            logger.info(f"[dry-run] DescribeImages ImageIds={[image_id]}")
            return ImageMetadata(image_id=image_id, root_device_type="instance-store")

        response = await self._call("DescribeImages", "describe_images", ImageIds=[image_id])
        return parse_image(response, image_id)

    async def create_instance(self, request):
        """Submit RunInstances for *request* and return the initial snapshot."""
        kwargs = request.to_request()
        if self.dry_run:
            logger.info("[dry-run] RunInstances " + " ".join(f"{k}={v}" for k, v in kwargs.items()))
            self._dry_run_instance = Instance(
                id="dry-run-id",
                state="pending",
                flavor_id=request.flavor_id,
                image_id=request.image_id,
                availability_zone=request.availability_zone,
                groups=request.groups,
                key_name=request.key_name,
            )
            return self._dry_run_instance

        response = await self._call("RunInstances", "run_instances", **kwargs)
        instances = response.get("Instances") or []
        if not instances:
            raise ProviderError(ProviderError.INVALID_PARAMETER, "No instance returned from RunInstances")
        return parse_instance(instances[0], response.get("Groups"))

    async def poll_instance(self, instance_id):
        """Return the current observed state of *instance_id*."""
        if self.dry_run:
            logger.info(f"[dry-run] DescribeInstances InstanceIds={[instance_id]}")
            base = self._dry_run_instance or Instance(id=instance_id, state="pending")
            return replace(
                base,
                state="running",
                dns_name="dry-run-host",
                ip_address="192.0.2.10",
                private_dns_name="dry-run-private-host",
                private_ip_address="10.0.0.10",
            )

        response = await self._call("DescribeInstances", "describe_instances", InstanceIds=[instance_id])
        for reservation in response.get("Reservations") or []:
            for data in reservation.get("Instances") or []:
                return parse_instance(data, reservation.get("Groups"))
        raise ProviderError(
            ProviderError.NOT_FOUND,
            f"The instance ID '{instance_id}' does not exist",
            code="InvalidInstanceID.NotFound",
        )
