"""Shared data types for provisioning and bootstrap."""

from dataclasses import dataclass

PERSISTENT_ROOT_DEVICE_TYPE = "ebs"
READY_STATE = "running"
FAILED_STATES = frozenset({"shutting-down", "terminated"})


@dataclass(frozen=True)
class BlockDeviceMapping:
    """One block device entry, as reported by an image or sent on create."""

    device_name: str
    volume_size: int | None = None
    delete_on_termination: bool = True

    def to_request(self) -> dict:
        ebs = {"DeleteOnTermination": self.delete_on_termination}
        if self.volume_size is not None:
            ebs["VolumeSize"] = self.volume_size
        return {"DeviceName": self.device_name, "Ebs": ebs}


@dataclass(frozen=True)
class ImageMetadata:
    """Read-only image attributes fetched once per run."""

    image_id: str
    root_device_type: str
    root_device_name: str | None = None
    block_device_mapping: tuple[BlockDeviceMapping, ...] = ()

    @property
    def is_persistent(self) -> bool:
        """True for volume-backed (EBS-like) images."""
        return self.root_device_type == PERSISTENT_ROOT_DEVICE_TYPE

    @property
    def root_mapping(self) -> BlockDeviceMapping | None:
        if not self.block_device_mapping:
            return None
        if self.root_device_name:
            for mapping in self.block_device_mapping:
                if mapping.device_name == self.root_device_name:
                    return mapping
        return self.block_device_mapping[0]


@dataclass(frozen=True)
class InstanceCreateRequest:
    """Everything needed for a single RunInstances call."""

    image_id: str
    groups: tuple[str, ...]
    flavor_id: str
    key_name: str | None = None
    availability_zone: str | None = None
    subnet_id: str | None = None
    block_device_mapping: tuple[BlockDeviceMapping, ...] = ()

    def to_request(self) -> dict:
        """Render as keyword arguments for boto3's ``run_instances``."""
        kwargs = {
            "ImageId": self.image_id,
            "InstanceType": self.flavor_id,
            "MinCount": 1,
            "MaxCount": 1,
            "SecurityGroups": list(self.groups),
        }
        if self.key_name:
            kwargs["KeyName"] = self.key_name
        if self.availability_zone:
            kwargs["Placement"] = {"AvailabilityZone": self.availability_zone}
        if self.subnet_id:
            kwargs["SubnetId"] = self.subnet_id
        if self.block_device_mapping:
            kwargs["BlockDeviceMappings"] = [mapping.to_request() for mapping in self.block_device_mapping]
        return kwargs


@dataclass(frozen=True)
class Instance:
    """A snapshot of the cloud-side instance as last observed."""

    id: str
    state: str
    flavor_id: str | None = None
    image_id: str | None = None
    availability_zone: str | None = None
    groups: tuple[str, ...] = ()
    key_name: str | None = None
    dns_name: str | None = None
    ip_address: str | None = None
    private_dns_name: str | None = None
    private_ip_address: str | None = None

    @property
    def ready(self) -> bool:
        return self.state == READY_STATE

    @property
    def failed(self) -> bool:
        return self.state in FAILED_STATES


@dataclass(frozen=True)
class BootstrapRequest:
    """Parameters handed to ``knife bootstrap`` for the new node."""

    host: str
    node_name: str
    run_list: tuple[str, ...] = ()
    ssh_user: str = "root"
    identity_file: str | None = None
    ssh_password: str | None = None
    prerelease: bool = False
    distro: str | None = None
    use_sudo: bool = True
    template_file: str | None = None
    environment: str | None = None
    no_host_key_verify: bool = False
