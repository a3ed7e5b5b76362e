"""Shared pytest fixtures for all test modules."""

import os
import subprocess
import sys

import pytest

import stackboot.redact as redact_module
from stackboot.config import ResolvedConfig
from stackboot.errors import ProviderError
from stackboot.provisioning.retry import RetryPolicy
from stackboot.provisioning.types import BlockDeviceMapping, ImageMetadata, Instance

PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def run_cli(project_root):
    """Return a callable that invokes the stackboot CLI as a subprocess."""

    def _run(*args, env=None):
        full_env = {**os.environ, "HOME": project_root, **(env or {})}
        for var in ("OPENSTACK_ACCESS_KEY_ID", "OPENSTACK_SECRET_ACCESS_KEY", "OPENSTACK_API_ENDPOINT", "OPENSTACK_REGION"):
            if env is None or var not in env:
                full_env.pop(var, None)
        result = subprocess.run(
            [sys.executable, "-m", "stackboot.stackboot", *args],
            capture_output=True,
            text=True,
            cwd=project_root,
            env=full_env,
        )
        return result.returncode, result.stdout, result.stderr

    return _run


@pytest.fixture(autouse=True)
def _reset_redaction():
    redact_module.reset()
    yield
    redact_module.reset()


# ── Unit-test fixtures ──────────────────────────────────────────────


@pytest.fixture
def make_config():
    """Return a factory for ResolvedConfig with sensible test defaults."""

    def _make(**overrides):
        values = {
            "image": "img-1",
            "flavor": "m1.small",
            "ssh_key_name": "deploy-key",
            "identity_file": "~/.ssh/id_rsa",
        }
        values.update(overrides)
        return ResolvedConfig(**values)

    return _make


@pytest.fixture
def ebs_image():
    return ImageMetadata(
        image_id="img-1",
        root_device_type="ebs",
        root_device_name="/dev/sda1",
        block_device_mapping=(BlockDeviceMapping(device_name="/dev/sda1", volume_size=8, delete_on_termination=True),),
    )


@pytest.fixture
def ephemeral_image():
    return ImageMetadata(image_id="img-1", root_device_type="instance-store")


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self, cancel_after=None):
        self.calls = []
        self.cancel_after = cancel_after

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.cancel_after is not None and len(self.calls) >= self.cancel_after:
            raise CancelledForTest()


class CancelledForTest(BaseException):
    """Stands in for external cancellation of the waiting task."""


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def policy(fake_sleep):
    """Unbounded RetryPolicy that never really sleeps."""
    return RetryPolicy(interval=1, sleep=fake_sleep)


class FakeProvider:
    """In-memory provider client recording every call.

    ``states`` is the sequence of states returned by successive polls; the
    last one repeats. Entries may be ProviderError instances to raise.
    """

    def __init__(
        self,
        image=None,
        states=("pending", "running"),
        create_error=None,
        image_error=None,
        dns_name="server-1.example.com",
    ):
        self.image = image
        self.states = list(states)
        self.create_error = create_error
        self.image_error = image_error
        self.dns_name = dns_name
        self.calls = []
        self.requests = []

    async def get_image(self, image_id):
        self.calls.append(("get_image", image_id))
        if self.image_error:
            raise self.image_error
        return self.image or ImageMetadata(image_id=image_id, root_device_type="instance-store")

    async def create_instance(self, request):
        self.calls.append(("create_instance", request))
        self.requests.append(request)
        if self.create_error:
            raise self.create_error
        return Instance(
            id="i-0001",
            state="pending",
            flavor_id=request.flavor_id,
            image_id=request.image_id,
            availability_zone=request.availability_zone or "nova",
            groups=request.groups,
            key_name=request.key_name,
        )

    async def poll_instance(self, instance_id):
        self.calls.append(("poll_instance", instance_id))
        polls = sum(1 for name, _ in self.calls if name == "poll_instance")
        state = self.states[min(polls, len(self.states)) - 1]
        if isinstance(state, ProviderError):
            raise state
        networked = state == "running"
        return Instance(
            id=instance_id,
            state=state,
            flavor_id="m1.small",
            image_id="img-1",
            availability_zone="nova",
            groups=("default",),
            key_name="deploy-key",
            dns_name=self.dns_name if networked else None,
            ip_address="203.0.113.5" if networked else None,
            private_dns_name="server-1.internal" if networked else None,
            private_ip_address="10.0.0.5" if networked else None,
        )


@pytest.fixture
def fake_provider_factory():
    return FakeProvider
