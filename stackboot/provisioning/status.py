"""Cloud-side readiness: poll the provider until the instance is running."""

import logging

from stackboot.errors import ProviderError, ProvisioningError
from stackboot.provisioning.retry import RetryPolicy

logger = logging.getLogger(__name__)

POLL_INTERVAL = 5

# Freshly created instances can be briefly unknown to DescribeInstances.
_RETRYABLE_KINDS = {ProviderError.NOT_FOUND, ProviderError.TRANSIENT_NETWORK}


async def wait_for_ready(client, instance, policy=None):
    """Poll *instance* until the provider reports it running.

    Unbounded unless *policy* sets max_attempts; cancelling the awaiting task
    is the way to give up early.

    Returns:
        The ready Instance snapshot, including its network identity.

    Raises:
        ProvisioningError: on a non-retryable provider error, a terminal
            instance state, or when the policy's attempts run out.
    """
    policy = policy or RetryPolicy(interval=POLL_INTERVAL)
    current = instance
    attempt = 0
    while True:
        attempt += 1
        try:
            current = await client.poll_instance(instance.id)
        except ProviderError as e:
            if e.kind not in _RETRYABLE_KINDS:
                raise ProvisioningError(f"Polling instance {instance.id} failed: {e}", kind=e.kind) from e
            logger.warning(f"Warning: polling instance {instance.id} failed ({e}), retrying.")
        else:
            if current.ready:
                return current
            if current.failed:
                raise ProvisioningError(f"Instance {instance.id} entered state '{current.state}' before becoming ready")
            logger.debug(f"Instance {instance.id} is '{current.state}' (poll {attempt})")

        if policy.exhausted(attempt):
            raise ProvisioningError(f"Instance {instance.id} not running after {attempt} polls (last state: '{current.state}')")
        await policy.pause(attempt)
