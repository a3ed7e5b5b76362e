"""SSH reachability: TCP connect to port 22 and wait for the sshd banner."""

import asyncio
import contextlib
import logging

from stackboot.errors import ConnectivityError
from stackboot.provisioning.retry import RetryPolicy

logger = logging.getLogger(__name__)

SSH_PORT = 22
CONNECT_TIMEOUT = 5
REFUSED_DELAY = 2
RETRY_INTERVAL = 1
INITIAL_SLEEP_DELAY = 10

# Probe outcomes
PROBE_OK = "ok"
PROBE_TIMEOUT = "timeout"
PROBE_REFUSED = "refused"
PROBE_NO_BANNER = "no-banner"


async def tcp_test_ssh(host, port=SSH_PORT, connect_timeout=CONNECT_TIMEOUT, open_connection=asyncio.open_connection):
    """Make one SSH reachability attempt against host:port.

    The connection and the banner read are each bounded by
    *connect_timeout*. The stream is closed on every exit path.

    Returns:
        One of PROBE_OK, PROBE_TIMEOUT, PROBE_REFUSED, PROBE_NO_BANNER.

    Raises:
        ConnectivityError: for any socket error other than timeout/refusal,
            or a peer that sends no line break within the stream limit.
    """
    writer = None
    try:
        # an outer cancel always propagates, even when connect finishes in the same step
        async with asyncio.timeout(connect_timeout):
            reader, writer = await open_connection(host, port)
        async with asyncio.timeout(connect_timeout):
            banner = await reader.readline()
        if not banner:
            return PROBE_NO_BANNER
        logger.debug(f"sshd accepting connections on {host}, banner is {banner.decode(errors='replace').strip()}")
        return PROBE_OK
    except TimeoutError:
        return PROBE_TIMEOUT
    except ConnectionRefusedError:
        return PROBE_REFUSED
    except OSError as e:
        raise ConnectivityError(f"SSH probe to {host}:{port} failed: {e}") from e
    except ValueError as e:
        # StreamReader.readline: no newline within the buffer limit
        raise ConnectivityError(f"SSH probe to {host}:{port} got no banner line: {e}") from e
    finally:
        if writer is not None:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()


async def wait_for_ssh(
    host,
    policy=None,
    port=SSH_PORT,
    connect_timeout=CONNECT_TIMEOUT,
    refused_delay=REFUSED_DELAY,
    initial_delay=INITIAL_SLEEP_DELAY,
    open_connection=asyncio.open_connection,
):
    """Probe host:port until sshd answers with a banner.

    Refused connections are the normal early-boot case and are retried after
    *refused_delay*; timeouts and silent peers after the policy interval.
    Once the banner is seen, waits *initial_delay* (once) so sshd can finish
    starting before anything logs in.

    Unbounded unless *policy* sets max_attempts; cancel the awaiting task to
    stop early.

    Returns:
        Number of attempts made, including the successful one.
    """
    policy = policy or RetryPolicy(interval=RETRY_INTERVAL)
    logger.info(f"Waiting for sshd on {host}:{port}...")
    attempt = 0
    while True:
        attempt += 1
        outcome = await tcp_test_ssh(host, port, connect_timeout=connect_timeout, open_connection=open_connection)
        if outcome == PROBE_OK:
            logger.info(f"sshd is up on {host} (attempt {attempt}), waiting {initial_delay}s for it to settle.")
            await policy.wait(initial_delay)
            return attempt

        logger.debug(f"SSH probe {attempt} to {host}:{port}: {outcome}")
        if policy.exhausted(attempt):
            raise ConnectivityError(f"sshd on {host}:{port} not reachable after {attempt} attempts (last: {outcome})")
        if outcome == PROBE_REFUSED:
            await policy.wait(refused_delay)
        else:
            await policy.pause(attempt)
