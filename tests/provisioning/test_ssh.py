"""Unit tests for the SSH reachability probe and waiter."""

import asyncio
import socket

import pytest

from conftest import CancelledForTest, FakeSleep
from stackboot.errors import ConnectivityError
from stackboot.provisioning.retry import RetryPolicy
from stackboot.provisioning.ssh import (
    PROBE_NO_BANNER,
    PROBE_OK,
    PROBE_REFUSED,
    PROBE_TIMEOUT,
    REFUSED_DELAY,
    tcp_test_ssh,
    wait_for_ssh,
)

BANNER = b"SSH-2.0-OpenSSH_9.6p1 Ubuntu-3ubuntu13\r\n"


class FakeSocket:
    def __init__(self):
        self.closed = False


class FakeWriter:
    def __init__(self, sock):
        self.sock = sock

    def close(self):
        self.sock.closed = True

    async def wait_closed(self):
        pass


class FakeReader:
    def __init__(self, line=b"", hang=False):
        self.line = line
        self.hang = hang

    async def readline(self):
        if self.hang:
            await asyncio.Event().wait()
        return self.line


class ScriptedConnector:
    """Stands in for asyncio.open_connection, playing back a script.

    Steps: "refuse", "timeout", "banner", "eof", "hang", or an exception
    instance to raise. One FakeSocket is opened per attempt; failed connects
    close their own socket, like the OS does.
    """

    def __init__(self, script, default="refuse"):
        self.script = list(script)
        self.default = default
        self.sockets = []

    @property
    def attempts(self):
        return len(self.sockets)

    async def __call__(self, host, port):
        sock = FakeSocket()
        self.sockets.append(sock)
        step = self.script.pop(0) if self.script else self.default
        if step == "refuse":
            sock.closed = True
            raise ConnectionRefusedError(111, "Connection refused")
        if step == "timeout":
            sock.closed = True
            raise TimeoutError(110, "Connection timed out")
        if isinstance(step, BaseException):
            sock.closed = True
            raise step
        writer = FakeWriter(sock)
        if step == "banner":
            return FakeReader(BANNER), writer
        if step == "eof":
            return FakeReader(b""), writer
        if step == "hang":
            return FakeReader(hang=True), writer
        raise AssertionError(f"unknown step {step!r}")


# ── tcp_test_ssh ──────────────────────────────────────────────────


async def test_tcp_test_ssh_banner_closes_socket():
    connect = ScriptedConnector(["banner"])
    assert await tcp_test_ssh("host", open_connection=connect) == PROBE_OK
    assert connect.sockets[0].closed


async def test_tcp_test_ssh_refused():
    connect = ScriptedConnector(["refuse"])
    assert await tcp_test_ssh("host", open_connection=connect) == PROBE_REFUSED


async def test_tcp_test_ssh_connect_timeout():
    connect = ScriptedConnector(["timeout"])
    assert await tcp_test_ssh("host", open_connection=connect) == PROBE_TIMEOUT


async def test_tcp_test_ssh_silent_peer_times_out_and_closes():
    connect = ScriptedConnector(["hang"])
    assert await tcp_test_ssh("host", connect_timeout=0.01, open_connection=connect) == PROBE_TIMEOUT
    assert connect.sockets[0].closed


async def test_tcp_test_ssh_eof_before_banner():
    connect = ScriptedConnector(["eof"])
    assert await tcp_test_ssh("host", open_connection=connect) == PROBE_NO_BANNER
    assert connect.sockets[0].closed


async def test_tcp_test_ssh_other_socket_error_is_fatal():
    connect = ScriptedConnector([OSError(113, "No route to host")])
    with pytest.raises(ConnectivityError, match="No route to host"):
        await tcp_test_ssh("host", open_connection=connect)
    assert connect.sockets[0].closed


async def test_tcp_test_ssh_dns_failure_is_fatal():
    connect = ScriptedConnector([socket.gaierror(-2, "Name or service not known")])
    with pytest.raises(ConnectivityError):
        await tcp_test_ssh("nowhere.invalid", open_connection=connect)


async def test_tcp_test_ssh_line_over_stream_limit_is_fatal():
    reader = asyncio.StreamReader(limit=2**16)
    reader.feed_data(b"x" * (2**16 + 10))
    sock = FakeSocket()

    async def connect(host, port):
        return reader, FakeWriter(sock)

    with pytest.raises(ConnectivityError, match="no banner line"):
        await tcp_test_ssh("host", open_connection=connect)
    assert sock.closed


# ── wait_for_ssh ──────────────────────────────────────────────────


@pytest.mark.parametrize("refusals", [0, 1, 5])
async def test_wait_for_ssh_succeeds_after_n_refusals(refusals):
    connect = ScriptedConnector(["refuse"] * refusals + ["banner"])
    sleep = FakeSleep()
    attempts = await wait_for_ssh(
        "host", policy=RetryPolicy(interval=1, sleep=sleep), initial_delay=10, open_connection=connect
    )
    assert attempts == refusals + 1
    assert connect.attempts == refusals + 1
    assert all(s.closed for s in connect.sockets)
    # one refused pause per refusal, then the settle delay exactly once
    assert sleep.calls == [REFUSED_DELAY] * refusals + [10]


async def test_wait_for_ssh_timeouts_use_policy_interval():
    connect = ScriptedConnector(["timeout", "timeout", "banner"])
    sleep = FakeSleep()
    await wait_for_ssh("host", policy=RetryPolicy(interval=3, sleep=sleep), initial_delay=10, open_connection=connect)
    assert sleep.calls == [3, 3, 10]


async def test_wait_for_ssh_backoff_applies_to_timeouts():
    connect = ScriptedConnector(["timeout", "timeout", "timeout", "banner"])
    sleep = FakeSleep()
    policy = RetryPolicy(interval=1, backoff=2, max_interval=3, sleep=sleep)
    await wait_for_ssh("host", policy=policy, initial_delay=0, open_connection=connect)
    assert sleep.calls == [1, 2, 3, 0]


async def test_wait_for_ssh_initial_delay_applied_once():
    connect = ScriptedConnector(["refuse", "eof", "timeout", "banner"])
    sleep = FakeSleep()
    await wait_for_ssh("host", policy=RetryPolicy(interval=1, sleep=sleep), initial_delay=10, open_connection=connect)
    assert sleep.calls.count(10) == 1
    assert sleep.calls[-1] == 10


async def test_wait_for_ssh_retries_until_cancelled_without_leaks():
    connect = ScriptedConnector([], default="refuse")
    sleep = FakeSleep(cancel_after=50)
    with pytest.raises(CancelledForTest):
        await wait_for_ssh("host", policy=RetryPolicy(interval=1, sleep=sleep), open_connection=connect)
    assert connect.attempts == 50
    assert all(s.closed for s in connect.sockets)


class YieldingConnector(ScriptedConnector):
    """Suspends inside every connect, so a cancel can land mid-attempt."""

    async def __call__(self, host, port):
        await asyncio.sleep(0)
        return await super().__call__(host, port)


@pytest.mark.parametrize("connector_cls", [ScriptedConnector, YieldingConnector])
async def test_wait_for_ssh_task_cancellation(connector_cls):
    connect = connector_cls([], default="refuse")
    policy = RetryPolicy(interval=1, sleep=lambda _: asyncio.sleep(0))
    task = asyncio.create_task(wait_for_ssh("host", policy=policy, open_connection=connect))
    while connect.attempts < 20:
        await asyncio.sleep(0)
    task.cancel()
    done, _ = await asyncio.wait({task}, timeout=2)
    assert task in done
    assert task.cancelled()
    assert all(s.closed for s in connect.sockets)


async def test_wait_for_ssh_max_attempts():
    connect = ScriptedConnector([], default="timeout")
    policy = RetryPolicy(interval=1, max_attempts=3, sleep=FakeSleep())
    with pytest.raises(ConnectivityError, match="after 3 attempts"):
        await wait_for_ssh("host", policy=policy, open_connection=connect)
    assert connect.attempts == 3


async def test_wait_for_ssh_fatal_error_stops_retrying():
    connect = ScriptedConnector(["refuse", OSError(101, "Network is unreachable")])
    with pytest.raises(ConnectivityError):
        await wait_for_ssh("host", policy=RetryPolicy(interval=1, sleep=FakeSleep()), open_connection=connect)
    assert connect.attempts == 2


# ── Real sockets ──────────────────────────────────────────────────


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


async def _banner_server(port):
    async def _handle(reader, writer):
        writer.write(BANNER)
        await writer.drain()
        writer.close()

    return await asyncio.start_server(_handle, "127.0.0.1", port)


async def test_wait_for_ssh_real_listener_after_refusals():
    """Nothing listens for the first two attempts, then sshd comes up."""
    port = _free_port()
    writers = []
    servers = []

    async def counting_open_connection(host, p):
        reader, writer = await asyncio.open_connection(host, p)
        writers.append(writer)
        return reader, writer

    async def sleep(seconds):
        if seconds == REFUSED_DELAY and len(sleep.refusals) == 1:
            servers.append(await _banner_server(port))
        sleep.refusals.append(seconds)

    sleep.refusals = []

    try:
        attempts = await wait_for_ssh(
            "127.0.0.1",
            port=port,
            policy=RetryPolicy(interval=0, sleep=sleep),
            initial_delay=0,
            open_connection=counting_open_connection,
        )
    finally:
        for server in servers:
            server.close()
            await server.wait_closed()

    assert attempts == 3
    assert len(writers) == 1
    assert writers[0].is_closing()
