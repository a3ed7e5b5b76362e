#!/usr/bin/env python3
"""Repeatedly probe a host for a reachable sshd.

Runs the same reachability waiter used by ``server create`` N times against
an existing host and reports how many attempts each run took. Useful for
checking how a freshly booted image behaves before bootstrapping it.

Usage:
    ./venv/bin/python scripts/probe_ssh.py HOST [--iterations 5] [--max-attempts 60]
"""

import argparse
import asyncio
import json
import logging
import time

from stackboot.errors import ConnectivityError
from stackboot.provisioning.retry import RetryPolicy
from stackboot.provisioning.ssh import CONNECT_TIMEOUT, SSH_PORT, tcp_test_ssh, wait_for_ssh

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("probe_ssh")


async def run_one(args, iteration):
    """Wait for sshd once. Returns a result dict."""
    result = {"iteration": iteration, "ok": False, "attempts": 0, "error": None, "duration_s": 0}
    policy = RetryPolicy(interval=1, max_attempts=args.max_attempts)

    t0 = time.monotonic()
    try:
        result["attempts"] = await wait_for_ssh(
            args.host, policy=policy, port=args.port, connect_timeout=args.connect_timeout, initial_delay=0
        )
        result["ok"] = True
    except ConnectivityError as e:
        result["error"] = str(e)
        log.error(f"  {e}")
    finally:
        result["duration_s"] = round(time.monotonic() - t0, 1)

    log.info(f"  #{iteration}: {'PASS' if result['ok'] else 'FAIL'} in {result['duration_s']}s")
    return result


async def main():
    parser = argparse.ArgumentParser(description="Probe a host for a reachable sshd")
    parser.add_argument("host")
    parser.add_argument("--port", type=int, default=SSH_PORT)
    parser.add_argument("--iterations", "-n", type=int, default=5)
    parser.add_argument("--max-attempts", type=int, default=60)
    parser.add_argument("--connect-timeout", type=float, default=CONNECT_TIMEOUT)
    parser.add_argument("--output", default=None, help="Write results as JSON to this file")
    args = parser.parse_args()

    outcome = await tcp_test_ssh(args.host, args.port, connect_timeout=args.connect_timeout)
    log.info(f"Initial probe of {args.host}:{args.port}: {outcome}")

    results = [await run_one(args, i) for i in range(1, args.iterations + 1)]

    passed = sum(1 for r in results if r["ok"])
    log.info(f"Total: {len(results)}  Passed: {passed}  Failed: {len(results) - passed}")

    if args.output:
        with open(args.output, "w") as f:
            json.dump(results, f, indent=2)
        log.info(f"Results saved to: {args.output}")


if __name__ == "__main__":
    asyncio.run(main())
