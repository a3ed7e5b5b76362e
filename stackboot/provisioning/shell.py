"""Shell command execution helper."""

import asyncio
import logging
import shlex

from stackboot.redact import redact_secrets

logger = logging.getLogger(__name__)


async def run_shell_cmd(command, dry_run=False, timeout=None, log_output=False):
    """Run a command and return (returncode, stdout, stderr).

    Args:
        command: list of command arguments
        dry_run: if True, log the command instead of executing
        timeout: maximum seconds to wait for the command (None: no limit)
        log_output: if True, log stdout/stderr lines as they arrive

    Returns:
        (returncode, stdout, stderr) tuple
    """
    printable = redact_secrets(shlex.join(command))
    if dry_run:
        logger.info(f"[dry-run] {printable}")
        return 0, "", ""

    logger.debug(f"Running: {printable}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        logger.error(f"Error: '{command[0]}' not found. Is it installed and on PATH?")
        return 127, "", f"'{command[0]}' not found"

    stdout_lines, stderr_lines = [], []

    async def _read_stream(pipe, lines, level):
        async for raw_line in pipe:
            line = raw_line.decode(errors="replace").rstrip("\n")
            if log_output:
                logger.log(level, line)
            lines.append(line)

    try:
        await asyncio.wait_for(
            asyncio.gather(
                _read_stream(proc.stdout, stdout_lines, logging.INFO),
                _read_stream(proc.stderr, stderr_lines, logging.ERROR),
                proc.wait(),
            ),
            timeout=timeout,
        )
    except TimeoutError:
        logger.error(f"Command timed out after {timeout}s: {printable}")
        proc.kill()
        await proc.wait()
        return 1, "\n".join(stdout_lines), "\n".join(stderr_lines)

    return proc.returncode, "\n".join(stdout_lines), "\n".join(stderr_lines)
