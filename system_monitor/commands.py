from __future__ import annotations

import logging
import subprocess

from system_monitor.logging_utils import TRACE_LEVEL

logger = logging.getLogger(__name__)


def run_command(
    command: list[str],
    timeout: float | None = None,
    stderr: int | None = None,
) -> str | None:
    """Run an external command and return its stdout, or None on failure.

    A missing executable, a non-zero exit with no output and a timeout all
    yield None. ``subprocess.run`` kills the child when the timeout expires.
    """
    try:
        if stderr is None:
            result = subprocess.run(
                command,
                check=False,
                text=True,
                capture_output=True,
                timeout=timeout,
            )
        else:
            result = subprocess.run(
                command,
                check=False,
                text=True,
                stdout=subprocess.PIPE,
                stderr=stderr,
                timeout=timeout,
            )
    except FileNotFoundError:
        logger.debug("Command not found: %s", command[0])
        return None
    except subprocess.TimeoutExpired:
        logger.debug("Command timed out after %ss: %s", timeout, command[0])
        return None
    except OSError as exc:
        logger.debug("Command failed to start (%s): %s", command[0], exc)
        return None
    if result.returncode != 0:
        logger.debug(
            "Command failed (%s): %s", result.returncode, " ".join(command)
        )
        if result.stderr:
            logger.log(TRACE_LEVEL, "stderr: %s", result.stderr.strip())
        if not result.stdout:
            return None
    if result.stdout:
        logger.log(TRACE_LEVEL, "stdout: %s", result.stdout.strip())
    return result.stdout
