"""
Shell command adapter — the command runner behind every build stage.

Runs one shell command line in a working directory with extra
environment variables layered over the process environment, and
captures its output. Zero exit status is success; anything else is
a failed receipt.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from pathlib import Path

from sourcepkg.adapters.base import Adapter, ExecutionContext
from sourcepkg.core.models.action import Receipt

logger = logging.getLogger(__name__)

# Lines of stdout/stderr kept on a receipt
_TAIL_LINES = 40


def _tail(text: str, lines: int = _TAIL_LINES) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


class ShellCommandAdapter(Adapter):
    """Execute shell commands and capture output.

    Action params:
        command (str): The full command line, run through ``sh``.
        cwd (str): Working directory (default: current directory).
        timeout (int | None): Timeout in seconds (default: no limit).
    """

    @property
    def name(self) -> str:
        return "shell"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        command = context.action.command
        if not command:
            return False, "Missing required param: 'command'"

        cwd = context.working_dir
        if not Path(cwd).is_dir():
            return False, f"Working directory does not exist: {cwd}"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        command = context.action.command
        timeout = context.action.params.get("timeout")
        cwd = context.working_dir

        env = dict(os.environ)
        env.update({k: str(v) for k, v in context.environment.items()})

        logger.info("Running: %s (cwd=%s)", command, cwd)
        start = time.monotonic()

        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Command timed out after {timeout}s",
                details={"command": command, "cwd": cwd, "timeout": timeout},
            )
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Command execution error: {e}",
                details={"command": command, "cwd": cwd},
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        output = _tail(result.stdout)
        stderr = _tail(result.stderr)
        logger.debug("Exit %d after %dms: %s", result.returncode, elapsed_ms, command)

        if result.returncode == 0:
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=output,
                duration_ms=elapsed_ms,
                details={
                    "command": command,
                    "cwd": cwd,
                    "return_code": result.returncode,
                    "stderr": stderr,
                },
            )

        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=stderr or f"Command exited with code {result.returncode}",
            duration_ms=elapsed_ms,
            details={
                "command": command,
                "cwd": cwd,
                "return_code": result.returncode,
                "stdout": output,
            },
        )
