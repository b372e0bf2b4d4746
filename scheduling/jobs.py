"""
Command execution for scheduled events.

Runs shell commands either in the foreground (blocking until the
command exits) or in the background (detached from the scheduler).
The runner knows nothing about schedules - it simply runs whatever
command string it is handed.
"""

import logging
import os
import subprocess
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class ExecutionError(Exception):
    """Raised when a command cannot be spawned or does not finish in time."""
    pass


class RunMode(Enum):
    """How a command is executed."""
    FOREGROUND = "foreground"
    BACKGROUND = "background"


@dataclass(frozen=True)
class ExitStatus:
    """
    Outcome of a command execution.

    Background runs are not waited for, so their returncode is None.
    """
    command: str
    mode: RunMode
    returncode: Optional[int] = None
    pid: Optional[int] = None

    @property
    def succeeded(self) -> Optional[bool]:
        if self.returncode is None:
            return None
        return self.returncode == 0


class ProcessRunner:
    """
    Executes shell commands through subprocess.

    Non-zero exit codes are reported in the ExitStatus, never raised.
    """

    def __init__(
        self,
        timeout: Optional[int] = None,
        env: Optional[Dict[str, str]] = None
    ):
        """
        Initialize process runner.

        Args:
            timeout: Timeout in seconds for foreground commands (None = wait forever)
            env: Extra environment variables for spawned commands
        """
        self.timeout = timeout
        self.env = env

    def _build_env(self) -> Optional[Dict[str, str]]:
        if not self.env:
            return None
        merged = os.environ.copy()
        merged.update(self.env)
        return merged

    def execute(
        self,
        command: str,
        working_dir: Optional[str] = None,
        mode: RunMode = RunMode.FOREGROUND
    ) -> ExitStatus:
        """
        Execute a shell command.

        Args:
            command: Shell command to execute
            working_dir: Working directory for command execution
            mode: FOREGROUND waits for the command, BACKGROUND detaches it

        Returns:
            ExitStatus of the run

        Raises:
            ExecutionError: If the command cannot be started or times out
        """
        run_id = str(uuid.uuid4())[:8]
        log_prefix = f"[{run_id}] "
        logger.info(f"{log_prefix}Executing command ({mode.value}): {command}")

        try:
            if mode is RunMode.BACKGROUND:
                process = subprocess.Popen(
                    command,
                    shell=True,
                    cwd=working_dir,
                    env=self._build_env(),
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    start_new_session=True
                )
                logger.info(f"{log_prefix}Started in background (pid: {process.pid})")
                return ExitStatus(command=command, mode=mode, pid=process.pid)

            completed = subprocess.run(
                command,
                shell=True,
                cwd=working_dir,
                env=self._build_env(),
                timeout=self.timeout
            )

        except subprocess.TimeoutExpired as e:
            logger.error(f"{log_prefix}Command timed out after {self.timeout}s: {command}")
            raise ExecutionError(f"Command timed out after {self.timeout}s") from e

        except OSError as e:
            logger.error(f"{log_prefix}Command execution failed: {e}")
            raise ExecutionError(f"Command execution failed: {e}") from e

        if completed.returncode != 0:
            logger.warning(f"{log_prefix}Command exited with code {completed.returncode}")
        else:
            logger.info(f"{log_prefix}Command completed successfully")

        return ExitStatus(
            command=command,
            mode=mode,
            returncode=completed.returncode
        )
