"""Local command execution session."""

from __future__ import annotations

import logging
import os
import platform
import selectors
import subprocess
import time
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class LocalCommandResult:
    """Result of executing a local command."""
    command: str
    stdout: str
    stderr: str
    exit_status: int
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def output(self) -> str:
        """stdout and stderr joined, for keyword scanning."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class LocalSession:
    """
    Runs shell commands for the deployment pipeline.

    Every external tool (git, aws, npx sst, the project's build/test scripts)
    goes through ``run`` so that checks and invokers can be tested against a
    stub session.
    """

    def __init__(
        self,
        working_dir: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        Args:
            working_dir: Directory commands run in. Defaults to the current directory.
            env: Extra environment variables layered over ``os.environ``.
        """
        self.working_dir = working_dir or os.getcwd()
        self.extra_env = dict(env or {})
        self.is_windows = platform.system() == "Windows"

    def run(
        self,
        command: str,
        *,
        timeout: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
        stream_output: bool = False,
    ) -> LocalCommandResult:
        """
        Execute a command locally.

        Args:
            command: The command to execute
            timeout: Total timeout in seconds, None waits for the process to exit
            env: Extra environment variables for this command only
            stream_output: Log output lines as they arrive (long deploys)

        Returns:
            LocalCommandResult with stdout, stderr and exit status. A timeout
            is reported with ``timed_out=True`` and exit status -1 instead of
            raising.
        """
        if stream_output and not self.is_windows:
            return self._run_streaming(command, timeout, env)
        return self._run_blocking(command, timeout, env)

    def _popen_args(self, command: str) -> dict:
        if self.is_windows:
            return {"args": ["powershell", "-Command", command]}
        return {"args": command, "shell": True, "executable": "/bin/bash"}

    def _run_blocking(
        self, command: str, timeout: Optional[float], env: Optional[Dict[str, str]]
    ) -> LocalCommandResult:
        """Run command and wait for completion."""
        try:
            result = subprocess.run(
                **self._popen_args(command),
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=self.working_dir,
                env=self._get_env(env),
            )
        except subprocess.TimeoutExpired:
            return LocalCommandResult(
                command=command,
                stdout="",
                stderr=f"Command timed out after {timeout} seconds",
                exit_status=-1,
                timed_out=True,
            )
        except OSError as exc:
            return LocalCommandResult(
                command=command,
                stdout="",
                stderr=str(exc),
                exit_status=-1,
            )

        return LocalCommandResult(
            command=command,
            stdout=result.stdout.strip(),
            stderr=result.stderr.strip(),
            exit_status=result.returncode,
        )

    def _run_streaming(
        self, command: str, timeout: Optional[float], env: Optional[Dict[str, str]]
    ) -> LocalCommandResult:
        """Run command, logging output lines as they are produced."""
        try:
            process = subprocess.Popen(
                **self._popen_args(command),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                cwd=self.working_dir,
                env=self._get_env(env),
            )
        except OSError as exc:
            return LocalCommandResult(command=command, stdout="", stderr=str(exc), exit_status=-1)

        stdout_chunks = []
        stderr_chunks = []
        start_time = time.time()

        sel = selectors.DefaultSelector()
        sel.register(process.stdout, selectors.EVENT_READ)
        sel.register(process.stderr, selectors.EVENT_READ)
        try:
            while process.poll() is None:
                for key, _ in sel.select(timeout=0.1):
                    line = key.fileobj.readline()
                    if not line:
                        continue
                    if key.fileobj is process.stdout:
                        stdout_chunks.append(line)
                    else:
                        stderr_chunks.append(line)
                    logger.info("   │ %s", line.rstrip())

                if timeout is not None and time.time() - start_time > timeout:
                    process.kill()
                    process.wait()
                    return LocalCommandResult(
                        command=command,
                        stdout="".join(stdout_chunks).strip(),
                        stderr=f"Command timed out after {timeout} seconds",
                        exit_status=-1,
                        timed_out=True,
                    )

            # Drain remaining output
            for line in process.stdout:
                stdout_chunks.append(line)
                logger.info("   │ %s", line.rstrip())
            for line in process.stderr:
                stderr_chunks.append(line)
                logger.info("   │ %s", line.rstrip())
        finally:
            sel.close()

        return LocalCommandResult(
            command=command,
            stdout="".join(stdout_chunks).strip(),
            stderr="".join(stderr_chunks).strip(),
            exit_status=process.returncode or 0,
        )

    def _get_env(self, env: Optional[Dict[str, str]] = None) -> dict:
        """Get environment variables for subprocess."""
        merged = os.environ.copy()
        merged.update(self.extra_env)
        if env:
            merged.update(env)
        return merged
