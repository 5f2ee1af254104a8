"""
Command execution for containerized database tools.

Every store operation is a blocking invocation of a third-party CLI
running inside the store's container (``docker exec``) or a file
transfer across the container boundary (``docker cp``).

CommandRunner wraps ``subprocess`` and knows nothing about stores.
ContainerClient binds a runner to one container and translates tool
failures into the StoreError hierarchy.
"""

from __future__ import annotations

import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from typing import IO, TYPE_CHECKING, Any

from audit_ops.exceptions import StoreError, StoreUnavailableError
from audit_ops.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from pathlib import Path

logger = get_logger(__name__)

REDACTED = "***"

_UNAVAILABLE_MARKERS = (
    "no such container",
    "is not running",
    "cannot connect to the docker daemon",
    "connection refused",
    "could not connect",
    "econnrefused",
    "mongoserverselectionerror",
    "unable to connect",
    "serviceunavailable",
    "connection to server",
)

_AUTH_MARKERS = (
    "password authentication failed",
    "authentication failed",
    "unauthorized",
)


@dataclass
class CommandResult:
    """Outcome of a finished command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def lines(self) -> list[str]:
        """Non-empty stdout lines."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]


@dataclass
class CommandRunner:
    """
    Thin wrapper around ``subprocess`` with secret redaction for logs.

    Attributes:
        timeout_seconds: Per-command timeout; None waits for the tool.
        secrets: Values replaced by ``***`` whenever argv is logged.
    """

    timeout_seconds: float | None = None
    secrets: list[str] = field(default_factory=list)

    def redact(self, argv: Sequence[str]) -> list[str]:
        """Return argv with secret values masked."""
        masked: list[str] = []
        for arg in argv:
            for secret in self.secrets:
                if secret and secret in arg:
                    arg = arg.replace(secret, REDACTED)
            masked.append(arg)
        return masked

    def run(
        self,
        argv: Sequence[str],
        *,
        input_data: bytes | None = None,
        check: bool = True,
    ) -> CommandResult:
        """
        Run a command to completion and capture its output.

        Raises:
            subprocess.CalledProcessError: If check is set and the command fails.
            subprocess.TimeoutExpired: If the configured timeout elapses.
            FileNotFoundError: If the executable is missing.
        """
        argv = list(argv)
        start_time = time.perf_counter()
        logger.debug("command_started", argv=self.redact(argv))

        completed = subprocess.run(
            argv,
            input=input_data,
            capture_output=True,
            timeout=self.timeout_seconds,
        )

        result = CommandResult(
            argv=argv,
            returncode=completed.returncode,
            stdout=completed.stdout.decode("utf-8", errors="replace"),
            stderr=completed.stderr.decode("utf-8", errors="replace"),
            duration_seconds=time.perf_counter() - start_time,
        )
        self._finish(result, check)
        return result

    def stream_out(self, argv: Sequence[str], sink: IO[bytes], *, check: bool = True) -> CommandResult:
        """Run a command, copying its stdout into ``sink`` as it is produced."""
        argv = list(argv)
        start_time = time.perf_counter()
        logger.debug("command_stream_out_started", argv=self.redact(argv))

        with tempfile.TemporaryFile() as stderr_buffer:
            proc = subprocess.Popen(argv, stdout=subprocess.PIPE, stderr=stderr_buffer)
            assert proc.stdout is not None
            try:
                with proc.stdout:
                    shutil.copyfileobj(proc.stdout, sink)
            except BaseException:
                self._abort(proc)
                raise
            returncode = self._wait(proc)
            stderr_buffer.seek(0)
            stderr = stderr_buffer.read().decode("utf-8", errors="replace")

        result = CommandResult(
            argv=argv,
            returncode=returncode,
            stderr=stderr,
            duration_seconds=time.perf_counter() - start_time,
        )
        self._finish(result, check)
        return result

    def stream_in(self, argv: Sequence[str], source: IO[bytes], *, check: bool = True) -> CommandResult:
        """Run a command, feeding ``source`` into its stdin."""
        argv = list(argv)
        start_time = time.perf_counter()
        logger.debug("command_stream_in_started", argv=self.redact(argv))

        with tempfile.TemporaryFile() as stdout_buffer, tempfile.TemporaryFile() as stderr_buffer:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=stdout_buffer,
                stderr=stderr_buffer,
            )
            assert proc.stdin is not None
            try:
                with proc.stdin:
                    shutil.copyfileobj(source, proc.stdin)
            except BrokenPipeError:
                # The tool exited early; its exit status and stderr tell why.
                logger.warning("command_stdin_closed_early", argv=self.redact(argv))
            except BaseException:
                self._abort(proc)
                raise
            returncode = self._wait(proc)
            stdout_buffer.seek(0)
            stderr_buffer.seek(0)
            stdout = stdout_buffer.read().decode("utf-8", errors="replace")
            stderr = stderr_buffer.read().decode("utf-8", errors="replace")

        result = CommandResult(
            argv=argv,
            returncode=returncode,
            stdout=stdout,
            stderr=stderr,
            duration_seconds=time.perf_counter() - start_time,
        )
        self._finish(result, check)
        return result

    def _wait(self, proc: subprocess.Popen[Any]) -> int:
        try:
            return proc.wait(timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            self._abort(proc)
            raise

    def _abort(self, proc: subprocess.Popen[Any]) -> None:
        """Kill and reap a child whose pipe copy or wait failed."""
        proc.kill()
        proc.wait()
        logger.warning("command_aborted", argv=self.redact(list(proc.args)), returncode=proc.returncode)

    def _finish(self, result: CommandResult, check: bool) -> None:
        logger.debug(
            "command_finished",
            argv=self.redact(result.argv),
            returncode=result.returncode,
            duration_seconds=round(result.duration_seconds, 3),
        )
        if check and not result.ok:
            raise subprocess.CalledProcessError(
                result.returncode,
                self.redact(result.argv),
                output=result.stdout,
                stderr=result.stderr,
            )


class ContainerClient:
    """
    Runs tools inside one store container.

    All failures surface as StoreError subclasses carrying the store name
    and the tail of the tool's stderr.
    """

    def __init__(
        self,
        container: str,
        store: str,
        runner: CommandRunner,
        docker_bin: str = "docker",
    ) -> None:
        self.container = container
        self.store = store
        self.runner = runner
        self.docker_bin = docker_bin

    def _exec_argv(
        self,
        command: Sequence[str],
        env: Mapping[str, str] | None = None,
        interactive: bool = False,
    ) -> list[str]:
        argv = [self.docker_bin, "exec"]
        if interactive:
            argv.append("-i")
        for key, value in (env or {}).items():
            argv.extend(["-e", f"{key}={value}"])
        argv.append(self.container)
        argv.extend(command)
        return argv

    def exec(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a tool in the container and capture its output."""
        argv = self._exec_argv(command, env)
        return self._guard(command[0], lambda: self.runner.run(argv, check=check))

    def exec_to(
        self,
        command: Sequence[str],
        sink: IO[bytes],
        *,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run a tool in the container, streaming its stdout into ``sink``."""
        argv = self._exec_argv(command, env)
        return self._guard(command[0], lambda: self.runner.stream_out(argv, sink))

    def exec_from(
        self,
        command: Sequence[str],
        source: IO[bytes],
        *,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run a tool in the container, streaming ``source`` into its stdin."""
        argv = self._exec_argv(command, env, interactive=True)
        return self._guard(command[0], lambda: self.runner.stream_in(argv, source))

    def copy_from(self, container_path: str, local_path: Path) -> CommandResult:
        """Copy a file or directory out of the container."""
        argv = [self.docker_bin, "cp", f"{self.container}:{container_path}", str(local_path)]
        return self._guard("docker cp", lambda: self.runner.run(argv))

    def copy_to(self, local_path: Path, container_path: str) -> CommandResult:
        """Copy a file or directory into the container."""
        argv = [self.docker_bin, "cp", str(local_path), f"{self.container}:{container_path}"]
        return self._guard("docker cp", lambda: self.runner.run(argv))

    def remove(self, container_path: str) -> None:
        """Best-effort removal of a staging path inside the container."""
        try:
            self.exec(["rm", "-rf", container_path])
        except StoreError as e:
            logger.warning(
                "container_cleanup_failed",
                store=self.store,
                path=container_path,
                error=str(e),
            )

    def _guard(self, command: str, call: Callable[[], CommandResult]) -> CommandResult:
        try:
            return call()
        except FileNotFoundError as e:
            raise StoreUnavailableError.unreachable(
                self.store, f"{self.docker_bin} executable not found", cause=e
            ) from e
        except subprocess.TimeoutExpired as e:
            raise StoreError.command_failed(
                self.store, command, -1, f"timed out after {e.timeout}s", cause=e
            ) from e
        except subprocess.CalledProcessError as e:
            raise classify_failure(self.store, command, e.returncode, e.stderr or "", e) from e


def classify_failure(
    store: str,
    command: str,
    returncode: int,
    stderr: str,
    cause: Exception | None = None,
) -> StoreError:
    """Map a failed tool invocation onto the StoreError hierarchy."""
    lowered = stderr.lower()
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return StoreUnavailableError.auth_failed(store, stderr)
    if any(marker in lowered for marker in _UNAVAILABLE_MARKERS):
        return StoreUnavailableError.unreachable(store, stderr, cause=cause)
    return StoreError.command_failed(store, command, returncode, stderr, cause=cause)
