"""Runs a stage's external command set to completion or failure."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from delivery_pipeline.core.errors import (
    CollaboratorUnavailable,
    PipelineError,
    StageCancelled,
    StageFailed,
    StageTimeout,
)
from delivery_pipeline.core.result import StageResult
from delivery_pipeline.core.types import Stage, StageStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Command:
    """One external operation.

    Args:
        argv: Program and arguments.
        name: Short label used in logs and errors. Defaults to the program.
        stdin: Text written to the process's standard input. Masked in
            ``repr`` because it carries credentials.
    """

    argv: tuple[str, ...]
    name: str = ""
    stdin: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError("argv must not be empty")

    @property
    def display(self) -> str:
        return self.name or self.argv[0]


class StageExecutor:
    """Executes an ordered list of commands, stopping at the first failure.

    The executor only invokes processes; it never touches pipeline state and
    never retries. Failures come back on the returned :class:`StageResult`:

    - :class:`StageFailed` for a non-zero exit, with the captured output
    - :class:`StageTimeout` when the stage-wide timeout elapses
    - :class:`CollaboratorUnavailable` when a program cannot be launched
    - :class:`StageCancelled` when *cancel_event* is set

    Running processes are killed on timeout and cancellation.

    Args:
        clock: Injectable monotonic clock for testing.
        poll_interval: How often a running process is checked for
            cancellation and timeout, in seconds.
        popen: Process factory, ``subprocess.Popen`` by default.
    """

    def __init__(
        self,
        clock: Callable[[], float] | None = None,
        poll_interval: float = 0.2,
        popen: Callable[..., Any] | None = None,
    ) -> None:
        self._clock = clock or time.monotonic
        self._poll_interval = poll_interval
        self._popen = popen or subprocess.Popen

    def run(
        self,
        commands: Sequence[Command],
        environment: Mapping[str, str] | None = None,
        timeout: float | None = None,
        *,
        stage: Stage = Stage.BUILD,
        cancel_event: threading.Event | None = None,
    ) -> StageResult:
        """Run *commands* in order.

        Args:
            commands: Operations to run.
            environment: Variables overlaid on the current environment.
            timeout: Budget for the whole command set in seconds.
            stage: Stage recorded on the result.
            cancel_event: Set to abort the running command.

        Returns:
            A ``StageResult`` whose ``output`` holds the combined output of
            every command that ran.
        """
        start = self._clock()
        deadline = start + timeout if timeout is not None else None
        env = {**os.environ, **environment} if environment else None
        outputs: list[str] = []

        try:
            for command in commands:
                logger.debug("Running %s: %s", command.display, " ".join(command.argv))
                outputs.append(self._run_command(command, env, deadline, timeout, cancel_event))
        except PipelineError as exc:
            duration_ms = int((self._clock() - start) * 1000)
            logger.debug("Stage %s stopped after %dms: %s", stage.value, duration_ms, exc)
            return replace(StageResult.failed(stage, exc, duration_ms), output="".join(outputs) + exc.detail)

        return StageResult(
            stage=stage,
            status=StageStatus.SUCCEEDED,
            duration_ms=int((self._clock() - start) * 1000),
            output="".join(outputs),
        )

    def _run_command(
        self,
        command: Command,
        env: dict[str, str] | None,
        deadline: float | None,
        timeout: float | None,
        cancel_event: threading.Event | None,
    ) -> str:
        if cancel_event is not None and cancel_event.is_set():
            raise StageCancelled(f"Cancelled before '{command.display}'")
        if deadline is not None and self._clock() >= deadline:
            raise StageTimeout(
                f"Stage timed out after {timeout}s before '{command.display}'",
                timeout_seconds=timeout,
            )

        try:
            proc = self._popen(
                list(command.argv),
                stdin=subprocess.PIPE if command.stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=env,
                text=True,
            )
        except OSError as exc:
            raise CollaboratorUnavailable(command.argv[0], str(exc), cause=exc) from exc

        pending_input = command.stdin
        while True:
            wait = self._poll_interval
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    output = self._kill(proc)
                    raise StageTimeout(
                        f"Command '{command.display}' exceeded the stage timeout of {timeout}s",
                        timeout_seconds=timeout,
                        detail=output,
                    )
                wait = min(wait, remaining)
            try:
                output, _ = proc.communicate(input=pending_input, timeout=wait)
                break
            except subprocess.TimeoutExpired:
                # communicate() may not be given input twice
                pending_input = None
            if cancel_event is not None and cancel_event.is_set():
                output = self._kill(proc)
                raise StageCancelled(f"Cancelled during '{command.display}'", detail=output)

        output = output or ""
        if proc.returncode != 0:
            raise StageFailed(command.display, proc.returncode, output)
        return output

    @staticmethod
    def _kill(proc: Any) -> str:
        proc.kill()
        try:
            output, _ = proc.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            return ""
        return output or ""
