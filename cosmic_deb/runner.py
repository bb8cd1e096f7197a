"""Process runner -- structured subprocess execution for build tools.

Provides ``run()`` for executing an external program with a working
directory and per-invocation environment overrides, returning a
structured ``RunResult``.  Output is either inherited (streamed to the
terminal, the default for long compiler runs) or captured and truncated.

No build logic lives here; this is a pure systems layer.  Every other
module takes a ``Runner`` so tests can substitute a recording fake.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import shutil
import subprocess
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_STDOUT_BYTES: int = 50_000  # 50 KB
MAX_STDERR_BYTES: int = 10_000  # 10 KB
EXIT_NOT_FOUND: int = 127


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class RunResult(BaseModel):
    """Structured result of a subprocess invocation."""

    model_config = ConfigDict(frozen=True)

    exit_code: int = Field(..., description="Process exit code (-1 if crashed)")
    stdout: str = Field(default="", description="Captured stdout (may be truncated)")
    stderr: str = Field(default="", description="Captured stderr (may be truncated)")
    duration_ms: int = Field(default=0, ge=0, description="Wall-clock duration in ms")
    truncated: bool = Field(
        default=False,
        description="True if stdout or stderr was truncated",
    )
    killed: bool = Field(
        default=False,
        description="True if the process was killed due to timeout",
    )
    command: str = Field(..., description="The command line that was executed")

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.killed

    def describe_failure(self) -> str:
        """One-line reason suitable for a ``BuildOutcome.cause``."""
        if self.killed:
            return f"'{self.command}' timed out"
        tail = (self.stderr or self.stdout).strip().splitlines()
        reason = f": {tail[-1]}" if tail else ""
        return f"'{self.command}' exited with status {self.exit_code}{reason}"


class Runner(Protocol):
    """Callable signature shared by ``run`` and test doubles."""

    async def __call__(
        self,
        program: str,
        args: Sequence[str] = (),
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        capture: bool = False,
        timeout_s: float | None = None,
    ) -> RunResult: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_env(extra: Mapping[str, str] | None = None) -> dict[str, str]:
    """Inherit the host environment and layer *extra* on top."""
    env = dict(os.environ)
    if extra:
        env.update(extra)
    return env


def _truncate(text: str, max_bytes: int) -> tuple[str, bool]:
    """Truncate *text* to at most *max_bytes* characters.

    Returns ``(text, False)`` when no truncation occurred, or
    ``(truncated_text, True)`` with an appended notice otherwise.
    """
    if len(text) <= max_bytes:
        return text, False
    return (
        text[:max_bytes] + f"\n\n[... truncated at {max_bytes} bytes ...]",
        True,
    )


def _decode(raw: str | bytes | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


def format_command(program: str, args: Sequence[str]) -> str:
    return shlex.join([program, *args])


# ---------------------------------------------------------------------------
# Core runner
# ---------------------------------------------------------------------------


async def run(
    program: str,
    args: Sequence[str] = (),
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    capture: bool = False,
    timeout_s: float | None = None,
) -> RunResult:
    """Execute *program* with *args* and return a ``RunResult``.

    Parameters
    ----------
    program:
        Executable name (resolved on ``PATH`` from the merged environment)
        or path.
    args:
        Argument vector; never passed through a shell.
    cwd:
        Working directory for the subprocess.  ``None`` → inherit.
    env:
        Extra environment variables merged on top of the host environment.
    capture:
        Capture stdout/stderr into the result instead of inheriting the
        parent's streams.
    timeout_s:
        Maximum wall-clock seconds before the process is killed.
        ``None`` → no limit (compiles can take hours on small hosts).
    """
    command = format_command(program, args)
    merged_env = _build_env(env)

    if shutil.which(program, path=merged_env.get("PATH")) is None:
        logger.warning("Command not found: %s", program)
        return RunResult(
            exit_code=EXIT_NOT_FOUND,
            stderr=f"{program}: command not found",
            command=command,
        )

    logger.debug("exec: %s (cwd=%s)", command, cwd or ".")
    start = time.perf_counter()

    def _sync() -> tuple[int, str, str, bool]:
        """Run in a thread so the event loop stays free."""
        try:
            result = subprocess.run(
                [program, *args],
                capture_output=capture,
                cwd=str(cwd) if cwd is not None else None,
                env=merged_env,
                timeout=timeout_s,
            )
            return result.returncode, _decode(result.stdout), _decode(result.stderr), False
        except subprocess.TimeoutExpired as exc:
            return -1, _decode(exc.stdout), _decode(exc.stderr), True

    try:
        exit_code, raw_out, raw_err, was_killed = await asyncio.to_thread(_sync)
    except OSError as exc:
        elapsed = int((time.perf_counter() - start) * 1000)
        return RunResult(
            exit_code=-1,
            stderr=f"Error: {exc}",
            duration_ms=elapsed,
            command=command,
        )

    elapsed = int((time.perf_counter() - start) * 1000)

    stdout, trunc_out = _truncate(raw_out, MAX_STDOUT_BYTES)
    stderr, trunc_err = _truncate(raw_err, MAX_STDERR_BYTES)

    return RunResult(
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        duration_ms=elapsed,
        truncated=trunc_out or trunc_err,
        killed=was_killed,
        command=command,
    )
