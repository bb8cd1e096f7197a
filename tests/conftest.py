"""Shared test fixtures: reduces boilerplate across test modules.

Provides:
- ``FakeRunner`` / ``fake_runner``: recording stand-in for ``runner.run``
- ``make_source``: build a minimal component source tree under ``tmp_path``
- ``isolate_env``: autouse fixture clearing ``COSMIC_DEB_*`` variables
"""

from __future__ import annotations

import os
import stat
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from cosmic_deb.runner import RunResult, format_command


# ---------------------------------------------------------------------------
# Marker registration
# ---------------------------------------------------------------------------


def pytest_configure(config):
    """Register custom markers.

    Nothing in this suite touches the network or real build tools; the
    ``integration`` marker is reserved for tests that would.
    """
    config.addinivalue_line(
        "markers",
        "integration: tests requiring real build tools or network access",
    )


# ---------------------------------------------------------------------------
# Recording runner
# ---------------------------------------------------------------------------


@dataclass
class Call:
    program: str
    args: list[str]
    cwd: str | None
    env: dict[str, str] | None
    capture: bool

    @property
    def command(self) -> str:
        return format_command(self.program, self.args)


@dataclass
class _Rule:
    program: str
    prefix: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    effect: Callable[[Call], None] | None
    times: int | None = None
    hits: int = field(default=0)

    def matches(self, call: Call) -> bool:
        if self.times is not None and self.hits >= self.times:
            return False
        return call.program == self.program and tuple(call.args[: len(self.prefix)]) == self.prefix


class FakeRunner:
    """Async callable with the ``Runner`` signature that records every call.

    Rules registered with ``on()`` are matched in registration order by
    program name and argument prefix; unmatched calls succeed with empty
    output.
    """

    def __init__(self) -> None:
        self.calls: list[Call] = []
        self._rules: list[_Rule] = []

    def on(
        self,
        program: str,
        *prefix: str,
        exit_code: int = 0,
        stdout: str = "",
        stderr: str = "",
        effect: Callable[[Call], None] | None = None,
        times: int | None = None,
    ) -> FakeRunner:
        self._rules.append(_Rule(program, prefix, exit_code, stdout, stderr, effect, times))
        return self

    async def __call__(
        self,
        program: str,
        args: Sequence[str] = (),
        *,
        cwd=None,
        env=None,
        capture: bool = False,
        timeout_s: float | None = None,
    ) -> RunResult:
        call = Call(
            program=program,
            args=list(args),
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            capture=capture,
        )
        self.calls.append(call)
        for rule in self._rules:
            if rule.matches(call):
                rule.hits += 1
                if rule.effect is not None:
                    rule.effect(call)
                return RunResult(
                    exit_code=rule.exit_code,
                    stdout=rule.stdout,
                    stderr=rule.stderr,
                    command=call.command,
                )
        return RunResult(exit_code=0, command=call.command)

    @property
    def commands(self) -> list[str]:
        return [c.command for c in self.calls]

    def calls_to(self, program: str, *prefix: str) -> list[Call]:
        return [
            c for c in self.calls
            if c.program == program and tuple(c.args[: len(prefix)]) == prefix
        ]


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def make_executable(path: Path, content: bytes = b"\x7fELF\x02\x01\x01") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def make_exec() -> Callable[..., Path]:
    return make_executable


@pytest.fixture
def make_source(tmp_path: Path) -> Callable[..., Path]:
    """Factory: ``make_source(name, justfile=True, cargo=None, changelog=None, binary=True)``."""

    def _make(
        name: str,
        *,
        root: Path | None = None,
        justfile: bool = True,
        cargo: str | None = None,
        changelog: str | None = None,
        binary: bool = True,
    ) -> Path:
        src = (root or tmp_path / "work") / name
        src.mkdir(parents=True, exist_ok=True)
        if justfile:
            (src / "justfile").write_text("build-release:\n\tcargo build --release\n")
        if cargo is not None:
            (src / "Cargo.toml").write_text(cargo)
        if changelog is not None:
            (src / "debian").mkdir(exist_ok=True)
            (src / "debian" / "changelog").write_text(changelog)
        if binary:
            make_executable(src / "target" / "release" / name)
        return src

    return _make


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch):
    """Keep host ``COSMIC_DEB_*`` variables out of ``Settings`` in tests."""
    for key in list(os.environ):
        if key.startswith("COSMIC_DEB_"):
            monkeypatch.delenv(key, raising=False)
