from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Callable, Optional, Union

import pytest

from nvimlisten.errors import ExternalProcessError
from nvimlisten.mcp_server import NvimListenServer
from nvimlisten.process import ProcessResult
from nvimlisten.settings import Settings

Matcher = Union[tuple, Callable[[tuple], bool]]


class FakeRunner:
    """Scripted stand-in for ProcessRunner.

    Rules are checked newest first. A command matching no rule fails the
    way a missing tool or an unreachable instance would.
    """

    def __init__(self, tools: Optional[dict] = None):
        self.tools = dict(tools or {})
        self.calls: list[tuple] = []
        self.detached: list[tuple] = []
        self.rules: list[tuple] = []

    def on(
        self,
        match: Matcher,
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
        fail: bool = False,
        delay: float = 0,
        effect: Optional[Callable[[tuple], None]] = None,
    ) -> None:
        self.rules.append((match, stdout, stderr, returncode, fail, delay, effect))

    def _matches(self, match: Matcher, argv: tuple) -> bool:
        if callable(match):
            return match(argv)
        return argv[: len(match)] == tuple(match)

    async def run(self, program: str, *args: str, check: bool = True) -> ProcessResult:
        argv = (program, *[str(a) for a in args])
        self.calls.append(argv)
        for match, stdout, stderr, returncode, fail, delay, effect in reversed(self.rules):
            if not self._matches(match, argv):
                continue
            if delay:
                await asyncio.sleep(delay)
            if effect:
                effect(argv)
            if fail or (check and returncode != 0):
                raise ExternalProcessError(
                    f"Command failed: {' '.join(argv)}", argv=argv, returncode=returncode or 1
                )
            return ProcessResult(argv=argv, returncode=returncode, stdout=stdout, stderr=stderr)
        raise ExternalProcessError(f"Failed to start {program}: scripted failure", argv=argv)

    def spawn_detached(self, program: str, *args: str) -> int:
        self.detached.append((program, *[str(a) for a in args]))
        return 4242

    def which(self, name: str) -> Optional[str]:
        return self.tools.get(name)

    def calls_to(self, endpoint: str) -> list[tuple]:
        return [c for c in self.calls if endpoint in c]


def remote_to(address: str, flag: str = "--remote-send") -> Callable[[tuple], bool]:
    """Match `nvim --server ADDRESS <flag> ...`."""
    return lambda argv: "--server" in argv and address in argv and flag in argv


def write_session_artifact(argv: tuple) -> None:
    """Effect for headless `mksession!` calls: create the session file."""
    for arg in argv:
        if arg.startswith("mksession! "):
            path = re.sub(r"\\(.)", r"\1", arg[len("mksession! "):])
            Path(path).write_text('" session\n')


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    scripts = tmp_path / "scripts"
    scripts.mkdir()
    return Settings(
        config_dir=tmp_path / "nvim",
        sessions_dir=tmp_path / "sessions",
        scripts_dir=scripts,
        state_file=tmp_path / "orchestra-state.json",
        keybindings_file=tmp_path / "keybindings.json",
        log_file=tmp_path / "server.log",
        health_config_dirs=(
            ("Neovim config", tmp_path / "nvim"),
            ("Zellij config", tmp_path / "zellij"),
        ),
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner(tools={"nvim": "/usr/bin/nvim", "bash": "/bin/bash"})


@pytest.fixture
def server(settings: Settings, runner: FakeRunner) -> NvimListenServer:
    return NvimListenServer(settings, runner)
