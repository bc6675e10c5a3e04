"""
Neovim Client - Drives Neovim through its command-line remote interface

Running instances are reached with `nvim --server HOST:PORT --remote-*`;
one-shot work (sessions, plugins) runs in a headless editor.
"""

from dataclasses import dataclass
from typing import Optional

from .process import ProcessResult, ProcessRunner


@dataclass(frozen=True)
class Endpoint:
    """A running Neovim instance listening on a TCP port."""

    host: str
    port: int

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        return self.address


def endpoints_for(host: str, ports) -> list[Endpoint]:
    """Build endpoints for ports, keeping their order."""
    return [Endpoint(host, int(port)) for port in ports]


def lua_string(value: str) -> str:
    """Quote a value as a single-quoted Lua string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'").replace("\n", "\\n")
    return f"'{escaped}'"


def vim_string(value: str) -> str:
    """Quote a value as a single-quoted Vim script string literal."""
    return "'" + value.replace("'", "''") + "'"


def keys_string(value: str) -> str:
    """Make text safe to type literally through `--remote-send`.

    `<` starts key notation, so it is sent as `<lt>`. Line breaks would
    end the command line early and become spaces.
    """
    value = value.replace("\r\n", " ").replace("\r", " ").replace("\n", " ")
    return value.replace("<", "<lt>")


EX_SPECIAL_CHARS = ' \\%#|"'


def ex_path(path) -> str:
    """Escape a file path for use as an ex command argument."""
    return "".join("\\" + c if c in EX_SPECIAL_CHARS else c for c in str(path))


class NeovimClient:
    """
    Issues remote and headless Neovim invocations.

    All process execution goes through the injected ProcessRunner.
    """

    def __init__(self, runner: ProcessRunner, binary: str = "nvim"):
        self.runner = runner
        self.binary = binary

    async def remote_send(self, endpoint: Endpoint, keys: str) -> ProcessResult:
        """Send keys to an instance as if typed (`--remote-send`)."""
        return await self.runner.run(
            self.binary, "--server", endpoint.address, "--remote-send", keys
        )

    async def remote_open(
        self, endpoint: Endpoint, filepath: str, line: Optional[int] = None
    ) -> ProcessResult:
        """Open a file in an instance, optionally at a line."""
        args = ["--server", endpoint.address, "--remote"]
        if line:
            args.append(f"+{line}")
        args.append(filepath)
        return await self.runner.run(self.binary, *args)

    async def remote_expr(self, endpoint: Endpoint, expr: str) -> str:
        """Evaluate an expression in an instance and return the result."""
        result = await self.runner.run(
            self.binary, "--server", endpoint.address, "--remote-expr", expr
        )
        return result.stdout

    async def headless(self, *commands: str) -> ProcessResult:
        """Run ex commands in a throwaway headless editor, then quit."""
        args = ["--headless"]
        for cmd in commands:
            args += ["-c", cmd]
        args += ["-c", "quit"]
        return await self.runner.run(self.binary, *args)

    async def version(self) -> str:
        """First line of `nvim --version` without the NVIM prefix."""
        result = await self.runner.run(self.binary, "--version")
        first = result.stdout.splitlines()[0] if result.stdout else "unknown"
        return first.replace("NVIM ", "", 1).strip()
