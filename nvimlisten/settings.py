"""
Server settings.

All values have defaults matching a typical Claude development environment
and can be overridden with NVIMLISTEN_* environment variables.
"""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

ENV_PREFIX = "NVIMLISTEN_"

DEFAULT_OPTIONAL_TOOLS = (
    ("zellij", "Terminal multiplexer"),
    ("tmux", "Alternative terminal multiplexer"),
    ("python3", "Python runtime"),
    ("fzf", "Fuzzy finder"),
    ("rg", "Ripgrep search"),
    ("fd", "Fast file finder"),
    ("lsd", "Enhanced ls"),
    ("bat", "Enhanced cat"),
    ("btop", "System monitor"),
    ("emacs", "Emacs editor"),
    ("atuin", "Shell history"),
)


def parse_ports(value: str) -> tuple[int, ...]:
    """Parse a comma-separated port list, keeping the given order."""
    ports = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        port = int(part)
        if not 0 < port < 65536:
            raise ValueError(f"Port out of range: {port}")
        ports.append(port)
    if not ports:
        raise ValueError(f"No ports in {value!r}")
    return tuple(ports)


def _home() -> Path:
    return Path.home()


def _tmp() -> Path:
    return Path(tempfile.gettempdir())


@dataclass
class Settings:
    """Paths, endpoints and tool lists used by every component."""

    host: str = "127.0.0.1"
    default_port: int = 7001
    broadcast_ports: tuple[int, ...] = (7777, 7778, 7779)
    sync_ports: tuple[int, ...] = (7777, 7778, 7779)
    restore_ports: tuple[int, ...] = (7001, 7002, 7777)
    orchestra_ports: tuple[int, ...] = (7777, 7778, 7779)
    health_ports: tuple[int, ...] = (7001, 7002, 7003, 7004, 7777, 7778, 7779)

    nvim_binary: str = "nvim"
    shell: str = "bash"

    config_dir: Path = field(default_factory=lambda: _home() / ".config" / "nvim")
    sessions_dir: Path = field(
        default_factory=lambda: _home() / ".local" / "share" / "nvim" / "sessions"
    )
    scripts_dir: Path = field(
        default_factory=lambda: Path(__file__).resolve().parent.parent / "scripts"
    )
    state_file: Path = field(default_factory=lambda: _tmp() / "nvim-orchestra-state.json")
    keybindings_file: Optional[Path] = None
    log_file: Path = field(default_factory=lambda: _tmp() / "nvimlisten-mcp.log")
    log_level: str = "INFO"

    required_tools: tuple[str, ...] = ("nvim", "bash")
    optional_tools: tuple[tuple[str, str], ...] = DEFAULT_OPTIONAL_TOOLS
    health_config_dirs: tuple[tuple[str, Path], ...] = field(
        default_factory=lambda: (
            ("Neovim config", _home() / ".config" / "nvim"),
            ("Zellij config", _home() / ".config" / "zellij"),
            ("Emacs config", _home() / ".emacs.d"),
        )
    )
    companion_daemon: str = "claude-server"
    multiplexer_session: str = "claude-dev-enhanced"

    # None means child processes may run forever
    command_timeout: Optional[float] = None

    def __post_init__(self):
        if self.keybindings_file is None:
            self.keybindings_file = Path(self.config_dir) / "keybindings.json"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from defaults overridden by NVIMLISTEN_* variables."""
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value.strip() if value and value.strip() else None

        overrides: dict = {}

        for name in ("host", "nvim_binary", "shell", "log_level", "companion_daemon",
                     "multiplexer_session"):
            value = get(name.upper())
            if value:
                overrides[name] = value

        for name in ("broadcast_ports", "sync_ports", "restore_ports", "orchestra_ports",
                     "health_ports"):
            value = get(name.upper())
            if value:
                overrides[name] = parse_ports(value)

        for name in ("config_dir", "sessions_dir", "scripts_dir", "state_file",
                     "keybindings_file", "log_file"):
            value = get(name.upper())
            if value:
                overrides[name] = Path(value).expanduser()

        port = get("DEFAULT_PORT")
        if port:
            overrides["default_port"] = parse_ports(port)[0]

        timeout = get("COMMAND_TIMEOUT")
        if timeout:
            seconds = float(timeout)
            if seconds <= 0:
                raise ValueError(f"Command timeout must be positive: {timeout}")
            overrides["command_timeout"] = seconds

        required = get("REQUIRED_TOOLS")
        if required:
            overrides["required_tools"] = tuple(t.strip() for t in required.split(",") if t.strip())

        return cls(**overrides)
