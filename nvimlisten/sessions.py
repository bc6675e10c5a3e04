"""
Session Store - named Neovim sessions with JSON metadata.

Each session is a `<name>.vim` artifact produced by `:mksession` plus a
`<name>.json` metadata record in the same directory. The artifact is
authoritative: a session exists iff its `.vim` file exists.
"""

import json
import logging
import os
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .errors import ExternalProcessError, InvalidArgumentError, NotFoundError
from .nvim_client import NeovimClient, endpoints_for, ex_path, keys_string
from .orchestra import fan_out
from .process import advisory
from .settings import Settings

logger = logging.getLogger(__name__)

SESSION_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")
UNKNOWN = "Unknown"


@dataclass
class SessionMetadata:
    name: str
    created: str
    autoSave: bool
    cwd: str


class SessionStore:
    """Create, list, restore and delete sessions under the sessions root."""

    def __init__(self, settings: Settings, nvim: NeovimClient):
        self.settings = settings
        self.nvim = nvim
        self.sessions_dir = Path(settings.sessions_dir)

    def _check_name(self, name: Optional[str], action: str) -> str:
        if not name:
            raise InvalidArgumentError(f"Session name is required for {action} action")
        if not SESSION_NAME_RE.match(name):
            raise InvalidArgumentError(
                f"Invalid session name: {name!r} (letters, digits, '_', '.', '-' only)"
            )
        return name

    def artifact_path(self, name: str) -> Path:
        return self.sessions_dir / f"{name}.vim"

    def metadata_path(self, name: str) -> Path:
        return self.sessions_dir / f"{name}.json"

    async def create(self, name: Optional[str], auto_save: bool = True) -> Path:
        name = self._check_name(name, "create")
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        session_path = self.artifact_path(name)

        await self.nvim.headless("mksession! " + ex_path(session_path))
        if not session_path.exists():
            raise ExternalProcessError(f"Neovim did not write session file {session_path}")

        metadata = SessionMetadata(
            name=name,
            created=datetime.now(timezone.utc).isoformat(),
            autoSave=auto_save,
            cwd=os.getcwd(),
        )
        self.metadata_path(name).write_text(json.dumps(asdict(metadata), indent=2))
        logger.info(f"Created session {name} at {session_path}")
        return session_path

    async def restore(self, name: Optional[str]) -> dict:
        """Source the session in each restore instance.

        Success means the restore was attempted; unreachable instances are
        reported per endpoint.
        """
        name = self._check_name(name, "restore")
        session_path = self.artifact_path(name)
        if not session_path.exists():
            raise NotFoundError(f"Session '{name}' not found")

        keys = f":source {keys_string(ex_path(session_path))}<CR>"
        endpoints = endpoints_for(self.settings.host, self.settings.restore_ports)
        outcomes = await fan_out(endpoints, lambda ep: self.nvim.remote_send(ep, keys))

        return {
            "action": "restore",
            "session": name,
            "results": [o.to_dict() for o in outcomes],
        }

    def list_sessions(self) -> list[dict]:
        if not self.sessions_dir.is_dir():
            return []

        sessions = []
        for artifact in sorted(self.sessions_dir.glob("*.vim")):
            name = artifact.stem
            sessions.append(asdict(self._load_metadata(name)))
        return sessions

    def _load_metadata(self, name: str) -> SessionMetadata:
        path = self.metadata_path(name)
        try:
            data = json.loads(path.read_text())
            return SessionMetadata(
                name=data.get("name", name),
                created=data.get("created", UNKNOWN),
                autoSave=bool(data.get("autoSave", False)),
                cwd=data.get("cwd", UNKNOWN),
            )
        except (OSError, ValueError, AttributeError):
            return SessionMetadata(name=name, created=UNKNOWN, autoSave=False, cwd=UNKNOWN)

    def delete(self, name: Optional[str]) -> None:
        name = self._check_name(name, "delete")
        try:
            self.artifact_path(name).unlink()
        except FileNotFoundError:
            raise NotFoundError(f"Session '{name}' not found")

        metadata = self.metadata_path(name)
        if metadata.exists():
            with advisory(f"metadata delete for session {name}"):
                metadata.unlink()
        logger.info(f"Deleted session {name}")
