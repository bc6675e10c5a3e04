"""
Orchestra - fan-out across several Neovim instances and coordination scripts.

A fan-out sends one action to a fixed, ordered list of endpoints. Each
endpoint is tried exactly once; a failure is recorded as that endpoint's
outcome and never stops the others.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from .errors import ExternalProcessError, InvalidArgumentError, NotFoundError
from .nvim_client import Endpoint, NeovimClient, endpoints_for, keys_string, vim_string
from .process import ProcessRunner, advisory
from .settings import Settings

logger = logging.getLogger(__name__)

SUCCESS = "success"
NOT_RESPONDING = "not-responding"

SYNC_DIRECTIVES = {
    "config": ":source $MYVIMRC",
    "session": ":SessionSave<CR>:SessionRestore",
    "buffers": ":bufdo e!",
    "all": ":source $MYVIMRC<CR>:bufdo e!",
}

MESSAGE_TYPES = ("info", "warning", "error", "command")

SCRIPT_STARTED = "Script started in background"
SCRIPT_DONE = "Script executed successfully"


@dataclass
class EndpointOutcome:
    """Result of one fan-out step against one endpoint."""

    endpoint: Endpoint
    status: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS

    def to_dict(self) -> dict:
        return {
            "endpoint": self.endpoint.address,
            "port": self.endpoint.port,
            "status": self.status,
        }


async def fan_out(
    endpoints: Sequence[Endpoint], action: Callable[[Endpoint], Awaitable[object]]
) -> list[EndpointOutcome]:
    """Apply action to every endpoint concurrently.

    Outcomes come back in endpoint order regardless of completion order.
    Only process failures count as "not responding"; anything else is a
    bug and propagates.
    """

    async def attempt(endpoint: Endpoint) -> EndpointOutcome:
        try:
            await action(endpoint)
        except ExternalProcessError as e:
            logger.debug(f"{endpoint} not responding: {e}")
            return EndpointOutcome(endpoint, NOT_RESPONDING, str(e))
        return EndpointOutcome(endpoint, SUCCESS)

    return list(await asyncio.gather(*(attempt(ep) for ep in endpoints)))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Orchestra:
    """Broadcast, sync and script execution for multi-instance setups."""

    def __init__(self, settings: Settings, runner: ProcessRunner, nvim: NeovimClient):
        self.settings = settings
        self.runner = runner
        self.nvim = nvim

    # =========================================================================
    # Fan-out
    # =========================================================================

    async def broadcast_message(self, message: str, message_type: str = "info") -> dict:
        """Display `[TYPE] message` in every broadcast instance."""
        if not message:
            raise InvalidArgumentError("Message is required for broadcast")
        if message_type not in MESSAGE_TYPES:
            raise InvalidArgumentError(
                f"Invalid message type: {message_type}. Use: {list(MESSAGE_TYPES)}"
            )

        text = f"[{message_type.upper()}] {message}"
        keys = f":echo {keys_string(vim_string(text))}<CR>"
        endpoints = endpoints_for(self.settings.host, self.settings.broadcast_ports)

        outcomes = await fan_out(endpoints, lambda ep: self.nvim.remote_send(ep, keys))
        results = [o.to_dict() for o in outcomes]

        self.update_state(
            {
                "lastBroadcast": {
                    "message": message,
                    "messageType": message_type,
                    "timestamp": _now(),
                    "results": results,
                }
            }
        )

        return {
            "action": "broadcast",
            "message": message,
            "messageType": message_type,
            "results": results,
        }

    async def sync_instances(self, sync_type: str) -> dict:
        """Send the directive for sync_type to every sync instance."""
        directive = SYNC_DIRECTIVES.get(sync_type)
        if directive is None:
            raise InvalidArgumentError(
                f"Invalid sync type: {sync_type}. Use: {list(SYNC_DIRECTIVES)}"
            )

        keys = directive + "<CR>"
        endpoints = endpoints_for(self.settings.host, self.settings.sync_ports)
        outcomes = await fan_out(endpoints, lambda ep: self.nvim.remote_send(ep, keys))

        return {
            "action": "sync",
            "syncType": sync_type,
            "results": [o.to_dict() for o in outcomes],
        }

    # =========================================================================
    # Scripts
    # =========================================================================

    def resolve_script(self, script_name: str) -> Path:
        """Find a script under the scripts root, with or without `.sh`."""
        if not script_name or "/" in script_name or "\\" in script_name or script_name.startswith("."):
            raise NotFoundError(f"Script not found: {script_name}")

        root = Path(self.settings.scripts_dir)
        candidates = [root / script_name]
        if not script_name.endswith(".sh"):
            candidates.append(root / f"{script_name}.sh")

        for candidate in candidates:
            if candidate.is_file():
                return candidate
        raise NotFoundError(f"Script not found: {script_name}")

    async def execute_script(self, script_name: str, args: Sequence[str] = ()) -> str:
        """Run a script to completion and return its output."""
        path = self.resolve_script(script_name)
        result = await self.runner.run(self.settings.shell, str(path), *args)
        if result.stderr:
            logger.warning(f"Script {script_name} stderr: {result.stderr}")
        return result.stdout or result.stderr or SCRIPT_DONE

    def launch_script(self, script_name: str, args: Sequence[str] = ()) -> int:
        """Start a script detached; nothing observes its completion."""
        path = self.resolve_script(script_name)
        pid = self.runner.spawn_detached(self.settings.shell, str(path), *args)
        logger.info(f"Started {script_name} in background (pid {pid})")
        return pid

    async def run_script(
        self, script_name: str, args: Sequence[str] = (), run_async: bool = False
    ) -> dict:
        """Run a named script, synchronously or fire-and-forget."""
        args = [str(a) for a in (args or [])]
        if run_async:
            self.launch_script(script_name, args)
            result = SCRIPT_STARTED
        else:
            result = await self.execute_script(script_name, args)

        return {
            "script": script_name,
            "async": run_async,
            "result": result,
            "timestamp": _now(),
        }

    # =========================================================================
    # State
    # =========================================================================

    def load_state(self) -> dict:
        path = Path(self.settings.state_file)
        if not path.exists():
            return {}
        with open(path) as f:
            state = json.load(f)
        return state if isinstance(state, dict) else {}

    def update_state(self, update: dict) -> None:
        """Merge update into the persisted state (shallow, best effort)."""
        with advisory("orchestra state update"):
            state = {}
            with advisory("orchestra state read"):
                state = self.load_state()
            state.update(update)
            with open(self.settings.state_file, "w") as f:
                json.dump(state, f, indent=2)
