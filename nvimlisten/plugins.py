"""
Plugin Manager - lazy.nvim operations through a headless editor.
"""

import logging
from typing import Optional

from .errors import InvalidArgumentError
from .nvim_client import NeovimClient, lua_string

logger = logging.getLogger(__name__)

PLUGIN_ACTIONS = ("install", "update", "remove", "sync")

LIST_NAMES = (
    "lua for _, p in ipairs(require('lazy').plugins()) do "
    "print(p.name .. (p._.loaded and ' (loaded)' or '')) end"
)
LIST_FULL = "lua print(vim.inspect(require('lazy').plugins()))"


def filter_lines(text: str, needle: str) -> str:
    """Keep the lines containing needle, case-insensitively."""
    needle = needle.lower()
    return "\n".join(line for line in text.split("\n") if needle in line.lower())


class PluginManager:
    """Thin wrapper over `nvim --headless -c "lua require('lazy')..."`."""

    def __init__(self, nvim: NeovimClient):
        self.nvim = nvim

    async def list_plugins(self, filter: Optional[str] = None, include_config: bool = False) -> str:
        result = await self.nvim.headless(LIST_FULL if include_config else LIST_NAMES)
        output = result.output
        if filter:
            output = filter_lines(output, filter)
        return output or "No plugins found"

    def command_for(
        self, action: str, plugin_name: Optional[str] = None, config: Optional[str] = None
    ) -> str:
        """Build the lua command for a plugin action."""
        if action == "install":
            opts = "wait = true"
            if plugin_name:
                opts = f"plugins = {{ {lua_string(plugin_name)} }}, " + opts
            if config:
                opts += f", config = {config}"
            return f"lua require('lazy').install({{ {opts} }})"
        if action == "update":
            if plugin_name:
                return (
                    f"lua require('lazy').update({{ plugins = {{ {lua_string(plugin_name)} }}, "
                    "wait = true })"
                )
            return "lua require('lazy').update({ wait = true })"
        if action == "remove":
            if not plugin_name:
                raise InvalidArgumentError("Plugin name required for remove action")
            return (
                f"lua require('lazy').clean({{ plugins = {{ {lua_string(plugin_name)} }}, "
                "wait = true })"
            )
        if action == "sync":
            return "lua require('lazy').sync({ wait = true })"
        raise InvalidArgumentError(f"Invalid plugin action: {action}. Use: {list(PLUGIN_ACTIONS)}")

    async def manage_plugin(
        self, action: str, plugin_name: Optional[str] = None, config: Optional[str] = None
    ) -> str:
        command = self.command_for(action, plugin_name, config)
        logger.info(f"Plugin {action}: {plugin_name or '(all)'}")
        result = await self.nvim.headless(command)
        return f"Plugin {action} completed: {result.output or 'Success'}"

    async def describe_plugin(self, plugin_name: str) -> str:
        if not plugin_name:
            raise InvalidArgumentError("Plugin name required")
        command = (
            f"lua print(vim.inspect(require('lazy.core.config').plugins[{lua_string(plugin_name)}]))"
        )
        result = await self.nvim.headless(command)
        output = result.output
        if not output or output.strip() == "nil":
            return f"No configuration found for plugin: {plugin_name}"
        return output
