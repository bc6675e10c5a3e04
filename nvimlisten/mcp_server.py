"""
Neovim Listen MCP Server - Exposes Neovim and dev-environment control to Claude

This server implements the Model Context Protocol (MCP) over stdio. Each
tool is a named operation with a JSON schema; calls are validated against
that schema, routed to the owning component, and returned as text content.

Uses the official MCP SDK for protocol handling.
"""

import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from jsonschema.exceptions import best_match
from jsonschema.protocols import Validator
from jsonschema.validators import validator_for
from mcp.server import InitializationOptions, Server
from mcp.server.stdio import stdio_server
from mcp.shared.exceptions import McpError
from mcp.types import (
    CallToolRequest,
    CallToolResult,
    ServerCapabilities,
    ServerResult,
    TextContent,
    ToolsCapability,
)
from mcp.types import Tool as MCPTool

from . import __version__
from .errors import InternalError, InvalidArgumentError, NvimListenError, ToolNotFoundError
from .health import HealthReporter
from .keybindings import FORMATS, MODES, KeybindingReporter
from .nvim_client import Endpoint, NeovimClient
from .nvim_config import CONFIG_FILES, NvimConfig
from .orchestra import MESSAGE_TYPES, SYNC_DIRECTIVES, Orchestra
from .plugins import PLUGIN_ACTIONS, PluginManager
from .process import ProcessRunner
from .sessions import SessionStore
from .settings import Settings

logger = logging.getLogger(__name__)

SERVER_NAME = "mcp-server-nvimlisten"
EMPTY_RESULT = "Done"

SESSION_ACTIONS = ("create", "restore", "list", "delete")
ENVIRONMENT_LAYOUTS = ("enhanced", "minimal", "orchestra")
ORCHESTRA_MODES = ("full", "solo", "dual", "dev", "jupyter", "performance")

Handler = Callable[[dict], Awaitable[str]]


@dataclass
class ToolDef:
    """Internal tool definition."""

    name: str
    description: str
    input_schema: dict
    handler: Handler
    validator: Validator


def _apply_defaults(schema: dict, arguments: dict) -> dict:
    """Fill in top-level defaults declared by the schema."""
    args = dict(arguments)
    for key, prop in schema.get("properties", {}).items():
        if key not in args and "default" in prop:
            default = prop["default"]
            args[key] = list(default) if isinstance(default, (list, tuple)) else default
    return args


def _require_when(field_name: str, values: tuple, required: list[str]) -> dict:
    """Schema clause: `required` fields must be present when field is one of values."""
    return {
        "if": {"properties": {field_name: {"enum": list(values)}}, "required": [field_name]},
        "then": {"required": required},
    }


class NvimListenServer:
    """
    Tool registry and dispatcher for Neovim and environment operations.

    Exposes tools for:
    - Remote control of running Neovim instances (commands, opening files)
    - Environment scripts (terminal bridge, palette, project switcher)
    - Configuration file access
    - Plugin management through lazy.nvim
    - Multi-instance orchestration (broadcast, sync, scripts)
    - Keybinding documentation
    - Session management
    - Health reporting
    """

    def __init__(self, settings: Optional[Settings] = None, runner: Optional[ProcessRunner] = None):
        """
        Initialize the server.

        Args:
            settings: Paths, ports and tool lists (from the environment if None)
            runner: Process runner shared by every component
        """
        self.settings = settings or Settings.from_env()
        self.runner = runner or ProcessRunner(timeout=self.settings.command_timeout)
        self.nvim = NeovimClient(self.runner, self.settings.nvim_binary)

        self.nvim_config = NvimConfig(self.settings.config_dir)
        self.plugins = PluginManager(self.nvim)
        self.orchestra = Orchestra(self.settings, self.runner, self.nvim)
        self.sessions = SessionStore(self.settings, self.nvim)
        self.health = HealthReporter(self.settings, self.runner, self.nvim)
        self.keybindings = KeybindingReporter(self.settings.keybindings_file)

        self.tools: dict[str, ToolDef] = {}
        self._setup_tools()

    def _setup_tools(self):
        """Register all MCP tools."""
        ports_hint = "Port number (7001, 7002, 7777, etc.)"

        # =====================================================================
        # Neovim Connection
        # =====================================================================

        self._register_tool(
            name="neovim-connect",
            description="""Send a command to a running Neovim instance on a specific port.

The command is sent as keystrokes (`--remote-send`), e.g. ":w<CR>".
""",
            input_schema={
                "type": "object",
                "properties": {
                    "port": {
                        "type": "integer",
                        "description": ports_hint,
                        "default": self.settings.default_port,
                    },
                    "command": {"type": "string", "description": "Neovim command to execute"},
                },
                "required": ["command"],
            },
            handler=self._handle_neovim_connect,
        )

        self._register_tool(
            name="neovim-open-file",
            description="""Open a file in a specific Neovim instance.

Use this when the user says:
- "open X in the other editor" / "show X on port 7002"
""",
            input_schema={
                "type": "object",
                "properties": {
                    "port": {
                        "type": "integer",
                        "description": ports_hint,
                        "default": self.settings.default_port,
                    },
                    "filepath": {"type": "string", "description": "Path to the file to open"},
                    "line": {
                        "type": "integer",
                        "minimum": 1,
                        "description": "Optional line number to jump to",
                    },
                },
                "required": ["filepath"],
            },
            handler=self._handle_neovim_open_file,
        )

        # =====================================================================
        # Terminal & Environment
        # =====================================================================

        self._register_tool(
            name="terminal-execute",
            description="Execute a command in the visible terminal using the bridge",
            input_schema={
                "type": "object",
                "properties": {
                    "command": {
                        "type": "string",
                        "description": "Command to execute in the terminal",
                    }
                },
                "required": ["command"],
            },
            handler=self._handle_terminal_execute,
        )

        self._register_tool(
            name="command-palette",
            description="Open the interactive command palette with fzf",
            input_schema={"type": "object", "properties": {}},
            handler=self._handle_command_palette,
        )

        self._register_tool(
            name="project-switcher",
            description="Open the project switcher to navigate between projects",
            input_schema={"type": "object", "properties": {}},
            handler=self._handle_project_switcher,
        )

        self._register_tool(
            name="start-environment",
            description="Start the Claude development environment with Zellij",
            input_schema={
                "type": "object",
                "properties": {
                    "layout": {
                        "type": "string",
                        "description": "Layout type to use",
                        "enum": list(ENVIRONMENT_LAYOUTS),
                        "default": "enhanced",
                    }
                },
            },
            handler=self._handle_start_environment,
        )

        # =====================================================================
        # Configuration
        # =====================================================================

        self._register_tool(
            name="get-nvim-config",
            description="""Retrieve current Neovim configuration files.

Missing files are reported with a placeholder instead of failing.
""",
            input_schema={
                "type": "object",
                "properties": {
                    "configType": {
                        "type": "string",
                        "enum": list(CONFIG_FILES) + ["all"],
                        "description": "Type of configuration to retrieve",
                        "default": "all",
                    },
                    "filePath": {"type": "string", "description": "Specific file path (optional)"},
                },
            },
            handler=self._handle_get_nvim_config,
        )

        self._register_tool(
            name="set-nvim-config",
            description="Update Neovim configuration files",
            input_schema={
                "type": "object",
                "properties": {
                    "configType": {
                        "type": "string",
                        "enum": list(CONFIG_FILES),
                        "description": "Type of configuration to update",
                    },
                    "content": {"type": "string", "description": "New configuration content"},
                    "filePath": {"type": "string", "description": "Specific file path to update"},
                    "backup": {
                        "type": "boolean",
                        "default": True,
                        "description": "Create backup before updating",
                    },
                },
                "required": ["configType", "content"],
            },
            handler=self._handle_set_nvim_config,
        )

        # =====================================================================
        # Plugins
        # =====================================================================

        self._register_tool(
            name="list-plugins",
            description="List all installed Neovim plugins with their status",
            input_schema={
                "type": "object",
                "properties": {
                    "filter": {
                        "type": "string",
                        "description": "Filter plugins by name or category",
                    },
                    "includeConfig": {
                        "type": "boolean",
                        "default": False,
                        "description": "Include plugin configuration details",
                    },
                },
            },
            handler=self._handle_list_plugins,
        )

        self._register_tool(
            name="manage-plugin",
            description="Install, update, or remove plugins",
            input_schema={
                "type": "object",
                "properties": {
                    "action": {
                        "type": "string",
                        "enum": list(PLUGIN_ACTIONS),
                        "description": "Action to perform",
                    },
                    "pluginName": {
                        "type": "string",
                        "minLength": 1,
                        "description": "Name or URL of the plugin",
                    },
                    "config": {
                        "type": "string",
                        "description": "Plugin configuration (for install)",
                    },
                },
                "required": ["action"],
                "allOf": [_require_when("action", ("remove",), ["pluginName"])],
            },
            handler=self._handle_manage_plugin,
        )

        self._register_tool(
            name="describe-plugin",
            description="Show the lazy.nvim spec of one installed plugin",
            input_schema={
                "type": "object",
                "properties": {
                    "pluginName": {
                        "type": "string",
                        "minLength": 1,
                        "description": "Name of the plugin",
                    }
                },
                "required": ["pluginName"],
            },
            handler=self._handle_describe_plugin,
        )

        # =====================================================================
        # Orchestra
        # =====================================================================

        self._register_tool(
            name="run-orchestra",
            description="Execute nvim-orchestra scripts for multi-instance coordination",
            input_schema={
                "type": "object",
                "properties": {
                    "mode": {
                        "type": "string",
                        "enum": list(ORCHESTRA_MODES),
                        "description": "Orchestra mode to run",
                        "default": "full",
                    },
                    "ports": {
                        "type": "array",
                        "items": {"type": "integer", "minimum": 1, "maximum": 65535},
                        "description": "Custom ports to use",
                        "default": list(self.settings.orchestra_ports),
                    },
                },
            },
            handler=self._handle_run_orchestra,
        )

        self._register_tool(
            name="broadcast-message",
            description="""Broadcast a message to all Neovim instances.

Each instance is reported as success or not-responding; the call succeeds
even when no instance is running.
""",
            input_schema={
                "type": "object",
                "properties": {
                    "message": {
                        "type": "string",
                        "minLength": 1,
                        "description": "Message to broadcast",
                    },
                    "messageType": {
                        "type": "string",
                        "enum": list(MESSAGE_TYPES),
                        "default": "info",
                        "description": "Type of message",
                    },
                },
                "required": ["message"],
            },
            handler=self._handle_broadcast_message,
        )

        self._register_tool(
            name="sync-instances",
            description="""Synchronize orchestra Neovim instances.

- config: reload configuration
- session: save then restore the session
- buffers: reload all open buffers
- all: reload configuration, then buffers
""",
            input_schema={
                "type": "object",
                "properties": {
                    "syncType": {
                        "type": "string",
                        "enum": list(SYNC_DIRECTIVES),
                        "description": "What to synchronize",
                    }
                },
                "required": ["syncType"],
            },
            handler=self._handle_sync_instances,
        )

        self._register_tool(
            name="run-script",
            description="""Run a coordination script from the scripts directory.

With async=true the script is started in the background and the call
returns immediately; its completion and exit status are never reported.
""",
            input_schema={
                "type": "object",
                "properties": {
                    "scriptName": {
                        "type": "string",
                        "minLength": 1,
                        "description": "Script name, with or without .sh",
                    },
                    "args": {
                        "type": "array",
                        "items": {"type": "string"},
                        "default": [],
                        "description": "Arguments passed to the script",
                    },
                    "async": {
                        "type": "boolean",
                        "default": False,
                        "description": "Start in background without waiting",
                    },
                },
                "required": ["scriptName"],
            },
            handler=self._handle_run_script,
        )

        # =====================================================================
        # Keybindings
        # =====================================================================

        self._register_tool(
            name="get-keybindings",
            description="Retrieve keybinding documentation and current mappings",
            input_schema={
                "type": "object",
                "properties": {
                    "mode": {
                        "type": "string",
                        "enum": list(MODES) + ["all"],
                        "default": "all",
                        "description": "Vim mode for keybindings",
                    },
                    "plugin": {"type": "string", "description": "Filter by specific plugin"},
                    "format": {
                        "type": "string",
                        "enum": list(FORMATS),
                        "default": "json",
                        "description": "Output format",
                    },
                },
            },
            handler=self._handle_get_keybindings,
        )

        # =====================================================================
        # Sessions
        # =====================================================================

        self._register_tool(
            name="manage-session",
            description="""Create, restore, list or delete Neovim sessions.

Restore sources the session in each running instance and reports which
instances responded.
""",
            input_schema={
                "type": "object",
                "properties": {
                    "action": {
                        "type": "string",
                        "enum": list(SESSION_ACTIONS),
                        "description": "Session action to perform",
                    },
                    "sessionName": {
                        "type": "string",
                        "minLength": 1,
                        "description": "Name of the session",
                    },
                    "autoSave": {
                        "type": "boolean",
                        "default": True,
                        "description": "Record auto-save preference (create only)",
                    },
                },
                "required": ["action"],
                "allOf": [
                    _require_when("action", ("create", "restore", "delete"), ["sessionName"])
                ],
            },
            handler=self._handle_manage_session,
        )

        # =====================================================================
        # Health
        # =====================================================================

        self._register_tool(
            name="health-check",
            description="Check system health and dependencies",
            input_schema={"type": "object", "properties": {}},
            handler=self._handle_health_check,
        )

    def _register_tool(self, name: str, description: str, input_schema: dict, handler: Handler):
        """Register a tool with the server."""
        validator_cls = validator_for(input_schema)
        validator_cls.check_schema(input_schema)
        self.tools[name] = ToolDef(
            name=name,
            description=description,
            input_schema=input_schema,
            handler=handler,
            validator=validator_cls(input_schema),
        )

    def get_mcp_tools(self) -> list[MCPTool]:
        """Return tools in MCP SDK format."""
        return [
            MCPTool(name=t.name, description=t.description, inputSchema=t.input_schema)
            for t in self.tools.values()
        ]

    def validate(self, tool: ToolDef, arguments: dict) -> None:
        """Reject arguments that do not match the tool schema."""
        error = best_match(tool.validator.iter_errors(arguments))
        if error is not None:
            location = ".".join(str(p) for p in error.absolute_path)
            where = f" (at {location})" if location else ""
            raise InvalidArgumentError(f"Invalid arguments for {tool.name}{where}: {error.message}")

    async def call_tool(self, name: str, arguments: Optional[dict]) -> list[TextContent]:
        """Validate, dispatch and wrap one tool call.

        Typed errors propagate as they are; anything else becomes an
        InternalError carrying the original message.
        """
        tool = self.tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        arguments = dict(arguments or {})
        self.validate(tool, arguments)
        args = _apply_defaults(tool.input_schema, arguments)
        logger.debug(f"Tool call: {name} {args}")

        try:
            text = await tool.handler(args)
        except NvimListenError as e:
            logger.error(f"Tool {name} failed: {e}")
            raise
        except Exception as e:
            logger.exception(f"Tool {name} crashed")
            raise InternalError(f"Tool execution failed: {e}", cause=e)

        return [TextContent(type="text", text=text or EMPTY_RESULT)]

    # =========================================================================
    # Tool Handlers
    # =========================================================================

    def _endpoint(self, port) -> Endpoint:
        return Endpoint(self.settings.host, int(port))

    async def _handle_neovim_connect(self, args: dict) -> str:
        endpoint = self._endpoint(args["port"])
        await self.nvim.remote_send(endpoint, args["command"])
        return f"Command sent to Neovim on port {endpoint.port}"

    async def _handle_neovim_open_file(self, args: dict) -> str:
        endpoint = self._endpoint(args["port"])
        line = args.get("line")
        await self.nvim.remote_open(endpoint, args["filepath"], line)
        at_line = f" at line {line}" if line else ""
        return f"Opened {args['filepath']} in Neovim on port {endpoint.port}{at_line}"

    async def _handle_terminal_execute(self, args: dict) -> str:
        return await self.orchestra.execute_script("claude-terminal-bridge.sh", [args["command"]])

    async def _handle_command_palette(self, args: dict) -> str:
        return await self.orchestra.execute_script("claude-command-palette.sh")

    async def _handle_project_switcher(self, args: dict) -> str:
        return await self.orchestra.execute_script("claude-project-switcher.sh")

    async def _handle_start_environment(self, args: dict) -> str:
        layout = args["layout"]
        script = (
            "ultimate-orchestra.sh" if layout == "orchestra" else "start-claude-dev-enhanced.sh"
        )
        await self.orchestra.execute_script(script, [layout])
        return f"Claude development environment started with {layout} layout"

    async def _handle_get_nvim_config(self, args: dict) -> str:
        data = self.nvim_config.get(args["configType"], args.get("filePath"))
        return json.dumps(data, indent=2)

    async def _handle_set_nvim_config(self, args: dict) -> str:
        target = self.nvim_config.set(
            args["configType"], args["content"], args.get("filePath"), args["backup"]
        )
        return f"Configuration updated successfully at {target}"

    async def _handle_list_plugins(self, args: dict) -> str:
        return await self.plugins.list_plugins(args.get("filter"), args["includeConfig"])

    async def _handle_manage_plugin(self, args: dict) -> str:
        return await self.plugins.manage_plugin(
            args["action"], args.get("pluginName"), args.get("config")
        )

    async def _handle_describe_plugin(self, args: dict) -> str:
        return await self.plugins.describe_plugin(args["pluginName"])

    async def _handle_run_orchestra(self, args: dict) -> str:
        mode, ports = args["mode"], [int(p) for p in args["ports"]]
        await self.orchestra.execute_script("ultimate-orchestra.sh", [mode] + [str(p) for p in ports])
        return f"Orchestra started in {mode} mode on ports {', '.join(str(p) for p in ports)}"

    async def _handle_broadcast_message(self, args: dict) -> str:
        result = await self.orchestra.broadcast_message(args["message"], args["messageType"])
        return json.dumps(result, indent=2)

    async def _handle_sync_instances(self, args: dict) -> str:
        result = await self.orchestra.sync_instances(args["syncType"])
        return json.dumps(result, indent=2)

    async def _handle_run_script(self, args: dict) -> str:
        result = await self.orchestra.run_script(args["scriptName"], args["args"], args["async"])
        return json.dumps(result, indent=2)

    async def _handle_get_keybindings(self, args: dict) -> str:
        return self.keybindings.get_keybindings(args["mode"], args.get("plugin"), args["format"])

    async def _handle_manage_session(self, args: dict) -> str:
        action, name = args["action"], args.get("sessionName")
        if action == "create":
            path = await self.sessions.create(name, args["autoSave"])
            return f"Session '{name}' created successfully at {path}"
        if action == "restore":
            return json.dumps(await self.sessions.restore(name), indent=2)
        if action == "list":
            return json.dumps(self.sessions.list_sessions(), indent=2)
        if action == "delete":
            self.sessions.delete(name)
            return f"Session '{name}' deleted successfully"
        raise InvalidArgumentError(f"Unknown session action: {action}")

    async def _handle_health_check(self, args: dict) -> str:
        return await self.health.run()


def check_dependencies(
    settings: Settings, runner: Optional[ProcessRunner] = None
) -> tuple[list[str], list[str]]:
    """Return (missing required, missing optional) tool names."""
    runner = runner or ProcessRunner()
    missing = [tool for tool in settings.required_tools if not runner.which(tool)]
    missing_optional = [tool for tool, _ in settings.optional_tools if not runner.which(tool)]
    return missing, missing_optional


# Global server instance
_server_instance: Optional[NvimListenServer] = None


def get_server() -> NvimListenServer:
    """Get or create the server instance."""
    global _server_instance
    if _server_instance is None:
        _server_instance = NvimListenServer()
    return _server_instance


# Create MCP server using the SDK
mcp_server = Server(SERVER_NAME)


@mcp_server.list_tools()
async def list_tools():
    """Return available tools."""
    return get_server().get_mcp_tools()


async def call_tool(req: CallToolRequest) -> ServerResult:
    """Handle tool calls.

    Registered as a raw request handler so McpError reaches the session
    and the client receives a JSON-RPC error carrying the typed code.
    """
    try:
        content = await get_server().call_tool(req.params.name, req.params.arguments)
    except NvimListenError as e:
        raise McpError(e.to_error_data())
    return ServerResult(CallToolResult(content=content, isError=False))


mcp_server.request_handlers[CallToolRequest] = call_tool


def main():
    """Main entry point using MCP SDK."""
    settings = Settings.from_env()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.FileHandler(settings.log_file)],
    )

    logger.info(f"Starting {SERVER_NAME} {__version__}...")

    missing, missing_optional = check_dependencies(settings)
    if missing:
        logger.error(f"Missing required tools: {', '.join(missing)}")
        print(
            f"Missing required tools: {', '.join(missing)}\nPlease install them first.",
            file=sys.stderr,
        )
        sys.exit(1)
    if missing_optional:
        logger.warning(
            f"Missing optional tools (some features may not work): {', '.join(missing_optional)}"
        )

    global _server_instance
    _server_instance = NvimListenServer(settings)

    async def run():
        init_options = InitializationOptions(
            server_name=SERVER_NAME,
            server_version=__version__,
            capabilities=ServerCapabilities(tools=ToolsCapability()),
        )
        async with stdio_server() as (read_stream, write_stream):
            await mcp_server.run(read_stream, write_stream, init_options)

    asyncio.run(run())


if __name__ == "__main__":
    main()
