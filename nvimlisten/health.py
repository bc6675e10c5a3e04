"""
Health Reporter - probes tools, config directories and running instances.

Every probe is guarded on its own: a failing probe becomes a warning or
error item in its category and never aborts the rest of the report.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .errors import ExternalProcessError
from .nvim_client import NeovimClient, endpoints_for
from .orchestra import fan_out
from .process import ProcessRunner
from .settings import Settings

logger = logging.getLogger(__name__)

OK = "ok"
WARNING = "warning"
ERROR = "error"

ICONS = {OK: "✅", WARNING: "⚠️", ERROR: "❌"}


@dataclass
class HealthItem:
    name: str
    status: str
    message: str
    version: Optional[str] = None


@dataclass
class HealthCategory:
    category: str
    items: list[HealthItem] = field(default_factory=list)


def has_status(results: list[HealthCategory], status: str) -> bool:
    return any(item.status == status for r in results for item in r.items)


class HealthReporter:
    """Builds and renders the environment health report."""

    def __init__(self, settings: Settings, runner: ProcessRunner, nvim: NeovimClient):
        self.settings = settings
        self.runner = runner
        self.nvim = nvim

    async def check(self) -> list[HealthCategory]:
        """Run all checks; the report order is fixed."""
        checks: list[tuple[str, Callable[[], Awaitable[HealthCategory]]]] = [
            ("Required Dependencies", self.check_required),
            ("Optional Dependencies", self.check_optional),
            ("Configuration Files", self.check_configurations),
            ("Running Services", self.check_services),
        ]
        results = []
        for category, check in checks:
            try:
                results.append(await check())
            except Exception as e:
                logger.exception(f"Health check '{category}' failed")
                results.append(
                    HealthCategory(category, [HealthItem(category, ERROR, f"Check failed: {e}")])
                )
        return results

    async def run(self) -> str:
        return render_report(await self.check())

    # =========================================================================
    # Checks
    # =========================================================================

    async def check_required(self) -> HealthCategory:
        items = []
        for tool in self.settings.required_tools:
            path = self.runner.which(tool)
            if not path:
                items.append(HealthItem(tool, ERROR, "Not found in PATH"))
                continue
            items.append(
                HealthItem(tool, OK, f"Found at {path}", version=await self._version(tool))
            )
        return HealthCategory("Required Dependencies", items)

    async def _version(self, tool: str) -> str:
        try:
            if tool == self.settings.nvim_binary:
                return await self.nvim.version()
            result = await self.runner.run(tool, "--version")
            lines = result.output.splitlines()
            return lines[0].strip() if lines else "unknown"
        except ExternalProcessError:
            return "unknown"

    async def check_optional(self) -> HealthCategory:
        items = []
        for tool, description in self.settings.optional_tools:
            name = f"{tool} ({description})"
            if self.runner.which(tool):
                items.append(HealthItem(name, OK, "Installed"))
            else:
                items.append(
                    HealthItem(name, WARNING, "Not installed - some features may not work")
                )

        try:
            await self.runner.run("python3", "-c", "import pynvim")
            items.append(HealthItem("pynvim (Python package)", OK, "Installed"))
        except ExternalProcessError:
            items.append(
                HealthItem(
                    "pynvim (Python package)",
                    WARNING,
                    "Not installed - Python integration unavailable",
                )
            )
        return HealthCategory("Optional Dependencies", items)

    async def check_configurations(self) -> HealthCategory:
        items = []
        for name, path in self.settings.health_config_dirs:
            path = Path(path).expanduser()
            try:
                found = path.is_dir()
            except OSError:
                found = False
            if found:
                items.append(HealthItem(name, OK, f"Found at {path}"))
            else:
                items.append(HealthItem(name, WARNING, f"Not found at {path}"))
        return HealthCategory("Configuration Files", items)

    async def check_services(self) -> HealthCategory:
        endpoints = endpoints_for(self.settings.host, self.settings.health_ports)
        probes = await asyncio.gather(
            fan_out(endpoints, lambda ep: self.nvim.remote_expr(ep, "1")),
            self._scan_ports(),
            self._probe_daemon(),
            self._probe_multiplexer(),
        )
        outcomes, *extra = probes

        items = [
            HealthItem(f"Neovim on port {o.endpoint.port}", OK, "Running and responsive")
            for o in outcomes
            if o.ok
        ]
        items += [item for item in extra if item is not None]

        if not items:
            items.append(HealthItem("No services", WARNING, "No services are currently running"))
        return HealthCategory("Running Services", items)

    async def _scan_ports(self) -> Optional[HealthItem]:
        ports = self.settings.health_ports
        if not ports:
            return None
        low, high = min(ports), max(ports)
        try:
            result = await self.runner.run("lsof", "-t", f"-i:{low}-{high}", check=False)
        except ExternalProcessError:
            return None
        pids = sorted({line.strip() for line in result.stdout.splitlines() if line.strip()})
        if not pids:
            return None
        return HealthItem(
            f"Listeners on ports {low}-{high}",
            OK,
            f"{len(pids)} process(es) listening: {', '.join(pids)}",
        )

    async def _probe_daemon(self) -> Optional[HealthItem]:
        daemon = self.settings.companion_daemon
        try:
            await self.runner.run("emacsclient", "-s", daemon, "-e", "t")
        except ExternalProcessError:
            return None
        return HealthItem(f"Emacs daemon ({daemon})", OK, "Running")

    async def _probe_multiplexer(self) -> Optional[HealthItem]:
        session = self.settings.multiplexer_session
        try:
            result = await self.runner.run("zellij", "list-sessions")
        except ExternalProcessError:
            return None
        if session not in result.stdout:
            return None
        return HealthItem("Zellij session", OK, f"{session} session found")


def render_report(results: list[HealthCategory]) -> str:
    """Render categories as markdown followed by derived recommendations."""
    lines = ["# Neovim Listen MCP Server - Health Check Report", ""]

    for category in results:
        lines += [f"## {category.category}", ""]
        for item in category.items:
            detail = f"   {item.message}"
            if item.version:
                detail += f" (version: {item.version})"
            lines += [f"{ICONS.get(item.status, '?')} **{item.name}**", detail, ""]

    lines += ["## Recommendations", ""]
    has_errors = has_status(results, ERROR)
    has_warnings = has_status(results, WARNING)

    if has_errors:
        lines += [
            "❌ **Critical issues found!**",
            "- Install the missing required dependencies and make sure they are on PATH",
            "",
        ]
    if has_warnings:
        lines += [
            "⚠️ **Optional components missing**",
            "- Some features may not work without optional dependencies",
            "",
        ]
    if not has_errors and not has_warnings:
        lines += [
            "✅ **All systems operational!**",
            "- Your environment is fully configured",
            "- Start the environment with the `start-environment` tool",
            "",
        ]
    return "\n".join(lines)
