"""
Keybinding Reporter - documented mappings, filterable and renderable.

The built-in table documents the environment's default mappings. A JSON
list of records in the keybindings file replaces it.
"""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from .errors import InvalidArgumentError
from .process import advisory

logger = logging.getLogger(__name__)

MODES = ("normal", "insert", "visual", "command")
FORMATS = ("json", "markdown", "table")


@dataclass
class Keybinding:
    mode: str
    keys: str
    action: str
    plugin: Optional[str] = None


DEFAULT_KEYBINDINGS = [
    # Core
    Keybinding("normal", "<leader>w", "Save file"),
    Keybinding("normal", "<leader>q", "Quit window"),
    Keybinding("normal", "<C-h>", "Move to left window"),
    Keybinding("normal", "<C-l>", "Move to right window"),
    Keybinding("normal", "<C-j>", "Move to window below"),
    Keybinding("normal", "<C-k>", "Move to window above"),
    Keybinding("normal", "<leader>sv", "Split window vertically"),
    Keybinding("normal", "<leader>sh", "Split window horizontally"),
    Keybinding("insert", "jk", "Exit insert mode"),
    Keybinding("insert", "<C-s>", "Save file"),
    Keybinding("visual", "<", "Indent left and keep selection"),
    Keybinding("visual", ">", "Indent right and keep selection"),
    Keybinding("visual", "J", "Move selection down"),
    Keybinding("visual", "K", "Move selection up"),
    Keybinding("command", "<C-a>", "Go to start of command line"),
    Keybinding("command", "<C-e>", "Go to end of command line"),
    # Plugins
    Keybinding("normal", "<leader>ff", "Find files", "telescope"),
    Keybinding("normal", "<leader>fg", "Live grep", "telescope"),
    Keybinding("normal", "<leader>fb", "List buffers", "telescope"),
    Keybinding("normal", "<leader>fh", "Search help tags", "telescope"),
    Keybinding("normal", "<leader>e", "Toggle file explorer", "nvim-tree"),
    Keybinding("normal", "gd", "Go to definition", "lspconfig"),
    Keybinding("normal", "gr", "Show references", "lspconfig"),
    Keybinding("normal", "K", "Hover documentation", "lspconfig"),
    Keybinding("normal", "<leader>rn", "Rename symbol", "lspconfig"),
    Keybinding("normal", "<leader>ca", "Code actions", "lspconfig"),
    Keybinding("normal", "gcc", "Toggle line comment", "Comment.nvim"),
    Keybinding("visual", "gc", "Toggle comment on selection", "Comment.nvim"),
    Keybinding("normal", "<leader>gs", "Git status", "fugitive"),
    Keybinding("normal", "]c", "Next git hunk", "gitsigns"),
    Keybinding("normal", "[c", "Previous git hunk", "gitsigns"),
    Keybinding("normal", "<leader>xx", "Toggle diagnostics list", "trouble"),
    Keybinding("insert", "<C-Space>", "Trigger completion", "nvim-cmp"),
    Keybinding("insert", "<Tab>", "Next completion item", "nvim-cmp"),
]


def load_keybindings(path: Optional[Path]) -> list[Keybinding]:
    """Keybindings from path if it holds a valid list, else the built-ins."""
    if path is None or not Path(path).is_file():
        return list(DEFAULT_KEYBINDINGS)

    with advisory(f"keybindings file {path}"):
        records = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(records, list):
            raise ValueError("expected a JSON list of keybindings")
        return [
            Keybinding(
                mode=r["mode"], keys=r["keys"], action=r["action"], plugin=r.get("plugin")
            )
            for r in records
        ]
    return list(DEFAULT_KEYBINDINGS)


def filter_keybindings(
    bindings: list[Keybinding], mode: str = "all", plugin: Optional[str] = None
) -> list[Keybinding]:
    if mode != "all":
        bindings = [b for b in bindings if b.mode == mode]
    if plugin:
        needle = plugin.lower()
        bindings = [b for b in bindings if b.plugin and needle in b.plugin.lower()]
    return bindings


def render_json(bindings: list[Keybinding]) -> str:
    return json.dumps([asdict(b) for b in bindings], indent=2)


def render_markdown(bindings: list[Keybinding]) -> str:
    if not bindings:
        return "No keybindings found"
    lines = ["# Keybindings"]
    for mode in MODES + tuple(sorted({b.mode for b in bindings} - set(MODES))):
        group = [b for b in bindings if b.mode == mode]
        if not group:
            continue
        lines += ["", f"## {mode.capitalize()} mode", ""]
        for b in group:
            suffix = f" _({b.plugin})_" if b.plugin else ""
            lines.append(f"- `{b.keys}` - {b.action}{suffix}")
    return "\n".join(lines)


def render_table(bindings: list[Keybinding]) -> str:
    if not bindings:
        return "No keybindings found"
    header = ("Mode", "Keys", "Action", "Plugin")
    rows = [(b.mode, b.keys, b.action, b.plugin or "-") for b in bindings]
    widths = [max(len(r[i]) for r in rows + [header]) for i in range(len(header))]

    def fmt(row):
        return " | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip()

    separator = "-+-".join("-" * w for w in widths)
    return "\n".join([fmt(header), separator] + [fmt(r) for r in rows])


RENDERERS = {
    "json": render_json,
    "markdown": render_markdown,
    "table": render_table,
}


class KeybindingReporter:
    def __init__(self, keybindings_file: Optional[Path] = None):
        self.keybindings_file = keybindings_file

    def get_keybindings(
        self, mode: str = "all", plugin: Optional[str] = None, format: str = "json"
    ) -> str:
        if mode != "all" and mode not in MODES:
            raise InvalidArgumentError(f"Invalid mode: {mode}. Use: {list(MODES) + ['all']}")
        renderer = RENDERERS.get(format)
        if renderer is None:
            raise InvalidArgumentError(f"Invalid format: {format}. Use: {list(FORMATS)}")

        bindings = filter_keybindings(load_keybindings(self.keybindings_file), mode, plugin)
        return renderer(bindings)
