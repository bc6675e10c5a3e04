from __future__ import annotations

import json

import pytest

from nvimlisten.errors import InvalidArgumentError
from nvimlisten.keybindings import DEFAULT_KEYBINDINGS, KeybindingReporter


@pytest.fixture
def reporter(settings) -> KeybindingReporter:
    return KeybindingReporter(settings.keybindings_file)


def test_json_lists_all_by_default(reporter) -> None:
    records = json.loads(reporter.get_keybindings())
    assert len(records) == len(DEFAULT_KEYBINDINGS)
    assert set(records[0]) == {"mode", "keys", "action", "plugin"}


def test_filter_by_mode_and_plugin(reporter) -> None:
    records = json.loads(reporter.get_keybindings(mode="visual", plugin="COMMENT"))
    assert records == [
        {"mode": "visual", "keys": "gc", "action": "Toggle comment on selection",
         "plugin": "Comment.nvim"}
    ]


def test_markdown_groups_by_mode(reporter) -> None:
    text = reporter.get_keybindings(mode="insert", format="markdown")
    assert text.startswith("# Keybindings")
    assert "## Insert mode" in text
    assert "## Normal mode" not in text
    assert "- `jk` - Exit insert mode" in text


def test_table_is_aligned(reporter) -> None:
    lines = reporter.get_keybindings(plugin="telescope", format="table").splitlines()
    assert lines[0].split(" | ")[0].strip() == "Mode"
    assert set(lines[1]) <= {"-", "+"}
    assert len(lines) == 2 + 4
    assert lines[2].index("|") == lines[0].index("|")


def test_no_matches(reporter) -> None:
    assert reporter.get_keybindings(plugin="nonexistent", format="table") == "No keybindings found"
    assert json.loads(reporter.get_keybindings(plugin="nonexistent")) == []


def test_file_replaces_builtin_table(reporter, settings) -> None:
    settings.keybindings_file.write_text(
        json.dumps([{"mode": "normal", "keys": "<leader>z", "action": "Zen mode", "plugin": "zen"}])
    )
    records = json.loads(reporter.get_keybindings())
    assert [r["keys"] for r in records] == ["<leader>z"]


def test_invalid_file_falls_back(reporter, settings) -> None:
    settings.keybindings_file.write_text(json.dumps({"not": "a list"}))
    records = json.loads(reporter.get_keybindings())
    assert len(records) == len(DEFAULT_KEYBINDINGS)


def test_invalid_format(reporter) -> None:
    with pytest.raises(InvalidArgumentError):
        reporter.get_keybindings(format="yaml")


@pytest.mark.asyncio
async def test_get_keybindings_tool(server) -> None:
    result = await server.call_tool("get-keybindings", {"mode": "command", "format": "markdown"})
    assert "## Command mode" in result[0].text
