from __future__ import annotations

import json

import pytest

from conftest import remote_to
from nvimlisten.errors import InvalidArgumentError, NotFoundError
from nvimlisten.nvim_client import Endpoint, NeovimClient
from nvimlisten.orchestra import NOT_RESPONDING, SCRIPT_DONE, SCRIPT_STARTED, SUCCESS, Orchestra, fan_out


@pytest.fixture
def orchestra(settings, runner) -> Orchestra:
    return Orchestra(settings, runner, NeovimClient(runner))


def statuses(result: dict) -> list[tuple[int, str]]:
    return [(r["port"], r["status"]) for r in result["results"]]


@pytest.mark.asyncio
async def test_broadcast_preserves_port_order_regardless_of_completion(orchestra, runner) -> None:
    # First endpoint answers last
    runner.on(remote_to("127.0.0.1:7777"), delay=0.05)
    runner.on(remote_to("127.0.0.1:7779"), delay=0.01)

    result = await orchestra.broadcast_message("deploy done")

    assert statuses(result) == [
        (7777, SUCCESS),
        (7778, NOT_RESPONDING),
        (7779, SUCCESS),
    ]
    assert result["action"] == "broadcast"
    assert result["messageType"] == "info"


@pytest.mark.asyncio
async def test_broadcast_with_no_instances_still_succeeds(orchestra) -> None:
    result = await orchestra.broadcast_message("anyone?", "warning")
    assert [status for _, status in statuses(result)] == [NOT_RESPONDING] * 3


@pytest.mark.asyncio
async def test_broadcast_display_command_is_quoted(orchestra, runner) -> None:
    runner.on(("nvim",))
    await orchestra.broadcast_message("it's done", "error")

    keys = runner.calls[0][-1]
    assert keys == ":echo '[ERROR] it''s done'<CR>"
    assert len(runner.calls) == 3


@pytest.mark.asyncio
async def test_broadcast_key_notation_is_typed_literally(orchestra, runner) -> None:
    runner.on(("nvim",))
    await orchestra.broadcast_message("press <Esc>dd to exit\nnow")

    keys = runner.calls[0][-1]
    assert keys == ":echo '[INFO] press <lt>Esc>dd to exit now'<CR>"
    assert keys.count("<CR>") == 1
    assert "\n" not in keys


@pytest.mark.asyncio
async def test_broadcast_merges_into_orchestra_state(orchestra, settings) -> None:
    settings.state_file.write_text(json.dumps({"lastSync": {"syncType": "config"}}))

    await orchestra.broadcast_message("hello", "command")

    state = json.loads(settings.state_file.read_text())
    assert state["lastSync"] == {"syncType": "config"}
    assert state["lastBroadcast"]["message"] == "hello"
    assert state["lastBroadcast"]["messageType"] == "command"
    assert len(state["lastBroadcast"]["results"]) == 3
    assert "timestamp" in state["lastBroadcast"]


@pytest.mark.asyncio
async def test_state_write_failure_is_advisory(orchestra, settings, tmp_path) -> None:
    settings.state_file = tmp_path / "missing-dir" / "state.json"
    result = await orchestra.broadcast_message("still works")
    assert len(result["results"]) == 3
    assert not settings.state_file.exists()


@pytest.mark.asyncio
async def test_corrupt_state_is_replaced(orchestra, settings) -> None:
    settings.state_file.write_text("{not json")
    await orchestra.broadcast_message("fresh")
    assert "lastBroadcast" in json.loads(settings.state_file.read_text())


@pytest.mark.asyncio
async def test_broadcast_rejects_unknown_type(orchestra, runner) -> None:
    with pytest.raises(InvalidArgumentError):
        await orchestra.broadcast_message("x", "loud")
    assert runner.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "sync_type,keys",
    [
        ("config", ":source $MYVIMRC<CR>"),
        ("session", ":SessionSave<CR>:SessionRestore<CR>"),
        ("buffers", ":bufdo e!<CR>"),
        ("all", ":source $MYVIMRC<CR>:bufdo e!<CR>"),
    ],
)
async def test_sync_sends_directive_to_each_instance(orchestra, runner, sync_type, keys) -> None:
    runner.on(remote_to("127.0.0.1:7778"))

    result = await orchestra.sync_instances(sync_type)

    assert [c[-1] for c in runner.calls] == [keys] * 3
    assert statuses(result) == [(7777, NOT_RESPONDING), (7778, SUCCESS), (7779, NOT_RESPONDING)]
    assert result["syncType"] == sync_type


@pytest.mark.asyncio
async def test_sync_rejects_unknown_type(orchestra, runner) -> None:
    with pytest.raises(InvalidArgumentError):
        await orchestra.sync_instances("everything")
    assert runner.calls == []


@pytest.mark.asyncio
async def test_fan_out_uses_configured_endpoints(settings, runner) -> None:
    settings.broadcast_ports = (9001, 9002)
    orchestra = Orchestra(settings, runner, NeovimClient(runner))
    result = await orchestra.broadcast_message("x")
    assert [r["endpoint"] for r in result["results"]] == ["127.0.0.1:9001", "127.0.0.1:9002"]


@pytest.mark.asyncio
async def test_fan_out_propagates_programming_errors() -> None:
    async def broken(endpoint: Endpoint):
        raise KeyError("bug")

    with pytest.raises(KeyError):
        await fan_out([Endpoint("127.0.0.1", 1)], broken)


@pytest.mark.asyncio
async def test_run_script_missing_fails_before_exec(orchestra, runner) -> None:
    with pytest.raises(NotFoundError):
        await orchestra.run_script("nope")
    assert runner.calls == []
    assert runner.detached == []


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["../etc/passwd", "sub/script", ".hidden", ""])
async def test_run_script_rejects_paths(orchestra, name) -> None:
    with pytest.raises(NotFoundError):
        await orchestra.run_script(name)


@pytest.mark.asyncio
async def test_run_script_sync_returns_output(orchestra, runner, settings) -> None:
    (settings.scripts_dir / "layout.sh").write_text("echo hi\n")
    runner.on(("bash",), stdout="hi")

    result = await orchestra.run_script("layout", ["a", "b"])

    assert runner.calls == [("bash", str(settings.scripts_dir / "layout.sh"), "a", "b")]
    assert result["result"] == "hi"
    assert result["async"] is False
    assert result["script"] == "layout"


@pytest.mark.asyncio
async def test_run_script_falls_back_to_stderr_then_placeholder(orchestra, runner, settings) -> None:
    (settings.scripts_dir / "quiet.sh").write_text("")
    runner.on(("bash",), stderr="warned")
    assert (await orchestra.run_script("quiet"))["result"] == "warned"

    runner.on(("bash",))
    assert (await orchestra.run_script("quiet.sh"))["result"] == SCRIPT_DONE


@pytest.mark.asyncio
async def test_run_script_async_is_fire_and_forget(orchestra, runner, settings) -> None:
    (settings.scripts_dir / "watch.sh").write_text("sleep 100\n")

    result = await orchestra.run_script("watch", ["--fast"], run_async=True)

    assert result["result"] == SCRIPT_STARTED
    assert result["async"] is True
    assert runner.detached == [("bash", str(settings.scripts_dir / "watch.sh"), "--fast")]
    assert runner.calls == []


@pytest.mark.asyncio
async def test_run_script_via_dispatcher(server, runner, settings) -> None:
    (settings.scripts_dir / "bg.sh").write_text("")
    result = await server.call_tool("run-script", {"scriptName": "bg", "async": True})
    payload = json.loads(result[0].text)
    assert payload["result"] == SCRIPT_STARTED
    assert len(runner.detached) == 1
