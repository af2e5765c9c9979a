"""Tests for tool registration, wrappers, resources and the server entry point."""

import inspect
import json

import pytest
from unittest.mock import AsyncMock

from mcp.server import Server
from mcp.types import TextContent

from ufo_mcp import server
from ufo_mcp.config import ConfigManager
from ufo_mcp.tool_registry import (
    HANDLERS,
    RESOURCES,
    TOOLS,
    _create_tool_wrapper,
    create_server,
    read_ledstate,
    read_status,
)


class TestRegistry:

    def test_every_tool_has_a_handler(self):
        assert {t.name for t in TOOLS} == set(HANDLERS)

    def test_tool_names(self):
        assert set(HANDLERS) == {
            "configureLighting", "playEffect", "stopEffect", "getLedState", "listEffects",
            "addEffect", "updateEffect", "deleteEffect", "sendRawApi", "setBrightness",
        }

    def test_resources(self):
        assert {str(r.uri) for r in RESOURCES} == {"ufo://status", "ufo://ledstate"}

    def test_create_server(self):
        assert isinstance(create_server(), Server)


class TestToolWrapper:

    def test_signature_from_schema(self):
        tool = next(t for t in TOOLS if t.name == "playEffect")
        wrapper = _create_tool_wrapper(AsyncMock(), "playEffect", tool)

        params = inspect.signature(wrapper).parameters
        assert params["name"].default is inspect.Parameter.empty
        assert params["duration"].default is None
        assert wrapper.__name__ == "playEffect"

    @pytest.mark.asyncio
    async def test_drops_none_and_decodes_json(self):
        handler = AsyncMock(return_value=[TextContent(type="text", text='{"ok": true}')])
        wrapper = _create_tool_wrapper(handler, "playEffect")

        result = await wrapper(name="rainbow", duration=None)

        handler.assert_awaited_once_with({"name": "rainbow"})
        assert result == {"ok": True}

    @pytest.mark.asyncio
    async def test_plain_text_wrapped(self):
        handler = AsyncMock(return_value=[TextContent(type="text", text="not json")])
        result = await _create_tool_wrapper(handler, "x")()
        assert result == {"text": "not json"}


class TestResources:

    @pytest.mark.asyncio
    async def test_ledstate(self, running_server):
        data = json.loads(await read_ledstate())
        assert data["dim"] == 255
        assert data["logoOn"] is False

    @pytest.mark.asyncio
    async def test_status(self, running_server, ufo_config):
        data = json.loads(await read_status())
        assert data["ufo_response"] == "OK"
        assert data["ufo_ip"] == ufo_config.device.host


class TestServerLifecycle:

    def test_getters_before_wake(self):
        with pytest.raises(RuntimeError, match="call wake"):
            server._get_state()

    @pytest.mark.asyncio
    async def test_sleep_closes_client(self, ufo_config, fake_client):
        server.wake(ufo_config, client=fake_client)
        await server.sleep()
        assert fake_client.closed
        with pytest.raises(RuntimeError):
            server._get_client()

    def test_base_state_from_config(self, ufo_config, fake_client):
        ufo_config.state.base_state = "logo=on"
        server.wake(ufo_config, client=fake_client)
        try:
            assert server._get_state().get_base_state() == "logo=on"
        finally:
            server._state = None
            server._client = None
            server._store = None
            server._timers = None


class TestCommandLine:

    def test_flags_override_config(self, tmp_path, monkeypatch):
        monkeypatch.setattr(server, "get_config_manager", lambda path=None: ConfigManager(tmp_path / "none.yaml", environ={}))
        args = server.build_parser().parse_args([
            "--http", "--port", "9090", "--ufo-ip", "10.1.1.1",
            "--effects-file", "/tmp/fx.json", "--log-level", "debug",
        ])

        config = server.load_config(args)

        assert args.http_server is True
        assert config.server.port == 9090
        assert config.device.host == "10.1.1.1"
        assert config.server.effects_file == "/tmp/fx.json"
        assert config.server.log_level == "DEBUG"

    def test_invalid_config_exits(self, tmp_path, monkeypatch):
        monkeypatch.setattr(server, "get_config_manager", lambda path=None: ConfigManager(tmp_path / "none.yaml", environ={}))
        with pytest.raises(SystemExit) as exc_info:
            server.main(["--log-level", "loud"])
        assert exc_info.value.code == 2
