"""Tests for the MCP tool handlers against a fake device."""

import pytest

from conftest import drain_events, drain_timers, parse_result

from ufo_mcp.errors import DeviceError, DeviceUnavailableError
from ufo_mcp.events import EventType
from ufo_mcp.handlers import (
    handle_add_effect,
    handle_configure_lighting,
    handle_delete_effect,
    handle_get_led_state,
    handle_list_effects,
    handle_play_effect,
    handle_send_raw_api,
    handle_set_brightness,
    handle_stop_effect,
    handle_update_effect,
)
from ufo_mcp.query import CLEAR_QUERY
from ufo_mcp.state import CONFIG_EFFECT_NAME, MorphData


RED_TOP = {"top": {"segments": ["0|15|FF0000"]}}
RED_TOP_LAYER = "dim=255&top_init=1&top=0|15|FF0000&bottom_init=1&logo=off"


class TestPlayEffect:

    @pytest.mark.asyncio
    async def test_play_seed_effect(self, running_server, fake_client):
        data = parse_result(await handle_play_effect({"name": "rainbow"}))

        assert data["success"] is True
        assert data["stackDepth"] == 1
        assert data["durationMs"] == 15000
        assert fake_client.queries == ["effect=rainbow"]
        assert running_server._get_state().snapshot().effect == "rainbow"
        assert running_server._get_timers().pending == 1

    @pytest.mark.asyncio
    async def test_unknown_effect(self, running_server):
        data = parse_result(await handle_play_effect({"name": "disco"}))
        assert data["error"] == "Error: Effect 'disco' not found. Use listEffects to see available effects."

    @pytest.mark.asyncio
    async def test_missing_name(self, running_server):
        data = parse_result(await handle_play_effect({}))
        assert "'name' parameter is required" in data["error"]

    @pytest.mark.asyncio
    async def test_zero_duration_runs_until_stopped(self, running_server):
        data = parse_result(await handle_play_effect({"name": "rainbow", "duration": 0}))
        assert data["duration"] == "until stopped"
        assert running_server._get_timers().pending == 0

    @pytest.mark.asyncio
    async def test_perpetual_effect_has_no_timer(self, running_server):
        await handle_add_effect({
            "name": "forever", "description": "d", "pattern": "logo=on", "perpetual": True,
        })
        data = parse_result(await handle_play_effect({"name": "forever"}))
        assert data["duration"] == "perpetual"
        assert running_server._get_timers().pending == 0

    @pytest.mark.asyncio
    async def test_pattern_folded_into_shadow(self, running_server):
        await handle_play_effect({"name": "policeLights"})
        snap = running_server._get_state().snapshot()
        assert snap.top[10] == "ffffff"
        assert snap.top_whirl_ms == (256 - 252) * 15
        assert snap.bottom_whirl_ms == (256 - 250) * 15

    @pytest.mark.asyncio
    async def test_timed_effect_clears_when_done(self, running_server, fake_client):
        sub = running_server._get_state().broadcaster.subscribe("test")

        await handle_play_effect({"name": "rainbow", "duration": 20})
        await drain_timers()

        assert fake_client.queries == ["effect=rainbow", CLEAR_QUERY]
        assert running_server._get_state().get_effect_stack_depth() == 0
        types = [e.type for e in drain_events(sub)]
        assert types[0] == EventType.EFFECT_STARTED
        assert types[-1] == EventType.EFFECT_COMPLETED

    @pytest.mark.asyncio
    async def test_timed_effect_restores_layer_below(self, running_server, fake_client):
        await handle_configure_lighting(RED_TOP)
        await handle_play_effect({"name": "pipelineDemo", "duration": 20})
        await drain_timers()

        state = running_server._get_state()
        assert fake_client.queries[-1] == RED_TOP_LAYER
        assert state.get_current_effect().name == CONFIG_EFFECT_NAME
        assert state.snapshot().top == ["FF0000"] * 15

    @pytest.mark.asyncio
    async def test_restore_keeps_extended_whirl(self, running_server, fake_client):
        """A whirl in the 256-510 range comes back exactly, direction included."""
        await handle_configure_lighting({
            "top": {"segments": ["0|15|FF0000"], "whirl": 400, "counterClockwise": True},
        })
        await handle_play_effect({"name": "pipelineDemo", "duration": 20})
        await drain_timers()

        assert fake_client.queries[-1] == (
            "dim=255&top_init=1&top=0|15|FF0000&top_whirl=400|ccw&bottom_init=1&logo=off"
        )

    @pytest.mark.asyncio
    async def test_device_failure_leaves_stack_alone(self, running_server, fake_client):
        fake_client.error = DeviceUnavailableError("down")
        data = parse_result(await handle_play_effect({"name": "rainbow"}))
        assert data["error"] == "Error: Failed to send effect to UFO: down"
        assert running_server._get_state().get_effect_stack_depth() == 0


class TestStopEffect:

    @pytest.mark.asyncio
    async def test_nothing_running(self, running_server):
        data = parse_result(await handle_stop_effect({}))
        assert data == {"message": "No effect is currently running", "stackDepth": 0}

    @pytest.mark.asyncio
    async def test_stop_resumes_previous_layer(self, running_server, fake_client):
        await handle_configure_lighting(RED_TOP)
        await handle_play_effect({"name": "pipelineDemo"})

        data = parse_result(await handle_stop_effect({}))

        assert data["stopped"] == "pipelineDemo"
        assert data["resumed"] == CONFIG_EFFECT_NAME
        assert data["stackDepth"] == 1
        assert fake_client.queries[-1] == RED_TOP_LAYER
        assert running_server._get_state().snapshot().top == ["FF0000"] * 15

    @pytest.mark.asyncio
    async def test_stop_last_layer_clears(self, running_server, fake_client):
        await handle_play_effect({"name": "rainbow"})
        data = parse_result(await handle_stop_effect({}))

        assert data["resumed"] is None
        assert data["stackDepth"] == 0
        assert fake_client.queries[-1] == CLEAR_QUERY

    @pytest.mark.asyncio
    async def test_stop_last_layer_restores_base_state(self, running_server, fake_client):
        running_server._get_state().set_base_state("logo=on")
        await handle_play_effect({"name": "rainbow"})

        data = parse_result(await handle_stop_effect({}))

        assert data["resumed"] == "__base_state__"
        assert fake_client.queries[-1] == "logo=on"
        assert running_server._get_state().snapshot().logo_on is True

    @pytest.mark.asyncio
    async def test_manual_stop_defuses_timer(self, running_server, fake_client):
        await handle_configure_lighting(RED_TOP)
        await handle_play_effect({"name": "rainbow", "duration": 20})
        await handle_configure_lighting({"logo": {"state": "on"}})
        await handle_stop_effect({})  # removes the logo layer, not rainbow
        await handle_stop_effect({})  # removes rainbow manually
        sent = len(fake_client.queries)

        await drain_timers()

        state = running_server._get_state()
        assert state.get_effect_stack_depth() == 1
        assert state.get_current_effect().name == CONFIG_EFFECT_NAME
        assert len(fake_client.queries) == sent

    @pytest.mark.asyncio
    async def test_clear_failure(self, running_server, fake_client):
        await handle_play_effect({"name": "rainbow"})
        fake_client.error = DeviceUnavailableError("down")

        data = parse_result(await handle_stop_effect({}))

        assert data["error"] == "Failed to clear UFO: down"


class TestConfigureLighting:

    @pytest.mark.asyncio
    async def test_pushes_config_layer(self, running_server, fake_client):
        data = parse_result(await handle_configure_lighting(dict(RED_TOP, brightness=100)))

        assert data["success"] is True
        assert data["query"] == "dim=100&top_init=1&top=0|15|FF0000"
        assert data["stackDepth"] == 1
        assert fake_client.queries == ["dim=100&top_init=1&top=0|15|FF0000"]

        entry = running_server._get_state().get_current_effect()
        assert entry.name == CONFIG_EFFECT_NAME
        assert entry.synthetic and entry.perpetual
        assert entry.pattern == "dim=100&top_init=1&top=0|15|FF0000&bottom_init=1&logo=off"

    @pytest.mark.asyncio
    async def test_requested_morph_kept_exactly(self, running_server):
        await handle_configure_lighting({
            "top": {"segments": ["0|15|00FF00"], "morph": {"brightnessMs": 1000, "fadeMs": 400}},
        })
        state = running_server._get_state()
        assert state.snapshot().top_morph == MorphData(1000, 400)
        assert "top_morph=150|8" in state.get_current_effect().pattern

    @pytest.mark.asyncio
    async def test_duration_restores_previous(self, running_server, fake_client):
        data = parse_result(await handle_configure_lighting(dict(RED_TOP, duration=60)))
        assert data["durationMs"] == 60

        await drain_timers()

        assert fake_client.queries[-1] == CLEAR_QUERY
        assert running_server._get_state().get_effect_stack_depth() == 0
        assert running_server._get_state().snapshot().top == ["000000"] * 15

    @pytest.mark.asyncio
    async def test_empty_request(self, running_server, fake_client):
        data = parse_result(await handle_configure_lighting({}))
        assert data == {"message": "No lighting configuration provided"}
        assert fake_client.queries == []

    @pytest.mark.asyncio
    async def test_validation_error(self, running_server):
        data = parse_result(await handle_configure_lighting({"brightness": 999}))
        assert data["error"] == "Error: brightness must be between 0 and 255"

    @pytest.mark.asyncio
    async def test_device_failure(self, running_server, fake_client):
        fake_client.error = DeviceError(500, "boom")
        data = parse_result(await handle_configure_lighting(RED_TOP))
        assert data["error"] == "Failed to configure lighting: UFO API error: 500 - boom"
        assert running_server._get_state().get_effect_stack_depth() == 0


class TestSetBrightness:

    @pytest.mark.asyncio
    async def test_sets_shadow(self, running_server, fake_client):
        data = parse_result(await handle_set_brightness({"level": 128}))

        assert data["message"] == "Brightness set to 128/255 (50%) successfully"
        assert fake_client.queries == ["dim=128"]
        assert running_server._get_state().snapshot().brightness == 128
        assert running_server._get_state().get_effect_stack_depth() == 0

    @pytest.mark.asyncio
    async def test_out_of_range(self, running_server, fake_client):
        data = parse_result(await handle_set_brightness({"level": -5}))
        assert data["error"] == "Error: brightness level must be between 0 and 255"
        assert fake_client.queries == []


class TestSendRawApi:

    @pytest.mark.asyncio
    async def test_updates_shadow(self, running_server, fake_client):
        data = parse_result(await handle_send_raw_api({"query": "dim=50&logo=on"}))

        assert data["success"] is True
        assert data["response"] == "OK"
        assert data["shadowUpdates"] == 2
        snap = running_server._get_state().snapshot()
        assert snap.brightness == 50
        assert snap.logo_on is True

    @pytest.mark.asyncio
    async def test_unsafe_query_not_sent(self, running_server, fake_client):
        data = parse_result(await handle_send_raw_api({"query": "effect=<script>"}))
        assert data["error"] == "Error: Query contains potentially unsafe characters"
        assert fake_client.queries == []

    @pytest.mark.asyncio
    async def test_device_error(self, running_server, fake_client):
        fake_client.error = DeviceError(500, "x")
        data = parse_result(await handle_send_raw_api({"query": "dim=1"}))
        assert data["error"] == "UFO communication error: UFO API error: 500 - x"


class TestGetLedState:

    @pytest.mark.asyncio
    async def test_payload(self, running_server):
        await handle_configure_lighting(RED_TOP)
        data = parse_result(await handle_get_led_state({}))

        assert data["state"]["top"] == ["FF0000"] * 15
        assert data["state"]["effect"] == CONFIG_EFFECT_NAME
        assert data["stackDepth"] == 1
        assert data["effectStack"][0]["name"] == CONFIG_EFFECT_NAME
        assert data["baseState"] == ""
        assert data["query"] == RED_TOP_LAYER


class TestEffectCatalog:

    @pytest.mark.asyncio
    async def test_list_seeds(self, running_server):
        data = parse_result(await handle_list_effects({}))
        assert data["count"] == 5
        assert all(e["seed"] for e in data["effects"])

    @pytest.mark.asyncio
    async def test_add_then_list(self, running_server):
        data = parse_result(await handle_add_effect({
            "name": "alert", "description": "Red alert", "pattern": "top=0|15|FF0000", "duration": 30,
        }))
        assert data["success"] is True
        assert data["effect"]["duration"] == 30000

        listing = parse_result(await handle_list_effects({}))
        assert listing["count"] == 6
        alert = next(e for e in listing["effects"] if e["name"] == "alert")
        assert alert["seed"] is False

    @pytest.mark.asyncio
    async def test_add_duplicate(self, running_server):
        data = parse_result(await handle_add_effect({
            "name": "rainbow", "description": "d", "pattern": "effect=rainbow",
        }))
        assert data["error"] == "Error: Effect 'rainbow' already exists. Use updateEffect to modify it."

    @pytest.mark.asyncio
    async def test_update(self, running_server):
        data = parse_result(await handle_update_effect({"name": "rainbow", "duration": 5000}))
        assert data["updatedFields"] == ["duration"]
        assert data["effect"]["duration"] == 5000
        assert running_server._get_store().get("rainbow").duration_ms == 5000

    @pytest.mark.asyncio
    async def test_update_missing(self, running_server):
        data = parse_result(await handle_update_effect({"name": "ghost", "pattern": "dim=1"}))
        assert data["error"] == "Error: Effect 'ghost' not found. Use addEffect to create it first."

    @pytest.mark.asyncio
    async def test_delete_custom(self, running_server):
        await handle_add_effect({"name": "temp", "description": "t", "pattern": "dim=1"})
        data = parse_result(await handle_delete_effect({"name": "temp"}))
        assert data["success"] is True
        assert "temp" not in running_server._get_store()

    @pytest.mark.asyncio
    async def test_delete_seed_refused(self, running_server):
        data = parse_result(await handle_delete_effect({"name": "rainbow"}))
        assert data["error"] == "Error: Cannot delete seed effect 'rainbow'. Only custom effects can be deleted."

    @pytest.mark.asyncio
    async def test_delete_missing(self, running_server):
        data = parse_result(await handle_delete_effect({"name": "ghost"}))
        assert data["error"] == "Error: Effect 'ghost' not found"
