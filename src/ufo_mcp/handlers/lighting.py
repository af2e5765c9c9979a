"""Lighting handlers: direct control of rings, logo and brightness.

Handlers: configure_lighting, set_brightness.
"""

import json

from mcp.types import TextContent

from ..errors import RequestValidationError, UfoError
from ..requests import ConfigureLightingRequest, SetBrightnessRequest
from ..state import CONFIG_EFFECT_NAME, MorphData
from .effects import restore_previous


async def handle_configure_lighting(arguments: dict) -> list[TextContent]:
    """
    Apply rings, logo and brightness in one device request.

    The resulting display is pushed as a ``__config__`` layer holding the full
    state query, so a later stop (or the optional duration) restores whatever
    was showing before.
    """
    from ..server import _get_client, _get_state, _get_timers

    try:
        request = ConfigureLightingRequest.from_arguments(arguments)
    except RequestValidationError as e:
        return [TextContent(type="text", text=json.dumps({"error": str(e)}))]

    query = request.build_query()
    if not query:
        return [TextContent(type="text", text=json.dumps({
            "message": "No lighting configuration provided"
        }))]

    state = _get_state()
    try:
        await _get_client().send_raw_query(query)
    except UfoError as e:
        state.broadcaster.publish_raw_executed(query, f"ERROR: {e}")
        return [TextContent(type="text", text=json.dumps({
            "error": f"Failed to configure lighting: {e}"
        }))]
    state.broadcaster.publish_raw_executed(query, "OK")

    state.apply_query(query)
    # Keep the requested morph timings rather than the device round trip
    for ring, ring_config in request.rings.items():
        if ring_config.morph is not None:
            state.update_morph(ring, MorphData(ring_config.morph.brightness_ms, ring_config.morph.fade_ms))

    entry = state.push_effect(CONFIG_EFFECT_NAME, state.build_state_query(), {
        "synthetic": True,
        "perpetual": True,
    })

    details = request.describe()
    result = {
        "success": True,
        "message": "UFO lighting configured successfully",
        "details": details,
        "query": query,
        "stackDepth": state.get_effect_stack_depth(),
    }

    if request.duration_ms > 0:
        _get_timers().schedule(entry, request.duration_ms, restore_previous)
        result["durationMs"] = request.duration_ms
        details.append(f"Duration: {request.duration_ms / 1000:.1f} seconds")

    return [TextContent(type="text", text=json.dumps(result, indent=2))]


async def handle_set_brightness(arguments: dict) -> list[TextContent]:
    """Set global brightness without touching the effect stack."""
    from ..server import _get_client, _get_state

    try:
        request = SetBrightnessRequest.from_arguments(arguments)
    except RequestValidationError as e:
        return [TextContent(type="text", text=json.dumps({"error": str(e)}))]

    state = _get_state()
    query = f"dim={request.level}"
    try:
        await _get_client().set_brightness(request.level)
    except UfoError as e:
        state.broadcaster.publish_raw_executed(query, f"ERROR: {e}")
        return [TextContent(type="text", text=json.dumps({
            "error": f"Failed to set brightness: {e}"
        }))]

    state.broadcaster.publish_raw_executed(query, "OK")
    state.update_brightness(request.level)

    percentage = request.level * 100 // 255
    return [TextContent(type="text", text=json.dumps({
        "success": True,
        "message": f"Brightness set to {request.level}/255 ({percentage}%) successfully",
        "level": request.level,
    }))]
