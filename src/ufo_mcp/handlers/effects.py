"""Effect handlers: catalog CRUD and the play/stop stack operations.

Handlers: play_effect, stop_effect, list_effects, add_effect, update_effect, delete_effect.
"""

import json
from datetime import datetime, timezone
from typing import Optional

from mcp.types import TextContent

from ..effects import is_seed_effect
from ..errors import EffectStoreError, RequestValidationError, UfoError
from ..requests import AddEffectRequest, DeleteEffectRequest, PlayEffectRequest, UpdateEffectRequest
from ..state import EffectStackEntry


def _result(payload: dict) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2))]


def _error(message: str) -> list[TextContent]:
    return _result({"error": message})


async def restore_previous(restore: Optional[EffectStackEntry]) -> str:
    """Put the device back to ``restore`` after a pop, or clear it if None.

    The restored pattern is folded into the shadow so it tracks what was sent.
    Returns the query that was sent. Device failures propagate as UfoError.
    """
    from ..server import _get_client, _get_config, _get_state

    state = _get_state()
    client = _get_client()
    broadcaster = state.broadcaster

    if restore is not None:
        query = restore.pattern
        try:
            await client.send_raw_query(query)
        except UfoError as e:
            broadcaster.publish_raw_executed(query, f"ERROR: {e}")
            raise
        state.apply_query(query)
        broadcaster.publish_raw_executed(query, "OK (restored)")
        broadcaster.publish_effect_resumed(restore.name, stackDepth=state.get_effect_stack_depth())
        return query

    query = _get_config().state.clear_query
    try:
        await client.send_raw_query(query)
    except UfoError as e:
        broadcaster.publish_raw_executed(query, f"ERROR: {e}")
        raise
    state.reset()
    broadcaster.publish_raw_executed(query, "OK (cleared)")
    return query


def _on_effect_expired(name: str):
    async def _restore(restore: Optional[EffectStackEntry]):
        from ..server import _get_state

        await restore_previous(restore)
        state = _get_state()
        state.broadcaster.publish_effect_completed(name, stackDepth=state.get_effect_stack_depth())
    return _restore


async def handle_play_effect(arguments: dict) -> list[TextContent]:
    """Send a catalog effect and push it onto the stack; timed effects expire on their own."""
    from ..server import _get_client, _get_state, _get_store, _get_timers

    try:
        request = PlayEffectRequest.from_arguments(arguments)
    except RequestValidationError as e:
        return _error(str(e))

    store = _get_store()
    effect = store.get(request.name)
    if effect is None:
        return _error(f"Error: Effect '{request.name}' not found. Use listEffects to see available effects.")

    duration = request.duration_ms if request.duration_ms is not None else effect.duration_ms

    state = _get_state()
    try:
        await _get_client().play_effect(effect.pattern)
    except UfoError as e:
        state.broadcaster.publish_raw_executed(effect.pattern, f"ERROR: {e}")
        return _error(f"Error: Failed to send effect to UFO: {e}")

    state.apply_query(effect.pattern)
    entry = state.push_effect(effect.name, effect.pattern, {
        "duration": duration,
        "perpetual": effect.perpetual,
        "startTime": datetime.now(timezone.utc).isoformat(),
    })
    depth = state.get_effect_stack_depth()
    state.broadcaster.publish_effect_started(effect.name, duration, pattern=effect.pattern, stackDepth=depth)

    result = {
        "success": True,
        "message": f"Effect '{effect.name}' started",
        "effect": effect.name,
        "description": effect.description,
        "pattern": effect.pattern,
        "stackDepth": depth,
    }
    if effect.perpetual:
        result["duration"] = "perpetual"
    elif duration > 0:
        _get_timers().schedule(entry, duration, _on_effect_expired(effect.name))
        result["durationMs"] = duration
    else:
        result["duration"] = "until stopped"

    return _result(result)


async def handle_stop_effect(arguments: dict) -> list[TextContent]:
    """Pop the current effect and restore whatever was showing before it."""
    from ..server import _get_state

    state = _get_state()
    current = state.get_current_effect()
    if current is None:
        return _result({"message": "No effect is currently running", "stackDepth": 0})

    restore = state.pop_effect()
    try:
        await restore_previous(restore)
    except UfoError as e:
        if restore is not None:
            return _error(f"Failed to resume previous effect: {e}")
        return _error(f"Failed to clear UFO: {e}")

    depth = state.get_effect_stack_depth()
    state.broadcaster.publish_effect_stopped(current.name, "manual", manual=True, stackDepth=depth)

    if restore is not None:
        message = f"Stopped '{current.name}' and resumed '{restore.name}' (stack depth: {depth})"
    else:
        message = f"Stopped '{current.name}' and cleared all LEDs (stack empty)"

    return _result({
        "success": True,
        "message": message,
        "stopped": current.name,
        "resumed": restore.name if restore is not None else None,
        "stackDepth": depth,
    })


async def handle_list_effects(arguments: dict) -> list[TextContent]:
    from ..server import _get_store

    effects = _get_store().list()
    return _result({
        "effects": [dict(e.to_dict(), seed=is_seed_effect(e.name)) for e in effects],
        "count": len(effects),
    })


async def handle_add_effect(arguments: dict) -> list[TextContent]:
    from ..server import _get_store

    try:
        request = AddEffectRequest.from_arguments(arguments)
    except RequestValidationError as e:
        return _error(str(e))

    store = _get_store()
    if request.name in store:
        return _error(f"Error: Effect '{request.name}' already exists. Use updateEffect to modify it.")

    effect = request.to_effect()
    try:
        store.add(effect)
    except EffectStoreError as e:
        return _error(f"Error: Failed to save effect: {e}")

    return _result({
        "success": True,
        "message": f"Successfully added new effect '{effect.name}'",
        "effect": store.get(effect.name).to_dict(),
    })


async def handle_update_effect(arguments: dict) -> list[TextContent]:
    from ..server import _get_store

    try:
        request = UpdateEffectRequest.from_arguments(arguments)
    except RequestValidationError as e:
        return _error(str(e))

    store = _get_store()
    existing = store.get(request.name)
    if existing is None:
        return _error(f"Error: Effect '{request.name}' not found. Use addEffect to create it first.")

    try:
        store.update(request.apply_to(existing))
    except EffectStoreError as e:
        return _error(f"Error: Failed to update effect: {e}")

    return _result({
        "success": True,
        "message": f"Successfully updated effect '{request.name}'",
        "updatedFields": request.updated_fields(),
        "effect": store.get(request.name).to_dict(),
    })


async def handle_delete_effect(arguments: dict) -> list[TextContent]:
    from ..server import _get_store

    try:
        request = DeleteEffectRequest.from_arguments(arguments)
    except RequestValidationError as e:
        return _error(str(e))

    store = _get_store()
    if request.name not in store:
        return _error(f"Error: Effect '{request.name}' not found")

    if is_seed_effect(request.name):
        return _error(f"Error: Cannot delete seed effect '{request.name}'. Only custom effects can be deleted.")

    try:
        removed = store.delete(request.name)
    except EffectStoreError as e:
        return _error(f"Error: Failed to delete effect: {e}")

    return _result({
        "success": True,
        "message": f"Successfully deleted effect '{request.name}'. This operation is permanent and cannot be undone.",
        "effect": removed.to_dict(),
    })
