"""State query handlers: read-only views of the shadow state.

Handlers: get_led_state.
"""

import json

from mcp.types import TextContent


def led_state_payload() -> dict:
    """Shadow state plus the stack, as served by getLedState."""
    from ..server import _get_state

    state = _get_state()
    return {
        "state": state.snapshot().to_dict(),
        "effectStack": [entry.to_dict() for entry in state.get_effect_stack()],
        "stackDepth": state.get_effect_stack_depth(),
        "baseState": state.get_base_state(),
        "query": state.build_state_query(),
    }


async def handle_get_led_state(arguments: dict) -> list[TextContent]:
    """Current LED colours, brightness, logo, animations and running effect."""
    return [TextContent(type="text", text=json.dumps(led_state_payload(), indent=2))]
