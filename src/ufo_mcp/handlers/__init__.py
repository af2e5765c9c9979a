"""MCP tool handlers, grouped by area.

Each handler takes the tool's ``arguments`` dict and returns a JSON payload
as TextContent. Failures come back as ``{"error": ...}`` rather than raising.
"""

from .lighting import (
    handle_configure_lighting,
    handle_set_brightness,
)

from .effects import (
    handle_play_effect,
    handle_stop_effect,
    handle_list_effects,
    handle_add_effect,
    handle_update_effect,
    handle_delete_effect,
)

from .state_queries import (
    handle_get_led_state,
)

from .raw_api import (
    handle_send_raw_api,
)

__all__ = [
    # Lighting (device + shadow + stack)
    "handle_configure_lighting",
    "handle_set_brightness",
    # Effects (catalog + stack)
    "handle_play_effect",
    "handle_stop_effect",
    "handle_list_effects",
    "handle_add_effect",
    "handle_update_effect",
    "handle_delete_effect",
    # State queries (read-only)
    "handle_get_led_state",
    # Raw device access
    "handle_send_raw_api",
]
