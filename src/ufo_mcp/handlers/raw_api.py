"""Raw device access: queries typed as in the UFO web UI.

Handlers: send_raw_api.
"""

import json

from mcp.types import TextContent

from ..errors import RequestValidationError, UfoError
from ..requests import SendRawApiRequest


async def handle_send_raw_api(arguments: dict) -> list[TextContent]:
    """
    Send a query string to /api unchanged.

    The effect stack is left alone, but whatever the query sets is folded into
    the shadow so getLedState keeps matching the device.
    """
    from ..server import _get_client, _get_state

    try:
        request = SendRawApiRequest.from_arguments(arguments)
    except RequestValidationError as e:
        return [TextContent(type="text", text=json.dumps({"error": str(e)}))]

    state = _get_state()
    try:
        response = await _get_client().send_raw_query(request.query)
    except UfoError as e:
        state.broadcaster.publish_raw_executed(request.query, f"ERROR: {e}")
        return [TextContent(type="text", text=json.dumps({
            "error": f"UFO communication error: {e}"
        }))]

    state.broadcaster.publish_raw_executed(request.query, "OK")
    applied = state.apply_query(request.query)

    return [TextContent(type="text", text=json.dumps({
        "success": True,
        "message": "Raw API executed successfully",
        "query": request.query,
        "response": response,
        "shadowUpdates": applied,
    }, indent=2))]
