"""MCP Tool Registry: tool definitions, handler mapping, and server factory.

This module contains:
- TOOLS: Tool schema definitions
- HANDLERS: Maps tool names to handler functions
- RESOURCES: ufo://status and ufo://ledstate
- get_fastmcp() / create_server(): Server factory functions
"""

import inspect
import json
import logging
import sys
from typing import Optional

from mcp.server import Server
from mcp.server.fastmcp import FastMCP
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.types import Resource, Tool, TextContent

from . import __version__
from .handlers import (
    # Lighting
    handle_configure_lighting, handle_set_brightness,
    # Effects
    handle_play_effect, handle_stop_effect, handle_list_effects,
    handle_add_effect, handle_update_effect, handle_delete_effect,
    # State queries
    handle_get_led_state,
    # Raw device access
    handle_send_raw_api,
)

logger = logging.getLogger(__name__)

SERVER_NAME = "dynatrace-ufo"

INSTRUCTIONS = """This MCP server controls a Dynatrace UFO lighting device.

The device cannot report what it is showing; this server keeps a shadow copy.
Read ufo://ledstate (or call getLedState) to see current LED colours.

configureLighting and playEffect layer on top of what is showing; stopEffect
removes the top layer and restores the one below it. Use sendRawApi for
direct device queries."""


_RING_SCHEMA = {
    "type": "object",
    "properties": {
        "segments": {
            "type": "array",
            "description": "Segment patterns 'LED_INDEX|COUNT|RRGGBB', e.g. '0|5|FF0000'",
            "items": {"type": "string"},
        },
        "background": {
            "type": "string",
            "description": "Background colour for unlit LEDs (6-char hex)",
            "pattern": "^[0-9A-Fa-f]{6}$",
        },
        "whirl": {
            "type": "integer",
            "description": "Rotation speed as the device value (1-510, 0 = off)",
            "minimum": 0,
            "maximum": 510,
        },
        "counterClockwise": {
            "type": "boolean",
            "description": "Rotate counter-clockwise",
            "default": False,
        },
        "morph": {
            "type": "object",
            "description": "Pulse/fade animation",
            "properties": {
                "brightnessMs": {
                    "type": "integer",
                    "description": "Time at full brightness in milliseconds",
                    "minimum": 0,
                },
                "fadeMs": {
                    "type": "integer",
                    "description": "Fade transition in milliseconds",
                    "minimum": 100,
                    "maximum": 10000,
                },
            },
            "required": ["brightnessMs", "fadeMs"],
        },
    },
}


# ============================================================
# Tool Registry
# ============================================================
TOOLS = [
    Tool(
        name="configureLighting",
        description=(
            "Configure rings, logo and brightness in one request. The result is layered on "
            "top of what is showing; with 'duration' it is undone automatically."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "top": dict(_RING_SCHEMA, description="Top ring configuration"),
                "bottom": dict(_RING_SCHEMA, description="Bottom ring configuration"),
                "logo": {
                    "type": "object",
                    "description": "Logo configuration",
                    "properties": {
                        "state": {"type": "string", "enum": ["on", "off"]},
                        "color1": {"type": "string", "pattern": "^[0-9A-Fa-f]{6}$"},
                        "color2": {"type": "string", "pattern": "^[0-9A-Fa-f]{6}$"},
                    },
                },
                "brightness": {
                    "type": "integer",
                    "description": "Global brightness (0-255)",
                    "minimum": 0,
                    "maximum": 255,
                },
                "duration": {
                    "type": "integer",
                    "description": "Milliseconds until the previous display is restored (values under 50 are seconds)",
                    "minimum": 0,
                },
            },
        },
    ),
    Tool(
        name="playEffect",
        description="Play a lighting effect by name. Timed effects restore the previous display when they end.",
        inputSchema={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Effect name, e.g. 'rainbow', 'policeLights'"},
                "duration": {
                    "type": "integer",
                    "description": "Override duration in milliseconds (0 = until stopped)",
                    "minimum": 0,
                    "maximum": 3600000,
                },
            },
            "required": ["name"],
        },
    ),
    Tool(
        name="stopEffect",
        description="Stop the current effect or configuration and restore what was showing before it",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="getLedState",
        description="Current LED colours, brightness, logo, animations and the effect stack (shadow state)",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="listEffects",
        description="List all stored lighting effects",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="addEffect",
        description="Add a custom lighting effect to the catalog. Names must be unique.",
        inputSchema={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Letters, numbers and underscores"},
                "description": {"type": "string"},
                "pattern": {"type": "string", "description": "UFO API query, e.g. 'top=0|5|FF0000&top_whirl=240'"},
                "duration": {"type": "integer", "description": "Duration in seconds (0-3600)", "minimum": 0, "maximum": 3600},
                "perpetual": {"type": "boolean", "description": "Run until stopped"},
            },
            "required": ["name", "description", "pattern"],
        },
    ),
    Tool(
        name="updateEffect",
        description="Update fields of an existing effect",
        inputSchema={
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "description": {"type": "string"},
                "pattern": {"type": "string"},
                "duration": {"type": "integer", "description": "Duration in milliseconds", "minimum": 0, "maximum": 3600000},
                "perpetual": {"type": "boolean"},
            },
            "required": ["name"],
        },
    ),
    Tool(
        name="deleteEffect",
        description="Delete a custom effect. Built-in effects cannot be deleted.",
        inputSchema={
            "type": "object",
            "properties": {"name": {"type": "string"}},
            "required": ["name"],
        },
    ),
    Tool(
        name="sendRawApi",
        description="Send a raw query string exactly as typed in the UFO web UI, e.g. 'effect=rainbow&dim=100'",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Query without the leading '?' or '/api'"},
            },
            "required": ["query"],
        },
    ),
    Tool(
        name="setBrightness",
        description="Set global brightness (0-255)",
        inputSchema={
            "type": "object",
            "properties": {
                "level": {"type": "integer", "minimum": 0, "maximum": 255},
            },
            "required": ["level"],
        },
    ),
]


# ============================================================
# Tool Handlers - Maps tool names to handler functions
# ============================================================
HANDLERS = {
    "configureLighting": handle_configure_lighting,
    "playEffect": handle_play_effect,
    "stopEffect": handle_stop_effect,
    "getLedState": handle_get_led_state,
    "listEffects": handle_list_effects,
    "addEffect": handle_add_effect,
    "updateEffect": handle_update_effect,
    "deleteEffect": handle_delete_effect,
    "sendRawApi": handle_send_raw_api,
    "setBrightness": handle_set_brightness,
}


# ============================================================
# Resources
# ============================================================
STATUS_URI = "ufo://status"
LEDSTATE_URI = "ufo://ledstate"

RESOURCES = [
    Resource(
        uri=STATUS_URI,
        name="UFO Status",
        description="Device reachability and raw /api response",
        mimeType="application/json",
    ),
    Resource(
        uri=LEDSTATE_URI,
        name="UFO LED State",
        description="Shadow copy of LED colours, brightness, logo and running effect",
        mimeType="application/json",
    ),
]


async def read_status() -> str:
    """Ping the device; device errors propagate to the MCP caller."""
    from .server import _get_client, _get_config

    status = await _get_client().get_status()
    return json.dumps({
        "timestamp": status["timestamp"],
        "ufo_response": status["response"],
        "ufo_ip": _get_config().device.host,
    }, indent=2)


async def read_ledstate() -> str:
    from .server import _get_state

    return _get_state().to_json()


RESOURCE_READERS = {
    STATUS_URI: read_status,
    LEDSTATE_URI: read_ledstate,
}


# ============================================================
# FastMCP Setup
# ============================================================
_fastmcp: Optional[FastMCP] = None


def _json_type_to_python(json_type):
    """Convert JSON Schema type to Python type annotation."""
    type_map = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "array": list,
        "object": dict,
    }
    if isinstance(json_type, list):
        non_null = [t for t in json_type if t != "null"]
        return type_map.get(non_null[0], str) if non_null else str
    return type_map.get(json_type, str)


def _create_tool_wrapper(handler, tool_name: str, tool_def: Optional[Tool] = None):
    """
    Create a tool wrapper function with proper typed signature.

    Gives the wrapper explicit keyword parameters from the tool's inputSchema
    so FastMCP can introspect it; the handler still receives a plain dict.
    """
    params = []
    if tool_def is not None:
        schema = tool_def.inputSchema
        required = set(schema.get("required", []))
        for param_name, param_def in schema.get("properties", {}).items():
            ptype = _json_type_to_python(param_def.get("type", "string"))
            if param_name in required:
                params.append(inspect.Parameter(
                    param_name, inspect.Parameter.KEYWORD_ONLY, annotation=ptype,
                ))
            else:
                params.append(inspect.Parameter(
                    param_name, inspect.Parameter.KEYWORD_ONLY, default=None, annotation=Optional[ptype],
                ))

    sig = inspect.Signature(params, return_annotation=dict)

    async def typed_wrapper(**kwargs):
        args = {k: v for k, v in kwargs.items() if v is not None}
        result = await handler(args)
        if result and hasattr(result[0], "text"):
            text = result[0].text
            try:
                return json.loads(text)
            except (json.JSONDecodeError, TypeError):
                return {"text": text}
        return {"result": None}

    typed_wrapper.__signature__ = sig
    typed_wrapper.__name__ = tool_name
    typed_wrapper.__qualname__ = tool_name

    return typed_wrapper


def get_fastmcp(host: str = "0.0.0.0", port: int = 8080) -> FastMCP:
    """Get or create the FastMCP server instance (HTTP transport)."""
    global _fastmcp
    if _fastmcp is None:
        _fastmcp = FastMCP(
            name=SERVER_NAME,
            instructions=INSTRUCTIONS,
            host=host,
            port=port,
            streamable_http_path="/mcp",
            json_response=True,
            stateless_http=True,
        )

        print(f"[FastMCP] Registering {len(HANDLERS)} tools...", file=sys.stderr, flush=True)
        for tool_name, handler in HANDLERS.items():
            tool_def = next((t for t in TOOLS if t.name == tool_name), None)
            description = tool_def.description if tool_def else f"Tool: {tool_name}"
            wrapper = _create_tool_wrapper(handler, tool_name, tool_def)
            _fastmcp.tool(name=tool_name, description=description)(wrapper)

        for resource in RESOURCES:
            reader = RESOURCE_READERS[str(resource.uri)]
            _fastmcp.resource(
                str(resource.uri),
                name=resource.name,
                description=resource.description,
                mime_type=resource.mimeType,
            )(reader)

        print("[FastMCP] All tools registered", file=sys.stderr, flush=True)

    return _fastmcp


def create_server() -> Server:
    """Create and configure the low-level MCP server (stdio)."""
    server = Server(SERVER_NAME, version=__version__, instructions=INSTRUCTIONS)

    @server.list_tools()
    async def list_tools():
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict | None):
        handler = HANDLERS.get(name)
        if not handler:
            return [TextContent(type="text", text=json.dumps({
                "error": f"Unknown tool: {name}",
                "available": list(HANDLERS.keys()),
            }))]
        return await handler(arguments or {})

    @server.list_resources()
    async def list_resources():
        return RESOURCES

    @server.read_resource()
    async def read_resource(uri):
        reader = RESOURCE_READERS.get(str(uri))
        if reader is None:
            raise ValueError(f"Unknown resource: {uri}")
        return [ReadResourceContents(content=await reader(), mime_type="application/json")]

    return server
