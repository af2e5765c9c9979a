"""
UFO MCP - control plane for a Dynatrace UFO lamp

The lamp takes commands and reports nothing back. This package keeps the
shadow copy of what it is showing, a stack of layered effects that can be
unwound, and the MCP tools that drive both.
"""

__version__ = "1.0.1"

# Core exports
from .conversions import (
    MorphConfig,
    convert_morph_to_device,
    convert_morph_from_device,
    convert_whirl_to_device,
    convert_device_whirl_to_ms,
)
from .segments import encode_segments, decode_segments
from .events import Broadcaster, Event, EventType
from .state import StateManager, LedState, MorphData, EffectStackEntry
from .config import UfoConfig, DeviceConfig, ServerConfig, StateConfig, ConfigManager, get_config_manager

__all__ = [
    "MorphConfig",
    "convert_morph_to_device",
    "convert_morph_from_device",
    "convert_whirl_to_device",
    "convert_device_whirl_to_ms",
    "encode_segments",
    "decode_segments",
    "Broadcaster",
    "Event",
    "EventType",
    "StateManager",
    "LedState",
    "MorphData",
    "EffectStackEntry",
    "UfoConfig",
    "DeviceConfig",
    "ServerConfig",
    "StateConfig",
    "ConfigManager",
    "get_config_manager",
]
