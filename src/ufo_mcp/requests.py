"""
Typed tool requests.

Each MCP tool's loose ``arguments`` dict is turned into a dataclass here, once,
at the edge. ``from_arguments`` raises RequestValidationError whose message is
returned to the caller verbatim, so handlers only ever deal with checked values.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .conversions import MorphConfig, convert_duration_to_ms, convert_morph_to_device
from .device import build_ring_pattern_command
from .effects import Effect, MAX_DURATION_MS, is_valid_effect_name
from .errors import RequestValidationError
from .segments import RINGS, is_valid_hex_color, is_valid_segment

LOGO_OFF_PATTERN = "000000|000000|000000|000000"

WHIRL_MAX = 510
FADE_MS_MIN = 100
FADE_MS_MAX = 10000
# configure_lighting durations below this are taken to be seconds
SECONDS_THRESHOLD = 50
MAX_EFFECT_DURATION_S = 3600

DURATION_MS_RANGE_ERROR = "Error: 'duration' must be between 0 and 3600000 milliseconds (1 hour)"
DURATION_TYPE_ERROR = "Error: 'duration' must be a number"

_UNSAFE_QUERY_PATTERNS = (
    "<script", "</script", "javascript:", "data:", "vbscript:",
    "../", "..\\", "file://", "ftp://",
    "\x00",
)


def _is_number(value: Any) -> bool:
    """Finite int or float; JSON Infinity and NaN do not count."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _number(value: Any, error: str) -> int:
    if not _is_number(value):
        raise RequestValidationError(error)
    return int(value)


def _required_name(arguments: Dict[str, Any]) -> str:
    name = arguments.get("name")
    if not isinstance(name, str) or not name:
        raise RequestValidationError("Error: 'name' parameter is required and must be a non-empty string")
    return name


def _required_text(arguments: Dict[str, Any], key: str) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or not value:
        raise RequestValidationError(f"Error: '{key}' parameter is required and must be a non-empty string")
    return value


def _optional_text(arguments: Dict[str, Any], key: str) -> Optional[str]:
    if key not in arguments:
        return None
    value = arguments[key]
    if not isinstance(value, str) or not value:
        raise RequestValidationError(f"Error: '{key}' must be a non-empty string when provided")
    return value


def _optional_duration_ms(arguments: Dict[str, Any]) -> Optional[int]:
    if "duration" not in arguments:
        return None
    duration = _number(arguments["duration"], DURATION_TYPE_ERROR)
    if duration < 0 or duration > MAX_DURATION_MS:
        raise RequestValidationError(DURATION_MS_RANGE_ERROR)
    return duration


def contains_unsafe_characters(query: str) -> bool:
    lowered = query.lower()
    return any(pattern in lowered for pattern in _UNSAFE_QUERY_PATTERNS)


# ----------------------------------------------------------------------
# configure_lighting
# ----------------------------------------------------------------------

@dataclass
class MorphRequest:
    brightness_ms: int
    fade_ms: int

    @classmethod
    def from_arguments(cls, value: Any) -> "MorphRequest":
        if not isinstance(value, dict):
            raise ValueError("morph must be an object with brightnessMs and fadeMs properties")

        if "brightnessMs" not in value:
            raise ValueError("morph requires brightnessMs property")
        if not _is_number(value["brightnessMs"]):
            raise ValueError("brightnessMs must be a number")

        if "fadeMs" not in value:
            raise ValueError("morph requires fadeMs property")
        if not _is_number(value["fadeMs"]):
            raise ValueError("fadeMs must be a number")

        brightness_ms = int(value["brightnessMs"])
        fade_ms = int(value["fadeMs"])
        if brightness_ms < 0:
            raise ValueError("brightnessMs must be non-negative")
        if fade_ms < FADE_MS_MIN or fade_ms > FADE_MS_MAX:
            raise ValueError("fadeMs must be between 100 and 10000")

        return cls(brightness_ms, fade_ms)

    def to_device(self) -> str:
        return convert_morph_to_device(MorphConfig(self.brightness_ms, self.fade_ms))


@dataclass
class RingConfig:
    """One ring of a configure_lighting call. ``whirl`` is the raw device value."""
    segments: List[str] = field(default_factory=list)
    background: str = ""
    whirl: Optional[int] = None
    counter_clockwise: bool = False
    morph: Optional[MorphRequest] = None

    @classmethod
    def from_arguments(cls, ring: str, value: Any) -> "RingConfig":
        try:
            return cls._parse(value)
        except ValueError as e:
            raise RequestValidationError(f"Error in {ring} ring config: {e}") from e

    @classmethod
    def _parse(cls, value: Any) -> "RingConfig":
        if not isinstance(value, dict):
            raise ValueError("ring config must be an object")

        config = cls()

        if "segments" in value:
            segments = value["segments"]
            if not isinstance(segments, list):
                raise ValueError("segments must be an array")
            for segment in segments:
                if not isinstance(segment, str):
                    raise ValueError("segment must be a string")
                if not is_valid_segment(segment):
                    raise ValueError(f"invalid segment format: {segment}")
            config.segments = list(segments)

        if "background" in value:
            background = value["background"]
            if not isinstance(background, str):
                raise ValueError("background must be a string")
            if not is_valid_hex_color(background):
                raise ValueError(f"invalid background color: {background}")
            config.background = background

        if "whirl" in value:
            if not _is_number(value["whirl"]):
                raise ValueError("whirl must be a number")
            whirl = int(value["whirl"])
            if whirl < 0 or whirl > WHIRL_MAX:
                raise ValueError("whirl must be between 0 and 510")
            config.whirl = whirl

        config.counter_clockwise = bool(value.get("counterClockwise", False))

        if "morph" in value:
            config.morph = MorphRequest.from_arguments(value["morph"])

        return config

    def to_query(self, ring: str) -> str:
        return build_ring_pattern_command(
            ring,
            segments=self.segments,
            background=self.background,
            whirl=self.whirl or 0,
            counter_clockwise=self.counter_clockwise,
            morph_spec=self.morph.to_device() if self.morph else "",
        )

    def describe(self) -> str:
        parts = []
        if self.segments:
            parts.append(f"{len(self.segments)} segments")
        if self.background:
            parts.append(f"background #{self.background}")
        if self.whirl:
            direction = "CCW" if self.counter_clockwise else "CW"
            parts.append(f"rotating {direction} at {self.whirl}")
        if self.morph:
            parts.append(f"morphing {self.morph.brightness_ms}ms bright, {self.morph.fade_ms}ms fade")
        return ", ".join(parts) or "cleared"


@dataclass
class LogoConfig:
    state: str = ""
    color1: str = ""
    color2: str = ""

    @classmethod
    def from_arguments(cls, value: Any) -> "LogoConfig":
        if not isinstance(value, dict):
            raise RequestValidationError("Error in logo config: logo config must be an object")

        state = value.get("state", "") or ""
        color1 = value.get("color1", "") or ""
        color2 = value.get("color2", "") or ""

        if state not in ("", "on", "off"):
            raise RequestValidationError(f"Error in logo config: state must be 'on' or 'off', got {state}")
        if color1 and not is_valid_hex_color(color1):
            raise RequestValidationError(f"Error in logo config: invalid color1: {color1}")
        if color2 and not is_valid_hex_color(color2):
            raise RequestValidationError(f"Error in logo config: invalid color2: {color2}")

        return cls(state, color1, color2)

    @property
    def turns_on(self) -> bool:
        return self.state != "off" and bool(self.state == "on" or self.color1 or self.color2)

    def to_query(self) -> str:
        """Empty when the config asks for nothing."""
        if self.state == "off":
            return f"logo={LOGO_OFF_PATTERN}"
        if self.color1 and self.color2:
            return f"logo={self.color1}|{self.color2}|{self.color1}|{self.color2}"
        if self.color1 or self.color2:
            return f"logo={self.color1 or self.color2}"
        if self.state == "on":
            return "logo=on"
        return ""

    def describe(self) -> str:
        if self.state == "off":
            return "turned off"
        if self.color1 and self.color2:
            return f"on with colors #{self.color1} and #{self.color2}"
        if self.color1 or self.color2:
            return f"on with color #{self.color1 or self.color2}"
        return "turned on"


@dataclass
class ConfigureLightingRequest:
    brightness: Optional[int] = None
    rings: Dict[str, RingConfig] = field(default_factory=dict)
    logo: Optional[LogoConfig] = None
    duration_ms: int = 0

    @classmethod
    def from_arguments(cls, arguments: Dict[str, Any]) -> "ConfigureLightingRequest":
        request = cls()

        if "brightness" in arguments:
            brightness = _number(arguments["brightness"], "Error: brightness must be between 0 and 255")
            if brightness < 0 or brightness > 255:
                raise RequestValidationError("Error: brightness must be between 0 and 255")
            request.brightness = brightness

        for ring in RINGS:
            if ring in arguments:
                request.rings[ring] = RingConfig.from_arguments(ring, arguments[ring])

        if "logo" in arguments:
            request.logo = LogoConfig.from_arguments(arguments["logo"])

        if "duration" in arguments:
            duration = _number(arguments["duration"], DURATION_TYPE_ERROR)
            if 0 < duration < SECONDS_THRESHOLD:
                duration = convert_duration_to_ms(duration)
            if duration < 0 or duration > MAX_DURATION_MS:
                raise RequestValidationError(DURATION_MS_RANGE_ERROR)
            request.duration_ms = duration

        return request

    def build_query(self) -> str:
        """Everything in one device request: dim, top, bottom, logo."""
        parts = []
        if self.brightness is not None:
            parts.append(f"dim={self.brightness}")
        for ring in RINGS:
            if ring in self.rings:
                parts.append(self.rings[ring].to_query(ring))
        if self.logo is not None:
            logo_query = self.logo.to_query()
            if logo_query:
                parts.append(logo_query)
        return "&".join(parts)

    def describe(self) -> List[str]:
        lines = []
        if self.brightness is not None:
            lines.append(f"Brightness set to {self.brightness}")
        for ring in RINGS:
            if ring in self.rings:
                lines.append(f"{ring.capitalize()} ring: {self.rings[ring].describe()}")
        if self.logo is not None and self.logo.to_query():
            lines.append(f"Logo: {self.logo.describe()}")
        return lines


# ----------------------------------------------------------------------
# Effects
# ----------------------------------------------------------------------

@dataclass
class PlayEffectRequest:
    name: str
    duration_ms: Optional[int] = None  # None: use the effect's own duration

    @classmethod
    def from_arguments(cls, arguments: Dict[str, Any]) -> "PlayEffectRequest":
        return cls(
            name=_required_name(arguments),
            duration_ms=_optional_duration_ms(arguments),
        )


@dataclass
class AddEffectRequest:
    name: str
    description: str
    pattern: str
    duration_s: int = 0
    perpetual: bool = False

    @classmethod
    def from_arguments(cls, arguments: Dict[str, Any]) -> "AddEffectRequest":
        name = _required_name(arguments)
        if not is_valid_effect_name(name):
            raise RequestValidationError("Error: Effect name must contain only letters, numbers, and underscores")

        description = _required_text(arguments, "description")
        pattern = _required_text(arguments, "pattern")

        duration = 0
        if "duration" in arguments:
            duration = _number(arguments["duration"], DURATION_TYPE_ERROR)
        if duration < 0 or duration > MAX_EFFECT_DURATION_S:
            raise RequestValidationError("Error: 'duration' must be between 0 and 3600 seconds")

        return cls(
            name=name,
            description=description,
            pattern=pattern,
            duration_s=duration,
            perpetual=bool(arguments.get("perpetual", False)),
        )

    def to_effect(self) -> Effect:
        return Effect(
            name=self.name,
            description=self.description,
            pattern=self.pattern,
            duration_ms=convert_duration_to_ms(self.duration_s),
            perpetual=self.perpetual,
        )


@dataclass
class UpdateEffectRequest:
    name: str
    description: Optional[str] = None
    pattern: Optional[str] = None
    duration_ms: Optional[int] = None
    perpetual: Optional[bool] = None

    @classmethod
    def from_arguments(cls, arguments: Dict[str, Any]) -> "UpdateEffectRequest":
        request = cls(
            name=_required_name(arguments),
            description=_optional_text(arguments, "description"),
            pattern=_optional_text(arguments, "pattern"),
            duration_ms=_optional_duration_ms(arguments),
        )
        if "perpetual" in arguments:
            request.perpetual = bool(arguments["perpetual"])

        if not request.updated_fields():
            raise RequestValidationError(
                "Error: No updates provided. Specify at least one of: description, pattern, or duration"
            )
        return request

    def updated_fields(self) -> List[str]:
        names = []
        if self.description is not None:
            names.append("description")
        if self.pattern is not None:
            names.append("pattern")
        if self.duration_ms is not None:
            names.append("duration")
        if self.perpetual is not None:
            names.append("perpetual")
        return names

    def apply_to(self, effect: Effect) -> Effect:
        return Effect(
            name=effect.name,
            description=self.description if self.description is not None else effect.description,
            pattern=self.pattern if self.pattern is not None else effect.pattern,
            duration_ms=self.duration_ms if self.duration_ms is not None else effect.duration_ms,
            perpetual=self.perpetual if self.perpetual is not None else effect.perpetual,
        )


@dataclass
class DeleteEffectRequest:
    name: str

    @classmethod
    def from_arguments(cls, arguments: Dict[str, Any]) -> "DeleteEffectRequest":
        return cls(name=_required_name(arguments))


# ----------------------------------------------------------------------
# Raw device access
# ----------------------------------------------------------------------

@dataclass
class SendRawApiRequest:
    query: str

    @classmethod
    def from_arguments(cls, arguments: Dict[str, Any]) -> "SendRawApiRequest":
        if "query" not in arguments:
            raise RequestValidationError("Error: 'query' parameter is required")
        query = arguments["query"]
        if not isinstance(query, str):
            raise RequestValidationError("Error: 'query' parameter must be a string")
        if contains_unsafe_characters(query):
            raise RequestValidationError("Error: Query contains potentially unsafe characters")
        return cls(query=query)


@dataclass
class SetBrightnessRequest:
    level: int

    @classmethod
    def from_arguments(cls, arguments: Dict[str, Any]) -> "SetBrightnessRequest":
        if "level" not in arguments:
            raise RequestValidationError("Error: 'level' parameter is required")
        level = _number(arguments["level"], "Error: 'level' parameter must be a number")
        if level < 0 or level > 255:
            raise RequestValidationError("Error: brightness level must be between 0 and 255")
        return cls(level=level)
