"""Unit conversions between human time units and the UFO's device encoding.

The firmware speaks in ticks and small integer speeds, tool callers speak in
milliseconds. Both directions clamp instead of failing: range checks for
user-facing values belong to the request layer.

Morph (pulse/fade):
- brightness ticks: ~150 ticks per second, so ticks = ms / 6.67
- fade speed 1-10: fade takes 200 frames at 60fps / speed, i.e. 3333ms / speed

Whirl (rotation):
- one full rotation steps through 15 LEDs, device value = 256 - step delay
- 0 means "no rotation"; 256-510 is an extended firmware range
"""

import math
from dataclasses import dataclass
from typing import Optional

MS_PER_TICK = 6.67
FADE_FULL_MS = 3333.0
MORPH_SPEED_MIN = 1
MORPH_SPEED_MAX = 10

WHIRL_LEDS = 15
WHIRL_BASE = 256
WHIRL_DEVICE_MIN = 1
WHIRL_DEVICE_MAX = 510


@dataclass
class MorphConfig:
    """Morph settings in milliseconds."""
    brightness_ms: int
    fade_ms: int


def _round(value: float) -> int:
    """Round half away from zero (device tables were built this way)."""
    if value < 0:
        return -int(math.floor(-value + 0.5))
    return int(math.floor(value + 0.5))


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def convert_morph_to_device(config: Optional[MorphConfig]) -> str:
    """Convert a millisecond morph config to the device's ``ticks|speed`` form.

    Returns an empty string for ``None``.
    """
    if config is None:
        return ""

    ticks = max(0, _round(config.brightness_ms / MS_PER_TICK))
    if config.fade_ms <= 0:
        speed = MORPH_SPEED_MAX
    else:
        speed = _clamp(_round(FADE_FULL_MS / config.fade_ms), MORPH_SPEED_MIN, MORPH_SPEED_MAX)

    return f"{ticks}|{speed}"


def convert_morph_from_device(morph_spec: str) -> Optional[MorphConfig]:
    """Convert ``ticks|speed`` back to milliseconds.

    Lossy: speed is an integer in 1-10, so fade round trips are only close for
    fades under ~2s. Empty or malformed specs give ``None``.
    """
    if not morph_spec:
        return None

    parts = morph_spec.split("|")
    if len(parts) != 2:
        return None

    try:
        ticks = int(parts[0])
        speed = int(parts[1])
    except ValueError:
        return None

    speed = _clamp(speed, MORPH_SPEED_MIN, MORPH_SPEED_MAX)
    return MorphConfig(
        brightness_ms=int(max(0, ticks) * MS_PER_TICK),
        fade_ms=int(FADE_FULL_MS / speed),
    )


def convert_whirl_to_device(rotation_ms: int) -> int:
    """Convert a full-rotation period in ms to the device whirl value.

    ``rotation_ms <= 0`` maps to 0 (no rotation).
    """
    if rotation_ms <= 0:
        return 0
    step_delay_ms = rotation_ms / WHIRL_LEDS
    return _clamp(_round(WHIRL_BASE - step_delay_ms), WHIRL_DEVICE_MIN, WHIRL_DEVICE_MAX)


def convert_device_whirl_to_ms(device_value: int) -> int:
    """Convert a device whirl value back to a rotation period in ms."""
    if device_value <= 0:
        return 0
    step_delay_ms = max(1, WHIRL_BASE - device_value)
    return step_delay_ms * WHIRL_LEDS


def convert_duration_to_ms(seconds: int) -> int:
    return seconds * 1000


def convert_duration_from_ms(milliseconds: int) -> int:
    return milliseconds // 1000
