"""
Shadow LED state and effect stack.

The UFO accepts commands but never reports what it is showing, so this module
is the only answer to "what is on the device right now". One StateManager per
process owns both the LED replica and the LIFO effect stack; a single lock
covers the two together so snapshot() and build_state_query() always see a
consistent joint view.

Nothing here raises on bad input. Unknown ring names and malformed segments
are ignored, and an empty pop returns None ("nothing left to restore").
"""

import copy
import itertools
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .conversions import (
    WHIRL_DEVICE_MAX,
    convert_device_whirl_to_ms,
    convert_morph_from_device,
    convert_whirl_to_device,
)
from .events import Broadcaster
from .query import build_state_query, parse_query
from .segments import DEFAULT_COLOR, RING_SIZE, RINGS, blank_ring, decode_segments, is_valid_hex_color

logger = logging.getLogger(__name__)

CONFIG_EFFECT_NAME = "__config__"
BASE_STATE_EFFECT_NAME = "__base_state__"
DEFAULT_BRIGHTNESS = 255
DEFAULT_STACK_WARN_DEPTH = 32


@dataclass
class MorphData:
    """Pulse animation for a ring, in milliseconds."""
    brightness_ms: int
    fade_ms: int

    def to_dict(self) -> Dict[str, int]:
        return {"brightnessMs": self.brightness_ms, "fadeMs": self.fade_ms}


@dataclass
class LedState:
    """Everything the device is believed to be displaying.

    Whirl is kept as the raw device value plus direction so a rebuilt query
    reproduces exactly what was sent; the millisecond view is derived.
    """
    top: List[str] = field(default_factory=blank_ring)
    bottom: List[str] = field(default_factory=blank_ring)
    logo_on: bool = False
    effect: str = ""
    brightness: int = DEFAULT_BRIGHTNESS
    top_whirl: int = 0
    bottom_whirl: int = 0
    top_whirl_ccw: bool = False
    bottom_whirl_ccw: bool = False
    top_morph: Optional[MorphData] = None
    bottom_morph: Optional[MorphData] = None

    @property
    def top_whirl_ms(self) -> int:
        return convert_device_whirl_to_ms(self.top_whirl)

    @property
    def bottom_whirl_ms(self) -> int:
        return convert_device_whirl_to_ms(self.bottom_whirl)

    def ring(self, name: str) -> List[str]:
        return self.top if name == "top" else self.bottom

    def whirl(self, name: str) -> Tuple[int, bool]:
        """(device value, counter-clockwise) for a ring."""
        if name == "top":
            return self.top_whirl, self.top_whirl_ccw
        return self.bottom_whirl, self.bottom_whirl_ccw

    def morph(self, name: str) -> Optional[MorphData]:
        return self.top_morph if name == "top" else self.bottom_morph

    def to_dict(self) -> Dict[str, Any]:
        """JSON shape served on ufo://ledstate."""
        result: Dict[str, Any] = {
            "top": list(self.top),
            "bottom": list(self.bottom),
            "logoOn": self.logo_on,
            "effect": self.effect,
            "dim": self.brightness,
        }
        if self.top_whirl:
            result["topWhirlMs"] = self.top_whirl_ms
            if self.top_whirl_ccw:
                result["topWhirlCcw"] = True
        if self.bottom_whirl:
            result["bottomWhirlMs"] = self.bottom_whirl_ms
            if self.bottom_whirl_ccw:
                result["bottomWhirlCcw"] = True
        if self.top_morph is not None:
            result["topMorph"] = self.top_morph.to_dict()
        if self.bottom_morph is not None:
            result["bottomMorph"] = self.bottom_morph.to_dict()
        return result


@dataclass
class EffectStackEntry:
    """One layer of display history.

    ``pattern`` is the exact query that brings the display back to this layer.
    ``token`` is unique per push and lets a deferred expiry check that it is
    still popping the layer it was scheduled for.
    """
    name: str
    pattern: str
    context: Dict[str, Any] = field(default_factory=dict)
    token: int = 0

    @property
    def perpetual(self) -> bool:
        return bool(self.context.get("perpetual", False))

    @property
    def synthetic(self) -> bool:
        return bool(self.context.get("synthetic", False))

    @property
    def duration(self) -> int:
        return int(self.context.get("duration", 0) or 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "pattern": self.pattern,
            "context": dict(self.context),
        }


class StateManager:
    """Thread-safe owner of the shadow state and the effect stack."""

    def __init__(
        self,
        broadcaster: Optional[Broadcaster] = None,
        stack_warn_depth: int = DEFAULT_STACK_WARN_DEPTH,
    ):
        self._lock = threading.RLock()
        self._state = LedState()
        self._effect_stack: List[EffectStackEntry] = []
        self._base_state = ""
        self._tokens = itertools.count(1)
        self._broadcaster = broadcaster or Broadcaster()
        self._stack_warn_depth = stack_warn_depth

    @property
    def broadcaster(self) -> Broadcaster:
        return self._broadcaster

    # ------------------------------------------------------------------
    # State store
    # ------------------------------------------------------------------

    def snapshot(self) -> LedState:
        """Deep copy of the current state."""
        with self._lock:
            return copy.deepcopy(self._state)

    def to_json(self) -> str:
        with self._lock:
            return json.dumps(self._state.to_dict())

    def update_brightness(self, level: int):
        """Set brightness; only an actual change publishes dim_changed."""
        with self._lock:
            self._set_brightness(level)

    def update_logo(self, on: bool):
        with self._lock:
            self._state.logo_on = bool(on)

    def update_whirl(self, ring: str, whirl_ms: int, counter_clockwise: bool = False):
        with self._lock:
            self._set_whirl(ring, convert_whirl_to_device(whirl_ms), counter_clockwise)

    def update_morph(self, ring: str, morph: Optional[MorphData]):
        with self._lock:
            self._set_morph(ring, morph)

    def update_ring_segments(self, ring: str, colors: Sequence[str], background: str = ""):
        """Fill the ring with ``background`` (if any), then overlay ``colors`` by position.

        Empty entries in ``colors`` leave the slot alone. The event carries the
        raw inputs, not the resulting ring.
        """
        with self._lock:
            self._update_ring_segments(ring, colors, background)

    def update_ring(self, ring: str, colors: Sequence[str]):
        """Replace a whole ring; missing or empty entries become black."""
        with self._lock:
            target = self._ring(ring)
            if target is None:
                return
            for i in range(RING_SIZE):
                color = colors[i] if i < len(colors) else ""
                target[i] = color or DEFAULT_COLOR
            self._broadcaster.publish_ring_update(ring, {"colors": list(colors)})

    def update_effect(self, effect_name: str):
        with self._lock:
            self._state.effect = effect_name

    def clear_effect(self):
        with self._lock:
            self._state.effect = ""

    def reset(self):
        """All LEDs off, logo off, no effect. Brightness is kept."""
        with self._lock:
            self._state.top = blank_ring()
            self._state.bottom = blank_ring()
            self._state.logo_on = False
            self._state.effect = ""
            self._set_whirl("top", 0)
            self._set_whirl("bottom", 0)
            self._state.top_morph = None
            self._state.bottom_morph = None

            self._broadcaster.publish_ring_update("top", {"reset": True})
            self._broadcaster.publish_ring_update("bottom", {"reset": True})

    def build_state_query(self) -> str:
        """Query string that makes the device match the shadow exactly."""
        with self._lock:
            return build_state_query(self._state)

    def apply_query(self, query: str) -> int:
        """Fold a device query into the shadow state.

        Understands dim, <ring>_init, <ring>, <ring>_bg, <ring>_whirl and
        <ring>_morph for both rings, and logo. Anything else (built-in
        ``effect=`` programs, unparseable values) is skipped. Returns the number
        of pairs that changed the shadow.
        """
        applied = 0
        painted: Dict[str, Dict[str, Any]] = {}

        with self._lock:
            for key, value in parse_query(query):
                if key == "dim":
                    try:
                        self._set_brightness(max(0, min(255, int(value))))
                    except ValueError:
                        continue
                    applied += 1
                elif key == "logo":
                    self._state.logo_on = _logo_is_on(value)
                    applied += 1
                else:
                    ring, _, attr = key.partition("_")
                    if ring not in RINGS:
                        continue
                    pending = painted.setdefault(ring, {"init": False, "segments": [], "background": ""})
                    if attr == "":
                        pending["segments"].append(value)
                        applied += 1
                    elif attr == "init":
                        # Device blanks the ring and stops its animations
                        self._ring(ring)[:] = blank_ring()
                        self._set_whirl(ring, 0)
                        self._set_morph(ring, None)
                        pending["init"] = True
                        applied += 1
                    elif attr == "bg":
                        if not is_valid_hex_color(value):
                            continue
                        pending["background"] = value
                        applied += 1
                    elif attr == "whirl":
                        speed, _, direction = value.partition("|")
                        try:
                            device_value = int(speed)
                        except ValueError:
                            continue
                        device_value = max(0, min(WHIRL_DEVICE_MAX, device_value))
                        self._set_whirl(ring, device_value, direction.strip().lower() == "ccw")
                        applied += 1
                    elif attr == "morph":
                        morph = convert_morph_from_device(value)
                        if morph is None:
                            continue
                        self._set_morph(ring, MorphData(morph.brightness_ms, morph.fade_ms))
                        applied += 1

            for ring, pending in painted.items():
                colors = decode_segments(pending["segments"]) if pending["segments"] else []
                if colors or pending["background"]:
                    self._update_ring_segments(ring, colors, pending["background"])
                elif pending["init"]:
                    self._broadcaster.publish_ring_update(ring, {"reset": True})

        return applied

    # ------------------------------------------------------------------
    # Effect stack
    # ------------------------------------------------------------------

    def push_effect(self, name: str, pattern: str, context: Optional[Dict[str, Any]] = None) -> EffectStackEntry:
        """Layer a new display on top of the current one."""
        with self._lock:
            entry = EffectStackEntry(
                name=name,
                pattern=pattern,
                context=dict(context or {}),
                token=next(self._tokens),
            )
            self._effect_stack.append(entry)
            self._state.effect = name

            depth = len(self._effect_stack)
            if self._stack_warn_depth and depth > self._stack_warn_depth:
                logger.warning(
                    "Effect stack depth %d exceeds %d (latest: %s); pushes without matching stops?",
                    depth, self._stack_warn_depth, name,
                )
            return entry

    def pop_effect(self) -> Optional[EffectStackEntry]:
        """Drop the top layer and return the layer to restore.

        Returns the new top, or a synthetic base-state entry once the stack
        empties (if a base state is set), or None.
        """
        with self._lock:
            return self._pop()

    def pop_effect_if_current(self, token: int) -> Tuple[bool, Optional[EffectStackEntry]]:
        """Pop only if the top layer is still the one pushed with ``token``.

        Used by timed expiries: if a manual stop already removed that layer,
        the expiry must not remove an unrelated one. Returns (popped, restore).
        """
        with self._lock:
            if not self._effect_stack or self._effect_stack[-1].token != token:
                return False, None
            return True, self._pop()

    def get_current_effect(self) -> Optional[EffectStackEntry]:
        with self._lock:
            if not self._effect_stack:
                return None
            return copy.deepcopy(self._effect_stack[-1])

    def get_effect_stack_depth(self) -> int:
        with self._lock:
            return len(self._effect_stack)

    def get_effect_stack(self) -> List[EffectStackEntry]:
        """Bottom-to-top copy of the stack."""
        with self._lock:
            return copy.deepcopy(self._effect_stack)

    def set_base_state(self, pattern: str):
        """Pattern restored when the stack is fully unwound ("" disables)."""
        with self._lock:
            self._base_state = pattern

    def get_base_state(self) -> str:
        with self._lock:
            return self._base_state

    # ------------------------------------------------------------------
    # Internals (lock held)
    # ------------------------------------------------------------------

    def _ring(self, ring: str) -> Optional[List[str]]:
        if ring == "top":
            return self._state.top
        if ring == "bottom":
            return self._state.bottom
        return None

    def _set_brightness(self, level: int):
        if self._state.brightness != level:
            self._state.brightness = level
            self._broadcaster.publish_dim_changed(level)

    def _set_whirl(self, ring: str, device_value: int, counter_clockwise: bool = False):
        # Direction means nothing without rotation
        counter_clockwise = bool(counter_clockwise and device_value > 0)
        if ring == "top":
            self._state.top_whirl = device_value
            self._state.top_whirl_ccw = counter_clockwise
        elif ring == "bottom":
            self._state.bottom_whirl = device_value
            self._state.bottom_whirl_ccw = counter_clockwise

    def _set_morph(self, ring: str, morph: Optional[MorphData]):
        morph = copy.copy(morph)
        if ring == "top":
            self._state.top_morph = morph
        elif ring == "bottom":
            self._state.bottom_morph = morph

    def _update_ring_segments(self, ring: str, colors: Sequence[str], background: str):
        target = self._ring(ring)
        if target is None:
            return

        if background:
            for i in range(RING_SIZE):
                target[i] = background

        for i, color in enumerate(colors[:RING_SIZE]):
            if color:
                target[i] = color

        self._broadcaster.publish_ring_update(ring, {
            "segments": list(colors),
            "background": background,
        })

    def _pop(self) -> Optional[EffectStackEntry]:
        if not self._effect_stack:
            self._state.effect = ""
            return None

        self._effect_stack.pop()

        if self._effect_stack:
            current = self._effect_stack[-1]
            self._state.effect = current.name
            return copy.deepcopy(current)

        self._state.effect = ""
        if self._base_state:
            return EffectStackEntry(
                name=BASE_STATE_EFFECT_NAME,
                pattern=self._base_state,
                context={"synthetic": True, "isBase": True},
            )
        return None


def _logo_is_on(value: str) -> bool:
    """'on'/'off', or a 4-colour pattern where all-black means off."""
    value = value.strip().lower()
    if value in ("on", "off"):
        return value == "on"
    colors = [c for c in value.split("|") if c]
    return any(c != DEFAULT_COLOR for c in colors)
