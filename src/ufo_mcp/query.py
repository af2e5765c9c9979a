"""Device query strings: build one from a shadow snapshot, split one apart.

Queries are ``key=value`` pairs joined by ``&``. Values may contain raw ``|``
separators, which the device expects unescaped.
"""

from typing import List, Tuple, TYPE_CHECKING

from .conversions import MorphConfig, convert_morph_to_device
from .segments import encode_segments

if TYPE_CHECKING:
    from .state import LedState

CLEAR_QUERY = "top_init=1&bottom_init=1&logo=off"


def build_state_query(state: "LedState") -> str:
    """Serialize a snapshot into the command that reproduces it on the device.

    Order: dim, top ring (init, segments, whirl, morph), bottom ring (same),
    logo. Golden outputs depend on this order.
    """
    parts = [f"dim={state.brightness}"]

    for ring in ("top", "bottom"):
        parts.append(f"{ring}_init=1")

        segments = encode_segments(state.ring(ring))
        if segments:
            parts.append(f"{ring}={segments}")

        whirl, counter_clockwise = state.whirl(ring)
        if whirl > 0:
            parts.append(f"{ring}_whirl={whirl}|ccw" if counter_clockwise else f"{ring}_whirl={whirl}")

        morph = state.morph(ring)
        if morph is not None:
            spec = convert_morph_to_device(MorphConfig(morph.brightness_ms, morph.fade_ms))
            parts.append(f"{ring}_morph={spec}")

    parts.append("logo=on" if state.logo_on else "logo=off")
    return "&".join(parts)


def normalize_query(query: str) -> str:
    """Drop a leading '?' or '/' as typed from the device web UI."""
    if query and query[0] in "?/":
        return query[1:]
    return query


def parse_query(query: str) -> List[Tuple[str, str]]:
    """Split a query into ordered (key, value) pairs.

    Repeated keys are kept; pairs without '=' are dropped.
    """
    pairs = []
    for part in normalize_query(query).split("&"):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        key = key.strip()
        if key:
            pairs.append((key, value.strip()))
    return pairs
