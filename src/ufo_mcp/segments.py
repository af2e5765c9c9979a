"""Ring segment codec.

A ring is 15 addressable LEDs. The device takes runs of equal colour as
``start|count|RRGGBB`` tokens, several tokens joined by ``|``:

    0|3|FF0000|3|2|00FF00   -> LEDs 0-2 red, LEDs 3-4 green
"""

import re
from typing import Iterable, List, Optional, Sequence, Union

RING_SIZE = 15
DEFAULT_COLOR = "000000"
RINGS = ("top", "bottom")

_HEX_COLOR = re.compile(r"^[0-9A-Fa-f]{6}$")


def blank_ring() -> List[str]:
    return [DEFAULT_COLOR] * RING_SIZE


def is_valid_hex_color(color: str) -> bool:
    """6 hex digits, no leading '#'."""
    return isinstance(color, str) and bool(_HEX_COLOR.match(color))


def is_valid_segment(segment: str) -> bool:
    """Validate one ``LED_INDEX|COUNT|RRGGBB`` token."""
    parts = segment.split("|")
    if len(parts) != 3:
        return False
    return is_valid_hex_color(parts[2])


def encode_segments(colors: Sequence[str]) -> str:
    """Run-length encode a ring into the device segment syntax.

    Unset and black LEDs are skipped; the device init already blanks them.
    """
    tokens = []
    limit = min(len(colors), RING_SIZE)
    i = 0
    while i < limit:
        color = colors[i]
        if not color or color == DEFAULT_COLOR:
            i += 1
            continue

        count = 1
        while i + count < limit and colors[i + count] == color:
            count += 1

        tokens.append(f"{i}|{count}|{color.upper()}")
        i += count

    return "|".join(tokens)


def _iter_triples(segments: Union[str, Iterable[str]]):
    if isinstance(segments, str):
        fields = segments.split("|") if segments else []
        for i in range(0, len(fields) - 2, 3):
            yield fields[i], fields[i + 1], fields[i + 2]
        return

    # One token per list item: a bad item must not shift the ones after it
    for segment in segments:
        if not isinstance(segment, str):
            continue
        parts = segment.split("|")
        if len(parts) == 3:
            yield parts[0], parts[1], parts[2]


def decode_segments(
    segments: Union[str, Iterable[str]],
    into: Optional[List[str]] = None,
) -> List[str]:
    """Write ``start|count|COLOR`` runs into a 15-slot ring.

    Accepts either a pipe-joined string or a list of single-token strings.
    Runs are clipped to the ring. Malformed tokens are skipped, never
    rejected. Without ``into`` the result starts all-empty, so callers can
    tell painted slots from untouched ones.
    """
    ring = into if into is not None else [""] * RING_SIZE

    for start_str, count_str, color in _iter_triples(segments):
        try:
            start = int(start_str)
            count = int(count_str)
        except ValueError:
            continue
        if start < 0 or count <= 0 or not is_valid_hex_color(color):
            continue

        for i in range(start, min(start + count, RING_SIZE)):
            ring[i] = color

    return ring
