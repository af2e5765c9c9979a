"""
Effect catalog - named, reusable device queries persisted as JSON.

The file holds a list of effects. A missing file is seeded with the built-in
effects on first load. Durations are stored in milliseconds.
"""

import json
import logging
import os
import re
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import EffectStoreError

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MS = 10_000
MAX_DURATION_MS = 3_600_000

_EFFECT_NAME = re.compile(r"^[A-Za-z0-9_]+$")


@dataclass
class Effect:
    """A named lighting effect.

    The store replaces a non-positive ``duration_ms`` with the 10 s default.
    ``perpetual`` effects run until stopped whatever their duration.
    """
    name: str
    description: str
    pattern: str
    duration_ms: int = DEFAULT_DURATION_MS
    perpetual: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "pattern": self.pattern,
            "duration": self.duration_ms,
            "perpetual": self.perpetual,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Effect":
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            pattern=data.get("pattern", ""),
            duration_ms=int(data.get("duration", DEFAULT_DURATION_MS) or 0),
            perpetual=bool(data.get("perpetual", False)),
        )


SEED_EFFECTS = (
    Effect(
        name="rainbow",
        description="Slow moving rainbow",
        pattern="effect=rainbow",
        duration_ms=15_000,
    ),
    Effect(
        name="policeLights",
        description="Realistic police light bar with rotating red/blue",
        pattern=(
            "top_init=1&bottom_init=1"
            "&top=10|1|ffffff&top=0|1|0000ff&top=1|1|000080&top=2|1|000040&top=3|1|000020"
            "&top=4|1|000010&top=5|1|000008&top=6|1|000004&top_whirl=252"
            "&bottom=4|1|ffffff&bottom=15|1|ff0000&bottom=14|1|800000&bottom=13|1|400000"
            "&bottom=12|1|200000&bottom=11|1|100000&bottom=10|1|080000&bottom=9|1|040000"
            "&bottom_whirl=250|ccw"
        ),
        duration_ms=30_000,
    ),
    Effect(
        name="breathingGreen",
        description="Fade in/out green",
        pattern="top_init=1&bottom_init=1&top=00ff00&bottom=00ff00&top_morph=fade&bottom_morph=fade",
        duration_ms=15_000,
    ),
    Effect(
        name="pipelineDemo",
        description="Blog demo two-stage colours",
        pattern="top_init=1&bottom_init=1&top=ffaa00&bottom=00aaff",
        duration_ms=10_000,
    ),
    Effect(
        name="ipDisplay",
        description="Spell IP address",
        pattern="effect=ip",
        duration_ms=30_000,
    ),
)

SEED_EFFECT_NAMES = frozenset(e.name for e in SEED_EFFECTS)


def is_valid_effect_name(name: str) -> bool:
    """Letters, digits and underscores only."""
    return bool(_EFFECT_NAME.match(name or ""))


def is_seed_effect(name: str) -> bool:
    return name in SEED_EFFECT_NAMES


def _atomic_write_json(path: Path, data: Any):
    """Write JSON to a sibling .tmp file, fsync it, then rename over ``path``."""
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(path)
    except BaseException:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise


class EffectStore:
    """Thread-safe effect catalog backed by a JSON file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.RLock()
        self._effects: Dict[str, Effect] = {}

    def load(self):
        """Read the catalog; seed and write it if the file does not exist."""
        with self._lock:
            if not self.path.exists():
                logger.info("No effects file at %s, writing seed effects", self.path)
                self._effects = {e.name: Effect(**asdict(e)) for e in SEED_EFFECTS}
                self._save()
                return

            try:
                with open(self.path, "r") as f:
                    raw = json.load(f)
            except OSError as e:
                raise EffectStoreError(f"reading effects file: {e}") from e
            except json.JSONDecodeError as e:
                raise EffectStoreError(f"parsing effects JSON: {e}") from e

            if not isinstance(raw, list):
                raise EffectStoreError("parsing effects JSON: expected a list of effects")

            effects = {}
            for item in raw:
                try:
                    effect = Effect.from_dict(item)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning("Skipping malformed effect entry %r: %s", item, e)
                    continue
                effects[effect.name] = effect
            self._effects = effects
            logger.info("Loaded %d effects from %s", len(effects), self.path)

    def save(self):
        with self._lock:
            self._save()

    def _save(self):
        data = [e.to_dict() for e in self._effects.values()]
        try:
            _atomic_write_json(self.path, data)
        except OSError as e:
            raise EffectStoreError(f"writing effects file: {e}") from e

    def list(self) -> List[Effect]:
        """All effects, sorted by name."""
        with self._lock:
            return [Effect(**asdict(e)) for _, e in sorted(self._effects.items())]

    def get(self, name: str) -> Optional[Effect]:
        with self._lock:
            effect = self._effects.get(name)
            return Effect(**asdict(effect)) if effect is not None else None

    def add(self, effect: Effect):
        if not effect.name:
            raise EffectStoreError("effect name cannot be empty")

        with self._lock:
            if effect.name in self._effects:
                raise EffectStoreError(f"effect with name '{effect.name}' already exists")
            self._effects[effect.name] = _with_default_duration(effect)
            self._save()

    def update(self, effect: Effect):
        if not effect.name:
            raise EffectStoreError("effect name cannot be empty")

        with self._lock:
            if effect.name not in self._effects:
                raise EffectStoreError(f"effect with name '{effect.name}' does not exist")
            self._effects[effect.name] = _with_default_duration(effect)
            self._save()

    def delete(self, name: str) -> Effect:
        """Remove and return an effect."""
        with self._lock:
            effect = self._effects.pop(name, None)
            if effect is None:
                raise EffectStoreError(f"effect with name '{name}' does not exist")
            self._save()
            return effect

    def __len__(self) -> int:
        with self._lock:
            return len(self._effects)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._effects


def _with_default_duration(effect: Effect) -> Effect:
    effect = Effect(**asdict(effect))
    if effect.duration_ms <= 0:
        effect.duration_ms = DEFAULT_DURATION_MS
    return effect
