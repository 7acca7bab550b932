"""Ruleset registry and difficulty calculators.

The import pipeline resolves each beatmap's ruleset id through
:class:`RulesetStore` and, when one is found, asks it for a
:class:`DifficultyCalculator` to compute the star rating stored in the
catalog.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional

from BeatmapLibrary.decoding import Beatmap
from BeatmapLibrary.models import RulesetInfo

logger = logging.getLogger(__name__)


class DifficultyCalculator:
    """Computes a star rating for one decoded beatmap."""

    def __init__(self, beatmap: Beatmap):
        self.beatmap = beatmap

    def calculate(self) -> float:
        raise NotImplementedError


class DensityDifficultyCalculator(DifficultyCalculator):
    """Rates a beatmap by hit-object density scaled by its difficulty settings."""

    def calculate(self) -> float:
        objects = self.beatmap.hit_objects
        if len(objects) < 2:
            return 0.0
        length_s = (objects[-1].start_time - objects[0].start_time) / 1000.0
        if length_s <= 0:
            return 0.0
        density = len(objects) / length_s
        settings = self.beatmap.difficulty
        scale = 1.0 + (settings.overall_difficulty + settings.approach_rate) / 20.0
        return round(density * scale, 2)


CalculatorFactory = Callable[[Beatmap], DifficultyCalculator]

DEFAULT_RULESETS: List[RulesetInfo] = [
    RulesetInfo(id=0, name="osu!", short_name="osu"),
    RulesetInfo(id=1, name="osu!taiko", short_name="taiko"),
    RulesetInfo(id=2, name="osu!catch", short_name="fruits"),
    RulesetInfo(id=3, name="osu!mania", short_name="mania"),
]


class RulesetStore:
    """Thread-safe registry of available rulesets."""

    def __init__(self, rulesets: Optional[List[RulesetInfo]] = None):
        self._lock = threading.Lock()
        self._rulesets: Dict[int, RulesetInfo] = {}
        self._calculators: Dict[int, CalculatorFactory] = {}
        for ruleset in DEFAULT_RULESETS if rulesets is None else rulesets:
            self.register(ruleset)

    def register(
        self, ruleset: RulesetInfo, calculator: CalculatorFactory = DensityDifficultyCalculator
    ) -> None:
        with self._lock:
            self._rulesets[ruleset.id] = ruleset
            self._calculators[ruleset.id] = calculator
        logger.debug(f"Registered ruleset {ruleset.short_name} (id={ruleset.id})")

    def get(self, ruleset_id: int) -> Optional[RulesetInfo]:
        with self._lock:
            ruleset = self._rulesets.get(ruleset_id)
        if ruleset is None or not ruleset.available:
            return None
        return ruleset

    def all(self) -> List[RulesetInfo]:
        with self._lock:
            return sorted(self._rulesets.values(), key=lambda r: r.id)

    def create_difficulty_calculator(
        self, ruleset: RulesetInfo, beatmap: Beatmap
    ) -> Optional[DifficultyCalculator]:
        with self._lock:
            factory = self._calculators.get(ruleset.id)
        return factory(beatmap) if factory else None
