#!/usr/bin/env python3
"""
Pattern Generator for target drills
Places a session's targets on the device's 8x8 LED grid
"""

import math
import random
from typing import List, Optional

from .tt_config import GRID_SIZE
from .tt_models import (
    DIFFICULTY_MODIFIERS, Difficulty, Movement, MovementPattern, Target,
    TargetPattern, TrainingConfig
)


class PatternGenerator:
    """Generate target layouts for a training config"""

    def __init__(self, grid_size: int = GRID_SIZE):
        self.grid_size = grid_size

    def generate_targets(self, config: TrainingConfig, seed: Optional[int] = None) -> List[Target]:
        """
        Build exactly config.target_count targets.

        Args:
            config: Validated training config
            seed: Optional seed; makes the 'random' pattern reproducible

        Returns:
            Targets in presentation order, e.g. for 'sequence' with 4 targets:
            (0,0) (1,0) (2,0) (3,0)
        """
        rng = random.Random(seed)
        count = int(config.target_count)
        size = self.target_size(config.difficulty)
        movement = self.movement_for(config)

        targets = []
        for i in range(count):
            x, y = self._position(config.target_pattern, i, count, rng)
            targets.append(Target(
                id=i,
                x=self._clamp(x),
                y=self._clamp(y),
                size=size,
                duration=config.react_time,
                movement=movement,
            ))
        return targets

    def _position(self, pattern: TargetPattern, i: int, count: int, rng: random.Random):
        n = self.grid_size
        half = n / 2

        if pattern == TargetPattern.SEQUENCE:
            return i % n, (i // n) % n

        if pattern == TargetPattern.WAVE:
            return i % n, math.floor(math.sin((i / n) * math.pi) * half + half)

        if pattern == TargetPattern.SPIRAL:
            angle = (i / count) * 2 * math.pi
            radius = (i / count) * half
            return (math.floor(math.cos(angle) * radius + half),
                    math.floor(math.sin(angle) * radius + half))

        # random (default)
        return rng.randrange(n), rng.randrange(n)

    def _clamp(self, value: int) -> int:
        # the wave crest lands on y == grid_size
        return min(self.grid_size - 1, max(0, int(value)))

    @staticmethod
    def target_size(difficulty: Optional[Difficulty]) -> int:
        modifier = DIFFICULTY_MODIFIERS.get(difficulty, DIFFICULTY_MODIFIERS[Difficulty.MEDIUM])
        return max(1, math.floor(2 * modifier["target_size"] + 0.5))

    def movement_for(self, config: TrainingConfig) -> Optional[Movement]:
        if config.movement_pattern == MovementPattern.STATIC:
            return None
        return Movement(
            pattern=config.movement_pattern,
            speed=1 + (1 if config.difficulty == Difficulty.HARD else 0),
            range=self.grid_size // 4,
        )

    def describe(self, targets: List[Target]) -> str:
        """
        Human-readable layout, e.g. "(0,0) → (1,0) → (2,0)"
        """
        return " → ".join(f"({t.x},{t.y})" for t in targets)


# Singleton instance
pattern_generator = PatternGenerator()
