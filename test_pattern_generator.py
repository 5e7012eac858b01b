#!/usr/bin/env python3
"""
Pattern Generator Tests

What: target placement for every pattern on the 8x8 grid
Why: devices reject off-grid coordinates
Expected: exact count, coordinates in [0, 7], sizes scaled by difficulty
"""

import pytest

from target_trainer.pattern_generator import PatternGenerator
from target_trainer.tt_models import (
    Difficulty, MovementPattern, TargetPattern, TrainingConfig
)


@pytest.fixture
def generator():
    return PatternGenerator()


def test_sequence_walks_the_first_row(generator):
    config = TrainingConfig(target_pattern=TargetPattern.SEQUENCE, target_count=4,
                            difficulty=Difficulty.MEDIUM, react_time=1000)
    targets = generator.generate_targets(config)

    assert [(t.x, t.y) for t in targets] == [(0, 0), (1, 0), (2, 0), (3, 0)]
    assert [t.id for t in targets] == [0, 1, 2, 3]
    assert all(t.size == 2 for t in targets)
    assert all(t.duration == 1000 for t in targets)
    assert all(t.movement is None for t in targets)
    assert generator.describe(targets) == "(0,0) → (1,0) → (2,0) → (3,0)"


def test_sequence_wraps_to_next_row(generator):
    config = TrainingConfig(target_pattern=TargetPattern.SEQUENCE, target_count=10)
    targets = generator.generate_targets(config)
    assert (targets[8].x, targets[8].y) == (0, 1)
    assert (targets[9].x, targets[9].y) == (1, 1)


def test_wave_crest_is_clamped_to_grid(generator):
    config = TrainingConfig(target_pattern=TargetPattern.WAVE, target_count=8)
    targets = generator.generate_targets(config)
    assert (targets[0].x, targets[0].y) == (0, 4)
    assert (targets[4].x, targets[4].y) == (4, 7)


def test_spiral_starts_at_center(generator):
    config = TrainingConfig(target_pattern=TargetPattern.SPIRAL, target_count=12)
    targets = generator.generate_targets(config)
    assert (targets[0].x, targets[0].y) == (4, 4)


@pytest.mark.parametrize("pattern", list(TargetPattern))
def test_every_pattern_stays_on_grid(generator, pattern):
    config = TrainingConfig(target_pattern=pattern, target_count=100)
    targets = generator.generate_targets(config, seed=7)
    assert len(targets) == 100
    assert all(0 <= t.x <= 7 and 0 <= t.y <= 7 for t in targets)


def test_seeded_random_is_reproducible(generator):
    config = TrainingConfig(target_pattern=TargetPattern.RANDOM, target_count=20)
    first = generator.generate_targets(config, seed=42)
    second = generator.generate_targets(config, seed=42)
    assert first == second


@pytest.mark.parametrize("difficulty,size", [
    (Difficulty.EASY, 3),
    (Difficulty.MEDIUM, 2),
    (Difficulty.HARD, 1),
])
def test_target_size_by_difficulty(difficulty, size):
    assert PatternGenerator.target_size(difficulty) == size


def test_moving_targets_carry_movement(generator):
    config = TrainingConfig(movement_pattern=MovementPattern.LINEAR, difficulty=Difficulty.HARD,
                            target_count=3)
    targets = generator.generate_targets(config)
    movement = targets[0].movement
    assert movement.pattern == MovementPattern.LINEAR
    assert movement.speed == 2
    assert movement.range == 2
    assert targets[0].to_wire()["movement"] == {"pattern": "linear", "speed": 2, "range": 2}
