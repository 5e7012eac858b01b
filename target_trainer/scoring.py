"""
Scoring: raw hit/miss/reaction data -> TrainingStats -> score.

Pure functions; identical inputs give identical outputs.
"""

import math
from dataclasses import replace
from typing import Any, Iterable, Mapping, Optional, Sequence

from .tt_models import Difficulty, TrainingConfig, TrainingStats

DIFFICULTY_MULTIPLIERS = {
    Difficulty.EASY: 1.0,
    Difficulty.MEDIUM: 1.5,
    Difficulty.HARD: 2.0,
}
STRESSOR_MULTIPLIER = 1.2
HIT_POINTS = 100
ACCURACY_POINTS = 5
REACTION_BONUS_CEILING_MS = 2000


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def calculate_stats(hits: int, misses: int, reaction_samples: Iterable[float],
                    config: Optional[TrainingConfig] = None) -> TrainingStats:
    """
    accuracy = hits / (hits + misses) * 100, 0 when nothing was shot;
    avg reaction time = mean of the samples, 0 without samples.
    The score is filled in only when a config is given.
    """
    hits = max(0, int(hits or 0))
    misses = max(0, int(misses or 0))
    samples = [float(s) for s in (reaction_samples or ())]
    total = hits + misses

    stats = TrainingStats(
        hits=hits,
        misses=misses,
        accuracy=(hits / total) * 100 if total > 0 else 0.0,
        avg_reaction_time=_mean(samples),
    )
    if config is not None:
        stats = replace(stats, score=calculate_score(stats, config))
    return stats


def calculate_score(stats: TrainingStats, config: TrainingConfig) -> int:
    """hits*100 + accuracy*5 + reaction bonus, then stressor and difficulty multipliers."""
    score = stats.hits * HIT_POINTS
    score += stats.accuracy * ACCURACY_POINTS
    score += max(0.0, (REACTION_BONUS_CEILING_MS - stats.avg_reaction_time) / 10)

    if config.stressors:
        score *= STRESSOR_MULTIPLIER
    score *= DIFFICULTY_MULTIPLIERS.get(config.difficulty, 1.0)

    # half-up, not banker's rounding
    return int(math.floor(score + 0.5))


def finalize_stats(current: TrainingStats, reported: Optional[Mapping[str, Any]],
                   config: TrainingConfig, reaction_samples: Sequence[float] = ()) -> TrainingStats:
    """
    Merge the device's final report over the running stats.

    The report may carry hits, misses and either reactionTimes or
    avgReactionTime; anything missing keeps the running value. Accuracy and
    score are always re-derived so they agree with the counters.
    """
    reported = reported or {}
    hits = reported.get("hits", current.hits)
    misses = reported.get("misses", current.misses)

    if reported.get("reactionTimes") is not None:
        return calculate_stats(hits, misses, reported["reactionTimes"], config)
    if reaction_samples and "avgReactionTime" not in reported:
        return calculate_stats(hits, misses, reaction_samples, config)

    avg = reported.get("avgReactionTime", current.avg_reaction_time) or 0.0
    stats = replace(calculate_stats(hits, misses, ()), avg_reaction_time=float(avg))
    return replace(stats, score=calculate_score(stats, config))
