#!/usr/bin/env python3
"""
Progression Engine - adaptive difficulty from a device's session history

Also owns the read-side analytics the console shows per device:
session summaries, coaching suggestions, progress over time, aggregates.
History lists are most-recent-first, as SessionRegistry keeps them.
"""

import math
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence

from .tt_config import REACT_TIME_RANGE, TARGET_COUNT_RANGE
from .tt_models import (
    DEFAULT_CONFIGS, DIFFICULTY_ORDER, Difficulty, TrainingConfig, TrainingMode,
    TrainingSession
)

# Difficulty tier thresholds
ESCALATE_MIN_ACCURACY = 85
ESCALATE_MAX_REACTION_MS = 800
DEESCALATE_MAX_ACCURACY = 60
DEESCALATE_MIN_REACTION_MS = 1500

# Continuous parameter thresholds
FASTER_ABOVE_ACCURACY = 80
SLOWER_BELOW_ACCURACY = 60
MORE_TARGETS_ABOVE_ACCURACY = 85
FEWER_TARGETS_BELOW_ACCURACY = 50
MIN_RECOMMENDED_TARGETS = 5
STRESSORS_ABOVE_ACCURACY = 90
STRESSORS_BELOW_REACTION_MS = 700


def _average(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ProgressionEngine:
    """Recommend the next configuration and summarize past sessions"""

    def recommend(self, history: Sequence[TrainingSession]) -> TrainingConfig:
        """
        Next config for a device.

        Args:
            history: Terminal sessions, most recent first

        Returns:
            The BASIC default for an empty history; otherwise the latest
            session's config with difficulty moved at most one tier and
            react time / target count / stressors adjusted independently.
        """
        if not history:
            return replace(DEFAULT_CONFIGS[TrainingMode.BASIC], difficulty=Difficulty.MEDIUM)

        accuracy = _average([s.stats.accuracy for s in history])
        reaction_time = _average([s.stats.avg_reaction_time for s in history])

        config = history[0].config
        if accuracy > ESCALATE_MIN_ACCURACY and reaction_time < ESCALATE_MAX_REACTION_MS:
            config = replace(config, difficulty=self._shift_difficulty(config.difficulty, +1))
        elif accuracy < DEESCALATE_MAX_ACCURACY or reaction_time > DEESCALATE_MIN_REACTION_MS:
            config = replace(config, difficulty=self._shift_difficulty(config.difficulty, -1))

        return self.adjust_parameters(config, accuracy, reaction_time)

    @staticmethod
    def _shift_difficulty(difficulty: Optional[Difficulty], step: int) -> Optional[Difficulty]:
        if difficulty not in DIFFICULTY_ORDER:
            return difficulty
        index = DIFFICULTY_ORDER.index(difficulty) + step
        index = min(len(DIFFICULTY_ORDER) - 1, max(0, index))
        return DIFFICULTY_ORDER[index]

    @staticmethod
    def adjust_parameters(config: TrainingConfig, accuracy: float, reaction_time: float) -> TrainingConfig:
        changes: Dict[str, Any] = {}
        react_lo, react_hi = REACT_TIME_RANGE
        targets_hi = TARGET_COUNT_RANGE[1]

        if accuracy > FASTER_ABOVE_ACCURACY:
            changes["react_time"] = max(react_lo, _round_half_up(config.react_time * 0.9))
        elif accuracy < SLOWER_BELOW_ACCURACY:
            changes["react_time"] = min(react_hi, _round_half_up(config.react_time * 1.1))

        if accuracy > MORE_TARGETS_ABOVE_ACCURACY:
            changes["target_count"] = min(targets_hi, math.floor(config.target_count * 1.2))
        elif accuracy < FEWER_TARGETS_BELOW_ACCURACY:
            changes["target_count"] = max(MIN_RECOMMENDED_TARGETS, math.floor(config.target_count * 0.8))

        if (accuracy > STRESSORS_ABOVE_ACCURACY and reaction_time < STRESSORS_BELOW_REACTION_MS
                and not config.stressors):
            changes["stressors"] = True

        return replace(config, **changes) if changes else config

    # ---------------- Session analytics ----------------

    def analyze_session(self, session: TrainingSession) -> List[Dict[str, Any]]:
        """Coaching suggestions for one finished session."""
        stats = session.stats
        suggestions = []

        if stats.accuracy < 70:
            suggestions.append({
                "aspect": "accuracy",
                "message": "Focus on precise hits rather than speed",
                "recommendedMode": TrainingMode.PRECISION.value,
            })
        if stats.avg_reaction_time > 1000:
            suggestions.append({
                "aspect": "reaction_time",
                "message": "Practice faster responses with reaction training",
                "recommendedMode": TrainingMode.REACTION.value,
            })
        if session.config.stressors and stats.accuracy < 60:
            suggestions.append({
                "aspect": "stress_resistance",
                "message": "Work on holding accuracy under stressors",
                "recommendedMode": TrainingMode.STRESS.value,
            })
        return suggestions

    @staticmethod
    def speed_change(reaction_times: Sequence[float]) -> float:
        """Percent faster in the last third of a session than in the first third."""
        segment = len(reaction_times) // 3
        if segment == 0:
            return 0.0
        first = _average(reaction_times[:segment])
        last = _average(reaction_times[-segment:])
        if first == 0:
            return 0.0
        return (first - last) / first * 100

    def generate_session_summary(self, session: TrainingSession) -> Dict[str, Any]:
        stats = session.stats
        duration_secs = session.duration_ms / 1000
        return {
            "duration": duration_secs,
            "performance": {
                "accuracy": stats.accuracy,
                "averageReactionTime": stats.avg_reaction_time,
                "hitsPerMinute": (stats.hits / duration_secs) * 60 if duration_secs > 0 else 0.0,
                "score": stats.score,
            },
            "improvement": {
                "speedChange": self.speed_change(session.reaction_times),
            },
            "recommendations": self.analyze_session(session),
        }

    # ---------------- History analytics ----------------

    def calculate_progress_over_time(self, history: Sequence[TrainingSession]) -> Optional[Dict[str, Any]]:
        """Compare the oldest quarter of the history against the newest quarter."""
        if len(history) < 2:
            return None

        chronological = list(reversed(history))
        quarter = max(1, len(chronological) // 4)
        oldest = chronological[:quarter]
        newest = chronological[-quarter:]

        accuracy_improvement = (_average([s.stats.accuracy for s in newest])
                                - _average([s.stats.accuracy for s in oldest]))
        speed_improvement = (_average([s.stats.avg_reaction_time for s in oldest])
                             - _average([s.stats.avg_reaction_time for s in newest]))
        score_improvement = (_average([s.stats.score for s in newest])
                             - _average([s.stats.score for s in oldest]))

        return {
            "accuracyImprovement": accuracy_improvement,
            "speedImprovement": speed_improvement,
            "scoreImprovement": score_improvement,
            "trend": {
                "improving": accuracy_improvement > 0 and speed_improvement > 0,
                "plateaued": abs(accuracy_improvement) < 1 and abs(speed_improvement) < 10,
                "declining": accuracy_improvement < 0 or speed_improvement < 0,
            },
        }

    def aggregate_client_stats(self, history: Sequence[TrainingSession]) -> Optional[Dict[str, Any]]:
        if not history:
            return None
        return {
            "totalSessions": len(history),
            "totalTime": sum(s.duration_ms for s in history),
            "averageAccuracy": _average([s.stats.accuracy for s in history]),
            "averageReactionTime": _average([s.stats.avg_reaction_time for s in history]),
            "totalHits": sum(s.stats.hits for s in history),
            "totalMisses": sum(s.stats.misses for s in history),
            "bestScore": max(s.stats.score for s in history),
            "progressOverTime": self.calculate_progress_over_time(history),
        }


# Singleton instance
progression_engine = ProgressionEngine()
