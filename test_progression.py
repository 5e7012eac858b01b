#!/usr/bin/env python3
"""
Progression Engine Tests

What: next-session recommendation and history analytics
Why: difficulty must move at most one tier per recommendation and the
     parameter nudges must respect the config ranges
Expected: rules below, driven by averages over the whole history
"""

import pytest

from target_trainer.progression import ProgressionEngine
from target_trainer.tt_models import (
    Difficulty, TrainingConfig, TrainingMode, TrainingSession, TrainingStats
)


def make_session(accuracy, reaction, config=None, score=0, idx=0, reactions=()):
    return TrainingSession(
        id=f"1-{idx}",
        device_id=1,
        config=config or TrainingConfig(difficulty=Difficulty.MEDIUM),
        targets=(),
        start_time=idx * 10_000,
        end_time=idx * 10_000 + 60_000,
        stats=TrainingStats(hits=9, misses=1, accuracy=accuracy, avg_reaction_time=reaction, score=score),
        reaction_times=tuple(reactions),
    )


@pytest.fixture
def engine():
    return ProgressionEngine()


class TestRecommend:

    def test_empty_history_gets_basic_medium(self, engine):
        config = engine.recommend([])
        assert config.mode == TrainingMode.BASIC
        assert config.difficulty == Difficulty.MEDIUM

    def test_strong_history_escalates_one_tier(self, engine):
        """accuracy 90, reaction 650 at medium -> hard, faster, more targets"""
        config = engine.recommend([make_session(90, 650)])
        assert config.difficulty == Difficulty.HARD
        assert config.react_time == 900
        assert config.target_count == 12
        assert config.stressors is False

    def test_weak_history_deescalates(self, engine):
        config = engine.recommend([make_session(55, 900)])
        assert config.difficulty == Difficulty.EASY
        assert config.react_time == 1100
        assert config.target_count == 10

    def test_slow_reactions_alone_deescalate(self, engine):
        config = engine.recommend([make_session(75, 1600)])
        assert config.difficulty == Difficulty.EASY

    def test_middle_band_keeps_difficulty(self, engine):
        config = engine.recommend([make_session(75, 900)])
        assert config.difficulty == Difficulty.MEDIUM
        assert config.react_time == 1000

    def test_hard_is_the_ceiling_and_stressors_turn_on(self, engine):
        hard = TrainingConfig(difficulty=Difficulty.HARD)
        config = engine.recommend([make_session(95, 600, config=hard)])
        assert config.difficulty == Difficulty.HARD
        assert config.stressors is True

    def test_starts_from_most_recent_session(self, engine):
        recent = TrainingConfig(mode=TrainingMode.PRECISION, difficulty=Difficulty.MEDIUM)
        older = TrainingConfig(mode=TrainingMode.REACTION, difficulty=Difficulty.MEDIUM)
        config = engine.recommend([make_session(75, 900, config=recent, idx=2),
                                   make_session(75, 900, config=older, idx=1)])
        assert config.mode == TrainingMode.PRECISION


class TestAdjustParameters:

    def test_react_time_floor(self):
        config = TrainingConfig(react_time=210)
        assert ProgressionEngine.adjust_parameters(config, 85, 900).react_time == 200

    def test_react_time_ceiling(self):
        config = TrainingConfig(react_time=4900)
        assert ProgressionEngine.adjust_parameters(config, 40, 900).react_time == 5000

    def test_target_count_bounds(self):
        assert ProgressionEngine.adjust_parameters(TrainingConfig(target_count=90), 90, 900).target_count == 100
        assert ProgressionEngine.adjust_parameters(TrainingConfig(target_count=10), 40, 900).target_count == 8
        assert ProgressionEngine.adjust_parameters(TrainingConfig(target_count=5), 40, 900).target_count == 5


class TestAnalytics:

    def test_progress_needs_two_sessions(self, engine):
        assert engine.calculate_progress_over_time([make_session(80, 600)]) is None

    def test_progress_compares_oldest_to_newest(self, engine):
        """History is most-recent-first; improvement is newest minus oldest"""
        history = [
            make_session(80, 600, score=400, idx=4),
            make_session(70, 700, score=300, idx=3),
            make_session(60, 800, score=200, idx=2),
            make_session(50, 1000, score=100, idx=1),
        ]
        progress = engine.calculate_progress_over_time(history)
        assert progress["accuracyImprovement"] == 30
        assert progress["speedImprovement"] == 400
        assert progress["scoreImprovement"] == 300
        assert progress["trend"]["improving"] is True
        assert progress["trend"]["declining"] is False

    def test_speed_change_within_session(self, engine):
        assert engine.speed_change([900, 900, 900, 600, 600, 600]) == pytest.approx(33.333, rel=1e-3)
        assert engine.speed_change([500, 400]) == 0.0

    def test_summary_contains_recommendations(self, engine):
        session = make_session(50, 1200)
        summary = engine.generate_session_summary(session)
        assert summary["duration"] == 60
        assert summary["performance"]["hitsPerMinute"] == pytest.approx(9)
        aspects = {s["aspect"] for s in summary["recommendations"]}
        assert aspects == {"accuracy", "reaction_time"}

    def test_aggregate_stats(self, engine):
        history = [make_session(80, 600, score=500, idx=2), make_session(60, 800, score=300, idx=1)]
        stats = engine.aggregate_client_stats(history)
        assert stats["totalSessions"] == 2
        assert stats["averageAccuracy"] == 70
        assert stats["averageReactionTime"] == 700
        assert stats["bestScore"] == 500
        assert stats["totalTime"] == 120_000
        assert engine.aggregate_client_stats([]) is None
