"""Tests for difficulty tiers and the practice retry strategy."""

import asyncio

from mastery_engine.db import store
from mastery_engine.models.path import Difficulty
from mastery_engine.services.difficulty_engine import check_mastery, should_fast_track, starting_difficulty
from mastery_engine.services.teaching_strategy import AttemptStage, advance, next_stage, record_attempt


class TestDifficultyEngine:

    def test_starting_difficulty(self):
        assert starting_difficulty(0) == Difficulty.EASY
        assert starting_difficulty(49) == Difficulty.EASY
        assert starting_difficulty(50) == Difficulty.MEDIUM
        assert starting_difficulty(79) == Difficulty.MEDIUM
        assert starting_difficulty(80) == Difficulty.HARD

    def test_fast_track(self):
        assert should_fast_track(Difficulty.EASY, 85) == Difficulty.HARD
        assert should_fast_track(Difficulty.EASY, 65) == Difficulty.MEDIUM
        assert should_fast_track(Difficulty.MEDIUM, 65) == Difficulty.MEDIUM
        assert should_fast_track(Difficulty.EASY, 40) == Difficulty.EASY

    def test_mastery_by_streak(self):
        result = check_mastery(Difficulty.EASY, consecutive_correct=3, total_attempts=3, correct_attempts=3)
        assert result["is_mastered"] is True
        assert result["progress_type"] == "streak"
        assert result["next_difficulty"] == Difficulty.MEDIUM

    def test_hard_needs_a_longer_streak(self):
        assert check_mastery(Difficulty.HARD, 3, 3, 3)["is_mastered"] is False
        assert check_mastery(Difficulty.HARD, 4, 4, 4)["next_difficulty"] == Difficulty.EXAM

    def test_mastery_by_accuracy(self):
        result = check_mastery(Difficulty.HARD, consecutive_correct=1, total_attempts=7, correct_attempts=6)
        assert result["is_mastered"] is True
        assert result["progress_type"] == "accuracy"

    def test_partial_progress(self):
        result = check_mastery(Difficulty.EASY, consecutive_correct=1, total_attempts=2, correct_attempts=1)
        assert result["is_mastered"] is False
        assert result["progress"] == 33
        assert result["progress_type"] == "streak"
        assert result["next_difficulty"] == Difficulty.EASY


class TestAdvance:

    def test_stage_follows_consecutive_failures(self):
        assert next_stage(0) == AttemptStage.FIRST_ATTEMPT
        assert next_stage(1) == AttemptStage.SECOND_ATTEMPT
        assert next_stage(2) == AttemptStage.ESCALATED
        assert next_stage(5) == AttemptStage.ESCALATED

    def test_second_failure_escalates_and_steps_down(self):
        state = {"difficulty": "medium"}
        state = advance(state, False)
        assert state["stage"] == "second_attempt"
        assert state["difficulty"] == "medium"

        state = advance(state, False)
        assert state["stage"] == "escalated"
        assert state["difficulty"] == "easy"

        state = advance(state, False)
        assert state["stage"] == "escalated"
        assert state["consecutive_failures"] == 3
        assert state["difficulty"] == "easy"

    def test_correct_answer_resets_stage(self):
        state = advance(advance({"difficulty": "easy"}, False), False)
        state = advance(state, True)
        assert state["stage"] == "first_attempt"
        assert state["consecutive_failures"] == 0
        assert state["consecutive_correct"] == 1

    def test_mastered_tier_moves_up_with_fresh_counts(self):
        state = {"difficulty": "easy"}
        for _ in range(3):
            state = advance(state, True)
        assert state["difficulty"] == "medium"
        assert (state["attempts"], state["correct"], state["consecutive_correct"]) == (0, 0, 0)
        assert state["mastery"]["is_mastered"] is True


class TestRecordAttempt:

    def test_escalation_is_persisted(self, open_db):
        async def _run():
            db = await open_db()
            try:
                first = await record_attempt(db, "student-1", "quad-formula", False, Difficulty.HARD)
                second = await record_attempt(db, "student-1", "quad-formula", False)
                stored = await store.get_strategy_state(db, "student-1", "quad-formula")
                return first, second, stored
            finally:
                await db.close()

        first, second, stored = asyncio.run(_run())

        assert first["explanation"] == "alternative_explanation"
        assert second["stage"] == "escalated"
        assert second["explanation"] == "worked_example"
        assert second["difficulty"] == "medium"
        assert stored["consecutive_failures"] == 2
        assert stored["difficulty"] == "medium"
        assert stored["attempts"] == 2

    def test_families_are_independent(self, open_db):
        async def _run():
            db = await open_db()
            try:
                await record_attempt(db, "student-1", "quad-formula", False)
                return await record_attempt(db, "student-1", "quad-factoring", False)
            finally:
                await db.close()

        result = asyncio.run(_run())
        assert result["stage"] == "second_attempt"
        assert result["explanation"] == "alternative_explanation"

    def test_subtopic_mastery_fast_tracks_a_new_family(self, open_db):
        async def _run():
            db = await open_db()
            try:
                await store.upsert_subtopic_progress(db, "student-1", "quad-formula", mastery=85, correct=17, answered=20)
                await store.upsert_subtopic_progress(db, "student-1", "quad-factoring", mastery=65, correct=13, answered=20)
                await db.commit()
                strong = await record_attempt(db, "student-1", "quad-formula", False)
                partial = await record_attempt(db, "student-1", "quad-factoring", False)
                unseen = await record_attempt(db, "student-1", "quad-discriminant", False)
                return strong, partial, unseen
            finally:
                await db.close()

        strong, partial, unseen = asyncio.run(_run())
        assert strong["difficulty"] == "hard"
        assert partial["difficulty"] == "medium"
        assert unseen["difficulty"] == "easy"
