"""Tests for goal creation and signal-driven path updates against the store."""

import asyncio
import gc
from datetime import date, timedelta
from unittest.mock import MagicMock, patch

import pytest

from mastery_engine.db import store
from mastery_engine.errors import (
    InvalidInput,
    NotFound,
    PreconditionViolation,
    SchedulingConflict,
    ValidationFailure,
)
from mastery_engine.models.assessment import AnswerSubmission
from mastery_engine.models.curriculum import Question
from mastery_engine.models.path import Difficulty, LearningPathNode, NodeStatus, PerformanceSignal
from mastery_engine.services import plan_updater
from mastery_engine.services.mastery_grader import submit_mastery_test
from mastery_engine.services.plan_updater import (
    apply_performance_signal,
    create_learning_goal,
    get_goal_lock,
    get_learning_path,
    update_node_status,
)


def exact_judge(student_answer, correct_answer):
    return student_answer.strip() == correct_answer.strip()


async def _goal_with_path(db, catalog, days=20, topic_ids=("quadratics",)):
    result = await create_learning_goal(
        db, "student-1", date.today() + timedelta(days=days), list(topic_ids), catalog,
    )
    return result["goal_id"]


class TestCreateLearningGoal:

    def test_goal_and_nodes_are_stored(self, catalog, open_db):
        async def _run():
            db = await open_db()
            try:
                result = await create_learning_goal(
                    db, "student-1", date(2026, 3, 21), ["linear-equations", "quadratics"], catalog,
                    today=date(2026, 3, 1),
                )
                path = await get_learning_path(db, result["goal_id"])
                return result, path
            finally:
                await db.close()

        result, path = asyncio.run(_run())

        assert result["deactivated_goals"] == 0
        assert result["plan"]["minutes_per_day"] == 30
        assert path["goal"]["is_active"] is True
        assert path["total"] == 5
        assert all(n["id"] is not None for n in path["nodes"])
        assert [n["id"] for n in path["nodes"]] == [n["id"] for n in result["plan"]["nodes"]]

    def test_new_goal_deactivates_the_previous_one(self, catalog, open_db):
        async def _run():
            db = await open_db()
            try:
                first = await _goal_with_path(db, catalog)
                second = await create_learning_goal(
                    db, "student-1", date.today() + timedelta(days=30), ["linear-equations"], catalog,
                )
                active = await store.get_active_goal(db, "student-1")
                old = await store.get_goal(db, first)
                return second, active, old
            finally:
                await db.close()

        second, active, old = asyncio.run(_run())
        assert second["deactivated_goals"] == 1
        assert active.id == second["goal_id"]
        assert old.is_active is False

    def test_refused_goal_changes_nothing(self, catalog, open_db):
        async def _run():
            db = await open_db()
            try:
                first = await _goal_with_path(db, catalog)
                with pytest.raises(PreconditionViolation):
                    await create_learning_goal(
                        db, "student-1", date.today() + timedelta(days=5), ["quadratics"], catalog,
                    )
                active = await store.get_active_goal(db, "student-1")
                nodes = await store.get_path_nodes(db, first)
                return first, active, nodes
            finally:
                await db.close()

        first, active, nodes = asyncio.run(_run())
        assert active.id == first
        assert len(nodes) == 3

    def test_existing_mastery_sets_difficulty(self, catalog, open_db):
        async def _run():
            db = await open_db()
            try:
                await store.upsert_topic_progress(db, "student-1", "quadratics", 85)
                await db.commit()
                goal_id = await _goal_with_path(db, catalog)
                return await store.get_path_nodes(db, goal_id)
            finally:
                await db.close()

        nodes = asyncio.run(_run())
        assert {n.target_difficulty for n in nodes} == {Difficulty.HARD}

    def test_path_date_range(self, catalog, open_db):
        async def _run():
            db = await open_db()
            try:
                goal_id = await _goal_with_path(db, catalog)
                tomorrow = date.today() + timedelta(days=1)
                return await get_learning_path(db, goal_id, start=tomorrow, end=tomorrow)
            finally:
                await db.close()

        path = asyncio.run(_run())
        assert path["total"] == 1
        assert path["nodes"][0]["subtopic_id"] == "quad-factoring"

    def test_unknown_goal(self, open_db):
        async def _run():
            db = await open_db()
            try:
                await get_learning_path(db, 999)
            finally:
                await db.close()

        with pytest.raises(NotFound):
            asyncio.run(_run())


class TestNodeStatus:

    def test_forward_transitions(self, catalog, open_db):
        async def _run():
            db = await open_db()
            try:
                goal_id = await _goal_with_path(db, catalog)
                node = (await store.get_path_nodes(db, goal_id))[0]
                await update_node_status(db, node.id, NodeStatus.IN_PROGRESS)
                await update_node_status(db, node.id, NodeStatus.COMPLETED)
                return await store.get_path_node(db, node.id)
            finally:
                await db.close()

        assert asyncio.run(_run()).status == NodeStatus.COMPLETED

    def test_finished_nodes_are_final(self, catalog, open_db):
        async def _run():
            db = await open_db()
            try:
                goal_id = await _goal_with_path(db, catalog)
                node = (await store.get_path_nodes(db, goal_id))[0]
                await update_node_status(db, node.id, NodeStatus.SKIPPED)
                with pytest.raises(InvalidInput):
                    await update_node_status(db, node.id, NodeStatus.PENDING)
                with pytest.raises(NotFound):
                    await update_node_status(db, 999, NodeStatus.COMPLETED)
            finally:
                await db.close()

        asyncio.run(_run())


def _mastery_questions():
    questions = []
    for i in range(5):
        questions.append(Question(
            id=f"t1-{i}", topic_id="quadratics", subtopic_id="quad-factoring",
            correct_answer="1", primary_unit_id="quad-zero-product",
            supporting_unit_ids=["quad-def"],
        ))
    for i in range(5):
        questions.append(Question(
            id=f"t2-{i}", topic_id="quadratics", subtopic_id="quad-discriminant",
            correct_answer="1", primary_unit_id="quad-disc",
        ))
    # t2-0 also cites the formula unit, which makes it the combination question
    questions[5].supporting_unit_ids = ["quad-abc"]
    questions[5].is_combination_question = True
    return questions


def _mastery_answers():
    # quad-zero-product 3/5, quad-disc 1/5
    values = ["1", "1", "1", "0", "0", "1", "0", "0", "0", "0"]
    return [AnswerSubmission(question_id=q.id, answer=v) for q, v in zip(_mastery_questions(), values)]


class TestMasteryTestUpdatesPath:

    def test_weak_unit_gets_reinforcement(self, catalog, open_db):
        async def _run():
            db = await open_db()
            try:
                goal_id = await _goal_with_path(db, catalog)
                first = (await store.get_path_nodes(db, goal_id))[0]
                await update_node_status(db, first.id, NodeStatus.COMPLETED)

                outcome = await submit_mastery_test(
                    db, "student-1", "quadratics", _mastery_questions(), _mastery_answers(), exact_judge,
                    catalog=catalog,
                )
                nodes = await store.get_path_nodes(db, goal_id)
                records = await store.get_competency_records(db, "student-1")
                mastery = await store.get_topic_mastery(db, "student-1", ["quadratics"])
                results = await store.get_mastery_results(db, "student-1")
                return first, outcome, nodes, records, mastery, results
            finally:
                await db.close()

        first, outcome, nodes, records, mastery, results = asyncio.run(_run())

        assert outcome["result"]["overall_percentage"] == 40
        assert outcome["result"]["weak_unit_ids"] == ["quad-disc"]
        assert outcome["path_update_error"] is None

        inserted = outcome["path_update"]["inserted"]
        assert len(inserted) == 1
        assert inserted[0]["unit_id"] == "quad-disc"
        assert inserted[0]["order_index"] == -1000
        assert date.fromisoformat(inserted[0]["scheduled_date"]) > date.today()

        reinforcement = [n for n in nodes if n.is_reinforcement]
        assert [n.unit_id for n in reinforcement] == ["quad-disc"]
        untouched = next(n for n in nodes if n.id == first.id)
        assert untouched.status == NodeStatus.COMPLETED
        assert untouched.target_difficulty == Difficulty.EASY

        by_unit = {r["unit_id"]: r for r in records}
        assert by_unit["quad-zero-product"]["mastery_score"] == 60
        assert by_unit["quad-zero-product"]["classification"] == "needs-review"
        assert by_unit["quad-disc"]["classification"] == "weak"
        assert mastery == {"quadratics": 40}
        assert results[0]["result_json"]["correct_count"] == 4

    def test_no_active_goal_records_progress_only(self, catalog, open_db):
        async def _run():
            db = await open_db()
            try:
                outcome = await submit_mastery_test(
                    db, "student-2", "quadratics", _mastery_questions(), _mastery_answers(), exact_judge,
                    catalog=catalog,
                )
                mastery = await store.get_topic_mastery(db, "student-2", ["quadratics"])
                return outcome, mastery
            finally:
                await db.close()

        outcome, mastery = asyncio.run(_run())
        assert outcome["path_update"] is None
        assert mastery == {"quadratics": 40}

    def test_question_from_other_topic_is_rejected(self, catalog, open_db):
        questions = _mastery_questions()
        questions[0].topic_id = "linear-equations"

        async def _run():
            db = await open_db()
            try:
                await submit_mastery_test(db, "s", "quadratics", questions, [], exact_judge, catalog=catalog)
            finally:
                await db.close()

        with pytest.raises(InvalidInput):
            asyncio.run(_run())

    def test_uncovered_test_is_rejected_before_grading(self, catalog, open_db):
        questions = [Question(
            id="x1", topic_id="quadratics", correct_answer="2",
            primary_unit_id="", supporting_unit_ids=["not-a-unit"],
        )]
        answers = [AnswerSubmission(question_id="x1", answer="2")]
        judge = MagicMock(return_value=True)

        async def _run():
            db = await open_db()
            try:
                with pytest.raises(ValidationFailure) as exc_info:
                    await submit_mastery_test(db, "s", "quadratics", questions, answers, judge, catalog=catalog)
                records = await store.get_competency_records(db, "s")
                results = await store.get_mastery_results(db, "s")
                return exc_info.value, records, results
            finally:
                await db.close()

        error, records, results = asyncio.run(_run())
        reasons = {v["reason"] for v in error.violations}
        assert {"missing_primary_unit", "unit_not_allowed", "no_combination_question"} <= reasons
        assert records == []
        assert results == []
        judge.assert_not_called()


class TestPerformanceSignals:

    def test_reapplying_a_signal_is_idempotent(self, catalog, open_db):
        signal = PerformanceSignal(topic_id="quadratics", score=30, weak_units=["quad-abc"])

        async def _run():
            db = await open_db()
            try:
                goal_id = await _goal_with_path(db, catalog)
                first = await apply_performance_signal(db, goal_id, signal, catalog=catalog)
                second = await apply_performance_signal(db, goal_id, signal, catalog=catalog)
                nodes = await store.get_path_nodes(db, goal_id)
                return first, second, nodes
            finally:
                await db.close()

        first, second, nodes = asyncio.run(_run())
        assert len(first["inserted"]) == 1
        assert second["inserted"] == []
        assert len(nodes) == 4

    def test_high_score_escalates_pending_easy_nodes(self, catalog, open_db):
        async def _run():
            db = await open_db()
            try:
                goal_id = await _goal_with_path(db, catalog)
                nodes = await store.get_path_nodes(db, goal_id)
                await update_node_status(db, nodes[0].id, NodeStatus.IN_PROGRESS)
                result = await apply_performance_signal(
                    db, goal_id, PerformanceSignal(topic_id="quadratics", score=90), catalog=catalog,
                )
                return nodes, result, await store.get_path_nodes(db, goal_id)
            finally:
                await db.close()

        before, result, after = asyncio.run(_run())
        assert result["escalated_node_ids"] == [before[1].id, before[2].id]
        assert [n.target_difficulty for n in after] == [Difficulty.EASY, Difficulty.HARD, Difficulty.HARD]

    def test_concurrent_signals_do_not_collide(self, catalog, open_db):
        async def _run():
            db = await open_db()
            try:
                goal_id = await _goal_with_path(db, catalog)
                results = await asyncio.gather(
                    apply_performance_signal(
                        db, goal_id, PerformanceSignal(topic_id="quadratics", score=20, weak_units=["quad-disc"]),
                    ),
                    apply_performance_signal(
                        db, goal_id, PerformanceSignal(topic_id="quadratics", score=20, weak_units=["quad-abc"]),
                    ),
                )
                return results, await store.get_path_nodes(db, goal_id)
            finally:
                await db.close()

        results, nodes = asyncio.run(_run())
        assert all(len(r["inserted"]) == 1 for r in results)
        reinforcement = [n for n in nodes if n.is_reinforcement]
        assert {n.unit_id for n in reinforcement} == {"quad-disc", "quad-abc"}
        assert len({n.scheduled_date for n in reinforcement}) == 2

    def test_goal_locks_are_released_after_use(self, catalog, open_db):
        async def _run():
            db = await open_db()
            try:
                goal_id = await _goal_with_path(db, catalog)
                held = await get_goal_lock(goal_id)
                assert await get_goal_lock(goal_id) is held
                del held
                await apply_performance_signal(
                    db, goal_id, PerformanceSignal(topic_id="quadratics", score=20, weak_units=["quad-disc"]),
                )
                gc.collect()
                return goal_id
            finally:
                await db.close()

        goal_id = asyncio.run(_run())
        assert goal_id not in plan_updater._goal_locks
        assert len(plan_updater._goal_locks) == 0

    def test_slot_conflict_is_retried(self, catalog, open_db):
        original = store.insert_path_nodes
        calls = []

        async def flaky(db, goal_id, nodes):
            calls.append(len(nodes))
            if len(calls) == 1:
                raise SchedulingConflict("slot taken")
            return await original(db, goal_id, nodes)

        async def _run():
            db = await open_db()
            try:
                goal_id = await _goal_with_path(db, catalog)
                with patch.object(store, "insert_path_nodes", new=flaky):
                    result = await apply_performance_signal(
                        db, goal_id, PerformanceSignal(topic_id="quadratics", score=20, weak_units=["quad-disc"]),
                    )
                return result, await store.get_path_nodes(db, goal_id)
            finally:
                await db.close()

        result, nodes = asyncio.run(_run())
        assert len(calls) == 2
        assert len(result["inserted"]) == 1
        assert len([n for n in nodes if n.is_reinforcement]) == 1

    def test_persistent_conflict_surfaces(self, catalog, open_db):
        async def always_taken(db, goal_id, nodes):
            raise SchedulingConflict("slot taken")

        async def _run():
            db = await open_db()
            try:
                goal_id = await _goal_with_path(db, catalog)
                with patch.object(store, "insert_path_nodes", new=always_taken):
                    await apply_performance_signal(
                        db, goal_id, PerformanceSignal(topic_id="quadratics", score=20, weak_units=["quad-disc"]),
                    )
            finally:
                await db.close()

        with pytest.raises(SchedulingConflict):
            asyncio.run(_run())

    def test_duplicate_slot_raises_conflict(self, open_db):
        node = LearningPathNode(topic_id="quadratics", scheduled_date=date(2026, 3, 2), order_index=-1000)

        async def _run():
            db = await open_db()
            try:
                await store.insert_path_nodes(db, 1, [node])
                await store.insert_path_nodes(db, 1, [node])
            finally:
                await db.close()

        with pytest.raises(SchedulingConflict):
            asyncio.run(_run())

    def test_unknown_goal_and_topic(self, catalog, open_db):
        async def _run():
            db = await open_db()
            try:
                with pytest.raises(NotFound):
                    await apply_performance_signal(db, 999, PerformanceSignal(topic_id="quadratics", score=50))
                goal_id = await _goal_with_path(db, catalog)
                with pytest.raises(InvalidInput):
                    await apply_performance_signal(
                        db, goal_id, PerformanceSignal(topic_id="calculus", score=50), catalog=catalog,
                    )
            finally:
                await db.close()

        asyncio.run(_run())
