import random
from datetime import datetime, timedelta, timezone

import pytest

from cultural_survey.attention import AttentionCheckFactory
from cultural_survey.config import Settings
from cultural_survey.errors import (
    AnswerValidationError,
    AttentionCheckPendingError,
    DuplicateResponseError,
    InterventionPendingError,
    InvalidPositionError,
    SessionExpiredError,
    SessionNotFoundError,
    StoreUnavailableError,
    SurveyError,
)
from cultural_survey.models import IssueType, Milestone, Position
from cultural_survey.progress_sync import ProgressSync
from cultural_survey.session import SurveySession, format_time_remaining, validate_answer
from cultural_survey.store import InMemorySurveyStore

from conftest import GOOD_ANSWERS, correct_answer, wrong_answer


def answer_n(survey, n, start=0):
    results = []
    for text in GOOD_ANSWERS[start:start + n]:
        results.append(survey.submit_answer(text, time_spent=30, cultural_commonsense=True))
    return results


class TestValidateAnswer:
    def test_trims(self):
        assert validate_answer("  a detailed answer  ") == "a detailed answer"

    def test_empty(self):
        with pytest.raises(AnswerValidationError, match='specify "none"'):
            validate_answer("   ")

    def test_too_short(self):
        with pytest.raises(AnswerValidationError, match="at least 10 characters"):
            validate_answer("too short")

    def test_custom_minimum(self):
        assert validate_answer("none", min_length=4) == "none"

    def test_too_long(self):
        with pytest.raises(AnswerValidationError, match="maximum 5000"):
            validate_answer("x" * 5001)


def test_format_time_remaining():
    assert format_time_remaining(1) == "~2 minutes remaining"
    assert format_time_remaining(0) == "~0 minutes remaining"
    assert format_time_remaining(45) == "~2 hours remaining"


class TestSubmissionCycle:
    def test_first_answer(self, survey, store):
        result = survey.submit_answer(GOOD_ANSWERS[0], time_spent=30, cultural_commonsense=True)
        assert result.response.question_id == "0-0-0-0"
        assert result.quality.score > 80
        assert not result.pattern.suspicious
        assert result.progress.completed_questions == 1
        assert survey.position == Position(0, 0, 0, 1)
        assert result.progress_synced
        assert store.get_session(survey.session_id).progress.current_question == 1

    def test_attention_check_does_not_consume_position(self, survey, store):
        results = answer_n(survey, 7)
        seventh = results[-1].response.position
        assert results[-1].attention_check is not None
        assert all(r.attention_check is None for r in results[:-1])

        item = survey.current_item()
        assert item["type"] == "attention_check"
        assert "correctIndex" not in item["attentionCheck"]

        check = survey.state.pending_check
        outcome = survey.submit_attention_check(correct_answer(check), time_spent=5)
        assert outcome.correct
        assert outcome.progress.attention_checks_passed == 1

        item = survey.current_item()
        assert item["type"] == "question"
        assert tuple(item["question"]["position"]) == Position(1, 0, 0, 0)
        assert seventh == Position(0, 1, 0, 1)
        assert survey.state.progress.completed_questions == 7

        stored = store.list_responses(survey.session_id)
        probes = [r for r in stored if r.is_attention_check]
        assert len(probes) == 1
        assert probes[0].attention_check_correct is True
        assert probes[0].question_id == "attention-1"

    def test_failed_attention_check_is_counted(self, survey):
        answer_n(survey, 7)
        survey.submit_attention_check(wrong_answer(survey.state.pending_check))
        assert survey.state.progress.attention_checks_failed == 1
        assert survey.state.pending_check is None

    def test_pending_check_blocks_answers(self, survey):
        answer_n(survey, 7)
        with pytest.raises(AttentionCheckPendingError):
            survey.submit_answer(GOOD_ANSWERS[7], 30, True)
        with pytest.raises(AttentionCheckPendingError):
            survey.skip()

    def test_no_check_without_pending(self, survey):
        with pytest.raises(SurveyError, match="No attention check"):
            survey.submit_attention_check("yellow")

    def test_milestones(self, survey):
        results = answer_n(survey, 7)
        milestones = [r.milestone.type if r.milestone else None for r in results]
        assert milestones == [
            None,
            None,
            Milestone.TOPIC,
            None,
            Milestone.SUBCATEGORY,
            None,
            Milestone.CATEGORY,
        ]
        assert survey.state.progress.completed_topics == ["Preparations", "Rituals", "Gatherings"]

    def test_completion(self, survey, store):
        answer_n(survey, 7)
        survey.submit_attention_check(correct_answer(survey.state.pending_check))
        results = answer_n(survey, 3, start=7)
        assert results[-1].completed
        assert survey.current_item() == {"type": "completed"}
        assert store.get_session(survey.session_id).is_completed
        assert survey.progress_percent() == 100.0
        with pytest.raises(SurveyError, match="already completed"):
            survey.submit_answer(GOOD_ANSWERS[0], 30, True)

    def test_validation_blocks_submission(self, survey, store):
        with pytest.raises(AnswerValidationError):
            survey.submit_answer("short", 30, True)
        with pytest.raises(AnswerValidationError, match="common knowledge"):
            survey.submit_answer(GOOD_ANSWERS[0], 30, None)
        assert store.list_responses(survey.session_id) == []
        assert survey.position == Position(0, 0, 0, 0)

    def test_feedback_lists_issues(self, survey):
        result = survey.submit_answer("qwerty qwerty keys", 30, True)
        assert "Keyboard mashing or test input detected" in result.feedback
        assert result.quality.is_gibberish


class TestDuplicates:
    def test_reanswer_after_going_back(self, survey, store):
        answer_n(survey, 2)
        survey.go_back()
        result = survey.submit_answer("A corrected and longer answer here.", 30, True)
        assert result.response.question_id == "0-0-0-1"
        assert survey.state.progress.completed_questions == 2
        stored = {r.question_id: r.answer for r in store.list_responses(survey.session_id)}
        assert stored["0-0-0-1"] == "A corrected and longer answer here."
        assert len(stored) == 2

    def test_duplicate_error_counts_as_saved(self, tree, user_info):
        class StrictStore(InMemorySurveyStore):
            def save_response(self, response):
                if response.question_id in {r.question_id for r in self.list_responses(response.session_id)}:
                    raise DuplicateResponseError(response.question_id)
                return super().save_response(response)

        store = StrictStore()
        survey = SurveySession.create(user_info, tree, store, sync=ProgressSync(store, backoff_seconds=0))
        survey.submit_answer(GOOD_ANSWERS[0], 30, True)
        survey.go_back()
        result = survey.submit_answer(GOOD_ANSWERS[1], 30, True)
        assert result.progress.completed_questions == 1
        assert survey.position == Position(0, 0, 0, 1)


class TestIntervention:
    def repeat(self, survey, n):
        for _ in range(n):
            survey.submit_answer("We cook rice for everyone.", 30, True)

    def test_suspicious_pattern_blocks_until_acknowledged(self, survey):
        self.repeat(survey, 4)
        assert not survey.state.intervention_active
        survey.submit_answer("We cook rice for everyone.", 30, True)
        assert survey.state.intervention_active
        assert survey.state.last_pattern.primary_issue_type == IssueType.REPETITION

        with pytest.raises(InterventionPendingError):
            survey.submit_answer(GOOD_ANSWERS[0], 30, True)
        with pytest.raises(InterventionPendingError):
            survey.skip()

        survey.go_back()
        survey.jump_to(Position(0, 1, 0, 0))
        survey.acknowledge_intervention()
        result = survey.submit_answer(GOOD_ANSWERS[0], 30, True)
        # Still suspicious, but the same streak does not alert twice.
        assert result.pattern.suspicious
        assert not result.intervention
        assert not survey.state.intervention_active

    def test_store_outage_keeps_last_verdict(self, survey, monkeypatch):
        self.repeat(survey, 5)
        survey.acknowledge_intervention()

        def offline(session_id):
            raise StoreUnavailableError("offline")

        monkeypatch.setattr(survey.store, "list_responses", offline)
        result = survey.submit_answer(GOOD_ANSWERS[0], 30, True)
        assert result.pattern.suspicious
        assert result.pattern.primary_issue_type == IssueType.REPETITION


class TestNavigation:
    def test_back_at_start(self, survey):
        assert survey.go_back() == Position(0, 0, 0, 0)

    def test_skip_moves_without_counting(self, survey, store):
        survey.skip()
        assert survey.position == Position(0, 0, 0, 1)
        assert survey.state.progress.completed_questions == 0
        assert store.list_responses(survey.session_id) == []

    def test_skip_past_end_completes(self, survey):
        survey.jump_to(Position(1, 0, 2, 0))
        survey.skip()
        assert survey.state.is_completed

    def test_jump_validates(self, survey):
        with pytest.raises(InvalidPositionError):
            survey.jump_to(Position(1, 0, 1, 0))
        assert survey.jump_to(Position(1, 0, 0, 1)) == Position(1, 0, 0, 1)


class TestBatchSave:
    def test_counts_new_answers(self, survey, store):
        first = survey.submit_answer(GOOD_ANSWERS[0], 30, True).response
        second = first.model_copy(
            update={"question_id": "0-0-0-1", "question_index": 1, "question": "P2?"}
        )
        created = survey.save_batch([first, second])
        assert created == 1
        assert survey.state.progress.completed_questions == 2
        assert len(store.list_responses(survey.session_id)) == 2

    def test_rejects_mismatched_id(self, survey):
        response = survey.submit_answer(GOOD_ANSWERS[0], 30, True).response
        with pytest.raises(InvalidPositionError):
            survey.save_batch([response.model_copy(update={"question_id": "0-0-0-2"})])

    def test_rejects_short_answer(self, survey):
        response = survey.submit_answer(GOOD_ANSWERS[0], 30, True).response
        with pytest.raises(AnswerValidationError):
            survey.save_batch([response.model_copy(update={"answer": "meh"})])

    def test_recomputes_quality_score(self, survey, store):
        first = survey.submit_answer(GOOD_ANSWERS[0], 30, True).response
        forged = first.model_copy(
            update={
                "question_id": "0-0-0-1",
                "question_index": 1,
                "answer": "asdf asdf asdf asdf",
                "quality_score": 100,
            }
        )
        survey.save_batch([forged])
        stored = {r.question_id: r for r in store.list_responses(survey.session_id)}
        assert stored["0-0-0-1"].quality_score < 50
        assert stored["0-0-0-1"].question == "P2?"

    def test_trims_answers(self, survey, store):
        first = survey.submit_answer(GOOD_ANSWERS[0], 30, True).response
        survey.save_batch([first.model_copy(update={"answer": "   an edited longer answer   "})])
        assert store.list_responses(survey.session_id)[0].answer == "an edited longer answer"

    def test_refuses_attention_checks(self, survey, store):
        first = survey.submit_answer(GOOD_ANSWERS[0], 30, True).response
        fake_check = first.model_copy(
            update={
                "question_id": "attention-99",
                "is_attention_check": True,
                "attention_check_correct": True,
            }
        )
        with pytest.raises(AnswerValidationError):
            survey.save_batch([fake_check])
        assert [r.question_id for r in store.list_responses(survey.session_id)] == ["0-0-0-0"]

    def test_blocked_during_intervention(self, survey):
        first = survey.submit_answer(GOOD_ANSWERS[0], 30, True).response
        survey.state.intervention_active = True
        with pytest.raises(InterventionPendingError):
            survey.save_batch([first])


class TestResume:
    def test_unknown_session(self, tree, store):
        with pytest.raises(SessionNotFoundError):
            SurveySession.resume("missing", tree, store)

    def test_from_durable_record(self, survey, tree, store):
        answer_n(survey, 7)
        resumed = SurveySession.resume(survey.session_id, tree, store)
        assert resumed.position == Position(1, 0, 0, 0)
        assert resumed.state.pending_check is None
        # Re-answering the seventh question must not serve the same check again.
        resumed.go_back()
        resumed.submit_answer("A revised answer about the harvest fair.", 30, True)
        assert resumed.state.progress.completed_questions == 7
        assert resumed.state.pending_check is None

    def test_from_cached_state(self, survey, tree, store):
        answer_n(survey, 7)
        resumed = SurveySession.resume(survey.session_id, tree, store, cached=survey.state)
        assert resumed.current_item()["type"] == "attention_check"

    def test_check_records_survive_resume(self, survey, tree, store):
        answer_n(survey, 7)
        survey.submit_attention_check(correct_answer(survey.state.pending_check))

        resumed = SurveySession.resume(
            survey.session_id, tree, store,
            sync=ProgressSync(store, backoff_seconds=0),
            config=EveryEighthSettings(),
        )
        resumed.submit_answer(GOOD_ANSWERS[7], 30, True)
        resumed.submit_attention_check(wrong_answer(resumed.state.pending_check))

        probes = [r for r in store.list_responses(survey.session_id) if r.is_attention_check]
        assert [r.question_id for r in probes] == ["attention-1", "attention-2"]
        assert [r.attention_check_correct for r in probes] == [True, False]
        progress = store.get_session(survey.session_id).progress
        assert (progress.attention_checks_passed, progress.attention_checks_failed) == (1, 1)

    def test_stale_position_is_reset(self, survey, tree, store):
        survey.jump_to(Position(1, 0, 2, 0))
        shorter = tree[:1]
        resumed = SurveySession.resume(survey.session_id, shorter, store)
        assert resumed.position == Position(0, 0, 0, 0)
        assert resumed.state.progress.total_questions == 7

    def test_unsynced_progress_is_pushed_on_resume(self, survey, tree, store, monkeypatch):
        original = store.update_progress

        def offline(session_id, progress):
            raise StoreUnavailableError("offline")

        monkeypatch.setattr(store, "update_progress", offline)
        survey.skip()
        assert survey.state.progress_dirty

        monkeypatch.setattr(store, "update_progress", original)
        resumed = SurveySession.resume(
            survey.session_id, tree, store, cached=survey.state,
            sync=ProgressSync(store, backoff_seconds=0),
        )
        assert not resumed.state.progress_dirty
        assert store.get_session(survey.session_id).progress.current_question == 1


class LimitedSettings(Settings):
    SURVEY_TIME_LIMIT_MINUTES = 30


class EveryEighthSettings(Settings):
    ATTENTION_CHECK_INTERVAL = 8


class TestDeadline:
    @pytest.fixture
    def timed(self, tree, store, user_info):
        return SurveySession.create(
            user_info,
            tree,
            store,
            sync=ProgressSync(store, backoff_seconds=0),
            checks=AttentionCheckFactory(tree, rng=random.Random(5)),
            config=LimitedSettings(),
        )

    def test_no_limit_by_default(self, survey):
        assert survey.deadline() is None
        assert survey.time_status() == {"limited": False, "expired": False}

    def test_warning_and_critical(self, timed):
        start = timed.state.started_at
        status = timed.time_status(start + timedelta(minutes=21))
        assert status["warning"] and not status["critical"]
        status = timed.time_status(start + timedelta(minutes=29))
        assert status["critical"]
        assert not status["expired"]

    def test_expiry_is_terminal(self, timed):
        timed.state.started_at = datetime.now(timezone.utc) - timedelta(minutes=31)
        assert timed.current_item() == {"type": "expired"}
        with pytest.raises(SessionExpiredError):
            timed.submit_answer(GOOD_ANSWERS[0], 30, True)
        with pytest.raises(SessionExpiredError):
            timed.go_back()
        assert timed.state.is_expired
