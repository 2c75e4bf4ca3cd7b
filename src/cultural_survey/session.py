import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Sequence, Union

from . import navigation
from .attention import AttentionCheckFactory, grade_attention_check, is_attention_check_due
from .config import Settings, settings as default_settings
from .errors import (
    AnswerValidationError,
    AttentionCheckPendingError,
    DuplicateResponseError,
    InterventionPendingError,
    InvalidPositionError,
    SessionExpiredError,
    StoreUnavailableError,
    SurveyError,
)
from .models import (
    CheckResult,
    PatternVerdict,
    Position,
    QualityVerdict,
    QuestionResponse,
    QuestionTree,
    SessionState,
    SubmissionResult,
    UserInfo,
    utcnow,
)
from .progress_sync import ProgressSync
from .quality import analyze_pattern, analyze_quality, samples_from_responses
from .store import SurveyStore

logger = logging.getLogger(__name__)

SECONDS_PER_QUESTION = 120


def validate_answer(
    answer: str,
    min_length: Optional[int] = None,
    max_length: Optional[int] = None,
) -> str:
    """Return the trimmed answer or raise AnswerValidationError."""
    min_length = default_settings.MIN_ANSWER_LENGTH if min_length is None else min_length
    max_length = default_settings.MAX_ANSWER_LENGTH if max_length is None else max_length
    text = (answer or "").strip()
    if not text:
        raise AnswerValidationError(
            'Please provide an answer or specify "none" if no answer exists'
        )
    if len(text) < min_length:
        raise AnswerValidationError(
            f"Please provide a more detailed answer (at least {min_length} characters)"
        )
    if len(answer) > max_length:
        raise AnswerValidationError(f"Answer is too long (maximum {max_length} characters)")
    return text


def format_time_remaining(remaining_questions: int, seconds_per_question: int = SECONDS_PER_QUESTION) -> str:
    seconds = max(remaining_questions, 0) * seconds_per_question
    if seconds < 3600:
        minutes = math.ceil(seconds / 60)
        return f"~{minutes} minute{'s' if minutes != 1 else ''} remaining"
    hours = math.ceil(seconds / 3600)
    return f"~{hours} hour{'s' if hours != 1 else ''} remaining"


class SurveySession:
    def __init__(
        self,
        state: SessionState,
        tree: QuestionTree,
        store: SurveyStore,
        sync: Optional[ProgressSync] = None,
        checks: Optional[AttentionCheckFactory] = None,
        config: Settings = default_settings,
    ):
        self.state = state
        self.tree = tree
        self.store = store
        self.sync = sync or ProgressSync(store)
        self.checks = checks or AttentionCheckFactory(tree)
        self.config = config

    # --- Lifecycle ---
    @classmethod
    def create(cls, user_info: UserInfo, tree: QuestionTree, store: SurveyStore, **kwargs) -> "SurveySession":
        record = store.create_session(user_info, navigation.total_questions(tree))
        state = SessionState(
            session_id=record.session_id,
            user_info=record.user_info,
            progress=record.progress,
            started_at=record.created_at,
        )
        logger.info(f"New survey session: {record.session_id} [Region: {user_info.region}]")
        return cls(state, tree, store, **kwargs)

    @classmethod
    def resume(
        cls,
        session_id: str,
        tree: QuestionTree,
        store: SurveyStore,
        cached: Optional[SessionState] = None,
        **kwargs,
    ) -> "SurveySession":
        """Rebuild a session from the cache or, failing that, the durable record.

        Raises SessionNotFoundError for unknown ids.
        """
        record = store.get_session(session_id)
        if cached is not None:
            state = cached
        else:
            state = SessionState(
                session_id=session_id,
                user_info=record.user_info,
                progress=record.progress,
                started_at=record.created_at,
                is_completed=record.is_completed,
            )
            state.last_check_count = state.progress.completed_questions
            progress = state.progress
            state.checks_served = progress.attention_checks_passed + progress.attention_checks_failed
            logger.info(f"Resumed session {session_id} from durable record")

        session = cls(state, tree, store, **kwargs)
        session._reconcile()
        return session

    def _reconcile(self) -> None:
        progress = self.state.progress
        progress.total_questions = navigation.total_questions(self.tree)
        if not navigation.is_valid(progress.position, self.tree):
            logger.warning(
                f"Stored position {tuple(progress.position)} for {self.session_id} "
                f"no longer exists; restarting at the first question"
            )
            progress.move_to(navigation.FIRST_POSITION)
        if self.state.progress_dirty:
            self._push()
        else:
            self.sync.flush(self.session_id)

    def _push(self) -> bool:
        synced = self.sync.push(self.session_id, self.state.progress)
        self.state.progress_dirty = not synced
        return synced

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def position(self) -> Position:
        return self.state.position

    # --- Deadline ---
    def deadline(self) -> Optional[datetime]:
        if self.config.SURVEY_TIME_LIMIT_MINUTES <= 0:
            return None
        return self.state.started_at + timedelta(minutes=self.config.SURVEY_TIME_LIMIT_MINUTES)

    def check_deadline(self, now: Optional[datetime] = None) -> bool:
        deadline = self.deadline()
        if deadline is not None and not self.state.is_expired and (now or utcnow()) >= deadline:
            self.state.is_expired = True
            logger.info(f"Session {self.session_id} expired")
        return self.state.is_expired

    def time_status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        deadline = self.deadline()
        expired = self.check_deadline(now)
        if deadline is None:
            return {"limited": False, "expired": expired}
        remaining = max(0, int((deadline - (now or utcnow())).total_seconds()))
        return {
            "limited": True,
            "expired": expired,
            "remainingSeconds": remaining,
            "warning": remaining <= self.config.TIME_WARNING_MINUTES * 60,
            "critical": remaining <= self.config.TIME_CRITICAL_MINUTES * 60,
        }

    # --- Views ---
    def current_item(self) -> Dict[str, Any]:
        if self.check_deadline():
            return {"type": "expired"}
        if self.state.is_completed:
            return {"type": "completed"}
        if self.state.pending_check is not None:
            return {"type": "attention_check", "attentionCheck": self.state.pending_check.public_view()}
        view = navigation.describe(self.position, self.tree)
        return {"type": "question", "question": view.model_dump(by_alias=True)}

    def progress_percent(self) -> float:
        total = self.state.progress.total_questions
        return self.state.progress.completed_questions / total * 100 if total > 0 else 0.0

    def estimated_time_remaining(self) -> str:
        progress = self.state.progress
        return format_time_remaining(progress.total_questions - progress.completed_questions)

    def preview(self, answer: str) -> QualityVerdict:
        return analyze_quality(answer)

    # --- Guards ---
    def _ensure_open(self) -> None:
        if self.check_deadline():
            raise SessionExpiredError("The survey time limit has been reached")
        if self.state.is_completed:
            raise SurveyError("The survey is already completed")

    def _ensure_unblocked(self) -> None:
        if self.state.intervention_active:
            raise InterventionPendingError(
                "Please review the quality notice before continuing"
            )

    def _ensure_no_check(self) -> None:
        if self.state.pending_check is not None:
            raise AttentionCheckPendingError("Please answer the attention check first")

    # --- Submission cycle ---
    def submit_answer(
        self,
        answer: str,
        time_spent: int = 0,
        cultural_commonsense: Optional[bool] = None,
    ) -> SubmissionResult:
        self._ensure_open()
        self._ensure_unblocked()
        self._ensure_no_check()

        text = validate_answer(answer, self.config.MIN_ANSWER_LENGTH, self.config.MAX_ANSWER_LENGTH)
        if self.config.REQUIRE_CULTURAL_COMMONSENSE and cultural_commonsense is None:
            raise AnswerValidationError(
                "Please indicate whether this is common knowledge in your region"
            )

        quality = analyze_quality(text)
        feedback = list(quality.issues) if self.config.REAL_TIME_FEEDBACK else []

        position = self.position
        view = navigation.describe(position, self.tree)
        response = QuestionResponse(
            session_id=self.session_id,
            question_id=view.question_id,
            category_index=position.category,
            subcategory_index=position.subcategory,
            topic_index=position.topic,
            question_index=position.question,
            category=view.category,
            subcategory=view.subcategory,
            topic=view.topic,
            question=view.question,
            answer=text,
            cultural_commonsense=cultural_commonsense,
            time_spent=max(0, int(time_spent)),
            quality_score=quality.score,
        )
        is_new = self._save(response)

        progress = self.state.progress
        if is_new:
            progress.completed_questions += 1

        pattern = self._update_pattern()
        intervention = self.state.intervention_active

        milestone = navigation.milestone_event(position, self.tree)
        if milestone is not None and view.topic not in progress.completed_topics:
            progress.completed_topics.append(view.topic)

        nxt = navigation.advance(position, self.tree)
        if nxt is navigation.COMPLETED:
            self._complete()
        else:
            progress.move_to(nxt)
            self._schedule_check(view.category, view.topic)

        synced = self._push()
        check = self.state.pending_check
        return SubmissionResult(
            response=response,
            quality=quality,
            pattern=pattern,
            feedback=feedback,
            intervention=intervention,
            attention_check=check.public_view() if check else None,
            milestone=milestone,
            completed=self.state.is_completed,
            progress=progress.model_copy(deep=True),
            progress_synced=synced,
        )

    def _save(self, response: QuestionResponse) -> bool:
        try:
            return self.store.save_response(response)
        except DuplicateResponseError:
            logger.info(f"Response {response.question_id} for {self.session_id} already stored")
            return False

    def _update_pattern(self) -> PatternVerdict:
        try:
            history = samples_from_responses(self.store.list_responses(self.session_id))
        except StoreUnavailableError as e:
            logger.warning(f"Could not load history for {self.session_id}; keeping last verdict: {e}")
            return self.state.last_pattern or PatternVerdict()

        pattern = analyze_pattern(
            history,
            fast_threshold=self.config.FAST_RESPONSE_SECONDS,
            rate_threshold=self.config.SUSPICIOUS_RATE_PERCENT,
            min_responses=self.config.PATTERN_MIN_RESPONSES,
        )
        self.state.last_pattern = pattern
        if pattern.suspicious:
            if not self.state.alerted_streak:
                self.state.intervention_active = True
                self.state.alerted_streak = True
                logger.info(
                    f"Quality intervention for {self.session_id}: "
                    f"{pattern.primary_issue_type.value} ({'; '.join(pattern.warnings)})"
                )
        else:
            self.state.alerted_streak = False
        return pattern

    def _schedule_check(self, category: str, topic: str) -> None:
        count = self.state.progress.completed_questions
        if count == self.state.last_check_count:
            return
        if not is_attention_check_due(count, self.config.ATTENTION_CHECK_INTERVAL):
            return
        self.state.pending_check = self.checks.create(category, topic, self.state.user_info)
        self.state.last_check_count = count
        self.state.checks_served += 1
        logger.info(f"Attention check scheduled for {self.session_id} after {count} answers")

    def _complete(self) -> None:
        self.state.is_completed = True
        self.state.pending_check = None
        try:
            self.store.mark_complete(self.session_id)
        except StoreUnavailableError as e:
            logger.warning(f"Could not mark {self.session_id} complete: {e}")
        logger.info(f"Session {self.session_id} completed the survey")

    # --- Attention checks ---
    def _checks_answered(self) -> int:
        progress = self.state.progress
        return progress.attention_checks_passed + progress.attention_checks_failed

    def submit_attention_check(self, answer: Union[int, str], time_spent: int = 0) -> CheckResult:
        self._ensure_open()
        self._ensure_unblocked()
        check = self.state.pending_check
        if check is None:
            raise SurveyError("No attention check is pending")

        correct = grade_attention_check(check, answer)
        position = self.position
        self._save(
            QuestionResponse(
                session_id=self.session_id,
                question_id=f"attention-{self._checks_answered() + 1}",
                category_index=position.category,
                subcategory_index=position.subcategory,
                topic_index=position.topic,
                question_index=position.question,
                category=check.associated_category,
                subcategory="",
                topic=check.associated_topic,
                question=check.prompt_text,
                answer=str(answer),
                time_spent=max(0, int(time_spent)),
                is_attention_check=True,
                attention_check_correct=correct,
            )
        )

        progress = self.state.progress
        if correct:
            progress.attention_checks_passed += 1
        else:
            progress.attention_checks_failed += 1
        self.state.pending_check = None
        logger.info(f"Attention check for {self.session_id}: {'passed' if correct else 'failed'}")

        synced = self._push()
        return CheckResult(correct=correct, progress=progress.model_copy(deep=True), progress_synced=synced)

    def save_batch(self, responses: Sequence[QuestionResponse]) -> int:
        """Upsert answers saved offline; returns how many were new."""
        self._ensure_open()
        self._ensure_unblocked()
        checked = []
        for r in responses:
            if r.is_attention_check:
                raise AnswerValidationError("Attention checks cannot be saved in a batch")
            if not navigation.is_valid(r.position, self.tree):
                raise InvalidPositionError(f"Invalid position for {r.question_id}")
            if r.question_id != navigation.encode_question_id(r.position):
                raise InvalidPositionError(
                    f"Question id {r.question_id} does not match its position"
                )
            text = validate_answer(r.answer, self.config.MIN_ANSWER_LENGTH, self.config.MAX_ANSWER_LENGTH)
            view = navigation.describe(r.position, self.tree)
            checked.append(
                r.model_copy(
                    update={
                        "answer": text,
                        "quality_score": analyze_quality(text).score,
                        "category": view.category,
                        "subcategory": view.subcategory,
                        "topic": view.topic,
                        "question": view.question,
                        "attention_check_correct": None,
                    }
                )
            )

        flags = self.store.save_responses(self.session_id, checked)
        created = sum(1 for new in flags if new)
        if created:
            self.state.progress.completed_questions += created
            self._push()
        return created

    def acknowledge_intervention(self) -> None:
        self.state.intervention_active = False

    # --- Free navigation ---
    def go_back(self) -> Position:
        self._ensure_open()
        self._ensure_no_check()
        return self._move(navigation.retreat(self.position, self.tree))

    def skip(self) -> Union[Position, object]:
        self._ensure_open()
        self._ensure_unblocked()
        self._ensure_no_check()
        nxt = navigation.advance(self.position, self.tree)
        if nxt is navigation.COMPLETED:
            self._complete()
            self._push()
            return nxt
        return self._move(nxt)

    def jump_to(self, target: Position) -> Position:
        self._ensure_open()
        self._ensure_no_check()
        return self._move(navigation.jump_to(target, self.tree))

    def _move(self, position: Position) -> Position:
        if position != self.position:
            self.state.progress.move_to(position)
            self._push()
        return position
