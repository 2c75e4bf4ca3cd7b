from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SurveyModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Question tree ---
class Topic(SurveyModel):
    name: str = Field(alias="topic")
    questions: List[str] = Field(default_factory=list)


class Subcategory(SurveyModel):
    name: str = Field(alias="subcategory")
    topics: List[Topic]


class Category(SurveyModel):
    name: str = Field(alias="category")
    subcategories: List[Subcategory]


QuestionTree = List[Category]


class Position(NamedTuple):
    category: int = 0
    subcategory: int = 0
    topic: int = 0
    question: int = 0


class QuestionView(SurveyModel):
    question_id: str
    position: Position
    category: str
    subcategory: str
    topic: str
    question: str
    question_number: int
    topic_question_count: int


# --- Respondent ---
Region = Literal["North", "South", "East", "West", "Central"]


class UserInfo(SurveyModel):
    region: Region
    age: int = Field(ge=1, le=120)
    years_in_region: int = Field(ge=0)

    @model_validator(mode="after")
    def _years_within_age(self) -> "UserInfo":
        if self.years_in_region > self.age:
            raise ValueError("Years in region cannot exceed your age")
        return self


class SessionProgress(SurveyModel):
    current_category: int = 0
    current_subcategory: int = 0
    current_topic: int = 0
    current_question: int = 0
    completed_questions: int = 0
    total_questions: int = 0
    completed_topics: List[str] = Field(default_factory=list)
    attention_checks_passed: int = 0
    attention_checks_failed: int = 0

    @property
    def position(self) -> Position:
        return Position(
            self.current_category,
            self.current_subcategory,
            self.current_topic,
            self.current_question,
        )

    def move_to(self, position: Position) -> None:
        (
            self.current_category,
            self.current_subcategory,
            self.current_topic,
            self.current_question,
        ) = position


class SessionRecord(SurveyModel):
    session_id: str
    user_info: UserInfo
    progress: SessionProgress = Field(default_factory=SessionProgress)
    is_completed: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)


class QuestionResponse(SurveyModel):
    session_id: str
    question_id: str
    category_index: int = Field(ge=0)
    subcategory_index: int = Field(ge=0)
    topic_index: int = Field(ge=0)
    question_index: int = Field(ge=0)
    category: str
    subcategory: str
    topic: str
    question: str
    answer: str = Field(max_length=5000)
    cultural_commonsense: Optional[bool] = None
    time_spent: int = Field(default=0, ge=0)
    timestamp: datetime = Field(default_factory=utcnow)
    quality_score: int = Field(default=100, ge=0, le=100)
    is_attention_check: bool = False
    attention_check_correct: Optional[bool] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def position(self) -> Position:
        return Position(
            self.category_index,
            self.subcategory_index,
            self.topic_index,
            self.question_index,
        )


# --- Quality ---
class QualityVerdict(SurveyModel):
    score: int
    issues: List[str] = Field(default_factory=list)
    is_none_response: bool = False
    is_gibberish: bool = False

    @computed_field
    @property
    def is_low_quality(self) -> bool:
        return self.score < 30


class IssueType(str, Enum):
    NONE_RESPONSE = "none"
    GIBBERISH = "gibberish"
    SPEED = "speed"
    REPETITION = "repetition"
    QUALITY = "quality"
    MULTIPLE = "multiple"
    ABSENT = "absent"


class AnswerSample(SurveyModel):
    answer_text: str
    time_spent_seconds: float = 0


class PatternVerdict(SurveyModel):
    suspicious: bool = False
    warnings: List[str] = Field(default_factory=list)
    none_rate: float = 0.0
    gibberish_rate: float = 0.0
    fast_response_rate: float = 0.0
    primary_issue_type: IssueType = IssueType.ABSENT
    issue_types: List[IssueType] = Field(default_factory=list)


# --- Attention checks ---
class CheckKind(str, Enum):
    OPEN_TEXT = "open_text"
    MULTIPLE_CHOICE = "multiple_choice"


class AttentionCheck(SurveyModel):
    check_id: str
    kind: CheckKind
    prompt_text: str
    accepted_answers: List[str] = Field(default_factory=list)
    options: List[str] = Field(default_factory=list)
    correct_index: Optional[int] = None
    associated_category: str = ""
    associated_topic: str = ""

    def public_view(self) -> Dict[str, Any]:
        """What the respondent is allowed to see."""
        return {
            "checkId": self.check_id,
            "kind": self.kind.value,
            "promptText": self.prompt_text,
            "options": list(self.options),
        }


class Milestone(str, Enum):
    NONE = "none"
    TOPIC = "topic"
    SUBCATEGORY = "subcategory"
    CATEGORY = "category"


class MilestoneEvent(SurveyModel):
    type: Milestone
    name: str
    parent_name: Optional[str] = None


# --- Live session state ---
class SessionState(SurveyModel):
    session_id: str
    user_info: Optional[UserInfo] = None
    progress: SessionProgress = Field(default_factory=SessionProgress)
    started_at: datetime = Field(default_factory=utcnow)
    pending_check: Optional[AttentionCheck] = None
    last_check_count: int = 0
    checks_served: int = 0
    intervention_active: bool = False
    alerted_streak: bool = False
    last_pattern: Optional[PatternVerdict] = None
    is_completed: bool = False
    is_expired: bool = False
    progress_dirty: bool = False

    @property
    def position(self) -> Position:
        return self.progress.position


class SubmissionResult(SurveyModel):
    response: QuestionResponse
    quality: QualityVerdict
    pattern: PatternVerdict
    feedback: List[str] = Field(default_factory=list)
    intervention: bool = False
    attention_check: Optional[Dict[str, Any]] = None
    milestone: Optional[MilestoneEvent] = None
    completed: bool = False
    progress: SessionProgress
    progress_synced: bool = True


class CheckResult(SurveyModel):
    correct: bool
    progress: SessionProgress
    progress_synced: bool = True


# --- Request bodies ---
class AnswerRequest(SurveyModel):
    answer: str
    time_spent: int = Field(default=0, ge=0)
    cultural_commonsense: Optional[bool] = None


class AttentionAnswerRequest(SurveyModel):
    answer: Union[int, str]
    time_spent: int = Field(default=0, ge=0)


class JumpRequest(SurveyModel):
    category_index: int = Field(ge=0)
    subcategory_index: int = Field(ge=0)
    topic_index: int = Field(ge=0)
    question_index: int = Field(ge=0)


class PreviewRequest(SurveyModel):
    answer: str


class BatchSaveRequest(SurveyModel):
    responses: List[QuestionResponse] = Field(min_length=1)
