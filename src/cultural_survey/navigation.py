from typing import Optional, Union

from .errors import InvalidPositionError
from .models import (
    Milestone,
    MilestoneEvent,
    Position,
    QuestionTree,
    QuestionView,
)


class _Completed:
    def __repr__(self) -> str:
        return "COMPLETED"


COMPLETED = _Completed()

FIRST_POSITION = Position(0, 0, 0, 0)


def encode_question_id(position: Position) -> str:
    return "-".join(str(i) for i in position)


def decode_question_id(question_id: str) -> Position:
    parts = question_id.split("-")
    if len(parts) != 4 or not all(p.isdigit() for p in parts):
        raise InvalidPositionError(f"Malformed question id: {question_id!r}")
    return Position(*(int(p) for p in parts))


def is_valid(position: Position, tree: QuestionTree) -> bool:
    c, s, t, q = position
    if min(position) < 0 or c >= len(tree):
        return False
    subcategories = tree[c].subcategories
    if s >= len(subcategories):
        return False
    topics = subcategories[s].topics
    if t >= len(topics):
        return False
    return q < len(topics[t].questions)


def _require_valid(position: Position, tree: QuestionTree) -> None:
    if not is_valid(position, tree):
        raise InvalidPositionError(f"Position {tuple(position)} does not address a question")


def _last_in(tree: QuestionTree, c: int, s: Optional[int] = None, t: Optional[int] = None) -> Position:
    """Last question inside the given category / subcategory / topic."""
    subcategories = tree[c].subcategories
    s = len(subcategories) - 1 if s is None else s
    topics = subcategories[s].topics
    t = len(topics) - 1 if t is None else t
    return Position(c, s, t, len(topics[t].questions) - 1)


def _first_in(tree: QuestionTree, c: int, s: int = 0, t: int = 0) -> Position:
    return Position(c, s, t, 0)


def total_questions(tree: QuestionTree) -> int:
    return sum(len(t.questions) for c in tree for s in c.subcategories for t in s.topics)


def last_position(tree: QuestionTree) -> Position:
    return _last_in(tree, len(tree) - 1)


def is_terminal(position: Position, tree: QuestionTree) -> bool:
    return bool(tree) and position == last_position(tree)


def advance(position: Position, tree: QuestionTree) -> Union[Position, _Completed]:
    """Next question in reading order, or ``COMPLETED`` past the last one.

    Topics without questions are stepped over.
    """
    _require_valid(position, tree)
    c, s, t, q = position
    topics = tree[c].subcategories[s].topics
    if q < len(topics[t].questions) - 1:
        return Position(c, s, t, q + 1)

    # Walk forward through topics, then subcategories, then categories.
    t += 1
    while c < len(tree):
        subcategories = tree[c].subcategories
        while s < len(subcategories):
            topics = subcategories[s].topics
            while t < len(topics):
                if topics[t].questions:
                    return _first_in(tree, c, s, t)
                t += 1
            s, t = s + 1, 0
        c, s, t = c + 1, 0, 0
    return COMPLETED


def retreat(position: Position, tree: QuestionTree) -> Position:
    """Previous question in reading order; the first position maps to itself."""
    _require_valid(position, tree)
    c, s, t, q = position
    if q > 0:
        return Position(c, s, t, q - 1)

    t -= 1
    while c >= 0:
        subcategories = tree[c].subcategories
        while s >= 0:
            topics = subcategories[s].topics
            while t >= 0:
                if topics[t].questions:
                    return _last_in(tree, c, s, t)
                t -= 1
            s -= 1
            if s >= 0:
                t = len(subcategories[s].topics) - 1
        c -= 1
        if c >= 0:
            s = len(tree[c].subcategories) - 1
            t = len(tree[c].subcategories[s].topics) - 1
    return position


def jump_to(target: Position, tree: QuestionTree) -> Position:
    _require_valid(target, tree)
    return Position(*target)


def detect_milestone(position: Position, tree: QuestionTree) -> Milestone:
    """Coarsest structural unit finished by advancing from ``position``."""
    _require_valid(position, tree)
    c, s, t, q = position
    subcategories = tree[c].subcategories
    topics = subcategories[s].topics
    if q != len(topics[t].questions) - 1:
        return Milestone.NONE
    if t != len(topics) - 1:
        return Milestone.TOPIC
    if s != len(subcategories) - 1:
        return Milestone.SUBCATEGORY
    return Milestone.CATEGORY


def milestone_event(position: Position, tree: QuestionTree) -> Optional[MilestoneEvent]:
    milestone = detect_milestone(position, tree)
    if milestone == Milestone.NONE:
        return None
    c, s, t, _ = position
    category = tree[c]
    subcategory = category.subcategories[s]
    topic = subcategory.topics[t]
    if milestone == Milestone.TOPIC:
        return MilestoneEvent(type=milestone, name=topic.name, parent_name=subcategory.name)
    if milestone == Milestone.SUBCATEGORY:
        return MilestoneEvent(type=milestone, name=subcategory.name, parent_name=category.name)
    return MilestoneEvent(type=milestone, name=category.name)


def question_number(position: Position, tree: QuestionTree) -> int:
    """1-based ordinal of the position in reading order."""
    _require_valid(position, tree)
    c, s, t, q = position
    count = 0
    for ci, category in enumerate(tree[: c + 1]):
        for si, subcategory in enumerate(category.subcategories):
            if ci == c and si > s:
                break
            for ti, topic in enumerate(subcategory.topics):
                if ci == c and si == s and ti >= t:
                    break
                count += len(topic.questions)
    return count + q + 1


def describe(position: Position, tree: QuestionTree) -> QuestionView:
    _require_valid(position, tree)
    c, s, t, q = position
    category = tree[c]
    subcategory = category.subcategories[s]
    topic = subcategory.topics[t]
    return QuestionView(
        question_id=encode_question_id(position),
        position=Position(*position),
        category=category.name,
        subcategory=subcategory.name,
        topic=topic.name,
        question=topic.questions[q],
        question_number=question_number(position, tree),
        topic_question_count=len(topic.questions),
    )
