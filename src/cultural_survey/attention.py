import random
import re
import uuid
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple, Union

from .config import settings
from .models import AttentionCheck, CheckKind, QuestionTree, UserInfo

REGIONS = ["North", "South", "East", "West", "Central"]

OPEN_TEXT_BANK: List[Tuple[str, List[str]]] = [
    ("What color is the sun? Please type exactly one color.",
     ["yellow", "gold", "golden", "orange"]),
    ("How many days are in one week? Please enter only the number in words.",
     ["7", "seven"]),
    ("This survey is about cultural practices in which country? Please type the country name.",
     ["india", "bharat"]),
    ("What day comes after Monday? Please type only the day name.",
     ["tuesday", "tue"]),
    ("How many fingers are on one human hand? Please enter only the number in words.",
     ["5", "five"]),
    ("How many months are in one year? Please enter only the number in words.",
     ["12", "twelve"]),
]

FALLBACK_TOPICS = ["Weather forecasts", "Stock markets", "Space travel", "Video games", "Car repair"]
FALLBACK_CATEGORIES = ["Sports", "Technology", "Finance", "Astronomy"]

NUM_DISTRACTORS = 3


# --- Cadence policy ---
def is_attention_check_due(answered_count: int, interval: Optional[int] = None) -> bool:
    """True when ``answered_count`` is a positive multiple of the interval."""
    interval = settings.ATTENTION_CHECK_INTERVAL if interval is None else interval
    if interval <= 0:
        return False
    return answered_count > 0 and answered_count % interval == 0


# --- Grading ---
def normalize_answer(text: str) -> str:
    text = text.lower().strip()
    text = re.sub(r"[^\w\s]", "", text)
    return re.sub(r"\s+", " ", text)


def grade_attention_check(check: AttentionCheck, answer: Union[int, str]) -> bool:
    if check.kind == CheckKind.MULTIPLE_CHOICE:
        if isinstance(answer, str):
            if not answer.strip().isdigit():
                return False
            answer = int(answer.strip())
        return answer == check.correct_index

    if not isinstance(answer, str) or not answer.strip():
        return False
    cleaned = normalize_answer(answer)
    for accepted in check.accepted_answers:
        expected = accepted.lower().strip()
        if cleaned == expected or expected in cleaned:
            return True
    return False


# --- Strategy Pattern: Attention-check generators ---
class AttentionCheckGenerator(ABC):
    """Abstract base class for attention-check templates."""

    kind: CheckKind

    @abstractmethod
    def generate(
        self,
        category: str,
        topic: str,
        user_info: Optional[UserInfo],
        rng: random.Random,
    ) -> AttentionCheck:
        pass

    def is_available(self, user_info: Optional[UserInfo]) -> bool:
        return True


class OpenTextCheckGenerator(AttentionCheckGenerator):
    """A fixed factual prompt with a small set of accepted answers."""

    kind = CheckKind.OPEN_TEXT

    def __init__(self, prompt: str, accepted: Sequence[str]):
        self.prompt = prompt
        self.accepted = list(accepted)

    def generate(self, category, topic, user_info, rng):
        return AttentionCheck(
            check_id=str(uuid.UUID(int=rng.getrandbits(128))),
            kind=self.kind,
            prompt_text=self.prompt,
            accepted_answers=list(self.accepted),
            associated_category=category,
            associated_topic=topic,
        )


class ContextualChoiceGenerator(AttentionCheckGenerator):
    """Multiple choice where the correct option is taken from the live survey context."""

    kind = CheckKind.MULTIPLE_CHOICE

    def __init__(self, tree: Optional[QuestionTree] = None):
        self.tree = tree or []

    @abstractmethod
    def prompt(self) -> str:
        pass

    @abstractmethod
    def correct_value(self, category: str, topic: str, user_info: Optional[UserInfo]) -> str:
        pass

    @abstractmethod
    def distractor_pool(self) -> List[str]:
        pass

    def generate(self, category, topic, user_info, rng):
        correct = self.correct_value(category, topic, user_info)
        options = self._build_options(correct, rng)
        return AttentionCheck(
            check_id=str(uuid.UUID(int=rng.getrandbits(128))),
            kind=self.kind,
            prompt_text=self.prompt(),
            accepted_answers=[correct],
            options=[value for value, _ in options],
            correct_index=next(i for i, (_, ok) in enumerate(options) if ok),
            associated_category=category,
            associated_topic=topic,
        )

    def _build_options(self, correct: str, rng: random.Random) -> List[Tuple[str, bool]]:
        """Tagged (value, is_correct) pairs, shuffled."""
        pool = [v for v in dict.fromkeys(self.distractor_pool()) if v != correct]
        distractors = rng.sample(pool, min(NUM_DISTRACTORS, len(pool)))
        options = [(correct, True)] + [(d, False) for d in distractors]
        rng.shuffle(options)
        return options


class TopicRecallGenerator(ContextualChoiceGenerator):
    def prompt(self):
        return "Which topic have you just been answering questions about?"

    def correct_value(self, category, topic, user_info):
        return topic

    def distractor_pool(self):
        names = [
            t.name
            for c in self.tree
            for s in c.subcategories
            for t in s.topics
        ]
        return names + FALLBACK_TOPICS


class CategoryRecallGenerator(ContextualChoiceGenerator):
    def prompt(self):
        return "Which category of the survey are you currently in?"

    def correct_value(self, category, topic, user_info):
        return category

    def distractor_pool(self):
        return [c.name for c in self.tree] + FALLBACK_CATEGORIES


class RegionRecallGenerator(ContextualChoiceGenerator):
    def prompt(self):
        return "Which region did you tell us you are from?"

    def is_available(self, user_info):
        return user_info is not None

    def correct_value(self, category, topic, user_info):
        return user_info.region

    def distractor_pool(self):
        return list(REGIONS)


class AttentionCheckFactory:
    """Picks a template uniformly from the bank and builds a check from it."""

    def __init__(self, tree: Optional[QuestionTree] = None, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()
        self.generators: List[AttentionCheckGenerator] = [
            OpenTextCheckGenerator(prompt, accepted) for prompt, accepted in OPEN_TEXT_BANK
        ]
        self.generators += [
            TopicRecallGenerator(tree),
            CategoryRecallGenerator(tree),
            RegionRecallGenerator(tree),
        ]

    def create(
        self,
        current_category: str,
        current_topic: str,
        user_info: Optional[UserInfo] = None,
    ) -> AttentionCheck:
        candidates = [g for g in self.generators if g.is_available(user_info)]
        generator = self.rng.choice(candidates)
        return generator.generate(current_category, current_topic, user_info, self.rng)


def generate_attention_check(
    current_category: str,
    current_topic: str,
    user_info: Optional[UserInfo] = None,
    tree: Optional[QuestionTree] = None,
    rng: Optional[random.Random] = None,
) -> AttentionCheck:
    return AttentionCheckFactory(tree, rng).create(current_category, current_topic, user_info)
