import os
import random
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent

os.environ.setdefault("SURVEY_LOG_TO_FILE", "0")
os.environ.setdefault("SURVEY_QUESTIONS_PATH", str(ROOT / "questions" / "questions.json"))

import fakeredis  # noqa: E402

from cultural_survey.attention import AttentionCheckFactory  # noqa: E402
from cultural_survey.models import CheckKind, UserInfo  # noqa: E402
from cultural_survey.progress_sync import ProgressSync  # noqa: E402
from cultural_survey.questions import validate_tree  # noqa: E402
from cultural_survey.session import SurveySession  # noqa: E402
from cultural_survey.store import InMemorySurveyStore  # noqa: E402

# Ten questions; "Leftovers" has none and must be stepped over.
RAW_TREE = [
    {
        "category": "Festivals",
        "subcategories": [
            {
                "subcategory": "Religious",
                "topics": [
                    {"topic": "Preparations", "questions": ["P1?", "P2?", "P3?"]},
                    {"topic": "Rituals", "questions": ["R1?", "R2?"]},
                ],
            },
            {
                "subcategory": "Harvest",
                "topics": [{"topic": "Gatherings", "questions": ["G1?", "G2?"]}],
            },
        ],
    },
    {
        "category": "Food",
        "subcategories": [
            {
                "subcategory": "Meals",
                "topics": [
                    {"topic": "Customs", "questions": ["C1?", "C2?"]},
                    {"topic": "Leftovers", "questions": []},
                    {"topic": "Guests", "questions": ["H1?"]},
                ],
            }
        ],
    },
]

GOOD_ANSWERS = [
    "In my region we usually clean the whole house before the festival begins.",
    "Families traditionally prepare sweets such as laddoos and kheer at home.",
    "The eldest woman of the household typically leads the preparations.",
    "For example, a lamp is lit at dawn and prayers are offered together.",
    "Only married couples perform the evening offering in our culture.",
    "Villages hold a fair where farmers share the first grain of the season.",
    "Local markets sell new clay pots and farming tools during the harvest.",
    "We usually wash our hands and say a short blessing before eating.",
    "Elders are served first, followed by children and then the cook.",
    "Guests are offered the best seat and are served extra portions.",
]


@pytest.fixture
def tree():
    return validate_tree(RAW_TREE)


@pytest.fixture
def user_info():
    return UserInfo(region="North", age=34, years_in_region=20)


@pytest.fixture
def store():
    return InMemorySurveyStore()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def survey(tree, store, user_info, rng):
    return SurveySession.create(
        user_info,
        tree,
        store,
        sync=ProgressSync(store, backoff_seconds=0),
        checks=AttentionCheckFactory(tree, rng=rng),
    )


def correct_answer(check):
    """The answer a careful respondent would give to a pending check."""
    if check.kind == CheckKind.MULTIPLE_CHOICE:
        return check.correct_index
    return check.accepted_answers[0]


def wrong_answer(check):
    if check.kind == CheckKind.MULTIPLE_CHOICE:
        return (check.correct_index + 1) % len(check.options)
    return "purple elephants"
