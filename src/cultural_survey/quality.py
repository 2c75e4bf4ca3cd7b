import logging
import re
from collections import Counter
from typing import Iterable, List, Mapping, Optional, Sequence, Union

from .config import settings
from .models import AnswerSample, IssueType, PatternVerdict, QualityVerdict

logger = logging.getLogger(__name__)

# --- Single-answer patterns ---
NONE_PATTERNS = [
    re.compile(r"^(none|n/a|na|nothing|no|idk|i don't know|dk|dunno)$", re.I),
    re.compile(
        r"^(none that i know|nothing that i know|no idea|not sure|dont know|don't know)$",
        re.I,
    ),
    re.compile(r"^(same|similar|normal|usual|regular|typical|standard|common)$", re.I),
    re.compile(r"^(not applicable|not available|no information|no data)$", re.I),
]

GIBBERISH_PATTERNS = [
    re.compile(r"^[bcdfghjklmnpqrstvwxyz]{6,}$", re.I),  # consonant run
    re.compile(r"^[aeiou]{6,}$", re.I),  # vowel run
    re.compile(r"(.{3,})\1{2,}"),  # abcabcabc
    re.compile(r"^[^a-z\s]*$", re.I),  # no letters
    re.compile(r"^[a-z]{8,}$", re.I),  # one long token
]

MASHING_PATTERNS = [
    re.compile(r"qwerty|asdf|zxcv|hjkl|yuiop", re.I),
    re.compile(r"abcd|1234|test|xxx|yyy|zzz", re.I),
    re.compile(r"(.)\1{4,}"),
]

VAGUE_WORDS = ["something", "things", "stuff", "anything", "everything"]
_VAGUE_PATTERNS = [re.compile(rf"\b{word}\b") for word in VAGUE_WORDS]

SPECIFICITY_PATTERNS = [
    re.compile(
        r"\b(example|for instance|specifically|traditionally|commonly|usually|typically)\b",
        re.I,
    ),
    re.compile(
        r"\b(in my region|in our area|locally|here we|we usually|in our culture)\b", re.I
    ),
    re.compile(r"\b(such as|like|including|consists of|involves|includes)\b", re.I),
]

NONE_PENALTY = 40
GIBBERISH_PENALTY = 60
MASHING_PENALTY = 50
REPETITION_PENALTY = 30
VAGUE_PENALTY = 15
SPECIFICITY_BONUS = 8
SPECIFICITY_CAP = 20

MAX_WORD_REPEATS = 3
MAX_VAGUE_WORDS = 3
LOW_QUALITY_SCORE = 30

# --- History thresholds ---
RECENT_WINDOW = 5
QUALITY_DECLINE_SCORE = 25
DISTINCT_ANSWER_RATIO = 0.6


def analyze_quality(answer: str) -> QualityVerdict:
    """Score one answer from 0 to 100 and list what is wrong with it."""
    issues: List[str] = []
    score = 100
    is_none = False
    is_gibberish = False

    text = (answer or "").lower().strip()

    if any(p.search(text) for p in NONE_PATTERNS):
        is_none = True
        issues.append('Generic "none" or non-informative response')
        score -= NONE_PENALTY

    composition_gibberish = any(p.search(text) for p in GIBBERISH_PATTERNS)
    if composition_gibberish:
        is_gibberish = True
        issues.append("Appears to be random characters or gibberish")
        score -= GIBBERISH_PENALTY

    # Mashing only counts when the composition rule did not already fire.
    if not composition_gibberish and any(p.search(text) for p in MASHING_PATTERNS):
        is_gibberish = True
        issues.append("Keyboard mashing or test input detected")
        score -= MASHING_PENALTY

    word_counts = Counter(word for word in text.split() if len(word) > 2)
    if any(count > MAX_WORD_REPEATS for count in word_counts.values()):
        issues.append("Excessive word repetition")
        score -= REPETITION_PENALTY

    vague_count = sum(len(p.findall(text)) for p in _VAGUE_PATTERNS)
    if vague_count > MAX_VAGUE_WORDS:
        issues.append("Response lacks specific details")
        score -= VAGUE_PENALTY

    positive = sum(1 for p in SPECIFICITY_PATTERNS if p.search(text))
    if positive:
        score += min(positive * SPECIFICITY_BONUS, SPECIFICITY_CAP)

    return QualityVerdict(
        score=max(0, min(100, score)),
        issues=issues,
        is_none_response=is_none,
        is_gibberish=is_gibberish,
    )


def is_low_quality(answer: str) -> bool:
    return analyze_quality(answer).score < LOW_QUALITY_SCORE


HistoryEntry = Union[AnswerSample, Mapping[str, object]]


def _as_sample(entry: HistoryEntry) -> AnswerSample:
    if isinstance(entry, AnswerSample):
        return entry
    return AnswerSample.model_validate(entry)


def analyze_pattern(
    history: Sequence[HistoryEntry],
    fast_threshold: Optional[float] = None,
    rate_threshold: Optional[float] = None,
    min_responses: Optional[int] = None,
) -> PatternVerdict:
    """Aggregate a full answer history into a suspicious-pattern verdict.

    Entries are ``AnswerSample`` objects or mappings with ``answer_text`` and
    ``time_spent_seconds``. Fewer than ``min_responses`` entries never flag.
    """
    fast_threshold = settings.FAST_RESPONSE_SECONDS if fast_threshold is None else fast_threshold
    rate_threshold = settings.SUSPICIOUS_RATE_PERCENT if rate_threshold is None else rate_threshold
    min_responses = settings.PATTERN_MIN_RESPONSES if min_responses is None else min_responses

    samples = [_as_sample(entry) for entry in history]
    if len(samples) < min_responses:
        return PatternVerdict()

    verdicts = [analyze_quality(s.answer_text) for s in samples]
    total = len(samples)
    none_count = sum(1 for v in verdicts if v.is_none_response)
    gibberish_count = sum(1 for v in verdicts if v.is_gibberish)
    fast_count = sum(1 for s in samples if s.time_spent_seconds < fast_threshold)

    none_rate = none_count / total * 100
    gibberish_rate = gibberish_count / total * 100
    fast_rate = fast_count / total * 100

    logger.debug(
        f"Pattern analysis over {total} responses: none={none_rate:.1f}% "
        f"gibberish={gibberish_rate:.1f}% fast={fast_rate:.1f}%"
    )

    warnings: List[str] = []
    triggered: List[IssueType] = []

    if none_rate >= rate_threshold:
        warnings.append(f'High rate of "none" responses ({none_rate:.1f}%)')
        triggered.append(IssueType.NONE_RESPONSE)

    if gibberish_rate >= rate_threshold:
        warnings.append(f"High rate of gibberish responses ({gibberish_rate:.1f}%)")
        triggered.append(IssueType.GIBBERISH)

    if fast_rate >= rate_threshold:
        warnings.append(
            f"High rate of very quick responses ({fast_rate:.1f}% completed "
            f"in under {fast_threshold:g} seconds)"
        )
        triggered.append(IssueType.SPEED)

    distinct = {s.answer_text.lower().strip() for s in samples}
    if len(distinct) < total * DISTINCT_ANSWER_RATIO:
        warnings.append("Many similar or identical responses")
        triggered.append(IssueType.REPETITION)

    recent = verdicts[-RECENT_WINDOW:]
    if sum(v.score for v in recent) / len(recent) < QUALITY_DECLINE_SCORE:
        warnings.append("Overall response quality is very low")
        triggered.append(IssueType.QUALITY)

    if not triggered:
        primary = IssueType.ABSENT
    elif len(triggered) > 1:
        primary = IssueType.MULTIPLE
    else:
        primary = triggered[0]

    return PatternVerdict(
        suspicious=bool(triggered),
        warnings=warnings,
        none_rate=none_rate,
        gibberish_rate=gibberish_rate,
        fast_response_rate=fast_rate,
        primary_issue_type=primary,
        issue_types=triggered,
    )


def samples_from_responses(responses: Iterable) -> List[AnswerSample]:
    """History entries for real (non-probe) responses, oldest first."""
    real = [r for r in responses if not r.is_attention_check]
    real.sort(key=lambda r: r.updated_at or r.timestamp)
    return [AnswerSample(answer_text=r.answer, time_spent_seconds=r.time_spent) for r in real]
