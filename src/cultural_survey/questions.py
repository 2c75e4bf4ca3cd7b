import json
import logging
import os
from typing import Any, Dict, List

import pandas as pd
from pydantic import TypeAdapter, ValidationError

from .errors import QuestionTreeError
from .models import Category, QuestionTree

logger = logging.getLogger(__name__)

CSV_COLUMNS = ["category", "subcategory", "topic", "question"]

PLACEHOLDER_TREE: List[Dict[str, Any]] = [
    {
        "category": "General Practices",
        "subcategories": [
            {
                "subcategory": "Daily Life",
                "topics": [
                    {
                        "topic": "Greetings",
                        "questions": [
                            "How do people in your region usually greet elders?",
                            "How do people in your region greet close friends?",
                        ],
                    }
                ],
            }
        ],
    }
]

_tree_adapter = TypeAdapter(List[Category])


def validate_tree(raw: Any) -> QuestionTree:
    """Parse and structurally check a question tree.

    Raises QuestionTreeError on anything but an empty topic, which is only
    logged.
    """
    if not isinstance(raw, list) or not raw:
        raise QuestionTreeError("Questions data is not in the expected format")
    try:
        tree = _tree_adapter.validate_python(raw)
    except ValidationError as e:
        raise QuestionTreeError(f"Invalid question tree: {e}") from e

    for category in tree:
        if not category.subcategories:
            raise QuestionTreeError(f"Category '{category.name}' has no subcategories")
        for subcategory in category.subcategories:
            if not subcategory.topics:
                raise QuestionTreeError(
                    f"Subcategory '{subcategory.name}' in '{category.name}' has no topics"
                )
            for topic in subcategory.topics:
                if not topic.questions:
                    logger.warning(
                        f"Topic '{topic.name}' in '{subcategory.name}' has no questions"
                    )
    if not any(t.questions for c in tree for s in c.subcategories for t in s.topics):
        raise QuestionTreeError("Question tree contains no questions")
    return tree


def tree_from_frame(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Nest a flat category/subcategory/topic/question table, keeping row order."""
    missing = [col for col in CSV_COLUMNS if col not in df.columns]
    if missing:
        raise QuestionTreeError(f"Missing columns: {', '.join(missing)}")

    df = df.dropna(subset=["category", "subcategory", "topic"])
    categories: Dict[str, Dict[str, Any]] = {}
    for row in df.to_dict("records"):
        category = categories.setdefault(
            row["category"], {"category": row["category"], "subcategories": {}}
        )
        subcategory = category["subcategories"].setdefault(
            row["subcategory"], {"subcategory": row["subcategory"], "topics": {}}
        )
        topic = subcategory["topics"].setdefault(
            row["topic"], {"topic": row["topic"], "questions": []}
        )
        if isinstance(row["question"], str) and row["question"].strip():
            topic["questions"].append(row["question"].strip())

    return [
        {
            "category": c["category"],
            "subcategories": [
                {"subcategory": s["subcategory"], "topics": list(s["topics"].values())}
                for s in c["subcategories"].values()
            ],
        }
        for c in categories.values()
    ]


# --- Service Layer: Question bank ---
class QuestionBankManager:
    """Loads the question tree once and serves it to sessions."""

    def __init__(self, path: str):
        self.path = path
        self.tree: QuestionTree = []
        self.is_placeholder = False
        self.load()

    def load(self) -> QuestionTree:
        try:
            self.tree = validate_tree(self._read_raw())
            self.is_placeholder = False
            info = self.info()
            logger.info(
                f"Loaded {info['totalQuestions']} questions in {info['totalCategories']} "
                f"categories from {self.path}"
            )
        except (OSError, ValueError) as e:
            # QuestionTreeError and json/pandas parse errors are ValueErrors.
            logger.error(f"Failed to load questions from {self.path}: {e}")
            logger.warning("Falling back to placeholder question tree.")
            self.tree = validate_tree(PLACEHOLDER_TREE)
            self.is_placeholder = True
        return self.tree

    def _read_raw(self) -> Any:
        if not os.path.exists(self.path):
            raise FileNotFoundError(f"No question file at {self.path}")
        if self.path.endswith(".csv"):
            df = pd.read_csv(self.path, encoding="utf-8")
            return tree_from_frame(df)
        with open(self.path, encoding="utf-8") as f:
            return json.load(f)

    def get_tree(self) -> QuestionTree:
        return self.tree

    def total_questions(self) -> int:
        return sum(len(t.questions) for c in self.tree for s in c.subcategories for t in s.topics)

    def info(self) -> Dict[str, int]:
        return {
            "totalQuestions": self.total_questions(),
            "totalCategories": len(self.tree),
            "totalSubcategories": sum(len(c.subcategories) for c in self.tree),
            "totalTopics": sum(len(s.topics) for c in self.tree for s in c.subcategories),
        }
