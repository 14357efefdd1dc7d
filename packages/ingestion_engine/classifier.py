"""Rule-based transaction categorization.

Resolution order for one transaction:

1. An explicit bank category that is already in the vocabulary, or that the
   synonym table maps into it.
2. Income: credits, and any description containing an income keyword.
3. The ordered keyword rules; the first category with a matching keyword wins.
4. The fallback category ("Other").

Keywords match whole words of the case-folded description, with an optional
plural ``s``/``es``. The rule table is plain data (``category_rules.json``),
validated on load and compiled once; ``CategoryClassifier.classify`` is pure.
"""

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel, Field, model_validator

from .constants import CATEGORY_VOCABULARY, UNCATEGORIZED_SENTINELS
from .errors import CategoryRulesError
from .models import ClassifiedTransaction, Direction, NormalizedTransaction

logger = structlog.get_logger()

DEFAULT_RULES_PATH = Path(__file__).with_name("category_rules.json")


class KeywordRule(BaseModel):
    category: str
    keywords: list[str] = Field(min_length=1)


class CategoryRules(BaseModel):
    """Validated category configuration."""

    vocabulary: list[str] = Field(default_factory=lambda: list(CATEGORY_VOCABULARY))
    fallback: str = "Other"
    income_category: str = "Income"
    income_keywords: list[str] = Field(default_factory=list)
    synonyms: dict[str, str] = Field(default_factory=dict)
    rules: list[KeywordRule] = Field(default_factory=list)

    @model_validator(mode="after")
    def _labels_in_vocabulary(self) -> "CategoryRules":
        known = set(self.vocabulary)
        labels = [self.fallback, self.income_category]
        labels += list(self.synonyms.values())
        labels += [r.category for r in self.rules]
        unknown = sorted({label for label in labels if label not in known})
        if unknown:
            raise ValueError(f"labels outside the vocabulary: {unknown}")
        return self


def load_category_rules(path: Optional[str | Path] = None) -> CategoryRules:
    """Read and validate a rule table. Defaults to the bundled table."""
    source = Path(path) if path else DEFAULT_RULES_PATH
    try:
        data = json.loads(source.read_text(encoding="utf-8"))
        return CategoryRules.model_validate(data)
    except (OSError, json.JSONDecodeError, ValueError) as e:
        raise CategoryRulesError(f"Invalid category rules in {source}: {e}") from e


def _keyword_pattern(keywords: list[str]) -> re.Pattern:
    alternatives = "|".join(
        re.escape(k.strip().casefold())
        for k in sorted(keywords, key=len, reverse=True)
        if k.strip()
    )
    return re.compile(rf"(?<![a-z0-9])(?:{alternatives})(?:s|es)?(?![a-z0-9])")


class CategoryClassifier:
    def __init__(self, rules: CategoryRules):
        self.rules = rules
        self._vocabulary = {label.casefold(): label for label in rules.vocabulary}
        self._synonyms = {k.strip().casefold(): v for k, v in rules.synonyms.items()}
        self._income = (
            _keyword_pattern(rules.income_keywords) if rules.income_keywords else None
        )
        self._ordered = [
            (rule.category, _keyword_pattern(rule.keywords)) for rule in rules.rules
        ]

    def _from_source(self, source_category: Optional[str]) -> Optional[str]:
        if not source_category:
            return None
        key = source_category.strip().casefold()
        if not key or key in UNCATEGORIZED_SENTINELS:
            return None
        return self._vocabulary.get(key) or self._synonyms.get(key)

    def classify(
        self,
        description: str,
        source_category: Optional[str],
        direction: Direction,
    ) -> str:
        explicit = self._from_source(source_category)
        if explicit:
            return explicit

        text = (description or "").casefold()
        if direction == Direction.CREDIT:
            return self.rules.income_category
        if self._income is not None and self._income.search(text):
            return self.rules.income_category

        for category, pattern in self._ordered:
            if pattern.search(text):
                return category
        return self.rules.fallback

    def classify_transaction(self, txn: NormalizedTransaction) -> ClassifiedTransaction:
        category = self.classify(txn.description, txn.source_category, txn.direction)
        return ClassifiedTransaction.from_normalized(txn, category)


@lru_cache(maxsize=4)
def get_category_classifier(path: Optional[str] = None) -> CategoryClassifier:
    """Build (once per rules file) the classifier used by the API."""
    rules = load_category_rules(path)
    logger.info(
        "category_rules_loaded",
        source=str(path or DEFAULT_RULES_PATH),
        rule_count=len(rules.rules),
        synonym_count=len(rules.synonyms),
    )
    return CategoryClassifier(rules)
