import json
from datetime import date
from decimal import Decimal

import pytest

from packages.ingestion_engine.classifier import (
    CategoryClassifier,
    CategoryRules,
    get_category_classifier,
    load_category_rules,
)
from packages.ingestion_engine.constants import CATEGORY_VOCABULARY
from packages.ingestion_engine.errors import CategoryRulesError
from packages.ingestion_engine.models import Direction, NormalizedTransaction, TransactionType


@pytest.fixture(scope="module")
def classifier():
    return CategoryClassifier(load_category_rules())


@pytest.mark.parametrize(
    "description,expected",
    [
        ("STARBUCKS #123", "Drinks/Dessert"),
        ("UBER EATS ORDER", "Dining"),
        ("UBER TRIP HELP.UBER.COM", "Rideshare"),
        ("WHOLE FOODS MARKET", "Grocery"),
        ("NETFLIX.COM", "Subscription"),
        ("SHELL OIL 5744", "Travel"),
        ("THE BARBERSHOP", "Beauty"),
        ("CORNER BAR & GRILL", "Alcohol"),
        ("PAYMENT THANK YOU", "Credit"),
        ("AMAZON MKTPLACE", "Merchandise"),
        ("SOMETHING UNHEARD OF", "Other"),
    ],
)
def test_keyword_rules(classifier, description, expected):
    assert classifier.classify(description, None, Direction.DEBIT) == expected


def test_keywords_match_whole_words_only(classifier):
    # "bar" must not fire inside "barcelona"
    assert classifier.classify("BARCELONA TAPAS", None, Direction.DEBIT) == "Other"


def test_credits_are_income(classifier):
    assert classifier.classify("MUFG PAYROLL", None, Direction.CREDIT) == "Income"
    assert classifier.classify("REFUND STARBUCKS", None, Direction.CREDIT) == "Income"


def test_income_keyword_on_debit(classifier):
    assert classifier.classify("SALARY ADVANCE FEE", None, Direction.DEBIT) == "Income"


def test_source_category_in_vocabulary_wins(classifier):
    assert classifier.classify("STARBUCKS #123", "dining", Direction.DEBIT) == "Dining"


def test_source_category_synonym(classifier):
    assert classifier.classify("JOE'S", "Restaurants", Direction.DEBIT) == "Dining"
    assert classifier.classify("CHEVRON", "Gas Stations", Direction.DEBIT) == "Travel"


def test_uncategorized_source_falls_through_to_rules(classifier):
    assert classifier.classify("STARBUCKS #123", "Uncategorized", Direction.DEBIT) == "Drinks/Dessert"
    assert classifier.classify("STARBUCKS #123", "Weird Bank Label", Direction.DEBIT) == "Drinks/Dessert"


def test_classification_is_deterministic(classifier):
    other = CategoryClassifier(load_category_rules())
    for description in ("STARBUCKS #123", "UBER TRIP", "AMAZON", "???"):
        assert classifier.classify(description, None, Direction.DEBIT) == other.classify(
            description, None, Direction.DEBIT
        )


def test_every_label_is_in_the_vocabulary(classifier):
    rules = classifier.rules
    labels = {r.category for r in rules.rules} | set(rules.synonyms.values())
    assert labels <= set(CATEGORY_VOCABULARY)


def test_classify_transaction_sets_type(classifier):
    txn = NormalizedTransaction(
        transaction_date=date(2024, 1, 15),
        posted_date=date(2024, 1, 15),
        card_number=None,
        description="STARBUCKS #123",
        source_category=None,
        amount=Decimal("4.50"),
        direction=Direction.DEBIT,
    )
    classified = classifier.classify_transaction(txn)

    assert classified.category == "Drinks/Dessert"
    assert classified.type == TransactionType.EXPENSE


def test_rules_reject_unknown_labels():
    with pytest.raises(ValueError):
        CategoryRules(rules=[{"category": "Snacks", "keywords": ["chips"]}])


def test_load_rules_wraps_bad_files(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"fallback": "Nope"}))
    with pytest.raises(CategoryRulesError):
        load_category_rules(path)

    path.write_text("{not json")
    with pytest.raises(CategoryRulesError):
        load_category_rules(path)


def test_custom_rule_table(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(
        json.dumps({"rules": [{"category": "Gym", "keywords": ["climbing"]}]})
    )
    custom = get_category_classifier(str(path))
    assert custom.classify("BOULDER CLIMBING CO", None, Direction.DEBIT) == "Gym"
    assert custom.classify("STARBUCKS", None, Direction.DEBIT) == "Other"
