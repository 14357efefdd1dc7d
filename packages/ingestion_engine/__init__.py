"""
Ledger Ingestion Engine

Statement normalization, categorization, duplicate detection, overlap
analysis and budget impact. Pure Python; storage is supplied by the caller.
"""

__version__ = "0.4.0"

from .budget import compute_budget_impact
from .classifier import CategoryClassifier, get_category_classifier, load_category_rules
from .duplicates import DuplicateDetector, generate_match_key, partition_candidates
from .errors import CategoryRulesError, StatementFormatError
from .normalizer import StatementReader, normalize_row
from .overlap import analyze_overlap

__all__ = [
    "CategoryClassifier",
    "CategoryRulesError",
    "DuplicateDetector",
    "StatementFormatError",
    "StatementReader",
    "analyze_overlap",
    "compute_budget_impact",
    "generate_match_key",
    "get_category_classifier",
    "load_category_rules",
    "normalize_row",
    "partition_candidates",
]
