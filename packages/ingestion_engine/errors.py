"""Exceptions raised by the ingestion engine."""


class StatementFormatError(ValueError):
    """The uploaded payload is not a readable statement table."""


class CategoryRulesError(ValueError):
    """The category rule table is inconsistent."""
