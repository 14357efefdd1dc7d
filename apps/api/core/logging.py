"""Structured logging with structlog.

Configures JSON logging for production and colorized console for dev.
Card numbers from statements never reach the log output in full; see
``mask_card_numbers``.

Usage:
    import structlog
    logger = structlog.get_logger()
    logger.info("ingest_completed", upload_id=upload_id, admitted=12)
"""

import logging
import sys

import structlog

CARD_FIELDS = ("card_number", "card_no")


def _mask(value) -> str:
    digits = "".join(ch for ch in str(value) if ch.isalnum())
    return f"****{digits[-4:]}" if digits else ""


def mask_card_numbers(logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor: keep only the last four characters of card fields."""
    for key in CARD_FIELDS:
        if event_dict.get(key):
            event_dict[key] = _mask(event_dict[key])
    return event_dict


def setup_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Python log level string (DEBUG, INFO, WARNING, ERROR).
        json_output: If True, use JSON renderer (production). If False,
                     use colorized console renderer (development).
    """
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        mask_card_numbers,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
