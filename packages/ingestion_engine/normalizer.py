"""Card/bank statement CSV normalization.

Turns the raw text of a statement export into ``NormalizedTransaction``
values. Header names are matched loosely, and per-row problems (bad dates,
missing amounts, ragged lines) degrade the row instead of failing the file.
Only a payload that is not a usable table raises ``StatementFormatError``.
"""

import io
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterator, Optional

import pandas as pd
import structlog

from .errors import StatementFormatError
from .models import Direction, NormalizedTransaction, RawRow

logger = structlog.get_logger()

UNKNOWN_DESCRIPTION = "Unknown Transaction"

# Priority lists: the first alias present in the file wins for each field.
COLUMN_ALIASES: dict[str, list[str]] = {
    "transaction_date": [
        "transaction date",
        "trans date",
        "trans. date",
        "transaction_date",
        "date",
    ],
    "posted_date": ["posted date", "post date", "posting date", "posted_date"],
    "card_number": ["card no.", "card no", "card number", "card #", "card"],
    "description": ["description", "desc", "memo", "details"],
    "category": ["category"],
    "debit": ["debit", "withdrawal", "dr"],
    "credit": ["credit", "deposit", "cr"],
}

REQUIRED_FIELDS = ("transaction_date", "description")
AMOUNT_FIELDS = ("debit", "credit")

# index_col=False: a trailing delimiter on data rows must not turn the first
# column into the index. Fields past the header width are dropped.
CSV_OPTIONS = {
    "dtype": str,
    "keep_default_na": False,
    "skipinitialspace": True,
    "index_col": False,
    "engine": "python",
}

_CURRENCY_PREFIX = re.compile(r"^[A-Za-z₹$€£¥]+\s*")
_AMOUNT_NOISE = re.compile(r"[₹$€£¥,\s]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class RowResult:
    """Outcome of normalizing one input row.

    ``transactions`` holds zero, one (debit or credit) or two (both)
    values. A row that produced nothing carries a ``skip_reason``.
    """

    row_number: int
    transactions: tuple[NormalizedTransaction, ...] = ()
    warnings: tuple[str, ...] = ()
    skip_reason: Optional[str] = None
    date_fallback: bool = False

    @property
    def skipped(self) -> bool:
        return not self.transactions


def normalize_header(name) -> str:
    """Comparison key for a header cell: lowercase, all whitespace removed."""
    return _WHITESPACE.sub("", str(name)).lower()


def resolve_columns(headers: list[str]) -> dict[str, str]:
    """Map canonical field names to the file's own header names."""
    by_key: dict[str, str] = {}
    for header in headers:
        by_key.setdefault(normalize_header(header), header)

    resolved: dict[str, str] = {}
    taken: set[str] = set()
    for target, candidates in COLUMN_ALIASES.items():
        for candidate in candidates:
            header = by_key.get(normalize_header(candidate))
            if header is not None and header not in taken:
                resolved[target] = header
                taken.add(header)
                break

    missing = [f for f in REQUIRED_FIELDS if f not in resolved]
    if not any(f in resolved for f in AMOUNT_FIELDS):
        missing.append("debit or credit")
    if missing:
        raise StatementFormatError(
            f"Statement header is missing required columns: {', '.join(missing)}"
        )
    return resolved


def parse_amount(text: str) -> Optional[Decimal]:
    """Parse a statement amount cell. Returns None for blank or junk text.

    Accepts currency symbols/prefixes, thousands separators and
    accounting-style parentheses for negatives.
    """
    cleaned = _AMOUNT_NOISE.sub("", _CURRENCY_PREFIX.sub("", (text or "").strip()))
    if not cleaned:
        return None
    negative = cleaned.startswith("(") and cleaned.endswith(")")
    if negative:
        cleaned = cleaned[1:-1]
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return -value if negative else value


def parse_date(text: str) -> Optional[date]:
    text = (text or "").strip()
    if not text:
        return None
    try:
        parsed = pd.to_datetime(text, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.date()


def parse_dates(values: list[str]) -> list[Optional[date]]:
    """Parse a column of date cells in one pass.

    The column is converted with a single ``pd.to_datetime`` call; only the
    non-blank cells that call could not read are retried one at a time.
    """
    cells = pd.Series(values, dtype=object).fillna("").astype(str).str.strip()
    present = cells != ""
    if not present.any():
        return [None] * len(cells)

    try:
        parsed = pd.to_datetime(cells.where(present), errors="coerce")
    except (ValueError, TypeError, OverflowError):
        parsed = pd.Series(pd.NaT, index=cells.index)

    dates: list[Optional[date]] = []
    for text, value in zip(cells, parsed):
        if not text:
            dates.append(None)
        elif pd.isna(value):
            dates.append(parse_date(text))
        else:
            dates.append(value.date())
    return dates


def normalize_row(
    raw: RawRow,
    fallback_date: date,
    transaction_date: Optional[date] = None,
    posted_date: Optional[date] = None,
    dates_parsed: bool = False,
) -> RowResult:
    """Normalize a single row into 0-2 transactions.

    Callers that already parsed the row's dates in bulk pass them with
    ``dates_parsed=True``; otherwise the date cells are parsed here.
    """
    if not dates_parsed:
        transaction_date = parse_date(raw.transaction_date)
        posted_date = parse_date(raw.posted_date)

    warnings: list[str] = []

    debit = parse_amount(raw.debit)
    credit = parse_amount(raw.credit)
    if raw.debit.strip() and debit is None:
        warnings.append(f"unparseable debit amount {raw.debit!r}")
    if raw.credit.strip() and credit is None:
        warnings.append(f"unparseable credit amount {raw.credit!r}")

    amounts = [
        (direction, value)
        for direction, value in ((Direction.DEBIT, debit), (Direction.CREDIT, credit))
        if value is not None and value > 0
    ]
    if not amounts:
        return RowResult(
            row_number=raw.row_number,
            warnings=tuple(warnings),
            skip_reason="no positive debit or credit amount",
        )

    date_fallback = transaction_date is None
    if date_fallback:
        warnings.append(
            f"unparseable transaction date {raw.transaction_date!r}; "
            f"using {fallback_date.isoformat()}"
        )
        transaction_date = fallback_date
    posted_date = posted_date or transaction_date

    description = raw.description.strip() or UNKNOWN_DESCRIPTION
    card_number = raw.card_number.strip() or None
    source_category = raw.category.strip() or None

    transactions = tuple(
        NormalizedTransaction(
            transaction_date=transaction_date,
            posted_date=posted_date,
            card_number=card_number,
            description=description,
            source_category=source_category,
            amount=value,
            direction=direction,
        )
        for direction, value in amounts
    )
    return RowResult(
        row_number=raw.row_number,
        transactions=transactions,
        warnings=tuple(warnings),
        date_fallback=date_fallback,
    )


def _cell(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value)


class StatementReader:
    """Single-pass reader over a statement export.

    The header is validated on construction so that format errors surface
    before the caller commits to anything. Rows are then read lazily in
    chunks of ``chunk_rows``; iterating a second time is an error.
    """

    def __init__(self, text: str, fallback_date: date, chunk_rows: int = 1000):
        self._text = text
        self._fallback_date = fallback_date
        self._chunk_rows = chunk_rows
        self._consumed = False

        try:
            header = pd.read_csv(io.StringIO(text), nrows=0, **CSV_OPTIONS)
        except pd.errors.EmptyDataError as e:
            raise StatementFormatError("Statement file is empty") from e
        except pd.errors.ParserError as e:
            raise StatementFormatError(f"Statement header is not tabular: {e}") from e
        self.columns = resolve_columns(list(header.columns))

    @classmethod
    def from_bytes(
        cls, contents: bytes, fallback_date: date, chunk_rows: int = 1000
    ) -> "StatementReader":
        try:
            text = contents.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise StatementFormatError("Statement file is not UTF-8 text") from e
        if "\x00" in text:
            raise StatementFormatError("Statement file looks binary")
        return cls(text, fallback_date=fallback_date, chunk_rows=chunk_rows)

    def iter_chunks(self) -> Iterator[list[RawRow]]:
        if self._consumed:
            raise RuntimeError("StatementReader is single-pass and was already read")
        self._consumed = True

        chunks = iter(
            pd.read_csv(
                io.StringIO(self._text), chunksize=self._chunk_rows, **CSV_OPTIONS
            )
        )
        row_number = 0
        while True:
            try:
                chunk = next(chunks)
            except StopIteration:
                break
            except pd.errors.ParserError as e:
                raise StatementFormatError(
                    f"Statement is not readable after row {row_number}: {e}"
                ) from e
            fields = {
                target: chunk[column].tolist()
                for target, column in self.columns.items()
            }
            rows = []
            for i in range(len(chunk)):
                row_number += 1
                rows.append(
                    RawRow(
                        row_number=row_number,
                        **{target: _cell(values[i]) for target, values in fields.items()},
                    )
                )
            yield rows

    def iter_rows(self) -> Iterator[RowResult]:
        for rows in self.iter_chunks():
            transaction_dates = parse_dates([r.transaction_date for r in rows])
            posted_dates = parse_dates([r.posted_date for r in rows])
            for raw, transaction_date, posted_date in zip(
                rows, transaction_dates, posted_dates
            ):
                result = normalize_row(
                    raw,
                    self._fallback_date,
                    transaction_date=transaction_date,
                    posted_date=posted_date,
                    dates_parsed=True,
                )
                if result.date_fallback:
                    logger.warning(
                        "row_date_fallback",
                        row=raw.row_number,
                        value=raw.transaction_date,
                        fallback=self._fallback_date.isoformat(),
                    )
                yield result

    def __iter__(self) -> Iterator[NormalizedTransaction]:
        for result in self.iter_rows():
            yield from result.transactions
