"""
Receipt field extraction from recognized text.

Each field has an ordered list of rules (pattern + handler). Rules are tried in
order and the first one whose handler yields a value wins, so the fallback
order of every field can be read straight off its rule list. Extraction never
raises: a field that cannot be found is ``None``.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Generic, TypeVar

from spendtrail.core.config import settings

T = TypeVar("T")

# 1,234.56 | 1234.56 | 42
_AMOUNT = r"(?P<amount>\d{1,3}(?:,\d{3})+(?:\.\d{2})?|\d+(?:\.\d{2})?)"
# Amounts that carry cents, used where a bare integer would be too loose.
_CENTS = r"(?P<amount>\d{1,3}(?:,\d{3})+\.\d{2}|\d+\.\d{2})"
_LEAD = r"[\s:]*\$?\s?"
# optional rate annotation after a tax label: "5%", "(8.25%)"
_RATE = r"(?:\s*\(?\d+(?:\.\d+)?\s*%\)?)?"


@dataclass(frozen=True)
class Rule(Generic[T]):
    name: str
    pattern: re.Pattern[str]
    handler: Callable[[re.Match[str]], T | None]


def first_match(rules: Iterable[Rule[T]], text: str) -> tuple[str, T] | None:
    for rule in rules:
        for m in rule.pattern.finditer(text):
            value = rule.handler(m)
            if value is not None:
                return rule.name, value
    return None


@dataclass(frozen=True)
class ExtractedFields:
    merchant_name: str | None = None
    subtotal: Decimal | None = None
    tax: Decimal | None = None
    total: Decimal | None = None
    transaction_date: date | None = None
    raw_text: str = ""
    # field name -> name of the rule that produced it
    sources: dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (
                self.merchant_name,
                self.subtotal,
                self.tax,
                self.total,
                self.transaction_date,
            )
        )

    @property
    def suggested_amount(self) -> Decimal | None:
        if self.subtotal is not None:
            return self.subtotal + (self.tax or Decimal("0"))
        return self.total

    def draft_values(self) -> dict[str, Any]:
        """Keyword arguments for a new draft expense; fields that were not found are left out."""
        values: dict[str, Any] = {}
        if self.merchant_name:
            values["merchant_name"] = self.merchant_name
        amount = self.suggested_amount
        if amount is not None:
            values["amount"] = amount
        if self.subtotal is not None:
            values["subtotal"] = self.subtotal
        if self.tax is not None:
            values["tax_amount"] = self.tax
        if self.transaction_date is not None:
            values["expense_date"] = self.transaction_date
        return values


def parse_amount(raw: str | None) -> Decimal | None:
    if not raw:
        return None
    try:
        return Decimal(raw.replace(",", "")).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def _positive(m: re.Match[str]) -> Decimal | None:
    amount = parse_amount(m.group("amount"))
    if amount is None or amount <= 0:
        return None
    return amount


def _non_negative(m: re.Match[str]) -> Decimal | None:
    amount = parse_amount(m.group("amount"))
    if amount is None or amount < 0:
        return None
    return amount


# Subtotal ------------------------------------------------------------------

SUBTOTAL_RULES: tuple[Rule[Decimal], ...] = (
    Rule(
        "subtotal_label",
        re.compile(r"(?:subtotal|sub\s*total|sub-total)" + _LEAD + _AMOUNT, re.I),
        _positive,
    ),
    Rule(
        "amount_label",
        re.compile(
            r"(?<!tax )(?<!tax)(?<!total )(?:\bamount(?!\s*due)|\bitems?\s*total)"
            + _LEAD
            + _AMOUNT,
            re.I,
        ),
        _positive,
    ),
)


def extract_subtotal(text: str) -> tuple[str, Decimal] | None:
    return first_match(SUBTOTAL_RULES, text)


# Tax -----------------------------------------------------------------------

EXCLUDING_TAX_GUARDS: tuple[re.Pattern[str], ...] = (
    re.compile(r"excl(?:uding|\.)?\s*(?:of\s*)?tax", re.I),
    re.compile(r"before\s*tax", re.I),
    re.compile(r"\bex\.?\s*tax", re.I),
    re.compile(r"without\s*tax", re.I),
    re.compile(r"pre[- ]?tax", re.I),
)

# A tax amount is never a rate: "Tax 8.25%" alone has no tax figure.
_TAX_AMOUNT = _AMOUNT + r"(?![\d.,]*\s*%)"

TAX_RULES: tuple[Rule[Decimal], ...] = (
    # Tax - California (6% on $100.00) $6.00: skip the base amount, take the last one.
    Rule(
        "tax_jurisdiction_with_base",
        re.compile(r"tax\s*[-–—]\s*[^$\n]*\$[\d.,]+\)?\s*\$" + _TAX_AMOUNT, re.I),
        _non_negative,
    ),
    Rule(
        "tax_dash_trailing",
        re.compile(r"tax\s*[-–—]\s*[^$\n]*\$" + _TAX_AMOUNT + r"\s*$", re.I),
        _non_negative,
    ),
    Rule(
        "named_tax",
        re.compile(r"\b(?:sales\s*tax|hst|gst|pst|vat)\b" + _RATE + _LEAD + _TAX_AMOUNT, re.I),
        _non_negative,
    ),
    Rule(
        "tax_amount_label",
        re.compile(r"(?:tax\s*amount|tax\s*total|total\s*tax)" + _LEAD + _TAX_AMOUNT, re.I),
        _non_negative,
    ),
    # Tax (8.25%): $3.30 / Tax 8.25% $3.30
    Rule(
        "tax_with_rate",
        re.compile(
            r"(?:^|[\s:(,;])tax\s*(?:\([^)\n]*\)|\d+(?:\.\d+)?\s*%)" + _LEAD + _TAX_AMOUNT, re.I
        ),
        _non_negative,
    ),
    Rule("tax_line_start", re.compile(r"^tax" + _LEAD + _TAX_AMOUNT, re.I), _non_negative),
    Rule(
        "tax_after_separator",
        re.compile(r"[\s:(,;]tax" + _LEAD + _TAX_AMOUNT, re.I),
        _non_negative,
    ),
)


def extract_tax(text: str) -> tuple[str, Decimal] | None:
    """Line by line, so a taxable base printed on the tax line is never mistaken for the tax."""
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if any(guard.search(line) for guard in EXCLUDING_TAX_GUARDS):
            continue
        found = first_match(TAX_RULES, line)
        if found:
            return found
    return None


# Total ---------------------------------------------------------------------

TOTAL_RULES: tuple[Rule[Decimal], ...] = (
    Rule(
        "total_due_label",
        re.compile(
            r"(?:grand\s*total|total\s*due|total\s*amount|amount\s*due|balance\s*due)"
            + _LEAD
            + _AMOUNT,
            re.I,
        ),
        _positive,
    ),
    Rule(
        "total_label",
        re.compile(
            r"(?<!sub )(?<!sub-)(?<!items )(?<!item )(?<!tax )\btotal(?!\s*tax)" + _LEAD + _AMOUNT,
            re.I,
        ),
        _positive,
    ),
    Rule("dollar_amount", re.compile(r"\$\s?" + _CENTS), _positive),
    Rule("currency_suffixed", re.compile(_CENTS + r"\s?(?:USD|CAD|EUR)\b", re.I), _positive),
)

_CURRENCY_TOKEN_RE = re.compile(r"(?<![\d.,])\$?" + _CENTS + r"(?![\d])")


def largest_amount(text: str) -> Decimal | None:
    amounts = [
        a
        for a in (parse_amount(m.group("amount")) for m in _CURRENCY_TOKEN_RE.finditer(text))
        if a and a > 0
    ]
    return max(amounts) if amounts else None


def extract_total(text: str) -> tuple[str, Decimal] | None:
    found = first_match(TOTAL_RULES, text)
    if found:
        return found
    # Best effort only: the total is usually, not always, the largest number printed.
    if settings.total_largest_amount_fallback:
        amount = largest_amount(text)
        if amount is not None:
            return "largest_amount", amount
    return None


# Date ----------------------------------------------------------------------

_MONTHS = (
    r"jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?"
)
_MONTH_NUMBERS = {
    name: i
    for i, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"),
        start=1,
    )
}


def is_plausible_year(year: int, *, today: date | None = None) -> bool:
    today = today or date.today()
    return 1990 < year <= today.year + 1


def _build_date(year: int, month: int, day: int) -> date | None:
    if not is_plausible_year(year):
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def pivot_year(two_digit: int) -> int:
    return 2000 + two_digit if two_digit <= 50 else 1900 + two_digit


def _month_day_year(m: re.Match[str]) -> date | None:
    return _build_date(int(m.group(3)), int(m.group(1)), int(m.group(2)))


def _month_day_short_year(m: re.Match[str]) -> date | None:
    return _build_date(pivot_year(int(m.group(3))), int(m.group(1)), int(m.group(2)))


def _month_name_first(m: re.Match[str]) -> date | None:
    month = _MONTH_NUMBERS[m.group(1)[:3].lower()]
    return _build_date(int(m.group(3)), month, int(m.group(2)))


def _day_first(m: re.Match[str]) -> date | None:
    month = _MONTH_NUMBERS[m.group(2)[:3].lower()]
    return _build_date(int(m.group(3)), month, int(m.group(1)))


def _iso(m: re.Match[str]) -> date | None:
    return _build_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))


DATE_RULES: tuple[Rule[date], ...] = (
    Rule(
        "mm_dd_yyyy",
        re.compile(r"(?<!\d)(\d{1,2})[/-](\d{1,2})[/-](\d{4})(?!\d)"),
        _month_day_year,
    ),
    Rule(
        "mm_dd_yy",
        re.compile(r"(?<!\d)(\d{1,2})[/-](\d{1,2})[/-](\d{2})(?!\d)"),
        _month_day_short_year,
    ),
    Rule(
        "month_dd_yyyy",
        re.compile(rf"\b({_MONTHS})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s+(\d{{4}})\b", re.I),
        _month_name_first,
    ),
    Rule(
        "dd_month_yyyy",
        re.compile(rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+({_MONTHS})\.?,?\s+(\d{{4}})\b", re.I),
        _day_first,
    ),
    Rule("iso", re.compile(r"(?<!\d)(\d{4})-(\d{2})-(\d{2})(?!\d)"), _iso),
)


def extract_date(text: str) -> tuple[str, date] | None:
    return first_match(DATE_RULES, text)


# Merchant ------------------------------------------------------------------

MERCHANT_SKIP_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"^(receipt|invoice|order|transaction|date|time|store|location|tel|phone|fax|www\.|http)",
        re.I,
    ),
    re.compile(r"^\d+$"),
    re.compile(r"^\d{1,2}[/-]\d{1,2}[/-]\d{2,4}$"),
    re.compile(r"^\d{1,2}:\d{2}"),
    re.compile(r"^#\d+"),
)
_CORPORATE_SUFFIX_RE = re.compile(r",?\s+(?:inc|llc|ltd|corp)\.?$", re.I)
_STORE_NUMBER_RE = re.compile(r"\s*(?:-\s*#?|#)\s*\d+$")


def _alpha_ratio(line: str) -> float:
    return sum(1 for ch in line if ch.isascii() and ch.isalpha()) / max(1, len(line))


def looks_like_merchant(line: str) -> bool:
    if any(p.search(line) for p in MERCHANT_SKIP_PATTERNS):
        return False
    if not 3 <= len(line) <= 50:
        return False
    return _alpha_ratio(line) >= 0.3


def clean_merchant_name(line: str) -> str:
    name = _CORPORATE_SUFFIX_RE.sub("", line)
    name = _STORE_NUMBER_RE.sub("", name)
    return name.strip()


def extract_merchant(text: str) -> tuple[str, str] | None:
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    if not lines:
        return None
    for line in lines[: settings.merchant_scan_lines]:
        if not looks_like_merchant(line):
            continue
        name = clean_merchant_name(line)
        if len(name) >= 2:
            return "header_line", name
    return "first_line", lines[0][:50]


# Entry point ---------------------------------------------------------------


def extract_fields(raw_text: str | None) -> ExtractedFields:
    text = raw_text or ""
    if not text.strip():
        return ExtractedFields(raw_text=text)

    sources: dict[str, str] = {}
    found: dict[str, Any] = {}
    for name, extractor in (
        ("merchant_name", extract_merchant),
        ("subtotal", extract_subtotal),
        ("tax", extract_tax),
        ("total", extract_total),
        ("transaction_date", extract_date),
    ):
        result = extractor(text)
        if result is None:
            continue
        rule_name, value = result
        found[name] = value
        sources[name] = rule_name

    return ExtractedFields(raw_text=text, sources=sources, **found)
