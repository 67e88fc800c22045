"""
Display formats for scalar values.

Injectors producing TIME, NUMBER or BOOL values may advertise a
``FormatConfig``: the patterns a template author can pick from and the
default used when none is picked. A template selects a pattern per
placeholder; substitution applies it.

Pattern languages:

- TIME: ``YYYY YY MMMM MMM MM DD D HH hh mm ss a`` tokens, anything else
  is literal (``DD/MM/YYYY``, ``MMMM D, YYYY hh:mm a``).
- NUMBER: ``#,##0.00`` style. ``,`` enables thousands grouping, the
  count of ``0``/``#`` after ``.`` sets the decimals, text around the
  digits is kept as prefix / suffix (``$#,##0.00``, ``#,##0.0%``).
  Rounding is half away from zero.
- BOOL: ``TrueText/FalseText`` (``Yes/No``).
"""

from __future__ import annotations

import calendar
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from renderer.app.injection.values import ValueType

FORMATTABLE_TYPES = frozenset({ValueType.TIME, ValueType.NUMBER, ValueType.BOOL})


class FormatConfig(BaseModel):
    default: str = Field(..., min_length=1)
    options: Tuple[str, ...] = Field(..., min_length=1)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _default_is_an_option(self) -> "FormatConfig":
        if self.default not in self.options:
            raise ValueError(f"Default format '{self.default}' is not an option")
        return self

    def accepts(self, pattern: str) -> bool:
        return pattern in self.options


# ----------------------------------------------------------------------
# Presets
# ----------------------------------------------------------------------

DATE_FORMATS = FormatConfig(
    default="DD/MM/YYYY",
    options=(
        "DD/MM/YYYY",
        "MM/DD/YYYY",
        "YYYY-MM-DD",
        "D MMMM YYYY",
        "MMMM D, YYYY",
        "DD MMM YYYY",
    ),
)

TIME_FORMATS = FormatConfig(
    default="HH:mm",
    options=("HH:mm", "HH:mm:ss", "hh:mm a", "hh:mm:ss a"),
)

DATE_TIME_FORMATS = FormatConfig(
    default="DD/MM/YYYY HH:mm",
    options=(
        "DD/MM/YYYY HH:mm",
        "YYYY-MM-DD HH:mm:ss",
        "D MMMM YYYY, HH:mm",
        "MMMM D, YYYY hh:mm a",
        "DD/MM/YYYY hh:mm a",
    ),
)

NUMBER_FORMATS = FormatConfig(
    default="#,##0.00",
    options=("#,##0.00", "#,##0", "#,##0.000", "0.00"),
)

CURRENCY_FORMATS = FormatConfig(
    default="$#,##0.00",
    options=("$#,##0.00", "€#,##0.00", "#,##0.00 USD", "#,##0.00 €"),
)

PERCENTAGE_FORMATS = FormatConfig(
    default="#,##0.00%",
    options=("#,##0.00%", "#,##0%", "#,##0.0%"),
)

BOOL_FORMATS = FormatConfig(
    default="Yes/No",
    options=("Yes/No", "True/False", "Sí/No"),
)


# ----------------------------------------------------------------------
# TIME
# ----------------------------------------------------------------------

_TIME_TOKENS: Dict[str, Callable[[datetime], str]] = {
    "YYYY": lambda t: f"{t.year:04d}",
    "YY": lambda t: f"{t.year % 100:02d}",
    "MMMM": lambda t: calendar.month_name[t.month],
    "MMM": lambda t: calendar.month_abbr[t.month],
    "MM": lambda t: f"{t.month:02d}",
    "DD": lambda t: f"{t.day:02d}",
    "D": lambda t: str(t.day),
    "HH": lambda t: f"{t.hour:02d}",
    "hh": lambda t: f"{(t.hour % 12) or 12:02d}",
    "mm": lambda t: f"{t.minute:02d}",
    "ss": lambda t: f"{t.second:02d}",
    "a": lambda t: "PM" if t.hour >= 12 else "AM",
}

# Longest tokens first
_TIME_PATTERN = re.compile(
    "|".join(sorted(_TIME_TOKENS, key=len, reverse=True))
)


def format_time(value: datetime, pattern: str) -> str:
    return _TIME_PATTERN.sub(lambda m: _TIME_TOKENS[m.group(0)](value), pattern)


# ----------------------------------------------------------------------
# NUMBER
# ----------------------------------------------------------------------

_DIGITS_PATTERN = re.compile(r"[#0,][#0,.]*")


def format_number(value: float, pattern: str) -> str:
    match = _DIGITS_PATTERN.search(pattern)
    if match is None or not re.search(r"[#0]", match.group(0)):
        raise ValueError(f"Invalid number format '{pattern}'")

    digits = match.group(0)
    prefix, suffix = pattern[: match.start()], pattern[match.end():]

    _, dot, fraction = digits.rpartition(".")
    decimals = sum(1 for c in fraction if c in "#0") if dot else 0
    grouping = "," if "," in digits else ""

    quantum = Decimal(1).scaleb(-decimals)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return f"{prefix}{rounded:{grouping}.{decimals}f}{suffix}"


# ----------------------------------------------------------------------
# BOOL
# ----------------------------------------------------------------------


def format_bool(value: bool, pattern: str) -> str:
    parts = pattern.split("/")
    if len(parts) != 2:
        return "true" if value else "false"
    return parts[0] if value else parts[1]


def format_value(value: Any, pattern: str) -> str:
    """
    Format a resolved scalar with ``pattern``.

    Dispatches on the Python type of ``value``. Raises ``TypeError`` for
    values that have no pattern language.
    """
    if isinstance(value, bool):
        return format_bool(value, pattern)
    if isinstance(value, (int, float)):
        return format_number(value, pattern)
    if isinstance(value, datetime):
        return format_time(value, pattern)
    raise TypeError(f"Values of type {type(value).__name__} cannot be formatted")
