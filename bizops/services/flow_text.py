"""Text helpers for flows: interpolation, input validation and normalization."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

import dateparser

from bizops.domain.flow import ValidationRule

_VARIABLE_RE = re.compile(r"\{\{(\w+)\}\}")
_PHONE_RE = re.compile(r"^\+?[\d\s\-()]{6,15}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NUMBER_RE = re.compile(r"^\d+([.,]\d+)?$")

# Common Mongolian words/phrases that name a day
_MONGOLIAN_DATE_WORDS = re.compile(
    r"^(өнөөдөр|маргааш|нөгөөдөр|даваа|мягмар|лхагва|пүрэв|баасан|бямба|ням"
    r"|дараа\s*долоо\s*хоног|энэ\s*долоо\s*хоног|ирэх\s*долоо\s*хоног)"
)

_VALIDATION_ERRORS = {
    ValidationRule.PHONE: "Зөв утасны дугаар оруулна уу (жиш: 99001122).",
    ValidationRule.EMAIL: "Зөв имэйл хаяг оруулна уу.",
    ValidationRule.NUMBER: "Тоо оруулна уу.",
    ValidationRule.DATE: "Огноо оруулна уу (жиш: 2024-02-15).",
}
_GENERIC_VALIDATION_ERROR = "Хариу оруулна уу."


def interpolate_variables(text: str, variables: dict[str, Any]) -> str:
    """Replace ``{{name}}`` placeholders; unknown or None values are left as-is."""

    def _replace(match: re.Match[str]) -> str:
        value = variables.get(match.group(1))
        if value is None:
            return match.group(0)
        return str(value)

    return _VARIABLE_RE.sub(_replace, text)


def parse_date(raw: str, now: datetime | None = None) -> datetime | None:
    """Parse a free-text date with dateparser, returning a UTC datetime."""
    settings = {
        "PREFER_DATES_FROM": "future",
        "RETURN_AS_TIMEZONE_AWARE": False,
    }
    if now is not None:
        settings["RELATIVE_BASE"] = now.replace(tzinfo=None)
    result = dateparser.parse(raw, settings=settings)
    if result is None:
        return None
    return result.replace(tzinfo=timezone.utc)


def validate_input(value: str, rule: ValidationRule | None = None) -> bool:
    value = value.strip()
    if rule is None or rule == ValidationRule.TEXT:
        return len(value) > 0
    if rule == ValidationRule.PHONE:
        return bool(_PHONE_RE.match(value))
    if rule == ValidationRule.EMAIL:
        return bool(_EMAIL_RE.match(value))
    if rule == ValidationRule.NUMBER:
        return bool(_NUMBER_RE.match(value))
    if rule == ValidationRule.DATE:
        if len(value) < 2:
            return False
        if any(ch.isdigit() for ch in value):
            return True
        if _MONGOLIAN_DATE_WORDS.match(value.lower()):
            return True
        return parse_date(value) is not None
    return True


def default_validation_error(rule: ValidationRule | None) -> str:
    return _VALIDATION_ERRORS.get(rule, _GENERIC_VALIDATION_ERROR)


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    text = re.sub(r"[^\w\s]", " ", text.lower())
    return re.sub(r"\s+", " ", text).strip()
