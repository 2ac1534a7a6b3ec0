from __future__ import annotations

import logging
import math
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

log = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_STRIP_RE = re.compile(r"[\s\-()+.]")
_US_PHONE_RE = re.compile(r"^1?[2-9]\d{2}[2-9]\d{2}\d{4}$")
_INTL_PHONE_RE = re.compile(r"^\+?[1-9]\d{6,14}$")
_ANY_PHONE_RE = re.compile(r"^\+?[\d\s\-().]{7,}$")
_HEX_COLOR_RE = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")

_DATE_FORMATS = {
    "date": (re.compile(r"^\d{4}-\d{2}-\d{2}$"), "%Y-%m-%d"),
    "datetime-local": (re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}$"), "%Y-%m-%dT%H:%M"),
    "month": (re.compile(r"^\d{4}-\d{2}$"), "%Y-%m"),
    "time": (re.compile(r"^\d{2}:\d{2}$"), "%H:%M"),
}
_WEEK_RE = re.compile(r"^(\d{4})-W(\d{2})$")

# (regex, message suffix); credit cards are matched with whitespace removed.
CUSTOM_PATTERNS = {
    "name": (re.compile(r"^[a-zA-Z\s\-'.]+$"), "must contain only letters, spaces, hyphens, and apostrophes"),
    "address": (re.compile(r"^[a-zA-Z0-9\s\-#.,/]+$"), "contains invalid characters for an address"),
    "zipCode": (re.compile(r"^\d{5}(-\d{4})?$"), "must be a valid ZIP code (12345 or 12345-6789)"),
    "ssn": (re.compile(r"^\d{3}-\d{2}-\d{4}$"), "must be in format XXX-XX-XXXX"),
    "creditCard": (re.compile(r"^\d{13,19}$"), "must be a valid credit card number"),
}


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


class _Check:
    """Accumulates one field's verdict."""

    def __init__(self, value: Any, config: Dict[str, Any], label: str) -> None:
        self.config = config
        self.label = label
        self.messages: Dict[str, str] = config.get("messages") or {}
        self.result: Dict[str, Any] = {"isValid": True, "errors": [], "warnings": [], "sanitizedValue": value}

    def fail(self, default: str, message_key: Optional[str] = None) -> None:
        self.result["isValid"] = False
        msg = self.messages.get(message_key) if message_key else None
        self.result["errors"].append(msg or default)

    def sanitized(self, value: Any) -> None:
        self.result["sanitizedValue"] = value


def _check_text(value: Any, c: _Check) -> None:
    text = str(value).strip()
    c.sanitized(text)
    min_len, max_len = c.config.get("minLength"), c.config.get("maxLength")
    if min_len and len(text) < min_len:
        c.fail(f"{c.label} must be at least {min_len} characters", "tooShort")
    if max_len and len(text) > max_len:
        c.fail(f"{c.label} must be no more than {max_len} characters", "tooLong")
    pattern = c.config.get("pattern")
    if pattern:
        try:
            matched = re.search(pattern, text) is not None
        except re.error:
            c.result["warnings"].append(f"Invalid pattern for {c.label}")
            matched = True
        if not matched:
            c.fail(f"{c.label} format is invalid", "invalidFormat")
    for name, enabled in (c.config.get("customPatterns") or {}).items():
        if not enabled or name not in CUSTOM_PATTERNS:
            continue
        regex, suffix = CUSTOM_PATTERNS[name]
        candidate = re.sub(r"\s", "", text) if name == "creditCard" else text
        if not regex.match(candidate):
            c.fail(f"{c.label} {suffix}")


def _check_number(value: Any, c: _Check) -> None:
    try:
        num = float(value) if isinstance(value, (int, float)) else float(str(value).strip())
    except (TypeError, ValueError):
        num = math.nan
    if math.isnan(num):
        c.fail(f"{c.label} must be a valid number")
        return
    c.sanitized(int(num) if num.is_integer() else num)
    lo, hi, step = c.config.get("min"), c.config.get("max"), c.config.get("step")
    if lo is not None and num < lo:
        c.fail(f"{c.label} must be at least {lo}", "outOfRange")
    if hi is not None and num > hi:
        c.fail(f"{c.label} must be no more than {hi}", "outOfRange")
    if step and lo is not None:
        remainder = math.fmod(num - lo, step)
        if abs(remainder) > 0.0001 and abs(abs(remainder) - step) > 0.0001:
            c.fail(f"{c.label} must be in increments of {step}")


def _check_email(value: Any, c: _Check) -> None:
    text = str(value).strip().lower()
    c.sanitized(text)
    if not _EMAIL_RE.match(text):
        c.fail(f"{c.label} must be a valid email address", "invalid")
    max_len = c.config.get("maxLength")
    if max_len and len(text) > max_len:
        c.fail(f"{c.label} is too long")


def _check_password(value: Any, c: _Check) -> None:
    text = str(value)
    min_len, max_len = c.config.get("minLength"), c.config.get("maxLength")
    if min_len and len(text) < min_len:
        c.fail(f"{c.label} must be at least {min_len} characters")
    if max_len and len(text) > max_len:
        c.fail(f"{c.label} must be no more than {max_len} characters")
    pattern = c.config.get("pattern")
    if pattern and re.search(pattern, text) is None:
        c.fail(f"{c.label} does not meet security requirements", "invalidFormat")
    # never echo a password back
    c.sanitized(None)


def _check_phone(value: Any, c: _Check) -> None:
    text = str(value).strip()
    digits = _PHONE_STRIP_RE.sub("", text)
    fmt = c.config.get("phoneFormat") or "any"
    sanitized = digits
    if fmt == "us":
        ok = bool(_US_PHONE_RE.match(digits))
        if ok and len(digits) == 11 and digits.startswith("1"):
            sanitized = digits[1:]
    elif fmt == "international":
        ok = bool(_INTL_PHONE_RE.match(digits))
    else:
        ok = bool(_ANY_PHONE_RE.match(text)) and len(digits) >= 7
    if ok:
        c.sanitized(sanitized)
    else:
        c.fail(f"{c.label} must be a valid phone number", "invalid")


def _check_url(value: Any, c: _Check) -> None:
    text = str(value).strip()
    parsed = urlparse(text)
    if parsed.scheme and (parsed.netloc or parsed.path) and not re.search(r"\s", text):
        c.sanitized(text)
    else:
        c.fail(f"{c.label} must be a valid URL", "invalid")


def _parse_temporal(text: str, input_type: str) -> datetime:
    if input_type == "week":
        m = _WEEK_RE.match(text)
        week = int(m.group(2)) if m else 0
        if not m or not 1 <= week <= 53:
            raise ValueError("Invalid week format")
        return datetime(int(m.group(1)), 1, 1) + timedelta(weeks=week - 1)
    regex, fmt = _DATE_FORMATS[input_type]
    if not regex.match(text):
        raise ValueError(f"Invalid {input_type} format")
    parsed = datetime.strptime(text, fmt)
    if input_type == "time":
        return datetime.combine(date.today(), parsed.time())
    return parsed


def _parse_bound(raw: str) -> datetime:
    bound = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    return bound.replace(tzinfo=None)


def _check_temporal(value: Any, input_type: str, c: _Check) -> None:
    text = str(value).strip()
    try:
        moment = _parse_temporal(text, input_type)
        lo = _parse_bound(c.config["minDate"]) if c.config.get("minDate") else None
        hi = _parse_bound(c.config["maxDate"]) if c.config.get("maxDate") else None
    except ValueError:
        c.fail(f"{c.label} must be a valid date/time", "invalid")
        return
    c.sanitized(text)
    if lo is not None and moment < lo:
        c.fail(f"{c.label} must be after {c.config['minDate']}")
    if hi is not None and moment > hi:
        c.fail(f"{c.label} must be before {c.config['maxDate']}")
    now = datetime.now()
    if c.config.get("futureOnly") and moment <= now:
        c.fail(f"{c.label} must be in the future")
    if c.config.get("pastOnly") and moment >= now:
        c.fail(f"{c.label} must be in the past")


def _check_color(value: Any, c: _Check) -> None:
    text = str(value).strip()
    if _HEX_COLOR_RE.match(text):
        c.sanitized(text.lower())
    else:
        c.fail(f"{c.label} must be a valid color (hex format)", "invalid")


def _check_file(value: Any, c: _Check) -> None:
    if not isinstance(value, dict) or not value.get("name") or value.get("size") is None:
        return
    allowed = c.config.get("allowedFileTypes") or []
    if allowed:
        name = str(value["name"]).lower()
        mime = str(value.get("type") or "")

        def matches(rule: str) -> bool:
            if rule.startswith("."):
                return name.endswith(rule.lower())
            if "*" in rule:
                return mime.startswith(rule.split("/")[0])
            return mime == rule

        if not any(matches(rule) for rule in allowed):
            c.fail(f"{c.label} must be one of: {', '.join(allowed)}")
    max_size = c.config.get("maxFileSize")
    if max_size and value["size"] > max_size:
        c.fail(f"{c.label} must be smaller than {max_size / (1024 * 1024):.1f}MB")


def _check_select(value: Any, c: _Check) -> None:
    allowed = c.config.get("allowedValues") or []
    if allowed and str(value) not in allowed:
        c.fail(f"{c.label} must be one of: {', '.join(allowed)}")


def _check_checkbox(value: Any, c: _Check) -> None:
    if isinstance(value, bool):
        selections = ["true"] if value else []
    elif isinstance(value, list):
        selections = [str(v) for v in value]
    else:
        selections = [str(value)] if value else []
    c.sanitized(selections)
    allowed = c.config.get("allowedValues") or []
    if allowed:
        invalid = [s for s in selections if s not in allowed]
        if invalid:
            c.fail(f"{c.label} contains invalid selections: {', '.join(invalid)}")
    lo, hi = c.config.get("minSelections"), c.config.get("maxSelections")
    if lo and len(selections) < lo:
        c.fail(f"{c.label} requires at least {lo} selections")
    if hi and len(selections) > hi:
        c.fail(f"{c.label} allows at most {hi} selections")


_SIMPLE_CHECKS = {
    "text": _check_text,
    "textarea": _check_text,
    "search": _check_text,
    "number": _check_number,
    "range": _check_number,
    "email": _check_email,
    "password": _check_password,
    "tel": _check_phone,
    "phone": _check_phone,
    "url": _check_url,
    "color": _check_color,
    "file": _check_file,
    "select": _check_select,
    "radio": _check_select,
    "checkbox": _check_checkbox,
    "toggle": _check_checkbox,
}
_TEMPORAL_TYPES = ("date", "datetime-local", "month", "week", "time")
_PASSIVE_TYPES = ("hidden", "display")


def validate_input(
    value: Any,
    input_type: str,
    config: Optional[Dict[str, Any]] = None,
    field_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Validate one answer.

    Returns {"isValid", "errors", "warnings", "sanitizedValue"}. An empty value
    is valid unless `config["required"]` is set, in which case it is the only
    error reported.
    """
    cfg = config or {}
    c = _Check(value, cfg, field_name or "Field")
    if is_empty(value):
        if cfg.get("required"):
            c.fail(f"{c.label} is required", "required")
        return c.result

    if input_type in _SIMPLE_CHECKS:
        _SIMPLE_CHECKS[input_type](value, c)
    elif input_type in _TEMPORAL_TYPES:
        _check_temporal(value, input_type, c)
    elif input_type not in _PASSIVE_TYPES:
        c.result["warnings"].append(f"Unknown input type: {input_type}")
    return c.result


def validate_batch(items: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate many `{value, inputType, config?, fieldName?}` requests, keyed by field name."""
    results: Dict[str, Dict[str, Any]] = {}
    for index, item in enumerate(items):
        item = item if isinstance(item, dict) else {}
        key = item.get("fieldName") or f"field_{index}"
        if not item.get("inputType") or "value" not in item:
            results[key] = {"isValid": False, "errors": ["inputType and value are required"], "warnings": []}
            continue
        results[key] = validate_input(item["value"], item["inputType"], item.get("config"), item.get("fieldName"))
    valid = sum(1 for r in results.values() if r["isValid"])
    summary = {"total": len(items), "valid": valid, "invalid": len(results) - valid}
    log.debug("batch validation total=%d invalid=%d", summary["total"], summary["invalid"])
    return {"allValid": valid == len(results), "results": results, "summary": summary}
