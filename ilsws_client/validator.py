"""
Field validation by compact rule strings.

A rule is written as "<kind>[:<param>]". Sample rules:

    'b'                    must be absent (None)
    'o'                    1|0
    'd:YYYY-MM-DD'         date in the given template (see date_normalizer)
    'd:YYYY/MM/DD HH:MM'   timestamp, time part ignored
    'e'                    email
    'i:1,99999999'         integer between 1 and 99999999
    'j'                    JSON
    'n:1,999'              decimal number between 1 and 999
    'r:#^[A-Z]{2,4}$#'     regular expression (delimiters optional)
    's:256'                string of length <= 256
    'u'                    URL
    'v:01|11'              one of '01' or '11'

Rules are parsed once into ValidationRule objects and cached.
"""

import json
import re
import urllib.parse
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Optional, Tuple, Union

from .date_normalizer import SUPPORTED_TEMPLATES, normalize_date
from .errors import ConfigurationError, FieldValidationFailed, UnsupportedRuleKind


class RuleKind(Enum):
    BLANK = "b"
    BOOLEAN = "o"
    DATE = "d"
    EMAIL = "e"
    INTEGER = "i"
    JSON = "j"
    NUMBER = "n"
    REGEX = "r"
    STRING = "s"
    URL = "u"
    LIST = "v"


# Numeric literals are ASCII only and matched against the whole text
_INTEGER = re.compile(r"-?[0-9]+")
_NUMBER = re.compile(r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_EMAIL = re.compile(
    r"[A-Za-z0-9!#$%&'*+/=?^_`{|}~.-]+"
    r"@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+"
)

# Delimiters accepted around PHP-style patterns, e.g. '#^\d{1,6}$#' or '/^[A-Z]{2}$/i'
_PATTERN_DELIMITERS = "/#~!@%+"
_PATTERN_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


@dataclass(frozen=True)
class ValidationRule:
    """A parsed validation rule."""

    kind: RuleKind
    param: str = ""
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    options: Tuple[str, ...] = ()
    pattern: Optional[re.Pattern] = None
    source: str = ""

    @classmethod
    def parse(cls, text: str) -> "ValidationRule":
        """
        Parse a rule string.

        Raises:
            UnsupportedRuleKind: If the kind letter is not recognised
            ConfigurationError: If the parameter is malformed for the kind
        """
        if not isinstance(text, str) or not text:
            raise ConfigurationError(f"Empty or non-string validation rule: {text!r}")

        kind_text, _, param = text.partition(":")
        try:
            kind = RuleKind(kind_text)
        except ValueError:
            raise UnsupportedRuleKind(kind_text, text) from None

        if kind in (RuleKind.INTEGER, RuleKind.NUMBER):
            minimum, maximum = _parse_range(kind, param, text)
            return cls(kind, param, minimum=minimum, maximum=maximum, source=text)

        if kind is RuleKind.STRING:
            if not param.isdigit():
                raise ConfigurationError(f"String rule needs a maximum length: {text!r}")
            return cls(kind, param, maximum=int(param), source=text)

        if kind is RuleKind.DATE:
            if param not in SUPPORTED_TEMPLATES:
                raise ConfigurationError(f"Unsupported date template in rule {text!r}")
            return cls(kind, param, source=text)

        if kind is RuleKind.REGEX:
            return cls(kind, param, pattern=_compile_pattern(param, text), source=text)

        if kind is RuleKind.LIST:
            return cls(kind, param, options=tuple(param.split("|")), source=text)

        return cls(kind, param, source=text)

    def __str__(self) -> str:
        return self.source


def _parse_range(kind: RuleKind, param: str, text: str):
    try:
        low, high = param.split(",")
        if kind is RuleKind.INTEGER:
            return int(low), int(high)
        return float(low), float(high)
    except ValueError:
        raise ConfigurationError(f"Range rule needs 'min,max': {text!r}") from None


def _compile_pattern(param: str, text: str) -> re.Pattern:
    """
    Compile a regex parameter, stripping PHP-style delimiters and flags.

    Character classes such as \\d and \\w are ASCII only. Without the 'm'
    flag a final '$' anchors at the very end of the text, so a trailing
    newline does not match.
    """
    source, flags = param, re.ASCII
    if len(param) >= 2 and param[0] in _PATTERN_DELIMITERS:
        end = param.rfind(param[0])
        modifiers = param[end + 1:]
        if end > 0 and all(m in _PATTERN_FLAGS for m in modifiers):
            source = param[1:end]
            for m in modifiers:
                flags |= _PATTERN_FLAGS[m]
    if not flags & re.MULTILINE and _ends_with_anchor(source):
        source = source[:-1] + r"\Z"
    try:
        return re.compile(source, flags)
    except re.error as e:
        raise ConfigurationError(f"Bad regular expression in rule {text!r}: {e}") from e


def _ends_with_anchor(source: str) -> bool:
    if not source.endswith("$"):
        return False
    escapes = len(source) - 1 - len(source[:-1].rstrip("\\"))
    return escapes % 2 == 0


@lru_cache(maxsize=512)
def parse_rule(text: str) -> ValidationRule:
    """Parse a rule string, caching the result."""
    return ValidationRule.parse(text)


def validate(value: Any, rule: Union[str, ValidationRule]) -> bool:
    """
    Check a value against a validation rule.

    A None value always fails, except for the blank rule 'b', which passes
    only for None. The empty string is a value, not an absence.

    Args:
        value: Value to check
        rule: Rule string or parsed ValidationRule

    Returns:
        True if the value satisfies the rule

    Raises:
        UnsupportedRuleKind: If the rule kind is unknown
    """
    if not isinstance(rule, ValidationRule):
        rule = parse_rule(rule)
    kind = rule.kind

    if kind is RuleKind.BLANK:
        return value is None

    if value is None:
        return False

    if kind is RuleKind.BOOLEAN:
        if isinstance(value, (bool, int, float)):
            return value in (0, 1)
        return str(value) in ("0", "1")

    if kind is RuleKind.DATE:
        return bool(value) and normalize_date(str(value), rule.param) is not None

    if kind is RuleKind.EMAIL:
        return _is_email(value)

    if kind is RuleKind.INTEGER:
        if isinstance(value, bool) or not _INTEGER.fullmatch(str(value)):
            return False
        return rule.minimum <= int(str(value)) <= rule.maximum

    if kind is RuleKind.JSON:
        if value == "" or value == b"":
            return False
        try:
            json.loads(value if isinstance(value, (str, bytes, bytearray)) else str(value))
        except ValueError:
            return False
        return True

    if kind is RuleKind.NUMBER:
        if isinstance(value, bool) or not _NUMBER.fullmatch(str(value)):
            return False
        return rule.minimum <= float(str(value)) <= rule.maximum

    if kind is RuleKind.REGEX:
        return rule.pattern.search(str(value)) is not None

    if kind is RuleKind.STRING:
        return len(str(value)) <= rule.maximum

    if kind is RuleKind.URL:
        return _is_url(value)

    if kind is RuleKind.LIST:
        return isinstance(value, str) and value != "" and value in rule.options

    raise UnsupportedRuleKind(kind.value, rule.source)


def check(name: str, value: Any, rule: Union[str, ValidationRule]) -> Any:
    """
    Validate a named value, raising instead of returning False.

    Returns:
        The value, unchanged

    Raises:
        FieldValidationFailed: If the value fails the rule
    """
    if not validate(value, rule):
        raise FieldValidationFailed(name, value, str(rule))
    return value


def _is_email(value: Any) -> bool:
    if not isinstance(value, str) or not _EMAIL.fullmatch(value):
        return False
    local = value.rsplit("@", 1)[0]
    return not (local.startswith(".") or local.endswith(".") or ".." in local)


def _is_url(value: Any) -> bool:
    if not isinstance(value, str) or not value or any(c.isspace() for c in value):
        return False
    try:
        parsed = urllib.parse.urlparse(value)
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc)
