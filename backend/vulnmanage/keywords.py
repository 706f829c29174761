# backend/vulnmanage/keywords.py
from __future__ import annotations

import calendar
import logging
import math
import re
import time
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

log = logging.getLogger(__name__)


class KeywordType(Enum):
    UNKNOWN = "unknown"
    INTEGER = "integer"
    DOUBLE = "double"
    STRING = "string"


class KeywordRelation(Enum):
    NONE = "none"
    APPROX = "approx"
    COLUMN_ABOVE = "column_above"
    COLUMN_APPROX = "column_approx"
    COLUMN_EQUAL = "column_equal"
    COLUMN_BELOW = "column_below"
    COLUMN_REGEXP = "column_regexp"


COLUMN_RELATIONS = frozenset(
    {
        KeywordRelation.COLUMN_ABOVE,
        KeywordRelation.COLUMN_APPROX,
        KeywordRelation.COLUMN_EQUAL,
        KeywordRelation.COLUMN_BELOW,
        KeywordRelation.COLUMN_REGEXP,
    }
)

_RELATION_SYMBOLS: Dict[KeywordRelation, str] = {
    KeywordRelation.APPROX: "~",
    KeywordRelation.COLUMN_ABOVE: ">",
    KeywordRelation.COLUMN_APPROX: "~",
    KeywordRelation.COLUMN_EQUAL: "=",
    KeywordRelation.COLUMN_BELOW: "<",
    KeywordRelation.COLUMN_REGEXP: ":",
}

_RELATION_CHARS: Dict[str, KeywordRelation] = {
    "=": KeywordRelation.COLUMN_EQUAL,
    "~": KeywordRelation.COLUMN_APPROX,
    ">": KeywordRelation.COLUMN_ABOVE,
    "<": KeywordRelation.COLUMN_BELOW,
    ":": KeywordRelation.COLUMN_REGEXP,
}

SPECIAL_WORDS = frozenset({"and", "or", "not", "re", "regexp"})

# Pagination, sorting and report options.  These never become WHERE terms.
CONTROL_COLUMNS = frozenset(
    {
        "first",
        "rows",
        "sort",
        "sort-reverse",
        "apply_overrides",
        "overrides",
        "notes",
        "result_hosts_only",
        "min_qod",
        "levels",
        "compliance_levels",
        "delta_states",
        "timezone",
    }
)

# Only the first occurrence of these is kept.
_SINGLE_USE_COLUMNS = frozenset(
    {
        "first",
        "rows",
        "apply_overrides",
        "delta_states",
        "levels",
        "min_qod",
        "notes",
        "overrides",
        "result_hosts_only",
        "timezone",
    }
)

_BOOLEAN_OPTION_COLUMNS = frozenset({"apply_overrides", "overrides", "notes", "result_hosts_only"})

APPLY_OVERRIDES_DEFAULT = 0
MIN_QOD_DEFAULT = 70

# Range of the integer options (first, rows, min_qod, ...).
INT_MAX = 2**31 - 1
INT_MIN = -(2**31)

SEVERITY_LOG = 0.0
SEVERITY_FP = -1.0
SEVERITY_ERROR = -3.0

_SEVERITY_NAMES: Dict[str, float] = {
    "log": SEVERITY_LOG,
    "false positive": SEVERITY_FP,
    "error": SEVERITY_ERROR,
}

_COLUMN_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")
_INTEGER = re.compile(r"^[-+]?\d+$")
_DOUBLE = re.compile(r"^[-+]?\d+(?:\.\d*)?(?:[eE][-+]?\d+)?$")
_RELATIVE_TIME = re.compile(r"^([-+]?\d+)([smhdwMy])$")
_DATE_FORMATS: Tuple[str, ...] = (
    "%Y-%m-%dt%H:%M",
    "%Y-%m-%dt%Hh%M",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%dT%Hh%M",
    "%Y-%m-%d",
)
_RELATIVE_SECONDS: Dict[str, int] = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
}

_WHITESPACE = " \t\n\r"
_QUOTES = "\"'"


@dataclass(frozen=True)
class Keyword:
    """One parsed unit of a filter string."""

    string: str
    column: Optional[str] = None
    relation: KeywordRelation = KeywordRelation.NONE
    type: KeywordType = KeywordType.UNKNOWN
    integer_value: int = 0
    double_value: float = 0.0
    quoted: bool = False
    equal: bool = False
    approx: bool = False

    @property
    def is_special(self) -> bool:
        return keyword_special(self)

    @property
    def is_numeric(self) -> bool:
        return self.type in (KeywordType.INTEGER, KeywordType.DOUBLE)

    def column_is(self, name: str) -> bool:
        """Case-insensitive column match that also accepts the private ``_name`` form."""
        if self.column is None:
            return False
        column = self.column.lower()
        name = name.lower()
        return column == name or (column.startswith("_") and column[1:] == name)


def keyword_special(keyword: Keyword) -> bool:
    """True for the bare logical words ``and``, ``or``, ``not``, ``re`` and ``regexp``."""
    if keyword is None or keyword.column is not None or keyword.quoted or keyword.equal:
        return False
    return (keyword.string or "").lower() in SPECIAL_WORDS


def keyword_relation_symbol(relation: Optional[KeywordRelation]) -> str:
    return _RELATION_SYMBOLS.get(relation, "")


def _now() -> float:
    return time.time()


def add_months(timestamp: float, months: int) -> int:
    """Shift an epoch timestamp by whole calendar months in local time."""
    moment = datetime.fromtimestamp(timestamp)
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return int(moment.replace(year=year, month=month, day=day).timestamp())


def _parse_relative_time(value: str) -> Optional[int]:
    match = _RELATIVE_TIME.match(value)
    if not match:
        return None
    try:
        amount = int(match.group(1))
    except ValueError:
        return None
    unit = match.group(2)
    now = _now()
    try:
        if unit == "M":
            return add_months(now, amount)
        if unit == "y":
            return add_months(now, amount * 12)
    except (ValueError, OverflowError, OSError):
        log.debug("Relative time %s is out of range", value)
        return None
    return int(now) + amount * _RELATIVE_SECONDS[unit]


def _parse_date(value: str) -> Optional[int]:
    for fmt in _DATE_FORMATS:
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        try:
            stamp = int(parsed.timestamp())
        except (OverflowError, OSError):
            return None
        log.debug("Parsed %s as %s to timestamp", value, fmt)
        return stamp
    return None


def _typed_value(column: Optional[str], value: str) -> Tuple[KeywordType, int, float]:
    """Infer the value type of a column or exact keyword."""
    if column and column.lower() in ("severity", "new_severity"):
        severity = _SEVERITY_NAMES.get(value.lower())
        if severity is not None:
            return KeywordType.DOUBLE, 0, severity

    if value == "":
        return KeywordType.STRING, 0, 0.0

    digits = value[1:] if value[0] in "+-" and len(value) > 1 else value
    if not digits[:1].isdigit():
        return KeywordType.STRING, 0, 0.0

    if _INTEGER.match(value):
        try:
            return KeywordType.INTEGER, int(value), 0.0
        except ValueError:
            # longer than the interpreter will convert
            return KeywordType.STRING, 0, 0.0

    relative = _parse_relative_time(value)
    if relative is not None:
        return KeywordType.INTEGER, relative, 0.0

    stamp = _parse_date(value)
    if stamp is not None:
        return KeywordType.INTEGER, stamp, 0.0

    if _DOUBLE.match(value):
        try:
            number = float(value)
        except (OverflowError, ValueError):
            number = math.inf
        if math.isfinite(number):
            return KeywordType.DOUBLE, 0, number
    return KeywordType.STRING, 0, 0.0


def _leading_int(value: str) -> int:
    """Integer prefix of a string, 0 when there is none (like C ``atoi``)."""
    match = re.match(r"\s*([-+]?\d+)", value or "")
    if not match:
        return 0
    digits = match.group(1)
    try:
        return max(INT_MIN, min(INT_MAX, int(digits)))
    except ValueError:
        return INT_MIN if digits.startswith("-") else INT_MAX


def _cleanup_keyword(keyword: Keyword) -> Keyword:
    """Clamp control keywords to their legal ranges."""
    if keyword.column is None:
        return keyword
    column = keyword.column.lower()
    if column not in CONTROL_COLUMNS:
        return keyword

    value = keyword.integer_value if keyword.type == KeywordType.INTEGER else _leading_int(keyword.string)
    string = keyword.string

    if column == "first":
        if value <= 0:
            value, string = 1, "1"
    elif column == "rows":
        if value == 0:
            value, string = 1, "1"
        elif value < -2:
            value, string = -1, "-1"
    elif column == "min_qod":
        if value < 0:
            value, string = 0, "0"
        elif value > 100:
            value, string = 100, "100"
    elif column in _BOOLEAN_OPTION_COLUMNS:
        if value not in (0, 1):
            value, string = 1, "1"
    else:
        return replace(keyword, column=column, relation=KeywordRelation.NONE)

    return replace(
        keyword,
        column=column,
        string=string,
        integer_value=value,
        type=KeywordType.INTEGER if string == str(value) else keyword.type,
        relation=KeywordRelation.NONE,
    )


def _keyword_applies(parts: List[Keyword], keyword: Keyword) -> bool:
    if keyword.column and keyword.column in _SINGLE_USE_COLUMNS:
        return not any(item.column == keyword.column for item in parts)
    return True


def _make_keyword(
    string: str,
    column: Optional[str],
    relation: Optional[KeywordRelation],
    quoted: bool,
    equal: bool,
    approx: bool,
) -> Keyword:
    if column is None and not equal:
        keyword = Keyword(
            string=string,
            relation=KeywordRelation.APPROX,
            type=KeywordType.STRING,
            quoted=quoted,
            approx=approx,
        )
        if keyword_special(keyword):
            keyword = replace(keyword, relation=KeywordRelation.NONE)
        return keyword

    value_type, integer_value, double_value = _typed_value(column, string)
    keyword = Keyword(
        string=string,
        column=column,
        relation=relation if column is not None else KeywordRelation.APPROX,
        type=value_type,
        integer_value=integer_value,
        double_value=double_value,
        quoted=quoted,
        equal=equal,
        approx=approx,
    )
    return _cleanup_keyword(keyword)


class _PartDraft:
    """Mutable state of the part currently being scanned."""

    def __init__(self) -> None:
        self.column: Optional[str] = None
        self.relation: Optional[KeywordRelation] = None
        self.equal = False
        self.approx = False

    def finish(self, string: str, quoted: bool) -> Keyword:
        return _make_keyword(string, self.column, self.relation, quoted, self.equal, self.approx)


def _add_specials(parts: List[Keyword], default_sort: Optional[str]) -> None:
    has_first = any(item.column == "first" for item in parts)
    has_rows = any(item.column == "rows" for item in parts)
    has_sort = any(item.column in ("sort", "sort-reverse") for item in parts)

    if not has_first:
        parts.append(Keyword(string="1", column="first", type=KeywordType.INTEGER, integer_value=1))
    if not has_rows:
        parts.append(Keyword(string="-2", column="rows", type=KeywordType.INTEGER, integer_value=-2))
    if default_sort and not has_sort:
        parts.append(Keyword(string=default_sort, column="sort", type=KeywordType.STRING))


def split_filter(filter: Optional[str], default_sort: Optional[str] = "name") -> List[Keyword]:
    """
    Split a filter term into keywords, left to right.

    Whitespace separates parts except inside a quoted literal.  A quote opens a
    literal at the start of a part, right after a relation symbol, or right
    after a leading ``=``/``~``; anywhere else it is an ordinary character.
    An unterminated quote swallows the rest of the input.

    ``first``, ``rows`` and (unless ``default_sort`` is None) ``sort`` keywords
    are appended when the filter does not carry them.
    """
    text = filter or ""
    parts: List[Keyword] = []

    def _emit(keyword: Keyword) -> None:
        if _keyword_applies(parts, keyword):
            parts.append(keyword)

    draft: Optional[_PartDraft] = None
    in_quote: Optional[str] = None
    start = 0
    index = 0
    length = len(text)

    while index < length:
        char = text[index]

        if in_quote is not None:
            if char == in_quote:
                _emit(draft.finish(text[start:index], quoted=True))
                draft = None
                in_quote = None
        elif draft is None:
            if char not in _WHITESPACE:
                draft = _PartDraft()
                if char in _QUOTES:
                    in_quote = char
                    start = index + 1
                elif char == "=":
                    draft.equal = True
                    start = index + 1
                elif char == "~":
                    draft.approx = True
                    start = index + 1
                else:
                    start = index
        elif char in _WHITESPACE:
            _emit(draft.finish(text[start:index], quoted=False))
            draft = None
        elif char in _QUOTES:
            if index == start and (draft.column is not None or draft.equal or draft.approx):
                in_quote = char
                start = index + 1
        elif char in _RELATION_CHARS:
            if draft.column is None and not draft.equal and not draft.approx:
                candidate = text[start:index]
                if _COLUMN_NAME.match(candidate):
                    draft.column = candidate.lower()
                    draft.relation = _RELATION_CHARS[char]
                    start = index + 1
        index += 1

    if draft is not None:
        if in_quote is not None:
            log.debug("Unterminated quote in filter %r", text)
        _emit(draft.finish(text[start:], quoted=in_quote is not None))

    _add_specials(parts, default_sort)
    return parts


def filter_term_value(term: Optional[str], column: str) -> Optional[str]:
    """Value of the first keyword on ``column`` (or ``_column``), None when absent."""
    if term is None:
        return None
    for keyword in split_filter(term):
        if keyword.column_is(column):
            return keyword.string
    return None


def filter_term_apply_overrides(term: Optional[str]) -> int:
    if term is None:
        return APPLY_OVERRIDES_DEFAULT
    value = filter_term_value(term, "apply_overrides")
    if value is None:
        return APPLY_OVERRIDES_DEFAULT
    return 0 if value == "0" else 1


def filter_term_min_qod(term: Optional[str]) -> int:
    if term is None:
        return MIN_QOD_DEFAULT
    value = filter_term_value(term, "min_qod")
    if not value:
        return MIN_QOD_DEFAULT
    return _leading_int(value)
