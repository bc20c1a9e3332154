"""Filtering, ordering and paging of runs for ``search_runs``.

Filter strings look like::

    metrics.accuracy > 0.9 and params.model = 'cnn' and tags.`data set` LIKE 'mnist%'

Clauses are joined with ``and``. Every store loads the candidate runs and
hands them to :func:`search` so that all backends agree on the semantics.
"""
import base64
import json
import math
import re
from typing import Any, Dict, List, Optional, Sequence

from mltrack.common.common import SearchEntity
from mltrack.entities import Run
from mltrack.exceptions import TrackingError, ErrorCode

SEARCH_MAX_RESULTS_DEFAULT = 1000
SEARCH_MAX_RESULTS_THRESHOLD = 50000

_ENTITY_ALIASES = {
    "metric": SearchEntity.METRIC,
    "metrics": SearchEntity.METRIC,
    "param": SearchEntity.PARAM,
    "params": SearchEntity.PARAM,
    "parameter": SearchEntity.PARAM,
    "parameters": SearchEntity.PARAM,
    "tag": SearchEntity.TAG,
    "tags": SearchEntity.TAG,
    "attribute": SearchEntity.ATTRIBUTE,
    "attributes": SearchEntity.ATTRIBUTE,
    "attr": SearchEntity.ATTRIBUTE,
    "run": SearchEntity.ATTRIBUTE,
}

STRING_ATTRIBUTES = {"status", "run_name", "user_id", "source_name", "source_version",
                     "source_type", "entry_point_name", "artifact_uri", "run_id",
                     "lifecycle_stage"}
NUMERIC_ATTRIBUTES = {"start_time", "end_time"}

NUMERIC_COMPARATORS = {"=", "!=", ">", ">=", "<", "<="}
STRING_COMPARATORS = {"=", "!=", "LIKE", "ILIKE"}

_CLAUSE_REGEX = re.compile(
    r"""^\s*
    (?P<entity>[A-Za-z]+)\.
    (?P<key>`[^`]+`|"[^"]+"|[\w.\-/]+?)
    \s*(?P<op>!=|>=|<=|=|>|<|\bNOT\s+LIKE\b|\bI?LIKE\b)\s*
    (?P<value>'(?:[^']*)'|"(?:[^"]*)"|[^\s]+)
    \s*$""",
    re.VERBOSE | re.IGNORECASE,
)
_AND_SPLIT_REGEX = re.compile(r"\s+and\s+", re.IGNORECASE)


def _invalid(message: str) -> TrackingError:
    return TrackingError(message, ErrorCode.INVALID_PARAMETER_VALUE)


def _parse_entity(entity: str) -> SearchEntity:
    try:
        return _ENTITY_ALIASES[entity.lower()]
    except KeyError:
        raise _invalid(f"Invalid entity type '{entity}'. Valid values are "
                       f"{sorted(set(_ENTITY_ALIASES))}")


def _unquote(token: str) -> str:
    if len(token) >= 2 and token[0] == token[-1] and token[0] in ("'", '"', "`"):
        return token[1:-1]
    return token


def _split_clauses(filter_string: str) -> List[str]:
    """Split on ``and`` outside of quoted sections."""
    clauses, current, quote = [], [], None
    i = 0
    while i < len(filter_string):
        char = filter_string[i]
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            i += 1
            continue
        if char in ("'", '"', "`"):
            quote = char
            current.append(char)
            i += 1
            continue
        match = _AND_SPLIT_REGEX.match(filter_string, i)
        if match:
            clauses.append("".join(current))
            current = []
            i = match.end()
            continue
        current.append(char)
        i += 1
    if quote:
        raise _invalid(f"Unterminated quote in filter '{filter_string}'")
    clauses.append("".join(current))
    return clauses


def parse_filter(filter_string: Optional[str]) -> List[Dict[str, Any]]:
    """Parse a filter string into a list of clause dictionaries."""
    if filter_string is None or filter_string.strip() == "":
        return []

    parsed = []
    for clause in _split_clauses(filter_string.strip()):
        match = _CLAUSE_REGEX.match(clause)
        if not match:
            raise _invalid(f"Invalid clause '{clause.strip()}' in filter '{filter_string}'")

        entity = _parse_entity(match.group("entity"))
        key = _unquote(match.group("key"))
        op = " ".join(match.group("op").upper().split())
        raw_value = match.group("value")

        if entity == SearchEntity.METRIC or (entity == SearchEntity.ATTRIBUTE
                                            and key in NUMERIC_ATTRIBUTES):
            if op not in NUMERIC_COMPARATORS:
                raise _invalid(f"Invalid comparator '{op}' for numeric key '{key}'. "
                               f"Valid comparators are {sorted(NUMERIC_COMPARATORS)}")
            try:
                value = float(_unquote(raw_value))
            except ValueError:
                raise _invalid(f"Expected a numeric value for '{key}', got '{raw_value}'")
        else:
            if entity == SearchEntity.ATTRIBUTE and key not in STRING_ATTRIBUTES:
                raise _invalid(f"Invalid attribute key '{key}'. Valid attributes are "
                               f"{sorted(STRING_ATTRIBUTES | NUMERIC_ATTRIBUTES)}")
            if op == "NOT LIKE":
                op = "NOT_LIKE"
            if op not in STRING_COMPARATORS and op != "NOT_LIKE":
                raise _invalid(f"Invalid comparator '{op}' for string key '{key}'. "
                               f"Valid comparators are {sorted(STRING_COMPARATORS)}")
            if raw_value[0] not in ("'", '"'):
                raise _invalid(f"Value for '{key}' must be a quoted string, got {raw_value}")
            value = _unquote(raw_value)

        parsed.append({"type": entity, "key": key, "comparator": op, "value": value})
    return parsed


def _like_to_regex(pattern: str, case_sensitive: bool) -> "re.Pattern":
    regex = "".join(".*" if c == "%" else "." if c == "_" else re.escape(c) for c in pattern)
    return re.compile(f"^{regex}$", 0 if case_sensitive else re.IGNORECASE | re.DOTALL)


def _run_value(run: Run, entity: SearchEntity, key: str):
    if entity == SearchEntity.METRIC:
        return run.data.metrics.get(key)
    if entity == SearchEntity.PARAM:
        return run.data.params.get(key)
    if entity == SearchEntity.TAG:
        return run.data.tags.get(key)
    return getattr(run.info, key, None)


def _compare(lhs, comparator: str, rhs) -> bool:
    if lhs is None:
        return False
    if comparator == "=":
        return lhs == rhs
    if comparator == "!=":
        return lhs != rhs
    if comparator == ">":
        return lhs > rhs
    if comparator == ">=":
        return lhs >= rhs
    if comparator == "<":
        return lhs < rhs
    if comparator == "<=":
        return lhs <= rhs
    if comparator == "LIKE":
        return bool(_like_to_regex(rhs, True).match(str(lhs)))
    if comparator == "ILIKE":
        return bool(_like_to_regex(rhs, False).match(str(lhs)))
    if comparator == "NOT_LIKE":
        return not _like_to_regex(rhs, True).match(str(lhs))
    raise _invalid(f"Invalid comparator '{comparator}'")


def _matches(run: Run, clauses: List[Dict[str, Any]]) -> bool:
    for clause in clauses:
        value = _run_value(run, clause["type"], clause["key"])
        if clause["type"] == SearchEntity.METRIC and value is not None and math.isnan(value):
            return False
        if not _compare(value, clause["comparator"], clause["value"]):
            return False
    return True


def filter_runs(runs: Sequence[Run], filter_string: Optional[str]) -> List[Run]:
    clauses = parse_filter(filter_string)
    if not clauses:
        return list(runs)
    return [run for run in runs if _matches(run, clauses)]


def parse_order_by(order_by_clause: str):
    tokens = order_by_clause.strip().split()
    if not tokens or len(tokens) > 2 and not _is_quoted_key(order_by_clause):
        raise _invalid(f"Invalid order_by clause '{order_by_clause}'")

    ascending = True
    if tokens[-1].upper() in ("ASC", "DESC") and len(tokens) > 1:
        ascending = tokens[-1].upper() == "ASC"
        identifier = order_by_clause.strip()[: -len(tokens[-1])].strip()
    else:
        identifier = order_by_clause.strip()

    if "." not in identifier:
        # bare names refer to attributes
        return SearchEntity.ATTRIBUTE, _unquote(identifier), ascending
    entity, key = identifier.split(".", 1)
    entity = _parse_entity(entity)
    key = _unquote(key)
    if entity == SearchEntity.ATTRIBUTE and key not in STRING_ATTRIBUTES | NUMERIC_ATTRIBUTES:
        raise _invalid(f"Invalid attribute key '{key}' in order_by clause")
    return entity, key, ascending


def _is_quoted_key(clause: str) -> bool:
    return "`" in clause or '"' in clause


def sort_runs(runs: Sequence[Run], order_by: Optional[List[str]]) -> List[Run]:
    """Sort runs, with the default ``start_time DESC, run_id`` as tie breaker."""
    result = sorted(runs, key=lambda r: r.info.run_id)
    result = sorted(result, key=lambda r: r.info.start_time or 0, reverse=True)

    # stable sorts applied from the least significant clause up
    for clause in reversed(order_by or []):
        entity, key, ascending = parse_order_by(clause)

        def _key(run: Run, _entity=entity, _key_name=key, _ascending=ascending):
            value = _run_value(run, _entity, _key_name)
            missing = value is None or (isinstance(value, float) and math.isnan(value))
            # missing values last regardless of direction
            return (missing if _ascending else not missing, value if not missing else 0)

        result = sorted(result, key=_key, reverse=not ascending)
    return result


def create_page_token(offset: int) -> str:
    return base64.b64encode(json.dumps({"offset": offset}).encode("utf-8")).decode("utf-8")


def parse_start_offset_from_page_token(page_token: Optional[str]) -> int:
    if not page_token:
        return 0
    try:
        decoded = json.loads(base64.b64decode(page_token.encode("utf-8")))
        offset = int(decoded["offset"])
    except (ValueError, KeyError, TypeError) as e:
        raise _invalid(f"Invalid page token '{page_token}': {e}")
    if offset < 0:
        raise _invalid(f"Invalid page token '{page_token}': negative offset")
    return offset


def validate_max_results(max_results: int) -> int:
    if max_results is None:
        return SEARCH_MAX_RESULTS_DEFAULT
    if isinstance(max_results, bool) or not isinstance(max_results, int) or max_results <= 0 \
            or max_results > SEARCH_MAX_RESULTS_THRESHOLD:
        raise _invalid(f"Invalid value for max_results. It must be a positive integer "
                       f"no greater than {SEARCH_MAX_RESULTS_THRESHOLD}, got {max_results}")
    return max_results


class PagedList(list):
    """A page of results, ``token`` fetches the next page (``None`` on the last one)."""

    def __init__(self, items, token: Optional[str]):
        super().__init__(items)
        self.token = token


def search(runs: Sequence[Run],
           filter_string: Optional[str] = None,
           order_by: Optional[List[str]] = None,
           max_results: int = SEARCH_MAX_RESULTS_DEFAULT,
           page_token: Optional[str] = None) -> PagedList:
    max_results = validate_max_results(max_results)
    offset = parse_start_offset_from_page_token(page_token)
    selected = sort_runs(filter_runs(runs, filter_string), order_by)
    end = offset + max_results
    token = create_page_token(end) if end < len(selected) else None
    return PagedList(selected[offset:end], token)
