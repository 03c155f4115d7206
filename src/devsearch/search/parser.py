"""Free-text query parser: extracts structured filters, leaves the rest as search text.

Parsing never raises. Text that looks like a filter but does not parse
(an invalid date, an out-of-range priority) stays in the search text.
"""

import re
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from devsearch.models.document import SearchSource
from devsearch.models.search import ParsedQuery, SearchFilters

# Quoted key:value values are matched first so they are never taken for phrases
_PHRASE_RE = re.compile(r'\w+:"[^"]*"|"([^"]+)"')
_PLACEHOLDER_RE = re.compile(r"\x00(\d+)\x00")

_KEY_VALUE_RE = re.compile(
    r'(?<!\S)(author|assignee|assigned|repo|org|project|status|type|priority):("[^"]+"|\S+)',
    re.IGNORECASE,
)
_ASSIGNED_RE = re.compile(r"\bassigned\s+to\s+([\w.@'-]+)", re.IGNORECASE)
_AUTHOR_RE = re.compile(r"\b(?:created\s+)?by\s+([\w.@'-]+)", re.IGNORECASE)

_PR_RE = re.compile(r"\b(PRs?|pull\s*requests?)\b", re.IGNORECASE)
_WORK_ITEM_RE = re.compile(r"\b(work\s*items?|WIs?)\b", re.IGNORECASE)
_DRAFT_RE = re.compile(r"\bdrafts?\b", re.IGNORECASE)

_PRIORITY_RE = re.compile(r"\bpriority\s*([0-9]+)\b", re.IGNORECASE)
_PRIORITY_SHORT_RE = re.compile(r"\bp([1-4])\b", re.IGNORECASE)

_ITEM_TYPES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bbugs?\b", re.IGNORECASE), "Bug"),
    (re.compile(r"\btasks?\b", re.IGNORECASE), "Task"),
    (re.compile(r"\b(?:user\s*)?stor(?:y|ies)\b", re.IGNORECASE), "User Story"),
    (re.compile(r"\bfeatures?\b", re.IGNORECASE), "Feature"),
    (re.compile(r"\bepics?\b", re.IGNORECASE), "Epic"),
]

_STATUS_RE = re.compile(
    r"\b(active|open|completed|closed|resolved|done|abandoned|new)\b", re.IGNORECASE
)
_STATUS_CANONICAL = {
    "active": "active",
    "open": "active",
    "completed": "completed",
    "closed": "completed",
    "resolved": "completed",
    "done": "completed",
    "abandoned": "abandoned",
    "new": "new",
}

_LAST_PERIOD_RE = re.compile(
    r"\b(created\s+|updated\s+)?(?:in\s+the\s+)?(?:last|past)\s+(week|month|year)\b",
    re.IGNORECASE,
)
_LAST_N_RE = re.compile(
    r"\b(created\s+|updated\s+)?(?:in\s+the\s+)?(?:last|past)\s+"
    r"([0-9]+)\s*(days?|weeks?|months?)\b",
    re.IGNORECASE,
)
_THIS_PERIOD_RE = re.compile(r"\b(created\s+|updated\s+)?this\s+(week|month)\b", re.IGNORECASE)
_DAY_RE = re.compile(r"\b(created\s+|updated\s+)?(today|yesterday)\b", re.IGNORECASE)
_ABSOLUTE_RE = re.compile(
    r"\b(created\s+|updated\s+)?(before|after|since)\s+([0-9]{4}-[0-9]{2}-[0-9]{2})\b",
    re.IGNORECASE,
)

_PERIOD_DAYS = {"week": 7, "month": 30, "year": 365}

# Words that only glue filter phrases together
CONNECTOR_WORDS = frozenset({"in", "the", "for", "with", "from", "about", "and", "or"})


class QueryParser:
    """Turns a free-text query into search text plus SearchFilters.

    ``project_aliases`` maps lower-cased short names to full project names.
    ``now`` anchors relative date phrases and is injectable for tests.
    """

    def __init__(
        self,
        project_aliases: dict[str, str] | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        aliases = project_aliases or {}
        self._now = now or (lambda: datetime.now(UTC))
        # Longest alias first so "api gateway" wins over "api"
        self._project_patterns = [
            (
                re.compile(rf"\b(?:in\s+)?{re.escape(alias)}\b", re.IGNORECASE),
                name,
            )
            for alias, name in sorted(aliases.items(), key=lambda kv: (-len(kv[0]), kv[0]))
        ]

    def parse(self, text: str) -> ParsedQuery:
        """Parse ``text``. Never raises."""
        filters: dict[str, Any] = {}

        phrases: list[str] = []

        def _protect(match: re.Match[str]) -> str:
            if match.group(1) is None:
                return match.group(0)
            phrases.append(match.group(0))
            return f" \x00{len(phrases) - 1}\x00 "

        # NUL delimits phrase placeholders
        remaining = _PHRASE_RE.sub(_protect, (text or "").replace("\x00", " "))

        remaining = self._extract_key_values(remaining, filters)
        remaining = self._extract_people(remaining, filters)
        remaining = self._extract_source_type(remaining, filters)
        remaining = self._extract_priority(remaining, filters)
        remaining = self._extract_item_types(remaining, filters)
        remaining = self._extract_status(remaining, filters)
        remaining = self._extract_dates(remaining, filters)
        remaining = self._extract_project(remaining, filters)

        search_text = _cleanup(remaining)
        search_text = _PLACEHOLDER_RE.sub(lambda m: phrases[int(m.group(1))], search_text)

        return ParsedQuery(
            search_text=search_text,
            filters=SearchFilters(**filters),
            lexical_only=bool(phrases),
        )

    # -- extraction steps; each returns the text with its matches removed --

    def _extract_key_values(self, text: str, filters: dict[str, Any]) -> str:
        def _apply(match: re.Match[str]) -> str:
            key = match.group(1).lower()
            value = match.group(2).strip('"').strip()
            if not value:
                return match.group(0)
            if key == "author":
                filters["author"] = value
            elif key in ("assignee", "assigned"):
                filters["assigned_to"] = value
            elif key == "repo":
                filters["repo_name"] = value
            elif key == "org":
                filters["organization"] = value
            elif key == "project":
                filters["project"] = value
            elif key == "status":
                _add_unique(filters, "status", _STATUS_CANONICAL.get(value.lower(), value.lower()))
            elif key == "type":
                _add_type(filters, value)
            elif key == "priority":
                number = _to_int(value)
                if number is None or not 1 <= number <= 4:
                    return match.group(0)
                _add_unique(filters, "priority", number)
            return " "

        return _KEY_VALUE_RE.sub(_apply, text)

    def _extract_people(self, text: str, filters: dict[str, Any]) -> str:
        def _assigned(match: re.Match[str]) -> str:
            filters.setdefault("assigned_to", match.group(1))
            return " "

        def _author(match: re.Match[str]) -> str:
            filters.setdefault("author", match.group(1))
            return " "

        text = _ASSIGNED_RE.sub(_assigned, text)
        return _AUTHOR_RE.sub(_author, text)

    def _extract_source_type(self, text: str, filters: dict[str, Any]) -> str:
        if _DRAFT_RE.search(text):
            filters["is_draft"] = True
            filters["source_type"] = SearchSource.PULL_REQUEST
            text = _DRAFT_RE.sub(" ", text)
        if _PR_RE.search(text):
            filters["source_type"] = SearchSource.PULL_REQUEST
            text = _PR_RE.sub(" ", text)
        elif _WORK_ITEM_RE.search(text):
            filters.setdefault("source_type", SearchSource.WORK_ITEM)
            text = _WORK_ITEM_RE.sub(" ", text)
        return text

    def _extract_priority(self, text: str, filters: dict[str, Any]) -> str:
        def _apply(match: re.Match[str]) -> str:
            value = _to_int(match.group(1))
            if value is None or not 1 <= value <= 4:
                return match.group(0)
            _add_unique(filters, "priority", value)
            return " "

        text = _PRIORITY_RE.sub(_apply, text)
        text = _PRIORITY_SHORT_RE.sub(_apply, text)
        if "priority" in filters:
            filters["priority"] = sorted(filters["priority"])
        return text

    def _extract_item_types(self, text: str, filters: dict[str, Any]) -> str:
        # Item types only exist on work items
        if filters.get("source_type") == SearchSource.PULL_REQUEST:
            return text
        for pattern, item_type in _ITEM_TYPES:
            if pattern.search(text):
                _add_type(filters, item_type)
                text = pattern.sub(" ", text)
        return text

    def _extract_status(self, text: str, filters: dict[str, Any]) -> str:
        def _apply(match: re.Match[str]) -> str:
            _add_unique(filters, "status", _STATUS_CANONICAL[match.group(1).lower()])
            return " "

        return _STATUS_RE.sub(_apply, text)

    def _extract_dates(self, text: str, filters: dict[str, Any]) -> str:
        now = self._now()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

        def _lower_bound(prefix: str | None, value: datetime) -> None:
            field = "created_after" if _is_created(prefix) else "updated_after"
            _keep_latest(filters, field, value)

        def _last_period(match: re.Match[str]) -> str:
            _lower_bound(match.group(1), now - timedelta(days=_PERIOD_DAYS[match.group(2).lower()]))
            return " "

        def _last_n(match: re.Match[str]) -> str:
            count = _to_int(match.group(2))
            if count is None:
                return match.group(0)
            unit = match.group(3).lower()
            per_unit = 1 if unit.startswith("day") else 7 if unit.startswith("week") else 30
            days = count * per_unit
            try:
                _lower_bound(match.group(1), now - timedelta(days=days))
            except OverflowError:
                return match.group(0)
            return " "

        def _this_period(match: re.Match[str]) -> str:
            if match.group(2).lower() == "week":
                start = midnight - timedelta(days=midnight.weekday())
            else:
                start = midnight.replace(day=1)
            _lower_bound(match.group(1), start)
            return " "

        def _day(match: re.Match[str]) -> str:
            start = midnight if match.group(2).lower() == "today" else midnight - timedelta(days=1)
            _lower_bound(match.group(1), start)
            return " "

        def _absolute(match: re.Match[str]) -> str:
            try:
                day = datetime.strptime(match.group(3), "%Y-%m-%d").replace(tzinfo=UTC)
            except ValueError:
                return match.group(0)
            if match.group(2).lower() == "before":
                current = filters.get("created_before")
                if current is None or day < current:
                    filters["created_before"] = day
            elif match.group(1) and match.group(1).strip().lower() == "updated":
                _keep_latest(filters, "updated_after", day)
            else:
                _keep_latest(filters, "created_after", day)
            return " "

        text = _LAST_N_RE.sub(_last_n, text)
        text = _LAST_PERIOD_RE.sub(_last_period, text)
        text = _THIS_PERIOD_RE.sub(_this_period, text)
        text = _DAY_RE.sub(_day, text)
        return _ABSOLUTE_RE.sub(_absolute, text)

    def _extract_project(self, text: str, filters: dict[str, Any]) -> str:
        if "project" in filters:
            return text
        for pattern, name in self._project_patterns:
            if pattern.search(text):
                filters["project"] = name
                return pattern.sub(" ", text)
        return text


_default_parser = QueryParser()


def parse_query(text: str) -> ParsedQuery:
    """Parse ``text`` with no project aliases and the wall clock as anchor."""
    return _default_parser.parse(text)


def _is_created(prefix: str | None) -> bool:
    return prefix is not None and prefix.strip().lower() == "created"


def _keep_latest(filters: dict[str, Any], field: str, value: datetime) -> None:
    current = filters.get(field)
    if current is None or value > current:
        filters[field] = value


def _to_int(value: str) -> int | None:
    """ASCII digits to int; None for anything else, including huge numbers."""
    if not (value.isascii() and value.isdigit()):
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _add_unique(filters: dict[str, Any], field: str, value: Any) -> None:
    values = filters.setdefault(field, [])
    if value not in values:
        values.append(value)


def _add_type(filters: dict[str, Any], item_type: str) -> None:
    _add_unique(filters, "item_type", item_type)
    filters.setdefault("source_type", SearchSource.WORK_ITEM)


def _cleanup(text: str) -> str:
    """Normalize whitespace and trim connector words left at either end."""
    words = text.split()
    while words and words[0].lower() in CONNECTOR_WORDS:
        words.pop(0)
    while words and words[-1].lower() in CONNECTOR_WORDS:
        words.pop()
    return " ".join(words)
