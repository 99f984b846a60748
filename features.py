"""
Query-Feature composer.

Turns the raw query string of a list request into a bounded MongoDB query:

    ?difficulty=easy&price[lt]=1500&sort=-price,name&fields=name,price&page=2&limit=10

becomes

    find({"difficulty": "easy", "price": {"$lt": 1500}}, {"name": 1, "price": 1})
        .sort([("price", -1), ("name", 1)]).skip(10).limit(10)

``APIFeatures`` only builds the query; ``execute`` runs it against a
repository, which contributes its default exclusion predicate.
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

import config
from errors import AppError, InvalidPage

META_KEYS = {"page", "sort", "limit", "fields"}
OPERATORS = {"lt", "lte", "gt", "gte"}

# may be repeated in the query string: ?duration=5&duration=9
MULTI_VALUE_FIELDS = {
    "duration",
    "ratings_quantity",
    "ratings_average",
    "max_group_size",
    "difficulty",
    "price",
}

DEFAULT_SORT = "-created_at"
HIDDEN_BY_DEFAULT = "__v"

_KEY_RE = re.compile(r"^(?P<field>[^\[\]]+)(?:\[(?P<op>[^\[\]]*)\])?$")
_INT_RE = re.compile(r"^-?\d+$")
_FLOAT_RE = re.compile(r"^-?(\d+\.\d*|\.\d+|\d+)([eE][-+]?\d+)?$")


def coerce(value: str) -> Any:
    if _INT_RE.match(value):
        return int(value)
    if _FLOAT_RE.match(value):
        return float(value)
    if value in ("true", "false"):
        return value == "true"
    return value


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        parsed = int(value) if value is not None else default
    except ValueError:
        parsed = default
    return parsed


def _split(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class APIFeatures:
    def __init__(self, params: Iterable[Tuple[str, str]], base_filter: Optional[Dict] = None):
        self.params: List[Tuple[str, str]] = list(params)
        self.base_filter = base_filter or {}
        self.query: Dict[str, Any] = {}
        self.sort_spec: List[Tuple[str, int]] = []
        self.projection: Optional[Dict[str, int]] = None
        self.skip = 0
        self.limit = config.PAGE_LIMIT_DEFAULT
        self.page = 1
        self.page_requested = False

    def _last(self, key: str) -> Optional[str]:
        value = None
        for k, v in self.params:
            if k == key:
                value = v
        return value

    def filter(self) -> "APIFeatures":
        values: Dict[Tuple[str, Optional[str]], List[Any]] = {}
        for key, raw in self.params:
            if key in META_KEYS:
                continue
            match = _KEY_RE.match(key)
            if not match or match.group("field").startswith("$"):
                raise AppError(f"Invalid query parameter: {key}", 400)
            field, op = match.group("field"), match.group("op")
            if op is not None and op not in OPERATORS:
                raise AppError(f"Invalid filter operator: {op}", 400)
            values.setdefault((field, op), []).append(coerce(raw))

        query: Dict[str, Any] = {}
        for (field, op), items in values.items():
            if op is None:
                if field in MULTI_VALUE_FIELDS and len(items) > 1:
                    value: Any = {"$in": items}
                else:
                    value = items[-1]
                if isinstance(query.get(field), dict) and not isinstance(value, dict):
                    value = {**query[field], "$eq": value}
                query[field] = value
            else:
                existing = query.get(field)
                if not isinstance(existing, dict):
                    existing = {} if existing is None else {"$eq": existing}
                existing[f"${op}"] = items[-1]
                query[field] = existing

        self.query = query
        return self

    def sort(self) -> "APIFeatures":
        raw = self._last("sort") or DEFAULT_SORT
        spec = []
        for part in _split(raw):
            if part.startswith("-"):
                spec.append((part[1:], -1))
            else:
                spec.append((part.lstrip("+"), 1))
        self.sort_spec = spec or [(DEFAULT_SORT[1:], -1)]
        return self

    def limit_fields(self) -> "APIFeatures":
        raw = self._last("fields")
        fields = _split(raw) if raw else []
        if not fields:
            self.projection = {HIDDEN_BY_DEFAULT: 0}
            return self
        excluded = [f for f in fields if f.startswith("-")]
        if excluded and len(excluded) != len(fields):
            raise AppError("Cannot mix included and excluded fields", 400)
        if excluded:
            self.projection = {f[1:]: 0 for f in excluded}
        else:
            self.projection = {f: 1 for f in fields}
        return self

    def paginate(self) -> "APIFeatures":
        raw_page = self._last("page")
        self.page_requested = raw_page is not None
        self.page = max(_parse_int(raw_page, 1), 1)
        limit = max(_parse_int(self._last("limit"), config.PAGE_LIMIT_DEFAULT), 1)
        self.limit = min(limit, config.PAGE_LIMIT_MAX)
        self.skip = (self.page - 1) * self.limit
        return self

    def build(self) -> "APIFeatures":
        return self.filter().sort().limit_fields().paginate()

    @property
    def combined_filter(self) -> Dict[str, Any]:
        parts = [p for p in (self.base_filter, self.query) if p]
        if not parts:
            return {}
        if len(parts) == 1:
            return parts[0]
        return {"$and": parts}

    def execute(self, collection) -> List[Dict]:
        flt = self.combined_filter
        if self.page_requested and self.page > 1:
            total = collection.count_documents(flt)
            if self.skip >= total:
                raise InvalidPage()
        cursor = collection.find(flt, self.projection).sort(self.sort_spec).skip(self.skip).limit(self.limit)
        return list(cursor)
