"""Filter codec - FilterState <-> canonical SRP address.

Address structure::

    /{condition}[/{make}[/{model}]]/?{query}

Rules:
1. Condition slug(s) always come first.
2. At most one make follows (first alphabetically).
3. At most one model follows, and only when a make is present.
4. Every other filter is a query parameter.
5. ``certified`` extends the ``used-vehicles`` path and means certified only.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any, cast
from urllib.parse import parse_qsl

from srpsync.errors import InvalidAddress
from srpsync.slug import normalize_for_url
from srpsync.types import Address, AddressState, FilterState, ParsedAddress, SortOrder

CONDITION_SLUGS: dict[str, str] = {
    "new": "new-vehicles",
    "used": "used-vehicles",
    "certified": "certified",
}
SLUG_TO_CONDITION: dict[str, str] = {slug: cond for cond, slug in CONDITION_SLUGS.items()}
VALID_CONDITION_SLUGS: tuple[str, ...] = tuple(CONDITION_SLUGS.values())
ALL_CONDITIONS: tuple[str, ...] = ("new", "used", "certified")

PATH_PARAMETERS = ("condition", "make", "model")

# Array filters emitted as comma-joined query params, in emission order
ARRAY_QUERY_FILTERS: tuple[str, ...] = (
    "year",
    "trim",
    "body",
    "fuel_type",
    "transmission",
    "engine",
    "drive_train",
    "doors",
    "ext_color",
    "int_color",
    "dealer",
    "state",
    "city",
    "key_features",
)
RANGE_FILTERS: tuple[str, ...] = ("price", "mileage")
FLAG_FILTERS: tuple[str, ...] = (
    "is_special",
    "is_new_arrival",
    "is_in_transit",
    "is_sale_pending",
    "is_commercial",
)
PAYMENT_PARAM = "monthly_payment"
RESERVED_QUERY_PARAMS = ("page", "sort_by", "order")

QUERY_PARAM_SORT_ORDER: dict[str, SortOrder] = {"year": "desc"}
DEFAULT_SORT_DIRECTION: SortOrder = "asc"
DEFAULT_ORDER: SortOrder = "asc"


# =============================================================================
# Normalization
# =============================================================================


def _present(values: Sequence[Any] | None) -> bool:
    return bool(values)


def normalize_filters(filters: Mapping[str, Any]) -> FilterState:
    """Apply the condition business rules to a copy of ``filters``.

    - ``used`` always brings ``certified`` with it.
    - No condition (missing or empty) means every condition.
    """
    normalized = cast(FilterState, dict(filters))
    conditions = filters.get("condition")

    if not conditions:
        normalized["condition"] = list(ALL_CONDITIONS)
    elif "used" in conditions and "certified" not in conditions:
        normalized["condition"] = [*conditions, "certified"]
    else:
        normalized["condition"] = list(conditions)

    return normalized


def sort_values(values: Iterable[Any], key: str) -> list[str]:
    """Sort filter values by the per-field direction (``year`` descending)."""
    ordered = sorted((str(v) for v in values))
    if QUERY_PARAM_SORT_ORDER.get(key, DEFAULT_SORT_DIRECTION) == "desc":
        ordered.reverse()
    return ordered


def _format_number(value: float | int) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _flag_set(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return value is not None and True in value


# =============================================================================
# Building
# =============================================================================


def _condition_path(conditions: Sequence[str] | None) -> tuple[list[str], list[str]]:
    """Return (path segments, conditions demoted to the query string)."""
    if not conditions:
        return ["used-vehicles"], ["new"]

    has_new = "new" in conditions
    has_used = "used" in conditions
    has_certified = "certified" in conditions

    if has_used:
        return ["used-vehicles"], ["new"] if has_new else []

    if has_certified:
        return ["used-vehicles", "certified"], ["new"] if has_new else []

    if has_new:
        return ["new-vehicles"], []

    return ["used-vehicles"], []


def _path_slug(values: Sequence[Any] | None) -> str | None:
    """Slug of the first value alphabetically, or None when it slugifies to nothing."""
    if not _present(values):
        return None
    return normalize_for_url(str(sorted(values)[0])) or None


def _path_segments(filters: FilterState) -> tuple[list[str], list[str]]:
    segments, query_conditions = _condition_path(filters.get("condition"))

    make_slug = _path_slug(filters.get("make"))
    if make_slug:
        segments.append(make_slug)

        model_slug = _path_slug(filters.get("model"))
        if model_slug:
            segments.append(model_slug)

    return segments, query_conditions


def _query_params(
    filters: FilterState,
    sort_by: str | None,
    order: SortOrder | None,
    query_conditions: Sequence[str],
) -> dict[str, str]:
    params: dict[str, str] = {}

    if query_conditions:
        params["condition"] = ",".join(query_conditions)

    makes = filters.get("make")
    make_in_path = _path_slug(makes) is not None
    if _present(makes):
        if not make_in_path:
            params["make"] = ",".join(sort_values(makes, "make"))
        elif len(makes) > 1:
            params["make"] = ",".join(sorted(makes)[1:])

    models = filters.get("model")
    if _present(models):
        if not make_in_path or _path_slug(models) is None:
            params["model"] = ",".join(sort_values(models, "model"))
        elif len(models) > 1:
            params["model"] = ",".join(sorted(models)[1:])

    for key in ARRAY_QUERY_FILTERS:
        values = filters.get(key)
        if isinstance(values, (list, tuple, set, frozenset)) and values:
            params[key] = ",".join(sort_values(values, key))

    for key in RANGE_FILTERS:
        bounds = filters.get(key) or {}
        if bounds.get("min") is not None:
            params[f"{key}_min"] = _format_number(bounds["min"])
        if bounds.get("max") is not None:
            params[f"{key}_max"] = _format_number(bounds["max"])
        if key == "price" and bounds.get("max_payment") is not None:
            params[PAYMENT_PARAM] = _format_number(bounds["max_payment"])

    for key in FLAG_FILTERS:
        if _flag_set(filters.get(key)):
            params[key] = "true"

    search = filters.get("search")
    if search:
        params["search"] = search

    if sort_by:
        params["sort_by"] = sort_by
    if order and order != DEFAULT_ORDER:
        params["order"] = order

    return params


def build_address(
    filters: Mapping[str, Any],
    sort_by: str | None = None,
    order: SortOrder | None = None,
) -> Address:
    """Build the canonical address for ``filters``.

    Filters are normalized first; the normalized state is returned with the
    address so callers can keep UI state consistent with what the URL says.

    Args:
        filters: Current filter state
        sort_by: Optional sort field
        order: Optional sort order; omitted from the query when ascending

    Returns:
        Address with path segments, query params and normalized filters
    """
    normalized = normalize_filters(filters)
    segments, query_conditions = _path_segments(normalized)
    params = _query_params(normalized, sort_by, order, query_conditions)
    return Address(
        path_segments=tuple(segments),
        query_params=params,
        normalized_filters=normalized,
    )


def build_path(filters: Mapping[str, Any]) -> str:
    """Build just the ``/{path}/`` part for ``filters``."""
    return f"/{build_address(filters).path}/"


# =============================================================================
# Parsing
# =============================================================================


def parse_address(segments: Sequence[str] | None) -> ParsedAddress:
    """Parse path segments into a filter state.

    Examples:
        ["new-vehicles"]                      -> {condition: [new]}
        ["used-vehicles", "toyota"]           -> {condition: [used, certified], make: [toyota]}
        ["used-vehicles", "certified"]        -> {condition: [certified]}
        ["toyota", "camry"]                   -> invalid

    An empty segment list is the bare SRP root: valid, with no filters.
    """
    if not segments:
        return ParsedAddress(filters={}, is_valid=True)

    filters: FilterState = {}
    conditions: list[str] = []
    index = 0

    while index < len(segments) and segments[index] in VALID_CONDITION_SLUGS:
        condition = SLUG_TO_CONDITION[segments[index]]

        # /used-vehicles/certified/ means certified only
        if condition == "certified" and index == 1 and "used" in conditions:
            conditions = ["certified"]
            index += 1
            break

        if condition not in conditions:
            conditions.append(condition)
        index += 1

    if not conditions:
        return ParsedAddress(filters={}, is_valid=False)

    if "used" in conditions and "certified" not in conditions:
        conditions.append("certified")
    filters["condition"] = conditions

    if index < len(segments) and segments[index] not in VALID_CONDITION_SLUGS:
        filters["make"] = [segments[index].lower()]
        index += 1

        if index < len(segments) and segments[index] not in VALID_CONDITION_SLUGS:
            filters["model"] = [segments[index].lower()]
            index += 1

    return ParsedAddress(filters=filters, is_valid=index >= len(segments))


def split_path(path: str) -> list[str]:
    """Split ``/used-vehicles/toyota/`` into non-empty segments."""
    return [part for part in path.split("/") if part]


def extract_conditions(segments: Sequence[str] | None) -> list[str]:
    """Conditions named by the leading condition slugs, without business rules."""
    conditions: list[str] = []
    for segment in segments or ():
        if segment not in VALID_CONDITION_SLUGS:
            break
        condition = SLUG_TO_CONDITION[segment]
        if condition not in conditions:
            conditions.append(condition)
    return conditions


def is_valid_slug_structure(segments: Sequence[str] | None) -> bool:
    """Check whether ``segments`` follow the condition/make/model grammar."""
    return parse_address(segments).is_valid


def _parse_number(raw: str) -> int | float | None:
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        return None


def parse_query(
    query: Mapping[str, str] | str,
) -> tuple[FilterState, str | None, SortOrder | None, int | None]:
    """Parse the query half of an address.

    Returns:
        (filters, sort_by, order, page)
    """
    items = parse_qsl(query.lstrip("?")) if isinstance(query, str) else query.items()

    filters: dict[str, Any] = {}
    sort_by: str | None = None
    order: SortOrder | None = None
    page: int | None = None

    for key, value in items:
        if key == "sort_by":
            sort_by = value or None
        elif key == "order":
            order = cast(SortOrder, value) if value in ("asc", "desc") else None
        elif key == "page":
            number = _parse_number(value)
            page = int(number) if number is not None else None
        elif key == PAYMENT_PARAM:
            number = _parse_number(value)
            if number is not None:
                filters.setdefault("price", {})["max_payment"] = number
        elif key.endswith(("_min", "_max")):
            number = _parse_number(value)
            if number is not None:
                name, bound = key.rsplit("_", 1)
                filters.setdefault(name, {})[bound] = number
        elif key.startswith("is_"):
            filters[key] = [value == "true"]
        elif key == "search":
            filters["search"] = value
        else:
            filters[key] = value.split(",")

    return cast(FilterState, filters), sort_by, order, page


def _merge_unique(primary: Sequence[str], extra: Iterable[str]) -> list[str]:
    merged = list(primary)
    merged.extend(value for value in extra if value not in merged)
    return merged


def parse_full_address(
    segments: Sequence[str] | str | None,
    query: Mapping[str, str] | str | None = None,
    *,
    strict: bool = False,
) -> AddressState:
    """Parse a path plus query string back into filters, sort and page.

    Path and query conditions are unioned; the path make/model come first,
    followed by any extra values from the query.

    Raises:
        InvalidAddress: With ``strict`` set, when the path does not follow the
            condition/make/model grammar
    """
    if isinstance(segments, str):
        segments = split_path(segments)

    parsed = parse_address(segments)
    if strict and not parsed.is_valid:
        raise InvalidAddress(list(segments or ()))
    query_filters, sort_by, order, page = parse_query(query or {})

    merged = cast(dict[str, Any], dict(query_filters))
    path_filters = parsed.filters

    if "condition" in path_filters or "condition" in query_filters:
        merged["condition"] = _merge_unique(
            path_filters.get("condition", []), query_filters.get("condition", [])
        )

    for key in ("make", "model"):
        if key in path_filters:
            merged[key] = _merge_unique(path_filters[key], query_filters.get(key, []))

    return AddressState(
        filters=cast(FilterState, merged),
        is_valid=parsed.is_valid,
        sort_by=sort_by,
        order=order,
        page=page,
    )


__all__ = [
    "ALL_CONDITIONS",
    "ARRAY_QUERY_FILTERS",
    "CONDITION_SLUGS",
    "FLAG_FILTERS",
    "PATH_PARAMETERS",
    "RANGE_FILTERS",
    "SLUG_TO_CONDITION",
    "VALID_CONDITION_SLUGS",
    "build_address",
    "build_path",
    "extract_conditions",
    "is_valid_slug_structure",
    "normalize_filters",
    "parse_address",
    "parse_full_address",
    "parse_query",
    "sort_values",
    "split_path",
]
