"""Fetch tag definitions and utilities.

Tags group upstream resources for invalidation. They are tuples such as
``("dealer-1", "srp-rows")`` and serialize to ``dealer-1:srp-rows``.
"""

from collections.abc import Callable, Iterable, Sequence
from typing import Literal

from srpsync.types import Tag

ResourceCategory = Literal[
    "vehicles",
    "filters",
    "forms",
    "lineup",
    "dealer",
    "dealer-staff",
    "vdp",
    "vdp-similars",
    "specials",
]

# Categories whose caller-supplied tags replace the default set
CALLER_TAGGED_CATEGORIES: frozenset[str] = frozenset({"forms", "vdp"})

_ESCAPE_MAP = {"\\": "\\\\", ":": "\\:"}
_UNESCAPE_MAP = {"\\\\": "\\", "\\:": ":"}


def define_tags(
    definitions: dict[str, Callable[..., tuple[str, ...]]],
) -> dict[str, Callable[..., Tag]]:
    """
    Define all tags in a centralized location.
    Only way to produce Tag values.

    Example:
        tags = define_tags({
            "srp_rows": lambda dealer_id: (dealer_id, "srp-rows"),
            "vdp": lambda dealer_id, slug: (dealer_id, "vdp", slug),
        })

        tags["srp_rows"]("d1")      # Tag: ("d1", "srp-rows")
        tags["vdp"]("d1", "abc")    # Tag: ("d1", "vdp", "abc")
    """
    result: dict[str, Callable[..., Tag]] = {}
    for name, fn in definitions.items():

        def make_tag(*args: str, _fn: Callable[..., tuple[str, ...]] = fn) -> Tag:
            parts = _fn(*args)
            return Tag(parts)

        result[name] = make_tag
    return result


DEALER_TAGS = define_tags(
    {
        "srp_rows": lambda dealer_id: (dealer_id, "srp-rows"),
        "srp_filters": lambda dealer_id: (dealer_id, "srp-filters"),
        "vdp": lambda dealer_id, slug: (dealer_id, "vdp", slug),
        "vdp_similars": lambda dealer_id: (dealer_id, "vdp-similars"),
        "lineup": lambda dealer_id: (dealer_id, "lineup"),
        "dealer": lambda dealer_id: (dealer_id, "dealer"),
        "dealer_staff": lambda dealer_id: (dealer_id, "dealer-staff"),
        "specials": lambda dealer_id: (dealer_id, "specials"),
        "form": lambda form_id: ("form", form_id),
    }
)

_CATEGORY_TAG: dict[str, str] = {
    "vehicles": "srp_rows",
    "filters": "srp_filters",
    "lineup": "lineup",
    "dealer": "dealer",
    "dealer-staff": "dealer_staff",
    "vdp-similars": "vdp_similars",
    "specials": "specials",
}


def serialize_tag(tag: Tag) -> str:
    """Serialize tag tuple to string for storage keys."""

    def escape(part: str) -> str:
        result = part
        for char, escaped in _ESCAPE_MAP.items():
            result = result.replace(char, escaped)
        return result

    return ":".join(escape(str(p)) for p in tag)


def deserialize_tag(serialized: str) -> Tag:
    """Deserialize storage key back to tag tuple."""
    parts: list[str] = []
    current = ""
    i = 0

    while i < len(serialized):
        if serialized[i] == "\\":
            if i + 1 < len(serialized):
                escaped = serialized[i : i + 2]
                if escaped in _UNESCAPE_MAP:
                    current += _UNESCAPE_MAP[escaped]
                    i += 2
                    continue
            current += serialized[i]
            i += 1
        elif serialized[i] == ":":
            parts.append(current)
            current = ""
            i += 1
        else:
            current += serialized[i]
            i += 1

    parts.append(current)
    return Tag(tuple(parts))


def _as_tag(tag: Tag | str) -> Tag:
    return deserialize_tag(tag) if isinstance(tag, str) else Tag(tuple(tag))


def resolve_tags(
    category: ResourceCategory,
    dealer_id: str,
    extra: Iterable[Tag | str] = (),
) -> list[Tag]:
    """Tag set attached to an upstream request of ``category``.

    Extra tags are appended to the category default, except for ``forms``
    and ``vdp`` where they are the whole set.
    """
    extra_tags = [_as_tag(tag) for tag in extra]
    if category in CALLER_TAGGED_CATEGORIES:
        return extra_tags

    name = _CATEGORY_TAG.get(category)
    tags = [DEALER_TAGS[name](dealer_id)] if name else []
    for tag in extra_tags:
        if tag not in tags:
            tags.append(tag)
    return tags


def invalidation_tags(dealer_id: str) -> list[Tag]:
    """Every per-dealer tag, for a full tenant purge."""
    return [
        DEALER_TAGS["srp_rows"](dealer_id),
        DEALER_TAGS["srp_filters"](dealer_id),
        DEALER_TAGS["vdp_similars"](dealer_id),
        DEALER_TAGS["lineup"](dealer_id),
        DEALER_TAGS["dealer"](dealer_id),
        DEALER_TAGS["dealer_staff"](dealer_id),
        DEALER_TAGS["specials"](dealer_id),
    ]


def invalidation_tags_from_body(
    dealer_id: str | None,
    tags: Sequence[str] | None = None,
) -> list[Tag]:
    """Tags to purge for a revalidation request.

    ``dealer_id`` must come from server configuration, never from the body.
    """
    result: list[Tag] = invalidation_tags(dealer_id) if dealer_id else []
    for raw in tags or ():
        tag = deserialize_tag(raw)
        if tag not in result:
            result.append(tag)
    return result
