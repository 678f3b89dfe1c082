"""Core types for srpsync."""

from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Generic,
    Literal,
    NewType,
    TypedDict,
    TypeVar,
)
from urllib.parse import urlencode

T = TypeVar("T")

# Branded tag type - compile-time enforcement only
if TYPE_CHECKING:
    Tag = NewType("Tag", tuple[str, ...])
else:
    Tag = tuple

Condition = Literal["new", "used", "certified"]
SortOrder = Literal["asc", "desc"]


class RangeFilter(TypedDict, total=False):
    """Numeric range. ``max_payment`` is only meaningful for price."""

    min: float | int | None
    max: float | int | None
    max_payment: float | int | None


class FilterState(TypedDict, total=False):
    """Filter name to value. Every key is optional."""

    # Vehicle attributes
    condition: list[str]
    year: list[str]
    make: list[str]
    model: list[str]
    trim: list[str]
    body: list[str]

    # Technical specifications
    fuel_type: list[str]
    transmission: list[str]
    engine: list[str]
    drive_train: list[str]
    doors: list[str | int]

    # Colors
    ext_color: list[str]
    int_color: list[str]

    # Location
    dealer: list[str]
    state: list[str]
    city: list[str]

    key_features: list[str]

    # Ranges
    price: RangeFilter
    mileage: RangeFilter

    # Status flags
    is_special: list[bool]
    is_new_arrival: list[bool]
    is_in_transit: list[bool]
    is_sale_pending: list[bool]
    is_commercial: list[bool]

    search: str


@dataclass(frozen=True, slots=True)
class Address:
    """Canonical address of a filter state."""

    path_segments: tuple[str, ...]
    query_params: dict[str, str]
    normalized_filters: FilterState

    @property
    def path(self) -> str:
        """Path segments joined without leading or trailing slashes."""
        return "/".join(self.path_segments)

    @property
    def full_url(self) -> str:
        """``/{path}/`` followed by the encoded query string, if any."""
        query = f"?{urlencode(self.query_params)}" if self.query_params else ""
        return f"/{self.path}/{query}"


@dataclass(frozen=True, slots=True)
class ParsedAddress:
    """Result of parsing path segments."""

    filters: FilterState
    is_valid: bool


@dataclass(frozen=True, slots=True)
class AddressState:
    """Everything recoverable from a full address (path and query)."""

    filters: FilterState
    is_valid: bool
    sort_by: str | None = None
    order: SortOrder | None = None
    page: int | None = None


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A fetched (catalog rows, facet data) pair held by the result cache."""

    key: str
    catalog_rows: Any
    facet_data: Any
    inserted_at: int  # Insertion ordinal, not a timestamp


@dataclass(frozen=True, slots=True)
class StoredResponse(Generic[T]):
    """An upstream response held by a storage adapter."""

    value: T
    tags: list[Tag] = field(default_factory=list)
    created_at: int = 0  # Unix timestamp ms
    expires_at: int | None = None  # None means cached until invalidated


# Duration type alias
Duration = str | int  # "30s", "5m", "6h", "1d" or milliseconds
