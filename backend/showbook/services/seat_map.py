"""
Seat map helpers shared by the reservation path and migrations.

A seat map is always `dict[label, holder_id]`. Older rows stored a plain
list of labels; `normalize_seat_map` converts those once, offline, with a
sentinel holder.
"""

import re
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from showbook.core.exceptions import InvalidRequest

LEGACY_HOLDER = "legacy"

SEAT_LABEL_RE = re.compile(r"^[A-Za-z]{1,3}[0-9]{1,3}$")
_ROW_RE = re.compile(r"^[A-Za-z]+")


def validate_seat_labels(seats: Iterable[Any], max_seats: int) -> list[str]:
    """Return the labels in request order, or raise InvalidRequest."""
    labels = list(seats or [])
    if not labels:
        raise InvalidRequest("At least one seat must be selected")
    if len(labels) > max_seats:
        raise InvalidRequest(f"At most {max_seats} seats can be booked at once")

    seen = set()
    for label in labels:
        if not isinstance(label, str) or not SEAT_LABEL_RE.match(label):
            raise InvalidRequest(f"Invalid seat label: {label!r}")
        if label in seen:
            raise InvalidRequest(f"Seat {label} selected more than once")
        seen.add(label)
    return labels


def seat_row(label: str) -> str:
    match = _ROW_RE.match(label)
    return match.group(0).upper() if match else ""


def price_for_seats(
    seats: Iterable[str],
    base_price: Decimal,
    tier_prices: Optional[Mapping[str, Any]] = None,
) -> Decimal:
    """Sum of per-seat prices; a row listed in tier_prices overrides the base price."""
    tiers = {str(row).upper(): Decimal(str(price)) for row, price in (tier_prices or {}).items()}
    base = Decimal(str(base_price))
    total = sum((tiers.get(seat_row(seat), base) for seat in seats), Decimal("0"))
    return total.quantize(Decimal("0.01"))


def normalize_seat_map(value: Any) -> dict[str, str]:
    """Canonical mapping for any stored seat map shape.

    - None                -> {}
    - ["A1", "A2"]        -> {"A1": "legacy", "A2": "legacy"}
    - {"A1": "user_1"}    -> unchanged, holders coerced to str
    - {"A1": None/""/...} -> holder replaced by the legacy sentinel
    """
    if value is None:
        return {}
    if isinstance(value, (list, tuple)):
        return {str(label): LEGACY_HOLDER for label in value if label}
    if isinstance(value, Mapping):
        return {
            str(label): _holder(holder)
            for label, holder in value.items()
            if label
        }
    raise ValueError(f"Unrecognised seat map: {type(value).__name__}")


def _holder(value: Any) -> str:
    if value is None or isinstance(value, bool) or value == "":
        return LEGACY_HOLDER
    return str(value)


def occupied_labels(seat_map: Optional[Mapping[str, Any]]) -> list[str]:
    return sorted((seat_map or {}).keys(), key=_label_sort_key)


def _label_sort_key(label: str) -> tuple[str, int, str]:
    row = seat_row(label)
    digits = label[len(row):]
    return (row, int(digits) if digits.isdigit() else 0, label)
