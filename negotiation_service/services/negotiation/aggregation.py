"""
Totals and diffs over a proposal version's line items and milestones.

Everything here is pure: inputs are ORM rows, Pydantic snapshots or plain
dicts, and nothing is written anywhere.

Line item total:
- ``total`` when present, otherwise ``unit_price * quantity``
- mandatory and optional items are summed separately; optional items only
  enter a grand total when explicitly asked for

Milestone amounts are computed in float without intermediate rounding;
rounding belongs to whoever displays the number.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional

DEFAULT_TOLERANCE = 0.01

CENT = Decimal("0.01")


def _get(item: Any, name: str, default=None):
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


def to_float(value) -> float:
    return float(value) if value is not None else 0.0


def to_money(value) -> Decimal:
    """Quantize a float/Decimal to cents for storage in a Numeric(14, 2) column."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


# ── Line items ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LineItemTotals:
    mandatory: float
    optional: float

    @property
    def grand_total(self) -> float:
        return self.mandatory + self.optional


def line_item_total(item) -> float:
    total = _get(item, "total")
    if total is not None:
        return to_float(total)
    quantity = _get(item, "quantity")
    quantity = 1.0 if quantity is None else float(quantity)
    return to_float(_get(item, "unit_price")) * quantity


def summarize_line_items(items: Iterable) -> LineItemTotals:
    mandatory = 0.0
    optional = 0.0
    for item in items:
        if _get(item, "is_optional", False):
            optional += line_item_total(item)
        else:
            mandatory += line_item_total(item)
    return LineItemTotals(mandatory=mandatory, optional=optional)


def sum_line_items(
    items: Iterable,
    *,
    optional_only: bool = False,
    include_optional: bool = False,
) -> float:
    """
    Mandatory total by default; ``optional_only`` returns the optional total and
    ``include_optional`` returns mandatory + optional (confirmation summaries).
    """
    totals = summarize_line_items(items)
    if optional_only:
        return totals.optional
    if include_optional:
        return totals.grand_total
    return totals.mandatory


# ── Milestones ────────────────────────────────────────────────────────

def milestone_amount(percentage, base_total) -> float:
    return to_float(base_total) * to_float(percentage) / 100


@dataclass(frozen=True)
class PercentageCheck:
    """Result of a milestone sum check. ``delta`` is total - 100 (negative when short)."""

    valid: bool
    total: float
    delta: float

    def __bool__(self) -> bool:
        return self.valid

    def describe(self) -> str:
        if self.valid:
            return "Milestones sum to 100%"
        if self.delta < 0:
            return f"Milestones are short by {abs(self.delta):g}%"
        return f"Milestones exceed 100% by {self.delta:g}%"


def validate_percentage_total(
    milestones: Iterable, tolerance: float = DEFAULT_TOLERANCE
) -> PercentageCheck:
    """Accepts milestone rows/dicts (``percentage``) or bare numbers."""
    total = 0.0
    for milestone in milestones:
        if isinstance(milestone, (int, float, Decimal)):
            total += float(milestone)
        else:
            total += to_float(_get(milestone, "percentage"))
    delta = total - 100
    return PercentageCheck(valid=abs(delta) <= tolerance, total=total, delta=delta)


# ── Version diffs ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class ItemDiff:
    change: str  # added, removed, changed, unchanged
    item_id: Optional[str]
    description: str
    old_total: float
    new_total: float

    @property
    def delta(self) -> float:
        return self.new_total - self.old_total


@dataclass(frozen=True)
class VersionDiff:
    price_delta: float
    percent_delta: float
    item_diffs: list = field(default_factory=list)


def _match_items(old_items: list, new_items: list):
    """
    Pair items by id first, then by description among what is left.
    Returns (pairs, unmatched_old, unmatched_new) preserving input order.
    """
    pairs = []
    unmatched_new = list(new_items)
    leftover_old = []

    for old in old_items:
        old_id = _get(old, "item_id") or _get(old, "id")
        match = None
        if old_id is not None:
            for candidate in unmatched_new:
                if (_get(candidate, "item_id") or _get(candidate, "id")) == old_id:
                    match = candidate
                    break
        if match is None:
            leftover_old.append(old)
        else:
            unmatched_new.remove(match)
            pairs.append((old, match))

    unmatched_old = []
    for old in leftover_old:
        description = (_get(old, "description") or "").strip().lower()
        match = None
        for candidate in unmatched_new:
            if (_get(candidate, "description") or "").strip().lower() == description:
                match = candidate
                break
        if match is None:
            unmatched_old.append(old)
        else:
            unmatched_new.remove(match)
            pairs.append((old, match))

    return pairs, unmatched_old, unmatched_new


def diff_versions(a, b) -> VersionDiff:
    """Diff version ``a`` (older) against ``b`` (newer)."""
    old_price = to_float(_get(a, "price"))
    new_price = to_float(_get(b, "price"))
    price_delta = new_price - old_price
    percent_delta = (price_delta / old_price * 100) if old_price else 0.0

    pairs, removed, added = _match_items(
        list(_get(a, "line_items") or []), list(_get(b, "line_items") or [])
    )

    diffs = []
    for old, new in pairs:
        old_total = line_item_total(old)
        new_total = line_item_total(new)
        diffs.append(ItemDiff(
            change="unchanged" if old_total == new_total else "changed",
            item_id=_get(new, "item_id") or _get(new, "id"),
            description=_get(new, "description") or "",
            old_total=old_total,
            new_total=new_total,
        ))
    for new in added:
        diffs.append(ItemDiff(
            change="added",
            item_id=_get(new, "item_id") or _get(new, "id"),
            description=_get(new, "description") or "",
            old_total=0.0,
            new_total=line_item_total(new),
        ))
    for old in removed:
        diffs.append(ItemDiff(
            change="removed",
            item_id=_get(old, "item_id") or _get(old, "id"),
            description=_get(old, "description") or "",
            old_total=line_item_total(old),
            new_total=0.0,
        ))

    return VersionDiff(
        price_delta=price_delta, percent_delta=percent_delta, item_diffs=diffs
    )


# ── Targets ───────────────────────────────────────────────────────────

def reduce_by_percent(price, percent) -> float:
    return to_float(price) * (1 - to_float(percent) / 100)


def reduce_by_amount(price, amount) -> float:
    return to_float(price) - to_float(amount)


def reduction_percent_for(price, target_total) -> float:
    price = to_float(price)
    if not price:
        return 0.0
    return (1 - to_float(target_total) / price) * 100


def adjusted_line_item_price(original_price, adjustment_type: str, value) -> float:
    """Initiator target for one line item; never below zero."""
    if adjustment_type == "price_change":
        target = to_float(value)
    elif adjustment_type == "flat_discount":
        target = reduce_by_amount(original_price, value)
    elif adjustment_type == "percentage_discount":
        target = reduce_by_percent(original_price, value)
    else:
        raise ValueError(f"Unknown adjustment type '{adjustment_type}'")
    return max(target, 0.0)
