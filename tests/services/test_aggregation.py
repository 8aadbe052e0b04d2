"""
Tests for line-item totals, milestone checks and version diffs.
"""

import pytest
from decimal import Decimal

from negotiation_service.services.negotiation.aggregation import (
    adjusted_line_item_price,
    diff_versions,
    line_item_total,
    milestone_amount,
    reduction_percent_for,
    sum_line_items,
    summarize_line_items,
    to_money,
    validate_percentage_total,
)


ITEMS = [
    {"item_id": "a", "description": "Design", "unit_price": 50000, "quantity": 1},
    {"item_id": "b", "description": "Build", "unit_price": 15000, "quantity": 2},
    {"item_id": "c", "description": "Support", "total": 20000, "is_optional": True},
]


class TestLineItemTotals:

    def test_total_wins_over_unit_price(self):
        assert line_item_total({"total": 120, "unit_price": 10, "quantity": 2}) == 120

    def test_unit_price_times_quantity_without_total(self):
        assert line_item_total({"unit_price": Decimal("12.50"), "quantity": 4}) == 50.0

    def test_missing_quantity_counts_as_one(self):
        assert line_item_total({"unit_price": 300}) == 300.0

    def test_mandatory_only_by_default(self):
        """80,000 mandatory; the 20,000 optional item is left out."""
        assert sum_line_items(ITEMS) == 80000

    def test_optional_only(self):
        assert sum_line_items(ITEMS, optional_only=True) == 20000

    def test_include_optional_gives_grand_total(self):
        assert sum_line_items(ITEMS, include_optional=True) == 100000

    def test_summarize_partitions(self):
        totals = summarize_line_items(ITEMS)
        assert totals.mandatory == 80000
        assert totals.optional == 20000
        assert totals.grand_total == 100000

    def test_empty_list_is_zero(self):
        assert sum_line_items([]) == 0


class TestMilestones:

    def test_exact_hundred_is_valid(self):
        check = validate_percentage_total([30, 30, 40])
        assert check.valid
        assert check.delta == 0

    def test_short_sum_reports_negative_delta(self):
        check = validate_percentage_total([{"percentage": 30}, {"percentage": 30}, {"percentage": 37}])
        assert not check
        assert check.total == pytest.approx(97)
        assert check.delta == pytest.approx(-3)
        assert "short by 3%" in check.describe()

    def test_within_tolerance(self):
        assert validate_percentage_total([33.333, 33.333, 33.334]).valid

    def test_outside_tolerance(self):
        check = validate_percentage_total([50, 50.5])
        assert not check.valid
        assert "exceed" in check.describe()

    def test_milestone_amount_is_not_rounded(self):
        assert milestone_amount(33.333, 1000) == pytest.approx(333.33)
        assert milestone_amount(25, Decimal("80000")) == 20000


class TestDiffVersions:

    def test_identical_versions_have_no_delta(self):
        version = {"price": 80000, "line_items": ITEMS}
        diff = diff_versions(version, version)
        assert diff.price_delta == 0
        assert diff.percent_delta == 0
        assert all(d.change == "unchanged" for d in diff.item_diffs)
        assert all(d.delta == 0 for d in diff.item_diffs)

    def test_changed_added_and_removed_items(self):
        old = {"price": 1000, "line_items": [
            {"item_id": "a", "description": "Design", "total": 600},
            {"item_id": "b", "description": "Build", "total": 400},
        ]}
        new = {"price": 900, "line_items": [
            {"item_id": "a", "description": "Design", "total": 500},
            {"item_id": "x", "description": "Travel", "total": 400},
        ]}
        diff = diff_versions(old, new)

        assert diff.price_delta == -100
        assert diff.percent_delta == pytest.approx(-10)
        by_change = {d.change: d for d in diff.item_diffs}
        assert by_change["changed"].item_id == "a"
        assert by_change["changed"].delta == -100
        assert by_change["added"].description == "Travel"
        assert by_change["removed"].item_id == "b"

    def test_items_without_ids_match_by_description(self):
        old = {"price": 100, "line_items": [{"description": "Audit ", "total": 100}]}
        new = {"price": 80, "line_items": [{"description": "audit", "total": 80}]}
        diff = diff_versions(old, new)
        assert [d.change for d in diff.item_diffs] == ["changed"]

    def test_zero_old_price_gives_zero_percent(self):
        assert diff_versions({"price": 0}, {"price": 50}).percent_delta == 0


class TestTargets:

    def test_reduction_percent_for_target(self):
        assert reduction_percent_for(100000, 85000) == pytest.approx(15)

    def test_reduction_percent_for_zero_price(self):
        assert reduction_percent_for(0, 10) == 0

    @pytest.mark.parametrize(
        "adjustment_type, value, expected",
        [
            ("price_change", 700, 700),
            ("flat_discount", 250, 750),
            ("percentage_discount", 10, 900),
            ("flat_discount", 5000, 0),
        ],
    )
    def test_adjusted_line_item_price(self, adjustment_type, value, expected):
        assert adjusted_line_item_price(1000, adjustment_type, value) == pytest.approx(expected)

    def test_unknown_adjustment_type(self):
        with pytest.raises(ValueError):
            adjusted_line_item_price(1000, "barter", 1)

    def test_to_money_rounds_half_up(self):
        assert to_money(10.005) == Decimal("10.01")
        assert to_money(Decimal("85000")) == Decimal("85000.00")
