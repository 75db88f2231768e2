"""Tests for the product catalog normalizer (yieldbox.catalog)."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import pandas as pd
import pytest

from yieldbox.catalog import (
    AllocationStep,
    BoundedTier,
    Product,
    TierBand,
    UnparseableTier,
    build_steps,
    expand_product,
    fetch_products,
    is_sold_out,
    normalize_products,
    parse_tier_key,
    product_from_flexible,
    product_from_locked,
    rank_steps,
    steps_to_frame,
)
from yieldbox.exceptions import MalformedResponseError
from yieldbox.plugins.exchange.sim import SimEarnExchange

TRACKED = ("USDT", "USDC", "FDUSD")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _flex(product_id: str, asset: str, rate: str, tiers: dict | None = None, sold_out: Any = False) -> dict:
    row: dict[str, Any] = {
        "productId": product_id,
        "asset": asset,
        "latestAnnualPercentageRate": rate,
        "isSoldOut": sold_out,
    }
    if tiers is not None:
        row["tierAnnualPercentageRate"] = tiers
    return row


def _locked(project_id: str, asset: str, apr: str, sold_out: Any = False) -> dict:
    return {"projectId": project_id, "detail": {"asset": asset, "apr": apr, "isSoldOut": sold_out, "duration": 30}}


def _product(pid: str, currency: str, base: str, tiers: dict | None = None, **kw) -> Product:
    bands = tuple(TierBand(k, Decimal(v)) for k, v in (tiers or {}).items())
    return Product(product_id=pid, currency=currency, base_yield=Decimal(base), tiers=bands, **kw)


class TestParseTierKey:

    # ------------------------------------------------------------------
    # 1. Well-formed keys
    # ------------------------------------------------------------------

    def test_bounded(self):
        parsed = parse_tier_key("0-200USDT", TRACKED)
        assert parsed == BoundedTier(Decimal("0"), Decimal("200"), "USDT")
        assert parsed.width == Decimal("200")

    def test_offset_band_width(self):
        parsed = parse_tier_key("200-5000USDC", TRACKED)
        assert isinstance(parsed, BoundedTier)
        assert parsed.width == Decimal("4800")

    def test_zero_width_band_is_bounded(self):
        parsed = parse_tier_key("100-100USDT", TRACKED)
        assert isinstance(parsed, BoundedTier)
        assert parsed.width == 0

    # ------------------------------------------------------------------
    # 2. Keys that cannot be bounded
    # ------------------------------------------------------------------

    @pytest.mark.parametrize("key", ["0-200", "abc", "0-200usdt", "0.5-200USDT", "-200USDT", "0-200 USDT"])
    def test_pattern_mismatch(self, key):
        assert parse_tier_key(key, TRACKED) == UnparseableTier(key, "pattern")

    def test_untracked_currency(self):
        assert parse_tier_key("0-200BUSD", TRACKED) == UnparseableTier("0-200BUSD", "untracked_currency")

    def test_inverted_band(self):
        assert parse_tier_key("500-100USDT", TRACKED) == UnparseableTier("500-100USDT", "inverted_band")


class TestExpandProduct:

    def test_n_tiers_give_n_plus_one_steps(self):
        product = _product("USDT001", "USDT", "0.05", {"0-200USDT": "0.03", "200-500USDT": "0.01"})
        steps = expand_product(product, TRACKED)
        assert len(steps) == 3
        assert {s.effective_yield for s in steps} == {Decimal("0.05"), Decimal("0.08"), Decimal("0.06")}

    def test_base_step_first_and_unbounded(self):
        product = _product("USDT001", "USDT", "0.05", {"0-200USDT": "0.03"})
        base, tier = expand_product(product, TRACKED)
        assert base.tier is None
        assert base.required_amount is None
        assert tier.tier == "0-200USDT"
        assert tier.required_amount == Decimal("200")

    def test_unparseable_tier_kept_as_unbounded(self):
        product = _product("USDC001", "USDC", "0.02", {"weird": "0.04", "0-100BUSD": "0.01"})
        steps = expand_product(product, TRACKED)
        assert len(steps) == 3
        weird = next(s for s in steps if s.tier == "weird")
        busd = next(s for s in steps if s.tier == "0-100BUSD")
        assert weird.required_amount is None
        assert weird.effective_yield == Decimal("0.06")
        assert busd.required_amount is None
        assert busd.effective_yield == Decimal("0.03")

    def test_unparseable_tier_logs_warning(self, caplog):
        product = _product("USDC001", "USDC", "0.02", {"500-100USDT": "0.04"})
        with caplog.at_level("WARNING", logger="yieldbox.catalog"):
            expand_product(product, TRACKED)
        assert "inverted_band" in caplog.text

    def test_steps_carry_product_kind(self):
        product = _product("USDT30", "USDT", "0.07", kind="locked")
        (step,) = expand_product(product, TRACKED)
        assert step.kind == "locked"


class TestRanking:

    def test_descending_by_yield(self):
        steps = [
            AllocationStep("A", "USDT", Decimal("0.01")),
            AllocationStep("B", "USDT", Decimal("0.05")),
            AllocationStep("C", "USDT", Decimal("0.03")),
        ]
        assert [s.product_id for s in rank_steps(steps)] == ["B", "C", "A"]

    def test_ties_keep_input_order(self):
        steps = [
            AllocationStep("first", "USDT", Decimal("0.05")),
            AllocationStep("top", "USDC", Decimal("0.09")),
            AllocationStep("second", "USDC", Decimal("0.05")),
            AllocationStep("third", "FDUSD", Decimal("0.05")),
        ]
        assert [s.product_id for s in rank_steps(steps)] == ["top", "first", "second", "third"]

    def test_sold_out_products_dropped(self):
        products = [
            _product("USDT001", "USDT", "0.05"),
            _product("USDC001", "USDC", "0.20", sold_out=True),
        ]
        steps = normalize_products(products, TRACKED)
        assert [s.product_id for s in steps] == ["USDT001"]

    def test_tiered_scenario_ordering(self):
        """A untiered 5%; B 5% with a 100-200 A band at +1%: B-tier comes first."""
        products = [
            _product("USDT001", "USDT", "0.05"),
            _product("USDC001", "USDC", "0.05", {"100-200USDT": "0.01"}),
        ]
        steps = normalize_products(products, TRACKED)
        assert [(s.product_id, s.tier) for s in steps] == [
            ("USDC001", "100-200USDT"),
            ("USDT001", None),
            ("USDC001", None),
        ]
        assert steps[0].effective_yield == Decimal("0.06")
        assert steps[0].required_amount == Decimal("100")


class TestListingRows:

    # ------------------------------------------------------------------
    # 1. Sold-out flags
    # ------------------------------------------------------------------

    @pytest.mark.parametrize(
        "row, expected",
        [
            ({"isSoldOut": True}, True),
            ({"isSoldOut": "true"}, True),
            ({"isSoldOut": False}, False),
            ({"detail": {"isSoldOut": True}}, True),
            ({"detail": {"isSoldOut": "false"}}, False),
            ({}, False),
        ],
    )
    def test_is_sold_out(self, row, expected):
        assert is_sold_out(row) is expected

    # ------------------------------------------------------------------
    # 2. Flexible rows
    # ------------------------------------------------------------------

    def test_flexible_row(self):
        row = _flex("USDT001", "USDT", "0.0512", {"0-200USDT": "0.03"})
        product = product_from_flexible(row)
        assert product.product_id == "USDT001"
        assert product.currency == "USDT"
        assert product.base_yield == Decimal("0.0512")
        assert product.tiers == (TierBand("0-200USDT", Decimal("0.03")),)
        assert product.kind == "flexible"

    def test_flexible_row_missing_asset(self):
        with pytest.raises(MalformedResponseError):
            product_from_flexible({"productId": "X001", "latestAnnualPercentageRate": "0.01"})

    def test_unusable_bonus_becomes_zero(self):
        row = _flex("USDT001", "USDT", "0.05", {"0-200USDT": "n/a"})
        product = product_from_flexible(row)
        assert product.tiers[0].bonus == Decimal("0")

    def test_tier_schedule_must_be_mapping(self):
        with pytest.raises(MalformedResponseError):
            product_from_flexible(_flex("USDT001", "USDT", "0.05", ["0-200USDT"]))

    # ------------------------------------------------------------------
    # 3. Locked rows
    # ------------------------------------------------------------------

    def test_locked_row(self):
        product = product_from_locked(_locked("USDT*30", "USDT", "0.08"))
        assert product.product_id == "USDT*30"
        assert product.currency == "USDT"
        assert product.base_yield == Decimal("0.08")
        assert product.kind == "locked"
        assert product.sold_out is False

    def test_locked_sold_out_in_detail(self):
        assert product_from_locked(_locked("USDT*30", "USDT", "0.08", sold_out=True)).sold_out is True

    def test_locked_row_missing_project(self):
        with pytest.raises(MalformedResponseError):
            product_from_locked({"detail": {"asset": "USDT", "apr": "0.08"}})


class TestFetching:

    def _exchange(self) -> SimEarnExchange:
        return SimEarnExchange(
            flexible_products=[
                _flex("USDT001", "USDT", "0.05", {"0-200USDT": "0.03"}),
                _flex("USDC001", "USDC", "0.04"),
                _flex("FDUSD001", "FDUSD", "0.10", sold_out=True),
            ],
            locked_products=[_locked("USDC*90", "USDC", "0.09")],
        )

    def test_products_in_currency_order(self):
        products = fetch_products(self._exchange(), TRACKED, include_locked=True, max_workers=4)
        assert [p.product_id for p in products] == ["USDT001", "USDC001", "USDC*90", "FDUSD001"]

    def test_locked_skipped_unless_requested(self):
        products = fetch_products(self._exchange(), TRACKED)
        assert all(p.kind == "flexible" for p in products)

    def test_build_steps_ranked_without_sold_out(self):
        steps = build_steps(self._exchange(), TRACKED, include_locked=True)
        assert [(s.product_id, s.tier) for s in steps] == [
            ("USDC*90", None),
            ("USDT001", "0-200USDT"),
            ("USDT001", None),
            ("USDC001", None),
        ]

    def test_steps_to_frame(self):
        frame = steps_to_frame(build_steps(self._exchange(), TRACKED))
        assert isinstance(frame, pd.DataFrame)
        assert list(frame.columns) == ["rank", "product_id", "currency", "kind", "tier", "yield_pct", "required"]
        assert frame.iloc[0]["required"] == "200"
        assert frame.iloc[1]["required"] == "unbounded"
        assert frame.iloc[0]["yield_pct"] == pytest.approx(8.0)
