"""
calculator.py - Solvency math: price conversion and health factors

ARCHITECTURE (Pure Function Pattern):
=====================================

1. PURE CALCULATION FUNCTIONS:
   - Take prices, amounts and debt explicitly as parameters
   - No oracle, no hidden state
   - Trivially testable without a price feed

2. SolvencyCalculator (oracle-aware wrapper):
   - The ONLY place that reads prices for solvency decisions
   - Fetches a checked quote (fresh, positive) then calls the pure functions

Key Formulas:
    usd_value      = price * feed_scale * amount // PRECISION
    asset_amount   = usd * PRECISION // (price * feed_scale)
    health_factor  = (collateral_usd * THRESHOLD // LIQUIDATION_PRECISION) * PRECISION // debt

All divisions floor. Converting an amount to USD and back loses at most one
smallest unit for prices at or above one dollar.
"""

from __future__ import annotations
from typing import Mapping

from .core import (
    FEED_DECIMALS, PRECISION,
    LIQUIDATION_THRESHOLD_PCT, LIQUIDATION_PRECISION,
    MIN_HEALTH_FACTOR, MAX_HEALTH_FACTOR,
    InvalidPrice,
    feed_scale,
)
from .oracle import PriceOracleAdapter


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def usd_value_from_price(price: int, amount: int, feed_decimals: int = FEED_DECIMALS) -> int:
    """
    USD value of `amount` at a raw feed price, on the 18-decimal scale.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Example:
        # 15 ETH at $2000 (8-decimal feed) -> $30,000
        usd_value_from_price(2000 * 10**8, 15 * 10**18) == 30_000 * 10**18
    """
    if price <= 0:
        raise InvalidPrice(f"price must be positive, got {price}")
    return price * feed_scale(feed_decimals) * amount // PRECISION


def asset_amount_from_price(price: int, usd_amount: int, feed_decimals: int = FEED_DECIMALS) -> int:
    """
    Amount of asset worth `usd_amount` at a raw feed price (floored).

    PURE FUNCTION - inverse of usd_value_from_price up to floor rounding.
    """
    if price <= 0:
        raise InvalidPrice(f"price must be positive, got {price}")
    return usd_amount * PRECISION // (price * feed_scale(feed_decimals))


def health_factor(debt_minted: int, collateral_usd: int) -> int:
    """
    Health factor of a position on the 18-decimal scale.

    PURE FUNCTION - takes pre-fetched values, makes no external calls.

    Returns MAX_HEALTH_FACTOR when there is no debt; the position cannot be
    liquidated. A result >= MIN_HEALTH_FACTOR is healthy.

    Example:
        # $20,000 collateral, $100 debt -> 100.0
        health_factor(100 * 10**18, 20_000 * 10**18) == 100 * 10**18
    """
    if debt_minted == 0:
        return MAX_HEALTH_FACTOR
    adjusted = collateral_usd * LIQUIDATION_THRESHOLD_PCT // LIQUIDATION_PRECISION
    return adjusted * PRECISION // debt_minted


def is_healthy(factor: int) -> bool:
    return factor >= MIN_HEALTH_FACTOR


def collateral_value(
    collateral: Mapping[str, int],
    prices: Mapping[str, int],
    feed_decimals: int = FEED_DECIMALS,
) -> int:
    """
    Total USD value of a collateral pool at explicit prices.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Assets with a zero balance are skipped and need no price.

    Raises:
        ValueError: if a held asset has no price.

    Example:
        # Stress test: value the same pool after a 50% crash
        crashed = {k: v // 2 for k, v in prices.items()}
        stressed = collateral_value(collateral, crashed)
    """
    total = 0
    for asset, amount in collateral.items():
        if amount == 0:
            continue
        if asset not in prices:
            raise ValueError(f"Missing price for collateral asset '{asset}'")
        total += usd_value_from_price(prices[asset], amount, feed_decimals)
    return total


# ============================================================================
# ORACLE-AWARE CALCULATOR
# ============================================================================

class SolvencyCalculator:
    """
    Price-aware solvency calculations.

    Every price read goes through PriceOracleAdapter.checked_price(), so a
    stale or non-positive quote fails the calling operation instead of being
    computed with.
    """

    def __init__(self, oracle: PriceOracleAdapter):
        self.oracle = oracle

    def usd_value(self, asset_id: str, amount: int) -> int:
        """
        USD value of `amount` of `asset_id`.

        Raises:
            UnregisteredAsset, StalePrice, InvalidPrice
        """
        quote = self.oracle.checked_price(asset_id)
        return usd_value_from_price(quote.price, amount, quote.decimals)

    def asset_amount_for_usd(self, asset_id: str, usd_amount: int) -> int:
        """
        Amount of `asset_id` worth `usd_amount`.

        Raises:
            UnregisteredAsset, StalePrice, InvalidPrice
        """
        quote = self.oracle.checked_price(asset_id)
        return asset_amount_from_price(quote.price, usd_amount, quote.decimals)

    def collateral_usd(self, collateral: Mapping[str, int]) -> int:
        """Sum of USD values over held assets; empty balances are not priced."""
        total = 0
        for asset_id, amount in collateral.items():
            if amount == 0:
                continue
            total += self.usd_value(asset_id, amount)
        return total

    def health_factor(self, debt_minted: int, collateral_usd: int) -> int:
        return health_factor(debt_minted, collateral_usd)

    def position_health_factor(self, debt_minted: int, collateral: Mapping[str, int]) -> int:
        """
        Health factor straight from balances.

        Skips pricing entirely when there is no debt, so a debt-free position
        stays usable even while a feed is stale.
        """
        if debt_minted == 0:
            return MAX_HEALTH_FACTOR
        return health_factor(debt_minted, self.collateral_usd(collateral))
