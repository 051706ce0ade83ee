"""
keeper.py - Liquidation keeper

Drives a PositionEngine through time and liquidates unhealthy positions.

Execution order each step():
1. Advance engine time
2. Scan all positions for health factors below the minimum
3. Liquidate each, worst first, covering as much debt as the keeper can pay
4. Repeat until a pass liquidates nothing (a liquidation never makes another
   position less healthy, but the keeper's balance changes between passes)

Rejected liquidations are recorded and skipped. The engine's event_log is the
audit trail of what was actually applied.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from .core import (
    EngineError, InvalidPrice, StalePrice,
    LIQUIDATION_BONUS_PCT, LIQUIDATION_PRECISION, MIN_HEALTH_FACTOR,
)
from .engine import PositionEngine


@dataclass(frozen=True, slots=True)
class LiquidationAttempt:
    """
    Outcome of one keeper liquidation attempt.

    Attributes:
        target: Position owner
        asset_id: Collateral asset seized (or attempted)
        debt_covered: Debt the keeper tried to cover
        collateral_seized: Collateral received; 0 when rejected
        timestamp: Engine time of the attempt
        error: Rejection reason, None if applied
    """
    target: str
    asset_id: str
    debt_covered: int
    collateral_seized: int
    timestamp: datetime
    error: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.error is None


class LiquidationKeeper:
    """
    Automated liquidator for a single engine.

    The keeper spends `liquidator`'s debt-token balance. Collateral assets
    are tried in `asset_preference` order (default: engine registration
    order); the first asset the target holds enough of is used. Each
    attempt approves its cover on top of whatever allowance the liquidator
    already gave the engine, and a rejected attempt puts it back.
    """

    def __init__(
        self,
        engine: PositionEngine,
        liquidator: str,
        asset_preference: Optional[Sequence[str]] = None,
    ):
        self.engine = engine
        self.liquidator = liquidator
        self.asset_preference: List[str] = list(asset_preference or engine.get_collateral_tokens())
        for asset_id in self.asset_preference:
            engine.get_collateral_price_feed(asset_id)

        # Safety limit for repeated passes within one step
        self.max_passes = 10
        self.verbose = engine.verbose
        self.attempts: List[LiquidationAttempt] = []

    # ========================================================================
    # DISCOVERY
    # ========================================================================

    def scan(self) -> List[Tuple[str, int]]:
        """
        Positions currently below the minimum health factor.

        Owners whose collateral cannot be priced (stale or invalid feed) are
        left out; they are picked up again once their feeds recover.

        Returns:
            (owner, health_factor) pairs, worst first, ties broken by owner
        """
        unhealthy = []
        for owner in self.engine.list_positions():
            if owner == self.liquidator:
                continue
            try:
                factor = self.engine.get_health_factor(owner)
            except (StalePrice, InvalidPrice) as exc:
                if self.verbose:
                    print(f"[KEEPER] cannot price {owner}: {exc}")
                continue
            if factor < MIN_HEALTH_FACTOR:
                unhealthy.append((owner, factor))
        return sorted(unhealthy, key=lambda item: (item[1], item[0]))

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def step(self, timestamp: datetime) -> List[LiquidationAttempt]:
        """
        Advance time and liquidate every unhealthy position the keeper can afford.

        Args:
            timestamp: New engine time

        Returns:
            Attempts made during this step (applied and rejected)
        """
        self.engine.advance_time(timestamp)
        attempts: List[LiquidationAttempt] = []
        tried = set()

        for _ in range(self.max_passes):
            pass_applied = 0
            for owner, _factor in self.scan():
                if owner in tried:
                    continue
                attempt = self._liquidate(owner, timestamp)
                if attempt is None:
                    continue
                attempts.append(attempt)
                if attempt.applied:
                    pass_applied += 1
                else:
                    tried.add(owner)
            if pass_applied == 0:
                break

        self.attempts.extend(attempts)
        return attempts

    def run(self, timestamps: Sequence[datetime]) -> List[LiquidationAttempt]:
        """Step through a sequence of timestamps."""
        all_attempts: List[LiquidationAttempt] = []
        for timestamp in timestamps:
            all_attempts.extend(self.step(timestamp))
        return all_attempts

    def _liquidate(self, target: str, timestamp: datetime) -> Optional[LiquidationAttempt]:
        debt_token = self.engine.get_debt_token()
        budget = debt_token.balance_of(self.liquidator)
        if budget <= 0:
            return None

        asset_id, cover = "", 0
        previous = debt_token.allowance(self.liquidator, self.engine.address)
        try:
            choice = self._choose_cover(target, budget)
            if choice is None:
                return None
            asset_id, cover = choice
            debt_token.approve(self.liquidator, self.engine.address, previous + cover)
            seized = self.engine.liquidate(self.liquidator, asset_id, target, cover)
        except EngineError as exc:
            debt_token.approve(self.liquidator, self.engine.address, previous)
            if self.verbose:
                print(f"[KEEPER] skipped {target}: {type(exc).__name__}: {exc}")
            return LiquidationAttempt(target, asset_id, cover, 0, timestamp, error=str(exc))

        if self.verbose:
            print(f"[KEEPER] liquidated {target}: covered {cover}, seized {seized} {asset_id}")
        return LiquidationAttempt(target, asset_id, cover, seized, timestamp)

    def _choose_cover(self, target: str, budget: int) -> Optional[Tuple[str, int]]:
        """Largest affordable cover for the first preferred asset the target holds."""
        debt = self.engine.get_account_information(target).debt_minted
        for asset_id in self.asset_preference:
            balance = self.engine.get_collateral_balance(target, asset_id)
            if balance == 0:
                continue
            # seized * (1 + bonus) must fit in the target's balance of this asset
            usd_available = self.engine.get_usd_value(asset_id, balance)
            max_cover = usd_available * LIQUIDATION_PRECISION // (LIQUIDATION_PRECISION + LIQUIDATION_BONUS_PCT)
            cover = min(debt, budget, max_cover)
            if cover > 0:
                return asset_id, cover
        return None

    def __repr__(self):
        applied = sum(1 for a in self.attempts if a.applied)
        return f"LiquidationKeeper({self.liquidator}, {applied}/{len(self.attempts)} applied)"
