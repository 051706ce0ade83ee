"""
simulation.py - Price-path stress testing

Generates geometric Brownian motion price paths with numpy, opens a
population of positions on a fresh engine, and lets a LiquidationKeeper work
through the path. The result reports what the system looked like afterwards.

Only price generation uses floats. Every amount that reaches the engine is
converted to fixed-point ints first.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List

import numpy as np

from .core import (
    FEED_DECIMALS, LIQUIDATION_PRECISION, LIQUIDATION_THRESHOLD_PCT,
    MIN_HEALTH_FACTOR, PRECISION, to_units,
)
from .engine import PositionEngine
from .keeper import LiquidationAttempt, LiquidationKeeper
from .oracle import TimeSeriesPriceFeed
from .tokens import DebtTokenLedger, FungibleToken


def generate_price_path(
    start: float,
    mu: float,
    sigma: float,
    steps: int,
    seed: int,
    dt: float = 1.0 / (365 * 24),
) -> np.ndarray:
    """
    Geometric Brownian motion path.

    Args:
        start: Initial price (> 0)
        mu: Annualized drift
        sigma: Annualized volatility (>= 0)
        steps: Number of increments; the path has steps + 1 points
        seed: Seed for numpy's default generator
        dt: Length of one step in years (default: one hour)

    Returns:
        Array of prices, path[0] == start
    """
    if start <= 0:
        raise ValueError(f"start price must be positive, got {start}")
    if sigma < 0:
        raise ValueError(f"sigma cannot be negative, got {sigma}")
    if steps < 0:
        raise ValueError(f"steps cannot be negative, got {steps}")

    rng = np.random.default_rng(seed)
    shocks = rng.standard_normal(steps)
    increments = (mu - 0.5 * sigma * sigma) * dt + sigma * np.sqrt(dt) * shocks
    log_path = np.concatenate(([0.0], np.cumsum(increments)))
    return start * np.exp(log_path)


@dataclass(frozen=True, slots=True)
class StressScenario:
    """
    Parameters of one stress run.

    Positions are opened at health factors drawn uniformly from
    [min_open_health, max_open_health]. The keeper opens a deep position of
    its own to fund liquidations with debt tokens.
    """
    start_price: float = 2000.0
    mu: float = 0.0
    sigma: float = 0.8
    steps: int = 48
    seed: int = 42
    step_size: timedelta = timedelta(hours=1)
    num_positions: int = 20
    collateral_per_position: Decimal = Decimal("10")
    min_open_health: float = 1.05
    max_open_health: float = 3.0
    keeper_collateral: Decimal = Decimal("1000")
    keeper_open_health: float = 20.0
    start_time: datetime = datetime(2025, 1, 1)
    asset_id: str = "WETH"

    def __post_init__(self):
        if self.num_positions < 0:
            raise ValueError("num_positions cannot be negative")
        if not 1.0 <= self.min_open_health <= self.max_open_health:
            raise ValueError(
                f"open health range must satisfy 1 <= min <= max, got "
                f"[{self.min_open_health}, {self.max_open_health}]"
            )
        if self.keeper_open_health < 1.0:
            raise ValueError("keeper_open_health must be at least 1")


@dataclass(frozen=True, slots=True)
class StressResult:
    """
    Outcome of a stress run.

    Attributes:
        prices: Raw feed prices used at each step
        attempts: Every liquidation attempt the keeper made
        unhealthy_positions: Owners still below the minimum at the end
        system_collateral_ratio: Total collateral USD / total debt at the end
            (PRECISION scale; 0 when there is no debt)
        accounting_valid: Engine books agreed with token balances at the end
    """
    prices: List[int]
    attempts: List[LiquidationAttempt]
    unhealthy_positions: List[str]
    system_collateral_ratio: int
    accounting_valid: bool

    @property
    def liquidations(self) -> int:
        return sum(1 for a in self.attempts if a.applied)


def _mint_for_health(collateral_usd: int, target_health: float) -> int:
    """Debt that puts a position with `collateral_usd` at `target_health`."""
    adjusted = collateral_usd * LIQUIDATION_THRESHOLD_PCT // LIQUIDATION_PRECISION
    target = to_units(str(target_health))
    return adjusted * PRECISION // target


def run_stress(scenario: StressScenario, verbose: bool = False) -> StressResult:
    """
    Run one stress scenario end to end.

    Example:
        result = run_stress(StressScenario(sigma=1.5, seed=7))
        assert result.accounting_valid
    """
    path = generate_price_path(scenario.start_price, scenario.mu, scenario.sigma,
                               scenario.steps, scenario.seed)
    times = [scenario.start_time + i * scenario.step_size for i in range(len(path))]
    raw_prices = [to_units(f"{p:.8f}", FEED_DECIMALS) for p in path]

    collateral = FungibleToken(scenario.asset_id, f"Simulated {scenario.asset_id}")
    feed = TimeSeriesPriceFeed(
        clock=lambda: engine.current_time,
        path=list(zip(times, raw_prices)),
    )
    debt_token = DebtTokenLedger(minter="engine")
    engine = PositionEngine([collateral], [feed], debt_token,
                            initial_time=scenario.start_time, verbose=verbose)

    rng = np.random.default_rng(scenario.seed + 1)
    open_healths = rng.uniform(scenario.min_open_health, scenario.max_open_health,
                               scenario.num_positions)

    def open_position(owner: str, amount: Decimal, health: float) -> None:
        units = to_units(amount)
        collateral.faucet(owner, units)
        collateral.approve(owner, engine.address, units)
        usd = engine.get_usd_value(scenario.asset_id, units)
        debt = _mint_for_health(usd, health)
        if debt > 0:
            engine.deposit_collateral_and_mint(owner, scenario.asset_id, units, debt)
        else:
            engine.deposit_collateral(owner, scenario.asset_id, units)

    for i, health in enumerate(open_healths):
        open_position(f"user{i:03d}", scenario.collateral_per_position, float(health))

    keeper_name = "keeper"
    open_position(keeper_name, scenario.keeper_collateral, scenario.keeper_open_health)
    keeper = LiquidationKeeper(engine, keeper_name, [scenario.asset_id])

    attempts = keeper.run(times[1:])

    total_debt = engine.vault.total_debt()
    total_usd = engine.get_usd_value(
        scenario.asset_id, engine.vault.total_collateral(scenario.asset_id)
    )
    ratio = total_usd * PRECISION // total_debt if total_debt else 0
    unhealthy = [owner for owner, factor in keeper.scan() if factor < MIN_HEALTH_FACTOR]

    return StressResult(
        prices=raw_prices,
        attempts=attempts,
        unhealthy_positions=unhealthy,
        system_collateral_ratio=ratio,
        accounting_valid=engine.verify_accounting()['valid'] and debt_token.verify_conservation()['valid'],
    )
