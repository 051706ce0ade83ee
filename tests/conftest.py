"""
conftest.py - Shared pytest fixtures for stableledger tests

Provides common fixtures used across unit, conformance and functional tests:
- Collateral tokens (WETH, WBTC) and the DSC debt token
- Static price feeds published at the engine's start time
- A quiet engine with funded, pre-approved users
"""

import pytest
from datetime import datetime

from stableledger import (
    PositionEngine, FungibleToken, DebtTokenLedger, StaticPriceFeed,
    DEFAULT_ENGINE_ADDRESS, to_units,
)


START = datetime(2025, 1, 1)
USERS = ("alice", "bob", "carol", "liquidator")
FUNDING = to_units(1000)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def build_engine(
    weth_usd="2000",
    wbtc_usd="1000",
    start=START,
    weth=None,
    wbtc=None,
    dsc=None,
):
    """Engine over WETH/WBTC with every user funded and approved for collateral."""
    weth = weth or FungibleToken("WETH", "Wrapped Ether")
    wbtc = wbtc or FungibleToken("WBTC", "Wrapped Bitcoin")
    dsc = dsc or DebtTokenLedger(minter=DEFAULT_ENGINE_ADDRESS)
    eth_feed = StaticPriceFeed.from_usd(weth_usd, published_at=start)
    btc_feed = StaticPriceFeed.from_usd(wbtc_usd, published_at=start)
    engine = PositionEngine([weth, wbtc], [eth_feed, btc_feed], dsc,
                            initial_time=start, verbose=False)
    for user in USERS:
        for token in (weth, wbtc):
            token.faucet(user, FUNDING)
            token.approve(user, engine.address, FUNDING)
    return engine


def approve_debt(engine, user, amount):
    """Allow the engine to pull `amount` of debt token from `user`."""
    engine.get_debt_token().approve(user, engine.address, amount)


def state_of(engine):
    """
    Positions, balances, supplies and log length, for before/after comparisons.

    Allowances are left out: a pull that is later refunded has still spent
    the allowance.
    """
    tokens = [cfg.token for cfg in engine.assets.values()] + [engine.debt_token]
    return {
        'positions': {
            owner: (engine.vault.collateral_of(owner), engine.vault.debt_of(owner))
            for owner in engine.list_positions()
        },
        'balances': {
            token.symbol: {acct: bal for acct, bal in token.balances.items() if bal}
            for token in tokens
        },
        'supply': {token.symbol: token.total_supply() for token in tokens},
        'events': len(engine.event_log),
    }


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    """Engine at WETH $2000 / WBTC $1000 with funded users."""
    return build_engine()


@pytest.fixture
def weth(engine):
    return engine.assets["WETH"].token


@pytest.fixture
def wbtc(engine):
    return engine.assets["WBTC"].token


@pytest.fixture
def dsc(engine):
    return engine.get_debt_token()


@pytest.fixture
def eth_feed(engine):
    return engine.get_collateral_price_feed("WETH")


@pytest.fixture
def btc_feed(engine):
    return engine.get_collateral_price_feed("WBTC")


@pytest.fixture
def alice_position(engine):
    """alice: 10 WETH deposited, 100 DSC minted (health factor 100)."""
    engine.deposit_collateral_and_mint("alice", "WETH", to_units(10), to_units(100))
    return engine
