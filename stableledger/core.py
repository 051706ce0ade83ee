"""
Core types and constants for the collateralized-debt engine.

This module provides the foundational data structures and protocols:
1. Constants: fixed-point scales and the fixed risk parameters
2. Protocols: PriceFeed, Token and DebtToken collaborator interfaces
3. Exceptions: EngineError and domain-specific error types
4. Immutable data structures: AssetConfig, PriceQuote, AccountInfo, EngineEvent
5. Unit helpers: conversion between human Decimal amounts and fixed-point ints

All amounts handled by the engine are Python ints in the smallest unit
(18-decimal fixed point). Decimal is only used at the edges, for parsing and
display.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN, localcontext
from typing import Dict, Optional, Protocol, Tuple, Union, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# Internal fixed-point scale for collateral amounts, USD values and debt.
PRECISION_DECIMALS = 18
PRECISION = 10 ** PRECISION_DECIMALS

# Price feeds quote USD with 8 decimals; they are scaled up by this factor
# so that price * amount lands on the internal 18-decimal scale.
FEED_DECIMALS = 8
ADDITIONAL_FEED_PRECISION = 10 ** (PRECISION_DECIMALS - FEED_DECIMALS)

# Risk parameters. Fixed for the lifetime of an engine.
LIQUIDATION_THRESHOLD_PCT = 50   # collateral counts at 50% => 200% over-collateralized
LIQUIDATION_BONUS_PCT = 10       # liquidators receive a 10% collateral premium
LIQUIDATION_PRECISION = 100
MIN_HEALTH_FACTOR = PRECISION

# Health factor reported for positions without debt (cannot be liquidated).
MAX_HEALTH_FACTOR = 2 ** 256 - 1

# Maximum age of a price quote before it is rejected.
STALENESS_WINDOW = timedelta(hours=3)

# Default custody address of an engine (owner of deposited collateral and
# the only account allowed to mint/burn the debt token).
DEFAULT_ENGINE_ADDRESS = "engine"

# Event kinds recorded in the engine audit trail (strings, not enum).
EVENT_COLLATERAL_DEPOSITED = "COLLATERAL_DEPOSITED"
EVENT_COLLATERAL_REDEEMED = "COLLATERAL_REDEEMED"
EVENT_DEBT_MINTED = "DEBT_MINTED"
EVENT_DEBT_BURNED = "DEBT_BURNED"
EVENT_LIQUIDATED = "LIQUIDATED"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from asset id to deposited amount for a single owner.
CollateralMap = Dict[str, int]

Amount = Union[int, str, Decimal]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class PriceFeed(Protocol):
    """
    USD price source for a single collateral asset.

    latest_price() returns the raw integer price (scaled by 10**decimals)
    and the time it was published. Freshness is judged by the caller.
    """
    decimals: int

    def latest_price(self) -> Tuple[int, datetime]:
        ...


@runtime_checkable
class Token(Protocol):
    """
    Standard fungible-asset interface.

    The caller is passed explicitly. transfer/transfer_from report failure by
    returning False or raising; callers must treat both the same way.
    """
    symbol: str

    def balance_of(self, account: str) -> int:
        ...

    def total_supply(self) -> int:
        ...

    def allowance(self, owner: str, spender: str) -> int:
        ...

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        ...

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        ...

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> bool:
        ...


@runtime_checkable
class DebtToken(Token, Protocol):
    """Fungible debt token whose supply only the configured minter may change."""

    def mint(self, caller: str, to: str, amount: int) -> bool:
        ...

    def burn(self, caller: str, amount: int) -> None:
        ...


# ============================================================================
# EXCEPTIONS
# ============================================================================

class EngineError(Exception):
    """Base exception for all engine-related errors."""
    pass


class InvalidAmount(EngineError):
    """Raised for zero, negative, or otherwise disallowed amounts."""
    pass


class UnregisteredAsset(EngineError):
    """Raised when an asset id has no registry entry."""
    pass


class TransferFailed(EngineError):
    """Raised when an external token transfer returns False or raises."""
    pass


class MintFailed(EngineError):
    """Raised when the debt token refuses a mint request."""
    pass


class HealthFactorBroken(EngineError):
    """Raised when an operation would leave a position below MIN_HEALTH_FACTOR."""

    def __init__(self, factor: int, user: Optional[str] = None):
        self.factor = factor
        self.user = user
        who = f" for {user}" if user else ""
        super().__init__(f"health factor {format_health_factor(factor)} below minimum{who}")


class HealthFactorOk(EngineError):
    """Raised when liquidation is attempted on a healthy position."""
    pass


class HealthFactorNotImproved(EngineError):
    """Raised when a liquidation would not improve the target's health factor."""
    pass


class StalePrice(EngineError):
    """Raised when a price quote is older than STALENESS_WINDOW."""
    pass


class InvalidPrice(EngineError):
    """Raised when a feed reports a zero or negative price."""
    pass


class ConfigMismatch(EngineError):
    """Raised at construction when asset and price feed lists differ in length."""
    pass


class ReentrancyDetected(EngineError):
    """Raised when a guarded entry point is called while another is in progress."""
    pass


class Unauthorized(EngineError):
    """Raised by the debt token when a non-minter calls mint or burn."""
    pass


class InvariantViolation(EngineError):
    """Internal bookkeeping invariant broken. Indicates a bug, not a user error."""
    pass


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class AssetConfig:
    """
    Registry entry for an approved collateral asset.

    Attributes:
        asset_id: Identifier of the collateral asset (the token symbol, e.g. "WETH").
        price_feed: Feed quoting the asset in USD.
        token: Token contract holding the asset, used for custody transfers.
    """
    asset_id: str
    price_feed: PriceFeed
    token: Token

    def __post_init__(self):
        if not self.asset_id or not self.asset_id.strip():
            raise ValueError("AssetConfig asset_id cannot be empty")
        if self.price_feed is None:
            raise ValueError(f"AssetConfig {self.asset_id} requires a price feed")
        if self.token is None:
            raise ValueError(f"AssetConfig {self.asset_id} requires a token")


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """A single oracle reading, already checked for freshness."""
    asset_id: str
    price: int
    decimals: int
    published_at: datetime
    is_fresh: bool


@dataclass(frozen=True, slots=True)
class AccountInfo:
    """Read view of a position: minted debt and total collateral in USD."""
    debt_minted: int
    collateral_usd: int


@dataclass(frozen=True, slots=True)
class EngineEvent:
    """
    Immutable audit record of one committed effect.

    Attributes:
        kind: One of the EVENT_* constants.
        user: Position the effect applies to.
        amount: Collateral amount for collateral events, debt amount otherwise.
        asset_id: Collateral asset involved, if any.
        counterparty: Receiver of redeemed collateral, or payer/liquidator.
        collateral_amount: Collateral seized (liquidation only).
        timestamp: Engine logical time when committed.
        sequence: Monotonic sequence number within the engine.
    """
    kind: str
    user: str
    amount: int
    timestamp: datetime
    sequence: int
    asset_id: Optional[str] = None
    counterparty: Optional[str] = None
    collateral_amount: Optional[int] = None

    def __repr__(self) -> str:
        parts = [f"#{self.sequence} {self.kind}", f"user={self.user}", f"amount={from_units(self.amount)}"]
        if self.asset_id:
            parts.append(f"asset={self.asset_id}")
        if self.counterparty:
            parts.append(f"counterparty={self.counterparty}")
        if self.collateral_amount is not None:
            parts.append(f"seized={from_units(self.collateral_amount)}")
        return f"EngineEvent({', '.join(parts)})"


# ============================================================================
# UNIT HELPERS
# ============================================================================

def to_units(amount: Amount, decimals: int = PRECISION_DECIMALS) -> int:
    """
    Convert a human amount to a fixed-point integer, truncating extra digits.

    Args:
        amount: Decimal, decimal string, or int (whole units).
        decimals: Number of fractional digits of the target scale.

    Example:
        to_units("0.05") == 50_000_000_000_000_000
        to_units(2000, decimals=8) == 200_000_000_000
    """
    if isinstance(amount, float):
        raise ValueError("Use Decimal or str for fractional amounts, not float")
    with localcontext() as ctx:
        ctx.prec = 80
        value = Decimal(amount) * (Decimal(10) ** decimals)
        return int(value.to_integral_value(rounding=ROUND_DOWN))


def from_units(amount: int, decimals: int = PRECISION_DECIMALS) -> Decimal:
    """Convert a fixed-point integer back to a Decimal amount."""
    with localcontext() as ctx:
        ctx.prec = 80
        return Decimal(amount) / (Decimal(10) ** decimals)


def feed_scale(decimals: int) -> int:
    """Factor lifting a price with `decimals` digits to the internal scale."""
    if decimals > PRECISION_DECIMALS:
        raise ValueError(f"feed decimals {decimals} exceed internal precision {PRECISION_DECIMALS}")
    return 10 ** (PRECISION_DECIMALS - decimals)


def format_health_factor(factor: int) -> str:
    """Human-readable health factor (MAX shown as 'inf')."""
    if factor == MAX_HEALTH_FACTOR:
        return "inf"
    with localcontext() as ctx:
        ctx.prec = 100
        return str(from_units(factor).quantize(Decimal("0.0001"), rounding=ROUND_DOWN))
