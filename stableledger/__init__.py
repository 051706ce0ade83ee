"""
stableledger - Collateralized Debt Engine

An over-collateralized stable-token engine: users lock approved collateral,
mint a dollar-pegged debt token against it, and are liquidated when their
health factor falls below one.

Usage:
    from datetime import datetime
    from stableledger import (
        PositionEngine, FungibleToken, DebtTokenLedger, StaticPriceFeed, to_units,
    )

    now = datetime(2025, 1, 1)
    weth = FungibleToken("WETH", "Wrapped Ether")
    eth_usd = StaticPriceFeed.from_usd("2000", published_at=now)
    dsc = DebtTokenLedger(minter="engine")
    engine = PositionEngine([weth], [eth_usd], dsc, initial_time=now)

    # Fund and approve
    weth.faucet("alice", to_units(10))
    weth.approve("alice", engine.address, to_units(10))

    # Lock 10 WETH and mint 100 DSC
    engine.deposit_collateral_and_mint("alice", "WETH", to_units(10), to_units(100))
    engine.get_health_factor("alice")   # 100 * 10**18
"""

# Core types
from .core import (
    PriceFeed,
    Token,
    DebtToken,
    AssetConfig,
    PriceQuote,
    AccountInfo,
    EngineEvent,
    EngineError,
    InvalidAmount,
    UnregisteredAsset,
    TransferFailed,
    MintFailed,
    HealthFactorBroken,
    HealthFactorOk,
    HealthFactorNotImproved,
    StalePrice,
    InvalidPrice,
    ConfigMismatch,
    ReentrancyDetected,
    Unauthorized,
    InvariantViolation,
    PRECISION,
    FEED_DECIMALS,
    ADDITIONAL_FEED_PRECISION,
    LIQUIDATION_THRESHOLD_PCT,
    LIQUIDATION_BONUS_PCT,
    LIQUIDATION_PRECISION,
    MIN_HEALTH_FACTOR,
    MAX_HEALTH_FACTOR,
    STALENESS_WINDOW,
    DEFAULT_ENGINE_ADDRESS,
    EVENT_COLLATERAL_DEPOSITED,
    EVENT_COLLATERAL_REDEEMED,
    EVENT_DEBT_MINTED,
    EVENT_DEBT_BURNED,
    EVENT_LIQUIDATED,
    to_units,
    from_units,
    format_health_factor,
)

# Price feeds
from .oracle import (
    StaticPriceFeed,
    TimeSeriesPriceFeed,
    PriceOracleAdapter,
)

# Tokens
from .tokens import (
    FungibleToken,
    DebtTokenLedger,
)

# Solvency math
from .calculator import (
    usd_value_from_price,
    asset_amount_from_price,
    health_factor,
    is_healthy,
    collateral_value,
    SolvencyCalculator,
)

# Position store
from .vault import (
    UserPosition,
    CollateralVault,
)

# Engine
from .engine import PositionEngine

# Keeper
from .keeper import (
    LiquidationKeeper,
    LiquidationAttempt,
)

# Simulation
from .simulation import (
    generate_price_path,
    StressScenario,
    StressResult,
    run_stress,
)


__all__ = [
    # Core
    'PriceFeed', 'Token', 'DebtToken',
    'AssetConfig', 'PriceQuote', 'AccountInfo', 'EngineEvent',
    'to_units', 'from_units', 'format_health_factor',
    # Constants
    'PRECISION', 'FEED_DECIMALS', 'ADDITIONAL_FEED_PRECISION',
    'LIQUIDATION_THRESHOLD_PCT', 'LIQUIDATION_BONUS_PCT', 'LIQUIDATION_PRECISION',
    'MIN_HEALTH_FACTOR', 'MAX_HEALTH_FACTOR', 'STALENESS_WINDOW', 'DEFAULT_ENGINE_ADDRESS',
    'EVENT_COLLATERAL_DEPOSITED', 'EVENT_COLLATERAL_REDEEMED',
    'EVENT_DEBT_MINTED', 'EVENT_DEBT_BURNED', 'EVENT_LIQUIDATED',
    # Exceptions
    'EngineError', 'InvalidAmount', 'UnregisteredAsset', 'TransferFailed', 'MintFailed',
    'HealthFactorBroken', 'HealthFactorOk', 'HealthFactorNotImproved',
    'StalePrice', 'InvalidPrice', 'ConfigMismatch', 'ReentrancyDetected',
    'Unauthorized', 'InvariantViolation',
    # Price feeds
    'StaticPriceFeed', 'TimeSeriesPriceFeed', 'PriceOracleAdapter',
    # Tokens
    'FungibleToken', 'DebtTokenLedger',
    # Solvency math
    'usd_value_from_price', 'asset_amount_from_price', 'health_factor', 'is_healthy',
    'collateral_value', 'SolvencyCalculator',
    # Position store
    'UserPosition', 'CollateralVault',
    # Engine
    'PositionEngine',
    # Keeper
    'LiquidationKeeper', 'LiquidationAttempt',
    # Simulation
    'generate_price_path', 'StressScenario', 'StressResult', 'run_stress',
]

__version__ = '1.0.0'
