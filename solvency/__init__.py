"""
solvency - Collateralized-Debt Accounting Engine

Accounts deposit approved collateral, mint a synthetic unit of account
against it, and the engine keeps every account over-collateralized. Accounts
whose health factor falls below 1.0 can be partially liquidated by anyone for
a 10% collateral bonus.

Usage:
    from solvency import SolvencyEngine, StaticPriceFeed

    eth_usd = StaticPriceFeed(2000 * 10**8, updated_at=datetime(2025, 1, 1))
    engine = SolvencyEngine(
        "engine", [weth], [eth_usd], token,
        initial_time=datetime(2025, 1, 1),
    )

    # 10 WETH at $2000 backs up to $10,000 of debt
    engine.deposit_collateral_and_mint_debt("alice", "WETH", 10 * 10**18, 4_000 * 10**18)
    engine.health_factor("alice")  # 2.5e18

    # After a crash, anyone holding synthetic tokens can liquidate
    eth_usd.update_answer(700 * 10**8, updated_at=datetime(2025, 1, 1, 1))
    engine.advance_time(datetime(2025, 1, 1, 1))
    engine.liquidate("bob", "WETH", "alice", 2_000 * 10**18)
"""

# Core types
from .core import (
    RoundData,
    PriceFeed,
    CollateralAsset,
    SyntheticToken,
    CollateralRegistry,
    CollateralDeposited,
    CollateralRedeemed,
    SolvencyError,
    ZeroAmount,
    UnknownAsset,
    LengthMismatch,
    TransferFailed,
    MintFailed,
    BurnFailed,
    HealthFactorBroken,
    HealthFactorNotBroken,
    HealthFactorNotImproved,
    StalePrice,
    InvalidPrice,
    ReentrantCall,
    ArithmeticUnderflow,
    ArithmeticOverflow,
    PRECISION,
    FEED_DECIMALS,
    FEED_PRECISION_ADJUST,
    LIQUIDATION_THRESHOLD,
    LIQUIDATION_PRECISION,
    LIQUIDATION_BONUS,
    MIN_HEALTH_FACTOR,
    UINT256_MAX,
    calculate_usd_value,
    calculate_token_amount,
    calculate_health_factor,
    calculate_liquidation_bonus,
)

# Price guard
from .price_guard import (
    STALENESS_TIMEOUT,
    read_fresh_price,
    get_timeout,
)

# Reference feeds
from .feeds import (
    StaticPriceFeed,
    TimeSeriesPriceFeed,
)

# Engine
from .engine import SolvencyEngine

__all__ = [
    # Core
    'RoundData', 'PriceFeed', 'CollateralAsset', 'SyntheticToken',
    'CollateralRegistry', 'CollateralDeposited', 'CollateralRedeemed',
    # Errors
    'SolvencyError', 'ZeroAmount', 'UnknownAsset', 'LengthMismatch',
    'TransferFailed', 'MintFailed', 'BurnFailed', 'HealthFactorBroken', 'HealthFactorNotBroken',
    'HealthFactorNotImproved', 'StalePrice', 'InvalidPrice', 'ReentrantCall',
    'ArithmeticUnderflow', 'ArithmeticOverflow',
    # Constants
    'PRECISION', 'FEED_DECIMALS', 'FEED_PRECISION_ADJUST',
    'LIQUIDATION_THRESHOLD', 'LIQUIDATION_PRECISION', 'LIQUIDATION_BONUS',
    'MIN_HEALTH_FACTOR', 'UINT256_MAX',
    # Pure calculations
    'calculate_usd_value', 'calculate_token_amount',
    'calculate_health_factor', 'calculate_liquidation_bonus',
    # Price guard
    'STALENESS_TIMEOUT', 'read_fresh_price', 'get_timeout',
    # Feeds
    'StaticPriceFeed', 'TimeSeriesPriceFeed',
    # Engine
    'SolvencyEngine',
]

__version__ = '1.0.0'
