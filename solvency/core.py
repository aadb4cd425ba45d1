"""
Core types and pure functions for the solvency engine.

This module provides the foundational data structures and protocols:
1. Protocols: PriceFeed, CollateralAsset and SyntheticToken collaborator handles
2. Immutable data structures: RoundData, CollateralRegistry, engine events
3. Exceptions: SolvencyError and domain-specific error types
4. Pure calculation functions: USD valuation, token conversion, health factor

All amounts are integers in the smallest unit of their ledger. USD values and
synthetic-token amounts carry 18 decimals (PRECISION); feed answers carry 8.
All functions in this module are pure: no engine state, all inputs explicit.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import (
    Dict, List, Mapping, NamedTuple, Optional, Protocol, Sequence, Tuple,
    runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Internal fixed-point precision (18 decimals).
PRECISION = 10**18

# Feeds report 8 decimals; this lifts an answer to PRECISION.
FEED_DECIMALS = 8
FEED_PRECISION_ADJUST = 10**10

# Only LIQUIDATION_THRESHOLD / LIQUIDATION_PRECISION of collateral value backs debt (50%).
LIQUIDATION_THRESHOLD = 50
LIQUIDATION_PRECISION = 100

# Liquidators receive this percentage of the covered collateral as a bonus.
LIQUIDATION_BONUS = 10

MIN_HEALTH_FACTOR = 1 * PRECISION

# Upper bound of every ledger value and intermediate product.
# Also the health factor of an account without debt.
UINT256_MAX = 2**256 - 1


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from asset symbol to deposited amount for a single account.
CollateralBalances = Dict[str, int]

# Mapping from account to outstanding synthetic debt.
DebtLedger = Dict[str, int]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class SolvencyError(Exception):
    """Base exception for all engine errors."""
    pass


class ZeroAmount(SolvencyError):
    """Raised when an operation is given an amount that is not more than zero."""
    pass


class UnknownAsset(SolvencyError):
    """Raised when an asset is not in the collateral registry."""

    def __init__(self, asset: str):
        super().__init__(f"Asset {asset} is not an allowed collateral")
        self.asset = asset


class LengthMismatch(SolvencyError):
    """Raised when collateral assets and price feeds differ in length at registration."""
    pass


class TransferFailed(SolvencyError):
    """Raised when a collateral or synthetic-token transfer reports failure."""
    pass


class MintFailed(SolvencyError):
    """Raised when the synthetic token refuses to mint."""
    pass


class BurnFailed(SolvencyError):
    """Raised when the synthetic token refuses to burn repaid debt."""
    pass


class HealthFactorBroken(SolvencyError):
    """Raised when an account would end an operation below MIN_HEALTH_FACTOR."""

    def __init__(self, health_factor: int, account: Optional[str] = None):
        who = f" for {account}" if account is not None else ""
        super().__init__(f"Health factor broken{who}: {health_factor}")
        self.health_factor = health_factor
        self.account = account


class HealthFactorNotBroken(SolvencyError):
    """Raised when liquidating an account that is still healthy."""

    def __init__(self, health_factor: int):
        super().__init__(f"Health factor is not broken: {health_factor}")
        self.health_factor = health_factor


class HealthFactorNotImproved(SolvencyError):
    """Raised when a liquidation does not strictly improve the target's health factor."""

    def __init__(self, starting: int, ending: int):
        super().__init__(f"Health factor not improved: {starting} -> {ending}")
        self.starting = starting
        self.ending = ending


class StalePrice(SolvencyError):
    """Raised when a feed's last update is older than the staleness timeout."""

    def __init__(self, updated_at: datetime, elapsed: timedelta):
        super().__init__(f"Stale price: last updated {updated_at} ({elapsed} ago)")
        self.updated_at = updated_at
        self.elapsed = elapsed


class InvalidPrice(SolvencyError):
    """Raised when a feed answer cannot be used for valuation (zero or negative)."""

    def __init__(self, answer: int):
        super().__init__(f"Invalid feed answer: {answer}")
        self.answer = answer


class ReentrantCall(SolvencyError):
    """Raised when a state-changing operation is entered while another is in progress."""

    def __init__(self, operation: str):
        super().__init__(f"Reentrant call to {operation}")
        self.operation = operation


class ArithmeticUnderflow(SolvencyError, ArithmeticError):
    """Raised when a ledger value would drop below zero (insufficient balance)."""
    pass


class ArithmeticOverflow(SolvencyError, ArithmeticError):
    """Raised when a value would exceed UINT256_MAX."""
    pass


# ============================================================================
# PROTOCOLS
# ============================================================================

class RoundData(NamedTuple):
    """One price-feed round, in the order feeds report it."""
    round_id: int
    answer: int
    started_at: datetime
    updated_at: datetime
    answered_in_round: int


@runtime_checkable
class PriceFeed(Protocol):
    """Read-only price source for one collateral asset (8-decimal USD answers)."""

    def latest_round_data(self) -> RoundData:
        """Return the most recent round."""
        ...


@runtime_checkable
class CollateralAsset(Protocol):
    """
    Handle onto an external collateral balance ledger.

    The handle acts with the engine as caller: transfer() moves out of the
    engine's own balance, transfer_from() moves under an allowance granted
    to the engine. Both report failure by returning False.
    """
    symbol: str

    def transfer_from(self, sender: str, recipient: str, amount: int) -> bool:
        ...

    def transfer(self, recipient: str, amount: int) -> bool:
        ...


@runtime_checkable
class SyntheticToken(Protocol):
    """
    Handle onto the synthetic unit-of-account ledger, owned by the engine.

    mint() and burn() are owner-gated; burn() destroys from the engine's own
    balance. mint() reports failure by returning False, burn() by raising.
    transfer() moves out of the engine's own balance.
    """

    def mint(self, account: str, amount: int) -> bool:
        ...

    def burn(self, amount: int) -> None:
        ...

    def transfer_from(self, payer: str, recipient: str, amount: int) -> bool:
        ...

    def transfer(self, recipient: str, amount: int) -> bool:
        ...

    def balance_of(self, account: str) -> int:
        ...


# ============================================================================
# COLLATERAL REGISTRY
# ============================================================================

@dataclass(frozen=True, slots=True)
class CollateralRegistry:
    """
    Immutable mapping of allowed collateral assets to their price feeds.

    Built once when the engine is constructed and never mutated afterwards.
    symbols preserves registration order, which is the iteration order for
    aggregate valuation.

    Attributes:
        symbols: Registered asset symbols in registration order
        assets: Asset symbol -> collateral asset handle
        feeds: Asset symbol -> price feed
    """
    symbols: Tuple[str, ...]
    assets: Mapping[str, CollateralAsset]
    feeds: Mapping[str, PriceFeed]

    @classmethod
    def build(
        cls,
        collateral_assets: Sequence[CollateralAsset],
        price_feeds: Sequence[PriceFeed],
    ) -> CollateralRegistry:
        """
        Pair each collateral asset with the price feed at the same position.

        Raises:
            LengthMismatch: If the two sequences differ in length
            ValueError: If an asset symbol appears more than once
        """
        if len(collateral_assets) != len(price_feeds):
            raise LengthMismatch(
                f"{len(collateral_assets)} collateral assets but {len(price_feeds)} price feeds"
            )
        assets: Dict[str, CollateralAsset] = {}
        feeds: Dict[str, PriceFeed] = {}
        symbols: List[str] = []
        for asset, feed in zip(collateral_assets, price_feeds):
            if asset.symbol in assets:
                raise ValueError(f"Collateral {asset.symbol} already registered")
            assets[asset.symbol] = asset
            feeds[asset.symbol] = feed
            symbols.append(asset.symbol)
        return cls(
            symbols=tuple(symbols),
            assets=MappingProxyType(assets),
            feeds=MappingProxyType(feeds),
        )

    def __contains__(self, symbol: object) -> bool:
        return symbol in self.feeds

    def __len__(self) -> int:
        return len(self.symbols)


# ============================================================================
# EVENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class CollateralDeposited:
    """Collateral credited to an account."""
    account: str
    asset: str
    amount: int

    def __repr__(self) -> str:
        return f"CollateralDeposited({self.account}, {self.asset}, {self.amount})"


@dataclass(frozen=True, slots=True)
class CollateralRedeemed:
    """Collateral debited from one account and sent to another (equal on plain redeem)."""
    redeemed_from: str
    redeemed_to: str
    asset: str
    amount: int

    def __repr__(self) -> str:
        return (
            f"CollateralRedeemed({self.redeemed_from} -> {self.redeemed_to}, "
            f"{self.asset}, {self.amount})"
        )


# ============================================================================
# CHECKED ARITHMETIC
# ============================================================================

def checked_add(a: int, b: int) -> int:
    """Add two ledger values, raising ArithmeticOverflow above UINT256_MAX."""
    result = a + b
    if result > UINT256_MAX:
        raise ArithmeticOverflow(f"{a} + {b} exceeds UINT256_MAX")
    return result


def checked_sub(a: int, b: int) -> int:
    """Subtract ledger values, raising ArithmeticUnderflow below zero."""
    if b > a:
        raise ArithmeticUnderflow(f"{a} - {b} is below zero")
    return a - b


def checked_mul(a: int, b: int) -> int:
    """Multiply ledger values, raising ArithmeticOverflow above UINT256_MAX."""
    result = a * b
    if result > UINT256_MAX:
        raise ArithmeticOverflow(f"{a} * {b} exceeds UINT256_MAX")
    return result


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def scale_price(answer: int) -> int:
    """
    Lift an 8-decimal feed answer to 18-decimal PRECISION.

    Raises:
        InvalidPrice: If the answer is zero or negative
    """
    if answer <= 0:
        raise InvalidPrice(answer)
    return checked_mul(answer, FEED_PRECISION_ADJUST)


def calculate_usd_value(answer: int, amount: int) -> int:
    """
    USD value (18 decimals) of an amount of collateral.

    PURE FUNCTION - All inputs explicit, no hidden state.

        usd = answer * FEED_PRECISION_ADJUST * amount // PRECISION

    Args:
        answer: Feed answer (USD per whole asset, 8 decimals)
        amount: Collateral amount in the asset's smallest unit (18 decimals)

    Returns:
        USD value with 18 decimals, rounded down.

    Example:
        # 15 ETH at $2000 is $30,000
        calculate_usd_value(2000 * 10**8, 15 * 10**18) == 30_000 * 10**18
    """
    return checked_mul(scale_price(answer), amount) // PRECISION


def calculate_token_amount(answer: int, usd_amount: int) -> int:
    """
    Amount of collateral worth usd_amount. Inverse of calculate_usd_value.

    PURE FUNCTION - All inputs explicit, no hidden state.

        tokens = usd_amount * PRECISION // (answer * FEED_PRECISION_ADJUST)

    Example:
        # $100 buys 0.05 ETH at $2000
        calculate_token_amount(2000 * 10**8, 100 * 10**18) == 5 * 10**16
    """
    return checked_mul(usd_amount, PRECISION) // scale_price(answer)


def calculate_health_factor(debt: int, collateral_value_usd: int) -> int:
    """
    Health factor of an account, scaled by PRECISION.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Only LIQUIDATION_THRESHOLD percent of the collateral value counts toward
    backing the debt:

        adjusted = collateral_value_usd * LIQUIDATION_THRESHOLD // LIQUIDATION_PRECISION
        health_factor = adjusted * PRECISION // debt

    An account without debt has the maximal factor UINT256_MAX.

    Args:
        debt: Outstanding synthetic debt (18 decimals)
        collateral_value_usd: Total collateral value (18 decimals)

    Returns:
        Health factor; MIN_HEALTH_FACTOR (1e18) is the solvency boundary.

    Example:
        # $20,000 of collateral backing $4,000 of debt
        calculate_health_factor(4_000 * 10**18, 20_000 * 10**18) == 25 * 10**17
    """
    if debt == 0:
        return UINT256_MAX
    adjusted = checked_mul(collateral_value_usd, LIQUIDATION_THRESHOLD) // LIQUIDATION_PRECISION
    return checked_mul(adjusted, PRECISION) // debt


def calculate_liquidation_bonus(token_amount: int) -> int:
    """Collateral bonus paid to a liquidator on top of token_amount (rounded down)."""
    return checked_mul(token_amount, LIQUIDATION_BONUS) // LIQUIDATION_PRECISION
