"""
conftest.py - Shared pytest fixtures for solvency tests

Provides common fixtures used across unit, functional and conformance tests:
- Collaborator doubles (collateral assets, synthetic token, price feeds)
- Engines in typical states (empty, collateral deposited, debt minted)
- Snapshot utilities for all-or-nothing comparisons
"""

import copy
import pytest
from datetime import datetime
from typing import Any, Dict

from solvency import SolvencyEngine, StaticPriceFeed

from tests.fakes import FakeCollateralAsset, FakeSyntheticToken


ENGINE = "engine"
T0 = datetime(2025, 1, 1)

ETH_USD_PRICE = 2000 * 10**8
BTC_USD_PRICE = 1000 * 10**8

COLLATERAL_AMOUNT = 10 * 10**18
AMOUNT_TO_MINT = 100 * 10**18
STARTING_BALANCE = 10 * 10**18


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def fund(asset: FakeCollateralAsset, account: str, amount: int) -> None:
    """Give account collateral and let the engine pull all of it."""
    asset.mint(account, amount)
    asset.approve(account, ENGINE, asset.balance_of(account))


def approve_debt(token: FakeSyntheticToken, account: str, amount: int) -> None:
    """Let the engine pull amount of account's synthetic tokens."""
    token.approve(account, ENGINE, amount)


def engine_state(engine: SolvencyEngine) -> Dict[str, Any]:
    """Deep copy of every ledger the engine owns, for before/after comparisons."""
    return {
        "collateral": copy.deepcopy(engine.collateral),
        "debt": dict(engine.debt),
        "events": list(engine.event_log),
    }


def collaborator_state(*ledgers) -> list:
    """Deep copy of collaborator balances and allowances."""
    return [(dict(ledger.balances), dict(ledger.allowances)) for ledger in ledgers]


def make_engine(weth, wbtc, eth_usd, btc_usd, token, **kwargs) -> SolvencyEngine:
    return SolvencyEngine(
        ENGINE, [weth, wbtc], [eth_usd, btc_usd], token,
        initial_time=kwargs.pop("initial_time", T0),
        verbose=kwargs.pop("verbose", False),
        **kwargs,
    )


# =============================================================================
# COLLABORATOR FIXTURES
# =============================================================================

@pytest.fixture
def weth():
    asset = FakeCollateralAsset("WETH", holder=ENGINE)
    fund(asset, "alice", STARTING_BALANCE)
    return asset


@pytest.fixture
def wbtc():
    asset = FakeCollateralAsset("WBTC", holder=ENGINE)
    fund(asset, "alice", STARTING_BALANCE)
    return asset


@pytest.fixture
def token():
    return FakeSyntheticToken(owner=ENGINE)


@pytest.fixture
def eth_usd():
    return StaticPriceFeed(ETH_USD_PRICE, updated_at=T0, description="ETH / USD")


@pytest.fixture
def btc_usd():
    return StaticPriceFeed(BTC_USD_PRICE, updated_at=T0, description="BTC / USD")


# =============================================================================
# ENGINE FIXTURES
# =============================================================================

@pytest.fixture
def engine(weth, wbtc, eth_usd, btc_usd, token):
    """Engine with WETH and WBTC registered and no accounts."""
    return make_engine(weth, wbtc, eth_usd, btc_usd, token)


@pytest.fixture
def deposited_engine(engine):
    """Alice has deposited 10 WETH."""
    engine.deposit_collateral("alice", "WETH", COLLATERAL_AMOUNT)
    return engine


@pytest.fixture
def minted_engine(engine):
    """Alice has deposited 10 WETH and minted 100 of debt."""
    engine.deposit_collateral_and_mint_debt("alice", "WETH", COLLATERAL_AMOUNT, AMOUNT_TO_MINT)
    return engine
