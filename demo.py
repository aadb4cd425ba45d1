#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Borrowing Against Collateral, Step by Step

A walkthrough of the solvency engine. Each step builds on the previous one.
Press Enter to advance.

WHAT YOU'LL LEARN:
  1-2: Foundation   - Registering collateral, depositing it
  3-4: Borrowing    - Minting debt, the health factor, a rejected over-mint
  5-6: Crash        - A price drop, stale feeds halting the engine
  7:   Liquidation  - Repaying someone else's debt for a collateral bonus

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Tuple
import sys

from solvency import (
    SolvencyEngine, StaticPriceFeed,
    HealthFactorBroken, StalePrice,
    PRECISION, MIN_HEALTH_FACTOR, STALENESS_TIMEOUT,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    eth_price: int = 2000 * 10**8
    crash_price: int = 1400 * 10**8

    alice_collateral: int = 5 * 10**18
    alice_debt: int = 5_000 * 10**18
    bob_collateral: int = 20 * 10**18
    bob_debt: int = 5_000 * 10**18
    debt_to_cover: int = 2_500 * 10**18


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def fmt(amount: int) -> str:
    """18-decimal amount as a readable number."""
    return f"{amount / PRECISION:,.4f}"


def fmt_hf(factor: int) -> str:
    if factor == 2**256 - 1:
        return "∞ (no debt)"
    return f"{factor / PRECISION:.4f}"


# ============================================================================
# IN-MEMORY COLLABORATORS
# ============================================================================

class DemoAsset:
    """Collateral balance ledger. Users pre-approve the engine for everything."""

    def __init__(self, symbol: str, engine_account: str):
        self.symbol = symbol
        self.engine_account = engine_account
        self.balances: Dict[str, int] = {}

    def transfer_from(self, sender: str, recipient: str, amount: int) -> bool:
        if self.balances.get(sender, 0) < amount:
            return False
        self.balances[sender] -= amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        return True

    def transfer(self, recipient: str, amount: int) -> bool:
        return self.transfer_from(self.engine_account, recipient, amount)


class DemoToken:
    """Synthetic token ledger owned by the engine."""

    def __init__(self, owner: str):
        self.owner = owner
        self.balances: Dict[str, int] = {}

    def mint(self, account: str, amount: int) -> bool:
        self.balances[account] = self.balances.get(account, 0) + amount
        return True

    def burn(self, amount: int) -> None:
        self.balances[self.owner] -= amount

    def transfer_from(self, payer: str, recipient: str, amount: int) -> bool:
        if self.balances.get(payer, 0) < amount:
            return False
        self.balances[payer] -= amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        return True

    def transfer(self, recipient: str, amount: int) -> bool:
        return self.transfer_from(self.owner, recipient, amount)

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)


# ============================================================================
# STEPS
# ============================================================================

def step_01_register() -> Tuple[SolvencyEngine, DemoAsset, DemoToken, StaticPriceFeed]:
    step_header(1, "Registering Collateral",
        "See that the engine only accepts collateral it has a price feed for.")

    weth = DemoAsset("WETH", "engine")
    weth.balances = {"alice": 10 * 10**18, "bob": 20 * 10**18}
    token = DemoToken("engine")
    eth_usd = StaticPriceFeed(CONFIG.eth_price, updated_at=CONFIG.start_time, description="ETH / USD")

    engine = SolvencyEngine(
        "engine", [weth], [eth_usd], token,
        initial_time=CONFIG.start_time, verbose=True,
    )
    print(f"\nAllowed collateral: {engine.collateral_assets}")
    wait_for_enter()
    return engine, weth, token, eth_usd


def step_02_deposit(engine: SolvencyEngine):
    step_header(2, "Depositing Collateral",
        "Deposits move collateral into custody; they never need a price.")

    engine.deposit_collateral("alice", "WETH", CONFIG.alice_collateral)
    print(f"\nalice collateral value: ${fmt(engine.collateral_value_usd('alice'))}")
    print(f"alice health factor:    {fmt_hf(engine.health_factor('alice'))}")
    wait_for_enter()


def step_03_mint(engine: SolvencyEngine, token: DemoToken):
    step_header(3, "Minting Debt",
        "Only half of the collateral value backs debt. The health factor measures the margin.")

    engine.mint_debt("alice", CONFIG.alice_debt)
    debt, value = engine.get_account_information("alice")
    print(f"\nalice debt:          {fmt(debt)}")
    print(f"alice collateral:    ${fmt(value)}")
    print(f"alice health factor: {fmt_hf(engine.health_factor('alice'))}")
    print(f"alice token balance: {fmt(token.balance_of('alice'))}")
    wait_for_enter()


def step_04_over_mint(engine: SolvencyEngine):
    step_header(4, "A Rejected Over-Mint",
        "An operation that would leave its caller below 1.0 changes nothing.")

    try:
        engine.mint_debt("alice", 1 * 10**18)
    except HealthFactorBroken as e:
        print(f"\nRejected with health factor {fmt_hf(e.health_factor)}")
    print(f"alice debt is still {fmt(engine.get_debt('alice'))}")
    wait_for_enter()


def step_05_crash(engine: SolvencyEngine, eth_usd: StaticPriceFeed):
    step_header(5, "A Price Crash",
        "Prices move without any operation. Accounts can fall below 1.0.")

    engine.deposit_collateral_and_mint_debt("bob", "WETH", CONFIG.bob_collateral, CONFIG.bob_debt)

    crash_time = CONFIG.start_time + timedelta(hours=1)
    eth_usd.update_answer(CONFIG.crash_price, updated_at=crash_time)
    engine.advance_time(crash_time)

    report = engine.verify_solvency()
    for account, factor in report['health_factors'].items():
        marker = "✓" if factor >= MIN_HEALTH_FACTOR else "✗"
        print(f"  {marker} {account}: {fmt_hf(factor)}")
    wait_for_enter()


def step_06_stale(engine: SolvencyEngine, eth_usd: StaticPriceFeed):
    step_header(6, "Stale Feeds Halt the Engine",
        f"A feed older than {STALENESS_TIMEOUT} blocks every operation that needs a price.")

    stale_time = engine.current_time + STALENESS_TIMEOUT + timedelta(seconds=1)
    engine.advance_time(stale_time)
    try:
        engine.health_factor("alice")
    except StalePrice as e:
        print(f"\n{type(e).__name__}: {e}")

    eth_usd.update_answer(CONFIG.crash_price, updated_at=stale_time)
    print(f"After a fresh round: alice health factor {fmt_hf(engine.health_factor('alice'))}")
    wait_for_enter()


def step_07_liquidate(engine: SolvencyEngine, weth: DemoAsset):
    step_header(7, "Liquidation",
        "bob repays part of alice's debt and receives her collateral plus a 10% bonus.")

    before = engine.health_factor("alice")
    engine.liquidate("bob", "WETH", "alice", CONFIG.debt_to_cover)
    after = engine.health_factor("alice")

    print(f"\nalice health factor: {fmt_hf(before)} -> {fmt_hf(after)}")
    print(f"alice debt:          {fmt(engine.get_debt('alice'))}")
    print(f"bob received:        {fmt(weth.balances['bob'])} WETH")
    print(f"\n{engine!r}")


def main():
    engine, weth, token, eth_usd = step_01_register()
    step_02_deposit(engine)
    step_03_mint(engine, token)
    step_04_over_mint(engine)
    step_05_crash(engine, eth_usd)
    step_06_stale(engine, eth_usd)
    step_07_liquidate(engine, weth)


if __name__ == "__main__":
    main()
