"""
test_reentrancy.py - Tests for the reentrancy guard

Collaborators are called while an operation is settling. A collaborator
that calls back into a state-changing operation must be rejected, the
outer operation must fail as a whole, and the guard must be released.
"""

import pytest

from solvency import ReentrantCall

from tests.conftest import COLLATERAL_AMOUNT, AMOUNT_TO_MINT, STARTING_BALANCE, engine_state


class TestReentrancyGuard:

    def test_reentrant_deposit_rejected(self, engine, weth):
        def reenter():
            engine.deposit_collateral("alice", "WETH", 1)

        weth.on_transfer = reenter
        before = engine_state(engine)
        with pytest.raises(ReentrantCall) as exc:
            engine.deposit_collateral("alice", "WETH", COLLATERAL_AMOUNT)
        assert exc.value.operation == "deposit_collateral"
        assert engine_state(engine) == before
        assert weth.balance_of("alice") == STARTING_BALANCE

    def test_reentrant_burn_from_mint_rejected(self, deposited_engine, weth, token):
        token.on_mint = lambda: deposited_engine.burn_debt("alice", 1)
        before = engine_state(deposited_engine)
        with pytest.raises(ReentrantCall):
            deposited_engine.mint_debt("alice", AMOUNT_TO_MINT)
        assert engine_state(deposited_engine) == before
        assert token.total_supply() == 0

    def test_reentrant_redeem_from_push_rejected(self, deposited_engine, weth):
        weth.on_transfer = lambda: deposited_engine.redeem_collateral("alice", "WETH", 1)
        with pytest.raises(ReentrantCall) as exc:
            deposited_engine.redeem_collateral("alice", "WETH", COLLATERAL_AMOUNT)
        assert exc.value.operation == "redeem_collateral"
        assert deposited_engine.get_collateral_balance("alice", "WETH") == COLLATERAL_AMOUNT

    def test_composite_rolls_back_pulled_collateral(self, engine, weth, token):
        token.on_mint = lambda: engine.deposit_collateral("alice", "WBTC", 1)
        with pytest.raises(ReentrantCall):
            engine.deposit_collateral_and_mint_debt(
                "alice", "WETH", COLLATERAL_AMOUNT, AMOUNT_TO_MINT
            )
        assert weth.balance_of("alice") == STARTING_BALANCE
        assert engine.get_collateral_balance("alice", "WBTC") == 0

    def test_guard_released_after_rejection(self, engine, weth):
        weth.on_transfer = lambda: engine.deposit_collateral("alice", "WETH", 1)
        with pytest.raises(ReentrantCall):
            engine.deposit_collateral("alice", "WETH", COLLATERAL_AMOUNT)

        weth.on_transfer = None
        engine.deposit_collateral("alice", "WETH", COLLATERAL_AMOUNT)
        assert engine.get_collateral_balance("alice", "WETH") == COLLATERAL_AMOUNT

    def test_read_only_callbacks_allowed(self, engine, weth):
        """Queries are not guarded and already see the operation's ledger writes."""
        seen = []
        weth.on_transfer = lambda: seen.append(
            (engine.get_collateral_balance("alice", "WETH"), engine.health_factor("alice"))
        )
        engine.deposit_collateral("alice", "WETH", COLLATERAL_AMOUNT)
        assert seen == [(COLLATERAL_AMOUNT, 2**256 - 1)]
