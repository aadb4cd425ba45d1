"""
engine.py - Stateful Collateralized-Debt Solvency Engine

The SolvencyEngine owns the collateral and debt ledgers. It is the only module
that mutates them, and it checks the solvency invariant around every change.

Key responsibilities:
    - Accepts collateral deposits and redemptions for registered assets
    - Mints and burns synthetic debt against that collateral
    - Values collateral through the staleness-guarded price feeds
    - Lets third parties liquidate accounts whose health factor is below 1.0
    - Runs every state-changing operation atomically: all effects apply or none do

Execution model:
    Each public operation runs inside _operation(), which holds the
    reentrancy guard, journals every ledger write and queues every external
    interaction. Interactions settle only after all checks have passed, pulls
    from users first and pushes out of custody last. Any exception replays the
    journal backwards, compensates settled interactions and re-raises. A
    compensation that itself fails leaves its ledger effect in place, so
    engine and collaborator ledgers still agree.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple, Union

from .core import (
    # Types
    CollateralAsset, CollateralBalances, CollateralRegistry, DebtLedger,
    PriceFeed, SyntheticToken,
    CollateralDeposited, CollateralRedeemed,
    # Constants
    MIN_HEALTH_FACTOR, UINT256_MAX,
    # Exceptions
    ArithmeticOverflow, HealthFactorBroken, HealthFactorNotBroken,
    BurnFailed, HealthFactorNotImproved, MintFailed, ReentrantCall, TransferFailed,
    UnknownAsset, ZeroAmount,
    # Pure functions
    calculate_health_factor, calculate_liquidation_bonus,
    calculate_token_amount, calculate_usd_value,
    checked_add, checked_sub,
)
from .price_guard import read_fresh_price


EngineEvent = Union[CollateralDeposited, CollateralRedeemed]

# Settlement order: pulls from users before pushes out of custody.
PHASE_PULL = 0
PHASE_PUSH = 1


@dataclass(frozen=True, slots=True)
class Interaction:
    """
    A queued call on an external collaborator.

    Attributes:
        description: Human-readable summary for rejection messages
        phase: PHASE_PULL or PHASE_PUSH
        run: Performs the call, raising on failure
        undo: Compensating call if a later interaction fails, or None
        retain: Re-records the call's ledger effect when undo itself fails, or None
    """
    description: str
    phase: int
    run: Callable[[], None]
    undo: Optional[Callable[[], None]] = None
    retain: Optional[Callable[[], None]] = None


class SolvencyEngine:
    """
    Collateralized-debt accounting engine.

    Accounts deposit registered collateral and mint synthetic debt against
    it. Only half of the collateral's USD value counts toward backing debt,
    and no operation may leave its caller with a health factor below 1.0.

    Thread Safety:
        Not thread-safe. Operations must be issued sequentially; the
        reentrancy guard only rejects nested calls from collaborators.

    Example:
        engine = SolvencyEngine(
            "engine", [weth], [eth_usd_feed], token,
            initial_time=datetime(2025, 1, 1),
        )
        engine.deposit_collateral_and_mint_debt(
            "alice", "WETH", 10 * 10**18, 4_000 * 10**18
        )
        engine.health_factor("alice")  # 2500000000000000000 (2.5)
    """

    def __init__(
        self,
        name: str,
        collateral_assets: Sequence[CollateralAsset],
        price_feeds: Sequence[PriceFeed],
        synthetic_token: SyntheticToken,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create an engine and register its collateral.

        Args:
            name: Engine identifier; also its account on collaborator ledgers
            collateral_assets: Allowed collateral, paired by position with price_feeds
            price_feeds: One feed per collateral asset
            synthetic_token: Ledger of the synthetic unit, owned by this engine
            initial_time: Starting time of the engine clock (default: 1970-01-01)
            verbose: Print one line per operation (default: True)

        Raises:
            LengthMismatch: If collateral_assets and price_feeds differ in length
            ValueError: If a collateral symbol is registered twice
        """
        self.name = name
        self.registry = CollateralRegistry.build(collateral_assets, price_feeds)
        self.synthetic_token = synthetic_token
        self.collateral: Dict[str, CollateralBalances] = {}
        self.debt: DebtLedger = {}
        self.event_log: List[EngineEvent] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        # Name of the operation holding the reentrancy guard, if any
        self._entered: Optional[str] = None
        # Undo records for ledger writes of the operation in progress
        self._journal: List[Tuple[str, str, Optional[str], Optional[int]]] = []
        self._interactions: List[Interaction] = []
        # Settled interactions whose compensation failed during the current rollback
        self._stranded: List[Interaction] = []

        if self.verbose:
            for symbol in self.registry.symbols:
                print(f"📝 Registered collateral: {symbol} -> {self.registry.feeds[symbol]!r}")

    # ========================================================================
    # READ-ONLY ACCESS
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the engine."""
        return self._current_time

    @property
    def collateral_assets(self) -> Tuple[str, ...]:
        """Registered collateral symbols in registration order."""
        return self.registry.symbols

    def price_feed_for(self, asset: str) -> PriceFeed:
        self._require_allowed(asset)
        return self.registry.feeds[asset]

    def get_collateral_balance(self, account: str, asset: str) -> int:
        """Deposited amount of asset for account (0 if never deposited)."""
        return self.collateral.get(account, {}).get(asset, 0)

    def get_account_collateral(self, account: str) -> CollateralBalances:
        """Copy of every collateral balance held by account."""
        return dict(self.collateral.get(account, {}))

    def get_debt(self, account: str) -> int:
        """Outstanding synthetic debt of account (0 if never minted)."""
        return self.debt.get(account, 0)

    def list_accounts(self) -> Set[str]:
        """Every account with a collateral or debt entry."""
        return set(self.collateral) | set(self.debt)

    def total_collateral(self, asset: str) -> int:
        """
        Total deposited amount of asset across all accounts.

        Equals the engine's custody balance of the asset, since collateral
        enters and leaves custody only through this engine's operations.
        """
        self._require_allowed(asset)
        return sum(balances.get(asset, 0) for balances in self.collateral.values())

    def total_debt(self) -> int:
        """Total outstanding synthetic debt across all accounts."""
        return sum(self.debt.values())

    # ========================================================================
    # VALUATION
    # ========================================================================

    def usd_value(self, asset: str, amount: int) -> int:
        """
        USD value (18 decimals) of amount of a registered asset.

        Raises:
            UnknownAsset: If asset is not registered
            StalePrice: If the asset's feed is stale
            InvalidPrice: If the feed answer is not positive
        """
        self._require_allowed(asset)
        round_data = read_fresh_price(self.registry.feeds[asset], self._current_time)
        return calculate_usd_value(round_data.answer, amount)

    def usd_to_token_amount(self, asset: str, usd_amount: int) -> int:
        """
        Amount of a registered asset worth usd_amount (18-decimal USD).

        Raises:
            UnknownAsset: If asset is not registered
            StalePrice: If the asset's feed is stale
            InvalidPrice: If the feed answer is not positive
        """
        self._require_allowed(asset)
        round_data = read_fresh_price(self.registry.feeds[asset], self._current_time)
        return calculate_token_amount(round_data.answer, usd_amount)

    def collateral_value_usd(self, account: str) -> int:
        """
        Total USD value of account's collateral.

        Every registered feed is read, including those of assets the account
        does not hold, so any stale feed halts the valuation.
        """
        return sum(
            self.usd_value(asset, self.get_collateral_balance(account, asset))
            for asset in self.registry.symbols
        )

    def get_account_information(self, account: str) -> Tuple[int, int]:
        """Return (debt_minted, collateral_value_usd) for account."""
        return self.get_debt(account), self.collateral_value_usd(account)

    def health_factor(self, account: str) -> int:
        """
        Health factor of account scaled by PRECISION (UINT256_MAX without debt).

        Below MIN_HEALTH_FACTOR the account can be liquidated.
        """
        debt, collateral_value = self.get_account_information(account)
        return calculate_health_factor(debt, collateral_value)

    def verify_solvency(self) -> Dict[str, Any]:
        """
        Check the solvency invariant for every indebted account.

        Operations keep their own caller solvent, but a price move can push
        any account below the minimum. Those accounts are reported as
        violations and are open to liquidation.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every indebted account is at or above MIN_HEALTH_FACTOR
            - 'health_factors': Dict[str, int] - Health factor per indebted account
            - 'violations': List[Dict] - account, health_factor, debt, collateral_value_usd
        """
        health_factors: Dict[str, int] = {}
        violations: List[Dict[str, Any]] = []

        for account in sorted(self.debt):
            debt, collateral_value = self.get_account_information(account)
            if debt == 0:
                continue
            factor = calculate_health_factor(debt, collateral_value)
            health_factors[account] = factor
            if factor < MIN_HEALTH_FACTOR:
                violations.append({
                    'account': account,
                    'health_factor': factor,
                    'debt': debt,
                    'collateral_value_usd': collateral_value,
                })

        return {
            'valid': len(violations) == 0,
            'health_factors': health_factors,
            'violations': violations,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the engine's logical clock. Time only moves forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # PUBLIC OPERATIONS (Mutating)
    # ========================================================================

    def deposit_collateral(self, account: str, asset: str, amount: int) -> None:
        """
        Deposit collateral into account, pulling it from account into custody.

        Raises:
            ZeroAmount: If amount is not more than zero
            UnknownAsset: If asset is not registered
            TransferFailed: If the asset ledger refuses the transfer
        """
        with self._operation("deposit_collateral", f"{account} {amount} {asset}"):
            self._deposit_collateral(account, asset, amount)

    def redeem_collateral(self, account: str, asset: str, amount: int) -> None:
        """
        Withdraw collateral from account back to account.

        Raises:
            ZeroAmount: If amount is not more than zero
            UnknownAsset: If asset is not registered
            ArithmeticUnderflow: If account holds less than amount
            HealthFactorBroken: If the withdrawal leaves account insolvent
            TransferFailed: If the asset ledger refuses the transfer
        """
        with self._operation("redeem_collateral", f"{account} {amount} {asset}"):
            self._require_more_than_zero(amount)
            self._require_allowed(asset)
            self._redeem_collateral(account, account, asset, amount)
            self._revert_if_health_factor_is_broken(account)

    def mint_debt(self, account: str, amount: int) -> None:
        """
        Mint synthetic tokens to account, recording them as its debt.

        Raises:
            ZeroAmount: If amount is not more than zero
            HealthFactorBroken: If the new debt leaves account insolvent
            MintFailed: If the token refuses to mint
        """
        with self._operation("mint_debt", f"{account} {amount}"):
            self._mint_debt(account, amount)

    def burn_debt(self, account: str, amount: int) -> None:
        """
        Repay account's debt with its own synthetic tokens.

        Raises:
            ZeroAmount: If amount is not more than zero
            ArithmeticUnderflow: If amount exceeds account's debt
            TransferFailed: If the token ledger refuses the transfer
            BurnFailed: If the token refuses to burn the repaid amount
            HealthFactorBroken: If account is insolvent afterwards
        """
        with self._operation("burn_debt", f"{account} {amount}"):
            self._require_more_than_zero(amount)
            self._burn_debt(account, account, amount)
            self._revert_if_health_factor_is_broken(account)

    def deposit_collateral_and_mint_debt(
        self,
        account: str,
        asset: str,
        collateral_amount: int,
        debt_amount: int,
    ) -> None:
        """Deposit collateral and mint debt against it in one operation."""
        with self._operation(
            "deposit_collateral_and_mint_debt",
            f"{account} {collateral_amount} {asset}, {debt_amount} debt",
        ):
            self._deposit_collateral(account, asset, collateral_amount)
            self._mint_debt(account, debt_amount)

    def redeem_collateral_for_debt(
        self,
        account: str,
        asset: str,
        collateral_amount: int,
        debt_amount: int,
    ) -> None:
        """
        Burn debt, then redeem collateral, in one operation.

        Burning first lets the health check see the reduced debt.
        """
        with self._operation(
            "redeem_collateral_for_debt",
            f"{account} {collateral_amount} {asset}, {debt_amount} debt",
        ):
            self._require_more_than_zero(collateral_amount)
            self._require_more_than_zero(debt_amount)
            self._require_allowed(asset)
            self._burn_debt(account, account, debt_amount)
            self._redeem_collateral(account, account, asset, collateral_amount)
            self._revert_if_health_factor_is_broken(account)

    def liquidate(
        self,
        liquidator: str,
        collateral_asset: str,
        user: str,
        debt_to_cover: int,
    ) -> None:
        """
        Repay part of an insolvent account's debt in exchange for its collateral.

        The liquidator pays debt_to_cover in synthetic tokens and receives the
        equivalent amount of collateral_asset plus LIQUIDATION_BONUS percent.

        Args:
            liquidator: Account paying the debt and receiving collateral
            collateral_asset: Collateral taken from user
            user: Account being liquidated
            debt_to_cover: Synthetic debt of user to repay (18 decimals)

        Raises:
            ZeroAmount: If debt_to_cover is not more than zero
            UnknownAsset: If collateral_asset is not registered
            HealthFactorNotBroken: If user is at or above MIN_HEALTH_FACTOR
            ArithmeticUnderflow: If user lacks the collateral or debt to cover
            HealthFactorNotImproved: If user's health factor does not increase
            HealthFactorBroken: If liquidator is insolvent afterwards
            TransferFailed: If the liquidator's tokens cannot be pulled
            BurnFailed: If the token refuses to burn the covered debt
        """
        with self._operation(
            "liquidate", f"{liquidator} covers {debt_to_cover} of {user} in {collateral_asset}"
        ):
            self._require_more_than_zero(debt_to_cover)
            self._require_allowed(collateral_asset)

            starting_factor = self.health_factor(user)
            if starting_factor >= MIN_HEALTH_FACTOR:
                raise HealthFactorNotBroken(starting_factor)

            token_amount = self.usd_to_token_amount(collateral_asset, debt_to_cover)
            bonus = calculate_liquidation_bonus(token_amount)
            self._redeem_collateral(
                user, liquidator, collateral_asset, checked_add(token_amount, bonus)
            )
            self._burn_debt(user, liquidator, debt_to_cover)

            ending_factor = self.health_factor(user)
            if ending_factor <= starting_factor:
                raise HealthFactorNotImproved(starting_factor, ending_factor)
            self._revert_if_health_factor_is_broken(liquidator)

    # ========================================================================
    # INTERNAL PRIMITIVES
    # ========================================================================

    def _deposit_collateral(self, account: str, asset: str, amount: int) -> None:
        self._require_more_than_zero(amount)
        self._require_allowed(asset)

        balance = self.get_collateral_balance(account, asset)
        self._write_collateral(account, asset, checked_add(balance, amount))
        self._emit(CollateralDeposited(account, asset, amount))

        handle = self.registry.assets[asset]

        def pull() -> None:
            if not handle.transfer_from(account, self.name, amount):
                raise TransferFailed(f"{asset}: transfer of {amount} from {account} failed")

        def give_back() -> None:
            if not handle.transfer(account, amount):
                raise TransferFailed(f"{asset}: returning {amount} to {account} failed")

        # Collateral that cannot be returned stays credited to its owner
        def keep_credit() -> None:
            balance = self.get_collateral_balance(account, asset)
            self._write_collateral(account, asset, checked_add(balance, amount))
            self._emit(CollateralDeposited(account, asset, amount))

        self._interact(
            f"pull {amount} {asset} from {account}", PHASE_PULL, pull, give_back, keep_credit
        )

    def _redeem_collateral(self, redeemed_from: str, redeemed_to: str, asset: str, amount: int) -> None:
        balance = self.get_collateral_balance(redeemed_from, asset)
        self._write_collateral(redeemed_from, asset, checked_sub(balance, amount))
        self._emit(CollateralRedeemed(redeemed_from, redeemed_to, asset, amount))

        handle = self.registry.assets[asset]

        def push() -> None:
            if not handle.transfer(redeemed_to, amount):
                raise TransferFailed(f"{asset}: transfer of {amount} to {redeemed_to} failed")

        self._interact(f"send {amount} {asset} to {redeemed_to}", PHASE_PUSH, push)

    def _mint_debt(self, account: str, amount: int) -> None:
        self._require_more_than_zero(amount)

        # Recorded provisionally; the health check decides whether it is realized
        self._write_debt(account, checked_add(self.get_debt(account), amount))
        self._revert_if_health_factor_is_broken(account)

        token = self.synthetic_token

        def mint() -> None:
            if not token.mint(account, amount):
                raise MintFailed(f"Mint of {amount} to {account} failed")

        self._interact(f"mint {amount} to {account}", PHASE_PUSH, mint)

    def _burn_debt(self, on_behalf_of: str, payer: str, amount: int) -> None:
        self._write_debt(on_behalf_of, checked_sub(self.get_debt(on_behalf_of), amount))

        token = self.synthetic_token

        def pull() -> None:
            if not token.transfer_from(payer, self.name, amount):
                raise TransferFailed(f"Synthetic transfer of {amount} from {payer} failed")

        def give_back() -> None:
            if not token.transfer(payer, amount):
                raise TransferFailed(f"Returning {amount} synthetic to {payer} failed")

        def burn() -> None:
            try:
                token.burn(amount)
            except Exception as e:
                raise BurnFailed(f"Burn of {amount} paid by {payer} failed") from e

        # Undoing the burn restores the pulled tokens to custody
        def reissue() -> None:
            if not token.mint(self.name, amount):
                raise MintFailed(f"Re-minting {amount} into custody failed")

        # Debt whose burn cannot be undone stays retired
        def keep_retirement() -> None:
            self._write_debt(on_behalf_of, checked_sub(self.get_debt(on_behalf_of), amount))

        # Stable sort keeps the pull ahead of the burn
        self._interact(f"pull {amount} synthetic from {payer}", PHASE_PULL, pull, give_back)
        self._interact(f"burn {amount} paid by {payer}", PHASE_PULL, burn, reissue, keep_retirement)

    def _revert_if_health_factor_is_broken(self, account: str) -> None:
        factor = self.health_factor(account)
        if factor < MIN_HEALTH_FACTOR:
            raise HealthFactorBroken(factor, account)

    @staticmethod
    def _require_more_than_zero(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise TypeError(f"amount must be an int, got {type(amount).__name__}")
        if amount <= 0:
            raise ZeroAmount(f"Amount must be more than zero, got {amount}")
        if amount > UINT256_MAX:
            raise ArithmeticOverflow(f"Amount {amount} exceeds UINT256_MAX")

    def _require_allowed(self, asset: str) -> None:
        if asset not in self.registry:
            raise UnknownAsset(asset)

    # ========================================================================
    # ATOMICITY
    # ========================================================================

    @contextmanager
    def _operation(self, operation: str, detail: str) -> Iterator[None]:
        """
        Run one public operation as an atomic, non-reentrant unit of work.

        The guard is released on every exit path. On failure, ledger writes
        are undone, the operation's events are dropped and settled
        interactions are compensated before the exception propagates.
        BaseException is handled too, so an interrupt mid-settlement still
        rolls back.
        """
        if self._entered is not None:
            raise ReentrantCall(operation)
        self._entered = operation
        self._journal = []
        self._interactions = []
        self._stranded = []
        events_before = len(self.event_log)
        try:
            yield
            self._settle()
        except BaseException as e:
            self._rollback(events_before)
            if self.verbose:
                print(f"✗ REJECTED: {operation} ({detail}): {type(e).__name__}: {e}")
            raise
        finally:
            self._entered = None
            self._journal = []
            self._interactions = []
            self._stranded = []

        if self.verbose:
            print(f"✓ {operation}: {detail}")

    def _write_collateral(self, account: str, asset: str, value: int) -> None:
        balances = self.collateral.setdefault(account, {})
        self._journal.append(("collateral", account, asset, balances.get(asset)))
        balances[asset] = value

    def _write_debt(self, account: str, value: int) -> None:
        self._journal.append(("debt", account, None, self.debt.get(account)))
        self.debt[account] = value

    def _emit(self, event: EngineEvent) -> None:
        self.event_log.append(event)

    def _interact(
        self,
        description: str,
        phase: int,
        run: Callable[[], None],
        undo: Optional[Callable[[], None]] = None,
        retain: Optional[Callable[[], None]] = None,
    ) -> None:
        self._interactions.append(Interaction(description, phase, run, undo, retain))

    def _settle(self) -> None:
        """
        Run queued interactions in phase order, compensating on failure.

        Compensations run in reverse order, each one even if an earlier one
        failed. Interactions that could not be compensated are kept in
        _stranded, and the original error is re-raised with the first
        compensation failure as its cause.
        """
        completed: List[Interaction] = []
        try:
            for interaction in sorted(self._interactions, key=lambda i: i.phase):
                interaction.run()
                completed.append(interaction)
        except BaseException as error:
            undo_errors: List[Exception] = []
            for interaction in reversed(completed):
                if interaction.undo is None:
                    continue
                try:
                    interaction.undo()
                except Exception as undo_error:
                    undo_errors.append(undo_error)
                    self._stranded.append(interaction)
            if undo_errors:
                raise error from undo_errors[0]
            raise

    def _rollback(self, events_before: int) -> None:
        """
        Restore ledgers and event log to their state before the operation.

        Stranded interactions then re-record their ledger effect, so the
        engine keeps agreeing with collaborators that could not be restored.
        """
        for kind, account, asset, old in reversed(self._journal):
            if kind == "collateral":
                balances = self.collateral[account]
                if old is None:
                    del balances[asset]
                    if not balances:
                        del self.collateral[account]
                else:
                    balances[asset] = old
            elif old is None:
                del self.debt[account]
            else:
                self.debt[account] = old
        del self.event_log[events_before:]

        for interaction in self._stranded:
            if self.verbose:
                print(f"⚠ Compensation failed: {interaction.description}")
            if interaction.retain is not None:
                interaction.retain()

    def __repr__(self) -> str:
        return (
            f"SolvencyEngine({self.name}, {len(self.registry)} collateral assets, "
            f"{len(self.list_accounts())} accounts, total debt {self.total_debt()})"
        )
