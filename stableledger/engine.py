"""
engine.py - Stateful collateralized-debt engine

PositionEngine is the central state manager. It is the only entry point that
mutates positions, ensuring controlled and auditable changes.

Key responsibilities:
    - Deposits, redemptions, minting, burning and liquidation of positions
    - Executes every operation atomically (all steps succeed or none are visible)
    - Verifies health factors on the resulting state before any irreversible
      external effect
    - Holds an engine-wide re-entry guard for the duration of each operation
    - Always logs: every committed operation is recorded in the audit trail

Atomicity:
    Each operation snapshots the position store on entry. Effects on external
    tokens that can be undone by the engine (pulling tokens into custody,
    burning custody tokens) register a compensation. On any failure the
    compensations run in reverse, the snapshot is restored, and the error is
    re-raised to the caller. Irreversible effects (sending tokens out of
    custody, minting to a user) are always the last step of an operation.
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from .core import (
    # Types
    AccountInfo, AssetConfig, EngineEvent,
    DebtToken, PriceFeed, Token,
    # Constants
    PRECISION, ADDITIONAL_FEED_PRECISION,
    LIQUIDATION_THRESHOLD_PCT, LIQUIDATION_BONUS_PCT, LIQUIDATION_PRECISION,
    MIN_HEALTH_FACTOR, STALENESS_WINDOW, DEFAULT_ENGINE_ADDRESS,
    EVENT_COLLATERAL_DEPOSITED, EVENT_COLLATERAL_REDEEMED,
    EVENT_DEBT_MINTED, EVENT_DEBT_BURNED, EVENT_LIQUIDATED,
    # Exceptions
    ConfigMismatch, EngineError, HealthFactorBroken, HealthFactorNotImproved,
    HealthFactorOk, InvalidAmount, InvariantViolation, MintFailed, ReentrancyDetected,
    UnregisteredAsset,
    # Helpers
    format_health_factor, from_units,
)
from .calculator import SolvencyCalculator, health_factor as calculate_health_factor_pure
from .oracle import PriceOracleAdapter
from .vault import CollateralVault, checked_call


class _Operation:
    """Bookkeeping for one in-flight engine operation."""

    def __init__(self, name: str):
        self.name = name
        self.events: List[Dict[str, Any]] = []
        self.compensations: List[Tuple[str, Callable[[], None]]] = []

    def emit(self, kind: str, user: str, amount: int, **fields) -> None:
        self.events.append({'kind': kind, 'user': user, 'amount': amount, **fields})

    def on_rollback(self, description: str, undo: Callable[[], None]) -> None:
        self.compensations.append((description, undo))


class PositionEngine:
    """
    Collateralized-debt engine with full validation and audit trail.

    Users lock approved collateral and mint the debt token against it while
    their health factor stays at or above MIN_HEALTH_FACTOR. Anyone may
    liquidate a position whose health factor has fallen below it.

    Design Principles:
        - Always validates: every operation checks amounts, assets, prices and
          the resulting health factor. No shortcuts.
        - Always logs: every committed operation appends EngineEvents to
          event_log. Rejected operations leave no trace.

    Thread Safety:
        Not thread-safe. Operations are strictly sequential; a nested call
        into any mutating entry point raises ReentrancyDetected.

    Example:
        engine = PositionEngine([weth], [eth_usd_feed], dsc, verbose=False)
        weth.approve("alice", engine.address, to_units(10))
        engine.deposit_collateral_and_mint("alice", "WETH", to_units(10), to_units(100))
    """

    LIQUIDATION_THRESHOLD = LIQUIDATION_THRESHOLD_PCT
    LIQUIDATION_BONUS = LIQUIDATION_BONUS_PCT
    LIQUIDATION_PRECISION = LIQUIDATION_PRECISION
    MIN_HEALTH_FACTOR = MIN_HEALTH_FACTOR
    PRECISION = PRECISION
    ADDITIONAL_FEED_PRECISION = ADDITIONAL_FEED_PRECISION

    def __init__(
        self,
        collateral_tokens: Sequence[Token],
        price_feeds: Sequence[PriceFeed],
        debt_token: DebtToken,
        name: str = "main",
        address: str = DEFAULT_ENGINE_ADDRESS,
        initial_time: Optional[datetime] = None,
        staleness_window: timedelta = STALENESS_WINDOW,
        verbose: bool = True,
    ):
        """
        Create an engine.

        Args:
            collateral_tokens: Approved collateral tokens; each token's symbol is its asset id
            price_feeds: USD feeds, in the same order as collateral_tokens
            debt_token: Token the engine mints; the engine address must be its minter
            name: Engine name (display only)
            address: Custody account of the engine
            initial_time: Starting logical time (default: 1970-01-01)
            staleness_window: Maximum accepted price age
            verbose: Print one line per applied or rejected operation (default: True)

        Raises:
            ConfigMismatch: list lengths differ, no assets, or duplicate asset ids
        """
        if len(collateral_tokens) != len(price_feeds):
            raise ConfigMismatch(
                f"{len(collateral_tokens)} collateral tokens but {len(price_feeds)} price feeds"
            )
        if not collateral_tokens:
            raise ConfigMismatch("At least one collateral asset is required")
        symbols = [token.symbol for token in collateral_tokens]
        if len(set(symbols)) != len(symbols):
            raise ConfigMismatch(f"Duplicate collateral asset ids: {symbols}")

        self.name = name
        self.address = address
        self.debt_token = debt_token
        self.verbose = verbose
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)

        self.assets: Dict[str, AssetConfig] = {
            token.symbol: AssetConfig(token.symbol, feed, token)
            for token, feed in zip(collateral_tokens, price_feeds)
        }
        self.oracle = PriceOracleAdapter(
            {asset_id: cfg.price_feed for asset_id, cfg in self.assets.items()},
            clock=lambda: self._current_time,
            staleness_window=staleness_window,
        )
        self.calculator = SolvencyCalculator(self.oracle)
        self.vault = CollateralVault(
            {asset_id: cfg.token for asset_id, cfg in self.assets.items()},
            custody=address,
        )

        self.event_log: List[EngineEvent] = []
        self._next_sequence: int = 0
        self._in_progress: Optional[str] = None

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the engine (used to judge price freshness)."""
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the engine's logical clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
            ReentrancyDetected: If called while an operation is in progress
        """
        if self._in_progress is not None:
            raise ReentrancyDetected(f"advance_time during {self._in_progress}")
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # OPERATION FRAME (guard + atomicity + audit)
    # ========================================================================

    @contextmanager
    def _operation(self, name: str, summary: str) -> Iterator[_Operation]:
        if self._in_progress is not None:
            raise ReentrancyDetected(f"{name} called during {self._in_progress}")
        self._in_progress = name
        op = _Operation(name)
        snapshot = self.vault.snapshot()
        try:
            yield op
        except Exception as exc:
            self._rollback(op, snapshot, exc)
            if self.verbose:
                print(f"✗ REJECTED: {name} {summary}: {type(exc).__name__}: {exc}")
            raise
        else:
            self._commit(op)
            if self.verbose:
                print(f"✓ APPLIED: {name} {summary}")
        finally:
            self._in_progress = None

    def _rollback(self, op: _Operation, snapshot, cause: Exception) -> None:
        failures = []
        for description, undo in reversed(op.compensations):
            try:
                undo()
            except Exception as exc:
                failures.append(f"{description}: {exc}")
        self.vault.restore(snapshot)
        if failures:
            raise InvariantViolation(
                f"{op.name} could not be fully unwound: {'; '.join(failures)}"
            ) from cause

    def _commit(self, op: _Operation) -> None:
        for fields in op.events:
            self.event_log.append(EngineEvent(
                timestamp=self._current_time,
                sequence=self._next_sequence,
                **fields,
            ))
            self._next_sequence += 1

    # ========================================================================
    # PUBLIC OPERATIONS (Mutating)
    # ========================================================================

    def deposit_collateral(self, user: str, asset_id: str, amount: int) -> None:
        """
        Lock `amount` of `asset_id` as collateral for `user`.

        The user must have approved the engine address on the asset token.
        Deposits can only improve the health factor, so none is checked.

        Raises:
            InvalidAmount, UnregisteredAsset, TransferFailed
        """
        with self._operation("deposit_collateral", f"{user} {from_units(amount)} {asset_id}") as op:
            self._deposit(op, user, asset_id, amount)

    def mint(self, user: str, amount: int) -> None:
        """
        Mint `amount` of debt token to `user` against their collateral.

        Raises:
            InvalidAmount: amount <= 0
            HealthFactorBroken: resulting health factor below minimum
            MintFailed: debt token refused the mint
            StalePrice, InvalidPrice: collateral could not be priced
        """
        with self._operation("mint", f"{user} {from_units(amount)}") as op:
            self._mint(op, user, amount)

    def redeem_collateral(self, user: str, asset_id: str, amount: int) -> None:
        """
        Withdraw `amount` of `asset_id` back to `user`.

        Raises:
            InvalidAmount: amount <= 0 or above the deposited balance
            HealthFactorBroken: resulting health factor below minimum
            UnregisteredAsset, TransferFailed, StalePrice, InvalidPrice
        """
        with self._operation("redeem_collateral", f"{user} {from_units(amount)} {asset_id}") as op:
            self._redeem(op, user, user, asset_id, amount)

    def burn(self, user: str, amount: int) -> None:
        """
        Repay `amount` of `user`'s debt with their own debt tokens.

        The user must have approved the engine address on the debt token.

        Raises:
            InvalidAmount: amount <= 0 or above the user's minted debt
            TransferFailed: tokens could not be pulled
        """
        with self._operation("burn", f"{user} {from_units(amount)}") as op:
            self._burn(op, on_behalf_of=user, payer=user, amount=amount)
            # Burning only raises the health factor; checked anyway.
            self._require_healthy(user)

    def deposit_collateral_and_mint(
        self,
        user: str,
        asset_id: str,
        collateral_amount: int,
        mint_amount: int,
    ) -> None:
        """Deposit collateral and mint in one step. If minting fails the deposit is undone."""
        summary = f"{user} {from_units(collateral_amount)} {asset_id} -> {from_units(mint_amount)}"
        with self._operation("deposit_collateral_and_mint", summary) as op:
            self._deposit(op, user, asset_id, collateral_amount)
            self._mint(op, user, mint_amount)

    def redeem_collateral_for_debt(
        self,
        user: str,
        asset_id: str,
        collateral_amount: int,
        burn_amount: int,
    ) -> None:
        """Burn debt then redeem collateral in one step. If redeeming fails the burn is undone."""
        summary = f"{user} {from_units(burn_amount)} -> {from_units(collateral_amount)} {asset_id}"
        with self._operation("redeem_collateral_for_debt", summary) as op:
            self._burn(op, on_behalf_of=user, payer=user, amount=burn_amount)
            self._redeem(op, user, user, asset_id, collateral_amount)

    def liquidate(self, liquidator: str, asset_id: str, target: str, debt_to_cover: int) -> int:
        """
        Cover part or all of an unhealthy position's debt in exchange for its collateral.

        The liquidator pays `debt_to_cover` in debt tokens (approved to the
        engine) and receives collateral worth that much in USD plus
        LIQUIDATION_BONUS percent.

        Steps:
            1. debt_to_cover must be positive
            2. target's health factor must be below minimum
            3. seized = asset amount worth debt_to_cover, plus bonus
            4. the liquidator's tokens are burned against target's debt
            5. seized collateral leaves target's position for the liquidator
            6. target's health factor must have strictly improved
            7. the liquidator's own health factor must still be healthy

        Returns:
            Total collateral seized (base + bonus)

        Raises:
            InvalidAmount: debt_to_cover <= 0, above target debt, or seizing
                           more collateral than target holds in asset_id
            HealthFactorOk: target is healthy
            HealthFactorNotImproved: liquidation would not help target
            HealthFactorBroken: liquidator's own position ends unhealthy
        """
        summary = f"{target} by {liquidator} {from_units(debt_to_cover)} via {asset_id}"
        with self._operation("liquidate", summary) as op:
            if debt_to_cover <= 0:
                raise InvalidAmount(f"Debt to cover must be positive, got {debt_to_cover}")
            self._require_asset(asset_id)

            start_factor = self._health_factor(target)
            if start_factor >= MIN_HEALTH_FACTOR:
                raise HealthFactorOk(
                    f"{target} health factor {format_health_factor(start_factor)} is not liquidatable"
                )

            target_debt = self.vault.debt_of(target)
            if debt_to_cover > target_debt:
                raise InvalidAmount(f"Debt to cover {debt_to_cover} exceeds {target}'s debt {target_debt}")

            seized = self.calculator.asset_amount_for_usd(asset_id, debt_to_cover)
            bonus = seized * LIQUIDATION_BONUS_PCT // LIQUIDATION_PRECISION
            total_seized = seized + bonus
            if seized == 0:
                raise InvalidAmount(
                    f"Debt to cover {debt_to_cover} is worth less than one unit of {asset_id}"
                )
            available = self.vault.get_balance(target, asset_id)
            if total_seized > available:
                raise InvalidAmount(
                    f"Seizing {total_seized} {asset_id} exceeds {target}'s collateral {available}"
                )

            self._burn(op, on_behalf_of=target, payer=liquidator, amount=debt_to_cover)

            def verify_outcome() -> None:
                end_factor = self._health_factor(target)
                if end_factor <= start_factor:
                    raise HealthFactorNotImproved(
                        f"{target} health factor {format_health_factor(start_factor)} -> "
                        f"{format_health_factor(end_factor)}"
                    )
                self._require_healthy(liquidator)

            self.vault.seize(target, liquidator, asset_id, total_seized, check=verify_outcome)
            op.emit(EVENT_COLLATERAL_REDEEMED, target, total_seized,
                    asset_id=asset_id, counterparty=liquidator)
            op.emit(EVENT_LIQUIDATED, target, debt_to_cover, asset_id=asset_id,
                    counterparty=liquidator, collateral_amount=total_seized)
            return total_seized

    # ========================================================================
    # OPERATION STEPS (run inside an operation frame)
    # ========================================================================

    def _deposit(self, op: _Operation, user: str, asset_id: str, amount: int) -> None:
        self.vault.deposit(user, asset_id, amount)
        token = self.assets[asset_id].token
        op.on_rollback(
            f"refund {amount} {asset_id} to {user}",
            lambda: checked_call("refund", token.transfer, self.address, user, amount),
        )
        op.emit(EVENT_COLLATERAL_DEPOSITED, user, amount, asset_id=asset_id)

    def _mint(self, op: _Operation, user: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount(f"Mint amount must be positive, got {amount}")
        self.vault.add_debt(user, amount)
        self._require_healthy(user)
        try:
            minted = self.debt_token.mint(self.address, user, amount)
        except EngineError:
            raise
        except Exception as exc:
            raise MintFailed(f"mint {amount} to {user}: {exc}") from exc
        if not minted:
            raise MintFailed(f"mint {amount} to {user} returned False")
        op.emit(EVENT_DEBT_MINTED, user, amount)

    def _redeem(self, op: _Operation, owner: str, recipient: str, asset_id: str, amount: int) -> None:
        self.vault.withdraw(owner, asset_id, amount, check=lambda: self._require_healthy(owner))
        op.emit(EVENT_COLLATERAL_REDEEMED, owner, amount, asset_id=asset_id, counterparty=recipient)

    def _burn(self, op: _Operation, on_behalf_of: str, payer: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount(f"Burn amount must be positive, got {amount}")
        debt = self.vault.debt_of(on_behalf_of)
        if amount > debt:
            raise InvalidAmount(f"Burn amount {amount} exceeds {on_behalf_of}'s debt {debt}")

        self.vault.remove_debt(on_behalf_of, amount)
        checked_call(
            f"pull {amount} {self.debt_token.symbol} from {payer}",
            self.debt_token.transfer_from, self.address, payer, self.address, amount,
        )
        op.on_rollback(
            f"return {amount} {self.debt_token.symbol} to {payer}",
            lambda: checked_call("return", self.debt_token.transfer, self.address, payer, amount),
        )
        self.debt_token.burn(self.address, amount)
        op.on_rollback(
            f"re-mint {amount} {self.debt_token.symbol} to custody",
            lambda: checked_call("re-mint", self.debt_token.mint, self.address, self.address, amount),
        )
        op.emit(EVENT_DEBT_BURNED, on_behalf_of, amount, counterparty=payer)

    # ========================================================================
    # HEALTH CHECKS
    # ========================================================================

    def _health_factor(self, user: str) -> int:
        return self.calculator.position_health_factor(
            self.vault.debt_of(user), self.vault.collateral_of(user)
        )

    def _require_healthy(self, user: str) -> None:
        factor = self._health_factor(user)
        if factor < MIN_HEALTH_FACTOR:
            raise HealthFactorBroken(factor, user)

    def _require_asset(self, asset_id: str) -> None:
        if asset_id not in self.assets:
            raise UnregisteredAsset(f"Asset {asset_id} not registered")

    # ========================================================================
    # READ VIEWS
    # ========================================================================

    def calculate_health_factor(self, debt_minted: int, collateral_usd: int) -> int:
        """Health factor for explicit values. Pure; no prices are read."""
        return calculate_health_factor_pure(debt_minted, collateral_usd)

    def get_health_factor(self, user: str) -> int:
        return self._health_factor(user)

    def get_account_information(self, user: str) -> AccountInfo:
        """Debt and total collateral USD value of a position."""
        return AccountInfo(
            debt_minted=self.vault.debt_of(user),
            collateral_usd=self.get_account_collateral_value(user),
        )

    def get_account_collateral_value(self, user: str) -> int:
        return self.calculator.collateral_usd(self.vault.collateral_of(user))

    def get_collateral_balance(self, user: str, asset_id: str) -> int:
        return self.vault.get_balance(user, asset_id)

    def get_usd_value(self, asset_id: str, amount: int) -> int:
        return self.calculator.usd_value(asset_id, amount)

    def get_token_amount_from_usd(self, asset_id: str, usd_amount: int) -> int:
        return self.calculator.asset_amount_for_usd(asset_id, usd_amount)

    def get_collateral_tokens(self) -> List[str]:
        return list(self.assets)

    def get_collateral_price_feed(self, asset_id: str) -> PriceFeed:
        self._require_asset(asset_id)
        return self.assets[asset_id].price_feed

    def get_debt_token(self) -> DebtToken:
        return self.debt_token

    def get_precision(self) -> int:
        return self.PRECISION

    def get_additional_feed_precision(self) -> int:
        return self.ADDITIONAL_FEED_PRECISION

    def get_liquidation_threshold(self) -> int:
        return self.LIQUIDATION_THRESHOLD

    def get_liquidation_bonus(self) -> int:
        return self.LIQUIDATION_BONUS

    def get_liquidation_precision(self) -> int:
        return self.LIQUIDATION_PRECISION

    def get_min_health_factor(self) -> int:
        return self.MIN_HEALTH_FACTOR

    def list_positions(self) -> List[str]:
        """Owners that have ever deposited or minted, sorted."""
        return self.vault.owners()

    def verify_accounting(self) -> Dict[str, Any]:
        """
        Verify that the engine's books agree with the tokens it controls.

        Checks:
        1. Debt token supply equals the sum of all minted debt
        2. For every asset, custody holds exactly the sum of deposited balances

        Returns:
            Dict with keys:
            - 'valid': bool - True if all checks hold
            - 'total_debt': int - Sum of debt_minted over positions
            - 'debt_supply': int - Debt token total supply
            - 'discrepancies': List[Dict] - One entry per failed check
        """
        discrepancies = []
        total_debt = self.vault.total_debt()
        supply = self.debt_token.total_supply()
        if total_debt != supply:
            discrepancies.append({'check': 'debt_supply', 'expected': total_debt, 'actual': supply})
        for asset_id, cfg in self.assets.items():
            booked = self.vault.total_collateral(asset_id)
            held = cfg.token.balance_of(self.address)
            if booked != held:
                discrepancies.append({
                    'check': f'custody:{asset_id}', 'expected': booked, 'actual': held,
                })
        return {
            'valid': not discrepancies,
            'total_debt': total_debt,
            'debt_supply': supply,
            'discrepancies': discrepancies,
        }

    def __repr__(self):
        return (
            f"PositionEngine({self.name}, {self.address}, {len(self.assets)} assets, "
            f"{len(self.vault.positions)} positions, {len(self.event_log)} events)"
        )
