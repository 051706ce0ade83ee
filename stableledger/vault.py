"""
vault.py - Collateral custody and the position store

CollateralVault owns the single mutable store of UserPositions (collateral
per asset and minted debt per owner). It is the only code that writes those
balances, and it only does so on instruction from the PositionEngine.

Every external transfer is checked: a False return and a raised error are
both reported as TransferFailed, and the bookkeeping change made just before
the transfer is rolled back.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .core import (
    CollateralMap, Token,
    EngineError, InvalidAmount, InvariantViolation, TransferFailed, UnregisteredAsset,
)


# Snapshot of the store: owner -> (collateral copy, debt)
StoreSnapshot = Dict[str, Tuple[CollateralMap, int]]


@dataclass(slots=True)
class UserPosition:
    """
    Collateral and debt of a single owner.

    Created lazily on first deposit or mint and never destroyed; an empty
    position is just a record with no collateral and no debt.
    """
    owner: str
    collateral: CollateralMap = field(default_factory=dict)
    debt_minted: int = 0

    def is_empty(self) -> bool:
        return self.debt_minted == 0 and not any(self.collateral.values())


def checked_call(description: str, call: Callable[..., bool], *args) -> None:
    """
    Invoke an external token call and treat False like a raised failure.

    Engine errors (e.g. a re-entry rejected by the guard) propagate as they
    are; anything else raised by the collaborator becomes TransferFailed.
    """
    try:
        ok = call(*args)
    except EngineError:
        raise
    except Exception as exc:
        raise TransferFailed(f"{description}: {exc}") from exc
    if not ok:
        raise TransferFailed(f"{description} returned False")


class CollateralVault:
    """
    Per-user, per-asset collateral ledger plus custody transfers.

    Args:
        tokens: asset id -> token contract for each registered asset
        custody: account that holds deposited assets (the engine address)
    """

    def __init__(self, tokens: Mapping[str, Token], custody: str):
        self.tokens: Dict[str, Token] = dict(tokens)
        self.custody = custody
        self.positions: Dict[str, UserPosition] = {}

    # ========================================================================
    # READS
    # ========================================================================

    def has_position(self, owner: str) -> bool:
        return owner in self.positions

    def get_balance(self, owner: str, asset_id: str) -> int:
        self._require_asset(asset_id)
        position = self.positions.get(owner)
        if position is None:
            return 0
        return position.collateral.get(asset_id, 0)

    def collateral_of(self, owner: str) -> CollateralMap:
        """Copy of an owner's collateral balances (empty if no position)."""
        position = self.positions.get(owner)
        return dict(position.collateral) if position else {}

    def debt_of(self, owner: str) -> int:
        position = self.positions.get(owner)
        return position.debt_minted if position else 0

    def owners(self) -> List[str]:
        return sorted(self.positions)

    def total_collateral(self, asset_id: str) -> int:
        """Sum of all owners' balances of one asset (owners sorted for determinism)."""
        self._require_asset(asset_id)
        return sum(self.positions[o].collateral.get(asset_id, 0) for o in sorted(self.positions))

    def total_debt(self) -> int:
        return sum(self.positions[o].debt_minted for o in sorted(self.positions))

    # ========================================================================
    # COLLATERAL MOVEMENTS
    # ========================================================================

    def deposit(self, user: str, asset_id: str, amount: int) -> None:
        """
        Credit `amount` to the user's balance and pull the asset into custody.

        Repeated deposits accumulate. If the pull fails the credit is undone.

        Raises:
            InvalidAmount: amount <= 0
            UnregisteredAsset: asset not approved
            TransferFailed: token refused the pull
        """
        if amount <= 0:
            raise InvalidAmount(f"Deposit amount must be positive, got {amount}")
        self._require_asset(asset_id)

        created = user not in self.positions
        self._credit(user, asset_id, amount)
        try:
            checked_call(
                f"pull {amount} {asset_id} from {user}",
                self.tokens[asset_id].transfer_from, self.custody, user, self.custody, amount,
            )
        except Exception:
            self._debit(user, asset_id, amount)
            if created and self.positions[user].is_empty():
                del self.positions[user]
            raise

    def withdraw(
        self,
        user: str,
        asset_id: str,
        amount: int,
        check: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Debit the user's balance and send the asset back to them.

        `check` runs after the debit and before the transfer, against the
        resulting balances; if it raises, the debit is undone.

        Raises:
            InvalidAmount: amount <= 0 or more than the balance
            UnregisteredAsset: asset not approved
            TransferFailed: token refused the transfer
        """
        self._release(user, user, asset_id, amount, check)

    def seize(
        self,
        from_user: str,
        to: str,
        asset_id: str,
        amount: int,
        check: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Move collateral out of `from_user`'s position directly to `to`.

        Used by liquidation: one debit and one transfer, with no deposit into
        the receiver's position in between.
        """
        self._release(from_user, to, asset_id, amount, check)

    def _release(
        self,
        owner: str,
        recipient: str,
        asset_id: str,
        amount: int,
        check: Optional[Callable[[], None]],
    ) -> None:
        if amount <= 0:
            raise InvalidAmount(f"Withdraw amount must be positive, got {amount}")
        balance = self.get_balance(owner, asset_id)
        if amount > balance:
            raise InvalidAmount(
                f"{owner} {asset_id}: withdraw {amount} exceeds balance {balance}"
            )

        self._debit(owner, asset_id, amount)
        try:
            if check is not None:
                check()
            checked_call(
                f"send {amount} {asset_id} to {recipient}",
                self.tokens[asset_id].transfer, self.custody, recipient, amount,
            )
        except Exception:
            self._credit(owner, asset_id, amount)
            raise

    # ========================================================================
    # DEBT BOOKKEEPING
    # ========================================================================

    def add_debt(self, owner: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount(f"Debt amount must be positive, got {amount}")
        self._position(owner).debt_minted += amount

    def remove_debt(self, owner: str, amount: int) -> None:
        position = self._position(owner)
        if amount > position.debt_minted:
            raise InvariantViolation(
                f"{owner}: removing {amount} debt exceeds minted {position.debt_minted}"
            )
        position.debt_minted -= amount

    # ========================================================================
    # SNAPSHOT / RESTORE
    # ========================================================================

    def snapshot(self) -> StoreSnapshot:
        """Copy of the whole store, for rolling back a failed operation."""
        return {
            owner: (dict(p.collateral), p.debt_minted)
            for owner, p in self.positions.items()
        }

    def restore(self, snapshot: StoreSnapshot) -> None:
        """Replace the store with a snapshot. Positions created since are dropped."""
        self.positions = {
            owner: UserPosition(owner, dict(collateral), debt)
            for owner, (collateral, debt) in snapshot.items()
        }

    # ========================================================================
    # INTERNAL
    # ========================================================================

    def _position(self, owner: str) -> UserPosition:
        position = self.positions.get(owner)
        if position is None:
            position = UserPosition(owner)
            self.positions[owner] = position
        return position

    def _credit(self, owner: str, asset_id: str, amount: int) -> None:
        collateral = self._position(owner).collateral
        collateral[asset_id] = collateral.get(asset_id, 0) + amount

    def _debit(self, owner: str, asset_id: str, amount: int) -> None:
        collateral = self._position(owner).collateral
        new_balance = collateral.get(asset_id, 0) - amount
        if new_balance < 0:
            raise InvariantViolation(f"{owner} {asset_id}: balance would become {new_balance}")
        collateral[asset_id] = new_balance

    def _require_asset(self, asset_id: str) -> None:
        if asset_id not in self.tokens:
            raise UnregisteredAsset(f"Asset {asset_id} not registered")

    def __repr__(self):
        return f"CollateralVault({len(self.positions)} positions, {len(self.tokens)} assets, custody={self.custody})"
