"""
tokens.py - In-memory fungible tokens

FungibleToken implements the Token protocol for collateral assets.
DebtTokenLedger adds supply changes (mint/burn) gated to a single minter,
which is the engine's custody address. The gate is enforced here, by the
token, not by the engine.

Balances are integers in the token's smallest unit. transfer/transfer_from
return False on insufficient balance or allowance and leave state untouched.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Any, Dict, Tuple

from .core import InvalidAmount, Unauthorized


class FungibleToken:
    """
    Standard fungible asset with balances and allowances.

    Example:
        weth = FungibleToken("WETH", "Wrapped Ether")
        weth.faucet("alice", to_units(10))
        weth.approve("alice", "engine", to_units(10))
        weth.transfer_from("engine", "alice", "engine", to_units(10))
    """

    def __init__(self, symbol: str, name: str, decimals: int = 18):
        if not symbol or not symbol.strip():
            raise ValueError("Token symbol cannot be empty")
        self.symbol = symbol
        self.name = name
        self.decimals = decimals
        self.balances: Dict[str, int] = defaultdict(int)
        self.allowances: Dict[Tuple[str, str], int] = defaultdict(int)
        self._supply = 0

    # ========================================================================
    # READS
    # ========================================================================

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def total_supply(self) -> int:
        return self._supply

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Check that the tracked supply equals the sum of all balances.

        Accounts are sorted before summation for deterministic accumulation.

        Returns:
            Dict with 'valid', 'supply' and 'sum_of_balances'
        """
        total = sum(self.balances[a] for a in sorted(self.balances))
        return {
            'valid': total == self._supply,
            'supply': self._supply,
            'sum_of_balances': total,
        }

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def faucet(self, account: str, amount: int) -> None:
        """Create tokens out of thin air (test and simulation funding)."""
        self._require_non_negative(amount)
        self.balances[account] += amount
        self._supply += amount

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        self._require_non_negative(amount)
        self.allowances[(owner, spender)] = amount
        return True

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        self._require_non_negative(amount)
        if self.balances.get(sender, 0) < amount:
            return False
        self._move(sender, recipient, amount)
        return True

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> bool:
        self._require_non_negative(amount)
        allowed = self.allowances.get((owner, spender), 0)
        if allowed < amount or self.balances.get(owner, 0) < amount:
            return False
        self.allowances[(owner, spender)] = allowed - amount
        self._move(owner, recipient, amount)
        return True

    def _move(self, source: str, dest: str, amount: int) -> None:
        self.balances[source] -= amount
        self.balances[dest] += amount

    @staticmethod
    def _require_non_negative(amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Token amount cannot be negative, got {amount}")

    def __repr__(self):
        return f"{type(self).__name__}({self.symbol}, supply={self._supply}, holders={len(self.balances)})"


class DebtTokenLedger(FungibleToken):
    """
    Dollar-pegged debt token. Only `minter` may mint or burn.

    burn() destroys tokens from the caller's own balance, so the engine must
    first pull a payer's tokens into its custody and then burn them.
    """

    def __init__(self, minter: str, symbol: str = "DSC", name: str = "Decentralized Stable Coin"):
        super().__init__(symbol, name, decimals=18)
        self.minter = minter

    def mint(self, caller: str, to: str, amount: int) -> bool:
        self._require_minter(caller)
        if amount <= 0:
            raise InvalidAmount(f"Mint amount must be positive, got {amount}")
        if not to or not to.strip():
            raise ValueError("Mint recipient cannot be empty")
        self.balances[to] += amount
        self._supply += amount
        return True

    def burn(self, caller: str, amount: int) -> None:
        self._require_minter(caller)
        if amount <= 0:
            raise InvalidAmount(f"Burn amount must be positive, got {amount}")
        if self.balances.get(caller, 0) < amount:
            raise InvalidAmount(
                f"Burn amount {amount} exceeds balance {self.balances.get(caller, 0)}"
            )
        self.balances[caller] -= amount
        self._supply -= amount

    def _require_minter(self, caller: str) -> None:
        if caller != self.minter:
            raise Unauthorized(f"{caller} is not the minter of {self.symbol}")
