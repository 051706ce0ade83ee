"""
fakes.py - Test doubles for engine collaborators

Provides misbehaving tokens for testing failure and re-entry paths without
touching the real FungibleToken/DebtTokenLedger code paths.
"""

from __future__ import annotations
from typing import Callable, Optional

from stableledger import DebtTokenLedger, FungibleToken


class FailingToken(FungibleToken):
    """
    Token whose transfers can be switched to fail.

    Example:
        token = FailingToken("BAD", "Bad Token")
        token.fail_transfer_from = "false"   # return False
        token.fail_transfer = "raise"        # raise RuntimeError
    """

    def __init__(self, symbol: str, name: str = "Failing Token"):
        super().__init__(symbol, name)
        self.fail_transfer: Optional[str] = None
        self.fail_transfer_from: Optional[str] = None

    def transfer(self, sender, recipient, amount):
        if self.fail_transfer == "raise":
            raise RuntimeError("transfer exploded")
        if self.fail_transfer == "false":
            return False
        return super().transfer(sender, recipient, amount)

    def transfer_from(self, spender, owner, recipient, amount):
        if self.fail_transfer_from == "raise":
            raise RuntimeError("transfer_from exploded")
        if self.fail_transfer_from == "false":
            return False
        return super().transfer_from(spender, owner, recipient, amount)


class ReentrantToken(FungibleToken):
    """
    Token that calls back into the engine during a transfer.

    `hook` is invoked once, from inside transfer/transfer_from, before the
    balances move. Whatever the hook raises propagates into the engine.
    """

    def __init__(self, symbol: str, name: str = "Reentrant Token"):
        super().__init__(symbol, name)
        self.hook: Optional[Callable[[], None]] = None

    def _fire(self):
        hook, self.hook = self.hook, None
        if hook is not None:
            hook()

    def transfer(self, sender, recipient, amount):
        self._fire()
        return super().transfer(sender, recipient, amount)

    def transfer_from(self, spender, owner, recipient, amount):
        self._fire()
        return super().transfer_from(spender, owner, recipient, amount)


class RefusingDebtToken(DebtTokenLedger):
    """Debt token whose mint returns False (or raises) when told to."""

    def __init__(self, minter: str):
        super().__init__(minter)
        self.refuse: Optional[str] = None

    def mint(self, caller, to, amount):
        if self.refuse == "raise":
            raise RuntimeError("mint exploded")
        if self.refuse == "false":
            return False
        return super().mint(caller, to, amount)
