"""
test_tokens.py - Unit tests for FungibleToken and DebtTokenLedger
"""

import pytest

from stableledger import FungibleToken, DebtTokenLedger, InvalidAmount, Unauthorized


@pytest.fixture
def token():
    t = FungibleToken("WETH", "Wrapped Ether")
    t.faucet("alice", 100)
    return t


class TestFungibleToken:

    def test_faucet_creates_supply(self, token):
        assert token.balance_of("alice") == 100
        assert token.total_supply() == 100

    def test_transfer(self, token):
        assert token.transfer("alice", "bob", 30)
        assert token.balance_of("alice") == 70
        assert token.balance_of("bob") == 30

    def test_transfer_insufficient_returns_false(self, token):
        assert not token.transfer("alice", "bob", 101)
        assert token.balance_of("alice") == 100

    def test_transfer_from_spends_allowance(self, token):
        token.approve("alice", "engine", 50)
        assert token.transfer_from("engine", "alice", "engine", 40)
        assert token.allowance("alice", "engine") == 10
        assert token.balance_of("engine") == 40

    def test_transfer_from_without_allowance_returns_false(self, token):
        assert not token.transfer_from("engine", "alice", "engine", 1)

    def test_negative_amount_raises(self, token):
        with pytest.raises(ValueError):
            token.transfer("alice", "bob", -1)

    def test_empty_symbol_rejected(self):
        with pytest.raises(ValueError):
            FungibleToken("", "Nothing")

    def test_conservation(self, token):
        token.transfer("alice", "bob", 10)
        report = token.verify_conservation()
        assert report['valid']
        assert report['supply'] == report['sum_of_balances'] == 100


class TestDebtTokenLedger:

    def test_only_minter_mints(self):
        dsc = DebtTokenLedger(minter="engine")
        with pytest.raises(Unauthorized):
            dsc.mint("alice", "alice", 1)
        assert dsc.mint("engine", "alice", 5)
        assert dsc.total_supply() == 5

    def test_mint_zero_rejected(self):
        dsc = DebtTokenLedger(minter="engine")
        with pytest.raises(InvalidAmount):
            dsc.mint("engine", "alice", 0)

    def test_burn_from_own_balance(self):
        dsc = DebtTokenLedger(minter="engine")
        dsc.mint("engine", "engine", 10)
        dsc.burn("engine", 4)
        assert dsc.balance_of("engine") == 6
        assert dsc.total_supply() == 6

    def test_burn_more_than_balance_rejected(self):
        dsc = DebtTokenLedger(minter="engine")
        dsc.mint("engine", "engine", 1)
        with pytest.raises(InvalidAmount):
            dsc.burn("engine", 2)

    def test_only_minter_burns(self):
        dsc = DebtTokenLedger(minter="engine")
        dsc.mint("engine", "alice", 1)
        with pytest.raises(Unauthorized):
            dsc.burn("alice", 1)

    def test_defaults(self):
        dsc = DebtTokenLedger(minter="engine")
        assert dsc.symbol == "DSC"
        assert dsc.decimals == 18
