"""
test_engine_views.py - Unit tests for PositionEngine read views and prices

Tests:
- Risk parameter accessors
- USD conversions and account information
- Health factor views
- Price staleness and validity handling
"""

import pytest
from datetime import timedelta

from stableledger import (
    AccountInfo, InvalidPrice, StalePrice, UnregisteredAsset,
    MAX_HEALTH_FACTOR, STALENESS_WINDOW, to_units,
)
from tests.conftest import START


class TestRiskParameters:

    def test_accessors(self, engine):
        assert engine.get_precision() == 10 ** 18
        assert engine.get_additional_feed_precision() == 10 ** 10
        assert engine.get_liquidation_threshold() == 50
        assert engine.get_liquidation_bonus() == 10
        assert engine.get_liquidation_precision() == 100
        assert engine.get_min_health_factor() == 10 ** 18

    def test_collateral_registry(self, engine, eth_feed):
        assert engine.get_collateral_price_feed("WETH") is eth_feed
        assert engine.get_debt_token().symbol == "DSC"

    def test_unknown_feed_raises(self, engine):
        with pytest.raises(UnregisteredAsset):
            engine.get_collateral_price_feed("DOGE")


class TestConversions:

    def test_usd_value(self, engine):
        assert engine.get_usd_value("WETH", to_units(15)) == to_units(30_000)

    def test_token_amount_from_usd(self, engine):
        assert engine.get_token_amount_from_usd("WETH", to_units(100)) == to_units("0.05")

    def test_zero_amount_is_zero_usd(self, engine):
        assert engine.get_usd_value("WBTC", 0) == 0

    def test_account_collateral_value_sums_assets(self, engine):
        engine.deposit_collateral("alice", "WETH", to_units(1))
        engine.deposit_collateral("alice", "WBTC", to_units(1))
        assert engine.get_account_collateral_value("alice") == to_units(3000)

    def test_account_information(self, alice_position):
        info = alice_position.get_account_information("alice")
        assert info == AccountInfo(debt_minted=to_units(100), collateral_usd=to_units(20_000))

    def test_unknown_user_has_empty_account(self, engine):
        assert engine.get_account_information("nobody") == AccountInfo(0, 0)
        assert engine.get_collateral_balance("nobody", "WETH") == 0


class TestHealthFactorViews:

    def test_scenario_health_factor(self, alice_position):
        assert alice_position.get_health_factor("alice") == 100 * 10 ** 18

    def test_price_drop_health_factor(self, alice_position, eth_feed):
        eth_feed.update_usd("18")
        assert alice_position.get_health_factor("alice") == 9 * 10 ** 17

    def test_no_debt_is_max(self, engine):
        engine.deposit_collateral("bob", "WETH", to_units(1))
        assert engine.get_health_factor("bob") == MAX_HEALTH_FACTOR
        assert engine.get_health_factor("nobody") == MAX_HEALTH_FACTOR

    def test_calculate_health_factor_is_pure(self, engine):
        assert engine.calculate_health_factor(to_units(100), to_units(20_000)) == to_units(100)
        assert engine.calculate_health_factor(0, to_units(1)) == MAX_HEALTH_FACTOR


class TestPriceChecks:

    def test_price_fresh_at_window_edge(self, alice_position):
        engine = alice_position
        engine.advance_time(START + STALENESS_WINDOW)
        assert engine.get_health_factor("alice") == to_units(100)

    def test_stale_price_rejects_mint(self, alice_position):
        engine = alice_position
        engine.advance_time(START + STALENESS_WINDOW + timedelta(seconds=1))
        with pytest.raises(StalePrice):
            engine.mint("alice", to_units(1))

    def test_stale_price_rejects_views(self, engine):
        engine.advance_time(START + timedelta(days=1))
        with pytest.raises(StalePrice):
            engine.get_usd_value("WETH", to_units(1))

    def test_debt_free_redeem_works_while_stale(self, engine):
        engine.deposit_collateral("bob", "WETH", to_units(5))
        engine.advance_time(START + timedelta(days=1))
        engine.redeem_collateral("bob", "WETH", to_units(5))
        assert engine.get_collateral_balance("bob", "WETH") == 0

    def test_zero_price_rejected(self, alice_position, eth_feed):
        eth_feed.update(0)
        with pytest.raises(InvalidPrice):
            alice_position.mint("alice", to_units(1))

    def test_negative_price_rejected(self, engine, btc_feed):
        btc_feed.update(-1)
        with pytest.raises(InvalidPrice):
            engine.get_usd_value("WBTC", to_units(1))

    def test_refreshed_price_accepted(self, alice_position, eth_feed):
        engine = alice_position
        later = START + timedelta(days=1)
        engine.advance_time(later)
        eth_feed.update_usd("2000", later)
        engine.mint("alice", to_units(1))
        assert engine.get_account_information("alice").debt_minted == to_units(101)
