"""
test_position_lifecycle.py - End-to-end position scenarios

Walks a position from opening through a price crash to liquidation and
closing, checking balances, health factors and accounting at each stage.
"""

from datetime import timedelta

import pytest

from stableledger import (
    HealthFactorOk, MAX_HEALTH_FACTOR,
    EVENT_COLLATERAL_DEPOSITED, EVENT_COLLATERAL_REDEEMED,
    EVENT_DEBT_BURNED, EVENT_DEBT_MINTED, EVENT_LIQUIDATED,
    to_units,
)
from tests.conftest import START, approve_debt, build_engine


class TestOpenCrashLiquidate:

    def test_full_cycle(self):
        engine = build_engine()
        weth = engine.assets["WETH"].token
        dsc = engine.get_debt_token()
        feed = engine.get_collateral_price_feed("WETH")

        # 1. Open: 10 WETH at $2000, 100 DSC
        engine.deposit_collateral_and_mint("alice", "WETH", to_units(10), to_units(100))
        assert engine.get_health_factor("alice") == 100 * 10 ** 18

        # 2. Liquidator funds itself from a deep WBTC position
        engine.deposit_collateral_and_mint("liquidator", "WBTC", to_units(10), to_units(500))

        # 3. Next hour: WETH crashes to $18
        t1 = START + timedelta(hours=1)
        engine.advance_time(t1)
        feed.update_usd("18", t1)
        assert engine.get_health_factor("alice") == 9 * 10 ** 17

        # 4. Liquidate everything
        approve_debt(engine, "liquidator", to_units(100))
        seized = engine.liquidate("liquidator", "WETH", "alice", to_units(100))
        assert seized == 6_111_111_111_111_111_110
        assert weth.balance_of("liquidator") == to_units(1000) + seized

        # 5. alice is debt-free and takes back what is left
        assert engine.get_health_factor("alice") == MAX_HEALTH_FACTOR
        remaining = engine.get_collateral_balance("alice", "WETH")
        engine.redeem_collateral("alice", "WETH", remaining)
        assert weth.balance_of("alice") == to_units(990) + remaining

        # 6. Books balance; alice keeps the 100 DSC she minted
        assert engine.verify_accounting()['valid']
        assert dsc.balance_of("alice") == to_units(100)
        assert dsc.total_supply() == to_units(500)

        kinds = [e.kind for e in engine.event_log]
        assert kinds == [
            EVENT_COLLATERAL_DEPOSITED, EVENT_DEBT_MINTED,
            EVENT_COLLATERAL_DEPOSITED, EVENT_DEBT_MINTED,
            EVENT_DEBT_BURNED, EVENT_COLLATERAL_REDEEMED, EVENT_LIQUIDATED,
            EVENT_COLLATERAL_REDEEMED,
        ]
        assert engine.event_log[-2].counterparty == "liquidator"

    def test_recovered_price_stops_liquidation(self):
        engine = build_engine()
        feed = engine.get_collateral_price_feed("WETH")
        engine.deposit_collateral_and_mint("alice", "WETH", to_units(10), to_units(100))
        engine.deposit_collateral_and_mint("liquidator", "WBTC", to_units(10), to_units(500))

        feed.update_usd("18")
        assert engine.get_health_factor("alice") < engine.get_min_health_factor()
        feed.update_usd("25")
        approve_debt(engine, "liquidator", to_units(100))

        with pytest.raises(HealthFactorOk):
            engine.liquidate("liquidator", "WETH", "alice", to_units(100))


class TestSelfRepay:

    def test_repay_and_close(self):
        engine = build_engine()
        engine.deposit_collateral_and_mint("bob", "WBTC", to_units(4), to_units(1000))
        engine.deposit_collateral("bob", "WETH", to_units(1))
        assert engine.get_account_collateral_value("bob") == to_units(6000)

        approve_debt(engine, "bob", to_units(1000))
        engine.redeem_collateral_for_debt("bob", "WBTC", to_units(4), to_units(1000))
        engine.redeem_collateral("bob", "WETH", to_units(1))

        assert engine.get_account_information("bob").debt_minted == 0
        assert engine.get_account_collateral_value("bob") == 0
        assert engine.get_debt_token().total_supply() == 0
        assert engine.verify_accounting()['valid']
