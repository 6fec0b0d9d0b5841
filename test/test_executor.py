"""
Tests for the liquidation executor.
"""

import asyncio
import time
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_abi import encode
from hexbytes import HexBytes

from app.seeker.codec import bid_details_hash, encode_bid_details
from app.seeker.exceptions import NoActiveBidError
from app.seeker.executor import LiquidationExecutor
from app.seeker.models import SimulationResult

TX_HASH = HexBytes(b"\x12" * 32)


@pytest.fixture()
def bid_manager():
    manager = MagicMock()
    manager.find_award = AsyncMock(return_value=None)
    return manager


@pytest.fixture()
def executor(config, contracts, store, account, bid_manager):
    contracts.multicall3.simulate_aggregate3_value = AsyncMock()
    contracts.multicall3.aggregate3_value = AsyncMock(return_value=TX_HASH)
    return LiquidationExecutor(config, contracts, store, account, bid_manager, notify=False)


def liquidation_result(profit_eth, profit_usd):
    return SimulationResult(
        success=True, returndata=(b"", encode(["uint256", "uint256"], [profit_eth, profit_usd]))
    )


def test_attempt_liquidation_without_bid(executor):
    with pytest.raises(NoActiveBidError):
        asyncio.run(executor.attempt_liquidation())


def test_expired_bid_is_cleared_without_award_check(executor, store, bid_manager, active_bid):
    store.set_active_bid(active_bid(expiration_timestamp=int(time.time()) - 1))

    assert asyncio.run(executor.attempt_liquidation()) is None

    assert store.get().currently_active_bid is None
    bid_manager.find_award.assert_not_awaited()


def test_bid_not_yet_awarded_stays_active(executor, store, bid_manager, active_bid):
    bid = active_bid()
    store.set_active_bid(bid)

    assert asyncio.run(executor.attempt_liquidation()) is None

    assert store.get().currently_active_bid == bid
    bid_manager.find_award.assert_awaited_once_with(bid)


def test_low_profit_after_award_sends_nothing(config, contracts, executor, store, bid_manager, active_bid, awarded_log):
    bid = active_bid()
    store.set_active_bid(bid)
    bid_manager.find_award.return_value = awarded_log(bid.bid_id, 2000)
    contracts.multicall3.simulate_aggregate3_value.return_value = liquidation_result(
        10**12, config.min_liquidation_profit_usd
    )

    assert asyncio.run(executor.attempt_liquidation()) is None

    assert store.get().currently_active_bid is None
    contracts.multicall3.aggregate3_value.assert_not_awaited()


def test_reverted_simulation_after_award_sends_nothing(contracts, executor, store, bid_manager, active_bid, awarded_log):
    bid = active_bid()
    store.set_active_bid(bid)
    bid_manager.find_award.return_value = awarded_log(bid.bid_id, 2000)
    contracts.multicall3.simulate_aggregate3_value.return_value = SimulationResult(success=False, error="reverted")

    assert asyncio.run(executor.attempt_liquidation()) is None

    assert store.get().currently_active_bid is None
    contracts.multicall3.aggregate3_value.assert_not_awaited()


def test_awarded_bid_is_executed(config, contracts, executor, store, account, bid_manager, active_bid, awarded_log):
    bid = active_bid()
    award = awarded_log(bid.bid_id, 2000)
    store.set_active_bid(bid)
    bid_manager.find_award.return_value = award
    contracts.multicall3.simulate_aggregate3_value.return_value = liquidation_result(10**16, 30 * 10**18)
    executor.schedule_fulfillment_report = MagicMock()

    assert asyncio.run(executor.attempt_liquidation()) == TX_HASH

    assert store.get().currently_active_bid is None
    calls, sender, value = contracts.multicall3.simulate_aggregate3_value.await_args.args
    assert sender == account.address
    assert value == bid.bid_amount
    assert calls[0].target == config.api3_server_v1
    assert calls[0].value == bid.bid_amount
    assert calls[0].call_data == award.encoded_award_details
    assert calls[1].target == config.liquidator
    assert calls[1].value == 0
    contracts.multicall3.aggregate3_value.assert_awaited_once_with(calls, account, bid.bid_amount)
    executor.schedule_fulfillment_report.assert_called_once_with(bid, TX_HASH)


def test_report_fulfillment(config, contracts, store, account, bid_manager, active_bid):
    bid = active_bid()
    contracts.auction_house.report_fulfillment = AsyncMock(return_value=HexBytes(b"\x34" * 32))
    executor = LiquidationExecutor(
        replace(config, fulfillment_report_delay_seconds=0), contracts, store, account, bid_manager, notify=False
    )

    async def _run():
        return await executor.schedule_fulfillment_report(bid, TX_HASH)

    assert asyncio.run(_run()) == HexBytes(b"\x34" * 32)
    contracts.auction_house.report_fulfillment.assert_awaited_once_with(
        config.bid_topic,
        bid_details_hash(encode_bid_details(bid.bid_details)),
        bytes(TX_HASH),
        account=account,
    )


def test_report_fulfillment_failure_is_logged(config, contracts, store, account, bid_manager, active_bid):
    contracts.auction_house.report_fulfillment = AsyncMock(side_effect=ValueError("nonce too low"))
    executor = LiquidationExecutor(
        replace(config, fulfillment_report_delay_seconds=0), contracts, store, account, bid_manager, notify=False
    )

    assert asyncio.run(executor.report_fulfillment(active_bid(), TX_HASH)) is None
