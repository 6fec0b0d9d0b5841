"""
Tests for the opportunity scanner.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from eth_abi import encode
from web3 import Web3

from app.seeker.exceptions import ScanAbortedError
from app.seeker.models import AccountAsset, AccountLiquidity, SimulationResult, TargetChainData
from app.seeker.scanner import (
    OpportunityScanner,
    compute_max_repay,
    select_borrow_asset,
    select_collateral_asset,
    select_shortfall_accounts,
)
from app.seeker.transmutation import build_transmutation_calls

ETH_PRICE = 3000 * 10**18
CLOSE_FACTOR = 5 * 10**17
LIQUIDATOR_BALANCE = 100 * 10**18

BORROWER_A = Web3.to_checksum_address("0x90f79bf6eb2c4f872365e785982e1f101e93b906")
BORROWER_B = Web3.to_checksum_address("0x15d34aaf54267db7d7c367839aaf71a00a2c6a65")
BORROWER_C = Web3.to_checksum_address("0x9965507d1a55bcc2695c58ba16fb37d819b0a4dc")
COLLATERAL_TOKEN = Web3.to_checksum_address("0x976ea74026e726554db657fa54763abd0c3a0aa9")


class FakeSimulator:
    """
    Answers simulator batches from per-borrower tables.

    `liquidities` maps borrower -> (liquidity, shortfall), `details` maps borrower ->
    list of AccountAsset and `profits` maps borrower -> (profit_eth, profit_usd).
    Borrowers in `reverting` make the liquidate simulation revert, and borrowers in
    `details_reverting` make the account details simulation revert.
    """

    def __init__(self, contracts, liquidities, details=None, profits=None, reverting=(), details_reverting=()):
        self.contracts = contracts
        self.liquidities = liquidities
        self.details = details or {}
        self.profits = profits or {}
        self.reverting = set(reverting)
        self.details_reverting = set(details_reverting)
        self.details_requests = []
        self.liquidations = []

    async def __call__(self, simulator, calls):
        lending_pool = self.contracts.lending_pool
        liquidator = self.contracts.liquidator
        assert len(calls) >= 3
        prefix = (b"", b"")

        if calls[-1].target == lending_pool.address:
            returndata = []
            for call in calls[2:]:
                _, args = lending_pool.codec.decode_function_input(call.data)
                liquidity, shortfall = self.liquidities[args["account"]]
                returndata.append(encode(["uint256", "uint256", "uint256"], [0, liquidity, shortfall]))
            return SimulationResult(success=True, returndata=prefix + tuple(returndata))

        function, args = liquidator.codec.decode_function_input(calls[-1].data)
        if function.fn_name == "getAccountDetails":
            self.details_requests.append(args["account"])
            if args["account"] in self.details_reverting:
                return SimulationResult(success=False, error="execution reverted")
            assets = self.details[args["account"]]
            data = encode(
                ["address[]", "uint256[]", "uint256[]"],
                [
                    [asset.o_token for asset in assets],
                    [asset.borrow_balance for asset in assets],
                    [asset.token_balance for asset in assets],
                ],
            )
            return SimulationResult(success=True, returndata=prefix + (data,))

        self.liquidations.append((args["borrower"], args["value"]))
        if args["borrower"] in self.reverting:
            return SimulationResult(success=False, error="execution reverted")
        data = encode(["uint256", "uint256"], list(self.profits[args["borrower"]]))
        return SimulationResult(success=True, returndata=prefix + (data,))


def setup_protocol(contracts):
    contracts.lending_pool.close_factor_mantissa = AsyncMock(return_value=CLOSE_FACTOR)
    contracts.lending_pool.oracle = AsyncMock(return_value=COLLATERAL_TOKEN)
    oracle = MagicMock()
    oracle.get_underlying_price = AsyncMock(return_value=ETH_PRICE)
    contracts.price_oracle = MagicMock(return_value=oracle)
    contracts.lending_pool.chain.get_balance = AsyncMock(return_value=LIQUIDATOR_BALANCE)


def eth_borrow(config, borrow, collateral):
    return [
        AccountAsset(o_token=config.eth_market, borrow_balance=borrow, token_balance=0),
        AccountAsset(o_token=COLLATERAL_TOKEN, borrow_balance=0, token_balance=collateral),
    ]


@pytest.fixture()
def scanner(config, contracts, store, account):
    setup_protocol(contracts)
    return OpportunityScanner(config, contracts, store, account)


def test_select_shortfall_accounts_boundary():
    liquidities = [
        AccountLiquidity(borrower=BORROWER_A, error=0, liquidity=5, shortfall=0),
        AccountLiquidity(borrower=BORROWER_B, error=0, liquidity=0, shortfall=1),
    ]
    assert [entry.borrower for entry in select_shortfall_accounts(liquidities)] == [BORROWER_B]


def test_select_shortfall_accounts_order():
    liquidities = [
        AccountLiquidity(borrower=BORROWER_A, error=0, liquidity=0, shortfall=5),
        AccountLiquidity(borrower=BORROWER_B, error=0, liquidity=0, shortfall=10),
        AccountLiquidity(borrower=BORROWER_C, error=0, liquidity=0, shortfall=5),
    ]
    assert [entry.borrower for entry in select_shortfall_accounts(liquidities)] == [
        BORROWER_B,
        BORROWER_A,
        BORROWER_C,
    ]


def test_select_borrow_asset_takes_largest_eth_borrow(config):
    assets = [
        AccountAsset(o_token=config.eth_market, borrow_balance=3, token_balance=0),
        AccountAsset(o_token=COLLATERAL_TOKEN, borrow_balance=100, token_balance=0),
        AccountAsset(o_token=config.eth_market, borrow_balance=7, token_balance=0),
        AccountAsset(o_token=config.eth_market, borrow_balance=5, token_balance=0),
    ]
    assert select_borrow_asset(assets, config.eth_market).borrow_balance == 7
    assert select_borrow_asset(assets[1:2], config.eth_market) is None
    assert select_borrow_asset([], config.eth_market) is None


def test_select_collateral_asset_may_be_borrowed_asset(config):
    assets = [
        AccountAsset(o_token=config.eth_market, borrow_balance=1, token_balance=9),
        AccountAsset(o_token=COLLATERAL_TOKEN, borrow_balance=0, token_balance=4),
    ]
    assert select_collateral_asset(assets).o_token == config.eth_market
    assert select_collateral_asset([]) is None


def test_compute_max_repay_is_minimum_of_bounds():
    cases = [
        (10 * 10**18, 100 * 10**18, 100 * 10**18),
        (100 * 10**18, 1 * 10**18, 100 * 10**18),
        (100 * 10**18, 100 * 10**18, 2 * 10**18),
        (0, 5, 5),
    ]
    for borrow, liquidator_balance, collateral in cases:
        expected = min(borrow * CLOSE_FACTOR // 10**18, liquidator_balance, collateral * 95 // 100)
        assert compute_max_repay(borrow, CLOSE_FACTOR, liquidator_balance, collateral, 95) == expected


def test_transmutation_value(scanner):
    assert asyncio.run(scanner.get_transmutation_value()) == 3006 * 10**18


def test_find_best_liquidation_orders_by_shortfall(config, contracts, store, scanner):
    """
    Accounts are evaluated by shortfall, largest first, and accounts without shortfall
    are never evaluated. The most profitable one wins.
    """
    store.set_target_chain_data(TargetChainData(borrowers=(BORROWER_A, BORROWER_B, BORROWER_C), last_block=1))
    fake = FakeSimulator(
        contracts,
        liquidities={BORROWER_A: (0, 10**18), BORROWER_B: (0, 2 * 10**18), BORROWER_C: (10**18, 0)},
        details={
            BORROWER_A: eth_borrow(config, 4 * 10**18, 10 * 10**18),
            BORROWER_B: eth_borrow(config, 2 * 10**18, 10 * 10**18),
        },
        profits={BORROWER_A: (3 * 10**16, 90 * 10**18), BORROWER_B: (2 * 10**16, 60 * 10**18)},
    )

    with patch("app.seeker.scanner.simulate_transmutation_multicall", new=fake):
        opportunity = asyncio.run(scanner.find_best_liquidation())

    assert fake.details_requests == [BORROWER_B, BORROWER_A]
    assert opportunity.parameters.borrower == BORROWER_A
    assert opportunity.parameters.max_borrow_repay == 2 * 10**18
    assert opportunity.parameters.collateral_token_address == COLLATERAL_TOKEN
    assert opportunity.transmutation_value == 3006 * 10**18


def test_find_best_liquidation_keeps_first_on_tie(config, contracts, store, scanner):
    store.set_target_chain_data(TargetChainData(borrowers=(BORROWER_A, BORROWER_B), last_block=1))
    fake = FakeSimulator(
        contracts,
        liquidities={BORROWER_A: (0, 10**18), BORROWER_B: (0, 2 * 10**18)},
        details={
            BORROWER_A: eth_borrow(config, 10**18, 10 * 10**18),
            BORROWER_B: eth_borrow(config, 10**18, 10 * 10**18),
        },
        profits={BORROWER_A: (10**16, 30 * 10**18), BORROWER_B: (10**16, 30 * 10**18)},
    )

    with patch("app.seeker.scanner.simulate_transmutation_multicall", new=fake):
        opportunity = asyncio.run(scanner.find_best_liquidation())

    assert opportunity.parameters.borrower == BORROWER_B


def test_find_best_liquidation_without_shortfall(contracts, store, scanner):
    store.set_target_chain_data(TargetChainData(borrowers=(BORROWER_A, BORROWER_B), last_block=1))
    fake = FakeSimulator(contracts, liquidities={BORROWER_A: (10**18, 0), BORROWER_B: (0, 0)})

    with patch("app.seeker.scanner.simulate_transmutation_multicall", new=fake):
        assert asyncio.run(scanner.find_best_liquidation()) is None
    assert fake.details_requests == []


def test_find_best_liquidation_skips_low_profit_and_missing_eth_borrow(config, contracts, store, scanner):
    store.set_target_chain_data(TargetChainData(borrowers=(BORROWER_A, BORROWER_B), last_block=1))
    fake = FakeSimulator(
        contracts,
        liquidities={BORROWER_A: (0, 10**18), BORROWER_B: (0, 2 * 10**18)},
        details={
            BORROWER_A: eth_borrow(config, 10**18, 10 * 10**18),
            BORROWER_B: [AccountAsset(o_token=COLLATERAL_TOKEN, borrow_balance=10**18, token_balance=10**18)],
        },
        profits={BORROWER_A: (10**12, config.min_liquidation_profit_usd)},
    )

    with patch("app.seeker.scanner.simulate_transmutation_multicall", new=fake):
        assert asyncio.run(scanner.find_best_liquidation()) is None
    assert fake.liquidations == [(BORROWER_A, 5 * 10**17)]


def test_find_best_liquidation_stops_on_reverted_liquidation(config, contracts, store, scanner):
    store.set_target_chain_data(TargetChainData(borrowers=(BORROWER_A, BORROWER_B), last_block=1))
    fake = FakeSimulator(
        contracts,
        liquidities={BORROWER_A: (0, 2 * 10**18), BORROWER_B: (0, 10**18)},
        details={
            BORROWER_A: eth_borrow(config, 10**18, 10 * 10**18),
            BORROWER_B: eth_borrow(config, 10**18, 10 * 10**18),
        },
        profits={BORROWER_B: (10**16, 30 * 10**18)},
        reverting=[BORROWER_A],
    )

    with patch("app.seeker.scanner.simulate_transmutation_multicall", new=fake):
        assert asyncio.run(scanner.find_best_liquidation()) is None
    assert fake.details_requests == [BORROWER_A]


def test_find_best_liquidation_stops_on_reverted_liquidity_batch(store, scanner):
    store.set_target_chain_data(TargetChainData(borrowers=(BORROWER_A,), last_block=1))
    reverted = AsyncMock(return_value=SimulationResult(success=False, error="execution reverted"))

    with patch("app.seeker.scanner.simulate_transmutation_multicall", new=reverted):
        assert asyncio.run(scanner.find_best_liquidation()) is None
    reverted.assert_awaited_once()


def test_find_best_liquidation_stops_on_reverted_account_details(config, contracts, store, scanner):
    store.set_target_chain_data(TargetChainData(borrowers=(BORROWER_A, BORROWER_B), last_block=1))
    fake = FakeSimulator(
        contracts,
        liquidities={BORROWER_A: (0, 2 * 10**18), BORROWER_B: (0, 10**18)},
        details={BORROWER_B: eth_borrow(config, 10**18, 10 * 10**18)},
        profits={BORROWER_B: (10**16, 30 * 10**18)},
        details_reverting=[BORROWER_A],
    )

    with patch("app.seeker.scanner.simulate_transmutation_multicall", new=fake):
        assert asyncio.run(scanner.find_best_liquidation()) is None
    assert fake.details_requests == [BORROWER_A]
    assert fake.liquidations == []


def test_evaluate_account_raises_on_reverted_liquidation(config, contracts, scanner):
    account = AccountLiquidity(borrower=BORROWER_A, error=0, liquidity=0, shortfall=10**18)
    fake = FakeSimulator(
        contracts,
        liquidities={},
        details={BORROWER_A: eth_borrow(config, 10**18, 10 * 10**18)},
        reverting=[BORROWER_A],
    )
    transmutation_calls = build_transmutation_calls(contracts.price_server, config.dapi_name, 3000 * 10**18)

    with patch("app.seeker.scanner.simulate_transmutation_multicall", new=fake):
        with pytest.raises(ScanAbortedError):
            asyncio.run(scanner._evaluate_account(account, transmutation_calls, CLOSE_FACTOR, LIQUIDATOR_BALANCE))
