import os
import secrets
import time

import pytest
from dotenv import load_dotenv
from eth_abi import encode
from unittest.mock import MagicMock
from web3 import Web3

from app.seeker.chain import ChainClient
from app.seeker.config_loader import SeekerConfig, load_account, load_config
from app.seeker.contracts import Contracts
from app.seeker.models import (
    ActiveBid,
    AwardDetails,
    AwardedBidLog,
    BidCondition,
    BidDetails,
    ExpeditedBidExpirationLog,
    LiquidationParameters,
    PlacedBidLog,
)
from app.seeker.store import Store

ENV_EXAMPLE_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env.example")

TEST_BORROWER = Web3.to_checksum_address("0x70997970c51812dc3a010c7d01b50e0d17dc79c8")
TEST_COLLATERAL_TOKEN = Web3.to_checksum_address("0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc")


@pytest.fixture()
def config() -> SeekerConfig:
    load_dotenv(dotenv_path=ENV_EXAMPLE_PATH)
    return load_config()


@pytest.fixture()
def account(config):
    return load_account(config)


def make_chain(name: str, chain_id: int) -> MagicMock:
    chain = MagicMock(spec=ChainClient)
    chain.name = name
    chain.chain_id = chain_id
    return chain


@pytest.fixture()
def target_chain(config):
    return make_chain(config.target_chain.name, config.target_chain.chain_id)


@pytest.fixture()
def auction_chain(config):
    return make_chain(config.auction_network.name, config.auction_network.chain_id)


@pytest.fixture()
def contracts(config, target_chain, auction_chain) -> Contracts:
    return Contracts.from_config(config, target_chain, auction_chain)


@pytest.fixture()
def store() -> Store:
    return Store()


@pytest.fixture()
def bid_details(config):
    def _make(condition_type=BidCondition.GTE, condition_value=2000 * 10**18):
        return BidDetails(
            oev_proxy_address=config.api3_oev_eth_usd_proxy,
            condition_type=condition_type,
            condition_value=condition_value,
            update_sender_address=config.multicall3,
            nonce=secrets.token_bytes(32),
        )

    return _make


@pytest.fixture()
def liquidation_parameters(config):
    return LiquidationParameters(
        borrow_token_address=config.eth_market,
        borrower=TEST_BORROWER,
        collateral_token_address=TEST_COLLATERAL_TOKEN,
        max_borrow_repay=10**18,
        profit_eth=5 * 10**16,
        profit_usd=100 * 10**18,
    )


@pytest.fixture()
def active_bid(bid_details, liquidation_parameters):
    def _make(expiration_timestamp=None, bid_amount=10**16):
        return ActiveBid(
            bid_id=secrets.token_bytes(32),
            bid_amount=bid_amount,
            bid_details=bid_details(),
            expiration_timestamp=int(time.time()) + 600 if expiration_timestamp is None else expiration_timestamp,
            liquidation_parameters=liquidation_parameters,
            block_number=100,
        )

    return _make


@pytest.fixture()
def placed_log(config, bid_details):
    def _make(bid_id=None, bid_topic=None, details=None, expiration_timestamp=2000, block_timestamp=1000):
        return PlacedBidLog(
            bid_id=bid_id or secrets.token_bytes(32),
            bid_topic=bid_topic or config.bid_topic,
            block_number=1,
            block_timestamp=block_timestamp,
            bid_amount=10**16,
            expiration_timestamp=expiration_timestamp,
            encoded_bid_details=b"",
            bid_details=details or bid_details(),
        )

    return _make


@pytest.fixture()
def awarded_log(config):
    def _make(bid_id, value, bid_topic=None, block_timestamp=1000):
        return AwardedBidLog(
            bid_id=bid_id,
            bid_topic=bid_topic or config.bid_topic,
            block_number=2,
            block_timestamp=block_timestamp,
            encoded_award_details=b"\x01\x02",
            award_details=AwardDetails(
                proxy_address=config.api3_oev_eth_usd_proxy,
                data_feed_id=b"\x00" * 32,
                update_id=b"\x00" * 32,
                timestamp=block_timestamp,
                encoded_value=encode(["int256"], [value]),
                signatures=(),
                value=value,
            ),
        )

    return _make


@pytest.fixture()
def expedited_log(config):
    def _make(bid_id, expiration_timestamp, block_timestamp=1000):
        return ExpeditedBidExpirationLog(
            bid_id=bid_id,
            bid_topic=config.bid_topic,
            block_number=3,
            block_timestamp=block_timestamp,
            expiration_timestamp=expiration_timestamp,
        )

    return _make
