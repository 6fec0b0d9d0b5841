"""
Account watch list: borrowers of the ETH market that may become liquidatable.
"""

import asyncio
import json
import os
from typing import Any, List, Optional, Sequence, Tuple

from eth_abi.exceptions import DecodingError
from web3 import Web3

from .codec import chunked, get_percentage_value
from .config_loader import SeekerConfig
from .contracts import Contracts
from .decorators import async_retry
from .logging_config import setup_logger
from .models import TargetChainData
from .scanner import MANTISSA, select_borrow_asset

logger = setup_logger()


class AccountWatcher:
    def __init__(self, config: SeekerConfig, contracts: Contracts):
        self.config = config
        self.contracts = contracts

    @property
    def chain(self):
        return self.contracts.eth_market.chain

    @async_retry(logger, max_retries=3, delay=1)
    async def _fetch_borrow_logs(self, from_block: int, to_block: int) -> List[Any]:
        eth_market = self.contracts.eth_market
        return await self.chain.get_logs(
            {
                "fromBlock": from_block,
                "toBlock": to_block,
                "address": eth_market.address,
                "topics": [eth_market.borrow_topic],
            }
        )

    async def get_borrowers_from_logs(self, start_block: Optional[int] = None) -> Tuple[List[str], int]:
        """
        Unique borrowers from Borrow logs of the ETH market, in first seen order.

        Starts a lookback buffer before `start_block`, or at the market deployment block.

        Returns:
            The borrowers and the last block scanned.
        """
        if start_block is None:
            from_block = self.config.eth_market_deployment_block
        else:
            from_block = max(start_block - self.config.borrower_logs_lookback_blocks, 0)
        end_block = await self.chain.block_number()

        borrowers = {}
        while from_block <= end_block:
            to_block = min(from_block + self.config.max_log_range_blocks - 1, end_block)
            for log in await self._fetch_borrow_logs(from_block, to_block):
                borrowers.setdefault(self.contracts.eth_market.decode_borrower(log), None)
            logger.debug("AccountWatcher: fetched Borrow events from block %s to %s", from_block, to_block)
            from_block = to_block + 1
            await asyncio.sleep(self.config.min_rpc_delay_seconds)

        logger.info("AccountWatcher: %s unique borrowers up to block %s", len(borrowers), end_block)
        return list(borrowers), end_block

    async def check_liquidation_potential(self, borrowers: Sequence[str]) -> List[str]:
        """
        Keep borrowers with enough borrowed ETH and little spare liquidity.

        An account is dropped when its ETH borrow is below the minimum in ETH or USD, or
        when it has no shortfall and its excess liquidity is above the safety buffer.
        """
        if not borrowers:
            return []

        lending_pool = self.contracts.lending_pool
        liquidator = self.contracts.liquidator
        oracle = self.contracts.price_oracle(await lending_pool.oracle())
        eth_usd_price = await oracle.get_underlying_price(self.config.eth_market)

        accounts_to_watch = []
        for batch in chunked(list(borrowers), self.config.max_borrower_details_multicall):
            logger.info("AccountWatcher: fetching account details for %s accounts", len(batch))
            details_results = await self.contracts.multicall3.aggregate3(
                [(liquidator.address, liquidator.encode_get_account_details(borrower)) for borrower in batch]
            )
            liquidity_results = await self.contracts.multicall3.aggregate3(
                [(lending_pool.address, lending_pool.encode_get_account_liquidity(borrower)) for borrower in batch]
            )

            for borrower, (details_ok, details_data), (liquidity_ok, liquidity_data) in zip(
                batch, details_results, liquidity_results
            ):
                if not (details_ok and liquidity_ok):
                    logger.warning("AccountWatcher: account data call reverted for %s, skipping", borrower)
                    continue
                try:
                    assets = liquidator.decode_get_account_details(details_data)
                    _, liquidity, shortfall = lending_pool.decode_get_account_liquidity(liquidity_data)
                except (DecodingError, ValueError) as ex:
                    logger.warning("AccountWatcher: could not decode account data for %s: %s", borrower, ex)
                    continue

                borrow_asset = select_borrow_asset(assets, self.config.eth_market)
                if borrow_asset is None:
                    continue
                eth_borrow = borrow_asset.borrow_balance
                if eth_borrow < self.config.min_eth_borrow:
                    logger.debug("AccountWatcher: skipped %s, borrow balance too low", borrower)
                    continue

                eth_borrow_usd = eth_borrow * eth_usd_price // MANTISSA
                if eth_borrow_usd < self.config.min_usd_borrow:
                    logger.debug("AccountWatcher: skipped %s, borrow value too low", borrower)
                    continue

                safe_buffer = get_percentage_value(eth_borrow_usd, self.config.safe_collateral_buffer_percent)
                if shortfall == 0 and liquidity > safe_buffer:
                    logger.debug("AccountWatcher: skipped %s, enough collateral", borrower)
                    continue

                accounts_to_watch.append(borrower)

        logger.info("AccountWatcher: %s accounts with borrowed ETH to watch", len(accounts_to_watch))
        return accounts_to_watch

    async def get_accounts_to_watch(self, start_block: Optional[int] = None) -> TargetChainData:
        borrowers, last_block = await self.get_borrowers_from_logs(start_block)
        accounts = await self.check_liquidation_potential(borrowers)
        return TargetChainData(borrowers=tuple(accounts), last_block=last_block)


def persist_accounts_to_watch(data: TargetChainData, path: str) -> None:
    """Write the watch list as {"borrowers": [...], "lastBlock": n}."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"borrowers": list(data.borrowers), "lastBlock": data.last_block}, f, indent=2)


def _normalize_borrowers(entries: Sequence[Any], path: str) -> Tuple[str, ...]:
    """Checksum every entry and drop the ones that are not addresses, keeping first seen order."""
    borrowers = {}
    for entry in entries:
        if not isinstance(entry, str) or not Web3.is_address(entry):
            logger.warning("AccountWatcher: dropping invalid address %r from %s", entry, path)
            continue
        borrowers.setdefault(Web3.to_checksum_address(entry), None)
    return tuple(borrowers)


def load_accounts_from_file(path: str, default_block: int) -> TargetChainData:
    """
    Read a persisted watch list.

    A missing or corrupt file gives an empty list starting at `default_block`.
    """
    if not os.path.exists(path):
        logger.info("AccountWatcher: no saved accounts at %s", path)
        return TargetChainData(borrowers=(), last_block=default_block)

    try:
        with open(path, "r", encoding="utf-8") as f:
            state = json.load(f)
        borrowers = _normalize_borrowers(state["borrowers"], path)
        last_block = int(state["lastBlock"])
    except (json.JSONDecodeError, IOError, KeyError, TypeError, ValueError) as ex:
        logger.error("AccountWatcher: corrupt accounts file %s, starting fresh: %s", path, ex)
        return TargetChainData(borrowers=(), last_block=default_block)

    logger.info("AccountWatcher: loaded %s accounts up to block %s from %s", len(borrowers), last_block, path)
    return TargetChainData(borrowers=borrowers, last_block=last_block)
