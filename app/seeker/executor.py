"""
Liquidation executor: acts on an awarded bid.
"""

import asyncio
import time
from typing import Optional, Set

from eth_abi.exceptions import DecodingError
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes

from .bid_manager import BidManager
from .codec import bid_details_hash, encode_bid_details, format_ether
from .config_loader import SeekerConfig
from .contracts import Contracts
from .exceptions import NoActiveBidError
from .logging_config import setup_logger
from .models import ActiveBid, AwardedBidLog, Call3Value
from .notifications import (
    post_error_notification,
    post_fulfillment_reported_notification,
    post_liquidation_result_notification,
)
from .store import Store

logger = setup_logger()


class LiquidationExecutor:
    def __init__(
        self,
        config: SeekerConfig,
        contracts: Contracts,
        store: Store,
        account: LocalAccount,
        bid_manager: BidManager,
        notify: bool = True,
    ):
        self.config = config
        self.contracts = contracts
        self.store = store
        self.account = account
        self.bid_manager = bid_manager
        self.notify = notify
        self._background_tasks: Set[asyncio.Task] = set()

    def build_calls(self, bid: ActiveBid, award: AwardedBidLog):
        """Price update paying the bid amount, followed by the liquidation."""
        params = bid.liquidation_parameters
        return [
            Call3Value(
                target=self.config.api3_server_v1,
                allow_failure=False,
                value=bid.bid_amount,
                call_data=award.encoded_award_details,
            ),
            Call3Value(
                target=self.config.liquidator,
                allow_failure=False,
                value=0,
                call_data=self.contracts.liquidator.encode_liquidate(
                    params.borrow_token_address,
                    params.borrower,
                    params.collateral_token_address,
                    params.max_borrow_repay,
                ),
            ),
        ]

    async def attempt_liquidation(self) -> Optional[HexBytes]:
        """
        Act on the active bid.

        An expired bid is cleared without looking for an award. An awarded bid is cleared
        before execution, then the update and liquidation are simulated together and only
        sent when still profitable.

        Returns:
            The liquidation transaction hash, or None when nothing was sent.

        Raises:
            NoActiveBidError: If there is no active bid.
        """
        bid = self.store.get().currently_active_bid
        if bid is None:
            raise NoActiveBidError("No currently active bid.")
        bid_id = f"0x{bid.bid_id.hex()}"

        # Off-chain time, the auction network may not produce blocks.
        if int(time.time()) >= bid.expiration_timestamp:
            logger.info("Executor: bid %s expired or lost the auction to another bid", bid_id)
            self.store.clear_active_bid()
            return None

        award = await self.bid_manager.find_award(bid)
        if award is None:
            logger.info("Executor: bid %s not yet awarded", bid_id)
            return None

        self.store.clear_active_bid()
        logger.info("Executor: bid %s awarded at auction block %s", bid_id, award.block_number)

        calls = self.build_calls(bid, award)
        simulation = await self.contracts.multicall3.simulate_aggregate3_value(
            calls, self.account.address, bid.bid_amount
        )
        if not simulation.success:
            logger.warning("Executor: liquidation for bid %s is no longer possible: %s", bid_id, simulation.error)
            return None
        try:
            profit_eth, profit_usd = self.contracts.liquidator.decode_liquidate(simulation.returndata[-1])
        except DecodingError as ex:
            logger.warning("Executor: could not decode liquidation result for bid %s: %s", bid_id, ex)
            return None

        if profit_usd <= self.config.min_liquidation_profit_usd:
            logger.info(
                "Executor: liquidation still possible, but profit is now too low (%s ETH, %s USD)",
                format_ether(profit_eth), format_ether(profit_usd),
            )
            return None

        tx_hash = await self.contracts.multicall3.aggregate3_value(calls, self.account, bid.bid_amount)
        logger.info(
            "Executor: liquidation transaction %s, profit %s ETH (%s USD)",
            tx_hash.hex(), format_ether(profit_eth), format_ether(profit_usd),
        )
        if self.notify:
            post_liquidation_result_notification(
                bid.bid_id, bid.liquidation_parameters, profit_eth, profit_usd, tx_hash.hex(), self.config
            )

        self.schedule_fulfillment_report(bid, tx_hash)
        return tx_hash

    def schedule_fulfillment_report(self, bid: ActiveBid, tx_hash: HexBytes) -> asyncio.Task:
        """Report fulfillment in the background so the attempt loop timeout does not cancel it."""
        task = asyncio.create_task(self.report_fulfillment(bid, tx_hash))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def report_fulfillment(self, bid: ActiveBid, tx_hash: HexBytes) -> Optional[HexBytes]:
        """Wait the fulfillment delay, then report the liquidation transaction hash to the auction house."""
        logger.info("Executor: waiting %ss before reporting fulfillment", self.config.fulfillment_report_delay_seconds)
        await asyncio.sleep(self.config.fulfillment_report_delay_seconds)

        try:
            report_hash = await self.contracts.auction_house.report_fulfillment(
                self.config.bid_topic,
                bid_details_hash(encode_bid_details(bid.bid_details)),
                bytes(tx_hash),
                account=self.account,
            )
        except Exception as ex:
            message = f"Error reporting fulfillment for bid 0x{bid.bid_id.hex()}: {ex}"
            logger.error("Executor: %s", message, exc_info=True)
            if self.notify:
                post_error_notification(message, self.config)
            return None

        logger.info("Executor: reported fulfillment, tx %s", report_hash.hex())
        if self.notify:
            post_fulfillment_reported_notification(bid.bid_id, report_hash.hex(), self.config)
        return report_hash
