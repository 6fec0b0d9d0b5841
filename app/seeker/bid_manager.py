"""
Bid lifecycle: placing the single active bid, detecting its award and expediting stale bids.
"""

import secrets
import time
from typing import List, Optional

from eth_account.signers.local import LocalAccount

from .auction_logs import AuctionLogFetcher, build_auction_state, prune_logs
from .codec import bid_details_hash, derive_bid_id, encode_bid_details, format_ether, get_percentage_value
from .config_loader import SeekerConfig
from .contracts import Contracts
from .exceptions import BidAlreadyActiveError
from .logging_config import setup_logger
from .models import ActiveBid, AuctionNetworkData, AwardedBidLog, Bid, BidCondition, BidDetails, BidStatus
from .notifications import post_bid_placed_notification
from .scanner import Opportunity
from .store import Store

logger = setup_logger()


class BidManager:
    def __init__(
        self,
        config: SeekerConfig,
        contracts: Contracts,
        store: Store,
        account: LocalAccount,
        fetcher: AuctionLogFetcher,
        notify: bool = True,
    ):
        self.config = config
        self.contracts = contracts
        self.store = store
        self.account = account
        self.fetcher = fetcher
        self.notify = notify

    @property
    def auction_chain(self):
        return self.contracts.auction_house.chain

    async def refresh_logs(self) -> AuctionNetworkData:
        """Extend the log cache up to the current auction network block and prune old entries."""
        data = self.store.require_auction_data()
        end_block = await self.auction_chain.block_number()
        if end_block <= data.last_fetched_block:
            return data

        logs = await self.fetcher.fetch(data.last_fetched_block + 1, end_block)
        cutoff = int(time.time()) - self.config.auction_log_retention_seconds
        return self.store.extend_auction_logs(logs, end_block, keep=lambda log: log.block_timestamp >= cutoff)

    async def initialize_auction_data(self) -> AuctionNetworkData:
        """Backfill the log cache from the configured start block."""
        start_block = self.config.auction_logs_start_block
        end_block = await self.auction_chain.block_number()
        logs = await self.fetcher.fetch(start_block, end_block)
        data = AuctionNetworkData(
            last_fetched_block=end_block,
            logs=prune_logs(logs, int(time.time()), self.config.auction_log_retention_seconds),
        )
        self.store.set_auction_data(data)
        logger.info(
            "BidManager: cached %s auction logs from block %s to %s", len(data.logs), start_block, end_block
        )
        return data

    def get_bids(self) -> List[Bid]:
        logs = self.store.require_auction_data().logs
        return list(build_auction_state(logs, int(time.time()), self.config.min_bid_time_to_live_seconds).values())

    async def place_bid(self, opportunity: Opportunity) -> ActiveBid:
        """
        Place a bid for the given opportunity and record it as the active bid.

        The bid pays a fixed share of the expected ETH profit and only applies if the
        awarded price is at least the transmutation value.

        Raises:
            BidAlreadyActiveError: If a bid is already active.
        """
        if self.store.get().currently_active_bid is not None:
            raise BidAlreadyActiveError("A bid is already active.")

        params = opportunity.parameters
        bid_amount = get_percentage_value(params.profit_eth, self.config.bid_profit_percent)
        bid_details = BidDetails(
            oev_proxy_address=self.config.api3_oev_eth_usd_proxy,
            condition_type=BidCondition.GTE,
            condition_value=opportunity.transmutation_value,
            # msg.sender of the update transaction
            update_sender_address=self.config.multicall3,
            nonce=secrets.token_bytes(32),
        )
        encoded_bid_details = encode_bid_details(bid_details)
        bid_id = derive_bid_id(self.account.address, self.config.bid_topic, encoded_bid_details)
        block_number = await self.auction_chain.block_number()
        expiration_timestamp = int(time.time()) + self.config.bid_validity_seconds

        logger.info(
            "BidManager: placing bid 0x%s for borrower %s, repay %s, profit %s ETH (%s USD), bid amount %s",
            bid_id.hex(), params.borrower, format_ether(params.max_borrow_repay),
            format_ether(params.profit_eth), format_ether(params.profit_usd), format_ether(bid_amount),
        )
        tx_hash = await self.contracts.auction_house.place_bid_with_expiration(
            self.config.bid_topic,
            self.config.target_chain.chain_id,
            bid_amount,
            encoded_bid_details,
            bid_amount,
            bid_amount,
            expiration_timestamp,
            account=self.account,
        )

        active_bid = ActiveBid(
            bid_id=bid_id,
            bid_amount=bid_amount,
            bid_details=bid_details,
            expiration_timestamp=expiration_timestamp,
            liquidation_parameters=params,
            block_number=block_number,
        )
        self.store.set_active_bid(active_bid)
        logger.info("BidManager: placed bid 0x%s, tx %s, expires at %s", bid_id.hex(), tx_hash.hex(), expiration_timestamp)

        if self.notify:
            post_bid_placed_notification(active_bid, tx_hash.hex(), self.config)
        return active_bid

    async def find_award(self, bid: ActiveBid) -> Optional[AwardedBidLog]:
        """Refresh the log cache and return the AwardedBid log for `bid`, if there is one."""
        data = await self.refresh_logs()
        for log in data.logs:
            if isinstance(log, AwardedBidLog) and log.bid_id == bid.bid_id:
                return log
        return None

    async def expedite_active_bids(self) -> int:
        """
        Expedite the expiration of every bid still active on the auction network.

        Run at startup so that a crash never leaves more than one bid in flight. Failures
        are logged and the next bid is tried.

        Returns:
            Number of bids expedited.
        """
        active_bids = [bid for bid in self.get_bids() if bid.status == BidStatus.ACTIVE]
        if len(active_bids) > 1:
            logger.warning("BidManager: %s active bids to expedite", len(active_bids))

        expedited = 0
        for bid in active_bids:
            placed = bid.placed_log
            logger.info("BidManager: expediting bid 0x%s", placed.bid_id.hex())
            try:
                tx_hash = await self.contracts.auction_house.expedite_bid_expiration_maximally(
                    placed.bid_topic, bid_details_hash(placed.encoded_bid_details), account=self.account
                )
            except Exception as ex:
                logger.error("BidManager: error expediting bid 0x%s: %s", placed.bid_id.hex(), ex, exc_info=True)
                continue
            expedited += 1
            logger.info("BidManager: expedited bid 0x%s, tx %s", placed.bid_id.hex(), tx_hash.hex())
        return expedited
