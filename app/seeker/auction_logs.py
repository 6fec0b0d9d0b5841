"""
Auction network log cache: fetching, decoding, pruning and bid state reconstruction.
"""

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from eth_abi.exceptions import DecodingError
from web3.exceptions import MismatchedABI

from .codec import address_to_topic, decode_bid_details
from .contracts import AuctionHouse, PriceServer
from .decorators import async_retry
from .logging_config import setup_logger
from .models import AuctionLog, AwardedBidLog, Bid, BidStatus, ExpeditedBidExpirationLog, PlacedBidLog

logger = setup_logger()


def decode_auction_log(
    auction_house: AuctionHouse, price_server: PriceServer, raw_log: Dict[str, Any], block_timestamp: int
) -> AuctionLog:
    """Decode one raw auction house log into its typed record."""
    name, args = auction_house.decode_log(raw_log)
    common = {
        "bid_id": bytes(args["bidId"]),
        "bid_topic": bytes(args["bidTopic"]),
        "block_number": raw_log["blockNumber"],
        "block_timestamp": block_timestamp,
    }
    if name == "PlacedBid":
        return PlacedBidLog(
            **common,
            bid_amount=args["bidAmount"],
            expiration_timestamp=args["expirationTimestamp"],
            encoded_bid_details=bytes(args["bidDetails"]),
            bid_details=decode_bid_details(args["bidDetails"]),
        )
    if name == "AwardedBid":
        return AwardedBidLog(
            **common,
            encoded_award_details=bytes(args["awardDetails"]),
            award_details=price_server.decode_update_oev_proxy_data_feed(args["awardDetails"]),
        )
    return ExpeditedBidExpirationLog(**common, expiration_timestamp=args["expirationTimestamp"])


class AuctionLogFetcher:
    """Fetches this bidder's auction house logs for the configured bid topic."""

    def __init__(
        self,
        auction_house: AuctionHouse,
        price_server: PriceServer,
        bidder: str,
        bid_topic: bytes,
        max_range: int = 10_000,
    ):
        self.auction_house = auction_house
        self.price_server = price_server
        self.bidder = bidder
        self.bid_topic = bid_topic
        self.max_range = max_range

    @async_retry(logger, max_retries=3, delay=1)
    async def _fetch_window(self, from_block: int, to_block: int) -> List[Any]:
        return await self.auction_house.chain.get_logs(
            {
                "fromBlock": from_block,
                "toBlock": to_block,
                "address": self.auction_house.address,
                "topics": [
                    self.auction_house.event_topics,
                    address_to_topic(self.bidder),
                    "0x" + self.bid_topic.hex(),
                ],
            }
        )

    async def fetch(self, start_block: int, end_block: int) -> List[AuctionLog]:
        """
        Fetch and decode logs in [start_block, end_block] using non-overlapping block windows.

        Block timestamps are read once per distinct block.
        """
        logs: List[AuctionLog] = []
        timestamps: Dict[int, int] = {}
        from_block = start_block
        while from_block <= end_block:
            to_block = min(from_block + self.max_range - 1, end_block)
            for raw_log in await self._fetch_window(from_block, to_block):
                block_number = raw_log["blockNumber"]
                if block_number not in timestamps:
                    timestamps[block_number] = await self.auction_house.chain.get_block_timestamp(block_number)
                try:
                    logs.append(
                        decode_auction_log(self.auction_house, self.price_server, raw_log, timestamps[block_number])
                    )
                except (DecodingError, MismatchedABI, ValueError) as ex:
                    logger.warning(
                        "AuctionLogs: skipping undecodable log %s in block %s: %s",
                        raw_log.get("logIndex"), block_number, ex,
                    )
            from_block = to_block + 1

        logger.info("AuctionLogs: fetched %s logs from block %s to %s", len(logs), start_block, end_block)
        return logs


def prune_logs(logs: Iterable[AuctionLog], now: int, retention_seconds: int) -> Tuple[AuctionLog, ...]:
    """Drop logs from blocks older than the retention window."""
    cutoff = now - retention_seconds
    return tuple(log for log in logs if log.block_timestamp >= cutoff)


def build_auction_state(logs: Sequence[AuctionLog], now: int, min_bid_time_to_live: int) -> Dict[bytes, Bid]:
    """
    Replay the cached logs in order and return every known bid by bid ID.

    PlacedBid seeds an active bid. AwardedBid marks its bid awarded, and marks lost every
    other active bid on the same topic whose condition the awarded value satisfies.
    ExpeditedBidExpiration moves a bid's expiration. Finally, active bids closer to
    expiration than `min_bid_time_to_live` are reported as expired.
    """
    bids: Dict[bytes, Bid] = {}
    for log in logs:
        if isinstance(log, PlacedBidLog):
            bids[log.bid_id] = Bid(
                placed_log=log, status=BidStatus.ACTIVE, expiration_timestamp=log.expiration_timestamp
            )
            continue

        bid = bids.get(log.bid_id)
        if bid is None:
            logger.warning("AuctionLogs: %s for unknown bid %s, skipping", type(log).__name__, log.bid_id.hex())
            continue

        if isinstance(log, AwardedBidLog):
            bids[log.bid_id] = replace(bid, status=BidStatus.AWARDED)
            awarded_value = log.award_details.value
            for bid_id, other in list(bids.items()):
                if bid_id == log.bid_id or other.status != BidStatus.ACTIVE:
                    continue
                if other.placed_log.bid_topic != log.bid_topic:
                    continue
                if other.placed_log.bid_details.is_satisfied_by(awarded_value):
                    bids[bid_id] = replace(other, status=BidStatus.LOST)
        elif isinstance(log, ExpeditedBidExpirationLog):
            bids[log.bid_id] = replace(bid, expiration_timestamp=log.expiration_timestamp)

    for bid_id, bid in list(bids.items()):
        if bid.status == BidStatus.ACTIVE and bid.expiration_timestamp - now < min_bid_time_to_live:
            bids[bid_id] = replace(bid, status=BidStatus.EXPIRED)

    return bids
