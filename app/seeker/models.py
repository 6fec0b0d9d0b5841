"""
Data classes shared by the seeker components.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional, Tuple, Union


class BidCondition(IntEnum):
    """Condition the awarded price must satisfy for a bid to apply."""

    LTE = 0
    GTE = 1


class BidStatus(Enum):
    ACTIVE = "active"
    AWARDED = "awarded"
    EXPIRED = "expired"
    LOST = "lost"


@dataclass(frozen=True)
class Call:
    """A call routed through the call simulation proxy."""

    target: str
    data: bytes


@dataclass(frozen=True)
class Call3Value:
    """A call for Multicall3.aggregate3Value."""

    target: str
    allow_failure: bool
    value: int
    call_data: bytes

    def as_tuple(self) -> Tuple[str, bool, int, bytes]:
        return (self.target, self.allow_failure, self.value, self.call_data)


@dataclass(frozen=True)
class SimulationResult:
    """Outcome of a read-only simulated call. Reverts become success=False instead of exceptions."""

    success: bool
    returndata: Tuple[bytes, ...] = ()
    error: Optional[str] = None


@dataclass(frozen=True)
class BidDetails:
    oev_proxy_address: str
    condition_type: BidCondition
    condition_value: int
    update_sender_address: str
    nonce: bytes

    def is_satisfied_by(self, value: int) -> bool:
        """Whether an awarded price value would also have triggered this bid."""
        if self.condition_type == BidCondition.LTE:
            return value <= self.condition_value
        return value >= self.condition_value


@dataclass(frozen=True)
class AwardDetails:
    """Decoded updateOevProxyDataFeedWithSignedData calldata carried by an AwardedBid event."""

    proxy_address: str
    data_feed_id: bytes
    update_id: bytes
    timestamp: int
    encoded_value: bytes
    signatures: Tuple[bytes, ...]
    value: int


@dataclass(frozen=True)
class LiquidationParameters:
    borrow_token_address: str
    borrower: str
    collateral_token_address: str
    max_borrow_repay: int
    profit_eth: int
    profit_usd: int


@dataclass(frozen=True)
class ActiveBid:
    """The single bid the seeker currently has in flight."""

    bid_id: bytes
    bid_amount: int
    bid_details: BidDetails
    expiration_timestamp: int
    liquidation_parameters: LiquidationParameters
    block_number: int


@dataclass(frozen=True)
class AccountAsset:
    o_token: str
    borrow_balance: int
    token_balance: int


@dataclass(frozen=True)
class AccountLiquidity:
    borrower: str
    error: int
    liquidity: int
    shortfall: int


@dataclass(frozen=True)
class PlacedBidLog:
    bid_id: bytes
    bid_topic: bytes
    block_number: int
    block_timestamp: int
    bid_amount: int
    expiration_timestamp: int
    encoded_bid_details: bytes
    bid_details: BidDetails


@dataclass(frozen=True)
class AwardedBidLog:
    bid_id: bytes
    bid_topic: bytes
    block_number: int
    block_timestamp: int
    encoded_award_details: bytes
    award_details: AwardDetails


@dataclass(frozen=True)
class ExpeditedBidExpirationLog:
    bid_id: bytes
    bid_topic: bytes
    block_number: int
    block_timestamp: int
    expiration_timestamp: int


AuctionLog = Union[PlacedBidLog, AwardedBidLog, ExpeditedBidExpirationLog]


@dataclass(frozen=True)
class Bid:
    """A bid reconstructed from the auction log cache."""

    placed_log: PlacedBidLog
    status: BidStatus
    expiration_timestamp: int


@dataclass(frozen=True)
class TargetChainData:
    borrowers: Tuple[str, ...]
    last_block: int


@dataclass(frozen=True)
class AuctionNetworkData:
    last_fetched_block: int
    logs: Tuple[AuctionLog, ...]


@dataclass(frozen=True)
class Storage:
    currently_active_bid: Optional[ActiveBid] = None
    target_chain_data: Optional[TargetChainData] = None
    auction_data: Optional[AuctionNetworkData] = None
