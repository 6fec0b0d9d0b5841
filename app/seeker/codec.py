"""
Pure helpers for bid encoding, fixed point arithmetic and batching. Nothing in here touches the network.
"""

from decimal import Decimal
from typing import Iterator, Sequence, TypeVar, Union

from eth_abi import decode, encode
from web3 import Web3

from .models import BidCondition, BidDetails

BID_DETAILS_TYPES = ["address", "uint256", "int224", "address", "bytes32"]

ONE_PERCENT_PRECISION = 10**10

T = TypeVar("T")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def encode_bid_details(details: BidDetails) -> bytes:
    """ABI encode bid details as (address, uint256, int224, address, bytes32)."""
    return encode(
        BID_DETAILS_TYPES,
        [
            Web3.to_checksum_address(details.oev_proxy_address),
            int(details.condition_type),
            details.condition_value,
            Web3.to_checksum_address(details.update_sender_address),
            details.nonce,
        ],
    )


def decode_bid_details(encoded: bytes) -> BidDetails:
    oev_proxy_address, condition_type, condition_value, update_sender_address, nonce = decode(
        BID_DETAILS_TYPES, bytes(encoded)
    )
    return BidDetails(
        oev_proxy_address=Web3.to_checksum_address(oev_proxy_address),
        condition_type=BidCondition(condition_type),
        condition_value=condition_value,
        update_sender_address=Web3.to_checksum_address(update_sender_address),
        nonce=nonce,
    )


def bid_details_hash(encoded: bytes) -> bytes:
    return bytes(Web3.keccak(bytes(encoded)))


def derive_bid_id(bidder: str, bid_topic: bytes, encoded_details: bytes) -> bytes:
    """keccak256(abi.encodePacked(bidder, bidTopic, keccak256(bidDetails)))"""
    return bytes(
        Web3.solidity_keccak(
            ["address", "bytes32", "bytes32"],
            [Web3.to_checksum_address(bidder), bytes(bid_topic), bid_details_hash(encoded_details)],
        )
    )


def _div_toward_zero(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


def get_percentage_value(value: int, percent: Union[int, float, str, Decimal]) -> int:
    """
    Return `percent` % of `value` in integer arithmetic.

    The percentage keeps ten decimal places and every division rounds toward zero, so
    get_percentage_value(1995, 100.2) == 1995 * 1002 // 1000.
    """
    scaled_percent = int(Decimal(str(percent)) * ONE_PERCENT_PRECISION)
    return _div_toward_zero(_div_toward_zero(value * scaled_percent, ONE_PERCENT_PRECISION), 100)


def min_value(*values: int) -> int:
    if not values:
        raise ValueError("min_value() requires at least one argument")
    return min(values)


def encode_bytes32_string(text: str) -> bytes:
    """Right pad a short UTF-8 string to 32 bytes, e.g. a dAPI name such as "ETH/USD"."""
    raw = text.encode("utf-8")
    if len(raw) > 31:
        raise ValueError(f"String too long for bytes32: {text!r}")
    return raw.ljust(32, b"\x00")


def decode_int256(encoded: bytes) -> int:
    return decode(["int256"], bytes(encoded))[0]


def address_to_topic(address: str) -> str:
    """Left pad an address to a 32 byte log topic."""
    return "0x" + Web3.to_checksum_address(address)[2:].lower().rjust(64, "0")


def format_ether(value: int) -> str:
    return str(Web3.from_wei(value, "ether"))


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start:start + size]
