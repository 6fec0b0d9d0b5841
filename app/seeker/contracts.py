"""
Typed clients for the external contracts.

Calldata is encoded and return data decoded offline through a provider-less Web3 contract,
so the same clients serve direct calls, simulation batches and multicalls.
"""

import functools
import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_abi import decode
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError

from .chain import ChainClient
from .codec import ZERO_ADDRESS, decode_int256
from .models import AccountAsset, AwardDetails, Call3Value, SimulationResult

ABI_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "abis")

_codec_w3 = Web3()


@functools.lru_cache(maxsize=None)
def load_abi(name: str) -> Tuple[Dict[str, Any], ...]:
    """
    Load an ABI from app/abis/<name>.json.

    Args:
        name: File name without extension.

    Returns:
        The ABI entries.
    """
    with open(os.path.join(ABI_DIR, f"{name}.json"), "r", encoding="utf-8") as file:
        interface = json.load(file)
    return tuple(interface["abi"])


def _collapse_type(item: Dict[str, Any]) -> str:
    abi_type = item["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(_collapse_type(component) for component in item["components"])
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


class ContractClient:
    """Base class binding one contract address and ABI to the chain it lives on."""

    abi_name = ""

    def __init__(self, address: str, chain: Optional[ChainClient] = None):
        self.address = Web3.to_checksum_address(address)
        self.chain = chain
        self.abi = load_abi(self.abi_name)
        self.codec = _codec_w3.eth.contract(address=self.address, abi=list(self.abi))

    def _abi_entry(self, entry_type: str, name: str) -> Dict[str, Any]:
        for item in self.abi:
            if item.get("type") == entry_type and item.get("name") == name:
                return item
        raise ValueError(f"{type(self).__name__}: no {entry_type} named {name}")

    def encode(self, fn_name: str, *args: Any) -> bytes:
        return bytes(HexBytes(self.codec.encode_abi(fn_name, args=list(args))))

    def output_types(self, fn_name: str) -> List[str]:
        return [_collapse_type(output) for output in self._abi_entry("function", fn_name)["outputs"]]

    def decode_result(self, fn_name: str, data: bytes) -> Tuple[Any, ...]:
        """Decode return data; raises eth_abi DecodingError on malformed data."""
        return decode(self.output_types(fn_name), bytes(data))

    def event_topic(self, event_name: str) -> str:
        entry = self._abi_entry("event", event_name)
        signature = f"{event_name}({','.join(_collapse_type(item) for item in entry['inputs'])})"
        return "0x" + bytes(Web3.keccak(text=signature)).hex()

    async def call(self, fn_name: str, *args: Any, tx: Optional[Dict[str, Any]] = None) -> Tuple[Any, ...]:
        """Static call through the owning chain client; reverts raise ContractLogicError."""
        raw = await self.chain.call({"to": self.address, "data": self.encode(fn_name, *args), **(tx or {})})
        return self.decode_result(fn_name, raw)

    async def transact(self, fn_name: str, *args: Any, account: LocalAccount, value: int = 0) -> HexBytes:
        return await self.chain.send_transaction(
            {"to": self.address, "data": self.encode(fn_name, *args), "value": value}, account
        )


class LendingPool(ContractClient):
    abi_name = "lending_pool"

    def encode_get_account_liquidity(self, account: str) -> bytes:
        return self.encode("getAccountLiquidity", account)

    def decode_get_account_liquidity(self, data: bytes) -> Tuple[int, int, int]:
        error, liquidity, shortfall = self.decode_result("getAccountLiquidity", data)
        return error, liquidity, shortfall

    async def get_account_liquidity(self, account: str) -> Tuple[int, int, int]:
        error, liquidity, shortfall = await self.call("getAccountLiquidity", account)
        return error, liquidity, shortfall

    async def close_factor_mantissa(self) -> int:
        return (await self.call("closeFactorMantissa"))[0]

    async def oracle(self) -> str:
        return Web3.to_checksum_address((await self.call("oracle"))[0])


class PriceOracle(ContractClient):
    abi_name = "price_oracle"

    async def get_underlying_price(self, o_token: str) -> int:
        return (await self.call("getUnderlyingPrice", o_token))[0]


class LiquidatorHelper(ContractClient):
    abi_name = "liquidator"

    def encode_get_account_details(self, account: str) -> bytes:
        return self.encode("getAccountDetails", account)

    def decode_get_account_details(self, data: bytes) -> List[AccountAsset]:
        o_tokens, borrow_balances, token_balances = self.decode_result("getAccountDetails", data)
        if not len(o_tokens) == len(borrow_balances) == len(token_balances):
            raise ValueError("getAccountDetails returned arrays of different lengths")
        return [
            AccountAsset(o_token=Web3.to_checksum_address(o_token), borrow_balance=borrow, token_balance=token)
            for o_token, borrow, token in zip(o_tokens, borrow_balances, token_balances)
        ]

    def encode_liquidate(self, borrow_token: str, borrower: str, collateral_token: str, repay_amount: int) -> bytes:
        return self.encode("liquidate", borrow_token, borrower, collateral_token, repay_amount)

    def decode_liquidate(self, data: bytes) -> Tuple[int, int]:
        profit_eth, profit_usd = self.decode_result("liquidate", data)
        return profit_eth, profit_usd


class CallSimulator(ContractClient):
    """External multicall simulator. Only callable from the zero address at zero gas price."""

    abi_name = "call_simulator"

    def encode_function_call(self, target: str, data: bytes) -> bytes:
        return self.encode("functionCall", target, data)

    async def multicall(self, calldata: Sequence[bytes]) -> List[bytes]:
        (returndata,) = await self.call(
            "multicall", list(calldata), tx={"from": ZERO_ADDRESS, "gasPrice": 0}
        )
        return list(returndata)


class Multicall3(ContractClient):
    abi_name = "multicall3"

    async def aggregate3(self, calls: Sequence[Tuple[str, bytes]]) -> List[Tuple[bool, bytes]]:
        """Static aggregate3 with allowFailure set, so one reverting call does not fail the batch."""
        (results,) = await self.call("aggregate3", [(target, True, data) for target, data in calls])
        return [(success, bytes(returndata)) for success, returndata in results]

    async def simulate_aggregate3_value(self, calls: Sequence[Call3Value], sender: str, value: int) -> SimulationResult:
        """Static aggregate3Value from `sender`. A revert in any call yields success=False."""
        try:
            (results,) = await self.call(
                "aggregate3Value", [call.as_tuple() for call in calls], tx={"from": sender, "value": value}
            )
        except ContractLogicError as ex:
            return SimulationResult(success=False, error=str(ex)[:200])
        return SimulationResult(success=True, returndata=tuple(bytes(returndata) for _, returndata in results))

    async def aggregate3_value(self, calls: Sequence[Call3Value], account: LocalAccount, value: int) -> HexBytes:
        return await self.transact(
            "aggregate3Value", [call.as_tuple() for call in calls], account=account, value=value
        )


class PriceServer(ContractClient):
    """Api3ServerV1."""

    abi_name = "price_server"

    def encode_set_dapi_name(self, dapi_name: bytes, data_feed_id: bytes) -> bytes:
        return self.encode("setDapiName", dapi_name, data_feed_id)

    def encode_update_beacon_with_signed_data(
        self, airnode: str, template_id: bytes, timestamp: int, data: bytes, signature: bytes
    ) -> bytes:
        return self.encode("updateBeaconWithSignedData", airnode, template_id, timestamp, data, signature)

    def decode_update_oev_proxy_data_feed(self, calldata: bytes) -> AwardDetails:
        """Decode the award details calldata published with an AwardedBid event."""
        function, params = self.codec.decode_function_input(bytes(calldata))
        if function.fn_name != "updateOevProxyDataFeedWithSignedData":
            raise ValueError(f"Unexpected award details function: {function.fn_name}")
        return AwardDetails(
            proxy_address=Web3.to_checksum_address(params["oevProxy"]),
            data_feed_id=bytes(params["dataFeedId"]),
            update_id=bytes(params["updateId"]),
            timestamp=params["timestamp"],
            encoded_value=bytes(params["data"]),
            signatures=tuple(bytes(signature) for signature in params["packedOevUpdateSignatures"]),
            value=decode_int256(params["data"]),
        )


class AuctionHouse(ContractClient):
    abi_name = "auction_house"

    EVENT_NAMES = ("AwardedBid", "PlacedBid", "ExpeditedBidExpiration")

    @property
    def event_topics(self) -> List[str]:
        return [self.event_topic(name) for name in self.EVENT_NAMES]

    def decode_log(self, log: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        """
        Decode a raw auction house log.

        Returns:
            The event name and its decoded arguments.
        """
        topic0 = "0x" + bytes(HexBytes(log["topics"][0])).hex()
        for name in self.EVENT_NAMES:
            if self.event_topic(name) == topic0:
                event = getattr(self.codec.events, name)()
                return name, dict(event.process_log(log)["args"])
        raise ValueError(f"Unknown auction house event topic: {topic0}")

    async def place_bid_with_expiration(
        self,
        bid_topic: bytes,
        chain_id: int,
        bid_amount: int,
        bid_details: bytes,
        max_collateral_amount: int,
        max_protocol_fee_amount: int,
        expiration_timestamp: int,
        account: LocalAccount,
    ) -> HexBytes:
        return await self.transact(
            "placeBidWithExpiration",
            bid_topic,
            chain_id,
            bid_amount,
            bid_details,
            max_collateral_amount,
            max_protocol_fee_amount,
            expiration_timestamp,
            account=account,
        )

    async def expedite_bid_expiration_maximally(
        self, bid_topic: bytes, bid_details_hash: bytes, account: LocalAccount
    ) -> HexBytes:
        return await self.transact("expediteBidExpirationMaximally", bid_topic, bid_details_hash, account=account)

    async def report_fulfillment(
        self, bid_topic: bytes, bid_details_hash: bytes, fulfillment_details: bytes, account: LocalAccount
    ) -> HexBytes:
        return await self.transact(
            "reportFulfillment", bid_topic, bid_details_hash, fulfillment_details, account=account
        )


class OToken(ContractClient):
    abi_name = "o_token"

    @property
    def borrow_topic(self) -> str:
        return self.event_topic("Borrow")

    def decode_borrower(self, log: Dict[str, Any]) -> str:
        return Web3.to_checksum_address(self.codec.events.Borrow().process_log(log)["args"]["borrower"])


@dataclass
class Contracts:
    """Every contract client the seeker uses, bound to its chain."""

    lending_pool: LendingPool
    eth_market: OToken
    liquidator: LiquidatorHelper
    simulator: CallSimulator
    multicall3: Multicall3
    price_server: PriceServer
    auction_house: AuctionHouse

    def price_oracle(self, address: str) -> PriceOracle:
        return PriceOracle(address, self.lending_pool.chain)

    @classmethod
    def from_config(cls, config, target: ChainClient, auction: ChainClient) -> "Contracts":
        return cls(
            lending_pool=LendingPool(config.lending_pool, target),
            eth_market=OToken(config.eth_market, target),
            liquidator=LiquidatorHelper(config.liquidator, target),
            simulator=CallSimulator(config.external_multicall_simulator, target),
            multicall3=Multicall3(config.multicall3, target),
            price_server=PriceServer(config.api3_server_v1, target),
            auction_house=AuctionHouse(config.auction_house, auction),
        )
