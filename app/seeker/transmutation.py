"""
Price transmutation.

Builds a signed beacon update with an arbitrary value and runs it together with protocol
reads inside a single call to the external multicall simulator. The simulator only runs
from the zero address at zero gas price, so the update never reaches chain state.
"""

import secrets
import time
from typing import List, Optional, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3
from web3.exceptions import ContractLogicError

from .codec import encode_bytes32_string
from .contracts import CallSimulator, PriceServer
from .exceptions import SimulationError
from .logging_config import setup_logger
from .models import Call, SimulationResult

logger = setup_logger()

# Simulation only. The signed data is accepted solely inside the zero-address simulator call.
MOCK_AIRNODE_PRIVATE_KEY = "0x0fbcf3c01c9bcde58a6efa722b8d9019043dfaf5cdf557693442732e24b9f5ab"

mock_airnode = Account.from_key(MOCK_AIRNODE_PRIVATE_KEY)


def sign_data(template_id: bytes, timestamp: int, data: bytes, private_key: str = MOCK_AIRNODE_PRIVATE_KEY) -> bytes:
    """EIP-191 signature over keccak256(abi.encodePacked(templateId, timestamp, data))."""
    message_hash = Web3.solidity_keccak(["bytes32", "uint256", "bytes"], [template_id, timestamp, data])
    signed = Account.sign_message(encode_defunct(primitive=message_hash), private_key)
    return bytes(signed.signature)


def derive_beacon_id(airnode: str, template_id: bytes) -> bytes:
    return bytes(Web3.solidity_keccak(["address", "bytes32"], [airnode, template_id]))


def build_transmutation_calls(
    price_server: PriceServer, dapi_name: str, value: int, timestamp: Optional[int] = None
) -> List[Call]:
    """
    Build the two calls that point a dAPI at a fresh beacon holding `value`.

    A random template ID gives every call set its own beacon, so no one else can have
    updated it with a newer timestamp.

    Args:
        price_server: Api3ServerV1 client.
        dapi_name: Plain dAPI name, e.g. "ETH/USD".
        value: Price to report, same decimals as the real feed.
        timestamp: Data timestamp, defaults to now.

    Returns:
        [setDapiName, updateBeaconWithSignedData] calls targeting the price server.
    """
    template_id = secrets.token_bytes(32)
    timestamp = int(time.time()) if timestamp is None else timestamp
    data = encode(["int256"], [value])
    signature = sign_data(template_id, timestamp, data)
    beacon_id = derive_beacon_id(mock_airnode.address, template_id)

    return [
        Call(
            target=price_server.address,
            data=price_server.encode_set_dapi_name(encode_bytes32_string(dapi_name), beacon_id),
        ),
        Call(
            target=price_server.address,
            data=price_server.encode_update_beacon_with_signed_data(
                mock_airnode.address, template_id, timestamp, data, signature
            ),
        ),
    ]


async def simulate_transmutation_multicall(simulator: CallSimulator, calls: Sequence[Call]) -> SimulationResult:
    """
    Run `calls` in order through the simulator in one static call.

    Any reverting call fails the whole batch and yields SimulationResult(success=False).
    Transport errors propagate to the caller.

    Raises:
        SimulationError: If the simulator returns data that does not decode.
    """
    calldata = [simulator.encode_function_call(call.target, call.data) for call in calls]
    try:
        returndata = await simulator.multicall(calldata)
    except ContractLogicError as ex:
        logger.debug("Transmutation: simulation reverted: %s", ex)
        return SimulationResult(success=False, error=str(ex)[:200])

    if len(returndata) != len(calls):
        raise SimulationError(f"Simulator returned {len(returndata)} results for {len(calls)} calls")
    try:
        decoded = tuple(decode(["bytes"], item)[0] for item in returndata)
    except DecodingError as ex:
        raise SimulationError(f"Could not decode simulator return data: {ex}") from ex
    return SimulationResult(success=True, returndata=decoded)
