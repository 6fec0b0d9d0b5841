"""
Async RPC clients for the target chain and the auction network.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Sequence, TypeVar

import aiohttp
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import AsyncWeb3
from web3.exceptions import ProviderConnectionError

from .exceptions import TransactionFailedError
from .logging_config import setup_logger

logger = setup_logger()

T = TypeVar("T")

TRANSPORT_ERRORS = (asyncio.TimeoutError, aiohttp.ClientError, ProviderConnectionError)


class ChainClient:
    """
    Thin wrapper around one or more AsyncWeb3 providers.

    The first provider is the primary. A request that fails with a transport error is
    retried once on each following provider. Contract reverts are never retried.
    Every request is bounded by call_timeout, separately from the HTTP transport timeout.
    """

    def __init__(
        self,
        name: str,
        chain_id: int,
        providers: Sequence[AsyncWeb3],
        call_timeout: float = 30,
        receipt_timeout: float = 120,
    ):
        if not providers:
            raise ValueError(f"{name}: at least one provider is required")
        self.name = name
        self.chain_id = chain_id
        self.providers = list(providers)
        self.call_timeout = call_timeout
        self.receipt_timeout = receipt_timeout

    @property
    def w3(self) -> AsyncWeb3:
        return self.providers[0]

    async def request(self, fn: Callable[[AsyncWeb3], Awaitable[T]]) -> T:
        for index, w3 in enumerate(self.providers[:-1]):
            try:
                return await asyncio.wait_for(fn(w3), timeout=self.call_timeout)
            except TRANSPORT_ERRORS as ex:
                logger.warning(
                    "ChainClient: %s request failed on provider %s (%s), retrying on fallback",
                    self.name, index, type(ex).__name__,
                )
        return await asyncio.wait_for(fn(self.providers[-1]), timeout=self.call_timeout)

    async def block_number(self) -> int:
        async def _get(w3: AsyncWeb3) -> int:
            return await w3.eth.block_number

        return await self.request(_get)

    async def get_balance(self, address: str) -> int:
        return await self.request(lambda w3: w3.eth.get_balance(address))

    async def get_block_timestamp(self, block_number: int) -> int:
        async def _get(w3: AsyncWeb3) -> int:
            block = await w3.eth.get_block(block_number)
            return block["timestamp"]

        return await self.request(_get)

    async def get_logs(self, filter_params: Dict[str, Any]) -> List[Any]:
        return await self.request(lambda w3: w3.eth.get_logs(filter_params))

    async def call(self, tx: Dict[str, Any]) -> bytes:
        """eth_call; a revert raises web3.exceptions.ContractLogicError."""
        result = await self.request(lambda w3: w3.eth.call(tx))
        return bytes(result)

    async def send_transaction(self, tx: Dict[str, Any], account: LocalAccount) -> HexBytes:
        """
        Sign and send a transaction from the seeker wallet and wait for its receipt.

        Only the primary provider is used so that a transaction is never broadcast twice.

        Args:
            tx: Partial transaction with at least "to" and "data", optionally "value".
            account: The signing account.

        Returns:
            The transaction hash.

        Raises:
            TransactionFailedError: If the transaction is mined with a failed status.
        """
        w3 = self.w3
        nonce = await asyncio.wait_for(
            w3.eth.get_transaction_count(account.address, "pending"), timeout=self.call_timeout
        )
        gas_price = await asyncio.wait_for(w3.eth.gas_price, timeout=self.call_timeout)
        transaction = {
            "value": 0,
            **tx,
            "chainId": self.chain_id,
            "from": account.address,
            "nonce": nonce,
            "gasPrice": gas_price,
        }
        if "gas" not in transaction:
            transaction["gas"] = await asyncio.wait_for(w3.eth.estimate_gas(transaction), timeout=self.call_timeout)

        signed_tx = account.sign_transaction(transaction)
        tx_hash = await asyncio.wait_for(
            w3.eth.send_raw_transaction(signed_tx.raw_transaction), timeout=self.call_timeout
        )
        logger.info("ChainClient: %s transaction sent, hash: %s", self.name, tx_hash.hex())

        receipt = await w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt["status"] != 1:
            raise TransactionFailedError(f"{self.name} transaction {tx_hash.hex()} failed")
        logger.info("ChainClient: %s transaction %s mined, gas used: %s", self.name, tx_hash.hex(), receipt["gasUsed"])
        return HexBytes(tx_hash)
