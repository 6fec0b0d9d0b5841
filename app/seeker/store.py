"""
Process-wide in-memory store.

Every loop reads an immutable Storage snapshot and writes through Store.update(), which
swaps the reference in one step. Update functions must not await, so no write can be
interleaved with another loop's write.
"""

from dataclasses import replace
from typing import Callable, Iterable, Optional

from .exceptions import StorageNotInitializedError
from .models import ActiveBid, AuctionLog, AuctionNetworkData, Storage, TargetChainData


class Store:
    def __init__(self, storage: Optional[Storage] = None):
        self._storage = storage or Storage()

    def get(self) -> Storage:
        return self._storage

    def update(self, updater: Callable[[Storage], Storage]) -> Storage:
        self._storage = updater(self._storage)
        return self._storage

    def require_target_chain_data(self) -> TargetChainData:
        data = self._storage.target_chain_data
        if data is None:
            raise StorageNotInitializedError("Target chain data not initialized.")
        return data

    def require_auction_data(self) -> AuctionNetworkData:
        data = self._storage.auction_data
        if data is None:
            raise StorageNotInitializedError("Auction network data not initialized.")
        return data

    def set_active_bid(self, bid: ActiveBid) -> None:
        self.update(lambda s: replace(s, currently_active_bid=bid))

    def clear_active_bid(self) -> None:
        self.update(lambda s: replace(s, currently_active_bid=None))

    def set_target_chain_data(self, data: TargetChainData) -> None:
        self.update(lambda s: replace(s, target_chain_data=data))

    def set_auction_data(self, data: AuctionNetworkData) -> None:
        self.update(lambda s: replace(s, auction_data=data))

    def merge_borrowers(self, borrowers: Iterable[str], last_block: int) -> TargetChainData:
        """Append new borrowers (deduplicated, first-seen order kept) and advance the last scanned block."""
        new_borrowers = tuple(borrowers)

        def _merge(storage: Storage) -> Storage:
            current = storage.target_chain_data
            if current is None:
                raise StorageNotInitializedError("Target chain data not initialized.")
            merged = tuple(dict.fromkeys(current.borrowers + new_borrowers))
            return replace(storage, target_chain_data=TargetChainData(borrowers=merged, last_block=last_block))

        return self.update(_merge).target_chain_data

    def extend_auction_logs(
        self,
        logs: Iterable[AuctionLog],
        last_fetched_block: int,
        keep: Optional[Callable[[AuctionLog], bool]] = None,
    ) -> AuctionNetworkData:
        """Append fetched auction logs, optionally dropping the ones `keep` rejects."""
        new_logs = tuple(logs)

        def _extend(storage: Storage) -> Storage:
            current = storage.auction_data
            if current is None:
                raise StorageNotInitializedError("Auction network data not initialized.")
            combined = current.logs + new_logs
            if keep is not None:
                combined = tuple(log for log in combined if keep(log))
            return replace(
                storage, auction_data=AuctionNetworkData(last_fetched_block=last_fetched_block, logs=combined)
            )

        return self.update(_extend).auction_data
