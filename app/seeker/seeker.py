"""
Seeker orchestrator: startup reconciliation and the three cooperative loops.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from eth_account.signers.local import LocalAccount

from .account_watcher import AccountWatcher, load_accounts_from_file, persist_accounts_to_watch
from .auction_logs import AuctionLogFetcher
from .bid_manager import BidManager
from .config_loader import SeekerConfig, build_chain_clients, build_contracts, load_account, load_config
from .contracts import Contracts
from .executor import LiquidationExecutor
from .logging_config import setup_logger
from .models import ActiveBid
from .scanner import OpportunityScanner
from .store import Store

logger = setup_logger()


class Seeker:
    """
    Owns the store and every component, and runs the seeker loops on one event loop.
    """

    def __init__(
        self,
        config: SeekerConfig,
        contracts: Contracts,
        account: LocalAccount,
        store: Optional[Store] = None,
        notify: bool = True,
    ):
        self.config = config
        self.contracts = contracts
        self.account = account
        self.store = store or Store()
        self.running = False

        self.watcher = AccountWatcher(config, contracts)
        self.fetcher = AuctionLogFetcher(
            contracts.auction_house,
            contracts.price_server,
            account.address,
            config.bid_topic,
            max_range=config.max_log_range_blocks,
        )
        self.bid_manager = BidManager(config, contracts, self.store, account, self.fetcher, notify=notify)
        self.scanner = OpportunityScanner(config, contracts, self.store, account)
        self.executor = LiquidationExecutor(config, contracts, self.store, account, self.bid_manager, notify=notify)

    async def run(self) -> None:
        self.running = True
        logger.info("Seeker: starting with wallet %s in %s mode", self.account.address, self.config.environment)

        await self.initialize_target_chain_data()
        await self.initialize_auction_data()
        # Start from a clean slate, with no bid left in flight by a previous run.
        await self.bid_manager.expedite_active_bids()

        loops = [self.run_account_fetcher_loop(), self.run_attempt_liquidation_loop()]
        if self.config.persist_accounts_to_watch:
            loops.append(self.run_persist_accounts_loop())
        await asyncio.gather(*loops)

    def stop(self) -> None:
        self.running = False

    async def _retry_until_success(self, name: str, initialize: Callable[[], Awaitable[Any]]) -> None:
        while True:
            started = time.monotonic()
            try:
                await asyncio.wait_for(initialize(), timeout=self.config.initialization_timeout_seconds)
                return
            except Exception as ex:
                logger.error(
                    "Seeker: error initializing %s after %.1fs: %s",
                    name, time.monotonic() - started, ex, exc_info=True,
                )
            await asyncio.sleep(self.config.initialization_retry_delay_seconds)

    async def initialize_target_chain_data(self) -> None:
        """Build the watch list from chain history in production, otherwise from the persisted file."""

        async def _initialize() -> None:
            started = time.monotonic()
            if self.config.is_production:
                data = await self.watcher.get_accounts_to_watch()
            else:
                data = load_accounts_from_file(
                    self.config.accounts_to_watch_path, self.config.eth_market_deployment_block
                )
            self.store.set_target_chain_data(data)
            logger.info(
                "Seeker: %s accounts with borrowed ETH (%.1fs)", len(data.borrowers), time.monotonic() - started
            )

        await self._retry_until_success("target chain data", _initialize)

    async def initialize_auction_data(self) -> None:
        await self._retry_until_success("auction network data", self.bid_manager.initialize_auction_data)

    async def find_oev_liquidation(self) -> Optional[ActiveBid]:
        """Scan for the best opportunity and bid on it."""
        opportunity = await self.scanner.find_best_liquidation()
        if opportunity is None:
            return None
        return await self.bid_manager.place_bid(opportunity)

    async def attempt_liquidation_iteration(self) -> None:
        if self.store.get().currently_active_bid is not None:
            await self.executor.attempt_liquidation()
        else:
            await self.find_oev_liquidation()

    async def run_attempt_liquidation_loop(self) -> None:
        while self.running:
            started = time.monotonic()
            try:
                await asyncio.wait_for(
                    self.attempt_liquidation_iteration(), timeout=self.config.liquidation_attempt_timeout_seconds
                )
            except Exception as ex:
                logger.error(
                    "Seeker: error running liquidation attempt after %.1fs: %s",
                    time.monotonic() - started, ex, exc_info=True,
                )
            await asyncio.sleep(self.config.liquidation_loop_interval_seconds)

    async def update_accounts_to_watch(self) -> None:
        current = self.store.require_target_chain_data()
        update = await self.watcher.get_accounts_to_watch(current.last_block)
        merged = self.store.merge_borrowers(update.borrowers, update.last_block)
        logger.info("Seeker: watching %s accounts up to block %s", len(merged.borrowers), merged.last_block)

    async def run_account_fetcher_loop(self) -> None:
        while self.running:
            try:
                await self.update_accounts_to_watch()
            except Exception as ex:
                logger.error("Seeker: error updating accounts to watch: %s", ex, exc_info=True)
            await asyncio.sleep(self.config.account_fetch_interval_seconds)

    def persist_accounts(self) -> None:
        data = self.store.require_target_chain_data()
        persist_accounts_to_watch(data, self.config.accounts_to_watch_path)
        logger.info("Seeker: persisted %s accounts to watch to %s", len(data.borrowers), self.config.accounts_to_watch_path)

    async def run_persist_accounts_loop(self) -> None:
        while self.running:
            await asyncio.sleep(self.config.persist_interval_seconds)
            try:
                self.persist_accounts()
            except Exception as ex:
                logger.error("Seeker: failed to persist accounts to watch: %s", ex, exc_info=True)

    def status(self) -> Dict[str, Any]:
        """Summary of the current store snapshot."""
        storage = self.store.get()
        active_bid = storage.currently_active_bid
        target = storage.target_chain_data
        auction = storage.auction_data
        return {
            "running": self.running,
            "wallet": self.account.address,
            "active_bid": None
            if active_bid is None
            else {
                "bid_id": f"0x{active_bid.bid_id.hex()}",
                "bid_amount": str(active_bid.bid_amount),
                "expiration_timestamp": active_bid.expiration_timestamp,
                "borrower": active_bid.liquidation_parameters.borrower,
                "profit_eth": str(active_bid.liquidation_parameters.profit_eth),
            },
            "watched_accounts": None if target is None else len(target.borrowers),
            "last_scanned_block": None if target is None else target.last_block,
            "cached_auction_logs": None if auction is None else len(auction.logs),
            "last_fetched_auction_block": None if auction is None else auction.last_fetched_block,
        }


def start_seeker() -> Seeker:
    """Build the seeker from the environment and run it until the process exits."""
    config = load_config()
    account = load_account(config)
    target, auction = build_chain_clients(config)
    contracts = build_contracts(config, target, auction)
    seeker = Seeker(config, contracts, account, notify=bool(config.notification_url))

    # Stored on the function for route access
    start_seeker._seeker = seeker

    asyncio.run(seeker.run())
    return seeker


def get_seeker() -> Optional[Seeker]:
    return getattr(start_seeker, "_seeker", None)
