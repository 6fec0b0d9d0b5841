"""
Opportunity scanner.

Finds the most profitable liquidation that becomes possible once the ETH/USD feed is
updated to the transmutation value.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from eth_abi.exceptions import DecodingError
from eth_account.signers.local import LocalAccount

from .codec import chunked, format_ether, get_percentage_value, min_value
from .config_loader import SeekerConfig
from .contracts import Contracts
from .exceptions import ScanAbortedError
from .logging_config import setup_logger
from .models import AccountAsset, AccountLiquidity, Call, LiquidationParameters
from .store import Store
from .transmutation import build_transmutation_calls, simulate_transmutation_multicall

logger = setup_logger()

MANTISSA = 10**18

CLOSEST_ACCOUNTS_TO_LOG = 10


@dataclass(frozen=True)
class Opportunity:
    parameters: LiquidationParameters
    transmutation_value: int


def select_shortfall_accounts(liquidities: Sequence[AccountLiquidity]) -> List[AccountLiquidity]:
    """Accounts with a positive shortfall, largest shortfall first. Equal shortfalls keep their order."""
    return sorted((entry for entry in liquidities if entry.shortfall > 0), key=lambda e: e.shortfall, reverse=True)


def select_borrow_asset(assets: Sequence[AccountAsset], eth_market: str) -> Optional[AccountAsset]:
    """The largest non-zero borrow in the ETH market, if any."""
    eth_borrows = [asset for asset in assets if asset.o_token == eth_market and asset.borrow_balance > 0]
    if not eth_borrows:
        return None
    return max(eth_borrows, key=lambda asset: asset.borrow_balance)


def select_collateral_asset(assets: Sequence[AccountAsset]) -> Optional[AccountAsset]:
    """The asset with the largest token balance. It may be the borrowed asset itself."""
    if not assets:
        return None
    return max(assets, key=lambda asset: asset.token_balance)


def compute_max_repay(
    borrow_balance: int,
    close_factor: int,
    liquidator_balance: int,
    collateral_balance: int,
    collateral_percent: float,
) -> int:
    """
    Largest amount the liquidator may repay.

    Bounded by the close factor share of the borrow, the liquidator's ETH balance and a
    percentage of the collateral that leaves room for interest accrued before execution.
    """
    return min_value(
        borrow_balance * close_factor // MANTISSA,
        liquidator_balance,
        get_percentage_value(collateral_balance, collateral_percent),
    )


class OpportunityScanner:
    def __init__(self, config: SeekerConfig, contracts: Contracts, store: Store, account: LocalAccount):
        self.config = config
        self.contracts = contracts
        self.store = store
        self.account = account

    async def _log_balances(self) -> None:
        target = self.contracts.lending_pool.chain
        wallet_balance = await target.get_balance(self.account.address)
        liquidator_balance = await target.get_balance(self.config.liquidator)
        logger.info(
            "Scanner: wallet ETH balance %s, liquidator ETH balance %s",
            format_ether(wallet_balance), format_ether(liquidator_balance),
        )

    async def get_transmutation_value(self) -> int:
        oracle = self.contracts.price_oracle(await self.contracts.lending_pool.oracle())
        current_price = await oracle.get_underlying_price(self.config.eth_market)
        transmutation_value = get_percentage_value(current_price, self.config.transmutation_percent)
        logger.info(
            "Scanner: current ETH/USD price %s, transmutation value %s",
            format_ether(current_price), format_ether(transmutation_value),
        )
        return transmutation_value

    async def get_account_liquidities(
        self, borrowers: Sequence[str], transmutation_calls: Sequence[Call]
    ) -> Optional[List[AccountLiquidity]]:
        """Account liquidity of every borrower under the transmuted price, or None if a batch reverts."""
        lending_pool = self.contracts.lending_pool
        liquidities = []
        for batch in chunked(list(borrowers), self.config.max_accounts_per_simulation):
            logger.info("Scanner: fetching account liquidity for %s accounts", len(batch))
            calls = list(transmutation_calls) + [
                Call(target=lending_pool.address, data=lending_pool.encode_get_account_liquidity(borrower))
                for borrower in batch
            ]
            result = await simulate_transmutation_multicall(self.contracts.simulator, calls)
            if not result.success:
                logger.warning("Scanner: account liquidity simulation reverted: %s", result.error)
                return None

            for borrower, data in zip(batch, result.returndata[len(transmutation_calls):]):
                try:
                    error, liquidity, shortfall = lending_pool.decode_get_account_liquidity(data)
                except DecodingError as ex:
                    logger.warning("Scanner: could not decode account liquidity for %s: %s", borrower, ex)
                    continue
                liquidities.append(
                    AccountLiquidity(borrower=borrower, error=error, liquidity=liquidity, shortfall=shortfall)
                )
        return liquidities

    async def find_best_liquidation(self) -> Optional[Opportunity]:
        """
        Scan the watched accounts for the most profitable liquidation under the transmuted price.

        Returns:
            The best opportunity, or None when nothing is profitable or a simulation reverts.
        """
        await self._log_balances()

        close_factor = await self.contracts.lending_pool.close_factor_mantissa()
        logger.info("Scanner: close factor %s", format_ether(close_factor))

        transmutation_value = await self.get_transmutation_value()
        transmutation_calls = build_transmutation_calls(
            self.contracts.price_server, self.config.dapi_name, transmutation_value
        )

        borrowers = self.store.require_target_chain_data().borrowers
        liquidities = await self.get_account_liquidities(borrowers, transmutation_calls)
        if liquidities is None:
            return None

        accounts_with_shortfall = select_shortfall_accounts(liquidities)
        logger.info("Scanner: %s accounts with shortfall", len(accounts_with_shortfall))
        if not accounts_with_shortfall:
            closest = sorted(liquidities, key=lambda entry: entry.liquidity)[:CLOSEST_ACCOUNTS_TO_LOG]
            logger.info(
                "Scanner: no accounts with shortfall, closest to liquidation: %s",
                ", ".join(f"{entry.borrower} ({format_ether(entry.liquidity)})" for entry in closest),
            )
            return None

        liquidator_balance = await self.contracts.liquidator.chain.get_balance(self.config.liquidator)

        best: Optional[LiquidationParameters] = None
        for account in accounts_with_shortfall:
            try:
                candidate = await self._evaluate_account(
                    account, transmutation_calls, close_factor, liquidator_balance
                )
            except ScanAbortedError as ex:
                logger.error("Scanner: stopping scan: %s", ex)
                return None
            if candidate is None:
                continue
            if best is None or candidate.profit_eth > best.profit_eth:
                best = candidate

        if best is None:
            logger.info("Scanner: no liquidation opportunity found.")
            return None
        return Opportunity(parameters=best, transmutation_value=transmutation_value)

    async def _evaluate_account(
        self,
        account: AccountLiquidity,
        transmutation_calls: Sequence[Call],
        close_factor: int,
        liquidator_balance: int,
    ) -> Optional[LiquidationParameters]:
        """
        Simulate the liquidation of one account.

        Returns the liquidation parameters, or None to skip the account. Raises ScanAbortedError
        when a simulation reverts.
        """
        liquidator = self.contracts.liquidator
        borrower = account.borrower

        details = await simulate_transmutation_multicall(
            self.contracts.simulator,
            list(transmutation_calls)
            + [Call(target=liquidator.address, data=liquidator.encode_get_account_details(borrower))],
        )
        if not details.success:
            raise ScanAbortedError(f"account details simulation reverted for {borrower}: {details.error}")
        try:
            assets = liquidator.decode_get_account_details(details.returndata[-1])
        except (DecodingError, ValueError) as ex:
            logger.warning("Scanner: could not decode account details for %s: %s", borrower, ex)
            return None

        borrow_asset = select_borrow_asset(assets, self.config.eth_market)
        if borrow_asset is None:
            logger.warning("Scanner: there is no ETH borrow for %s", borrower)
            return None
        collateral_asset = select_collateral_asset(assets)

        max_borrow_repay = compute_max_repay(
            borrow_asset.borrow_balance,
            close_factor,
            liquidator_balance,
            collateral_asset.token_balance,
            self.config.max_collateral_repay_percent,
        )
        logger.debug(
            "Scanner: potential liquidation of %s, shortfall %s, borrow %s, collateral %s, max repay %s",
            borrower, format_ether(account.shortfall), format_ether(borrow_asset.borrow_balance),
            format_ether(collateral_asset.token_balance), format_ether(max_borrow_repay),
        )
        if max_borrow_repay <= 0:
            logger.info("Scanner: nothing to repay for %s", borrower)
            return None

        liquidation = await simulate_transmutation_multicall(
            self.contracts.simulator,
            list(transmutation_calls)
            + [
                Call(
                    target=liquidator.address,
                    data=liquidator.encode_liquidate(
                        borrow_asset.o_token, borrower, collateral_asset.o_token, max_borrow_repay
                    ),
                )
            ],
        )
        if not liquidation.success:
            raise ScanAbortedError(f"liquidation simulation reverted for {borrower}: {liquidation.error}")
        try:
            profit_eth, profit_usd = liquidator.decode_liquidate(liquidation.returndata[-1])
        except DecodingError as ex:
            logger.warning("Scanner: could not decode liquidation result for %s: %s", borrower, ex)
            return None

        if profit_usd <= self.config.min_liquidation_profit_usd:
            logger.info(
                "Scanner: liquidation of %s possible, but profit is too low (%s ETH, %s USD)",
                borrower, format_ether(profit_eth), format_ether(profit_usd),
            )
            return None
        logger.info(
            "Scanner: possible liquidation of %s, max repay %s, profit %s ETH, %s USD",
            borrower, format_ether(max_borrow_repay), format_ether(profit_eth), format_ether(profit_usd),
        )
        return LiquidationParameters(
            borrow_token_address=borrow_asset.o_token,
            borrower=borrower,
            collateral_token_address=collateral_asset.o_token,
            max_borrow_repay=max_borrow_repay,
            profit_eth=profit_eth,
            profit_usd=profit_usd,
        )
