"""
Config Loader module - builds the immutable seeker configuration once at startup
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

import yaml
from aiohttp import ClientTimeout
from eth_account import Account
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from .chain import ChainClient
from .contracts import Contracts
from .exceptions import ConfigError

CONFIG_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "config.yaml")

ENVIRONMENTS = ("production", "development", "test")


@dataclass(frozen=True)
class ChainSettings:
    """Connection settings for one chain."""

    name: str
    chain_id: int
    rpc_url: str
    fallback_rpc_url: Optional[str] = None


@dataclass(frozen=True)
class SeekerConfig:
    """
    Seeker configuration. Built once by load_config() and passed explicitly to every component.

    Token amounts, prices and USD values are integers with 18 decimals.
    """

    environment: str
    mnemonic: str = field(repr=False)
    notification_url: str
    persist_accounts_to_watch: bool
    accounts_to_watch_path: str

    target_chain: ChainSettings
    auction_network: ChainSettings

    # Target chain contracts
    api3_oev_eth_usd_proxy: str
    api3_server_v1: str
    external_multicall_simulator: str
    multicall3: str
    lending_pool: str
    eth_market: str
    liquidator: str
    dapi_name: str
    eth_market_deployment_block: int

    # Auction network
    auction_house: str
    bid_topic: bytes
    min_bid_time_to_live_seconds: int
    auction_logs_start_block: int

    # Timings (seconds)
    rpc_timeout_seconds: float
    call_timeout_seconds: float
    tx_receipt_timeout_seconds: float
    initialization_timeout_seconds: float
    initialization_retry_delay_seconds: float
    liquidation_attempt_timeout_seconds: float
    retry_delay: float
    account_fetch_interval_seconds: float
    liquidation_loop_interval_seconds: float
    persist_interval_seconds: float
    min_rpc_delay_seconds: float
    bid_validity_seconds: int
    fulfillment_report_delay_seconds: float
    auction_log_retention_seconds: int

    # Batching
    max_log_range_blocks: int
    borrower_logs_lookback_blocks: int
    max_borrower_details_multicall: int
    max_accounts_per_simulation: int

    # Thresholds
    min_usd_borrow: int
    min_eth_borrow: int
    min_liquidation_profit_usd: int
    safe_collateral_buffer_percent: float
    max_collateral_repay_percent: float
    transmutation_percent: float
    bid_profit_percent: float

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


required_env_vars = [
    "MNEMONIC",
    "ETHER_LIQUIDATOR_ADDRESS",
    # "NOTIFICATION_URL",  # Optional
]


def validate_env() -> None:
    """
    Validates that all required environment variables are set.
    Raises an error if any are missing.
    """
    missing_keys = [key for key in required_env_vars if not os.getenv(key)]
    if missing_keys:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing_keys)}")


def to_wei_amount(value: Any, name: str) -> int:
    """Convert a decimal amount such as "0.01" into an 18 decimal integer."""
    try:
        return int(Web3.to_wei(Decimal(str(value)), "ether"))
    except (InvalidOperation, ValueError) as ex:
        raise ConfigError(f"Invalid amount for {name}: {value!r}") from ex


def _checksum(value: str, name: str) -> str:
    if not Web3.is_address(value):
        raise ConfigError(f"Invalid address for {name}: {value!r}")
    return Web3.to_checksum_address(value)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")


def _target_rpc_url(chain: Dict[str, Any]) -> str:
    url = os.environ.get("TARGET_RPC_URL") or chain["RPC_URL"]
    api_key = os.environ.get("TARGET_RPC_API_KEY")
    if api_key:
        url = f"{url.rstrip('/')}/{api_key}"
    return url


def read_config_file(config_path: str = CONFIG_PATH) -> Dict[str, Any]:
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found at {config_path}") from exc
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML file: {e}") from e

    for section in ("global", "target_chain", "auction_network"):
        if not isinstance(config, dict) or section not in config:
            raise ConfigError(f"Config file {config_path} has no '{section}' section")
    return config


def load_config(config_path: str = CONFIG_PATH) -> SeekerConfig:
    """
    Load config.yaml and the environment into a SeekerConfig.

    Raises:
        ConfigError: If a required variable is missing or a value does not parse.
    """
    config = read_config_file(config_path)
    validate_env()

    glob = config["global"]
    target = config["target_chain"]
    auction = config["auction_network"]
    target_contracts = target["contracts"]

    environment = os.environ.get("ENVIRONMENT", "development").lower()
    if environment not in ENVIRONMENTS:
        raise ConfigError(f"ENVIRONMENT must be one of {', '.join(ENVIRONMENTS)}, got {environment!r}")

    bid_topic = HexBytes(auction["BID_TOPIC"])
    if len(bid_topic) != 32:
        raise ConfigError(f"BID_TOPIC must be 32 bytes, got {len(bid_topic)}")

    try:
        return SeekerConfig(
            environment=environment,
            mnemonic=os.environ["MNEMONIC"].strip(),
            notification_url=os.environ.get("NOTIFICATION_URL", ""),
            persist_accounts_to_watch=_env_flag("PERSIST_ACCOUNTS_TO_WATCH"),
            accounts_to_watch_path=os.environ.get("ACCOUNTS_TO_WATCH_PATH") or glob["ACCOUNTS_TO_WATCH_PATH"],
            target_chain=ChainSettings(
                name=target["name"],
                chain_id=int(target["chain_id"]),
                rpc_url=_target_rpc_url(target),
                fallback_rpc_url=target.get("FALLBACK_RPC_URL"),
            ),
            auction_network=ChainSettings(
                name=auction["name"],
                chain_id=int(auction["chain_id"]),
                rpc_url=os.environ.get("AUCTION_RPC_URL") or auction["RPC_URL"],
            ),
            api3_oev_eth_usd_proxy=_checksum(target_contracts["API3_OEV_ETH_USD_PROXY"], "API3_OEV_ETH_USD_PROXY"),
            api3_server_v1=_checksum(target_contracts["API3_SERVER_V1"], "API3_SERVER_V1"),
            external_multicall_simulator=_checksum(
                target_contracts["EXTERNAL_MULTICALL_SIMULATOR"], "EXTERNAL_MULTICALL_SIMULATOR"
            ),
            multicall3=_checksum(target_contracts["MULTICALL3"], "MULTICALL3"),
            lending_pool=_checksum(target_contracts["LENDING_POOL"], "LENDING_POOL"),
            eth_market=_checksum(target_contracts["ETH_MARKET"], "ETH_MARKET"),
            liquidator=_checksum(os.environ["ETHER_LIQUIDATOR_ADDRESS"], "ETHER_LIQUIDATOR_ADDRESS"),
            dapi_name=target["DAPI_NAME"],
            eth_market_deployment_block=int(target["ETH_MARKET_DEPLOYMENT_BLOCK"]),
            auction_house=_checksum(auction["contracts"]["AUCTION_HOUSE"], "AUCTION_HOUSE"),
            bid_topic=bytes(bid_topic),
            min_bid_time_to_live_seconds=int(auction["MIN_BID_TIME_TO_LIVE_SECONDS"]),
            auction_logs_start_block=int(auction["LOGS_START_BLOCK"]),
            rpc_timeout_seconds=float(glob["RPC_TIMEOUT_SECONDS"]),
            call_timeout_seconds=float(glob["CALL_TIMEOUT_SECONDS"]),
            tx_receipt_timeout_seconds=float(glob["TX_RECEIPT_TIMEOUT_SECONDS"]),
            initialization_timeout_seconds=float(glob["INITIALIZATION_TIMEOUT_SECONDS"]),
            initialization_retry_delay_seconds=float(glob["INITIALIZATION_RETRY_DELAY_SECONDS"]),
            liquidation_attempt_timeout_seconds=float(glob["LIQUIDATION_ATTEMPT_TIMEOUT_SECONDS"]),
            retry_delay=float(glob["RETRY_DELAY"]),
            account_fetch_interval_seconds=float(glob["ACCOUNT_FETCH_INTERVAL_SECONDS"]),
            liquidation_loop_interval_seconds=float(glob["LIQUIDATION_LOOP_INTERVAL_SECONDS"]),
            persist_interval_seconds=float(glob["PERSIST_INTERVAL_SECONDS"]),
            min_rpc_delay_seconds=float(glob["MIN_RPC_DELAY_SECONDS"]),
            bid_validity_seconds=int(glob["BID_VALIDITY_SECONDS"]),
            fulfillment_report_delay_seconds=float(glob["FULFILLMENT_REPORT_DELAY_SECONDS"]),
            auction_log_retention_seconds=int(glob["AUCTION_LOG_RETENTION_SECONDS"]),
            max_log_range_blocks=int(glob["MAX_LOG_RANGE_BLOCKS"]),
            borrower_logs_lookback_blocks=int(glob["BORROWER_LOGS_LOOKBACK_BLOCKS"]),
            max_borrower_details_multicall=int(glob["MAX_BORROWER_DETAILS_MULTICALL"]),
            max_accounts_per_simulation=int(glob["MAX_ACCOUNTS_PER_SIMULATION"]),
            min_usd_borrow=to_wei_amount(os.environ.get("MIN_USD_BORROW") or glob["MIN_USD_BORROW"], "MIN_USD_BORROW"),
            min_eth_borrow=to_wei_amount(glob["MIN_ETH_BORROW"], "MIN_ETH_BORROW"),
            min_liquidation_profit_usd=to_wei_amount(glob["MIN_LIQUIDATION_PROFIT_USD"], "MIN_LIQUIDATION_PROFIT_USD"),
            safe_collateral_buffer_percent=float(glob["SAFE_COLLATERAL_BUFFER_PERCENT"]),
            max_collateral_repay_percent=float(glob["MAX_COLLATERAL_REPAY_PERCENT"]),
            transmutation_percent=float(glob["TRANSMUTATION_PERCENT"]),
            bid_profit_percent=float(glob["BID_PROFIT_PERCENT"]),
        )
    except KeyError as ex:
        raise ConfigError(f"Missing config value: {ex}") from ex
    except (TypeError, ValueError) as ex:
        raise ConfigError(f"Invalid config value: {ex}") from ex


def load_account(config: SeekerConfig) -> LocalAccount:
    """Derive the seeker wallet from the configured mnemonic."""
    Account.enable_unaudited_hdwallet_features()
    try:
        return Account.from_mnemonic(config.mnemonic)
    except Exception as ex:
        raise ConfigError("MNEMONIC is not a valid BIP-39 phrase") from ex


def setup_async_w3(rpc_url: str, timeout: float) -> AsyncWeb3:
    """Create an AsyncWeb3 instance with a bounded HTTP transport timeout."""
    return AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": ClientTimeout(total=timeout)}))


def build_chain_clients(config: SeekerConfig) -> Tuple[ChainClient, ChainClient]:
    """
    Create the target chain and auction network clients.

    Only the target chain gets a fallback provider.
    """

    target_providers = [setup_async_w3(config.target_chain.rpc_url, config.rpc_timeout_seconds)]
    if config.target_chain.fallback_rpc_url and config.target_chain.fallback_rpc_url != config.target_chain.rpc_url:
        target_providers.append(setup_async_w3(config.target_chain.fallback_rpc_url, config.rpc_timeout_seconds))

    target = ChainClient(
        config.target_chain.name,
        config.target_chain.chain_id,
        target_providers,
        call_timeout=config.call_timeout_seconds,
        receipt_timeout=config.tx_receipt_timeout_seconds,
    )
    auction = ChainClient(
        config.auction_network.name,
        config.auction_network.chain_id,
        [setup_async_w3(config.auction_network.rpc_url, config.rpc_timeout_seconds)],
        call_timeout=config.call_timeout_seconds,
        receipt_timeout=config.tx_receipt_timeout_seconds,
    )
    return target, auction


def build_contracts(config: SeekerConfig, target: ChainClient, auction: ChainClient) -> Contracts:
    """Bind every contract client to its chain once."""

    return Contracts.from_config(config, target, auction)
